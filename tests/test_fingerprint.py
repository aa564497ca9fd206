import pytest

from logquery.fingerprint import MAX_MAPPED_FP, SEPARATOR, FpMapper, metric_to_unique_string


def test_unique_string_uses_separator():
    assert metric_to_unique_string({"b": "2", "a": "1"}) == SEPARATOR.join(
        ["a" + SEPARATOR + "1", "b" + SEPARATOR + "2"]
    )


def test_unique_string_ignores_order_and_distinguishes_metrics():
    a = metric_to_unique_string([("x", "1"), ("y", "2")])
    b = metric_to_unique_string([("y", "2"), ("x", "1")])
    c = metric_to_unique_string([("x", "12")])
    assert a == b
    assert a != c


def test_none_lookup_rejected():
    with pytest.raises(ValueError):
        FpMapper(None)


def test_reserved_space_is_always_mapped():
    mapper = FpMapper(lambda fp: None)
    first = mapper.map_fp(5, {"a": "1"})
    assert 0 < first <= MAX_MAPPED_FP
    assert mapper.map_fp(5, {"a": "1"}) == first
    second = mapper.map_fp(5, {"a": "2"})
    assert second != first
    assert 0 < second <= MAX_MAPPED_FP


def test_same_metric_in_memory_keeps_fp():
    fp = MAX_MAPPED_FP + 100
    mapper = FpMapper(lambda f: {"a": "1"} if f == fp else None)
    assert mapper.map_fp(fp, [("a", "1")]) == fp


def test_collision_is_remembered():
    fp = MAX_MAPPED_FP + 100
    in_memory = {"held": {"a": "1"}}
    mapper = FpMapper(lambda f: in_memory["held"] if f == fp else None)
    mapped = mapper.map_fp(fp, {"a": "2"})
    assert mapped != fp
    assert mapped <= MAX_MAPPED_FP
    in_memory["held"] = None
    assert mapper.map_fp(fp, {"a": "2"}) == mapped
    assert mapper.map_fp(fp, {"a": "3"}) == fp


def test_unknown_fp_without_mapping_is_unchanged():
    mapper = FpMapper(lambda f: None)
    fp = MAX_MAPPED_FP + 7
    assert mapper.map_fp(fp, {"a": "1"}) == fp


def test_running_out_of_mapped_fingerprints():
    mapper = FpMapper(lambda f: None)
    mapper._highest_mapped_fp = MAX_MAPPED_FP
    with pytest.raises(RuntimeError, match="fingerprints mapped in collision detection"):
        mapper.map_fp(1, {"a": "1"})