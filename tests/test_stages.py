import re

import pytest

from logquery.stages import (
    ERROR_LABEL,
    LabelsBuilder,
    Matcher,
    MatchType,
    Pipeline,
    PipelineFilter,
    StageFunc,
    StreamPipeline,
    is_noop_pipeline,
    new_filtering_pipeline,
    new_noop_pipeline,
    new_pipeline,
    reduce_stages,
)


def _setter(name, value):
    def run(ts, line, lbs):
        lbs.set(name, value)
        return line, True

    return StageFunc(run, [name])


def _contains(word):
    return StageFunc(lambda ts, line, lbs: (line, word in line))


def _upper():
    return StageFunc(lambda ts, line, lbs: (line.upper(), True))


@pytest.mark.parametrize(
    "mtype,value,candidate,expected",
    [
        (MatchType.EQUAL, "foo", "foo", True),
        (MatchType.EQUAL, "foo", "bar", False),
        (MatchType.NOT_EQUAL, "foo", "bar", True),
        (MatchType.REGEX, "fo+", "foo", True),
        (MatchType.REGEX, "f", "foo", False),
        (MatchType.NOT_REGEX, "b.*", "foo", True),
        (MatchType.NOT_REGEX, "f.*", "foo", False),
    ],
)
def test_matcher_types(mtype, value, candidate, expected):
    assert Matcher(mtype, "job", value).matches(candidate) is expected


def test_matcher_invalid_regex():
    with pytest.raises(re.error):
        Matcher(MatchType.REGEX, "job", "(")


def test_matcher_str():
    assert str(Matcher(MatchType.EQUAL, "job", "mysql")) == 'job="mysql"'


def test_builder_get_set_delete_reset():
    b = LabelsBuilder({"app": "web", "env": "prod"})
    assert b.get("app") == "web"
    assert b.get("missing") is None
    b.set("level", "info")
    b.delete("env")
    assert b.get("level") == "info"
    assert b.get("env") is None
    assert b.labels() == {"app": "web", "level": "info"}
    b.reset()
    assert b.get("env") == "prod"
    assert b.get("level") is None


def test_builder_errors():
    b = LabelsBuilder({"app": "web"})
    assert not b.has_err()
    b.set_err("LabelFilterErr")
    assert b.has_err()
    assert b.get_err() == "LabelFilterErr"
    assert b.labels()[ERROR_LABEL] == "LabelFilterErr"
    b.reset()
    assert b.get_err() == ""


def test_reduce_empty_is_noop():
    stage = reduce_stages([])
    assert stage.process(0, b"line", LabelsBuilder()) == (b"line", True)
    assert stage.required_label_names() == []


def test_reduce_chain_stops_on_rejection():
    stage = reduce_stages([_contains(b"foo"), _upper()])
    assert stage.process(0, b"foo bar", LabelsBuilder()) == (b"FOO BAR", True)
    assert stage.process(0, b"bar", LabelsBuilder()) == (None, False)


def test_reduce_required_labels_concatenated():
    stage = reduce_stages([_setter("a", "1"), _setter("b", "2"), _setter("a", "3")])
    assert stage.required_label_names() == ["a", "b", "a"]


def test_noop_detection():
    assert is_noop_pipeline(new_noop_pipeline())
    assert is_noop_pipeline(new_pipeline([]))
    assert not is_noop_pipeline(new_pipeline([_upper()]))
    assert not is_noop_pipeline(new_filtering_pipeline([], new_noop_pipeline()))


def test_for_stream_cached_and_reset():
    p = new_pipeline([_upper()])
    first = p.for_stream({"app": "web"})
    assert p.for_stream([("app", "web")]) is first
    assert p.for_stream({"app": "db"}) is not first
    p.reset()
    assert p.for_stream({"app": "web"}) is not first


def test_process_applies_stages_and_labels():
    p = new_pipeline([_setter("level", "info"), _upper()])
    sp = p.for_stream({"app": "web"})
    line, labels, ok = sp.process(10, b"hello")
    assert ok
    assert line == b"HELLO"
    assert labels == {"app": "web", "level": "info"}
    assert sp.base_labels() == {"app": "web"}


def test_process_drops_rejected_line():
    sp = new_pipeline([_contains(b"error")]).for_stream({"app": "web"})
    assert sp.process(0, b"all good") == (None, None, False)


def test_process_resets_builder_between_lines():
    def maybe_set(ts, line, lbs):
        if b"a" in line:
            lbs.set("has_a", "yes")
        return line, True

    sp = new_pipeline([StageFunc(maybe_set)]).for_stream({"app": "web"})
    _, first, _ = sp.process(0, b"a")
    _, second, _ = sp.process(1, b"b")
    assert first.get("has_a") == "yes"
    assert "has_a" not in second


def test_structured_metadata_normalized():
    sp = new_noop_pipeline().for_stream({"app": "web"})
    _, labels, ok = sp.process(0, b"x", {"foo.bar": "1", "1x": "2"})
    assert ok
    assert labels["foo_bar"] == "1"
    assert labels["key_1x"] == "2"


def test_str_line_stays_str():
    sp = new_pipeline([_upper()]).for_stream({})
    line, _, ok = sp.process(0, "abc")
    assert ok and line == "ABC"


def test_filtering_pipeline_drops_within_range():
    drop_errors = PipelineFilter(
        start=10,
        end=20,
        matchers=[Matcher(MatchType.EQUAL, "app", "web")],
        pipeline=new_pipeline([_contains(b"error")]),
    )
    p = new_filtering_pipeline([drop_errors], new_noop_pipeline())
    sp = p.for_stream({"app": "web"})
    assert isinstance(sp, StreamPipeline)
    assert sp.process(15, b"an error")[2] is False
    assert sp.process(15, b"fine")[0] == b"fine"
    assert sp.process(25, b"an error")[0] == b"an error"
    assert sp.base_labels() == {"app": "web"}


def test_filtering_pipeline_ignores_other_streams():
    drop_all = PipelineFilter(
        start=0,
        end=100,
        matchers=[Matcher(MatchType.EQUAL, "app", "web")],
        pipeline=new_noop_pipeline(),
    )
    p = new_filtering_pipeline([drop_all], new_noop_pipeline())
    assert p.for_stream({"app": "web"}).process(5, b"x")[2] is False
    assert p.for_stream({"app": "db"}).process(5, b"x")[0] == b"x"


def test_pipeline_stages_property():
    stage = _upper()
    assert Pipeline([stage]).stages == (stage,)