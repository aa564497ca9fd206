"""Sample extractors: turn log lines into numeric samples with grouped labels."""

from __future__ import annotations

import threading
from typing import Any, Callable, Optional, Sequence

from logquery.label_filter import _parse_float, parse_bytes, parse_duration
from logquery.stages import (
    NOOP_STAGE,
    LabelsBuilder,
    LabelsLike,
    PipelineFilter,
    _labels_key,
    _to_dict,
    reduce_stages,
)
from logquery.stats import _seconds

CONVERT_BYTES = "bytes"
CONVERT_DURATION = "duration"
CONVERT_FLOAT = "float"

ERR_SAMPLE_EXTRACTION = "SampleExtractionErr"

Sample = tuple[float, Optional[dict[str, str]], bool]


def count_extractor(line: bytes) -> float:
    """Every line counts as one."""
    return 1.0


def bytes_extractor(line: bytes) -> float:
    """The size of the line in bytes."""
    return float(len(line))


def convert_float(value: str) -> float:
    return _parse_float(value)


def convert_duration(value: str) -> float:
    """Parse a duration and return it in seconds."""
    return _seconds(parse_duration(value))


def convert_bytes(value: str) -> float:
    return float(parse_bytes(value))


_CONVERSIONS: dict[str, Callable[[str], float]] = {
    CONVERT_BYTES: convert_bytes,
    CONVERT_DURATION: convert_duration,
    CONVERT_FLOAT: convert_float,
}


def _as_bytes(line: Any) -> bytes:
    return line.encode("utf-8") if isinstance(line, str) else bytes(line)


class _Grouping:
    def __init__(self, groups: Optional[Sequence[str]], without: bool, no_labels: bool) -> None:
        self.groups = None if groups is None else frozenset(groups)
        self.without = without
        self.no_labels = no_labels

    def apply(self, builder: LabelsBuilder) -> dict[str, str]:
        # An error must survive grouping, so error results keep every label.
        if builder.has_err():
            return builder.labels()
        if self.no_labels:
            return {}
        labels = builder.labels()
        if self.groups is None:
            return labels
        if self.without:
            return {k: v for k, v in labels.items() if k not in self.groups}
        return {k: v for k, v in labels.items() if k in self.groups}


class _StreamExtractor:
    def __init__(self, builder: LabelsBuilder, grouping: _Grouping) -> None:
        self._builder = builder
        self._grouping = grouping

    def base_labels(self) -> dict[str, str]:
        return self._builder.base_labels

    def _start(self, structured_metadata: Optional[LabelsLike]) -> None:
        self._builder.reset()
        for name, value in _to_dict(structured_metadata).items():
            self._builder.set(name, value)


class _StreamLineSampleExtractor(_StreamExtractor):
    def __init__(self, stage: Any, extractor: Callable[[bytes], float],
                 builder: LabelsBuilder, grouping: _Grouping) -> None:
        super().__init__(builder, grouping)
        self._stage = stage
        self._extractor = extractor

    def process(self, ts: int, line: Any, structured_metadata: Optional[LabelsLike] = None) -> Sample:
        """Return the sample value, its grouped labels and whether the line was kept."""
        self._start(structured_metadata)
        data = _as_bytes(line)
        if self._stage is not NOOP_STAGE:
            data, ok = self._stage.process(ts, data, self._builder)
            if not ok:
                return 0.0, None, False
        return self._extractor(data), self._grouping.apply(self._builder), True


class _StreamLabelSampleExtractor(_StreamExtractor):
    def __init__(self, parent: LabelSampleExtractor, builder: LabelsBuilder) -> None:
        super().__init__(builder, parent._grouping)
        self._parent = parent

    def process(self, ts: int, line: Any, structured_metadata: Optional[LabelsLike] = None) -> Sample:
        """Return the label's converted value, the grouped labels and whether the line was kept."""
        parent = self._parent
        builder = self._builder
        self._start(structured_metadata)
        data, ok = parent._pre_stage.process(ts, _as_bytes(line), builder)
        if not ok:
            return 0.0, None, False
        raw = builder.get(parent.label_name)
        if not raw:
            # A line without the label simply yields no sample.
            return 0.0, None, False
        try:
            value = parent._convert(raw)
        except ValueError as exc:
            value = 0.0
            builder.set_err(ERR_SAMPLE_EXTRACTION)
            builder.set_error_details(str(exc))
        _, ok = parent._post_filter.process(ts, data, builder)
        if not ok:
            return 0.0, None, False
        return value, self._grouping.apply(builder), True


class _CachingExtractor:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._streams: dict[tuple, Any] = {}

    def _make(self, base: dict[str, str]) -> Any:
        raise NotImplementedError

    def for_stream(self, labels: LabelsLike) -> Any:
        """The stream extractor for a label set, created once and then reused."""
        base = _to_dict(labels)
        key = _labels_key(base)
        with self._lock:
            extractor = self._streams.get(key)
            if extractor is None:
                extractor = self._make(base)
                self._streams[key] = extractor
            return extractor


class LineSampleExtractor(_CachingExtractor):
    """Runs stages over a line and then measures the line with a line extractor."""

    def __init__(self, ex: Callable[[bytes], float], stages: Sequence[Any],
                 groups: Optional[Sequence[str]], without: bool, no_labels: bool) -> None:
        super().__init__()
        self._stage = reduce_stages(stages)
        self._extractor = ex
        self._grouping = _Grouping(groups, without, no_labels)

    def _make(self, base: dict[str, str]) -> _StreamLineSampleExtractor:
        return _StreamLineSampleExtractor(self._stage, self._extractor, LabelsBuilder(base), self._grouping)

    def for_stream(self, labels: LabelsLike) -> _StreamLineSampleExtractor:
        return super().for_stream(labels)


class LabelSampleExtractor(_CachingExtractor):
    """Takes the sample value from a label, converted as bytes, a duration or a float."""

    def __init__(self, label_name: str, convert: Callable[[str], float],
                 groups: Sequence[str], without: bool, no_labels: bool,
                 pre_stages: Sequence[Any], post_filter: Any) -> None:
        super().__init__()
        self.label_name = label_name
        self._convert = convert
        self._pre_stage = reduce_stages(pre_stages)
        self._post_filter = post_filter
        self._grouping = _Grouping(groups, without, no_labels)

    def _make(self, base: dict[str, str]) -> _StreamLabelSampleExtractor:
        return _StreamLabelSampleExtractor(self, LabelsBuilder(base))

    def for_stream(self, labels: LabelsLike) -> _StreamLabelSampleExtractor:
        return super().for_stream(labels)


class _FilteringStreamExtractor:
    def __init__(self, filters: list[tuple[int, int, Any]], inner: Any) -> None:
        self._filters = filters
        self._inner = inner

    def base_labels(self) -> dict[str, str]:
        return self._inner.base_labels()

    def process(self, ts: int, line: Any, structured_metadata: Optional[LabelsLike] = None) -> Sample:
        for start, end, pipeline in self._filters:
            if ts < start or ts > end:
                continue
            _, _, matches = pipeline.process(ts, line, structured_metadata)
            if matches:
                return 0.0, None, False
        return self._inner.process(ts, line)


class FilteringSampleExtractor:
    """Drops entries caught by pipeline filters before extracting samples."""

    def __init__(self, filters: Sequence[PipelineFilter], extractor: Any) -> None:
        self._filters = list(filters)
        self._extractor = extractor

    def for_stream(self, labels: LabelsLike) -> _FilteringStreamExtractor:
        base = _to_dict(labels)
        stream_filters = [
            (f.start, f.end, f.pipeline.for_stream(base))
            for f in self._filters
            if all(m.matches(base.get(m.name, "")) for m in f.matchers)
        ]
        return _FilteringStreamExtractor(stream_filters, self._extractor.for_stream(base))


def new_line_sample_extractor(ex: Callable[[bytes], float], stages: Sequence[Any],
                              groups: Optional[Sequence[str]], without: bool,
                              no_labels: bool) -> LineSampleExtractor:
    return LineSampleExtractor(ex, stages, groups, without, no_labels)


def label_extractor_with_stages(label_name: str, conversion: str,
                                groups: Optional[Sequence[str]], without: bool, no_labels: bool,
                                pre_stages: Sequence[Any],
                                post_filter: Any = None) -> LabelSampleExtractor:
    """Build an extractor reading ``label_name``; raises ValueError for an unknown conversion."""
    convert = _CONVERSIONS.get(conversion)
    if convert is None:
        raise ValueError(f"unsupported conversion operation {conversion}")
    group_list = list(groups or [])
    if not group_list or without:
        without = True
        group_list = sorted(group_list + [label_name])
    return LabelSampleExtractor(
        label_name, convert, group_list, without, no_labels,
        pre_stages, NOOP_STAGE if post_filter is None else post_filter,
    )


def new_filtering_sample_extractor(filters: Sequence[PipelineFilter], extractor: Any) -> FilteringSampleExtractor:
    return FilteringSampleExtractor(filters, extractor)