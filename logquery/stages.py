"""Log pipeline building blocks: label matchers, the labels builder, stages and pipelines.

Log lines are handled as ``bytes``; a pipeline given a ``str`` line returns a ``str``.
"""

from __future__ import annotations

import enum
import json
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional, Protocol, Sequence, Union

ERROR_LABEL = "__error__"
ERROR_DETAILS_LABEL = "__error_details__"

LabelsLike = Union[Mapping[str, str], Iterable[tuple]]
Line = Union[bytes, str]


def _to_dict(labels: Optional[LabelsLike]) -> dict[str, str]:
    if labels is None:
        return {}
    return dict(labels.items() if isinstance(labels, Mapping) else labels)


def _labels_key(labels: Mapping[str, str]) -> tuple:
    return tuple(sorted(labels.items()))


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


class LabelFilterType(enum.IntEnum):
    """Comparison performed by a label filter."""

    EQUAL = 0
    NOT_EQUAL = 1
    GREATER_THAN = 2
    GREATER_THAN_OR_EQUAL = 3
    LESSER_THAN = 4
    LESSER_THAN_OR_EQUAL = 5

    def __str__(self) -> str:
        return _LABEL_FILTER_SYMBOLS[self]


_LABEL_FILTER_SYMBOLS = {
    LabelFilterType.EQUAL: "==",
    LabelFilterType.NOT_EQUAL: "!=",
    LabelFilterType.GREATER_THAN: ">",
    LabelFilterType.GREATER_THAN_OR_EQUAL: ">=",
    LabelFilterType.LESSER_THAN: "<",
    LabelFilterType.LESSER_THAN_OR_EQUAL: "<=",
}


class MatchType(str, enum.Enum):
    """Kind of label matcher."""

    EQUAL = "="
    NOT_EQUAL = "!="
    REGEX = "=~"
    NOT_REGEX = "!~"

    def __str__(self) -> str:
        return self.value


@dataclass
class Matcher:
    """Matches a label value; regular expressions are anchored at both ends."""

    type: MatchType
    name: str
    value: str
    _regex: Optional[re.Pattern] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.type = MatchType(self.type)
        if self.type in (MatchType.REGEX, MatchType.NOT_REGEX):
            self._regex = re.compile(self.value)

    def matches(self, value: str) -> bool:
        if self.type is MatchType.EQUAL:
            return value == self.value
        if self.type is MatchType.NOT_EQUAL:
            return value != self.value
        found = self._regex.fullmatch(value) is not None
        return found if self.type is MatchType.REGEX else not found

    def __str__(self) -> str:
        return f"{self.name}{self.type.value}{_quote(self.value)}"


class LabelsBuilder:
    """Holds a stream's base labels plus the labels and error set while processing a line."""

    def __init__(self, base: Optional[LabelsLike] = None) -> None:
        self._base = _to_dict(base)
        self._added: dict[str, str] = {}
        self._deleted: set[str] = set()
        self._err = ""
        self._err_details = ""

    @property
    def base_labels(self) -> dict[str, str]:
        return dict(sorted(self._base.items()))

    def get(self, name: str) -> Optional[str]:
        """Current value of a label, or None when it is absent."""
        if name in self._added:
            return self._added[name]
        if name in self._deleted:
            return None
        return self._base.get(name)

    def set(self, name: str, value: str) -> None:
        self._added[name] = value
        self._deleted.discard(name)

    def delete(self, name: str) -> None:
        self._added.pop(name, None)
        self._deleted.add(name)

    def has_err(self) -> bool:
        return bool(self._err)

    def get_err(self) -> str:
        return self._err

    def set_err(self, err: str) -> None:
        self._err = err

    def set_error_details(self, details: str) -> None:
        self._err_details = details

    def reset(self) -> None:
        """Drop everything set since the last reset, keeping the base labels."""
        self._added.clear()
        self._deleted.clear()
        self._err = ""
        self._err_details = ""

    def labels(self) -> dict[str, str]:
        """All current labels, error labels included, sorted by name."""
        merged = {k: v for k, v in self._base.items() if k not in self._deleted}
        merged.update(self._added)
        if self._err:
            merged[ERROR_LABEL] = self._err
        if self._err_details:
            merged[ERROR_DETAILS_LABEL] = self._err_details
        return dict(sorted(merged.items()))


class _Stage(Protocol):
    def process(self, ts: int, line: bytes, lbs: LabelsBuilder) -> tuple[Any, bool]: ...

    def required_label_names(self) -> list[str]: ...


class StageFunc:
    """A stage made from a plain function ``fn(ts, line, lbs) -> (line, ok)``."""

    def __init__(
        self,
        fn: Callable[[int, bytes, LabelsBuilder], tuple[Any, bool]],
        required_labels: Optional[Sequence[str]] = None,
    ) -> None:
        self._fn = fn
        self._required = list(required_labels or [])

    def process(self, ts: int, line: bytes, lbs: LabelsBuilder) -> tuple[Any, bool]:
        return self._fn(ts, line, lbs)

    def required_label_names(self) -> list[str]:
        return list(self._required)


NOOP_STAGE = StageFunc(lambda ts, line, lbs: (line, True))


def reduce_stages(stages: Sequence[_Stage]) -> _Stage:
    """Combine stages into one that runs them in order and stops at the first rejection."""
    if not stages:
        return NOOP_STAGE
    chain = list(stages)
    required = [name for s in chain for name in s.required_label_names()]

    def run(ts: int, line: bytes, lbs: LabelsBuilder) -> tuple[Any, bool]:
        for stage in chain:
            line, ok = stage.process(ts, line, lbs)
            if not ok:
                return None, False
        return line, True

    return StageFunc(run, required)


def _normalize_label(name: str) -> str:
    if not name:
        return name
    name = "".join(c if c.isalpha() or c.isdigit() else "_" for c in name)
    if name[0].isdigit():
        return "key_" + name
    if name.startswith("_") and not name.startswith("__"):
        return "key" + name
    return name


class StreamPipeline:
    """Runs a pipeline's stages over the lines of one stream."""

    def __init__(self, stages: Sequence[_Stage], builder: LabelsBuilder) -> None:
        self._stages = list(stages)
        self._builder = builder

    def base_labels(self) -> dict[str, str]:
        return self._builder.base_labels

    def process(
        self, ts: int, line: Line, structured_metadata: Optional[LabelsLike] = None
    ) -> tuple[Optional[Line], Optional[dict[str, str]], bool]:
        """Return the transformed line, its labels and whether it was kept."""
        text = isinstance(line, str)
        data = line.encode("utf-8") if text else bytes(line)
        builder = self._builder
        builder.reset()
        for name, value in _to_dict(structured_metadata).items():
            builder.set(_normalize_label(name), value)
        for stage in self._stages:
            data, ok = stage.process(ts, data, builder)
            if not ok:
                return None, None, False
        out = data.decode("utf-8", errors="replace") if text else data
        return out, builder.labels(), True


class Pipeline:
    """Creates and caches one stream pipeline per label set."""

    def __init__(self, stages: Sequence[_Stage] = ()) -> None:
        self._stages = list(stages)
        self._noop = not self._stages
        self._lock = threading.Lock()
        self._streams: dict[tuple, StreamPipeline] = {}

    @property
    def stages(self) -> tuple:
        return tuple(self._stages)

    def for_stream(self, labels: LabelsLike) -> StreamPipeline:
        base = _to_dict(labels)
        key = _labels_key(base)
        with self._lock:
            pipeline = self._streams.get(key)
            if pipeline is None:
                pipeline = StreamPipeline(self._stages, LabelsBuilder(base))
                self._streams[key] = pipeline
            return pipeline

    def reset(self) -> None:
        with self._lock:
            self._streams.clear()


@dataclass
class PipelineFilter:
    """Entries of matching streams between ``start`` and ``end`` (inclusive) that
    ``pipeline`` keeps are dropped."""

    start: int
    end: int
    matchers: list[Matcher]
    pipeline: Pipeline


class _FilteringStreamPipeline(StreamPipeline):
    def __init__(self, filters: list[tuple[int, int, StreamPipeline]], inner: StreamPipeline) -> None:
        super().__init__((), LabelsBuilder())
        self._filters = filters
        self._inner = inner

    def base_labels(self) -> dict[str, str]:
        return self._inner.base_labels()

    def process(self, ts, line, structured_metadata=None):
        for start, end, pipeline in self._filters:
            if ts < start or ts > end:
                continue
            _, _, matches = pipeline.process(ts, line, structured_metadata)
            if matches:
                return None, None, False
        return self._inner.process(ts, line, structured_metadata)


class _FilteringPipeline(Pipeline):
    def __init__(self, filters: Sequence[PipelineFilter], inner: Pipeline) -> None:
        super().__init__()
        self._noop = False
        self._filters = list(filters)
        self._inner = inner

    def for_stream(self, labels: LabelsLike) -> StreamPipeline:
        base = _to_dict(labels)
        stream_filters = [
            (f.start, f.end, f.pipeline.for_stream(base))
            for f in self._filters
            if all(m.matches(base.get(m.name, "")) for m in f.matchers)
        ]
        return _FilteringStreamPipeline(stream_filters, self._inner.for_stream(base))

    def reset(self) -> None:
        self._inner.reset()


def new_noop_pipeline() -> Pipeline:
    """A pipeline that passes every line through unchanged."""
    return Pipeline()


def new_pipeline(stages: Sequence[_Stage]) -> Pipeline:
    """A pipeline running the given stages; a no-op pipeline when there are none."""
    if not stages:
        return new_noop_pipeline()
    return Pipeline(stages)


def is_noop_pipeline(pipeline: Any) -> bool:
    return isinstance(pipeline, Pipeline) and pipeline._noop


def new_filtering_pipeline(filters: Sequence[PipelineFilter], pipeline: Pipeline) -> Pipeline:
    """Wrap ``pipeline`` so that entries caught by ``filters`` are dropped before it runs."""
    return _FilteringPipeline(filters, pipeline)