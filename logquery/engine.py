"""Engine helpers: result types, option defaults, scalar matrices and stream reading.

Timestamps and durations are integers of nanoseconds; sample times are milliseconds.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterable

DEFAULT_BLOCKED_QUERY_MESSAGE = "blocked by policy"
DEFAULT_MAX_LOOK_BACK_PERIOD = 30 * 1_000_000_000

_NS_PER_MS = 1_000_000
_NS_PER_S = 1_000_000_000
_LAST_ENTRY_MIN_TIME = -100 * _NS_PER_S


class Direction(enum.IntEnum):
    """Order in which log entries are read."""

    FORWARD = 0
    BACKWARD = 1


@dataclass
class Entry:
    """A log line and its timestamp in nanoseconds."""

    timestamp: int
    line: str


@dataclass
class Stream:
    """Entries sharing one label set."""

    labels: str
    entries: list[Entry] = field(default_factory=list)


@dataclass
class FPoint:
    """A float sample at ``t`` milliseconds."""

    t: int
    f: float


@dataclass
class Series:
    """Samples of one metric."""

    metric: dict[str, str] = field(default_factory=dict)
    floats: list[FPoint] = field(default_factory=list)


@dataclass
class EngineOpts:
    """Query engine options; a zero look-back period means the default."""

    max_look_back_period: int = 0
    log_executing_query: bool = True

    def apply_default(self) -> None:
        if self.max_look_back_period == 0:
            self.max_look_back_period = DEFAULT_MAX_LOOK_BACK_PERIOD


def _to_millis(ns: int) -> int:
    # Truncate toward zero, as integer division of nanoseconds does.
    q = abs(ns) // _NS_PER_MS
    return q if ns >= 0 else -q


def populate_matrix_from_scalar(value: float, start: int, end: int, step: int) -> list[Series]:
    """A single series holding ``value`` at every step from ``start`` to ``end`` inclusive."""
    if step <= 0:
        raise ValueError("step must be positive")
    series = Series(floats=[FPoint(_to_millis(ts), value) for ts in range(start, end + 1, step)])
    return [series]


def read_streams(
    entries: Iterable[tuple[str, Entry]], size: int, direction: Direction, interval: int
) -> list[Stream]:
    """Group up to ``size`` (labels, entry) pairs into streams sorted by labels.

    With a non-zero ``interval`` only entries at least that far from the last
    kept one, in the reading direction, are kept.
    """
    streams: dict[str, Stream] = {}
    kept = 0
    last_entry = _LAST_ENTRY_MIN_TIME
    source = iter(entries)
    while kept < size:
        try:
            labels, entry = next(source)
        except StopIteration:
            break
        ts = entry.timestamp
        forward = direction == Direction.FORWARD and ts >= last_entry + interval
        backward = direction == Direction.BACKWARD and ts <= last_entry - interval
        if interval == 0 or last_entry < 0 or forward or backward:
            stream = streams.get(labels)
            if stream is None:
                stream = streams[labels] = Stream(labels=labels)
            stream.entries.append(entry)
            last_entry = ts
            kept += 1
    return sorted(streams.values(), key=lambda s: s.labels)