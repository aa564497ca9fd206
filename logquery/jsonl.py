"""Log output as JSON Lines, one object per entry, for scripts."""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Mapping, Optional, TextIO

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


@dataclass
class LogOutputOptions:
    """Options shared by log outputs."""

    timezone: tzinfo = field(default=timezone.utc)
    no_labels: bool = False
    color: bool = False


def _format_offset(offset: Optional[timedelta]) -> str:
    if not offset:
        return "Z"
    total = int(offset.total_seconds())
    sign = "-" if total < 0 else "+"
    total = abs(total)
    return f"{sign}{total // 3600:02d}:{total % 3600 // 60:02d}"


def _format_timestamp(ts: datetime) -> str:
    stamp = ts.strftime("%Y-%m-%dT%H:%M:%S")
    if ts.microsecond:
        stamp += "." + f"{ts.microsecond:06d}".rstrip("0")
    return stamp + _format_offset(ts.utcoffset())


def _encode(obj: Mapping) -> str:
    text = json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return "".join(_HTML_ESCAPES.get(ch, ch) for ch in text)


class JSONLOutput:
    """Writes each entry as a JSON object holding its timestamp, line and labels."""

    def __init__(self, writer: Optional[TextIO] = None, options: Optional[LogOutputOptions] = None) -> None:
        self.writer = writer if writer is not None else sys.stdout
        self.options = options if options is not None else LogOutputOptions()

    def format_and_println(
        self, ts: datetime, labels: Mapping[str, str], max_label_width: int, line: str
    ) -> None:
        """Write one entry; naive timestamps are taken as UTC."""
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        entry: dict = {
            "timestamp": _format_timestamp(ts.astimezone(self.options.timezone)),
            "line": line,
        }
        if not self.options.no_labels:
            entry["labels"] = dict(labels)
        self.writer.write(_encode(entry) + "\n")

    def with_writer(self, writer: TextIO) -> "JSONLOutput":
        """A copy of this output that writes to ``writer``."""
        return JSONLOutput(writer, self.options)