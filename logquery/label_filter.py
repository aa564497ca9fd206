"""Label filters that compare a label's value as bytes, a duration, a number or a string.

Byte sizes are integers of bytes and durations are integers of nanoseconds.
"""

from __future__ import annotations

import json
import math
import operator
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Optional, Sequence

from logquery.stages import ERROR_LABEL, LabelFilterType, LabelsBuilder, Matcher
from logquery.stats import _format_duration, _humanize_bytes

ERR_LABEL_FILTER = "LabelFilterErr"

_MAX_UINT64 = 2 ** 64 - 1
_MAX_DURATION = 2 ** 63

_COMPARE: dict[LabelFilterType, Callable[[Any, Any], bool]] = {
    LabelFilterType.EQUAL: operator.eq,
    LabelFilterType.NOT_EQUAL: operator.ne,
    LabelFilterType.GREATER_THAN: operator.gt,
    LabelFilterType.GREATER_THAN_OR_EQUAL: operator.ge,
    LabelFilterType.LESSER_THAN: operator.lt,
    LabelFilterType.LESSER_THAN_OR_EQUAL: operator.le,
}

_KB, _KIB = 1000, 1024
_BYTE_SIZES = {
    "b": 1, "": 1,
    "kib": _KIB, "kb": _KB, "ki": _KIB, "k": _KB,
    "mib": _KIB ** 2, "mb": _KB ** 2, "mi": _KIB ** 2, "m": _KB ** 2,
    "gib": _KIB ** 3, "gb": _KB ** 3, "gi": _KIB ** 3, "g": _KB ** 3,
    "tib": _KIB ** 4, "tb": _KB ** 4, "ti": _KIB ** 4, "t": _KB ** 4,
    "pib": _KIB ** 5, "pb": _KB ** 5, "pi": _KIB ** 5, "p": _KB ** 5,
    "eib": _KIB ** 6, "eb": _KB ** 6, "ei": _KIB ** 6, "e": _KB ** 6,
}

_DURATION_UNITS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}

_NUMBER = re.compile(r"([0-9]*)(?:(\.)([0-9]*))?")
_UNIT = re.compile(r"[^0-9.]*")


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _parse_float(text: str) -> float:
    def invalid() -> ValueError:
        return ValueError(f"strconv.ParseFloat: parsing {_quote(text)}: invalid syntax")

    if not text or text != text.strip() or "_" in text:
        raise invalid()
    try:
        value = float(text)
    except ValueError:
        body = text.lstrip("+-")
        if not body.lower().startswith("0x"):
            raise invalid() from None
        try:
            value = float.fromhex(text)
        except (ValueError, OverflowError):
            raise invalid() from None
    if math.isinf(value) and "inf" not in text.lower():
        raise ValueError(f"strconv.ParseFloat: parsing {_quote(text)}: value out of range")
    return value


def parse_bytes(text: str) -> int:
    """Parse a human byte size such as ``1KB``, ``2 MiB`` or ``1,000``."""
    end = 0
    for ch in text:
        if ch not in "0123456789.,":
            break
        end += 1
    number = _parse_float(text[:end].replace(",", ""))
    unit = text[end:].strip().lower()
    multiplier = _BYTE_SIZES.get(unit)
    if multiplier is None:
        raise ValueError(f"unhandled size name: {unit}")
    value = number * multiplier
    if value >= float(_MAX_UINT64):
        raise ValueError(f"too large: {text}")
    return int(value)


def format_bytes(value: int) -> str:
    """Format a byte count in SI units, e.g. ``1.0 kB``."""
    return _humanize_bytes(int(value))


def parse_duration(text: str) -> int:
    """Parse a duration such as ``300ms`` or ``-1.5h2m`` into nanoseconds."""
    def invalid() -> ValueError:
        return ValueError(f"time: invalid duration {_quote(text)}")

    rest = text
    negative = False
    if rest and rest[0] in "+-":
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return 0
    if not rest:
        raise invalid()
    total = 0
    while rest:
        number = _NUMBER.match(rest)
        whole, dot, frac = number.group(1), number.group(2), number.group(3) or ""
        if not rest or not (whole or frac) or (not whole and not dot):
            raise invalid()
        rest = rest[number.end():]
        unit = _UNIT.match(rest).group(0)
        if not unit:
            raise ValueError(f"time: missing unit in duration {_quote(text)}")
        multiplier = _DURATION_UNITS.get(unit)
        if multiplier is None:
            raise ValueError(f"time: unknown unit {_quote(unit)} in duration {_quote(text)}")
        rest = rest[len(unit):]
        part = int(whole or "0") * multiplier
        if frac:
            part += int(frac) * multiplier // 10 ** len(frac)
        total += part
        if total > _MAX_DURATION:
            raise invalid()
    if not negative and total == _MAX_DURATION:
        raise invalid()
    return -total if negative else total


def format_duration(nanoseconds: int) -> str:
    """Format nanoseconds as a duration, e.g. ``1h2m3.5s`` or ``250ms``."""
    return _format_duration(int(nanoseconds))


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    out = format(Decimal(repr(value)), "f")
    if "." in out:
        out = out.rstrip("0").rstrip(".")
    return out


def _unique(names: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for name in names:
        if name and name not in seen:
            seen.add(name)
            out.append(name)
    return out


def _label_value(name: str, lbs: LabelsBuilder) -> str:
    if name == ERROR_LABEL:
        return lbs.get_err()
    value = lbs.get(name)
    return "" if value is None else value


def _convert_and_compare(
    name: str,
    ty: LabelFilterType,
    target: Any,
    convert: Callable[[str], Any],
    line: Any,
    lbs: LabelsBuilder,
) -> tuple[Any, bool]:
    raw = lbs.get(name)
    if raw is None:
        return line, False
    try:
        value = convert(raw)
    except ValueError as exc:
        if not lbs.has_err():
            lbs.set_err(ERR_LABEL_FILTER)
            lbs.set_error_details(str(exc))
        return line, True
    return line, _COMPARE[ty](value, target)


class BinaryLabelFilter:
    """Combines two label filters with ``and`` or ``or``."""

    def __init__(self, left: Any, right: Any, is_and: bool) -> None:
        self.left = left
        self.right = right
        self.is_and = is_and

    def process(self, ts: int, line: Any, lbs: LabelsBuilder) -> tuple[Any, bool]:
        line, left_ok = self.left.process(ts, line, lbs)
        if not self.is_and and left_ok:
            return line, True
        line, right_ok = self.right.process(ts, line, lbs)
        if not self.is_and:
            return line, left_ok or right_ok
        return line, left_ok and right_ok

    def required_label_names(self) -> list[str]:
        return _unique(self.left.required_label_names() + self.right.required_label_names())

    def __str__(self) -> str:
        joiner = " , " if self.is_and else " or "
        return f"( {self.left}{joiner}{self.right} )"


def new_and_label_filter(left: Any, right: Any) -> BinaryLabelFilter:
    return BinaryLabelFilter(left, right, True)


def new_or_label_filter(left: Any, right: Any) -> BinaryLabelFilter:
    return BinaryLabelFilter(left, right, False)


class NoopLabelFilter:
    """Keeps every line."""

    def __init__(self, matcher: Optional[Matcher] = None) -> None:
        self.matcher = matcher

    def process(self, ts: int, line: Any, lbs: LabelsBuilder) -> tuple[Any, bool]:
        return line, True

    def required_label_names(self) -> list[str]:
        return []

    def __str__(self) -> str:
        return str(self.matcher) if self.matcher is not None else ""


def reduce_and_label_filter(filters: Sequence[Any]) -> Any:
    """Fold filters into one joined by ``and``; none gives a filter that keeps everything."""
    if not filters:
        return NoopLabelFilter()
    result = filters[0]
    for f in filters[1:]:
        result = new_and_label_filter(result, f)
    return result


@dataclass
class BytesLabelFilter:
    """Compares a label holding a byte size (``1KB``) with ``value`` bytes."""

    ty: LabelFilterType
    name: str
    value: int

    def __post_init__(self) -> None:
        self.ty = LabelFilterType(self.ty)

    def process(self, ts: int, line: Any, lbs: LabelsBuilder) -> tuple[Any, bool]:
        return _convert_and_compare(self.name, self.ty, self.value, parse_bytes, line, lbs)

    def required_label_names(self) -> list[str]:
        return [self.name]

    def __str__(self) -> str:
        size = "".join(ch for ch in format_bytes(self.value) if not ch.isspace())
        return f"{self.name}{self.ty}{size}"


@dataclass
class DurationLabelFilter:
    """Compares a label holding a duration (``5s``) with ``value`` nanoseconds."""

    ty: LabelFilterType
    name: str
    value: int

    def __post_init__(self) -> None:
        self.ty = LabelFilterType(self.ty)

    def process(self, ts: int, line: Any, lbs: LabelsBuilder) -> tuple[Any, bool]:
        return _convert_and_compare(self.name, self.ty, self.value, parse_duration, line, lbs)

    def required_label_names(self) -> list[str]:
        return [self.name]

    def __str__(self) -> str:
        return f"{self.name}{self.ty}{format_duration(self.value)}"


@dataclass
class NumericLabelFilter:
    """Compares a label holding a number (``5.2``) with ``value``."""

    ty: LabelFilterType
    name: str
    value: float

    def __post_init__(self) -> None:
        self.ty = LabelFilterType(self.ty)

    def process(self, ts: int, line: Any, lbs: LabelsBuilder) -> tuple[Any, bool]:
        return _convert_and_compare(self.name, self.ty, self.value, _parse_float, line, lbs)

    def required_label_names(self) -> list[str]:
        return [self.name]

    def __str__(self) -> str:
        return f"{self.name}{self.ty}{_format_float(float(self.value))}"


class StringLabelFilter:
    """Matches a label's value as a string; an absent label compares as empty.

    This is the only filter that can match on the ``__error__`` label.
    """

    def __init__(self, matcher: Matcher) -> None:
        self.matcher = matcher

    @property
    def name(self) -> str:
        return self.matcher.name

    def process(self, ts: int, line: Any, lbs: LabelsBuilder) -> tuple[Any, bool]:
        return line, self.matcher.matches(_label_value(self.matcher.name, lbs))

    def required_label_names(self) -> list[str]:
        return [self.matcher.name]

    def __str__(self) -> str:
        return str(self.matcher)