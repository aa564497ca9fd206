"""Filters that look for IP addresses matching a single address, a CIDR or a range."""

from __future__ import annotations

import enum
import ipaddress
import json
from dataclasses import dataclass
from typing import Optional, Union

from logquery.stages import LabelFilterType, LabelsBuilder

INVALID_PATTERN = "ip: invalid pattern"
INVALID_OPERATION = "ip: invalid operation"

IPV4_CHARSET = frozenset(b"0123456789.")
IPV6_CHARSET = frozenset(b"0123456789abcdefABCDEF:.")
_DIGITS = frozenset(b"0123456789")
_HEX = frozenset(b"0123456789abcdefABCDEF")
_COLON = ord(":")
_DOT = ord(".")

_Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class IPFilterError(ValueError):
    """Raised for an invalid IP pattern or an unsupported operation."""


class LineMatchType(enum.IntEnum):
    """Kind of line filter."""

    EQUAL = 0
    NOT_EQUAL = 1
    REGEXP = 2
    NOT_REGEXP = 3
    PATTERN = 4
    NOT_PATTERN = 5

    def __str__(self) -> str:
        return ("|=", "!=", "|~", "!~", "|>", "!>")[self.value]


@dataclass(frozen=True)
class _IPRange:
    first: _Address
    last: _Address

    def contains(self, ip: _Address) -> bool:
        return ip.version == self.first.version and self.first <= ip <= self.last


def _as_bytes(line: Union[bytes, str]) -> bytes:
    return line.encode("utf-8") if isinstance(line, str) else bytes(line)


def _parse_matcher(pattern: str):
    try:
        return ipaddress.ip_address(pattern)
    except ValueError:
        pass
    _, slash, bits = pattern.partition("/")
    if slash and bits.isascii() and bits.isdigit() and (bits == "0" or not bits.startswith("0")):
        try:
            return ipaddress.ip_network(pattern, strict=False)
        except ValueError:
            pass
    low, dash, high = pattern.partition("-")
    if dash and low:
        try:
            first, last = ipaddress.ip_address(low), ipaddress.ip_address(high)
        except ValueError:
            first = last = None
        if first is not None and first.version == last.version and first <= last:
            return _IPRange(first, last)
    raise IPFilterError(f"{INVALID_PATTERN}: {json.dumps(pattern, ensure_ascii=False)}")


def _contains(matcher, ip: _Address) -> bool:
    if isinstance(matcher, _IPRange):
        return matcher.contains(ip)
    if isinstance(matcher, (ipaddress.IPv4Network, ipaddress.IPv6Network)):
        return ip.version == matcher.version and ip in matcher
    return matcher == ip


def _ipv4_hint(line: bytes, i: int) -> bool:
    return line[i] in _DIGITS and _DOT in (line[i + 1], line[i + 2], line[i + 3])


def _ipv6_hint(line: bytes, i: int) -> bool:
    p = line[i:i + 5]
    if p[0] == _COLON and p[1] == _COLON and p[2] in _HEX:
        return True
    for width in range(1, 5):
        if all(c in _HEX for c in p[:width]) and p[width] == _COLON:
            return True
    return False


class _IPFilter:
    def __init__(self, pattern: str) -> None:
        self.pattern = pattern
        self.matcher = _parse_matcher(pattern)

    def _try(self, line: bytes, start: int, charset: frozenset) -> tuple[bool, int]:
        end = start
        while end < len(line) and line[end] in charset:
            end += 1
        span = end - start
        try:
            ip = ipaddress.ip_address(line[start:end].decode("ascii"))
        except ValueError:
            return False, span
        if _contains(self.matcher, ip):
            return True, 0
        return False, span

    def filter(self, line: bytes) -> bool:
        """Whether any IP address found in ``line`` matches the pattern."""
        n = len(line)
        i = 0
        while i < n:
            if i + 3 < n and _ipv4_hint(line, i):
                found, span = self._try(line, i, IPV4_CHARSET)
                if found:
                    return True
                i += span + 1
                continue
            if i + 4 < n and _ipv6_hint(line, i):
                found, span = self._try(line, i, IPV6_CHARSET)
                if found:
                    return True
                i += span + 1
                continue
            i += 1
        return False


class IPLineFilter:
    """Keeps (or, with NOT_EQUAL, drops) lines holding an IP address matching the pattern."""

    def __init__(self, pattern: str, ty: LineMatchType = LineMatchType.EQUAL) -> None:
        if ty not in (LineMatchType.EQUAL, LineMatchType.NOT_EQUAL):
            raise IPFilterError(INVALID_OPERATION)
        self.ty = LineMatchType(ty)
        self._ip = _IPFilter(pattern)

    @property
    def pattern(self) -> str:
        return self._ip.pattern

    def filter(self, line: Union[bytes, str]) -> bool:
        found = self._ip.filter(_as_bytes(line))
        return not found if self.ty is LineMatchType.NOT_EQUAL else found

    def process(self, ts: int, line, lbs: Optional[LabelsBuilder]) -> tuple:
        return line, self.filter(line)

    def required_label_names(self) -> list[str]:
        return []


class IPLabelFilter:
    """Filters on whether the value of a label holds an IP address matching the pattern.

    An invalid pattern does not raise; it is kept for ``pattern_error`` and
    every line is then rejected.
    """

    def __init__(self, pattern: str, label: str, ty: LabelFilterType = LabelFilterType.EQUAL) -> None:
        self.pattern = pattern
        self.label = label
        self.ty = LabelFilterType(ty)
        self._ip: Optional[_IPFilter]
        self._pattern_error: Optional[IPFilterError]
        try:
            self._ip = _IPFilter(pattern)
            self._pattern_error = None
        except IPFilterError as exc:
            self._ip = None
            self._pattern_error = exc

    def pattern_error(self) -> Optional[IPFilterError]:
        return self._pattern_error

    def _matches(self, lbs: LabelsBuilder) -> bool:
        if lbs.has_err():
            return True
        value = lbs.get(self.label)
        if value is None or self._ip is None:
            return False
        if self.ty is LabelFilterType.EQUAL:
            return self._ip.filter(value.encode("utf-8"))
        if self.ty is LabelFilterType.NOT_EQUAL:
            return not self._ip.filter(value.encode("utf-8"))
        return False

    def process(self, ts: int, line, lbs: LabelsBuilder) -> tuple:
        return line, self._matches(lbs)

    def required_label_names(self) -> list[str]:
        return [self.label]

    def __str__(self) -> str:
        eq = str(LabelFilterType.NOT_EQUAL) if self.ty is LabelFilterType.NOT_EQUAL else "="
        return f"{self.label}{eq}ip({json.dumps(self.pattern, ensure_ascii=False)})"