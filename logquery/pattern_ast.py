"""Nodes of a parsed line pattern (literals and ``<name>`` captures) and their validation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Union

UNDERSCORE = "_"

ERR_NO_CAPTURE = "at least one capture is required"
ERR_INVALID_EXPR = "invalid expression"
ERR_CAPTURE_NOT_ALLOWED = "named captures are not allowed"


class PatternError(ValueError):
    """Raised when a pattern expression is not valid."""


@dataclass(frozen=True)
class Capture:
    """A ``<name>`` capture; ``<_>`` is unnamed."""

    name: str

    def __str__(self) -> str:
        return f"<{self.name}>"

    def is_unnamed(self) -> bool:
        return self.name == UNDERSCORE


@dataclass(frozen=True)
class Literals:
    """Literal text that must appear as is."""

    data: bytes

    def __str__(self) -> str:
        return self.data.decode("utf-8", errors="replace")


Node = Union[Capture, Literals]


def runes_to_literals(runes: Iterable[str]) -> Literals:
    """UTF-8 encode a sequence of characters; invalid code points become U+FFFD."""
    text = "".join("\ufffd" if 0xD800 <= ord(r) <= 0xDFFF else r for r in runes)
    return Literals(text.encode("utf-8"))


class Expr(list):
    """A sequence of pattern nodes."""

    def captures(self) -> list[str]:
        """Names of the named captures, in order."""
        return [n.name for n in self if isinstance(n, Capture) and not n.is_unnamed()]

    def capture_count(self) -> int:
        return len(self.captures())

    def has_capture(self) -> bool:
        return self.capture_count() != 0

    def validate(self) -> None:
        """Raise PatternError unless there is a named capture, no two captures
        are adjacent and no capture name repeats."""
        if not self.has_capture():
            raise PatternError(ERR_NO_CAPTURE)
        self._validate_no_consecutive_captures()
        seen: set[str] = set()
        for name in self.captures():
            if name in seen:
                raise PatternError(f"duplicate capture name ({name}): {ERR_INVALID_EXPR}")
            seen.add(name)

    def _validate_no_consecutive_captures(self) -> None:
        for current, following in zip(self, self[1:]):
            if isinstance(current, Capture) and isinstance(following, Capture):
                raise PatternError(
                    f"found consecutive capture '{current}{following}': {ERR_INVALID_EXPR}"
                )

    def validate_no_named_captures(self) -> None:
        """Raise PatternError if any capture other than ``<_>`` is present."""
        for node in self:
            if isinstance(node, Capture) and not node.is_unnamed():
                raise PatternError(f"{ERR_CAPTURE_NOT_ALLOWED}: found '{node}'")