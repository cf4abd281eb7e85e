"""Token types, spans, and character classification helpers."""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from enum import Enum, auto


class TokenType(Enum):
    # Structural (single-character)
    DOLLAR = auto()  # $
    LBRACKET = auto()  # [
    RBRACKET = auto()  # ]
    SEMICOLON = auto()  # ;

    # Content
    MODIFIERS = auto()  # ! # @[n] run between '$' and a name
    IDENTIFIER = auto()  # ident_char+ directly after '$' or its modifiers
    TEXT = auto()  # any other run of characters, newlines included
    ESCAPE = auto()  # value holds the resolved character

    EOF = auto()


@dataclass(frozen=True, slots=True)
class Span:
    """Half-open source range [start, end) as string offsets."""

    start: int
    end: int

    def __len__(self) -> int:
        return self.end - self.start

    def contains(self, other: Span) -> bool:
        return self.start <= other.start and other.end <= self.end


@dataclass(frozen=True, slots=True)
class Position:
    """Source position, 1-based line and column, 0-based offset."""

    line: int
    column: int
    offset: int


@dataclass(frozen=True, slots=True)
class Token:
    """A single lexer token with resolved value and original source text."""

    type: TokenType
    value: str
    raw: str
    span: Span


# Escape codes recognized after a backslash, each resolving to itself
ESCAPABLE = frozenset("\\$[];`")

# Characters that must never appear unescaped in literal text
MUST_ESCAPE = frozenset("`")

# Call names whose bracket content is taken verbatim instead of parsed
ESCAPE_FUNCTIONS = frozenset({"escape"})

# Flag characters accepted between '$' and a call name; '@' takes a bracketed count
MODIFIER_FLAGS = frozenset("!#")


def is_ident_char(ch: str) -> bool:
    """Return True if ch is a valid identifier character."""
    return ch.isascii() and (ch.isalnum() or ch == "_")


class LineIndex:
    """Maps string offsets to line/column positions for one source text."""

    def __init__(self, source: str) -> None:
        self._starts = [0]
        for i, ch in enumerate(source):
            if ch == "\n":
                self._starts.append(i + 1)

    def locate(self, offset: int) -> Position:
        line_idx = bisect.bisect_right(self._starts, offset) - 1
        return Position(line_idx + 1, offset - self._starts[line_idx] + 1, offset)


def locate(source: str, offset: int) -> Position:
    """Convenience function: position of a single offset in source."""
    return LineIndex(source).locate(offset)
