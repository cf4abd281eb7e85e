"""AST node types for parsed ForgeScript documents."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from forgekit.tokens import Span


@dataclass(frozen=True, slots=True)
class Text:
    """Literal run of characters, newlines included, no escaping applied."""

    content: str
    span: Span


@dataclass(frozen=True, slots=True)
class Escape:
    """Escape sequence (or escape function) with its resolved literal value."""

    raw: str
    resolved: str
    span: Span


@dataclass(frozen=True, slots=True)
class Argument:
    """One semicolon-delimited slot between a call's brackets."""

    nodes: tuple[Text | Escape | Call, ...]
    span: Span

    def is_empty(self) -> bool:
        """True when the slot holds nothing but whitespace text."""
        return all(isinstance(n, Text) and not n.content.strip() for n in self.nodes)

    def as_text(self) -> str | None:
        """Literal value of the slot, or None if it contains a nested call."""
        parts: list[str] = []
        for node in self.nodes:
            if isinstance(node, Text):
                parts.append(node.content)
            elif isinstance(node, Escape):
                parts.append(node.resolved)
            else:
                return None
        return "".join(parts)


@dataclass(frozen=True, slots=True)
class Modifiers:
    """Flags written between '$' and the call name, e.g. ``$!#@[2]name``."""

    raw: str
    span: Span
    silent: bool = False  # !
    negated: bool = False  # #
    count: str | None = None  # @[...] content, verbatim


@dataclass(frozen=True, slots=True)
class Call:
    """A function invocation: $name[arg;arg;...], optionally $!name[...] etc."""

    name: str
    arguments: tuple[Argument, ...]
    name_span: Span
    span: Span
    modifiers: Modifiers | None = None


Node = Union[Text, Escape, Call, Argument]


@dataclass(frozen=True, slots=True)
class Document:
    """Root document node."""

    children: tuple[Text | Escape | Call, ...]
    span: Span
