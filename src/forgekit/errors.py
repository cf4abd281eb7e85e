"""Diagnostic and exception types with formatted source context."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from forgekit.tokens import Span, locate


class ParseErrorKind(Enum):
    UNTERMINATED_CALL = "UnterminatedCall"
    UNEXPECTED_TOKEN = "UnexpectedToken"
    UNBALANCED_BRACKET = "UnbalancedBracket"
    INVALID_ESCAPE = "InvalidEscape"
    EMPTY_FUNCTION_NAME = "EmptyFunctionName"


@dataclass(frozen=True, slots=True)
class ParseError:
    """A recoverable syntax problem collected during parsing."""

    kind: ParseErrorKind
    message: str
    span: Span

    def format(self, source: str, filename: str = "input.forge") -> str:
        return format_context(self.message, self.span, source, filename)

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "span": {"start": self.span.start, "end": self.span.end},
        }


def format_context(
    message: str,
    span: Span,
    source: str,
    filename: str = "input.forge",
    label: str = "error",
) -> str:
    """Render a message with the offending source line and a caret underline."""
    start = locate(source, span.start)
    end = locate(source, span.end)
    lines = source.splitlines(keepends=True)
    line_idx = start.line - 1
    col = start.column

    if 0 <= line_idx < len(lines):
        source_line = lines[line_idx].rstrip("\n").rstrip("\r")
    else:
        source_line = ""

    # Underline the full span when on one line, otherwise to end of line
    if end.line == start.line:
        underline_len = max(1, end.column - col)
    else:
        underline_len = max(1, len(source_line) - col + 1)

    pad = " " * (col - 1)
    carets = "^" * underline_len

    line_num = str(start.line)
    gutter_width = len(line_num) + 1

    blank_gutter = " " * gutter_width + "|"
    line_gutter = f"{line_num:>{gutter_width - 1}} |"

    return (
        f"{label}: {message}\n"
        f"{' ' * gutter_width}--> {filename}:{start.line}:{col}\n"
        f"{blank_gutter}\n"
        f"{line_gutter} {source_line}\n"
        f"{blank_gutter} {pad}{carets}"
    )


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ForgeKitError(Exception):
    """Base class for all forgekit exceptions."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UsageError(ForgeKitError):
    """Raised when a caller violates an API contract."""


class CatalogueError(ForgeKitError):
    """Base class for metadata catalogue failures."""


class FetchFailed(CatalogueError):
    """A metadata document could not be retrieved."""

    def __init__(self, source: str, document_kind: str, cause: BaseException | str) -> None:
        self.source = source
        self.document_kind = document_kind
        self.cause = cause
        super().__init__(f"failed to fetch {document_kind} for '{source}': {cause}")


class MalformedDocument(CatalogueError):
    """A fetched metadata document did not have the expected shape."""

    def __init__(self, source: str, document_kind: str, detail: str) -> None:
        self.source = source
        self.document_kind = document_kind
        self.detail = detail
        super().__init__(f"malformed {document_kind} document from '{source}': {detail}")


class MalformedCache(CatalogueError):
    """Raised by import when a cache document is not well-formed."""


class CacheLoadError(CatalogueError):
    """A persisted cache entry was missing or unreadable."""

    def __init__(self, key: str, detail: str) -> None:
        self.key = key
        self.detail = detail
        super().__init__(f"cannot load cache '{key}': {detail}")
