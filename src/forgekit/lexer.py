"""ForgeScript lexer — converts source text into a flat token stream."""

from __future__ import annotations

from forgekit.errors import ParseError, ParseErrorKind
from forgekit.tokens import ESCAPABLE, MODIFIER_FLAGS, Span, Token, TokenType, is_ident_char

_STRUCTURAL = {
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
    ";": TokenType.SEMICOLON,
}

# Characters that end a TEXT run
_TEXT_STOP = frozenset("\\$[];")


class Lexer:
    """Tokenize ForgeScript source text into a stream of Token objects.

    Malformed escapes never abort lexing: they become ESCAPE tokens whose
    value is the raw text, and an InvalidEscape diagnostic is recorded in
    ``errors``.
    """

    def __init__(self, source: str) -> None:
        self._source = source
        self._pos = 0
        self._tokens: list[Token] = []
        self.errors: list[ParseError] = []

    def tokenize(self) -> list[Token]:
        """Tokenize the full source and return the token list."""
        while self._pos < len(self._source):
            ch = self._peek()
            if ch == "\\":
                self._lex_escape()
            elif ch == "$":
                self._lex_dollar()
            elif ch in _STRUCTURAL:
                start = self._pos
                self._advance()
                self._emit(_STRUCTURAL[ch], ch, ch, start)
            else:
                self._lex_text()

        self._emit(TokenType.EOF, "", "", self._pos)
        return self._tokens

    # ------------------------------------------------------------------
    # Position helpers
    # ------------------------------------------------------------------

    def _peek(self, offset: int = 0) -> str:
        idx = self._pos + offset
        if idx < len(self._source):
            return self._source[idx]
        return ""

    def _advance(self) -> str:
        ch = self._source[self._pos]
        self._pos += 1
        return ch

    def _emit(self, tt: TokenType, value: str, raw: str, start: int) -> Token:
        tok = Token(tt, value, raw, Span(start, self._pos))
        self._tokens.append(tok)
        return tok

    # ------------------------------------------------------------------
    # Token kinds
    # ------------------------------------------------------------------

    def _lex_dollar(self) -> None:
        start = self._pos
        self._advance()
        self._emit(TokenType.DOLLAR, "$", "$", start)

        end = self._scan_modifiers(self._pos)
        if end > self._pos and is_ident_char(self._peek(end - self._pos)):
            start = self._pos
            self._pos = end
            raw = self._source[start:end]
            self._emit(TokenType.MODIFIERS, raw, raw, start)

        if not is_ident_char(self._peek()):
            return

        start = self._pos
        while self._pos < len(self._source) and is_ident_char(self._peek()):
            self._advance()
        name = self._source[start : self._pos]
        self._emit(TokenType.IDENTIFIER, name, name, start)

    def _scan_modifiers(self, pos: int) -> int:
        """End offset of the modifier run starting at *pos* (== pos if none)."""
        source = self._source
        while pos < len(source):
            ch = source[pos]
            if ch in MODIFIER_FLAGS:
                pos += 1
            elif ch == "@" and source.startswith("[", pos + 1):
                close = find_matching_bracket(source, pos + 1)
                if close == -1:
                    break
                pos = close + 1
            else:
                break
        return pos

    def _lex_text(self) -> None:
        start = self._pos
        while self._pos < len(self._source) and self._peek() not in _TEXT_STOP:
            self._advance()
        text = self._source[start : self._pos]
        self._emit(TokenType.TEXT, text, text, start)

        idx = text.find("\0")
        while idx != -1:
            span = Span(start + idx, start + idx + 1)
            self.errors.append(
                ParseError(ParseErrorKind.UNEXPECTED_TOKEN, "NUL character in source", span)
            )
            idx = text.find("\0", idx + 1)

    def _lex_escape(self) -> None:
        start = self._pos
        self._advance()  # consume backslash

        if self._pos >= len(self._source):
            self._invalid_escape("\\", start, "unexpected end of input after '\\'")
            return

        ch = self._advance()
        raw = f"\\{ch}"
        if ch in ESCAPABLE:
            self._emit(TokenType.ESCAPE, ch, raw, start)
            return

        self._invalid_escape(raw, start, f"invalid escape sequence '{raw}'")

    def _invalid_escape(self, raw: str, start: int, message: str) -> None:
        tok = self._emit(TokenType.ESCAPE, raw, raw, start)
        self.errors.append(ParseError(ParseErrorKind.INVALID_ESCAPE, message, tok.span))


def find_matching_bracket(source: str, open_pos: int) -> int:
    """Offset of the ']' closing the '[' at *open_pos*, or -1."""
    depth = 0
    for i in range(open_pos, len(source)):
        ch = source[i]
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
            if depth == 0:
                return i
    return -1


def tokenize(source: str) -> list[Token]:
    """Convenience function: tokenize source text and return token list."""
    return Lexer(source).tokenize()
