"""ForgeScript parser — converts a token stream into an AST with recovery."""

from __future__ import annotations

from forgekit.ast import Argument, Call, Document, Escape, Modifiers, Text
from forgekit.errors import ParseError, ParseErrorKind
from forgekit.lexer import Lexer, find_matching_bracket
from forgekit.tokens import ESCAPE_FUNCTIONS, MODIFIER_FLAGS, Span, Token, TokenType

Child = Text | Escape | Call


class _Sequence:
    """Nodes collected for the document body or for one argument slot."""

    __slots__ = ("nodes", "depth", "_parts", "_start", "_end")

    def __init__(self) -> None:
        self.nodes: list[Child] = []
        self.depth = 0  # literal '[' still open inside this sequence
        self._parts: list[str] = []
        self._start = 0
        self._end = 0

    def add_text(self, value: str, span: Span) -> None:
        if not self._parts:
            self._start = span.start
        self._parts.append(value)
        self._end = span.end

    def add(self, node: Child) -> None:
        self.flush()
        self.nodes.append(node)

    def flush(self) -> None:
        if self._parts:
            self.nodes.append(Text("".join(self._parts), Span(self._start, self._end)))
            self._parts.clear()


class _OpenCall:
    """A call whose closing ']' has not been reached yet."""

    __slots__ = ("dollar", "name", "modifiers", "lbracket", "args", "separators", "body")

    def __init__(
        self, dollar: Token, name: Token, modifiers: Modifiers | None, lbracket: Token
    ) -> None:
        self.dollar = dollar
        self.name = name
        self.modifiers = modifiers
        self.lbracket = lbracket
        self.args: list[Argument] = []
        self.separators: list[Token] = []
        self.body = _Sequence()

    def end_argument(self, end: int) -> None:
        self.body.flush()
        start = self.separators[-1].span.end if self.separators else self.lbracket.span.end
        self.args.append(Argument(tuple(self.body.nodes), Span(start, end)))
        self.body = _Sequence()


class Parser:
    """Parser for ForgeScript token streams.

    Open calls live on an explicit stack, so nesting depth is bounded only by
    memory. Never raises on malformed input: problems are appended to
    ``errors`` and the offending construct is recovered as text or closed at
    end of input.
    """

    def __init__(self, tokens: list[Token], source: str) -> None:
        self._tokens = tokens
        self._source = source
        self._pos = 0
        self.errors: list[ParseError] = []

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def _peek(self, offset: int = 0) -> Token:
        idx = self._pos + offset
        if idx < len(self._tokens):
            return self._tokens[idx]
        return self._tokens[-1]  # EOF

    def _at(self, *types: TokenType) -> bool:
        return self._peek().type in types

    def _at_eof(self) -> bool:
        return self._peek().type == TokenType.EOF

    def _advance(self) -> Token:
        tok = self._tokens[self._pos]
        if tok.type != TokenType.EOF:
            self._pos += 1
        return tok

    def _error(self, kind: ParseErrorKind, message: str, span: Span) -> None:
        self.errors.append(ParseError(kind, message, span))

    # ------------------------------------------------------------------
    # Document level
    # ------------------------------------------------------------------

    def parse(self) -> Document:
        root = _Sequence()
        stack: list[_OpenCall] = []

        while True:
            seq = stack[-1].body if stack else root
            tok = self._peek()

            if tok.type == TokenType.EOF:
                if not stack:
                    break
                call = self._close_at_eof(stack.pop())
                (stack[-1].body if stack else root).add(call)

            elif tok.type == TokenType.DOLLAR:
                node = self._parse_dollar()
                if isinstance(node, _OpenCall):
                    stack.append(node)
                elif isinstance(node, Text):
                    seq.add_text(node.content, node.span)
                else:
                    seq.add(node)

            elif tok.type == TokenType.ESCAPE:
                self._advance()
                seq.add(Escape(tok.raw, tok.value, tok.span))

            elif tok.type == TokenType.LBRACKET:
                seq.depth += 1
                seq.add_text(tok.raw, tok.span)
                self._advance()

            elif tok.type == TokenType.RBRACKET:
                self._advance()
                if seq.depth > 0:
                    seq.depth -= 1
                    seq.add_text(tok.raw, tok.span)
                elif stack:
                    call = self._close(stack.pop(), tok)
                    (stack[-1].body if stack else root).add(call)
                else:
                    self._error(
                        ParseErrorKind.UNBALANCED_BRACKET,
                        "unbalanced ']' with no open call; use \\] for a literal bracket",
                        tok.span,
                    )
                    seq.add_text(tok.raw, tok.span)

            elif tok.type == TokenType.SEMICOLON and stack and seq.depth == 0:
                self._advance()
                stack[-1].end_argument(tok.span.start)
                stack[-1].separators.append(tok)

            else:
                seq.add_text(tok.raw, tok.span)
                self._advance()

        root.flush()
        return Document(tuple(root.nodes), Span(0, len(self._source)))

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    def _parse_dollar(self) -> Text | Escape | _OpenCall:
        dollar = self._advance()

        modifiers = None
        if self._at(TokenType.MODIFIERS):
            modifiers = _parse_modifiers(self._advance())

        if self._at(TokenType.IDENTIFIER):
            name_tok = self._advance()
            if self._at(TokenType.LBRACKET):
                if modifiers is None and name_tok.value in ESCAPE_FUNCTIONS:
                    return self._parse_escape_function(dollar, name_tok)
                return _OpenCall(dollar, name_tok, modifiers, self._advance())
            # $name without brackets is literal text
            span = Span(dollar.span.start, name_tok.span.end)
            return Text(self._source[span.start : span.end], span)

        if self._at(TokenType.LBRACKET):
            return self._parse_empty_name(dollar)

        return Text(dollar.raw, dollar.span)

    def _close(self, call: _OpenCall, rbracket: Token) -> Call:
        call.end_argument(rbracket.span.start)
        args = call.args
        if len(args) == 1 and not args[0].nodes:
            args = []
        return Call(
            call.name.value,
            tuple(args),
            call.name.span,
            Span(call.dollar.span.start, rbracket.span.end),
            call.modifiers,
        )

    def _close_at_eof(self, call: _OpenCall) -> Call:
        end = len(self._source)
        call.end_argument(end)
        start = call.dollar.span.start
        self._error(
            ParseErrorKind.UNTERMINATED_CALL,
            f"unterminated call to ${call.name.value}: expected closing ']'",
            Span(start, end),
        )
        merged = _merge_arguments(call.args, call.separators, Span(call.lbracket.span.end, end))
        return Call(call.name.value, (merged,), call.name.span, Span(start, end), call.modifiers)

    def _parse_escape_function(self, dollar: Token, name_tok: Token) -> Escape:
        """Take the bracket content of $escape[...] verbatim."""
        self._advance()  # consume LBRACKET
        parts: list[str] = []
        depth = 1
        while not self._at_eof():
            tok = self._advance()
            if tok.type == TokenType.LBRACKET:
                depth += 1
            elif tok.type == TokenType.RBRACKET:
                depth -= 1
                if depth == 0:
                    span = Span(dollar.span.start, tok.span.end)
                    raw = self._source[span.start : span.end]
                    return Escape(raw, "".join(parts), span)
            parts.append(tok.raw)

        span = Span(dollar.span.start, len(self._source))
        self._error(
            ParseErrorKind.UNTERMINATED_CALL,
            f"unterminated ${name_tok.value}[...]: expected closing ']'",
            span,
        )
        return Escape(self._source[span.start : span.end], "".join(parts), span)

    def _parse_empty_name(self, dollar: Token) -> Text:
        """Recover `$[...]` as literal text up to its matching bracket."""
        lbracket = self._advance()
        self._error(
            ParseErrorKind.EMPTY_FUNCTION_NAME,
            "expected function name between '$' and '['",
            Span(dollar.span.start, lbracket.span.end),
        )

        end = lbracket.span.end
        depth = 1
        while depth > 0 and not self._at_eof():
            tok = self._advance()
            if tok.type == TokenType.LBRACKET:
                depth += 1
            elif tok.type == TokenType.RBRACKET:
                depth -= 1
            end = tok.span.end

        return Text(self._source[dollar.span.start : end], Span(dollar.span.start, end))


def _parse_modifiers(tok: Token) -> Modifiers:
    """Split a MODIFIERS token into its flags and optional @[count]."""
    raw = tok.raw
    silent = negated = False
    count = None
    i = 0
    while i < len(raw):
        ch = raw[i]
        if ch in MODIFIER_FLAGS:
            silent = silent or ch == "!"
            negated = negated or ch == "#"
            i += 1
            continue
        # '@[' with a matching ']', as checked by the lexer
        j = find_matching_bracket(raw, i + 1)
        count = raw[i + 2 : j]
        i = j + 1
    return Modifiers(raw, tok.span, silent=silent, negated=negated, count=count)


def _merge_arguments(args: list[Argument], separators: list[Token], span: Span) -> Argument:
    """Collapse the slots of an unterminated call into a single argument."""
    nodes: list[Text | Escape | Call] = []
    for i, arg in enumerate(args):
        if i > 0:
            sep = separators[i - 1]
            nodes.append(Text(sep.raw, sep.span))
        nodes.extend(arg.nodes)
    return Argument(tuple(_coalesce_text(nodes)), span)


def _coalesce_text(nodes: list) -> list:
    """Coalesce adjacent Text nodes into single nodes."""
    if not nodes:
        return nodes
    result = []
    for node in nodes:
        if isinstance(node, Text) and result and isinstance(result[-1], Text):
            prev = result[-1]
            result[-1] = Text(prev.content + node.content, Span(prev.span.start, node.span.end))
        else:
            result.append(node)
    return result


def parse(source: str) -> tuple[Document, list[ParseError]]:
    """Parse source text into a Document and its ordered diagnostics."""
    lexer = Lexer(source)
    tokens = lexer.tokenize()
    parser = Parser(tokens, source)
    doc = parser.parse()
    errors = sorted(lexer.errors + parser.errors, key=lambda e: (e.span.start, e.span.end))
    return doc, errors


def parse_batch(sources: list[str]) -> list[tuple[Document, list[ParseError]]]:
    """Parse independent sources, preserving input order."""
    return [parse(source) for source in sources]
