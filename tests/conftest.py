"""Shared test fixtures and helpers."""

from __future__ import annotations

from typing import Any

import pytest

from forgekit.ast import Argument, Call, Document
from forgekit.catalogue import Catalogue
from forgekit.errors import ParseError
from forgekit.lexer import tokenize
from forgekit.metadata import DocumentKind
from forgekit.parser import parse
from forgekit.tokens import Token, TokenType

FUNCTIONS: list[dict[str, Any]] = [
    {
        "name": "$sendMessage",
        "aliases": ["$send"],
        "description": "Send a message",
        "args": [
            {"name": "content", "type": "String", "required": True},
            {"name": "returnId", "type": "Boolean", "required": False},
        ],
    },
    {
        "name": "$ping",
        "description": "Client latency",
        "args": [],
    },
    {
        "name": "$color",
        "args": [
            {"name": "value", "required": True, "enum_name": "Colors"},
        ],
    },
    {
        "name": "$addField",
        "args": [
            {"name": "name", "required": True},
            {"name": "value", "required": True},
            {"name": "inline", "required": False, "enum": ["true", "false"]},
        ],
    },
    {
        "name": "$log",
        "args": [
            {"name": "values", "required": True, "rest": True},
        ],
    },
    {
        "name": "$getUser",
        "aliases": ["$user"],
        "args": [{"name": "id", "required": False}],
    },
]

ENUMS: dict[str, Any] = {
    "Colors": {"Red": "red", "Green": "green", "Blue": "blue"},
    "Booleans": ["true", "false"],
}

EVENTS: list[dict[str, Any]] = [
    {"name": "messageCreate", "description": "A message was sent"},
    {
        "name": "interactionCreate",
        "description": "An interaction was received",
        "fields": [{"name": "customId", "description": "Component id"}],
    },
]


class FakeFetcher:
    """In-memory DocumentFetcher: url -> payload, or an exception to raise."""

    def __init__(self, responses: dict[str, Any]) -> None:
        self.responses = responses
        self.requested: list[str] = []

    def fetch_json(self, url: str) -> Any:
        self.requested.append(url)
        if url not in self.responses:
            raise ConnectionError(f"unreachable: {url}")
        result = self.responses[url]
        if isinstance(result, BaseException):
            raise result
        return result


@pytest.fixture
def lex():
    """Return a helper that tokenizes source and returns tokens (excluding EOF)."""

    def _lex(source: str) -> list[Token]:
        tokens = tokenize(source)
        # Strip trailing EOF for convenience
        return [t for t in tokens if t.type != TokenType.EOF]

    return _lex


@pytest.fixture
def parse_source():
    """Return a helper that parses source and returns (Document, errors)."""

    def _parse(source: str) -> tuple[Document, list[ParseError]]:
        return parse(source)

    return _parse


@pytest.fixture
def catalogue() -> Catalogue:
    """A loaded catalogue populated from the sample documents."""
    cat = Catalogue()
    cat.merge_document(DocumentKind.FUNCTIONS, FUNCTIONS)
    cat.merge_document(DocumentKind.ENUMS, ENUMS)
    cat.merge_document(DocumentKind.EVENTS, EVENTS)
    return cat


def assert_types(tokens: list[Token], expected: list[TokenType]) -> None:
    """Assert that the token types match the expected list."""
    actual = [t.type for t in tokens]
    assert actual == expected, f"Expected {expected}, got {actual}"


def assert_values(tokens: list[Token], expected: list[str]) -> None:
    """Assert that the token values match the expected list."""
    actual = [t.value for t in tokens]
    assert actual == expected, f"Expected {expected}, got {actual}"


def assert_call(node: object, name: str, num_args: int = 0) -> None:
    """Assert basic properties of a Call node."""
    assert isinstance(node, Call), f"Expected Call, got {type(node).__name__}"
    assert node.name == name, f"Expected name '{name}', got '{node.name}'"
    assert len(node.arguments) == num_args, (
        f"Expected {num_args} args, got {len(node.arguments)}"
    )


def arg_text(arg: Argument) -> str:
    """Literal text of an argument; fails if it contains a nested call."""
    text = arg.as_text()
    assert text is not None, "argument contains a nested call"
    return text
