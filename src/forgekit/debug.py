"""Human-readable AST dump, stable across runs for diffing."""

from __future__ import annotations

import io
import sys
from typing import TextIO

from forgekit.ast import Argument, Call, Document, Escape, Text


def format_ast(doc: Document) -> str:
    """Render the tree one node per line with two-space indentation."""
    buf = io.StringIO()
    buf.write(f"Document {doc.span.start}..{doc.span.end}\n")
    # (node, depth, argument index); walked with a stack so depth is unbounded
    stack: list[tuple[Text | Escape | Call | Argument, int, int]] = [
        (child, 1, 0) for child in reversed(doc.children)
    ]
    while stack:
        node, depth, index = stack.pop()
        buf.write(_indent(depth))
        buf.write(_describe(node, index))
        buf.write("\n")
        if isinstance(node, Call):
            stack.extend(
                (arg, depth + 1, i) for i, arg in reversed(list(enumerate(node.arguments)))
            )
        elif isinstance(node, Argument):
            stack.extend((part, depth + 1, 0) for part in reversed(node.nodes))
    return buf.getvalue()


def dump_ast(doc: Document, *, file: TextIO = sys.stderr) -> None:
    """Print a human-readable AST tree to *file*."""
    file.write(format_ast(doc))


def _indent(depth: int) -> str:
    return "  " * depth


def _describe(node: Text | Escape | Call | Argument, index: int) -> str:
    span = f"{node.span.start}..{node.span.end}"
    if isinstance(node, Text):
        return f"Text {span}: {node.content!r}"
    if isinstance(node, Escape):
        return f"Escape {span}: {node.raw!r} -> {node.resolved!r}"
    if isinstance(node, Call):
        modifiers = node.modifiers.raw if node.modifiers is not None else ""
        return f"Call {span}: ${modifiers}{node.name}"
    return f"Argument {index} {span}"
