"""Read-only analyses over parsed documents: counts, depth, names, stats."""

from __future__ import annotations

from dataclasses import dataclass

from forgekit.ast import Argument, Call, Document, Escape, Node, Text
from forgekit.tokens import Span
from forgekit.visitor import FunctionCollector, NodeCounter, Visitor

# Lower-cased markers of embedded script in literal text
_SCRIPT_MARKERS = ("${", "<script", "javascript:")


def count_nodes(doc: Document) -> int:
    """Total number of nodes below the document root, nested ones included."""
    total = 0
    stack: list[Node] = list(doc.children)
    while stack:
        node = stack.pop()
        total += 1
        if isinstance(node, Call):
            stack.extend(node.arguments)
        elif isinstance(node, Argument):
            stack.extend(node.nodes)
    return total


def count_node_types(doc: Document) -> dict[str, int]:
    """Mapping from node kind to its number of occurrences."""
    counter = NodeCounter()
    counter.visit_document(doc)
    return dict(counter.counts)


def max_nesting_depth(doc: Document) -> int:
    """Deepest Call-within-Argument-within-Call level; the root is depth 0."""
    deepest = 0
    stack: list[tuple[Call, int]] = [(c, 1) for c in doc.children if isinstance(c, Call)]
    while stack:
        call, depth = stack.pop()
        deepest = max(deepest, depth)
        for arg in call.arguments:
            stack.extend((part, depth + 1) for part in arg.nodes if isinstance(part, Call))
    return deepest


def collect_functions(doc: Document) -> list[str]:
    """Call names in document order, gathered through the visitor protocol."""
    collector = FunctionCollector()
    collector.visit_document(doc)
    return collector.functions


def extract_function_names(doc: Document) -> list[str]:
    """Call names in document order, gathered with an explicit stack."""
    names: list[str] = []
    stack: list[Text | Escape | Call] = list(reversed(doc.children))
    while stack:
        node = stack.pop()
        if isinstance(node, Call):
            names.append(node.name)
            for arg in reversed(node.arguments):
                stack.extend(reversed(arg.nodes))
    return names


def extract_text_nodes(doc: Document) -> list[tuple[str, Span]]:
    """Every Text node as (content, span), in document order."""

    class _TextCollector(Visitor):
        def __init__(self) -> None:
            self.texts: list[tuple[str, Span]] = []

        def visit_text(self, node: Text) -> None:
            self.texts.append((node.content, node.span))

    collector = _TextCollector()
    collector.visit_document(doc)
    return collector.texts


def flatten(doc: Document) -> list[Node]:
    """All nodes in pre-order."""

    class _Flattener(Visitor):
        def __init__(self) -> None:
            self.nodes: list[Node] = []

        def visit_node(self, node: Node) -> None:
            self.nodes.append(node)

    flattener = _Flattener()
    flattener.visit_document(doc)
    return flattener.nodes


def source_slice(source: str, span: Span) -> str:
    """The text a span covers, clamped to the source bounds."""
    return source[span.start : min(span.end, len(source))]


def contains_javascript(doc: Document) -> bool:
    """Heuristic check for embedded script markers in literal content.

    This is a substring scan, not a parser: it looks for ``${``, ``<script``
    and ``javascript:`` in Text and Escape content and may miss obfuscated
    script.
    """
    for node in flatten(doc):
        if isinstance(node, Text):
            content = node.content
        elif isinstance(node, Escape):
            content = node.resolved
        else:
            continue
        lowered = content.lower()
        if any(marker in lowered for marker in _SCRIPT_MARKERS):
            return True
    return False


@dataclass(frozen=True, slots=True)
class AstStats:
    """Aggregate statistics about a document."""

    total_nodes: int
    text_nodes: int
    escape_nodes: int
    argument_nodes: int
    function_calls: int
    max_depth: int
    unique_functions: int
    function_names: tuple[str, ...]

    def to_dict(self) -> dict[str, object]:
        return {
            "total_nodes": self.total_nodes,
            "text_nodes": self.text_nodes,
            "escape_nodes": self.escape_nodes,
            "argument_nodes": self.argument_nodes,
            "function_calls": self.function_calls,
            "max_depth": self.max_depth,
            "unique_functions": self.unique_functions,
            "function_names": list(self.function_names),
        }


def calculate_stats(doc: Document) -> AstStats:
    counts = count_node_types(doc)
    names = sorted(set(extract_function_names(doc)))
    return AstStats(
        total_nodes=count_nodes(doc),
        text_nodes=counts["Text"],
        escape_nodes=counts["Escape"],
        argument_nodes=counts["Argument"],
        function_calls=counts["Call"],
        max_depth=max_nesting_depth(doc),
        unique_functions=len(names),
        function_names=tuple(names),
    )
