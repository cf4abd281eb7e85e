"""Read-only traversal protocol over ForgeScript documents."""

from __future__ import annotations

from forgekit.ast import Argument, Call, Document, Escape, Node, Text


class Visitor:
    """Pre-order walker: a Call is visited before its arguments, left to right.

    Subclasses override the ``visit_*`` hooks they care about; the walker
    descends into every Call and Argument on its own, using an explicit
    stack, so arbitrarily deep trees are safe. ``visit_node`` runs first for
    every node, before the hook for its kind.
    """

    def visit_document(self, doc: Document) -> None:
        self.walk(doc.children)

    def visit(self, node: Node) -> None:
        self.walk((node,))

    def walk(self, nodes: tuple[Node, ...] | list[Node]) -> None:
        stack: list[Node] = list(reversed(nodes))
        while stack:
            node = stack.pop()
            self._dispatch(node)
            if isinstance(node, Call):
                stack.extend(reversed(node.arguments))
            elif isinstance(node, Argument):
                stack.extend(reversed(node.nodes))

    def _dispatch(self, node: Node) -> None:
        if isinstance(node, Text):
            self.visit_node(node)
            self.visit_text(node)
        elif isinstance(node, Escape):
            self.visit_node(node)
            self.visit_escape(node)
        elif isinstance(node, Call):
            self.visit_node(node)
            self.visit_call(node)
        elif isinstance(node, Argument):
            self.visit_node(node)
            self.visit_argument(node)
        else:
            raise TypeError(f"not a ForgeScript node: {type(node).__name__}")

    def visit_node(self, node: Node) -> None:
        pass

    def visit_text(self, node: Text) -> None:
        pass

    def visit_escape(self, node: Escape) -> None:
        pass

    def visit_call(self, node: Call) -> None:
        pass

    def visit_argument(self, node: Argument) -> None:
        pass


class FunctionCollector(Visitor):
    """Collects every call name in document order, duplicates kept."""

    def __init__(self) -> None:
        self.functions: list[str] = []

    def visit_call(self, node: Call) -> None:
        self.functions.append(node.name)


class NodeCounter(Visitor):
    """Counts visited nodes per kind."""

    def __init__(self) -> None:
        self.counts: dict[str, int] = {"Text": 0, "Escape": 0, "Call": 0, "Argument": 0}

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def visit_node(self, node: Node) -> None:
        self.counts[type(node).__name__] += 1
