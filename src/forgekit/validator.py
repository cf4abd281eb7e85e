"""Cross-check parsed calls against a metadata catalogue."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, fields
from enum import Enum

from forgekit.ast import Argument, Call, Document, Text
from forgekit.catalogue import Catalogue
from forgekit.errors import ParseError, ParseErrorKind, UsageError, format_context
from forgekit.metadata import ArgumentSpec, FunctionMetadata
from forgekit.parser import parse
from forgekit.tokens import MUST_ESCAPE, Span
from forgekit.visitor import Visitor


class Rule(Enum):
    # Declaration order is the tie-break order for findings sharing a span
    ARGUMENTS = "arguments"
    ENUMS = "enums"
    FUNCTIONS = "functions"
    BRACKETS = "brackets"
    ESCAPES = "escapes"


_RULE_ORDER = {rule: i for i, rule in enumerate(Rule)}
_CATALOGUE_RULES = frozenset({Rule.ARGUMENTS, Rule.ENUMS, Rule.FUNCTIONS})


@dataclass(frozen=True, slots=True)
class ValidationRules:
    """Independent switches for each rule class."""

    arguments: bool = False
    enums: bool = False
    functions: bool = False
    brackets: bool = False
    escapes: bool = False

    @classmethod
    def strict(cls) -> ValidationRules:
        return cls(True, True, True, True, True)

    @classmethod
    def syntax_only(cls) -> ValidationRules:
        return cls(brackets=True, escapes=True)

    @classmethod
    def none(cls) -> ValidationRules:
        return cls()

    @classmethod
    def from_names(cls, names: Iterable[str]) -> ValidationRules:
        """Enable the named rules; raises UsageError for unknown names."""
        enabled: dict[str, bool] = {}
        for name in names:
            try:
                enabled[Rule(name.lower()).value] = True
            except ValueError:
                raise UsageError(f"unknown validation rule '{name}'") from None
        return cls(**enabled)

    def is_enabled(self, rule: Rule) -> bool:
        return getattr(self, rule.value)

    def enabled(self) -> tuple[Rule, ...]:
        return tuple(rule for rule in Rule if self.is_enabled(rule))

    @property
    def needs_catalogue(self) -> bool:
        return any(self.is_enabled(rule) for rule in _CATALOGUE_RULES)

    def to_dict(self) -> dict[str, bool]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


class FindingKind(Enum):
    UNKNOWN_FUNCTION = "UnknownFunction"
    ARGUMENT_COUNT_MISMATCH = "ArgumentCountMismatch"
    INVALID_ENUM_VALUE = "InvalidEnumValue"
    UNBALANCED_BRACKET = "UnbalancedBracket"
    UNTERMINATED_CALL = "UnterminatedCall"
    INVALID_ESCAPE = "InvalidEscape"
    UNESCAPED_CHARACTER = "UnescapedCharacter"


@dataclass(frozen=True, slots=True)
class Finding:
    """One rule violation tied to a span of the source."""

    kind: FindingKind
    rule: Rule
    message: str
    span: Span
    function: str | None = None
    suggestion: str | None = None
    expected: tuple[int, int | None] | None = None
    actual: int | None = None

    def format(self, source: str, filename: str = "input.forge") -> str:
        return format_context(self.message, self.span, source, filename, label="warning")

    def to_dict(self) -> dict[str, object]:
        out: dict[str, object] = {
            "kind": self.kind.value,
            "rule": self.rule.value,
            "message": self.message,
            "span": {"start": self.span.start, "end": self.span.end},
        }
        if self.function is not None:
            out["function"] = self.function
        if self.suggestion is not None:
            out["suggestion"] = self.suggestion
        if self.expected is not None:
            out["expected"] = {"min": self.expected[0], "max": self.expected[1]}
        if self.actual is not None:
            out["actual"] = self.actual
        return out


@dataclass(frozen=True, slots=True)
class Report:
    """Validation result for one source.

    Parse diagnostics only appear here when the brackets or escapes rule
    surfaces them; the full list stays with the caller of ``parse``.
    """

    findings: tuple[Finding, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.findings

    def by_kind(self, kind: FindingKind) -> list[Finding]:
        return [f for f in self.findings if f.kind is kind]

    def to_dict(self) -> dict[str, object]:
        return {
            "ok": self.ok,
            "findings": [f.to_dict() for f in self.findings],
        }


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def check_catalogue(catalogue: object, rules: ValidationRules) -> None:
    """Raise UsageError when the enabled rules need a catalogue that is unusable."""
    if not rules.needs_catalogue:
        return
    if catalogue is None:
        raise UsageError("validation rules require a catalogue, got None")
    if not isinstance(catalogue, Catalogue):
        raise UsageError(f"expected a Catalogue, got {type(catalogue).__name__}")
    if not catalogue.is_loaded:
        raise UsageError("catalogue has not been fetched or loaded from a cache")


def validate(
    doc: Document,
    catalogue: Catalogue | None,
    rules: ValidationRules,
    errors: Sequence[ParseError] = (),
) -> Report:
    """Validate a parsed document.

    *errors* are the diagnostics ``parse`` returned for *doc*; the brackets
    and escapes rules surface them as findings. The tree and the catalogue
    are not modified.
    """
    check_catalogue(catalogue, rules)

    # Each finding is anchored at the start of the call that owns it, or at
    # its own start when no call does; pre-order of calls is start order.
    anchored: list[tuple[int, Finding]] = []
    if rules.arguments or rules.enums or rules.functions or rules.escapes:
        checker = _CallChecker(catalogue, rules)
        checker.visit_document(doc)
        anchored.extend(checker.findings)
    anchored.extend((f.span.start, f) for f in _surface_errors(errors, rules))

    anchored.sort(key=_finding_order)
    return Report(tuple(f for _, f in anchored))


def _finding_order(anchored: tuple[int, Finding]) -> tuple[int, int, int, int]:
    anchor, finding = anchored
    return anchor, _RULE_ORDER[finding.rule], finding.span.start, finding.span.end


def validate_code(
    source: str,
    catalogue: Catalogue | None,
    rules: ValidationRules,
) -> Report:
    """Parse and validate a single source text."""
    doc, errors = parse(source)
    return validate(doc, catalogue, rules, errors)


def validate_batch(
    sources: Sequence[str],
    catalogue: Catalogue | None,
    rules: ValidationRules,
) -> list[Report]:
    """One Report per source, in input order."""
    check_catalogue(catalogue, rules)
    return [validate_code(source, catalogue, rules) for source in sources]


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


class _CallChecker(Visitor):
    def __init__(self, catalogue: Catalogue | None, rules: ValidationRules) -> None:
        self.catalogue = catalogue
        self.rules = rules
        self.findings: list[tuple[int, Finding]] = []

    def visit_call(self, node: Call) -> None:
        if self.catalogue is not None and self.rules.needs_catalogue:
            self._check_call(node, self.catalogue)

    def visit_text(self, node: Text) -> None:
        if not self.rules.escapes:
            return
        for i, ch in enumerate(node.content):
            if ch in MUST_ESCAPE:
                start = node.span.start + i
                finding = Finding(
                    FindingKind.UNESCAPED_CHARACTER,
                    Rule.ESCAPES,
                    f"unescaped '{ch}' must be written as '\\{ch}'",
                    Span(start, start + 1),
                )
                self.findings.append((start, finding))

    def _check_call(self, node: Call, catalogue: Catalogue) -> None:
        func = catalogue.get_function_exact(node.name)
        if func is None:
            if self.rules.functions:
                self.findings.append((node.span.start, _unknown_function(node, catalogue)))
            return
        if self.rules.arguments:
            mismatch = _check_arity(node, func)
            if mismatch is not None:
                self.findings.append((node.span.start, mismatch))
        if self.rules.enums:
            for i, arg in enumerate(node.arguments):
                spec = func.spec_for(i)
                if spec is not None:
                    finding = _check_enum(node, arg, spec, catalogue)
                    if finding is not None:
                        self.findings.append((node.span.start, finding))


def _unknown_function(node: Call, catalogue: Catalogue) -> Finding:
    match = catalogue.get_function(node.name)
    suggestion = match.name if match is not None else None
    message = f"unknown function '${node.name}'"
    if suggestion is not None:
        message += f"; did you mean '${suggestion.lstrip('$')}'?"
    return Finding(
        FindingKind.UNKNOWN_FUNCTION,
        Rule.FUNCTIONS,
        message,
        node.span,
        function=node.name,
        suggestion=suggestion,
    )


def _describe_range(low: int, high: int | None) -> str:
    if high is None:
        return f"at least {low}"
    if low == high:
        return f"exactly {low}"
    return f"{low} to {high}"


def _check_arity(node: Call, func: FunctionMetadata) -> Finding | None:
    count = len(node.arguments)
    low, high = func.min_args, func.max_args
    if count >= low and (high is None or count <= high):
        return None
    noun = "argument" if count == 1 else "arguments"
    return Finding(
        FindingKind.ARGUMENT_COUNT_MISMATCH,
        Rule.ARGUMENTS,
        f"'${node.name}' expects {_describe_range(low, high)} arguments, got {count} {noun}",
        node.span,
        function=node.name,
        expected=(low, high),
        actual=count,
    )


def _check_enum(
    node: Call,
    arg: Argument,
    spec: ArgumentSpec,
    catalogue: Catalogue,
) -> Finding | None:
    if spec.enum_values:
        allowed: tuple[str, ...] = spec.enum_values
        label = f"argument '{spec.name}'"
    elif spec.accepts_enum is not None:
        enum = catalogue.get_enum(spec.accepts_enum)
        if enum is None:
            return None
        allowed = enum.keys
        label = f"enum '{enum.name}'"
    else:
        return None

    value = arg.as_text()
    if value is None:
        # Nested calls are only known at evaluation time
        return None
    value = value.strip()
    if not value and not spec.required:
        return None
    if value in allowed:
        return None

    shown = ", ".join(allowed[:8]) + (", ..." if len(allowed) > 8 else "")
    return Finding(
        FindingKind.INVALID_ENUM_VALUE,
        Rule.ENUMS,
        f"invalid value {value!r} for {label} of '${node.name}' (expected one of: {shown})",
        arg.span,
        function=node.name,
    )


_ERROR_RULES = {
    ParseErrorKind.UNBALANCED_BRACKET: (Rule.BRACKETS, FindingKind.UNBALANCED_BRACKET),
    ParseErrorKind.UNTERMINATED_CALL: (Rule.BRACKETS, FindingKind.UNTERMINATED_CALL),
    ParseErrorKind.INVALID_ESCAPE: (Rule.ESCAPES, FindingKind.INVALID_ESCAPE),
}


def _surface_errors(errors: Iterable[ParseError], rules: ValidationRules) -> list[Finding]:
    surfaced: list[Finding] = []
    for error in errors:
        mapping = _ERROR_RULES.get(error.kind)
        if mapping is None:
            continue
        rule, kind = mapping
        if rules.is_enabled(rule):
            surfaced.append(Finding(kind, rule, error.message, error.span))
    return surfaced
