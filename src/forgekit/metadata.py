"""Metadata records for functions, enums, and events, and their JSON shape."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from forgekit.errors import MalformedDocument

logger = logging.getLogger(__name__)

GITHUB_RAW_BASE = "https://raw.githubusercontent.com"


def normalize_name(name: str) -> str:
    """Lookup key for a function name: leading '$' dropped, lower-cased."""
    if name.startswith("$"):
        name = name[1:]
    return name.lower()


class DocumentKind(Enum):
    FUNCTIONS = "functions"
    ENUMS = "enums"
    EVENTS = "events"


class SourceKind(Enum):
    CUSTOM = "Custom"
    GITHUB = "GitHub"


class FetchStatus(Enum):
    NOT_FETCHED = "not_fetched"
    OK = "ok"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ArgumentSpec:
    """Declaration of one argument slot of a function."""

    name: str
    type: str = "string"
    required: bool = False
    accepts_enum: str | None = None
    variadic: bool = False
    description: str = ""
    enum_values: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class FunctionMetadata:
    """Definition of a known function."""

    name: str
    aliases: frozenset[str] = frozenset()
    arguments: tuple[ArgumentSpec, ...] = ()
    description: str = ""

    @property
    def min_args(self) -> int:
        """Position of the last required fixed slot, plus one."""
        needed = 0
        for i, spec in enumerate(self.arguments):
            if spec.required and not spec.variadic:
                needed = i + 1
        return needed

    @property
    def max_args(self) -> int | None:
        """Slot count, or None when the trailing slot is variadic."""
        if self.arguments and self.arguments[-1].variadic:
            return None
        return len(self.arguments)

    def spec_for(self, index: int) -> ArgumentSpec | None:
        """The slot declaration governing argument *index*."""
        if index < len(self.arguments):
            return self.arguments[index]
        if self.arguments and self.arguments[-1].variadic:
            return self.arguments[-1]
        return None


@dataclass(frozen=True, slots=True)
class EnumMetadata:
    """Named enumeration: ordered key -> display value pairs."""

    name: str
    values: tuple[tuple[str, str], ...]

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(k for k, _ in self.values)

    def __contains__(self, key: object) -> bool:
        return any(k == key for k, _ in self.values)


@dataclass(frozen=True, slots=True)
class EventField:
    name: str
    description: str = ""


@dataclass(frozen=True, slots=True)
class EventMetadata:
    name: str
    description: str = ""
    fields: tuple[EventField, ...] = ()


@dataclass(frozen=True, slots=True)
class Source:
    """A registered metadata origin for one file extension."""

    extension: str
    kind: SourceKind
    functions_url: str | None = None
    enums_url: str | None = None
    events_url: str | None = None
    repo: str | None = None
    branch: str | None = None
    last_fetch_status: FetchStatus = FetchStatus.NOT_FETCHED
    errors: tuple[str, ...] = field(default=(), compare=False)

    @classmethod
    def custom(
        cls,
        extension: str,
        functions_url: str | None = None,
        enums_url: str | None = None,
        events_url: str | None = None,
    ) -> Source:
        return cls(extension, SourceKind.CUSTOM, functions_url, enums_url, events_url)

    @classmethod
    def github(cls, extension: str, repo: str, branch: str) -> Source:
        base = f"{GITHUB_RAW_BASE}/{repo}/{branch}"
        return cls(
            extension,
            SourceKind.GITHUB,
            functions_url=f"{base}/functions.json",
            enums_url=f"{base}/enums.json",
            events_url=f"{base}/events.json",
            repo=repo,
            branch=branch,
        )

    def urls(self) -> dict[DocumentKind, str]:
        """Configured document URLs; omitted kinds are not fetched."""
        configured = {
            DocumentKind.FUNCTIONS: self.functions_url,
            DocumentKind.ENUMS: self.enums_url,
            DocumentKind.EVENTS: self.events_url,
        }
        return {kind: url for kind, url in configured.items() if url}


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value
    raise TypeError(f"expected string, got {type(value).__name__}")


def _type_name(value: Any) -> str:
    if value is None or value == "":
        return "string"
    if isinstance(value, str):
        return value
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return "|".join(value)
    raise TypeError(f"unsupported argument type {value!r}")


def decode_argument(raw: Mapping[str, Any]) -> ArgumentSpec:
    if not isinstance(raw, Mapping):
        raise TypeError("argument entry must be an object")
    name = _str(raw.get("name"))
    if not name:
        raise ValueError("argument entry without a name")
    enum_name = raw.get("accepts_enum", raw.get("enum_name", raw.get("enumName")))
    inline = raw.get("enum") or ()
    if not isinstance(inline, (list, tuple)):
        raise TypeError("inline enum must be a list")
    return ArgumentSpec(
        name=name,
        type=_type_name(raw.get("type")),
        required=bool(raw.get("required", False)),
        accepts_enum=_str(enum_name) or None,
        variadic=bool(raw.get("variadic", raw.get("rest", False))),
        description=_str(raw.get("description")),
        enum_values=tuple(_str(v) for v in inline),
    )


def decode_function(raw: Mapping[str, Any]) -> FunctionMetadata:
    """Build one FunctionMetadata; raises TypeError/ValueError on bad shape."""
    if not isinstance(raw, Mapping):
        raise TypeError("function entry must be an object")
    name = _str(raw.get("name"))
    if not name:
        raise ValueError("function entry without a name")
    raw_args = raw.get("arguments", raw.get("args")) or ()
    if not isinstance(raw_args, (list, tuple)):
        raise TypeError("function args must be a list")
    arguments = tuple(decode_argument(a) for a in raw_args)
    for spec in arguments[:-1]:
        if spec.variadic:
            raise ValueError(f"variadic argument '{spec.name}' is not the last slot")
    aliases = raw.get("aliases") or ()
    if not isinstance(aliases, (list, tuple)):
        raise TypeError("aliases must be a list")
    return FunctionMetadata(
        name=name,
        aliases=frozenset(_str(a) for a in aliases),
        arguments=arguments,
        description=_str(raw.get("description")),
    )


def decode_functions(payload: Any, source: str) -> list[FunctionMetadata]:
    """Decode a function document, skipping entries that fail to decode."""
    if not isinstance(payload, list):
        raise MalformedDocument(source, "functions", "expected a JSON array")
    functions: list[FunctionMetadata] = []
    for i, raw in enumerate(payload):
        try:
            functions.append(decode_function(raw))
        except (TypeError, ValueError) as exc:
            logger.warning(f"Skipping function #{i} from {source}: {exc}")
    return functions


def decode_enum(name: str, raw: Any) -> EnumMetadata:
    if isinstance(raw, Mapping):
        values = tuple((_str(k), _str(v)) for k, v in raw.items())
    elif isinstance(raw, (list, tuple)):
        values = tuple((_str(v), _str(v)) for v in raw)
    else:
        raise TypeError(f"enum '{name}' must be a list or object")
    keys = [k for k, _ in values]
    if len(set(keys)) != len(keys):
        raise ValueError(f"enum '{name}' has duplicate keys")
    return EnumMetadata(name, values)


def decode_enums(payload: Any, source: str) -> list[EnumMetadata]:
    if not isinstance(payload, Mapping):
        raise MalformedDocument(source, "enums", "expected a JSON object")
    try:
        return [decode_enum(_str(name), raw) for name, raw in payload.items()]
    except (TypeError, ValueError) as exc:
        raise MalformedDocument(source, "enums", str(exc)) from exc


def decode_event(raw: Mapping[str, Any]) -> EventMetadata:
    if not isinstance(raw, Mapping):
        raise TypeError("event entry must be an object")
    name = _str(raw.get("name"))
    if not name:
        raise ValueError("event entry without a name")
    fields = raw.get("fields") or ()
    if not isinstance(fields, (list, tuple)):
        raise TypeError("event fields must be a list")
    return EventMetadata(
        name=name,
        description=_str(raw.get("description")),
        fields=tuple(
            EventField(_str(f.get("name")), _str(f.get("description")))
            for f in fields
            if isinstance(f, Mapping)
        ),
    )


def decode_events(payload: Any, source: str) -> list[EventMetadata]:
    if not isinstance(payload, list):
        raise MalformedDocument(source, "events", "expected a JSON array")
    try:
        return [decode_event(raw) for raw in payload]
    except (TypeError, ValueError) as exc:
        raise MalformedDocument(source, "events", str(exc)) from exc


# ---------------------------------------------------------------------------
# Encoding (inverse of the decoders, used by cache export)
# ---------------------------------------------------------------------------


def encode_argument(spec: ArgumentSpec) -> dict[str, Any]:
    out: dict[str, Any] = {
        "name": spec.name,
        "type": spec.type,
        "required": spec.required,
        "rest": spec.variadic,
        "description": spec.description,
    }
    if spec.accepts_enum is not None:
        out["enum_name"] = spec.accepts_enum
    if spec.enum_values:
        out["enum"] = list(spec.enum_values)
    return out


def encode_function(func: FunctionMetadata) -> dict[str, Any]:
    return {
        "name": func.name,
        "aliases": sorted(func.aliases),
        "args": [encode_argument(a) for a in func.arguments],
        "description": func.description,
    }


def encode_enum(enum: EnumMetadata) -> dict[str, str]:
    return dict(enum.values)


def encode_event(event: EventMetadata) -> dict[str, Any]:
    return {
        "name": event.name,
        "description": event.description,
        "fields": [{"name": f.name, "description": f.description} for f in event.fields],
    }
