"""In-memory catalogue of function, enum, and event metadata."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from forgekit.errors import (
    CacheLoadError,
    CatalogueError,
    FetchFailed,
    MalformedCache,
    MalformedDocument,
)
from forgekit.fetch import DocumentFetcher, Fetcher
from forgekit.metadata import (
    DocumentKind,
    EnumMetadata,
    EventMetadata,
    FetchStatus,
    FunctionMetadata,
    Source,
    decode_enum,
    decode_enums,
    decode_event,
    decode_events,
    decode_function,
    decode_functions,
    encode_enum,
    encode_event,
    encode_function,
    normalize_name,
)
from forgekit.store import CacheStore

logger = logging.getLogger(__name__)

CACHE_VERSION = 1

Record = FunctionMetadata | EnumMetadata | EventMetadata

_EMPTY: Mapping[Any, Any] = MappingProxyType({})


@dataclass(frozen=True, slots=True)
class _Snapshot:
    """One consistent view of all aggregate maps; replaced, never mutated."""

    functions: Mapping[str, FunctionMetadata] = field(default_factory=lambda: _EMPTY)
    aliases: Mapping[str, str] = field(default_factory=lambda: _EMPTY)
    enums: Mapping[str, EnumMetadata] = field(default_factory=lambda: _EMPTY)
    events: Mapping[str, EventMetadata] = field(default_factory=lambda: _EMPTY)
    # (kind, key) -> registration rank of the source that supplied the entry
    ranks: Mapping[tuple[DocumentKind, str], int] = field(default_factory=lambda: _EMPTY)


@dataclass
class FetchReport:
    """Outcome of one fetch_all run."""

    functions: int = 0
    enums: int = 0
    events: int = 0
    failures: list[CatalogueError] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures

    def __str__(self) -> str:
        text = f"Fetched {self.functions} functions, {self.enums} enums, {self.events} events"
        if self.failures:
            text += f" ({len(self.failures)} errors)"
        if self.cancelled:
            text += " [cancelled]"
        return text


@dataclass(frozen=True, slots=True)
class _Outcome:
    source: Source
    kind: DocumentKind
    count: int = 0
    error: CatalogueError | None = None


class Catalogue:
    """Aggregate of metadata merged from registered sources.

    Registration never performs I/O; ``fetch_all`` retrieves and merges every
    configured document. Readers always see a complete snapshot: each merge
    builds new maps and swaps them in under a lock.
    """

    def __init__(
        self,
        fetcher: DocumentFetcher | None = None,
        max_concurrency: int = 8,
    ) -> None:
        self._fetcher = fetcher
        self.max_concurrency = max_concurrency
        self._sources: list[Source] = []
        self._snapshot = _Snapshot()
        self._lock = threading.Lock()
        self._loaded = False

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    @property
    def sources(self) -> tuple[Source, ...]:
        return tuple(self._sources)

    def add_source(self, source: Source) -> Source:
        """Register a source; re-adding an extension replaces the prior entry."""
        with self._lock:
            self._sources = [s for s in self._sources if s.extension != source.extension]
            self._sources.append(source)
        logger.debug(f"Registered {source.kind.value} source for '{source.extension}'")
        return source

    def add_custom_source(
        self,
        extension: str,
        functions_url: str | None = None,
        enums_url: str | None = None,
        events_url: str | None = None,
    ) -> Source:
        return self.add_source(Source.custom(extension, functions_url, enums_url, events_url))

    def add_github_source(self, extension: str, repo: str, branch: str = "main") -> Source:
        return self.add_source(Source.github(extension, repo, branch))

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def fetch_all(self, cancel: asyncio.Event | None = None) -> FetchReport:
        """Fetch every configured document concurrently and merge the results.

        Failures are recorded per document and never abort the others. When
        *cancel* is set, outstanding fetches are abandoned and reported as
        failed; documents already merged stay merged.
        """
        if self._fetcher is None:
            self._fetcher = Fetcher()

        sources = list(self._sources)
        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks: dict[asyncio.Task[_Outcome], tuple[Source, DocumentKind]] = {}
        for rank, source in enumerate(sources):
            for kind, url in source.urls().items():
                coro = self._fetch_document(source, kind, url, rank, semaphore, cancel)
                tasks[asyncio.create_task(coro)] = (source, kind)

        report = FetchReport()
        pending: set[asyncio.Task[Any]] = set(tasks)
        waiter = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
        try:
            while pending:
                wait_set = pending | {waiter} if waiter is not None else pending
                done, _ = await asyncio.wait(wait_set, return_when=asyncio.FIRST_COMPLETED)
                pending -= done
                if waiter is not None and waiter in done:
                    report.cancelled = True
                    break
        finally:
            if waiter is not None:
                waiter.cancel()

        if pending:
            logger.info(f"Fetch cancelled with {len(pending)} documents outstanding")
            for task in pending:
                task.cancel()
            await asyncio.wait(pending)

        outcomes: list[_Outcome] = []
        for task, (source, kind) in tasks.items():
            if task.cancelled():
                error = FetchFailed(source.extension, kind.value, "cancelled")
                outcomes.append(_Outcome(source, kind, error=error))
            else:
                outcomes.append(task.result())

        for outcome in outcomes:
            if outcome.error is not None:
                report.failures.append(outcome.error)
            elif outcome.kind is DocumentKind.FUNCTIONS:
                report.functions += outcome.count
            elif outcome.kind is DocumentKind.ENUMS:
                report.enums += outcome.count
            else:
                report.events += outcome.count

        self._record_statuses(sources, outcomes)
        self._loaded = True
        logger.info(str(report))
        return report

    async def _fetch_document(
        self,
        source: Source,
        kind: DocumentKind,
        url: str,
        rank: int,
        semaphore: asyncio.Semaphore,
        cancel: asyncio.Event | None,
    ) -> _Outcome:
        assert self._fetcher is not None
        async with semaphore:
            try:
                payload = await asyncio.to_thread(self._fetcher.fetch_json, url)
                records = _decode(kind, payload, source.extension)
            except MalformedDocument as exc:
                logger.warning(str(exc))
                return _Outcome(source, kind, error=exc)
            except ValueError as exc:
                err = MalformedDocument(source.extension, kind.value, str(exc))
                logger.warning(str(err))
                return _Outcome(source, kind, error=err)
            except Exception as exc:
                err = FetchFailed(source.extension, kind.value, exc)
                logger.warning(str(err))
                return _Outcome(source, kind, error=err)

        if cancel is not None and cancel.is_set():
            return _Outcome(source, kind, error=FetchFailed(source.extension, kind.value, "cancelled"))

        count = self._merge(kind, records, rank)
        logger.debug(f"Merged {count} {kind.value} from '{source.extension}'")
        return _Outcome(source, kind, count=count)

    def _record_statuses(self, sources: list[Source], outcomes: list[_Outcome]) -> None:
        by_ext: dict[str, list[_Outcome]] = {s.extension: [] for s in sources}
        for outcome in outcomes:
            by_ext[outcome.source.extension].append(outcome)

        updated: dict[str, Source] = {}
        for source in sources:
            results = by_ext[source.extension]
            errors = tuple(str(o.error) for o in results if o.error is not None)
            if not errors:
                status = FetchStatus.OK
            elif len(errors) == len(results):
                status = FetchStatus.FAILED
            else:
                status = FetchStatus.PARTIAL
            updated[source.extension] = dataclasses.replace(
                source, last_fetch_status=status, errors=errors
            )

        with self._lock:
            current: list[Source] = []
            for source in self._sources:
                replacement = updated.get(source.extension)
                # Sources re-registered during the fetch keep their new entry
                if replacement is not None and _same_source(source, replacement):
                    source = replacement
                current.append(source)
            self._sources = current

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    def merge_document(self, kind: DocumentKind, payload: Any, source: str = "<inline>") -> int:
        """Decode and merge an already-retrieved document with top precedence."""
        records = _decode(kind, payload, source)
        count = self._merge(kind, records, len(self._sources))
        self._loaded = True
        return count

    def _merge(self, kind: DocumentKind, records: Iterable[Record], rank: int) -> int:
        with self._lock:
            snap = self._snapshot
            functions = dict(snap.functions)
            aliases = dict(snap.aliases)
            enums = dict(snap.enums)
            events = dict(snap.events)
            ranks = dict(snap.ranks)

            merged = 0
            for record in records:
                key = _key(kind, record.name)
                if ranks.get((kind, key), -1) > rank:
                    continue
                ranks[(kind, key)] = rank
                merged += 1
                if isinstance(record, FunctionMetadata):
                    _put_function(functions, aliases, key, record)
                elif isinstance(record, EnumMetadata):
                    enums[key] = record
                else:
                    events[key] = record

            self._snapshot = _Snapshot(
                MappingProxyType(functions),
                MappingProxyType(aliases),
                MappingProxyType(enums),
                MappingProxyType(events),
                MappingProxyType(ranks),
            )
        return merged

    def clear(self) -> None:
        """Empty all maps and reset fetch statuses; registered sources stay."""
        with self._lock:
            self._snapshot = _Snapshot()
            self._sources = [
                dataclasses.replace(s, last_fetch_status=FetchStatus.NOT_FETCHED, errors=())
                for s in self._sources
            ]
            self._loaded = False

    @property
    def is_loaded(self) -> bool:
        """True once fetch_all completed or a cache/document was imported."""
        return self._loaded

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_function_exact(self, name: str) -> FunctionMetadata | None:
        """Case-insensitive name or alias match, no fuzzy fallback."""
        snap = self._snapshot
        key = normalize_name(name)
        func = snap.functions.get(key)
        if func is None and key in snap.aliases:
            func = snap.functions.get(snap.aliases[key])
        return func

    def get_function(self, name: str) -> FunctionMetadata | None:
        """Exact lookup first, then the best fuzzy candidate.

        Fuzzy ranking, lowest first: (match class, edit distance, key) where
        the match class is 0 when a known name is a prefix of *name*, 1 when
        *name* is a prefix of a known name and 2 for a substring match.
        """
        func = self.get_function_exact(name)
        if func is not None:
            return func

        snap = self._snapshot
        query = normalize_name(name)
        if not query:
            return None

        best: tuple[int, int, str] | None = None
        best_key = ""
        for cand, target in _candidate_keys(snap):
            if query.startswith(cand):
                klass = 0
            elif cand.startswith(query):
                klass = 1
            elif query in cand:
                klass = 2
            else:
                continue
            rank = (klass, _edit_distance(query, cand), cand)
            if best is None or rank < best:
                best = rank
                best_key = target
        return snap.functions.get(best_key) if best is not None else None

    def get_enum(self, name: str) -> EnumMetadata | None:
        return self._snapshot.enums.get(name.lower())

    def get_event(self, name: str) -> EventMetadata | None:
        return self._snapshot.events.get(name.lower())

    def get_completions(self, prefix: str) -> list[FunctionMetadata]:
        """Functions whose name or an alias starts with *prefix*, sorted by name."""
        snap = self._snapshot
        query = normalize_name(prefix)
        matches = {
            target for cand, target in _candidate_keys(snap) if cand.startswith(query)
        }
        return sorted((snap.functions[k] for k in matches), key=lambda f: (f.name.lower(), f.name))

    def all_functions(self) -> list[FunctionMetadata]:
        snap = self._snapshot
        return [snap.functions[k] for k in sorted(snap.functions)]

    def all_enums(self) -> list[EnumMetadata]:
        snap = self._snapshot
        return [snap.enums[k] for k in sorted(snap.enums)]

    def all_events(self) -> list[EventMetadata]:
        snap = self._snapshot
        return [snap.events[k] for k in sorted(snap.events)]

    @property
    def function_count(self) -> int:
        return len(self._snapshot.functions)

    @property
    def enum_count(self) -> int:
        return len(self._snapshot.enums)

    @property
    def event_count(self) -> int:
        return len(self._snapshot.events)

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def export_cache(self, indent: int | None = None) -> str:
        """Serialize the three maps into a self-contained JSON document."""
        cache = {
            "version": CACHE_VERSION,
            "functions": [encode_function(f) for f in self.all_functions()],
            "enums": {e.name: encode_enum(e) for e in self.all_enums()},
            "events": [encode_event(e) for e in self.all_events()],
        }
        return json.dumps(cache, indent=indent, ensure_ascii=False)

    def import_cache(self, document: str | bytes | Mapping[str, Any]) -> None:
        """Replace all maps with the content of a cache document.

        Raises MalformedCache, leaving the current state untouched, when the
        document is not a well-formed cache.
        """
        if isinstance(document, (str, bytes)):
            try:
                data = json.loads(document)
            except ValueError as exc:
                raise MalformedCache(f"cache is not valid JSON: {exc}") from exc
        else:
            data = document

        if not isinstance(data, Mapping):
            raise MalformedCache("cache must be a JSON object")
        if data.get("version") != CACHE_VERSION:
            raise MalformedCache(
                f"incompatible cache version: expected {CACHE_VERSION}, got {data.get('version')!r}"
            )
        raw_functions = data.get("functions", [])
        raw_enums = data.get("enums", {})
        raw_events = data.get("events", [])
        if not isinstance(raw_functions, list):
            raise MalformedCache("'functions' must be a list")
        if not isinstance(raw_enums, Mapping):
            raise MalformedCache("'enums' must be an object")
        if not isinstance(raw_events, list):
            raise MalformedCache("'events' must be a list")

        try:
            functions = [decode_function(raw) for raw in raw_functions]
            enums = [decode_enum(str(name), raw) for name, raw in raw_enums.items()]
            events = [decode_event(raw) for raw in raw_events]
        except (TypeError, ValueError) as exc:
            raise MalformedCache(f"invalid cache entry: {exc}") from exc

        function_map: dict[str, FunctionMetadata] = {}
        alias_map: dict[str, str] = {}
        for func in functions:
            _put_function(function_map, alias_map, normalize_name(func.name), func)

        with self._lock:
            self._snapshot = _Snapshot(
                MappingProxyType(function_map),
                MappingProxyType(alias_map),
                MappingProxyType({e.name.lower(): e for e in enums}),
                MappingProxyType({e.name.lower(): e for e in events}),
            )
            self._loaded = True
        logger.debug(
            f"Imported cache: {len(function_map)} functions, {len(enums)} enums, {len(events)} events"
        )

    def save_cache(self, store: CacheStore, key: str) -> None:
        store.save(key, self.export_cache())

    def load_cache(self, store: CacheStore, key: str) -> bool:
        """Import a persisted cache; missing or corrupt entries return False."""
        try:
            self.import_cache(store.load(key))
        except (CacheLoadError, MalformedCache) as exc:
            logger.warning(f"Ignoring cache '{key}': {exc}")
            return False
        return True


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _decode(kind: DocumentKind, payload: Any, source: str) -> list[Any]:
    if kind is DocumentKind.FUNCTIONS:
        return decode_functions(payload, source)
    if kind is DocumentKind.ENUMS:
        return decode_enums(payload, source)
    return decode_events(payload, source)


def _key(kind: DocumentKind, name: str) -> str:
    if kind is DocumentKind.FUNCTIONS:
        return normalize_name(name)
    return name.lower()


def _put_function(
    functions: dict[str, FunctionMetadata],
    aliases: dict[str, str],
    key: str,
    func: FunctionMetadata,
) -> None:
    previous = functions.get(key)
    if previous is not None:
        for alias in previous.aliases:
            alias_key = normalize_name(alias)
            if aliases.get(alias_key) == key:
                del aliases[alias_key]
    functions[key] = func
    for alias in func.aliases:
        aliases[normalize_name(alias)] = key


def _candidate_keys(snap: _Snapshot) -> list[tuple[str, str]]:
    """(searchable key, canonical function key) pairs for names and aliases."""
    pairs = [(k, k) for k in snap.functions]
    pairs.extend((alias, target) for alias, target in snap.aliases.items())
    return pairs


def _same_source(a: Source, b: Source) -> bool:
    return (a.kind, a.functions_url, a.enums_url, a.events_url) == (
        b.kind,
        b.functions_url,
        b.enums_url,
        b.events_url,
    )


def _edit_distance(a: str, b: str) -> int:
    """Levenshtein distance between two strings."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(
                min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + (ca != cb))
            )
        previous = current
    return previous[-1]
