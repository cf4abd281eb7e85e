"""Minimal LSP server for ForgeScript — diagnostics only."""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

from lsprotocol.types import (
    INITIALIZE,
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_OPEN,
    Diagnostic,
    DiagnosticSeverity,
    DidChangeTextDocumentParams,
    DidOpenTextDocumentParams,
    InitializeParams,
    Position,
    PublishDiagnosticsParams,
    Range,
    TextDocumentSyncKind,
)
from pygls.lsp.server import LanguageServer

from forgekit import __version__
from forgekit.catalogue import Catalogue
from forgekit.cli import load_config
from forgekit.parser import parse
from forgekit.store import FileCacheStore
from forgekit.tokens import LineIndex, Span
from forgekit.validator import ValidationRules, validate

logger = logging.getLogger(__name__)

server = LanguageServer(
    "forgekit-lsp", __version__, text_document_sync_kind=TextDocumentSyncKind.Full
)

# Loaded from the metadata cache at initialize; syntax rules only until then
catalogue = Catalogue()


def cache_path(options: Any, root: Path | None) -> Path | None:
    """Cache file named by the ``cacheFile`` init option, else by forgekit.toml."""
    if isinstance(options, dict) and isinstance(options.get("cacheFile"), str):
        path = Path(options["cacheFile"]).expanduser()
        if not path.is_absolute() and root is not None:
            path = root / path
        return path
    if root is None:
        return None
    try:
        config = load_config(None, root)
    except (tomllib.TOMLDecodeError, OSError) as exc:
        logger.warning(f"Ignoring forgekit.toml in {root}: {exc}")
        return None
    cfg_cache = config.get("cache")
    if isinstance(cfg_cache, dict) and isinstance(cfg_cache.get("file"), str):
        return root / cfg_cache["file"]
    return None


def load_catalogue(options: Any, root: Path | None) -> bool:
    """Fill the server catalogue from the metadata cache; False if none loaded."""
    path = cache_path(options, root)
    if path is None or not path.is_file():
        return False
    loaded = catalogue.load_cache(FileCacheStore(path.parent), path.stem)
    if loaded:
        logger.info(f"Loaded {catalogue.function_count} functions from {path}")
    return loaded


def _range(index: LineIndex, span: Span) -> Range:
    start = index.locate(span.start)
    end = index.locate(span.end)
    return Range(
        start=Position(line=start.line - 1, character=start.column - 1),
        end=Position(line=end.line - 1, character=end.column - 1),
    )


def _validate(ls: LanguageServer, uri: str) -> None:
    """Parse and validate the document, then publish diagnostics."""
    doc = ls.workspace.get_text_document(uri)
    source = doc.source
    index = LineIndex(source)
    diagnostics: list[Diagnostic] = []

    tree, errors = parse(source)
    for error in errors:
        diagnostics.append(
            Diagnostic(
                range=_range(index, error.span),
                message=error.message,
                severity=DiagnosticSeverity.Error,
                code=error.kind.value,
                source="forgekit",
            )
        )

    # Parse errors are published above, so they are not passed on to validate
    if catalogue.is_loaded:
        rules = ValidationRules(arguments=True, enums=True, functions=True, escapes=True)
        report = validate(tree, catalogue, rules)
    else:
        report = validate(tree, None, ValidationRules(escapes=True))

    for finding in report.findings:
        diagnostics.append(
            Diagnostic(
                range=_range(index, finding.span),
                message=finding.message,
                severity=DiagnosticSeverity.Warning,
                code=finding.kind.value,
                source="forgekit",
            )
        )

    logger.debug(f"Publishing {len(diagnostics)} diagnostics for {uri}")
    ls.text_document_publish_diagnostics(
        PublishDiagnosticsParams(uri=uri, diagnostics=diagnostics)
    )


@server.feature(INITIALIZE)
def initialize(ls: LanguageServer, params: InitializeParams) -> None:
    root = ls.workspace.root_path
    load_catalogue(params.initialization_options, Path(root) if root else None)


@server.feature(TEXT_DOCUMENT_DID_OPEN)
def did_open(ls: LanguageServer, params: DidOpenTextDocumentParams) -> None:
    _validate(ls, params.text_document.uri)


@server.feature(TEXT_DOCUMENT_DID_CHANGE)
def did_change(ls: LanguageServer, params: DidChangeTextDocumentParams) -> None:
    _validate(ls, params.text_document.uri)


def main() -> None:
    server.start_io()
