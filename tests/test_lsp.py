"""Tests for the LSP server — diagnostic generation."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest
from lsprotocol.types import (
    DiagnosticSeverity,
    PublishDiagnosticsParams,
    TextDocumentItem,
    TextDocumentSyncKind,
)
from pygls.lsp.server import LanguageServer
from pygls.workspace import Workspace

from forgekit.catalogue import Catalogue
from forgekit.lsp import _validate, cache_path, initialize, load_catalogue

URI = "file:///test.forge"


@pytest.fixture
def lsp_env():
    """Create a LanguageServer with an initialized workspace and captured diagnostics."""
    ls = LanguageServer("test", "v0", text_document_sync_kind=TextDocumentSyncKind.Full)
    ws = Workspace(None)
    ls.protocol._workspace = ws

    published: list[PublishDiagnosticsParams] = []
    ls.text_document_publish_diagnostics = lambda params: published.append(params)

    def put(source: str, uri: str = URI) -> None:
        ws.put_text_document(
            TextDocumentItem(uri=uri, language_id="forgescript", version=0, text=source)
        )

    return ls, published, put


@pytest.fixture
def loaded(monkeypatch, catalogue: Catalogue) -> Catalogue:
    monkeypatch.setattr("forgekit.lsp.catalogue", catalogue)
    return catalogue


# ---------------------------------------------------------------------------
# Parse errors → Error severity
# ---------------------------------------------------------------------------


class TestParseErrors:
    def test_invalid_escape(self, lsp_env) -> None:
        ls, published, put = lsp_env
        put(r"Hello \z world")
        _validate(ls, URI)

        assert len(published) == 1
        diags = published[0].diagnostics
        assert len(diags) == 1
        d = diags[0]
        assert d.severity == DiagnosticSeverity.Error
        assert "\\z" in d.message
        assert d.source == "forgekit"
        assert d.code == "InvalidEscape"
        # \z is at column 7 (1-based) → character 6 (0-based)
        assert d.range.start.line == 0
        assert d.range.start.character == 6
        assert d.range.end.character == 8

    def test_unterminated_call(self, lsp_env) -> None:
        ls, published, put = lsp_env
        put("$sendMessage[hello")
        _validate(ls, URI)

        diags = published[0].diagnostics
        assert [d.code for d in diags] == ["UnterminatedCall"]
        assert "closing" in diags[0].message


# ---------------------------------------------------------------------------
# Validation findings → Warning severity
# ---------------------------------------------------------------------------


class TestFindings:
    def test_unknown_function(self, lsp_env, loaded) -> None:
        ls, published, put = lsp_env
        put("$sendMes[hi]")
        _validate(ls, URI)

        diags = published[0].diagnostics
        assert len(diags) == 1
        d = diags[0]
        assert d.severity == DiagnosticSeverity.Warning
        assert d.code == "UnknownFunction"
        assert "$sendMessage" in d.message

    def test_syntax_and_semantic_together(self, lsp_env, loaded) -> None:
        ls, published, put = lsp_env
        put("$color[Purple] \\q")
        _validate(ls, URI)

        codes = sorted(d.code for d in published[0].diagnostics)
        assert codes == ["InvalidEnumValue", "InvalidEscape"]

    def test_unloaded_catalogue_runs_syntax_rules_only(self, lsp_env) -> None:
        ls, published, put = lsp_env
        put("$whatever[1;2;3] `x`")
        _validate(ls, URI)

        diags = published[0].diagnostics
        assert [d.code for d in diags] == ["UnescapedCharacter", "UnescapedCharacter"]
        assert all(d.severity == DiagnosticSeverity.Warning for d in diags)


# ---------------------------------------------------------------------------
# Clean document → empty diagnostics
# ---------------------------------------------------------------------------


class TestCleanDocument:
    def test_valid_document(self, lsp_env, loaded) -> None:
        ls, published, put = lsp_env
        put("Hello $sendMessage[$color[Red];true]\n")
        _validate(ls, URI)

        assert len(published) == 1
        assert published[0].diagnostics == []


# ---------------------------------------------------------------------------
# Position conversion (1-based → 0-based)
# ---------------------------------------------------------------------------


class TestPositionConversion:
    def test_error_on_second_line(self, lsp_env) -> None:
        ls, published, put = lsp_env
        put("Valid first line\n\\z oops")
        _validate(ls, URI)

        assert len(published) == 1
        diags = published[0].diagnostics
        assert len(diags) == 1
        d = diags[0]
        # Error is on line 2 (1-based) → LSP line 1 (0-based)
        assert d.range.start.line == 1
        assert d.range.start.character == 0

    def test_multiline_span(self, lsp_env) -> None:
        ls, published, put = lsp_env
        put("a\n$f[x\ny")
        _validate(ls, URI)

        d = published[0].diagnostics[0]
        assert (d.range.start.line, d.range.start.character) == (1, 0)
        assert (d.range.end.line, d.range.end.character) == (2, 1)


# ---------------------------------------------------------------------------
# Catalogue loading at initialize
# ---------------------------------------------------------------------------


class TestCatalogueLoading:
    @pytest.fixture
    def fresh(self, monkeypatch) -> Catalogue:
        cat = Catalogue()
        monkeypatch.setattr("forgekit.lsp.catalogue", cat)
        return cat

    @pytest.fixture
    def cache_file(self, tmp_path: Path, catalogue: Catalogue) -> Path:
        path = tmp_path / "meta.json"
        path.write_text(catalogue.export_cache(), encoding="utf-8")
        return path

    def test_init_option_absolute(self, fresh, cache_file: Path) -> None:
        assert load_catalogue({"cacheFile": str(cache_file)}, None)
        assert fresh.is_loaded
        assert fresh.function_count == 6

    def test_init_option_relative_to_root(self, tmp_path: Path, cache_file: Path) -> None:
        assert cache_path({"cacheFile": "meta.json"}, tmp_path) == cache_file

    def test_config_file(self, fresh, tmp_path: Path, cache_file: Path) -> None:
        (tmp_path / "forgekit.toml").write_text('[cache]\nfile = "meta.json"\n')
        assert cache_path(None, tmp_path) == cache_file
        assert load_catalogue(None, tmp_path)
        assert fresh.function_count == 6

    def test_missing_file(self, fresh, tmp_path: Path) -> None:
        assert not load_catalogue({"cacheFile": str(tmp_path / "gone.json")}, None)
        assert not fresh.is_loaded

    def test_nothing_configured(self, fresh, tmp_path: Path) -> None:
        assert cache_path(None, tmp_path) is None
        assert cache_path(None, None) is None
        assert not load_catalogue(None, tmp_path)

    def test_corrupt_cache(self, fresh, tmp_path: Path) -> None:
        bad = tmp_path / "meta.json"
        bad.write_text("{not json")
        assert not load_catalogue({"cacheFile": str(bad)}, None)
        assert not fresh.is_loaded

    def test_initialize_enables_catalogue_rules(
        self, fresh, lsp_env, tmp_path: Path, cache_file: Path
    ) -> None:
        (tmp_path / "forgekit.toml").write_text('[cache]\nfile = "meta.json"\n')
        ls = SimpleNamespace(workspace=SimpleNamespace(root_path=str(tmp_path)))
        initialize(ls, SimpleNamespace(initialization_options=None))
        assert fresh.is_loaded

        env_ls, published, put = lsp_env
        put("$nope[]")
        _validate(env_ls, URI)
        assert [d.code for d in published[0].diagnostics] == ["UnknownFunction"]
