"""Tests for TOML config file loading and option resolution."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from forgekit.cli import build_parser, load_config, main, parse_source_entry, resolve_options
from forgekit.errors import UsageError
from forgekit.metadata import SourceKind
from forgekit.validator import ValidationRules
from tests.conftest import ENUMS, EVENTS, FUNCTIONS, FakeFetcher


def options_for(tmp_path: Path, config: str, *extra: str):
    (tmp_path / "forgekit.toml").write_text(config)
    doc = tmp_path / "doc.forge"
    doc.write_text("")
    ns = build_parser().parse_args([str(doc), *extra])
    return resolve_options(ns)


class TestLoadConfig:
    def test_missing_config_returns_empty(self, tmp_path: Path) -> None:
        assert load_config(None, tmp_path) == {}

    def test_explicit_path(self, tmp_path: Path) -> None:
        cfg = tmp_path / "custom.toml"
        cfg.write_text("[rules]\nenums = true\n")
        assert load_config(cfg, tmp_path)["rules"] == {"enums": True}

    def test_auto_discover_forgekit_toml(self, tmp_path: Path) -> None:
        (tmp_path / "forgekit.toml").write_text('[cache]\nfile = "meta.json"\n')
        assert load_config(None, tmp_path) == {"cache": {"file": "meta.json"}}


class TestSources:
    def test_github_entry(self) -> None:
        source = parse_source_entry({"extension": "fs", "repo": "org/meta"})
        assert source.kind == SourceKind.GITHUB
        assert source.branch == "main"

    def test_custom_entry(self) -> None:
        source = parse_source_entry({"extension": "fs", "functions": "https://x/f.json"})
        assert source.kind == SourceKind.CUSTOM
        assert source.functions_url == "https://x/f.json"
        assert source.enums_url is None

    @pytest.mark.parametrize(
        "entry",
        [{"repo": "org/meta"}, {"extension": "fs"}, "fs"],
    )
    def test_invalid_entries(self, entry) -> None:
        with pytest.raises(UsageError):
            parse_source_entry(entry)

    def test_sources_from_config(self, tmp_path: Path) -> None:
        opts = options_for(
            tmp_path,
            '[[sources]]\nextension = "fs"\nrepo = "org/fs"\nbranch = "dev"\n'
            '[[sources]]\nextension = "bd"\nfunctions = "https://bd/f.json"\n',
        )
        assert [s.extension for s in opts.sources] == ["fs", "bd"]
        assert opts.sources[0].branch == "dev"


class TestRuleResolution:
    def test_default_without_catalogue(self, tmp_path: Path) -> None:
        opts = options_for(tmp_path, "")
        assert opts.rules == ValidationRules.syntax_only()

    def test_default_with_metadata(self, tmp_path: Path) -> None:
        opts = options_for(tmp_path, "", "--metadata", "meta.json")
        assert opts.rules == ValidationRules.strict()

    def test_config_rules(self, tmp_path: Path) -> None:
        opts = options_for(tmp_path, "[rules]\nbrackets = true\nenums = true\n")
        assert opts.rules == ValidationRules(brackets=True, enums=True)

    def test_cli_overrides_config(self, tmp_path: Path) -> None:
        opts = options_for(
            tmp_path,
            "[rules]\nbrackets = true\n",
            "--rule",
            "functions",
            "--no-rule",
            "brackets",
        )
        assert opts.rules == ValidationRules(functions=True)

    def test_strict_then_no_rule(self, tmp_path: Path) -> None:
        opts = options_for(tmp_path, "", "--strict", "--no-rule", "enums")
        assert not opts.rules.enums
        assert opts.rules.functions

    def test_unknown_config_rule(self, tmp_path: Path) -> None:
        with pytest.raises(UsageError, match="spelling"):
            options_for(tmp_path, "[rules]\nspelling = true\n")


class TestCacheConfig:
    def test_cache_file_relative_to_config(self, tmp_path: Path) -> None:
        opts = options_for(tmp_path, '[cache]\nfile = "meta.json"\n')
        assert opts.cache_file == tmp_path / "meta.json"

    def test_save_cache_requires_cache_file(self, tmp_path: Path) -> None:
        with pytest.raises(UsageError, match="--save-cache"):
            options_for(tmp_path, "", "--save-cache")

    def test_bad_toml_returns_2(self, tmp_path: Path, capsys) -> None:
        (tmp_path / "forgekit.toml").write_text("[rules\n")
        doc = tmp_path / "doc.forge"
        doc.write_text("")
        assert main([str(doc)]) == 2
        assert capsys.readouterr().err.startswith("error:")

    def test_corrupt_cache_falls_back_to_syntax_rules(
        self, tmp_path: Path, capsys, caplog
    ) -> None:
        (tmp_path / "forgekit.toml").write_text('[cache]\nfile = "meta.json"\n')
        (tmp_path / "meta.json").write_text("{not json")
        doc = tmp_path / "doc.forge"
        doc.write_text("$nope[]")
        assert main([str(doc)]) == 0
        assert "require a catalogue" not in capsys.readouterr().err
        assert "Ignoring cache" in caplog.text
        assert "syntax rules only" in caplog.text

        doc.write_text("\\q")
        assert main([str(doc)]) == 1
        assert "invalid escape" in capsys.readouterr().err

    def test_explicit_catalogue_rule_with_corrupt_cache(self, tmp_path: Path, capsys) -> None:
        (tmp_path / "forgekit.toml").write_text('[cache]\nfile = "meta.json"\n')
        (tmp_path / "meta.json").write_text("{not json")
        doc = tmp_path / "doc.forge"
        doc.write_text("$nope[]")
        assert main([str(doc), "--strict"]) == 2
        assert "require a catalogue" in capsys.readouterr().err


class TestFetchCommand:
    CONFIG = (
        '[[sources]]\nextension = "fs"\n'
        'functions = "https://meta.test/f.json"\n'
        'enums = "https://meta.test/e.json"\n'
        'events = "https://meta.test/v.json"\n'
        '[cache]\nfile = "meta.json"\n'
    )

    @pytest.fixture
    def fake_network(self, monkeypatch) -> FakeFetcher:
        fetcher = FakeFetcher(
            {
                "https://meta.test/f.json": FUNCTIONS,
                "https://meta.test/e.json": ENUMS,
                "https://meta.test/v.json": EVENTS,
            }
        )
        monkeypatch.setattr("forgekit.catalogue.Fetcher", lambda: fetcher)
        return fetcher

    def test_fetch_and_save_cache(self, tmp_path: Path, fake_network: FakeFetcher) -> None:
        cfg = tmp_path / "forgekit.toml"
        cfg.write_text(self.CONFIG)
        assert main(["--config", str(cfg), "--fetch", "--save-cache"]) == 0
        data = json.loads((tmp_path / "meta.json").read_text())
        assert len(data["functions"]) == 6
        assert len(fake_network.requested) == 3

    def test_cached_metadata_used_for_validation(
        self, tmp_path: Path, fake_network: FakeFetcher, capsys
    ) -> None:
        cfg = tmp_path / "forgekit.toml"
        cfg.write_text(self.CONFIG)
        assert main(["--config", str(cfg), "--fetch", "--save-cache"]) == 0

        doc = tmp_path / "doc.forge"
        doc.write_text("$color[Purple]")
        assert main([str(doc)]) == 1
        assert "invalid value 'Purple'" in capsys.readouterr().err

    def test_fetch_without_sources(self, tmp_path: Path, capsys) -> None:
        doc = tmp_path / "doc.forge"
        doc.write_text("")
        assert main([str(doc), "--fetch"]) == 2
        assert "[[sources]]" in capsys.readouterr().err

    def test_fetch_failures_reported(
        self, tmp_path: Path, fake_network: FakeFetcher, capsys
    ) -> None:
        del fake_network.responses["https://meta.test/e.json"]
        cfg = tmp_path / "forgekit.toml"
        cfg.write_text(self.CONFIG)
        assert main(["--config", str(cfg), "--fetch"]) == 0
        assert "warning: failed to fetch enums for 'fs'" in capsys.readouterr().err
