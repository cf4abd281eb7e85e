"""Tests for cache stores."""

from __future__ import annotations

from pathlib import Path

import pytest

from forgekit.errors import CacheLoadError
from forgekit.store import FileCacheStore, MemoryCacheStore


class TestMemoryStore:
    def test_save_and_load(self) -> None:
        store = MemoryCacheStore()
        store.save("k", "{}")
        assert "k" in store
        assert store.load("k") == "{}"

    def test_missing_key(self) -> None:
        with pytest.raises(CacheLoadError) as exc_info:
            MemoryCacheStore().load("k")
        assert exc_info.value.key == "k"


class TestFileStore:
    def test_save_creates_directory(self, tmp_path: Path) -> None:
        store = FileCacheStore(tmp_path / "cache")
        store.save("forge", '{"version": 1}')
        assert (tmp_path / "cache" / "forge.json").read_text() == '{"version": 1}'
        assert store.load("forge") == '{"version": 1}'

    def test_overwrite(self, tmp_path: Path) -> None:
        store = FileCacheStore(tmp_path)
        store.save("k", "one")
        store.save("k", "two")
        assert store.load("k") == "two"
        assert [p.name for p in tmp_path.iterdir()] == ["k.json"]

    def test_unsafe_key_characters(self, tmp_path: Path) -> None:
        store = FileCacheStore(tmp_path)
        assert store.path_for("../x y").name == ".._x_y.json"
        assert store.path_for("").name == "_.json"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(CacheLoadError, match="does not exist"):
            FileCacheStore(tmp_path).load("nope")

    def test_undecodable_file(self, tmp_path: Path) -> None:
        (tmp_path / "bad.json").write_bytes(b"\xff\xfe\x00")
        with pytest.raises(CacheLoadError):
            FileCacheStore(tmp_path).load("bad")
