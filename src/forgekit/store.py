"""Persistence backends for exported catalogue caches."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Protocol

from forgekit.errors import CacheLoadError

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


class CacheStore(Protocol):
    """Key/value storage for cache documents."""

    def save(self, key: str, document: str) -> None: ...

    def load(self, key: str) -> str:
        """Return the stored document; raise CacheLoadError when unavailable."""
        ...


class MemoryCacheStore:
    def __init__(self) -> None:
        self._entries: dict[str, str] = {}

    def save(self, key: str, document: str) -> None:
        self._entries[key] = document

    def load(self, key: str) -> str:
        try:
            return self._entries[key]
        except KeyError:
            raise CacheLoadError(key, "no such entry") from None

    def __contains__(self, key: object) -> bool:
        return key in self._entries


class FileCacheStore:
    """One ``<key>.json`` file per entry inside *directory*."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        safe = _UNSAFE.sub("_", key) or "_"
        return self.directory / f"{safe}.json"

    def save(self, key: str, document: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self.path_for(key)
        tmp = target.with_suffix(target.suffix + ".tmp")
        tmp.write_text(document, encoding="utf-8")
        os.replace(tmp, target)
        logger.debug(f"Saved cache '{key}' to {target}")

    def load(self, key: str) -> str:
        path = self.path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise CacheLoadError(key, f"{path} does not exist") from None
        except (OSError, UnicodeDecodeError) as exc:
            raise CacheLoadError(key, str(exc)) from exc
