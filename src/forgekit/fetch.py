"""Blocking HTTP retrieval of metadata documents."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class DocumentFetcher(Protocol):
    """Anything that can turn a URL into a decoded JSON payload."""

    def fetch_json(self, url: str) -> Any: ...


class Fetcher:
    """Fetch JSON documents over HTTP with a shared requests session.

    Raises ``requests.RequestException`` on transport or HTTP status errors
    and ``ValueError`` when the body is not JSON. Callers decide how to
    record those failures.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.timeout = timeout
        self._session = session or requests.Session()

    def fetch_json(self, url: str) -> Any:
        logger.debug(f"GET {url}")
        resp = self._session.get(url, timeout=self.timeout)
        resp.raise_for_status()
        try:
            return resp.json()
        except ValueError as exc:
            preview = resp.text[:200]
            raise ValueError(f"invalid JSON from {url}: {exc}; preview: {preview!r}") from exc

    def close(self) -> None:
        self._session.close()
