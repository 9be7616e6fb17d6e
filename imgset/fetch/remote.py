"""Remote asset retrieval with a disk-backed freshness cache."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import re
import time
from pathlib import Path
from threading import Lock
from urllib.parse import urlparse, urlunparse

import requests
from requests import Session
from tenacity import (  # type: ignore[import-untyped]
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import ConfigurationError, InputError

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10.0
_DEFAULT_DIRECTORY = ".cache"
_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhdwy])\s*$")
_DURATION_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 60 * 60 * 24,
    "w": 60 * 60 * 24 * 7,
    "y": 60 * 60 * 24 * 365,
}

_session_lock = Lock()
_session: Session | None = None


class RetryableHTTPStatusError(Exception):
    """Raised for HTTP status codes that should trigger a retry."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"Server returned status {status_code}")
        self.status_code = status_code


def _get_session() -> Session:
    """Return a shared requests session configured with default headers."""
    global _session
    if _session is None:
        with _session_lock:
            if _session is None:
                session = requests.Session()
                session.headers.update(
                    {
                        "User-Agent": _USER_AGENT,
                        "Accept": "image/*,*/*;q=0.8",
                    }
                )
                _session = session
    return _session


_retryer = Retrying(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    retry=retry_if_exception_type(
        (requests.Timeout, requests.ConnectionError, RetryableHTTPStatusError)
    ),
    before_sleep=before_sleep_log(logger, logging.DEBUG),
    reraise=True,
)


def parse_duration(duration: str | None) -> float | None:
    """Return *duration* in seconds, or ``None`` for ``"*"`` (never expires)."""
    if duration is None or duration == "*":
        return None
    match = _DURATION_PATTERN.match(str(duration))
    if not match:
        raise ConfigurationError(f"Invalid cache duration: {duration!r}")
    amount, unit = match.groups()
    return float(amount) * _DURATION_SECONDS[unit]


def _strip_query(url: str) -> str:
    parsed = urlparse(url)
    return urlunparse(parsed._replace(query="", fragment=""))


def _fetch_once(url: str, timeout: float) -> bytes:
    """Issue a single HTTP GET request and return the response body."""
    response = _get_session().get(url, timeout=timeout, allow_redirects=True)
    if 500 <= response.status_code < 600:
        raise RetryableHTTPStatusError(response.status_code)
    response.raise_for_status()
    return response.content


class RemoteAssetCache:
    """Disk cache entry for one remote URL.

    The body is stored as ``<directory>/imgset-<sha1>`` next to a ``.json``
    sidecar that records when it was fetched.
    """

    def __init__(
        self,
        url: str,
        duration: str = "1d",
        directory: str | Path = _DEFAULT_DIRECTORY,
        dry_run: bool = False,
        remove_url_query_params: bool = False,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        self.url = url
        self.duration = duration
        self.directory = Path(directory)
        self.dry_run = dry_run
        self.timeout = timeout
        self.cache_key = _strip_query(url) if remove_url_query_params else url
        digest = hashlib.sha1(self.cache_key.encode("utf-8")).hexdigest()[:30]
        self.body_path = self.directory / f"imgset-{digest}"
        self.meta_path = self.directory / f"imgset-{digest}.json"

    def __repr__(self) -> str:
        return f"RemoteAssetCache({self.url!r}, duration={self.duration!r})"

    def _cached_at(self) -> float | None:
        try:
            payload = json.loads(self.meta_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        cached_at = payload.get("cachedAt")
        return float(cached_at) if isinstance(cached_at, (int, float)) else None

    def is_cache_valid(self, duration: str | None = None) -> bool:
        """Return ``True`` if a cached body exists and is younger than *duration*."""
        if not self.body_path.exists():
            return False
        cached_at = self._cached_at()
        if cached_at is None:
            return False
        max_age = parse_duration(duration if duration is not None else self.duration)
        if max_age is None:
            return True
        return (time.time() - cached_at) < max_age

    def fetch(self) -> bytes:
        """Return the asset body, downloading it when the cache is stale."""
        if self.is_cache_valid():
            logger.debug("Remote cache hit for %s", self.url)
            return self.body_path.read_bytes()

        logger.debug("Fetching %s", self.url)
        try:
            body = _retryer(lambda: _fetch_once(self.url, self.timeout))
        except RetryableHTTPStatusError as exc:
            raise InputError(f"Server error fetching {self.url}: {exc}", self.url) from exc
        except requests.RequestException as exc:
            raise InputError(f"Request error fetching {self.url}: {exc}", self.url) from exc

        if not self.dry_run:
            self.directory.mkdir(parents=True, exist_ok=True)
            self.body_path.write_bytes(body)
            self.meta_path.write_text(
                json.dumps({"url": self.cache_key, "cachedAt": time.time()}),
                encoding="utf-8",
            )
        return body


class RemoteFetchQueue:
    """Collapses concurrent fetches of the same URL into one in-flight task."""

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Task[bytes]] = {}

    def __len__(self) -> int:
        return len(self._inflight)

    def fetch(self, cache: RemoteAssetCache) -> asyncio.Task[bytes]:
        task = self._inflight.get(cache.url)
        if task is not None:
            logger.debug("Joining in-flight fetch for %s", cache.url)
            return task
        task = asyncio.ensure_future(asyncio.to_thread(cache.fetch))
        self._inflight[cache.url] = task
        task.add_done_callback(lambda _: self._inflight.pop(cache.url, None))
        return task


fetch_queue = RemoteFetchQueue()
