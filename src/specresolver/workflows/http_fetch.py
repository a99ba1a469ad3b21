from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import shutil
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union
from urllib.parse import urlparse, urlunparse

import aiohttp

from ..core.keys import (
    K_CACHE_FOLDER,
    K_CACHE_REFRESH,
    K_LOG_TO_CONSOLE,
    K_REFRESH,
    K_RESET_CACHE,
    REFRESH_FORCE,
    REFRESH_NEVER,
    REFRESH_ONCE,
)
from .errors import NetworkError
from .html_utils import decode_bytes_auto
from .resolver_config import DEFAULT_CACHE_FOLDER, load_config

logger = logging.getLogger(__name__)

# config.json key -> fetch option key
CONFIG_TO_OPTION = {
    K_CACHE_FOLDER: K_CACHE_FOLDER,
    K_RESET_CACHE: K_RESET_CACHE,
    K_CACHE_REFRESH: K_REFRESH,
    K_LOG_TO_CONSOLE: K_LOG_TO_CONSOLE,
}

Refresh = Union[str, int]


def _normalize_url(u: str) -> str:
    """Normalize a URL for cache/dedup purposes.

    - Avoid rewriting path characters (path-sensitive sites can 404)
    - Lower-case host
    - Remove default ports and fragments
    """
    try:
        p = urlparse((u or "").strip())
        host = p.hostname.lower() if p.hostname else None
        netloc = host if host else p.netloc
        if p.port and not ((p.scheme == "http" and p.port == 80) or (p.scheme == "https" and p.port == 443)):
            netloc = f"{netloc}:{p.port}"
        if p.username:
            netloc = f"{p.username}@{netloc}"
        return urlunparse(p._replace(netloc=netloc, fragment=""))
    except ValueError:
        return u or ""


def merge_fetch_options(
    options: Optional[Mapping[str, Any]] = None,
    config: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Apply config.json fetch parameters unless the caller already set them.

    ``cacheRefresh`` in the configuration maps to the ``refresh`` option. The
    refresh policy defaults to ``once`` so that a URL is requested at most
    once per run.
    """

    merged: Dict[str, Any] = dict(options or {})
    config = load_config() if config is None else config
    for config_key, option_key in CONFIG_TO_OPTION.items():
        if config.get(config_key) and option_key not in merged:
            merged[option_key] = config[config_key]
    if not merged.get(K_REFRESH):
        merged[K_REFRESH] = REFRESH_ONCE
    return merged


@dataclass
class FetchConfig:
    """Configuration parameters for asynchronous document fetching."""

    cache_folder: Path = Path(DEFAULT_CACHE_FOLDER)
    reset_cache: bool = False
    refresh: Refresh = REFRESH_ONCE
    log_to_console: bool = False
    timeout: float = 30.0
    max_attempts: int = 1
    backoff_initial: float = 0.8
    backoff_max: float = 6.0
    user_agent: str = (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36 specresolver"
    )
    accept_language: str = "en-US,en;q=0.9"
    disable_cache: bool = False

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, Any]] = None, **overrides: Any) -> "FetchConfig":
        merged = merge_fetch_options(options)
        folder = os.getenv("SPECRESOLVER_CACHE_FOLDER") or merged.get(K_CACHE_FOLDER) or DEFAULT_CACHE_FOLDER
        config = cls(
            cache_folder=Path(str(folder)),
            reset_cache=bool(merged.get(K_RESET_CACHE, False)),
            refresh=merged[K_REFRESH],
            log_to_console=bool(merged.get(K_LOG_TO_CONSOLE, False)),
        )
        return replace(config, **overrides) if overrides else config


@dataclass
class FetchResult:
    """Outcome of retrieving one URL."""

    url: str
    final_url: str
    status: int
    content_type: str
    text: str
    fetched_at: str
    method: str
    headers: Dict[str, str] = field(default_factory=dict)
    from_cache: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "final_url": self.final_url,
            "status": self.status,
            "content_type": self.content_type,
            "text": self.text,
            "fetched_at": self.fetched_at,
            "method": self.method,
            "headers": self.headers,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "FetchResult":
        return cls(
            url=payload["url"],
            final_url=payload.get("final_url") or payload["url"],
            status=int(payload.get("status", 200)),
            content_type=payload.get("content_type", "text/html"),
            text=payload.get("text", ""),
            fetched_at=payload.get("fetched_at", ""),
            method="cache",
            headers=dict(payload.get("headers") or {}),
            from_cache=True,
        )


def _parse_fetched_at(value: str) -> Optional[float]:
    try:
        return datetime.fromisoformat(value).timestamp()
    except (TypeError, ValueError):
        return None


def _load_record(path: Path) -> Optional[Dict[str, Any]]:
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None


def _store_record(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(f".{os.getpid()}.{threading.get_ident()}.tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
    os.replace(tmp, path)


class URLFetcher:
    """Async fetcher backed by a per-URL JSON cache on disk.

    The cache is the only state shared between concurrent resolutions. Writes
    are atomic (temp file + rename) and concurrent requests for the same URL
    share one in-flight task.
    """

    def __init__(self, config: Optional[FetchConfig] = None) -> None:
        self.config = config or FetchConfig.from_options()
        self._refreshed: set[str] = set()
        self._inflight: Dict[Tuple[str, str], asyncio.Task] = {}
        self._cache_lock: Optional[asyncio.Lock] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.calls = 0
        if self.config.reset_cache and not self.config.disable_cache:
            self._reset_cache()

    async def __aenter__(self) -> "URLFetcher":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        self._bind_loop()
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _bind_loop(self) -> None:
        """Attach loop-bound state (HTTP session, lock, in-flight tasks) to the running loop.

        A fetcher outlives ``asyncio.run`` calls; state left by a finished loop
        cannot be used or closed from the new one and is dropped.
        """

        loop = asyncio.get_running_loop()
        if self._loop is loop:
            return
        if self._session is not None and not self._session.closed:
            logger.debug("dropping HTTP session bound to a previous event loop")
            self._session.detach()
        self._session = None
        self._inflight = {}
        self._cache_lock = asyncio.Lock()
        self._loop = loop

    def _reset_cache(self) -> None:
        folder = self.config.cache_folder
        if folder.exists():
            logger.info("Resetting HTTP cache at %s", folder)
            shutil.rmtree(folder, ignore_errors=True)

    def _log(self, msg: str, *args: Any) -> None:
        logger.log(logging.INFO if self.config.log_to_console else logging.DEBUG, msg, *args)

    async def fetch(self, url: str, options: Optional[Mapping[str, Any]] = None) -> FetchResult:
        """Fetch ``url`` applying the refresh policy; raise NetworkError on failure."""

        self.calls += 1
        self._bind_loop()
        refresh = (options or {}).get(K_REFRESH) or self.config.refresh
        key = _normalize_url(url)
        inflight_key = (key, str(refresh))
        task = self._inflight.get(inflight_key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_entry(url, key, refresh))
            self._inflight[inflight_key] = task
            task.add_done_callback(lambda _t: self._inflight.pop(inflight_key, None))
        return await asyncio.shield(task)

    async def _fetch_entry(self, url: str, key: str, refresh: Refresh) -> FetchResult:
        cached = None if self.config.disable_cache else await self._read_cache(key)
        if cached is not None and self._cache_is_fresh(key, cached, refresh):
            self._log("fetch %s (from cache)", url)
            return cached

        self._log("fetch %s", url)
        status, content_type, text, final_url, headers = await self._fetch_with_retries(url)
        if status >= 400:
            raise NetworkError(url, f"HTTP {status}", status=status)
        result = FetchResult(
            url=url,
            final_url=final_url,
            status=status,
            content_type=content_type,
            text=text,
            fetched_at=datetime.now(timezone.utc).isoformat(),
            method="aiohttp",
            headers=headers,
        )
        self._refreshed.add(key)
        if not self.config.disable_cache:
            await self._write_cache(key, result)
        return result

    def _cache_is_fresh(self, key: str, cached: FetchResult, refresh: Refresh) -> bool:
        if refresh == REFRESH_FORCE:
            return False
        if refresh == REFRESH_NEVER:
            return True
        if refresh == REFRESH_ONCE:
            return key in self._refreshed
        try:
            max_age = float(refresh)
        except (TypeError, ValueError):
            return key in self._refreshed
        fetched = _parse_fetched_at(cached.fetched_at)
        return fetched is not None and (time.time() - fetched) <= max_age

    def _cache_path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.config.cache_folder / f"{digest}.json"

    async def _read_cache(self, key: str) -> Optional[FetchResult]:
        payload = await asyncio.to_thread(_load_record, self._cache_path(key))
        return FetchResult.from_dict(payload) if payload is not None else None

    async def _write_cache(self, key: str, result: FetchResult) -> None:
        assert self._cache_lock is not None
        async with self._cache_lock:
            await asyncio.to_thread(_store_record, self._cache_path(key), result.to_dict())

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {
                "User-Agent": self.config.user_agent,
                "Accept-Language": self.config.accept_language,
                "Accept-Encoding": "gzip, deflate",
            }
            self._session = aiohttp.ClientSession(headers=headers)
        return self._session

    async def _fetch_with_retries(self, url: str) -> Tuple[int, str, str, str, Dict[str, str]]:
        delay = self.config.backoff_initial
        for attempt in range(1, max(1, self.config.max_attempts) + 1):
            try:
                return await self._fetch_once(url)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                if attempt >= self.config.max_attempts:
                    raise NetworkError(url, f"{type(exc).__name__}: {exc}") from exc
                logger.debug("retrying %s after %s (attempt %d)", url, exc, attempt)
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.config.backoff_max)
        raise RuntimeError("unexpected retry state")

    async def _fetch_once(self, url: str) -> Tuple[int, str, str, str, Dict[str, str]]:
        session = self._get_session()
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)
        async with session.get(url, timeout=timeout, allow_redirects=True) as resp:
            status = resp.status
            headers = {k.lower(): v for k, v in resp.headers.items()}
            content_type = headers.get("content-type", "text/html").split(";")[0].strip()
            raw_bytes = await resp.read()
            final_url = str(resp.url)
        return status, content_type, decode_bytes_auto(raw_bytes, headers), final_url, headers


_default_fetcher: Optional[URLFetcher] = None


def get_default_fetcher() -> URLFetcher:
    """Process-wide fetcher configured from config.json (created lazily)."""

    global _default_fetcher
    if _default_fetcher is None:
        _default_fetcher = URLFetcher(FetchConfig.from_options())
    return _default_fetcher


async def fetch(url: str, options: Optional[Mapping[str, Any]] = None) -> FetchResult:
    """Fetch ``url`` with config.json parameters applied unless set in ``options``.

    Calls that only choose a refresh policy share the process-wide fetcher;
    calls that pick their own cache folder or logging get a dedicated one.
    """

    merged = merge_fetch_options(options)
    refresh_only = {K_REFRESH: merged[K_REFRESH]}
    if not set(options or {}) - {K_REFRESH}:
        return await get_default_fetcher().fetch(url, refresh_only)
    async with URLFetcher(FetchConfig.from_options(merged)) as one_off:
        return await one_off.fetch(url, refresh_only)


__all__ = [
    "FetchConfig",
    "FetchResult",
    "URLFetcher",
    "fetch",
    "get_default_fetcher",
    "merge_fetch_options",
]
