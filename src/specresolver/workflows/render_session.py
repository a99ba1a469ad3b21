"""Render sessions: one sandboxed document per render attempt.

A session owns its document for the lifetime of one attempt and is bound to
exactly one base URL. ``render()`` returns once the page has fired ``load``
and, when the document declares ``respecConfig`` and loads the ReSpec
script, once the engine signalled completion (``document.respecIsReady`` or
the ``postProcess`` hook), bounded by ``timeout`` seconds.

Two environments implement the session:

- ``BrowserRenderSession`` (browser_session.py) runs scripts in headless
  Chromium through Playwright.
- ``StaticRenderSession`` parses the markup without running scripts. This is
  the reduced-fidelity mode: templated documents come back unrendered.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional

from bs4 import BeautifulSoup

from ..core.keys import MODE_STATIC
from .errors import RenderError, RenderTimeoutError, SandboxShimError
from .html_utils import parse_document, strip_bom
from .http_fetch import URLFetcher
from .resolver_config import render_mode, render_timeout
from .resource_gate import ResourcePolicy, decide

logger = logging.getLogger(__name__)

ABOUT_BLANK = "about:blank"
RESPEC_SCRIPT_SELECTOR = "script[src*='respec']"
_RESPEC_CONFIG_RE = re.compile(r"\brespecConfig\s*=")


@dataclass(frozen=True)
class EngineState:
    declares_config: bool = False
    loads_engine: bool = False

    @property
    def in_use(self) -> bool:
        return self.declares_config and self.loads_engine


class RenderSession(abc.ABC):
    def __init__(
        self,
        markup: str,
        base_url: Optional[str] = None,
        *,
        fetcher: Optional[URLFetcher] = None,
        policy: ResourcePolicy = decide,
        timeout: Optional[float] = None,
    ) -> None:
        self._markup = strip_bom(markup or "")
        self._base_url = base_url or ABOUT_BLANK
        self.fetcher = fetcher
        self.policy = policy
        self.timeout = render_timeout() if timeout is None else float(timeout)
        self.engine = EngineState()
        self.shim_fallbacks: List[SandboxShimError] = []
        self._engine_done: Optional[asyncio.Future] = None
        self._deadline: Optional[float] = None
        self._rendered = False

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def markup(self) -> str:
        return self._markup

    async def __aenter__(self) -> "RenderSession":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def render(self) -> "RenderSession":
        """Load the markup and wait until the document is quiescent."""

        if self._rendered:
            return self
        self._engine_done = asyncio.get_running_loop().create_future()
        await self._load()
        self.engine = await self._probe_engine()
        self._rendered = True
        if self.engine.in_use:
            how = await self.wait_for_engine()
            logger.debug("%s: ReSpec finished (%s)", self.base_url, how)
        return self

    async def wait_for_engine(self) -> str:
        """Wait for the engine completion signal; the bound starts on first call."""

        if self._engine_done is None:
            raise RenderError(f"session for {self.base_url} has not been rendered")
        if not self.engine.in_use:
            return "not_used"
        loop = asyncio.get_running_loop()
        if self._deadline is None:
            self._deadline = loop.time() + self.timeout
        remaining = max(0.0, self._deadline - loop.time())
        try:
            return await asyncio.wait_for(asyncio.shield(self._engine_done), remaining)
        except asyncio.TimeoutError:
            raise RenderTimeoutError(self.base_url, self.timeout) from None

    def _signal_engine_ready(self, how: str) -> None:
        if self._engine_done is not None and not self._engine_done.done():
            self._engine_done.set_result(how)

    def _signal_engine_failed(self, message: str) -> None:
        if self._engine_done is not None and not self._engine_done.done():
            self._engine_done.set_exception(
                RenderError(f"ReSpec failed to generate {self.base_url}: {message}")
            )

    def record_shim_fallback(self, shim: str, detail: str = "") -> None:
        error = SandboxShimError(shim, detail)
        self.shim_fallbacks.append(error)
        logger.debug("%s: shim fallback %s", self.base_url, error)

    async def document(self) -> BeautifulSoup:
        return parse_document(await self.content())

    @abc.abstractmethod
    async def _load(self) -> None:
        ...

    @abc.abstractmethod
    async def _probe_engine(self) -> EngineState:
        ...

    @abc.abstractmethod
    async def content(self) -> str:
        """Serialized markup of the current DOM."""

    async def close(self) -> None:
        if self._engine_done is not None and not self._engine_done.done():
            self._engine_done.cancel()


class StaticRenderSession(RenderSession):
    """Structural-only session: parse the markup, never run scripts."""

    _soup: Optional[BeautifulSoup] = None

    async def _load(self) -> None:
        self._soup = parse_document(self.markup)

    async def _probe_engine(self) -> EngineState:
        soup = self._soup
        assert soup is not None
        head = soup.head
        loads = bool(head is not None and head.select_one(RESPEC_SCRIPT_SELECTOR))
        declares = any(
            _RESPEC_CONFIG_RE.search(script.string or "")
            for script in soup.find_all("script")
            if not script.get("src")
        )
        state = EngineState(declares_config=declares, loads_engine=loads)
        if state.in_use:
            logger.warning("%s uses ReSpec; static mode returns it unrendered", self.base_url)
            self._signal_engine_ready("static")
        return state

    async def content(self) -> str:
        if self._soup is None:
            return self.markup
        return str(self._soup)


def create_session(
    markup: str,
    base_url: Optional[str] = None,
    *,
    fetcher: Optional[URLFetcher] = None,
    policy: ResourcePolicy = decide,
    timeout: Optional[float] = None,
    mode: Optional[str] = None,
) -> RenderSession:
    """Build the session for the configured render mode."""

    if (mode or render_mode()) == MODE_STATIC:
        return StaticRenderSession(markup, base_url, fetcher=fetcher, policy=policy, timeout=timeout)
    from .browser_session import BrowserRenderSession

    return BrowserRenderSession(markup, base_url, fetcher=fetcher, policy=policy, timeout=timeout)


__all__ = [
    "ABOUT_BLANK",
    "EngineState",
    "RenderSession",
    "StaticRenderSession",
    "create_session",
]
