"""Headless Chromium render session (Playwright async API).

Every request the page makes goes through one route handler:

- the initial navigation to the base URL is answered with the session markup
- scripted ``fetch``/XHR calls go straight to the fetcher (shared cache)
- any other resource is submitted to the resource policy, which skips it,
  or fetches it (possibly from a rewritten URL) and patches the text
- later main-frame navigations (meta refresh, scripted redirects) are
  aborted; the resolver follows redirects itself

The DOM compatibility shims are installed per browser context as an init
script, before any page script runs.
"""

from __future__ import annotations

import logging
from typing import Any, Dict
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Request, Route, async_playwright

from .errors import NetworkError, RenderError
from .html_utils import with_base_href
from .resolver_config import ENGINE_POLL_INTERVAL_MS, headed_browser
from .render_session import ABOUT_BLANK, RESPEC_SCRIPT_SELECTOR, EngineState, RenderSession
from .resource_gate import Fetch, Skip

logger = logging.getLogger(__name__)

ENGINE_BINDING = "__specresolverEngineDone"
SHIM_BINDING = "__specresolverShimFallback"
LOAD_TIMEOUT_SECONDS = 60.0
SCRIPTED_RESOURCE_TYPES = {"fetch", "xhr"}

_SHIMS_TEMPLATE = r"""
(() => {
  const reportShim = (shim, detail) => {
    try { window.%(shim_binding)s(shim, String(detail || '')); } catch (e) {}
  };

  const proto = window.Element && window.Element.prototype;
  if (proto && !proto.insertAdjacentElement) {
    proto.insertAdjacentElement = function (position, element) {
      switch (String(position).toLowerCase()) {
        case 'beforebegin':
          this.parentElement.insertBefore(element, this);
          break;
        case 'afterbegin':
          this.insertBefore(element, this.firstChild);
          break;
        case 'beforeend':
          this.appendChild(element);
          break;
        case 'afterend':
          this.parentElement.insertBefore(element, this.nextSibling);
          break;
      }
      return element;
    };
  }
  if (proto && !proto.closest) {
    proto.closest = function (selector) {
      let el = this;
      if (!this.ownerDocument.documentElement.contains(el)) return null;
      do {
        if (el.matches(selector)) return el;
        el = el.parentElement || el.parentNode;
      } while (el !== null && el.nodeType === 1);
      return null;
    };
  }
  if (window.Attr && !window.Attr.prototype.cloneNode) {
    window.Attr.prototype.cloneNode = function () {
      if (!this.ownerDocument) {
        reportShim('Attr.cloneNode', 'attribute without owner document');
        return this;
      }
      return this.ownerDocument.createAttributeNS(this.namespaceURI, this.name, this.value);
    };
  }
  if (!window.matchMedia) {
    window.matchMedia = function () {
      return { matches: false, addListener() {}, removeListener() {}, onchange() {} };
    };
  }
  ['blur', 'focus', 'moveBy', 'moveTo', 'resizeBy', 'resizeTo', 'scroll', 'scrollBy', 'scrollTo']
    .forEach(method => {
      if (typeof window[method] !== 'function') window[method] = function () {};
    });

  if (window.fetch) {
    const nativeFetch = window.fetch.bind(window);
    window.fetch = function (input, init) {
      if (typeof input === 'string') {
        input = new URL(input, document.baseURI).href;
      }
      return nativeFetch(input, init);
    };
  }

  let notified = false;
  const engineDone = (how, error) => {
    if (notified) return;
    notified = true;
    window.%(engine_binding)s(how, error || '');
  };
  let config;
  Object.defineProperty(window, 'respecConfig', {
    configurable: true,
    get() { return config; },
    set(value) {
      config = value;
      if (value && typeof value === 'object') {
        if (!Array.isArray(value.postProcess)) {
          value.postProcess = value.postProcess ? [value.postProcess] : [];
        }
        value.postProcess.push(() => engineDone('postProcess'));
      }
    },
  });
  window.addEventListener('load', () => {
    if (!(config && document.head && document.head.querySelector("%(respec_selector)s"))) return;
    const poll = () => {
      if (notified) return;
      if (document.respecIsReady) {
        document.respecIsReady.then(
          () => engineDone('respecIsReady'),
          err => engineDone('error', String(err)));
        return;
      }
      setTimeout(poll, %(interval)d);
    };
    poll();
  });
})();
"""

_PROBE_SCRIPT = (
    "() => ({declaresConfig: !!window.respecConfig, "
    "loadsEngine: !!(document.head && document.head.querySelector(\"%s\"))})" % RESPEC_SCRIPT_SELECTOR
)


def build_shims_script() -> str:
    return _SHIMS_TEMPLATE % {
        "shim_binding": SHIM_BINDING,
        "engine_binding": ENGINE_BINDING,
        "respec_selector": RESPEC_SCRIPT_SELECTOR,
        "interval": ENGINE_POLL_INTERVAL_MS,
    }


class BrowserRenderSession(RenderSession):
    """Full-fidelity session running the page scripts in headless Chromium."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._document_served = False

    async def _load(self) -> None:
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(headless=not headed_browser())
            self._context = await self._browser.new_context(java_script_enabled=True)
            await self._context.expose_binding(ENGINE_BINDING, self._on_engine_signal)
            await self._context.expose_binding(SHIM_BINDING, self._on_shim_fallback)
            await self._context.add_init_script(script=build_shims_script())
            await self._context.route("**/*", self._handle_route)
            self._page = await self._context.new_page()
            self._page.on("pageerror", lambda exc: logger.debug("%s: page error: %s", self.base_url, exc))
            timeout_ms = LOAD_TIMEOUT_SECONDS * 1000
            if urlparse(self.base_url).scheme in {"http", "https"}:
                await self._page.goto(self.base_url, wait_until="load", timeout=timeout_ms)
            else:
                # no navigation request: later main-frame navigations are blocked
                self._document_served = True
                await self._page.set_content(self.initial_markup(), wait_until="load", timeout=timeout_ms)
        except PlaywrightError as exc:
            raise RenderError(f"could not load {self.base_url}: {exc}") from exc

    def initial_markup(self) -> str:
        """Markup handed to ``set_content`` when the base URL cannot be navigated to.

        ``set_content`` leaves the document at about:blank, so a ``<base href>``
        keeps relative URLs bound to the session base URL.
        """

        if self.base_url == ABOUT_BLANK:
            return self.markup
        return with_base_href(self.markup, self.base_url)

    async def _probe_engine(self) -> EngineState:
        assert self._page is not None
        state: Dict[str, Any] = await self._page.evaluate(_PROBE_SCRIPT)
        return EngineState(
            declares_config=bool(state.get("declaresConfig")),
            loads_engine=bool(state.get("loadsEngine")),
        )

    async def content(self) -> str:
        assert self._page is not None
        return await self._page.content()

    def _on_engine_signal(self, source: Dict[str, Any], how: str, error: str = "") -> None:
        if self._page is None or source.get("frame") is not self._page.main_frame:
            return
        if how == "error":
            self._signal_engine_failed(error)
        else:
            self._signal_engine_ready(how)

    def _on_shim_fallback(self, source: Dict[str, Any], shim: str, detail: str = "") -> None:
        self.record_shim_fallback(shim, detail)

    async def _handle_route(self, route: Route, request: Request) -> None:
        url = request.url
        main_navigation = request.is_navigation_request() and request.frame.parent_frame is None
        if main_navigation:
            # first main-frame navigation is the session document; Chromium may
            # have normalized its URL (bare origins gain a trailing slash)
            if not self._document_served:
                self._document_served = True
                await route.fulfill(status=200, content_type="text/html; charset=utf-8", body=self.markup)
            else:
                logger.debug("%s: blocked navigation to %s", self.base_url, url)
                await route.abort()
            return

        if request.resource_type in SCRIPTED_RESOURCE_TYPES:
            decision = Fetch(url)
        else:
            decision = self.policy(url, self.base_url)
        if isinstance(decision, Skip):
            await route.fulfill(status=200, body="")
            return
        if self.fetcher is None:
            await route.abort()
            return
        try:
            result = await self.fetcher.fetch(decision.url)
        except NetworkError as exc:
            logger.warning("%s: could not load resource %s: %s", self.base_url, url, exc)
            await route.abort()
            return
        await route.fulfill(
            status=result.status,
            content_type=result.content_type,
            body=decision.apply(result.text),
        )

    async def close(self) -> None:
        await super().close()
        for closer in (self._context, self._browser):
            if closer is None:
                continue
            try:
                await closer.close()
            except PlaywrightError as exc:
                logger.debug("%s: error while closing browser: %s", self.base_url, exc)
        if self._playwright is not None:
            await self._playwright.stop()
        self._page = self._context = self._browser = self._playwright = None


__all__ = ["BrowserRenderSession", "build_shims_script"]
