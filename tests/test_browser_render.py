"""End-to-end checks of the page-side hooks; need a Playwright Chromium install."""

import asyncio
from datetime import datetime, timezone

import pytest

from specresolver.workflows import resolver_config
from specresolver.workflows.browser_session import BrowserRenderSession
from specresolver.workflows.doctor import _chromium_executable
from specresolver.workflows.errors import RenderError, RenderTimeoutError
from specresolver.workflows.http_fetch import FetchResult

pytestmark = pytest.mark.skipif(_chromium_executable() is None, reason="Playwright Chromium is not installed")

BASE = "https://w3c.github.io/spec/"
TEMPLATE = """<!DOCTYPE html>
<html><head>
<script>var respecConfig = { specStatus: "ED" };</script>
<script src="https://www.w3.org/Tools/respec/respec-w3c-common" defer></script>
</head><body><p>Body</p></body></html>
"""

# Stand-ins for the ReSpec bundle: each finishes through one completion channel
POST_PROCESS_ENGINE = """
document.body.id = "respecDocument";
window.respecConfig.postProcess.forEach(hook => hook());
"""
READY_PROMISE_ENGINE = """
document.body.id = "respecDocument";
document.respecIsReady = Promise.resolve();
"""
REJECTED_PROMISE_ENGINE = "document.respecIsReady = Promise.reject(new Error('bad config'));"
SILENT_ENGINE = "document.body.dataset.loaded = 'yes';"


class EngineFetcher:
    def __init__(self, engine_source):
        self.engine_source = engine_source
        self.calls = []

    async def fetch(self, url, options=None):
        self.calls.append(url)
        return FetchResult(
            url=url,
            final_url=url,
            status=200,
            content_type="application/javascript",
            text=self.engine_source,
            fetched_at=datetime.now(timezone.utc).isoformat(),
            method="fake",
        )


def _render(engine_source, base_url=BASE, timeout=10):
    fetcher = EngineFetcher(engine_source)

    async def _run():
        async with BrowserRenderSession(TEMPLATE, base_url, fetcher=fetcher, timeout=timeout) as session:
            await session.render()
            return await session.wait_for_engine(), await session.content()

    how, html = asyncio.run(_run())
    return how, html, fetcher


def test_post_process_hook_signals_completion():
    how, html, fetcher = _render(POST_PROCESS_ENGINE)
    assert how == "postProcess"
    assert 'id="respecDocument"' in html
    assert fetcher.calls == [resolver_config.RESPEC_PINNED_URL]


def test_ready_promise_signals_completion():
    how, html, _ = _render(READY_PROMISE_ENGINE)
    assert how == "respecIsReady"
    assert 'id="respecDocument"' in html


def test_rejected_ready_promise_fails_the_render():
    with pytest.raises(RenderError, match="bad config"):
        _render(REJECTED_PROMISE_ENGINE)


def test_silent_engine_times_out():
    with pytest.raises(RenderTimeoutError):
        _render(SILENT_ENGINE, timeout=1)


def test_bare_origin_document_renders():
    how, _, _ = _render(POST_PROCESS_ENGINE, base_url="https://fetch.spec.whatwg.org")
    assert how == "postProcess"


def test_file_document_keeps_its_base_url():
    async def _run():
        markup = "<html><head></head><body></body></html>"
        async with BrowserRenderSession(markup, "file:///tmp/spec/index.html", fetcher=EngineFetcher("")) as session:
            await session.render()
            return await session._page.evaluate("() => document.baseURI")

    assert asyncio.run(_run()) == "file:///tmp/spec/index.html"
