import asyncio
from datetime import datetime, timezone

from specresolver.workflows import resolver_config
from specresolver.workflows.browser_session import (
    ENGINE_BINDING,
    SHIM_BINDING,
    BrowserRenderSession,
    build_shims_script,
)
from specresolver.workflows.errors import NetworkError
from specresolver.workflows.http_fetch import FetchResult

BASE = "https://w3c.github.io/spec/"
MARKUP = "<html><head></head><body>spec</body></html>"


class FakeFrame:
    parent_frame = None


class FakeRequest:
    def __init__(self, url, resource_type="script", navigation=False):
        self.url = url
        self.resource_type = resource_type
        self.frame = FakeFrame()
        self._navigation = navigation

    def is_navigation_request(self):
        return self._navigation


class FakeRoute:
    def __init__(self):
        self.fulfilled = None
        self.aborted = False

    async def fulfill(self, **kwargs):
        self.fulfilled = kwargs

    async def abort(self, *args):
        self.aborted = True


class FakeFetcher:
    def __init__(self, bodies):
        self.bodies = bodies
        self.calls = []

    async def fetch(self, url, options=None):
        self.calls.append(url)
        if url not in self.bodies:
            raise NetworkError(url, "HTTP 404", status=404)
        return FetchResult(
            url=url,
            final_url=url,
            status=200,
            content_type="application/javascript",
            text=self.bodies[url],
            fetched_at=datetime.now(timezone.utc).isoformat(),
            method="fake",
        )


def _route(session, request):
    route = FakeRoute()
    asyncio.run(session._handle_route(route, request))
    return route


def test_shims_script_wires_bindings():
    script = build_shims_script()
    assert ENGINE_BINDING in script
    assert SHIM_BINDING in script
    assert "respecIsReady" in script
    assert "postProcess" in script
    assert "%(" not in script


def test_initial_navigation_is_served_from_markup_once():
    session = BrowserRenderSession(MARKUP, BASE, fetcher=FakeFetcher({}))
    first = _route(session, FakeRequest(BASE, "document", navigation=True))
    assert first.fulfilled["body"] == MARKUP
    again = _route(session, FakeRequest("https://w3c.github.io/other/", "document", navigation=True))
    assert again.aborted


def test_bare_origin_navigation_is_served_from_markup():
    session = BrowserRenderSession(MARKUP, "https://fetch.spec.whatwg.org", fetcher=FakeFetcher({}))
    route = _route(session, FakeRequest("https://fetch.spec.whatwg.org/", "document", navigation=True))
    assert route.fulfilled is not None
    assert route.fulfilled["body"] == MARKUP
    assert not route.aborted


def test_set_content_markup_keeps_file_base_url():
    session = BrowserRenderSession(MARKUP, "file:///home/editor/spec/index.html", fetcher=FakeFetcher({}))
    markup = session.initial_markup()
    assert markup.startswith('<html><head><base href="file:///home/editor/spec/index.html">')
    assert markup.endswith("<body>spec</body></html>")


def test_set_content_markup_for_about_blank_is_unchanged():
    assert BrowserRenderSession(MARKUP, fetcher=FakeFetcher({})).initial_markup() == MARKUP


def test_skipped_resource_gets_empty_response():
    fetcher = FakeFetcher({})
    session = BrowserRenderSession(MARKUP, BASE, fetcher=fetcher)
    route = _route(session, FakeRequest(BASE + "style.css", "stylesheet"))
    assert route.fulfilled["body"] == ""
    assert fetcher.calls == []


def test_respec_script_is_pinned_and_patched():
    pinned = resolver_config.RESPEC_PINNED_URL
    fetcher = FakeFetcher({pinned: "el.innerText=1;"})
    session = BrowserRenderSession(MARKUP, BASE, fetcher=fetcher)
    route = _route(session, FakeRequest("https://www.w3.org/Tools/respec/respec-w3c-common"))
    assert fetcher.calls == [pinned]
    assert route.fulfilled["body"] == "el.textContent=1;"


def test_scripted_fetch_bypasses_policy():
    data = BASE + "data/biblio.json"
    fetcher = FakeFetcher({data: "{}"})
    session = BrowserRenderSession(MARKUP, BASE, fetcher=fetcher, policy=lambda url, referrer: None)
    route = _route(session, FakeRequest(data, "fetch"))
    assert fetcher.calls == [data]
    assert route.fulfilled["body"] == "{}"


def test_failed_subresource_is_aborted():
    session = BrowserRenderSession(MARKUP, BASE, fetcher=FakeFetcher({}))
    route = _route(session, FakeRequest(BASE + "missing.js"))
    assert route.aborted
