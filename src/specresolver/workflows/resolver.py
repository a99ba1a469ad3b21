"""Resolution pipeline: URL or markup in, rendered document and generator out.

Each attempt fetches (for URLs), renders, then checks the rendered document
for a meta refresh or a single-page link. Following one of those re-enters
the loop with the hop counter incremented; the loop fails once the counter
reaches ``max_hops`` before a fetch.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from bs4 import BeautifulSoup

from .errors import RedirectLoopError
from .generator import detect_generator
from .html_utils import parse_document
from .http_fetch import FetchResult, URLFetcher, get_default_fetcher
from .redirects import next_location
from .render_session import ABOUT_BLANK, RenderSession, create_session
from .resolver_config import max_hops as configured_max_hops
from .resource_gate import ResourcePolicy, decide

logger = logging.getLogger(__name__)

SessionFactory = Callable[..., RenderSession]


@dataclass(frozen=True)
class SpecRequest:
    """Either a URL to fetch, or markup with its declared/actual location."""

    url: Optional[str] = None
    html: Optional[str] = None
    response_url: Optional[str] = None

    @classmethod
    def coerce(cls, value: Union[str, Mapping[str, Any], "SpecRequest"]) -> "SpecRequest":
        if isinstance(value, SpecRequest):
            return value
        if isinstance(value, str):
            return cls(url=value)
        return cls(
            url=value.get("url"),
            html=value.get("html"),
            response_url=value.get("responseUrl") or value.get("response_url"),
        )

    @property
    def has_markup(self) -> bool:
        return bool(self.html)

    @property
    def location(self) -> str:
        return self.url or ABOUT_BLANK

    @property
    def final_location(self) -> str:
        return self.response_url or self.location


@dataclass
class ResolvedDocument:
    """Terminal artifact: the rendered DOM plus the generator that produced it."""

    document: BeautifulSoup
    generator: str
    html: str
    url: str
    requested_url: str
    hops: int = 0
    chain: List[str] = field(default_factory=list)

    @property
    def title(self) -> str:
        title = self.document.title
        return title.get_text(" ", strip=True) if title is not None else ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "requested_url": self.requested_url,
            "generator": self.generator,
            "title": self.title,
            "hops": self.hops,
            "chain": list(self.chain),
        }


class SpecResolver:
    """Compose fetcher, render session, generator detection and redirects."""

    def __init__(
        self,
        fetcher: Optional[URLFetcher] = None,
        *,
        session_factory: SessionFactory = create_session,
        policy: ResourcePolicy = decide,
        max_hops: Optional[int] = None,
        render_timeout: Optional[float] = None,
        render_mode: Optional[str] = None,
    ) -> None:
        self.fetcher = fetcher or get_default_fetcher()
        self.session_factory = session_factory
        self.policy = policy
        self.max_hops = configured_max_hops() if max_hops is None else max_hops
        self.render_timeout = render_timeout
        self.render_mode = render_mode

    def _new_session(self, markup: str, base_url: str) -> RenderSession:
        kwargs: Dict[str, Any] = {"fetcher": self.fetcher, "policy": self.policy, "timeout": self.render_timeout}
        if self.render_mode is not None:
            kwargs["mode"] = self.render_mode
        return self.session_factory(markup, base_url, **kwargs)

    async def resolve(self, request: Union[str, Mapping[str, Any], SpecRequest]) -> ResolvedDocument:
        spec = SpecRequest.coerce(request)
        hop = 0
        chain: List[str] = []

        while True:
            if not spec.has_markup:
                chain.append(spec.location)
                if hop >= self.max_hops:
                    raise RedirectLoopError(chain)
                fetched: FetchResult = await self.fetcher.fetch(spec.location)
                spec = SpecRequest(url=spec.location, html=fetched.text, response_url=fetched.final_url)
            elif not chain:
                chain.append(spec.final_location)

            url, response_url = spec.location, spec.final_location
            async with self._new_session(spec.html or "", response_url) as session:
                await session.render()
                soup = await session.document()
                redirection = next_location(soup, url, response_url)
                if redirection is None:
                    generator = await detect_generator(session)
                    html = await session.content()
                    logger.info("resolved %s (generator: %s, hops: %d)", response_url, generator, hop)
                    return ResolvedDocument(
                        document=parse_document(html),
                        generator=generator,
                        html=html,
                        url=response_url,
                        requested_url=chain[0],
                        hops=hop,
                        chain=chain,
                    )

            logger.info("%s: following %s to %s", response_url, redirection.reason, redirection.target)
            spec = SpecRequest(url=redirection.target)
            hop += 1

    async def resolve_many(
        self,
        requests: Iterable[Union[str, Mapping[str, Any], SpecRequest]],
        *,
        concurrency: int = 4,
    ) -> List[Union[ResolvedDocument, BaseException]]:
        """Resolve independent specs concurrently, one outcome per request.

        Failures come back as exception objects in the matching slot.
        """

        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def _one(request: Union[str, Mapping[str, Any], SpecRequest]) -> ResolvedDocument:
            async with semaphore:
                return await self.resolve(request)

        return list(await asyncio.gather(*(_one(r) for r in requests), return_exceptions=True))


async def resolve_specification(
    request: Union[str, Mapping[str, Any], SpecRequest],
    **kwargs: Any,
) -> ResolvedDocument:
    """Resolve a spec given as a URL or as ``{"html", "url", "responseUrl"}``."""

    return await SpecResolver(**kwargs).resolve(request)


async def resolve_many(
    requests: Iterable[Union[str, Mapping[str, Any], SpecRequest]],
    *,
    concurrency: int = 4,
    **kwargs: Any,
) -> List[Union[ResolvedDocument, BaseException]]:
    return await SpecResolver(**kwargs).resolve_many(requests, concurrency=concurrency)


async def url_or_document(value: Any, **kwargs: Any) -> Any:
    """Resolve ``value`` when it is a URL; return anything else unchanged."""

    if isinstance(value, str):
        return await resolve_specification(value, **kwargs)
    return value


__all__ = [
    "SpecRequest",
    "ResolvedDocument",
    "SpecResolver",
    "resolve_specification",
    "resolve_many",
    "url_or_document",
]
