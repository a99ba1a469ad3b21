"""High-level exports for the specresolver workflows."""

from .errors import (
    NetworkError,
    RedirectLoopError,
    RenderError,
    RenderTimeoutError,
    SandboxShimError,
    SpecResolverError,
)
from .generator import detect_generator
from .http_fetch import FetchConfig, FetchResult, URLFetcher, fetch
from .render_session import RenderSession, StaticRenderSession, create_session
from .resolver import (
    ResolvedDocument,
    SpecRequest,
    SpecResolver,
    resolve_many,
    resolve_specification,
    url_or_document,
)
from .resource_gate import Fetch, Skip, decide

__all__ = [
    "FetchConfig",
    "FetchResult",
    "URLFetcher",
    "fetch",
    "Fetch",
    "Skip",
    "decide",
    "RenderSession",
    "StaticRenderSession",
    "create_session",
    "detect_generator",
    "ResolvedDocument",
    "SpecRequest",
    "SpecResolver",
    "resolve_many",
    "resolve_specification",
    "url_or_document",
    "SpecResolverError",
    "NetworkError",
    "RenderError",
    "RenderTimeoutError",
    "RedirectLoopError",
    "SandboxShimError",
]
