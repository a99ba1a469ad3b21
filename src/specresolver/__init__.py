"""Resolve W3C/WHATWG specifications into single, fully rendered documents."""

from .workflows import (
    NetworkError,
    RedirectLoopError,
    RenderTimeoutError,
    ResolvedDocument,
    SpecResolver,
    resolve_many,
    resolve_specification,
    url_or_document,
)

__all__ = [
    "NetworkError",
    "RedirectLoopError",
    "RenderTimeoutError",
    "ResolvedDocument",
    "SpecResolver",
    "resolve_many",
    "resolve_specification",
    "url_or_document",
]
