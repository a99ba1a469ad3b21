"""Exceptions raised while resolving a specification."""

from __future__ import annotations

from typing import Optional, Sequence


class SpecResolverError(Exception):
    """Base class for every error surfaced by the resolution pipeline."""


class NetworkError(SpecResolverError):
    """A URL could not be retrieved (DNS, timeout, non-success status)."""

    def __init__(self, url: str, message: str, status: Optional[int] = None) -> None:
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status = status


class RenderError(SpecResolverError):
    """The sandbox could not produce a rendered document."""


class RenderTimeoutError(RenderError):
    def __init__(self, url: str, timeout: float) -> None:
        super().__init__(
            f"Specification apparently uses ReSpec but document generation "
            f"timed out after {timeout:g}s ({url})"
        )
        self.url = url
        self.timeout = timeout


class RedirectLoopError(SpecResolverError):
    def __init__(self, chain: Sequence[str]) -> None:
        self.chain = list(chain)
        self.hops = max(0, len(self.chain) - 1)
        super().__init__(
            f"Infinite loop detected after {self.hops} redirections: "
            + " -> ".join(self.chain)
        )


class SandboxShimError(SpecResolverError):
    """A DOM compatibility shim fell back to a safe value.

    Never raised out of a render; sessions collect these for diagnostics.
    """

    def __init__(self, shim: str, detail: str = "") -> None:
        super().__init__(f"{shim}: {detail}" if detail else shim)
        self.shim = shim
        self.detail = detail


__all__ = [
    "SpecResolverError",
    "NetworkError",
    "RenderError",
    "RenderTimeoutError",
    "RedirectLoopError",
    "SandboxShimError",
]
