"""Policy deciding which secondary resources a render session may load.

Rendering only needs the ReSpec engine and the scripts that sit next to the
spec under test. Stylesheets, third-party trackers and helper scripts that
crash or slow down the sandbox are filtered out by construction.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional, Union
from urllib.parse import urlparse

from .resolver_config import (
    ALLOWED_EXTENSIONS,
    DENIED_PATH_PATTERNS,
    RESPEC_DROPPED_MODULES,
    RESPEC_PATH_PATTERN,
    RESPEC_PROFILE_MODULE,
    WHITELISTED_SCRIPT_PATHS,
    respec_url,
)

logger = logging.getLogger(__name__)

Transform = Callable[[str], str]

_RESPEC_RE = re.compile(RESPEC_PATH_PATTERN, re.I)
_EXTENSION_RE = re.compile(r"\.[^/.]+$")
_DENIED_RES = tuple(re.compile(p, re.I) for p in DENIED_PATH_PATTERNS)


@dataclass(frozen=True)
class Skip:
    """Do not hit the network; the renderer receives an empty body."""

    reason: str = ""


@dataclass(frozen=True)
class Fetch:
    """Fetch ``url`` (possibly rewritten) and pass the text through ``transform``."""

    url: str
    transform: Optional[Transform] = None

    def apply(self, text: str) -> str:
        return self.transform(text) if self.transform is not None else text


ResourceDecision = Union[Skip, Fetch]
ResourcePolicy = Callable[[str, str], ResourceDecision]


def patch_respec_bootstrap(source: str) -> str:
    """Tweak the ReSpec bundle so that it runs in the sandbox.

    - drop modules relying on unsupported APIs (core/highlight needs
      URL.createObjectURL)
    - turn uncommon @keyframes / @supports rules into @media rules the CSS
      parser accepts
    - replace innerText assignments with textContent
    """

    for module in RESPEC_DROPPED_MODULES:
        source = re.sub(
            r'(define\(\s*"' + re.escape(RESPEC_PROFILE_MODULE) + r'"\s*,\s*\[[^\]]+),\s*"' + re.escape(module) + '"',
            r"\1",
            source,
            count=1,
        )
    source = re.sub(r"@keyframes \S+? {", "@media all {", source, count=1)
    source = re.sub(r"@supports \(.+?\) {", "@media all {", source, count=1)
    source = source.replace(".innerText=", ".textContent=")
    source = source.replace("body.innerText", "body.textContent")
    return source


def referrer_directory(referrer_url: str) -> str:
    if referrer_url.endswith("/"):
        return referrer_url
    return referrer_url[: referrer_url.rfind("/") + 1]


def _is_denied(path: str) -> bool:
    return any(pattern.search(path) for pattern in _DENIED_RES)


def decide(requested_url: str, referrer_url: str) -> ResourceDecision:
    """Return the policy decision for one secondary resource request."""

    path = urlparse(requested_url).path or "/"

    if _RESPEC_RE.search(path):
        pinned = respec_url()
        logger.debug("fetch ReSpec %s (pinned to %s)", requested_url, pinned)
        return Fetch(pinned, transform=patch_respec_bootstrap)

    if _EXTENSION_RE.search(path) and not path.endswith(ALLOWED_EXTENSIONS):
        logger.debug("fetch not needed for %s (not a JS/JSON file)", requested_url)
        return Skip("not_script")

    if path in WHITELISTED_SCRIPT_PATHS or (
        requested_url.startswith(referrer_directory(referrer_url)) and not _is_denied(path)
    ):
        logger.debug("fetch useful script at %s", requested_url)
        return Fetch(requested_url)

    logger.debug("fetch not needed for %s", requested_url)
    return Skip("not_allowed")


__all__ = [
    "Skip",
    "Fetch",
    "ResourceDecision",
    "ResourcePolicy",
    "decide",
    "patch_respec_bootstrap",
    "referrer_directory",
]
