"""Identify the tool that generated a rendered specification."""

from __future__ import annotations

import logging
import re
from typing import Optional

from bs4 import BeautifulSoup

from ..core.keys import GEN_ANOLIS, GEN_BIKESHED, GEN_RESPEC, GEN_UNKNOWN
from .resolver_config import ANOLIS_MARKER_ID, RESPEC_BODY_ID
from .render_session import RenderSession

logger = logging.getLogger(__name__)

_BIKESHED_RE = re.compile(r"bikeshed", re.I)


def static_generator(soup: BeautifulSoup) -> Optional[str]:
    """Return the generator given by a definitive marker, if any.

    Only the cheap markers are checked here: the Bikeshed ``generator`` meta
    tag and the ``respecDocument`` body id that ReSpec leaves on its output.
    """

    meta = soup.find("meta", attrs={"name": "generator"})
    if meta is not None and _BIKESHED_RE.search(meta.get("content") or ""):
        return GEN_BIKESHED
    body = soup.body
    if body is not None and body.get("id") == RESPEC_BODY_ID:
        return GEN_RESPEC
    return None


async def detect_generator(session: RenderSession) -> str:
    """Classify the session document; waits for ReSpec when it is still running.

    Precedence: Bikeshed meta tag, ReSpec output marker, ReSpec configuration
    plus script (waits for the engine's post-processing hook), Anolis
    references marker, unknown.
    """

    soup = await session.document()
    generator = static_generator(soup)
    if generator is None and session.engine.in_use:
        await session.wait_for_engine()
        generator = GEN_RESPEC
    if generator is None and soup.find(id=ANOLIS_MARKER_ID) is not None:
        generator = GEN_ANOLIS
    generator = generator or GEN_UNKNOWN
    logger.debug("%s generated by %s", session.base_url, generator)
    return generator


__all__ = ["detect_generator", "static_generator"]
