"""Meta-refresh and single-page link detection on rendered documents.

Both checks run on the rendered DOM because ReSpec may generate the
redirection markup itself.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .html_utils import document_base_url
from .resolver_config import SINGLE_PAGE_LINK_SELECTOR, SINGLE_PAGE_PHRASES

logger = logging.getLogger(__name__)

_URL_PREFIX_RE = re.compile(r"^\s*url\s*=\s*", re.I)

META_REFRESH = "meta_refresh"
SINGLE_PAGE = "single_page"


@dataclass(frozen=True)
class Redirection:
    target: str
    reason: str


def _refresh_target(content: str) -> Optional[str]:
    # content="<delay>; url=<target>", the delay is assumed to be correct
    fields = content.split(";")
    if len(fields) < 2:
        return None
    target = _URL_PREFIX_RE.sub("", fields[1]).strip().strip("'\"").strip()
    return target or None


def find_meta_refresh(soup: BeautifulSoup, base_url: str) -> Optional[str]:
    """Return the absolute meta-refresh target declared by the document, if any."""

    meta = soup.find("meta", attrs={"http-equiv": re.compile(r"^refresh$", re.I)})
    if meta is None:
        return None
    target = _refresh_target(meta.get("content") or "")
    if target is None:
        return None
    return urljoin(document_base_url(soup, base_url), target)


def find_single_page_link(soup: BeautifulSoup, base_url: str) -> Optional[str]:
    """Return the absolute target of the first "single page" link in the header.

    Heuristic: any link of the ``.head`` metadata list whose text mentions a
    single-page phrase. Navigation text that happens to contain one of these
    phrases is a known false positive.
    """

    for link in soup.select(SINGLE_PAGE_LINK_SELECTOR):
        text = link.get_text().lower()
        if any(phrase in text for phrase in SINGLE_PAGE_PHRASES):
            return urljoin(document_base_url(soup, base_url), link.get("href") or "")
    return None


def next_location(soup: BeautifulSoup, url: str, response_url: str) -> Optional[Redirection]:
    """Return where resolution must continue, or None when ``soup`` is final.

    ``url`` is the requested URL and ``response_url`` the final URL after
    HTTP redirects; targets equal to either are not followed.
    """

    current = {url, response_url}
    refresh = find_meta_refresh(soup, response_url)
    if refresh is not None and refresh not in current:
        return Redirection(refresh, META_REFRESH)

    single_page = find_single_page_link(soup, response_url)
    if single_page is not None and single_page not in current:
        return Redirection(single_page, SINGLE_PAGE)
    if single_page is not None:
        logger.debug("%s is already the single page version", response_url)
    return None


__all__ = [
    "Redirection",
    "META_REFRESH",
    "SINGLE_PAGE",
    "find_meta_refresh",
    "find_single_page_link",
    "next_location",
]
