"""Markup helpers shared by the fetcher and the render sessions.

Deterministic and engine-agnostic: decoding HTTP bodies, dropping byte-order
marks and parsing the serialized DOM handed to extractors.
"""

from __future__ import annotations

import html
import re
from typing import Mapping, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from charset_normalizer import from_bytes

__all__ = [
    "BOM",
    "decode_bytes_auto",
    "strip_bom",
    "parse_document",
    "document_base_url",
    "with_base_href",
]

BOM = "\ufeff"
_HEAD_OPEN_RE = re.compile(r"<head\b[^>]*>", re.I)
_BASE_HREF_RE = re.compile(r"<base\b[^>]*\bhref\s*=", re.I)
_HTML_OPEN_RE = re.compile(r"<html\b[^>]*>", re.I)
_DOCTYPE_RE = re.compile(r"<!doctype\b[^>]*>", re.I)


def decode_bytes_auto(body: bytes, headers: Optional[Mapping[str, str]] = None) -> str:
    """Decode HTTP bytes using charset header hints with charset-normalizer fallback."""

    enc = None
    if headers:
        ct = headers.get("content-type", "") or headers.get("Content-Type", "")
        match = re.search(r"charset=([^\s;]+)", ct, re.I)
        if match:
            enc = match.group(1).strip(' "\'').lower()
    if enc:
        try:
            return body.decode(enc, errors="replace")
        except LookupError:
            pass
    if body.startswith(b"\xef\xbb\xbf"):
        return body.decode("utf-8-sig", errors="replace")
    result = from_bytes(body).best()
    if result is None:
        return body.decode("utf-8", errors="replace")
    return str(result)


def strip_bom(markup: str) -> str:
    # A leading BOM breaks HTML parsing in some engines
    if markup and markup[0] == BOM:
        return markup[1:]
    return markup


def parse_document(markup: str) -> BeautifulSoup:
    return BeautifulSoup(strip_bom(markup or ""), "lxml")


def document_base_url(soup: BeautifulSoup, fallback: str) -> str:
    """Return the document's base URI: ``<base href>`` wins over the response URL."""

    base = soup.find("base", href=True)
    if base is not None:
        href = (base.get("href") or "").strip()
        if href:
            return urljoin(fallback, href)
    return fallback


def with_base_href(markup: str, base_url: str) -> str:
    """Return ``markup`` with a ``<base href>`` pointing at ``base_url``.

    Markup that already declares a base URL is returned unchanged.
    """

    markup = strip_bom(markup or "")
    if _BASE_HREF_RE.search(markup):
        return markup
    tag = f'<base href="{html.escape(base_url, quote=True)}">'
    for pattern in (_HEAD_OPEN_RE, _HTML_OPEN_RE, _DOCTYPE_RE):
        match = pattern.search(markup)
        if match:
            return markup[: match.end()] + tag + markup[match.end():]
    return tag + markup
