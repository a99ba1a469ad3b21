from specresolver.workflows.html_utils import parse_document
from specresolver.workflows.redirects import (
    META_REFRESH,
    SINGLE_PAGE,
    find_meta_refresh,
    find_single_page_link,
    next_location,
)

BASE = "https://www.w3.org/TR/spec/"


def _refresh_doc(content, head_extra=""):
    return parse_document(
        f'<html><head>{head_extra}<meta http-equiv="refresh" content="{content}"></head><body></body></html>'
    )


def test_meta_refresh_relative_target():
    assert find_meta_refresh(_refresh_doc("0; url=next/"), BASE) == "https://www.w3.org/TR/spec/next/"


def test_meta_refresh_without_url_prefix():
    assert find_meta_refresh(_refresh_doc("0;https://example.org/other"), BASE) == "https://example.org/other"


def test_meta_refresh_http_equiv_case_insensitive():
    soup = parse_document('<meta http-equiv="Refresh" content="5; URL=\'moved.html\'">')
    assert find_meta_refresh(soup, BASE) == "https://www.w3.org/TR/spec/moved.html"


def test_meta_refresh_without_target_is_ignored():
    assert find_meta_refresh(_refresh_doc("30"), BASE) is None


def test_meta_refresh_uses_base_href():
    soup = _refresh_doc("0; url=next.html", head_extra='<base href="https://example.org/docs/">')
    assert find_meta_refresh(soup, BASE) == "https://example.org/docs/next.html"


def _single_page_doc(text, href, container="div class=head"):
    tag = container.split()[0]
    return parse_document(
        f"<html><body><{container}><dl><dt>This version:</dt>"
        f'<dd><a href="{href}">{text}</a></dd></dl></{tag}></body></html>'
    )


def test_single_page_link_phrases():
    for text in ("Single page version", "Single file", "One-page version", "single-page"):
        assert find_single_page_link(_single_page_doc(text, "single.html"), BASE) == (
            "https://www.w3.org/TR/spec/single.html"
        )


def test_single_page_link_outside_header_is_ignored():
    soup = _single_page_doc("Single page version", "single.html", container="div class=toc")
    assert find_single_page_link(soup, BASE) is None


def test_next_location_prefers_meta_refresh():
    soup = parse_document(
        '<html><head><meta http-equiv="refresh" content="0; url=a.html"></head><body>'
        '<div class="head"><dl><dd><a href="b.html">single page</a></dd></dl></div></body></html>'
    )
    redirection = next_location(soup, BASE, BASE)
    assert redirection.reason == META_REFRESH
    assert redirection.target == "https://www.w3.org/TR/spec/a.html"


def test_next_location_single_page():
    redirection = next_location(_single_page_doc("single page", "full.html"), BASE, BASE)
    assert redirection.reason == SINGLE_PAGE
    assert redirection.target == "https://www.w3.org/TR/spec/full.html"


def test_self_referencing_single_page_link_is_final():
    soup = _single_page_doc("single page", BASE)
    assert next_location(soup, BASE, BASE) is None


def test_target_equal_to_requested_url_is_final():
    soup = _refresh_doc("0; url=https://w3.org/spec")
    assert next_location(soup, "https://w3.org/spec", "https://www.w3.org/TR/spec/") is None


def test_document_without_redirection_is_final():
    assert next_location(parse_document("<p>final</p>"), BASE, BASE) is None
