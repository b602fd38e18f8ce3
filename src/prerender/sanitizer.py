# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Make serialized page markup inert before it is handed to a crawler.

1. strip_scripts(): drops executable <script> and <link rel=import>
2. ensure_base_href(): points relative resources back at the live origin
3. sanitize_html(): both, on a markup string, round-tripped through lxml

Non-executable content (styles, JSON-LD, declarative shadow roots) is kept.
Running sanitize_html() on its own output changes nothing.
"""

from __future__ import annotations

import logging
from urllib.parse import urlsplit

import lxml.html
from lxml import etree

logger = logging.getLogger(__name__)

# Scripts with no type, or a type mentioning javascript, plus HTML imports.
# Attribute values compare ASCII case-insensitively, as browsers match them.
_UPPER = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
_LOWER = "abcdefghijklmnopqrstuvwxyz"
_EXECUTABLE_XPATH = etree.XPath(
    f"//script[not(@type) or contains(translate(@type, '{_UPPER}', '{_LOWER}'), 'javascript')]"
    f" | //link[translate(@rel, '{_UPPER}', '{_LOWER}')='import']"
)

# No implied HTML 4 doctype for documents that declare none
_PARSER = lxml.html.HTMLParser(default_doctype=False)


def request_origin(url: str) -> str:
    """``scheme://host[:port]`` of *url*, without path or credentials."""
    parts = urlsplit(url)
    host = parts.netloc.rpartition("@")[2]
    return f"{parts.scheme}://{host}"


def strip_scripts(root: lxml.html.HtmlElement) -> int:
    """Remove executable elements in place. Returns the number removed."""
    removed = 0
    for el in _EXECUTABLE_XPATH(root):
        el.drop_tree()  # keeps tail text
        removed += 1
    return removed


def ensure_base_href(root: lxml.html.HtmlElement, origin: str) -> None:
    """Inject or patch ``<base href>`` so relative URLs resolve against *origin*."""
    head = root.find("head")
    if head is None:
        head = lxml.html.Element("head")
        root.insert(0, head)

    base = head.find("base")
    if base is None:
        base = lxml.html.Element("base", href=origin)
        head.insert(0, base)
        return

    href = base.get("href") or ""
    # Path-relative only; "//cdn.example" is already absolute.
    if href.startswith("/") and not href.startswith("//"):
        base.set("href", origin + href)


def sanitize_html(html: str, url: str) -> str:
    """Strip executable content from *html* and anchor it at *url*'s origin."""
    if not html.strip():
        return html
    root = lxml.html.document_fromstring(html, parser=_PARSER)
    doctype = root.getroottree().docinfo.doctype

    removed = strip_scripts(root)
    ensure_base_href(root, request_origin(url))
    logger.debug("Sanitized markup: removed=%d url=%s", removed, url)

    return lxml.html.tostring(root, encoding="unicode", method="html", doctype=doctype or None)
