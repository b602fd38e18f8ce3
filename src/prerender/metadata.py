# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Link-preview metadata extraction from the live, fully loaded DOM.

Each field is resolved by a fixed-precedence waterfall of independent
extractors; the first one yielding a non-empty value wins:

- title:       og:title > twitter:title > <title> > first <h1>
- description: og:description > twitter:description > description > first visible <p>
- domain:      canonical link > og:url > requested URL (never None)
- image:       og:image > link[rel=image_src] > twitter:image > first sizeable <img>

Every extractor runs its own small script in the page. A rule that finds
nothing, or whose evaluation fails, yields None and the waterfall moves on.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any
from urllib.parse import urlsplit

from playwright.async_api import Page

from . import PreviewResponse
from .sanitizer import request_origin

logger = logging.getLogger(__name__)

Extractor = Callable[[Page, str], Awaitable[str | None]]

# Images at or below this size (either side) are icons, spacers or pixels.
MIN_IMAGE_SIDE = 50
# Wider or taller than this ratio: banners and decorative strips.
MAX_IMAGE_ASPECT = 3.0

_META_CONTENT_JS = """(selector) => {
  const el = document.querySelector(selector);
  return el ? el.content : null;
}"""

_LINK_HREF_JS = """(selector) => {
  const el = document.querySelector(selector);
  return el ? el.href : null;
}"""

_DOCUMENT_TITLE_JS = "() => document.title"

_FIRST_H1_JS = """() => {
  const h1 = document.querySelector('h1');
  return h1 ? h1.innerHTML : null;
}"""

# offsetParent is null for elements without a layout box (display:none etc.)
_FIRST_VISIBLE_PARAGRAPH_JS = """() => {
  for (const p of document.querySelectorAll('p')) {
    if (p.offsetParent !== null && p.childElementCount !== 0) {
      return p.textContent;
    }
  }
  return null;
}"""

_IMAGES_JS = """() => Array.from(document.images).map((img) => ({
  src: img.currentSrc || img.getAttribute('src') || '',
  width: img.naturalWidth,
  height: img.naturalHeight,
}))"""


# ── Helpers ───────────────────────────────────────────────────────────


async def _evaluate(page: Page, script: str, arg: Any = None) -> Any:
    try:
        return await page.evaluate(script, arg)
    except Exception:
        logger.debug("Metadata lookup failed", exc_info=True)
        return None


def _text_or_none(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


async def first_non_empty(page: Page, url: str, extractors: Sequence[Extractor]) -> str | None:
    """Run *extractors* in order, returning the first non-empty result."""
    for extractor in extractors:
        value = await extractor(page, url)
        if value:
            return value
    return None


def meta_content(selector: str) -> Extractor:
    """Extractor reading the ``content`` of the first element matching *selector*."""

    async def _extract(page: Page, url: str) -> str | None:
        return _text_or_none(await _evaluate(page, _META_CONTENT_JS, selector))

    _extract.__name__ = f"meta_content[{selector}]"
    return _extract


def link_href(selector: str) -> Extractor:
    """Extractor reading the resolved ``href`` of the first element matching *selector*."""

    async def _extract(page: Page, url: str) -> str | None:
        return _text_or_none(await _evaluate(page, _LINK_HREF_JS, selector))

    _extract.__name__ = f"link_href[{selector}]"
    return _extract


# ── Title ─────────────────────────────────────────────────────────────


async def document_title(page: Page, url: str) -> str | None:
    return _text_or_none(await _evaluate(page, _DOCUMENT_TITLE_JS))


async def first_h1(page: Page, url: str) -> str | None:
    return _text_or_none(await _evaluate(page, _FIRST_H1_JS))


TITLE_EXTRACTORS: tuple[Extractor, ...] = (
    meta_content('meta[property="og:title"]'),
    meta_content('meta[name="twitter:title"]'),
    document_title,
    first_h1,
    # Second heading fallback re-reads the first <h1>; <h2> is never tried.
    first_h1,
)


# ── Description ───────────────────────────────────────────────────────


async def first_visible_paragraph(page: Page, url: str) -> str | None:
    return _text_or_none(await _evaluate(page, _FIRST_VISIBLE_PARAGRAPH_JS))


DESCRIPTION_EXTRACTORS: tuple[Extractor, ...] = (
    meta_content('meta[property="og:description"]'),
    meta_content('meta[name="twitter:description"]'),
    meta_content('meta[name="description"]'),
    first_visible_paragraph,
)


# ── Domain ────────────────────────────────────────────────────────────

DOMAIN_URL_EXTRACTORS: tuple[Extractor, ...] = (
    link_href("link[rel=canonical]"),
    meta_content('meta[property="og:url"]'),
)


def hostname_without_www(url: str) -> str | None:
    """Hostname of *url* with a leading ``www.`` removed, or None if unparsable."""
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        return None
    if not hostname:
        return None
    return hostname.removeprefix("www.")


async def extract_domain(page: Page, url: str) -> str:
    """Canonical domain of the page; falls back to the requested URL's host."""
    page_url = await first_non_empty(page, url, DOMAIN_URL_EXTRACTORS)
    if page_url:
        hostname = hostname_without_www(page_url)
        if hostname:
            return hostname
        logger.debug("Unparsable page URL for domain, using request URL: %s", page_url)
    return hostname_without_www(url) or urlsplit(url).netloc


# ── Image ─────────────────────────────────────────────────────────────


def is_representative_image(width: float, height: float) -> bool:
    """Filter out icons, spacers and banner strips by natural size."""
    if width <= MIN_IMAGE_SIDE or height <= MIN_IMAGE_SIDE:
        return False
    return max(width, height) / min(width, height) <= MAX_IMAGE_ASPECT


def root_at_origin(src: str, url: str) -> str:
    """Root a source lacking ``//`` at the request origin."""
    if "//" in src:
        return src
    return f"{request_origin(url)}/{src.lstrip('/')}"


async def first_representative_img(page: Page, url: str) -> str | None:
    images = await _evaluate(page, _IMAGES_JS)
    if not isinstance(images, list):
        return None
    for img in images:
        src = img.get("src") or ""
        if not src:
            continue
        if is_representative_image(img.get("width") or 0, img.get("height") or 0):
            return root_at_origin(src, url)
    return None


IMAGE_EXTRACTORS: tuple[Extractor, ...] = (
    meta_content('meta[property="og:image"]'),
    link_href('link[rel="image_src"]'),
    meta_content('meta[name="twitter:image"]'),
    first_representative_img,
)


# ── Preview ───────────────────────────────────────────────────────────


async def extract_preview(page: Page, url: str, *, status: int) -> PreviewResponse:
    """Build a PreviewResponse for the page loaded from *url*."""
    return PreviewResponse(
        status=status,
        title=await first_non_empty(page, url, TITLE_EXTRACTORS),
        description=await first_non_empty(page, url, DESCRIPTION_EXTRACTORS),
        domain=await extract_domain(page, url),
        img=await first_non_empty(page, url, IMAGE_EXTRACTORS),
    )
