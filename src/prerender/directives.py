# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Status/header override directives declared by the rendered page.

Two reserved meta tags are recognised, and only these two:

    <meta name="render:status_code" content="404">
    <meta name="render:header" content="Location: /new-path">

A missing tag or a failed lookup is treated as "no directive".
"""

from __future__ import annotations

import logging
import re

from playwright.async_api import Page

from . import OverrideDirective

logger = logging.getLogger(__name__)

STATUS_CODE_SELECTOR = 'meta[name="render:status_code"]'
HEADER_SELECTOR = 'meta[name="render:header"]'

_META_CONTENT_JS = """(selector) => {
  const el = document.querySelector(selector);
  return el ? el.getAttribute('content') : null;
}"""

# Leading integer, parseInt-style: "404", " 404 ", "404 Not Found"
_LEADING_INT_RE = re.compile(r"\s*([+-]?\d+)")


def parse_status_code(content: str | None) -> int | None:
    """Parse a status directive; None unless it is a valid HTTP status."""
    if not content:
        return None
    m = _LEADING_INT_RE.match(content)
    if m is None:
        return None
    code = int(m.group(1))
    if not 100 <= code <= 599:
        return None
    return code


def parse_header(content: str | None) -> tuple[str, str] | None:
    """Split ``key:value`` on the first colon; both parts trimmed."""
    if not content:
        return None
    name, sep, value = content.partition(":")
    if not sep:
        return None
    name = name.strip()
    if not name:
        return None
    return name, value.strip()


def resolve_status(baseline: int, override: int | None) -> int:
    """Final response status.

    304 counts as 200 (repeat visits hit the browser cache). Only a 200
    baseline may be replaced by the page's own status directive.
    """
    status = 200 if baseline == 304 else baseline
    if status == 200 and override is not None:
        return override
    return status


async def _meta_content(page: Page, selector: str) -> str | None:
    try:
        return await page.evaluate(_META_CONTENT_JS, selector)
    except Exception:
        logger.debug("Directive lookup failed: %s", selector, exc_info=True)
        return None


async def read_status_override(page: Page) -> int | None:
    return parse_status_code(await _meta_content(page, STATUS_CODE_SELECTOR))


async def read_header_directive(page: Page) -> tuple[str, str] | None:
    return parse_header(await _meta_content(page, HEADER_SELECTOR))


async def read_directive(page: Page) -> OverrideDirective:
    """Read both directives from the loaded page."""
    status_code = await read_status_override(page)
    header = await read_header_directive(page)
    if header is None:
        return OverrideDirective(status_code=status_code)
    return OverrideDirective(status_code=status_code, header_name=header[0], header_value=header[1])
