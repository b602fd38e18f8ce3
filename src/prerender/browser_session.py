# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Per-request page contexts on a shared Chromium browser.

Each request gets its own BrowserContext + Page (one tab), configured for
the requested device class before anything is loaded. The context is
closed exactly once when the ``open_page`` block exits, whatever the exit
path.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass

from playwright.async_api import Browser, BrowserContext, Page

from . import Viewport
from .errors import BrowserError

logger = logging.getLogger(__name__)

MOBILE_USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 8.0.0; Pixel 2 XL Build/OPD1.170816.004) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/68.0.3440.75 Mobile Safari/537.36"
)

# Run before any page script. Component polyfills are forced on so that
# pages detecting native support take the same path as in real browsers.
POLYFILL_INIT_SCRIPTS: tuple[str, ...] = (
    "customElements.forcePolyfill = true",
    "ShadyDOM = {force: true}",
    "ShadyCSS = {shimcssproperties: true}",
)


@dataclass
class BrowserConfig:
    """Browser launch configuration."""

    headless: bool = True
    locale: str = "en-US"


# ── Chromium auto-install ─────────────────────────────────────────

# Large download; a render host on a slow link needs minutes.
_INSTALL_TIMEOUT_S = 300
_INSTALL_COMMAND = (sys.executable, "-m", "playwright", "install", "chromium")
_install_attempted = False


async def _auto_install_chromium() -> bool:
    """Fetch the Chromium build Playwright expects. At most one try per process."""
    global _install_attempted  # noqa: PLW0603
    if _install_attempted:
        return False
    _install_attempted = True

    logger.info("No Chromium build for the renderer, installing: %s", " ".join(_INSTALL_COMMAND[1:]))
    try:
        proc = await asyncio.create_subprocess_exec(
            *_INSTALL_COMMAND,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await asyncio.wait_for(proc.communicate(), timeout=_INSTALL_TIMEOUT_S)
    except TimeoutError:
        logger.error("Renderer Chromium install exceeded %ds", _INSTALL_TIMEOUT_S)
        return False
    except OSError:
        logger.error("Renderer Chromium install could not start", exc_info=True)
        return False

    if proc.returncode != 0:
        logger.error(
            "Renderer Chromium install exited with %d: %s",
            proc.returncode,
            (stderr or b"").decode(errors="replace")[-500:],
        )
        return False
    logger.info("Renderer Chromium installed")
    return True


def chromium_launch_args(config: BrowserConfig) -> list[str]:
    """Return Chromium launch arguments for a rendering worker."""
    return [
        f"--lang={config.locale}",
        "--fast-start",
        "--no-sandbox",
        "--disable-extensions",
        "--disable-dev-shm-usage",
        "--disable-background-networking",
        "--disable-sync",
        "--disable-gpu",
        "--no-first-run",
        "--disable-breakpad",
        "--no-pings",
        "--disable-component-update",
        "--noerrdialogs",
    ]


def emulation_options(viewport: Viewport, is_mobile: bool) -> dict:
    """BrowserContext options for the requested device class.

    Applied at context creation: switching mobile emulation on a live page
    can force a reload.
    """
    options: dict = {
        "viewport": {"width": viewport.width, "height": viewport.height},
        "is_mobile": is_mobile,
        "accept_downloads": False,
    }
    if is_mobile:
        options["user_agent"] = MOBILE_USER_AGENT
    return options


class PageContext:
    """One isolated tab owned by a single request."""

    def __init__(self, context: BrowserContext, page: Page) -> None:
        self._context = context
        self._page = page
        self._closed = False

    @property
    def page(self) -> Page:
        return self._page

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Close page and context. Repeated calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        with suppress(Exception):
            await self._page.close()
        with suppress(Exception):
            await self._context.close()


@asynccontextmanager
async def open_page(
    browser: Browser,
    *,
    viewport: Viewport,
    is_mobile: bool = False,
) -> AsyncGenerator[PageContext, None]:
    """Open a configured tab on *browser*, closing it when the block exits."""
    try:
        context = await browser.new_context(**emulation_options(viewport, is_mobile))
    except Exception as exc:
        raise BrowserError(f"Cannot open page context: {exc}") from exc

    try:
        page = await context.new_page()
        for script in POLYFILL_INIT_SCRIPTS:
            await page.add_init_script(script)
    except Exception as exc:
        with suppress(Exception):
            await context.close()
        raise BrowserError(f"Cannot prepare page: {exc}") from exc

    page_ctx = PageContext(context, page)
    try:
        yield page_ctx
    finally:
        await page_ctx.close()
