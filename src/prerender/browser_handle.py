# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""BrowserHandle: the process-wide Chromium instance, relaunched on disconnect.

Page contexts are opened per request against ``handle.browser``. When the
browser disconnects, the Playwright callback only raises a flag; a
supervisor task owned by the handle performs the relaunch. Requests that
were in flight at disconnect time fail and are not retried here.

Lifecycle follows the ``AsyncContextManager`` pattern::

    async with BrowserHandle(config=BrowserConfig()) as handle:
        async with open_page(handle.browser, viewport=vp) as ctx:
            ...
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from types import TracebackType

from playwright.async_api import Browser, Playwright, async_playwright

from .browser_session import BrowserConfig, _auto_install_chromium, chromium_launch_args
from .errors import BrowserError

logger = logging.getLogger(__name__)

_RESTART_DELAY = 1.0  # seconds between failed relaunch attempts


@dataclass(frozen=True, slots=True)
class HandleHealth:
    """Immutable snapshot of handle state for monitoring."""

    connected: bool
    restarts: int


class BrowserHandle:
    """Owns the Playwright driver and one Chromium browser."""

    def __init__(
        self,
        *,
        config: BrowserConfig | None = None,
        restart_delay: float = _RESTART_DELAY,
    ) -> None:
        self._config = config or BrowserConfig()
        self._restart_delay = restart_delay

        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._restarts = 0
        self._disconnected = asyncio.Event()
        self._shutdown_event = asyncio.Event()
        self._supervisor_task: asyncio.Task | None = None

    # ── AsyncContextManager ──────────────────────────────────────────

    async def __aenter__(self) -> BrowserHandle:
        self._playwright = await async_playwright().start()
        try:
            await self._launch()
        except Exception:
            with suppress(Exception):
                await self._playwright.stop()
            self._playwright = None
            raise
        self._shutdown_event.clear()
        self._start_supervisor()
        logger.info("BrowserHandle started (headless=%s)", self._config.headless)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    # ── Access ───────────────────────────────────────────────────────

    @property
    def browser(self) -> Browser:
        """The live browser. Raises BrowserError while disconnected or relaunching."""
        browser = self._browser
        if browser is None or not browser.is_connected():
            raise BrowserError("Browser engine is not available")
        return browser

    def health(self) -> HandleHealth:
        return HandleHealth(
            connected=self._browser is not None and self._browser.is_connected(),
            restarts=self._restarts,
        )

    # ── Launch ───────────────────────────────────────────────────────

    async def _launch(self) -> None:
        """Launch Chromium, auto-installing on first 'executable not found' error."""
        args = chromium_launch_args(self._config)
        try:
            browser = await self._playwright.chromium.launch(headless=self._config.headless, args=args)
        except Exception as exc:
            if "executable doesn't exist" not in str(exc).lower():
                raise
            if not await _auto_install_chromium():
                raise BrowserError(
                    "Chromium is not installed and auto-install failed. Please run: playwright install chromium"
                ) from exc
            browser = await self._playwright.chromium.launch(headless=self._config.headless, args=args)

        browser.on("disconnected", self._on_disconnected)
        self._browser = browser
        self._disconnected.clear()

    def _on_disconnected(self, _browser: Browser) -> None:
        if self._shutdown_event.is_set():
            return
        logger.warning("Browser disconnected, scheduling relaunch")
        self._disconnected.set()

    # ── Supervisor ───────────────────────────────────────────────────

    def _start_supervisor(self) -> None:
        self._supervisor_task = asyncio.get_running_loop().create_task(
            self._supervise_loop(), name="prerender-browser-supervisor"
        )
        self._supervisor_task.add_done_callback(self._handle_supervisor_crash)

    def _handle_supervisor_crash(self, task: asyncio.Task) -> None:
        """Restart the supervisor if it crashed unexpectedly (not cancelled)."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not self._shutdown_event.is_set():
            logger.error("Browser supervisor crashed, restarting: %s", exc, exc_info=exc)
            self._start_supervisor()

    async def _supervise_loop(self) -> None:
        """Relaunch the browser each time it disconnects, until shutdown."""
        while not self._shutdown_event.is_set():
            await self._disconnected.wait()
            if self._shutdown_event.is_set():
                return

            old, self._browser = self._browser, None
            if old is not None:
                with suppress(Exception):
                    await old.close()
            try:
                await self._launch()
            except Exception:
                # Flag stays set, so the next iteration retries.
                logger.error("Browser relaunch failed, retrying in %.1fs", self._restart_delay, exc_info=True)
                await asyncio.sleep(self._restart_delay)
                continue
            self._restarts += 1
            logger.info("Browser relaunched (restarts=%d)", self._restarts)

    # ── Shutdown ─────────────────────────────────────────────────────

    async def shutdown(self) -> None:
        """Stop the supervisor, then close browser and playwright."""
        self._shutdown_event.set()

        if self._supervisor_task and not self._supervisor_task.done():
            self._supervisor_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._supervisor_task
        self._supervisor_task = None

        if self._browser:
            with suppress(Exception):
                await self._browser.close()
            self._browser = None
        if self._playwright:
            with suppress(Exception):
                await self._playwright.stop()
            self._playwright = None

        logger.info("BrowserHandle shut down")
