# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Renderer: high-level rendering API over the shared browser handle.

Every call opens exactly one page context and closes it exactly once,
on success, partial timeout, missing response and forbidden target alike.

    renderer = Renderer(handle, config)
    serialized = await renderer.serialize("https://example.com/")
    preview = await renderer.preview("https://example.com/")
    jpeg = await renderer.screenshot("https://example.com/", viewport=Viewport(800, 600))
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Protocol

from playwright.async_api import Browser
from pydantic import ValidationError

from . import PreviewResponse, RenderMode, RenderRequest, SerializedResponse, Viewport
from .browser_session import PageContext, open_page
from .config import RenderConfig
from .directives import read_directive, read_status_override, resolve_status
from .errors import BrowserError, InvalidOptionsError, NavigationError
from .metadata import extract_preview, hostname_without_www
from .navigation import navigate
from .sanitizer import sanitize_html
from .screenshot import ScreenshotOptions, capture

logger = logging.getLogger(__name__)


class BrowserProvider(Protocol):
    """Anything exposing the current live browser (see BrowserHandle)."""

    @property
    def browser(self) -> Browser: ...


class Renderer:
    """Serialize, preview and screenshot pages in isolated tabs."""

    def __init__(self, handle: BrowserProvider, config: RenderConfig | None = None) -> None:
        self._handle = handle
        self._config = config or RenderConfig()

    @property
    def default_viewport(self) -> Viewport:
        return Viewport(self._config.width, self._config.height)

    @asynccontextmanager
    async def _page(self, viewport: Viewport, is_mobile: bool) -> AsyncIterator[PageContext]:
        async with open_page(self._handle.browser, viewport=viewport, is_mobile=is_mobile) as ctx:
            yield ctx

    async def serialize(self, url: str, is_mobile: bool = False) -> SerializedResponse:
        """Render *url* and return script-free HTML plus status/header directives."""
        async with self._page(self.default_viewport, is_mobile) as ctx:
            try:
                outcome = await navigate(ctx.page, url, timeout_ms=self._config.timeout_ms)
            except NavigationError as exc:
                return SerializedResponse(status=exc.status)

            directive = await read_directive(ctx.page)
            status = resolve_status(outcome.http_status, directive.status_code)
            try:
                html = await ctx.page.content()
            except Exception as exc:
                logger.error("Page serialization failed: url=%s", url, exc_info=True)
                raise BrowserError(f"Cannot serialize {url}: {exc}") from exc

        custom_headers = dict([directive.header]) if directive.header else {}
        logger.info(
            "Rendered %s (status=%d, partial=%s, bytes=%d)", url, status, outcome.timed_out, len(html)
        )
        return SerializedResponse(
            status=status,
            custom_headers=custom_headers,
            content=sanitize_html(html, url),
        )

    async def preview(self, url: str, is_mobile: bool = False) -> PreviewResponse:
        """Render *url* and extract link-preview metadata."""
        async with self._page(self.default_viewport, is_mobile) as ctx:
            try:
                outcome = await navigate(ctx.page, url, timeout_ms=self._config.timeout_ms)
            except NavigationError as exc:
                return PreviewResponse(status=exc.status, domain=hostname_without_www(url) or "")

            status = resolve_status(outcome.http_status, await read_status_override(ctx.page))
            preview = await extract_preview(ctx.page, url, status=status)

        logger.info("Previewed %s (status=%d, partial=%s)", url, status, outcome.timed_out)
        return preview

    async def screenshot(
        self,
        url: str,
        is_mobile: bool = False,
        *,
        viewport: Viewport | None = None,
        options: ScreenshotOptions | None = None,
    ) -> bytes:
        """Render *url* at *viewport* and return JPEG bytes.

        Raises:
            ScreenshotError: ``Forbidden`` or ``NoResponse``.
        """
        async with self._page(viewport or self.default_viewport, is_mobile) as ctx:
            return await capture(ctx.page, url, timeout_ms=self._config.timeout_ms, options=options)

    async def render(self, request: RenderRequest) -> SerializedResponse | PreviewResponse | bytes:
        """Dispatch *request* on its mode.

        Raises:
            InvalidOptionsError: screenshot options do not validate.
            ScreenshotError: ``Forbidden`` or ``NoResponse`` in screenshot mode.
        """
        if request.mode is RenderMode.PREVIEW:
            return await self.preview(request.target_url, request.is_mobile)
        if request.mode is RenderMode.SCREENSHOT:
            try:
                options = ScreenshotOptions.model_validate(request.screenshot_options)
            except ValidationError as exc:
                raise InvalidOptionsError(f"Invalid screenshot options: {exc}") from exc
            return await self.screenshot(
                request.target_url,
                request.is_mobile,
                viewport=request.viewport,
                options=options,
            )
        return await self.serialize(request.target_url, request.is_mobile)
