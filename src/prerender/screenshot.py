# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Screenshot capture for an already opened page context.

Output is always JPEG bytes. Caller options are validated and passed to
``Page.screenshot``; ``type``/``encoding``/``path`` from the caller are
ignored so the format cannot be changed.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from playwright.async_api import Page
from pydantic import BaseModel, ConfigDict, Field

from .errors import NavigationError, ScreenshotError
from .navigation import navigate

logger = logging.getLogger(__name__)

IMAGE_TYPE = "jpeg"


class ClipRegion(BaseModel):
    """Page region to capture, in CSS pixels."""

    x: float
    y: float
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class ScreenshotOptions(BaseModel):
    """Caller-supplied capture options (camelCase or snake_case keys)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    full_page: bool | None = Field(None, alias="fullPage")
    clip: ClipRegion | None = None
    quality: int | None = Field(None, ge=0, le=100, description="JPEG quality")
    omit_background: bool | None = Field(None, alias="omitBackground")
    animations: Literal["disabled", "allow"] | None = None
    caret: Literal["hide", "initial"] | None = None
    scale: Literal["css", "device"] | None = None

    def to_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``Page.screenshot`` with the format forced to JPEG."""
        kwargs = self.model_dump(exclude_none=True)
        kwargs["type"] = IMAGE_TYPE
        return kwargs


async def capture(
    page: Page,
    url: str,
    *,
    timeout_ms: int,
    options: ScreenshotOptions | None = None,
) -> bytes:
    """Navigate *page* to *url* and capture it.

    Raises:
        ScreenshotError: ``Forbidden`` or ``NoResponse`` navigation outcome.
    """
    try:
        await navigate(page, url, timeout_ms=timeout_ms)
    except NavigationError as exc:
        raise ScreenshotError(exc.kind) from exc

    kwargs = (options or ScreenshotOptions()).to_kwargs()
    image = await page.screenshot(**kwargs)
    logger.debug("Screenshot captured: url=%s bytes=%d", url, len(image))
    return image
