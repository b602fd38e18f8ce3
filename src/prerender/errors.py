# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Prerender exception hierarchy.

All Prerender-specific errors inherit from PrerenderError, allowing callers
to catch the base class for any rendering failure or specific subclasses
for targeted handling.
"""

from __future__ import annotations

from typing import Literal

ScreenshotErrorKind = Literal["Forbidden", "NoResponse"]


class PrerenderError(Exception):
    """Base exception for all Prerender errors."""


class BrowserError(PrerenderError):
    """Browser launch failure or engine handle unavailable."""


class ConfigError(PrerenderError):
    """Configuration file or environment value could not be applied."""


class InvalidOptionsError(PrerenderError):
    """Caller-supplied render options failed validation."""


class NavigationError(PrerenderError):
    """Navigation ended without a usable response.

    Subclasses carry the HTTP status reported to the caller and the
    screenshot failure kind they map to.
    """

    status: int = 500
    kind: ScreenshotErrorKind = "NoResponse"


class NoResponseError(NavigationError):
    """No response was captured at all (blank or non-committing target)."""

    status = 400
    kind: ScreenshotErrorKind = "NoResponse"


class ForbiddenTargetError(NavigationError):
    """Target answered as a cloud metadata endpoint (``Metadata-Flavor: Google``)."""

    status = 403
    kind: ScreenshotErrorKind = "Forbidden"


class ScreenshotError(PrerenderError):
    """Screenshot capture could not produce an image.

    ``kind`` is ``"Forbidden"`` when the target answered as a cloud metadata
    endpoint and ``"NoResponse"`` when navigation produced no response.
    """

    def __init__(self, kind: ScreenshotErrorKind) -> None:
        super().__init__(kind)
        self.kind: ScreenshotErrorKind = kind
