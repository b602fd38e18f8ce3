# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Prerender: headless rendering service for crawlers and link unfurlers.

Renders a page in Chromium, waits for the network to go idle, and returns:
- serialized HTML with executable scripts stripped
- a metadata preview (title, description, domain, image)
- a JPEG screenshot
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class RenderMode(Enum):
    FULL = "full"
    PREVIEW = "preview"
    SCREENSHOT = "screenshot"


@dataclass(frozen=True, slots=True)
class Viewport:
    width: int
    height: int


@dataclass(frozen=True)
class RenderRequest:
    """One inbound rendering request. Immutable once constructed."""

    target_url: str
    is_mobile: bool = False
    mode: RenderMode = RenderMode.FULL
    viewport: Viewport | None = None  # None = configured default
    screenshot_options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class NavigationOutcome:
    """Network-level result of driving one page context to network idle.

    ``timed_out=True`` with a status present is the partial-success case:
    the main document responded before the wait deadline expired.
    """

    http_status: int
    response_headers: dict[str, str]
    timed_out: bool = False


@dataclass(frozen=True, slots=True)
class OverrideDirective:
    """Directives a page declares through reserved ``render:*`` meta tags."""

    status_code: int | None = None
    header_name: str | None = None
    header_value: str | None = None

    @property
    def header(self) -> tuple[str, str] | None:
        if self.header_name is None or self.header_value is None:
            return None
        return self.header_name, self.header_value


@dataclass
class SerializedResponse:
    """Full-page render result."""

    status: int
    custom_headers: dict[str, str] = field(default_factory=dict)
    content: str = ""


@dataclass
class PreviewResponse:
    """Link-preview render result."""

    status: int
    domain: str
    title: str | None = None
    description: str | None = None
    img: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "title": self.title,
            "description": self.description,
            "domain": self.domain,
            "img": self.img,
        }
