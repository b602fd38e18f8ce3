# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Navigation controller: drive one page to network idle and capture its response.

The first navigation response is recorded as it arrives, so a page that
times out before going idle still reports whatever status and headers its
main document returned. Engine errors during ``goto`` are logged and never
propagated; only the two terminal outcomes below are raised:

- ``NoResponseError``: nothing was ever received (about:blank and friends)
- ``ForbiddenTargetError``: the target identified as a cloud metadata server
"""

from __future__ import annotations

import logging

from playwright.async_api import Page, Response

from . import NavigationOutcome
from .errors import ForbiddenTargetError, NoResponseError

logger = logging.getLogger(__name__)

WAIT_UNTIL = "networkidle"

_METADATA_FLAVOR_HEADER = "metadata-flavor"
_METADATA_FLAVOR_GOOGLE = "Google"


def is_metadata_server(headers: dict[str, str]) -> bool:
    """True when *headers* mark a GCE metadata server response."""
    return headers.get(_METADATA_FLAVOR_HEADER) == _METADATA_FLAVOR_GOOGLE


async def navigate(page: Page, url: str, *, timeout_ms: int) -> NavigationOutcome:
    """Navigate *page* to *url*, waiting for network idle up to *timeout_ms*.

    Raises:
        NoResponseError: no response was captured.
        ForbiddenTargetError: the response carries ``Metadata-Flavor: Google``.
    """
    first_response: Response | None = None

    def _capture_first(response: Response) -> None:
        nonlocal first_response
        if first_response is None and response.request.is_navigation_request():
            first_response = response

    page.on("response", _capture_first)
    response: Response | None = None
    timed_out = False
    try:
        response = await page.goto(url, wait_until=WAIT_UNTIL, timeout=timeout_ms)
    except Exception as exc:
        timed_out = True
        logger.warning("Navigation did not settle: url=%s error=%s", url, exc)
    finally:
        page.remove_listener("response", _capture_first)

    if response is None:
        response = first_response
        if response is not None and timed_out:
            logger.info("Using partial response for %s (status=%d)", url, response.status)

    if response is None:
        logger.error("No response captured: url=%s", url)
        raise NoResponseError(f"No response for {url}")

    headers = dict(response.headers)
    if is_metadata_server(headers):
        logger.warning("Blocked cloud metadata response: url=%s", url)
        raise ForbiddenTargetError(f"Metadata server response from {url}")

    return NavigationOutcome(
        http_status=response.status,
        response_headers=headers,
        timed_out=timed_out,
    )
