# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Request logging for the rendering server.

One line per completed HTTP request: method, path, status and elapsed time.
Rendering requests can take seconds, so the elapsed time is the useful part.
"""

from __future__ import annotations

import logging
import time

logger = logging.getLogger("prerender.access")


class RequestLogMiddleware:
    """Pure ASGI middleware logging each HTTP request after its response starts."""

    def __init__(self, app) -> None:
        self.app = app

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = time.monotonic()
        status = 500

        async def _send_recording_status(message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, _send_recording_status)
        finally:
            elapsed_ms = (time.monotonic() - started) * 1000
            logger.info("%s %s %d %.0fms", scope["method"], scope["path"], status, elapsed_ms)
