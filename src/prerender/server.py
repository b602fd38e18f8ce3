# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Prerender HTTP server.

Routes:
- GET  /_ah/health            liveness check
- GET  /render/{url}          serialized, script-free HTML
- GET  /preview?url=          JSON link preview
- GET|POST /screenshot/{url}  JPEG screenshot (POST body = JSON options)

Any route accepts ``?mobile`` to emulate a mobile device. When a token is
configured, requests must carry it in the ``token`` header. Responses are
gzip-compressed when the client accepts it, and every request is logged.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import re
import secrets
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from urllib.parse import urlsplit

from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.gzip import GZipMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from . import Viewport
from .browser_handle import BrowserHandle
from .browser_session import BrowserConfig
from .config import RenderConfig
from .errors import PrerenderError, ScreenshotError
from .middleware import RequestLogMiddleware
from .renderer import Renderer
from .screenshot import ScreenshotOptions

logger = logging.getLogger("prerender.server")

ALLOWED_URL_SCHEMES = {"http", "https"}
RENDERER_HEADER = ("x-renderer", "prerender")
# Message framing stays with the server; a page directive may not set these.
FRAMING_HEADERS = frozenset({"content-length", "transfer-encoding", "connection"})
# Bodies smaller than this are sent uncompressed.
GZIP_MINIMUM_SIZE = 1024


# ── Request guards ───────────────────────────────────────────────────


def is_restricted(url: str, pattern: str | None = None) -> bool:
    """True if *url* must not be loaded (non-http scheme or configured pattern)."""
    try:
        scheme = urlsplit(url).scheme.lower()
    except ValueError:
        return True
    if scheme not in ALLOWED_URL_SCHEMES:
        return True
    return bool(pattern and re.search(pattern, url))


def is_authorized(request: Request, config: RenderConfig) -> bool:
    if config.token is None:
        return True
    supplied = request.headers.get("token", "")
    return secrets.compare_digest(supplied.encode(), config.token.encode())


def _is_mobile(request: Request) -> bool:
    return "mobile" in request.query_params


def _int_param(request: Request, name: str, default: int) -> int:
    """Positive integer query parameter, *default* when missing or invalid."""
    with suppress(ValueError):
        value = int(request.query_params.get(name, ""))
        if value > 0:
            return value
    return default


def _response_headers(config: RenderConfig) -> dict[str, str]:
    headers = dict(config.headers)
    headers[RENDERER_HEADER[0]] = RENDERER_HEADER[1]
    return headers


def _guard(request: Request, url: str | None) -> Response | None:
    """Common checks for rendering routes. Returns an error response or None."""
    config: RenderConfig = request.app.state.config
    if not url or is_restricted(url, config.restricted_url_pattern) or not is_authorized(request, config):
        logger.info("Refused request: path=%s url=%s", request.url.path, url)
        return Response(status_code=403)
    if request.app.state.renderer is None:
        logger.error("Renderer not initialized")
        return Response(status_code=503)
    return None


# ── Handlers ─────────────────────────────────────────────────────────


async def health(request: Request) -> Response:
    return PlainTextResponse("OK")


async def render_page(request: Request) -> Response:
    url = request.path_params["url"]
    if (refused := _guard(request, url)) is not None:
        return refused

    renderer: Renderer = request.app.state.renderer
    try:
        serialized = await renderer.serialize(url, _is_mobile(request))
    except PrerenderError:
        logger.exception("Render failed: url=%s", url)
        return Response(status_code=500)

    headers = _response_headers(request.app.state.config)
    for name, value in serialized.custom_headers.items():
        if name.lower() in FRAMING_HEADERS:
            logger.warning("Ignoring framing header from page directive: url=%s header=%s", url, name)
            continue
        headers[name] = value
    return Response(
        serialized.content,
        status_code=serialized.status,
        headers=headers,
        media_type="text/html",
    )


async def preview(request: Request) -> Response:
    url = request.query_params.get("url")
    if (refused := _guard(request, url)) is not None:
        return refused

    renderer: Renderer = request.app.state.renderer
    try:
        result = await renderer.preview(url, _is_mobile(request))
    except PrerenderError:
        logger.exception("Preview failed: url=%s", url)
        return Response(status_code=500)

    return JSONResponse(
        result.to_dict(),
        status_code=result.status,
        headers=_response_headers(request.app.state.config),
    )


async def screenshot(request: Request) -> Response:
    url = request.path_params["url"]
    if (refused := _guard(request, url)) is not None:
        return refused

    config: RenderConfig = request.app.state.config
    options = ScreenshotOptions()
    if request.method == "POST":
        body = await request.body()
        if body.strip():
            try:
                options = ScreenshotOptions.model_validate(json.loads(body))
            except (ValueError, ValidationError) as exc:
                logger.info("Bad screenshot options: %s", exc)
                return PlainTextResponse(f"Invalid screenshot options: {exc}", status_code=400)

    viewport = Viewport(
        width=_int_param(request, "width", config.width),
        height=_int_param(request, "height", config.height),
    )

    renderer: Renderer = request.app.state.renderer
    try:
        image = await renderer.screenshot(url, _is_mobile(request), viewport=viewport, options=options)
    except ScreenshotError as exc:
        logger.warning("Screenshot refused: url=%s kind=%s", url, exc.kind)
        return Response(status_code=403 if exc.kind == "Forbidden" else 500)
    except Exception:
        logger.exception("Screenshot failed: url=%s", url)
        return Response(status_code=500)

    headers = _response_headers(config)
    headers["content-length"] = str(len(image))
    return Response(image, headers=headers, media_type="image/jpeg")


# ── Application ──────────────────────────────────────────────────────


def create_app(config: RenderConfig | None = None, *, renderer: Renderer | None = None) -> Starlette:
    """Build the ASGI app.

    With *renderer* given (tests, embedding) no browser is launched; otherwise
    the lifespan owns a BrowserHandle for the life of the server.
    """
    config = config or RenderConfig()

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        if app.state.renderer is not None:
            yield
            return
        async with BrowserHandle(config=BrowserConfig(headless=config.headless)) as handle:
            app.state.handle = handle
            app.state.renderer = Renderer(handle, config)
            try:
                yield
            finally:
                app.state.renderer = None
                app.state.handle = None

    app = Starlette(
        routes=[
            Route("/_ah/health", health, methods=["GET"]),
            Route("/render/{url:path}", render_page, methods=["GET"]),
            Route("/preview", preview, methods=["GET"]),
            Route("/screenshot/{url:path}", screenshot, methods=["GET", "POST"]),
        ],
        middleware=[
            Middleware(RequestLogMiddleware),
            Middleware(GZipMiddleware, minimum_size=GZIP_MINIMUM_SIZE),
        ],
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.renderer = renderer
    app.state.handle = None
    return app


# ── CLI ──────────────────────────────────────────────────────────────


def _parse_server_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI args and env vars for process-level settings.

    Returns:
        argparse.Namespace with attributes: config, host, port, json_logs, log_level.
    """
    parser = argparse.ArgumentParser(description="Prerender rendering server")
    parser.add_argument("--config", default=None, help="Path to JSON config file (default: ./config.json)")
    parser.add_argument("--host", default=None, help="Bind host (overrides config)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (overrides config)")
    parser.add_argument(
        "--json-logs",
        action="store_true",
        default=False,
        help="Emit JSON log lines instead of human-readable output",
    )
    parser.add_argument("--log-level", default="INFO", help="Root log level (default: INFO)")
    args, _ = parser.parse_known_args(argv)

    env_json = os.environ.get("PRERENDER_JSON_LOGS", "").strip().lower()
    args.json_logs = args.json_logs or env_json in ("1", "true", "yes")

    env_level = os.environ.get("PRERENDER_LOG_LEVEL", "").strip()
    if env_level:
        args.log_level = env_level

    return args


def main(argv: list[str] | None = None) -> None:
    """Entry point for the rendering server."""
    import dataclasses

    import uvicorn

    from . import config as config_module
    from .errors import ConfigError
    from .logging_config import configure as configure_logging

    args = _parse_server_args(argv if argv is not None else sys.argv[1:])

    # Configure structlog BEFORE any log output
    configure_logging(json_output=args.json_logs, level=args.log_level)

    try:
        config = config_module.load(args.config)
        overrides = {k: v for k, v in (("host", args.host), ("port", args.port)) if v is not None}
        if overrides:
            config = dataclasses.replace(config, **overrides)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        sys.exit(2)

    if config.token is None:
        logger.warning("No token configured: rendering endpoints are open to any client")

    logger.info(
        "Starting prerender server (host=%s, port=%d, timeout=%dms, viewport=%dx%d)",
        config.host,
        config.port,
        config.timeout_ms,
        config.width,
        config.height,
    )
    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_config=None,  # keep the structlog bridge
        log_level=args.log_level.lower(),
    )


if __name__ == "__main__":
    main()
