# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the HTTP surface: routes, guards, status and header mapping.

The renderer is an AsyncMock, so no browser is launched. httpx's
ASGITransport does not run the lifespan.
"""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from prerender import PreviewResponse, SerializedResponse, Viewport
from prerender.config import RenderConfig
from prerender.errors import BrowserError, ScreenshotError
from prerender.screenshot import ScreenshotOptions
from prerender.server import _parse_server_args, create_app, is_restricted
from tests._fakes import FAKE_JPEG

TARGET = "https://example.com/page"


@pytest.fixture
def renderer():
    fake = MagicMock()
    fake.serialize = AsyncMock(return_value=SerializedResponse(status=200, content="<html>ok</html>"))
    fake.preview = AsyncMock(
        return_value=PreviewResponse(status=200, domain="example.com", title="Example", img=None)
    )
    fake.screenshot = AsyncMock(return_value=FAKE_JPEG)
    return fake


@pytest.fixture
def config():
    return RenderConfig(width=1000, height=1000, headers={"Cache-Control": "max-age=60"})


@pytest.fixture
def client(config, renderer):
    """Create an httpx async client for ASGI testing."""
    app = create_app(config, renderer=renderer)
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://testserver")


class TestHealth:
    async def test_health_ok(self, client):
        resp = await client.get("/_ah/health")
        assert resp.status_code == 200
        assert resp.text == "OK"

    async def test_health_without_renderer(self, config):
        app = create_app(config)
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as c:
            resp = await c.get("/_ah/health")
        assert resp.status_code == 200


class TestRender:
    async def test_html_with_status_and_headers(self, client, renderer):
        renderer.serialize.return_value = SerializedResponse(
            status=301, custom_headers={"Location": "/new-path"}, content="<html></html>"
        )

        resp = await client.get(f"/render/{TARGET}")

        assert resp.status_code == 301
        assert resp.headers["location"] == "/new-path"
        assert resp.headers["x-renderer"] == "prerender"
        assert resp.headers["cache-control"] == "max-age=60"
        assert resp.headers["content-type"].startswith("text/html")
        renderer.serialize.assert_awaited_once_with(TARGET, False)

    async def test_body(self, client):
        resp = await client.get(f"/render/{TARGET}")
        assert resp.text == "<html>ok</html>"

    async def test_mobile_flag(self, client, renderer):
        await client.get(f"/render/{TARGET}?mobile")
        renderer.serialize.assert_awaited_once_with(TARGET, True)

    async def test_forbidden_outcome_passthrough(self, client, renderer):
        renderer.serialize.return_value = SerializedResponse(status=403)
        resp = await client.get("/render/http://metadata.google.internal/")
        assert resp.status_code == 403
        assert resp.text == ""

    async def test_engine_failure_is_500(self, client, renderer):
        renderer.serialize.side_effect = BrowserError("Browser engine is not available")
        resp = await client.get(f"/render/{TARGET}")
        assert resp.status_code == 500

    @pytest.mark.parametrize("target", ["file:///etc/passwd", "javascript:alert(1)", "chrome://settings"])
    async def test_restricted_scheme(self, client, renderer, target):
        resp = await client.get(f"/render/{target}")
        assert resp.status_code == 403
        renderer.serialize.assert_not_awaited()

    async def test_restricted_pattern(self, renderer):
        app = create_app(RenderConfig(restricted_url_pattern=r"://internal\."), renderer=renderer)
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as c:
            resp = await c.get("/render/https://internal.example.com/")
        assert resp.status_code == 403
        renderer.serialize.assert_not_awaited()

    async def test_renderer_not_ready(self, config):
        app = create_app(config)
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as c:
            resp = await c.get(f"/render/{TARGET}")
        assert resp.status_code == 503


class TestToken:
    @pytest.fixture
    def secured(self, renderer):
        app = create_app(RenderConfig(token="s3cret"), renderer=renderer)
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")

    async def test_missing_token(self, secured, renderer):
        resp = await secured.get(f"/render/{TARGET}")
        assert resp.status_code == 403
        renderer.serialize.assert_not_awaited()

    async def test_wrong_token(self, secured):
        resp = await secured.get(f"/render/{TARGET}", headers={"token": "guess"})
        assert resp.status_code == 403

    async def test_valid_token(self, secured):
        resp = await secured.get(f"/render/{TARGET}", headers={"token": "s3cret"})
        assert resp.status_code == 200

    async def test_health_needs_no_token(self, secured):
        assert (await secured.get("/_ah/health")).status_code == 200


class TestPreview:
    async def test_json_body(self, client, renderer):
        resp = await client.get("/preview", params={"url": TARGET})

        assert resp.status_code == 200
        assert resp.json() == {
            "status": 200,
            "title": "Example",
            "description": None,
            "domain": "example.com",
            "img": None,
        }
        assert resp.headers["x-renderer"] == "prerender"
        renderer.preview.assert_awaited_once_with(TARGET, False)

    async def test_status_mirrored(self, client, renderer):
        renderer.preview.return_value = PreviewResponse(status=404, domain="example.com")
        resp = await client.get("/preview", params={"url": TARGET})
        assert resp.status_code == 404
        assert resp.json()["status"] == 404

    async def test_missing_url(self, client, renderer):
        resp = await client.get("/preview")
        assert resp.status_code == 403
        renderer.preview.assert_not_awaited()


class TestScreenshot:
    async def test_jpeg_response(self, client, renderer):
        resp = await client.get(f"/screenshot/{TARGET}")

        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/jpeg"
        assert resp.headers["content-length"] == str(len(FAKE_JPEG))
        assert resp.content == FAKE_JPEG
        renderer.screenshot.assert_awaited_once_with(
            TARGET, False, viewport=Viewport(1000, 1000), options=ScreenshotOptions()
        )

    async def test_viewport_query(self, client, renderer):
        await client.get(f"/screenshot/{TARGET}", params={"width": "800", "height": "600"})
        assert renderer.screenshot.await_args.kwargs["viewport"] == Viewport(800, 600)

    async def test_invalid_viewport_falls_back(self, client, renderer):
        await client.get(f"/screenshot/{TARGET}", params={"width": "wide", "height": "-1"})
        assert renderer.screenshot.await_args.kwargs["viewport"] == Viewport(1000, 1000)

    async def test_post_options(self, client, renderer):
        resp = await client.post(f"/screenshot/{TARGET}", json={"fullPage": True, "type": "png"})

        assert resp.status_code == 200
        options = renderer.screenshot.await_args.kwargs["options"]
        assert options.full_page is True
        assert options.to_kwargs()["type"] == "jpeg"

    async def test_post_malformed_json(self, client, renderer):
        resp = await client.post(f"/screenshot/{TARGET}", content=b"{nope")
        assert resp.status_code == 400
        renderer.screenshot.assert_not_awaited()

    async def test_post_invalid_options(self, client, renderer):
        resp = await client.post(f"/screenshot/{TARGET}", json={"quality": 500})
        assert resp.status_code == 400
        renderer.screenshot.assert_not_awaited()

    async def test_forbidden(self, client, renderer):
        renderer.screenshot.side_effect = ScreenshotError("Forbidden")
        resp = await client.get("/screenshot/http://metadata.google.internal/")
        assert resp.status_code == 403

    async def test_no_response(self, client, renderer):
        renderer.screenshot.side_effect = ScreenshotError("NoResponse")
        resp = await client.get(f"/screenshot/{TARGET}")
        assert resp.status_code == 500

    async def test_unexpected_failure(self, client, renderer):
        renderer.screenshot.side_effect = RuntimeError("Target crashed")
        resp = await client.get(f"/screenshot/{TARGET}")
        assert resp.status_code == 500


class TestGuards:
    @pytest.mark.parametrize(
        ("url", "pattern", "expected"),
        [
            ("https://example.com/", None, False),
            ("http://example.com/", None, False),
            ("file:///etc/passwd", None, True),
            ("about:blank", None, True),
            ("https://internal.example.com/", r"internal\.", True),
            ("https://example.com/", r"internal\.", False),
        ],
    )
    def test_is_restricted(self, url, pattern, expected):
        assert is_restricted(url, pattern) is expected


class TestParseServerArgs:
    def test_defaults(self):
        args = _parse_server_args([])
        assert args.config is None
        assert args.host is None
        assert args.port is None
        assert args.json_logs is False
        assert args.log_level == "INFO"

    def test_cli_flags(self):
        args = _parse_server_args(["--config", "/etc/prerender.json", "--port", "8080", "--json-logs"])
        assert args.config == "/etc/prerender.json"
        assert args.port == 8080
        assert args.json_logs is True

    def test_env_vars(self, monkeypatch):
        monkeypatch.setenv("PRERENDER_JSON_LOGS", "true")
        monkeypatch.setenv("PRERENDER_LOG_LEVEL", "DEBUG")
        args = _parse_server_args([])
        assert args.json_logs is True
        assert args.log_level == "DEBUG"


class TestHeaderDirectiveFraming:
    async def test_framing_headers_from_page_ignored(self, client, renderer):
        body = "<html><body><p>sanitized</p></body></html>"
        renderer.serialize.return_value = SerializedResponse(
            status=200,
            custom_headers={"Content-Length": "5"},
            content=body,
        )

        resp = await client.get(f"/render/{TARGET}", headers={"Accept-Encoding": "identity"})

        assert resp.status_code == 200
        assert resp.text == body
        assert resp.headers["content-length"] == str(len(body.encode()))

    @pytest.mark.parametrize("name", ["Transfer-Encoding", "connection"])
    async def test_other_framing_headers_ignored(self, client, renderer, name):
        renderer.serialize.return_value = SerializedResponse(
            status=200, custom_headers={name: "close"}, content="<html></html>"
        )

        resp = await client.get(f"/render/{TARGET}", headers={"Accept-Encoding": "identity"})

        assert resp.status_code == 200
        assert resp.headers.get(name) != "close"

    async def test_ordinary_header_passed_through(self, client, renderer):
        renderer.serialize.return_value = SerializedResponse(
            status=200, custom_headers={"X-Robots-Tag": "noindex"}, content="<html></html>"
        )
        resp = await client.get(f"/render/{TARGET}")
        assert resp.headers["x-robots-tag"] == "noindex"


class TestMiddleware:
    async def test_large_render_gzipped(self, client, renderer):
        body = "<html><body>" + "<p>repeated paragraph</p>" * 200 + "</body></html>"
        renderer.serialize.return_value = SerializedResponse(status=200, content=body)

        resp = await client.get(f"/render/{TARGET}", headers={"Accept-Encoding": "gzip"})

        assert resp.status_code == 200
        assert resp.headers["content-encoding"] == "gzip"
        assert int(resp.headers["content-length"]) < len(body)
        assert resp.text == body

    async def test_not_gzipped_without_accept_encoding(self, client, renderer):
        body = "<html><body>" + "<p>repeated paragraph</p>" * 200 + "</body></html>"
        renderer.serialize.return_value = SerializedResponse(status=200, content=body)

        resp = await client.get(f"/render/{TARGET}", headers={"Accept-Encoding": "identity"})

        assert "content-encoding" not in resp.headers
        assert resp.text == body

    async def test_small_body_not_gzipped(self, client):
        resp = await client.get("/_ah/health", headers={"Accept-Encoding": "gzip"})
        assert "content-encoding" not in resp.headers

    async def test_request_logged(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="prerender.access"):
            await client.get("/_ah/health")
        records = [r for r in caplog.records if r.name == "prerender.access"]
        assert len(records) == 1
        assert records[0].getMessage().startswith("GET /_ah/health 200 ")

    async def test_refused_request_logged_with_status(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="prerender.access"):
            await client.get("/render/file:///etc/passwd")
        messages = [r.getMessage() for r in caplog.records if r.name == "prerender.access"]
        assert messages and " 403 " in messages[0]
