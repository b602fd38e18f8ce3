# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import prerender  # noqa: F401
except ImportError:
    raise ImportError("prerender is not installed. Run: pip install -e '.[dev]'") from None

import pytest


@pytest.fixture(autouse=True)
def _block_real_browser(monkeypatch):
    """Safety net: prevent real Chromium launches in unit tests.

    Tests exercising BrowserHandle patch ``prerender.browser_handle.async_playwright``
    themselves; that patch takes priority over this fixture.
    """

    def _no_real_playwright():
        raise RuntimeError(
            "Test tried to start a real Playwright driver. Patch 'prerender.browser_handle.async_playwright'."
        )

    monkeypatch.setattr("prerender.browser_handle.async_playwright", _no_real_playwright)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep PRERENDER_* variables from the developer's shell out of tests."""
    import os

    for name in list(os.environ):
        if name.startswith("PRERENDER_") or name == "PORT":
            monkeypatch.delenv(name, raising=False)
