# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Startup configuration for the rendering service.

Read once at startup, never per request. Sources, lowest priority first:

1. dataclass defaults
2. optional JSON file (camelCase or snake_case keys)
3. ``PRERENDER_*`` environment variables
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.json"

# JSON key aliases (camelCase as written by humans / older deployments)
_KEY_ALIASES: dict[str, str] = {
    "timeout": "timeout_ms",
    "timeoutMs": "timeout_ms",
    "restrictedUrlPattern": "restricted_url_pattern",
}


@dataclass(frozen=True)
class RenderConfig:
    """Immutable service configuration."""

    timeout_ms: int = 10000  # navigation network-idle budget
    width: int = 1000  # default viewport width
    height: int = 1000  # default viewport height
    host: str = "0.0.0.0"  # nosec B104
    port: int = 3000
    token: str | None = None  # required ``token`` request header, None = open
    headers: dict[str, str] = field(default_factory=dict)  # added to every response
    headless: bool = True
    restricted_url_pattern: str | None = None  # regex of target URLs to refuse

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ConfigError(f"timeout_ms must be > 0, got {self.timeout_ms}")
        if self.width <= 0 or self.height <= 0:
            raise ConfigError(f"viewport must be positive, got {self.width}x{self.height}")
        if not 0 < self.port < 65536:
            raise ConfigError(f"port out of range: {self.port}")

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


def _normalize_keys(raw: dict[str, Any]) -> dict[str, Any]:
    known = {f.name for f in dataclasses.fields(RenderConfig)}
    out: dict[str, Any] = {}
    for key, value in raw.items():
        name = _KEY_ALIASES.get(key, key)
        if name in known:
            out[name] = value
        else:
            logger.warning("Ignoring unknown config key: %s", key)
    return out


def _env_overrides() -> dict[str, Any]:
    out: dict[str, Any] = {}

    env_timeout = os.environ.get("PRERENDER_TIMEOUT_MS", "").strip()
    if env_timeout:
        with suppress(ValueError):
            out["timeout_ms"] = int(env_timeout)

    env_width = os.environ.get("PRERENDER_WIDTH", "").strip()
    if env_width:
        with suppress(ValueError):
            out["width"] = int(env_width)

    env_height = os.environ.get("PRERENDER_HEIGHT", "").strip()
    if env_height:
        with suppress(ValueError):
            out["height"] = int(env_height)

    env_host = os.environ.get("PRERENDER_HOST", "").strip()
    if env_host:
        out["host"] = env_host

    env_port = os.environ.get("PRERENDER_PORT", "").strip() or os.environ.get("PORT", "").strip()
    if env_port:
        with suppress(ValueError):
            out["port"] = int(env_port)

    env_token = os.environ.get("PRERENDER_TOKEN", "").strip()
    if env_token:
        out["token"] = env_token

    env_headless = os.environ.get("PRERENDER_HEADLESS", "").strip().lower()
    if env_headless:
        out["headless"] = env_headless not in ("0", "false", "no")

    return out


def load(path: str | Path | None = None) -> RenderConfig:
    """Build the configuration from *path* (if it exists) and the environment.

    A missing file is not an error; an unreadable or malformed one is.
    """
    values: dict[str, Any] = {}
    config_path = Path(path or os.environ.get("PRERENDER_CONFIG", "") or DEFAULT_CONFIG_PATH)
    if config_path.is_file():
        try:
            raw = json.loads(config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Cannot read config file {config_path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file {config_path} must contain a JSON object")
        values.update(_normalize_keys(raw))
        logger.info("Loaded config file: %s", config_path)

    values.update(_env_overrides())
    try:
        return RenderConfig(**values)
    except TypeError as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc
