"""Resolver defaults (engine URL, resource deny list, bounds) and config loading.

Centralizes static defaults so the pipeline modules have no embedded magic
strings. The process-wide configuration comes from ``config.json`` in the
invoking working directory; environment variables loaded through dotenv can
override a few knobs.
"""

from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from ..core.keys import (
    K_CACHE_FOLDER,
    K_MAX_HOPS,
    K_RENDER_MODE,
    K_RENDER_TIMEOUT,
    K_RESPEC_URL,
    MODE_BROWSER,
    MODE_STATIC,
)

load_dotenv()

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"

# Bounds
MAX_HOPS = 5
RENDER_TIMEOUT_SECONDS = 30.0
ENGINE_POLL_INTERVAL_MS = 100

# ReSpec bootstrap: any requested version is replaced with this build so that
# rendering (and the source patches below) stay reproducible.
RESPEC_PINNED_URL = "https://cdn.jsdelivr.net/npm/respec@25.0.2/builds/respec-w3c-common.js"
RESPEC_PATH_PATTERN = r"/respec[/\-]"
RESPEC_PROFILE_MODULE = "profile-w3c-common"
RESPEC_DROPPED_MODULES = ("core/highlight",)

# Secondary resources
ALLOWED_EXTENSIONS = (".js", ".json")
WHITELISTED_SCRIPT_PATHS = frozenset({
    # shadow DOM spec: needed to initialize respecConfig
    "/webcomponents/assets/scripts/autolink.js",
})
DENIED_PATH_PATTERNS = (
    r"annotate_spec",
    r"expanders",
    r"bug-assist",
    r"dfn",
    r"section-links",
    r"^/webidl/",
)

# Generator markers
RESPEC_BODY_ID = "respecDocument"
ANOLIS_MARKER_ID = "anolis-references"
SINGLE_PAGE_PHRASES = ("single page", "single file", "single-page", "one-page")
SINGLE_PAGE_LINK_SELECTOR = "body .head dl a[href]"

DEFAULT_CACHE_FOLDER = ".cache"


def load_json_from_working_directory(filename: str) -> Any:
    """Load a JSON file relative to the current working directory."""

    path = Path(filename)
    if not path.is_absolute():
        path = Path.cwd() / path
    return json.loads(path.read_text(encoding="utf-8"))


@lru_cache(maxsize=1)
def load_config() -> Dict[str, Any]:
    """Return the process-wide configuration (read once, ``{}`` when absent)."""

    filename = os.getenv("SPECRESOLVER_CONFIG_PATH", CONFIG_FILENAME)
    try:
        data = load_json_from_working_directory(filename)
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable configuration %s: %s", filename, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring configuration %s: expected a JSON object", filename)
        return {}
    return data


def reload_config() -> Dict[str, Any]:
    load_config.cache_clear()
    return load_config()


def _config(config: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return load_config() if config is None else config


def render_mode(config: Optional[Mapping[str, Any]] = None) -> str:
    raw = os.getenv("SPECRESOLVER_RENDER_MODE") or _config(config).get(K_RENDER_MODE) or MODE_BROWSER
    mode = str(raw).strip().lower()
    return mode if mode in {MODE_BROWSER, MODE_STATIC} else MODE_BROWSER


def render_timeout(config: Optional[Mapping[str, Any]] = None) -> float:
    try:
        return float(_config(config).get(K_RENDER_TIMEOUT, RENDER_TIMEOUT_SECONDS))
    except (TypeError, ValueError):
        return RENDER_TIMEOUT_SECONDS


def max_hops(config: Optional[Mapping[str, Any]] = None) -> int:
    try:
        return int(_config(config).get(K_MAX_HOPS, MAX_HOPS))
    except (TypeError, ValueError):
        return MAX_HOPS


def respec_url(config: Optional[Mapping[str, Any]] = None) -> str:
    return str(_config(config).get(K_RESPEC_URL) or RESPEC_PINNED_URL)


def cache_folder(config: Optional[Mapping[str, Any]] = None) -> Path:
    raw = os.getenv("SPECRESOLVER_CACHE_FOLDER") or _config(config).get(K_CACHE_FOLDER) or DEFAULT_CACHE_FOLDER
    return Path(str(raw))


def headed_browser() -> bool:
    return os.getenv("SPECRESOLVER_HEADED", "0").strip().lower() in {"1", "true", "yes", "on"}


__all__ = [
    "load_config",
    "reload_config",
    "load_json_from_working_directory",
    "render_mode",
    "render_timeout",
    "max_hops",
    "respec_url",
    "cache_folder",
    "headed_browser",
]
