"""Shared keys to avoid magic strings across specresolver modules."""

from __future__ import annotations

# Generators
GEN_RESPEC = "respec"
GEN_BIKESHED = "bikeshed"
GEN_ANOLIS = "anolis"
GEN_UNKNOWN = "unknown"

# config.json keys (camelCase, as written by users)
K_CACHE_FOLDER = "cacheFolder"
K_RESET_CACHE = "resetCache"
K_CACHE_REFRESH = "cacheRefresh"
K_LOG_TO_CONSOLE = "logToConsole"
K_RENDER_MODE = "renderMode"
K_RENDER_TIMEOUT = "renderTimeout"
K_MAX_HOPS = "maxHops"
K_RESPEC_URL = "respecUrl"

# fetch option keys
K_REFRESH = "refresh"

# Refresh policies
REFRESH_FORCE = "force"
REFRESH_ONCE = "once"
REFRESH_NEVER = "never"

# Render modes
MODE_BROWSER = "browser"
MODE_STATIC = "static"
