from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from ..core.keys import MODE_BROWSER
from .resolver_config import (
    CONFIG_FILENAME,
    cache_folder,
    load_config,
    max_hops,
    render_mode,
    render_timeout,
    respec_url,
)


def _check_writable(path: Path) -> bool:
    try:
        if path.exists():
            return os.access(path, os.W_OK)
        parent = path.parent
        while not parent.exists() and parent != parent.parent:
            parent = parent.parent
        return os.access(parent, os.W_OK)
    except OSError:
        return False


def _chromium_executable() -> Optional[str]:
    try:
        with sync_playwright() as p:
            path = p.chromium.executable_path
    except PlaywrightError:
        return None
    return path if path and Path(path).exists() else None


def build_doctor_report() -> Dict[str, Any]:
    report: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": True,
        "checks": [],
    }

    def add_check(
        name: str,
        status: bool,
        *,
        detail: Optional[str] = None,
        remedy: Optional[str] = None,
        level: str = "warn",
    ) -> None:
        entry = {
            "name": name,
            "status": "ok" if status else "missing",
            "level": level,
            "detail": detail,
        }
        if remedy:
            entry["remedy"] = remedy
        report["checks"].append(entry)
        if not status and level == "warn":
            report["ok"] = False

    mode = render_mode()
    add_check("render_mode", True, detail=mode, level="info")

    if mode == MODE_BROWSER:
        executable = _chromium_executable()
        add_check(
            "chromium",
            executable is not None,
            detail=executable or "Chromium not installed for Playwright",
            remedy="Run `playwright install --with-deps chromium`, or set renderMode to static.",
            level="warn",
        )

    config_path = Path(os.getenv("SPECRESOLVER_CONFIG_PATH", CONFIG_FILENAME))
    add_check(
        "config.json",
        config_path.exists(),
        detail=f"{config_path} ({len(load_config())} keys)" if config_path.exists() else "defaults in use",
        level="info",
    )

    folder = cache_folder()
    add_check(
        "cacheFolder",
        _check_writable(folder),
        detail=str(folder),
        remedy="Create the cache directory or set cacheFolder to a writable location.",
        level="warn",
    )
    add_check("renderTimeout", True, detail=f"{render_timeout():g}s", level="info")
    add_check("maxHops", True, detail=str(max_hops()), level="info")
    add_check("respecUrl", True, detail=respec_url(), level="info")
    return report


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append("specresolver doctor")
    lines.append(f"Generated: {report.get('generated_at')}")
    lines.append("")
    for check in report.get("checks", []):
        name = check.get("name", "check")
        status = check.get("status", "unknown")
        level = check.get("level", "info")
        lines.append(f"- [{level}] {name}: {status}")
        detail = check.get("detail")
        if detail:
            lines.append(f"  detail: {detail}")
        remedy = check.get("remedy")
        if remedy:
            lines.append(f"  remedy: {remedy}")
    return "\n".join(lines).rstrip() + "\n"
