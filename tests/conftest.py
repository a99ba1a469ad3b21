from __future__ import annotations

import pytest

from specresolver.workflows import http_fetch, resolver_config


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Run every test from an empty working directory with no config.json."""
    for name in (
        "SPECRESOLVER_CONFIG_PATH",
        "SPECRESOLVER_RENDER_MODE",
        "SPECRESOLVER_CACHE_FOLDER",
        "SPECRESOLVER_HEADED",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(http_fetch, "_default_fetcher", None)
    resolver_config.load_config.cache_clear()
    yield
    resolver_config.load_config.cache_clear()
