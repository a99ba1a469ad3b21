import json
from pathlib import Path

import aiohttp
from typer.testing import CliRunner

from specresolver.cli import app
from specresolver.workflows.http_fetch import URLFetcher

runner = CliRunner()

BIKESHED_DOC = (
    '<html><head><meta name="generator" content="Bikeshed version 4">'
    "<title>CSS Widgets</title></head><body><p>Widgets</p></body></html>"
)


def _json_lines(output):
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


def test_resolve_local_file_json(tmp_path):
    spec = tmp_path / "spec.html"
    spec.write_text(BIKESHED_DOC, encoding="utf-8")
    result = runner.invoke(app, ["resolve", str(spec), "--static", "--json"])
    assert result.exit_code == 0, result.output
    [summary] = _json_lines(result.output)
    assert summary["generator"] == "bikeshed"
    assert summary["title"] == "CSS Widgets"
    assert summary["hops"] == 0
    assert summary["url"].startswith("file://")


def test_resolve_writes_rendered_html(tmp_path):
    spec = tmp_path / "spec.html"
    spec.write_text(BIKESHED_DOC, encoding="utf-8")
    out = tmp_path / "out"
    result = runner.invoke(app, ["resolve", str(spec), "--static", "--json", "--out", str(out)])
    assert result.exit_code == 0, result.output
    [summary] = _json_lines(result.output)
    artifact = Path(summary["artifact"])
    assert artifact.parent == out
    assert artifact.exists()
    assert "CSS Widgets" in artifact.read_text(encoding="utf-8")


def test_resolve_failure_exit_code(monkeypatch):
    async def unreachable(self, url):
        raise aiohttp.ClientConnectionError("no route to host")

    monkeypatch.setattr(URLFetcher, "_fetch_once", unreachable)
    result = runner.invoke(app, ["resolve", "https://example.invalid/spec/", "--static", "--json"])
    assert result.exit_code == 2
    [summary] = _json_lines(result.output)
    assert summary["error"].startswith("NetworkError")
