from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import typer

from .core.keys import MODE_STATIC
from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.html_utils import decode_bytes_auto
from .workflows.resolver import ResolvedDocument, SpecRequest, SpecResolver

app = typer.Typer(no_args_is_help=True, add_completion=False)


def _build_request(target: str) -> Union[str, SpecRequest]:
    path = Path(target)
    if "://" not in target and path.exists():
        html = decode_bytes_auto(path.read_bytes())
        return SpecRequest(url=path.resolve().as_uri(), html=html)
    return target


def _artifact_name(resolved: ResolvedDocument) -> str:
    digest = hashlib.sha256(resolved.requested_url.encode("utf-8")).hexdigest()[:16]
    return f"{digest}.html"


async def _resolve_all(targets: List[str], resolver: SpecResolver, concurrency: int) -> List[Any]:
    try:
        return await resolver.resolve_many([_build_request(t) for t in targets], concurrency=concurrency)
    finally:
        await resolver.fetcher.close()


@app.command("resolve")
def resolve_cmd(
    targets: List[str] = typer.Argument(..., help="Spec URLs or local HTML files."),
    out: Optional[Path] = typer.Option(None, "--out", help="Write rendered HTML into this directory."),
    static: bool = typer.Option(False, "--static", help="Parse markup only; do not run scripts."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="ReSpec render timeout (seconds)."),
    concurrency: int = typer.Option(4, "--concurrency", help="Specs resolved in parallel."),
    json_out: bool = typer.Option(False, "--json", help="Print one JSON summary per line."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log fetches and redirects."),
) -> None:
    """Resolve specifications into single rendered documents."""

    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    resolver = SpecResolver(render_timeout=timeout, render_mode=MODE_STATIC if static else None)
    outcomes = asyncio.run(_resolve_all(targets, resolver, concurrency))

    failed = 0
    for target, outcome in zip(targets, outcomes):
        summary: Dict[str, Any]
        if isinstance(outcome, BaseException):
            failed += 1
            summary = {"input": target, "error": f"{type(outcome).__name__}: {outcome}"}
        else:
            summary = {"input": target, **outcome.to_dict()}
            if out is not None:
                out.mkdir(parents=True, exist_ok=True)
                artifact = out / _artifact_name(outcome)
                artifact.write_text(outcome.html, encoding="utf-8")
                summary["artifact"] = str(artifact)
        if json_out:
            sys.stdout.write(json.dumps(summary, ensure_ascii=False) + "\n")
        elif "error" in summary:
            typer.echo(f"error: {target}: {summary['error']}", err=True)
        else:
            typer.echo(f"{summary['url']}  generator={summary['generator']}  hops={summary['hops']}  {summary['title']}")
    raise typer.Exit(code=2 if failed else 0)


@app.command("doctor")
def doctor_cmd() -> None:
    """Print environment and dependency diagnostics."""
    report = build_doctor_report()
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
