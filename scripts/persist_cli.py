#!/usr/bin/env python3
"""persist CLI: phase entry points plus store inspection helpers."""

from __future__ import annotations

import asyncio
import json
from collections import deque
from pathlib import Path
from typing import Any, Iterable, Optional

import typer
from rich.console import Console
from rich.table import Table

from persist.errors import ConfigurationError
from persist.host import ActionsHost, configure_logging
from persist.paths import resolve_dest_root, resolve_run_root
from persist.phases import main_entry, post_entry, pre_entry
from persist.report import format_bytes, summarize
from persist.settings import ReportLimits, Settings, get_settings
from persist.state import load_state

console = Console()
cli = typer.Typer(help="Persist CI workspace paths into a mounted store and restore them later.")
warnings_cli = typer.Typer(help="Warning log helpers.")
cli.add_typer(warnings_cli, name="warnings")


def _resolve_settings(env_file: Optional[Path]) -> Settings:
    return get_settings(str(env_file) if env_file else ".env")


def _flag(value: str) -> bool:
    return value.strip().lower() == "true"


def _finish(code: int) -> None:
    if code:
        raise typer.Exit(code)


@cli.command()
def pre(
    env_file: Optional[Path] = typer.Option(None, "--env-file", help="Optional .env file with fallback values."),
) -> None:
    """Validate that the store is mounted and writable; record flags for post."""

    settings = _resolve_settings(env_file)
    host = ActionsHost()
    configure_logging(trace=_flag(host.get_input("trace")), level=settings.logging.level)
    _finish(pre_entry(host))


@cli.command()
def main(
    env_file: Optional[Path] = typer.Option(None, "--env-file", help="Optional .env file with fallback values."),
) -> None:
    """Resolve destination roots, then save or restore the configured files."""

    settings = _resolve_settings(env_file)
    host = ActionsHost()
    configure_logging(trace=_flag(host.get_input("trace")), level=settings.logging.level)
    _finish(asyncio.run(main_entry(host, settings)))


@cli.command()
def post(
    env_file: Optional[Path] = typer.Option(None, "--env-file", help="Optional .env file with fallback values."),
) -> None:
    """Report and delete the run-scope subtree when cleanup was requested."""

    settings = _resolve_settings(env_file)
    host = ActionsHost()
    trace = _flag(host.get_input("trace")) or load_state(host).trace
    configure_logging(trace=trace, level=settings.logging.level)
    _finish(post_entry(host, settings))


@cli.command()
def resolve(
    repository: str = typer.Option(..., "--repository", "-r", help="owner/name of the repository"),
    store: str = typer.Option("/store", "--store", help="Absolute store root"),
    scope: str = typer.Option("run", "--scope", help="global, branch, or run"),
    ref_name: str = typer.Option("", "--ref-name", help="Branch or tag name (branch scope)"),
    run_id: str = typer.Option(..., "--run-id", help="CI run identifier"),
    json_output: bool = typer.Option(False, "--json", help="Print JSON instead of a table."),
) -> None:
    """Show where a given scope would place files in the store."""

    try:
        dest_root = resolve_dest_root(scope.lower(), store, repository, ref_name, run_id)
        run_root = resolve_run_root(store, repository, ref_name, run_id)
    except ConfigurationError as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(1) from exc
    if json_output:
        console.print_json(data={"dest_root": str(dest_root), "run_root": str(run_root), "scope": scope.lower()})
        return
    table = Table("Field", "Value", title="Store roots")
    table.add_row("scope", scope.lower())
    table.add_row("dest_root", str(dest_root))
    table.add_row("run_root", str(run_root))
    console.print(table)


@cli.command()
def report(
    path: Path = typer.Argument(..., help="Directory to summarize"),
    max_entries: int = typer.Option(120, "--max-entries", min=0, help="Sample size cap."),
    max_depth: int = typer.Option(3, "--max-depth", min=0, help="Traversal depth cap."),
    json_output: bool = typer.Option(False, "--json", help="Print JSON instead of a table."),
) -> None:
    """Summarize a store subtree (counts, size, first entries)."""

    summary = summarize(path, ReportLimits(max_entries=max_entries, max_depth=max_depth))
    if summary is None:
        console.print(f"[yellow]Path does not exist: {path}[/]")
        raise typer.Exit(1)
    if json_output:
        console.print_json(data=summary.as_dict())
        return
    table = Table("Metric", "Value", title=f"Summary of {path}")
    table.add_row("files", str(summary.file_count))
    table.add_row("dirs", str(summary.dir_count))
    table.add_row("links", str(summary.link_count))
    table.add_row("approx size", format_bytes(summary.total_bytes))
    console.print(table)
    for line in summary.sample_lines:
        console.print(line, markup=False, highlight=False)


def _load_warning_records(path: Path, limit: int) -> list[dict[str, Any]]:
    if limit <= 0 or not path.exists():
        return []
    records: deque[dict[str, Any]] = deque(maxlen=limit)
    with path.open("r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                continue
            records.append(payload)
    return list(records)


def _format_warning_summary(values: Any) -> str:
    if not isinstance(values, list) or not values:
        return "-"
    formatted: list[str] = []
    for entry in values:
        if not isinstance(entry, dict):
            formatted.append(str(entry))
            continue
        code = entry.get("code", "?")
        path = entry.get("path")
        formatted.append(f"{code} ({path})" if path else str(code))
    return "; ".join(formatted)


def _warning_rows(records: Iterable[dict[str, Any]]) -> Iterable[tuple[str, str, str, str]]:
    for record in records:
        yield (
            str(record.get("timestamp", "-")),
            str(record.get("run_id", "-")),
            str(record.get("phase", "-")),
            _format_warning_summary(record.get("warnings")),
        )


@warnings_cli.command("tail")
def warnings_tail(
    count: int = typer.Option(20, "--count", "-n", help="Number of entries to display."),
    json_output: bool = typer.Option(False, "--json", help="Emit raw JSON lines instead of a table."),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Override PERSIST_WARNING_LOG."),
) -> None:
    """Show the most recent entries of the phase warning log."""

    target_path = log_path or _resolve_settings(None).logging.warning_log_path
    if target_path is None:
        console.print("[yellow]No warning log configured (set PERSIST_WARNING_LOG or pass --log-path).[/]")
        raise typer.Exit(1)
    if not target_path.exists():
        console.print(f"[yellow]Warning log not found at {target_path}[/]")
        return
    records = _load_warning_records(target_path, count)
    if not records:
        console.print("[dim]No warning entries found.[/]")
        return
    if json_output:
        for record in records:
            console.print(json.dumps(record), markup=False, highlight=False, soft_wrap=True)
        return
    table = Table("timestamp", "run", "phase", "warnings", title="Warning Log")
    for row in _warning_rows(records):
        table.add_row(*row)
    console.print(table)


if __name__ == "__main__":
    cli()
