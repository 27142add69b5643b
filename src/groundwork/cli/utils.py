"""
CLI utility helpers — option parsing, engine wiring, error and output rendering.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import typer
import yaml
from rich.console import Console
from rich.table import Table

from groundwork.apply.report import ApplyReport
from groundwork.config.schema import ProviderSchema
from groundwork.core.errors import GroundworkError, ParseError, PartialApplyError
from groundwork.core.refs import resolve_callable_ref
from groundwork.core.settings import GroundworkSettings, get_settings
from groundwork.engine import EXIT_ERROR, EXIT_PARTIAL, Engine
from groundwork.plan.models import ChangeAction, Plan
from groundwork.providers.base import ProviderRegistry

console = Console()
err_console = Console(stderr=True)

_ACTION_STYLE = {
    ChangeAction.CREATE: ("+", "green"),
    ChangeAction.UPDATE: ("~", "yellow"),
    ChangeAction.DELETE: ("-", "red"),
    ChangeAction.NOOP: ("=", "dim"),
}


# ── Inputs ───────────────────────────────────────────────────────────────


def parse_variables(pairs: list[str], var_files: list[Path]) -> dict[str, Any]:
    """Merge ``--var-file`` mappings, then ``--var key=value`` pairs on top."""
    values: dict[str, Any] = {}
    for path in var_files:
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ParseError(f"Cannot read variable file {path}: {e}", cause=e) from e
        if not isinstance(data, dict):
            raise ParseError(f"Variable file {path} must contain a mapping")
        values.update(data)
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ParseError(f"Invalid --var {pair!r}: expected NAME=VALUE")
        values[key.strip()] = value
    return values


def load_providers(ref: str | None, settings: GroundworkSettings | None = None) -> ProviderRegistry:
    """Call a ``module:factory`` reference that returns a ProviderRegistry."""
    settings = settings or get_settings()
    registry = resolve_callable_ref(ref or settings.providers)()
    if not isinstance(registry, ProviderRegistry):
        raise ParseError(f"{ref or settings.providers!r} did not return a ProviderRegistry")
    return registry


def make_engine(
    *,
    state: Path | None = None,
    providers: str | None = None,
    schema: Path | None = None,
    parallelism: int | None = None,
    lock_timeout: float | None = None,
) -> Engine:
    """Build an :class:`Engine` from settings, with CLI options taking precedence."""
    settings = get_settings()
    schema_path = schema or settings.schema_path
    return Engine.from_settings(
        load_providers(providers, settings),
        settings,
        state=state,
        schema=ProviderSchema.from_yaml_file(schema_path) if schema_path else None,
        parallelism=parallelism,
        lock_timeout=lock_timeout,
    )


# ── Errors ───────────────────────────────────────────────────────────────


def exit_code_for(error: GroundworkError) -> int:
    return EXIT_PARTIAL if isinstance(error, PartialApplyError) else EXIT_ERROR


@contextmanager
def handle_errors(as_json: bool = False) -> Iterator[None]:
    """Render a :class:`GroundworkError` and exit with its code."""
    try:
        yield
    except GroundworkError as e:
        if as_json:
            typer.echo(json.dumps({"error": e.to_dict()}, indent=2, default=str))
        else:
            err_console.print(f"[bold red]Error[/bold red] ({e.category.value}): {e.message}")
            if isinstance(e, PartialApplyError):
                print_report(e.report, console=err_console)
        raise typer.Exit(code=exit_code_for(e)) from e


# ── Output ───────────────────────────────────────────────────────────────


def echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def print_plan(plan: Plan) -> None:
    table = Table(title="Destroy plan" if plan.destroy else "Plan", show_lines=False, pad_edge=False)
    table.add_column("", no_wrap=True)
    table.add_column("Address", style="cyan")
    table.add_column("Action")
    table.add_column("Changes", overflow="fold")

    for change in plan:
        symbol, style = _ACTION_STYLE[change.action]
        details = ""
        if change.action == ChangeAction.UPDATE:
            details = ", ".join(change.changed_attributes())
        elif change.action == ChangeAction.CREATE and change.unknown_attributes:
            details = "known after apply: " + ", ".join(change.unknown_attributes)
        table.add_row(f"[{style}]{symbol}[/{style}]", change.address, f"[{style}]{change.action.value}[/{style}]", details)

    console.print(table)
    print_summary(plan)


def print_summary(plan: Plan) -> None:
    s = plan.summary()
    if not plan.has_changes:
        console.print("[green]No changes.[/green] Infrastructure matches the configuration.")
        return
    console.print(
        f"[bold]Plan:[/bold] {s['create']} to create, {s['update']} to update, "
        f"{s['delete']} to delete, {s['no-op']} unchanged."
    )


def print_report(report: ApplyReport, console: Console = console) -> None:
    table = Table(title="Apply", show_lines=False, pad_edge=False)
    table.add_column("Address", style="cyan")
    table.add_column("Action")
    table.add_column("Status")
    table.add_column("Error", overflow="fold")
    styles = {"succeeded": "green", "failed": "red", "skipped": "yellow", "unchanged": "dim"}
    for outcome in report.outcomes:
        style = styles[outcome.status.value]
        table.add_row(
            outcome.address,
            outcome.action.value,
            f"[{style}]{outcome.status.value}[/{style}]",
            outcome.error or "",
        )
    console.print(table)


def print_outputs(outputs: dict[str, Any]) -> None:
    if not outputs:
        console.print("[dim]No outputs.[/dim]")
        return
    for name, value in outputs.items():
        console.print(f"  [cyan]{name}[/cyan] = {value}")
