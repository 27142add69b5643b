"""
Root Typer application for the groundwork CLI.

Usage::

    groundwork validate infra/
    groundwork plan infra/ --var location=westeurope
    groundwork apply infra/ --parallelism 4
    groundwork output api_url
    groundwork graph infra/ | dot -Tsvg > graph.svg
    groundwork refresh
    groundwork destroy
    groundwork pipeline run pipeline.yaml

Exit codes: 0 success, 1 error, 2 partial apply, 3 no changes.
"""

from __future__ import annotations

from pathlib import Path

import typer
from typer import Typer

from groundwork.cli.pipeline import app as pipeline_app
from groundwork.cli.utils import (
    console,
    echo_json,
    handle_errors,
    make_engine,
    parse_variables,
    print_outputs,
    print_plan,
    print_report,
)
from groundwork.core.logging import configure_logging
from groundwork.core.settings import get_settings
from groundwork.engine import EXIT_ERROR, EXIT_NO_CHANGES

app = Typer(
    name="groundwork",
    help="groundwork — declarative resource provisioning and delivery pipelines.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Shared options ───────────────────────────────────────────────────────

SourceArg = typer.Argument(..., help="Declaration file or directory of *.yaml files.")
VarOpt = typer.Option([], "--var", help="Variable value NAME=VALUE. Repeatable.")
VarFileOpt = typer.Option([], "--var-file", help="YAML mapping of variable values. Repeatable.")
StateOpt = typer.Option(None, "--state", "-s", help="State file (default: GROUNDWORK_STATE_PATH).")
ProvidersOpt = typer.Option(None, "--providers", help="module:factory returning a ProviderRegistry.")
SchemaOpt = typer.Option(None, "--schema", help="Provider schema YAML to validate against.")
JsonOpt = typer.Option(False, "--json", help="Output as JSON.")


# ── Version / logging callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("groundwork")
        except PackageNotFoundError:
            v = "0.1.0"
        typer.echo(f"groundwork {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING, ERROR."),
    log_json: bool | None = typer.Option(None, "--log-json/--log-console", help="Log format."),
) -> None:
    """groundwork CLI — plan and apply infrastructure, run delivery pipelines."""
    settings = get_settings()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=log_json if log_json is not None else settings.log_json,
    )


# ── Commands ─────────────────────────────────────────────────────────────


@app.command()
def validate(
    source: Path = SourceArg,
    var: list[str] = VarOpt,
    var_file: list[Path] = VarFileOpt,
    providers: str | None = ProvidersOpt,
    schema: Path | None = SchemaOpt,
    json_out: bool = JsonOpt,
) -> None:
    """Load declarations and build the dependency graph."""
    with handle_errors(json_out):
        engine = make_engine(providers=providers, schema=schema)
        graph = engine.validate(source, parse_variables(var, var_file))

    order = graph.topological_order()
    if json_out:
        echo_json({"valid": True, "resources": len(order), "order": order})
        return
    console.print(f"[green]✓ Configuration valid[/green] — {len(order)} resources")
    for address in order:
        deps = graph.dependencies_of(address)
        suffix = f" [dim](after {', '.join(deps)})[/dim]" if deps else ""
        console.print(f"  {address}{suffix}")


@app.command()
def plan(
    source: Path = SourceArg,
    var: list[str] = VarOpt,
    var_file: list[Path] = VarFileOpt,
    state: Path | None = StateOpt,
    providers: str | None = ProvidersOpt,
    schema: Path | None = SchemaOpt,
    json_out: bool = JsonOpt,
) -> None:
    """Show the changes an apply would make."""
    with handle_errors(json_out):
        engine = make_engine(state=state, providers=providers, schema=schema)
        result = engine.plan(source, parse_variables(var, var_file))

    if json_out:
        echo_json(result.to_dict())
    else:
        print_plan(result)
    if not result.has_changes:
        raise typer.Exit(code=EXIT_NO_CHANGES)


@app.command()
def apply(
    source: Path = SourceArg,
    var: list[str] = VarOpt,
    var_file: list[Path] = VarFileOpt,
    state: Path | None = StateOpt,
    providers: str | None = ProvidersOpt,
    schema: Path | None = SchemaOpt,
    parallelism: int | None = typer.Option(None, "--parallelism", "-p", min=1, help="Concurrent provider calls."),
    lock_timeout: float | None = typer.Option(None, "--lock-timeout", min=0, help="Seconds to wait for the state lock."),
    json_out: bool = JsonOpt,
) -> None:
    """Plan and apply in one step."""
    with handle_errors(json_out):
        engine = make_engine(
            state=state,
            providers=providers,
            schema=schema,
            parallelism=parallelism,
            lock_timeout=lock_timeout,
        )
        planned = engine.plan(source, parse_variables(var, var_file))
        if not json_out:
            print_plan(planned)
        result = engine.apply(planned)

    if json_out:
        echo_json({"plan": planned.summary(), **result.to_dict()})
    else:
        if planned.has_changes:
            print_report(result.report)
        print_outputs(result.outputs)
    if not planned.has_changes:
        raise typer.Exit(code=EXIT_NO_CHANGES)


@app.command()
def destroy(
    state: Path | None = StateOpt,
    providers: str | None = ProvidersOpt,
    parallelism: int | None = typer.Option(None, "--parallelism", "-p", min=1),
    json_out: bool = JsonOpt,
) -> None:
    """Delete every resource recorded in the state."""
    with handle_errors(json_out):
        engine = make_engine(state=state, providers=providers, parallelism=parallelism)
        planned = engine.plan_destroy()
        if not planned.has_changes:
            if json_out:
                echo_json({"plan": planned.summary()})
            else:
                console.print("[green]Nothing to destroy.[/green]")
            raise typer.Exit(code=EXIT_NO_CHANGES)
        if not json_out:
            print_plan(planned)
        result = engine.apply(planned)

    if json_out:
        echo_json({"plan": planned.summary(), **result.to_dict()})
    else:
        print_report(result.report)


@app.command()
def output(
    name: str | None = typer.Argument(None, help="Single output to print."),
    state: Path | None = StateOpt,
    json_out: bool = JsonOpt,
) -> None:
    """Show outputs recorded by the last successful apply."""
    from groundwork.state.store import StateStore

    with handle_errors(json_out):
        outputs = StateStore(state or get_settings().state_path).load().outputs

    if name is not None:
        if name not in outputs:
            console.print(f"[red]No output named '{name}'.[/red]")
            raise typer.Exit(code=EXIT_ERROR)
        if json_out:
            echo_json(outputs[name])
        else:
            typer.echo(outputs[name])
        return
    if json_out:
        echo_json(outputs)
    else:
        print_outputs(outputs)


@app.command()
def graph(
    source: Path = SourceArg,
    var: list[str] = VarOpt,
    var_file: list[Path] = VarFileOpt,
    providers: str | None = ProvidersOpt,
) -> None:
    """Print the dependency graph in Graphviz DOT format."""
    with handle_errors():
        engine = make_engine(providers=providers)
        built = engine.validate(source, parse_variables(var, var_file))
    typer.echo(built.to_dot())


@app.command()
def refresh(
    state: Path | None = StateOpt,
    providers: str | None = ProvidersOpt,
    json_out: bool = JsonOpt,
) -> None:
    """Re-read every resource in state; drop those that no longer exist."""
    with handle_errors(json_out):
        result = make_engine(state=state, providers=providers).refresh()

    if json_out:
        echo_json(result.to_dict())
        return
    console.print(
        f"[bold]Refresh:[/bold] {len(result.updated)} updated, "
        f"{len(result.dropped)} dropped, {len(result.unchanged)} unchanged."
    )
    for address in result.dropped:
        console.print(f"  [red]-[/red] {address} [dim](gone)[/dim]")


app.add_typer(pipeline_app, name="pipeline", help="Run delivery pipelines.")
