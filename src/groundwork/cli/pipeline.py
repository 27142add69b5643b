"""
CLI: ``groundwork pipeline`` — run and inspect delivery pipelines.

Usage::

    groundwork pipeline run pipeline.yaml
    groundwork pipeline run pipeline.yaml --max-parallel-jobs 2 --json
    groundwork pipeline show pipeline.yaml
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from groundwork.cli.utils import console, echo_json, handle_errors, load_providers
from groundwork.engine import EXIT_ERROR
from groundwork.pipeline.loader import load_pipeline
from groundwork.pipeline.models import PipelineResult, StageStatus
from groundwork.pipeline.orchestrator import PipelineOrchestrator

app = typer.Typer(no_args_is_help=True)

_STATUS_STYLE = {
    "pending": "dim",
    "running": "blue",
    "succeeded": "green",
    "failed": "red",
}


@app.command("run")
def run(
    path: Path = typer.Argument(..., help="Pipeline YAML file."),
    providers: str | None = typer.Option(
        None, "--providers", help="module:factory for infrastructure jobs without their own."
    ),
    max_parallel_jobs: int | None = typer.Option(None, "--max-parallel-jobs", "-j", min=1),
    run_id: str | None = typer.Option(None, "--run-id", help="Run identifier (default: random)."),
    json_out: bool = typer.Option(False, "--json", help="Output results as JSON."),
) -> None:
    """Run every stage whose upstream stages succeed."""
    with handle_errors(json_out):
        pipeline = load_pipeline(path, providers=load_providers(providers))
        result = PipelineOrchestrator(pipeline, max_parallel_jobs=max_parallel_jobs).run(run_id)

    if json_out:
        typer.echo(result.model_dump_json(indent=2))
    else:
        _print_result(result)

    if not result.succeeded:
        raise typer.Exit(code=EXIT_ERROR)


@app.command("show")
def show(
    path: Path = typer.Argument(..., help="Pipeline YAML file."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Validate a pipeline file and list its stages in run order."""
    with handle_errors(json_out):
        pipeline = load_pipeline(path, providers=load_providers(None))

    stages = [pipeline.stages[i] for i in pipeline.order()]
    if json_out:
        echo_json(
            {
                "name": pipeline.name,
                "stages": [
                    {
                        "name": s.name,
                        "needs": list(s.needs),
                        "jobs": [{"name": j.name, "inputs": list(j.inputs), "outputs": list(j.outputs)} for j in s.jobs],
                    }
                    for s in stages
                ],
            }
        )
        return

    table = Table(title=f"Pipeline {pipeline.name}", pad_edge=False)
    table.add_column("Stage", style="cyan")
    table.add_column("Needs")
    table.add_column("Jobs")
    for stage in stages:
        table.add_row(stage.name, ", ".join(stage.needs), ", ".join(j.name for j in stage.jobs))
    console.print(table)


def _print_result(result: PipelineResult) -> None:
    table = Table(title=f"Pipeline {result.pipeline} — run {result.run_id}", pad_edge=False)
    table.add_column("Stage", style="cyan")
    table.add_column("Status")
    table.add_column("Jobs")
    table.add_column("Error", overflow="fold")

    for stage in result.stages:
        style = _STATUS_STYLE[stage.status.value]
        jobs = ", ".join(f"{j.name} ({j.status.value})" for j in stage.jobs) or "—"
        table.add_row(stage.name, f"[{style}]{stage.status.value}[/{style}]", jobs, stage.error or "")
    console.print(table)

    if result.succeeded:
        console.print(f"[green]✓ Pipeline succeeded[/green] in {result.duration_seconds:.1f}s")
    else:
        blocked = [s.name for s in result.stages if s.status == StageStatus.PENDING]
        console.print("[red]✗ Pipeline failed[/red]" + (f" — not run: {', '.join(blocked)}" if blocked else ""))
