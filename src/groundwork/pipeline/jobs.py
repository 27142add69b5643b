"""Job factories for the four standard stages: build, test, infrastructure, deploy.

Cross-stage names are part of the contract between stages:

- ``image:<name>``          image reference (``name:tag``) from a build job
- ``infrastructure:outputs`` mapping of every output after the apply
- ``output:<name>``         one output value

Commands run as subprocesses (no shell) in the current host environment;
the job's ``environment`` is carried as a reference only.  Input artifacts
are exported to commands as ``ARTIFACT_<NAME>`` environment variables,
e.g. ``image:python-service`` -> ``ARTIFACT_IMAGE_PYTHON_SERVICE``.
"""

from __future__ import annotations

import os
import re
import shlex
import subprocess
import time
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from groundwork.apply.executor import CancelToken
from groundwork.core.errors import JobFailedError
from groundwork.pipeline.models import Job, JobContext
from groundwork.retry import RetryStrategy

if TYPE_CHECKING:
    from groundwork.engine import Engine

logger = structlog.get_logger()

Command = str | Sequence[str]

OUTPUTS_ARTIFACT = "infrastructure:outputs"


def image_artifact(image: str) -> str:
    return f"image:{image}"


def output_artifact(name: str) -> str:
    return f"output:{name}"


def artifact_env_name(artifact: str) -> str:
    return "ARTIFACT_" + re.sub(r"[^A-Za-z0-9]", "_", artifact).upper()


# =============================================================================
# Commands
# =============================================================================


def run_command(
    command: Command,
    env: Mapping[str, str] | None = None,
    cwd: str | Path | None = None,
    timeout: float | None = None,
) -> dict[str, Any]:
    """Run one command, capturing output.

    Returns:
        dict with exit_code, stdout, stderr, duration_seconds, error
    """
    argv = shlex.split(command) if isinstance(command, str) else list(command)
    full_env = {**os.environ, **(env or {})}
    start = time.monotonic()

    try:
        proc = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=str(cwd) if cwd else None,
            env=full_env,
        )
        return {
            "exit_code": proc.returncode,
            "stdout": proc.stdout,
            "stderr": proc.stderr,
            "duration_seconds": time.monotonic() - start,
            "error": None,
        }
    except subprocess.TimeoutExpired:
        return {
            "exit_code": -1,
            "stdout": "",
            "stderr": "",
            "duration_seconds": time.monotonic() - start,
            "error": f"Command timed out after {timeout}s",
        }
    except OSError as e:
        return {
            "exit_code": -1,
            "stdout": "",
            "stderr": "",
            "duration_seconds": time.monotonic() - start,
            "error": str(e),
        }


def _run_all(
    ctx: JobContext,
    commands: Sequence[Command],
    env: Mapping[str, str] | None,
    cwd: str | Path | None,
    substitutions: Mapping[str, str] | None = None,
) -> list[dict[str, Any]]:
    job_env = {artifact_env_name(name): str(value) for name, value in ctx.inputs.items()}
    job_env.update(env or {})

    results = []
    for command in commands:
        if substitutions:
            command = _substitute(command, substitutions)
        if ctx.cancelled.is_set():
            raise JobFailedError(ctx.job, "cancelled")
        result = run_command(command, env=job_env, cwd=cwd, timeout=ctx.remaining())
        results.append(result)
        logger.debug(
            "pipeline.command.complete",
            job=ctx.job,
            command=command if isinstance(command, str) else shlex.join(command),
            exit_code=result["exit_code"],
        )
        if result["error"] or result["exit_code"] != 0:
            detail = result["error"] or (result["stderr"].strip().splitlines() or ["no output"])[-1]
            raise JobFailedError(ctx.job, f"command exited with {result['exit_code']}: {detail}")
    return results


def _substitute(command: Command, values: Mapping[str, str]) -> Command:
    def fill(text: str) -> str:
        for key, value in values.items():
            text = text.replace("{" + key + "}", value)
        return text

    if isinstance(command, str):
        return fill(command)
    return [fill(part) for part in command]


# =============================================================================
# Factories
# =============================================================================


def command_job(
    name: str,
    commands: Sequence[Command],
    *,
    environment: str | None = None,
    env: Mapping[str, str] | None = None,
    cwd: str | Path | None = None,
    inputs: Sequence[str] = (),
    timeout_seconds: float | None = None,
    retry: RetryStrategy | None = None,
) -> Job:
    """Run ``commands`` in order; any non-zero exit fails the job."""

    def run(ctx: JobContext) -> list[dict[str, Any]]:
        return _run_all(ctx, commands, env, cwd)

    return Job(
        name=name,
        run=run,
        inputs=tuple(inputs),
        environment=environment,
        timeout_seconds=timeout_seconds,
        retry=retry,
    )


def build_image_job(
    name: str,
    image: str,
    tag: str = "latest",
    *,
    registry: str | None = None,
    commands: Sequence[Command] = (),
    environment: str | None = None,
    cwd: str | Path | None = None,
    timeout_seconds: float | None = None,
    retry: RetryStrategy | None = None,
) -> Job:
    """Build an image and publish ``image:<image>`` = ``[registry/]image:tag``.

    ``{image}`` in a command is replaced by the full image reference, e.g.
    ``docker build -t {image} services/python``.
    """
    reference = f"{registry}/{image}:{tag}" if registry else f"{image}:{tag}"
    artifact = image_artifact(image)

    def run(ctx: JobContext) -> dict[str, Any]:
        _run_all(ctx, commands, None, cwd, substitutions={"image": reference})
        ctx.publish(artifact, reference)
        return {"image": reference}

    return Job(
        name=name,
        run=run,
        outputs=(artifact,),
        environment=environment,
        timeout_seconds=timeout_seconds,
        retry=retry,
    )


def test_job(
    name: str,
    check: Callable[[JobContext], bool] | None = None,
    *,
    commands: Sequence[Command] = (),
    inputs: Sequence[str] = (),
    environment: str | None = None,
    cwd: str | Path | None = None,
    timeout_seconds: float | None = None,
    retry: RetryStrategy | None = None,
) -> Job:
    """Pass/fail job: commands must exit 0 and ``check`` must not return False."""

    def run(ctx: JobContext) -> dict[str, Any]:
        _run_all(ctx, commands, None, cwd)
        if check is not None and check(ctx) is False:
            raise JobFailedError(ctx.job, "tests failed")
        return {"passed": True}

    return Job(
        name=name,
        run=run,
        inputs=tuple(inputs),
        environment=environment,
        timeout_seconds=timeout_seconds,
        retry=retry,
    )


# not a pytest test
test_job.__test__ = False  # type: ignore[attr-defined]


def infrastructure_job(
    name: str,
    engine: Engine | Callable[[], Engine],
    source: str | Path | Mapping[str, Any],
    *,
    variables: Mapping[str, Any] | None = None,
    image_variables: Mapping[str, str] | None = None,
    timeout_seconds: float | None = None,
) -> Job:
    """Exactly one plan + apply.

    ``image_variables`` maps a declaration variable to an image name; the
    variable receives the ``image:<name>`` artifact, so resources are
    declared against the images the build stage actually produced.
    Publishes ``infrastructure:outputs`` and one ``output:<name>`` per output.
    """
    image_variables = dict(image_variables or {})

    def run(ctx: JobContext) -> dict[str, Any]:
        instance = engine if hasattr(engine, "plan") else engine()
        values = dict(variables or {})
        for var_name, image in image_variables.items():
            values[var_name] = ctx.input(image_artifact(image))

        plan = instance.plan(source, variables=values)
        logger.info("pipeline.infrastructure.planned", job=ctx.job, **plan.summary())
        # a timed-out job stops dispatching new provider calls
        result = instance.apply(plan, CancelToken(ctx.cancelled))

        ctx.publish(OUTPUTS_ARTIFACT, dict(result.outputs))
        for output_name, value in result.outputs.items():
            ctx.publish(output_artifact(output_name), value)
        return {"summary": plan.summary(), "serial": result.state.serial}

    return Job(
        name=name,
        run=run,
        inputs=tuple(image_artifact(i) for i in image_variables.values()),
        outputs=(OUTPUTS_ARTIFACT,),
        timeout_seconds=timeout_seconds,
    )


def deploy_job(
    name: str,
    images: Sequence[str],
    deploy: Callable[[JobContext, dict[str, str]], Any] | None = None,
    *,
    commands: Sequence[Command] = (),
    inputs: Sequence[str] = (),
    environment: str | None = None,
    cwd: str | Path | None = None,
    timeout_seconds: float | None = None,
    retry: RetryStrategy | None = None,
) -> Job:
    """Roll out built images; every ``image:<name>`` must still be available."""
    image_inputs = tuple(image_artifact(i) for i in images)

    def run(ctx: JobContext) -> dict[str, Any]:
        references = {image: ctx.input(image_artifact(image)) for image in images}
        _run_all(ctx, commands, None, cwd)
        result = deploy(ctx, references) if deploy is not None else None
        return {"images": references, "result": result}

    return Job(
        name=name,
        run=run,
        inputs=image_inputs + tuple(i for i in inputs if i not in image_inputs),
        environment=environment,
        timeout_seconds=timeout_seconds,
        retry=retry,
    )
