"""Pydantic models for pipeline YAML definitions.

Usage::

    from groundwork.pipeline.loader import load_pipeline

    pipeline = load_pipeline("pipeline.yaml")
    PipelineOrchestrator(pipeline).run()

Example YAML::

    name: python-service
    max_parallel_jobs: 4
    artifact_ttl_seconds: 3600
    stages:
      - name: build
        jobs:
          - name: image
            kind: build_image
            image: python-service
            tag: "1.4"
            commands: ["docker build -t {image} services/python"]
      - name: test
        needs: [build]
        jobs:
          - name: unit
            kind: test
            environment: python:3.12
            commands: ["pytest -q services/python"]
      - name: infrastructure
        needs: [test]
        jobs:
          - name: apply
            kind: infrastructure
            config: infra/
            state: groundwork.state.json
            providers: groundwork.providers.memory:demo_registry
            image_variables: {python_image: python-service}
      - name: deploy
        needs: [infrastructure]
        jobs:
          - name: rollout
            kind: deploy
            images: [python-service]
            commands: ["./deploy.sh"]

Relative ``config``, ``state`` and ``cwd`` paths are resolved against the
directory of the pipeline file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from groundwork.core.errors import ParseError
from groundwork.core.refs import resolve_callable_ref
from groundwork.core.settings import GroundworkSettings, get_settings
from groundwork.pipeline import jobs
from groundwork.pipeline.models import Job, JobContext, Pipeline, Stage
from groundwork.providers.base import ProviderRegistry
from groundwork.retry import ConstantBackoff, RetryStrategy

JobKind = Literal["command", "build_image", "test", "infrastructure", "deploy", "handler"]


class JobSpec(BaseModel):
    """One job; which fields apply depends on ``kind``."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    kind: JobKind = "command"
    environment: str | None = Field(default=None, description="Execution environment reference")
    commands: list[str | list[str]] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    cwd: str | None = None
    inputs: list[str] = Field(default_factory=list, description="Artifacts consumed")
    artifacts: dict[str, str] = Field(
        default_factory=dict, description="Artifacts published after the commands succeed"
    )
    timeout_seconds: float | None = Field(default=None, gt=0)
    retries: int = Field(default=0, ge=0)
    retry_delay_seconds: float = Field(default=1.0, ge=0)

    # build_image
    image: str | None = None
    tag: str = "latest"
    registry: str | None = None

    # infrastructure
    config: str | None = None
    state: str | None = None
    providers: str | None = Field(default=None, description="module:factory returning a ProviderRegistry")
    variables: dict[str, Any] = Field(default_factory=dict)
    image_variables: dict[str, str] = Field(default_factory=dict)
    parallelism: int | None = Field(default=None, ge=1)

    # deploy
    images: list[str] = Field(default_factory=list)

    # handler
    handler: str | None = Field(default=None, description="module:qualname called with the JobContext")

    @model_validator(mode="after")
    def validate_kind_fields(self) -> JobSpec:
        required = {
            "build_image": ("image",),
            "infrastructure": ("config",),
            "handler": ("handler",),
        }.get(self.kind, ())
        missing = [f for f in required if getattr(self, f) is None]
        if missing:
            raise ValueError(f"Job '{self.name}' of kind '{self.kind}' requires {missing}")
        if self.kind == "deploy" and not self.images:
            raise ValueError(f"Job '{self.name}' of kind 'deploy' requires at least one image")
        return self

    def retry_strategy(self) -> RetryStrategy | None:
        if not self.retries:
            return None
        return ConstantBackoff(max_retries=self.retries, delay=self.retry_delay_seconds)

    def to_job(self, base_dir: Path, providers: ProviderRegistry | None, settings: GroundworkSettings) -> Job:
        cwd = _resolve_path(base_dir, self.cwd) if self.cwd else None
        common: dict[str, Any] = {
            "environment": self.environment,
            "timeout_seconds": self.timeout_seconds,
            "retry": self.retry_strategy(),
        }

        if self.kind == "build_image":
            job = jobs.build_image_job(
                self.name, self.image, self.tag, registry=self.registry, commands=self.commands, cwd=cwd, **common
            )
        elif self.kind == "test":
            job = jobs.test_job(self.name, commands=self.commands, inputs=self.inputs, cwd=cwd, **common)
        elif self.kind == "deploy":
            job = jobs.deploy_job(
                self.name, self.images, commands=self.commands, inputs=self.inputs, cwd=cwd, **common
            )
        elif self.kind == "infrastructure":
            job = jobs.infrastructure_job(
                self.name,
                self._engine_factory(base_dir, providers, settings),
                _resolve_path(base_dir, self.config),
                variables=self.variables,
                image_variables=self.image_variables,
                timeout_seconds=self.timeout_seconds,
            )
        elif self.kind == "handler":
            job = Job(name=self.name, run=resolve_callable_ref(self.handler), inputs=tuple(self.inputs), **common)
        else:
            job = jobs.command_job(
                self.name, self.commands, env=self.env, cwd=cwd, inputs=self.inputs, **common
            )

        if self.artifacts:
            job = _publishing(job, self.artifacts)
        return job

    def _engine_factory(self, base_dir: Path, providers: ProviderRegistry | None, settings: GroundworkSettings):
        from groundwork.engine import Engine

        state = _resolve_path(base_dir, self.state) if self.state else settings.state_path
        parallelism = self.parallelism or settings.parallelism

        def factory() -> Engine:
            registry = resolve_callable_ref(self.providers)() if self.providers else providers
            if registry is None:
                raise ParseError(f"Infrastructure job '{self.name}' has no providers configured")
            return Engine(
                registry,
                state,
                parallelism=parallelism,
                lock_timeout=settings.lock_timeout_seconds,
            )

        return factory


class StageSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    needs: list[str] = Field(default_factory=list)
    artifact_ttl_seconds: float | None = Field(default=None, gt=0)
    jobs: list[JobSpec] = Field(..., min_length=1)


class PipelineSpec(BaseModel):
    """Root model of a pipeline file."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    max_parallel_jobs: int | None = Field(default=None, ge=1)
    artifact_ttl_seconds: float | None = Field(default=None, gt=0)
    stages: list[StageSpec] = Field(..., min_length=1)

    def to_pipeline(
        self,
        base_dir: Path,
        providers: ProviderRegistry | None = None,
        settings: GroundworkSettings | None = None,
    ) -> Pipeline:
        settings = settings or get_settings()
        return Pipeline(
            name=self.name,
            stages=[
                Stage(
                    name=stage.name,
                    jobs=[job.to_job(base_dir, providers, settings) for job in stage.jobs],
                    needs=tuple(stage.needs),
                    artifact_ttl_seconds=stage.artifact_ttl_seconds,
                )
                for stage in self.stages
            ],
            max_parallel_jobs=self.max_parallel_jobs or settings.max_parallel_jobs,
            artifact_ttl_seconds=self.artifact_ttl_seconds or settings.artifact_ttl_seconds,
        )


def load_pipeline(
    path: str | Path,
    providers: ProviderRegistry | None = None,
    settings: GroundworkSettings | None = None,
) -> Pipeline:
    """Parse and validate a pipeline file.

    Raises:
        ParseError: Malformed YAML or document shape
        UnknownReferenceError / CyclicDependencyError: Invalid stage ``needs``
    """
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ParseError(f"Cannot read pipeline file {path}: {e}", cause=e) from e
    except yaml.YAMLError as e:
        raise ParseError(f"Malformed YAML in {path}: {e}", cause=e) from e

    try:
        spec = PipelineSpec.model_validate(raw or {})
    except ValidationError as e:
        raise ParseError(f"Invalid pipeline definition in {path}: {e}", cause=e) from e
    return spec.to_pipeline(path.parent, providers, settings)


def _resolve_path(base_dir: Path, value: str) -> Path:
    candidate = Path(value)
    return candidate if candidate.is_absolute() else base_dir / candidate


def _publishing(job: Job, artifacts: dict[str, str]) -> Job:
    """Wrap ``job`` so it publishes fixed artifact values once it succeeds."""
    inner = job.run

    def run(ctx: JobContext) -> Any:
        result = inner(ctx)
        for name, value in artifacts.items():
            ctx.publish(name, value)
        return result

    job.run = run
    job.outputs = tuple(job.outputs) + tuple(n for n in artifacts if n not in job.outputs)
    return job
