"""Pipeline models — stages, jobs and the per-run arena table.

A run keeps one :class:`StageRecord` row per stage, addressed by index;
upstream stages are stored as indices, so gating is a status lookup:
a stage may start only when every row in ``needs`` is ``SUCCEEDED``.

Key Concepts:
    Job: A callable receiving a :class:`JobContext`, plus declared input
        and output artifacts, timeout and retry policy
    Stage: Named group of jobs with upstream stages and an artifact TTL
    Pipeline: Validated stage list (unique names, known and acyclic needs)
    StageRecord / JobResult / PipelineResult: Run state and results
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from groundwork.core.errors import ConfigurationError, JobFailedError, UnknownReferenceError
from groundwork.graph.builder import topological_sort
from groundwork.retry import RetryStrategy

if TYPE_CHECKING:
    from groundwork.pipeline.artifacts import ArtifactStore


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PipelineStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# =============================================================================
# Definitions
# =============================================================================


JobFn = Callable[["JobContext"], Any]


@dataclass
class Job:
    """One unit of work inside a stage.

    Attributes:
        name: Unique within its stage
        run: Callable doing the work; raise to fail the job
        inputs: Artifact names resolved before ``run`` is called
        outputs: Artifact names the job must publish to succeed
        environment: Execution environment reference (image, runner label)
        timeout_seconds: Wall-clock limit once the job has started
        retry: Per-job retry policy (default: none)
    """

    name: str
    run: JobFn
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()
    environment: str | None = None
    timeout_seconds: float | None = None
    retry: RetryStrategy | None = None


@dataclass
class Stage:
    name: str
    jobs: list[Job] = field(default_factory=list)
    needs: tuple[str, ...] = ()
    artifact_ttl_seconds: float | None = None


@dataclass
class Pipeline:
    """Ordered stages; ``validate()`` is called on construction.

    ``max_parallel_jobs`` and ``artifact_ttl_seconds`` are defaults the
    orchestrator uses when it is not given its own.
    """

    name: str
    stages: list[Stage] = field(default_factory=list)
    max_parallel_jobs: int | None = None
    artifact_ttl_seconds: float | None = None

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """
        Raises:
            ConfigurationError: Duplicate stage or job names
            UnknownReferenceError: A stage needs an undeclared stage
            CyclicDependencyError: Stage needs form a cycle
        """
        names = [s.name for s in self.stages]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate stage names in pipeline '{self.name}': {duplicates}")

        for stage in self.stages:
            job_names = [j.name for j in stage.jobs]
            dup_jobs = sorted({n for n in job_names if job_names.count(n) > 1})
            if dup_jobs:
                raise ConfigurationError(f"Duplicate job names in stage '{stage.name}': {dup_jobs}")
            for need in stage.needs:
                if need not in names:
                    raise UnknownReferenceError(stage.name, need)

        topological_sort(names, {s.name: list(s.needs) for s in self.stages})

    def order(self) -> list[int]:
        """Stage indices, upstream stages first, declaration order otherwise."""
        names = [s.name for s in self.stages]
        ordered = topological_sort(names, {s.name: list(s.needs) for s in self.stages})
        return [names.index(n) for n in ordered]

    def stage(self, name: str) -> Stage:
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise KeyError(name)


# =============================================================================
# Job context
# =============================================================================


@dataclass
class JobContext:
    """What a job sees while it runs.

    ``inputs`` holds the declared input artifacts, resolved before the job
    started.  ``publish`` makes a value available to later stages.
    ``cancelled`` is set when the job has timed out; long-running jobs
    should check it.
    """

    pipeline: str
    stage: str
    job: str
    run_id: str
    inputs: dict[str, Any]
    artifacts: ArtifactStore
    artifact_ttl: float | None = None
    timeout_seconds: float | None = None
    started_at: float = field(default_factory=time.monotonic)
    cancelled: threading.Event = field(default_factory=threading.Event)
    published: list[str] = field(default_factory=list)

    @property
    def producer(self) -> str:
        return f"{self.stage}/{self.job}"

    def input(self, name: str) -> Any:
        if name in self.inputs:
            return self.inputs[name]
        return self.artifacts.get(name)

    def publish(self, name: str, value: Any) -> None:
        if self.cancelled.is_set():
            raise JobFailedError(self.job, f"cancelled; artifact '{name}' not published")
        if self.artifact_ttl is None:
            self.artifacts.put(name, value, producer=self.producer)
        else:
            self.artifacts.put(name, value, producer=self.producer, ttl=self.artifact_ttl)
        self.published.append(name)

    def remaining(self) -> float | None:
        """Seconds left before the job times out, or None without a timeout."""
        if self.timeout_seconds is None:
            return None
        return max(0.0, self.timeout_seconds - (time.monotonic() - self.started_at))


# =============================================================================
# Run records
# =============================================================================


def _now() -> str:
    return datetime.now(UTC).isoformat()


class JobResult(BaseModel):
    """Result of one job execution."""

    name: str
    status: JobStatus = JobStatus.PENDING
    environment: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    duration_seconds: float = 0.0
    attempts: int = 0
    output: Any = None
    published: list[str] = Field(default_factory=list)
    error: str | None = None
    error_type: str | None = None

    def mark_complete(self, status: JobStatus, duration_seconds: float) -> None:
        self.status = status
        self.completed_at = _now()
        self.duration_seconds = round(duration_seconds, 3)


class StageRecord(BaseModel):
    """One row of the run's arena table."""

    index: int
    name: str
    needs: list[int] = Field(default_factory=list)
    status: StageStatus = StageStatus.PENDING
    jobs: list[JobResult] = Field(default_factory=list)
    started_at: str | None = None
    completed_at: str | None = None
    error: str | None = None

    def mark_running(self) -> None:
        self.status = StageStatus.RUNNING
        self.started_at = _now()

    def mark_complete(self) -> None:
        failed = [j for j in self.jobs if j.status != JobStatus.SUCCEEDED]
        self.status = StageStatus.FAILED if failed else StageStatus.SUCCEEDED
        self.completed_at = _now()
        if failed:
            self.error = "; ".join(f"{j.name}: {j.error}" for j in failed)


class PipelineResult(BaseModel):
    """Outcome of one pipeline run."""

    pipeline: str
    run_id: str
    status: PipelineStatus = PipelineStatus.RUNNING
    stages: list[StageRecord] = Field(default_factory=list)
    artifacts: list[str] = Field(default_factory=list)
    started_at: str = Field(default_factory=_now)
    completed_at: str | None = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == PipelineStatus.SUCCEEDED

    def stage(self, name: str) -> StageRecord:
        for record in self.stages:
            if record.name == name:
                return record
        raise KeyError(name)

    def mark_complete(self) -> None:
        self.completed_at = _now()
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.completed_at)
        self.duration_seconds = (end - start).total_seconds()
        all_ok = all(s.status == StageStatus.SUCCEEDED for s in self.stages)
        self.status = PipelineStatus.SUCCEEDED if all_ok else PipelineStatus.FAILED
