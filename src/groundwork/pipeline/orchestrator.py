"""
Pipeline Orchestrator - runs stages in dependency order with artifact hand-off.

Execution model:
- Stages run one at a time, upstream first.  A stage starts only when every
  stage it needs is SUCCEEDED; after a failure, every downstream stage stays
  PENDING and the run ends FAILED.
- Jobs inside a stage run concurrently on a thread pool bounded by
  ``max_parallel_jobs``.  The stage succeeds only if every job succeeds.
- Declared input artifacts are resolved before a job starts; a missing or
  expired artifact fails the job without running it.
- A job running longer than its ``timeout_seconds`` is marked FAILED with
  :class:`JobTimeoutError` and its context is cancelled.  Python threads
  cannot be killed, so a job that ignores ``ctx.cancelled`` keeps running
  in the background but its result is discarded.
"""

from __future__ import annotations

import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import UTC, datetime
from typing import Any

import structlog

from groundwork.core.errors import GroundworkError, JobTimeoutError, MissingArtifactError
from groundwork.core.logging import LogContext
from groundwork.pipeline.artifacts import ArtifactStore
from groundwork.pipeline.models import (
    Job,
    JobContext,
    JobResult,
    JobStatus,
    Pipeline,
    PipelineResult,
    Stage,
    StageRecord,
    StageStatus,
)
from groundwork.retry import NoRetry, RetryContext

logger = structlog.get_logger()

_UNSTARTED_POLL_SECONDS = 0.05


class PipelineOrchestrator:
    """
    Runs a :class:`Pipeline` and returns a :class:`PipelineResult`.

    Example:
        orchestrator = PipelineOrchestrator(pipeline, max_parallel_jobs=4)
        result = orchestrator.run()
        result.stage("deploy").status   # StageStatus.SUCCEEDED
    """

    def __init__(
        self,
        pipeline: Pipeline,
        *,
        artifacts: ArtifactStore | None = None,
        max_parallel_jobs: int | None = None,
        artifact_ttl_seconds: float | None = None,
    ):
        self.pipeline = pipeline
        ttl = artifact_ttl_seconds or pipeline.artifact_ttl_seconds or 3600.0
        self.artifacts = artifacts or ArtifactStore(default_ttl=ttl)
        self.max_parallel_jobs = max(1, max_parallel_jobs or pipeline.max_parallel_jobs or 4)

    def run(self, run_id: str | None = None) -> PipelineResult:
        run_id = run_id or uuid.uuid4().hex[:12]
        pipeline = self.pipeline
        names = [s.name for s in pipeline.stages]

        records = [
            StageRecord(index=i, name=s.name, needs=[names.index(n) for n in s.needs])
            for i, s in enumerate(pipeline.stages)
        ]
        result = PipelineResult(pipeline=pipeline.name, run_id=run_id, stages=records)

        logger.info("pipeline.start", pipeline=pipeline.name, run_id=run_id, stages=len(records))

        for index in pipeline.order():
            record = records[index]
            blocked = [records[i].name for i in record.needs if records[i].status != StageStatus.SUCCEEDED]
            if blocked:
                logger.warning(
                    "pipeline.stage.blocked",
                    run_id=run_id,
                    stage=record.name,
                    waiting_on=blocked,
                )
                continue
            self._run_stage(pipeline.stages[index], record, run_id)

        self.artifacts.purge_expired()
        result.artifacts = self.artifacts.names()
        result.mark_complete()
        logger.info(
            "pipeline.complete",
            pipeline=pipeline.name,
            run_id=run_id,
            status=result.status.value,
            duration_seconds=result.duration_seconds,
        )
        return result

    # -------------------------------------------------------------------------
    # Stage
    # -------------------------------------------------------------------------

    def _run_stage(self, stage: Stage, record: StageRecord, run_id: str) -> None:
        record.mark_running()
        record.jobs = [JobResult(name=j.name, environment=j.environment) for j in stage.jobs]
        logger.info("pipeline.stage.start", run_id=run_id, stage=stage.name, jobs=len(stage.jobs))

        pool = ThreadPoolExecutor(
            max_workers=min(self.max_parallel_jobs, max(1, len(stage.jobs))),
            thread_name_prefix=f"groundwork-{stage.name}",
        )
        futures: dict[Future, tuple[Job, JobContext, JobResult]] = {}
        try:
            for job, job_result in zip(stage.jobs, record.jobs):
                try:
                    inputs = {name: self.artifacts.get(name) for name in job.inputs}
                except MissingArtifactError as e:
                    self._fail(stage, job_result, e, run_id)
                    continue
                ctx = JobContext(
                    pipeline=self.pipeline.name,
                    stage=stage.name,
                    job=job.name,
                    run_id=run_id,
                    inputs=inputs,
                    artifacts=self.artifacts,
                    artifact_ttl=stage.artifact_ttl_seconds,
                    timeout_seconds=job.timeout_seconds,
                )
                futures[pool.submit(self._execute, job, ctx, job_result)] = (job, ctx, job_result)

            while futures:
                done, _ = wait(futures, timeout=self._poll_timeout(futures), return_when=FIRST_COMPLETED)

                for future in done:
                    job, ctx, job_result = futures.pop(future)
                    self._collect(stage, job, ctx, job_result, future, run_id)

                for future, (job, ctx, job_result) in list(futures.items()):
                    if job_result.status == JobStatus.RUNNING and ctx.remaining() == 0:
                        ctx.cancelled.set()
                        futures.pop(future)
                        error = JobTimeoutError(job.name, job.timeout_seconds)
                        self._fail(stage, job_result, error, run_id, ctx)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        record.mark_complete()
        log = logger.info if record.status == StageStatus.SUCCEEDED else logger.error
        log(
            "pipeline.stage.complete",
            run_id=run_id,
            stage=stage.name,
            status=record.status.value,
            failed_jobs=[j.name for j in record.jobs if j.status == JobStatus.FAILED],
        )

    @staticmethod
    def _poll_timeout(futures: dict[Future, tuple[Job, JobContext, JobResult]]) -> float | None:
        waits = []
        for job, ctx, job_result in futures.values():
            if job.timeout_seconds is None:
                continue
            if job_result.status == JobStatus.RUNNING:
                waits.append(ctx.remaining() or 0.0)
            else:
                waits.append(_UNSTARTED_POLL_SECONDS)
        if not waits:
            return None
        return max(0.001, min(waits))

    # -------------------------------------------------------------------------
    # Job
    # -------------------------------------------------------------------------

    @staticmethod
    def _execute(job: Job, ctx: JobContext, job_result: JobResult) -> Any:
        """Run one job with its retry policy (worker thread)."""
        ctx.started_at = time.monotonic()
        job_result.started_at = datetime.now(UTC).isoformat()
        job_result.status = JobStatus.RUNNING
        retry = RetryContext(job.retry or NoRetry())
        try:
            with LogContext(run_id=ctx.run_id, stage=ctx.stage, job=ctx.job):
                return retry.run(job.run, ctx)
        finally:
            job_result.attempts = retry.attempt

    def _collect(
        self,
        stage: Stage,
        job: Job,
        ctx: JobContext,
        job_result: JobResult,
        future: Future,
        run_id: str,
    ) -> None:
        try:
            output = future.result()
        except Exception as e:
            self._fail(stage, job_result, e, run_id, ctx)
            return

        missing = [name for name in job.outputs if name not in ctx.published]
        if missing:
            error = MissingArtifactError(missing[0], f"not published by job '{job.name}'")
            self._fail(stage, job_result, error, run_id, ctx)
            return

        job_result.output = output
        job_result.published = list(ctx.published)
        job_result.mark_complete(JobStatus.SUCCEEDED, time.monotonic() - ctx.started_at)
        logger.info(
            "pipeline.job.complete",
            run_id=run_id,
            stage=stage.name,
            job=job.name,
            published=job_result.published,
            duration_seconds=job_result.duration_seconds,
        )

    @staticmethod
    def _fail(
        stage: Stage,
        job_result: JobResult,
        error: Exception,
        run_id: str,
        ctx: JobContext | None = None,
    ) -> None:
        if isinstance(error, GroundworkError):
            error.with_context(stage=stage.name, job=job_result.name, run_id=run_id)
        job_result.error = str(error)
        job_result.error_type = type(error).__name__
        if ctx is not None:
            job_result.published = list(ctx.published)
        duration = time.monotonic() - ctx.started_at if ctx is not None else 0.0
        job_result.mark_complete(JobStatus.FAILED, duration)
        logger.error(
            "pipeline.job.failed",
            run_id=run_id,
            stage=stage.name,
            job=job_result.name,
            error=job_result.error,
            error_type=job_result.error_type,
        )


def run_pipeline(
    pipeline: Pipeline,
    *,
    artifacts: ArtifactStore | None = None,
    max_parallel_jobs: int | None = None,
    run_id: str | None = None,
) -> PipelineResult:
    """Module-level shortcut for ``PipelineOrchestrator(...).run()``."""
    return PipelineOrchestrator(pipeline, artifacts=artifacts, max_parallel_jobs=max_parallel_jobs).run(run_id)
