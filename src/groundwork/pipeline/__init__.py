"""Pipeline orchestrator: stage gating, concurrent jobs and artifact hand-off.

Key Concepts:
    Pipeline / Stage / Job: definitions (code-first or YAML via load_pipeline)
    PipelineOrchestrator: runs stages upstream-first over an arena table
    ArtifactStore: TTL-bound values passed between stages
    jobs: build_image_job, test_job, infrastructure_job, deploy_job, command_job
"""

from groundwork.pipeline.artifacts import Artifact, ArtifactStore
from groundwork.pipeline.jobs import (
    build_image_job,
    command_job,
    deploy_job,
    image_artifact,
    infrastructure_job,
    output_artifact,
    test_job,
)
from groundwork.pipeline.loader import PipelineSpec, load_pipeline
from groundwork.pipeline.models import (
    Job,
    JobContext,
    JobResult,
    JobStatus,
    Pipeline,
    PipelineResult,
    PipelineStatus,
    Stage,
    StageRecord,
    StageStatus,
)
from groundwork.pipeline.orchestrator import PipelineOrchestrator, run_pipeline

__all__ = [
    "Artifact",
    "ArtifactStore",
    "Job",
    "JobContext",
    "JobResult",
    "JobStatus",
    "Pipeline",
    "PipelineOrchestrator",
    "PipelineResult",
    "PipelineSpec",
    "PipelineStatus",
    "Stage",
    "StageRecord",
    "StageStatus",
    "build_image_job",
    "command_job",
    "deploy_job",
    "image_artifact",
    "infrastructure_job",
    "load_pipeline",
    "output_artifact",
    "run_pipeline",
    "test_job",
]
