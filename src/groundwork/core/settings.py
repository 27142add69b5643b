"""
Centralized settings for groundwork.

:class:`GroundworkSettings` is the single validated source of defaults for
the CLI and the :mod:`groundwork.engine` facade.  Every field can be set
through a ``GROUNDWORK_*`` environment variable or a ``.env`` file; CLI
options override both.

Example::

    GROUNDWORK_STATE_PATH=envs/prod/state.json groundwork plan infra/
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GroundworkSettings(BaseSettings):
    """groundwork configuration.

    Fields
    ──────
    state_path            : Location of the persisted state record
    parallelism           : Max concurrent provider calls per apply
    lock_timeout_seconds  : How long to wait for the state lock
    artifact_ttl_seconds  : Default lifetime of pipeline artifacts
    max_parallel_jobs     : Max concurrent jobs within a pipeline stage
    providers             : ``module:factory`` returning the ProviderRegistry
    schema_path           : Optional provider schema YAML validated on load
    log_level             : Structlog log level
    log_json              : Force JSON (True) / console (False) log output
    """

    model_config = SettingsConfigDict(
        env_prefix="GROUNDWORK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── State ────────────────────────────────────────────────────
    state_path: Path = Field(default=Path("groundwork.state.json"))
    lock_timeout_seconds: float = Field(default=0.0, ge=0)

    # ── Apply ────────────────────────────────────────────────────
    parallelism: int = Field(default=1, ge=1)

    # ── Providers ────────────────────────────────────────────────
    providers: str = "groundwork.providers.memory:demo_registry"
    schema_path: Path | None = None

    # ── Pipeline ─────────────────────────────────────────────────
    artifact_ttl_seconds: float = Field(default=3600.0, gt=0)
    max_parallel_jobs: int = Field(default=4, ge=1)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "WARNING"
    log_json: bool | None = None


@lru_cache(maxsize=1)
def get_settings() -> GroundworkSettings:
    """Return the cached process-wide settings object."""
    return GroundworkSettings()


def reset_settings() -> None:
    """Drop the cached settings (tests change env vars between cases)."""
    get_settings.cache_clear()
