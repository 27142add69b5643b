"""
Engine facade - one object wiring loader, graph, planner, executor and state.

The CLI and the pipeline's infrastructure job both go through
:class:`Engine`; library users can too::

    engine = Engine(demo_registry(), "groundwork.state.json")
    plan = engine.plan("infra/", variables={"location": "westeurope"})
    if plan.has_changes:
        result = engine.apply(plan)
    engine.outputs()

Exit codes used by the CLI live here so scripted callers share them.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from groundwork.apply.executor import ApplyExecutor, CancelToken
from groundwork.apply.report import ApplyResult
from groundwork.config.loader import load
from groundwork.config.model import Configuration
from groundwork.config.schema import ProviderSchema
from groundwork.core.errors import ProviderCallError
from groundwork.core.settings import GroundworkSettings, get_settings
from groundwork.graph.builder import DependencyGraph, GraphBuilder
from groundwork.plan.engine import PlanEngine
from groundwork.plan.models import Plan
from groundwork.providers.base import ProviderRegistry, ResourceNotFoundError
from groundwork.retry import RetryContext, RetryStrategy
from groundwork.state.models import StateRecord
from groundwork.state.store import StateStore

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PARTIAL = 2
EXIT_NO_CHANGES = 3


@dataclass
class RefreshResult:
    """Outcome of reconciling the state record with the providers."""

    state: StateRecord
    updated: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "serial": self.state.serial,
            "updated": self.updated,
            "dropped": self.dropped,
            "unchanged": self.unchanged,
        }


class Engine:
    """Plan/apply against one state location with one provider registry."""

    def __init__(
        self,
        providers: ProviderRegistry,
        state: StateStore | str | Path,
        *,
        schema: ProviderSchema | None = None,
        parallelism: int = 1,
        retry: RetryStrategy | None = None,
        lock_timeout: float = 0.0,
    ):
        self.providers = providers
        self.store = state if isinstance(state, StateStore) else StateStore(state)
        self.schema = schema
        self.planner = PlanEngine()
        self.executor = ApplyExecutor(
            providers,
            self.store,
            parallelism=parallelism,
            retry=retry,
            lock_timeout=lock_timeout,
        )

    @classmethod
    def from_settings(
        cls,
        providers: ProviderRegistry,
        settings: GroundworkSettings | None = None,
        **overrides: Any,
    ) -> Engine:
        settings = settings or get_settings()
        options: dict[str, Any] = {
            "parallelism": settings.parallelism,
            "lock_timeout": settings.lock_timeout_seconds,
        }
        options.update({k: v for k, v in overrides.items() if v is not None})
        state = options.pop("state", settings.state_path)
        return cls(providers, state, **options)

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def load(self, source: str | Path | Mapping[str, Any], variables: Mapping[str, Any] | None = None) -> Configuration:
        return load(source, variables=variables, schema=self.schema)

    def graph(self, config: Configuration) -> DependencyGraph:
        return GraphBuilder().build(config.resources)

    def validate(
        self, source: str | Path | Mapping[str, Any], variables: Mapping[str, Any] | None = None
    ) -> DependencyGraph:
        """Load and build the graph; raises on any configuration-time error."""
        return self.graph(self.load(source, variables))

    # -------------------------------------------------------------------------
    # Plan / apply
    # -------------------------------------------------------------------------

    def plan(self, source: str | Path | Mapping[str, Any], variables: Mapping[str, Any] | None = None) -> Plan:
        config = self.load(source, variables)
        return self.planner.plan(self.graph(config), self.store.load(), outputs=config.outputs)

    def plan_destroy(self) -> Plan:
        return self.planner.plan_destroy(self.store.load())

    def apply(self, plan: Plan, cancel: CancelToken | None = None) -> ApplyResult:
        return self.executor.apply(plan, cancel)

    def destroy(self, cancel: CancelToken | None = None) -> ApplyResult:
        return self.apply(self.plan_destroy(), cancel)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def state(self) -> StateRecord:
        return self.store.load()

    def outputs(self) -> dict[str, Any]:
        return dict(self.store.load().outputs)

    def refresh(self) -> RefreshResult:
        """
        Re-read every resource in state through its provider.

        Changed outputs are written back; resources the provider reports as
        gone are dropped so the next plan re-creates them.  Attribute
        snapshots are left alone.

        Raises:
            StateLockError: Another apply holds the state lock
            MissingProviderError: A state entry's type has no provider
            ProviderCallError: A read failed for another reason
        """
        with self.store.lock(timeout=self.executor.lock_timeout):
            record = self.store.load()
            self.providers.require({r.type for r in record.resources.values()})
            result = RefreshResult(state=record)

            for address, resource in list(record.resources.items()):
                provider = self.providers.get(resource.type)
                try:
                    outputs = RetryContext(self.executor.retry).run(provider.read, resource.remote_id)
                except ResourceNotFoundError:
                    record = record.without_resource(address)
                    result.dropped.append(address)
                    logger.warning("refresh.resource.gone", address=address, remote_id=resource.remote_id)
                    continue
                except Exception as e:
                    raise ProviderCallError(address, "read", str(e), cause=e) from e

                if dict(outputs or {}) != resource.outputs:
                    record = record.with_resource(resource.model_copy(update={"outputs": dict(outputs or {})}))
                    result.updated.append(address)
                else:
                    result.unchanged.append(address)

            if result.updated or result.dropped:
                record = self.store.write(record)
            result.state = record

        logger.info(
            "refresh.complete",
            updated=len(result.updated),
            dropped=len(result.dropped),
            unchanged=len(result.unchanged),
        )
        return result
