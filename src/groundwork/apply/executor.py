"""
Apply Executor - walks a plan and calls providers.

Execution model:
- The state lock is held for the whole run; the plan must have been made
  against the state serial currently on disk.
- A change is dispatched once every change it ``depends_on`` has
  completed.  Among ready changes the earliest plan position goes first,
  so ``parallelism=1`` applies strictly in plan order.
- Attribute expressions are re-resolved against live values just before
  each call, so outputs produced earlier in the run (hostnames, ids)
  replace the plan's UNKNOWN placeholders.
- State is persisted after every successful change.  On the first
  failure nothing new is dispatched, in-flight calls run to completion
  (and are persisted), and a :class:`PartialApplyError` is raised.

Provider calls run on worker threads; every state mutation happens on the
calling thread, so the record is never written concurrently.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from functools import partial
from typing import Any

import structlog

from groundwork.apply.report import ApplyReport, ApplyResult, ChangeOutcome, ChangeStatus
from groundwork.config.values import UNKNOWN, Reference, contains_unknown, dig, resolve
from groundwork.core.errors import (
    ApplyCancelledError,
    ApplyError,
    ConfigurationError,
    ErrorContext,
    PartialApplyError,
    ProviderCallError,
    StalePlanError,
)
from groundwork.plan.models import Change, ChangeAction, Plan
from groundwork.providers.base import ProviderRegistry
from groundwork.retry import NoRetry, RetryContext, RetryStrategy
from groundwork.state.models import ResourceState, StateRecord
from groundwork.state.store import StateStore

logger = structlog.get_logger()


class CancelToken:
    """Cooperative cancellation; checked before each dispatch.

    Pass an existing ``event`` to cancel when something else sets it, e.g.
    a pipeline job context that timed out.
    """

    def __init__(self, event: threading.Event | None = None) -> None:
        self._event = event if event is not None else threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class _LiveValues:
    """Reference lookup against the state record as it is being applied."""

    def __init__(self, record: StateRecord):
        self.record = record

    def lookup(self, ref: Reference) -> Any:
        head, *rest = ref.attribute.split(".")
        existing = self.record.get(ref.address)
        if existing is None:
            return UNKNOWN
        if head in existing.attributes:
            return dig(existing.attributes[head], rest)
        try:
            return dig(existing.lookup(head), rest)
        except KeyError:
            return UNKNOWN


@dataclass
class _CallResult:
    remote_id: str
    attributes: dict[str, Any]
    outputs: dict[str, Any] = field(default_factory=dict)
    attempts: int = 1
    duration_ms: float = 0.0


class ApplyExecutor:
    """
    Applies a :class:`Plan` through a :class:`ProviderRegistry`.

    Example:
        executor = ApplyExecutor(registry, StateStore("groundwork.state.json"), parallelism=4)
        result = executor.apply(plan)
        result.outputs["api_url"]
    """

    def __init__(
        self,
        providers: ProviderRegistry,
        store: StateStore,
        *,
        parallelism: int = 1,
        retry: RetryStrategy | None = None,
        lock_timeout: float = 0.0,
    ):
        if parallelism < 1:
            raise ConfigurationError(f"parallelism must be at least 1, got {parallelism}")
        self.providers = providers
        self.store = store
        self.parallelism = parallelism
        self.retry = retry or NoRetry()
        self.lock_timeout = lock_timeout

    def apply(self, plan: Plan, cancel: CancelToken | None = None) -> ApplyResult:
        """
        Execute every change in ``plan``.

        Raises:
            MissingProviderError: A changed type has no provider (before any call)
            StateLockError: Another apply holds the state lock
            StalePlanError: The state changed since the plan was made
            PartialApplyError: A change failed; the report lists what ran
            ApplyCancelledError: ``cancel`` fired before every change ran
        """
        cancel = cancel or CancelToken()
        self.providers.require({c.resource_type for c in plan if c.is_change})

        with self.store.lock(timeout=self.lock_timeout):
            record = self._load_current(plan)
            logger.info(
                "apply.start",
                changes=sum(1 for c in plan if c.is_change),
                parallelism=self.parallelism,
                serial=record.serial,
            )
            started = time.perf_counter()
            record, report, failure = self._run(plan, record, cancel)

            if failure is not None:
                logger.error(
                    "apply.failed",
                    error=failure.message,
                    succeeded=len(report.succeeded),
                    failed=len(report.failed),
                    skipped=len(report.skipped),
                )
                raise PartialApplyError(report) from failure
            if report.skipped:
                logger.warning("apply.cancelled", succeeded=len(report.succeeded), skipped=len(report.skipped))
                raise ApplyCancelledError(report)

            outputs = {} if plan.destroy else self._resolve_outputs(plan, record)
            if outputs != record.outputs:
                record = self.store.write(record.with_outputs(outputs))

            logger.info(
                "apply.complete",
                succeeded=len(report.succeeded),
                unchanged=len(report.unchanged),
                serial=record.serial,
                duration_seconds=round(time.perf_counter() - started, 3),
            )
            return ApplyResult(state=record, report=report, outputs=outputs)

    # -------------------------------------------------------------------------
    # Dispatch loop
    # -------------------------------------------------------------------------

    def _run(
        self, plan: Plan, record: StateRecord, cancel: CancelToken
    ) -> tuple[StateRecord, ApplyReport, ApplyError | None]:
        in_plan = set(plan.addresses)
        pending: list[Change] = list(plan.changes)
        completed: set[str] = set()
        report = ApplyReport()
        failure: ApplyError | None = None

        def is_ready(change: Change) -> bool:
            return all(dep in completed for dep in change.depends_on if dep in in_plan)

        with ThreadPoolExecutor(
            max_workers=self.parallelism, thread_name_prefix="groundwork-apply"
        ) as pool:
            futures: dict[Future, Change] = {}

            while True:
                if failure is None and not cancel.cancelled:
                    for change in list(pending):
                        if len(futures) >= self.parallelism:
                            break
                        if not is_ready(change):
                            continue
                        pending.remove(change)

                        if not change.is_change:
                            record = self._refresh_dependencies(change, record)
                            completed.add(change.address)
                            report.add(ChangeOutcome(change.address, change.action, ChangeStatus.UNCHANGED))
                            continue

                        try:
                            attributes = self._resolve_attributes(change, record)
                        except ApplyError as e:
                            failure = e
                            report.add(
                                ChangeOutcome(change.address, change.action, ChangeStatus.FAILED, error=e.message)
                            )
                            break

                        future = pool.submit(self._call, change, attributes)
                        futures[future] = change
                        logger.debug(
                            "apply.change.dispatched",
                            address=change.address,
                            action=change.action.value,
                            in_flight=len(futures),
                        )

                if not futures:
                    break

                # Wait for one call, then recheck what became ready
                for future in as_completed(futures.keys()):
                    change = futures.pop(future)
                    try:
                        result = future.result()
                    except ApplyError as e:
                        failure = failure or e
                        report.add(
                            ChangeOutcome(
                                change.address,
                                change.action,
                                ChangeStatus.FAILED,
                                error=e.message,
                                attempts=int(e.context.metadata.get("attempts", 1)),
                            )
                        )
                        logger.error(
                            "apply.change.failed",
                            address=change.address,
                            action=change.action.value,
                            error=e.message,
                        )
                        break

                    record = self.store.write(self._record(change, record, result))
                    completed.add(change.address)
                    report.add(
                        ChangeOutcome(
                            change.address,
                            change.action,
                            ChangeStatus.SUCCEEDED,
                            attempts=result.attempts,
                            duration_ms=result.duration_ms,
                        )
                    )
                    logger.info(
                        "apply.change.complete",
                        address=change.address,
                        action=change.action.value,
                        remote_id=result.remote_id,
                        duration_ms=round(result.duration_ms, 2),
                    )
                    break

        for change in pending:
            if change.is_change:
                report.add(ChangeOutcome(change.address, change.action, ChangeStatus.SKIPPED))
        return record, report.ordered(plan.addresses), failure

    # -------------------------------------------------------------------------
    # Single change
    # -------------------------------------------------------------------------

    def _call(self, change: Change, attributes: dict[str, Any]) -> _CallResult:
        """Run one provider operation (worker thread)."""
        provider = self.providers.get(change.resource_type)
        retry = RetryContext(self.retry, on_retry=partial(self._log_retry, change))
        start = time.perf_counter()

        try:
            if change.action == ChangeAction.CREATE:
                remote_id, outputs = retry.run(provider.create, attributes)
            elif change.action == ChangeAction.UPDATE:
                remote_id = change.remote_id
                outputs = retry.run(provider.update, remote_id, attributes)
            else:
                remote_id = change.remote_id
                retry.run(provider.delete, remote_id)
                outputs = {}
        except ProviderCallError as e:
            raise e.with_context(attempts=retry.attempt)
        except Exception as e:
            raise ProviderCallError(
                change.address,
                change.action.value,
                str(e),
                retryable=getattr(e, "retryable", None),
                cause=e,
            ).with_context(attempts=retry.attempt) from e

        return _CallResult(
            remote_id=str(remote_id),
            attributes=attributes,
            outputs=dict(outputs or {}),
            attempts=retry.attempt,
            duration_ms=(time.perf_counter() - start) * 1000,
        )

    @staticmethod
    def _log_retry(change: Change, attempt: int, error: Exception, delay: float) -> None:
        logger.warning(
            "apply.change.retry",
            address=change.address,
            action=change.action.value,
            attempt=attempt,
            delay_seconds=delay,
            error=str(error),
        )

    @staticmethod
    def _resolve_attributes(change: Change, record: StateRecord) -> dict[str, Any]:
        if change.action == ChangeAction.DELETE:
            return {}
        attributes = resolve(change.declared or change.after or {}, _LiveValues(record).lookup)
        unknown = sorted(k for k, v in attributes.items() if contains_unknown(v))
        if unknown:
            raise ApplyError(
                f"{change.address}: {', '.join(unknown)} still unknown after dependencies were applied",
                context=ErrorContext(address=change.address, action=change.action.value),
            )
        return attributes

    @staticmethod
    def _record(change: Change, record: StateRecord, result: _CallResult) -> StateRecord:
        if change.action == ChangeAction.DELETE:
            return record.without_resource(change.address)
        return record.with_resource(
            ResourceState(
                type=change.resource_type,
                name=change.name,
                remote_id=result.remote_id,
                attributes=result.attributes,
                outputs=result.outputs,
                dependencies=list(change.dependencies),
            )
        )

    def _refresh_dependencies(self, change: Change, record: StateRecord) -> StateRecord:
        """A no-op still records its current dependencies (no provider call)."""
        existing = record.get(change.address)
        if existing is None or existing.dependencies == list(change.dependencies):
            return record
        updated = existing.model_copy(update={"dependencies": list(change.dependencies)})
        return self.store.write(record.with_resource(updated))

    # -------------------------------------------------------------------------
    # Before and after
    # -------------------------------------------------------------------------

    def _load_current(self, plan: Plan) -> StateRecord:
        current = self.store.load()
        stale = current.serial != plan.prior_serial or (
            current.serial > 0 and plan.lineage and current.lineage != plan.lineage
        )
        if stale:
            raise StalePlanError(plan.prior_serial, current.serial).with_context(
                source=str(self.store.path)
            )
        if current.serial == 0 and plan.lineage:
            current = current.model_copy(update={"lineage": plan.lineage})
        return current

    @staticmethod
    def _resolve_outputs(plan: Plan, record: StateRecord) -> dict[str, Any]:
        live = _LiveValues(record)
        values: dict[str, Any] = {}
        for name, output in plan.outputs.items():
            value = resolve(output.value, live.lookup)
            if contains_unknown(value):
                logger.warning("apply.output.unresolved", output=name)
                continue
            values[name] = value
        return values


def apply(
    plan: Plan,
    providers: ProviderRegistry,
    store: StateStore,
    *,
    parallelism: int = 1,
    retry: RetryStrategy | None = None,
    cancel: CancelToken | None = None,
) -> ApplyResult:
    """Module-level shortcut for ``ApplyExecutor(...).apply(plan)``."""
    return ApplyExecutor(providers, store, parallelism=parallelism, retry=retry).apply(plan, cancel)
