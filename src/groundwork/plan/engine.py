"""
Plan Engine - diffs declared resources against the prior state record.

For each declared resource, in topological order:
1. Resolve attribute references (see ``_Resolver``)
2. Absent from prior state                -> CREATE
3. Present, resolved attributes differ    -> UPDATE (any UNKNOWN counts as different)
4. Present, identical                     -> NOOP
Then every prior-state resource that is no longer declared -> DELETE,
ordered dependents-first by the dependencies recorded in state.

Deletes go last: a kept resource that used to reference a deleted one is
updated away from it before the delete is issued.

Design Principles:
- Read-only and side-effect free: safe to call concurrently
- The prior state is an explicit input, never a global
- Values that only exist after apply become UNKNOWN, never guesses
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from groundwork.config.model import Output
from groundwork.config.values import UNKNOWN, Reference, contains_unknown, dig, resolve
from groundwork.graph.builder import DependencyGraph, topological_sort
from groundwork.plan.models import Change, ChangeAction, Plan
from groundwork.state.models import StateRecord

logger = structlog.get_logger()


class _Resolver:
    """
    Resolves references at plan time.

    Lookup order for ``${type.name.attr}``:
    - ``attr`` is declared on the target -> the target's planned value
      (UNKNOWN if that value is itself unknown)
    - the target already exists (not being created) -> prior output or
      applied attribute value
    - otherwise UNKNOWN, computed at apply time
    """

    def __init__(self, graph: DependencyGraph, prior: StateRecord):
        self.graph = graph
        self.prior = prior
        self.planned: dict[str, dict[str, Any]] = {}
        self.actions: dict[str, ChangeAction] = {}

    def lookup(self, ref: Reference) -> Any:
        head, *rest = ref.attribute.split(".")
        target = self.graph.resource(ref.address)

        if head in target.attributes:
            return dig(self.planned[ref.address][head], rest)

        existing = self.prior.get(ref.address)
        if existing is not None and self.actions.get(ref.address) != ChangeAction.CREATE:
            try:
                return dig(existing.lookup(head), rest)
            except KeyError:
                return UNKNOWN
        return UNKNOWN


class PlanEngine:
    """
    Produces an ordered :class:`Plan` from a graph and a prior state.

    Thread-safe: no mutable state, each call is independent.

    Example:
        engine = PlanEngine()
        plan = engine.plan(graph, store.load(), outputs=config.outputs)
        plan.summary()   # {'create': 5, 'update': 0, 'delete': 0, 'no-op': 0}
    """

    def plan(
        self,
        graph: DependencyGraph,
        prior_state: StateRecord,
        outputs: Mapping[str, Output] | None = None,
    ) -> Plan:
        logger.debug(
            "plan.start",
            declared=len(graph),
            prior=len(prior_state.resources),
            prior_serial=prior_state.serial,
        )

        resolver = _Resolver(graph, prior_state)
        changes: list[Change] = []

        for address in graph.topological_order():
            resource = graph.resource(address)
            after = resolve(resource.attributes, resolver.lookup)
            existing = prior_state.get(address)

            if existing is None:
                action = ChangeAction.CREATE
            elif contains_unknown(after) or after != existing.attributes:
                action = ChangeAction.UPDATE
            else:
                action = ChangeAction.NOOP

            resolver.planned[address] = after
            resolver.actions[address] = action
            deps = graph.dependencies_of(address)
            changes.append(
                Change(
                    address=address,
                    action=action,
                    resource_type=resource.type,
                    name=resource.name,
                    before=dict(existing.attributes) if existing else None,
                    after=after,
                    declared=dict(resource.attributes),
                    remote_id=existing.remote_id if existing else None,
                    depends_on=deps,
                    dependencies=deps,
                )
            )

        removed = [a for a in prior_state.addresses if a not in graph]
        changes.extend(self._deletes(prior_state, removed))

        plan = Plan(
            changes=tuple(changes),
            outputs=dict(outputs or {}),
            prior_serial=prior_state.serial,
            lineage=prior_state.lineage,
        )
        logger.info("plan.complete", **plan.summary())
        return plan

    def plan_destroy(self, prior_state: StateRecord) -> Plan:
        """Delete every resource in the state, dependents first."""
        plan = Plan(
            changes=tuple(self._deletes(prior_state, prior_state.addresses)),
            prior_serial=prior_state.serial,
            lineage=prior_state.lineage,
            destroy=True,
        )
        logger.info("plan.destroy.complete", **plan.summary())
        return plan

    def _deletes(self, prior_state: StateRecord, addresses: list[str]) -> list[Change]:
        if not addresses:
            return []
        edges = prior_state.dependency_edges()
        order = list(reversed(topological_sort(addresses, edges)))

        changes = []
        for address in order:
            existing = prior_state.resources[address]
            # a delete waits for every change to something that depended on it
            dependents = tuple(
                a for a in prior_state.addresses if a != address and address in edges.get(a, ())
            )
            changes.append(
                Change(
                    address=address,
                    action=ChangeAction.DELETE,
                    resource_type=existing.type,
                    name=existing.name,
                    before=dict(existing.attributes),
                    after=None,
                    remote_id=existing.remote_id,
                    depends_on=dependents,
                    dependencies=tuple(existing.dependencies),
                )
            )
        return changes


def plan(
    graph: DependencyGraph,
    prior_state: StateRecord,
    outputs: Mapping[str, Output] | None = None,
) -> Plan:
    """Module-level shortcut for ``PlanEngine().plan(...)``."""
    return PlanEngine().plan(graph, prior_state, outputs)
