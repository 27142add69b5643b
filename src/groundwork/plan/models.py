"""Plan models — changes and the ordered change-set.

A :class:`Change` is produced by the plan engine and consumed only by the
apply executor.  ``after`` holds the planned attribute values, with
:data:`~groundwork.config.values.UNKNOWN` wherever a value depends on an
apply-time output; ``declared`` keeps the raw expressions so the executor
can re-resolve them once the dependency has been applied.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from groundwork.config.model import Output
from groundwork.config.values import contains_unknown, to_display


class ChangeAction(str, Enum):
    """What the apply executor will do with a resource."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "no-op"


@dataclass(frozen=True)
class Change:
    """One planned change with before/after attribute snapshots.

    ``depends_on`` lists the addresses whose changes must complete before
    this one: dependencies for create/update, dependents for delete.
    """

    address: str
    action: ChangeAction
    resource_type: str
    name: str
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    declared: dict[str, Any] | None = None
    remote_id: str | None = None
    depends_on: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ()

    @property
    def is_change(self) -> bool:
        return self.action != ChangeAction.NOOP

    @property
    def unknown_attributes(self) -> list[str]:
        """Attributes whose value is only known after apply."""
        return sorted(k for k, v in (self.after or {}).items() if contains_unknown(v))

    def changed_attributes(self) -> list[str]:
        before = self.before or {}
        after = self.after or {}
        keys = sorted(set(before) | set(after))
        return [
            k
            for k in keys
            if contains_unknown(after.get(k)) or before.get(k) != after.get(k)
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "action": self.action.value,
            "remote_id": self.remote_id,
            "before": self.before,
            "after": to_display(self.after) if self.after is not None else None,
            "changed": self.changed_attributes() if self.action == ChangeAction.UPDATE else [],
            "depends_on": list(self.depends_on),
        }


@dataclass(frozen=True)
class Plan:
    """Ordered change-set: creates, updates and no-ops in topological order,
    then deletes (dependents first).

    ``prior_serial`` and ``lineage`` identify the state the plan was made
    against; the executor refuses to apply a stale plan.
    """

    changes: tuple[Change, ...] = ()
    outputs: dict[str, Output] = field(default_factory=dict)
    prior_serial: int = 0
    lineage: str = ""
    destroy: bool = False
    created_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def __iter__(self):
        return iter(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    @property
    def has_changes(self) -> bool:
        return any(c.is_change for c in self.changes)

    @property
    def addresses(self) -> list[str]:
        return [c.address for c in self.changes]

    def get(self, address: str) -> Change | None:
        for change in self.changes:
            if change.address == address:
                return change
        return None

    def by_action(self, action: ChangeAction) -> list[Change]:
        return [c for c in self.changes if c.action == action]

    def summary(self) -> dict[str, int]:
        counts = Counter(c.action for c in self.changes)
        return {action.value: counts.get(action, 0) for action in ChangeAction}

    def to_dict(self) -> dict[str, Any]:
        return {
            "prior_serial": self.prior_serial,
            "lineage": self.lineage,
            "destroy": self.destroy,
            "created_at": self.created_at,
            "summary": self.summary(),
            "changes": [c.to_dict() for c in self.changes],
        }
