"""Apply results: per-change outcomes and the run-level report."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from groundwork.plan.models import ChangeAction
from groundwork.state.models import StateRecord


class ChangeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    UNCHANGED = "unchanged"


@dataclass
class ChangeOutcome:
    """What happened to one planned change."""

    address: str
    action: ChangeAction
    status: ChangeStatus
    error: str | None = None
    attempts: int = 0
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "address": self.address,
            "action": self.action.value,
            "status": self.status.value,
        }
        if self.error:
            result["error"] = self.error
        if self.attempts:
            result["attempts"] = self.attempts
            result["duration_ms"] = round(self.duration_ms, 2)
        return result


@dataclass
class ApplyReport:
    """Outcomes of one apply, in plan order."""

    outcomes: list[ChangeOutcome] = field(default_factory=list)

    def add(self, outcome: ChangeOutcome) -> None:
        self.outcomes.append(outcome)

    def _with_status(self, status: ChangeStatus) -> list[str]:
        return [o.address for o in self.outcomes if o.status == status]

    @property
    def succeeded(self) -> list[str]:
        return self._with_status(ChangeStatus.SUCCEEDED)

    @property
    def failed(self) -> list[str]:
        return self._with_status(ChangeStatus.FAILED)

    @property
    def skipped(self) -> list[str]:
        return self._with_status(ChangeStatus.SKIPPED)

    @property
    def unchanged(self) -> list[str]:
        return self._with_status(ChangeStatus.UNCHANGED)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped

    def outcome(self, address: str) -> ChangeOutcome | None:
        for outcome in self.outcomes:
            if outcome.address == address:
                return outcome
        return None

    def errors(self) -> dict[str, str]:
        return {o.address: o.error for o in self.outcomes if o.error}

    def ordered(self, addresses: list[str]) -> ApplyReport:
        """Copy with outcomes sorted into the given (plan) order."""
        position = {a: i for i, a in enumerate(addresses)}
        return ApplyReport(sorted(self.outcomes, key=lambda o: position.get(o.address, len(position))))

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "unchanged": self.unchanged,
            "changes": [o.to_dict() for o in self.outcomes],
        }


@dataclass
class ApplyResult:
    """Successful apply: the persisted state, the report and resolved outputs."""

    state: StateRecord
    report: ApplyReport
    outputs: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "serial": self.state.serial,
            "report": self.report.to_dict(),
            "outputs": self.outputs,
        }
