"""Plan engine: declared graph + prior state -> ordered change-set."""

from groundwork.plan.engine import PlanEngine, plan
from groundwork.plan.models import Change, ChangeAction, Plan

__all__ = ["Change", "ChangeAction", "Plan", "PlanEngine", "plan"]
