"""Apply executor: runs a plan against providers and persists state per change."""

from groundwork.apply.executor import ApplyExecutor, CancelToken, apply
from groundwork.apply.report import ApplyReport, ApplyResult, ChangeOutcome, ChangeStatus

__all__ = [
    "ApplyExecutor",
    "ApplyReport",
    "ApplyResult",
    "CancelToken",
    "ChangeOutcome",
    "ChangeStatus",
    "apply",
]
