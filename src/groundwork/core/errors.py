"""
Structured error types for groundwork.

Every error raised by the engine extends :class:`GroundworkError`, which
carries a category, an explicit retry flag, structured context and an
optional chained cause.  Callers can catch a whole family (configuration,
apply, state, pipeline) with a single ``except`` clause and route on
``category`` for reporting.

Hierarchy::

    GroundworkError
      ├── ConfigurationError          (CONFIG, fatal, no partial effect)
      │     ├── ParseError
      │     ├── DuplicateIdentityError
      │     ├── UnknownVariableError
      │     ├── UnknownReferenceError
      │     ├── CyclicDependencyError
      │     └── SchemaValidationError
      ├── ApplyError                  (APPLY)
      │     ├── ProviderCallError     (PROVIDER)
      │     └── PartialApplyError
      │           └── ApplyCancelledError
      ├── StateError                  (STATE)
      │     ├── StateLockError
      │     ├── StateVersionError
      │     ├── StateCorruptError
      │     └── StalePlanError
      └── PipelineError               (PIPELINE)
            ├── MissingArtifactError
            ├── JobFailedError
            └── JobTimeoutError

Recovery policy:
    Configuration errors must be fixed and the run restarted.  Apply-time
    partial failures are recovered by re-running plan/apply; because state
    is persisted after every change, the next plan skips what already
    exists.  Nothing is retried inside the engine unless a retry strategy
    is configured by the caller.

Usage::

    from groundwork.core.errors import ProviderCallError

    try:
        provider.create(attributes)
    except Exception as e:
        raise ProviderCallError(address, "create", str(e), cause=e)

Tags:
    error-handling, exception-hierarchy, retry-semantics, groundwork
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from groundwork.apply.report import ApplyReport


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    CONFIG = "CONFIG"
    PARSE = "PARSE"
    VALIDATION = "VALIDATION"
    PROVIDER = "PROVIDER"
    APPLY = "APPLY"
    STATE = "STATE"
    PIPELINE = "PIPELINE"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only non-None fields are emitted by :meth:`to_dict`, so errors log
    cleanly regardless of which layer raised them.

    Attributes:
        address: Resource identity (``type.name``) the error concerns
        action: Change action being applied (create, update, delete)
        stage: Pipeline stage name
        job: Pipeline job name
        source: Configuration file or state path
        run_id: Run identifier
        metadata: Additional key-value pairs
    """

    address: str | None = None
    action: str | None = None
    stage: str | None = None
    job: str | None = None
    source: str | None = None
    run_id: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["address", "action", "stage", "job", "source", "run_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class GroundworkError(Exception):
    """
    Base exception for all groundwork errors.

    Subclasses set ``default_category`` and ``default_retryable`` so most
    call sites only pass a message.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> GroundworkError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ParseError("bad expression").with_context(source="main.yaml")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION-TIME ERRORS (fatal, never retryable)
# =============================================================================


class ConfigurationError(GroundworkError):
    """Base for errors detected before any remote call is made."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class ParseError(ConfigurationError):
    """Malformed declaration syntax or expression."""

    default_category = ErrorCategory.PARSE


class DuplicateIdentityError(ConfigurationError):
    """Two resources share the same type and name."""

    def __init__(self, address: str, sources: list[str] | None = None):
        self.address = address
        self.sources = sources or []
        where = f" (declared in {', '.join(self.sources)})" if self.sources else ""
        super().__init__(f"Duplicate resource identity: {address}{where}")


class UnknownVariableError(ConfigurationError):
    """A variable has no value, or an expression names an undeclared variable."""

    def __init__(self, name: str, message: str | None = None):
        self.name = name
        super().__init__(message or f"Variable '{name}' has no default and no value was supplied")


class UnknownReferenceError(ConfigurationError):
    """An expression or dependency names something that is not declared."""

    def __init__(self, source: str, target: str):
        self.source = source
        self.target = target
        super().__init__(f"'{source}' references undeclared '{target}'")


class CyclicDependencyError(ConfigurationError):
    """The reference graph contains a cycle (including self-reference)."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        cycle_str = " -> ".join(cycle)
        super().__init__(f"Cycle detected in dependency graph: {cycle_str}")


class SchemaValidationError(ConfigurationError):
    """A resource does not satisfy its provider schema."""

    default_category = ErrorCategory.VALIDATION

    def __init__(self, address: str, problems: list[str]):
        self.address = address
        self.problems = problems
        super().__init__(f"Resource '{address}' is invalid: {'; '.join(problems)}")


# =============================================================================
# APPLY-TIME ERRORS
# =============================================================================


class ApplyError(GroundworkError):
    """Base for errors raised while executing a plan."""

    default_category = ErrorCategory.APPLY


class ProviderCallError(ApplyError):
    """A provider operation failed for a single change."""

    default_category = ErrorCategory.PROVIDER

    def __init__(
        self,
        address: str,
        action: str,
        message: str,
        *,
        retryable: bool | None = None,
        cause: Exception | None = None,
    ):
        self.address = address
        self.action = action
        super().__init__(
            f"{action} {address} failed: {message}",
            retryable=retryable,
            context=ErrorContext(address=address, action=action),
            cause=cause,
        )


class PartialApplyError(ApplyError):
    """Run-level error raised when an apply did not complete every change."""

    def __init__(self, report: ApplyReport, message: str | None = None):
        self.report = report
        super().__init__(
            message
            or (
                f"Apply incomplete: {len(report.succeeded)} succeeded, "
                f"{len(report.failed)} failed, {len(report.skipped)} skipped"
            )
        )

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["report"] = self.report.to_dict()
        return result


class ApplyCancelledError(PartialApplyError):
    """The apply was cancelled; in-flight calls finished, the rest were skipped."""

    def __init__(self, report: ApplyReport):
        super().__init__(
            report,
            f"Apply cancelled: {len(report.succeeded)} succeeded, "
            f"{len(report.skipped)} not attempted",
        )


# =============================================================================
# STATE ERRORS
# =============================================================================


class StateError(GroundworkError):
    """Base for state record persistence errors."""

    default_category = ErrorCategory.STATE


class StateLockError(StateError):
    """Another apply holds the exclusive lock on this state location."""

    default_retryable = True

    def __init__(self, path: str, holder: str | None = None):
        self.path = path
        self.holder = holder
        detail = f" (held by {holder})" if holder else ""
        super().__init__(f"State at {path} is locked{detail}")


class StateVersionError(StateError):
    """The persisted state was written by a newer engine."""

    def __init__(self, found: int, supported: int):
        self.found = found
        self.supported = supported
        super().__init__(
            f"State schema version {found} is newer than supported version {supported}"
        )


class StateCorruptError(StateError):
    """The persisted state cannot be decoded."""


class StalePlanError(StateError):
    """The state changed between planning and applying."""

    def __init__(self, planned_serial: int, current_serial: int):
        self.planned_serial = planned_serial
        self.current_serial = current_serial
        super().__init__(
            f"Plan was made against state serial {planned_serial} "
            f"but the state is now at serial {current_serial}; re-run plan"
        )


# =============================================================================
# PIPELINE ERRORS
# =============================================================================


class PipelineError(GroundworkError):
    """Base for pipeline orchestration errors."""

    default_category = ErrorCategory.PIPELINE


class MissingArtifactError(PipelineError):
    """A job requested an artifact that was never produced or has expired."""

    def __init__(self, name: str, reason: str = "never produced"):
        self.name = name
        self.reason = reason
        super().__init__(f"Artifact '{name}' is unavailable: {reason}")


class JobFailedError(PipelineError):
    """A job ran and reported failure (non-zero exit, failed test)."""

    def __init__(self, job: str, message: str, *, cause: Exception | None = None):
        self.job = job
        super().__init__(
            f"Job '{job}' failed: {message}",
            context=ErrorContext(job=job),
            cause=cause,
        )


class JobTimeoutError(PipelineError):
    """A job exceeded its configured timeout."""

    def __init__(self, job: str, timeout_seconds: float):
        self.job = job
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Job '{job}' exceeded timeout of {timeout_seconds}s",
            context=ErrorContext(job=job),
        )


__all__ = [
    "ApplyCancelledError",
    "ApplyError",
    "ConfigurationError",
    "CyclicDependencyError",
    "DuplicateIdentityError",
    "ErrorCategory",
    "ErrorContext",
    "GroundworkError",
    "JobFailedError",
    "JobTimeoutError",
    "MissingArtifactError",
    "ParseError",
    "PartialApplyError",
    "PipelineError",
    "ProviderCallError",
    "SchemaValidationError",
    "StalePlanError",
    "StateCorruptError",
    "StateError",
    "StateLockError",
    "StateVersionError",
    "UnknownReferenceError",
    "UnknownVariableError",
]
