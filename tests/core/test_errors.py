"""Tests for groundwork.core.errors module."""

import pytest

from groundwork.apply.report import ApplyReport, ChangeOutcome, ChangeStatus
from groundwork.core.errors import (
    ApplyCancelledError,
    ApplyError,
    ConfigurationError,
    CyclicDependencyError,
    ErrorCategory,
    ErrorContext,
    GroundworkError,
    JobFailedError,
    JobTimeoutError,
    MissingArtifactError,
    ParseError,
    PartialApplyError,
    PipelineError,
    ProviderCallError,
    SchemaValidationError,
    StalePlanError,
    StateError,
    StateLockError,
    UnknownReferenceError,
)
from groundwork.plan.models import ChangeAction


class TestErrorContext:
    """Test ErrorContext dataclass."""

    def test_empty_context(self):
        ctx = ErrorContext()
        assert ctx.address is None
        assert ctx.metadata == {}
        assert ctx.to_dict() == {}

    def test_to_dict_includes_only_set_fields(self):
        ctx = ErrorContext(address="web_app.api", action="create", metadata={"attempts": 2})
        assert ctx.to_dict() == {"address": "web_app.api", "action": "create", "attempts": 2}


class TestGroundworkError:
    """Test the base error."""

    def test_defaults(self):
        err = GroundworkError("boom")
        assert err.message == "boom"
        assert err.category == ErrorCategory.INTERNAL
        assert err.retryable is False
        assert str(err) == "boom"

    def test_cause_is_chained(self):
        cause = ValueError("inner")
        err = GroundworkError("outer", cause=cause)
        assert err.__cause__ is cause
        assert err.to_dict()["cause"] == "inner"

    def test_with_context_sets_known_fields_and_metadata(self):
        err = ParseError("bad").with_context(source="main.yaml", line=3)
        assert err.context.source == "main.yaml"
        assert err.context.metadata == {"line": 3}

    def test_to_dict(self):
        err = ParseError("bad").with_context(source="main.yaml")
        d = err.to_dict()
        assert d["error_type"] == "ParseError"
        assert d["category"] == "PARSE"
        assert d["context"] == {"source": "main.yaml"}

    def test_repr(self):
        assert repr(ParseError("bad")) == "ParseError('bad', category=PARSE)"


class TestHierarchy:
    """Families can be caught with one except clause."""

    @pytest.mark.parametrize(
        "error",
        [
            ParseError("x"),
            UnknownReferenceError("web_app.a", "web_app.b"),
            CyclicDependencyError(["a", "b", "a"]),
            SchemaValidationError("web_app.a", ["missing required attribute 'image'"]),
        ],
    )
    def test_configuration_errors(self, error):
        assert isinstance(error, ConfigurationError)
        assert error.retryable is False

    def test_provider_call_error_is_apply_error(self):
        err = ProviderCallError("web_app.api", "create", "quota exceeded")
        assert isinstance(err, ApplyError)
        assert err.category == ErrorCategory.PROVIDER
        assert err.message == "create web_app.api failed: quota exceeded"
        assert err.context.address == "web_app.api"
        assert err.context.action == "create"

    def test_state_lock_error_is_retryable(self):
        err = StateLockError("/tmp/s.json.lock", "pid 12 on host")
        assert isinstance(err, StateError)
        assert err.retryable is True
        assert "held by pid 12 on host" in err.message

    def test_stale_plan(self):
        err = StalePlanError(3, 5)
        assert isinstance(err, StateError)
        assert "serial 3" in err.message and "serial 5" in err.message

    @pytest.mark.parametrize(
        "error",
        [
            MissingArtifactError("image:api"),
            JobFailedError("unit", "tests failed"),
            JobTimeoutError("unit", 1.5),
        ],
    )
    def test_pipeline_errors(self, error):
        assert isinstance(error, PipelineError)
        assert error.category == ErrorCategory.PIPELINE

    def test_cycle_message_shows_full_path(self):
        err = CyclicDependencyError(["web_app.a", "web_app.b", "web_app.a"])
        assert "web_app.a -> web_app.b -> web_app.a" in err.message


class TestPartialApplyError:
    """Run-level apply errors carry the report."""

    def _report(self) -> ApplyReport:
        report = ApplyReport()
        report.add(ChangeOutcome("a.one", ChangeAction.CREATE, ChangeStatus.SUCCEEDED, attempts=1))
        report.add(ChangeOutcome("a.two", ChangeAction.CREATE, ChangeStatus.FAILED, error="boom"))
        report.add(ChangeOutcome("a.three", ChangeAction.CREATE, ChangeStatus.SKIPPED))
        return report

    def test_message_counts(self):
        err = PartialApplyError(self._report())
        assert err.message == "Apply incomplete: 1 succeeded, 1 failed, 1 skipped"

    def test_to_dict_includes_report(self):
        d = PartialApplyError(self._report()).to_dict()
        assert d["report"]["failed"] == ["a.two"]
        assert d["report"]["skipped"] == ["a.three"]

    def test_cancelled_is_partial(self):
        err = ApplyCancelledError(self._report())
        assert isinstance(err, PartialApplyError)
        assert err.message.startswith("Apply cancelled")
