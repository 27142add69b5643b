"""Tests for the apply executor.

Covers:
- Plan-order application and state persistence after each change
- UNKNOWN substitution from outputs produced earlier in the run
- Partial failure: what succeeded is persisted, dependents are skipped
- Bounded parallelism over independent changes
- Cancellation, state lock and stale-plan detection
- Retry policy and output resolution
"""

import pytest

from groundwork.apply.executor import ApplyExecutor, CancelToken, apply
from groundwork.apply.report import ChangeStatus
from groundwork.core.errors import (
    ApplyCancelledError,
    ConfigurationError,
    PartialApplyError,
    ProviderCallError,
    StalePlanError,
    StateLockError,
)
from groundwork.engine import Engine
from groundwork.plan.models import ChangeAction
from groundwork.providers.base import MissingProviderError, ProviderRegistry
from groundwork.providers.memory import InMemoryProvider, demo_registry
from groundwork.retry import ConstantBackoff

THREE_APPS = {
    "resources": [
        {"type": "web_app", "name": "a", "attributes": {"image": "a:1"}},
        {"type": "web_app", "name": "b", "attributes": {"image": "b:1"}},
        {"type": "web_app", "name": "c", "attributes": {"image": "c:1"}},
    ]
}


class TestSuccessfulApply:
    def test_creates_everything_and_persists(self, engine, declarations, store, sample_order):
        result = engine.apply(engine.plan(declarations))
        assert result.report.ok
        assert result.report.succeeded == sample_order
        assert store.load().addresses == sample_order
        # one write per change plus one for outputs
        assert result.state.serial == 6
        assert store.load().serial == 6

    def test_unknowns_are_substituted_from_earlier_outputs(self, engine, declarations, registry):
        result = engine.apply(engine.plan(declarations))
        state = result.state
        registry_state = state.get("container_registry.registry")
        python = state.get("web_app.python")
        assert python.attributes["image"] == f"{registry_state.outputs['login_server']}/python-service:latest"
        assert python.attributes["identity"] == state.get("user_identity.deployer").remote_id

        node = state.get("web_app.node")
        assert node.attributes["settings"] == {"API_URL": f"https://{python.outputs['hostname']}"}

        created = registry.get("web_app").calls_for("create")
        assert created[0].attributes["image"].endswith(".registry.local/python-service:latest")

    def test_outputs_resolved_and_recorded(self, engine, declarations):
        result = engine.apply(engine.plan(declarations))
        hostname = result.state.get("web_app.python").outputs["hostname"]
        assert result.outputs == {
            "python_url": f"https://{hostname}",
            "registry": result.state.get("container_registry.registry").outputs["login_server"],
        }
        assert engine.outputs() == result.outputs

    def test_recorded_dependencies(self, engine, declarations):
        state = engine.apply(engine.plan(declarations)).state
        assert state.get("role_assignment.acr_pull").dependencies == [
            "container_registry.registry",
            "user_identity.deployer",
        ]

    def test_noop_plan_makes_no_provider_calls(self, engine, declarations, registry):
        engine.apply(engine.plan(declarations))
        before = sum(len(registry.get(t).calls) for t in registry.types)
        result = engine.apply(engine.plan(declarations))
        after = sum(len(registry.get(t).calls) for t in registry.types)
        assert after == before
        assert len(result.report.unchanged) == 5

    def test_update_calls_provider_with_remote_id(self, engine, declarations, registry):
        first = engine.apply(engine.plan(declarations)).state
        engine.apply(engine.plan(declarations, {"location": "westeurope"}))
        updates = registry.get("web_app").calls_for("update")
        assert [c.remote_id for c in updates] == [first.get("web_app.python").remote_id]
        assert engine.state().get("web_app.python").attributes["location"] == "westeurope"

    def test_destroy_removes_everything(self, engine, declarations, registry):
        engine.apply(engine.plan(declarations))
        result = engine.destroy()
        assert result.state.resources == {}
        assert result.outputs == {}
        assert engine.state().outputs == {}
        deleted = [c.remote_id for c in registry.get("web_app").calls_for("delete")]
        assert deleted == ["web_app-0002", "web_app-0001"]

    def test_module_level_apply(self, registry, store, declarations):
        plan = Engine(registry, store).plan(declarations)
        assert apply(plan, registry, store).report.ok


class TestPartialFailure:
    def test_failure_persists_completed_and_skips_rest(self, engine, declarations, registry, store):
        registry.get("web_app").fail_on("create", {"port": 8000}, message="quota exceeded")

        with pytest.raises(PartialApplyError) as exc_info:
            engine.apply(engine.plan(declarations))

        report = exc_info.value.report
        assert report.succeeded == [
            "container_registry.registry",
            "user_identity.deployer",
            "role_assignment.acr_pull",
        ]
        assert report.failed == ["web_app.python"]
        assert report.skipped == ["web_app.node"]
        assert "quota exceeded" in report.errors()["web_app.python"]
        assert isinstance(exc_info.value.__cause__, ProviderCallError)

        state = store.load()
        assert state.addresses == report.succeeded
        assert state.outputs == {}

    def test_rerun_after_failure_completes(self, engine, declarations, registry):
        registry.get("web_app").fail_on("create", {"port": 8000}, times=1)
        with pytest.raises(PartialApplyError):
            engine.apply(engine.plan(declarations))

        retry_plan = engine.plan(declarations)
        assert retry_plan.summary() == {"create": 2, "update": 0, "delete": 0, "no-op": 3}
        assert engine.apply(retry_plan).report.ok
        assert len(engine.state().resources) == 5

    def test_independent_in_flight_changes_finish(self, store):
        queue = InMemoryProvider("queue")
        queue.fail_on("create")
        apps = InMemoryProvider("web_app", delay=0.2)
        engine = Engine(ProviderRegistry({"queue": queue, "web_app": apps}), store, parallelism=2)
        config = {
            "resources": [
                {"type": "queue", "name": "a"},
                {"type": "web_app", "name": "b", "attributes": {"image": "b:1"}},
                {"type": "web_app", "name": "c", "attributes": {"image": "c:1"}},
            ]
        }

        with pytest.raises(PartialApplyError) as exc_info:
            engine.apply(engine.plan(config))

        report = exc_info.value.report
        assert report.failed == ["queue.a"]
        assert report.succeeded == ["web_app.b"]
        assert report.skipped == ["web_app.c"]
        assert store.load().addresses == ["web_app.b"]

    def test_failed_outcome_records_attempts(self, engine, declarations, registry):
        registry.get("user_identity").fail_on("create")
        with pytest.raises(PartialApplyError) as exc_info:
            engine.apply(engine.plan(declarations))
        outcome = exc_info.value.report.outcome("user_identity.deployer")
        assert outcome.status == ChangeStatus.FAILED
        assert outcome.attempts == 1


class TestParallelism:
    def test_bounded_by_parallelism(self, store):
        provider = InMemoryProvider("web_app", delay=0.1)
        engine = Engine(ProviderRegistry({"web_app": provider}), store, parallelism=2)
        assert engine.apply(engine.plan(THREE_APPS)).report.ok
        assert provider.max_in_flight == 2

    def test_serial_by_default(self, store):
        provider = InMemoryProvider("web_app", delay=0.05)
        engine = Engine(ProviderRegistry({"web_app": provider}), store)
        engine.apply(engine.plan(THREE_APPS))
        assert provider.max_in_flight == 1
        assert [c.attributes["image"] for c in provider.calls] == ["a:1", "b:1", "c:1"]

    def test_dependencies_respected_under_parallelism(self, store, declarations, sample_order):
        registry = demo_registry(delay=0.02)
        engine = Engine(registry, store, parallelism=4)
        result = engine.apply(engine.plan(declarations))
        assert result.report.succeeded == sample_order
        python = result.state.get("web_app.python")
        assert ".registry.local/" in python.attributes["image"]

    def test_invalid_parallelism(self, registry, store):
        with pytest.raises(ConfigurationError):
            ApplyExecutor(registry, store, parallelism=0)


class TestGuards:
    def test_missing_provider_fails_before_any_call(self, store, declarations):
        registry = demo_registry()
        partial = ProviderRegistry({t: registry.get(t) for t in registry.types if t != "web_app"})
        engine = Engine(partial, store)
        with pytest.raises(MissingProviderError):
            engine.apply(engine.plan(declarations))
        assert registry.get("container_registry").calls == []
        assert not store.exists()

    def test_lock_held_by_another_apply(self, engine, declarations, store):
        plan = engine.plan(declarations)
        with store.lock():
            with pytest.raises(StateLockError):
                engine.apply(plan)
        assert store.load().resources == {}

    def test_stale_plan_rejected(self, engine, declarations):
        stale = engine.plan(declarations)
        engine.apply(engine.plan(declarations))
        with pytest.raises(StalePlanError) as exc_info:
            engine.apply(stale)
        assert exc_info.value.planned_serial == 0

    def test_first_apply_adopts_plan_lineage(self, engine, declarations):
        plan = engine.plan(declarations)
        assert engine.apply(plan).state.lineage == plan.lineage


class TestCancellation:
    def test_cancelled_before_start(self, engine, declarations, registry, store):
        token = CancelToken()
        token.cancel()
        with pytest.raises(ApplyCancelledError) as exc_info:
            engine.apply(engine.plan(declarations), cancel=token)
        assert len(exc_info.value.report.skipped) == 5
        assert registry.get("container_registry").calls == []
        assert store.load().resources == {}

    def test_cancelled_mid_run_keeps_finished_changes(self, store, declarations):
        token = CancelToken()
        registry = demo_registry()

        def cancel_after_registry(rid, attrs):
            token.cancel()
            return {"login_server": f"{rid}.registry.local"}

        registry.register(
            "container_registry", InMemoryProvider("container_registry", output_fn=cancel_after_registry)
        )
        engine = Engine(registry, store)
        with pytest.raises(ApplyCancelledError) as exc_info:
            engine.apply(engine.plan(declarations), cancel=token)

        report = exc_info.value.report
        assert report.succeeded == ["container_registry.registry"]
        assert len(report.skipped) == 4
        assert store.load().addresses == ["container_registry.registry"]


class TestRetry:
    def test_retryable_failure_is_retried(self, registry, store, declarations):
        registry.get("web_app").fail_on("create", {"port": 8000}, retryable=True, times=2)
        engine = Engine(registry, store, retry=ConstantBackoff(max_retries=3, delay=0))
        result = engine.apply(engine.plan(declarations))
        assert result.report.ok
        assert result.report.outcome("web_app.python").attempts == 3

    def test_non_retryable_failure_is_not_retried(self, registry, store, declarations):
        registry.get("web_app").fail_on("create", {"port": 8000}, retryable=False, times=1)
        engine = Engine(registry, store, retry=ConstantBackoff(max_retries=3, delay=0))
        with pytest.raises(PartialApplyError) as exc_info:
            engine.apply(engine.plan(declarations))
        outcome = exc_info.value.report.outcome("web_app.python")
        assert outcome.attempts == 1
        assert outcome.action == ChangeAction.CREATE

    def test_exhausted_retries_report_attempts(self, registry, store, declarations):
        registry.get("web_app").fail_on("create", {"port": 8000}, retryable=True)
        engine = Engine(registry, store, retry=ConstantBackoff(max_retries=2, delay=0))
        with pytest.raises(PartialApplyError) as exc_info:
            engine.apply(engine.plan(declarations))
        assert exc_info.value.report.outcome("web_app.python").attempts == 3


class TestOutputs:
    def test_unresolvable_output_is_omitted(self, store):
        registry = ProviderRegistry({"web_app": InMemoryProvider("web_app")})
        engine = Engine(registry, store)
        config = {
            "resources": [{"type": "web_app", "name": "api", "attributes": {"image": "x"}}],
            "outputs": {"url": {"value": "https://${web_app.api.hostname}"}, "image": {"value": "${web_app.api.image}"}},
        }
        result = engine.apply(engine.plan(config))
        assert result.outputs == {"image": "x"}
