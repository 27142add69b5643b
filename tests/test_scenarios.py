"""End-to-end provisioning scenarios over the five-resource sample.

The sample declares a container registry, a user identity, a role
assignment granting the identity pull access, and two web apps; the second
app's settings reference the first app's hostname.
"""

import pytest

from groundwork.core.errors import PartialApplyError
from groundwork.plan.models import ChangeAction


class TestProvisioningLifecycle:
    def test_first_apply_then_idempotent_replan(self, engine, declarations, sample_order):
        first = engine.plan(declarations)
        assert [c.action for c in first] == [ChangeAction.CREATE] * 5
        assert first.addresses == sample_order

        result = engine.apply(first)
        assert result.report.succeeded == sample_order
        assert set(result.outputs) == {"python_url", "registry"}

        again = engine.plan(declarations)
        assert [c.action for c in again] == [ChangeAction.NOOP] * 5
        assert not again.has_changes

    def test_removing_a_resource_plans_a_single_delete(
        self, engine, declarations, sample_text, write_declarations, registry
    ):
        engine.apply(engine.plan(declarations))
        node_id = engine.state().get("web_app.node").remote_id

        without_node = sample_text.split("  - type: web_app\n    name: node")[0]
        without_node += "outputs:\n  python_url:\n    value: \"https://${web_app.python.hostname}\"\n"
        plan = engine.plan(write_declarations(without_node))

        changes = [c for c in plan if c.is_change]
        assert len(changes) == 1
        assert changes[0].action == ChangeAction.DELETE
        assert changes[0].address == "web_app.node"

        result = engine.apply(plan)
        assert "web_app.node" not in result.state
        assert registry.get("web_app").calls_for("delete")[0].remote_id == node_id
        assert set(result.outputs) == {"python_url"}

    def test_partial_failure_then_recovery(self, engine, declarations, registry, store):
        registry.get("role_assignment").fail_on("create", times=1, message="principal not replicated yet")

        with pytest.raises(PartialApplyError) as exc_info:
            engine.apply(engine.plan(declarations))
        report = exc_info.value.report
        assert report.succeeded == ["container_registry.registry", "user_identity.deployer"]
        assert report.failed == ["role_assignment.acr_pull"]
        assert report.skipped == ["web_app.python", "web_app.node"]
        assert store.load().addresses == report.succeeded

        recovery = engine.plan(declarations)
        assert recovery.summary() == {"create": 3, "update": 0, "delete": 0, "no-op": 2}
        assert engine.apply(recovery).report.ok

    def test_destroy_then_nothing_left(self, engine, declarations):
        engine.apply(engine.plan(declarations))
        engine.destroy()
        assert not engine.plan_destroy().has_changes
        assert engine.plan(declarations).summary()["create"] == 5
