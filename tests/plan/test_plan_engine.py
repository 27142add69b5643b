"""Tests for the plan engine."""

from groundwork.config.loader import load
from groundwork.config.values import UNKNOWN
from groundwork.graph.builder import build
from groundwork.plan.engine import PlanEngine, plan
from groundwork.plan.models import ChangeAction
from groundwork.state.models import ResourceState, StateRecord


def _graph(source, variables=None):
    config = load(source, variables)
    return build(config.resources), config


def _applied(engine, declarations, variables=None):
    return engine.apply(engine.plan(declarations, variables)).state


class TestEmptyState:
    def test_everything_is_created_in_order(self, declarations, sample_order):
        graph, config = _graph(declarations)
        result = PlanEngine().plan(graph, StateRecord(), outputs=config.outputs)
        assert result.addresses == sample_order
        assert all(c.action == ChangeAction.CREATE for c in result)
        assert result.summary() == {"create": 5, "update": 0, "delete": 0, "no-op": 0}
        assert result.has_changes
        assert result.prior_serial == 0
        assert set(result.outputs) == {"python_url", "registry"}

    def test_apply_time_values_are_unknown(self, declarations):
        graph, _ = _graph(declarations)
        result = plan(graph, StateRecord())
        registry = result.get("container_registry.registry")
        assert registry.after == {"sku": "Basic", "location": "eastus"}
        assert registry.unknown_attributes == []

        python = result.get("web_app.python")
        assert python.after["image"] is UNKNOWN
        assert python.after["identity"] is UNKNOWN
        assert python.after["port"] == 8000
        assert python.unknown_attributes == ["identity", "image"]

        node = result.get("web_app.node")
        assert node.after["settings"]["API_URL"] is UNKNOWN
        assert node.unknown_attributes == ["identity", "image", "settings"]

    def test_depends_on_lists_dependencies(self, declarations):
        graph, _ = _graph(declarations)
        node = plan(graph, StateRecord()).get("web_app.node")
        assert node.depends_on == (
            "container_registry.registry",
            "user_identity.deployer",
            "web_app.python",
            "role_assignment.acr_pull",
        )

    def test_declared_attribute_of_planned_resource_resolves(self):
        graph, _ = _graph(
            {
                "resources": [
                    {"type": "container_registry", "name": "acr", "attributes": {"sku": "Premium"}},
                    {"type": "web_app", "name": "api", "attributes": {"image": "x", "tags": {"sku": "${container_registry.acr.sku}"}}},
                ]
            }
        )
        api = plan(graph, StateRecord()).get("web_app.api")
        assert api.after["tags"] == {"sku": "Premium"}


class TestAgainstPriorState:
    def test_unchanged_configuration_is_all_noop(self, engine, declarations):
        prior = _applied(engine, declarations)
        graph, _ = _graph(declarations)
        result = plan(graph, prior)
        assert [c.action for c in result] == [ChangeAction.NOOP] * 5
        assert not result.has_changes
        assert result.prior_serial == prior.serial
        assert result.lineage == prior.lineage

    def test_yaml_dates_replan_as_noop(self, engine, write_declarations):
        source = write_declarations(
            "resources:\n"
            "  - type: container_registry\n"
            "    name: registry\n"
            "    attributes:\n"
            "      sku: Basic\n"
            "      tags:\n"
            "        expires: 2025-01-01\n"
            "        rotated: 2024-06-30T12:00:00Z\n"
        )
        first = engine.plan(source)
        assert first.get("container_registry.registry").after["tags"]["expires"] == "2025-01-01"
        engine.apply(first)

        second = engine.plan(source)
        assert [c.action for c in second] == [ChangeAction.NOOP]
        assert not second.has_changes

    def test_changed_variable_updates_affected_resources(self, engine, declarations):
        prior = _applied(engine, declarations)
        graph, _ = _graph(declarations, {"location": "westeurope"})
        result = plan(graph, prior)
        actions = {c.address: c.action for c in result}
        assert actions == {
            "container_registry.registry": ChangeAction.UPDATE,
            "user_identity.deployer": ChangeAction.UPDATE,
            "role_assignment.acr_pull": ChangeAction.NOOP,
            "web_app.python": ChangeAction.UPDATE,
            "web_app.node": ChangeAction.NOOP,
        }
        update = result.get("web_app.python")
        assert update.changed_attributes() == ["location"]
        assert update.remote_id == prior.get("web_app.python").remote_id
        assert update.before["location"] == "eastus"

    def test_existing_outputs_resolve_at_plan_time(self, engine, declarations):
        prior = _applied(engine, declarations)
        graph, _ = _graph(declarations)
        node = plan(graph, prior).get("web_app.node")
        hostname = prior.get("web_app.python").outputs["hostname"]
        assert node.after["settings"] == {"API_URL": f"https://{hostname}"}

    def test_removed_resource_is_deleted_last(self, engine, declarations, sample_text, write_declarations):
        prior = _applied(engine, declarations)
        trimmed = sample_text.split("  - type: web_app\n    name: node")[0]
        trimmed += "outputs: {}\n"
        graph, _ = _graph(write_declarations(trimmed))

        result = plan(graph, prior)
        assert result.summary() == {"create": 0, "update": 0, "delete": 1, "no-op": 4}
        delete = result.changes[-1]
        assert delete.address == "web_app.node"
        assert delete.action == ChangeAction.DELETE
        assert delete.remote_id == prior.get("web_app.node").remote_id
        assert delete.after is None

    def test_unknown_counts_as_update(self):
        graph, _ = _graph(
            {
                "resources": [
                    {"type": "container_registry", "name": "acr", "attributes": {"sku": "Basic"}},
                    {"type": "web_app", "name": "api", "attributes": {"image": "${container_registry.acr.login_server}/api"}},
                ]
            }
        )
        prior = StateRecord(
            serial=2,
            resources={
                "web_app.api": ResourceState(
                    type="web_app", name="api", remote_id="app-1", attributes={"image": "old/api"}
                )
            },
        )
        result = plan(graph, prior)
        assert result.get("container_registry.acr").action == ChangeAction.CREATE
        api = result.get("web_app.api")
        assert api.action == ChangeAction.UPDATE
        assert api.changed_attributes() == ["image"]


class TestDestroy:
    def test_reverse_dependency_order(self, engine, declarations, sample_order):
        prior = _applied(engine, declarations)
        result = PlanEngine().plan_destroy(prior)
        assert result.destroy
        assert result.addresses == list(reversed(sample_order))
        assert all(c.action == ChangeAction.DELETE for c in result)

    def test_delete_waits_for_dependents(self, engine, declarations):
        prior = _applied(engine, declarations)
        registry = PlanEngine().plan_destroy(prior).get("container_registry.registry")
        assert set(registry.depends_on) == {"role_assignment.acr_pull", "web_app.python", "web_app.node"}

    def test_empty_state(self):
        result = PlanEngine().plan_destroy(StateRecord())
        assert len(result) == 0
        assert not result.has_changes


class TestPlanModel:
    def test_to_dict(self, declarations):
        graph, _ = _graph(declarations)
        data = plan(graph, StateRecord()).to_dict()
        assert data["summary"]["create"] == 5
        python = next(c for c in data["changes"] if c["address"] == "web_app.python")
        assert python["after"]["image"] == "(known after apply)"
        assert python["action"] == "create"
