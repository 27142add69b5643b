"""Tests for the dependency graph builder."""

import pytest

from groundwork.config.loader import load
from groundwork.config.model import Resource
from groundwork.core.errors import CyclicDependencyError, DuplicateIdentityError, UnknownReferenceError
from groundwork.graph.builder import GraphBuilder, build, topological_sort


def _resource(type_: str, name: str, **attributes) -> Resource:
    config = load({"resources": [{"type": type_, "name": name, "attributes": attributes}]})
    return config.resources[0]


def _ref(address: str, attribute: str = "id") -> str:
    return "${" + f"{address}.{attribute}" + "}"


class TestTopologicalSort:
    def test_dependencies_first(self):
        assert topological_sort(["c", "b", "a"], {"c": ["b"], "b": ["a"]}) == ["a", "b", "c"]

    def test_preserves_declaration_order_of_independent_nodes(self):
        assert topological_sort(["x", "y", "z"], {}) == ["x", "y", "z"]

    def test_ignores_edges_to_unknown_nodes(self):
        assert topological_sort(["a"], {"a": ["elsewhere"]}) == ["a"]

    def test_reports_full_cycle(self):
        with pytest.raises(CyclicDependencyError) as exc_info:
            topological_sort(["a", "b", "c"], {"a": ["b"], "b": ["c"], "c": ["a"]})
        assert exc_info.value.cycle == ["a", "b", "c", "a"]


class TestGraphBuilder:
    def test_sample_graph(self, declarations, sample_order):
        graph = GraphBuilder().build(load(declarations).resources)
        assert graph.topological_order() == sample_order
        assert graph.reverse_topological_order() == list(reversed(sample_order))
        assert len(graph) == 5
        assert "web_app.node" in graph
        assert graph.dependencies_of("role_assignment.acr_pull") == (
            "container_registry.registry",
            "user_identity.deployer",
        )
        assert graph.dependents_of("web_app.python") == ("web_app.node",)

    def test_ancestors_and_independence(self, declarations):
        graph = build(load(declarations).resources)
        assert graph.ancestors_of("web_app.node") == {
            "container_registry.registry",
            "user_identity.deployer",
            "role_assignment.acr_pull",
            "web_app.python",
        }
        assert graph.independent("container_registry.registry", "user_identity.deployer")
        assert not graph.independent("web_app.python", "web_app.node")
        assert not graph.independent("web_app.node", "web_app.node")

    def test_reference_reorders_declarations(self):
        app = _resource("web_app", "api", image=_ref("container_registry.acr", "login_server"))
        acr = _resource("container_registry", "acr", sku="Basic")
        graph = build([app, acr])
        assert graph.topological_order() == ["container_registry.acr", "web_app.api"]

    def test_unknown_reference(self):
        app = _resource("web_app", "api", image=_ref("container_registry.missing"))
        with pytest.raises(UnknownReferenceError) as exc_info:
            build([app])
        assert exc_info.value.source == "web_app.api"
        assert exc_info.value.target == "container_registry.missing"

    def test_unknown_explicit_dependency(self):
        app = Resource(type="web_app", name="api", depends_on=("queue.jobs",))
        with pytest.raises(UnknownReferenceError):
            build([app])

    def test_self_reference(self):
        app = _resource("web_app", "api", url=_ref("web_app.api", "hostname"))
        with pytest.raises(CyclicDependencyError) as exc_info:
            build([app])
        assert exc_info.value.cycle == ["web_app.api", "web_app.api"]

    def test_cycle(self):
        a = _resource("web_app", "a", peer=_ref("web_app.b", "hostname"))
        b = _resource("web_app", "b", peer=_ref("web_app.a", "hostname"))
        with pytest.raises(CyclicDependencyError) as exc_info:
            build([a, b])
        assert exc_info.value.cycle == ["web_app.a", "web_app.b", "web_app.a"]

    def test_duplicate_identity(self):
        a = Resource(type="web_app", name="api")
        with pytest.raises(DuplicateIdentityError):
            build([a, Resource(type="web_app", name="api")])

    def test_to_dot(self):
        app = _resource("web_app", "api", image=_ref("container_registry.acr", "login_server"))
        acr = _resource("container_registry", "acr", sku="Basic")
        dot = build([acr, app]).to_dot()
        assert dot.startswith("digraph groundwork {")
        assert '"web_app.api" -> "container_registry.acr";' in dot
