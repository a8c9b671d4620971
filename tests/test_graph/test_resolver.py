"""Tests for the dependency graph."""
import pytest

from labenv.errors import CyclicDependency, InvalidConfiguration
from labenv.graph.resolver import DependencyGraph
from labenv.manifest.schema import ResourceSpec


def spec(name, depends_on=None, **extra):
    data = {"logicalName": name, "kind": "StorageAccount", "name": f"st{name}", "dependsOn": depends_on or []}
    data.update(extra)
    return ResourceSpec.model_validate(data)


def names(specs):
    return [s.logical_name for s in specs]


def test_dependencies_come_first():
    specs = [spec("app", ["db"]), spec("db", ["network"]), spec("network")]

    assert names(DependencyGraph(specs).order()) == ["network", "db", "app"]


def test_independent_specs_keep_declaration_order():
    specs = [spec("c"), spec("a"), spec("b")]

    assert names(DependencyGraph(specs).order()) == ["c", "a", "b"]


def test_order_is_deterministic():
    specs = [spec("d", ["b", "a"]), spec("a"), spec("b", ["a"]), spec("c")]

    first = names(DependencyGraph(specs).order())
    second = names(DependencyGraph(specs).order())
    assert first == second == ["a", "b", "d", "c"]


def test_parent_and_references_are_edges():
    specs = [
        ResourceSpec.model_validate({
            "logicalName": "grant",
            "kind": "RoleAssignment",
            "properties": {
                "principalId": {"ref": "search", "output": "principalId"},
                "role": "Storage Blob Data Reader",
                "scope": {"ref": "storage", "output": "id"}
            }
        }),
        spec("docs", kind="BlobContainer", parent="storage"),
        spec("storage"),
        spec("search", kind="SearchService", identity="SystemAssigned"),
    ]

    graph = DependencyGraph(specs)
    assert graph.dependencies("grant") == ["storage", "search"]
    assert graph.dependents("storage") == ["grant", "docs"]
    assert names(graph.order()) == ["storage", "search", "grant", "docs"]


def test_cycle_is_rejected():
    specs = [spec("a", ["b"]), spec("b", ["a"])]

    with pytest.raises(CyclicDependency) as exc_info:
        DependencyGraph(specs).order()
    assert exc_info.value.members == ["a", "b", "a"]
    assert "a -> b -> a" in str(exc_info.value)


def test_longer_cycle_reports_only_its_members():
    specs = [spec("root", ["x"]), spec("x", ["y"]), spec("y", ["z"]), spec("z", ["x"])]

    with pytest.raises(CyclicDependency) as exc_info:
        DependencyGraph(specs).order()
    assert exc_info.value.members == ["x", "y", "z", "x"]


def test_self_dependency_is_a_cycle():
    with pytest.raises(CyclicDependency):
        DependencyGraph([spec("a", ["a"])]).order()


def test_unknown_dependency():
    with pytest.raises(InvalidConfiguration, match="unknown resource 'missing'"):
        DependencyGraph([spec("a", ["missing"])])
