"""Tests for cross-document dependency validation."""

from __future__ import annotations

import pytest

from prd_refinery.agent.dependency_graph import (
    CrossDocumentValidator,
    build_graph,
    execution_levels,
    find_back_edges,
)
from prd_refinery.agent.models import DependencyDescriptor, PrdDocument
from prd_refinery.agent.orchestrator import validate_set


def _doc(prd_id: str, *depends_on: str) -> PrdDocument:
    return PrdDocument(prd_id=prd_id, title=prd_id.upper(), depends_on=list(depends_on))


def test_three_document_cycle_is_reported() -> None:
    documents = [_doc("A", "B"), _doc("B", "C"), _doc("C", "A")]

    report = CrossDocumentValidator().validate(documents)

    assert not report.success
    assert report.missing_dependencies == []
    assert report.circular_dependencies == ["Circular dependency detected: C -> A"]


def test_missing_dependency_is_reported() -> None:
    report = CrossDocumentValidator().validate([_doc("A", "B")])

    assert report.missing_dependencies == ["PRD A depends on B which is not in the PRD set"]
    assert report.circular_dependencies == []
    assert not report.success


def test_acyclic_set_succeeds() -> None:
    report = CrossDocumentValidator().validate([_doc("A"), _doc("B", "A"), _doc("C", "A", "B")])

    assert report.success
    assert report.to_dict() == {
        "success": True,
        "missing_dependencies": [],
        "circular_dependencies": [],
    }


def test_dependencies_merge_relationships_and_descriptor() -> None:
    document = _doc("A", "B")
    document.dependencies = DependencyDescriptor(prds=["B", "C", " "])

    assert build_graph([document]) == {"A": ["B", "C"]}


def test_find_back_edges_reports_every_cycle() -> None:
    graph = {"a": ["b"], "b": ["a"], "c": ["d"], "d": ["c"], "e": []}

    assert find_back_edges(graph) == [("b", "a"), ("d", "c")]


def test_find_back_edges_handles_self_loops_and_unknown_nodes() -> None:
    assert find_back_edges({1: [1, 99]}) == [(1, 1)]


def test_find_back_edges_handles_deep_chains() -> None:
    graph = {index: [index + 1] for index in range(5_000)}
    graph[5_000] = [0]

    assert find_back_edges(graph) == [(5_000, 0)]


def test_execution_levels_group_independent_documents() -> None:
    graph = {"api": ["db"], "db": [], "ui": ["api"], "docs": []}

    assert execution_levels(graph) == [["db", "docs"], ["api"], ["ui"]]


def test_execution_levels_reject_cycles() -> None:
    with pytest.raises(ValueError, match="Dependency cycle detected"):
        execution_levels({"a": ["b"], "b": ["a"]})


def test_validate_set_combines_rubric_and_dependencies(
    executable_document: PrdDocument,
) -> None:
    consumer = _doc("reporting", executable_document.prd_id)

    result = validate_set([executable_document, consumer])

    assert not result.success
    assert result.dependencies.success
    assert result.execution_levels == [["billing-export"], ["reporting"]]
    producer, dependent = result.documents
    assert producer.success
    assert not dependent.success
    assert dependent.errors[0].startswith("PRD reporting is not executable")


def test_validate_set_flags_duplicates_and_missing(executable_document: PrdDocument) -> None:
    twin = _doc(executable_document.prd_id, "ghost")

    result = CrossDocumentValidator().validate_set([executable_document, twin])

    assert not result.success
    assert "Duplicate PRD id in set: billing-export" in result.errors
    assert result.documents[1].errors == [
        "Duplicate PRD id in set: billing-export",
        "Missing dependency: ghost",
    ]
    assert result.to_dict()["dependencies"]["missing_dependencies"] == [
        "PRD billing-export depends on ghost which is not in the PRD set"
    ]
