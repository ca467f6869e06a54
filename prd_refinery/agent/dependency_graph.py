"""Cross-document dependency validation for PRD sets."""

from __future__ import annotations

import logging
from collections.abc import Hashable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from prd_refinery.agent.models import PrdDocument, ValidationResult

logger = logging.getLogger(__name__)

NodeT = TypeVar("NodeT", bound=Hashable)


def find_back_edges(graph: Mapping[NodeT, Sequence[NodeT]]) -> list[tuple[NodeT, NodeT]]:
    """Return every edge that closes a cycle, found by iterative depth-first search.

    Nodes are visited in mapping order. Edges to nodes absent from the mapping
    are ignored. The traversal keeps going after a cycle is found, so each
    back edge is reported once.
    """
    visited: set[NodeT] = set()
    on_stack: set[NodeT] = set()
    back_edges: list[tuple[NodeT, NodeT]] = []

    for root in graph:
        if root in visited:
            continue
        visited.add(root)
        on_stack.add(root)
        stack: list[tuple[NodeT, Iterable[NodeT]]] = [(root, iter(graph[root]))]
        while stack:
            node, neighbours = stack[-1]
            advanced = False
            for neighbour in neighbours:
                if neighbour not in graph:
                    continue
                if neighbour in on_stack:
                    back_edges.append((node, neighbour))
                    continue
                if neighbour not in visited:
                    visited.add(neighbour)
                    on_stack.add(neighbour)
                    stack.append((neighbour, iter(graph[neighbour])))
                    advanced = True
                    break
            if not advanced:
                stack.pop()
                on_stack.discard(node)
    return back_edges


def execution_levels(graph: Mapping[NodeT, Sequence[NodeT]]) -> list[list[NodeT]]:
    """Group nodes into levels whose members only depend on earlier levels.

    Raises ValueError when the graph contains a cycle.
    """
    remaining: dict[NodeT, set[NodeT]] = {
        node: {dep for dep in deps if dep in graph and dep != node} for node, deps in graph.items()
    }
    levels: list[list[NodeT]] = []
    while remaining:
        ready = [node for node, deps in remaining.items() if not deps]
        if not ready:
            stuck = ", ".join(str(node) for node in remaining)
            raise ValueError(f"Dependency cycle detected. Remaining PRDs: {stuck}")
        levels.append(ready)
        for node in ready:
            del remaining[node]
        for deps in remaining.values():
            deps.difference_update(ready)
    return levels


@dataclass(frozen=True)
class DependencyReport:
    """Missing and circular dependencies found across a document set."""

    missing_dependencies: list[str] = field(default_factory=list)
    circular_dependencies: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Return whether the set has no dependency problems."""
        return not self.missing_dependencies and not self.circular_dependencies

    def to_dict(self) -> dict[str, object]:
        """Return JSON-serializable payload."""
        return {
            "success": self.success,
            "missing_dependencies": list(self.missing_dependencies),
            "circular_dependencies": list(self.circular_dependencies),
        }


@dataclass(frozen=True)
class DocumentIntegration:
    """Per-document outcome inside an integration check."""

    prd_id: str
    success: bool
    errors: list[str] = field(default_factory=list)
    validation: ValidationResult | None = None


@dataclass(frozen=True)
class IntegrationResult:
    """Result of validating a whole PRD set."""

    success: bool
    documents: list[DocumentIntegration]
    dependencies: DependencyReport
    execution_levels: list[list[str]]
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Return JSON-serializable payload."""
        return {
            "success": self.success,
            "documents": [
                {
                    "prd_id": item.prd_id,
                    "success": item.success,
                    "errors": list(item.errors),
                    "score": item.validation.score if item.validation else None,
                }
                for item in self.documents
            ],
            "dependencies": self.dependencies.to_dict(),
            "execution_levels": [list(level) for level in self.execution_levels],
            "errors": list(self.errors),
        }


def build_graph(documents: Iterable[PrdDocument]) -> dict[str, list[str]]:
    """Build an adjacency list of document id to declared dependency ids."""
    graph: dict[str, list[str]] = {}
    for document in documents:
        deps = graph.setdefault(document.prd_id, [])
        for dep in document.declared_dependencies():
            if dep not in deps:
                deps.append(dep)
    return graph


class CrossDocumentValidator:
    """Read-only analysis of "depends on" relations between PRDs."""

    def validate(self, documents: Sequence[PrdDocument]) -> DependencyReport:
        """Report dependencies on absent documents and dependency cycles."""
        graph = build_graph(documents)
        missing: list[str] = []
        for prd_id, deps in graph.items():
            for dep in deps:
                if dep not in graph:
                    missing.append(
                        f"PRD {prd_id or 'unknown'} depends on {dep} which is not in the PRD set"
                    )
        circular = [
            f"Circular dependency detected: {source} -> {target}"
            for source, target in find_back_edges(graph)
        ]
        for message in (*missing, *circular):
            logger.warning(message)
        return DependencyReport(missing_dependencies=missing, circular_dependencies=circular)

    def validate_set(
        self,
        documents: Sequence[PrdDocument],
        validations: Mapping[str, ValidationResult] | None = None,
    ) -> IntegrationResult:
        """Validate a PRD set, embedding the dependency report.

        When per-document rubric results are supplied, a document that is not
        executable marks the set as failed.
        """
        report = self.validate(documents)
        results = validations or {}
        graph = build_graph(documents)
        errors: list[str] = []
        seen_ids: set[str] = set()
        integrations: list[DocumentIntegration] = []
        for document in documents:
            doc_errors: list[str] = []
            if document.prd_id in seen_ids:
                doc_errors.append(f"Duplicate PRD id in set: {document.prd_id}")
            seen_ids.add(document.prd_id)
            for dep in graph.get(document.prd_id, []):
                if dep not in graph:
                    doc_errors.append(f"Missing dependency: {dep}")
            validation = results.get(document.prd_id)
            if validation is not None and not validation.executable:
                doc_errors.append(
                    f"PRD {document.prd_id} is not executable (score {validation.score}/100)"
                )
            integrations.append(
                DocumentIntegration(
                    prd_id=document.prd_id,
                    success=not doc_errors,
                    errors=doc_errors,
                    validation=validation,
                )
            )
            errors.extend(doc_errors)

        levels: list[list[str]] = []
        if not report.circular_dependencies:
            levels = execution_levels(graph)
        success = report.success and all(item.success for item in integrations)
        return IntegrationResult(
            success=success,
            documents=integrations,
            dependencies=report,
            execution_levels=levels,
            errors=errors,
        )
