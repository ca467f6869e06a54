"""Tests for the bounded auto-fix convergence loop."""

from __future__ import annotations

import copy
from pathlib import Path

import pytest

from prd_refinery.agent.autofix import (
    AutoFixEngine,
    FixContext,
    Fixer,
    default_fix_catalog,
    humanize_identifier,
)
from prd_refinery.agent.cancellation import CancellationToken
from prd_refinery.agent.documents import PrdSetWriter, load_document
from prd_refinery.agent.errors import PipelineCancelled
from prd_refinery.agent.models import Phase, PrdDocument, Task, TestingConfig
from prd_refinery.agent.pattern_cache import PatternCache
from prd_refinery.agent.scorer import ExecutabilityScorer


def _full_testing() -> TestingConfig:
    return TestingConfig(directory="tests", framework="pytest", runner="pytest", command="pytest")


def test_zero_phase_document_cannot_be_fixed() -> None:
    """No fixer adds phases, so a phaseless PRD stays blocked without iterating."""
    document = PrdDocument(prd_id="empty-prd", title="Empty", version="2.0.0")

    result = AutoFixEngine().converge(document)

    assert not result.executable
    assert result.iterations == 0
    assert result.fixes_applied == []
    assert not result.exhausted
    assert [error.message for error in result.final_validation.errors] == [
        "PRD must have at least one phase"
    ]
    assert document.testing is None


def test_id_pattern_then_task_title_fixes_converge() -> None:
    """A mismatched idPattern is corrected before the missing task title is derived."""
    document = PrdDocument(
        prd_id="req-prd",
        title="Requirements",
        version="2.0.0",
        phases=[Phase(1, name="Build", tasks=[Task("REQ-1", description="Ship it.")])],
        id_pattern="TASK-{id}",
        testing=_full_testing(),
    )

    result = AutoFixEngine().converge(document)

    assert result.executable
    assert result.fixes_applied == ["ID pattern corrected", "Task titles added"]
    assert result.iterations == 2
    assert document.id_pattern == "REQ-{id}"
    assert document.phases[0].tasks[0].title == "REQ 1"


def test_converge_is_noop_on_executable_document(executable_document: PrdDocument) -> None:
    before = copy.deepcopy(executable_document)

    result = AutoFixEngine().converge(executable_document)

    assert result.executable
    assert result.fixes_applied == []
    assert result.iterations == 0
    assert executable_document == before


def test_converge_twice_applies_nothing_the_second_time() -> None:
    document = PrdDocument(
        prd_id="",
        title="Nightly Sync",
        version="2.0.0",
        phases=[Phase(1, tasks=[Task("TASK-1", title="Sync")])],
    )
    engine = AutoFixEngine(context=FixContext(set_id=None))

    first = engine.converge(document)
    snapshot = copy.deepcopy(document)
    second = engine.converge(document)

    assert first.executable
    assert "PRD ID added" in first.fixes_applied
    assert document.prd_id == "nightly-sync"
    assert second.fixes_applied == []
    assert document == snapshot


def test_fix_catalog_order_is_fixed() -> None:
    assert [fixer.name for fixer in default_fix_catalog()] == [
        "id-pattern",
        "testing-config",
        "prd-id",
        "title",
        "phase-name",
        "task-title",
        "task-description",
        "empty-phase",
    ]


def test_each_iteration_applies_exactly_one_fix() -> None:
    """Fixes are applied one per validation pass in catalog priority order."""
    document = PrdDocument(
        prd_id="ops",
        title="",
        version="2.0.0",
        phases=[Phase(1, tasks=[]), Phase(2, name="Rollout", tasks=[Task("TASK-2.1")])],
        testing=TestingConfig(),
    )

    result = AutoFixEngine().converge(document, max_iterations=10)

    assert result.executable
    assert result.fixes_applied == [
        "Testing config updated",
        "Title added",
        "Phase names added",
        "Task titles added",
        "Task descriptions added",
        "Placeholder tasks added",
    ]
    assert result.iterations == len(result.fixes_applied)
    assert document.title == "Ops"
    assert document.phases[0].tasks[0].task_id == "1.1"
    assert document.testing == TestingConfig(
        directory="tests", framework="pytest", runner="pytest", command="pytest -q"
    )


@pytest.mark.parametrize("budget", [1, 2, 3])
def test_converge_stops_at_iteration_budget(budget: int) -> None:
    document = PrdDocument(
        prd_id="ops",
        title="",
        version="2.0.0",
        phases=[Phase(1, tasks=[Task("TASK-1.1")])],
    )

    result = AutoFixEngine().converge(document, max_iterations=budget)

    assert result.iterations <= budget
    assert len(result.fixes_applied) == result.iterations
    if not result.executable:
        assert result.exhausted


def test_converge_rejects_non_positive_budget(executable_document: PrdDocument) -> None:
    with pytest.raises(ValueError, match="max_iterations"):
        AutoFixEngine().converge(executable_document, max_iterations=0)


def test_fixer_that_reports_no_change_stops_the_loop() -> None:
    """A matching fixer that changes nothing is not counted and ends the run."""
    document = PrdDocument(prd_id="x", title="X", version="2.0.0", testing=_full_testing())
    calls: list[str] = []

    def _never_changes(doc: PrdDocument, context: FixContext) -> bool:
        calls.append(doc.prd_id)
        return False

    catalog = [Fixer("noop", "Nothing", lambda result: True, _never_changes)]

    result = AutoFixEngine().converge(document, fix_catalog=catalog)

    assert calls == ["x"]
    assert result.iterations == 0
    assert not result.exhausted


def test_strict_mode_fixes_warning_only_testing_gap() -> None:
    document = PrdDocument(
        prd_id="strict-prd",
        title="Strict",
        version="2.0.0",
        phases=[
            Phase(
                1,
                name="Only",
                tasks=[
                    Task(
                        "TASK-1",
                        title="Do",
                        description="Do it.",
                        test_strategy="unit",
                        validation_checklist=["done"],
                    )
                ],
            )
        ],
        testing=TestingConfig(directory="tests"),
    )

    lenient = AutoFixEngine().converge(copy.deepcopy(document))
    strict = AutoFixEngine(ExecutabilityScorer(strict=True)).converge(document)

    assert lenient.fixes_applied == []
    assert strict.fixes_applied == ["Testing config updated"]
    assert strict.executable
    assert strict.final_validation.score == 100


def test_fixes_record_id_patterns_and_write_each_iteration(tmp_path: Path) -> None:
    cache = PatternCache(tmp_path / "patterns.md")
    writer = PrdSetWriter(tmp_path / "out")
    document = PrdDocument(
        prd_id="req-prd",
        title="Requirements",
        version="2.0.0",
        phases=[Phase(1, name="Build", tasks=[Task("REQ-1", description="Ship it.")])],
        id_pattern="TASK-{id}",
        testing=_full_testing(),
    )
    engine = AutoFixEngine(context=FixContext(pattern_cache=cache), writer=writer)

    result = engine.converge(document)

    assert result.written_paths == [tmp_path / "out" / "req-prd" / "index.md"] * 2
    assert load_document(result.written_paths[-1]).phases[0].tasks[0].title == "REQ 1"
    common = cache.most_common()
    assert common is not None
    assert common.name == "REQ-{id}"


def test_converge_honours_cancellation() -> None:
    document = PrdDocument(prd_id="x", title="", version="2.0.0", phases=[Phase(1, tasks=[])])
    token = CancellationToken()
    token.cancel("stop")

    with pytest.raises(PipelineCancelled, match="stop"):
        AutoFixEngine().converge(document, cancel_token=token)


def test_humanize_identifier_splits_separators() -> None:
    assert humanize_identifier("user-auth_flow") == "User Auth Flow"
    assert humanize_identifier("--") == "Untitled"
