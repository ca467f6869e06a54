"""Gap detection over PRD documents and mapping of gaps to enhancement phases."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from prd_refinery.agent.models import (
    PHASE_KINDS,
    Gap,
    GapType,
    PhaseKind,
    PrdDocument,
    RubricError,
    ValidationResult,
)

logger = logging.getLogger(__name__)

SCHEMA_KEYWORDS: tuple[str, ...] = ("config", "configuration", "schema", "entity", "model")

GAP_PHASES: dict[GapType, PhaseKind] = {
    "missing-schema": "schema",
    "missing-test": "test",
    "missing-config": "feature",
}
PHASE_ERROR_TYPES: dict[PhaseKind, str] = {
    "schema": "missing-schema",
    "test": "missing-test",
    "feature": "missing-config",
}
FEATURE_TYPES: tuple[str, ...] = (
    "error-guidance",
    "context-file",
    "log-pattern",
    "framework-config",
)
_FEATURE_PREFERENCES: dict[str, tuple[str, ...]] = {
    "error guidance only": ("error-guidance",),
    "log patterns only": ("log-pattern",),
    "framework config only": ("framework-config",),
}


@dataclass(frozen=True)
class GapAnalysis:
    """Gaps found in a document, with counts."""

    gaps: list[Gap]
    summary: str

    @property
    def critical(self) -> int:
        """Return the number of critical gaps."""
        return sum(1 for gap in self.gaps if gap.severity == "critical")

    @property
    def high_priority(self) -> int:
        """Return the number of critical or high gaps."""
        return sum(1 for gap in self.gaps if gap.severity in {"critical", "high"})


def analyze_gaps(
    document: PrdDocument,
    *,
    existing_schemas: Iterable[str] = (),
    existing_tests: Iterable[str] = (),
) -> GapAnalysis:
    """Detect deficiencies that enhancement phases could remediate."""
    schemas = set(existing_schemas) | {
        str(item.get("id")) for item in document.schemas if item.get("id")
    }
    tests = set(existing_tests)
    gaps: list[Gap] = []

    if not document.phases:
        gaps.append(
            Gap(
                "incomplete-phase",
                "critical",
                "PRD has no phases",
                "Add at least one phase to the PRD",
            )
        )

    task_ids = {task.task_id for task in document.all_tasks()}
    phase_ids = {phase.phase_id for phase in document.phases}
    for phase in document.phases:
        if not phase.tasks:
            gaps.append(
                Gap(
                    "incomplete-phase",
                    "high",
                    f"Phase {phase.phase_id} has no tasks",
                    f"Add tasks to phase {phase.phase_id} or remove phase if not needed",
                    affected_phase=phase.phase_id,
                )
            )
        for dep in phase.depends_on:
            if dep not in phase_ids:
                gaps.append(
                    Gap(
                        "missing-dependency",
                        "high",
                        f"Phase {phase.phase_id} depends on non-existent phase {dep}",
                        f"Remove invalid dependency or add missing phase {dep}",
                        affected_phase=phase.phase_id,
                    )
                )
        for task in phase.tasks:
            text = f"{task.title} {task.description}".lower()
            if any(keyword in text for keyword in SCHEMA_KEYWORDS) and not (
                {f"{task.task_id}-schema", task.task_id} & schemas
            ):
                gaps.append(
                    Gap(
                        "missing-schema",
                        "high",
                        f'Task "{task.title or task.task_id}" requires a schema definition '
                        "but none exists",
                        f"Generate schema definition for {task.task_id}",
                        affected_phase=phase.phase_id,
                        affected_task=task.task_id,
                    )
                )
            if not ({f"test-{task.task_id}", task.task_id} & tests):
                if not task.test_strategy:
                    gaps.append(
                        Gap(
                            "missing-test",
                            "high",
                            f'Task "{task.title or task.task_id}" has no test plan or strategy',
                            f"Generate test plan for {task.task_id} "
                            "with cases and expected results",
                            affected_phase=phase.phase_id,
                            affected_task=task.task_id,
                        )
                    )
                elif not task.validation_checklist:
                    gaps.append(
                        Gap(
                            "missing-test",
                            "medium",
                            f'Task "{task.title or task.task_id}" has test strategy '
                            "but no validation checklist",
                            f"Add validation checklist to task {task.task_id}",
                            affected_phase=phase.phase_id,
                            affected_task=task.task_id,
                        )
                    )
            if not task.title.strip():
                gaps.append(
                    Gap(
                        "incomplete-task",
                        "critical",
                        f"Task {task.task_id} is missing a title",
                        f"Add title to task {task.task_id}",
                        affected_phase=phase.phase_id,
                        affected_task=task.task_id,
                    )
                )
            if not task.description.strip():
                gaps.append(
                    Gap(
                        "incomplete-task",
                        "high",
                        f"Task {task.task_id} is missing a description",
                        f"Add description to task {task.task_id}",
                        affected_phase=phase.phase_id,
                        affected_task=task.task_id,
                    )
                )
            for dep in task.dependencies:
                if dep not in task_ids:
                    gaps.append(
                        Gap(
                            "missing-dependency",
                            "high",
                            f"Task {task.task_id} depends on non-existent task {dep}",
                            f"Remove invalid dependency or add missing task {dep}",
                            affected_phase=phase.phase_id,
                            affected_task=task.task_id,
                        )
                    )

    if not document.config_overlay:
        gaps.append(
            Gap(
                "missing-config",
                "medium",
                "PRD is missing config overlay",
                "Add config overlay to PRD for framework-specific configuration",
            )
        )
    if document.testing is None:
        gaps.append(
            Gap(
                "missing-config",
                "high",
                "PRD is missing testing configuration",
                "Add testing configuration (directory, runner, command) to PRD",
            )
        )
    elif not document.testing.directory.strip():
        gaps.append(
            Gap(
                "missing-config",
                "high",
                "PRD testing configuration is missing directory",
                "Add testing.directory to PRD configuration",
            )
        )
    if document.dependencies is not None:
        for module in document.dependencies.external_modules:
            if not module.strip():
                gaps.append(
                    Gap(
                        "missing-dependency",
                        "low",
                        "Empty external module dependency",
                        "Remove empty dependency or specify module name",
                    )
                )

    analysis = GapAnalysis(gaps=gaps, summary=_summarize(gaps))
    logger.debug(
        "Found %d gap(s): %d critical, %d high priority",
        len(gaps),
        analysis.critical,
        analysis.high_priority,
    )
    return analysis


def enhancement_types_for_gaps(gaps: Iterable[Gap]) -> tuple[PhaseKind, ...]:
    """Return the enhancement phases that can remediate gaps, in phase order."""
    wanted = {GAP_PHASES[gap.gap_type] for gap in gaps if gap.gap_type in GAP_PHASES}
    return tuple(kind for kind in PHASE_KINDS if kind in wanted)


def errors_for_phase(validation: ValidationResult, phase: PhaseKind) -> list[RubricError]:
    """Return rubric errors that the given enhancement phase is responsible for."""
    error_type = PHASE_ERROR_TYPES[phase]
    return [error for error in validation.errors if error.error_type == error_type]


def feature_types_for_preference(preference: str | Sequence[str] | bool | None) -> tuple[str, ...]:
    """Map a feature-type answer to the feature enhancement types to generate."""
    if isinstance(preference, str):
        lowered = preference.lower()
        for label, types in _FEATURE_PREFERENCES.items():
            if label in lowered:
                return types
        return FEATURE_TYPES
    if isinstance(preference, (list, tuple)):
        chosen = tuple(item for item in FEATURE_TYPES if item in preference)
        return chosen or FEATURE_TYPES
    return FEATURE_TYPES


def _summarize(gaps: list[Gap]) -> str:
    if not gaps:
        return "No gaps detected."
    lines = [f"Found {len(gaps)} gap(s).", "Gaps by type:"]
    for gap_type, count in Counter(gap.gap_type for gap in gaps).items():
        lines.append(f"  - {gap_type}: {count}")
    return "\n".join(lines)
