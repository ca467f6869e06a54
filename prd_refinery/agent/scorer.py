"""Executability rubric scoring for PRD documents."""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Any, assert_never

from prd_refinery.agent.dependency_graph import find_back_edges
from prd_refinery.agent.models import (
    DEFAULT_VERSION,
    Enhancement,
    EnhancementSet,
    PrdDocument,
    RubricError,
    RubricWarning,
    Severity,
    ValidationResult,
)

logger = logging.getLogger(__name__)

SEVERITY_WEIGHTS: dict[Severity, int] = {"critical": 20, "high": 10, "medium": 5, "low": 2}
STRICT_WARNING_WEIGHT = 2
DEFAULT_ID_PATTERN = "TASK-{id}"
LOW_SCHEMA_CONFIDENCE = 0.5
MIN_TEST_COVERAGE = 50

KNOWN_CONFIG_KEYS: frozenset[str] = frozenset(
    {
        "debug",
        "metrics",
        "ai",
        "templates",
        "testing",
        "validation",
        "logs",
        "intervention",
        "taskMaster",
        "hooks",
        "rules",
        "codebase",
        "framework",
        "context",
        "preValidation",
        "patternLearning",
        "autonomous",
        "browser",
        "prd",
        "testGeneration",
        "scan",
        "cursor",
        "aiPatterns",
        "ast",
        "playwrightMCP",
        "documentation",
        "security",
        "style",
        "health",
        "refactoring",
    }
)
SCALAR_CONFIG_KEYS: frozenset[str] = frozenset({"debug"})

_PREFIX_PATTERN = re.compile(r"^([A-Z]+)-")


def detect_id_pattern(task_id: str) -> str:
    """Detect the id pattern of a task id from its uppercase prefix.

    ``REQ-1.1`` yields ``REQ-{id}``; ids without such prefix yield ``TASK-{id}``.
    """
    match = _PREFIX_PATTERN.match(task_id)
    if match:
        return f"{match.group(1)}-{{id}}"
    return DEFAULT_ID_PATTERN


def id_matches_pattern(task_id: str, id_pattern: str) -> bool:
    """Return whether a task id matches a declared ``PREFIX{id}`` pattern."""
    prefix = id_pattern.split("{id}")[0]
    return task_id.startswith(prefix) and len(task_id) > len(prefix)


class ExecutabilityScorer:
    """Apply the ordered executability rubric to a PRD document.

    ``executable`` is derived from the absence of errors (and of warnings in
    strict mode). The numeric score is a diagnostic that reaches 100 exactly
    when the same condition holds.
    """

    def __init__(self, *, strict: bool = False) -> None:
        self.strict = strict

    def validate(
        self,
        document: PrdDocument,
        enhancements: EnhancementSet | None = None,
    ) -> ValidationResult:
        """Score a document, optionally including enhancement checks."""
        errors: list[RubricError] = []
        warnings: list[RubricWarning] = []

        self._check_required_fields(document, errors, warnings)
        self._check_config_overlay(document, errors, warnings)
        self._check_phases_and_tasks(document, errors, warnings)
        self._check_id_pattern(document, errors)
        if enhancements is not None:
            self._check_enhancement_set(enhancements, document, errors, warnings)
        self._check_dependency_descriptor(document, warnings)
        self._check_testing(document, errors, warnings)

        score = self._score(errors, warnings)
        executable = not errors and (not self.strict or not warnings)
        summary = build_summary(errors, warnings, score, executable, strict=self.strict)
        logger.debug(
            "Validated %s: score=%d errors=%d warnings=%d",
            document.prd_id or "<unnamed>",
            score,
            len(errors),
            len(warnings),
        )
        return ValidationResult(
            executable=executable,
            score=score,
            errors=tuple(errors),
            warnings=tuple(warnings),
            summary=summary,
        )

    def _score(self, errors: list[RubricError], warnings: list[RubricWarning]) -> int:
        """Deduct severity-weighted penalties from a perfect score."""
        score = 100
        for error in errors:
            score -= SEVERITY_WEIGHTS[error.severity]
        if self.strict:
            score -= STRICT_WARNING_WEIGHT * len(warnings)
        return max(0, min(100, score))

    @staticmethod
    def _check_required_fields(
        document: PrdDocument,
        errors: list[RubricError],
        warnings: list[RubricWarning],
    ) -> None:
        """Check the document-level required fields and that some phase exists."""
        if not document.prd_id.strip():
            errors.append(
                RubricError(
                    "invalid-structure",
                    "critical",
                    "PRD ID is required",
                    suggestion="Add prd.id to PRD front matter",
                )
            )
        if not document.title.strip():
            errors.append(
                RubricError(
                    "invalid-structure",
                    "high",
                    "PRD title is required",
                    suggestion="Add prd.title to PRD front matter",
                )
            )
        if not document.version.strip():
            errors.append(
                RubricError(
                    "invalid-structure",
                    "high",
                    "PRD version is required",
                    suggestion="Set prd.version in PRD front matter",
                )
            )
        elif document.version == DEFAULT_VERSION:
            warnings.append(
                RubricWarning(
                    "optimization-opportunity",
                    f"PRD version is default ({DEFAULT_VERSION}), "
                    "consider setting explicit version",
                    suggestion="Set prd.version in PRD front matter",
                )
            )
        if not document.phases:
            errors.append(
                RubricError(
                    "invalid-structure",
                    "critical",
                    "PRD must have at least one phase",
                    suggestion="Add at least one phase to the PRD",
                )
            )

    @staticmethod
    def _check_config_overlay(
        document: PrdDocument,
        errors: list[RubricError],
        warnings: list[RubricWarning],
    ) -> None:
        """Check that the config overlay is a mapping of feature switches."""
        overlay: Any = document.config_overlay
        if overlay is None:
            return
        if not isinstance(overlay, dict):
            errors.append(
                RubricError(
                    "invalid-config",
                    "high",
                    "[prd] config: Expected a mapping",
                    suggestion="Review config overlay structure and fix validation errors",
                )
            )
            return
        for key, value in overlay.items():
            if key not in KNOWN_CONFIG_KEYS:
                warnings.append(
                    RubricWarning(
                        "optimization-opportunity",
                        f"[prd] Unknown config key: {key} (allowed but may be a typo)",
                        suggestion="Review config keys for typos or deprecated options",
                    )
                )
                continue
            if key in SCALAR_CONFIG_KEYS or value is None or isinstance(value, dict):
                continue
            errors.append(
                RubricError(
                    "invalid-config",
                    "high",
                    f"[prd] {key}: Expected a mapping",
                    suggestion="Review config overlay structure and fix validation errors",
                )
            )

    @staticmethod
    def _check_phases_and_tasks(
        document: PrdDocument,
        errors: list[RubricError],
        warnings: list[RubricWarning],
    ) -> None:
        """Check every phase and task for structure and dependency references."""
        if not document.phases:
            return
        all_phase_ids = {phase.phase_id for phase in document.phases}
        all_task_ids = {task.task_id for task in document.all_tasks()}
        seen_phases: set[int] = set()
        seen_tasks: set[str] = set()

        for phase in document.phases:
            if phase.phase_id in seen_phases:
                errors.append(
                    RubricError(
                        "invalid-structure",
                        "critical",
                        f"Duplicate phase ID: {phase.phase_id}",
                        phase=phase.phase_id,
                        suggestion="Ensure each phase has a unique ID",
                    )
                )
            seen_phases.add(phase.phase_id)

            if not phase.name.strip():
                errors.append(
                    RubricError(
                        "invalid-structure",
                        "high",
                        f"Phase {phase.phase_id} is missing a name",
                        phase=phase.phase_id,
                        suggestion="Add name to phase",
                    )
                )
            if not phase.tasks:
                errors.append(
                    RubricError(
                        "invalid-structure",
                        "high",
                        f"Phase {phase.phase_id} has no tasks",
                        phase=phase.phase_id,
                        suggestion="Add tasks to phase or remove phase if not needed",
                    )
                )

            for task in phase.tasks:
                if task.task_id in seen_tasks:
                    errors.append(
                        RubricError(
                            "invalid-structure",
                            "critical",
                            f"Duplicate task ID: {task.task_id}",
                            phase=phase.phase_id,
                            task=task.task_id,
                            suggestion="Ensure each task has a unique ID",
                        )
                    )
                seen_tasks.add(task.task_id)
                if not task.title.strip():
                    errors.append(
                        RubricError(
                            "invalid-structure",
                            "high",
                            f"Task {task.task_id} is missing a title",
                            phase=phase.phase_id,
                            task=task.task_id,
                            suggestion="Add title to task",
                        )
                    )
                if not task.description.strip():
                    errors.append(
                        RubricError(
                            "invalid-structure",
                            "high",
                            f"Task {task.task_id} is missing a description",
                            phase=phase.phase_id,
                            task=task.task_id,
                            suggestion="Add description to task",
                        )
                    )
                if not task.test_strategy:
                    warnings.append(
                        RubricWarning(
                            "optimization-opportunity",
                            f"Task {task.task_id} is missing test strategy",
                            phase=phase.phase_id,
                            task=task.task_id,
                            suggestion="Add testStrategy to task for better test generation",
                        )
                    )
                if not task.validation_checklist:
                    warnings.append(
                        RubricWarning(
                            "optimization-opportunity",
                            f"Task {task.task_id} is missing validation checklist",
                            phase=phase.phase_id,
                            task=task.task_id,
                            suggestion="Add validationChecklist to task for better validation",
                        )
                    )
                for dep in task.dependencies:
                    if dep not in all_task_ids:
                        errors.append(
                            RubricError(
                                "invalid-structure",
                                "high",
                                f"Task {task.task_id} in phase {phase.phase_id} depends on "
                                f"non-existent task {dep}",
                                phase=phase.phase_id,
                                task=task.task_id,
                                suggestion="Remove invalid dependency or add missing task",
                            )
                        )

            for dep_id in phase.depends_on:
                if dep_id not in all_phase_ids:
                    errors.append(
                        RubricError(
                            "invalid-structure",
                            "high",
                            f"Phase {phase.phase_id} depends on non-existent phase {dep_id}",
                            phase=phase.phase_id,
                            suggestion="Remove invalid dependency or add missing phase",
                        )
                    )

        max_phase_id = max(all_phase_ids, default=0)
        for missing_id in range(1, max_phase_id + 1):
            if missing_id not in all_phase_ids:
                warnings.append(
                    RubricWarning(
                        "optimization-opportunity",
                        f"Missing phase ID {missing_id} (gap in sequence)",
                        suggestion="Consider renumbering phases to remove gaps",
                    )
                )
        _check_phase_sequencing(document, warnings)
        _check_cycles(document, errors)

    @staticmethod
    def _check_id_pattern(document: PrdDocument, errors: list[RubricError]) -> None:
        """Check that task ids follow the declared id pattern."""
        id_pattern = document.id_pattern
        if not id_pattern:
            return
        for phase in document.phases:
            for task in phase.tasks:
                if id_matches_pattern(task.task_id, id_pattern):
                    continue
                errors.append(
                    RubricError(
                        "invalid-structure",
                        "high",
                        f'Task ID "{task.task_id}" does not match idPattern "{id_pattern}"',
                        phase=phase.phase_id,
                        task=task.task_id,
                        suggestion=(
                            "Update idPattern to match actual task ID format "
                            f'(e.g., "{detect_id_pattern(task.task_id)}")'
                        ),
                    )
                )

    def _check_enhancement_set(
        self,
        enhancements: EnhancementSet,
        document: PrdDocument,
        errors: list[RubricError],
        warnings: list[RubricWarning],
    ) -> None:
        """Warn on absent schema or test enhancements and check each present one."""
        if enhancements.schema is None:
            warnings.append(
                RubricWarning(
                    "missing-optional",
                    "Schema enhancements not provided",
                    suggestion="Consider running schema enhancement to improve PRD quality",
                )
            )
        if enhancements.test is None:
            warnings.append(
                RubricWarning(
                    "missing-optional",
                    "Test planning not provided",
                    suggestion="Consider running test planning to improve PRD quality",
                )
            )
        for enhancement in (enhancements.schema, enhancements.test, enhancements.feature):
            if enhancement is not None:
                check_enhancement(enhancement, document, errors, warnings)

    @staticmethod
    def _check_dependency_descriptor(
        document: PrdDocument, warnings: list[RubricWarning]
    ) -> None:
        """Warn about empty entries in the dependency descriptor."""
        descriptor = document.dependencies
        if descriptor is None:
            return
        checks = (
            (descriptor.external_modules, "Empty external module dependency", "module name"),
            (descriptor.prds, "Empty PRD dependency", "PRD ID"),
            (descriptor.code_requirements, "Empty code requirement", "requirement"),
        )
        for entries, message, subject in checks:
            for entry in entries:
                if not entry.strip():
                    warnings.append(
                        RubricWarning(
                            "optimization-opportunity",
                            message,
                            suggestion=f"Remove empty entry or specify {subject}",
                        )
                    )

    @staticmethod
    def _check_testing(
        document: PrdDocument,
        errors: list[RubricError],
        warnings: list[RubricWarning],
    ) -> None:
        """Check the testing descriptor; a missing one is only a warning."""
        testing = document.testing
        if testing is None:
            warnings.append(
                RubricWarning(
                    "missing-optional",
                    "PRD is missing testing configuration",
                    suggestion="Add testing configuration (directory, runner, command) to PRD",
                )
            )
            return
        if not testing.directory.strip():
            errors.append(
                RubricError(
                    "invalid-config",
                    "high",
                    "Testing directory is required",
                    suggestion="Add testing.directory to PRD configuration",
                )
            )
        if not testing.framework:
            warnings.append(
                RubricWarning(
                    "missing-optional",
                    "Testing framework not specified",
                    suggestion="Add testing.framework from project config",
                )
            )
        if not testing.runner:
            warnings.append(
                RubricWarning(
                    "missing-optional",
                    "Test runner not specified",
                    suggestion="Add testing.runner (pytest, playwright, jest, ...) to PRD",
                )
            )
        if not testing.command:
            warnings.append(
                RubricWarning(
                    "missing-optional",
                    "Test command not specified",
                    suggestion='Add testing.command (e.g., "pytest -q") to PRD',
                )
            )


def check_enhancement(
    enhancement: Enhancement,
    document: PrdDocument,
    errors: list[RubricError],
    warnings: list[RubricWarning],
) -> None:
    """Contribute the rubric findings specific to one enhancement kind."""
    if enhancement.kind == "schema":
        if not enhancement.schemas:
            warnings.append(
                RubricWarning(
                    "missing-optional",
                    "No schema enhancements generated",
                    suggestion="Consider adding schema definitions for better type safety",
                )
            )
        elif enhancement.confidence < LOW_SCHEMA_CONFIDENCE:
            warnings.append(
                RubricWarning(
                    "optimization-opportunity",
                    "Low confidence in schema enhancements "
                    f"({round(enhancement.confidence * 100)}%)",
                    suggestion="Review generated schemas and refine based on codebase patterns",
                )
            )
        known = {schema.schema_id for schema in enhancement.schemas}
        for schema in enhancement.schemas:
            for related in schema.related_schemas:
                if related not in known:
                    warnings.append(
                        RubricWarning(
                            "optimization-opportunity",
                            f"Schema {schema.schema_id} references non-existent schema: {related}",
                            suggestion="Remove invalid schema reference or add missing schema",
                        )
                    )
    elif enhancement.kind == "test":
        coverage = enhancement.coverage
        if coverage.coverage_percentage < 100:
            warnings.append(
                RubricWarning(
                    "optimization-opportunity",
                    f"Test coverage is {coverage.coverage_percentage}% "
                    f"({coverage.tasks_with_tests}/{coverage.total_tasks} tasks have tests)",
                    suggestion="Generate test plans for all tasks to achieve 100% coverage",
                )
            )
        if coverage.coverage_percentage < MIN_TEST_COVERAGE:
            errors.append(
                RubricError(
                    "missing-test",
                    "high",
                    f"Low test coverage: {coverage.coverage_percentage}%",
                    suggestion=f"Generate test plans for at least {MIN_TEST_COVERAGE}% of tasks",
                )
            )
        task_ids = {task.task_id for task in document.all_tasks()}
        for plan in enhancement.test_plans:
            if plan.task_id and plan.task_id not in task_ids:
                errors.append(
                    RubricError(
                        "missing-test",
                        "high",
                        f"Test plan references non-existent task: {plan.task_id}",
                        task=plan.task_id,
                        suggestion="Remove invalid task reference or add missing task",
                    )
                )
            for dep in plan.dependencies:
                if dep not in task_ids:
                    errors.append(
                        RubricError(
                            "missing-test",
                            "medium",
                            f"Test plan for task {plan.task_id} "
                            f"depends on non-existent task: {dep}",
                            task=plan.task_id,
                            suggestion="Remove invalid dependency or add missing task",
                        )
                    )
    elif enhancement.kind == "feature":
        if not enhancement.enhancements:
            warnings.append(
                RubricWarning(
                    "missing-optional",
                    "No feature enhancements generated",
                    suggestion="Consider adding feature configurations",
                )
            )
    else:
        assert_never(enhancement)


def _check_phase_sequencing(document: PrdDocument, warnings: list[RubricWarning]) -> None:
    """Warn about forward phase dependencies and out-of-order phase ids."""
    for phase in document.phases:
        future = [dep for dep in phase.depends_on if dep > phase.phase_id]
        if future:
            warnings.append(
                RubricWarning(
                    "optimization-opportunity",
                    f"Phase {phase.phase_id} depends on future phase(s) "
                    f"{', '.join(str(dep) for dep in future)} - consider reordering",
                    phase=phase.phase_id,
                    suggestion="Earlier phases should not depend on later phases",
                )
            )
    for current, following in zip(document.phases, document.phases[1:]):
        if current.phase_id > following.phase_id:
            warnings.append(
                RubricWarning(
                    "optimization-opportunity",
                    "Phases are not in sequential order "
                    f"(phase {current.phase_id} comes before {following.phase_id})",
                    phase=current.phase_id,
                    suggestion="Reorder phases so phase IDs are sequential (1, 2, 3, ...)",
                )
            )


def _check_cycles(document: PrdDocument, errors: list[RubricError]) -> None:
    """Report dependency cycles among phases and among tasks."""
    phase_graph = {phase.phase_id: list(phase.depends_on) for phase in document.phases}
    phase_cycles = find_back_edges(phase_graph)
    if phase_cycles:
        source, target = phase_cycles[0]
        errors.append(
            RubricError(
                "invalid-structure",
                "critical",
                "Circular dependency detected in phase dependencies "
                f"(phase {source} -> phase {target})",
                phase=source,
                suggestion="Phase dependencies must form a directed acyclic graph",
            )
        )
    task_graph = {task.task_id: list(task.dependencies) for task in document.all_tasks()}
    task_cycles = find_back_edges(task_graph)
    if task_cycles:
        source, target = task_cycles[0]
        errors.append(
            RubricError(
                "invalid-structure",
                "critical",
                "Circular dependency detected in task dependencies "
                f"(task {source} -> task {target})",
                task=source,
                suggestion="Task dependencies must form a directed acyclic graph",
            )
        )


def build_summary(
    errors: list[RubricError],
    warnings: list[RubricWarning],
    score: int,
    executable: bool,
    *,
    strict: bool = False,
) -> str:
    """Render a human-readable validation summary."""
    lines = [
        f"Executability Score: {score}/100",
        f"Status: {'EXECUTABLE' if executable else 'NOT EXECUTABLE'}",
    ]
    if not errors and not warnings:
        lines.append("PRD is fully executable.")
        return "\n".join(lines)
    if errors:
        lines.append(f"Errors: {len(errors)}")
        for severity, count in Counter(error.severity for error in errors).items():
            lines.append(f"  - {count} {severity} severity error(s)")
    if warnings:
        lines.append(f"Warnings: {len(warnings)}")
        for warning_type, count in Counter(item.warning_type for item in warnings).items():
            lines.append(f"  - {count} {warning_type} warning(s)")
    if warnings and not strict and not errors:
        lines.append("Warnings are advisory and do not block execution.")
    return "\n".join(lines)
