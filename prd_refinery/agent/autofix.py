"""Bounded auto-fix loop that drives a PRD toward executability."""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Protocol

from prd_refinery.agent.cancellation import CancellationToken
from prd_refinery.agent.config_validation import require_positive_int
from prd_refinery.agent.models import (
    EnhancementSet,
    PrdDocument,
    Task,
    TestingConfig,
    ValidationResult,
)
from prd_refinery.agent.pattern_cache import PatternCache
from prd_refinery.agent.scorer import ExecutabilityScorer, detect_id_pattern

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 5


def default_testing() -> TestingConfig:
    """Return the testing descriptor used when no project defaults are configured."""
    return TestingConfig(
        directory="tests", framework="pytest", runner="pytest", command="pytest -q"
    )


class DocumentWriter(Protocol):
    """Serializes a document to its persisted form."""

    def write(self, document: PrdDocument) -> Path:
        """Persist document and return the written path."""


@dataclass(frozen=True)
class FixContext:
    """Inputs fixers may draw on besides the document itself."""

    set_id: str | None = None
    testing_defaults: TestingConfig = field(default_factory=default_testing)
    pattern_cache: PatternCache | None = None


@dataclass(frozen=True)
class Fixer:
    """A narrow structural fix guarded by a precondition on validation output.

    ``apply`` returns True only when it changed the document, so re-running a
    fixer on an already-fixed document is a detectable no-op.
    """

    name: str
    description: str
    precondition: Callable[[ValidationResult], bool]
    apply: Callable[[PrdDocument, FixContext], bool]


@dataclass(frozen=True)
class AutoFixResult:
    """Outcome of a convergence run."""

    executable: bool
    fixes_applied: list[str]
    final_validation: ValidationResult
    iterations: int
    exhausted: bool = False
    written_paths: list[Path] = field(default_factory=list)


def humanize_identifier(identifier: str) -> str:
    """Turn an id such as ``user-auth_flow`` into ``User Auth Flow``."""
    words = [word for word in re.split(r"[-_.\s]+", identifier) if word]
    if not words:
        return "Untitled"
    return " ".join(word[:1].upper() + word[1:] for word in words)


def slugify(text: str) -> str:
    """Return a lowercase dash-separated slug."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug


def _has_error(result: ValidationResult, error_type: str, *needles: str) -> bool:
    return any(
        error.error_type == error_type and any(needle in error.message for needle in needles)
        for error in result.errors
    )


def _needs_id_pattern_fix(result: ValidationResult) -> bool:
    return _has_error(result, "invalid-structure", "ID pattern", "idPattern", "does not match")


def _needs_testing_fix(result: ValidationResult) -> bool:
    if _has_error(result, "invalid-config", "testing", "framework", "Testing directory"):
        return True
    return any(
        warning.warning_type == "missing-optional" and "testing" in warning.message.lower()
        for warning in result.warnings
    )


def _needs_prd_id_fix(result: ValidationResult) -> bool:
    return _has_error(result, "invalid-structure", "PRD ID is required")


def _needs_title_fix(result: ValidationResult) -> bool:
    return _has_error(result, "invalid-structure", "title is required")


def _needs_phase_name_fix(result: ValidationResult) -> bool:
    return _has_error(result, "invalid-structure", "missing a name")


def _needs_task_title_fix(result: ValidationResult) -> bool:
    return _has_error(result, "invalid-structure", "missing a title")


def _needs_task_description_fix(result: ValidationResult) -> bool:
    return _has_error(result, "invalid-structure", "missing a description")


def _needs_empty_phase_fix(result: ValidationResult) -> bool:
    return _has_error(result, "invalid-structure", "has no tasks")


def fix_id_pattern(document: PrdDocument, context: FixContext) -> bool:
    """Replace the declared id pattern with the one most task ids use."""
    tasks = document.all_tasks()
    if not tasks:
        return False
    detected = Counter(detect_id_pattern(task.task_id) for task in tasks)
    pattern, _ = detected.most_common(1)[0]
    if document.id_pattern == pattern:
        return False
    logger.info("Correcting idPattern %r -> %r", document.id_pattern, pattern)
    document.id_pattern = pattern
    if context.pattern_cache is not None:
        context.pattern_cache.record(
            pattern, f"Task ids in {document.prd_id or 'PRD'} follow {pattern}."
        )
    return True


def fix_testing_config(document: PrdDocument, context: FixContext) -> bool:
    """Fill empty testing descriptor fields from configured defaults."""
    defaults = context.testing_defaults
    testing = document.testing
    if testing is None:
        testing = TestingConfig()
    changed = document.testing is None
    for name in ("directory", "framework", "runner", "command"):
        if not getattr(testing, name).strip() and getattr(defaults, name):
            setattr(testing, name, getattr(defaults, name))
            changed = True
    if changed:
        document.testing = testing
    return changed


def fix_prd_id(document: PrdDocument, context: FixContext) -> bool:
    """Assign a PRD id from the set id or the slugified title."""
    if document.prd_id.strip():
        return False
    candidate = (context.set_id or "").strip() or slugify(document.title)
    if not candidate:
        return False
    document.prd_id = candidate
    return True


def fix_title(document: PrdDocument, context: FixContext) -> bool:
    """Derive a title from the PRD id."""
    if document.title.strip() or not document.prd_id.strip():
        return False
    document.title = humanize_identifier(document.prd_id)
    return True


def fix_phase_names(document: PrdDocument, context: FixContext) -> bool:
    """Name every unnamed phase after its id."""
    changed = False
    for phase in document.phases:
        if not phase.name.strip():
            phase.name = f"Phase {phase.phase_id}"
            changed = True
    return changed


def fix_task_titles(document: PrdDocument, context: FixContext) -> bool:
    """Derive a title for every untitled task from its id."""
    changed = False
    for task in document.all_tasks():
        if not task.title.strip():
            task.title = humanize_identifier(task.task_id)
            changed = True
    return changed


def fix_task_descriptions(document: PrdDocument, context: FixContext) -> bool:
    """Give every task without a description one derived from its title."""
    changed = False
    for task in document.all_tasks():
        if not task.description.strip():
            subject = task.title.strip() or humanize_identifier(task.task_id)
            task.description = f"Implement {subject}."
            changed = True
    return changed


def fix_empty_phases(document: PrdDocument, context: FixContext) -> bool:
    """Insert a placeholder task into every phase that has none."""
    existing = {task.task_id for task in document.all_tasks()}
    prefix = (document.id_pattern or "").split("{id}")[0]
    changed = False
    for phase in document.phases:
        if phase.tasks:
            continue
        task_id = f"{prefix}{phase.phase_id}.1"
        suffix = 1
        while task_id in existing:
            suffix += 1
            task_id = f"{prefix}{phase.phase_id}.{suffix}"
        existing.add(task_id)
        name = phase.name.strip() or f"Phase {phase.phase_id}"
        phase.tasks.append(
            Task(
                task_id=task_id,
                title=f"{name} setup",
                description=f"Placeholder task for {name}; replace with concrete work.",
            )
        )
        changed = True
    return changed


def default_fix_catalog() -> list[Fixer]:
    """Return fixers in their fixed priority order."""
    return [
        Fixer("id-pattern", "ID pattern corrected", _needs_id_pattern_fix, fix_id_pattern),
        Fixer("testing-config", "Testing config updated", _needs_testing_fix, fix_testing_config),
        Fixer("prd-id", "PRD ID added", _needs_prd_id_fix, fix_prd_id),
        Fixer("title", "Title added", _needs_title_fix, fix_title),
        Fixer("phase-name", "Phase names added", _needs_phase_name_fix, fix_phase_names),
        Fixer("task-title", "Task titles added", _needs_task_title_fix, fix_task_titles),
        Fixer(
            "task-description",
            "Task descriptions added",
            _needs_task_description_fix,
            fix_task_descriptions,
        ),
        Fixer("empty-phase", "Placeholder tasks added", _needs_empty_phase_fix, fix_empty_phases),
    ]


class AutoFixEngine:
    """Validate, apply the first applicable fixer, and re-validate until done."""

    def __init__(
        self,
        scorer: ExecutabilityScorer | None = None,
        *,
        context: FixContext | None = None,
        writer: DocumentWriter | None = None,
    ) -> None:
        self.scorer = scorer or ExecutabilityScorer()
        self.context = context or FixContext()
        self.writer = writer

    def converge(
        self,
        document: PrdDocument,
        fix_catalog: Sequence[Fixer] | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        enhancements: EnhancementSet | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> AutoFixResult:
        """Apply fixes one at a time until the document is executable or progress stalls.

        Each loop body applies exactly one fixer, so the number of fixes equals
        the number of iterations and never exceeds ``max_iterations``.
        """
        require_positive_int(max_iterations, "max_iterations")
        catalog = list(fix_catalog) if fix_catalog is not None else default_fix_catalog()
        fixes_applied: list[str] = []
        written: list[Path] = []
        iterations = 0

        validation = self.scorer.validate(document, enhancements)
        while not validation.executable and iterations < max_iterations:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            fixer = self._apply_first(document, validation, catalog)
            if fixer is None:
                logger.info("No applicable fixer for %s; stopping", document.prd_id or "PRD")
                break
            fixes_applied.append(fixer.description)
            iterations += 1
            logger.info("Iteration %d: %s", iterations, fixer.description)
            if self.writer is not None:
                written.append(self.writer.write(document))
            validation = self.scorer.validate(document, enhancements)

        exhausted = not validation.executable and iterations >= max_iterations
        if validation.executable:
            logger.info(
                "%s executable after %d fix iteration(s)", document.prd_id or "PRD", iterations
            )
        else:
            logger.warning(
                "%s not executable after %d iteration(s); score %d; remaining: %s",
                document.prd_id or "PRD",
                iterations,
                validation.score,
                "; ".join(error.message for error in validation.errors[:5]),
            )
        return AutoFixResult(
            executable=validation.executable,
            fixes_applied=fixes_applied,
            final_validation=validation,
            iterations=iterations,
            exhausted=exhausted,
            written_paths=written,
        )

    def _apply_first(
        self,
        document: PrdDocument,
        validation: ValidationResult,
        catalog: Sequence[Fixer],
    ) -> Fixer | None:
        """Apply the first fixer whose precondition holds and which changes the document."""
        if not self.scorer.strict:
            # Lenient warnings never block execution, so they never select a fixer.
            validation = replace(validation, warnings=())
        for fixer in catalog:
            if not fixer.precondition(validation):
                continue
            if fixer.apply(document, self.context):
                return fixer
            logger.debug("Fixer %s matched but made no change", fixer.name)
        return None
