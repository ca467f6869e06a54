"""Codebase insights and pre/mid/post phase clarifying questions."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

from prd_refinery.agent.gap_analysis import errors_for_phase
from prd_refinery.agent.models import (
    ConversationContext,
    Enhancement,
    PhaseKind,
    PrdDocument,
    Question,
    ValidationResult,
)

logger = logging.getLogger(__name__)

InsightType = Literal["pattern", "file", "schema", "test", "config"]

LOW_CONFIDENCE_THRESHOLD = 0.7
MIN_TEST_CASES = 2
MIN_SCHEMA_CONTENT = 100
MANY_TASKS = 5

_PATH_TOKEN = re.compile(r"[\w./-]+\.[A-Za-z]{2,5}\b")
_SCHEMA_HINTS = ("schema", "model", "entity", ".sql", ".graphql", ".proto")
_TEST_HINTS = ("test_", "_test.", ".test.", ".spec.", "tests/", "conftest")
_CONFIG_HINTS = (".yml", ".yaml", ".toml", ".ini", ".cfg", ".env.example", "settings")


@dataclass(frozen=True)
class CodebaseInsight:
    """Observation about the target codebase relevant to one phase."""

    insight_id: str
    insight_type: InsightType
    phase: PhaseKind
    description: str
    recommendation: str | None = None
    file_path: str | None = None

    def render(self) -> str:
        """Render a one-line description for display."""
        text = f"[{self.phase}] {self.description}"
        if self.recommendation:
            text += f" ({self.recommendation})"
        return text


def _classify(token: str) -> tuple[InsightType, PhaseKind] | None:
    lowered = token.lower()
    if any(hint in lowered for hint in _TEST_HINTS):
        return "test", "test"
    if any(hint in lowered for hint in _SCHEMA_HINTS):
        return "schema", "schema"
    if any(hint in lowered for hint in _CONFIG_HINTS):
        return "config", "feature"
    return None


def extract_insights(
    context: ConversationContext, document: PrdDocument | None = None
) -> list[CodebaseInsight]:
    """Derive insights from the conversation's codebase context and framework."""
    insights: list[CodebaseInsight] = []
    seen: set[str] = set()
    for token in _PATH_TOKEN.findall(context.codebase_context or ""):
        if token in seen:
            continue
        seen.add(token)
        classified = _classify(token)
        if classified is None:
            continue
        insight_type, phase = classified
        insights.append(
            CodebaseInsight(
                insight_id=f"{insight_type}-{len(insights) + 1}",
                insight_type=insight_type,
                phase=phase,
                description=f"Existing {insight_type} file: {token}",
                recommendation=f"Follow the conventions in {token}",
                file_path=token,
            )
        )
    if context.framework:
        insights.append(
            CodebaseInsight(
                insight_id="framework",
                insight_type="pattern",
                phase="feature",
                description=f"Project framework: {context.framework}",
                recommendation=f"Generate {context.framework}-specific configuration",
            )
        )
    if document is not None and document.testing is not None and document.testing.framework:
        insights.append(
            CodebaseInsight(
                insight_id="testing-framework",
                insight_type="test",
                phase="test",
                description=f"PRD testing framework: {document.testing.framework}",
            )
        )
    logger.debug("Extracted %d codebase insight(s)", len(insights))
    return insights


def pre_phase_questions(
    phase: PhaseKind,
    document: PrdDocument,
    context: ConversationContext,
    insights: Sequence[CodebaseInsight] = (),
) -> list[Question]:
    """Questions asked before generating a phase."""
    questions: list[Question] = []
    if phase == "schema":
        schema_files = [item for item in insights if item.insight_type in {"schema", "file"}]
        if schema_files:
            questions.append(
                Question(
                    question_id="schema-pattern-follow",
                    text=(
                        f"I found {len(schema_files)} existing schema file(s) in the codebase. "
                        "Should I follow these patterns when generating new schemas?"
                    ),
                    question_type="multiple-choice",
                    options=("Yes, use existing patterns", "No, create new patterns"),
                    category="implementation",
                    inferred_answer="Yes, use existing patterns",
                    inference_source="Existing schema files found in the codebase",
                    confidence=0.9,
                    context=", ".join(item.file_path or item.insight_id for item in schema_files),
                    phase=phase,
                )
            )
    elif phase == "test":
        total_tasks = len(document.all_tasks())
        if total_tasks > MANY_TASKS:
            questions.append(
                Question(
                    question_id="test-coverage-level",
                    text=(
                        f"I found {total_tasks} tasks in the PRD. "
                        "What test coverage level do you want?"
                    ),
                    question_type="multiple-choice",
                    options=(
                        "High - Test all tasks",
                        "Medium - Test critical tasks",
                        "Low - Test key tasks only",
                    ),
                    category="testing",
                    inferred_answer="Medium - Test critical tasks",
                    inference_source="Balanced coverage for a large task list",
                    confidence=0.7,
                    context=f"Total tasks: {total_tasks}",
                    phase=phase,
                )
            )
        framework = document.testing.framework if document.testing else ""
        questions.append(
            Question(
                question_id="test-type-preference",
                text="What types of tests should I prioritize?",
                question_type="multiple-choice",
                options=("E2E tests", "Integration tests", "Unit tests", "All types"),
                category="testing",
                inferred_answer="Integration tests",
                inference_source="Integration tests cover task boundaries",
                confidence=0.75,
                context=f"Test framework: {framework}" if framework else None,
                phase=phase,
            )
        )
    else:
        questions.append(
            Question(
                question_id="feature-enhancement-types",
                text="What types of feature enhancements should I generate?",
                question_type="multiple-choice",
                options=(
                    "Error guidance only",
                    "Log patterns only",
                    "Framework config only",
                    "All enhancement types",
                ),
                category="scope",
                inferred_answer="All enhancement types",
                inference_source="Complete enhancements give the best coverage",
                confidence=0.85,
                phase=phase,
            )
        )
        if context.framework:
            questions.append(
                Question(
                    question_id=f"configured-framework-{phase}",
                    text=f"Should feature configuration target {context.framework}?",
                    question_type="confirm",
                    category="integration",
                    inferred_answer="yes",
                    inference_source="Framework configured for this conversation",
                    confidence=0.95,
                    default=True,
                    phase=phase,
                )
            )
    return questions


def weak_item_ids(enhancement: Enhancement) -> list[str]:
    """Return ids of low-confidence schemas or thinly covered test plans."""
    if enhancement.kind == "schema":
        return [
            item.schema_id
            for item in enhancement.schemas
            if item.confidence < LOW_CONFIDENCE_THRESHOLD
        ]
    if enhancement.kind == "test":
        return [
            plan.task_id
            for plan in enhancement.test_plans
            if len(plan.test_cases) < MIN_TEST_CASES
        ]
    return []


def mid_phase_questions(phase: PhaseKind, enhancement: Enhancement) -> list[Question]:
    """Questions about partial results that could use another pass."""
    weak = weak_item_ids(enhancement)
    if not weak:
        return []
    if enhancement.kind == "schema":
        return [
            Question(
                question_id=f"mid-{phase}-low-confidence",
                text=f"Found {len(weak)} schema(s) with low confidence. Should I refine them?",
                question_type="multiple-choice",
                options=("Yes, refine them", "No, keep as is"),
                default="Yes, refine them",
                context=f"Low confidence schemas: {', '.join(weak)}",
                phase=phase,
            )
        ]
    return [
        Question(
            question_id=f"mid-{phase}-low-coverage",
            text=(
                f"Found {len(weak)} task(s) with minimal test coverage. "
                "Should I add more test cases?"
            ),
            question_type="multiple-choice",
            options=("Yes, add more cases", "No, keep minimal"),
            default="Yes, add more cases",
            context=f"Low coverage tasks: {', '.join(weak)}",
            phase=phase,
        )
    ]


def incomplete_item_ids(enhancement: Enhancement) -> list[str]:
    """Return ids of generated items that look unfinished."""
    if enhancement.kind == "schema":
        return [
            item.schema_id
            for item in enhancement.schemas
            if len(item.content.strip()) < MIN_SCHEMA_CONTENT
        ]
    if enhancement.kind == "test":
        return [plan.task_id for plan in enhancement.test_plans if not plan.test_cases]
    return [item.feature_type for item in enhancement.enhancements if not item.config]


def post_phase_questions(
    phase: PhaseKind, enhancement: Enhancement, validation: ValidationResult
) -> list[Question]:
    """Questions about validation errors and incomplete items after a phase."""
    questions: list[Question] = []
    phase_errors = errors_for_phase(validation, phase)
    if phase_errors:
        options = tuple(f"{error.severity}: {error.message}" for error in phase_errors)
        questions.append(
            Question(
                question_id=f"post-{phase}-errors",
                text=(
                    f"Found {len(phase_errors)} issue(s) in {phase} enhancement. "
                    "Which should be refined?"
                ),
                question_type="multi-select",
                options=options,
                default=list(options),
                context="; ".join(error.message for error in phase_errors),
                phase=phase,
            )
        )
    incomplete = incomplete_item_ids(enhancement)
    if incomplete:
        questions.append(
            Question(
                question_id=f"post-{phase}-incomplete",
                text=f"Found {len(incomplete)} incomplete {phase} item(s). Should I refine them?",
                question_type="multi-select",
                options=tuple(incomplete),
                default=list(incomplete),
                context=f"Incomplete items: {', '.join(incomplete)}",
                phase=phase,
            )
        )
    return questions
