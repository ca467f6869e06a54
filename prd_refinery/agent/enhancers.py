"""Schema, test, and feature enhancement generation through a text generator."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any, assert_never

from prd_refinery.agent.cancellation import CancellationToken
from prd_refinery.agent.errors import GenerationFailure
from prd_refinery.agent.gap_analysis import FEATURE_TYPES, feature_types_for_preference
from prd_refinery.agent.journal import PromptJournal
from prd_refinery.agent.models import (
    AnswerValue,
    Enhancement,
    EnhancementSet,
    FeatureConfig,
    FeatureEnhancement,
    PhaseKind,
    PrdDocument,
    SchemaDefinition,
    SchemaEnhancement,
    TestCase,
    TestCoverage,
    TestEnhancement,
    TestPlan,
)
from prd_refinery.agent.prompts import (
    FEATURE_SYSTEM_PROMPT,
    SCHEMA_SYSTEM_PROMPT,
    TEST_SYSTEM_PROMPT,
    build_phase_user_prompt,
)
from prd_refinery.agent.providers.base import GenerationOptions, TextGenerator, parse_json_response

logger = logging.getLogger(__name__)

FEATURE_CONFIG_KEYS: dict[str, str] = {
    "error-guidance": "framework",
    "context-file": "codebase",
    "log-pattern": "logs",
    "framework-config": "framework",
}
PRIORITIES: frozenset[str] = frozenset({"critical", "high", "medium", "low"})


@dataclass(frozen=True)
class GenerationRequest:
    """Inputs for one phase generation."""

    document: PrdDocument
    answers: Mapping[str, AnswerValue]
    codebase_context: str | None = None
    history: str | None = None
    focus_ids: Sequence[str] | None = None
    feedback: str | None = None
    iteration: int = 0
    conversation_id: str | None = None


def _float(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(0.0, min(1.0, number))


def _strings(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(item) for item in value if item is not None)


def _require_list(payload: dict[str, Any], key: str) -> list[dict[str, Any]]:
    value = payload.get(key)
    if not isinstance(value, list):
        raise ValueError(f"Expected '{key}' to be a list.")
    return [item for item in value if isinstance(item, dict)]


def parse_schema_payload(payload: dict[str, Any]) -> SchemaEnhancement:
    """Convert model JSON into a schema enhancement."""
    schemas = tuple(
        SchemaDefinition(
            schema_id=str(item.get("id", "")).strip() or f"schema-{index + 1}",
            schema_type=str(item.get("type", "json-schema")),
            path=str(item.get("path", "")),
            content=str(item.get("content", "")),
            description=str(item.get("description", "")),
            related_schemas=_strings(item.get("relatedSchemas", item.get("related_schemas"))),
            confidence=_float(item.get("confidence"), 1.0),
        )
        for index, item in enumerate(_require_list(payload, "schemas"))
    )
    if "confidence" in payload:
        confidence = _float(payload.get("confidence"), 0.0)
    elif schemas:
        confidence = sum(schema.confidence for schema in schemas) / len(schemas)
    else:
        confidence = 0.0
    return SchemaEnhancement(
        schemas=schemas, summary=str(payload.get("summary", "")), confidence=confidence
    )


def compute_coverage(plans: Sequence[TestPlan], document: PrdDocument) -> TestCoverage:
    """Compute task coverage of plans against the document's tasks."""
    task_ids = {task.task_id for task in document.all_tasks()}
    covered = {plan.task_id for plan in plans if plan.task_id in task_ids}
    total = len(task_ids)
    percentage = 100 if total == 0 else round(len(covered) * 100 / total)
    return TestCoverage(
        total_tasks=total, tasks_with_tests=len(covered), coverage_percentage=percentage
    )


def parse_test_payload(payload: dict[str, Any], document: PrdDocument) -> TestEnhancement:
    """Convert model JSON into a test enhancement with locally computed coverage."""
    task_phases = {
        task.task_id: phase.phase_id for phase in document.phases for task in phase.tasks
    }
    plans: list[TestPlan] = []
    for index, item in enumerate(_require_list(payload, "testPlans")):
        task_id = str(item.get("taskId", item.get("task_id", ""))).strip()
        cases = tuple(
            TestCase(
                name=str(case.get("name", f"case-{case_index + 1}")),
                description=str(case.get("description", "")),
                steps=_strings(case.get("steps")),
                expected_result=str(case.get("expectedResult", case.get("expected_result", ""))),
            )
            for case_index, case in enumerate(item.get("testCases") or [])
            if isinstance(case, dict)
        )
        priority = str(item.get("priority", "medium"))
        try:
            phase_id = int(item.get("phaseId", task_phases.get(task_id, 0)))
        except (TypeError, ValueError):
            phase_id = task_phases.get(task_id, 0)
        plans.append(
            TestPlan(
                plan_id=str(item.get("id", "")).strip() or f"plan-{index + 1}",
                task_id=task_id,
                phase_id=phase_id,
                test_type=str(item.get("testType", "integration")),
                description=str(item.get("description", "")),
                test_cases=cases,
                priority=priority if priority in PRIORITIES else "medium",  # type: ignore[arg-type]
                dependencies=_strings(item.get("dependencies")),
            )
        )
    return TestEnhancement(
        test_plans=tuple(plans),
        summary=str(payload.get("summary", "")),
        coverage=compute_coverage(plans, document),
    )


def parse_feature_payload(
    payload: dict[str, Any], allowed_types: Sequence[str] = FEATURE_TYPES
) -> FeatureEnhancement:
    """Convert model JSON into a feature enhancement, keeping only allowed types."""
    enhancements: list[FeatureConfig] = []
    for item in _require_list(payload, "enhancements"):
        feature_type = str(item.get("type", ""))
        if feature_type not in allowed_types:
            logger.debug("Dropping feature enhancement of type %r", feature_type)
            continue
        config = item.get("config")
        enhancements.append(
            FeatureConfig(
                feature_type=feature_type,
                description=str(item.get("description", "")),
                config=config if isinstance(config, dict) else {},
                priority=str(item.get("priority", "medium")),
                confidence=_float(item.get("confidence"), 1.0),
            )
        )
    return FeatureEnhancement(
        enhancements=tuple(enhancements), summary=str(payload.get("summary", ""))
    )


class PhaseGenerator:
    """Generate enhancement content for the schema, test, and feature phases."""

    def __init__(
        self,
        provider: TextGenerator,
        *,
        journal: PromptJournal | None = None,
        options: GenerationOptions | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self.provider = provider
        self.journal = journal
        self.options = options or GenerationOptions()
        self.cancel_token = cancel_token

    def generate(self, phase: PhaseKind, request: GenerationRequest) -> Enhancement:
        """Generate one phase's enhancement, raising GenerationFailure on any failure."""
        if phase == "schema":
            system_prompt, extra = SCHEMA_SYSTEM_PROMPT, None
        elif phase == "test":
            system_prompt, extra = TEST_SYSTEM_PROMPT, None
        elif phase == "feature":
            allowed = feature_types_for_preference(request.answers.get("feature-enhancement-types"))
            system_prompt = FEATURE_SYSTEM_PROMPT
            extra = f"Requested enhancement types: {', '.join(allowed)}."
        else:
            assert_never(phase)
        prompt = build_phase_user_prompt(
            phase,
            request.document,
            request.answers,
            codebase_context=request.codebase_context,
            history=request.history,
            focus_ids=request.focus_ids,
            feedback=request.feedback,
            extra=extra,
        )
        payload = self._call(phase, prompt, system_prompt, request)
        try:
            if phase == "schema":
                return parse_schema_payload(payload)
            if phase == "test":
                return parse_test_payload(payload, request.document)
            return parse_feature_payload(payload, allowed)
        except ValueError as exc:
            raise GenerationFailure(phase, str(exc)) from exc

    def _call(
        self,
        phase: str,
        prompt: str,
        system_prompt: str,
        request: GenerationRequest,
    ) -> dict[str, Any]:
        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled()
        options = replace(self.options, system_prompt=system_prompt)
        response: str | None = None
        try:
            response = self.provider.generate(prompt, options)
            payload = parse_json_response(response)
        except Exception as exc:  # noqa: BLE001
            self._record(phase, prompt, response, request, error=str(exc))
            logger.warning("%s generation failed: %s", phase, exc)
            raise GenerationFailure(phase, str(exc)) from exc
        self._record(phase, prompt, response, request, error=None)
        return payload

    def _record(
        self,
        phase: str,
        prompt: str,
        response: str | None,
        request: GenerationRequest,
        *,
        error: str | None,
    ) -> None:
        if self.journal is None:
            return
        self.journal.record_generation(
            phase=phase,
            iteration=request.iteration,
            prompt=prompt,
            response=response,
            success=error is None,
            error=error,
            conversation_id=request.conversation_id,
        )


def merge_refined(
    previous: Enhancement, refined: Enhancement, document: PrdDocument
) -> Enhancement:
    """Replace items of previous with same-id items of refined, appending new ones."""
    if previous.kind == "schema" and refined.kind == "schema":
        updated = {schema.schema_id: schema for schema in refined.schemas}
        schemas = [updated.pop(schema.schema_id, schema) for schema in previous.schemas]
        schemas.extend(updated.values())
        return _rebuild_schemas(previous, tuple(schemas))
    if previous.kind == "test" and refined.kind == "test":
        updated_plans = {plan.task_id: plan for plan in refined.test_plans}
        plans = [updated_plans.pop(plan.task_id, plan) for plan in previous.test_plans]
        plans.extend(updated_plans.values())
        return TestEnhancement(
            test_plans=tuple(plans),
            summary=refined.summary or previous.summary,
            coverage=compute_coverage(plans, document),
        )
    if previous.kind == "feature" and refined.kind == "feature":
        updated_features = {item.feature_type: item for item in refined.enhancements}
        features = [
            updated_features.pop(item.feature_type, item) for item in previous.enhancements
        ]
        features.extend(updated_features.values())
        return FeatureEnhancement(
            enhancements=tuple(features), summary=refined.summary or previous.summary
        )
    raise ValueError(f"Cannot merge {refined.kind} results into {previous.kind} results.")


def _rebuild_schemas(
    previous: SchemaEnhancement, schemas: tuple[SchemaDefinition, ...]
) -> SchemaEnhancement:
    """Rebuild a schema enhancement around a new schema tuple."""
    confidence = (
        sum(schema.confidence for schema in schemas) / len(schemas) if schemas else 0.0
    )
    return SchemaEnhancement(
        schemas=schemas, summary=previous.summary, confidence=max(confidence, previous.confidence)
    )


def apply_enhancement(document: PrdDocument, enhancement: Enhancement) -> None:
    """Apply an accepted enhancement to the document in place."""
    if enhancement.kind == "schema":
        known = {str(item.get("id")) for item in document.schemas}
        for schema in enhancement.schemas:
            payload = schema.to_dict()
            if schema.schema_id in known:
                document.schemas = [
                    payload if str(item.get("id")) == schema.schema_id else item
                    for item in document.schemas
                ]
            else:
                document.schemas.append(payload)
    elif enhancement.kind == "test":
        tasks = {task.task_id: task for task in document.all_tasks()}
        for plan in enhancement.test_plans:
            task = tasks.get(plan.task_id)
            if task is None:
                continue
            if not task.test_strategy:
                task.test_strategy = f"{plan.test_type}: {plan.description}".strip(": ")
            if not task.validation_checklist:
                task.validation_checklist = [
                    case.expected_result or case.name for case in plan.test_cases
                ]
    elif enhancement.kind == "feature":
        # A non-mapping overlay is already an invalid-config error; start a fresh one.
        current = document.config_overlay
        overlay = dict(current) if isinstance(current, dict) else {}
        for feature in enhancement.enhancements:
            key = FEATURE_CONFIG_KEYS.get(feature.feature_type, "framework")
            section = overlay.get(key)
            merged = dict(section) if isinstance(section, dict) else {}
            merged.update(feature.config)
            overlay[key] = merged
        document.config_overlay = overlay
    else:
        assert_never(enhancement)


def with_enhancement(enhancements: EnhancementSet, enhancement: Enhancement) -> EnhancementSet:
    """Return a copy of enhancements holding enhancement in its kind's slot."""
    if enhancement.kind == "schema":
        return replace(enhancements, schema=enhancement)
    if enhancement.kind == "test":
        return replace(enhancements, test=enhancement)
    if enhancement.kind == "feature":
        return replace(enhancements, feature=enhancement)
    assert_never(enhancement)
