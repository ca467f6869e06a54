"""Prompt templates used by the enhancement phases."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence

from prd_refinery.agent.models import AnswerValue, PrdDocument

SCHEMA_SYSTEM_PROMPT = """
You are a principal engineer turning PRD tasks into concrete data schemas.
Return STRICT JSON only.
Your output schema:
{
  "summary": "one paragraph describing the schemas",
  "confidence": 0.0,
  "schemas": [
    {
      "id": "stable-schema-id",
      "type": "json-schema|database|config|entity",
      "path": "relative/path/for/the/schema",
      "content": "full schema text",
      "description": "what the schema models",
      "relatedSchemas": ["other-schema-id"],
      "confidence": 0.0
    }
  ]
}
Rules:
- Only reference schema ids listed in schemas.
- confidence values lie between 0 and 1.
- Never include secrets, tokens, or environment variable values.
""".strip()

TEST_SYSTEM_PROMPT = """
You are a senior test engineer writing test plans for PRD tasks.
Return STRICT JSON only.
Your output schema:
{
  "summary": "one paragraph describing the test approach",
  "testPlans": [
    {
      "id": "plan-id",
      "taskId": "id of an existing task",
      "phaseId": 1,
      "testType": "unit|integration|e2e",
      "description": "what the plan verifies",
      "priority": "critical|high|medium|low",
      "dependencies": ["other task id"],
      "testCases": [
        {
          "name": "case name",
          "description": "case description",
          "steps": ["step 1"],
          "expectedResult": "observable outcome"
        }
      ]
    }
  ]
}
Rules:
- taskId and dependencies must reference task ids present in the PRD.
- Provide at least two test cases per plan.
""".strip()

FEATURE_SYSTEM_PROMPT = """
You are a platform engineer proposing configuration overlays for a PRD.
Return STRICT JSON only.
Your output schema:
{
  "summary": "one paragraph describing the enhancements",
  "enhancements": [
    {
      "type": "error-guidance|context-file|log-pattern|framework-config",
      "description": "why this helps execution",
      "config": {},
      "priority": "high|medium|low",
      "confidence": 0.0
    }
  ]
}
Rules:
- Only use the requested enhancement types.
- config must be a JSON object.
""".strip()


def render_document_outline(document: PrdDocument) -> str:
    """Render a compact outline of the PRD for prompting."""
    lines = [
        f"PRD {document.prd_id or '<missing id>'}: {document.title or '<missing title>'}",
        f"Version: {document.version}",
    ]
    if document.description:
        lines.append(f"Description: {document.description}")
    if document.id_pattern:
        lines.append(f"Task id pattern: {document.id_pattern}")
    for phase in document.phases:
        lines.append(f"Phase {phase.phase_id}: {phase.name or '<unnamed>'}")
        for task in phase.tasks:
            lines.append(f"  - {task.task_id}: {task.title or '<untitled>'}")
            if task.description:
                lines.append(f"    {task.description}")
    return "\n".join(lines)


def _render_answers(answers: Mapping[str, AnswerValue]) -> str:
    if not answers:
        return "No clarifying answers collected."
    return "\n".join(f"- {key}: {json.dumps(value)}" for key, value in sorted(answers.items()))


def _render_focus(focus_ids: Sequence[str] | None, feedback: str | None) -> str:
    parts: list[str] = []
    if focus_ids:
        parts.append(f"Only regenerate these items: {', '.join(focus_ids)}.")
    if feedback:
        parts.append(f"Reviewer feedback to address:\n{feedback.strip()}")
    return "\n\n".join(parts)


def build_phase_user_prompt(
    phase: str,
    document: PrdDocument,
    answers: Mapping[str, AnswerValue],
    *,
    codebase_context: str | None = None,
    history: str | None = None,
    focus_ids: Sequence[str] | None = None,
    feedback: str | None = None,
    extra: str | None = None,
) -> str:
    """Build the user prompt for one enhancement phase."""
    sections = [
        f"Enhancement phase: {phase}",
        "PRD outline:",
        render_document_outline(document),
        "Clarifying answers:",
        _render_answers(answers),
    ]
    if codebase_context:
        sections.extend(["Codebase context:", codebase_context.strip()])
    if history:
        sections.extend(["Earlier conversation:", history.strip()])
    if extra:
        sections.append(extra.strip())
    focus = _render_focus(focus_ids, feedback)
    if focus:
        sections.append(focus)
    sections.append("Produce JSON now.")
    return "\n\n".join(sections)
