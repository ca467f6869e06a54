"""Shared PRD fixtures and canned generator payloads."""

from __future__ import annotations

import json
from typing import Any

import pytest

from prd_refinery.agent.models import Phase, PrdDocument, Task, TestingConfig

EXPORT_ROW_SCHEMA = json.dumps(
    {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "title": "ExportRow",
        "type": "object",
        "properties": {
            "invoice_id": {"type": "string"},
            "amount": {"type": "number"},
            "currency": {"type": "string"},
        },
        "required": ["invoice_id", "amount", "currency"],
    }
)


def _task(task_id: str, title: str, description: str, deps: list[str] | None = None) -> Task:
    return Task(
        task_id=task_id,
        title=title,
        description=description,
        dependencies=list(deps or []),
        test_strategy="integration: exercise the task end to end",
        validation_checklist=[f"{title} verified"],
    )


@pytest.fixture
def executable_document() -> PrdDocument:
    """A three-task PRD that passes the rubric in strict mode."""
    return PrdDocument(
        prd_id="billing-export",
        title="Billing Export",
        version="2.0.0",
        description="Export invoices for the finance team.",
        phases=[
            Phase(
                phase_id=1,
                name="Foundation",
                tasks=[
                    _task("TASK-1.1", "Define export rows", "Describe exported invoice rows."),
                    _task(
                        "TASK-1.2",
                        "Write exporter",
                        "Stream invoice rows to CSV.",
                        ["TASK-1.1"],
                    ),
                ],
            ),
            Phase(
                phase_id=2,
                name="Delivery",
                depends_on=[1],
                tasks=[
                    _task(
                        "TASK-2.1",
                        "Schedule export",
                        "Run the exporter nightly.",
                        ["TASK-1.2"],
                    )
                ],
            ),
        ],
        id_pattern="TASK-{id}",
        testing=TestingConfig(
            directory="tests", framework="pytest", runner="pytest", command="pytest -q"
        ),
    )


@pytest.fixture
def schema_payload() -> dict[str, Any]:
    return {
        "summary": "Invoice export row schema.",
        "confidence": 0.9,
        "schemas": [
            {
                "id": "export-row",
                "type": "json-schema",
                "path": "schemas/export-row.json",
                "content": EXPORT_ROW_SCHEMA,
                "description": "One exported invoice row.",
                "confidence": 0.9,
            }
        ],
    }


def _plan(task_id: str, phase_id: int) -> dict[str, Any]:
    return {
        "id": f"plan-{task_id}",
        "taskId": task_id,
        "phaseId": phase_id,
        "testType": "integration",
        "description": f"Covers {task_id}",
        "priority": "high",
        "testCases": [
            {
                "name": "happy path",
                "description": "Valid invoices export.",
                "steps": ["seed invoices", "run"],
                "expectedResult": "rows written",
            },
            {
                "name": "empty input",
                "description": "No invoices export nothing.",
                "steps": ["run"],
                "expectedResult": "empty file",
            },
        ],
    }


@pytest.fixture
def plans_payload() -> dict[str, Any]:
    return {
        "summary": "Integration plans for every task.",
        "testPlans": [_plan("TASK-1.1", 1), _plan("TASK-1.2", 1), _plan("TASK-2.1", 2)],
    }


@pytest.fixture
def feature_payload() -> dict[str, Any]:
    return {
        "summary": "Structured export logging.",
        "enhancements": [
            {
                "type": "log-pattern",
                "description": "Log one line per exported batch.",
                "config": {"exportBatch": {"level": "info"}},
                "priority": "medium",
                "confidence": 0.8,
            }
        ],
    }
