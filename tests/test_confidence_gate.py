"""Tests for confidence gating of inferred answers."""

from __future__ import annotations

import math

import pytest

from prd_refinery.agent.cancellation import CancellationToken
from prd_refinery.agent.confidence_gate import (
    AutoAnswerConfig,
    effective_confidence,
    filter_and_auto_apply,
)
from prd_refinery.agent.errors import PipelineCancelled
from prd_refinery.agent.models import Question


def _question(
    question_id: str, confidence: float, inferred: str | None = "Yes"
) -> Question:
    return Question(
        question_id=question_id,
        text=f"{question_id}?",
        inferred_answer=inferred,
        confidence=confidence,
    )


def test_gate_partitions_by_threshold_and_preserves_order() -> None:
    questions = [
        _question("a", 0.9),
        _question("b", 0.5),
        _question("c", 0.85),
        _question("d", 0.99, inferred=None),
        _question("e", 0.1),
    ]

    result = filter_and_auto_apply(questions)

    assert [item.question_id for item in result.auto_applied] == ["a", "c"]
    assert [item.question_id for item in result.needs_prompt] == ["b", "d", "e"]
    assert result.answers == {"a": "Yes", "c": "Yes"}


def test_gate_is_total() -> None:
    """Every question lands in exactly one partition."""
    questions = [_question(str(index), index / 10) for index in range(11)]
    config = AutoAnswerConfig(auto_answer_threshold=0.5)

    result = filter_and_auto_apply(questions, config)

    applied = {item.question_id for item in result.auto_applied}
    prompted = {item.question_id for item in result.needs_prompt}
    assert applied | prompted == {item.question_id for item in questions}
    assert not applied & prompted
    assert set(result.answers) == applied


def test_gate_disabled_prompts_everything() -> None:
    config = AutoAnswerConfig(skip_if_high_confidence=False)

    result = filter_and_auto_apply([_question("a", 1.0)], config)

    assert result.auto_applied == []
    assert result.answers == {}


def test_empty_input_yields_empty_result() -> None:
    result = filter_and_auto_apply([])

    assert result.auto_applied == []
    assert result.needs_prompt == []


@pytest.mark.parametrize("value", [math.nan, True, "0.9"])
def test_malformed_confidence_counts_as_zero(value: object) -> None:
    question = Question(
        "q", "q?", inferred_answer="Yes", confidence=value  # type: ignore[arg-type]
    )

    assert effective_confidence(question) == 0.0
    assert filter_and_auto_apply([question]).needs_prompt == [question]


def test_cancellation_token_raises_once_cancelled() -> None:
    token = CancellationToken()
    token.raise_if_cancelled()

    token.cancel("Interrupted by user.")

    assert token.cancelled
    with pytest.raises(PipelineCancelled, match="Interrupted by user."):
        token.raise_if_cancelled()
