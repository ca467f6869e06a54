"""Confidence gating of AI-inferred answers."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass, field

from prd_refinery.agent.models import Question

logger = logging.getLogger(__name__)

DEFAULT_AUTO_ANSWER_THRESHOLD = 0.85


@dataclass(frozen=True)
class AutoAnswerConfig:
    """Threshold settings for auto-applying inferred answers."""

    auto_answer_threshold: float = DEFAULT_AUTO_ANSWER_THRESHOLD
    skip_if_high_confidence: bool = True


@dataclass(frozen=True)
class AutoApplyResult:
    """Partition of questions into auto-applied and prompt-required sets."""

    auto_applied: list[Question] = field(default_factory=list)
    needs_prompt: list[Question] = field(default_factory=list)
    answers: dict[str, str] = field(default_factory=dict)


def effective_confidence(question: Question) -> float:
    """Return the question confidence, treating missing or malformed values as zero."""
    value = question.confidence
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    if math.isnan(value):
        return 0.0
    return float(value)


def filter_and_auto_apply(
    questions: Iterable[Question],
    config: AutoAnswerConfig | None = None,
    log_prefix: str = "[refine]",
) -> AutoApplyResult:
    """Split questions into auto-applied answers and those needing a prompt.

    A question is auto-applied iff its confidence reaches the threshold, the
    config allows skipping high-confidence prompts, and an inferred answer is
    present. Input order is preserved in both partitions.
    """
    settings = config or AutoAnswerConfig()
    auto_applied: list[Question] = []
    needs_prompt: list[Question] = []
    answers: dict[str, str] = {}

    for question in questions:
        confidence = effective_confidence(question)
        if (
            confidence >= settings.auto_answer_threshold
            and settings.skip_if_high_confidence
            and question.inferred_answer
        ):
            logger.info(
                '%s Auto-applied: "%s" -> "%s" (confidence: %.2f)',
                log_prefix,
                question.text,
                question.inferred_answer,
                confidence,
            )
            auto_applied.append(question)
            answers[question.question_id] = question.inferred_answer
        else:
            needs_prompt.append(question)

    if auto_applied:
        logger.info(
            "%s Auto-applied %d answer(s), %d need prompting",
            log_prefix,
            len(auto_applied),
            len(needs_prompt),
        )
    return AutoApplyResult(auto_applied=auto_applied, needs_prompt=needs_prompt, answers=answers)
