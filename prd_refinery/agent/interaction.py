"""Interactive prompt surfaces used during refinement."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Protocol

import typer
import yaml
from rich.console import Console
from rich.table import Table

from prd_refinery.agent.errors import UserCancelled
from prd_refinery.agent.models import AnswerValue, Enhancement, Question, ValidationResult
from prd_refinery.agent.questions import CodebaseInsight

DecisionAction = Literal["approve", "reject", "edit"]
DECISION_ACTIONS: frozenset[str] = frozenset({"approve", "reject", "edit"})


@dataclass(frozen=True)
class RefinementDecision:
    """Reviewer decision on one phase's enhancement."""

    action: DecisionAction
    feedback: str | None = None


class PromptSurface(Protocol):
    """Interactive collaborator that asks questions and reviews phase output."""

    def ask(self, question: Question) -> AnswerValue | None:
        """Return the answer to question, or None when skipped."""

    def show_insights(self, insights: Sequence[CodebaseInsight]) -> None:
        """Display codebase insights."""

    def present_refinement(
        self, phase: str, enhancement: Enhancement, validation: ValidationResult
    ) -> RefinementDecision:
        """Return the reviewer's decision for a phase result."""


def fallback_answer(question: Question) -> AnswerValue | None:
    """Return the default, inferred answer, or first option of a question."""
    if question.default is not None:
        return question.default
    if question.inferred_answer:
        return question.inferred_answer
    if question.question_type == "multi-select":
        return list(question.options)
    if question.options:
        return question.options[0]
    if question.question_type == "confirm":
        return True
    return None


def describe_enhancement(enhancement: Enhancement) -> list[str]:
    """Return display lines for an enhancement."""
    if enhancement.kind == "schema":
        return [
            f"{item.schema_id} ({item.schema_type}) -> {item.path or '-'}"
            for item in enhancement.schemas
        ]
    if enhancement.kind == "test":
        return [
            f"{plan.task_id}: {plan.test_type}, {len(plan.test_cases)} case(s)"
            for plan in enhancement.test_plans
        ]
    return [f"{item.feature_type}: {item.description}" for item in enhancement.enhancements]


class ConsolePromptSurface:
    """Terminal prompt surface built on typer prompts and rich output."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def ask(self, question: Question) -> AnswerValue | None:
        try:
            return self._ask(question)
        except (typer.Abort, KeyboardInterrupt, EOFError) as exc:
            raise UserCancelled("Refinement cancelled at a prompt.") from exc

    def _ask(self, question: Question) -> AnswerValue | None:
        self.console.print(f"[bold cyan]?[/bold cyan] {question.text}")
        if question.context:
            self.console.print(f"  [dim]{question.context}[/dim]")
        if question.question_type == "confirm":
            default = question.default if isinstance(question.default, bool) else True
            return typer.confirm("  Confirm", default=default)
        if question.options:
            for index, option in enumerate(question.options, start=1):
                self.console.print(f"  {index}. {option}")
        fallback = fallback_answer(question)
        if question.question_type == "multi-select":
            default_text = ",".join(
                str(question.options.index(item) + 1)
                for item in (fallback if isinstance(fallback, list) else [])
                if item in question.options
            )
            raw = typer.prompt("  Choose (comma separated, blank to skip)", default=default_text)
            return self._select_many(question, str(raw))
        if question.options:
            default_index = (
                question.options.index(fallback) + 1 if fallback in question.options else 1
            )
            raw = typer.prompt("  Choose", default=str(default_index))
            return self._select_one(question, str(raw))
        raw = typer.prompt("  Answer (blank to skip)", default="", show_default=False)
        return str(raw).strip() or None

    @staticmethod
    def _select_one(question: Question, raw: str) -> str:
        cleaned = raw.strip()
        if cleaned.isdigit() and 1 <= int(cleaned) <= len(question.options):
            return question.options[int(cleaned) - 1]
        return cleaned

    @staticmethod
    def _select_many(question: Question, raw: str) -> list[str] | None:
        chosen: list[str] = []
        for part in raw.split(","):
            cleaned = part.strip()
            if cleaned.isdigit() and 1 <= int(cleaned) <= len(question.options):
                option = question.options[int(cleaned) - 1]
                if option not in chosen:
                    chosen.append(option)
        return chosen or None

    def show_insights(self, insights: Sequence[CodebaseInsight]) -> None:
        if not insights:
            return
        table = Table(title="Codebase Insights")
        table.add_column("Phase")
        table.add_column("Type")
        table.add_column("Insight")
        for insight in insights:
            table.add_row(insight.phase, insight.insight_type, insight.description)
        self.console.print(table)

    def present_refinement(
        self, phase: str, enhancement: Enhancement, validation: ValidationResult
    ) -> RefinementDecision:
        table = Table(title=f"{phase.title()} Enhancement")
        table.add_column("Item")
        for line in describe_enhancement(enhancement):
            table.add_row(line)
        self.console.print(table)
        self.console.print(f"Score: {validation.score}/100  Errors: {len(validation.errors)}")
        try:
            action = typer.prompt("Approve, reject, or edit?", default="approve")
            cleaned = str(action).strip().lower()
            if cleaned not in DECISION_ACTIONS:
                self.console.print(f"[yellow]Unknown choice '{cleaned}', approving.[/yellow]")
                return RefinementDecision("approve")
            if cleaned == "edit":
                feedback = typer.prompt("What should change?")
                return RefinementDecision("edit", str(feedback))
        except (typer.Abort, KeyboardInterrupt, EOFError) as exc:
            raise UserCancelled("Refinement cancelled during review.") from exc
        return RefinementDecision(cleaned)  # type: ignore[arg-type]


class ScriptedPromptSurface:
    """Non-interactive surface answering from a mapping, for batch runs and tests.

    Unscripted questions get their default, inferred answer, or first option.
    Unscripted reviews approve.
    """

    def __init__(
        self,
        answers: Mapping[str, AnswerValue] | None = None,
        decisions: Mapping[str, str | Mapping[str, Any]] | None = None,
    ) -> None:
        self.answers = dict(answers or {})
        self.decisions = dict(decisions or {})
        self.asked: list[Question] = []
        self.presented: list[str] = []
        self.shown_insights: list[CodebaseInsight] = []

    @classmethod
    def from_file(cls, path: Path) -> ScriptedPromptSurface:
        """Load ``answers`` and ``decisions`` mappings from YAML or JSON."""
        if not path.is_file():
            raise ValueError(f"Answers file not found: {path}")
        text = path.read_text(encoding="utf-8")
        try:
            data = json.loads(text) if path.suffix.lower() == ".json" else yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ValueError(f"Answers file could not be parsed: {exc}") from exc
        data = data or {}
        if not isinstance(data, dict):
            raise ValueError("Answers file root must be a mapping.")
        answers = data.get("answers") or {}
        decisions = data.get("decisions") or {}
        if not isinstance(answers, dict) or not isinstance(decisions, dict):
            raise ValueError("Answers file 'answers' and 'decisions' must be mappings.")
        return cls(answers=answers, decisions=decisions)

    def ask(self, question: Question) -> AnswerValue | None:
        self.asked.append(question)
        if question.question_id in self.answers:
            return self.answers[question.question_id]
        return fallback_answer(question)

    def show_insights(self, insights: Sequence[CodebaseInsight]) -> None:
        self.shown_insights.extend(insights)

    def present_refinement(
        self, phase: str, enhancement: Enhancement, validation: ValidationResult
    ) -> RefinementDecision:
        self.presented.append(phase)
        raw = self.decisions.get(phase, "approve")
        if isinstance(raw, Mapping):
            action = str(raw.get("action", "approve"))
            feedback = raw.get("feedback")
        else:
            action, feedback = str(raw), None
        if action not in DECISION_ACTIONS:
            raise ValueError(f"Decision for {phase} must be one of approve, reject, edit.")
        if action == "edit":
            # one edit round per scripted decision
            self.decisions[phase] = "approve"
        text = None if feedback is None else str(feedback)
        return RefinementDecision(action, text)  # type: ignore[arg-type]
