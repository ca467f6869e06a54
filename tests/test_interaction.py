"""Tests for prompt surfaces."""

from __future__ import annotations

import io
from pathlib import Path

import pytest
import typer
from rich.console import Console

from prd_refinery.agent.errors import UserCancelled
from prd_refinery.agent.interaction import (
    ConsolePromptSurface,
    ScriptedPromptSurface,
    describe_enhancement,
    fallback_answer,
)
from prd_refinery.agent.models import (
    FeatureConfig,
    FeatureEnhancement,
    Question,
    ValidationResult,
)


def _validation() -> ValidationResult:
    return ValidationResult(True, 100, (), (), "")


def test_fallback_answer_precedence() -> None:
    assert fallback_answer(Question("a", "?", default="x", inferred_answer="y")) == "x"
    assert fallback_answer(Question("b", "?", inferred_answer="y", options=("z",))) == "y"
    assert fallback_answer(
        Question("c", "?", question_type="multi-select", options=("1", "2"))
    ) == ["1", "2"]
    choice = Question("d", "?", question_type="multiple-choice", options=("z",))
    assert fallback_answer(choice) == "z"
    assert fallback_answer(Question("e", "?", question_type="confirm")) is True
    assert fallback_answer(Question("f", "?")) is None


def test_scripted_surface_answers_and_decisions() -> None:
    surface = ScriptedPromptSurface(
        answers={"q1": "custom"},
        decisions={"schema": {"action": "edit", "feedback": "More fields"}, "test": "reject"},
    )
    enhancement = FeatureEnhancement(enhancements=(), summary="")

    assert surface.ask(Question("q1", "?", inferred_answer="no")) == "custom"
    assert surface.ask(Question("q2", "?", inferred_answer="inferred")) == "inferred"
    first = surface.present_refinement("schema", enhancement, _validation())
    second = surface.present_refinement("schema", enhancement, _validation())
    rejected = surface.present_refinement("test", enhancement, _validation())

    assert (first.action, first.feedback) == ("edit", "More fields")
    assert second.action == "approve"
    assert rejected.action == "reject"
    assert surface.presented == ["schema", "schema", "test"]
    assert [question.question_id for question in surface.asked] == ["q1", "q2"]


def test_scripted_surface_rejects_unknown_action() -> None:
    surface = ScriptedPromptSurface(decisions={"feature": "ship-it"})

    with pytest.raises(ValueError, match="approve, reject, edit"):
        surface.present_refinement(
            "feature", FeatureEnhancement(enhancements=(), summary=""), _validation()
        )


def test_scripted_surface_loads_yaml(tmp_path: Path) -> None:
    path = tmp_path / "answers.yml"
    path.write_text(
        "answers:\n  test-type-preference: Unit tests\ndecisions:\n  feature: reject\n",
        encoding="utf-8",
    )

    surface = ScriptedPromptSurface.from_file(path)

    assert surface.answers == {"test-type-preference": "Unit tests"}
    assert surface.decisions == {"feature": "reject"}


@pytest.mark.parametrize(
    "content, message",
    [("- a\n- b\n", "must be a mapping"), ("answers: [1]\n", "must be mappings")],
)
def test_scripted_surface_rejects_bad_files(tmp_path: Path, content: str, message: str) -> None:
    path = tmp_path / "answers.yaml"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ValueError, match=message):
        ScriptedPromptSurface.from_file(path)


def test_console_surface_maps_numbered_choices(monkeypatch: pytest.MonkeyPatch) -> None:
    surface = ConsolePromptSurface(Console(file=io.StringIO()))
    replies = iter(["2", "1,3"])
    monkeypatch.setattr(typer, "prompt", lambda *args, **kwargs: next(replies))

    single = surface.ask(
        Question("s", "Pick", question_type="multiple-choice", options=("a", "b", "c"))
    )
    multi = surface.ask(
        Question("m", "Pick many", question_type="multi-select", options=("a", "b", "c"))
    )

    assert single == "b"
    assert multi == ["a", "c"]


def test_console_surface_abort_becomes_user_cancelled(monkeypatch: pytest.MonkeyPatch) -> None:
    surface = ConsolePromptSurface(Console(file=io.StringIO()))

    def _abort(*args: object, **kwargs: object) -> str:
        raise typer.Abort()

    monkeypatch.setattr(typer, "prompt", _abort)

    with pytest.raises(UserCancelled):
        surface.ask(Question("q", "Name?"))


def test_describe_feature_enhancement() -> None:
    enhancement = FeatureEnhancement(
        enhancements=(FeatureConfig("log-pattern", "Batch logs", {"a": 1}),), summary=""
    )

    assert describe_enhancement(enhancement) == ["log-pattern: Batch logs"]
