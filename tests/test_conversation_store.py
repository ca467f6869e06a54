"""Tests for persistent conversation state."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from prd_refinery.agent.conversation import ConversationStore
from prd_refinery.agent.errors import ConversationNotFoundError
from prd_refinery.agent.models import Answer, Question


def _question(question_id: str = "q-framework", text: str = "Which framework?") -> Question:
    return Question(question_id=question_id, text=text, question_type="open-ended")


def test_create_persists_questioning_conversation(tmp_path: Path) -> None:
    store = ConversationStore(tmp_path)

    conversation_id = store.create("create", {"framework": "django", "initial_prompt": "CRM"})

    payload = json.loads((tmp_path / f"{conversation_id}.json").read_text(encoding="utf-8"))
    assert payload["metadata"]["state"] == "questioning"
    assert payload["context"]["framework"] == "django"
    assert conversation_id.startswith("conv-")


def test_create_rejects_unknown_mode(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="mode must be one of"):
        ConversationStore(tmp_path).create("rewrite")  # type: ignore[arg-type]


def test_later_answers_overwrite_earlier_ones(tmp_path: Path) -> None:
    """The most recent answer for a question id wins, even after reload."""
    store = ConversationStore(tmp_path)
    conversation_id = store.create("convert")
    question = _question()

    store.record_question_answer(conversation_id, question, Answer("q-framework", "flask"))
    store.record_question_answer(conversation_id, question, Answer("q-framework", "django"))

    reloaded = ConversationStore(tmp_path)
    context = reloaded.get_context(conversation_id)
    assert context.collected_answers["q-framework"].value == "django"
    assert len(reloaded.get_conversation(conversation_id).items) == 2
    assert len(context.generated_questions) == 1


def test_identical_answer_is_not_recorded_twice(tmp_path: Path) -> None:
    store = ConversationStore(tmp_path)
    conversation_id = store.create("convert")
    question = _question()

    store.record_question_answer(conversation_id, question, Answer("q-framework", "django"))
    store.record_question_answer(conversation_id, question, Answer("q-framework", "django"))

    conversation = store.get_conversation(conversation_id)
    assert len(conversation.items) == 1
    assert conversation.metadata.total_answers == 1


def test_answer_is_keyed_by_question_id(tmp_path: Path) -> None:
    store = ConversationStore(tmp_path)
    conversation_id = store.create("convert")

    store.record_question_answer(conversation_id, _question("q-db"), Answer("other", "postgres"))

    assert store.get_context(conversation_id).answer_values() == {"q-db": "postgres"}


def test_skipped_answers_are_excluded_from_values(tmp_path: Path) -> None:
    store = ConversationStore(tmp_path)
    conversation_id = store.create("convert")

    skipped = Answer("q-framework", "", skipped=True)
    store.record_question_answer(conversation_id, _question(), skipped)
    store.record_question_answer(conversation_id, _question("q-ci"), Answer("q-ci", True))

    context = store.get_context(conversation_id)
    assert context.answer_values() == {"q-ci": True}
    assert context.collected_answers["q-framework"].skipped


def test_unknown_conversation_raises(tmp_path: Path) -> None:
    store = ConversationStore(tmp_path)

    with pytest.raises(ConversationNotFoundError) as excinfo:
        store.get_context("conv-missing")
    with pytest.raises(ConversationNotFoundError):
        store.update_state("../escape", "complete")

    assert str(excinfo.value) == "Conversation not found: conv-missing"


def test_state_and_iteration_updates(tmp_path: Path) -> None:
    store = ConversationStore(tmp_path)
    conversation_id = store.create("enhance")

    store.update_state(conversation_id, "refining")
    store.update_iteration(conversation_id, 2)
    store.update_context(conversation_id, {"codebase_context": "src/app.py"})

    conversation = ConversationStore(tmp_path).get_conversation(conversation_id)
    assert conversation.metadata.state == "refining"
    assert conversation.metadata.current_iteration == 2
    assert conversation.context.codebase_context == "src/app.py"
    with pytest.raises(ValueError):
        store.update_state(conversation_id, "finished")  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        store.update_iteration(conversation_id, -1)
    with pytest.raises(ValueError, match="Unsupported context field"):
        store.update_context(conversation_id, {"mode": "create"})


def test_summarize_keeps_recent_items_and_digests_older(tmp_path: Path) -> None:
    store = ConversationStore(tmp_path)
    conversation_id = store.create("convert")
    for index in range(5):
        question = _question(f"q-{index}", f"Question {index}?")
        store.record_question_answer(conversation_id, question, Answer(f"q-{index}", f"a{index}"))

    summary = store.summarize(conversation_id, max_recent_items=2)
    short = store.summarize(conversation_id)

    assert [item.question.question_id for item in summary.recent] == ["q-3", "q-4"]
    assert summary.summarized.startswith("Previous conversation (3 items):")
    assert "Q: Question 0?" in summary.summarized
    assert "A: a2" in summary.summarized
    assert short.summarized == ""
    assert len(short.recent) == 5


def test_list_and_delete(tmp_path: Path) -> None:
    store = ConversationStore(tmp_path)
    first = store.create("convert")
    second = store.create("create")
    (tmp_path / "conv-broken.json").write_text("{not json", encoding="utf-8")

    listed = {item.conversation_id for item in store.list_conversations()}
    store.delete(first)

    assert listed == {first, second}
    assert not (tmp_path / f"{first}.json").exists()
    with pytest.raises(ConversationNotFoundError):
        store.delete(first)
    with pytest.raises(ConversationNotFoundError):
        store.get_conversation(first)
