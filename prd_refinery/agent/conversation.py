"""Persistent multi-turn conversation state for PRD build sessions."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from prd_refinery.agent.config_validation import require_positive_int, validate_choice
from prd_refinery.agent.errors import ConversationNotFoundError
from prd_refinery.agent.models import (
    BUILD_MODES,
    CONVERSATION_STATES,
    Answer,
    BuildMode,
    Conversation,
    ConversationContext,
    ConversationItem,
    ConversationMetadata,
    ConversationState,
    Question,
    SummarizedContext,
    utc_now,
)

logger = logging.getLogger(__name__)

CONVERSATIONS_DIRNAME = "conversations"
DEFAULT_MAX_RECENT_ITEMS = 10


def new_conversation_id() -> str:
    """Return a unique, sortable conversation identifier."""
    stamp = datetime.now(tz=UTC).strftime("%Y%m%d%H%M%S")
    return f"conv-{stamp}-{uuid4().hex[:8]}"


def _same_answer(left: Answer | None, right: Answer) -> bool:
    """Return whether two answers carry the same value and skip flag."""
    if left is None:
        return False
    return left.value == right.value and left.skipped == right.skipped


class ConversationStore:
    """File-backed store holding one JSON document per conversation.

    Conversations are cached in memory once loaded and every mutation is
    persisted with an atomic replace so a reader never observes a partial
    file.
    """

    def __init__(self, directory: Path) -> None:
        """Initialize store rooted at directory, creating it when missing."""
        self.directory = directory.expanduser().resolve()
        self.directory.mkdir(parents=True, exist_ok=True)
        self._cache: dict[str, Conversation] = {}

    def create(
        self,
        mode: BuildMode,
        initial_context: dict[str, Any] | None = None,
    ) -> str:
        """Create a conversation in the questioning state and return its id."""
        validate_choice(mode, "mode", set(BUILD_MODES))
        seed = initial_context or {}
        conversation_id = new_conversation_id()
        now = utc_now()
        context = ConversationContext(
            mode=mode,
            initial_prompt=seed.get("initial_prompt"),
            feature_types=list(seed.get("feature_types") or []),
            framework=seed.get("framework"),
            codebase_context=seed.get("codebase_context"),
        )
        conversation = Conversation(
            metadata=ConversationMetadata(
                conversation_id=conversation_id,
                mode=mode,
                created_at=now,
                updated_at=now,
            ),
            context=context,
        )
        self._persist(conversation)
        logger.info("Created conversation %s (mode=%s)", conversation_id, mode)
        return conversation_id

    def record_question_answer(
        self,
        conversation_id: str,
        question: Question,
        answer: Answer | None = None,
    ) -> None:
        """Append a question with an optional answer to the conversation.

        Later answers for the same question id overwrite earlier ones. Recording
        an answer identical to the one already stored is a no-op.
        """
        conversation = self._load(conversation_id)
        context = conversation.context
        if answer is not None and answer.question_id != question.question_id:
            answer = replace(answer, question_id=question.question_id)
        existing = context.collected_answers.get(question.question_id)
        if answer is not None and _same_answer(existing, answer):
            return

        item = ConversationItem(
            item_id=f"item-{len(conversation.items) + 1}",
            question=question,
            answer=answer,
            timestamp=utc_now(),
            iteration=conversation.metadata.current_iteration,
        )
        conversation.items.append(item)
        conversation.metadata.total_questions += 1
        if not any(
            known.question_id == question.question_id for known in context.generated_questions
        ):
            context.generated_questions.append(question)
        if answer is not None:
            context.collected_answers[question.question_id] = answer
            conversation.metadata.total_answers = len(context.collected_answers)
        self._persist(conversation)

    def update_state(self, conversation_id: str, state: ConversationState) -> None:
        """Transition the conversation lifecycle state."""
        validate_choice(state, "state", set(CONVERSATION_STATES))
        conversation = self._load(conversation_id)
        conversation.metadata.state = state
        self._persist(conversation)
        logger.debug("Conversation %s state -> %s", conversation_id, state)

    def update_iteration(self, conversation_id: str, iteration: int) -> None:
        """Set the current refinement iteration."""
        if iteration < 0:
            raise ValueError("iteration must be zero or greater.")
        conversation = self._load(conversation_id)
        conversation.metadata.current_iteration = iteration
        conversation.context.current_iteration = iteration
        self._persist(conversation)

    def update_context(self, conversation_id: str, updates: dict[str, Any]) -> None:
        """Merge supported context fields into the conversation context."""
        allowed = {"initial_prompt", "feature_types", "framework", "codebase_context"}
        unknown = sorted(set(updates) - allowed)
        if unknown:
            raise ValueError(f"Unsupported context field(s): {', '.join(unknown)}.")
        conversation = self._load(conversation_id)
        for key, value in updates.items():
            setattr(conversation.context, key, value)
        self._persist(conversation)

    def get_context(self, conversation_id: str) -> ConversationContext:
        """Return the conversation context."""
        return self._load(conversation_id).context

    def get_conversation(self, conversation_id: str) -> Conversation:
        """Return the full conversation."""
        return self._load(conversation_id)

    def summarize(
        self,
        conversation_id: str,
        max_recent_items: int = DEFAULT_MAX_RECENT_ITEMS,
    ) -> SummarizedContext:
        """Return the most recent items plus a digest of older ones."""
        require_positive_int(max_recent_items, "max_recent_items")
        items = self._load(conversation_id).items
        if len(items) <= max_recent_items:
            return SummarizedContext(
                recent=list(items), summarized="", summary_timestamp=utc_now()
            )
        recent = items[-max_recent_items:]
        older = items[:-max_recent_items]
        return SummarizedContext(
            recent=list(recent),
            summarized=_digest(older),
            summary_timestamp=utc_now(),
        )

    def delete(self, conversation_id: str) -> None:
        """Delete a conversation from memory and disk."""
        path = self._path_for(conversation_id)
        if conversation_id not in self._cache and not path.exists():
            raise ConversationNotFoundError(conversation_id)
        self._cache.pop(conversation_id, None)
        path.unlink(missing_ok=True)
        logger.info("Deleted conversation %s", conversation_id)

    def list_conversations(self) -> list[ConversationMetadata]:
        """Return metadata for every persisted conversation, newest first."""
        entries: list[ConversationMetadata] = []
        for path in sorted(self.directory.glob("conv-*.json")):
            try:
                payload = json.loads(path.read_text(encoding="utf-8"))
                entries.append(Conversation.from_dict(payload).metadata)
            except (json.JSONDecodeError, ValueError) as exc:
                logger.warning("Skipping unreadable conversation file %s: %s", path, exc)
        return sorted(entries, key=lambda item: item.created_at, reverse=True)

    def _path_for(self, conversation_id: str) -> Path:
        cleaned = conversation_id.strip()
        if not cleaned or "/" in cleaned or "\\" in cleaned or cleaned.startswith("."):
            raise ConversationNotFoundError(conversation_id)
        return self.directory / f"{cleaned}.json"

    def _load(self, conversation_id: str) -> Conversation:
        cached = self._cache.get(conversation_id)
        if cached is not None:
            return cached
        path = self._path_for(conversation_id)
        if not path.exists():
            raise ConversationNotFoundError(conversation_id)
        payload = json.loads(path.read_text(encoding="utf-8"))
        conversation = Conversation.from_dict(payload)
        self._cache[conversation_id] = conversation
        return conversation

    def _persist(self, conversation: Conversation) -> None:
        conversation.metadata.updated_at = utc_now()
        conversation_id = conversation.metadata.conversation_id
        self._cache[conversation_id] = conversation
        path = self._path_for(conversation_id)
        temp_path = path.with_suffix(".json.tmp")
        temp_path.write_text(
            json.dumps(conversation.to_dict(), indent=2, ensure_ascii=True),
            encoding="utf-8",
        )
        os.replace(temp_path, path)


def _digest(items: list[ConversationItem]) -> str:
    """Render older items as a plain-text question/answer digest."""
    if not items:
        return ""
    questions = "\n".join(f"Q: {item.question.text}" for item in items)
    answers = "\n".join(f"A: {item.answer.as_text()}" for item in items if item.answer)
    return f"Previous conversation ({len(items)} items):\n{questions}\n{answers}"
