"""Error taxonomy for the refinement pipeline."""

from __future__ import annotations


class ConversationNotFoundError(KeyError):
    """Raised when a conversation id is unknown to the store."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(conversation_id)
        self.conversation_id = conversation_id

    def __str__(self) -> str:
        return f"Conversation not found: {self.conversation_id}"


class GenerationFailure(RuntimeError):
    """Raised when the AI capability fails or returns unusable content."""

    def __init__(self, phase: str, message: str) -> None:
        super().__init__(f"{phase} generation failed: {message}")
        self.phase = phase


class PipelineCancelled(RuntimeError):
    """Raised when an external interrupt aborts the pipeline."""


class UserCancelled(PipelineCancelled):
    """Raised when the user aborts an interactive prompt."""
