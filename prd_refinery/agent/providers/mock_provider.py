"""Test provider that returns queued text responses."""

from __future__ import annotations

import json
from collections.abc import Iterable
from copy import deepcopy
from typing import Any

from prd_refinery.agent.providers.base import GenerationOptions


class MockProvider:
    """A deterministic provider for unit/integration tests.

    Responses may be strings or JSON-serializable mappings; mappings are
    returned as JSON text. An ``Exception`` instance in the queue is raised
    instead of returned.
    """

    def __init__(self, responses: Iterable[str | dict[str, Any] | Exception]) -> None:
        """Initialize mock provider with queued responses."""
        self._responses = [
            item if isinstance(item, Exception) else deepcopy(item) for item in responses
        ]
        self.prompts: list[tuple[str, GenerationOptions]] = []

    @property
    def remaining(self) -> int:
        """Return how many queued responses are left."""
        return len(self._responses)

    def generate(self, prompt: str, options: GenerationOptions) -> str:
        """Return next queued response and record the prompt."""
        self.prompts.append((prompt, options))
        if not self._responses:
            raise RuntimeError("MockProvider has no remaining responses.")
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, str):
            return item
        return json.dumps(item)
