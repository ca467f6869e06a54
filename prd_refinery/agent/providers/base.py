"""Provider abstraction for text generation."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class GenerationOptions:
    """Sampling options passed with every generation request."""

    max_tokens: int = 4_000
    temperature: float = 0.2
    system_prompt: str | None = None


class TextGenerator(Protocol):
    """Interface implemented by all text-generation providers."""

    def generate(self, prompt: str, options: GenerationOptions) -> str:
        """Generate text for prompt."""
        ...


def parse_json_response(raw_text: str) -> dict[str, Any]:
    """Parse a JSON object from possibly noisy model output."""
    cleaned = raw_text.strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```[a-zA-Z0-9_-]*\s*", "", cleaned)
        cleaned = re.sub(r"\s*```$", "", cleaned)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", cleaned, flags=re.DOTALL)
        if not match:
            raise ValueError("Model output did not contain JSON.") from None
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Model output contained malformed JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("Expected top-level JSON object from model.")
    return parsed
