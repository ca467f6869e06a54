"""Resilient provider wrapper with retry/backoff and fallback handling."""

from __future__ import annotations

import logging
import time

from prd_refinery.agent.config_validation import require_positive_int
from prd_refinery.agent.providers.base import GenerationOptions, TextGenerator

logger = logging.getLogger(__name__)


class ResilientLLM:
    """Wrap a text generator with bounded retries and an optional fallback."""

    def __init__(
        self,
        primary: TextGenerator,
        fallback: TextGenerator | None = None,
        *,
        max_retries: int = 3,
        base_delay_seconds: float = 0.25,
        max_delay_seconds: float = 2.0,
    ) -> None:
        """Initialize resilient wrapper with retry parameters."""
        require_positive_int(max_retries, "max_retries")
        if base_delay_seconds < 0 or max_delay_seconds < 0:
            raise ValueError("retry delay values must not be negative.")
        self.primary = primary
        self.fallback = fallback
        self.max_retries = max_retries
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds

    def generate(self, prompt: str, options: GenerationOptions) -> str:
        """Generate text with retries, then the fallback if one is configured."""
        error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return self.primary.generate(prompt, options)
            except Exception as exc:  # noqa: BLE001
                error = exc
                if attempt >= self.max_retries:
                    break
                delay = min(self.base_delay_seconds * (2 ** (attempt - 1)), self.max_delay_seconds)
                logger.warning(
                    "Primary provider failed (attempt %s/%s): %s",
                    attempt,
                    self.max_retries,
                    exc,
                )
                time.sleep(delay)

        if self.fallback is None:
            raise RuntimeError(
                f"Text generation failed after {self.max_retries} attempt(s)."
            ) from error
        logger.warning("Falling back after primary provider failures: %s", error)
        return self.fallback.generate(prompt, options)
