"""OpenAI-backed text generation provider."""

from __future__ import annotations

import logging
import os
import secrets
import time
from dataclasses import dataclass
from typing import Any

from openai import APIConnectionError, APIError, APITimeoutError, OpenAI, RateLimitError

from prd_refinery.agent.providers.base import GenerationOptions

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You refine product requirement documents into machine-executable plans. "
    "Answer with strict JSON when asked for JSON."
)


@dataclass(frozen=True)
class RetryBackoff:
    """Exponential backoff with jitter for transient API failures."""

    max_retries: int = 4
    min_delay_seconds: float = 2.0
    max_delay_seconds: float = 30.0
    jitter_ratio: float = 0.15

    def next_delay(self, *, attempt: int, retry_after: float | None) -> float:
        """Return delay in seconds for given attempt and optional retry-after."""
        bounded = min(self.min_delay_seconds * (2 ** (attempt - 1)), self.max_delay_seconds)
        if retry_after is not None:
            bounded = max(bounded, retry_after)
        jitter = bounded * self.jitter_ratio
        if jitter <= 0:
            return bounded
        return bounded + jitter * (secrets.randbelow(10_000) / 10_000)


def _retry_after_seconds(error: Any) -> float | None:
    """Read a numeric retry-after header from an SDK error, if present."""
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None) if response is not None else None
    if not headers:
        return None
    value = headers.get("retry-after")
    if not value:
        return None
    try:
        return max(0.0, float(str(value).strip()))
    except ValueError:
        return None


class OpenAIProvider:
    """Text generator implementation using the OpenAI Python SDK."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        max_retries: int = 4,
        min_retry_seconds: float = 2.0,
        max_retry_seconds: float = 30.0,
    ) -> None:
        """Initialize provider with API key and model settings."""
        resolved_api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not resolved_api_key:
            raise ValueError("OPENAI_API_KEY is required for OpenAIProvider.")
        self.client = OpenAI(api_key=resolved_api_key)
        self.model = model
        self.backoff = RetryBackoff(
            max_retries=max_retries,
            min_delay_seconds=min_retry_seconds,
            max_delay_seconds=max_retry_seconds,
        )

    def generate(self, prompt: str, options: GenerationOptions) -> str:
        """Generate text from the configured model, retrying transient failures."""
        last_error: Exception | None = None
        for attempt in range(1, self.backoff.max_retries + 1):
            try:
                return self._complete(prompt, options)
            except (RateLimitError, APIConnectionError, APITimeoutError) as exc:
                last_error = exc
                self._wait_or_raise(exc, attempt)
            except APIError as exc:
                if getattr(exc, "status_code", None) != 429:
                    raise
                last_error = exc
                self._wait_or_raise(exc, attempt)
        raise RuntimeError("OpenAI retries exhausted.") from last_error

    def _wait_or_raise(self, error: Exception, attempt: int) -> None:
        if attempt >= self.backoff.max_retries:
            raise error
        delay = self.backoff.next_delay(attempt=attempt, retry_after=_retry_after_seconds(error))
        logger.warning(
            "OpenAI request failed (%s); retrying in %.2fs (attempt %s/%s).",
            type(error).__name__,
            delay,
            attempt,
            self.backoff.max_retries,
        )
        time.sleep(delay)

    def _complete(self, prompt: str, options: GenerationOptions) -> str:
        """Call the Chat Completions API and return the message text."""
        response = self.client.chat.completions.create(
            model=self.model,
            temperature=options.temperature,
            max_completion_tokens=options.max_tokens,
            messages=[
                {"role": "system", "content": options.system_prompt or DEFAULT_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        )
        message = response.choices[0].message.content
        if message is None:
            raise RuntimeError("Model returned empty message content.")
        return str(message)
