"""Tests for text-generation providers and the resilient wrapper."""

from __future__ import annotations

import pytest

from prd_refinery.agent.providers.base import GenerationOptions, parse_json_response
from prd_refinery.agent.providers.mock_provider import MockProvider
from prd_refinery.agent.providers.openai_provider import OpenAIProvider, RetryBackoff
from prd_refinery.agent.providers.resilient_llm import ResilientLLM


class FailingProvider:
    """Provider that always fails for fallback tests."""

    def __init__(self) -> None:
        self.calls = 0

    def generate(self, prompt: str, options: GenerationOptions) -> str:
        """Raise runtime errors for every invocation."""
        _ = (prompt, options)
        self.calls += 1
        raise RuntimeError("boom")


def _resilient(primary: object, fallback: object | None = None) -> ResilientLLM:
    return ResilientLLM(
        primary=primary,  # type: ignore[arg-type]
        fallback=fallback,  # type: ignore[arg-type]
        max_retries=2,
        base_delay_seconds=0.001,
        max_delay_seconds=0.001,
    )


def test_resilient_llm_fallback_on_failure() -> None:
    """ResilientLLM should return fallback output after retries fail."""
    primary = FailingProvider()
    provider = _resilient(primary, MockProvider([{"ok": True}]))

    output = provider.generate("usr", GenerationOptions())

    assert parse_json_response(output) == {"ok": True}
    assert primary.calls == 2


def test_resilient_llm_raises_without_fallback() -> None:
    with pytest.raises(RuntimeError, match="after 2 attempt"):
        _resilient(FailingProvider()).generate("usr", GenerationOptions())


def test_resilient_llm_retries_then_succeeds() -> None:
    provider = _resilient(MockProvider([RuntimeError("flaky"), "done"]))

    assert provider.generate("usr", GenerationOptions()) == "done"


def test_resilient_llm_rejects_bad_settings() -> None:
    with pytest.raises(ValueError):
        ResilientLLM(MockProvider([]), max_retries=0)
    with pytest.raises(ValueError):
        ResilientLLM(MockProvider([]), base_delay_seconds=-1)


def test_mock_provider_records_prompts_and_runs_dry() -> None:
    provider = MockProvider(["first", {"second": 2}])
    options = GenerationOptions(system_prompt="sys")

    assert provider.generate("a", options) == "first"
    assert parse_json_response(provider.generate("b", options)) == {"second": 2}
    assert provider.prompts == [("a", options), ("b", options)]
    assert provider.remaining == 0
    with pytest.raises(RuntimeError, match="no remaining responses"):
        provider.generate("c", options)


def test_parse_json_response_extracts_embedded_object() -> None:
    assert parse_json_response('Sure! {"schemas": []} Hope that helps.') == {"schemas": []}
    with pytest.raises(ValueError, match="did not contain JSON"):
        parse_json_response("no braces")
    with pytest.raises(ValueError, match="top-level JSON object"):
        parse_json_response("[1, 2]")


def test_openai_provider_requires_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        OpenAIProvider()


def test_retry_backoff_honours_retry_after() -> None:
    backoff = RetryBackoff(min_delay_seconds=1.0, max_delay_seconds=4.0, jitter_ratio=0.0)

    assert backoff.next_delay(attempt=1, retry_after=None) == 1.0
    assert backoff.next_delay(attempt=5, retry_after=None) == 4.0
    assert backoff.next_delay(attempt=1, retry_after=9.0) == 9.0
