"""Text-generation provider implementations."""

from prd_refinery.agent.providers.base import GenerationOptions, TextGenerator
from prd_refinery.agent.providers.mock_provider import MockProvider
from prd_refinery.agent.providers.openai_provider import OpenAIProvider
from prd_refinery.agent.providers.resilient_llm import ResilientLLM

__all__ = ["GenerationOptions", "MockProvider", "OpenAIProvider", "ResilientLLM", "TextGenerator"]
