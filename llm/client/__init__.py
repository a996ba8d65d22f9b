"""LLM client module."""

from typing import Optional

import httpx

from llm.client.base import (
    GenerationClient,
    GenerationResponse,
    LLMError,
    ModelUnavailableError,
    PermanentLLMError,
    TransientLLMError,
)
from llm.client.gemini_client import GeminiClient
from llm.client.openai_client import OpenAIClient, ProviderFn
from llm.settings import GenerationSettings


def build_generation_client(
    settings: GenerationSettings,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
) -> GenerationClient:
    """Return the client for the configured provider."""
    if settings.llm_provider == "openai":
        return OpenAIClient(settings)
    return GeminiClient(settings, client=http_client)


__all__ = [
    "GeminiClient",
    "GenerationClient",
    "GenerationResponse",
    "LLMError",
    "ModelUnavailableError",
    "OpenAIClient",
    "PermanentLLMError",
    "ProviderFn",
    "TransientLLMError",
    "build_generation_client",
]
