"""LLM module - generation clients and settings."""

from llm.client import (
    GeminiClient,
    GenerationClient,
    GenerationResponse,
    LLMError,
    ModelUnavailableError,
    OpenAIClient,
    PermanentLLMError,
    TransientLLMError,
    build_generation_client,
)
from llm.settings import GenerationSettings, get_generation_settings

__all__ = [
    "GeminiClient",
    "GenerationClient",
    "GenerationResponse",
    "LLMError",
    "ModelUnavailableError",
    "OpenAIClient",
    "PermanentLLMError",
    "TransientLLMError",
    "build_generation_client",
    "GenerationSettings",
    "get_generation_settings",
]
