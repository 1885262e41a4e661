from sitepilot.providers.anthropic import AnthropicProvider
from sitepilot.providers.base import HTTPStreamingProvider, UpstreamError, UpstreamProvider
from sitepilot.providers.gemini import GeminiProvider
from sitepilot.providers.openai_compat import (
    OPENAI_BASE_URL,
    OPENROUTER_BASE_URL,
    OpenAICompatibleProvider,
    OpenAIProvider,
)

__all__ = [
    "AnthropicProvider",
    "GeminiProvider",
    "HTTPStreamingProvider",
    "OPENAI_BASE_URL",
    "OPENROUTER_BASE_URL",
    "OpenAICompatibleProvider",
    "OpenAIProvider",
    "UpstreamError",
    "UpstreamProvider",
]
