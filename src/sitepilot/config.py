import os
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator

from sitepilot.prompt import PromptSource, SiteContent, SiteContentPrompt, TextPrompt
from sitepilot.providers import (
    AnthropicProvider,
    GeminiProvider,
    OpenAICompatibleProvider,
    OpenAIProvider,
    UpstreamProvider,
)
from sitepilot.tools import ToolDefinition


class OpenAICompatibleSettings(BaseModel):
    kind: Literal["openai_compatible", "openrouter"] = "openrouter"
    api_key: str | None = None
    model: str | None = None
    base_url: str | None = None
    max_retries: int = 2


class AnthropicSettings(BaseModel):
    kind: Literal["anthropic"] = "anthropic"
    api_key: str | None = None
    model: str | None = None
    base_url: str | None = None


class GeminiSettings(BaseModel):
    kind: Literal["gemini"] = "gemini"
    api_key: str | None = None
    model: str | None = None
    base_url: str | None = None


ProviderSettings = Annotated[
    Union[OpenAICompatibleSettings, AnthropicSettings, GeminiSettings],
    Field(discriminator="kind"),
]


class HandlerConfig(BaseModel):
    """Everything a chat endpoint needs.

    API keys left unset fall back to the provider's environment
    variable when the provider is built.
    """

    provider: ProviderSettings = Field(default_factory=OpenAICompatibleSettings)
    prompt: PromptSource
    tools: list[ToolDefinition] = Field(default_factory=list)
    temperature: float = Field(default=0.7, ge=0.0, le=1.0)
    max_tokens: int | None = None
    idle_timeout: float | None = 60.0
    site_url: str | None = None
    site_name: str | None = None

    @field_validator("prompt", mode="before")
    @classmethod
    def coerce_prompt(cls, value):
        if isinstance(value, str):
            return TextPrompt(text=value)
        if isinstance(value, SiteContent):
            return SiteContentPrompt(content=value)
        return value

    def build_provider(self) -> UpstreamProvider:
        settings = self.provider
        common = dict(
            model=settings.model,
            api_key=settings.api_key,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        if isinstance(settings, AnthropicSettings):
            return AnthropicProvider(base_url=settings.base_url, **common)
        if isinstance(settings, GeminiSettings):
            return GeminiProvider(base_url=settings.base_url, **common)
        provider_cls = (
            OpenAIProvider if settings.kind == "openai_compatible"
            else OpenAICompatibleProvider
        )
        return provider_cls(
            base_url=settings.base_url,
            site_url=self.site_url,
            site_name=self.site_name,
            max_retries=settings.max_retries,
            **common,
        )

    @classmethod
    def from_env(cls, **overrides) -> "HandlerConfig":
        """Build a config from ``SITEPILOT_*`` environment variables.

        Keyword arguments override anything read from the environment.
        """
        values: dict = {
            "provider": {
                "kind": os.getenv("SITEPILOT_PROVIDER", "openrouter"),
                "model": os.getenv("SITEPILOT_MODEL") or None,
            },
            "prompt": TextPrompt(
                text=os.getenv(
                    "SITEPILOT_SYSTEM_PROMPT", "You are a helpful assistant."
                )
            ),
        }
        idle_timeout = os.getenv("SITEPILOT_IDLE_TIMEOUT")
        if idle_timeout:
            values["idle_timeout"] = float(idle_timeout) or None
        values.update(overrides)
        return cls.model_validate(values)
