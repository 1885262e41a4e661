from sitepilot.client import HttpTransport, LocalTransport, TransportError
from sitepilot.config import HandlerConfig
from sitepilot.decoder import UpstreamDecoder
from sitepilot.events import DoneEvent, ErrorEvent, StreamEvent, TextEvent, ToolEvent
from sitepilot.fallback import GENERIC_FALLBACK, FallbackMessages, FallbackRule, smart_fallback
from sitepilot.instrumentation import instrument, uninstrument
from sitepilot.message import ChatRequest, Message, Role, ToolInvocation, Turn
from sitepilot.prompt import SiteContent, generate_system_prompt, resolve_system_prompt
from sitepilot.providers import (
    AnthropicProvider,
    GeminiProvider,
    OpenAICompatibleProvider,
    OpenAIProvider,
    UpstreamError,
    UpstreamProvider,
)
from sitepilot.server import ChatHandler, create_app
from sitepilot.session import ChatSession
from sitepilot.tools import ToolDefinition, ToolRegistry, define_simple_tool, define_tool, tool

__all__ = [
    "AnthropicProvider",
    "ChatHandler",
    "ChatRequest",
    "ChatSession",
    "DoneEvent",
    "ErrorEvent",
    "FallbackMessages",
    "FallbackRule",
    "GENERIC_FALLBACK",
    "GeminiProvider",
    "HandlerConfig",
    "HttpTransport",
    "LocalTransport",
    "Message",
    "OpenAICompatibleProvider",
    "OpenAIProvider",
    "Role",
    "SiteContent",
    "StreamEvent",
    "TextEvent",
    "ToolDefinition",
    "ToolEvent",
    "ToolInvocation",
    "ToolRegistry",
    "TransportError",
    "Turn",
    "UpstreamDecoder",
    "UpstreamError",
    "UpstreamProvider",
    "create_app",
    "define_simple_tool",
    "define_tool",
    "generate_system_prompt",
    "instrument",
    "resolve_system_prompt",
    "smart_fallback",
    "tool",
    "uninstrument",
]
