import asyncio
import logging
from collections.abc import AsyncIterator

from sitepilot.events import DoneEvent, ErrorEvent, StreamEvent, TextEvent, ToolEvent
from sitepilot.instrumentation import record_error, record_turn, stream_span
from sitepilot.message import Message
from sitepilot.providers.base import UpstreamError, UpstreamProvider
from sitepilot.streaming import ToolCallAccumulator
from sitepilot.tools import ToolRegistry

logger = logging.getLogger(__name__)

CONNECT_FAILED_MESSAGE = "Failed to get AI response"
STREAM_FAILED_MESSAGE = "An error occurred during streaming"
IDLE_TIMEOUT_MESSAGE = "The AI provider stopped responding"

DEFAULT_IDLE_TIMEOUT = 60.0


class UpstreamIdleTimeout(Exception):
    """No line arrived from the provider within the idle timeout."""


class UpstreamDecoder:
    """Translates one provider's streaming response into normalized events.

    ``stream()`` yields text events as soon as they arrive, buffers tool
    calls until the provider ends the stream, then yields one tool event
    per complete call followed by a single done event. A failure yields
    a single error event instead of the done event.

    Each ``stream()`` call owns its accumulator, so one decoder can serve
    any number of concurrent requests.

    Args:
        provider: The upstream provider to call.
        system_prompt: Instruction prefix injected ahead of the history.
        tools: Tool declarations forwarded to the provider.
        idle_timeout: Seconds to wait for the next upstream line before
            giving up. ``None`` waits forever.
    """

    def __init__(
        self,
        provider: UpstreamProvider,
        system_prompt: str,
        tools: ToolRegistry | None = None,
        idle_timeout: float | None = DEFAULT_IDLE_TIMEOUT,
    ):
        self.provider = provider
        self.system_prompt = system_prompt
        self.tools = tools
        self.idle_timeout = idle_timeout

    async def _idle_guard(self, lines: AsyncIterator[str]) -> AsyncIterator[str]:
        iterator = lines.__aiter__()
        while True:
            try:
                if self.idle_timeout is None:
                    line = await iterator.__anext__()
                else:
                    line = await asyncio.wait_for(
                        iterator.__anext__(), self.idle_timeout,
                    )
            except StopAsyncIteration:
                return
            except asyncio.TimeoutError:
                raise UpstreamIdleTimeout(
                    f"No data from {self.provider.name} for {self.idle_timeout}s"
                ) from None
            yield line

    async def stream(self, messages: list[Message]) -> AsyncIterator[StreamEvent]:
        acc = ToolCallAccumulator()
        opened = False
        text_deltas = 0
        async with stream_span(self.provider.name, self.provider.model) as span:
            try:
                async with self.provider.open_stream(
                    self.system_prompt, messages, self.tools,
                ) as lines:
                    opened = True
                    async for chunk in self.provider.decode(self._idle_guard(lines)):
                        if chunk.content_delta:
                            text_deltas += 1
                            yield TextEvent(content=chunk.content_delta)
                        for fragment in chunk.tool_call_fragments or []:
                            acc.feed(fragment)

                calls = acc.finalize()
                record_turn(span, text_deltas, len(calls))
                logger.info(
                    f"Turn complete: {text_deltas} text deltas, "
                    f"{len(calls)} tool calls"
                )
                for call in calls:
                    yield ToolEvent(name=call.name, args=call.args)
                yield DoneEvent()
            except UpstreamIdleTimeout as e:
                logger.error(str(e))
                record_error(span, e)
                yield ErrorEvent(message=IDLE_TIMEOUT_MESSAGE)
            except UpstreamError as e:
                logger.error(f"Upstream error: {e}")
                record_error(span, e)
                message = STREAM_FAILED_MESSAGE if opened else CONNECT_FAILED_MESSAGE
                yield ErrorEvent(message=message)
            except Exception as e:
                logger.exception(f"Streaming error: {e}")
                record_error(span, e)
                yield ErrorEvent(message=STREAM_FAILED_MESSAGE)
            finally:
                acc.clear()
