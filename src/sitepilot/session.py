import asyncio
import inspect
import logging
from contextlib import aclosing
from typing import Any, Awaitable, Callable

from sitepilot.client import Transport
from sitepilot.events import DoneEvent, ErrorEvent, TextEvent, ToolEvent
from sitepilot.fallback import FallbackMessages
from sitepilot.instrumentation import record_error, tool_span
from sitepilot.message import Message, Role, ToolInvocation, Turn
from sitepilot.tools import ToolDefinition, ToolRegistry

logger = logging.getLogger(__name__)

ERROR_MESSAGE = "Sorry, I encountered an error. Please try again."

ToolCallback = Callable[[str, dict[str, Any]], None | Awaitable[None]]
TurnCallback = Callable[[Turn], None]


class ChatSession:
    """Client-side conversation driven by the normalized event stream.

    The session owns the transcript. Each submission appends a frozen
    user turn and a streaming assistant turn, then reads the transport
    into that assistant turn. At most one turn streams at a time: a new
    submission cancels the one in flight.

    Tool events are dispatched exactly once, in arrival order, to the
    registry handler for the tool and to ``on_tool_call``. Handler
    failures are logged and never interrupt the stream.

    Args:
        transport: Source of events for each turn.
        tools: Declared tools. When non-empty, tool calls with other
            names are ignored.
        on_tool_call: Called as ``on_tool_call(name, args)`` for every
            dispatched tool call.
        fallback: Builds the message shown when a turn called tools but
            produced no text. Defaults to :class:`FallbackMessages`.
        on_update: Called with the assistant turn whenever it changes.
        on_stream_start: Called when a turn starts reading.
        on_stream_end: Called when a turn stops reading, for any reason.
        initial_turns: Turns the transcript starts with and is reset to.
    """

    def __init__(
        self,
        transport: Transport,
        tools: ToolRegistry | list[ToolDefinition] | None = None,
        on_tool_call: ToolCallback | None = None,
        fallback: Callable[[list[ToolInvocation]], str] | None = None,
        on_update: TurnCallback | None = None,
        on_stream_start: Callable[[], None] | None = None,
        on_stream_end: Callable[[], None] | None = None,
        initial_turns: list[Turn] | None = None,
    ):
        self.transport = transport
        if isinstance(tools, ToolRegistry):
            self.tools = tools
        else:
            self.tools = ToolRegistry(tools)
        self.on_tool_call = on_tool_call
        self.fallback = fallback or FallbackMessages()
        self.on_update = on_update
        self.on_stream_start = on_stream_start
        self.on_stream_end = on_stream_end
        self._initial_turns = list(initial_turns or [])
        self.transcript: list[Turn] = list(self._initial_turns)
        self.streaming_turn: Turn | None = None
        self._task: asyncio.Task | None = None
        self._handler_tasks: set[asyncio.Task] = set()

    @property
    def is_streaming(self) -> bool:
        return self._task is not None and not self._task.done()

    def history(self) -> list[Message]:
        """Messages sent to the endpoint: every turn with content."""
        return [t.to_message() for t in self.transcript if t.content]

    def add_turn(self, role: Role, content: str) -> Turn:
        turn = Turn(role=role, content=content)
        turn.freeze()
        self.transcript.append(turn)
        return turn

    async def submit(self, content: str) -> asyncio.Task | None:
        """Start a turn and return the task reading it.

        Blank input is ignored and returns ``None``.
        """
        if not content.strip():
            return None
        await self.abort()

        self.add_turn(Role.USER, content)
        history = self.history()
        assistant = Turn(role=Role.ASSISTANT, streaming=True)
        self.transcript.append(assistant)
        self.streaming_turn = assistant
        self._task = asyncio.create_task(self._run_turn(assistant, history))
        return self._task

    async def send(self, content: str) -> Turn | None:
        """Submit and wait until the turn finishes or is cancelled."""
        task = await self.submit(content)
        if task is None:
            return None
        turn = self.streaming_turn
        await asyncio.wait([task])
        return turn

    async def abort(self) -> None:
        """Cancel the turn in flight, keeping whatever text has arrived."""
        task, turn = self._task, self.streaming_turn
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.wait([task])
        if turn is not None and not turn.frozen:
            # cancelled before it ever ran
            turn.freeze()
        if self.streaming_turn is turn:
            self.streaming_turn = None

    async def clear(self) -> None:
        await self.abort()
        self.transcript = list(self._initial_turns)

    async def wait_for_handlers(self) -> None:
        """Wait for asynchronous tool handlers still running."""
        if self._handler_tasks:
            await asyncio.wait(list(self._handler_tasks))

    # ------------------------------------------------------------------
    # Turn processing
    # ------------------------------------------------------------------

    async def _run_turn(self, turn: Turn, history: list[Message]) -> Turn:
        invocations: list[ToolInvocation] = []
        self._notify(self.on_stream_start)
        try:
            async with aclosing(self.transport.stream(history)) as events:
                async for event in events:
                    if isinstance(event, TextEvent):
                        turn.append(event.content)
                        self._updated(turn)
                    elif isinstance(event, ToolEvent):
                        self._dispatch(event, invocations)
                    elif isinstance(event, DoneEvent):
                        break
                    elif isinstance(event, ErrorEvent):
                        logger.error(f"Chat stream error: {event.message}")
                        self._fail(turn, invocations)
                        return turn
            self._complete(turn, invocations)
        except asyncio.CancelledError:
            logger.info(f"Turn {turn.id} cancelled")
            if turn.tool_calls is None:
                turn.attach_tool_calls(invocations)
            turn.freeze()
            self._updated(turn)
            raise
        except Exception as e:
            logger.error(f"Chat error: {e}")
            self._fail(turn, invocations)
        finally:
            if self.streaming_turn is turn:
                self.streaming_turn = None
            self._notify(self.on_stream_end)
        return turn

    def _complete(self, turn: Turn, invocations: list[ToolInvocation]) -> None:
        turn.attach_tool_calls(invocations)
        if not turn.content and invocations:
            turn.replace_content(self._fallback_text(invocations))
        turn.freeze()
        self._updated(turn)

    def _fail(self, turn: Turn, invocations: list[ToolInvocation]) -> None:
        if turn.frozen:
            return
        if turn.tool_calls is None:
            turn.attach_tool_calls(invocations)
        turn.replace_content(ERROR_MESSAGE)
        turn.freeze()
        self._updated(turn)

    def _fallback_text(self, invocations: list[ToolInvocation]) -> str:
        try:
            return self.fallback(invocations)
        except Exception:
            logger.exception("Fallback message generator failed")
            return FallbackMessages()(invocations)

    # ------------------------------------------------------------------
    # Tool dispatch
    # ------------------------------------------------------------------

    def _dispatch(self, event: ToolEvent, invocations: list[ToolInvocation]) -> None:
        if len(self.tools) and event.name not in self.tools:
            logger.warning(f"Ignoring call to undeclared tool: {event.name}")
            return
        invocation = ToolInvocation(name=event.name, args=event.args)
        invocations.append(invocation)
        logger.info(f"Calling {invocation.name} with {invocation.args}")

        if invocation.name in self.tools:
            self._call_handler(invocation.name, self.tools.call, invocation)
        if self.on_tool_call is not None:
            self._call_handler(
                invocation.name, self.on_tool_call, invocation.name, invocation.args,
            )

    def _call_handler(self, tool_name: str, handler: Callable, *args) -> None:
        try:
            result = handler(*args)
        except Exception:
            logger.exception(f"Tool {tool_name} raised")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(self._await_handler(tool_name, result))
            self._handler_tasks.add(task)
            task.add_done_callback(self._handler_tasks.discard)

    async def _await_handler(self, tool_name: str, result: Awaitable) -> None:
        async with tool_span(tool_name) as span:
            try:
                await result
            except Exception as e:
                logger.exception(f"Tool {tool_name} raised")
                record_error(span, e)
            else:
                logger.debug(f"Tool {tool_name} finished")

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def _updated(self, turn: Turn) -> None:
        if self.on_update is not None:
            self._notify(self.on_update, turn)

    def _notify(self, callback: Callable | None, *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Chat session observer raised")
