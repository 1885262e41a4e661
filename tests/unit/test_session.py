import asyncio
import logging

import pytest

from sitepilot.client import TransportError
from sitepilot.events import DoneEvent, ErrorEvent, TextEvent, ToolEvent
from sitepilot.fallback import GENERIC_FALLBACK, FallbackMessages
from sitepilot.message import Message, Role, ToolInvocation, Turn
from sitepilot.session import ERROR_MESSAGE, ChatSession
from sitepilot.tools import ToolRegistry, define_tool
from tests.conftest import FailingTransport, ScriptedTransport


def _navigate(section):
    return ToolEvent(name="navigate", args={"section": section})


class TestTranscript:
    @pytest.mark.asyncio
    async def test_text_accumulates_and_updates_incrementally(self):
        transport = ScriptedTransport(
            [TextEvent(content="Hel"), TextEvent(content="lo"), DoneEvent()],
        )
        snapshots = []
        session = ChatSession(transport, on_update=lambda turn: snapshots.append(turn.content))

        turn = await session.send("hi")

        assert turn.content == "Hello"
        assert turn.streaming is False
        assert turn.frozen
        assert turn.tool_calls == []
        assert snapshots[:2] == ["Hel", "Hello"]
        assert snapshots[-1] == "Hello"
        assert [t.role for t in session.transcript] == [Role.USER, Role.ASSISTANT]

    @pytest.mark.asyncio
    async def test_history_sent_excludes_empty_placeholder(self):
        transport = ScriptedTransport(
            [TextEvent(content="Hello"), DoneEvent()],
            [DoneEvent()],
        )
        session = ChatSession(transport)
        await session.send("hi")
        await session.send("again")
        assert transport.requests[0] == [Message(role=Role.USER, content="hi")]
        assert transport.requests[1] == [
            Message(role=Role.USER, content="hi"),
            Message(role=Role.ASSISTANT, content="Hello"),
            Message(role=Role.USER, content="again"),
        ]

    @pytest.mark.asyncio
    async def test_blank_input_ignored(self):
        transport = ScriptedTransport()
        session = ChatSession(transport)
        assert await session.submit("   ") is None
        assert session.transcript == []
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_stream_callbacks(self):
        calls = []
        session = ChatSession(
            ScriptedTransport([DoneEvent()]),
            on_stream_start=lambda: calls.append("start"),
            on_stream_end=lambda: calls.append("end"),
        )
        await session.send("hi")
        assert calls == ["start", "end"]
        assert not session.is_streaming
        assert session.streaming_turn is None

    @pytest.mark.asyncio
    async def test_observer_errors_are_logged(self, caplog):
        def broken(turn):
            raise RuntimeError("ui gone")

        session = ChatSession(
            ScriptedTransport([TextEvent(content="ok"), DoneEvent()]), on_update=broken,
        )
        with caplog.at_level(logging.ERROR, logger="sitepilot.session"):
            turn = await session.send("hi")
        assert turn.content == "ok"
        assert any("observer raised" in r.message for r in caplog.records)

    @pytest.mark.asyncio
    async def test_clear_restores_initial_turns(self):
        greeting = Turn(role=Role.ASSISTANT, content="Hi! Ask me anything.")
        session = ChatSession(ScriptedTransport([DoneEvent()]), initial_turns=[greeting])
        await session.send("hi")
        assert len(session.transcript) == 3
        await session.clear()
        assert session.transcript == [greeting]


class TestToolDispatch:
    @pytest.mark.asyncio
    async def test_handlers_called_once_in_order(self, page_tools):
        seen = []
        transport = ScriptedTransport([
            TextEvent(content="Filtering."),
            ToolEvent(name="filter_projects", args={"category": "web"}),
            _navigate("work"),
            DoneEvent(),
        ])
        session = ChatSession(
            transport, tools=page_tools,
            on_tool_call=lambda name, args: seen.append(name),
        )
        turn = await session.send("show web work")

        assert page_tools.calls == [
            ("filter_projects", {"category": "web"}),
            ("navigate", {"section": "work"}),
        ]
        assert seen == ["filter_projects", "navigate"]
        assert turn.tool_calls == [
            ToolInvocation(name="filter_projects", args={"category": "web"}),
            ToolInvocation(name="navigate", args={"section": "work"}),
        ]

    @pytest.mark.asyncio
    async def test_dispatch_goes_through_registry(self, page_tools, caplog):
        transport = ScriptedTransport([ToolEvent(name="navigate", args={}), DoneEvent()])
        session = ChatSession(transport, tools=page_tools)
        with caplog.at_level(logging.DEBUG, logger="sitepilot.tools"):
            await session.send("hi")
        assert page_tools.calls == [("navigate", {})]
        assert any(
            r.name == "sitepilot.tools" and "without required args ['section']" in r.message
            for r in caplog.records
        )

    @pytest.mark.asyncio
    async def test_undeclared_tool_ignored(self, page_tools):
        transport = ScriptedTransport([
            ToolEvent(name="delete_everything", args={}),
            _navigate("about"),
            DoneEvent(),
        ])
        session = ChatSession(transport, tools=page_tools)
        turn = await session.send("hi")
        assert page_tools.calls == [("navigate", {"section": "about"})]
        assert [c.name for c in turn.tool_calls] == ["navigate"]

    @pytest.mark.asyncio
    async def test_without_declared_tools_everything_reaches_callback(self):
        seen = []
        transport = ScriptedTransport([ToolEvent(name="anything", args={"x": 1}), DoneEvent()])
        session = ChatSession(transport, on_tool_call=lambda name, args: seen.append((name, args)))
        await session.send("hi")
        assert seen == [("anything", {"x": 1})]

    @pytest.mark.asyncio
    async def test_failing_sync_handler_does_not_stop_turn(self, caplog):
        def explode(args):
            raise ValueError("no such section")

        tools = ToolRegistry([define_tool("navigate", "Go", handler=explode)])
        transport = ScriptedTransport([
            _navigate("nowhere"), TextEvent(content="Still here."), DoneEvent(),
        ])
        session = ChatSession(transport, tools=tools)
        with caplog.at_level(logging.ERROR, logger="sitepilot.session"):
            turn = await session.send("hi")
        assert turn.content == "Still here."
        assert any("Tool navigate raised" in r.message for r in caplog.records)

    @pytest.mark.asyncio
    async def test_async_handler_outcome_logged(self, caplog):
        done = []

        async def slow(args):
            await asyncio.sleep(0)
            done.append(args["section"])

        async def broken(args):
            raise RuntimeError("animation failed")

        tools = ToolRegistry([
            define_tool("navigate", "Go", handler=slow),
            define_tool("highlight", "Glow", handler=broken),
        ])
        transport = ScriptedTransport([
            _navigate("work"), ToolEvent(name="highlight", args={}), DoneEvent(),
        ])
        session = ChatSession(transport, tools=tools)
        with caplog.at_level(logging.ERROR, logger="sitepilot.session"):
            await session.send("hi")
            await session.wait_for_handlers()
        assert done == ["work"]
        assert any("Tool highlight raised" in r.message for r in caplog.records)


class TestFallback:
    @pytest.mark.asyncio
    async def test_generator_for_one_tool_generic_for_other(self):
        transport = ScriptedTransport([
            ToolEvent(name="A", args={}), ToolEvent(name="B", args={}), DoneEvent(),
        ])
        session = ChatSession(
            transport, fallback=FallbackMessages({"A": lambda args: "Opened the gallery."}),
        )
        turn = await session.send("hi")
        assert turn.content == f"Opened the gallery. {GENERIC_FALLBACK}"

    @pytest.mark.asyncio
    async def test_no_fallback_when_text_present(self):
        transport = ScriptedTransport([TextEvent(content="Done!"), _navigate("a"), DoneEvent()])
        turn = await ChatSession(transport).send("hi")
        assert turn.content == "Done!"

    @pytest.mark.asyncio
    async def test_no_fallback_without_tools(self):
        turn = await ChatSession(ScriptedTransport([DoneEvent()])).send("hi")
        assert turn.content == ""
        assert turn.tool_calls == []

    @pytest.mark.asyncio
    async def test_broken_generator_falls_back_to_default(self):
        def broken(invocations):
            raise KeyError("oops")

        transport = ScriptedTransport([_navigate("a"), DoneEvent()])
        turn = await ChatSession(transport, fallback=broken).send("hi")
        assert turn.content == GENERIC_FALLBACK


class TestFailures:
    @pytest.mark.asyncio
    async def test_error_event_replaces_content(self):
        transport = ScriptedTransport([
            TextEvent(content="Partial"), ErrorEvent(message="An error occurred during streaming"),
        ])
        turn = await ChatSession(transport).send("hi")
        assert turn.content == ERROR_MESSAGE
        assert turn.frozen
        assert transport.closed == 1

    @pytest.mark.asyncio
    async def test_transport_failure_becomes_error_message(self):
        session = ChatSession(FailingTransport(TransportError("HTTP 500", status_code=500)))
        turn = await session.send("hi")
        assert turn.content == ERROR_MESSAGE
        assert turn.streaming is False
        assert not session.is_streaming

    @pytest.mark.asyncio
    async def test_new_submit_cancels_previous_turn(self):
        transport = ScriptedTransport(
            [TextEvent(content="Part")],
            [TextEvent(content="Second."), DoneEvent()],
        )
        transport.hold = asyncio.Event()
        arrived = asyncio.Event()
        session = ChatSession(transport, on_update=lambda turn: arrived.set())

        await session.submit("first")
        first = session.streaming_turn
        await arrived.wait()
        assert session.is_streaming

        transport.hold = None
        task = await session.submit("second")
        second = await task

        assert first.content == "Part"
        assert first.streaming is False
        assert first.frozen
        assert second.content == "Second."
        assert transport.closed == 2
        assert [t.content for t in session.transcript] == ["first", "Part", "second", "Second."]
        assert transport.requests[1][-2:] == [
            Message(role=Role.ASSISTANT, content="Part"),
            Message(role=Role.USER, content="second"),
        ]

    @pytest.mark.asyncio
    async def test_abort_before_first_event(self):
        transport = ScriptedTransport([TextEvent(content="never")])
        session = ChatSession(transport)
        await session.submit("hi")
        turn = session.streaming_turn
        await session.abort()
        assert turn.frozen
        assert turn.streaming is False
        assert session.streaming_turn is None
        assert not session.is_streaming
