"""End-to-end tests for the StreamingOrchestrator.

A scripted client replays fragment sequences so each test can drive the
state machine through one scenario:

1. Tool call → search executed → continuation stream → Finalized(tool_used)
2. Plain prose streams straight through
3. Echoed ``<tool_result>`` and diverging prefixes are reverted and cleaned
4. Cancellation keeps the visible text and closes the stream
5. Transport failures end as Failed
"""

from __future__ import annotations

import asyncio
import threading
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from localgrok.core.orchestrator import StreamingOrchestrator
from localgrok.llm.client import OllamaError
from localgrok.search.client import SearchResult
from localgrok.tools.builtin import register_builtins
from localgrok.tools.registry import ToolRegistry
from localgrok.types import (
    Cancelled,
    ChatMessage,
    ContinuationNeeded,
    Failed,
    Finalized,
    StreamFragment,
    TurnCallbacks,
    TurnOptions,
    TurnState,
    WebSearch,
)

_NOW = datetime(2025, 12, 10, 15, 30, tzinfo=timezone.utc)
_HANG = object()


def c(text: str) -> StreamFragment:
    return StreamFragment(content=text)


def r(text: str) -> StreamFragment:
    return StreamFragment(reasoning=text)


DONE = StreamFragment(done=True)


class ScriptedClient:
    """Fake AsyncOllamaClient replaying one script per stream_chat call."""

    def __init__(self, *scripts: list) -> None:
        self._scripts = list(scripts)
        self.turns = []
        self.closed = 0

    async def stream_chat(self, turn):
        self.turns.append(turn)
        script = self._scripts.pop(0)
        try:
            for item in script:
                if item is _HANG:
                    await asyncio.Event().wait()
                if isinstance(item, Exception):
                    raise item
                yield item
                await asyncio.sleep(0)
        finally:
            self.closed += 1


class Recorder:
    """Collects every callback invocation in order."""

    def __init__(self) -> None:
        self.states: list[TurnState] = []
        self.contents: list[str] = []
        self.reasoning: list[str] = []
        self.tools = []
        self.completed: list[Finalized] = []
        self.errors: list[str] = []
        self.cancelled: list[Cancelled] = []
        self.content_seen = asyncio.Event()

    def _on_content(self, text: str) -> None:
        self.contents.append(text)
        self.content_seen.set()

    def callbacks(self) -> TurnCallbacks:
        return TurnCallbacks(
            on_state=self.states.append,
            on_reasoning=self.reasoning.append,
            on_content=self._on_content,
            on_tool=self.tools.append,
            on_complete=self.completed.append,
            on_error=self.errors.append,
            on_cancelled=self.cancelled.append,
        )


@pytest.fixture
def search_client():
    client = MagicMock()
    client.search = AsyncMock(return_value=[
        SearchResult(title="Paris weather", url="https://w.example", content="Sunny, 21C"),
    ])
    return client


@pytest.fixture
def registry(search_client) -> ToolRegistry:
    reg = ToolRegistry()
    register_builtins(reg, search_client, clock=lambda: _NOW)
    return reg


def _orchestrator(client, registry, **options) -> StreamingOrchestrator:
    opts = TurnOptions(model="qwen3:0.6b-fp16", **options)
    return StreamingOrchestrator(client, registry, opts, clock=lambda: _NOW)


HISTORY = [ChatMessage(role="user", content="What's the weather in Paris?")]


# ---------------------------------------------------------------------------
# Tool round trip
# ---------------------------------------------------------------------------

class TestToolRoundTrip:
    @pytest.mark.asyncio
    async def test_web_search_then_answer(self, registry, search_client):
        client = ScriptedClient(
            [c("<tool_call>"), c('{"name":"web_search","query":"weather"}'), DONE],
            [c("It is "), c("sunny."), DONE],
        )
        rec = Recorder()
        outcome = await _orchestrator(client, registry).run_turn(
            HISTORY, callbacks=rec.callbacks(),
        )

        assert outcome == Finalized(
            visible_text="It is sunny.",
            reasoning_text="",
            tool_used=True,
            tool_label="Searched the web",
        )
        search_client.search.assert_awaited_once_with("weather", limit=5)
        assert rec.states == [
            TurnState.STREAMING,
            TurnState.EXECUTING_TOOL,
            TurnState.STREAMING,
            TurnState.FINALIZED,
        ]
        # Nothing from the tool-call stream is ever shown.
        assert rec.contents == ["It is", "It is sunny."]
        assert rec.completed == [outcome]

    @pytest.mark.asyncio
    async def test_continuation_turn_carries_result(self, registry):
        client = ScriptedClient(
            [c('<tool_call>{"name":"web_search","query":"weather"}</tool_call>'), DONE],
            [c("Sunny."), DONE],
        )
        await _orchestrator(client, registry).run_turn(HISTORY)

        first, second = client.turns
        assert first.messages[0].role == "system"
        assert first.messages[1:] == tuple(HISTORY)
        assert second.messages[:-1] == first.messages
        block = second.messages[-1]
        assert block.role == "system"
        assert block.content.startswith("<tool_result>\nSearch Results: weather")
        assert "Paris weather" in block.content
        assert "DO NOT call any more tools" in block.content

    @pytest.mark.asyncio
    async def test_tool_activity_reported(self, registry):
        client = ScriptedClient(
            [c("<tool_"), c('call>{"name":"get_time"}'), DONE],
            [c("It is 3:30 PM."), DONE],
        )
        rec = Recorder()
        outcome = await _orchestrator(client, registry).run_turn(
            HISTORY, callbacks=rec.callbacks(),
        )

        assert outcome.tool_label == "Checked time"
        assert [(t.pending, t.display_name) for t in rec.tools] == [
            (True, ""),
            (True, "Checking time..."),
            (False, "Checked time"),
        ]
        assert "Current date and time: Wednesday, December 10, 2025" in (
            client.turns[1].messages[-1].content
        )

    @pytest.mark.asyncio
    async def test_tokens_after_resolution_ignored(self, registry, search_client):
        client = ScriptedClient(
            [
                c('<tool_call>{"name":"web_search","query":"a"}'),
                c('</tool_call><tool_call>{"name":"web_search","query":"b"}</tool_call>'),
                DONE,
            ],
            [c("Done."), DONE],
        )
        await _orchestrator(client, registry).run_turn(HISTORY)
        search_client.search.assert_awaited_once_with("a", limit=5)

    @pytest.mark.asyncio
    async def test_round_cap_stops_second_invocation(self, registry, search_client):
        client = ScriptedClient(
            [c('<tool_call>{"name":"web_search","query":"a"}</tool_call>'), DONE],
            [c('Here you go. <tool_call>{"name":"web_search","query":"b"}</tool_call>'), DONE],
        )
        outcome = await _orchestrator(client, registry).run_turn(HISTORY)

        assert search_client.search.await_count == 1
        assert len(client.turns) == 2
        assert outcome == Finalized(
            visible_text="Here you go.", tool_used=True, tool_label="Searched the web",
        )

    @pytest.mark.asyncio
    async def test_higher_cap_allows_second_round(self, registry, search_client):
        client = ScriptedClient(
            [c('<tool_call>{"name":"web_search","query":"a"}</tool_call>'), DONE],
            [c('<tool_call>{"name":"web_search","query":"b"}</tool_call>'), DONE],
            [c("Both done."), DONE],
        )
        outcome = await _orchestrator(client, registry, max_tool_rounds=2).run_turn(HISTORY)

        assert search_client.search.await_count == 2
        assert outcome.visible_text == "Both done."

    @pytest.mark.asyncio
    async def test_search_failure_fed_back(self, registry, search_client):
        from localgrok.search.client import SearchUnavailableError

        search_client.search.side_effect = SearchUnavailableError("Search error: refused")
        client = ScriptedClient(
            [c('<tool_call>{"name":"web_search","query":"x"}</tool_call>'), DONE],
            [c("Search is unavailable right now."), DONE],
        )
        outcome = await _orchestrator(client, registry).run_turn(HISTORY)

        assert "[Tool Error] Search error: refused" in client.turns[1].messages[-1].content
        assert isinstance(outcome, Finalized)
        assert outcome.tool_used


# ---------------------------------------------------------------------------
# Plain answers and cleaning
# ---------------------------------------------------------------------------

class TestPlainAnswers:
    @pytest.mark.asyncio
    async def test_plain_prose(self, registry):
        client = ScriptedClient([c("Hello"), c(" world"), DONE])
        rec = Recorder()
        outcome = await _orchestrator(client, registry).run_turn(
            HISTORY, callbacks=rec.callbacks(),
        )

        assert outcome == Finalized(visible_text="Hello world")
        assert rec.contents == ["Hello", "Hello world"]
        assert rec.states == [TurnState.STREAMING, TurnState.FINALIZED]
        assert rec.tools == []
        assert len(client.turns) == 1

    @pytest.mark.asyncio
    async def test_leading_tool_result_echo(self, registry):
        client = ScriptedClient([
            c("<tool_"),
            c("result>Search Results: x</tool_result>"),
            c("\n\nIt is sunny."),
            DONE,
        ])
        rec = Recorder()
        outcome = await _orchestrator(client, registry).run_turn(
            HISTORY, callbacks=rec.callbacks(),
        )

        assert outcome.visible_text == "It is sunny."
        assert not outcome.tool_used
        assert all("tool_result" not in text for text in rec.contents)
        assert [t.pending for t in rec.tools] == [True, False]

    @pytest.mark.asyncio
    async def test_suppression_then_revert(self, registry):
        client = ScriptedClient([c("<"), c("to"), c("ast> is bread"), DONE])
        rec = Recorder()
        outcome = await _orchestrator(client, registry).run_turn(
            HISTORY, callbacks=rec.callbacks(),
        )

        # Hidden while it could still be a tool call, shown once it diverges.
        assert rec.contents == ["<toast> is bread"]
        assert outcome.visible_text == "<toast> is bread"

    @pytest.mark.asyncio
    async def test_unknown_tool_shown_raw(self, registry):
        client = ScriptedClient([
            c('<tool_call>{"name":"calculator","query":"2+2"}</tool_call>'), DONE,
        ])
        outcome = await _orchestrator(client, registry).run_turn(HISTORY)

        assert outcome == Finalized(visible_text='{"name":"calculator","query":"2+2"}')
        assert len(client.turns) == 1

    @pytest.mark.asyncio
    async def test_malformed_json_shown_raw(self, registry):
        client = ScriptedClient([c('<tool_call>{"name": web_search}</tool_call>'), DONE])
        outcome = await _orchestrator(client, registry).run_turn(HISTORY)
        assert outcome.visible_text == '{"name": web_search}'

    @pytest.mark.asyncio
    async def test_tools_disabled_never_executes(self, registry, search_client):
        client = ScriptedClient([
            c('<tool_call>{"name":"web_search","query":"x"}</tool_call>'), DONE,
        ])
        outcome = await _orchestrator(client, registry, tools_enabled=False).run_turn(HISTORY)

        search_client.search.assert_not_awaited()
        assert not outcome.tool_used
        assert "LITE MODE" in client.turns[0].messages[0].content

    @pytest.mark.asyncio
    async def test_custom_system_prompt(self, registry):
        client = ScriptedClient([c("ok"), DONE])
        await _orchestrator(client, registry, system_prompt="Be terse.").run_turn(HISTORY)
        assert client.turns[0].messages[0].content == "Be terse."


# ---------------------------------------------------------------------------
# Reasoning
# ---------------------------------------------------------------------------

class TestReasoning:
    @pytest.mark.asyncio
    async def test_thinking_state_before_content(self, registry):
        client = ScriptedClient([r("Let me "), r("think."), c("Hi!"), DONE])
        rec = Recorder()
        outcome = await _orchestrator(client, registry, think=True).run_turn(
            HISTORY, callbacks=rec.callbacks(),
        )

        assert rec.states == [TurnState.THINKING, TurnState.STREAMING, TurnState.FINALIZED]
        assert rec.reasoning == ["Let me ", "think."]
        assert outcome.reasoning_text == "Let me think."
        assert outcome.visible_text == "Hi!"
        assert client.turns[0].think is True

    @pytest.mark.asyncio
    async def test_reasoning_ignored_when_disabled(self, registry):
        client = ScriptedClient([r("stray"), c("Hi!"), DONE])
        rec = Recorder()
        outcome = await _orchestrator(client, registry).run_turn(
            HISTORY, callbacks=rec.callbacks(),
        )

        assert rec.reasoning == []
        assert outcome.reasoning_text == ""
        assert TurnState.THINKING not in rec.states

    @pytest.mark.asyncio
    async def test_reasoning_kept_per_round(self, registry):
        client = ScriptedClient(
            [r("need search"), c('<tool_call>{"name":"web_search","query":"x"}'), DONE],
            [r("summarize"), c("Answer."), DONE],
        )
        outcome = await _orchestrator(client, registry, think=True).run_turn(HISTORY)
        assert outcome.reasoning_text == "need search\n\nsummarize"
        assert "<tool_call>" not in outcome.reasoning_text


# ---------------------------------------------------------------------------
# Failure and cancellation
# ---------------------------------------------------------------------------

class TestFailure:
    @pytest.mark.asyncio
    async def test_transport_error_mid_stream(self, registry):
        client = ScriptedClient([c("Partial"), OllamaError("Network error: reset")])
        rec = Recorder()
        outcome = await _orchestrator(client, registry).run_turn(
            HISTORY, callbacks=rec.callbacks(),
        )

        assert outcome == Failed(reason="Network error: reset", visible_text="Partial")
        assert rec.errors == ["Network error: reset"]
        assert rec.states[-1] == TurnState.FAILED
        assert client.closed == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_reported(self, registry):
        client = ScriptedClient([ValueError("bad state")])
        outcome = await _orchestrator(client, registry).run_turn(HISTORY)
        assert isinstance(outcome, Failed)
        assert "ValueError: bad state" in outcome.reason

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_turn(self, registry):
        def explode(text):
            raise RuntimeError("ui bug")

        client = ScriptedClient([c("Hello"), DONE])
        outcome = await _orchestrator(client, registry).run_turn(
            HISTORY, callbacks=TurnCallbacks(on_content=explode),
        )
        assert outcome == Finalized(visible_text="Hello")


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_mid_stream_keeps_visible_text(self, registry):
        client = ScriptedClient([c("Hello"), c(" there"), _HANG, c("never"), DONE])
        rec = Recorder()
        handle = _orchestrator(client, registry).start_turn(
            HISTORY, callbacks=rec.callbacks(),
        )

        while rec.contents[-1:] != ["Hello there"]:
            await asyncio.sleep(0)
        handle.cancel()
        outcome = await handle.wait()

        assert outcome == Cancelled(visible_text="Hello there")
        assert rec.cancelled == [outcome]
        assert rec.errors == []
        assert rec.states[-1] == TurnState.CANCELLED
        assert client.closed == 1
        assert handle.done

    @pytest.mark.asyncio
    async def test_cancel_from_other_thread(self, registry):
        client = ScriptedClient([c("Hi"), _HANG, DONE])
        rec = Recorder()
        handle = _orchestrator(client, registry).start_turn(
            HISTORY, callbacks=rec.callbacks(),
        )
        await rec.content_seen.wait()

        worker = threading.Thread(target=handle.cancel)
        worker.start()
        worker.join()
        outcome = await handle.wait()

        assert isinstance(outcome, Cancelled)
        assert outcome.visible_text == "Hi"
        assert handle.chain.cancel_event.is_set()

    @pytest.mark.asyncio
    async def test_cancel_during_tool_execution(self, registry, search_client):
        started = asyncio.Event()

        async def slow_search(query, limit=5):
            started.set()
            await asyncio.Event().wait()

        search_client.search.side_effect = slow_search
        client = ScriptedClient(
            [c('<tool_call>{"name":"web_search","query":"x"}</tool_call>'), DONE],
            [c("unused"), DONE],
        )
        rec = Recorder()
        handle = _orchestrator(client, registry).start_turn(
            HISTORY, callbacks=rec.callbacks(),
        )
        await started.wait()
        handle.cancel()
        outcome = await handle.wait()

        assert outcome == Cancelled(visible_text="", tool_used=False)
        assert len(client.turns) == 1
        assert TurnState.EXECUTING_TOOL in rec.states

    @pytest.mark.asyncio
    async def test_cancel_before_first_fragment(self, registry):
        client = ScriptedClient([_HANG, DONE])
        handle = _orchestrator(client, registry).start_turn(HISTORY)
        handle.cancel()
        outcome = await handle.wait()
        assert isinstance(outcome, Cancelled)
        assert outcome.visible_text == ""

    @pytest.mark.asyncio
    async def test_cancel_after_finish_is_noop(self, registry):
        client = ScriptedClient([c("Done"), DONE])
        handle = _orchestrator(client, registry).start_turn(HISTORY)
        outcome = await handle.wait()
        handle.cancel()
        assert outcome == Finalized(visible_text="Done")
        assert not handle.chain.cancel_event.is_set()


class TestOutcomeTypes:
    def test_continuation_holds_invocation(self):
        step = ContinuationNeeded(tool_result_text="x", invocation=WebSearch(query="q"))
        assert step.invocation == WebSearch(query="q")

    def test_terminal_states(self):
        assert TurnState.FINALIZED.is_terminal
        assert TurnState.CANCELLED.is_terminal
        assert TurnState.FAILED.is_terminal
        assert not TurnState.EXECUTING_TOOL.is_terminal
