"""Streaming orchestrator: the per-turn state machine.

    stream → detect tool call → execute → continuation stream → finalize

The orchestrator routes fragments from :class:`AsyncOllamaClient` through
the response parser, hides tool protocol from observers, runs at most
``max_tool_rounds`` tools per turn and reports a terminal
:data:`~localgrok.types.TurnOutcome`.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from typing import Any, Callable, Sequence

from localgrok.core.context import AccumulatedResponse, TurnChain
from localgrok.llm.client import AsyncOllamaClient, OllamaError
from localgrok.llm.response_parser import (
    clean_tool_artifacts,
    contains_tool_call_marker,
    detect_tool_call,
    is_starting_with_tool_call,
    strip_markers,
)
from localgrok.prompts import build_system_prompt, build_tool_result_block
from localgrok.tools.builtin.clock import Clock, local_now
from localgrok.tools.registry import ToolRegistry
from localgrok.types import (
    Cancelled,
    ChatMessage,
    ContinuationNeeded,
    ConversationTurn,
    Failed,
    Finalized,
    StreamFragment,
    ToolActivity,
    TurnCallbacks,
    TurnOptions,
    TurnOutcome,
    TurnState,
)

_logger = logging.getLogger(__name__)


class StreamingOrchestrator:
    """Drives one user turn from first token to terminal outcome.

    Parameters
    ----------
    client:
        Streaming client for the inference server.
    registry:
        Tools the model may call.
    options:
        Default turn options; each call may pass its own.
    clock:
        Time source for the system prompt (tests inject a fixed one).
    """

    def __init__(
        self,
        client: AsyncOllamaClient,
        registry: ToolRegistry,
        options: TurnOptions,
        clock: Clock | None = None,
    ) -> None:
        self._client = client
        self._registry = registry
        self.options = options
        self._clock = clock or local_now

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build_turn(
        self,
        history: Sequence[ChatMessage],
        options: TurnOptions | None = None,
    ) -> ConversationTurn:
        """System prompt followed by the conversation so far."""
        options = options or self.options
        system = options.system_prompt or build_system_prompt(
            options.tools_enabled, self._registry, self._clock(),
        )
        return ConversationTurn(
            messages=(ChatMessage(role="system", content=system), *history),
            model=options.model,
            think=options.think,
        )

    def start_turn(
        self,
        history: Sequence[ChatMessage],
        options: TurnOptions | None = None,
        callbacks: TurnCallbacks | None = None,
    ) -> TurnHandle:
        """Run a turn in a new task and return a handle to cancel or await it."""
        options = options or self.options
        chain = TurnChain(turn=self.build_turn(history, options))
        loop = asyncio.get_running_loop()
        task = loop.create_task(self.run_turn(history, options, callbacks, chain=chain))
        return TurnHandle(task, chain, loop)

    async def run_turn(
        self,
        history: Sequence[ChatMessage],
        options: TurnOptions | None = None,
        callbacks: TurnCallbacks | None = None,
        *,
        chain: TurnChain | None = None,
    ) -> TurnOutcome:
        """Run a turn to completion.

        Never raises for transport failures or cancellation: both are
        reported as the returned outcome (and through *callbacks*).
        """
        options = options or self.options
        callbacks = callbacks or TurnCallbacks()
        chain = chain or TurnChain(turn=self.build_turn(history, options))

        outcome: TurnOutcome
        try:
            outcome = await self._run_chain(chain, options, callbacks)
        except asyncio.CancelledError:
            _logger.debug("Turn cancelled")
            outcome = Cancelled(
                visible_text=chain.visible_text,
                reasoning_text=chain.reasoning_text,
                tool_used=chain.tool_used,
            )
        except OllamaError as e:
            _logger.warning("Turn failed: %s", e)
            outcome = Failed(reason=str(e), visible_text=chain.visible_text)
        except Exception as e:
            _logger.exception("Orchestrator error")
            outcome = Failed(
                reason=f"Unexpected error: {type(e).__name__}: {e}",
                visible_text=chain.visible_text,
            )

        await self._finish(chain, outcome, callbacks)
        return outcome

    # ------------------------------------------------------------------
    # Turn chain
    # ------------------------------------------------------------------

    async def _run_chain(
        self,
        chain: TurnChain,
        options: TurnOptions,
        callbacks: TurnCallbacks,
    ) -> Finalized:
        turn = chain.turn
        while True:
            self._check_cancelled(chain)
            detect = options.tools_enabled and chain.tool_rounds < options.max_tool_rounds
            response = await self._stream_once(chain, turn, detect, callbacks)

            step = await self._complete_stream(chain, response, callbacks)
            if isinstance(step, Finalized):
                return step

            self._check_cancelled(chain)
            turn = turn.with_system_block(step.tool_result_text)
            await self._set_state(chain, TurnState.STREAMING, callbacks)

    async def _stream_once(
        self,
        chain: TurnChain,
        turn: ConversationTurn,
        detect: bool,
        callbacks: TurnCallbacks,
    ) -> AccumulatedResponse:
        """Consume one stream, routing fragments in wire order."""
        response = AccumulatedResponse()
        chain.reasoning_parts.append("")

        async with contextlib.aclosing(self._client.stream_chat(turn)) as fragments:
            async for fragment in fragments:
                self._check_cancelled(chain)
                await self._on_fragment(chain, response, fragment, detect, callbacks)
        return response

    async def _on_fragment(
        self,
        chain: TurnChain,
        response: AccumulatedResponse,
        fragment: StreamFragment,
        detect: bool,
        callbacks: TurnCallbacks,
    ) -> None:
        if fragment.reasoning and chain.turn.think:
            response.reasoning += fragment.reasoning
            chain.reasoning_parts[-1] = response.reasoning
            if not response.saw_content:
                await self._set_state(chain, TurnState.THINKING, callbacks)
            await self._notify(callbacks.on_reasoning, fragment.reasoning)

        if fragment.content:
            if not response.saw_content:
                response.saw_content = True
                await self._set_state(chain, TurnState.STREAMING, callbacks)
            await self._on_content(chain, response, fragment.content, detect, callbacks)

    async def _on_content(
        self,
        chain: TurnChain,
        response: AccumulatedResponse,
        delta: str,
        detect: bool,
        callbacks: TurnCallbacks,
    ) -> None:
        if response.resolved:
            return
        response.content += delta

        if detect:
            starting = is_starting_with_tool_call(response.content)
            if starting and not response.invocation_pending:
                response.invocation_pending = True
                await self._publish_visible(chain, "", callbacks)
                await self._notify(callbacks.on_tool, ToolActivity(pending=True))
            elif not starting and response.invocation_pending:
                _logger.debug("Tool call prefix diverged, showing content again")
                response.invocation_pending = False
                await self._notify(callbacks.on_tool, ToolActivity(pending=False))

            if response.invocation_pending or contains_tool_call_marker(response.content):
                invocation = detect_tool_call(response.content, self._registry)
                if invocation is not None:
                    response.invocation = invocation
                    tool = self._registry.tool_for(invocation)
                    await self._publish_visible(chain, "", callbacks)
                    await self._notify(
                        callbacks.on_tool,
                        ToolActivity(
                            pending=True,
                            display_name=tool.display_name if tool else "",
                            invocation=invocation,
                        ),
                    )
                    return

        if not response.invocation_pending:
            await self._publish_visible(chain, clean_tool_artifacts(response.content), callbacks)

    async def _complete_stream(
        self,
        chain: TurnChain,
        response: AccumulatedResponse,
        callbacks: TurnCallbacks,
    ) -> Finalized | ContinuationNeeded:
        if response.invocation is None:
            return await self._finalize(chain, response, callbacks)

        await self._set_state(chain, TurnState.EXECUTING_TOOL, callbacks)
        invocation = response.invocation
        tool = self._registry.tool_for(invocation)
        result = await self._registry.execute(invocation)
        if not result.success:
            _logger.warning("Tool returned an error: %s", result.error)

        chain.tool_rounds += 1
        chain.tool_label = tool.used_label if tool else ""
        await self._notify(
            callbacks.on_tool,
            ToolActivity(pending=False, display_name=chain.tool_label, invocation=invocation),
        )
        return ContinuationNeeded(
            tool_result_text=build_tool_result_block(result),
            invocation=invocation,
        )

    async def _finalize(
        self,
        chain: TurnChain,
        response: AccumulatedResponse,
        callbacks: TurnCallbacks,
    ) -> Finalized:
        visible = clean_tool_artifacts(response.content)
        if not visible and not chain.tool_used and contains_tool_call_marker(response.content):
            # Malformed or unknown tool call: show it rather than nothing.
            _logger.warning("Unusable tool call in response: %.200s", response.content)
            visible = strip_markers(response.content)

        await self._publish_visible(chain, visible, callbacks)
        return Finalized(
            visible_text=visible,
            reasoning_text=chain.reasoning_text,
            tool_used=chain.tool_used,
            tool_label=chain.tool_label,
        )

    async def _finish(
        self,
        chain: TurnChain,
        outcome: TurnOutcome,
        callbacks: TurnCallbacks,
    ) -> None:
        if isinstance(outcome, Finalized):
            await self._set_state(chain, TurnState.FINALIZED, callbacks)
            await self._notify(callbacks.on_complete, outcome)
        elif isinstance(outcome, Cancelled):
            await self._set_state(chain, TurnState.CANCELLED, callbacks)
            await self._notify(callbacks.on_cancelled, outcome)
        elif isinstance(outcome, Failed):
            await self._set_state(chain, TurnState.FAILED, callbacks)
            await self._notify(callbacks.on_error, outcome.reason)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_cancelled(chain: TurnChain) -> None:
        if chain.cancelled:
            raise asyncio.CancelledError()

    async def _set_state(
        self, chain: TurnChain, state: TurnState, callbacks: TurnCallbacks,
    ) -> None:
        if chain.state == state:
            return
        _logger.debug("Turn state %s -> %s", chain.state.value, state.value)
        chain.state = state
        await self._notify(callbacks.on_state, state)

    async def _publish_visible(
        self, chain: TurnChain, text: str, callbacks: TurnCallbacks,
    ) -> None:
        if text == chain.visible_text:
            return
        chain.visible_text = text
        await self._notify(callbacks.on_content, text)

    @staticmethod
    async def _notify(callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            _logger.exception(
                "Turn callback %s raised", getattr(callback, "__name__", callback),
            )


class TurnHandle:
    """Handle to a running turn.

    ``cancel()`` is safe to call from any thread: it only sets the chain's
    cancel flag and schedules ``Task.cancel()`` on the turn's loop.
    """

    def __init__(
        self,
        task: asyncio.Task[TurnOutcome],
        chain: TurnChain,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self._task = task
        self._chain = chain
        self._loop = loop

    @property
    def chain(self) -> TurnChain:
        return self._chain

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        if self._task.done():
            return
        self._chain.cancel_event.set()
        self._loop.call_soon_threadsafe(self._cancel_task)

    async def wait(self) -> TurnOutcome:
        """Wait for the outcome; a turn cancelled before it ran is Cancelled."""
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if self._task.cancelled():
                return Cancelled(
                    visible_text=self._chain.visible_text,
                    reasoning_text=self._chain.reasoning_text,
                    tool_used=self._chain.tool_used,
                )
            raise

    def _cancel_task(self) -> None:
        # Terminal turns are already delivering their outcome callbacks.
        if self._task.done() or self._chain.state.is_terminal:
            return
        self._task.cancel()
