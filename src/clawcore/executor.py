"""Bounded LLM <-> tool iteration for a single turn."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from clawcore.events.bus import ClawEvent, EventBus
from clawcore.models.config import AgentConfig
from clawcore.models.message import LLMResponse, Message, ToolCall
from clawcore.providers.base import ChunkCallback, LLMProvider
from clawcore.store.sessions import SessionStore
from clawcore.tools.registry import ToolRegistry

_ARGS_PREVIEW_CHARS = 200


class ToolCallingIterator:
    """
    Drives the LLM through up to ``max_iterations`` round-trips for one turn.

    Each round sends the full running message list plus every registered
    tool schema. A response without tool calls ends the turn with its text.
    A response with tool calls is echoed as one assistant message, then each
    call is executed in response order and answered with one tool message.
    Every appended message goes to both the working list and the session
    store, in the same order, so the store mirrors exactly what the LLM saw.

    Tool failures never abort the loop: the exception text is handed back to
    the LLM as ``"Error: <message>"``. LLM call failures propagate.

    If the budget runs out while the model is still requesting tools, the
    result is ``None`` and the caller decides what to say.
    """

    def __init__(
        self,
        provider: LLMProvider,
        tools: ToolRegistry,
        store: SessionStore,
        config: AgentConfig,
        event_bus: EventBus | None = None,
        model: str | None = None,
    ) -> None:
        self._provider = provider
        self._tools = tools
        self._store = store
        self._config = config
        self._event_bus = event_bus or EventBus()
        self._model = model or config.model
        self._logger = structlog.get_logger("clawcore.executor")

    @property
    def provider(self) -> LLMProvider:
        return self._provider

    @property
    def model(self) -> str:
        return self._model

    async def run(
        self,
        messages: list[Message],
        session_key: str,
        max_iterations: int | None = None,
    ) -> str | None:
        """
        Run the tool-calling loop.

        Args:
            messages: Working message list; appended to in place.
            session_key: Session whose store history receives the same appends.
            max_iterations: Override for ``config.max_iterations``.

        Returns:
            The final response text, or None if the iteration budget ran out
            while tools were still being requested.
        """

        async def _call(tools: list[dict[str, Any]]) -> LLMResponse:
            return await self._provider.chat(messages, tools, self._model, self._options())

        return await self._iterate(messages, session_key, max_iterations, _call)

    async def run_stream(
        self,
        messages: list[Message],
        session_key: str,
        on_chunk: ChunkCallback,
        max_iterations: int | None = None,
    ) -> str | None:
        """Same as :meth:`run`, delivering response text to ``on_chunk`` as it streams."""

        async def _call(tools: list[dict[str, Any]]) -> LLMResponse:
            return await self._provider.chat_stream(
                messages, tools, self._model, self._options(), on_chunk
            )

        return await self._iterate(messages, session_key, max_iterations, _call)

    # ── Internal implementation ─────────────────────────────────────────────────

    async def _iterate(
        self,
        messages: list[Message],
        session_key: str,
        max_iterations: int | None,
        call: Callable[[list[dict[str, Any]]], Awaitable[LLMResponse]],
    ) -> str | None:
        limit = max_iterations if max_iterations is not None else self._config.max_iterations
        log = self._logger.bind(session_key=session_key)
        iteration = 0

        while iteration < limit:
            iteration += 1
            log.debug("llm_iteration", iteration=iteration, max=limit)

            response = await call(self._tools.definitions())

            if not response.has_tool_calls:
                log.info(
                    "llm_response_final",
                    iteration=iteration,
                    content_chars=len(response.content or ""),
                )
                return response.content

            log.info(
                "llm_tool_calls_requested",
                iteration=iteration,
                tools=[tc.name for tc in response.tool_calls],
                count=len(response.tool_calls),
            )

            assistant = Message.assistant(
                response.content or "",
                tool_calls=[tc.model_copy(deep=True) for tc in response.tool_calls],
            )
            messages.append(assistant)
            self._store.add_full_message(session_key, assistant)

            for tool_call in response.tool_calls:
                result = await self._execute_tool(session_key, tool_call, iteration)
                tool_message = Message.tool(tool_call.id, result)
                messages.append(tool_message)
                self._store.add_full_message(session_key, tool_message)

        log.warning("max_iterations_reached", iterations=limit)
        return None

    async def _execute_tool(self, session_key: str, tool_call: ToolCall, iteration: int) -> str:
        """Execute one call; any exception becomes ``"Error: <message>"``."""
        self._logger.info(
            "tool_call",
            session_key=session_key,
            tool=tool_call.name,
            iteration=iteration,
            args_preview=str(tool_call.arguments)[:_ARGS_PREVIEW_CHARS],
        )
        start = time.monotonic()
        success = True
        try:
            result = await self._tools.execute(tool_call.name, tool_call.arguments)
        except Exception as exc:
            success = False
            result = f"Error: {exc}"
            self._logger.warning(
                "tool_call_failed",
                session_key=session_key,
                tool=tool_call.name,
                error=str(exc),
            )
        self._event_bus.publish(
            ClawEvent.TOOL_EXECUTED,
            {
                "session_key": session_key,
                "tool": tool_call.name,
                "tool_call_id": tool_call.id,
                "iteration": iteration,
                "success": success,
                "duration_ms": (time.monotonic() - start) * 1000,
            },
        )
        return result

    def _options(self) -> dict[str, Any]:
        return {"max_tokens": self._config.max_tokens, "temperature": self._config.temperature}
