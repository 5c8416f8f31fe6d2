"""Agent loop: the turn orchestrator and primary public entry point."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from clawcore.bus.events import InboundMessage, OutboundMessage
from clawcore.bus.queue import MessageBus
from clawcore.compaction.engine import HistoryCompactor
from clawcore.context.builder import ContextBuilder
from clawcore.context.skills import SkillsLoader
from clawcore.events.bus import ClawEvent, EventBus
from clawcore.executor import ToolCallingIterator
from clawcore.models.config import AgentConfig
from clawcore.providers.base import ChunkCallback, LLMProvider
from clawcore.store.sessions import SessionStore
from clawcore.tokens.estimator import TokenEstimator
from clawcore.tools.base import Tool
from clawcore.tools.registry import ToolRegistry

SYSTEM_CHANNEL = "system"
DEFAULT_ORIGIN_CHANNEL = "cli"

NO_PROVIDER_RESPONSE = (
    "No LLM provider is configured. Configure a provider API key to enable responses."
)
EMPTY_RESPONSE = "I've completed processing but have no response to give."
EMPTY_SYSTEM_RESPONSE = "Background task completed."


def split_origin(chat_id: str) -> tuple[str, str]:
    """
    Split a system message's ``"channel:chat_id"`` origin on the first colon.

    Without a colon the origin channel is ``"cli"`` and the whole value is
    the chat ID.
    """
    channel, sep, origin_chat_id = chat_id.partition(":")
    if not sep:
        return DEFAULT_ORIGIN_CHANNEL, chat_id
    return channel, origin_chat_id


@dataclass(frozen=True)
class _Runtime:
    """The provider and the two components bound to it, swapped as one unit."""

    provider: LLMProvider
    executor: ToolCallingIterator
    compactor: HistoryCompactor


class AgentLoop:
    """
    Routes inbound messages through context assembly, the tool-calling loop,
    persistence and compaction.

    Usage::

        async with await AgentLoop.create(config, provider=LiteLLMProvider()) as agent:
            agent.register_tool(MyTool())
            reply = await agent.process_direct("What's on my list today?")

        # Bus-driven: one consumer drains inbound messages until stop()
        agent = await AgentLoop.create(config, bus=bus, provider=provider)
        runner = asyncio.create_task(agent.run())
        ...
        agent.stop()
        await runner
        await agent.close()

    **Provider swaps.** The provider, the iterator and the compactor built on
    it are held together and replaced as one unit by :meth:`reconfigure`.
    Each turn reads that unit once, so an in-flight turn keeps the provider
    it started with.

    **Concurrency.** The bus loop processes one message at a time. Direct
    calls (``process_direct*``) may run concurrently with it, and background
    compaction may run while a new turn on the same session appends. There is
    no per-session lock: a compaction that truncates and saves while a turn
    is appending can drop messages appended in between.
    """

    def __init__(
        self,
        config: AgentConfig | None = None,
        bus: MessageBus | None = None,
        provider: LLMProvider | None = None,
        *,
        store: SessionStore | None = None,
        tools: ToolRegistry | None = None,
        context: ContextBuilder | None = None,
        event_bus: EventBus | None = None,
        token_estimator: TokenEstimator | None = None,
        poll_interval: float = 1.0,
    ) -> None:
        self._config = config or AgentConfig.default()
        self._workspace = Path(self._config.workspace).expanduser()
        self._bus = bus or MessageBus()
        self._owns_store = store is None
        self._store = store or SessionStore(self._config.store)
        self._tools = tools if tools is not None else ToolRegistry()
        self._event_bus = event_bus or EventBus()
        self._estimator = token_estimator or TokenEstimator(self._config.token_encoding)
        self._context = context or ContextBuilder(
            self._workspace,
            self._tools,
            agent_name=self._config.agent_name,
            skills=SkillsLoader(
                self._workspace,
                global_dir=self._config.global_skills_dir,
                builtin_dir=self._config.builtin_skills_dir,
            ),
            memory_days=self._config.memory_days,
        )
        self._poll_interval = poll_interval
        self._reconfigure_lock = asyncio.Lock()
        self._compactor_seed: HistoryCompactor | None = None
        self._runtime: _Runtime | None = (
            self._build_runtime(provider, None) if provider is not None else None
        )
        self._running = False
        self._logger = structlog.get_logger("clawcore.loop")

    @classmethod
    async def create(
        cls,
        config: AgentConfig | None = None,
        bus: MessageBus | None = None,
        provider: LLMProvider | None = None,
        **kwargs: Any,
    ) -> AgentLoop:
        """Construct and initialize an agent loop. Keyword arguments go to ``__init__``."""
        agent = cls(config, bus, provider, **kwargs)
        await agent.initialize()
        return agent

    async def initialize(self) -> None:
        """
        Create the workspace directory and open the session store.

        A store passed to the constructor is assumed to be initialized
        already and is left alone.
        """
        try:
            self._workspace.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self._logger.warning(
                "workspace_create_failed", workspace=str(self._workspace), error=str(exc)
            )
        if self._owns_store:
            await self._store.initialize()
        self._logger.info(
            "agent_initialized",
            model=self._config.model,
            workspace=str(self._workspace),
            max_iterations=self._config.max_iterations,
            provider_configured=self._runtime is not None,
        )

    async def close(self) -> None:
        """Wait for background compactions, then close a store this loop opened."""
        self.stop()
        await self.wait_for_compactions()
        if self._owns_store:
            await self._store.close()

    async def __aenter__(self) -> AgentLoop:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # ── Provider handle ─────────────────────────────────────────────────────────

    def _build_runtime(self, provider: LLMProvider, model: str | None) -> _Runtime:
        executor = ToolCallingIterator(
            provider,
            self._tools,
            self._store,
            self._config,
            event_bus=self._event_bus,
            model=model,
        )
        if self._compactor_seed is None:
            compactor = HistoryCompactor(
                self._store,
                provider,
                self._estimator,
                self._config,
                event_bus=self._event_bus,
            )
        else:
            compactor = self._compactor_seed.with_provider(provider)
        self._compactor_seed = compactor
        return _Runtime(provider=provider, executor=executor, compactor=compactor)

    async def reconfigure(self, provider: LLMProvider | None, model: str | None = None) -> None:
        """
        Atomically replace the LLM provider and the components bound to it.

        Turns already running keep the previous provider; turns that start
        afterwards use the new one.

        Args:
            provider: The new provider, or None to run without one (turns then
                answer with a configuration notice).
            model: Optional model override for turn-level calls.
        """
        async with self._reconfigure_lock:
            self._runtime = self._build_runtime(provider, model) if provider is not None else None
        self._logger.info(
            "provider_reconfigured",
            provider=type(provider).__name__ if provider is not None else None,
        )
        self._event_bus.publish(
            ClawEvent.PROVIDER_RECONFIGURED,
            {
                "provider": type(provider).__name__ if provider is not None else None,
                "model": model or self._config.model,
            },
        )

    # ── Consume loop ────────────────────────────────────────────────────────────

    async def run(self) -> None:
        """
        Consume inbound messages until :meth:`stop` is called.

        Replies to user messages are published on the outbound queue; system
        messages publish their own replies. A failing message is logged and
        the loop moves on.
        """
        self._running = True
        self._logger.info("agent_loop_started")
        while self._running:
            msg = await self._bus.consume_inbound(timeout=self._poll_interval)
            if msg is None:
                continue
            try:
                response = await self.process_message(msg)
                if msg.channel != SYSTEM_CHANNEL and response:
                    self._bus.publish_outbound(
                        OutboundMessage(channel=msg.channel, chat_id=msg.chat_id, content=response)
                    )
            except Exception as exc:
                self._logger.error(
                    "error_processing_message",
                    channel=msg.channel,
                    session_key=msg.session_key,
                    error=str(exc),
                )
        self._logger.info("agent_loop_stopped")

    def stop(self) -> None:
        """Stop after the current message; an in-flight turn is not cancelled."""
        self._running = False

    # ── Entry points ────────────────────────────────────────────────────────────

    async def handle(self, inbound: InboundMessage) -> str:
        """Alias of :meth:`process_message`."""
        return await self.process_message(inbound)

    async def process_message(self, msg: InboundMessage) -> str:
        """
        Process one inbound message and return the reply.

        Messages on the ``system`` channel are routed back to their origin
        chat: the reply is also published on the outbound queue.

        Raises:
            Exception: Whatever the LLM call raised; the turn is abandoned.
        """
        return await self._dispatch(msg, None)

    async def process_direct(self, content: str, session_key: str = "cli:direct") -> str:
        """Run a CLI turn against an explicit session key."""
        msg = InboundMessage(
            channel="cli", sender_id="user", chat_id="direct", content=content,
            session_key=session_key,
        )
        return await self._dispatch(msg, None)

    async def process_direct_with_channel(
        self, content: str, session_key: str, channel: str, chat_id: str
    ) -> str:
        """Run a scheduler-initiated turn that keeps its channel routing."""
        msg = InboundMessage(
            channel=channel, sender_id="cron", chat_id=chat_id, content=content,
            session_key=session_key,
        )
        return await self._dispatch(msg, None)

    async def process_direct_stream(
        self, content: str, on_chunk: ChunkCallback, session_key: str = "cli:direct"
    ) -> str:
        """Like :meth:`process_direct`, streaming response text to ``on_chunk``."""
        msg = InboundMessage(
            channel="cli", sender_id="user", chat_id="direct", content=content,
            session_key=session_key,
        )
        return await self._dispatch(msg, on_chunk)

    async def _dispatch(self, msg: InboundMessage, on_chunk: ChunkCallback | None) -> str:
        self._logger.info(
            "processing_message",
            channel=msg.channel,
            chat_id=msg.chat_id,
            sender_id=msg.sender_id,
            session_key=msg.session_key,
            preview=msg.content[:80],
        )
        runtime = self._runtime

        if msg.channel == SYSTEM_CHANNEL:
            origin_channel, origin_chat_id = split_origin(msg.chat_id)
            if runtime is None:
                self._logger.warning("no_provider_configured", session_key=msg.session_key)
                response = NO_PROVIDER_RESPONSE
            else:
                response = await self._run_turn(
                    runtime,
                    session_key=f"{origin_channel}:{origin_chat_id}",
                    user_text=f"[System: {msg.sender_id}] {msg.content}",
                    channel=origin_channel,
                    chat_id=origin_chat_id,
                    fallback=EMPTY_SYSTEM_RESPONSE,
                    system=True,
                    on_chunk=on_chunk,
                )
            self._bus.publish_outbound(
                OutboundMessage(channel=origin_channel, chat_id=origin_chat_id, content=response)
            )
            return response

        if runtime is None:
            self._logger.warning("no_provider_configured", session_key=msg.session_key)
            return NO_PROVIDER_RESPONSE

        return await self._run_turn(
            runtime,
            session_key=msg.session_key,
            user_text=msg.content,
            channel=msg.channel,
            chat_id=msg.chat_id,
            fallback=EMPTY_RESPONSE,
            system=False,
            on_chunk=on_chunk,
        )

    async def _run_turn(
        self,
        runtime: _Runtime,
        *,
        session_key: str,
        user_text: str,
        channel: str,
        chat_id: str,
        fallback: str,
        system: bool,
        on_chunk: ChunkCallback | None,
    ) -> str:
        self._event_bus.publish(
            ClawEvent.TURN_STARTED,
            {"session_key": session_key, "channel": channel, "system": system},
        )
        history = self._store.get_history(session_key)
        summary = self._store.get_summary(session_key)
        messages = self._context.build_messages(history, summary, user_text, channel, chat_id)
        self._store.add_message(session_key, "user", user_text)

        try:
            if on_chunk is None:
                response = await runtime.executor.run(messages, session_key)
            else:
                response = await runtime.executor.run_stream(messages, session_key, on_chunk)
        except Exception as exc:
            self._event_bus.publish(
                ClawEvent.TURN_FAILED, {"session_key": session_key, "error": str(exc)}
            )
            raise

        used_fallback = not response or not response.strip()
        if used_fallback:
            response = fallback

        self._store.add_message(session_key, "assistant", response)
        await self._store.save(self._store.get_or_create(session_key))

        if self._config.compaction.auto:
            runtime.compactor.maybe_compact(session_key)

        self._event_bus.publish(
            ClawEvent.TURN_COMPLETED,
            {
                "session_key": session_key,
                "response_chars": len(response),
                "used_fallback": used_fallback,
            },
        )
        return response

    # ── Tools / introspection ───────────────────────────────────────────────────

    def register_tool(self, tool: Tool) -> None:
        """Register a tool and make it visible in the next system prompt."""
        self._tools.register(tool)
        self._context.set_tools(self._tools)

    def startup_info(self) -> dict[str, Any]:
        """Return ``{"tools": {"count", "names"}, "skills": {"total", "available", "names"}}``."""
        return {
            "tools": {"count": len(self._tools), "names": self._tools.names()},
            "skills": self._context.skills_info(),
        }

    async def wait_for_compactions(self, session_key: str | None = None) -> None:
        """Await background compactions started by any provider generation."""
        if self._compactor_seed is not None:
            await self._compactor_seed.wait_for_pending(session_key)

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def bus(self) -> MessageBus:
        return self._bus

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def tools(self) -> ToolRegistry:
        return self._tools

    @property
    def context(self) -> ContextBuilder:
        return self._context

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def provider(self) -> LLMProvider | None:
        runtime = self._runtime
        return runtime.provider if runtime is not None else None

    @property
    def compactor(self) -> HistoryCompactor | None:
        runtime = self._runtime
        return runtime.compactor if runtime is not None else None

    @property
    def running(self) -> bool:
        return self._running

    def subscribe(self, event: ClawEvent, handler: Any) -> None:
        """Convenience wrapper for ``self.event_bus.subscribe(event, handler)``."""
        self._event_bus.subscribe(event, handler)
