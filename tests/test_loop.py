"""Tests for AgentLoop, the turn orchestrator."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from clawcore.bus.events import InboundMessage, OutboundMessage
from clawcore.bus.queue import MessageBus
from clawcore.events.bus import ClawEvent
from clawcore.ids import make_id
from clawcore.loop import (
    EMPTY_RESPONSE,
    EMPTY_SYSTEM_RESPONSE,
    NO_PROVIDER_RESPONSE,
    AgentLoop,
    split_origin,
)
from clawcore.models.config import CompactionConfig
from clawcore.store.sessions import SessionStore
from tests.conftest import EchoTool, ScriptedProvider, conversation, text_response, tool_response


def make_loop(config, store, tools, event_bus, estimator, provider=None, bus=None):
    return AgentLoop(
        config,
        bus or MessageBus(),
        provider,
        store=store,
        tools=tools,
        event_bus=event_bus,
        token_estimator=estimator,
        poll_interval=0.05,
    )


class HeldProvider(ScriptedProvider):
    """Signals ``started`` on each call and answers only once ``release`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def chat(self, messages, tools, model, options):
        self.started.set()
        await self.release.wait()
        return await super().chat(messages, tools, model, options)


@pytest.fixture
def agent(config, store, tools, event_bus, estimator, provider):
    return make_loop(config, store, tools, event_bus, estimator, provider)


class TestHelpers:
    def test_make_id_prefix(self):
        first, second = make_id("call"), make_id("call")
        assert first.startswith("call_")
        assert first != second

    def test_split_origin(self):
        assert split_origin("telegram:42") == ("telegram", "42")
        assert split_origin("slack:C1:thread") == ("slack", "C1:thread")
        assert split_origin("nocolon") == ("cli", "nocolon")


class TestUserTurn:
    async def test_reply_and_history(self, agent, store, provider):
        provider.script = [text_response("hello back")]

        reply = await agent.process_direct("hello")

        assert reply == "hello back"
        history = store.get_history("cli:direct")
        assert [(m.role, m.content) for m in history] == [
            ("user", "hello"),
            ("assistant", "hello back"),
        ]

    async def test_llm_sees_system_history_user(self, agent, provider):
        await agent.process_direct("one")
        await agent.process_direct("two")

        first = provider.calls[0]["messages"]
        second = provider.calls[1]["messages"]
        assert [m.role for m in first] == ["system", "user"]
        assert [(m.role, m.content) for m in second[1:]] == [
            ("user", "one"),
            ("assistant", "ok"),
            ("user", "two"),
        ]
        assert "Chat ID: direct" in second[0].content

    async def test_turn_is_persisted(self, agent, config):
        await agent.process_direct("remember me", session_key="cli:persist")

        reloaded = SessionStore(config.store)
        await reloaded.initialize()
        try:
            assert [m.content for m in reloaded.get_history("cli:persist")] == ["remember me", "ok"]
        finally:
            await reloaded.close()

    async def test_tool_turn_history_order(self, agent, store, provider):
        provider.script = [tool_response(("echo", {"text": "x"})), text_response("done")]

        await agent.process_direct("use the tool")

        assert [m.role for m in store.get_history("cli:direct")] == [
            "user",
            "assistant",
            "tool",
            "assistant",
        ]

    async def test_empty_response_fallback(self, agent, store, provider):
        provider.script = [text_response("   ")]
        assert await agent.process_direct("hi") == EMPTY_RESPONSE
        assert store.get_history("cli:direct")[-1].content == EMPTY_RESPONSE

    async def test_exhausted_iterations_fallback(
        self, config, store, tools, event_bus, estimator
    ):
        config = config.model_copy(update={"max_iterations": 2})
        provider = ScriptedProvider(default=tool_response(("echo", {"text": "loop"})))
        agent = make_loop(config, store, tools, event_bus, estimator, provider)

        assert await agent.process_direct("hi") == EMPTY_RESPONSE
        assert len(provider.calls) == 2

    async def test_process_message_uses_channel_session(self, agent, store):
        msg = InboundMessage(channel="telegram", sender_id="u1", chat_id="42", content="hey")
        assert await agent.process_message(msg) == "ok"
        assert len(store.get_history("telegram:42")) == 2
        assert await agent.handle(msg) == "ok"
        assert len(store.get_history("telegram:42")) == 4

    async def test_process_direct_with_channel(self, agent, store, provider):
        reply = await agent.process_direct_with_channel(
            "reminder fired", "telegram:42", "telegram", "42"
        )
        assert reply == "ok"
        assert "Channel: telegram\nChat ID: 42" in provider.calls[0]["messages"][0].content
        assert store.get_history("telegram:42")[0].content == "reminder fired"

    async def test_provider_error_propagates(self, agent, store, provider, event_bus):
        provider.script = [RuntimeError("llm down")]

        with pytest.raises(RuntimeError, match="llm down"):
            await agent.process_direct("hi")

        assert (ClawEvent.TURN_FAILED, {"session_key": "cli:direct", "error": "llm down"}) in (
            event_bus.collected
        )
        assert [m.role for m in store.get_history("cli:direct")] == ["user"]

    async def test_turn_events(self, agent, event_bus):
        await agent.process_direct("hi")
        events = [e for e, _ in event_bus.collected]
        assert events == [ClawEvent.TURN_STARTED, ClawEvent.TURN_COMPLETED]
        completed = event_bus.collected[1][1]
        assert completed["session_key"] == "cli:direct"
        assert completed["used_fallback"] is False

    async def test_summary_reaches_system_prompt(self, agent, store, provider):
        store.get_or_create("cli:direct")
        store.set_summary("cli:direct", "User likes tea.")
        await agent.process_direct("what do I like?")
        system = provider.calls[0]["messages"][0].content
        assert system.endswith("## Summary of Previous Conversation\n\nUser likes tea.")


class TestSystemMessages:
    async def test_routed_to_origin_session(self, agent, store, provider):
        msg = InboundMessage(
            channel="system", sender_id="subagent", chat_id="telegram:42", content="task done"
        )
        provider.script = [text_response("Your task finished.")]

        reply = await agent.process_message(msg)

        assert reply == "Your task finished."
        history = store.get_history("telegram:42")
        assert history[0].content == "[System: subagent] task done"
        assert history[1].content == "Your task finished."
        assert "system:telegram:42" not in store
        assert "Channel: telegram\nChat ID: 42" in provider.calls[0]["messages"][0].content

    async def test_reply_published_to_origin(self, agent):
        msg = InboundMessage(channel="system", sender_id="cron", chat_id="slack:C1", content="x")
        await agent.process_message(msg)
        out = await agent.bus.subscribe_outbound(timeout=1)
        assert out == OutboundMessage(channel="slack", chat_id="C1", content="ok")

    async def test_origin_without_colon_defaults_to_cli(self, agent, store):
        msg = InboundMessage(channel="system", sender_id="cron", chat_id="abc", content="x")
        await agent.process_message(msg)
        assert len(store.get_history("cli:abc")) == 2
        out = await agent.bus.subscribe_outbound(timeout=1)
        assert (out.channel, out.chat_id) == ("cli", "abc")

    async def test_system_fallback(self, agent, provider):
        provider.script = [text_response("")]
        msg = InboundMessage(channel="system", sender_id="cron", chat_id="cli:direct", content="x")
        assert await agent.process_message(msg) == EMPTY_SYSTEM_RESPONSE


class TestProviderConfiguration:
    async def test_no_provider_notice(self, config, store, tools, event_bus, estimator):
        agent = make_loop(config, store, tools, event_bus, estimator)

        assert await agent.process_direct("hi") == NO_PROVIDER_RESPONSE
        assert store.get_history("cli:direct") == []
        assert agent.provider is None
        assert agent.compactor is None

    async def test_no_provider_system_message_still_replies(
        self, config, store, tools, event_bus, estimator
    ):
        agent = make_loop(config, store, tools, event_bus, estimator)
        msg = InboundMessage(channel="system", sender_id="cron", chat_id="telegram:7", content="x")

        assert await agent.process_message(msg) == NO_PROVIDER_RESPONSE
        out = await agent.bus.subscribe_outbound(timeout=1)
        assert out.content == NO_PROVIDER_RESPONSE

    async def test_reconfigure_enables_and_disables(
        self, config, store, tools, event_bus, estimator
    ):
        agent = make_loop(config, store, tools, event_bus, estimator)
        provider = ScriptedProvider([text_response("now configured")])

        await agent.reconfigure(provider)
        assert agent.provider is provider
        assert await agent.process_direct("hi") == "now configured"

        await agent.reconfigure(None)
        assert await agent.process_direct("hi") == NO_PROVIDER_RESPONSE

        reconfigured = [p for e, p in event_bus.collected if e == ClawEvent.PROVIDER_RECONFIGURED]
        assert [p["provider"] for p in reconfigured] == ["ScriptedProvider", None]

    async def test_reconfigure_model_override(self, agent):
        replacement = ScriptedProvider()
        await agent.reconfigure(replacement, model="bigger-model")
        await agent.process_direct("hi")
        assert replacement.calls[0]["model"] == "bigger-model"

    async def test_in_flight_turn_keeps_its_provider(self, agent, provider):
        """A swap during a turn does not affect the turn already running."""
        gate = asyncio.Event()
        replacement = ScriptedProvider([text_response("from new")])

        original_chat = provider.chat

        async def slow_chat(messages, tools, model, options):
            await gate.wait()
            return await original_chat(messages, tools, model, options)

        provider.chat = slow_chat  # type: ignore[method-assign]
        turn = asyncio.create_task(agent.process_direct("first", session_key="cli:a"))
        await asyncio.sleep(0)

        await agent.reconfigure(replacement)
        gate.set()

        assert await turn == "ok"
        assert await agent.process_direct("second", session_key="cli:b") == "from new"


class TestCompactionHook:
    async def test_compaction_after_turn(self, agent, store):
        for m in conversation(24):
            store.add_full_message("cli:direct", m)

        await agent.process_direct("one more")
        await agent.wait_for_compactions()

        assert store.get_summary("cli:direct") == "ok"
        history = store.get_history("cli:direct")
        assert len(history) == 4
        assert history[-1].content == "ok"

    async def test_auto_compaction_disabled(self, config, store, tools, event_bus, estimator):
        config = config.model_copy(update={"compaction": CompactionConfig(auto=False)})
        agent = make_loop(config, store, tools, event_bus, estimator, ScriptedProvider())
        for m in conversation(24):
            store.add_full_message("cli:direct", m)

        await agent.process_direct("one more")
        await agent.wait_for_compactions()

        assert store.get_summary("cli:direct") == ""
        assert len(store.get_history("cli:direct")) == 26


class TestRunLoop:
    async def test_consumes_and_publishes_replies(self, agent):
        runner = asyncio.create_task(agent.run())
        agent.bus.publish_inbound(
            InboundMessage(channel="telegram", sender_id="u", chat_id="9", content="hi")
        )

        out = await agent.bus.subscribe_outbound(timeout=2)

        assert out == OutboundMessage(channel="telegram", chat_id="9", content="ok")
        assert agent.running
        agent.stop()
        await asyncio.wait_for(runner, timeout=2)
        assert not agent.running

    async def test_failed_message_does_not_stop_loop(self, agent, provider):
        provider.script = [RuntimeError("transient")]
        runner = asyncio.create_task(agent.run())
        agent.bus.publish_inbound(
            InboundMessage(channel="telegram", sender_id="u", chat_id="1", content="bad")
        )
        agent.bus.publish_inbound(
            InboundMessage(channel="telegram", sender_id="u", chat_id="2", content="good")
        )

        out = await agent.bus.subscribe_outbound(timeout=2)

        assert out.chat_id == "2"
        agent.stop()
        await asyncio.wait_for(runner, timeout=2)

    async def test_system_reply_published_once(self, agent):
        runner = asyncio.create_task(agent.run())
        agent.bus.publish_inbound(
            InboundMessage(channel="system", sender_id="cron", chat_id="telegram:5", content="x")
        )

        out = await agent.bus.subscribe_outbound(timeout=2)
        assert (out.channel, out.chat_id) == ("telegram", "5")
        agent.stop()
        await asyncio.wait_for(runner, timeout=2)
        assert agent.bus.outbound_size == 0

    async def test_stop_lets_in_flight_turn_finish(
        self, config, store, tools, event_bus, estimator
    ):
        provider = HeldProvider()
        agent = make_loop(config, store, tools, event_bus, estimator, provider)
        runner = asyncio.create_task(agent.run())
        agent.bus.publish_inbound(
            InboundMessage(channel="telegram", sender_id="u", chat_id="1", content="first")
        )
        agent.bus.publish_inbound(
            InboundMessage(channel="telegram", sender_id="u", chat_id="2", content="second")
        )

        await asyncio.wait_for(provider.started.wait(), timeout=2)
        agent.stop()
        provider.release.set()

        out = await agent.bus.subscribe_outbound(timeout=2)
        await asyncio.wait_for(runner, timeout=2)

        assert out == OutboundMessage(channel="telegram", chat_id="1", content="ok")
        assert not agent.running
        assert len(provider.calls) == 1
        assert agent.bus.inbound_size == 1
        assert [m.content for m in store.get_history("telegram:1")] == ["first", "ok"]
        assert store.get_history("telegram:2") == []

        reloaded = SessionStore(config.store)
        await reloaded.initialize()
        try:
            assert len(reloaded.get_history("telegram:1")) == 2
        finally:
            await reloaded.close()


class TestEntryPoints:
    async def test_streaming(self, agent, provider):
        provider.script = [text_response("streamed reply")]
        chunks: list[str] = []

        reply = await agent.process_direct_stream("hi", chunks.append)

        assert reply == "streamed reply"
        assert chunks == ["streamed reply"]

    async def test_register_tool_visible_next_turn(self, config, store, event_bus, estimator):
        from clawcore.tools.registry import ToolRegistry

        provider = ScriptedProvider()
        agent = make_loop(config, store, ToolRegistry(), event_bus, estimator, provider)
        await agent.process_direct("hi")
        agent.register_tool(EchoTool())
        await agent.process_direct("again")

        assert provider.calls[0]["tools"] == []
        assert [t["function"]["name"] for t in provider.calls[1]["tools"]] == ["echo"]
        assert "- `echo`" in provider.calls[1]["messages"][0].content

    async def test_startup_info(self, agent):
        assert agent.startup_info() == {
            "tools": {"count": 2, "names": ["echo", "explode"]},
            "skills": {"total": 0, "available": 0, "names": []},
        }

    async def test_undecodable_workspace_files_do_not_break_turn(self, agent, config, provider):
        workspace = Path(config.workspace)
        (workspace / "memory").mkdir(parents=True)
        (workspace / "USER.md").write_bytes("Name: Jos\xe9".encode("latin-1"))
        (workspace / "memory" / "MEMORY.md").write_bytes(b"caf\xe9")

        assert await agent.process_direct("hi") == "ok"

        system = provider.calls[0]["messages"][0].content
        assert "## USER.md" not in system
        assert "# Memory" not in system

    async def test_create_and_close_owned_store(self, config):
        agent = await AgentLoop.create(config, provider=ScriptedProvider())
        async with agent:
            assert await agent.process_direct("hi") == "ok"

        reloaded = SessionStore(config.store)
        await reloaded.initialize()
        try:
            assert len(reloaded.get_history("cli:direct")) == 2
        finally:
            await reloaded.close()
