"""Shared fixtures for clawcore tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

import pytest
import pytest_asyncio

from clawcore.events.bus import ClawEvent, EventBus
from clawcore.models.config import AgentConfig, StoreConfig
from clawcore.models.message import LLMResponse, Message, ToolCall
from clawcore.providers.base import LLMProvider
from clawcore.store.sessions import SessionStore
from clawcore.tokens.estimator import TokenEstimator
from clawcore.tools.base import Tool
from clawcore.tools.registry import ToolRegistry

FIXED_NOW = datetime(2024, 3, 15, 9, 30)


@pytest.fixture
def config(tmp_path):
    """AgentConfig with a temp workspace and database path."""
    return AgentConfig(
        model="test-model",
        workspace=str(tmp_path / "workspace"),
        context_window=8_000,
        store=StoreConfig(db_path=str(tmp_path / "test.db")),
    )


@pytest_asyncio.fixture
async def store(config):
    """Initialized SessionStore backed by a temp SQLite database."""
    s = SessionStore(config.store)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def estimator():
    """TokenEstimator using heuristic only (no tiktoken required in tests)."""
    e = TokenEstimator()
    e._force_heuristic = True
    return e


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[ClawEvent, dict[str, Any]]] = []

    def _collect(event: ClawEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


# ── Fake provider ──────────────────────────────────────────────────────────────


class ScriptedProvider(LLMProvider):
    """
    LLMProvider that replays a script of responses.

    Each script entry is an LLMResponse, an exception instance (raised), or a
    callable ``(messages) -> LLMResponse``. Once the script is exhausted
    ``default`` is returned. Every call is recorded with a snapshot of the
    messages it received.
    """

    def __init__(
        self,
        script: list[Any] | None = None,
        default: LLMResponse | None = None,
    ) -> None:
        self.script = list(script or [])
        self.default = default or LLMResponse(content="ok")
        self.calls: list[dict[str, Any]] = []

    async def chat(self, messages, tools, model, options):
        self.calls.append(
            {
                "messages": list(messages),
                "tools": list(tools),
                "model": model,
                "options": dict(options),
            }
        )
        if self.script:
            entry = self.script.pop(0)
            if isinstance(entry, Exception):
                raise entry
            if callable(entry):
                return entry(messages)
            return entry
        return self.default


@pytest.fixture
def provider():
    return ScriptedProvider()


# ── Tools ──────────────────────────────────────────────────────────────────────


class EchoTool(Tool):
    name = "echo"
    description = "Echo the given text back."
    parameters = {
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
    }

    def __init__(self) -> None:
        self.received: list[dict[str, Any]] = []

    async def execute(self, args):
        self.received.append(args)
        return f"echo: {args['text']}"


class FailingTool(Tool):
    name = "explode"
    description = "Always fails."
    parameters = {}

    def execute(self, args):
        raise RuntimeError("boom")


@pytest.fixture
def tools():
    registry = ToolRegistry()
    registry.register(EchoTool())
    registry.register(FailingTool())
    return registry


# ── Helpers ────────────────────────────────────────────────────────────────────


def tool_response(*calls: tuple[str, dict[str, Any]], content: str = "") -> LLMResponse:
    """Build an LLMResponse requesting ``calls`` as ``(name, arguments)`` pairs."""
    return LLMResponse(
        content=content,
        tool_calls=[
            ToolCall(id=f"call_{i}", name=name, arguments=args)
            for i, (name, args) in enumerate(calls)
        ],
        finish_reason="tool_calls",
    )


def text_response(text: str) -> LLMResponse:
    return LLMResponse(content=text, finish_reason="stop")


def conversation(count: int, chars: int = 40) -> list[Message]:
    """Alternating user/assistant messages with distinguishable content."""
    roles = ["user", "assistant"]
    return [
        Message(role=roles[i % 2], content=f"message {i} " + "x" * chars)  # type: ignore[arg-type]
        for i in range(count)
    ]


def fixed_clock(now: datetime = FIXED_NOW) -> Callable[[], datetime]:
    return lambda: now
