"""LLM client interface consumed by the tool-calling iterator and the compactor."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from clawcore.models.message import LLMResponse, Message

ChunkCallback = Callable[[str], None | Awaitable[None]]
"""Receives streamed text deltas. May be sync or async."""


class ProviderError(Exception):
    """Raised by providers when a completion call cannot be made or parsed."""


class LLMProvider(ABC):
    """
    A chat-completion backend.

    ``options`` carries sampling parameters as plain values, currently
    ``max_tokens`` and ``temperature``. ``tools`` is a list of OpenAI
    function-calling definitions; an empty list means the call must not offer
    tools.
    """

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]],
        model: str,
        options: dict[str, Any],
    ) -> LLMResponse:
        """Run one non-streaming completion."""

    async def chat_stream(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]],
        model: str,
        options: dict[str, Any],
        on_chunk: ChunkCallback,
    ) -> LLMResponse:
        """
        Run one completion, delivering text deltas to ``on_chunk``.

        The default implementation performs a regular ``chat()`` call and
        delivers the whole content as a single chunk. Tool calls are only
        returned once complete, in the final response.
        """
        response = await self.chat(messages, tools, model, options)
        if response.content:
            await emit_chunk(on_chunk, response.content)
        return response


async def emit_chunk(on_chunk: ChunkCallback, text: str) -> None:
    """Invoke a sync or async chunk callback."""
    result = on_chunk(text)
    if asyncio.iscoroutine(result):
        await result
