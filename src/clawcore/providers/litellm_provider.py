"""litellm-backed LLM provider."""

from __future__ import annotations

import json
import os
from typing import Any

import structlog

from clawcore.ids import make_id
from clawcore.models.config import ProviderConfig
from clawcore.models.message import LLMResponse, Message, TokenUsage, ToolCall
from clawcore.providers.base import ChunkCallback, LLMProvider, ProviderError, emit_chunk

MOCK_ENV_VAR = "CLAWCORE_MOCK_LLM"


def parse_arguments(raw: Any) -> dict[str, Any]:
    """
    Decode tool-call arguments from the provider.

    JSON object strings are decoded; anything that is not a JSON object is
    preserved verbatim under ``{"raw": ...}`` so the tool (and the log) can
    still see what the model sent.
    """
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return {"raw": raw}
    if not isinstance(parsed, dict):
        return {"raw": raw}
    return parsed


def make_tool_call(
    call_id: str | None, name: str, arguments: Any, call_type: str | None = None
) -> ToolCall:
    """Build a ToolCall, generating an ID when the provider omitted one."""
    if not call_id:
        call_id = make_id("call")
    return ToolCall(
        id=call_id,
        name=name,
        arguments=parse_arguments(arguments),
        type=call_type or "function",
    )


class LiteLLMProvider(LLMProvider):
    """
    Provider that routes every call through ``litellm.acompletion``.

    Any model string litellm understands works (``gpt-4o``,
    ``anthropic/claude-3-5-sonnet-latest``, ``ollama/llama3``...).

    Setting ``CLAWCORE_MOCK_LLM=1`` in the environment short-circuits every
    call with a deterministic echo of the last user message and no tool
    calls, which keeps examples and tests offline.
    """

    def __init__(self, config: ProviderConfig | None = None) -> None:
        self._config = config or ProviderConfig()
        self._logger = structlog.get_logger("clawcore.providers")

    async def chat(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]],
        model: str,
        options: dict[str, Any],
    ) -> LLMResponse:
        if os.environ.get(MOCK_ENV_VAR) == "1":
            return self._mock_response(messages)

        import litellm

        response = await litellm.acompletion(**self._call_kwargs(messages, tools, model, options))
        return self._parse_response(response)

    async def chat_stream(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]],
        model: str,
        options: dict[str, Any],
        on_chunk: ChunkCallback,
    ) -> LLMResponse:
        if os.environ.get(MOCK_ENV_VAR) == "1":
            mock = self._mock_response(messages)
            await emit_chunk(on_chunk, mock.content or "")
            return mock

        import litellm

        call_kwargs = self._call_kwargs(messages, tools, model, options)
        call_kwargs["stream"] = True

        content_parts: list[str] = []
        pending: dict[int, dict[str, Any]] = {}
        finish_reason: str | None = None

        async for chunk in await litellm.acompletion(**call_kwargs):
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta
            if choice.finish_reason:
                finish_reason = choice.finish_reason

            text = getattr(delta, "content", None)
            if text:
                content_parts.append(text)
                await emit_chunk(on_chunk, text)

            # Tool calls arrive as fragments keyed by index
            for fragment in getattr(delta, "tool_calls", None) or []:
                index = getattr(fragment, "index", None) or 0
                slot = pending.setdefault(
                    index, {"id": None, "type": None, "name": "", "arguments": ""}
                )
                if getattr(fragment, "id", None):
                    slot["id"] = fragment.id
                if getattr(fragment, "type", None):
                    slot["type"] = fragment.type
                function = getattr(fragment, "function", None)
                if function is not None:
                    if function.name:
                        slot["name"] += function.name
                    if function.arguments:
                        slot["arguments"] += function.arguments

        tool_calls = [
            make_tool_call(slot["id"], slot["name"], slot["arguments"], slot["type"])
            for _, slot in sorted(pending.items())
        ]
        return LLMResponse(
            content="".join(content_parts) or None,
            tool_calls=tool_calls,
            finish_reason=finish_reason,
        )

    # ── Internals ──────────────────────────────────────────────────────────────

    def _call_kwargs(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]],
        model: str,
        options: dict[str, Any],
    ) -> dict[str, Any]:
        self._logger.debug("llm_call", model=model, messages=len(messages), tools=len(tools))
        call_kwargs: dict[str, Any] = {
            "model": model,
            "messages": [m.to_llm_dict() for m in messages],
            "timeout": self._config.timeout,
        }
        if "max_tokens" in options:
            call_kwargs["max_tokens"] = options["max_tokens"]
        if "temperature" in options:
            call_kwargs["temperature"] = options["temperature"]
        if tools:
            call_kwargs["tools"] = tools
            call_kwargs["tool_choice"] = "auto"
        if self._config.api_key:
            call_kwargs["api_key"] = self._config.api_key
        if self._config.api_base:
            call_kwargs["api_base"] = self._config.api_base
        return call_kwargs

    def _parse_response(self, response: Any) -> LLMResponse:
        if not getattr(response, "choices", None):
            raise ProviderError("Provider returned a response with no choices")
        choice = response.choices[0]
        message = choice.message
        tool_calls = [
            make_tool_call(
                getattr(tc, "id", None),
                tc.function.name,
                tc.function.arguments,
                getattr(tc, "type", None),
            )
            for tc in (getattr(message, "tool_calls", None) or [])
        ]
        usage = getattr(response, "usage", None)
        token_usage = TokenUsage()
        if usage is not None:
            token_usage = TokenUsage(
                input=getattr(usage, "prompt_tokens", 0) or 0,
                output=getattr(usage, "completion_tokens", 0) or 0,
                total=getattr(usage, "total_tokens", 0) or 0,
            )
        return LLMResponse(
            content=message.content,
            tool_calls=tool_calls,
            finish_reason=getattr(choice, "finish_reason", None),
            usage=token_usage,
        )

    @staticmethod
    def _mock_response(messages: list[Message]) -> LLMResponse:
        last_user = next((m.content for m in reversed(messages) if m.role == "user"), "")
        return LLMResponse(
            content=f"[mock] {last_user[:200]}",
            finish_reason="stop",
        )
