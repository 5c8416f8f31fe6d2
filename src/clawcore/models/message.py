"""Core message, session and result models."""

from __future__ import annotations

import json
import time
from typing import Any, Literal

from pydantic import BaseModel, Field

Role = Literal["system", "user", "assistant", "tool"]


def _now_ms() -> int:
    return int(time.time() * 1000)


# ── Tool calls ─────────────────────────────────────────────────────────────────


class ToolCall(BaseModel):
    """A structured request from the LLM to invoke a named tool."""

    id: str
    """Provider-assigned call ID. Tool results reference it via ``tool_call_id``."""
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    type: str = "function"

    def to_llm_dict(self) -> dict[str, Any]:
        """Render in OpenAI/litellm wire format (arguments JSON-encoded)."""
        return {
            "id": self.id,
            "type": self.type,
            "function": {
                "name": self.name,
                "arguments": json.dumps(self.arguments, ensure_ascii=False),
            },
        }


# ── Messages ───────────────────────────────────────────────────────────────────


class Message(BaseModel):
    """
    One unit exchanged with the LLM.

    ``content`` may be empty on an assistant message that carries tool calls.
    ``tool_calls`` is only meaningful for ``role="assistant"`` and
    ``tool_call_id`` only for ``role="tool"``, where it must reference a
    ``ToolCall.id`` emitted earlier in the same turn.
    """

    role: Role
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_call_id: str | None = None

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: list[ToolCall] | None = None) -> Message:
        return cls(role="assistant", content=content, tool_calls=tool_calls or [])

    @classmethod
    def tool(cls, tool_call_id: str, content: str) -> Message:
        return cls(role="tool", content=content, tool_call_id=tool_call_id)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_llm_dict(self) -> dict[str, Any]:
        """Render as a litellm ``messages`` entry."""
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_llm_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        return data


class TokenUsage(BaseModel):
    """Token counts reported by the provider for a single response."""

    input: int = 0
    output: int = 0
    total: int = 0

    def effective_total(self) -> int:
        """Return total, computing from parts when the explicit total is zero."""
        if self.total:
            return self.total
        return self.input + self.output


class LLMResponse(BaseModel):
    """The normalised result of one chat completion call."""

    content: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    finish_reason: str | None = None
    usage: TokenUsage = Field(default_factory=TokenUsage)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


# ── Session ────────────────────────────────────────────────────────────────────


class Session(BaseModel):
    """
    The authoritative state of one conversation.

    ``messages`` is the ordered history exactly as it was exchanged with the
    LLM. It is only ever appended to, except when compaction truncates it to
    a fixed recent tail and records a ``summary`` of what was dropped.
    """

    key: str
    messages: list[Message] = Field(default_factory=list)
    summary: str = ""
    created_at: int = Field(default_factory=_now_ms)
    """Unix millisecond timestamp."""
    updated_at: int = Field(default_factory=_now_ms)

    def add_message(self, role: Role, content: str) -> None:
        self.add_full_message(Message(role=role, content=content))

    def add_full_message(self, message: Message) -> None:
        self.messages.append(message)
        self.updated_at = _now_ms()

    def history(self) -> list[Message]:
        """Return a shallow copy of the history list."""
        return list(self.messages)

    def truncate_history(self, keep_last: int) -> None:
        """Keep only the most recent ``keep_last`` messages."""
        if len(self.messages) > keep_last:
            self.messages = self.messages[-keep_last:] if keep_last > 0 else []
            self.updated_at = _now_ms()


# ── Result Types ───────────────────────────────────────────────────────────────


class CompactionResult(BaseModel):
    """
    The result of one compaction run.

    ``success`` is False when the run aborted (too few messages, nothing left
    after filtering, or every summarisation call failed). In that case the
    session is left untouched.
    """

    session_key: str
    success: bool
    original_messages: int = 0
    """History length at the moment the candidate slice was taken."""
    summarized_messages: int = 0
    """Messages that survived role and size filtering and were summarised."""
    omitted_oversized: bool = False
    batches: int = 0
    """Number of summarisation batches (1 or 2). Merge calls are not counted."""
    retained_messages: int = 0
    summary_chars: int = 0
    elapsed_ms: float = 0.0
    reason: str | None = None
    """Why an unsuccessful run stopped early."""
