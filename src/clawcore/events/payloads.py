"""Typed payload definitions for each ClawEvent.

Usage example::

    from clawcore.events.bus import ClawEvent, EventBus
    from clawcore.events.payloads import ToolExecutedPayload

    def on_tool(event: ClawEvent, payload: ToolExecutedPayload) -> None:
        print(f"{payload['tool']} took {payload['duration_ms']:.0f} ms")

    bus.subscribe(ClawEvent.TOOL_EXECUTED, on_tool)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import NotRequired, TypedDict

# ── Turn lifecycle ────────────────────────────────────────────────────────────


class TurnStartedPayload(TypedDict):
    """Payload for :attr:`ClawEvent.TURN_STARTED`."""

    session_key: str
    channel: str
    system: bool
    """True when the turn was triggered by a system-originated message."""


class TurnCompletedPayload(TypedDict):
    """Payload for :attr:`ClawEvent.TURN_COMPLETED`."""

    session_key: str
    response_chars: int
    used_fallback: bool


class TurnFailedPayload(TypedDict):
    """Payload for :attr:`ClawEvent.TURN_FAILED`."""

    session_key: str
    error: str


# ── Tools ─────────────────────────────────────────────────────────────────────


class ToolExecutedPayload(TypedDict):
    """Payload for :attr:`ClawEvent.TOOL_EXECUTED`."""

    session_key: str
    tool: str
    tool_call_id: str
    iteration: int
    success: bool
    duration_ms: float


# ── Compaction ────────────────────────────────────────────────────────────────


class CompactionTriggeredPayload(TypedDict):
    """Payload for :attr:`ClawEvent.COMPACTION_TRIGGERED`."""

    session_key: str
    messages: int
    tokens: int


class CompactionCompletedPayload(TypedDict):
    """Payload for :attr:`ClawEvent.COMPACTION_COMPLETED`.

    Mirrors :class:`~clawcore.models.message.CompactionResult`.
    """

    session_key: str
    success: bool
    original_messages: int
    summarized_messages: int
    omitted_oversized: bool
    batches: int
    retained_messages: int
    summary_chars: int
    elapsed_ms: float
    reason: NotRequired[str | None]


class CompactionFailedPayload(TypedDict):
    """Payload for :attr:`ClawEvent.COMPACTION_FAILED`."""

    session_key: str
    error: str


# ── Runtime ───────────────────────────────────────────────────────────────────


class ProviderReconfiguredPayload(TypedDict):
    """Payload for :attr:`ClawEvent.PROVIDER_RECONFIGURED`."""

    provider: str | None
    """Class name of the new provider, or None when it was cleared."""
    model: str
