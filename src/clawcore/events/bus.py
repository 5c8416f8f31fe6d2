"""In-process pub/sub event bus for agent lifecycle events."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["ClawEvent", dict[str, Any]], None | Awaitable[None]]


class ClawEvent(StrEnum):
    """All event types published by clawcore components.

    Typed payload definitions for each event live in
    :mod:`clawcore.events.payloads`.

    ``TURN_STARTED`` / ``TURN_COMPLETED`` / ``TURN_FAILED``
        Published by :class:`~clawcore.loop.AgentLoop` around every turn.

    ``TOOL_EXECUTED``
        Published by :class:`~clawcore.executor.ToolCallingIterator` after each
        tool call, including calls that failed.

    ``COMPACTION_TRIGGERED`` / ``COMPACTION_COMPLETED`` / ``COMPACTION_FAILED``
        Published by :class:`~clawcore.compaction.engine.HistoryCompactor`.
        ``COMPLETED`` carries :class:`~clawcore.models.message.CompactionResult`
        serialized via ``model_dump()``; it is published for aborted runs too
        (``success=False``).

    ``PROVIDER_RECONFIGURED``
        Published when :meth:`~clawcore.loop.AgentLoop.reconfigure` swaps the
        provider.
    """

    # Turn lifecycle
    TURN_STARTED = "turn.started"
    TURN_COMPLETED = "turn.completed"
    TURN_FAILED = "turn.failed"

    # Tools
    TOOL_EXECUTED = "tool.executed"

    # Compaction lifecycle
    COMPACTION_TRIGGERED = "compaction.triggered"
    COMPACTION_COMPLETED = "compaction.completed"
    COMPACTION_FAILED = "compaction.failed"

    # Runtime
    PROVIDER_RECONFIGURED = "provider.reconfigured"


class EventBus:
    """
    In-process fan-out of lifecycle events to observers.

    Handlers receive ``(event, payload)``. Plain functions run before
    ``publish()`` returns; coroutine functions are started as tasks on the
    running loop and are dropped when no loop is running. A failing handler
    is logged and skipped, so observers can never break a turn.

    Example::

        bus = EventBus()

        def on_turn(event, payload):
            print(f"{payload['session_key']}: {payload['response_chars']} chars")

        bus.subscribe(ClawEvent.TURN_COMPLETED, on_turn)
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._by_event: dict[ClawEvent, list[Handler]] = {}
        self._wildcard: list[Handler] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._logger = logger or structlog.get_logger("clawcore.events")

    def subscribe(self, event: ClawEvent, handler: Handler) -> None:
        """Call ``handler`` for every ``event`` published from now on."""
        self._by_event.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Call ``handler`` for every event of any type."""
        self._wildcard.append(handler)

    def unsubscribe(self, event: ClawEvent, handler: Handler) -> None:
        """Stop calling ``handler`` for ``event``. Unknown handlers are ignored."""
        registered = self._by_event.get(event)
        if registered and handler in registered:
            registered.remove(handler)

    def publish(self, event: ClawEvent, payload: dict[str, Any]) -> None:
        """
        Deliver ``payload`` to the handlers of ``event``, then to wildcard handlers.

        Args:
            event: Which lifecycle event happened.
            payload: The event's data; see :mod:`clawcore.events.payloads`.
        """
        for handler in [*self._by_event.get(event, ()), *self._wildcard]:
            try:
                self._deliver(handler, event, payload)
            except Exception as exc:
                self._logger.error(
                    "event_handler_error",
                    event=str(event),
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(exc),
                )

    def _deliver(self, handler: Handler, event: ClawEvent, payload: dict[str, Any]) -> None:
        outcome = handler(event, payload)
        if not asyncio.iscoroutine(outcome):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            outcome.close()
            return
        task = loop.create_task(outcome)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
