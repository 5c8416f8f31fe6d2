"""Bounded async queues connecting channels to the agent loop."""

from __future__ import annotations

import asyncio

import structlog

from clawcore.bus.events import InboundMessage, OutboundMessage

DEFAULT_QUEUE_SIZE = 100


class MessageBus:
    """
    Two bounded FIFO queues: inbound (channels -> agent) and outbound
    (agent -> channels).

    Publishing never blocks. When a queue is full the message is dropped and
    a warning is logged.
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self._inbound: asyncio.Queue[InboundMessage] = asyncio.Queue(maxsize=maxsize)
        self._outbound: asyncio.Queue[OutboundMessage] = asyncio.Queue(maxsize=maxsize)
        self._logger = structlog.get_logger("clawcore.bus")

    def publish_inbound(self, message: InboundMessage) -> bool:
        """Enqueue an inbound message. Returns False if it was dropped."""
        try:
            self._inbound.put_nowait(message)
        except asyncio.QueueFull:
            self._logger.warning(
                "inbound_queue_full", channel=message.channel, chat_id=message.chat_id
            )
            return False
        return True

    def publish_outbound(self, message: OutboundMessage) -> bool:
        """Enqueue an outbound message. Returns False if it was dropped."""
        try:
            self._outbound.put_nowait(message)
        except asyncio.QueueFull:
            self._logger.warning(
                "outbound_queue_full", channel=message.channel, chat_id=message.chat_id
            )
            return False
        return True

    async def consume_inbound(self, timeout: float | None = None) -> InboundMessage | None:
        """
        Wait for the next inbound message.

        Args:
            timeout: Seconds to wait. None blocks until a message arrives.

        Returns:
            The message, or None if ``timeout`` elapsed first.
        """
        return await _get(self._inbound, timeout)

    async def subscribe_outbound(self, timeout: float | None = None) -> OutboundMessage | None:
        """Wait for the next outbound message; None if ``timeout`` elapsed first."""
        return await _get(self._outbound, timeout)

    @property
    def inbound_size(self) -> int:
        return self._inbound.qsize()

    @property
    def outbound_size(self) -> int:
        return self._outbound.qsize()

    def clear(self) -> None:
        """Drop every queued message in both directions."""
        for queue in (self._inbound, self._outbound):
            while not queue.empty():
                queue.get_nowait()


async def _get(queue: asyncio.Queue, timeout: float | None):  # type: ignore[type-arg]
    if timeout is None:
        return await queue.get()
    try:
        return await asyncio.wait_for(queue.get(), timeout)
    except TimeoutError:
        return None
