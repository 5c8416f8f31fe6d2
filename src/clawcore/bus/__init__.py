"""Message envelopes and the inbound/outbound bus."""

from clawcore.bus.events import InboundMessage, OutboundMessage
from clawcore.bus.queue import MessageBus

__all__ = ["InboundMessage", "OutboundMessage", "MessageBus"]
