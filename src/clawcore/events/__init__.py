"""clawcore event system."""

from clawcore.events.bus import ClawEvent, EventBus, Handler

__all__ = ["ClawEvent", "EventBus", "Handler"]
