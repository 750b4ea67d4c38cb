from .bus import EVENT_TYPES, Event, EventBus
from .ws import CHANNELS, WebSocketHub, channel_for

__all__ = ["EVENT_TYPES", "Event", "EventBus", "CHANNELS", "WebSocketHub", "channel_for"]
