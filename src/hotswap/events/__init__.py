"""Event system: async reporting bus and thread-safe signals."""

from hotswap.events.bus import EventBus
from hotswap.events.signal import Signal, Subscription, SubscriptionRegistry
from hotswap.events.types import Event, EventType

__all__ = [
    "Event",
    "EventBus",
    "EventType",
    "Signal",
    "Subscription",
    "SubscriptionRegistry",
]
