"""
Message bus for controller notifications.
"""

from vaultkeeper.messaging.events import *
from vaultkeeper.messaging.bus import EventBus

__all__ = [
    "EventBus",
    "EventType",
    "BaseEvent",
    "StateChangedEvent",
    "LockEvent",
    "UnlockEvent",
    "AccountRemovedEvent",
]
