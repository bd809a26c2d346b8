"""
Event definitions for the controller message bus.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List
from enum import Enum


class EventType(str, Enum):
    """Event types."""

    STATE_CHANGED = "keyring_controller.state_changed"
    LOCK = "keyring_controller.lock"
    UNLOCK = "keyring_controller.unlock"
    ACCOUNT_REMOVED = "keyring_controller.account_removed"


@dataclass
class BaseEvent:
    """Base event class."""

    event_type: EventType
    timestamp: datetime
    data: Dict[str, Any]

    def __init__(self, event_type: EventType, data: Dict[str, Any]):
        self.event_type = event_type
        self.timestamp = datetime.now(timezone.utc)
        self.data = data

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary."""
        return {
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }


@dataclass
class StateChangedEvent(BaseEvent):
    """Event fired after a mutation is committed, with the new snapshot."""

    def __init__(self, state: Dict[str, Any], patches: List[Dict[str, Any]]):
        super().__init__(
            event_type=EventType.STATE_CHANGED,
            data={
                "state": state,
                "patches": patches,
            },
        )


@dataclass
class LockEvent(BaseEvent):
    """Event fired when the vault is locked."""

    def __init__(self):
        super().__init__(event_type=EventType.LOCK, data={})


@dataclass
class UnlockEvent(BaseEvent):
    """Event fired when the vault is unlocked."""

    def __init__(self):
        super().__init__(event_type=EventType.UNLOCK, data={})


@dataclass
class AccountRemovedEvent(BaseEvent):
    """Event fired when an account is removed from its keyring."""

    def __init__(self, address: str):
        super().__init__(
            event_type=EventType.ACCOUNT_REMOVED,
            data={"address": address},
        )


__all__ = [
    "EventType",
    "BaseEvent",
    "StateChangedEvent",
    "LockEvent",
    "UnlockEvent",
    "AccountRemovedEvent",
]
