"""
Event types for the reminder delivery pipeline.

The platform notification service reports deliveries as typed events, and
the delivery handler signals the UI the same way.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any
import time


class EventType(Enum):
    """All event types crossing the core's boundary."""

    # Platform -> core
    NOTIFICATION_RECEIVED = auto()      # Delivered while the app is frontmost
    NOTIFICATION_OPENED = auto()        # User tapped/opened the notification

    # Core -> UI
    PRESENT_ALARM = auto()              # Show the full-attention interstitial (data: reminder id)
    REMINDERS_CHANGED = auto()          # Collection mutated, lists should refresh


@dataclass
class Event:
    """A typed event; ``data`` holds the notification payload for platform events."""

    type: EventType
    data: Any = None
    timestamp: float = field(default_factory=time.monotonic)
    source: str = ""

    @property
    def reminder_id(self):
        if isinstance(self.data, dict):
            return self.data.get("reminderId")
        return None

    def __repr__(self):
        data_repr = repr(self.data)
        if len(data_repr) > 80:
            data_repr = data_repr[:77] + "..."
        return f"Event({self.type.name}, data={data_repr}, source={self.source!r})"
