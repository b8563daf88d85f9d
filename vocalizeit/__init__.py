"""VocaliZeit reminder core: scheduling, recurrence, delivery and speech."""

from vocalizeit.app import ReminderApp
from vocalizeit.errors import (
    ReminderError,
    SchedulingError,
    SpeechError,
    StoreError,
    ValidationError,
)
from vocalizeit.models import AppSettings, Recurrence, Reminder

__all__ = [
    "ReminderApp",
    "Reminder", "Recurrence", "AppSettings",
    "ReminderError", "ValidationError", "SchedulingError", "StoreError", "SpeechError",
]
