"""Exception types raised by the reminder core."""


class ReminderError(Exception):
    """Base class for all reminder core errors."""


class ValidationError(ReminderError, ValueError):
    """Bad input: empty task, non-future timestamp, invalid settings value."""


class ReminderNotFoundError(ValidationError, LookupError):
    """No reminder with the given id exists in the store."""

    def __init__(self, reminder_id: str):
        super().__init__(f"Reminder not found: {reminder_id}")
        self.reminder_id = reminder_id


class InvalidTransitionError(ValidationError):
    """The reminder's current status does not allow the requested action."""

    def __init__(self, reminder_id: str, status: str, action: str):
        super().__init__(f"Cannot {action} reminder {reminder_id} in status '{status}'")
        self.reminder_id = reminder_id
        self.status = status
        self.action = action


class SchedulingError(ReminderError):
    """The platform refused to arm a notification.

    ``reminder`` carries the persisted record when the failure happened after
    the store write, so the caller can still show it.
    """

    def __init__(self, message: str, reminder=None):
        super().__init__(message)
        self.reminder = reminder


class StoreError(ReminderError):
    """Persistence read/write failure."""


class SpeechError(ReminderError):
    """Text-to-speech playback failure."""
