"""
Delivery Handler

Callback for platform notification deliveries. Both event kinds go through
the same path:

- NOTIFICATION_RECEIVED (app frontmost): speak the task, wait a moment so
  speech has started, then ask the UI to present the alarm interstitial.
- NOTIFICATION_OPENED (user tapped it): present the interstitial right away.

Afterwards a recurring reminder is rolled forward to its next occurrence.
A non-recurring reminder stays upcoming until the user acts on the
interstitial.

The interstitial can ask for the task to be spoken again with ``repeat()``.

Unknown or deleted reminder ids are ignored. Speech failures never block
the rest of the flow.
"""

import time
from typing import Callable, Optional

from vocalizeit.errors import ReminderError, SpeechError
from vocalizeit.events import Event, EventType
from vocalizeit.logger import get_logger
from vocalizeit.models import now_ms
from vocalizeit.notifications import NotificationScheduler, NotificationService
from vocalizeit.reminder_manager import ReminderManager
from vocalizeit.speech import SpeechService


class DeliveryHandler:
    """Owns the platform's notification callback for the app's lifetime."""

    def __init__(self, config, manager: ReminderManager, scheduler: NotificationScheduler,
                 service: NotificationService, speech: SpeechService,
                 clock: Callable[[], int] = now_ms):
        self.config = config
        self.manager = manager
        self.scheduler = scheduler
        self.service = service
        self.speech = speech
        self._clock = clock
        self.logger = get_logger(__name__, config)

        self.present_delay = config.get("notifications.present_delay_seconds", 1.0)
        self.speech_enabled = config.get("speech.enabled", True)
        self.speech_rate = config.get("speech.rate", 0.8)
        self.speech_pitch = config.get("speech.pitch", 1.0)

        self._present_callback: Optional[Callable[[Event], None]] = None
        self._registered = False

    def set_present_callback(self, callback: Callable[[Event], None]):
        """Set the UI callback that shows the alarm interstitial."""
        self._present_callback = callback

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Register as the platform's notification callback."""
        if self._registered:
            return
        self.service.register_callback(self.handle_event)
        self._registered = True
        self.logger.info("Delivery handler registered")

    def stop(self):
        if not self._registered:
            return
        self.service.unregister_callback()
        self._registered = False
        self._stop_speech()
        self.logger.info("Delivery handler unregistered")

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def handle_event(self, event: Event):
        """Entry point for platform callbacks. Core errors are logged, not raised."""
        try:
            self._handle(event)
        except ReminderError as e:
            self.logger.error(f"Delivery of {event!r} failed: {e}")

    def _handle(self, event: Event):
        if event.type not in (EventType.NOTIFICATION_RECEIVED, EventType.NOTIFICATION_OPENED):
            self.logger.debug(f"Ignoring event {event!r}")
            return

        reminder_id = event.reminder_id
        if not reminder_id:
            self.logger.debug(f"Notification without reminderId: {event!r}")
            return

        handle = event.data.get("handle") if isinstance(event.data, dict) else None
        if event.type == EventType.NOTIFICATION_RECEIVED:
            # A delivered notification is no longer a live handle
            self.scheduler.forget(reminder_id, handle)

        reminder = self.manager.get_reminder(reminder_id)
        if reminder is None:
            self.logger.debug(f"Reminder {reminder_id} no longer exists, ignoring delivery")
            return

        if event.type == EventType.NOTIFICATION_OPENED and reminder.target_timestamp <= self._clock():
            # Opened from the background without a foreground receive
            self.scheduler.forget(reminder_id, handle)

        self.logger.info(f"Delivering reminder {reminder_id}: '{reminder.task}' "
                         f"({event.type.name.lower()})")

        if event.type == EventType.NOTIFICATION_RECEIVED:
            self._speak(reminder.task)
            if self.present_delay > 0:
                time.sleep(self.present_delay)

        self._present(reminder_id)

        if reminder.recurrence.is_recurring:
            self.manager.roll_forward(reminder_id)

    def repeat(self, reminder_id: str) -> bool:
        """Speak a reminder's task again. Returns False for unknown ids."""
        reminder = self.manager.get_reminder(reminder_id)
        if reminder is None:
            self.logger.debug(f"Reminder {reminder_id} no longer exists, nothing to repeat")
            return False
        self._speak(reminder.task)
        return True

    def _present(self, reminder_id: str):
        if self._present_callback:
            self._present_callback(Event(EventType.PRESENT_ALARM, reminder_id, source="delivery"))

    # ------------------------------------------------------------------
    # Speech
    # ------------------------------------------------------------------

    def _speak(self, text: str):
        if not self.speech_enabled:
            return
        try:
            self.speech.stop()
            self.speech.speak(text, rate=self.speech_rate, pitch=self.speech_pitch)
        except SpeechError as e:
            self.logger.warning(f"Speech failed, continuing silently: {e}")

    def _stop_speech(self):
        try:
            self.speech.stop()
        except SpeechError as e:
            self.logger.warning(f"Failed to stop speech: {e}")
