"""
Application wiring

Builds the store, collaborators and controllers, and owns their lifetime.
The delivery handler is registered with the notification service on
``start()`` and released on ``stop()``; use the app as a context manager to
get both.
"""

from typing import Callable, Optional

from vocalizeit.config import Config, load_config
from vocalizeit.delivery import DeliveryHandler
from vocalizeit.logger import get_logger
from vocalizeit.models import now_ms
from vocalizeit.notifications import (
    DesktopNotificationService,
    NotificationScheduler,
    NotificationService,
)
from vocalizeit.reminder_manager import ReminderManager
from vocalizeit.settings_manager import SettingsManager
from vocalizeit.speech import EspeakSpeech, SpeechService
from vocalizeit.store import ReminderStore


class ReminderApp:
    def __init__(self, config: Optional[Config] = None,
                 notification_service: Optional[NotificationService] = None,
                 speech: Optional[SpeechService] = None,
                 clock: Callable[[], int] = now_ms,
                 zone=None):
        self.config = config or load_config()
        self.logger = get_logger(__name__, self.config)

        self.store = ReminderStore(self.config)
        self.settings = SettingsManager(self.config, self.store)
        self.notification_service = (notification_service
                                     or DesktopNotificationService(self.config, clock=clock))
        self.speech = speech or EspeakSpeech(self.config)
        self.scheduler = NotificationScheduler(self.config, self.notification_service, clock=clock)
        self.reminders = ReminderManager(self.config, self.store, self.scheduler,
                                         self.settings, clock=clock, zone=zone)
        self.delivery = DeliveryHandler(self.config, self.reminders, self.scheduler,
                                        self.notification_service, self.speech, clock=clock)
        self._started = False

    def start(self):
        if self._started:
            return
        self.delivery.start()
        self.reminders.start()
        self._started = True
        self.logger.info("VocaliZeit started")

    def stop(self):
        if not self._started:
            return
        self.reminders.stop()
        self.delivery.stop()
        if self.config.get("notifications.cancel_on_shutdown", True):
            self.scheduler.cancel_all()
        self._started = False
        self.logger.info("VocaliZeit stopped")

    def __enter__(self) -> "ReminderApp":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False
