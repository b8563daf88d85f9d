import threading
from datetime import datetime, timezone

import pytest
from dateutil import tz

from vocalizeit.config import Config
from vocalizeit.delivery import DeliveryHandler
from vocalizeit.errors import SchedulingError, SpeechError
from vocalizeit.events import Event, EventType
from vocalizeit.notifications import (
    NotificationScheduler,
    NotificationService,
    PlatformCapabilities,
)
from vocalizeit.reminder_manager import ReminderManager
from vocalizeit.settings_manager import SettingsManager
from vocalizeit.speech import SpeechService
from vocalizeit.store import ReminderStore


# Wednesday 2025-01-15 12:00 UTC
START_MS = int(datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc).timestamp() * 1000)


class FakeClock:
    def __init__(self, start=START_MS):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class FakeNotificationService(NotificationService):
    """In-memory platform: armed deliveries are fired by the test."""

    capabilities = PlatformCapabilities(
        supports_channels=True,
        supports_critical_alerts=True,
        supports_dnd_bypass=True,
        supports_full_screen=True,
    )

    def __init__(self, clock):
        super().__init__()
        self.clock = clock
        self.armed = {}
        self.calls = []
        self.refuse = False
        self._counter = 0

    def schedule_at(self, absolute_ms, payload, classification):
        if self.refuse:
            raise SchedulingError("Notification permission not granted")
        if absolute_ms <= self.clock():
            raise SchedulingError("Cannot schedule notification in the past")
        self._counter += 1
        handle = f"n{self._counter}"
        self.armed[handle] = (absolute_ms, dict(payload), classification)
        self.calls.append(("schedule", handle))
        return handle

    def cancel(self, handle):
        self.armed.pop(handle, None)
        self.calls.append(("cancel", handle))

    def cancel_all(self):
        self.armed.clear()
        self.calls.append(("cancel_all", None))

    @property
    def callback(self):
        return self._callback

    def handles_for(self, reminder_id):
        return [h for h, (_, payload, _) in self.armed.items() if payload["reminderId"] == reminder_id]

    def deliver(self, handle):
        """Fire an armed notification while the app is in the foreground."""
        _, payload, _ = self.armed.pop(handle)
        self._dispatch(Event(EventType.NOTIFICATION_RECEIVED, dict(payload, handle=handle)))

    def open(self, reminder_id):
        self._dispatch(Event(EventType.NOTIFICATION_OPENED, {"reminderId": reminder_id}))


class FakeSpeech(SpeechService):
    def __init__(self):
        self.spoken = []
        self.stops = 0
        self.fail = False

    def speak(self, text, rate=None, pitch=None):
        if self.fail:
            raise SpeechError("espeak-ng not installed")
        self.spoken.append((text, rate, pitch))
        done = threading.Event()
        done.set()
        return done

    def stop(self):
        self.stops += 1


@pytest.fixture
def config(tmp_path):
    return Config({
        "storage": {"db_path": str(tmp_path / "vocalizeit.db")},
        "logging": {"console": False},
        "notifications": {"present_delay_seconds": 0},
        "reminders": {"missed_after_hours": 12, "reconcile_interval_seconds": 3600},
    })


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def zone():
    return tz.UTC


@pytest.fixture
def store(config):
    return ReminderStore(config)


@pytest.fixture
def settings(config, store):
    return SettingsManager(config, store)


@pytest.fixture
def service(clock):
    return FakeNotificationService(clock)


@pytest.fixture
def scheduler(config, service, clock):
    return NotificationScheduler(config, service, clock=clock)


@pytest.fixture
def manager(config, store, scheduler, settings, clock, zone):
    return ReminderManager(config, store, scheduler, settings, clock=clock, zone=zone)


@pytest.fixture
def speech():
    return FakeSpeech()


@pytest.fixture
def presented():
    return []


@pytest.fixture
def delivery(config, manager, scheduler, service, speech, presented, clock):
    handler = DeliveryHandler(config, manager, scheduler, service, speech, clock=clock)
    handler.set_present_callback(presented.append)
    handler.start()
    yield handler
    handler.stop()


def assert_single_handles(scheduler, service, reminder_ids):
    """At most one live handle per id, and the scheduler map agrees with the platform."""
    live = scheduler.live_handles()
    for rid in reminder_ids:
        platform = service.handles_for(rid)
        assert len(platform) <= 1
        assert ([live[rid]] if rid in live else []) == platform
