"""
Notification Scheduler

Binds reminders to platform notifications. The scheduler builds the payload,
classifies the delivery (critical vs normal), arms a one-shot trigger at the
reminder's absolute target time and tracks the resulting delivery handle.

The id -> handle map is a cache derived from the store's ``upcoming`` set; it
is rebuilt from scratch on startup and never treated as authoritative.

Platform differences are confined to ``classify()``: it turns the critical
flag plus the host's capabilities into one normalized classification record.
"""

import subprocess
import threading
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from vocalizeit.errors import SchedulingError
from vocalizeit.events import Event, EventType
from vocalizeit.logger import get_logger
from vocalizeit.models import Reminder, now_ms


# ----------------------------------------------------------------------
# Classification
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class PlatformCapabilities:
    """What the host notification system can honour."""

    supports_channels: bool = False
    supports_critical_alerts: bool = False
    supports_dnd_bypass: bool = False
    supports_full_screen: bool = False


@dataclass(frozen=True)
class NotificationClassification:
    """Normalized delivery settings for one notification."""

    channel: Optional[str]
    priority: str
    bypass_dnd: bool
    sticky: bool
    auto_dismiss: bool
    sound_volume: Optional[float]
    full_screen: bool
    interruption_level: str
    category: str


def classify(is_critical: bool, capabilities: PlatformCapabilities) -> NotificationClassification:
    """Map a reminder's critical flag onto what the platform supports."""
    if is_critical:
        return NotificationClassification(
            channel="critical" if capabilities.supports_channels else None,
            priority="max",
            bypass_dnd=capabilities.supports_dnd_bypass,
            sticky=True,
            auto_dismiss=False,
            sound_volume=1.0,
            full_screen=capabilities.supports_full_screen,
            interruption_level="critical" if capabilities.supports_critical_alerts else "time-sensitive",
            category="critical-reminder",
        )
    return NotificationClassification(
        channel="default" if capabilities.supports_channels else None,
        priority="default",
        bypass_dnd=False,
        sticky=False,
        auto_dismiss=True,
        sound_volume=None,
        full_screen=False,
        interruption_level="active",
        category="reminder",
    )


# ----------------------------------------------------------------------
# Platform services
# ----------------------------------------------------------------------

class NotificationService:
    """Interface to the host's notification system.

    Implementations arm one-shot deliveries at absolute times and report each
    delivery to the registered callback as an ``Event`` whose data is the
    payload given to ``schedule_at``.
    """

    capabilities = PlatformCapabilities()

    def __init__(self):
        self._callback: Optional[Callable[[Event], None]] = None

    def schedule_at(self, absolute_ms: int, payload: dict,
                    classification: NotificationClassification) -> str:
        raise NotImplementedError

    def cancel(self, handle: str):
        raise NotImplementedError

    def cancel_all(self):
        raise NotImplementedError

    def register_callback(self, callback: Callable[[Event], None]):
        self._callback = callback

    def unregister_callback(self):
        self._callback = None

    def _dispatch(self, event: Event):
        callback = self._callback
        if callback:
            callback(event)


class DesktopNotificationService(NotificationService):
    """Freedesktop notifications via notify-send, timed with threading.Timer.

    Timers live only as long as the process, which is why the scheduler is
    rebuilt from the store at every start.
    """

    capabilities = PlatformCapabilities(
        supports_channels=False,
        supports_critical_alerts=True,   # urgency=critical
        supports_dnd_bypass=True,        # critical urgency is shown during DND
        supports_full_screen=False,
    )

    def __init__(self, config, clock: Callable[[], int] = now_ms):
        super().__init__()
        self.config = config
        self.logger = get_logger(__name__, config)
        self._clock = clock
        self._app_name = config.get("notifications.app_name", "VocaliZeit")
        self._wait_for_actions = config.get("notifications.wait_for_actions", True)
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def schedule_at(self, absolute_ms: int, payload: dict,
                    classification: NotificationClassification) -> str:
        delay = (absolute_ms - self._clock()) / 1000
        if delay <= 0:
            raise SchedulingError("Cannot schedule notification in the past")

        handle = uuid.uuid4().hex
        timer = threading.Timer(delay, self._fire, args=(handle, payload, classification))
        timer.daemon = True
        with self._lock:
            self._timers[handle] = timer
        timer.start()
        return handle

    def cancel(self, handle: str):
        with self._lock:
            timer = self._timers.pop(handle, None)
        if timer:
            timer.cancel()

    def cancel_all(self):
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def _fire(self, handle: str, payload: dict, classification: NotificationClassification):
        with self._lock:
            if self._timers.pop(handle, None) is None:
                return  # cancelled while the timer was expiring

        payload = dict(payload, handle=handle)
        threading.Thread(target=self._show_and_wait, args=(payload, classification),
                         daemon=True, name="notify-send").start()
        self._dispatch(Event(EventType.NOTIFICATION_RECEIVED, payload, source="desktop"))

    def _show_and_wait(self, payload: dict, classification: NotificationClassification):
        if self._show(payload, classification):
            self._dispatch(Event(EventType.NOTIFICATION_OPENED, payload, source="desktop"))

    def _show(self, payload: dict, classification: NotificationClassification) -> bool:
        """Show the notification. Returns True when the user clicked 'Open'."""
        urgency = "critical" if classification.priority == "max" else "normal"
        title = "CRITICAL REMINDER" if payload.get("isCritical") else f"{self._app_name} Reminder"
        cmd = ["notify-send", f"--urgency={urgency}", f"--app-name={self._app_name}"]
        if classification.sticky:
            cmd.append("--expire-time=0")
        if self._wait_for_actions:
            cmd += ["--action=open=Open", "--wait"]
        cmd += [title, payload.get("task", "")]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True,
                                    timeout=None if self._wait_for_actions else 5)
        except (OSError, subprocess.SubprocessError) as e:
            self.logger.warning(f"notify-send failed: {e}")
            return False
        return result.returncode == 0 and result.stdout.strip() == "open"


# ----------------------------------------------------------------------
# Scheduler
# ----------------------------------------------------------------------

class NotificationScheduler:
    """Keeps at most one armed notification per reminder id."""

    def __init__(self, config, service: NotificationService,
                 capabilities: Optional[PlatformCapabilities] = None,
                 clock: Callable[[], int] = now_ms):
        self.config = config
        self.logger = get_logger(__name__, config)
        self.service = service
        self.capabilities = capabilities or service.capabilities
        self._clock = clock
        self._handles: Dict[str, str] = {}
        self._lock = threading.RLock()

    @staticmethod
    def build_payload(reminder: Reminder) -> dict:
        return {
            "reminderId": reminder.id,
            "task": reminder.task,
            "isCritical": reminder.is_critical,
        }

    # ------------------------------------------------------------------
    # Arm / disarm
    # ------------------------------------------------------------------

    def schedule(self, reminder: Reminder) -> str:
        """Arm a notification at the reminder's target time.

        An existing handle for the same id is cancelled first, so a reminder
        never has two live deliveries.

        Raises:
            SchedulingError: target not in the future, reminder not upcoming,
                or the platform refused.
        """
        with self._lock:
            if not reminder.is_upcoming:
                raise SchedulingError(
                    f"Reminder {reminder.id} is {reminder.status}, only upcoming reminders are scheduled",
                    reminder)
            if reminder.target_timestamp <= self._clock():
                raise SchedulingError(
                    f"Cannot schedule reminder {reminder.id} in the past", reminder)

            if reminder.id in self._handles:
                self.cancel_for(reminder.id)

            classification = classify(reminder.is_critical, self.capabilities)
            try:
                handle = self.service.schedule_at(
                    reminder.target_timestamp, self.build_payload(reminder), classification)
            except SchedulingError as e:
                if e.reminder is None:
                    e.reminder = reminder
                raise
            except Exception as e:
                raise SchedulingError(
                    f"Platform refused to schedule reminder {reminder.id}: {e}", reminder) from e

            self._handles[reminder.id] = handle
            self.logger.info(
                f"Scheduled reminder {reminder.id} at {reminder.target_timestamp} "
                f"(critical={reminder.is_critical}, handle={handle})")
            return handle

    def reschedule(self, reminder: Reminder) -> str:
        """Cancel the tracked handle for this reminder, then arm anew."""
        with self._lock:
            self.cancel_for(reminder.id)
            return self.schedule(reminder)

    def cancel(self, handle: str):
        """Cancel a delivery by handle and drop it from the map."""
        with self._lock:
            for rid, h in list(self._handles.items()):
                if h == handle:
                    del self._handles[rid]
            try:
                self.service.cancel(handle)
            except Exception as e:
                # Platform state isn't authoritative; the map already forgot it
                self.logger.warning(f"Failed to cancel notification {handle}: {e}")

    def cancel_for(self, reminder_id: str) -> bool:
        """Cancel the live handle of a reminder, if one is tracked."""
        with self._lock:
            handle = self._handles.get(reminder_id)
            if handle is None:
                return False
            self.cancel(handle)
            self.logger.debug(f"Cancelled notification for reminder {reminder_id}")
            return True

    def cancel_all(self):
        with self._lock:
            self._handles.clear()
            try:
                self.service.cancel_all()
            except Exception as e:
                self.logger.warning(f"Failed to cancel all notifications: {e}")
            self.logger.info("All notifications cancelled")

    def forget(self, reminder_id: str, handle: Optional[str] = None):
        """Drop a delivered notification from the map without cancelling."""
        with self._lock:
            current = self._handles.get(reminder_id)
            if current is not None and (handle is None or handle == current):
                del self._handles[reminder_id]

    # ------------------------------------------------------------------
    # Queries / rebuild
    # ------------------------------------------------------------------

    def handle_for(self, reminder_id: str) -> Optional[str]:
        with self._lock:
            return self._handles.get(reminder_id)

    def live_handles(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._handles)

    def rebuild(self, reminders: Iterable[Reminder]) -> List[str]:
        """Cancel everything, then arm every future upcoming reminder.

        Returns the ids of upcoming reminders that could not be armed (past
        target or platform refusal).
        """
        with self._lock:
            self.cancel_all()
            now = self._clock()
            failed = []
            armed = 0
            for reminder in reminders:
                if not reminder.is_upcoming:
                    continue
                if reminder.target_timestamp <= now:
                    failed.append(reminder.id)
                    continue
                try:
                    self.schedule(reminder)
                    armed += 1
                except SchedulingError as e:
                    self.logger.error(f"Rebuild could not arm reminder {reminder.id}: {e}")
                    failed.append(reminder.id)
            self.logger.info(f"Notification schedule rebuilt: {armed} armed, {len(failed)} not armed")
            return failed
