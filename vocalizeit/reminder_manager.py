"""
Reminder Manager

Lifecycle controller for reminders. Every mutation goes through here so the
store and the notification scheduler stay in step:

    upcoming --complete--> completed   (completedAt set, handle cancelled)
    upcoming --dismiss---> dismissed   (handle cancelled)
    upcoming --snooze----> upcoming    (target = now + minutes, re-armed)
    upcoming --reconcile-> missed      (non-recurring, past the grace window)
    upcoming --delete----> removed     (handle cancelled)

The store is written first. If that fails nothing is armed or cancelled and
the StoreError propagates. If arming fails afterwards the reminder stays
persisted as upcoming without a live handle and SchedulingError is raised
with the saved record attached.

A background thread runs the reconciliation pass periodically: recurring
reminders left with a past target are rolled forward, and non-recurring
ones overdue by more than ``reminders.missed_after_hours`` become missed.
"""

import threading
from datetime import tzinfo
from typing import Callable, Dict, List, Optional, Tuple, Union

from vocalizeit.errors import (
    InvalidTransitionError,
    ReminderError,
    ReminderNotFoundError,
    SchedulingError,
    ValidationError,
)
from vocalizeit.events import Event, EventType
from vocalizeit.logger import get_logger
from vocalizeit.models import (
    COMPLETED,
    DISMISSED,
    HISTORY_STATUSES,
    HOUR_MS,
    MINUTE_MS,
    MISSED,
    UPCOMING,
    Recurrence,
    Reminder,
    generate_id,
    now_ms,
)
from vocalizeit.notifications import NotificationScheduler
from vocalizeit.recurrence import next_occurrence
from vocalizeit.settings_manager import SettingsManager
from vocalizeit.store import ReminderStore


_EDITABLE = ("task", "target_timestamp", "is_critical", "recurrence")


class ReminderManager:
    """Reminder state machine with store/scheduler consistency."""

    def __init__(self, config, store: ReminderStore, scheduler: NotificationScheduler,
                 settings: SettingsManager, clock: Callable[[], int] = now_ms,
                 zone: Optional[tzinfo] = None):
        self.config = config
        self.store = store
        self.scheduler = scheduler
        self.settings = settings
        self.logger = get_logger(__name__, config)
        self._clock = clock
        self._zone = zone

        # One operation at a time; deliveries arrive on timer threads
        self._lock = threading.RLock()

        self.missed_after_hours = config.get("reminders.missed_after_hours", 12)
        self.reconcile_interval = config.get("reminders.reconcile_interval_seconds", 300)
        self.test_delay = config.get("notifications.test_delay_seconds", 5)

        # Background thread state
        self._running = False
        self._stop_event = threading.Event()
        self._poll_thread = None

        self._change_callback: Optional[Callable[[Event], None]] = None

        self.logger.info("ReminderManager initialized")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_task(task) -> str:
        if not isinstance(task, str) or not task.strip():
            raise ValidationError("Please enter a task description")
        return task.strip()

    def _validate_target(self, target_timestamp) -> int:
        if isinstance(target_timestamp, bool) or not isinstance(target_timestamp, int):
            raise ValidationError(f"targetTimestamp must be integer milliseconds, got {target_timestamp!r}")
        if target_timestamp <= self._clock():
            raise ValidationError("Please select a future date and time")
        return target_timestamp

    @staticmethod
    def _coerce_recurrence(recurrence: Union[Recurrence, dict, str, None]) -> Recurrence:
        if recurrence is None:
            return Recurrence()
        if isinstance(recurrence, Recurrence):
            return recurrence
        if isinstance(recurrence, str):
            return Recurrence(type=recurrence)
        if isinstance(recurrence, dict):
            return Recurrence.from_dict(recurrence)
        raise ValidationError(f"Invalid recurrence: {recurrence!r}")

    # ------------------------------------------------------------------
    # Store helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _find(reminders: List[Reminder], reminder_id: str) -> Tuple[int, Reminder]:
        for index, reminder in enumerate(reminders):
            if reminder.id == reminder_id:
                return index, reminder
        raise ReminderNotFoundError(reminder_id)

    def _save_one(self, reminders: List[Reminder], index: int, updated: Reminder):
        reminders = list(reminders)
        reminders[index] = updated
        self.store.save_all(reminders)

    def _arm(self, reminder: Reminder) -> Reminder:
        """Re-arm after a successful store write; failures keep the record."""
        try:
            self.scheduler.reschedule(reminder)
        except SchedulingError as e:
            e.reminder = reminder
            self.logger.error(f"Reminder {reminder.id} saved but not scheduled: {e}")
            raise
        return reminder

    def _require_upcoming(self, reminder: Reminder, action: str):
        if reminder.status != UPCOMING:
            raise InvalidTransitionError(reminder.id, reminder.status, action)

    def set_change_callback(self, callback: Callable[[Event], None]):
        """Set the callback notified after the collection changes."""
        self._change_callback = callback

    def _notify_changed(self, reminder_id: str):
        if self._change_callback:
            self._change_callback(Event(EventType.REMINDERS_CHANGED, reminder_id, source="reminders"))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_reminder(self, reminder_id: str) -> Optional[Reminder]:
        return self.store.get_reminder(reminder_id)

    def list_upcoming(self) -> List[Reminder]:
        """Upcoming reminders, soonest first."""
        reminders = [r for r in self.store.get_all() if r.status == UPCOMING]
        return sorted(reminders, key=lambda r: r.target_timestamp)

    def list_history(self) -> List[Reminder]:
        """Completed, dismissed and missed reminders, most recent first."""
        reminders = [r for r in self.store.get_all() if r.status in HISTORY_STATUSES]
        return sorted(reminders, key=lambda r: r.target_timestamp, reverse=True)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(self, task: str, target_timestamp: int, is_critical: bool = False,
               recurrence: Union[Recurrence, dict, str, None] = None) -> Reminder:
        """Add a new reminder and arm its notification."""
        with self._lock:
            reminder = Reminder(
                id=generate_id(),
                task=self._validate_task(task),
                target_timestamp=self._validate_target(target_timestamp),
                is_critical=bool(is_critical),
                status=UPCOMING,
                recurrence=self._coerce_recurrence(recurrence),
                created_at=self._clock(),
            )
            reminders = self.store.get_all()
            reminders.append(reminder)
            self.store.save_all(reminders)

            self.logger.info(
                f"Reminder {reminder.id} created: '{reminder.task}' at {reminder.target_timestamp} "
                f"(critical={reminder.is_critical}, recurrence={reminder.recurrence.type})")
            self._notify_changed(reminder.id)
            return self._arm(reminder)

    def edit(self, reminder_id: str, **patch) -> Reminder:
        """Update task, target, critical flag or recurrence of an upcoming reminder.

        The notification is re-armed when anything it carries changed.
        """
        unknown = set(patch) - set(_EDITABLE)
        if unknown:
            raise ValidationError(f"Cannot edit field(s): {', '.join(sorted(unknown))}")

        with self._lock:
            reminders = self.store.get_all()
            index, current = self._find(reminders, reminder_id)
            self._require_upcoming(current, "edit")

            updated = current.evolve(
                task=self._validate_task(patch.get("task", current.task)),
                target_timestamp=self._validate_target(
                    patch.get("target_timestamp", current.target_timestamp)),
                is_critical=bool(patch.get("is_critical", current.is_critical)),
                recurrence=self._coerce_recurrence(patch.get("recurrence", current.recurrence)),
            )
            if updated == current:
                return current

            self._save_one(reminders, index, updated)
            self.logger.info(f"Reminder {reminder_id} edited")
            self._notify_changed(reminder_id)

            needs_rearm = (
                updated.target_timestamp != current.target_timestamp
                or updated.is_critical != current.is_critical
                or updated.task != current.task
                or self.scheduler.handle_for(reminder_id) is None
            )
            if needs_rearm:
                return self._arm(updated)
            return updated

    def complete(self, reminder_id: str) -> Reminder:
        return self._finish(reminder_id, COMPLETED, "complete")

    def dismiss(self, reminder_id: str) -> Reminder:
        return self._finish(reminder_id, DISMISSED, "dismiss")

    def _finish(self, reminder_id: str, status: str, action: str) -> Reminder:
        with self._lock:
            reminders = self.store.get_all()
            index, current = self._find(reminders, reminder_id)
            self._require_upcoming(current, action)

            changes = {"status": status}
            if status == COMPLETED:
                changes["completed_at"] = self._clock()
            updated = current.evolve(**changes)

            self._save_one(reminders, index, updated)
            self.scheduler.cancel_for(reminder_id)
            self.logger.info(f"Reminder {reminder_id} {status}")
            self._notify_changed(reminder_id)
            return updated

    def snooze(self, reminder_id: str, minutes: Optional[int] = None) -> Reminder:
        """Push an upcoming reminder to now + minutes (default: settings)."""
        if minutes is None:
            minutes = self.settings.snooze_minutes()
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
            raise ValidationError(f"Snooze minutes must be a positive integer, got {minutes!r}")

        with self._lock:
            reminders = self.store.get_all()
            index, current = self._find(reminders, reminder_id)
            self._require_upcoming(current, "snooze")

            updated = current.evolve(target_timestamp=self._clock() + minutes * MINUTE_MS)
            self._save_one(reminders, index, updated)
            self.logger.info(f"Reminder {reminder_id} snoozed for {minutes} minutes "
                             f"(until {updated.target_timestamp})")
            self._notify_changed(reminder_id)
            return self._arm(updated)

    def delete(self, reminder_id: str) -> Reminder:
        """Hard-delete a reminder. Returns the removed record for undo."""
        with self._lock:
            reminders = self.store.get_all()
            index, current = self._find(reminders, reminder_id)
            del reminders[index]
            self.store.save_all(reminders)
            self.scheduler.cancel_for(reminder_id)
            self.logger.info(f"Reminder {reminder_id} deleted")
            self._notify_changed(reminder_id)
            return current

    def restore(self, reminder: Reminder) -> Reminder:
        """Re-insert a deleted record unchanged (UI undo).

        Upcoming reminders with a future target are re-armed; a past target
        is left for the next reconciliation pass.
        """
        with self._lock:
            reminders = self.store.get_all()
            if any(r.id == reminder.id for r in reminders):
                raise ValidationError(f"Reminder {reminder.id} already exists")
            reminders.append(reminder)
            self.store.save_all(reminders)
            self.logger.info(f"Reminder {reminder.id} restored")
            self._notify_changed(reminder.id)

            if reminder.is_upcoming and reminder.target_timestamp > self._clock():
                return self._arm(reminder)
            return reminder

    # ------------------------------------------------------------------
    # Recurring
    # ------------------------------------------------------------------

    def roll_forward(self, reminder_id: str) -> Optional[Reminder]:
        """Advance a fired recurring reminder to its next occurrence and re-arm.

        Only a due reminder (target already reached) is advanced, so a second
        delivery event for the same firing is a no-op. Returns the updated
        reminder, or None when nothing was rolled.
        """
        with self._lock:
            reminders = self.store.get_all()
            try:
                index, current = self._find(reminders, reminder_id)
            except ReminderNotFoundError:
                return None

            now = self._clock()
            if (current.status != UPCOMING or not current.recurrence.is_recurring
                    or current.target_timestamp > now):
                return None

            next_time = next_occurrence(current.target_timestamp, current.recurrence, now, self._zone)
            if next_time is None:
                return None

            updated = current.evolve(target_timestamp=next_time, status=UPCOMING)
            self._save_one(reminders, index, updated)
            self.logger.info(f"Recurring reminder {reminder_id} advanced to {next_time}")
            self._notify_changed(reminder_id)
            return self._arm(updated)

    # ------------------------------------------------------------------
    # Reconciliation / startup
    # ------------------------------------------------------------------

    def reconcile(self) -> Dict[str, List[str]]:
        """Roll stale recurring reminders forward and mark overdue ones missed.

        Returns ``{"rolled": [...ids], "missed": [...ids]}``.
        """
        with self._lock:
            now = self._clock()
            cutoff = now - int(self.missed_after_hours * HOUR_MS)
            reminders = self.store.get_all()
            rolled, missed = [], []
            result = []

            for reminder in reminders:
                if reminder.status != UPCOMING or reminder.target_timestamp > now:
                    result.append(reminder)
                    continue
                if reminder.recurrence.is_recurring:
                    next_time = next_occurrence(reminder.target_timestamp, reminder.recurrence,
                                                now, self._zone)
                    result.append(reminder.evolve(target_timestamp=next_time))
                    rolled.append(reminder.id)
                elif reminder.target_timestamp < cutoff:
                    result.append(reminder.evolve(status=MISSED))
                    missed.append(reminder.id)
                else:
                    result.append(reminder)

            if not rolled and not missed:
                return {"rolled": [], "missed": []}

            self.store.save_all(result)
            for rid in missed:
                self.scheduler.cancel_for(rid)
            for reminder in result:
                if reminder.id in rolled:
                    try:
                        self.scheduler.reschedule(reminder)
                    except SchedulingError as e:
                        self.logger.error(f"Could not re-arm rolled reminder {reminder.id}: {e}")

            self.logger.info(f"Reconciled: {len(rolled)} rolled forward, {len(missed)} missed")
            for rid in rolled + missed:
                self._notify_changed(rid)
            return {"rolled": rolled, "missed": missed}

    def rebuild_schedule(self) -> List[str]:
        """Re-arm every upcoming reminder from the store (cancel-all first)."""
        with self._lock:
            return self.scheduler.rebuild(self.store.get_all())

    def send_test_notification(self) -> str:
        """Arm a critical test notification a few seconds out. Not persisted."""
        test = Reminder(
            id=f"test-{self._clock()}",
            task=("This is a test critical reminder! If you can hear this, "
                  "your notifications are working properly."),
            target_timestamp=self._clock() + int(self.test_delay * 1000),
            is_critical=True,
            created_at=self._clock(),
        )
        handle = self.scheduler.schedule(test)
        self.logger.info(f"Test notification scheduled in {self.test_delay}s")
        return handle

    def start(self):
        """Reconcile, rebuild the notification schedule, then begin polling."""
        self.logger.info("Starting reminder system")
        self.reconcile()
        failed = self.rebuild_schedule()
        if failed:
            self.logger.warning(f"{len(failed)} upcoming reminder(s) have no armed notification")

        self._running = True
        self._stop_event.clear()
        self._poll_thread = threading.Thread(target=self._poll_loop, daemon=True,
                                             name="reminder-reconcile")
        self._poll_thread.start()

    def stop(self):
        """Stop the reconciliation thread."""
        self._running = False
        self._stop_event.set()
        if self._poll_thread:
            self._poll_thread.join(timeout=10)
            self._poll_thread = None
        self.logger.info("Reminder system stopped")

    def _poll_loop(self):
        while not self._stop_event.wait(self.reconcile_interval):
            if not self._running:
                break
            try:
                self.reconcile()
            except ReminderError as e:
                self.logger.error(f"Reminder reconcile error: {e}")
