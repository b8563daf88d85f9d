import pytest

from vocalizeit.errors import (
    InvalidTransitionError,
    ReminderNotFoundError,
    SchedulingError,
    StoreError,
    ValidationError,
)
from vocalizeit.events import EventType
from vocalizeit.models import DAY_MS, HOUR_MS, MINUTE_MS, Recurrence

from conftest import assert_single_handles


def create(manager, clock, task="Call mom", minutes=60, **kwargs):
    return manager.create(task, clock() + minutes * MINUTE_MS, **kwargs)


class TestCreate:
    def test_create_then_get_returns_equal_record(self, manager, clock):
        target = clock() + HOUR_MS
        created = manager.create("  Buy milk ", target, is_critical=True,
                                 recurrence={"type": "weekly", "daysOfWeek": [2, 4]})
        loaded = manager.get_reminder(created.id)

        assert loaded == created
        assert loaded.task == "Buy milk"
        assert loaded.target_timestamp == target
        assert loaded.is_critical is True
        assert loaded.status == "upcoming"
        assert loaded.recurrence == Recurrence("weekly", days_of_week=(2, 4))
        assert loaded.created_at == clock()
        assert loaded.completed_at is None

    def test_create_arms_one_notification(self, manager, scheduler, service, clock):
        reminder = create(manager, clock)
        handle = scheduler.handle_for(reminder.id)
        assert service.armed[handle][0] == reminder.target_timestamp
        assert_single_handles(scheduler, service, [reminder.id])

    @pytest.mark.parametrize("task", ["", "   ", None])
    def test_empty_task_rejected(self, manager, store, clock, task):
        with pytest.raises(ValidationError):
            manager.create(task, clock() + HOUR_MS)
        assert store.get_all() == []

    @pytest.mark.parametrize("offset", [0, -1, -DAY_MS])
    def test_non_future_timestamp_rejected(self, manager, store, service, clock, offset):
        with pytest.raises(ValidationError):
            manager.create("Task", clock() + offset)
        assert store.get_all() == []
        assert service.armed == {}

    def test_scheduling_failure_keeps_persisted_reminder(self, manager, scheduler, service, clock):
        service.refuse = True
        with pytest.raises(SchedulingError) as exc_info:
            create(manager, clock)

        saved = exc_info.value.reminder
        assert manager.get_reminder(saved.id) == saved
        assert saved.status == "upcoming"
        assert scheduler.handle_for(saved.id) is None

    def test_store_failure_arms_nothing(self, manager, store, service, clock, monkeypatch):
        def broken(reminders):
            raise StoreError("disk full")

        monkeypatch.setattr(store, "save_all", broken)
        with pytest.raises(StoreError):
            create(manager, clock)
        assert service.armed == {}

    def test_change_callback_fires(self, manager, clock):
        events = []
        manager.set_change_callback(events.append)
        reminder = create(manager, clock)
        assert [(e.type, e.data) for e in events] == [(EventType.REMINDERS_CHANGED, reminder.id)]


class TestTransitions:
    def test_complete(self, manager, scheduler, service, clock):
        reminder = create(manager, clock)
        clock.advance(5 * MINUTE_MS)

        completed = manager.complete(reminder.id)

        assert completed.status == "completed"
        assert completed.completed_at == clock()
        assert manager.get_reminder(reminder.id) == completed
        assert scheduler.handle_for(reminder.id) is None
        assert service.handles_for(reminder.id) == []

    def test_dismiss(self, manager, scheduler, service, clock):
        reminder = create(manager, clock)
        dismissed = manager.dismiss(reminder.id)

        assert dismissed.status == "dismissed"
        assert dismissed.completed_at is None
        assert service.handles_for(reminder.id) == []

    def test_snooze_uses_default_duration(self, manager, scheduler, service, clock):
        reminder = create(manager, clock)
        old_handle = scheduler.handle_for(reminder.id)
        clock.advance(HOUR_MS)

        snoozed = manager.snooze(reminder.id)

        assert snoozed.status == "upcoming"
        assert snoozed.target_timestamp == clock() + 15 * 60000
        assert old_handle not in service.armed
        new_handles = service.handles_for(reminder.id)
        assert len(new_handles) == 1
        assert service.armed[new_handles[0]][0] == snoozed.target_timestamp
        assert scheduler.handle_for(reminder.id) == new_handles[0]

    def test_snooze_follows_settings_and_explicit_minutes(self, manager, settings, clock):
        reminder = create(manager, clock)
        settings.set(snoozeDuration=30)
        assert manager.snooze(reminder.id).target_timestamp == clock() + 30 * MINUTE_MS
        assert manager.snooze(reminder.id, 5).target_timestamp == clock() + 5 * MINUTE_MS

    @pytest.mark.parametrize("minutes", [0, -5, True, 2.5])
    def test_snooze_rejects_invalid_minutes(self, manager, clock, minutes):
        reminder = create(manager, clock)
        with pytest.raises(ValidationError):
            manager.snooze(reminder.id, minutes)

    @pytest.mark.parametrize("action", ["complete", "dismiss", "snooze", "edit"])
    def test_no_transition_out_of_terminal_status(self, manager, clock, action):
        reminder = create(manager, clock)
        manager.dismiss(reminder.id)
        with pytest.raises(InvalidTransitionError):
            if action == "edit":
                manager.edit(reminder.id, task="New")
            else:
                getattr(manager, action)(reminder.id)
        assert manager.get_reminder(reminder.id).status == "dismissed"

    def test_unknown_id(self, manager):
        with pytest.raises(ReminderNotFoundError):
            manager.complete("nope")

    def test_delete_and_restore(self, manager, scheduler, service, clock):
        reminder = create(manager, clock)

        removed = manager.delete(reminder.id)
        assert removed == reminder
        assert manager.get_reminder(reminder.id) is None
        assert service.handles_for(reminder.id) == []

        manager.restore(removed)
        assert manager.get_reminder(reminder.id) == reminder
        assert_single_handles(scheduler, service, [reminder.id])
        assert len(service.handles_for(reminder.id)) == 1

    def test_restore_existing_id_rejected(self, manager, clock):
        reminder = create(manager, clock)
        with pytest.raises(ValidationError):
            manager.restore(reminder)


class TestEdit:
    def test_edit_target_reschedules(self, manager, scheduler, service, clock):
        reminder = create(manager, clock)
        old_handle = scheduler.handle_for(reminder.id)
        new_target = clock() + 2 * HOUR_MS

        edited = manager.edit(reminder.id, target_timestamp=new_target)

        assert edited.target_timestamp == new_target
        assert old_handle not in service.armed
        assert service.armed[scheduler.handle_for(reminder.id)][0] == new_target
        assert_single_handles(scheduler, service, [reminder.id])

    def test_edit_critical_flag_reclassifies(self, manager, scheduler, service, clock):
        reminder = create(manager, clock)
        manager.edit(reminder.id, is_critical=True)
        _, payload, classification = service.armed[scheduler.handle_for(reminder.id)]
        assert payload["isCritical"] is True
        assert classification.priority == "max"

    def test_edit_recurrence_only_keeps_handle(self, manager, scheduler, clock):
        reminder = create(manager, clock)
        handle = scheduler.handle_for(reminder.id)
        edited = manager.edit(reminder.id, recurrence="daily")
        assert edited.recurrence.type == "daily"
        assert scheduler.handle_for(reminder.id) == handle

    def test_edit_revalidates(self, manager, clock):
        reminder = create(manager, clock)
        with pytest.raises(ValidationError):
            manager.edit(reminder.id, task=" ")
        with pytest.raises(ValidationError):
            manager.edit(reminder.id, target_timestamp=clock() - 1)
        with pytest.raises(ValidationError):
            manager.edit(reminder.id, status="completed")
        assert manager.get_reminder(reminder.id) == reminder


class TestListing:
    def test_upcoming_ascending_history_descending(self, manager, clock):
        late = create(manager, clock, "late", minutes=300)
        early = create(manager, clock, "early", minutes=10)
        mid = create(manager, clock, "mid", minutes=60)
        done_a = create(manager, clock, "done a", minutes=20)
        done_b = create(manager, clock, "done b", minutes=200)
        manager.complete(done_a.id)
        manager.dismiss(done_b.id)

        assert [r.task for r in manager.list_upcoming()] == ["early", "mid", "late"]
        assert [r.task for r in manager.list_history()] == ["done b", "done a"]
        assert {late.id, early.id, mid.id} == {r.id for r in manager.list_upcoming()}


class TestReconcile:
    def test_overdue_non_recurring_becomes_missed(self, manager, scheduler, service, clock):
        reminder = create(manager, clock, minutes=10)
        clock.advance(13 * HOUR_MS)

        result = manager.reconcile()

        assert result == {"rolled": [], "missed": [reminder.id]}
        assert manager.get_reminder(reminder.id).status == "missed"
        assert scheduler.handle_for(reminder.id) is None
        assert [r.id for r in manager.list_history()] == [reminder.id]

    def test_recently_fired_stays_upcoming(self, manager, clock):
        reminder = create(manager, clock, minutes=10)
        clock.advance(2 * HOUR_MS)
        assert manager.reconcile() == {"rolled": [], "missed": []}
        assert manager.get_reminder(reminder.id).status == "upcoming"

    def test_stale_recurring_rolls_forward(self, manager, scheduler, service, clock):
        reminder = create(manager, clock, minutes=10, recurrence="daily")
        clock.advance(3 * DAY_MS)

        result = manager.reconcile()

        assert result["rolled"] == [reminder.id]
        rolled = manager.get_reminder(reminder.id)
        assert rolled.status == "upcoming"
        assert clock() < rolled.target_timestamp <= clock() + DAY_MS
        assert rolled.target_timestamp == reminder.target_timestamp + 3 * DAY_MS
        assert service.armed[scheduler.handle_for(reminder.id)][0] == rolled.target_timestamp
        assert_single_handles(scheduler, service, [reminder.id])


class TestStartup:
    def test_start_rebuilds_from_store(self, manager, store, scheduler, service, clock):
        a = create(manager, clock, "a")
        b = create(manager, clock, "b", minutes=90)
        # Simulate a restart: the platform and cache lost everything
        service.armed.clear()
        scheduler._handles.clear()

        manager.start()
        try:
            assert set(scheduler.live_handles()) == {a.id, b.id}
            assert_single_handles(scheduler, service, [a.id, b.id])
        finally:
            manager.stop()

    def test_test_notification_is_not_persisted(self, manager, store, service, clock):
        handle = manager.send_test_notification()
        at, payload, classification = service.armed[handle]
        assert at == clock() + 5000
        assert payload["isCritical"] is True
        assert classification.bypass_dnd is True
        assert store.get_all() == []
