"""
Reminder data model

Plain dataclasses for reminders and app settings, with JSON (de)serialization
using the persisted key names (camelCase, timestamps as epoch milliseconds).
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple

from vocalizeit.errors import ValidationError


# Reminder status
UPCOMING = "upcoming"
COMPLETED = "completed"
DISMISSED = "dismissed"
MISSED = "missed"
STATUSES = (UPCOMING, COMPLETED, DISMISSED, MISSED)
HISTORY_STATUSES = (COMPLETED, DISMISSED, MISSED)

# Recurrence types
NONE = "none"
DAILY = "daily"
WEEKLY = "weekly"
MONTHLY = "monthly"
RECURRENCE_TYPES = (NONE, DAILY, WEEKLY, MONTHLY)

THEMES = ("light", "dark", "amoled", "system")
SNOOZE_OPTIONS = (5, 10, 15, 20, 30, 60)

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


def now_ms() -> int:
    """Current time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def generate_id() -> str:
    return uuid.uuid4().hex


def _require_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    return value


@dataclass(frozen=True)
class Recurrence:
    """Recurrence rule. Weekday indices run 0 (Sunday) to 6 (Saturday)."""

    type: str = NONE
    days_of_week: Optional[Tuple[int, ...]] = None

    def __post_init__(self):
        if self.type not in RECURRENCE_TYPES:
            raise ValidationError(f"Unknown recurrence type: {self.type!r}")
        if self.days_of_week is not None:
            for d in self.days_of_week:
                if isinstance(d, bool) or not isinstance(d, int) or not 0 <= d <= 6:
                    raise ValidationError(f"Invalid weekday index: {d!r}")
            object.__setattr__(self, "days_of_week", tuple(sorted(set(self.days_of_week))))

    @property
    def is_recurring(self) -> bool:
        return self.type != NONE

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.type}
        if self.days_of_week is not None:
            data["daysOfWeek"] = list(self.days_of_week)
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Recurrence":
        if not data:
            return cls()
        days = data.get("daysOfWeek")
        return cls(
            type=data.get("type", NONE),
            days_of_week=tuple(days) if days is not None else None,
        )


@dataclass(frozen=True)
class Reminder:
    """A user-scheduled task with a target firing time."""

    id: str
    task: str
    target_timestamp: int
    is_critical: bool = False
    status: str = UPCOMING
    recurrence: Recurrence = field(default_factory=Recurrence)
    created_at: int = 0
    completed_at: Optional[int] = None

    @property
    def is_upcoming(self) -> bool:
        return self.status == UPCOMING

    def evolve(self, **changes) -> "Reminder":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "task": self.task,
            "targetTimestamp": self.target_timestamp,
            "isCritical": self.is_critical,
            "status": self.status,
            "recurrence": self.recurrence.to_dict(),
            "createdAt": self.created_at,
        }
        if self.completed_at is not None:
            data["completedAt"] = self.completed_at
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Reminder":
        try:
            status = data.get("status", UPCOMING)
            if status not in STATUSES:
                raise ValidationError(f"Unknown reminder status: {status!r}")
            completed_at = data.get("completedAt")
            return cls(
                id=str(data["id"]),
                task=str(data["task"]),
                target_timestamp=_require_int(data["targetTimestamp"], "targetTimestamp"),
                is_critical=bool(data.get("isCritical", False)),
                status=status,
                recurrence=Recurrence.from_dict(data.get("recurrence")),
                created_at=_require_int(data.get("createdAt", 0), "createdAt"),
                completed_at=(_require_int(completed_at, "completedAt")
                              if completed_at is not None else None),
            )
        except KeyError as e:
            raise ValidationError(f"Reminder record missing field: {e.args[0]}") from e


@dataclass(frozen=True)
class AppSettings:
    snooze_duration: int = 15
    theme: str = "system"

    def to_dict(self) -> Dict[str, Any]:
        return {"snoozeDuration": self.snooze_duration, "theme": self.theme}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AppSettings":
        """Merge persisted values onto defaults; unknown keys are ignored."""
        defaults = cls()
        data = data or {}
        return cls(
            snooze_duration=data.get("snoozeDuration", defaults.snooze_duration),
            theme=data.get("theme", defaults.theme),
        )
