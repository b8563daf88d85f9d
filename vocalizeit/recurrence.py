"""
Recurrence Calculator

Pure functions that derive the next target time of a recurring reminder.

Daily and plain weekly rules advance in absolute milliseconds, so an
occurrence is always exactly 24h (or 7 days) after the previous one
regardless of DST. The flip side is that the wall-clock time drifts by the
DST offset when a transition falls between two occurrences.

Weekly rules with ``daysOfWeek`` and monthly rules work on the local
calendar via ``dateutil.relativedelta``, which keeps the time of day. Monthly
rules clamp to the last valid day of shorter months (Jan 31 -> Feb 28/29).
"""

from datetime import datetime, tzinfo
from typing import Optional

from dateutil import tz as dateutil_tz
from dateutil.relativedelta import relativedelta

from vocalizeit.errors import ValidationError
from vocalizeit.models import DAILY, DAY_MS, MONTHLY, NONE, WEEKLY, Recurrence


WEEK_MS = 7 * DAY_MS


def _to_datetime(timestamp_ms: int, zone: tzinfo) -> datetime:
    return datetime.fromtimestamp(timestamp_ms / 1000, zone)


def _to_ms(dt: datetime) -> int:
    return int(round(dt.timestamp() * 1000))


def _sunday_weekday(dt: datetime) -> int:
    """Weekday index with Sunday = 0, matching the persisted daysOfWeek."""
    return (dt.weekday() + 1) % 7


def _advance_fixed(current_target: int, period_ms: int, now: int) -> int:
    """Add whole periods until the result lies after now."""
    candidate = current_target + period_ms
    if candidate > now:
        return candidate
    periods = (now - current_target) // period_ms + 1
    return current_target + periods * period_ms


def _advance_weekdays(current_target: int, days_of_week, now: int, zone: tzinfo) -> int:
    """Next local calendar day after current_target that falls on one of days_of_week."""
    anchor = _to_datetime(current_target, zone)
    days = 1
    if current_target + DAY_MS <= now:
        # Skip the offline stretch
        days = (now - current_target) // DAY_MS

    while True:
        candidate = anchor + relativedelta(days=days)
        if _to_ms(candidate) > now and _sunday_weekday(candidate) in days_of_week:
            return _to_ms(candidate)
        days += 1


def _advance_months(current_target: int, now: int, zone: tzinfo) -> int:
    # Count months from the original anchor so clamping never accumulates
    anchor = _to_datetime(current_target, zone)
    months = 1
    candidate = _to_ms(anchor + relativedelta(months=months))
    while candidate <= now:
        months += 1
        candidate = _to_ms(anchor + relativedelta(months=months))
    return candidate


def next_occurrence(current_target: int, rule: Recurrence, now: int,
                    zone: Optional[tzinfo] = None) -> Optional[int]:
    """Return the next target timestamp after a reminder fires.

    Args:
        current_target: The fired reminder's target, epoch milliseconds.
        rule: Recurrence rule of the reminder.
        now: Current time, epoch milliseconds.
        zone: Timezone for calendar-based rules (defaults to the host's).

    Returns:
        An epoch-millisecond timestamp strictly greater than ``now``, or None
        when the rule does not recur.
    """
    zone = zone or dateutil_tz.tzlocal()
    rule_type = rule.type if rule else NONE

    if rule_type == NONE:
        return None
    if rule_type == DAILY:
        return _advance_fixed(current_target, DAY_MS, now)
    if rule_type == WEEKLY:
        if rule.days_of_week:
            return _advance_weekdays(current_target, rule.days_of_week, now, zone)
        return _advance_fixed(current_target, WEEK_MS, now)
    if rule_type == MONTHLY:
        return _advance_months(current_target, now, zone)

    raise ValidationError(f"Unknown recurrence type: {rule_type!r}")
