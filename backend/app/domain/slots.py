"""Reservation window rules.

Times are interpreted in the business timezone; the hour-of-day and calendar
day checks would be wrong if evaluated in UTC.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

from ..utils.time import SGT
from .errors import SlotValidationError, SlotViolation


@dataclass(frozen=True)
class SlotRules:
    grid_minutes: int = 15
    min_duration: timedelta = timedelta(minutes=60)
    horizon_months: int = 2
    max_day_span: int = 1
    cross_day_start_hour: int = 17
    cross_day_end_hour: int = 12
    # Reject off-grid instants instead of rounding them down.
    strict_grid: bool = False
    tz: ZoneInfo = SGT


@dataclass(frozen=True)
class ReservationWindow:
    location: str
    start_at: datetime
    end_at: datetime
    seat_numbers: frozenset[str] = field(default_factory=frozenset)

    @property
    def duration(self) -> timedelta:
        return self.end_at - self.start_at


def round_to_grid(t: datetime, grid_minutes: int = 15) -> datetime:
    """Round down to the previous grid boundary, dropping seconds."""
    return t.replace(minute=t.minute - t.minute % grid_minutes, second=0, microsecond=0)


def is_on_grid(t: datetime, grid_minutes: int = 15) -> bool:
    return t.minute % grid_minutes == 0 and t.second == 0 and t.microsecond == 0


def _clock(hour: int) -> str:
    return f"{hour % 12 or 12} {'AM' if hour < 12 else 'PM'}"


def add_months(t: datetime, months: int) -> datetime:
    month_index = t.month - 1 + months
    year = t.year + month_index // 12
    month = month_index % 12 + 1
    day = min(t.day, calendar.monthrange(year, month)[1])
    return t.replace(year=year, month=month, day=day)


def duration_hours(start_at: datetime, end_at: datetime) -> Decimal:
    seconds = int((end_at - start_at).total_seconds())
    return Decimal(seconds) / Decimal(3600)


def validate_window(
    window: ReservationWindow,
    now: datetime,
    *,
    rules: SlotRules = SlotRules(),
    require_future: bool = True,
) -> ReservationWindow:
    """
    Check a candidate window against the booking rules, in order.
    Returns the window snapped to the grid. Raises SlotValidationError with
    the first violated rule otherwise.
    """
    start = window.start_at.astimezone(rules.tz)
    end = window.end_at.astimezone(rules.tz)

    if rules.strict_grid and not (is_on_grid(start, rules.grid_minutes) and is_on_grid(end, rules.grid_minutes)):
        raise SlotValidationError(
            SlotViolation.GRANULARITY,
            f"start and end must fall on a {rules.grid_minutes}-minute boundary",
        )
    start = round_to_grid(start, rules.grid_minutes)
    end = round_to_grid(end, rules.grid_minutes)

    if require_future and start < now:
        raise SlotValidationError(SlotViolation.PAST_START, "booking cannot start in the past")
    if end <= start:
        raise SlotValidationError(SlotViolation.ORDERING, "end time must be after start time")
    if end - start < rules.min_duration:
        minutes = int(rules.min_duration.total_seconds() // 60)
        raise SlotValidationError(SlotViolation.MIN_DURATION, f"booking must last at least {minutes} minutes")
    if require_future and start > add_months(now.astimezone(rules.tz), rules.horizon_months):
        raise SlotValidationError(
            SlotViolation.HORIZON,
            f"bookings can be made at most {rules.horizon_months} months ahead",
        )

    whole_days = (end - start) // timedelta(days=1)
    calendar_days = (end.date() - start.date()).days
    if whole_days > rules.max_day_span or calendar_days > rules.max_day_span:
        raise SlotValidationError(
            SlotViolation.CROSS_DAY_SPAN,
            f"bookings can span at most {rules.max_day_span + 1} calendar days",
        )
    if calendar_days == 1 and (start.hour < rules.cross_day_start_hour or end.hour > rules.cross_day_end_hour):
        raise SlotValidationError(
            SlotViolation.CROSS_DAY_WINDOW,
            f"cross-day bookings are only allowed from {_clock(rules.cross_day_start_hour)}"
            f" to {_clock(rules.cross_day_end_hour)} next day",
        )

    return replace(window, start_at=start, end_at=end)
