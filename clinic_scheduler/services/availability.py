"""Availability resolution: open intervals for a doctor on a given date.

A date-specific exception wins over the weekly rules:

- `is_available = false` closes the whole day;
- `is_available = true` opens the day with the exception's own hours, or the
  clinic default hours (`CLINIC_DEFAULT_HOURS`) when it carries none;
- otherwise every active weekly rule matching the weekday contributes one
  interval. Overlapping rules are returned as they are; use `merge_intervals`
  or `covers` to reason about their union.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable

from flask import current_app

from clinic_scheduler.services.errors import InvalidInput
from clinic_scheduler.services.store import SchedulingStore
from clinic_scheduler.services.timefmt import (
    DAY_FMT,
    parse_day,
    parse_hours,
    serialize,
    sunday_weekday,
)


@dataclass(frozen=True, order=True)
class Interval:
    """Half-open `[start, end)` span of clinic-local time."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise InvalidInput("empty_interval")

    def contains(self, start: datetime, end: datetime) -> bool:
        return self.start <= start and end <= self.end

    def as_dict(self) -> dict[str, str]:
        return {"start": serialize(self.start), "end": serialize(self.end)}


def default_hours() -> tuple[time, time]:
    return parse_hours(current_app.config.get("CLINIC_DEFAULT_HOURS", "09:00-17:00"))


def _on(day: date, start: time, end: time) -> Interval:
    return Interval(datetime.combine(day, start), datetime.combine(day, end))


def open_intervals(store: SchedulingStore, doctor_id: int, day: date | str) -> list[Interval]:
    target = parse_day(day)
    doctor = store.require_doctor(doctor_id)
    if not doctor.is_active:
        return []

    exception = store.exception_for(doctor_id, target)
    if exception is not None:
        if not exception.is_available:
            return []
        if exception.start_time is not None and exception.end_time is not None:
            return [_on(target, exception.start_time, exception.end_time)]
        start, end = default_hours()
        return [_on(target, start, end)]

    rules = store.rules_for(doctor_id, sunday_weekday(target))
    return sorted(_on(target, rule.start_time, rule.end_time) for rule in rules)


def merge_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    """Union of the given intervals; overlapping or touching spans are joined."""

    ordered = sorted(intervals)
    if not ordered:
        return []

    merged = [ordered[0]]
    for current in ordered[1:]:
        last = merged[-1]
        if current.start <= last.end:
            if current.end > last.end:
                merged[-1] = Interval(last.start, current.end)
        else:
            merged.append(current)
    return merged


def covers(intervals: Iterable[Interval], start: datetime, end: datetime) -> bool:
    """True when [start, end) lies entirely inside the union of `intervals`."""

    return any(span.contains(start, end) for span in merge_intervals(intervals))


def effective_availability(
    store: SchedulingStore,
    doctor_id: int,
    first_day: date | str,
    last_day: date | str,
) -> dict[str, list[Interval]]:
    """Open intervals per day over an inclusive date range, skipping closed days."""

    current = parse_day(first_day)
    last = parse_day(last_day)
    if last < current:
        raise InvalidInput("invalid_date_range")

    result: dict[str, list[Interval]] = {}
    while current <= last:
        intervals = open_intervals(store, doctor_id, current)
        if intervals:
            result[current.strftime(DAY_FMT)] = intervals
        current += timedelta(days=1)
    return result
