"""Parsing and formatting of clinic-local dates and times."""

from __future__ import annotations

from datetime import date, datetime, time

from clinic_scheduler.services.errors import InvalidInput


ISO_FMT = "%Y-%m-%dT%H:%M:%S"
DAY_FMT = "%Y-%m-%d"
CLOCK_FMT = "%H:%M"


def local_now() -> datetime:
    return datetime.now().replace(microsecond=0)


def parse_day(value: date | str) -> date:
    """Accept a `date` or a `YYYY-MM-DD` string."""

    if isinstance(value, datetime):
        raise InvalidInput("invalid_date")
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.strptime(value.strip(), DAY_FMT).date()
        except ValueError as exc:
            raise InvalidInput("invalid_date") from exc
    raise InvalidInput("invalid_date")


def parse_datetime(value: datetime | str) -> datetime:
    """Accept a naive/aware `datetime` or an ISO-8601 string; return naive local time."""

    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip())
        except ValueError as exc:
            raise InvalidInput("invalid_datetime") from exc
    if not isinstance(value, datetime):
        raise InvalidInput("invalid_datetime")
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value.replace(microsecond=0)


def parse_clock(value: time | str) -> time:
    """Accept a `time` or an `HH:MM` / `HH:MM:SS` string."""

    if isinstance(value, time):
        return value.replace(microsecond=0)
    if isinstance(value, str):
        try:
            return time.fromisoformat(value.strip())
        except ValueError as exc:
            raise InvalidInput("invalid_time") from exc
    raise InvalidInput("invalid_time")


def parse_hours(value: str) -> tuple[time, time]:
    """Parse an `HH:MM-HH:MM` span such as the clinic default hours."""

    start_raw, sep, end_raw = (value or "").partition("-")
    if not sep:
        raise InvalidInput("invalid_hours")
    start, end = parse_clock(start_raw), parse_clock(end_raw)
    if start >= end:
        raise InvalidInput("invalid_hours")
    return start, end


def serialize(dt: datetime) -> str:
    return dt.replace(microsecond=0).strftime(ISO_FMT)


def serialize_clock(value: time) -> str:
    return value.strftime(CLOCK_FMT)


def sunday_weekday(day: date) -> int:
    """Day-of-week with 0 = Sunday .. 6 = Saturday, as stored in availability rules."""

    return (day.weekday() + 1) % 7
