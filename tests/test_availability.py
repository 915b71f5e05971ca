import sqlite3
from datetime import date, timedelta

import pytest

from clinic_scheduler.services.availability import (
    Interval,
    covers,
    effective_availability,
    merge_intervals,
    open_intervals,
)
from clinic_scheduler.services.errors import InvalidInput, NotFound
from conftest import MONDAY, MONDAY_DOW, at


def test_weekly_rule_gives_interval_on_matching_weekday(store, clinic):
    intervals = open_intervals(store, clinic.doctor.id, MONDAY)
    assert intervals == [Interval(at(MONDAY, "09:00"), at(MONDAY, "12:00"))]


def test_other_weekday_is_closed(store, clinic):
    assert open_intervals(store, clinic.doctor.id, MONDAY + timedelta(days=1)) == []


def test_accepts_iso_date_string(store, clinic):
    assert open_intervals(store, clinic.doctor.id, "2030-01-07") == open_intervals(store, clinic.doctor.id, MONDAY)


def test_unavailable_exception_empties_the_day(store, clinic):
    store.set_exception(clinic.doctor.id, MONDAY, is_available=False, notes="conference")
    assert open_intervals(store, clinic.doctor.id, MONDAY) == []


def test_available_exception_uses_its_own_hours(store, clinic):
    sunday = MONDAY - timedelta(days=1)
    store.set_exception(clinic.doctor.id, sunday, is_available=True, start_time="14:00", end_time="16:00")
    assert open_intervals(store, clinic.doctor.id, sunday) == [Interval(at(sunday, "14:00"), at(sunday, "16:00"))]


def test_available_exception_without_hours_uses_clinic_default(app, store, clinic):
    app.config["CLINIC_DEFAULT_HOURS"] = "08:30-13:00"
    saturday = MONDAY + timedelta(days=5)
    store.set_exception(clinic.doctor.id, saturday, is_available=True)
    assert open_intervals(store, clinic.doctor.id, saturday) == [
        Interval(at(saturday, "08:30"), at(saturday, "13:00"))
    ]


@pytest.mark.parametrize("hours", [{"start_time": "14:00"}, {"end_time": "16:00"}])
def test_exception_with_only_one_bound_is_rejected(store, clinic, hours):
    with pytest.raises(InvalidInput):
        store.set_exception(clinic.doctor.id, MONDAY, is_available=True, **hours)
    assert store.exception_for(clinic.doctor.id, MONDAY) is None
    assert open_intervals(store, clinic.doctor.id, MONDAY) == [Interval(at(MONDAY, "09:00"), at(MONDAY, "12:00"))]


def test_half_specified_exception_hours_fail_the_table_check(store, clinic):
    with pytest.raises(sqlite3.IntegrityError):
        store.conn.execute(
            "INSERT INTO doctor_exceptions(doctor_id, exception_date, is_available, start_time) VALUES (?, ?, 1, ?)",
            (clinic.doctor.id, MONDAY.isoformat(), "14:00"),
        )


def test_exception_is_replaced_not_duplicated(store, clinic):
    store.set_exception(clinic.doctor.id, MONDAY, is_available=False)
    store.set_exception(clinic.doctor.id, MONDAY, is_available=True, start_time="10:00", end_time="11:00")
    assert open_intervals(store, clinic.doctor.id, MONDAY) == [Interval(at(MONDAY, "10:00"), at(MONDAY, "11:00"))]


def test_overlapping_rules_are_returned_unmerged_and_sorted(store, clinic):
    store.add_rule(clinic.doctor.id, MONDAY_DOW, "11:00", "14:00")
    store.add_rule(clinic.doctor.id, MONDAY_DOW, "07:00", "08:00")
    starts = [span.start for span in open_intervals(store, clinic.doctor.id, MONDAY)]
    assert starts == [at(MONDAY, "07:00"), at(MONDAY, "09:00"), at(MONDAY, "11:00")]


def test_inactive_rules_are_ignored(store, clinic):
    store.add_rule(clinic.doctor.id, MONDAY_DOW, "14:00", "18:00", is_active=False)
    assert len(open_intervals(store, clinic.doctor.id, MONDAY)) == 1


def test_inactive_doctor_has_no_hours(store, clinic):
    store.set_doctor_active(clinic.doctor.id, False)
    assert open_intervals(store, clinic.doctor.id, MONDAY) == []


def test_unknown_doctor_raises_not_found(store):
    with pytest.raises(NotFound):
        open_intervals(store, 9999, MONDAY)


@pytest.mark.parametrize("bad", ["2030-13-01", "07/01/2030", "", 20300107])
def test_malformed_date_is_invalid_input(store, clinic, bad):
    with pytest.raises(InvalidInput):
        open_intervals(store, clinic.doctor.id, bad)


def test_merge_joins_overlapping_and_touching_spans():
    spans = [
        Interval(at(MONDAY, "13:00"), at(MONDAY, "15:00")),
        Interval(at(MONDAY, "09:00"), at(MONDAY, "12:00")),
        Interval(at(MONDAY, "12:00"), at(MONDAY, "12:30")),
        Interval(at(MONDAY, "14:00"), at(MONDAY, "14:30")),
    ]
    assert merge_intervals(spans) == [
        Interval(at(MONDAY, "09:00"), at(MONDAY, "12:30")),
        Interval(at(MONDAY, "13:00"), at(MONDAY, "15:00")),
    ]


def test_covers_uses_the_union_of_spans():
    spans = [Interval(at(MONDAY, "09:00"), at(MONDAY, "12:00")), Interval(at(MONDAY, "12:00"), at(MONDAY, "15:00"))]
    assert covers(spans, at(MONDAY, "11:45"), at(MONDAY, "12:15"))
    assert not covers(spans, at(MONDAY, "14:45"), at(MONDAY, "15:15"))
    assert not covers([], at(MONDAY, "09:00"), at(MONDAY, "09:30"))


def test_empty_interval_is_rejected():
    with pytest.raises(InvalidInput):
        Interval(at(MONDAY, "10:00"), at(MONDAY, "10:00"))


def test_effective_availability_skips_closed_days(store, clinic):
    next_monday = MONDAY + timedelta(days=7)
    store.set_exception(clinic.doctor.id, next_monday, is_available=False)
    result = effective_availability(store, clinic.doctor.id, MONDAY, next_monday)
    assert list(result) == ["2030-01-07"]


def test_effective_availability_rejects_reversed_range(store, clinic):
    with pytest.raises(InvalidInput):
        effective_availability(store, clinic.doctor.id, MONDAY, date(2030, 1, 1))
