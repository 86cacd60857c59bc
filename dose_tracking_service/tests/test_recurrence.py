import logging
from datetime import date, datetime, time, timedelta

from tracker.services.recurrence import (
    build_occurrences,
    due_days,
    dose_times,
    is_dose_due_now,
    is_due_on,
    next_occurrence,
    occurrences_in_range,
    occurrences_on_day,
)


def test_daily_one_occurrence_inside_window_only(make_schedule):
    schedule = make_schedule(start_date=date(2024, 1, 1), end_date=date(2024, 1, 5))

    for offset in range(5):
        day = date(2024, 1, 1) + timedelta(days=offset)
        assert occurrences_on_day(schedule, day) == [datetime(day.year, day.month, day.day, 9, 0)]

    assert occurrences_on_day(schedule, date(2023, 12, 31)) == []
    assert occurrences_on_day(schedule, date(2024, 1, 6)) == []


def test_weekly_mon_wed_fri(make_schedule):
    schedule = make_schedule(frequency="WEEKLY", days_of_week=[1, 3, 5])

    assert occurrences_on_day(schedule, date(2024, 1, 1)) == [datetime(2024, 1, 1, 9, 0)]  # Monday
    assert occurrences_on_day(schedule, date(2024, 1, 2)) == []  # Tuesday
    assert [d.isoweekday() for d in due_days(schedule, date(2024, 1, 1), date(2024, 1, 14))] == [1, 3, 5] * 2


def test_custom_every_three_days(make_schedule):
    schedule = make_schedule(frequency="CUSTOM", custom_interval_days=3, start_date=date(2024, 1, 1))

    due = [offset for offset in range(20) if is_due_on(schedule, date(2024, 1, 1) + timedelta(days=offset))]
    assert due == [0, 3, 6, 9, 12, 15, 18]


def test_weekly_tuesday_not_due_on_monday_start(make_schedule):
    schedule = make_schedule(medicine_id="M", frequency="WEEKLY", days_of_week=[2], start_date=date(2024, 1, 1))

    assert occurrences_on_day(schedule, date(2024, 1, 1)) == []
    assert occurrences_on_day(schedule, date(2024, 1, 2)) == [datetime(2024, 1, 2, 9, 0)]


def test_start_day_is_due(make_schedule):
    schedule = make_schedule(start_date=date(2024, 3, 10), end_date=date(2024, 3, 10))
    assert is_due_on(schedule, date(2024, 3, 10))


def test_inactive_schedule_has_no_occurrences(make_schedule):
    schedule = make_schedule(active=False)
    assert occurrences_on_day(schedule, date(2024, 1, 2)) == []
    assert next_occurrence(schedule, datetime(2024, 1, 2, 8, 0)) is None


def test_multiple_times_are_sorted(make_schedule):
    schedule = make_schedule(frequency="TWICE_DAILY", time_of_day=["20:00", "08:00"])
    assert occurrences_on_day(schedule, date(2024, 1, 2)) == [datetime(2024, 1, 2, 8), datetime(2024, 1, 2, 20)]


def test_empty_times_fall_back_to_default_and_log(make_schedule, caplog):
    schedule = make_schedule(time_of_day=[])
    with caplog.at_level(logging.ERROR):
        assert dose_times(schedule) == [time(9, 0)]
    assert "Validation failure" in caplog.text


def test_malformed_weekly_yields_nothing(make_schedule, caplog):
    schedule = make_schedule(frequency="WEEKLY", days_of_week=[])
    with caplog.at_level(logging.ERROR):
        assert occurrences_on_day(schedule, date(2024, 1, 1)) == []
    assert "no valid days_of_week" in caplog.text


def test_occurrences_in_range_includes_empty_days(make_schedule):
    schedule = make_schedule(frequency="WEEKLY", days_of_week=[2])
    result = occurrences_in_range(schedule, date(2024, 1, 1), date(2024, 1, 7))

    assert [day for day, _ in result] == [date(2024, 1, d) for d in range(1, 8)]
    assert [len(times) for _, times in result] == [0, 1, 0, 0, 0, 0, 0]
    assert occurrences_in_range(schedule, date(2024, 1, 7), date(2024, 1, 1)) == []


def test_build_occurrences_are_due(make_schedule):
    schedule = make_schedule()
    occurrences = build_occurrences(schedule, date(2024, 1, 2))
    assert len(occurrences) == 1
    assert occurrences[0].match_status == "DUE"
    assert occurrences[0].schedule_id == schedule.id


def test_next_occurrence_is_strictly_after_now(make_schedule):
    schedule = make_schedule()
    assert next_occurrence(schedule, datetime(2024, 1, 2, 8, 0)) == datetime(2024, 1, 2, 9, 0)
    assert next_occurrence(schedule, datetime(2024, 1, 2, 9, 0)) == datetime(2024, 1, 3, 9, 0)


def test_next_occurrence_weekly_and_before_start(make_schedule):
    weekly = make_schedule(frequency="WEEKLY", days_of_week=[2])
    assert next_occurrence(weekly, datetime(2024, 1, 3, 10, 0)) == datetime(2024, 1, 9, 9, 0)

    future = make_schedule(start_date=date(2024, 6, 1))
    assert next_occurrence(future, datetime(2024, 1, 2, 10, 0)) == datetime(2024, 6, 1, 9, 0)


def test_next_occurrence_none_cases(make_schedule):
    now = datetime(2024, 1, 10, 10, 0)
    assert next_occurrence(make_schedule(frequency="AS_NEEDED"), now) is None
    assert next_occurrence(make_schedule(end_date=date(2024, 1, 5)), now) is None
    assert next_occurrence(make_schedule(start_date=date(2030, 1, 1)), now, horizon_days=30) is None


def test_is_dose_due_now(make_schedule):
    schedule = make_schedule()
    assert is_dose_due_now(schedule, datetime(2024, 1, 2, 9, 45))
    assert not is_dose_due_now(schedule, datetime(2024, 1, 2, 10, 30))

    late = make_schedule(time_of_day=["23:30"])
    assert is_dose_due_now(late, datetime(2024, 1, 3, 0, 10))

    assert is_dose_due_now(make_schedule(frequency="AS_NEEDED"), datetime(2024, 1, 2, 3, 0))
