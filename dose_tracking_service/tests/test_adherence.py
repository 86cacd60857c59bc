from datetime import date, datetime

from tracker.schemas.models import DoseEvent
from tracker.services.adherence import adherence_rate, compute_adherence, current_streak, day_tally


def taken(day, hour=9, minute=5, medicine_id="med_a", status="TAKEN"):
    return DoseEvent(medicine_id=medicine_id, timestamp=datetime(2024, 1, day, hour, minute), status=status)


def test_rate_edges():
    assert adherence_rate(0, 0) == 0.0
    assert adherence_rate(3, 3) == 100.0
    assert adherence_rate(1, 4) == 25.0


def test_no_schedules_means_zero_rate(make_schedule):
    report = compute_adherence("med_a", [], [taken(1)], date(2024, 1, 1), date(2024, 1, 3), today=date(2024, 1, 3))
    assert report.expected == 0
    assert report.rate == 0.0
    assert report.streak == 0


def test_full_adherence(make_schedule):
    schedules = [make_schedule()]
    events = [taken(1), taken(2), taken(3)]

    report = compute_adherence("med_a", schedules, events, date(2024, 1, 1), date(2024, 1, 3), today=date(2024, 1, 3))

    assert (report.expected, report.taken) == (3, 3)
    assert report.rate == 100.0
    assert report.streak == 3


def test_missed_and_skipped_events_do_not_count(make_schedule):
    schedules = [make_schedule()]
    events = [taken(1), taken(2, status="MISSED"), taken(3, status="SKIPPED")]

    report = compute_adherence("med_a", schedules, events, date(2024, 1, 1), date(2024, 1, 3), today=date(2024, 1, 3))

    assert (report.expected, report.taken) == (3, 1)
    assert round(report.rate, 2) == 33.33


def test_as_needed_and_inactive_never_expected(make_schedule):
    schedules = [make_schedule(frequency="AS_NEEDED"), make_schedule(active=False)]
    report = compute_adherence("med_a", schedules, [taken(1)], date(2024, 1, 1), date(2024, 1, 3), today=date(2024, 1, 3))
    assert report.expected == 0


def test_streak_resets_after_incomplete_day(make_schedule):
    schedules = [make_schedule()]
    events = [taken(1), taken(3)]

    assert current_streak("med_a", schedules, events, date(2024, 1, 3)) == 1
    assert current_streak("med_a", schedules, events + [taken(2)], date(2024, 1, 3)) == 3
    assert current_streak("med_a", schedules, events, date(2024, 1, 4)) == 0


def test_streak_needs_every_dose_of_the_day(make_schedule):
    schedules = [make_schedule(frequency="TWICE_DAILY", time_of_day=["08:00", "20:00"])]
    events = [taken(2, 8, 0), taken(2, 20, 0), taken(3, 8, 0)]

    assert current_streak("med_a", schedules, events, date(2024, 1, 3)) == 0
    assert current_streak("med_a", schedules, events, date(2024, 1, 2)) == 1


def test_streak_stops_on_day_with_nothing_expected(make_schedule):
    schedules = [make_schedule(frequency="WEEKLY", days_of_week=[2])]
    events = [taken(2), taken(9)]

    assert current_streak("med_a", schedules, events, date(2024, 1, 9)) == 1


def test_day_tally(make_schedule):
    schedules = [make_schedule(frequency="TWICE_DAILY", time_of_day=["08:00", "20:00"])]
    assert day_tally("med_a", schedules, [taken(2, 8, 10)], date(2024, 1, 2)) == (2, 1)
    assert day_tally("med_a", schedules, [], date(2023, 12, 31)) == (0, 0)


def test_late_night_dose_matches_across_midnight(make_schedule):
    schedules = [make_schedule(time_of_day=["23:50"])]
    events = [taken(3, 0, 10)]
    assert day_tally("med_a", schedules, events, date(2024, 1, 2)) == (1, 1)
