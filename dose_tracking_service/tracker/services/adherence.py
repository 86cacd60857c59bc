"""
Adherence arithmetic over recorded dose events.

Expected doses come from the recurrence rules (as-needed and inactive
schedules never count); taken doses are occurrences the matcher pairs with a
TAKEN event.
"""
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from dateutil.rrule import rrule

from tracker.schemas.models import AdherenceReport, DoseEvent, Occurrence, ScheduleDefinition
from tracker.services.matching import DEFAULT_TOLERANCE, match_doses
from tracker.services.recurrence import build_occurrences, due_day_rule, occurrences_in_range
from tracker.utils.time_of_day import start_of_day

def counted_schedules(medicine_id: str, schedules: Sequence[ScheduleDefinition]) -> List[ScheduleDefinition]:
    """Schedules of the medicine that contribute expected doses."""
    return [
        s for s in schedules
        if s.medicine_id == medicine_id and s.active and s.frequency != "AS_NEEDED"
    ]

def adherence_rate(taken: int, expected: int) -> float:
    if expected <= 0:
        return 0.0
    return taken / expected * 100.0

def _events_between(
    dose_events: Sequence[DoseEvent],
    medicine_id: str,
    start: datetime,
    end: datetime,
) -> List[DoseEvent]:
    return [e for e in dose_events if e.medicine_id == medicine_id and start <= e.timestamp <= end]

def _count_taken(occurrences: Sequence[Occurrence], events: Sequence[DoseEvent], tolerance: timedelta) -> int:
    return sum(1 for o in match_doses(occurrences, events, tolerance) if o.match_status == "TAKEN")

def _tally(
    schedules: Sequence[ScheduleDefinition],
    rules: Dict[str, Optional[rrule]],
    events: Sequence[DoseEvent],
    medicine_id: str,
    day: date,
    tolerance: timedelta,
) -> Tuple[int, int]:
    occurrences: List[Occurrence] = []
    for s in schedules:
        occurrences.extend(build_occurrences(s, day, rules.get(s.id)))
    if not occurrences:
        return 0, 0

    lo = start_of_day(day) - tolerance
    hi = start_of_day(day + timedelta(days=1)) + tolerance
    near = _events_between(events, medicine_id, lo, hi)
    return len(occurrences), _count_taken(occurrences, near, tolerance)

def day_tally(
    medicine_id: str,
    schedules: Sequence[ScheduleDefinition],
    dose_events: Sequence[DoseEvent],
    day: date,
    tolerance: timedelta = DEFAULT_TOLERANCE,
) -> Tuple[int, int]:
    """(expected, taken) for a single day, from a fresh matching pass."""
    counted = counted_schedules(medicine_id, schedules)
    rules = {s.id: due_day_rule(s) for s in counted}
    return _tally(counted, rules, dose_events, medicine_id, day, tolerance)

def current_streak(
    medicine_id: str,
    schedules: Sequence[ScheduleDefinition],
    dose_events: Sequence[DoseEvent],
    today: date,
    tolerance: timedelta = DEFAULT_TOLERANCE,
) -> int:
    """
    Consecutive fully adherent days walking backward from `today`.

    A day with nothing expected ends the walk without counting, as does any
    day where fewer doses were taken than expected.
    """
    counted = counted_schedules(medicine_id, schedules)
    if not counted:
        return 0

    rules = {s.id: due_day_rule(s) for s in counted}
    events = [e for e in dose_events if e.medicine_id == medicine_id]
    earliest = min(s.start_date for s in counted)

    streak = 0
    day = today
    while day >= earliest:
        expected, taken = _tally(counted, rules, events, medicine_id, day, tolerance)
        if expected == 0 or taken < expected:
            break
        streak += 1
        day -= timedelta(days=1)
    return streak

def compute_adherence(
    medicine_id: str,
    schedules: Sequence[ScheduleDefinition],
    dose_events: Sequence[DoseEvent],
    window_start: date,
    window_end: date,
    today: Optional[date] = None,
    tolerance: timedelta = DEFAULT_TOLERANCE,
) -> AdherenceReport:
    counted = counted_schedules(medicine_id, schedules)

    occurrences: List[Occurrence] = []
    for s in counted:
        for _, times in occurrences_in_range(s, window_start, window_end):
            occurrences.extend(
                Occurrence(medicine_id=medicine_id, schedule_id=s.id, scheduled_time=when) for when in times
            )

    expected = len(occurrences)
    taken = 0
    if occurrences:
        lo = start_of_day(window_start) - tolerance
        hi = start_of_day(window_end + timedelta(days=1)) + tolerance
        taken = _count_taken(occurrences, _events_between(dose_events, medicine_id, lo, hi), tolerance)

    streak_from = today if today is not None else date.today()
    return AdherenceReport(
        medicine_id=medicine_id,
        window_start=window_start,
        window_end=window_end,
        expected=expected,
        taken=taken,
        rate=adherence_rate(taken, expected),
        streak=current_streak(medicine_id, schedules, dose_events, streak_from, tolerance),
    )
