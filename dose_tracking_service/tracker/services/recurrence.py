"""
Recurrence evaluation: turns a schedule definition into due moments.

Every function here is pure. Due *days* come from a dateutil rrule anchored
at the schedule's start date; each due day is then combined with the
schedule's wall-clock times. Both start_date and end_date are inclusive.
"""
import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Tuple

from dateutil.rrule import DAILY, FR, MO, SA, SU, TH, TU, WE, WEEKLY, rrule

from tracker.schemas.models import Occurrence, ScheduleDefinition
from tracker.utils.time_of_day import at_wall_clock, iter_days, start_of_day

logger = logging.getLogger(__name__)

DEFAULT_DOSE_TIME = time(9, 0)
DEFAULT_HORIZON_DAYS = 730

# index 0 is weekday number 1 (Monday)
_RRULE_WEEKDAYS = (MO, TU, WE, TH, FR, SA, SU)

def dose_times(schedule: ScheduleDefinition) -> List[time]:
    """Wall-clock times of the schedule, ascending."""
    times = sorted(schedule.time_of_day or [])
    if not times:
        logger.error(
            f"Validation failure: schedule {schedule.id} has no time_of_day; "
            f"substituting {DEFAULT_DOSE_TIME.strftime('%H:%M')}"
        )
        return [DEFAULT_DOSE_TIME]
    return times

def due_day_rule(schedule: ScheduleDefinition) -> Optional[rrule]:
    """
    Build the rrule yielding midnight of every day the schedule is due.
    Returns None when the rule is malformed and can never be due.
    """
    dtstart = start_of_day(schedule.start_date)
    until = start_of_day(schedule.end_date) if schedule.end_date is not None else None

    if schedule.frequency == "WEEKLY":
        days = sorted({d for d in (schedule.days_of_week or []) if 1 <= d <= 7})
        if not days:
            logger.error(f"Validation failure: weekly schedule {schedule.id} has no valid days_of_week")
            return None
        byweekday = [_RRULE_WEEKDAYS[d - 1] for d in days]
        return rrule(WEEKLY, dtstart=dtstart, until=until, byweekday=byweekday, cache=True)

    if schedule.frequency == "CUSTOM":
        interval = schedule.custom_interval_days or 0
        if interval < 1:
            logger.error(f"Validation failure: custom schedule {schedule.id} has interval {interval}")
            return None
        return rrule(DAILY, dtstart=dtstart, until=until, interval=interval, cache=True)

    # DAILY, TWICE_DAILY, THREE_TIMES_DAILY, AS_NEEDED
    return rrule(DAILY, dtstart=dtstart, until=until, cache=True)

def due_days(
    schedule: ScheduleDefinition,
    start: date,
    end: date,
    rule: Optional[rrule] = None,
) -> List[date]:
    """Days in [start, end] on which the schedule is due."""
    if not schedule.active or start > end:
        return []

    lo = max(start, schedule.start_date)
    hi = end if schedule.end_date is None else min(end, schedule.end_date)
    if lo > hi:
        return []

    if rule is None:
        rule = due_day_rule(schedule)
    if rule is None:
        return []
    return [dt.date() for dt in rule.between(start_of_day(lo), start_of_day(hi), inc=True)]

def is_due_on(schedule: ScheduleDefinition, day: date, rule: Optional[rrule] = None) -> bool:
    return bool(due_days(schedule, day, day, rule))

def occurrences_on_day(
    schedule: ScheduleDefinition,
    day: date,
    rule: Optional[rrule] = None,
) -> List[datetime]:
    """Scheduled times for one day, ascending. Empty when nothing is due."""
    if not is_due_on(schedule, day, rule):
        return []
    return [at_wall_clock(day, t) for t in dose_times(schedule)]

def occurrences_in_range(
    schedule: ScheduleDefinition,
    start: date,
    end: date,
) -> List[Tuple[date, List[datetime]]]:
    """
    One (day, scheduled times) pair for every day in [start, end], days with
    nothing due included as empty lists.
    """
    due = set(due_days(schedule, start, end))
    times = dose_times(schedule) if due else []
    return [
        (day, [at_wall_clock(day, t) for t in times] if day in due else [])
        for day in iter_days(start, end)
    ]

def build_occurrences(
    schedule: ScheduleDefinition,
    day: date,
    rule: Optional[rrule] = None,
) -> List[Occurrence]:
    return [
        Occurrence(medicine_id=schedule.medicine_id, schedule_id=schedule.id, scheduled_time=when)
        for when in occurrences_on_day(schedule, day, rule)
    ]

def next_occurrence(
    schedule: ScheduleDefinition,
    now: datetime,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> Optional[datetime]:
    """
    Earliest occurrence strictly after `now`, searching at most
    `horizon_days` ahead. None for as-needed, inactive or expired schedules.
    """
    if not schedule.active or schedule.frequency == "AS_NEEDED":
        return None

    first = max(now.date(), schedule.start_date)
    last = now.date() + timedelta(days=horizon_days)
    if schedule.end_date is not None:
        last = min(last, schedule.end_date)
    if first > last:
        return None

    rule = due_day_rule(schedule)
    if rule is None:
        return None

    times = dose_times(schedule)
    for due in rule.xafter(start_of_day(first), inc=True):
        day = due.date()
        if day > last:
            break
        for t in times:
            candidate = at_wall_clock(day, t)
            if candidate > now:
                return candidate
    return None

def is_dose_due_now(
    schedule: ScheduleDefinition,
    now: datetime,
    tolerance: timedelta = timedelta(hours=1),
) -> bool:
    """True when an occurrence lies within `tolerance` of `now`.

    As-needed schedules are due whenever they are in effect.
    """
    if schedule.frequency == "AS_NEEDED":
        return is_due_on(schedule, now.date())

    today = now.date()
    for day in (today - timedelta(days=1), today, today + timedelta(days=1)):
        if any(abs(when - now) <= tolerance for when in occurrences_on_day(schedule, day)):
            return True
    return False
