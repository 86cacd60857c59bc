from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from tracker.schemas.models import RETENTION_DAYS, DoseEvent, HistoryRecord, Occurrence, ScheduleDefinition
from tracker.services.matching import DEFAULT_TOLERANCE, match_doses
from tracker.services.recurrence import build_occurrences

def _scheduled_times(
    schedules: Sequence[ScheduleDefinition],
    dose_events: Sequence[DoseEvent],
    tolerance: timedelta,
) -> Dict[str, datetime]:
    """dose id -> scheduled time of the occurrence it matches on its own day."""
    by_day: Dict[Tuple[str, date], List[DoseEvent]] = defaultdict(list)
    for event in dose_events:
        by_day[(event.medicine_id, event.timestamp.date())].append(event)

    found: Dict[str, datetime] = {}
    for (medicine_id, day), events in by_day.items():
        occurrences: List[Occurrence] = []
        for s in schedules:
            if s.medicine_id == medicine_id:
                occurrences.extend(build_occurrences(s, day))
        for occ in match_doses(occurrences, events, tolerance):
            if occ.matched_dose_id is not None:
                found[occ.matched_dose_id] = occ.scheduled_time
    return found

def build_history(
    schedules: Sequence[ScheduleDefinition],
    dose_events: Sequence[DoseEvent],
    medicine_names: Optional[Mapping[str, str]] = None,
    tolerance: timedelta = DEFAULT_TOLERANCE,
) -> List[HistoryRecord]:
    """History view of recorded doses, newest first."""
    names = medicine_names or {}
    scheduled = _scheduled_times(schedules, dose_events, tolerance)
    records = [
        HistoryRecord(
            dose_id=e.id,
            medicine_id=e.medicine_id,
            medicine_name=names.get(e.medicine_id),
            scheduled_time=scheduled.get(e.id),
            recorded_time=e.timestamp,
            status=e.status,
            notes=e.notes,
        )
        for e in dose_events
    ]
    records.sort(key=lambda r: r.recorded_time, reverse=True)
    return records

def retention_cutoff(period: str, now: datetime) -> Optional[datetime]:
    """Events recorded before the cutoff fall outside the retention period."""
    if period not in RETENTION_DAYS:
        raise ValueError(f"Unknown retention period: {period}")
    days = RETENTION_DAYS[period]
    if days is None:
        return None
    return now - timedelta(days=days)

def expired_doses(dose_events: Sequence[DoseEvent], period: str, now: datetime) -> List[DoseEvent]:
    cutoff = retention_cutoff(period, now)
    if cutoff is None:
        return []
    return [e for e in dose_events if e.timestamp < cutoff]
