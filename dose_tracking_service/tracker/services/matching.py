from datetime import timedelta
from typing import List, Optional, Sequence, Set

from tracker.schemas.models import DoseEvent, Occurrence

DEFAULT_TOLERANCE = timedelta(minutes=30)

def _closest_candidate(
    occurrence: Occurrence,
    dose_events: Sequence[DoseEvent],
    consumed: Set[int],
    tolerance: timedelta,
) -> Optional[int]:
    best: Optional[int] = None
    best_gap: Optional[timedelta] = None
    for idx, event in enumerate(dose_events):
        if idx in consumed or event.medicine_id != occurrence.medicine_id:
            continue
        gap = abs(event.timestamp - occurrence.scheduled_time)
        if gap > tolerance:
            continue
        # strict comparison keeps the earliest event on ties
        if best_gap is None or gap < best_gap:
            best, best_gap = idx, gap
    return best

def match_doses(
    occurrences: Sequence[Occurrence],
    dose_events: Sequence[DoseEvent],
    tolerance: timedelta = DEFAULT_TOLERANCE,
) -> List[Occurrence]:
    """
    Greedy one-pass matching of recorded dose events to occurrences.

    Occurrences are visited in scheduled-time order; each takes the closest
    unconsumed event of the same medicine within `tolerance`. An event is
    consumed by at most one occurrence. The result holds updated copies in
    the same order as `occurrences`; the inputs are left untouched.
    """
    order = sorted(range(len(occurrences)), key=lambda i: occurrences[i].scheduled_time)
    consumed: Set[int] = set()
    matched: List[Optional[Occurrence]] = [None] * len(occurrences)

    for i in order:
        occurrence = occurrences[i]
        idx = _closest_candidate(occurrence, dose_events, consumed, tolerance)
        if idx is None:
            matched[i] = occurrence.model_copy(update={"match_status": "DUE", "matched_dose_id": None})
            continue

        consumed.add(idx)
        event = dose_events[idx]
        matched[i] = occurrence.model_copy(update={"match_status": event.status, "matched_dose_id": event.id})

    return matched
