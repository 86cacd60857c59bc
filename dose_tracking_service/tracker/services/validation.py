from typing import List

from tracker.core.errors import ScheduleValidationError
from tracker.schemas.models import TIMES_PER_DAY, DoseEvent, ScheduleDefinition

def schedule_errors(schedule: ScheduleDefinition) -> List[str]:
    """
    Collect every invariant violation of a schedule definition.
    Returns an empty list for a valid schedule. Never repairs anything.
    """
    errors: List[str] = []

    if not (schedule.medicine_id or "").strip():
        errors.append("medicine_id is required")

    times = schedule.time_of_day or []
    expected_times = TIMES_PER_DAY.get(schedule.frequency)
    if not times:
        errors.append("time_of_day must contain at least one time")
    elif expected_times is not None and len(times) != expected_times:
        errors.append(
            f"{schedule.frequency} schedules need exactly {expected_times} time(s) of day, got {len(times)}"
        )

    if schedule.frequency == "WEEKLY":
        days = schedule.days_of_week or []
        if not days:
            errors.append("WEEKLY schedules need at least one day of week")
        bad = sorted({d for d in days if not 1 <= d <= 7})
        if bad:
            errors.append(f"days_of_week must be 1 (Monday) to 7 (Sunday), got {bad}")

    if schedule.frequency == "CUSTOM":
        interval = schedule.custom_interval_days
        if interval is None or interval < 1:
            errors.append("CUSTOM schedules need custom_interval_days >= 1")

    if schedule.end_date is not None and schedule.end_date < schedule.start_date:
        errors.append(
            f"end_date {schedule.end_date.isoformat()} is before start_date {schedule.start_date.isoformat()}"
        )

    return errors

def validate_schedule(schedule: ScheduleDefinition) -> ScheduleDefinition:
    errors = schedule_errors(schedule)
    if errors:
        raise ScheduleValidationError(errors)
    return schedule

def validate_dose(dose: DoseEvent) -> DoseEvent:
    errors: List[str] = []
    if not (dose.medicine_id or "").strip():
        errors.append("medicine_id is required")
    if dose.status == "SKIPPED" and not (dose.skipped_reason or "").strip():
        errors.append("skipped_reason is required when status is SKIPPED")
    if errors:
        raise ScheduleValidationError(errors)
    return dose
