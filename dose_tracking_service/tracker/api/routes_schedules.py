# tracker/api/routes_schedules.py
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response

from tracker.api.deps import get_coordinator, to_http_error
from tracker.core.errors import TrackingError
from tracker.schemas.models import DayOccurrences, ScheduleActiveRequest, ScheduleDefinition
from tracker.services.coordinator import TrackingCoordinator
from tracker.services.recurrence import occurrences_in_range

router = APIRouter(prefix="/schedules", tags=["schedules"])

MAX_RANGE_DAYS = 366

@router.get("", response_model=List[ScheduleDefinition])
def list_schedules(medicine_id: Optional[str] = None, coordinator: TrackingCoordinator = Depends(get_coordinator)):
    schedules = coordinator.schedules
    if medicine_id:
        schedules = [s for s in schedules if s.medicine_id == medicine_id]
    return schedules

@router.post("", response_model=ScheduleDefinition, status_code=201)
def add_schedule(schedule: ScheduleDefinition, coordinator: TrackingCoordinator = Depends(get_coordinator)):
    try:
        return coordinator.add_schedule(schedule)
    except TrackingError as e:
        raise to_http_error(e)

@router.put("/{schedule_id}", response_model=ScheduleDefinition)
def update_schedule(
    schedule_id: str,
    schedule: ScheduleDefinition,
    coordinator: TrackingCoordinator = Depends(get_coordinator),
):
    try:
        return coordinator.update_schedule(schedule.model_copy(update={"id": schedule_id}))
    except TrackingError as e:
        raise to_http_error(e)

@router.patch("/{schedule_id}/active", response_model=ScheduleDefinition)
def set_active(
    schedule_id: str,
    req: ScheduleActiveRequest,
    coordinator: TrackingCoordinator = Depends(get_coordinator),
):
    try:
        return coordinator.set_schedule_active(schedule_id, req.active)
    except TrackingError as e:
        raise to_http_error(e)

@router.delete("/{schedule_id}", status_code=204)
def delete_schedule(schedule_id: str, coordinator: TrackingCoordinator = Depends(get_coordinator)):
    try:
        coordinator.delete_schedule(schedule_id)
    except TrackingError as e:
        raise to_http_error(e)
    return Response(status_code=204)

@router.get("/{schedule_id}/occurrences", response_model=List[DayOccurrences])
def schedule_occurrences(
    schedule_id: str,
    start: date,
    end: date,
    coordinator: TrackingCoordinator = Depends(get_coordinator),
):
    if end < start:
        raise HTTPException(status_code=422, detail="end must not be before start")
    if (end - start).days >= MAX_RANGE_DAYS:
        raise HTTPException(status_code=422, detail=f"range is limited to {MAX_RANGE_DAYS} days")
    try:
        schedule = coordinator.get_schedule(schedule_id)
    except TrackingError as e:
        raise to_http_error(e)
    return [DayOccurrences(day=d, occurrences=times) for d, times in occurrences_in_range(schedule, start, end)]

@router.get("/{schedule_id}/next")
def schedule_next(schedule_id: str, coordinator: TrackingCoordinator = Depends(get_coordinator)):
    try:
        schedule = coordinator.get_schedule(schedule_id)
    except TrackingError as e:
        raise to_http_error(e)
    when = coordinator.next_occurrence(schedule)
    return {"schedule_id": schedule_id, "next_occurrence": when.isoformat() if when else None}
