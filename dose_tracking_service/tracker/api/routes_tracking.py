# tracker/api/routes_tracking.py
from datetime import timedelta
from typing import List

from fastapi import APIRouter, Depends, Query

from tracker.api.deps import get_coordinator
from tracker.schemas.models import ScheduleDefinition, TodayOccurrence, TrackingStatus, UpcomingOccurrence
from tracker.services.coordinator import TrackingCoordinator

router = APIRouter(prefix="/tracking", tags=["tracking"])

def _status(coordinator: TrackingCoordinator) -> TrackingStatus:
    snap = coordinator.snapshot
    return TrackingStatus(
        is_loading=coordinator.is_loading,
        last_error=coordinator.last_error,
        schedules=len(snap.schedules),
        dose_events=len(snap.dose_events),
        computed_at=snap.computed_at,
    )

@router.get("/today", response_model=List[TodayOccurrence])
def today(coordinator: TrackingCoordinator = Depends(get_coordinator)):
    return coordinator.today_occurrences

@router.get("/upcoming", response_model=List[UpcomingOccurrence])
def upcoming(coordinator: TrackingCoordinator = Depends(get_coordinator)):
    return coordinator.upcoming_occurrences

@router.get("/status", response_model=TrackingStatus)
def status(coordinator: TrackingCoordinator = Depends(get_coordinator)):
    return _status(coordinator)

@router.post("/refresh", response_model=TrackingStatus)
def refresh(coordinator: TrackingCoordinator = Depends(get_coordinator)):
    coordinator.refresh_all()
    return _status(coordinator)

@router.get("/due-now", response_model=List[ScheduleDefinition])
def due_now(
    window_min: int = Query(default=60, ge=0, le=720),
    coordinator: TrackingCoordinator = Depends(get_coordinator),
):
    return coordinator.due_now(timedelta(minutes=window_min))

@router.post("/clear-error", response_model=TrackingStatus)
def clear_error(coordinator: TrackingCoordinator = Depends(get_coordinator)):
    coordinator.clear_error()
    return _status(coordinator)
