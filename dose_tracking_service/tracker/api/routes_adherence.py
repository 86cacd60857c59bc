from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from tracker.api.deps import get_coordinator, to_http_error
from tracker.core.errors import TrackingError
from tracker.schemas.models import (
    AdherenceMarkRequest,
    AdherenceReport,
    DayTally,
    DoseEvent,
    HistoryRecord,
    RetentionRequest,
    RetentionResult,
)
from tracker.services.adherence import adherence_rate
from tracker.services.coordinator import TrackingCoordinator

router = APIRouter(prefix="/adherence", tags=["adherence"])

@router.post("/mark", response_model=DoseEvent, status_code=201)
def mark(req: AdherenceMarkRequest, coordinator: TrackingCoordinator = Depends(get_coordinator)):
    try:
        return coordinator.mark_dose(
            req.medicine_id,
            req.status,
            at=req.action_time,
            notes=req.notes,
            skipped_reason=req.skipped_reason,
        )
    except TrackingError as e:
        raise to_http_error(e)

@router.get("/summary", response_model=AdherenceReport)
def summary(
    medicine_id: str,
    days: int = Query(default=30, ge=1, le=730),
    coordinator: TrackingCoordinator = Depends(get_coordinator),
):
    return coordinator.adherence(medicine_id, days=days)

@router.get("/day", response_model=DayTally)
def day_summary(
    medicine_id: str,
    day: Optional[date] = None,
    coordinator: TrackingCoordinator = Depends(get_coordinator),
):
    day = day or coordinator.clock().date()
    expected, taken = coordinator.day_tally(medicine_id, day)
    return DayTally(
        medicine_id=medicine_id,
        day=day,
        expected=expected,
        taken=taken,
        rate=adherence_rate(taken, expected),
    )

@router.get("/history", response_model=List[HistoryRecord])
def history(
    medicine_id: Optional[str] = None,
    days: int = Query(default=7, ge=1, le=730),
    coordinator: TrackingCoordinator = Depends(get_coordinator),
):
    records = coordinator.recent_history(days)
    if medicine_id:
        records = [r for r in records if r.medicine_id == medicine_id]
    return records

@router.post("/retention", response_model=RetentionResult)
def retention(req: RetentionRequest, coordinator: TrackingCoordinator = Depends(get_coordinator)):
    removed = coordinator.apply_retention_policy(req.period)
    return RetentionResult(period=req.period, removed=removed)
