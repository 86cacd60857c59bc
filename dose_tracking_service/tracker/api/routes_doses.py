# tracker/api/routes_doses.py
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Response

from tracker.api.deps import get_coordinator, to_http_error
from tracker.core.errors import TrackingError
from tracker.schemas.models import DoseEvent
from tracker.services.coordinator import TrackingCoordinator

router = APIRouter(prefix="/doses", tags=["doses"])

@router.get("", response_model=List[DoseEvent])
def list_doses(
    medicine_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    coordinator: TrackingCoordinator = Depends(get_coordinator),
):
    if medicine_id and start:
        return coordinator.doses_for_medicine(medicine_id, start, end)

    doses = coordinator.dose_events
    if medicine_id:
        doses = [d for d in doses if d.medicine_id == medicine_id]
    if start:
        doses = [d for d in doses if d.timestamp >= start]
    if end:
        doses = [d for d in doses if d.timestamp <= end]
    return sorted(doses, key=lambda d: d.timestamp, reverse=True)

@router.post("", response_model=DoseEvent, status_code=201)
def record_dose(dose: DoseEvent, coordinator: TrackingCoordinator = Depends(get_coordinator)):
    try:
        return coordinator.record_dose(dose)
    except TrackingError as e:
        raise to_http_error(e)

@router.put("/{dose_id}", response_model=DoseEvent)
def update_dose(dose_id: str, dose: DoseEvent, coordinator: TrackingCoordinator = Depends(get_coordinator)):
    try:
        return coordinator.update_dose(dose.model_copy(update={"id": dose_id}))
    except TrackingError as e:
        raise to_http_error(e)

@router.delete("/{dose_id}", status_code=204)
def delete_dose(dose_id: str, coordinator: TrackingCoordinator = Depends(get_coordinator)):
    try:
        coordinator.delete_dose(dose_id)
    except TrackingError as e:
        raise to_http_error(e)
    return Response(status_code=204)
