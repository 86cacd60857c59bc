# tracker/api/deps.py
import logging
from datetime import timedelta
from functools import lru_cache

from fastapi import HTTPException

from tracker.core.config import (
    DOSE_MATCH_TOLERANCE_MIN,
    HISTORY_RETENTION,
    MEDICINE_CATALOG_FILE,
    MEDICINE_CATALOG_TIMEOUT_S,
    MEDICINE_CATALOG_URL,
    NEXT_OCCURRENCE_HORIZON_DAYS,
    PERSISTENCE_MAX_ATTEMPTS,
    PERSISTENCE_RETRY_DELAY_S,
    UPCOMING_LIMIT,
)
from tracker.core.errors import DuplicateEntityError, NotFoundError, ScheduleValidationError, TrackingError
from tracker.db.db_config import get_sqlite_connection
from tracker.services.catalog import (
    CachingMedicineCatalog,
    HttpMedicineCatalog,
    InMemoryMedicineCatalog,
    MedicineCatalog,
)
from tracker.services.coordinator import TrackingCoordinator
from tracker.services.tracking_store import SqliteTrackingStore

logger = logging.getLogger(__name__)

def build_catalog() -> MedicineCatalog:
    if MEDICINE_CATALOG_URL:
        return CachingMedicineCatalog(HttpMedicineCatalog(MEDICINE_CATALOG_URL, MEDICINE_CATALOG_TIMEOUT_S))
    if MEDICINE_CATALOG_FILE:
        return InMemoryMedicineCatalog.from_json_file(MEDICINE_CATALOG_FILE)
    logger.warning("No medicine catalog configured; schedules stay out of projections until one is set")
    return InMemoryMedicineCatalog()

@lru_cache()
def get_coordinator() -> TrackingCoordinator:
    coordinator = TrackingCoordinator(
        store=SqliteTrackingStore(get_sqlite_connection()),
        catalog=build_catalog(),
        tolerance=timedelta(minutes=DOSE_MATCH_TOLERANCE_MIN),
        upcoming_limit=UPCOMING_LIMIT,
        horizon_days=NEXT_OCCURRENCE_HORIZON_DAYS,
        persistence_attempts=PERSISTENCE_MAX_ATTEMPTS,
        persistence_retry_delay_s=PERSISTENCE_RETRY_DELAY_S,
        retention_period=HISTORY_RETENTION,
    )
    coordinator.load()
    return coordinator

def to_http_error(e: TrackingError) -> HTTPException:
    if isinstance(e, ScheduleValidationError):
        return HTTPException(status_code=422, detail=e.errors)
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, DuplicateEntityError):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))
