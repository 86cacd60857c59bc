from fastapi import FastAPI

from tracker.api.routes_adherence import router as adherence_router
from tracker.api.routes_doses import router as doses_router
from tracker.api.routes_schedules import router as schedules_router
from tracker.api.routes_tracking import router as tracking_router
from tracker.core.config import LOG_LEVEL
from tracker.core.logging_config import configure_logging

configure_logging(LOG_LEVEL)

app = FastAPI(title="Dose Tracking Service", version="1.0")

app.include_router(schedules_router)
app.include_router(doses_router)
app.include_router(tracking_router)
app.include_router(adherence_router)

@app.get("/health")
def health():
    return {"ok": True}
@app.get("/")
def root():
    return {"ok": True, "service": "Dose Tracking Service"}
