import uuid
from datetime import date, datetime, time
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field, field_validator

FrequencyKind = Literal["DAILY", "TWICE_DAILY", "THREE_TIMES_DAILY", "WEEKLY", "CUSTOM", "AS_NEEDED"]
DoseStatus = Literal["TAKEN", "MISSED", "SKIPPED"]
MatchStatus = Literal["DUE", "TAKEN", "MISSED", "SKIPPED"]
RetentionPeriod = Literal["2_WEEKS", "1_MONTH", "3_MONTHS", "6_MONTHS", "1_YEAR", "2_YEARS", "FOREVER"]

# doses per day each frequency expects in time_of_day
TIMES_PER_DAY: Dict[str, int] = {
    "DAILY": 1,
    "TWICE_DAILY": 2,
    "THREE_TIMES_DAILY": 3,
    "WEEKLY": 1,
    "CUSTOM": 1,
    "AS_NEEDED": 1,
}

RETENTION_DAYS: Dict[str, Optional[int]] = {
    "2_WEEKS": 14,
    "1_MONTH": 30,
    "3_MONTHS": 90,
    "6_MONTHS": 180,
    "1_YEAR": 365,
    "2_YEARS": 730,
    "FOREVER": None,
}

def _schedule_id() -> str:
    return "sched_" + uuid.uuid4().hex[:12]

def _dose_id() -> str:
    return "dose_" + uuid.uuid4().hex[:12]

class ScheduleDefinition(BaseModel):
    id: str = Field(default_factory=_schedule_id)
    medicine_id: str
    frequency: FrequencyKind
    time_of_day: List[time] = Field(default_factory=list)
    days_of_week: Optional[List[int]] = Field(
        default=None,
        description="Weekly only. 1 = Monday ... 7 = Sunday.",
    )
    custom_interval_days: Optional[int] = Field(default=None, description="Custom only. Days between doses.")
    start_date: date
    end_date: Optional[date] = None
    active: bool = True
    notes: Optional[str] = None

class DoseEvent(BaseModel):
    id: str = Field(default_factory=_dose_id)
    medicine_id: str
    timestamp: datetime
    status: DoseStatus
    notes: Optional[str] = None
    skipped_reason: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def _local_wall_clock(cls, v: datetime) -> datetime:
        # occurrences are naive local times; keep events comparable with them
        if v.tzinfo is not None:
            return v.astimezone().replace(tzinfo=None)
        return v

class Occurrence(BaseModel):
    medicine_id: str
    schedule_id: str
    scheduled_time: datetime
    match_status: MatchStatus = "DUE"
    matched_dose_id: Optional[str] = None

class MedicineInfo(BaseModel):
    id: str
    name: str
    type: Optional[str] = None  # "Prescription" / "OTC"
    manufacturer: Optional[str] = None

class TodayOccurrence(Occurrence):
    medicine: MedicineInfo

class UpcomingOccurrence(BaseModel):
    medicine_id: str
    schedule_id: str
    scheduled_time: datetime
    medicine: MedicineInfo

class AdherenceReport(BaseModel):
    medicine_id: str
    window_start: date
    window_end: date
    expected: int
    taken: int
    rate: float
    streak: int

class HistoryRecord(BaseModel):
    dose_id: str
    medicine_id: str
    medicine_name: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    recorded_time: datetime
    status: DoseStatus
    notes: Optional[str] = None

# ---- request / response bodies for the HTTP adapter ----

class ScheduleActiveRequest(BaseModel):
    active: bool

class AdherenceMarkRequest(BaseModel):
    medicine_id: str
    status: DoseStatus
    action_time: Optional[datetime] = None  # defaults to now
    notes: Optional[str] = None
    skipped_reason: Optional[str] = None

class RetentionRequest(BaseModel):
    period: RetentionPeriod

class RetentionResult(BaseModel):
    period: RetentionPeriod
    removed: int

class TrackingStatus(BaseModel):
    is_loading: bool
    last_error: Optional[str] = None
    schedules: int
    dose_events: int
    computed_at: Optional[datetime] = None

class DayOccurrences(BaseModel):
    day: date
    occurrences: List[datetime]

class DayTally(BaseModel):
    medicine_id: str
    day: date
    expected: int
    taken: int
    rate: float
