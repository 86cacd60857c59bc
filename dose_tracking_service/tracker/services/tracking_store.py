import logging
import sqlite3
import threading
from typing import Dict, List, Protocol

from tracker.core.errors import PersistenceError
from tracker.db.db_config import init_schema
from tracker.schemas.models import DoseEvent, ScheduleDefinition

logger = logging.getLogger(__name__)


class TrackingStore(Protocol):
    """Persistence collaborator for schedules and dose events."""

    def load_all_schedules(self) -> List[ScheduleDefinition]: ...
    def load_all_doses(self) -> List[DoseEvent]: ...
    def save_schedule(self, schedule: ScheduleDefinition) -> None: ...
    def delete_schedule(self, schedule_id: str) -> None: ...
    def save_dose(self, dose: DoseEvent) -> None: ...
    def delete_dose(self, dose_id: str) -> None: ...
    def delete_all_for_medicine(self, medicine_id: str) -> None: ...


class InMemoryTrackingStore:
    """Dict-backed store; insertion order is load order."""

    def __init__(self):
        self._schedules: Dict[str, ScheduleDefinition] = {}
        self._doses: Dict[str, DoseEvent] = {}
        self._lock = threading.Lock()

    def load_all_schedules(self) -> List[ScheduleDefinition]:
        with self._lock:
            return list(self._schedules.values())

    def load_all_doses(self) -> List[DoseEvent]:
        with self._lock:
            return list(self._doses.values())

    def save_schedule(self, schedule: ScheduleDefinition) -> None:
        with self._lock:
            self._schedules[schedule.id] = schedule

    def delete_schedule(self, schedule_id: str) -> None:
        with self._lock:
            self._schedules.pop(schedule_id, None)

    def save_dose(self, dose: DoseEvent) -> None:
        with self._lock:
            self._doses[dose.id] = dose

    def delete_dose(self, dose_id: str) -> None:
        with self._lock:
            self._doses.pop(dose_id, None)

    def delete_all_for_medicine(self, medicine_id: str) -> None:
        with self._lock:
            self._doses = {k: d for k, d in self._doses.items() if d.medicine_id != medicine_id}


class SqliteTrackingStore:
    """
    SQLite-backed store. Rows keep the model as a JSON payload next to the
    columns used for lookups. sqlite3 errors are raised as PersistenceError.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._lock = threading.Lock()
        init_schema(conn)

    def _write(self, operation: str, sql: str, params: tuple) -> None:
        with self._lock:
            try:
                self.conn.execute(sql, params)
                self.conn.commit()
            except sqlite3.Error as e:
                try:
                    self.conn.rollback()
                except sqlite3.Error as rollback_error:
                    logger.warning(f"Rollback after failed '{operation}' also failed: {rollback_error}")
                raise PersistenceError(operation, e) from e

    def _read(self, operation: str, sql: str) -> List[str]:
        with self._lock:
            try:
                return [row[0] for row in self.conn.execute(sql).fetchall()]
            except sqlite3.Error as e:
                raise PersistenceError(operation, e) from e

    def load_all_schedules(self) -> List[ScheduleDefinition]:
        rows = self._read("load_all_schedules", "SELECT payload FROM schedules ORDER BY rowid")
        return [ScheduleDefinition.model_validate_json(p) for p in rows]

    def load_all_doses(self) -> List[DoseEvent]:
        rows = self._read("load_all_doses", "SELECT payload FROM doses ORDER BY rowid")
        return [DoseEvent.model_validate_json(p) for p in rows]

    def save_schedule(self, schedule: ScheduleDefinition) -> None:
        self._write(
            "save_schedule",
            "INSERT INTO schedules (id, medicine_id, payload) VALUES (?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET medicine_id = excluded.medicine_id, payload = excluded.payload",
            (schedule.id, schedule.medicine_id, schedule.model_dump_json()),
        )

    def delete_schedule(self, schedule_id: str) -> None:
        self._write("delete_schedule", "DELETE FROM schedules WHERE id = ?", (schedule_id,))

    def save_dose(self, dose: DoseEvent) -> None:
        self._write(
            "save_dose",
            "INSERT INTO doses (id, medicine_id, recorded_at, payload) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET medicine_id = excluded.medicine_id, "
            "recorded_at = excluded.recorded_at, payload = excluded.payload",
            (dose.id, dose.medicine_id, dose.timestamp.isoformat(), dose.model_dump_json()),
        )

    def delete_dose(self, dose_id: str) -> None:
        self._write("delete_dose", "DELETE FROM doses WHERE id = ?", (dose_id,))

    def delete_all_for_medicine(self, medicine_id: str) -> None:
        self._write("delete_all_for_medicine", "DELETE FROM doses WHERE medicine_id = ?", (medicine_id,))
        logger.info(f"Deleted stored doses for medicine {medicine_id}")
