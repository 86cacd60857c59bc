"""
Tracking coordinator: the single owner of schedules and dose events.

Every mutation runs under one lock, is validated before anything changes,
recomputes the projections from the full state and publishes them as one
immutable snapshot, and only then is handed to the persistence worker.
Readers see either the state before a mutation or after it, never a mix.
Projections depend on the clock, so a read after midnight (or after the
first upcoming moment) recomputes first.
"""
import logging
import time
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from tracker.core.errors import (
    CatalogLookupMiss,
    DuplicateEntityError,
    NotFoundError,
    PersistenceError,
)
from tracker.schemas.models import (
    AdherenceReport,
    DoseEvent,
    DoseStatus,
    HistoryRecord,
    MedicineInfo,
    Occurrence,
    ScheduleDefinition,
    TodayOccurrence,
    UpcomingOccurrence,
)
from tracker.services.adherence import compute_adherence, current_streak, day_tally
from tracker.services.catalog import MedicineCatalog
from tracker.services.history import build_history, expired_doses
from tracker.services.matching import DEFAULT_TOLERANCE, match_doses
from tracker.services.recurrence import DEFAULT_HORIZON_DAYS, build_occurrences, is_dose_due_now, next_occurrence
from tracker.services.tracking_store import TrackingStore
from tracker.services.validation import schedule_errors, validate_dose, validate_schedule
from tracker.utils.time_of_day import start_of_day

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackingSnapshot:
    schedules: Tuple[ScheduleDefinition, ...] = ()
    dose_events: Tuple[DoseEvent, ...] = ()
    today_occurrences: Tuple[TodayOccurrence, ...] = ()
    upcoming_occurrences: Tuple[UpcomingOccurrence, ...] = ()
    computed_at: Optional[datetime] = None


class TrackingCoordinator:
    def __init__(
        self,
        store: TrackingStore,
        catalog: MedicineCatalog,
        clock: Callable[[], datetime] = datetime.now,
        tolerance: timedelta = DEFAULT_TOLERANCE,
        upcoming_limit: int = 5,
        horizon_days: int = DEFAULT_HORIZON_DAYS,
        persistence_attempts: int = 3,
        persistence_retry_delay_s: float = 0.5,
        retention_period: str = "6_MONTHS",
    ):
        self.store = store
        self.catalog = catalog
        self.clock = clock
        self.tolerance = tolerance
        self.upcoming_limit = upcoming_limit
        self.horizon_days = horizon_days
        self.persistence_attempts = max(1, persistence_attempts)
        self.persistence_retry_delay_s = persistence_retry_delay_s
        self.retention_period = retention_period

        self.is_loading = False
        self.last_error: Optional[str] = None

        self._lock = threading.RLock()
        self._snapshot = TrackingSnapshot()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tracking-store")
        self._pending: List[Future] = []
        self._pending_lock = threading.Lock()

    # ------------------------------------------------------------------
    # observable state
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> TrackingSnapshot:
        return self._current()

    @property
    def schedules(self) -> List[ScheduleDefinition]:
        return list(self._snapshot.schedules)

    @property
    def dose_events(self) -> List[DoseEvent]:
        return list(self._snapshot.dose_events)

    @property
    def today_occurrences(self) -> List[TodayOccurrence]:
        return list(self._current().today_occurrences)

    @property
    def upcoming_occurrences(self) -> List[UpcomingOccurrence]:
        return list(self._current().upcoming_occurrences)

    def _is_stale(self, snap: TrackingSnapshot, now: datetime) -> bool:
        # a new day, or an upcoming moment already passed
        if snap.computed_at is None:
            return False
        if snap.computed_at.date() != now.date():
            return True
        return bool(snap.upcoming_occurrences) and snap.upcoming_occurrences[0].scheduled_time <= now

    def _current(self) -> TrackingSnapshot:
        if self._is_stale(self._snapshot, self.clock()):
            with self._lock:
                if self._is_stale(self._snapshot, self.clock()):
                    logger.info("Projections out of date for the current time, recomputing")
                    self.recompute()
        return self._snapshot

    def clear_error(self) -> None:
        self.last_error = None

    # ------------------------------------------------------------------
    # loading
    # ------------------------------------------------------------------

    def _load_from_store(self) -> Tuple[List[ScheduleDefinition], List[DoseEvent]]:
        try:
            schedules = self.store.load_all_schedules()
            doses = self.store.load_all_doses()
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError("load", e) from e

        for s in schedules:
            errors = schedule_errors(s)
            if errors:
                logger.error(f"Stored schedule {s.id} violates its invariants: {'; '.join(errors)}")
        return schedules, doses

    def load(self) -> None:
        """Initial load. A failing store leaves empty collections and sets last_error."""
        with self._lock:
            self.is_loading = True
            try:
                try:
                    schedules, doses = self._load_from_store()
                except PersistenceError as e:
                    logger.error(f"Initial load failed, starting empty: {e}")
                    self.last_error = str(e)
                    schedules, doses = [], []
                self._publish(schedules, doses)
                logger.info(f"Loaded {len(schedules)} schedules and {len(doses)} dose events")
            finally:
                self.is_loading = False

    def refresh_all(self) -> None:
        """Reload everything from the store and recompute.

        On failure the in-memory state is kept and last_error is set.
        The lock is held from the flush to the publish so no mutation slips
        between the last queued write and the reload.
        """
        with self._lock:
            self.flush()
            clear_cache = getattr(self.catalog, "clear", None)
            if callable(clear_cache):
                clear_cache()

            self.is_loading = True
            try:
                try:
                    schedules, doses = self._load_from_store()
                except PersistenceError as e:
                    logger.error(f"Refresh failed, keeping in-memory state: {e}")
                    self.last_error = str(e)
                    snap = self._snapshot
                    schedules, doses = list(snap.schedules), list(snap.dose_events)
                self._publish(schedules, doses)
            finally:
                self.is_loading = False

    def recompute(self) -> None:
        """Rebuild projections from current state (e.g. after midnight)."""
        with self._lock:
            snap = self._snapshot
            self._publish(list(snap.schedules), list(snap.dose_events))

    # ------------------------------------------------------------------
    # schedule mutations
    # ------------------------------------------------------------------

    def add_schedule(self, schedule: ScheduleDefinition) -> ScheduleDefinition:
        validate_schedule(schedule)
        with self._lock:
            snap = self._snapshot
            if any(s.id == schedule.id for s in snap.schedules):
                raise DuplicateEntityError("schedule", schedule.id)

            schedules = list(snap.schedules) + [schedule]
            self._publish(schedules, list(snap.dose_events))
            self._persist("save_schedule", self.store.save_schedule, schedule)
        logger.info(f"Added {schedule.frequency} schedule {schedule.id} for medicine {schedule.medicine_id}")
        return schedule

    def update_schedule(self, schedule: ScheduleDefinition) -> ScheduleDefinition:
        validate_schedule(schedule)
        with self._lock:
            snap = self._snapshot
            schedules = list(snap.schedules)
            idx = self._index_of(schedules, schedule.id, "schedule")
            schedules[idx] = schedule
            self._publish(schedules, list(snap.dose_events))
            self._persist("save_schedule", self.store.save_schedule, schedule)
        logger.info(f"Updated schedule {schedule.id}")
        return schedule

    def set_schedule_active(self, schedule_id: str, active: bool) -> ScheduleDefinition:
        with self._lock:
            current = self.get_schedule(schedule_id)
            return self.update_schedule(current.model_copy(update={"active": active}))

    def delete_schedule(self, schedule_id: str) -> None:
        """Delete a schedule and every dose event of its medicine."""
        with self._lock:
            snap = self._snapshot
            schedules = list(snap.schedules)
            removed = schedules.pop(self._index_of(schedules, schedule_id, "schedule"))
            doses = [d for d in snap.dose_events if d.medicine_id != removed.medicine_id]

            self._publish(schedules, doses)
            self._persist("delete_schedule", self.store.delete_schedule, schedule_id)
            self._persist("delete_all_for_medicine", self.store.delete_all_for_medicine, removed.medicine_id)
        logger.info(
            f"Deleted schedule {schedule_id} and {len(snap.dose_events) - len(doses)} "
            f"dose events of medicine {removed.medicine_id}"
        )

    def remove_medicine(self, medicine_id: str) -> int:
        """Drop every schedule and dose event of a medicine. Returns schedules removed."""
        with self._lock:
            snap = self._snapshot
            gone = [s for s in snap.schedules if s.medicine_id == medicine_id]
            schedules = [s for s in snap.schedules if s.medicine_id != medicine_id]
            doses = [d for d in snap.dose_events if d.medicine_id != medicine_id]

            self._publish(schedules, doses)
            for s in gone:
                self._persist("delete_schedule", self.store.delete_schedule, s.id)
            self._persist("delete_all_for_medicine", self.store.delete_all_for_medicine, medicine_id)
        logger.info(f"Removed medicine {medicine_id}: {len(gone)} schedules")
        return len(gone)

    def clear_all(self) -> None:
        with self._lock:
            snap = self._snapshot
            self._publish([], [])
            for s in snap.schedules:
                self._persist("delete_schedule", self.store.delete_schedule, s.id)
            for medicine_id in dict.fromkeys(d.medicine_id for d in snap.dose_events):
                self._persist("delete_all_for_medicine", self.store.delete_all_for_medicine, medicine_id)
        logger.info("Cleared all schedules and dose events")

    # ------------------------------------------------------------------
    # dose mutations
    # ------------------------------------------------------------------

    def record_dose(self, dose: DoseEvent) -> DoseEvent:
        validate_dose(dose)
        with self._lock:
            snap = self._snapshot
            if any(d.id == dose.id for d in snap.dose_events):
                raise DuplicateEntityError("dose", dose.id)

            doses = list(snap.dose_events) + [dose]
            self._publish(list(snap.schedules), doses)
            self._persist("save_dose", self.store.save_dose, dose)
        logger.info(f"Recorded {dose.status} dose {dose.id} for medicine {dose.medicine_id} at {dose.timestamp}")
        return dose

    def mark_dose(
        self,
        medicine_id: str,
        status: DoseStatus,
        at: Optional[datetime] = None,
        notes: Optional[str] = None,
        skipped_reason: Optional[str] = None,
    ) -> DoseEvent:
        dose = DoseEvent(
            medicine_id=medicine_id,
            timestamp=at or self.clock(),
            status=status,
            notes=notes,
            skipped_reason=skipped_reason,
        )
        return self.record_dose(dose)

    def update_dose(self, dose: DoseEvent) -> DoseEvent:
        validate_dose(dose)
        with self._lock:
            snap = self._snapshot
            doses = list(snap.dose_events)
            doses[self._index_of(doses, dose.id, "dose")] = dose
            self._publish(list(snap.schedules), doses)
            self._persist("save_dose", self.store.save_dose, dose)
        logger.info(f"Updated dose {dose.id}")
        return dose

    def delete_dose(self, dose_id: str) -> None:
        with self._lock:
            snap = self._snapshot
            doses = list(snap.dose_events)
            doses.pop(self._index_of(doses, dose_id, "dose"))
            self._publish(list(snap.schedules), doses)
            self._persist("delete_dose", self.store.delete_dose, dose_id)
        logger.info(f"Deleted dose {dose_id}")

    def apply_retention_policy(self, period: Optional[str] = None) -> int:
        """Delete dose events older than the retention period. Returns how many."""
        period = period or self.retention_period
        with self._lock:
            snap = self._snapshot
            expired = expired_doses(snap.dose_events, period, self.clock())
            if not expired:
                return 0

            expired_ids = {d.id for d in expired}
            doses = [d for d in snap.dose_events if d.id not in expired_ids]
            self._publish(list(snap.schedules), doses)
            for dose_id in expired_ids:
                self._persist("delete_dose", self.store.delete_dose, dose_id)
        logger.info(f"Retention policy {period} removed {len(expired)} dose events")
        return len(expired)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def get_schedule(self, schedule_id: str) -> ScheduleDefinition:
        for s in self._snapshot.schedules:
            if s.id == schedule_id:
                return s
        raise NotFoundError("schedule", schedule_id)

    def get_dose(self, dose_id: str) -> DoseEvent:
        for d in self._snapshot.dose_events:
            if d.id == dose_id:
                return d
        raise NotFoundError("dose", dose_id)

    def schedules_for_medicine(self, medicine_id: str) -> List[ScheduleDefinition]:
        return [s for s in self._snapshot.schedules if s.medicine_id == medicine_id and s.active]

    def doses_for_medicine(
        self,
        medicine_id: str,
        start: datetime,
        end: Optional[datetime] = None,
    ) -> List[DoseEvent]:
        end = end or self.clock()
        found = [
            d for d in self._snapshot.dose_events
            if d.medicine_id == medicine_id and start <= d.timestamp <= end
        ]
        return sorted(found, key=lambda d: d.timestamp, reverse=True)

    def today_doses(self, medicine_id: Optional[str] = None) -> List[DoseEvent]:
        today = self.clock().date()
        found = [
            d for d in self._snapshot.dose_events
            if d.timestamp.date() == today and (medicine_id is None or d.medicine_id == medicine_id)
        ]
        return sorted(found, key=lambda d: d.timestamp, reverse=True)

    def has_schedule(self, medicine_id: str) -> bool:
        return any(s.medicine_id == medicine_id for s in self._snapshot.schedules)

    def medicines_with_schedules(self) -> Set[str]:
        return {s.medicine_id for s in self._snapshot.schedules}

    def next_occurrence(self, schedule: ScheduleDefinition) -> Optional[datetime]:
        return next_occurrence(schedule, self.clock(), self.horizon_days)

    def adherence(self, medicine_id: str, days: int = 30) -> AdherenceReport:
        snap = self._snapshot
        today = self.clock().date()
        return compute_adherence(
            medicine_id,
            snap.schedules,
            snap.dose_events,
            today - timedelta(days=days),
            today,
            today=today,
            tolerance=self.tolerance,
        )

    def current_streak(self, medicine_id: str) -> int:
        snap = self._snapshot
        return current_streak(medicine_id, snap.schedules, snap.dose_events, self.clock().date(), self.tolerance)

    def day_tally(self, medicine_id: str, day: Optional[date] = None) -> Tuple[int, int]:
        """(expected, taken) for one day, today by default."""
        snap = self._snapshot
        return day_tally(medicine_id, snap.schedules, snap.dose_events, day or self.clock().date(), self.tolerance)

    def due_now(self, tolerance: timedelta = timedelta(hours=1)) -> List[ScheduleDefinition]:
        """Active schedules with an occurrence within `tolerance` of now."""
        now = self.clock()
        return [s for s in self._snapshot.schedules if s.active and is_dose_due_now(s, now, tolerance)]

    def history_for_medicine(self, medicine_id: str) -> List[HistoryRecord]:
        return [r for r in self._history() if r.medicine_id == medicine_id]

    def history_in_range(self, start: datetime, end: Optional[datetime] = None) -> List[HistoryRecord]:
        end = end or self.clock()
        return [r for r in self._history() if start <= r.recorded_time <= end]

    def recent_history(self, days: int = 7) -> List[HistoryRecord]:
        return self.history_in_range(self.clock() - timedelta(days=days))

    def _history(self) -> List[HistoryRecord]:
        snap = self._snapshot
        medicines = self._resolve(dict.fromkeys(d.medicine_id for d in snap.dose_events), quiet=True)
        names = {mid: m.name for mid, m in medicines.items()}
        return build_history(snap.schedules, snap.dose_events, names, self.tolerance)

    # ------------------------------------------------------------------
    # projections
    # ------------------------------------------------------------------

    def _resolve(self, medicine_ids: Iterable[str], quiet: bool = False) -> Dict[str, MedicineInfo]:
        found: Dict[str, MedicineInfo] = {}
        for medicine_id in medicine_ids:
            try:
                found[medicine_id] = self.catalog.lookup_medicine(medicine_id)
            except CatalogLookupMiss as e:
                if not quiet:
                    logger.warning(f"Leaving medicine {medicine_id} out of projections until it resolves: {e}")
            except Exception as e:
                logger.error(f"Catalog lookup for medicine {medicine_id} failed unexpectedly: {e!r}")
        return found

    def _project(
        self,
        schedules: Sequence[ScheduleDefinition],
        dose_events: Sequence[DoseEvent],
        now: datetime,
    ) -> Tuple[List[TodayOccurrence], List[UpcomingOccurrence]]:
        today = now.date()
        active = [s for s in schedules if s.active]
        medicines = self._resolve(dict.fromkeys(s.medicine_id for s in active))
        # today +/- tolerance, the window the adherence tally matches in
        lo = start_of_day(today) - self.tolerance
        hi = start_of_day(today + timedelta(days=1)) + self.tolerance

        todays: List[TodayOccurrence] = []
        for medicine_id, medicine in medicines.items():
            occurrences: List[Occurrence] = []
            for s in active:
                if s.medicine_id == medicine_id:
                    occurrences.extend(build_occurrences(s, today))
            if not occurrences:
                continue
            events = [e for e in dose_events if e.medicine_id == medicine_id and lo <= e.timestamp <= hi]
            for occ in match_doses(occurrences, events, self.tolerance):
                todays.append(TodayOccurrence(**occ.model_dump(), medicine=medicine))
        todays.sort(key=lambda o: o.scheduled_time)

        upcoming: List[UpcomingOccurrence] = []
        for s in active:
            medicine = medicines.get(s.medicine_id)
            if medicine is None:
                continue
            when = next_occurrence(s, now, self.horizon_days)
            if when is not None:
                upcoming.append(UpcomingOccurrence(
                    medicine_id=s.medicine_id,
                    schedule_id=s.id,
                    scheduled_time=when,
                    medicine=medicine,
                ))
        upcoming.sort(key=lambda u: u.scheduled_time)
        return todays, upcoming[: self.upcoming_limit]

    def _publish(self, schedules: Sequence[ScheduleDefinition], dose_events: Sequence[DoseEvent]) -> None:
        # build the complete snapshot first; the assignment is the publish
        now = self.clock()
        todays, upcoming = self._project(schedules, dose_events, now)
        self._snapshot = TrackingSnapshot(
            schedules=tuple(schedules),
            dose_events=tuple(dose_events),
            today_occurrences=tuple(todays),
            upcoming_occurrences=tuple(upcoming),
            computed_at=now,
        )

    @staticmethod
    def _index_of(items: Sequence, entity_id: str, kind: str) -> int:
        for i, item in enumerate(items):
            if item.id == entity_id:
                return i
        raise NotFoundError(kind, entity_id)

    # ------------------------------------------------------------------
    # persistence worker
    # ------------------------------------------------------------------

    def _persist(self, operation: str, fn: Callable[..., None], *args) -> None:
        future = self._executor.submit(self._run_with_retry, operation, fn, *args)
        with self._pending_lock:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)

    def _run_with_retry(self, operation: str, fn: Callable[..., None], *args) -> bool:
        for attempt in range(1, self.persistence_attempts + 1):
            try:
                fn(*args)
                return True
            except Exception as e:
                if attempt < self.persistence_attempts:
                    logger.warning(
                        f"Persistence '{operation}' failed (attempt {attempt}/{self.persistence_attempts}): {e}"
                    )
                    time.sleep(self.persistence_retry_delay_s * attempt)
                    continue
                error = e if isinstance(e, PersistenceError) else PersistenceError(operation, e)
                logger.error(f"Giving up on '{operation}' after {attempt} attempts: {error}")
                self.last_error = str(error)
        return False

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued persistence work. True when everything finished."""
        with self._pending_lock:
            pending = list(self._pending)
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self) -> None:
        self.flush()
        self._executor.shutdown(wait=True)
