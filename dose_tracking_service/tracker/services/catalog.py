import json
import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, Optional, Protocol

import requests
from pydantic import ValidationError

from tracker.core.errors import CatalogLookupMiss
from tracker.schemas.models import MedicineInfo

logger = logging.getLogger(__name__)


class MedicineCatalog(Protocol):
    """Read-only medicine lookup, used only to decorate projections."""

    def lookup_medicine(self, medicine_id: str) -> MedicineInfo: ...


class InMemoryMedicineCatalog:
    def __init__(self, medicines: Optional[Iterable[MedicineInfo]] = None):
        self._medicines: Dict[str, MedicineInfo] = {m.id: m for m in (medicines or [])}
        self._lock = threading.Lock()

    @classmethod
    def from_json_file(cls, path: str) -> "InMemoryMedicineCatalog":
        """Load a JSON list of {id, name, type, manufacturer} objects."""
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls(MedicineInfo(**item) for item in raw)

    def add(self, medicine: MedicineInfo) -> None:
        with self._lock:
            self._medicines[medicine.id] = medicine

    def remove(self, medicine_id: str) -> None:
        with self._lock:
            self._medicines.pop(medicine_id, None)

    def lookup_medicine(self, medicine_id: str) -> MedicineInfo:
        with self._lock:
            medicine = self._medicines.get(medicine_id)
        if medicine is None:
            raise CatalogLookupMiss(medicine_id)
        return medicine


class HttpMedicineCatalog:
    """
    Looks medicines up in a remote catalog service:
    GET {base_url}/medicines/{id} -> {"id", "name", "type", "manufacturer"}
    """

    def __init__(self, base_url: str, timeout_s: int = 10, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.session = session or requests.Session()

    def lookup_medicine(self, medicine_id: str) -> MedicineInfo:
        url = f"{self.base_url}/medicines/{medicine_id}"
        try:
            r = self.session.get(url, timeout=self.timeout_s)
        except requests.RequestException as e:
            raise CatalogLookupMiss(medicine_id, f"catalog unreachable: {e}") from e

        if r.status_code == 404:
            raise CatalogLookupMiss(medicine_id)
        if r.status_code >= 400:
            raise CatalogLookupMiss(medicine_id, f"catalog {r.status_code}: {r.text[:200]}")

        try:
            data = r.json()
        except ValueError as e:
            raise CatalogLookupMiss(medicine_id, "catalog returned invalid JSON") from e

        if not isinstance(data, dict):
            raise CatalogLookupMiss(medicine_id, f"catalog returned {type(data).__name__}, expected an object")

        try:
            return MedicineInfo(
                id=str(data.get("id") or medicine_id),
                name=data.get("name") or "",
                type=data.get("type"),
                manufacturer=data.get("manufacturer"),
            )
        except ValidationError as e:
            raise CatalogLookupMiss(medicine_id, f"catalog payload rejected: {e.error_count()} invalid field(s)") from e


class CachingMedicineCatalog:
    """Caches successful lookups of another catalog. Misses are never cached."""

    def __init__(self, inner: MedicineCatalog):
        self.inner = inner
        self._cache: Dict[str, MedicineInfo] = {}
        self._lock = threading.Lock()

    def lookup_medicine(self, medicine_id: str) -> MedicineInfo:
        with self._lock:
            cached = self._cache.get(medicine_id)
        if cached is not None:
            return cached

        medicine = self.inner.lookup_medicine(medicine_id)
        with self._lock:
            self._cache[medicine_id] = medicine
        return medicine

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
