import json

import pytest
import requests

from conftest import NOW
from tracker.core.errors import CatalogLookupMiss
from tracker.schemas.models import MedicineInfo
from tracker.services.catalog import CachingMedicineCatalog, HttpMedicineCatalog, InMemoryMedicineCatalog
from tracker.services.coordinator import TrackingCoordinator
from tracker.services.tracking_store import InMemoryTrackingStore


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON")
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        if self.error is not None:
            raise self.error
        return self.response


def test_http_lookup_success():
    session = FakeSession(FakeResponse(payload={"id": "med_a", "name": "Amoxicillin", "type": "Prescription"}))
    catalog = HttpMedicineCatalog("http://catalog.local/", timeout_s=3, session=session)

    medicine = catalog.lookup_medicine("med_a")

    assert medicine == MedicineInfo(id="med_a", name="Amoxicillin", type="Prescription")
    assert session.calls == [("http://catalog.local/medicines/med_a", 3)]


@pytest.mark.parametrize("session", [
    FakeSession(FakeResponse(status_code=404)),
    FakeSession(FakeResponse(status_code=503, text="maintenance")),
    FakeSession(FakeResponse(payload=None)),
    FakeSession(error=requests.ConnectionError("refused")),
])
def test_http_lookup_misses(session):
    catalog = HttpMedicineCatalog("http://catalog.local", session=session)
    with pytest.raises(CatalogLookupMiss) as exc:
        catalog.lookup_medicine("med_a")
    assert exc.value.medicine_id == "med_a"


def test_in_memory_catalog_from_file(tmp_path):
    path = tmp_path / "medicines.json"
    path.write_text(json.dumps([{"id": "med_a", "name": "Amoxicillin", "manufacturer": "Acme"}]), encoding="utf-8")

    catalog = InMemoryMedicineCatalog.from_json_file(str(path))

    assert catalog.lookup_medicine("med_a").manufacturer == "Acme"
    catalog.remove("med_a")
    with pytest.raises(CatalogLookupMiss):
        catalog.lookup_medicine("med_a")


class CountingCatalog(InMemoryMedicineCatalog):
    def __init__(self, medicines=None):
        super().__init__(medicines)
        self.lookups = 0

    def lookup_medicine(self, medicine_id):
        self.lookups += 1
        return super().lookup_medicine(medicine_id)


def test_caching_catalog_caches_hits_only():
    inner = CountingCatalog([MedicineInfo(id="med_a", name="Amoxicillin")])
    catalog = CachingMedicineCatalog(inner)

    catalog.lookup_medicine("med_a")
    catalog.lookup_medicine("med_a")
    assert inner.lookups == 1

    for _ in range(2):
        with pytest.raises(CatalogLookupMiss):
            catalog.lookup_medicine("med_b")
    assert inner.lookups == 3

    catalog.clear()
    catalog.lookup_medicine("med_a")
    assert inner.lookups == 4


@pytest.mark.parametrize("payload", [
    [],
    "Amoxicillin",
    {"id": "med_a", "name": {"en": "Amoxicillin"}},
])
def test_http_lookup_rejects_malformed_payload(payload):
    catalog = HttpMedicineCatalog("http://catalog.local", session=FakeSession(FakeResponse(payload=payload)))
    with pytest.raises(CatalogLookupMiss):
        catalog.lookup_medicine("med_a")


def test_malformed_catalog_payload_only_hides_schedule(make_schedule):
    store = InMemoryTrackingStore()
    catalog = HttpMedicineCatalog("http://catalog.local", session=FakeSession(FakeResponse(payload=[])))
    coordinator = TrackingCoordinator(store, catalog, clock=lambda: NOW)
    coordinator.load()

    schedule = coordinator.add_schedule(make_schedule())

    assert [s.id for s in coordinator.schedules] == [schedule.id]
    assert coordinator.today_occurrences == []
    assert coordinator.flush(timeout=5)
    assert [s.id for s in store.load_all_schedules()] == [schedule.id]
    coordinator.close()


class BrokenCatalog:
    def lookup_medicine(self, medicine_id):
        raise RuntimeError("catalog client bug")


def test_unexpected_catalog_error_does_not_fail_mutation(make_schedule):
    coordinator = TrackingCoordinator(InMemoryTrackingStore(), BrokenCatalog(), clock=lambda: NOW)
    coordinator.load()

    coordinator.add_schedule(make_schedule())

    assert len(coordinator.schedules) == 1
    assert coordinator.upcoming_occurrences == []
    coordinator.close()
