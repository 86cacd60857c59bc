from datetime import date, datetime

import pytest

from tracker.schemas.models import MedicineInfo, ScheduleDefinition
from tracker.services.catalog import InMemoryMedicineCatalog
from tracker.services.coordinator import TrackingCoordinator
from tracker.services.tracking_store import InMemoryTrackingStore

# Tuesday
NOW = datetime(2024, 1, 2, 12, 0)


@pytest.fixture
def make_schedule():
    def _make(**overrides) -> ScheduleDefinition:
        fields = {
            "medicine_id": "med_a",
            "frequency": "DAILY",
            "time_of_day": ["09:00"],
            "start_date": date(2024, 1, 1),
        }
        fields.update(overrides)
        return ScheduleDefinition(**fields)
    return _make


@pytest.fixture
def catalog():
    return InMemoryMedicineCatalog([
        MedicineInfo(id="med_a", name="Amoxicillin", type="Prescription", manufacturer="Acme"),
        MedicineInfo(id="med_b", name="Ibuprofen", type="OTC"),
        MedicineInfo(id="med_c", name="Metformin", type="Prescription"),
    ])


@pytest.fixture
def store():
    return InMemoryTrackingStore()


@pytest.fixture
def coordinator(store, catalog):
    c = TrackingCoordinator(store, catalog, clock=lambda: NOW, persistence_retry_delay_s=0)
    c.load()
    yield c
    c.close()
