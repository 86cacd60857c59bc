import os

from tracker.core.env import SERVICE_ROOT, load_env
load_env()

TRACKING_DB_PATH = os.getenv("TRACKING_DB_PATH") or str(SERVICE_ROOT / "tracker" / "db" / "tracking.db")

DOSE_MATCH_TOLERANCE_MIN = int(os.getenv("DOSE_MATCH_TOLERANCE_MIN", "30"))
UPCOMING_LIMIT = int(os.getenv("UPCOMING_LIMIT", "5"))
NEXT_OCCURRENCE_HORIZON_DAYS = int(os.getenv("NEXT_OCCURRENCE_HORIZON_DAYS", "730"))  # ~2 years

PERSISTENCE_MAX_ATTEMPTS = int(os.getenv("PERSISTENCE_MAX_ATTEMPTS", "3"))
PERSISTENCE_RETRY_DELAY_S = float(os.getenv("PERSISTENCE_RETRY_DELAY_S", "0.5"))

MEDICINE_CATALOG_URL = os.getenv("MEDICINE_CATALOG_URL", "").rstrip("/")
MEDICINE_CATALOG_FILE = os.getenv("MEDICINE_CATALOG_FILE", "")
MEDICINE_CATALOG_TIMEOUT_S = int(os.getenv("MEDICINE_CATALOG_TIMEOUT_S", "10"))

HISTORY_RETENTION = (os.getenv("HISTORY_RETENTION") or "6_MONTHS").upper()

LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").upper()
