# tracker/db/db_config.py

import sqlite3
from pathlib import Path
from typing import Optional

from tracker.core.config import TRACKING_DB_PATH

SCHEMA = """
CREATE TABLE IF NOT EXISTS schedules (
    id TEXT PRIMARY KEY,
    medicine_id TEXT NOT NULL,
    payload TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_schedules_medicine ON schedules (medicine_id);

CREATE TABLE IF NOT EXISTS doses (
    id TEXT PRIMARY KEY,
    medicine_id TEXT NOT NULL,
    recorded_at TEXT NOT NULL,
    payload TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_doses_medicine ON doses (medicine_id);
"""


def get_sqlite_connection(db_path: Optional[str] = None) -> sqlite3.Connection:
    """
    Create and configure SQLite connection with recommended PRAGMA settings.
    Pass ":memory:" for a throwaway database.
    """
    path = db_path or TRACKING_DB_PATH
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(path, check_same_thread=False)

    # Performance & concurrency settings
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=5000;")

    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA)
    conn.commit()
