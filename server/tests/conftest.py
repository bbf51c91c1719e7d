"""
Pytest configuration and fixtures for the ground station tests.
"""
import json
import os
import sqlite3
import stat
import sys
import time

# Add service directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

# Set test environment before importing app
os.environ["DEBUG"] = "true"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["UPGRADE_USE_SUDO"] = "false"

from groundstation.config import get_settings
from groundstation.database import get_telemetry_db
from groundstation.services.mediamtx import get_stream_manager
from groundstation.services.profile_store import get_profile_store

MASTER_PASSKEY = "NiceTryBuddy"

TELEMETRY_SCHEMA = """
CREATE TABLE IF NOT EXISTS telemetry (
    ID INTEGER PRIMARY KEY AUTOINCREMENT,
    drone_id INTEGER NOT NULL,
    timestamp INTEGER NOT NULL,
    data TEXT,
    active INTEGER DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_telemetry_timestamp ON telemetry(timestamp);
CREATE INDEX IF NOT EXISTS idx_telemetry_drone_id ON telemetry(drone_id);
"""


def clear_caches():
    get_settings.cache_clear()
    get_telemetry_db.cache_clear()
    get_profile_store.cache_clear()
    get_stream_manager.cache_clear()


def now_ms() -> int:
    return int(time.time() * 1000)


@pytest.fixture(autouse=True)
def ground_env(tmp_path, monkeypatch):
    """Point every configured path into a per-test temp directory."""
    scripts = tmp_path / "scripts"
    mmtx = tmp_path / "mmtx"
    shm = tmp_path / "shm"
    for d in (scripts, mmtx, shm):
        d.mkdir()

    monkeypatch.setenv("TELEMETRY_DB_PATH", str(tmp_path / "telemetry.db"))
    monkeypatch.setenv("PROFILES_PATH", str(tmp_path / "drone-profiles.json"))
    monkeypatch.setenv("SCRIPTS_PATH", str(scripts))
    monkeypatch.setenv("MEDIAMTX_PATH", str(mmtx))
    # Nothing listens here; API calls fail fast
    monkeypatch.setenv("MEDIAMTX_API_URL", "http://127.0.0.1:9")
    monkeypatch.setenv("ACTIVE_FILE_PATH", str(shm / "active"))
    monkeypatch.setenv("ELRS_FILE_PATH", str(shm / "elrs"))
    monkeypatch.setenv("OTP_FILE_PATH", str(shm / "code"))
    monkeypatch.setenv("UPGRADE_LOG_PATH", str(tmp_path / "upgrade.log"))
    clear_caches()
    yield tmp_path
    clear_caches()


class TelemetryWriter:
    """Stands in for the radio link process that owns the database."""

    def __init__(self, path):
        self.path = str(path)
        conn = sqlite3.connect(self.path)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(TELEMETRY_SCHEMA)
        conn.commit()
        conn.close()

    def insert(self, drone_id, data, timestamp=None, active=0, row_id=None) -> int:
        blob = data if isinstance(data, str) else json.dumps(data)
        conn = sqlite3.connect(self.path)
        try:
            cursor = conn.execute(
                "INSERT INTO telemetry (ID, drone_id, timestamp, data, active) VALUES (?, ?, ?, ?, ?)",
                (row_id, drone_id, timestamp if timestamp is not None else now_ms(), blob, active),
            )
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()


@pytest.fixture
def telemetry_db(ground_env):
    """Empty telemetry database with the writer's schema and indexes."""
    return TelemetryWriter(ground_env / "telemetry.db")


@pytest.fixture
def tools_dir(ground_env):
    """Scripts directory; ``make(name, body)`` drops an executable shell stub in it."""
    scripts = ground_env / "scripts"

    def make(name, body):
        path = scripts / name
        path.write_text("#!/bin/sh\n" + body + "\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    make.path = scripts
    return make


@pytest.fixture
def mediamtx_dir(ground_env):
    return ground_env / "mmtx"


@pytest.fixture
def client(ground_env):
    from fastapi.testclient import TestClient
    from groundstation.main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def operator_headers():
    return {"X-Passkey": MASTER_PASSKEY}
