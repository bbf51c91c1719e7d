"""
Read-only access to the shared telemetry database.

The radio link process owns the writes. This module only reads, but the
handle is opened in read-write mode anyway: WAL readers must be able to
create and update the -wal/-shm sidecar files.

Table layout (created by the writer):
    telemetry(ID INTEGER PRIMARY KEY, drone_id INTEGER, timestamp INTEGER,
              data TEXT, active INTEGER)
    index on telemetry(timestamp)
"""
import asyncio
import json
import os
import sqlite3
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional
from urllib.parse import quote

import aiosqlite
import structlog

from groundstation.config import get_settings
from groundstation.errors import DatabaseUnavailableError

logger = structlog.get_logger("database")


@dataclass
class TelemetryRecord:
    """One telemetry row. ``id`` order is authoritative, ``timestamp`` is advisory."""
    id: int
    drone_id: int
    timestamp: int
    data: str
    active: bool = False

    @property
    def payload(self) -> dict[str, Any]:
        """Parsed payload, or ``{"raw": <text>}`` when the blob is not a JSON object."""
        try:
            parsed = json.loads(self.data)
        except (TypeError, ValueError):
            return {"raw": self.data}
        if not isinstance(parsed, dict):
            return {"raw": self.data}
        return parsed

    @property
    def payload_type(self) -> Optional[str]:
        return self.payload.get("type")


class TelemetryDatabase:
    """
    Lazily-opened aiosqlite handle plus the fixed set of queries the
    dashboard needs. One handle is shared by all requests; aiosqlite
    serializes statements on its worker thread.
    """

    def __init__(self, db_path: str, table: str = "telemetry",
                 timestamp_index: str = "idx_telemetry_timestamp",
                 busy_timeout_ms: int = 5000):
        self.db_path = db_path
        self.table = table
        self.timestamp_index = timestamp_index
        self.busy_timeout_ms = busy_timeout_ms
        self._db: Optional[aiosqlite.Connection] = None
        self._open_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._db is not None

    async def connect(self) -> bool:
        """Open the handle with WAL journaling and a busy timeout. Returns success."""
        try:
            # mode=rw: never create the file, the writer owns the schema
            db = await aiosqlite.connect(
                f"file:{quote(os.path.abspath(self.db_path))}?mode=rw",
                uri=True,
                timeout=self.busy_timeout_ms / 1000.0,
            )
        except (sqlite3.Error, OSError) as e:
            logger.error("Failed to connect to database", path=self.db_path, error=str(e))
            return False
        try:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
        except sqlite3.Error as e:
            logger.error("Failed to configure database", path=self.db_path, error=str(e))
            await db.close()
            return False
        self._db = db
        logger.info("Connected to database", path=self.db_path, journal_mode="wal")
        return True

    async def close(self) -> None:
        if self._db is not None:
            db, self._db = self._db, None
            try:
                await db.close()
            except (sqlite3.Error, ValueError) as e:
                logger.warning("Error closing database", error=str(e))
            logger.info("Database connection closed")

    async def _handle(self) -> aiosqlite.Connection:
        """Return the open handle, attempting a single lazy open if needed."""
        if self._db is None:
            async with self._open_lock:
                if self._db is None and not await self.connect():
                    raise DatabaseUnavailableError("Database not connected")
        return self._db

    async def _fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        db = await self._handle()
        try:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
            await cursor.close()
            return rows
        except (sqlite3.ProgrammingError, ValueError):
            # Handle went away underneath us: one reopen, then give up
            logger.warning("Database handle lost, reopening", path=self.db_path)
            self._db = None
            db = await self._handle()
            try:
                cursor = await db.execute(sql, params)
                rows = await cursor.fetchall()
                await cursor.close()
                return rows
            except sqlite3.Error as e:
                raise DatabaseUnavailableError(f"Database query failed: {e}")
        except sqlite3.Error as e:
            logger.error("Query error", error=str(e))
            raise DatabaseUnavailableError(f"Database query failed: {e}")

    # ============ Queries ============

    async def latest_by_type_since(self, payload_type: str, cutoff_ms: int) -> list[TelemetryRecord]:
        """
        Latest row per vehicle of the given payload type with timestamp >= cutoff.

        INDEXED BY pins the timestamp index; left alone the planner picks the
        drone_id index and the query degrades linearly with history length.
        """
        sql = f"""
            SELECT t.ID, t.drone_id, t.timestamp, t.data, t.active
            FROM {self.table} t
            INNER JOIN (
                SELECT drone_id, MAX(ID) AS max_id
                FROM {self.table} INDEXED BY {self.timestamp_index}
                WHERE timestamp >= ?
                  AND CASE WHEN json_valid(data) THEN json_extract(data, '$.type') END = ?
                GROUP BY drone_id
            ) latest ON t.ID = latest.max_id
            ORDER BY t.drone_id ASC
        """
        rows = await self._fetchall(sql, (cutoff_ms, payload_type))
        return [_to_record(r) for r in rows]

    async def tail(self, last_id: int, limit: int, drone_id: Optional[int] = None) -> list[TelemetryRecord]:
        """Rows with ID > last_id (all rows when last_id is 0), newest first."""
        where = ["ID > ?"]
        params: list[Any] = [last_id]
        if drone_id is not None:
            where.append("drone_id = ?")
            params.append(drone_id)
        params.append(limit)
        sql = f"""
            SELECT ID, drone_id, timestamp, data, active
            FROM {self.table}
            WHERE {' AND '.join(where)}
            ORDER BY ID DESC
            LIMIT ?
        """
        rows = await self._fetchall(sql, tuple(params))
        return [_to_record(r) for r in rows]

    async def count_for_drone(self, drone_id: int) -> int:
        rows = await self._fetchall(
            f"SELECT COUNT(*) FROM {self.table} WHERE drone_id = ?", (drone_id,)
        )
        return rows[0][0] if rows else 0

    async def latest_active_since(self, cutoff_ms: int) -> Optional[TelemetryRecord]:
        """Most recent (by ID) row flagged active=1 with timestamp >= cutoff."""
        sql = f"""
            SELECT ID, drone_id, timestamp, data, active
            FROM {self.table} INDEXED BY {self.timestamp_index}
            WHERE timestamp >= ? AND active = 1
            ORDER BY ID DESC
            LIMIT 1
        """
        rows = await self._fetchall(sql, (cutoff_ms,))
        return _to_record(rows[0]) if rows else None

    async def latest_per_drone_recent(self, row_span: int) -> list[TelemetryRecord]:
        """Latest row per vehicle among the newest ``row_span`` rows."""
        sql = f"""
            SELECT t.ID, t.drone_id, t.timestamp, t.data, t.active
            FROM {self.table} t
            INNER JOIN (
                SELECT drone_id, MAX(ID) AS max_id
                FROM (SELECT ID, drone_id FROM {self.table} ORDER BY ID DESC LIMIT ?)
                GROUP BY drone_id
            ) latest ON t.ID = latest.max_id
            ORDER BY t.drone_id ASC
        """
        rows = await self._fetchall(sql, (row_span,))
        return [_to_record(r) for r in rows]


def _to_record(row) -> TelemetryRecord:
    return TelemetryRecord(
        id=row[0],
        drone_id=row[1],
        timestamp=row[2],
        data=row[3],
        active=bool(row[4]),
    )


@lru_cache()
def get_telemetry_db() -> TelemetryDatabase:
    """Process-wide telemetry database handle (FastAPI dependency)."""
    settings = get_settings()
    return TelemetryDatabase(
        settings.telemetry_db_path,
        table=settings.telemetry_table,
        timestamp_index=settings.telemetry_timestamp_index,
        busy_timeout_ms=settings.db_busy_timeout_ms,
    )
