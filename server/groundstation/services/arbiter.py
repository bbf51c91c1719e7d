"""
Active-control arbitration.

The database is the only authority: a vehicle is active iff it owns the
newest (by ID) ``active=1`` row stamped within the active window. Nothing is
cached between requests, and the ActiveIntent file is never read back.
"""
from typing import Any, Optional

import structlog

from groundstation.config import get_settings
from groundstation.database import TelemetryDatabase
from groundstation.errors import FilesystemError
from groundstation.services.fleet import now_ms

logger = structlog.get_logger("arbiter")


async def currently_active(db: TelemetryDatabase, window_s: int, now: Optional[int] = None) -> Optional[int]:
    now = now if now is not None else now_ms()
    record = await db.latest_active_since(now - window_s * 1000)
    return record.drone_id if record else None


async def active_rollup(
    db: TelemetryDatabase,
    window_s: int,
    row_span: int,
    now: Optional[int] = None,
) -> dict[str, Any]:
    """Recent vehicles, each flagged; at most one flag is true."""
    active_id = await currently_active(db, window_s, now)
    rows = await db.latest_per_drone_recent(row_span)

    active_drones = {
        str(r.drone_id): {"active": r.drone_id == active_id, "lastUpdate": r.timestamp}
        for r in rows
    }
    if active_id is not None and str(active_id) not in active_drones:
        active_drones[str(active_id)] = {"active": True, "lastUpdate": None}

    return {
        "success": True,
        "activeDrones": active_drones,
        "currentlyActive": active_id,
        "windowSeconds": window_s,
    }


def write_active_intent(drone_id: int, path: Optional[str] = None) -> None:
    """Advertise the operator's chosen vehicle to the link agent."""
    path = path or get_settings().active_file_path
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(str(drone_id))
    except OSError as e:
        logger.error("Failed to write active intent", path=path, error=str(e))
        raise FilesystemError(f"Failed to write active drone file: {e}")
    logger.info("Active drone set", drone_id=drone_id, path=path)
