"""
Fleet queries over the telemetry database.

Window queries compare against row ``timestamp`` and assume the writer stamps
rows with its current wallclock; tailing uses ``ID`` only.
"""
import time
from typing import Any, Optional

import structlog
from fastapi.concurrency import run_in_threadpool

from groundstation.database import TelemetryDatabase, TelemetryRecord
from groundstation.services.profile_store import ProfileStore

logger = structlog.get_logger("fleet")


def now_ms() -> int:
    return int(time.time() * 1000)


def _coordinates(record: Optional[TelemetryRecord]) -> tuple[Any, Any]:
    if record is None:
        return None, None
    payload = record.payload
    return payload.get("latitude"), payload.get("longitude")


async def list_active_vehicles(
    db: TelemetryDatabase,
    store: ProfileStore,
    window_s: int,
    now: Optional[int] = None,
) -> dict[str, Any]:
    """
    Vehicles with battery telemetry inside the window, split by whether they
    have a roster profile. Coordinates come from the vehicle's latest gps row
    in the same window (null when there is none).
    """
    now = now if now is not None else now_ms()
    cutoff = now - window_s * 1000

    batt_rows = await db.latest_by_type_since("batt", cutoff)
    gps_rows = {r.drone_id: r for r in await db.latest_by_type_since("gps", cutoff)}
    profiles = await run_in_threadpool(store.as_object)

    configured = []
    detected = []
    for row in batt_rows:
        drone_id = str(row.drone_id)
        latitude, longitude = _coordinates(gps_rows.get(row.drone_id))
        entry = {
            "droneId": drone_id,
            "latitude": latitude,
            "longitude": longitude,
            "lastSeen": row.timestamp,
        }
        profile = profiles.get(drone_id)
        if profile:
            entry["name"] = profile.get("name")
            entry["slot"] = profile["_index"] + 1
            configured.append(entry)
        else:
            detected.append(entry)

    drone_ids = [row.drone_id for row in batt_rows]
    return {
        "success": True,
        "droneIds": drone_ids,
        "configuredDrones": configured,
        "detectedDrones": detected,
        "activeThresholdSeconds": window_s,
        "activeThresholdMinutes": window_s / 60,
        "count": len(drone_ids),
    }


async def has_telemetry(db: TelemetryDatabase, drone_id: int) -> bool:
    return await db.count_for_drone(drone_id) > 0


async def tail_telemetry(
    db: TelemetryDatabase,
    last_id: int,
    limit: int,
    drone_id: Optional[int] = None,
) -> dict[str, Any]:
    """Rows newer than ``last_id``, newest first, plus the id to resume from."""
    records = await db.tail(last_id, limit, drone_id)
    latest_id = max((r.id for r in records), default=last_id)
    return {
        "success": True,
        "records": [
            {
                "id": r.id,
                "droneId": r.drone_id,
                "timestamp": r.timestamp,
                "active": r.active,
                "data": r.payload,
            }
            for r in records
        ],
        "count": len(records),
        "latestId": latest_id,
    }
