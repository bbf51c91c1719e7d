"""
Telemetry tail API route.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from groundstation.config import Settings, get_settings
from groundstation.database import TelemetryDatabase, get_telemetry_db
from groundstation.services.fleet import tail_telemetry

router = APIRouter(prefix="/api", tags=["telemetry"])


@router.get("/telemetry")
async def get_telemetry(
    last_id: int = Query(0, alias="lastId", ge=0),
    limit: Optional[int] = Query(None, ge=1),
    drone_id: Optional[int] = Query(None, alias="droneId"),
    db: TelemetryDatabase = Depends(get_telemetry_db),
    settings: Settings = Depends(get_settings),
):
    """
    Rows with ID > lastId, newest first.

    Clients pass back ``latestId`` from the previous response. ``limit`` is
    capped at the configured maximum.
    """
    limit = min(limit or settings.telemetry_default_limit, settings.telemetry_max_limit)
    return await tail_telemetry(db, last_id, limit, drone_id)
