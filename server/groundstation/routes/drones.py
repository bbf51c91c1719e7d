"""
Fleet API routes: active vehicles, active-control arbitration, radio link.
"""
from fastapi import APIRouter, Depends

from groundstation.config import Settings, get_settings
from groundstation.database import TelemetryDatabase, get_telemetry_db
from groundstation.schemas import ActivateRequest
from groundstation.services import arbiter, fleet
from groundstation.services.auth import require_operator
from groundstation.services.profile_store import ProfileStore, get_profile_store
from groundstation.services.radio_link import elrs_status

router = APIRouter(prefix="/api", tags=["drones"])


@router.get("/drones")
async def list_drones(
    db: TelemetryDatabase = Depends(get_telemetry_db),
    store: ProfileStore = Depends(get_profile_store),
    settings: Settings = Depends(get_settings),
):
    """Vehicles reporting battery telemetry in the last minute."""
    return await fleet.list_active_vehicles(db, store, settings.drones_window_s)


@router.get("/drones/active")
async def active_drones(
    db: TelemetryDatabase = Depends(get_telemetry_db),
    settings: Settings = Depends(get_settings),
):
    return await arbiter.active_rollup(db, settings.active_window_s, settings.active_rollup_rows)


@router.post("/drones/activate", dependencies=[Depends(require_operator)])
def activate_drone(request: ActivateRequest):
    """
    Ask the link agent to hand control to a vehicle.

    This only writes the intent file; the vehicle becomes active once the
    agent starts flagging its rows.
    """
    arbiter.write_active_intent(request.drone_id)
    return {
        "success": True,
        "droneId": request.drone_id,
        "message": f"Drone {request.drone_id} set as active",
    }


@router.get("/drone/{drone_id}/has-telemetry")
async def drone_has_telemetry(drone_id: int, db: TelemetryDatabase = Depends(get_telemetry_db)):
    return {
        "success": True,
        "hasTelemetry": await fleet.has_telemetry(db, drone_id),
        "droneId": drone_id,
    }


@router.get("/elrs/status")
def radio_link_status(settings: Settings = Depends(get_settings)):
    return elrs_status(settings.elrs_file_path, settings.elrs_freshness_ms)
