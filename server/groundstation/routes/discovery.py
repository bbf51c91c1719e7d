"""
Discovery, pairing and drone network configuration routes.

All three shell out to the tools in the scripts directory and return the
captured output so the dashboard can show it in its terminal pane.
"""
from fastapi import APIRouter, Depends

from groundstation.schemas import DroneConfRequest, PairRequest
from groundstation.services import scripts
from groundstation.services.auth import require_operator

router = APIRouter(prefix="/api", tags=["discovery"], dependencies=[Depends(require_operator)])


@router.get("/discover")
async def discover_drones():
    return scripts.tool_response(await scripts.discover())


@router.post("/pair")
async def pair_drone(request: PairRequest):
    return scripts.tool_response(await scripts.pair(request.ip, request.drone_id))


@router.post("/drone-conf")
async def configure_drone(request: DroneConfRequest):
    result = await scripts.drone_conf(
        request.old_ip, request.new_ip, request.new_crsf_speed, request.new_crsf2_speed,
    )
    return scripts.tool_response(result)
