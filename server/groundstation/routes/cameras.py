"""
Camera scan and stream configuration routes.
"""
from fastapi import APIRouter, Depends

from groundstation.errors import InputInvalidError
from groundstation.schemas import UpdateMediamtxRequest
from groundstation.services import scripts
from groundstation.services.auth import require_operator
from groundstation.services.mediamtx import StreamConfigManager, get_stream_manager

router = APIRouter(prefix="/api", tags=["cameras"], dependencies=[Depends(require_operator)])


@router.get("/scan-cameras/{ip}")
async def scan_cameras(ip: str):
    if not ip.strip() or ip.startswith("-") or any(ch.isspace() for ch in ip):
        raise InputInvalidError("Invalid IP address")
    return scripts.tool_response(await scripts.scan_cameras(ip))


@router.post("/update-mediamtx")
async def update_mediamtx(
    request: UpdateMediamtxRequest,
    manager: StreamConfigManager = Depends(get_stream_manager),
):
    """Point the camera streams at the given cameras and reload the daemon."""
    if request.front_camera is None and request.rear_camera is None:
        raise InputInvalidError("At least one camera configuration required")

    profile = {}
    if request.front_camera is not None:
        profile["frontCamera"] = request.front_camera.model_dump(by_alias=True, exclude_none=True)
    if request.rear_camera is not None:
        profile["rearCamera"] = request.rear_camera.model_dump(by_alias=True, exclude_none=True)
    return await manager.apply_profile_cameras(profile)
