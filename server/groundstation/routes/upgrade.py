"""
Managed upgrade routes.
"""
from fastapi import APIRouter, Depends

from groundstation.config import Settings, get_settings
from groundstation.services import upgrade
from groundstation.services.auth import require_operator

router = APIRouter(prefix="/api/upgrade", tags=["upgrade"])


@router.post("", dependencies=[Depends(require_operator)])
async def start_upgrade(settings: Settings = Depends(get_settings)):
    return await upgrade.start_upgrade(settings)


@router.get("/status")
async def upgrade_status(settings: Settings = Depends(get_settings)):
    return await upgrade.upgrade_status(settings)
