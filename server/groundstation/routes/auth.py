"""
Operator passkey verification.
"""
import structlog
from fastapi import APIRouter

from groundstation.errors import AuthFailedError
from groundstation.schemas import PasskeyRequest
from groundstation.services.auth import create_session_token, verify_passkey

logger = structlog.get_logger("auth")
router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/verify")
def verify(request: PasskeyRequest):
    """
    Check a passkey against the master digest, then the current OTP.
    On success the response carries a session token for privileged calls.
    """
    method = verify_passkey(request.passkey)
    if method is None:
        logger.warning("Passkey verification failed")
        raise AuthFailedError()

    token, expires_in = create_session_token(method)
    logger.info("Passkey verified", method=method)
    return {"success": True, "method": method, "token": token, "expiresIn": expires_in}
