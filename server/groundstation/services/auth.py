"""
Operator authentication.

Two factors are accepted for a passkey:
    master - MD5 of the trimmed passkey equals the configured digest
    otp    - trimmed passkey equals the trimmed contents of the OTP file

A successful verify also issues a short-lived operator session token (JWT)
so the dashboard does not have to resend the passkey on every privileged call.
"""
import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from fastapi import Header

from groundstation.config import get_settings
from groundstation.errors import AuthFailedError

logger = structlog.get_logger("auth")

JWT_ALGORITHM = "HS256"
SESSION_TOKEN_TYPE = "operator_session"

METHOD_MASTER = "master"
METHOD_OTP = "otp"


def read_otp(path: Optional[str] = None) -> Optional[str]:
    """Current one-time code, or None when the OTP file is absent or empty."""
    path = path or get_settings().otp_file_path
    try:
        with open(path, "r", encoding="utf-8") as f:
            code = f.read().strip()
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning("OTP file unreadable", path=path, error=str(e))
        return None
    return code or None


def verify_passkey(passkey: str) -> Optional[str]:
    """Return the matching method (``master`` or ``otp``), or None."""
    settings = get_settings()
    candidate = passkey.strip()
    if not candidate:
        return None

    digest = hashlib.md5(candidate.encode("utf-8")).hexdigest()
    if hmac.compare_digest(digest, settings.master_passkey_md5.lower()):
        return METHOD_MASTER

    otp = read_otp(settings.otp_file_path)
    if otp is not None and hmac.compare_digest(candidate.encode("utf-8"), otp.encode("utf-8")):
        return METHOD_OTP

    return None


def create_session_token(method: str) -> tuple[str, int]:
    """Sign an operator session token. Returns (token, lifetime in seconds)."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expires_in = settings.session_expiry_hours * 3600
    payload = {
        "sub": "operator",
        "type": SESSION_TOKEN_TYPE,
        "method": method,
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=JWT_ALGORITHM), expires_in


def verify_session_token(token: str) -> bool:
    try:
        payload = jwt.decode(token, get_settings().secret_key, algorithms=[JWT_ALGORITHM])
        return payload.get("type") == SESSION_TOKEN_TYPE
    except jwt.ExpiredSignatureError:
        return False
    except jwt.InvalidTokenError:
        return False


async def require_operator(
    authorization: Optional[str] = Header(None),
    x_passkey: Optional[str] = Header(None, alias="X-Passkey"),
) -> Optional[str]:
    """
    FastAPI dependency guarding privileged routes.

    Accepts ``Authorization: Bearer <session token>`` or ``X-Passkey``.
    Every failure raises the same AuthFailedError.
    """
    if not get_settings().auth_enabled:
        return None

    if authorization and authorization.startswith("Bearer "):
        if verify_session_token(authorization[7:]):
            return "session"

    if x_passkey:
        method = verify_passkey(x_passkey)
        if method:
            return method

    logger.warning("Privileged request rejected")
    raise AuthFailedError()
