"""
Pydantic schemas for request validation.

Field names are snake_case in Python and camelCase on the wire, matching the
roster file and the dashboard.
"""
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _single_token(value: Optional[str], field: str) -> Optional[str]:
    """Reject values that would break a paths.yml line or read as a CLI option."""
    if value is None:
        return value
    value = value.strip()
    if any(ch.isspace() for ch in value):
        raise ValueError(f"{field} must not contain whitespace")
    if value.startswith("-"):
        raise ValueError(f"{field} must not start with '-'")
    return value


# ============ Profiles ============

class CameraConfig(CamelModel):
    """Camera descriptor as stored in a profile and returned by scan_cam."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        coerce_numbers_to_str=True,
    )

    ip: Optional[str] = None
    login: Optional[str] = None
    password: Optional[str] = None
    rtsp_port: Optional[int] = Field(None, ge=1, le=65535)
    rtsp_path: Optional[str] = None
    serial_number: Optional[str] = None
    model: Optional[str] = None
    webrtc_url: Optional[str] = None
    snapshot_url: Optional[str] = None
    rtsp_url: Optional[str] = None

    @field_validator("ip", "login", "rtsp_path", "serial_number")
    @classmethod
    def no_whitespace(cls, v, info):
        return _single_token(v, info.field_name)

    @field_validator("password")
    @classmethod
    def single_line(cls, v):
        if v is not None and ("\n" in v or "\r" in v):
            raise ValueError("password must be a single line")
        return v


class ProfilePatch(CamelModel):
    """Fields to merge into a profile. Unknown fields are stored as-is."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: Optional[str] = Field(None, max_length=100)
    drone_type: Optional[str] = None
    color: Optional[str] = None
    front_camera: Optional[CameraConfig] = None
    rear_camera: Optional[CameraConfig] = None

    def to_patch(self) -> dict:
        return self.model_dump(by_alias=True, exclude_unset=True)


class ReorderRequest(CamelModel):
    """Swap two 1-indexed roster positions."""
    source_slot: int
    target_slot: int


# ============ Drones ============

class ActivateRequest(CamelModel):
    drone_id: int = Field(..., ge=0)


class PairRequest(CamelModel):
    ip: str = Field(..., min_length=1)
    drone_id: int = Field(..., ge=0)

    @field_validator("ip")
    @classmethod
    def check_ip(cls, v):
        return _single_token(v, "ip")


class DroneConfRequest(CamelModel):
    """Change a drone's IP and CRSF link speeds."""
    old_ip: str = Field(..., min_length=1)
    new_ip: str = Field(..., min_length=1)
    new_crsf_speed: Optional[Union[int, str]] = None
    new_crsf2_speed: Optional[Union[int, str]] = None

    @field_validator("old_ip", "new_ip")
    @classmethod
    def check_ip(cls, v, info):
        return _single_token(v, info.field_name)

    @field_validator("new_crsf_speed", "new_crsf2_speed")
    @classmethod
    def check_speed(cls, v, info):
        if isinstance(v, str):
            return _single_token(v, info.field_name) or None
        return v


# ============ Streams ============

class UpdateMediamtxRequest(CamelModel):
    front_camera: Optional[CameraConfig] = None
    rear_camera: Optional[CameraConfig] = None


# ============ Auth ============

class PasskeyRequest(BaseModel):
    passkey: str

    @field_validator("passkey")
    @classmethod
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError("Passkey is required")
        return v
