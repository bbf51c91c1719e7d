"""
Application configuration using pydantic-settings.
Loads from environment variables with ground-station defaults.

Paths default to the Orange Pi deployment layout; every one of them can be
overridden through the environment (TELEMETRY_DB_PATH, SERVER_PORT, CORS_ORIGIN, ...).
"""
import os
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings

# Repository root (server/..) - the roster file lives beside the service by default
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


class Settings(BaseSettings):
    """Ground station settings."""

    # Application
    app_name: str = "Foxy Ground Station"
    app_version: str = "1.4.0"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    server_host: str = "0.0.0.0"
    server_port: int = 3001
    cors_origin: str = "http://localhost:5173"

    # Telemetry database (written by the radio link process, read-only here)
    telemetry_db_path: str = "/home/orangepi/code/telemetry.db"
    telemetry_table: str = "telemetry"
    telemetry_timestamp_index: str = "idx_telemetry_timestamp"
    db_busy_timeout_ms: int = 5000

    # External tools
    scripts_path: str = "/home/orangepi/code"
    discover_script: str = "discover.sh"
    pair_script: str = "pair.sh"
    scan_cam_script: str = "scan_cam.sh"
    drone_conf_script: str = "drone_conf.sh"

    # Streaming daemon (MediaMTX)
    mediamtx_path: str = "/home/orangepi/mmtx"
    mediamtx_api_url: str = "http://localhost:9997"

    # Roster and volatile-filesystem files
    profiles_path: str = os.path.join(_REPO_ROOT, "drone-profiles.json")
    active_file_path: str = "/dev/shm/active"
    elrs_file_path: str = "/dev/shm/elrs"
    otp_file_path: str = "/dev/shm/code"

    # Auth
    master_passkey_md5: str = "969db0859b0bb7ba866b4da0768d6607"
    auth_enabled: bool = True
    secret_key: str = "CHANGE-ME-IN-PRODUCTION"
    session_expiry_hours: int = 12

    # Managed upgrade
    upgrade_unit: str = "foxy-gcs-upgrade"
    upgrade_command: str = "/home/orangepi/upgrade.sh"
    upgrade_log_path: str = "/home/orangepi/upgrade.log"
    upgrade_use_sudo: bool = True

    # Fleet windows
    drones_window_s: int = 60
    active_window_s: int = 10
    active_rollup_rows: int = 1000
    elrs_freshness_ms: int = 5000

    # Telemetry tail paging
    telemetry_default_limit: int = 100
    telemetry_max_limit: int = 1000

    @model_validator(mode="after")
    def check_session_secret(self):
        """Operator session tokens must not be signed with the placeholder key."""
        if self.debug or not self.auth_enabled:
            return self
        if "CHANGE-ME" in self.secret_key:
            raise ValueError(
                "SECURITY ERROR: Must set SECRET_KEY environment variable! "
                "Generate a secure key with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )
        return self

    # Derived MediaMTX locations
    @property
    def mediamtx_binary(self) -> str:
        return os.path.join(self.mediamtx_path, "mediamtx")

    @property
    def paths_file(self) -> str:
        return os.path.join(self.mediamtx_path, "paths.yml")

    @property
    def rebuild_script(self) -> str:
        return os.path.join(self.mediamtx_path, "rebuild-config.sh")

    @property
    def mediamtx_log(self) -> str:
        return os.path.join(self.mediamtx_path, "mediamtx.log")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
