"""
Managed self-upgrade.

The upgrade runs in a transient systemd unit so it outlives this service
(the upgrade script restarts it). Progress is observed through
``systemctl show`` and the unit's log file.
"""
import os
from typing import Any

import structlog

from groundstation.config import Settings
from groundstation.errors import ConflictError, FilesystemError, ToolMissingError, ToolTimeoutError
from groundstation.services.scripts import run_command

logger = structlog.get_logger("upgrade")

SYSTEMCTL_TIMEOUT_S = 10.0
LOG_TAIL_BYTES = 100 * 1024
SHOW_PROPERTIES = "ActiveState,SubState,Result,ExecMainStatus"
RUNNING_STATES = ("active", "activating", "reloading", "deactivating")


def _privileged(settings: Settings, argv: list[str]) -> list[str]:
    return ["sudo", "-n", *argv] if settings.upgrade_use_sudo else argv


def parse_show_output(text: str) -> dict[str, str]:
    """``Key=Value`` lines from ``systemctl show`` into a dict."""
    props = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            props[key.strip()] = value.strip()
    return props


def read_log_tail(path: str, max_bytes: int = LOG_TAIL_BYTES) -> tuple[str, bool]:
    """Last ``max_bytes`` of the log as text, and whether it was truncated."""
    try:
        with open(path, "rb") as f:
            f.seek(0, os.SEEK_END)
            size = f.tell()
            f.seek(max(0, size - max_bytes))
            data = f.read()
    except FileNotFoundError:
        return "", False
    except OSError as e:
        raise FilesystemError(f"Failed to read upgrade log: {e}")
    return data.decode("utf-8", errors="replace"), size > max_bytes


async def unit_state(settings: Settings) -> dict[str, Any]:
    result = await run_command(
        ["systemctl", "show", settings.upgrade_unit, f"--property={SHOW_PROPERTIES}"],
        timeout=SYSTEMCTL_TIMEOUT_S,
    )
    props = parse_show_output(result.stdout) if result.success else {}
    active_state = props.get("ActiveState", "unknown")
    exit_code = props.get("ExecMainStatus")
    return {
        "activeState": active_state,
        "subState": props.get("SubState", "unknown"),
        "result": props.get("Result"),
        "exitCode": int(exit_code) if exit_code and exit_code.lstrip("-").isdigit() else None,
        "running": active_state in RUNNING_STATES,
        "finished": active_state in ("inactive", "failed") and bool(props.get("Result")),
    }


async def start_upgrade(settings: Settings) -> dict[str, Any]:
    """Launch the upgrade unit and return without waiting for it."""
    state = await unit_state(settings)
    if state["running"]:
        raise ConflictError("Upgrade already in progress", extra={"state": state})

    try:
        with open(settings.upgrade_log_path, "w", encoding="utf-8"):
            pass
    except OSError as e:
        raise FilesystemError(f"Failed to reset upgrade log: {e}")

    # A failed previous run keeps the unit name reserved until reset
    await run_command(
        _privileged(settings, ["systemctl", "reset-failed", settings.upgrade_unit]),
        timeout=SYSTEMCTL_TIMEOUT_S,
    )

    log = settings.upgrade_log_path
    argv = _privileged(settings, [
        "systemd-run",
        f"--unit={settings.upgrade_unit}",
        f"--property=StandardOutput=append:{log}",
        f"--property=StandardError=append:{log}",
        "/bin/bash", "-c", settings.upgrade_command,
    ])
    result = await run_command(argv, timeout=SYSTEMCTL_TIMEOUT_S)
    diagnostics = {"command": result.command, "stdout": result.stdout, "stderr": result.stderr}

    if result.error_kind == "tool-timeout":
        raise ToolTimeoutError(result.error, extra=diagnostics)
    if result.exit_code is None and not result.success:
        raise ToolMissingError(result.error or "systemd-run unavailable", extra=diagnostics)

    logger.info("Upgrade unit started", unit=settings.upgrade_unit, success=result.success)
    return {
        "success": result.success,
        "unit": settings.upgrade_unit,
        "message": "Upgrade started" if result.success else "Failed to start upgrade",
        **({"error": result.error} if result.error else {}),
        **diagnostics,
    }


async def upgrade_status(settings: Settings) -> dict[str, Any]:
    state = await unit_state(settings)
    log, truncated = read_log_tail(settings.upgrade_log_path)
    return {"success": True, "unit": settings.upgrade_unit, **state, "log": log, "logTruncated": truncated}
