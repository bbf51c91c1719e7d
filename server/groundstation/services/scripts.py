"""
External tool execution.

One runner (`run_command`) owns timeouts, stream capture and termination;
`run_script` resolves a tool in the scripts directory and adds best-effort
JSON extraction; the per-tool adapters at the bottom only pick a timeout
and interpret the parsed output.

Arguments are passed as an argv list, never through a shell.
"""
import asyncio
import json
import os
import signal
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from groundstation.config import get_settings
from groundstation.errors import ToolMissingError, ToolTimeoutError

logger = structlog.get_logger("scripts")

DEFAULT_TIMEOUT_S = 30.0
DISCOVER_TIMEOUT_S = 30.0
PAIR_TIMEOUT_S = 120.0  # pair can take over a minute
SCAN_CAM_TIMEOUT_S = 60.0
DRONE_CONF_TIMEOUT_S = 60.0

# Grace period between SIGTERM and SIGKILL after a timeout
TERMINATE_GRACE_S = 2.0


@dataclass
class ScriptResult:
    """Outcome of one external command."""
    success: bool
    command: Optional[str]
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None  # "tool-missing" | "tool-timeout" | "tool-failed"
    timed_out: bool = False
    data: Any = None
    parse_error: Optional[str] = None
    extras: dict[str, Any] = field(default_factory=dict)

    def to_response(self) -> dict[str, Any]:
        """Diagnostic fields the operator UI renders in its terminal pane."""
        body = {
            "success": self.success,
            "command": self.command,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exitCode": self.exit_code,
            "parseError": self.parse_error,
        }
        if self.error:
            body["error"] = self.error
        body.update(self.extras)
        return body


def extract_json(text: str) -> tuple[Any, Optional[str]]:
    """
    Find and parse the first balanced JSON array or object in ``text``.

    Empty output and a literal ``[]`` both mean an empty list.
    Returns (data, parse_error); exactly one of them is meaningful.
    """
    stripped = text.strip()
    if stripped in ("", "[]"):
        return [], None

    starts = [i for i in (text.find("["), text.find("{")) if i >= 0]
    if not starts:
        return None, "No JSON found in output"
    start = min(starts)

    end = _balanced_end(text, start)
    if end is None:
        return None, "Unbalanced JSON in output"
    try:
        return json.loads(text[start:end + 1]), None
    except ValueError as e:
        return None, str(e)


def _balanced_end(text: str, start: int) -> Optional[int]:
    """Index of the bracket closing the one at ``start``, skipping string literals."""
    pairs = {"[": "]", "{": "}"}
    stack = []
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in pairs:
            stack.append(pairs[ch])
        elif ch in ("]", "}"):
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return i
    return None


async def _drain(stream: Optional[asyncio.StreamReader], chunks: list[bytes]) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(4096)
        if not chunk:
            return
        chunks.append(chunk)


def _decode(chunks: list[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace")


async def run_command(
    argv: list[str],
    timeout: float = DEFAULT_TIMEOUT_S,
    cwd: Optional[str] = None,
) -> ScriptResult:
    """
    Run ``argv`` with a hard wallclock timeout.

    Output is read incrementally so a timed-out command still reports
    whatever it printed before it was terminated.
    """
    command = " ".join(argv)
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.error("Failed to start command", command=command, error=str(e))
        return ScriptResult(
            success=False, command=command, error=str(e), error_kind="tool-failed",
        )

    out_chunks: list[bytes] = []
    err_chunks: list[bytes] = []
    readers = asyncio.gather(_drain(proc.stdout, out_chunks), _drain(proc.stderr, err_chunks))

    timed_out = False
    try:
        await asyncio.wait_for(proc.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        timed_out = True
        logger.warning("Command timed out, terminating", command=command, timeout_s=timeout)
        if proc.returncode is None:
            proc.send_signal(signal.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), timeout=TERMINATE_GRACE_S)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()

    try:
        await asyncio.wait_for(readers, timeout=TERMINATE_GRACE_S)
    except asyncio.TimeoutError:
        # A grandchild still holds the pipes open; report what we have
        readers.cancel()

    stdout = _decode(out_chunks)
    stderr = _decode(err_chunks)

    if timed_out:
        return ScriptResult(
            success=False,
            command=command,
            stdout=stdout,
            stderr=stderr + ("\n" if stderr and not stderr.endswith("\n") else "") + "Command timed out",
            exit_code=proc.returncode,
            error=f"Command timed out after {timeout:g}s",
            error_kind="tool-timeout",
            timed_out=True,
        )

    if proc.returncode != 0:
        return ScriptResult(
            success=False,
            command=command,
            stdout=stdout,
            stderr=stderr,
            exit_code=proc.returncode,
            error=f"Command failed with exit code {proc.returncode}",
            error_kind="tool-failed",
        )

    return ScriptResult(success=True, command=command, stdout=stdout, stderr=stderr, exit_code=0)


async def run_script(
    script_name: str,
    args: Optional[list[Any]] = None,
    timeout: float = DEFAULT_TIMEOUT_S,
    parse_json: bool = True,
    scripts_path: Optional[str] = None,
) -> ScriptResult:
    """
    Run a tool from the scripts directory with positional string arguments.

    A missing tool fails fast without forking.
    """
    scripts_path = scripts_path or get_settings().scripts_path
    script_path = os.path.abspath(os.path.join(scripts_path, script_name))
    argv = [script_path, *[str(a) for a in (args or [])]]

    if not os.path.isfile(script_path):
        logger.warning("Script not found", script=script_name, path=script_path)
        return ScriptResult(
            success=False,
            command=None,
            error=f"Script not found: {script_name}",
            error_kind="tool-missing",
            extras={"path": script_path},
        )

    logger.info("Running script", script=script_name, args=argv[1:], timeout_s=timeout)
    result = await run_command(argv, timeout=timeout, cwd=scripts_path)

    if parse_json and result.success:
        result.data, result.parse_error = extract_json(result.stdout)

    logger.info(
        "Script finished",
        script=script_name,
        success=result.success,
        exit_code=result.exit_code,
        timed_out=result.timed_out,
    )
    return result


def tool_response(result: ScriptResult) -> dict[str, Any]:
    """
    HTTP body for a tool run. A missing tool or a timeout raises the matching
    ServiceError carrying the captured streams; a non-zero exit is returned
    as a normal body with success=false.
    """
    body = result.to_response()
    if result.error_kind in ("tool-missing", "tool-timeout"):
        error_cls = ToolMissingError if result.error_kind == "tool-missing" else ToolTimeoutError
        extra = {k: v for k, v in body.items() if k not in ("success", "error")}
        raise error_cls(result.error, extra=extra)
    return body


def _bool_result(result: ScriptResult) -> bool:
    """Tool verdict: an explicit ``{"result": bool}`` wins, otherwise exit zero means True."""
    if not result.success:
        return False
    if isinstance(result.data, dict) and isinstance(result.data.get("result"), bool):
        return result.data["result"]
    return True


# ============ Tool adapters ============

async def discover() -> ScriptResult:
    """Find drones on the network. ``extras.drones`` is the discovery list."""
    result = await run_script(get_settings().discover_script, timeout=DISCOVER_TIMEOUT_S)
    result.extras["drones"] = result.data if isinstance(result.data, list) else []
    return result


async def pair(ip: str, drone_id: Any) -> ScriptResult:
    """Pair with the drone at ``ip``; ``extras.result`` is the pairing verdict."""
    result = await run_script(get_settings().pair_script, [ip, drone_id], timeout=PAIR_TIMEOUT_S)
    result.extras["result"] = _bool_result(result)
    result.extras["pairData"] = result.data if result.data not in (None, []) else None
    return result


async def scan_cameras(ip: str) -> ScriptResult:
    """Scan a drone's network for cameras; ``extras.cameras`` is the camera list."""
    result = await run_script(get_settings().scan_cam_script, [ip], timeout=SCAN_CAM_TIMEOUT_S)
    result.extras["cameras"] = result.data if isinstance(result.data, list) else []
    return result


async def drone_conf(old_ip: str, new_ip: str, crsf1: Any, crsf2: Any) -> ScriptResult:
    """
    Apply IP and CRSF link speed changes on a drone.

    Unset speeds are passed as empty strings so argument positions stay fixed.
    """
    args = [old_ip, new_ip, "" if crsf1 is None else crsf1, "" if crsf2 is None else crsf2]
    result = await run_script(get_settings().drone_conf_script, args, timeout=DRONE_CONF_TIMEOUT_S)
    verdict = _bool_result(result)
    result.extras["result"] = verdict

    error_message = result.error
    if not error_message and not verdict and isinstance(result.data, dict):
        if isinstance(result.data.get("error"), str):
            error_message = result.data["error"]
    result.extras["errorMessage"] = error_message
    return result
