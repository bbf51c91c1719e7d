"""
Tests for the managed upgrade and radio link liveness.

Run with: pytest tests/test_upgrade.py -v
"""
import os
import time
from unittest.mock import AsyncMock, patch

import pytest

from groundstation.config import get_settings
from groundstation.errors import ConflictError
from groundstation.services import upgrade
from groundstation.services.radio_link import elrs_status
from groundstation.services.scripts import ScriptResult

SHOW_ACTIVE = "ActiveState=active\nSubState=running\nResult=success\nExecMainStatus=0\n"
SHOW_FAILED = "ActiveState=failed\nSubState=failed\nResult=exit-code\nExecMainStatus=2\n"


def _ok(stdout=""):
    return ScriptResult(success=True, command="cmd", stdout=stdout, exit_code=0)


# ============================================
# systemd helpers
# ============================================

class TestHelpers:

    def test_parse_show_output(self):
        assert upgrade.parse_show_output(SHOW_FAILED + "garbage\n") == {
            "ActiveState": "failed", "SubState": "failed", "Result": "exit-code", "ExecMainStatus": "2",
        }

    def test_log_tail_bounded(self, tmp_path):
        log = tmp_path / "upgrade.log"
        log.write_bytes(b"x" * 10 + b"tail")
        text, truncated = upgrade.read_log_tail(str(log), max_bytes=4)
        assert (text, truncated) == ("tail", True)

    def test_log_tail_missing(self, tmp_path):
        assert upgrade.read_log_tail(str(tmp_path / "none.log")) == ("", False)


# ============================================
# Start / status
# ============================================

class TestUpgrade:

    @pytest.mark.asyncio
    async def test_refuses_while_running(self):
        with patch("groundstation.services.upgrade.run_command", AsyncMock(return_value=_ok(SHOW_ACTIVE))) as run:
            with pytest.raises(ConflictError) as exc:
                await upgrade.start_upgrade(get_settings())

        assert exc.value.status_code == 409
        run.assert_called_once()

    @pytest.mark.asyncio
    async def test_starts_transient_unit(self, ground_env):
        settings = get_settings()
        (ground_env / "upgrade.log").write_text("old run\n")
        run = AsyncMock(side_effect=[_ok("ActiveState=inactive\n"), _ok(), _ok("Running as unit")])

        with patch("groundstation.services.upgrade.run_command", run):
            body = await upgrade.start_upgrade(settings)

        assert body["success"] is True
        assert body["unit"] == "foxy-gcs-upgrade"
        assert (ground_env / "upgrade.log").read_text() == ""

        reset_argv = run.call_args_list[1].args[0]
        assert reset_argv == ["systemctl", "reset-failed", "foxy-gcs-upgrade"]
        start_argv = run.call_args_list[2].args[0]
        assert start_argv[0] == "systemd-run"
        assert "--unit=foxy-gcs-upgrade" in start_argv
        assert f"--property=StandardOutput=append:{settings.upgrade_log_path}" in start_argv
        assert start_argv[-3:] == ["/bin/bash", "-c", settings.upgrade_command]

    @pytest.mark.asyncio
    async def test_sudo_prefix(self, monkeypatch):
        monkeypatch.setenv("UPGRADE_USE_SUDO", "true")
        get_settings.cache_clear()
        run = AsyncMock(side_effect=[_ok(""), _ok(), _ok()])

        with patch("groundstation.services.upgrade.run_command", run):
            await upgrade.start_upgrade(get_settings())

        assert run.call_args_list[2].args[0][:3] == ["sudo", "-n", "systemd-run"]

    @pytest.mark.asyncio
    async def test_status(self, ground_env):
        (ground_env / "upgrade.log").write_text("step 1\nstep 2\n")

        with patch("groundstation.services.upgrade.run_command", AsyncMock(return_value=_ok(SHOW_FAILED))):
            body = await upgrade.upgrade_status(get_settings())

        assert body["activeState"] == "failed"
        assert body["exitCode"] == 2
        assert body["running"] is False
        assert body["finished"] is True
        assert body["log"] == "step 1\nstep 2\n"
        assert body["logTruncated"] is False

    def test_status_endpoint_is_public(self, client):
        with patch("groundstation.services.upgrade.run_command", AsyncMock(return_value=_ok(SHOW_ACTIVE))):
            data = client.get("/api/upgrade/status").json()
        assert data["running"] is True

    def test_start_endpoint_conflict(self, client, operator_headers):
        with patch("groundstation.services.upgrade.run_command", AsyncMock(return_value=_ok(SHOW_ACTIVE))):
            response = client.post("/api/upgrade", headers=operator_headers)
        assert response.status_code == 409
        assert response.json()["success"] is False


# ============================================
# Radio link liveness
# ============================================

class TestRadioLink:

    def test_missing(self, tmp_path):
        assert elrs_status(str(tmp_path / "elrs"), 5000) == {
            "connected": False, "fileExists": False, "fileAge": None,
        }

    @pytest.mark.parametrize("age_s,connected", [(0, True), (4.9, True), (5.0, True), (5.2, False), (60, False)])
    def test_freshness_threshold(self, tmp_path, age_s, connected):
        path = tmp_path / "elrs"
        path.write_text("")
        mtime = time.time() - 100
        os.utime(path, (mtime, mtime))

        status = elrs_status(str(path), 5000, now=mtime + age_s)

        assert status["connected"] is connected
        assert status["fileExists"] is True
