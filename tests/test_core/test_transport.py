"""Tests for debloater.core.transport: BridgeTransport and error mapping."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from debloater.core.errors import (
    BridgeMissing,
    CommandFailed,
    NoDevice,
    Timeout,
    Unauthorized,
)
from debloater.core.models import ShellResult
from debloater.core.transport import (
    BridgeTransport,
    is_failure_output,
    raise_for_status,
)


def _completed(returncode=0, stdout="", stderr=""):
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


class TestShell:
    @patch("debloater.core.transport.subprocess.run")
    def test_success(self, mock_run):
        mock_run.return_value = _completed(stdout="Success\n")
        result = BridgeTransport("adb").shell("SERIAL", "pm uninstall --user 0 com.foo")

        assert result.ok is True
        assert result.stdout == "Success"
        assert result.command == "pm uninstall --user 0 com.foo"
        args = mock_run.call_args[0][0]
        assert args == ["adb", "-s", "SERIAL", "shell", "pm uninstall --user 0 com.foo"]
        assert mock_run.call_args[1]["timeout"] == 30

    @patch("debloater.core.transport.subprocess.run")
    def test_nonzero_exit_is_failure(self, mock_run):
        mock_run.return_value = _completed(returncode=1, stderr="Failure [DELETE_FAILED]")
        result = BridgeTransport("adb").shell("SERIAL", "pm uninstall com.foo")
        assert result.ok is False
        assert result.error_text == "Failure [DELETE_FAILED]"

    @patch("debloater.core.transport.subprocess.run")
    def test_stderr_with_zero_exit_is_failure(self, mock_run):
        mock_run.return_value = _completed(stderr="something went wrong")
        result = BridgeTransport("adb").shell("SERIAL", "pm clear com.foo")
        assert result.ok is False

    @patch("debloater.core.transport.subprocess.run")
    def test_error_on_stdout_is_failure(self, mock_run):
        mock_run.return_value = _completed(returncode=1, stdout="error: device offline")
        result = BridgeTransport("adb").shell("SERIAL", "getprop ro.product.model")
        assert result.ok is False
        # stdout carries the error when the bridge writes it there
        assert result.error_text == "error: device offline"

    @patch("debloater.core.transport.subprocess.run")
    def test_old_device_failure_with_zero_exit(self, mock_run):
        mock_run.return_value = _completed(stdout="Failure [not installed for 0]")
        result = BridgeTransport("adb").shell("SERIAL", "pm uninstall com.foo")
        assert result.ok is False

    @patch("debloater.core.transport.subprocess.run")
    def test_missing_bridge(self, mock_run):
        mock_run.side_effect = FileNotFoundError("adb")
        with pytest.raises(BridgeMissing):
            BridgeTransport("adb").shell("SERIAL", "pm list users")

    @patch("debloater.core.transport.subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="adb", timeout=5)
        result = BridgeTransport("adb", timeout=5).shell("SERIAL", "pm list users")
        assert result.ok is False
        assert result.timed_out is True
        with pytest.raises(Timeout):
            raise_for_status(result, 5)

    @patch("debloater.core.transport.subprocess.run")
    def test_devices_has_no_serial(self, mock_run):
        mock_run.return_value = _completed(stdout="List of devices attached\n")
        BridgeTransport("adb").devices()
        assert mock_run.call_args[0][0] == ["adb", "devices"]

    @patch("debloater.core.transport.sys.platform", "win32")
    @patch("debloater.core.transport.subprocess.run")
    def test_no_console_window_on_windows(self, mock_run):
        mock_run.return_value = _completed()
        BridgeTransport("adb").shell("SERIAL", "pm list users")
        assert mock_run.call_args[1]["creationflags"] == 0x08000000

    @patch("debloater.core.transport.sys.platform", "linux")
    @patch("debloater.core.transport.subprocess.run")
    def test_no_creationflags_elsewhere(self, mock_run):
        mock_run.return_value = _completed()
        BridgeTransport("adb").shell("SERIAL", "pm list users")
        assert "creationflags" not in mock_run.call_args[1]

    def test_executable_from_environment(self, monkeypatch):
        monkeypatch.setenv("UAD_ADB", "/opt/platform-tools/adb")
        assert BridgeTransport().executable == "/opt/platform-tools/adb"


class TestFailureOutput:
    @pytest.mark.parametrize("stdout", [
        "error: no devices/emulators found",
        "adb: device unauthorized",
        "* daemon not running; starting now at tcp:5037",
        "Error: java.lang.SecurityException",
    ])
    def test_failure_prefixes(self, stdout):
        assert is_failure_output(stdout) is True

    @pytest.mark.parametrize("stdout", [
        "Success",
        "package:com.android.bluetooth\npackage:com.foo",
        "30",
        "",
    ])
    def test_normal_output(self, stdout):
        assert is_failure_output(stdout) is False

    @pytest.mark.parametrize("stdout", [
        "device 'R58M123ABC' not found",
        "Device is Unauthorized",
        "cmd: Can't find service: package\nDevice offline",
    ])
    def test_failure_lines(self, stdout):
        assert is_failure_output(stdout) is True

    def test_package_names_are_not_markers(self):
        stdout = "package:com.example.offlinemaps\npackage:com.example.notfound"
        assert is_failure_output(stdout) is False

    @patch("debloater.core.transport.subprocess.run")
    def test_marker_with_zero_exit_is_failure(self, mock_run):
        mock_run.return_value = _completed(stdout="device 'R58M123ABC' not found")
        result = BridgeTransport("adb").shell("R58M123ABC", "pm list users")
        assert result.ok is False


class TestRaiseForStatus:
    def test_ok_does_nothing(self):
        raise_for_status(ShellResult(stdout="Success"))

    def test_no_device(self):
        result = ShellResult(ok=False, stderr="adb: no devices/emulators found", command="x")
        with pytest.raises(NoDevice):
            raise_for_status(result)

    def test_unauthorized(self):
        result = ShellResult(ok=False, stdout="error: device unauthorized.", command="x")
        with pytest.raises(Unauthorized):
            raise_for_status(result)

    def test_command_failed_keeps_streams(self):
        result = ShellResult(
            ok=False, stdout="", stderr="Failure [DELETE_FAILED_INTERNAL_ERROR]",
            command="pm uninstall com.foo",
        )
        with pytest.raises(CommandFailed) as exc:
            raise_for_status(result)
        assert exc.value.command == "pm uninstall com.foo"
        assert exc.value.stderr == "Failure [DELETE_FAILED_INTERNAL_ERROR]"
        assert not isinstance(exc.value, Timeout)
