"""Bridge transport — runs one adb command against one device."""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from typing import Optional

from debloater.core.errors import (
    BridgeMissing,
    CommandFailed,
    NoDevice,
    Timeout,
    Unauthorized,
)
from debloater.core.models import ShellResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30

# ── Bridge output table ──────────────────────────────────────────────
# Every adb string the engine reacts to lives here.

# stdout starting with one of these (case-insensitive) is a failure
FAILURE_PREFIXES = ("error:", "adb:", "* daemon")

# Old devices exit 0 on some package manager errors
FAILURE_LINE_PREFIXES = ("Failure", "Error")

# A stdout line containing one of these (case-insensitive) is a failure
FAILURE_LINE_MARKERS = ("not found", "unauthorized", "offline")

# Package listings; package names may contain the markers above
LISTING_PREFIX = "package:"

NO_DEVICE_MARKERS = ("no devices/emulators found", "adb: no devices", "device not found")
UNAUTHORIZED_MARKERS = ("unauthorized",)
OFFLINE_MARKERS = ("offline",)

# The package was already absent for that user
NOT_INSTALLED_MARKER = "[not installed for"

DEVICE_READY = "device"

_CREATE_NO_WINDOW = 0x08000000


def bridge_executable() -> str:
    return os.environ.get("UAD_ADB", "adb")


def is_failure_output(stdout: str) -> bool:
    head = stdout.lstrip().lower()
    if any(head.startswith(p) for p in FAILURE_PREFIXES):
        return True
    for line in stdout.splitlines():
        line = line.strip()
        if line.startswith(FAILURE_LINE_PREFIXES):
            return True
        if line.startswith(LISTING_PREFIX):
            continue
        if any(m in line.lower() for m in FAILURE_LINE_MARKERS):
            return True
    return False


def _classify(result: ShellResult) -> Optional[type]:
    text = result.error_text.lower()
    if result.timed_out:
        return Timeout
    if any(m in text for m in NO_DEVICE_MARKERS):
        return NoDevice
    if any(m in text for m in UNAUTHORIZED_MARKERS):
        return Unauthorized
    return CommandFailed


def raise_for_status(result: ShellResult, timeout: float = DEFAULT_TIMEOUT) -> None:
    """Raise the error kind matching a failed result."""
    if result.ok:
        return
    kind = _classify(result)
    if kind is Timeout:
        raise Timeout(result.command, timeout)
    if kind is CommandFailed:
        raise CommandFailed(result.command, result.stdout, result.stderr)
    raise kind(result.error_text or result.command)


class BridgeTransport:
    """Spawns one adb process per call. Holds no per-device state."""

    def __init__(self, executable: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT):
        self.executable = executable or bridge_executable()
        self.timeout = timeout

    def shell(self, serial: str, command: str) -> ShellResult:
        """Run `adb -s {serial} shell {command}`."""
        args = ["shell", command]
        if serial:
            args = ["-s", serial] + args
        return self.run(args, label=command)

    def devices(self) -> ShellResult:
        return self.run(["devices"], label="devices")

    def run(self, args: list[str], label: str = "") -> ShellResult:
        cmd = [self.executable] + args
        kwargs = {}
        if sys.platform == "win32":
            kwargs["creationflags"] = _CREATE_NO_WINDOW
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                **kwargs,
            )
        except FileNotFoundError as e:
            logger.error("ADB: %s", e)
            raise BridgeMissing(f"{self.executable} was not found") from e
        except subprocess.TimeoutExpired:
            logger.error("ADB: %s timed out after %ss", label, self.timeout)
            return ShellResult(ok=False, timed_out=True, exit_code=-1, command=label,
                               stderr=f"timed out after {self.timeout} seconds")

        stdout = (proc.stdout or "").rstrip()
        stderr = (proc.stderr or "").rstrip()
        ok = proc.returncode == 0 and not stderr and not is_failure_output(stdout)
        return ShellResult(
            stdout=stdout,
            stderr=stderr,
            ok=ok,
            exit_code=proc.returncode,
            command=label,
        )
