"""Device probe — discovers devices, their identity and users."""

from __future__ import annotations

import logging
import re
import time
from typing import Callable, Optional

from debloater.core.errors import BridgeMissing, DebloaterError
from debloater.core.models import Device, User
from debloater.core.transport import (
    DEVICE_READY,
    OFFLINE_MARKERS,
    UNAUTHORIZED_MARKERS,
    BridgeTransport,
    raise_for_status,
)

logger = logging.getLogger(__name__)

# UserInfo{10:Work profile:1030} running
_USER_RE = re.compile(r"\{([0-9]+)(?::([^:}]*))?(?::([0-9a-fA-F]+))?")

FLAG_MANAGED_PROFILE = 0x20

# `adb devices` polling while no device is ready
POLL_INTERVAL = 0.5
MAX_WAIT_SECONDS = 60.0


def parse_device_list(output: str) -> list[str]:
    """Return serials whose status is `device`."""
    serials = []
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith("List of devices") or line.startswith("*"):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        serial, status = parts[0], parts[1]
        if status == DEVICE_READY:
            serials.append(serial)
        elif status in UNAUTHORIZED_MARKERS or status in OFFLINE_MARKERS:
            logger.warning("Skipping %s device %s", status, serial)
        else:
            logger.debug("Skipping %s (%s)", serial, status)
    return serials


def parse_user_list(output: str) -> list[User]:
    users = []
    for i, match in enumerate(_USER_RE.finditer(output)):
        user_id = int(match.group(1))
        name = (match.group(2) or "").lower()
        flags = int(match.group(3), 16) if match.group(3) else 0
        protected = bool(flags & FLAG_MANAGED_PROFILE) or "work profile" in name
        users.append(User(id=user_id, index=i, protected=protected))
    if not users:
        users.append(User(id=0, index=0))
    return users


class DeviceProbe:
    """Queries connected devices through the bridge."""

    def __init__(self, transport: Optional[BridgeTransport] = None):
        self.transport = transport or BridgeTransport()

    def list_devices(
        self,
        wait: float = 0.0,
        interval: float = POLL_INTERVAL,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> list[Device]:
        """Probe every ready device.

        While none is ready, `adb devices` is polled every `interval` seconds
        for at most `wait` seconds (capped at MAX_WAIT_SECONDS).
        """
        wait = max(min(wait, MAX_WAIT_SECONDS), 0.0)
        attempts = int(wait / interval) + 1 if interval > 0 else 1
        serials: list[str] = []
        for attempt in range(attempts):
            serials = self.ready_serials()
            if serials:
                break
            if attempt < attempts - 1:
                (sleep or time.sleep)(interval)
        if not serials and attempts > 1:
            logger.warning("No device became ready within %.1fs", wait)
        return [self.probe(serial) for serial in serials]

    def ready_serials(self) -> list[str]:
        """Serials from `adb devices`.

        A zero exit status means the listing is usable even when the daemon
        printed its start-up banner on stderr.
        """
        result = self.transport.devices()
        if result.timed_out or result.exit_code != 0:
            raise_for_status(result, self.transport.timeout)
        if result.stderr.strip():
            logger.debug("adb devices: %s", result.stderr.strip())
        return parse_device_list(result.stdout)

    def probe(self, serial: str) -> Device:
        """Identity and users of one device; sdk_level 0 if unreachable."""
        try:
            brand = self._getprop(serial, "ro.product.brand")
            model = self._getprop(serial, "ro.product.model")
            sdk = int(self._getprop(serial, "ro.build.version.sdk"))
            users = self._users(serial)
        except BridgeMissing:
            raise
        except (DebloaterError, ValueError) as e:
            logger.error("Probe of %s failed: %s", serial, e)
            return Device(serial=serial, model=serial, sdk_level=0, users=())

        logger.info("ANDROID_SDK: %s | DEVICE: %s %s", sdk, brand, model)
        return Device(
            serial=serial,
            model=f"{brand} {model}".strip(),
            sdk_level=sdk,
            users=tuple(users),
        )

    def _getprop(self, serial: str, prop: str) -> str:
        result = self.transport.shell(serial, f"getprop {prop}")
        raise_for_status(result, self.transport.timeout)
        return result.stdout.strip()

    def _users(self, serial: str) -> list[User]:
        result = self.transport.shell(serial, "pm list users")
        raise_for_status(result, self.transport.timeout)
        return parse_user_list(result.stdout)
