"""Tests for debloater.core.probe."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from debloater.core.errors import BridgeMissing, NoDevice
from debloater.core.models import ShellResult, User
from debloater.core.probe import (
    MAX_WAIT_SECONDS,
    DeviceProbe,
    parse_device_list,
    parse_user_list,
)
from debloater.core.transport import BridgeTransport
from tests.conftest import FakeTransport, failure


DEVICES_OUTPUT = """List of devices attached
R58M123ABC\tdevice
emulator-5554\tunauthorized
0123456789\toffline

"""

USERS_OUTPUT = """Users:
\tUserInfo{0:Owner:c13} running
\tUserInfo{10:Work profile:1030} running
\tUserInfo{11:Guest:414}
"""


def _props(brand="samsung", model="SM-G991B", sdk="30", users=USERS_OUTPUT):
    return {
        "getprop ro.product.brand": brand,
        "getprop ro.product.model": model,
        "getprop ro.build.version.sdk": sdk,
        "pm list users": users,
    }


class TestParseDeviceList:
    def test_only_ready_devices(self):
        assert parse_device_list(DEVICES_OUTPUT) == ["R58M123ABC"]

    def test_empty(self):
        assert parse_device_list("List of devices attached\n") == []

    def test_daemon_banner_ignored(self):
        output = (
            "* daemon not running; starting now at tcp:5037\n"
            "* daemon started successfully\n"
            "List of devices attached\n"
            "R58M123ABC\tdevice\n"
        )
        assert parse_device_list(output) == ["R58M123ABC"]


class TestParseUserList:
    def test_ids_and_indexes(self):
        users = parse_user_list(USERS_OUTPUT)
        assert [u.id for u in users] == [0, 10, 11]
        assert [u.index for u in users] == [0, 1, 2]

    def test_work_profile_is_protected(self):
        users = {u.id: u for u in parse_user_list(USERS_OUTPUT)}
        assert users[0].protected is False
        assert users[10].protected is True
        assert users[11].protected is False

    def test_managed_profile_flag(self):
        users = parse_user_list("UserInfo{12:Secure Folder:1030}")
        assert users[0].protected is True

    def test_no_users_defaults_to_owner(self):
        assert parse_user_list("") == [User(id=0, index=0)]


class TestDeviceProbe:
    def test_probe(self):
        transport = FakeTransport(_props())
        device = DeviceProbe(transport).probe("R58M123ABC")

        assert device.serial == "R58M123ABC"
        assert device.model == "samsung SM-G991B"
        assert device.sdk_level == 30
        assert device.reachable is True
        assert [u.id for u in device.users] == [0, 10, 11]
        assert all(serial == "R58M123ABC" for serial, _ in transport.calls)

    def test_failed_getprop_is_unreachable(self):
        responses = _props()
        responses["getprop ro.build.version.sdk"] = failure(stdout="error: device offline")
        device = DeviceProbe(FakeTransport(responses)).probe("R58M123ABC")

        assert device.sdk_level == 0
        assert device.reachable is False
        assert device.users == ()

    def test_garbage_sdk_is_unreachable(self):
        device = DeviceProbe(FakeTransport(_props(sdk=""))).probe("R58M123ABC")
        assert device.sdk_level == 0

    def test_missing_bridge_propagates(self):
        class MissingTransport(FakeTransport):
            def shell(self, serial, command):
                raise BridgeMissing("adb was not found")

        with pytest.raises(BridgeMissing):
            DeviceProbe(MissingTransport()).probe("R58M123ABC")

    def test_list_devices(self):
        transport = FakeTransport(_props(), devices_output=DEVICES_OUTPUT)
        devices = DeviceProbe(transport).list_devices()
        assert [d.serial for d in devices] == ["R58M123ABC"]

    def test_list_devices_bridge_error(self):
        class DeadServer(FakeTransport):
            def devices(self):
                return ShellResult(ok=False, stderr="adb: no devices/emulators found",
                                   exit_code=1, command="devices")

        with pytest.raises(NoDevice):
            DeviceProbe(DeadServer()).list_devices()

    def test_list_devices_daemon_banner_on_stderr(self):
        class ColdStart(FakeTransport):
            def devices(self):
                return ShellResult(
                    stdout="List of devices attached\nR58M123ABC\tdevice\n",
                    stderr="* daemon not running; starting now at tcp:5037\n"
                           "* daemon started successfully",
                    ok=False, exit_code=0, command="devices",
                )

        devices = DeviceProbe(ColdStart(_props())).list_devices()
        assert [d.serial for d in devices] == ["R58M123ABC"]

    @patch("debloater.core.transport.subprocess.run")
    def test_ready_serials_from_bridge_cold_start(self, mock_run):
        mock_run.return_value = MagicMock(
            returncode=0,
            stdout="List of devices attached\nR58M123ABC\tdevice\nemulator-5554\toffline\n",
            stderr="* daemon started successfully\n",
        )
        assert DeviceProbe(BridgeTransport("adb")).ready_serials() == ["R58M123ABC"]


class TestWaitForDevice:
    class Booting(FakeTransport):
        """Reports no device for the first `pending` listings."""

        def __init__(self, pending, **kwargs):
            super().__init__(_props(), **kwargs)
            self.pending = pending
            self.listings = 0

        def devices(self):
            self.listings += 1
            if self.listings <= self.pending:
                return ShellResult(stdout="List of devices attached\n", command="devices")
            return ShellResult(stdout="List of devices attached\nR58M123ABC\tdevice\n",
                               command="devices")

    def test_polls_until_ready(self):
        transport = self.Booting(pending=3)
        sleep = MagicMock()

        devices = DeviceProbe(transport).list_devices(wait=10, interval=0.5, sleep=sleep)

        assert [d.serial for d in devices] == ["R58M123ABC"]
        assert transport.listings == 4
        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 0.5, 0.5]

    def test_gives_up_after_wait(self):
        transport = self.Booting(pending=1000)
        sleep = MagicMock()

        assert DeviceProbe(transport).list_devices(wait=2, interval=0.5, sleep=sleep) == []
        assert transport.listings == 5
        assert sleep.call_count == 4

    def test_wait_is_capped(self):
        transport = self.Booting(pending=10_000)
        sleep = MagicMock()

        DeviceProbe(transport).list_devices(wait=3600, interval=0.5, sleep=sleep)

        assert sum(c.args[0] for c in sleep.call_args_list) <= MAX_WAIT_SECONDS

    def test_no_wait_lists_once(self):
        transport = self.Booting(pending=1)
        sleep = MagicMock()

        assert DeviceProbe(transport).list_devices(sleep=sleep) == []
        assert transport.listings == 1
        sleep.assert_not_called()

    def test_bridge_error_is_not_retried(self):
        class DeadServer(FakeTransport):
            def devices(self):
                return ShellResult(ok=False, stderr="adb: no devices/emulators found",
                                   exit_code=1, command="devices")

        sleep = MagicMock()
        with pytest.raises(NoDevice):
            DeviceProbe(DeadServer()).list_devices(wait=5, sleep=sleep)
        sleep.assert_not_called()
