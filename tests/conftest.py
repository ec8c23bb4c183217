"""Shared test fixtures for debloater tests."""

from __future__ import annotations

from typing import Optional, Union

import pytest

from debloater.core.inventory import PackageModel
from debloater.core.models import (
    CatalogEntry,
    Device,
    Package,
    PackageState,
    Removal,
    Settings,
    ShellResult,
    UadList,
    User,
)
from debloater.data.catalog import Catalog


class FakeTransport:
    """Scripted stand-in for BridgeTransport.

    `responses` maps a shell command to a ShellResult or to stdout text;
    unknown commands succeed with empty output.
    """

    def __init__(
        self,
        responses: Optional[dict[str, Union[str, ShellResult]]] = None,
        devices_output: str = "List of devices attached\n",
        timeout: float = 30,
    ):
        self.responses = responses or {}
        self.devices_output = devices_output
        self.timeout = timeout
        self.calls: list[tuple[str, str]] = []

    def shell(self, serial: str, command: str) -> ShellResult:
        self.calls.append((serial, command))
        response = self.responses.get(command, "")
        if isinstance(response, ShellResult):
            response.command = command
            return response
        return ShellResult(stdout=response, command=command)

    def devices(self) -> ShellResult:
        return ShellResult(stdout=self.devices_output, command="devices")

    @property
    def commands(self) -> list[str]:
        return [c for _, c in self.calls]


def failure(stderr: str = "", stdout: str = "", exit_code: int = 1) -> ShellResult:
    return ShellResult(stdout=stdout, stderr=stderr, ok=False, exit_code=exit_code)


def make_package(
    name: str,
    state: PackageState = PackageState.ENABLED,
    removal: Removal = Removal.RECOMMENDED,
    user_id: int = 0,
    uad_list: UadList = UadList.MISC,
) -> Package:
    return Package(
        name=name,
        state=state,
        catalog=CatalogEntry(id=name, list=uad_list, removal=removal),
        user_id=user_id,
    )


def make_model(device: Device, rows: dict[int, list[Package]]) -> PackageModel:
    return PackageModel(device, rows)


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def device() -> Device:
    """Android 11 phone with an owner and a protected work profile."""
    return Device(
        serial="R58M123ABC",
        model="samsung SM-G991B",
        sdk_level=30,
        users=(User(id=0, index=0), User(id=10, index=1, protected=True)),
    )


@pytest.fixture
def two_user_device() -> Device:
    return Device(
        serial="emulator-5554",
        model="google sdk_gphone64",
        sdk_level=33,
        users=(User(id=0, index=0), User(id=11, index=1)),
    )


@pytest.fixture
def legacy_device() -> Device:
    """KitKat phone, no per-user commands."""
    return Device(
        serial="0123456789",
        model="LGE Nexus 5",
        sdk_level=19,
        users=(User(id=0, index=0),),
    )


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def catalog() -> Catalog:
    return Catalog({
        "com.foo": CatalogEntry(id="com.foo", list=UadList.MISC, removal=Removal.RECOMMENDED),
        "com.android.systemui": CatalogEntry(
            id="com.android.systemui", list=UadList.AOSP, removal=Removal.UNSAFE,
        ),
    })
