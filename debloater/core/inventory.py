"""Package model — one row per (user, package) the device reports."""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Optional

from debloater.core.models import (
    Device,
    Package,
    PackageState,
    Removal,
    UadList,
    User,
)
from debloater.core.planner import MULTI_USER_SDK
from debloater.core.transport import LISTING_PREFIX, BridgeTransport, raise_for_status
from debloater.data.catalog import Catalog

logger = logging.getLogger(__name__)


def _user_flag(device: Device, user: Optional[User]) -> str:
    if user is None or device.sdk_level < MULTI_USER_SDK:
        return ""
    return f" --user {user.id}"


def _list_names(transport: BridgeTransport, serial: str, command: str) -> list[str]:
    result = transport.shell(serial, command)
    raise_for_status(result, transport.timeout)
    names = []
    for line in result.stdout.splitlines():
        line = line.strip()
        if line.startswith(LISTING_PREFIX):
            line = line[len(LISTING_PREFIX):]
        if line:
            names.append(line)
    return names


def fetch_packages(
    transport: BridgeTransport,
    device: Device,
    user: Optional[User],
    catalog: Catalog,
) -> list[Package]:
    """List every system package for a user with its live state."""
    flag = _user_flag(device, user)
    all_packages = _list_names(transport, device.serial, f"pm list packages -s -u{flag}")
    enabled = set(_list_names(transport, device.serial, f"pm list packages -s -e{flag}"))
    disabled = set(_list_names(transport, device.serial, f"pm list packages -s -d{flag}"))

    user_id = user.id if user else 0
    rows = []
    for name in dict.fromkeys(all_packages):
        if name in enabled:
            state = PackageState.ENABLED
        elif name in disabled:
            state = PackageState.DISABLED
        else:
            state = PackageState.UNINSTALLED
        rows.append(Package(
            name=name,
            state=state,
            catalog=catalog.lookup(name),
            user_id=user_id,
        ))
    rows.sort(key=lambda p: p.name.lower())
    return rows


class PackageModel:
    """Per-device package rows, indexed by user.

    State is only written through `set_state`, called by the executor on a
    confirmed change; `selected` is owned by the selection controller.
    """

    def __init__(self, device: Device, rows: Optional[dict[int, list[Package]]] = None):
        self.device = device
        self._rows: dict[int, list[Package]] = rows or {}
        self._index: dict[tuple[int, str], int] = {}
        self._reindex()

    @classmethod
    def load(
        cls,
        device: Device,
        catalog: Catalog,
        transport: Optional[BridgeTransport] = None,
    ) -> PackageModel:
        model = cls(device)
        model.refresh(catalog, transport)
        return model

    def refresh(self, catalog: Catalog, transport: Optional[BridgeTransport] = None) -> None:
        """Re-materialize every row from the device."""
        transport = transport or BridgeTransport()
        self.invalidate()
        if not self.device.reachable:
            logger.error("Device %s is unreachable, no packages loaded", self.device.serial)
            return
        rows: dict[int, list[Package]] = {}
        for user in self.device.users:
            rows[user.id] = fetch_packages(transport, self.device, user, catalog)
        self._rows = rows
        self._reindex()

    def invalidate(self) -> None:
        self._rows = {}
        self._index = {}

    def _reindex(self) -> None:
        self._index = {
            (user_id, p.name): i
            for user_id, packages in self._rows.items()
            for i, p in enumerate(packages)
        }

    # ── Read-only projections ────────────────────────────────────────

    def user_ids(self) -> list[int]:
        return list(self._rows)

    def packages(self, user_id: int) -> list[Package]:
        return list(self._rows.get(user_id, []))

    def get(self, user_id: int, name: str) -> Optional[Package]:
        i = self._index.get((user_id, name))
        if i is None:
            return None
        return self._rows[user_id][i]

    def index_of(self, user_id: int, name: str) -> Optional[int]:
        return self._index.get((user_id, name))

    def __iter__(self) -> Iterator[Package]:
        for packages in self._rows.values():
            yield from packages

    def __len__(self) -> int:
        return len(self._index)

    # ── Mutation ─────────────────────────────────────────────────────

    def set_state(self, user_id: int, name: str, state: PackageState) -> bool:
        if state is PackageState.ALL:
            raise ValueError("All is a filter sentinel, not a package state")
        package = self.get(user_id, name)
        if package is None:
            return False
        package.state = state
        return True


def filter_packages(
    packages: Iterable[Package],
    uad_list: UadList = UadList.ALL,
    state: PackageState = PackageState.ALL,
    removal: Removal = Removal.ALL,
    search: str = "",
) -> list[Package]:
    return [
        p for p in packages
        if (uad_list is UadList.ALL or p.catalog.list is uad_list)
        and (state is PackageState.ALL or p.state is state)
        and (removal is Removal.ALL or p.removal is removal)
        and (not search or search in p.name)
    ]
