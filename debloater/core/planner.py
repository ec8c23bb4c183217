"""Command planner — maps a package state transition to adb shell commands."""

from __future__ import annotations

import logging
from typing import Optional

from debloater.core.models import (
    Device,
    Package,
    PackageState,
    Removal,
    Settings,
    User,
)

logger = logging.getLogger(__name__)

MULTI_USER_SDK = 21

UNINSTALL = "pm uninstall"
INSTALL_EXISTING = "cmd package install-existing"
ENABLE = "pm enable"
FORCE_STOP = "am force-stop"
DISABLE = "pm disable-user"
CLEAR = "pm clear"

# Order is a contract: stop before disabling so the app can't re-enable
# itself, clear last.
DISABLE_SEQUENCE = (FORCE_STOP, DISABLE, CLEAR)

_E = PackageState.ENABLED
_D = PackageState.DISABLED
_U = PackageState.UNINSTALLED

# (from, to) -> (verbs below MULTI_USER_SDK, verbs at or above it)
TRANSITIONS: dict[tuple[PackageState, PackageState], tuple[tuple[str, ...], tuple[str, ...]]] = {
    (_E, _U): ((UNINSTALL,), (UNINSTALL,)),
    (_E, _D): (DISABLE_SEQUENCE, DISABLE_SEQUENCE),
    (_U, _E): ((), (INSTALL_EXISTING,)),
    (_D, _E): ((ENABLE,), (ENABLE,)),
    (_D, _U): ((), (UNINSTALL,)),
    (_U, _D): ((), (INSTALL_EXISTING,) + DISABLE_SEQUENCE),
}


def target_users(
    device: Device,
    target_user: Optional[User],
    settings: Settings,
) -> list[User]:
    """Users a plan fans out to."""
    if settings.multi_user_mode:
        return device.fan_out_users()
    if target_user is not None:
        return [target_user]
    if device.users:
        return [device.users[0]]
    return []


def request_builder(verbs: tuple[str, ...], package: str, users: list[User]) -> list[str]:
    if not users:
        return [f"{verb} {package}" for verb in verbs]
    return [
        f"{verb} --user {user.id} {package}"
        for user in users
        for verb in verbs
    ]


class CommandPlanner:
    """Total function from a requested transition to a command sequence.

    An empty plan means the transition is a no-op, forbidden by the risk
    policy or unsupported on this device.
    """

    def plan(
        self,
        package: Package,
        current_state: PackageState,
        target_state: PackageState,
        target_user: Optional[User],
        device: Device,
        settings: Settings,
    ) -> list[str]:
        if not device.reachable:
            return []
        if PackageState.ALL in (current_state, target_state):
            return []
        if current_state is target_state:
            return []
        if package.removal is Removal.UNSAFE and not settings.expert_mode:
            logger.debug("Refusing to plan %s: unsafe without expert mode", package.name)
            return []

        legacy, modern = TRANSITIONS.get((current_state, target_state), ((), ()))
        if device.sdk_level < MULTI_USER_SDK:
            return request_builder(legacy, package.name, [])
        if not modern:
            return []
        users = target_users(device, target_user, settings)
        if not users:
            return []
        return request_builder(modern, package.name, users)

    def plan_toggle(
        self,
        package: Package,
        target_user: Optional[User],
        device: Device,
        settings: Settings,
    ) -> list[str]:
        """Plan the operator's default action for a package."""
        target = package.state.opposite(settings.disable_mode)
        return self.plan(package, package.state, target, target_user, device, settings)


def classify_plan(commands: list[str]) -> PackageState:
    """State a fully successful plan leaves the package in."""
    if any(c.startswith(UNINSTALL) for c in commands):
        return PackageState.UNINSTALLED
    if any(c.startswith(DISABLE) for c in commands):
        return PackageState.DISABLED
    return PackageState.ENABLED
