"""Action executor: runs planned commands and folds results into the model."""

from __future__ import annotations

import logging
import re
from typing import Optional

from debloater.core.errors import BridgeMissing, DebloaterError
from debloater.core.inventory import PackageModel
from debloater.core.models import (
    ActionResult,
    Device,
    Package,
    PackageState,
    Settings,
    User,
)
from debloater.core.planner import CommandPlanner, classify_plan
from debloater.core.transport import (
    NOT_INSTALLED_MARKER,
    BridgeTransport,
    raise_for_status,
)

logger = logging.getLogger(__name__)

_USER_FLAG_RE = re.compile(r"--user (\d+) ")


def _users_in_plan(commands: list[str]) -> list[int]:
    ids = []
    for c in commands:
        match = _USER_FLAG_RE.search(c)
        if match and int(match.group(1)) not in ids:
            ids.append(int(match.group(1)))
    return ids


class ActionExecutor:
    """Drives plans through the transport for one device.

    State advances only when every command of a plan succeeded; on the first
    failure the remaining commands are skipped and nothing is rolled back.
    """

    def __init__(
        self,
        transport: BridgeTransport,
        device: Device,
        settings: Settings,
        model: Optional[PackageModel] = None,
        planner: Optional[CommandPlanner] = None,
    ):
        self.transport = transport
        self.device = device
        self.settings = settings
        self.model = model
        self.planner = planner or CommandPlanner()

    def apply(
        self,
        package: Package,
        target_state: PackageState,
        target_user: Optional[User] = None,
    ) -> ActionResult:
        if target_user is None:
            target_user = self.device.user(package.user_id)
        commands = self.planner.plan(
            package, package.state, target_state, target_user,
            self.device, self.settings,
        )
        if not commands:
            return ActionResult(success=True, state=package.state)

        result = self.run_plan(commands, label=package.removal.value)
        if result.success and self.model is not None:
            for user_id in _users_in_plan(commands) or [package.user_id]:
                self.model.set_state(user_id, package.name, result.state)
        return result

    def run_plan(self, commands: list[str], label: str = "Shell") -> ActionResult:
        """Run commands in order, stopping at the first real failure."""
        done: list[str] = []
        for command in commands:
            try:
                self._run_one(command, label)
            except BridgeMissing:
                raise
            except DebloaterError as e:
                return ActionResult(success=False, error=e, commands_run=done)
            done.append(command)
        return ActionResult(success=True, state=classify_plan(commands), commands_run=done)

    def _run_one(self, command: str, label: str) -> None:
        result = self.transport.shell(self.device.serial, command)
        if result.ok:
            logger.info("[%s] %s -> %s", label, command, result.stdout)
            return
        if NOT_INSTALLED_MARKER in result.error_text:
            logger.debug("[%s] %s -> %s", label, command, result.error_text)
            return
        logger.error("[%s] %s -> %s", label, command, result.error_text)
        raise_for_status(result, self.transport.timeout)
