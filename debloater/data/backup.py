"""Backup store — per-device JSON snapshots of deviating package states."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from debloater.core.errors import BackupParse, PackageMissing, UserMissing
from debloater.core.executor import ActionExecutor
from debloater.core.inventory import PackageModel
from debloater.core.models import (
    ActionResult,
    BackupStep,
    Device,
    PackageState,
    Settings,
)
from debloater.core.planner import CommandPlanner
from debloater.data.retry import retry_on_permission_error

logger = logging.getLogger(__name__)

BACKUP_NAME_FORMAT = "%Y-%m-%d_%H-%M-%S"

RESTORABLE_STATES = (PackageState.DISABLED, PackageState.UNINSTALLED)

_STATES = {
    s.value: s for s in (PackageState.ENABLED, PackageState.DISABLED, PackageState.UNINSTALLED)
}


@dataclass
class CorePackage:
    name: str
    state: PackageState


@dataclass
class UserBackup:
    id: int
    packages: list[CorePackage] = field(default_factory=list)


@dataclass
class PhoneBackup:
    device_id: str
    users: list[UserBackup] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "users": [
                {
                    "id": u.id,
                    "packages": [
                        {"name": p.name, "state": p.state.value} for p in u.packages
                    ],
                }
                for u in self.users
            ],
        }

    @classmethod
    def from_dict(cls, data: Any) -> PhoneBackup:
        """Parse a backup, dropping Enabled records written by older versions."""
        if not isinstance(data, dict) or not isinstance(data.get("device_id"), str):
            raise BackupParse("backup must be an object with a device_id")
        users_raw = data.get("users")
        if not isinstance(users_raw, list):
            raise BackupParse("backup users must be a list")

        users = []
        dropped = 0
        for u in users_raw:
            if not isinstance(u, dict) or not isinstance(u.get("id"), int):
                raise BackupParse(f"invalid user record: {u!r}")
            if not isinstance(u.get("packages", []), list):
                raise BackupParse(f"invalid package list for user {u['id']}")
            packages = []
            for p in u.get("packages", []):
                if not isinstance(p, dict) or not isinstance(p.get("name"), str):
                    raise BackupParse(f"invalid package record: {p!r}")
                state = _STATES.get(p.get("state"))
                if state is None:
                    raise BackupParse(f"invalid state {p.get('state')!r} for {p['name']}")
                if state not in RESTORABLE_STATES:
                    dropped += 1
                    continue
                packages.append(CorePackage(name=p["name"], state=state))
            users.append(UserBackup(id=u["id"], packages=packages))

        if dropped:
            logger.warning("Dropped %d Enabled record(s) from a legacy backup", dropped)
        return cls(device_id=data["device_id"], users=users)


class BackupStore:
    """Backups live under `{root}/{device_id}/{YYYY-MM-DD_HH-MM-SS}.json`."""

    def __init__(self, root: Path, planner: Optional[CommandPlanner] = None):
        self.root = Path(root)
        self.planner = planner or CommandPlanner()

    def device_dir(self, device_id: str) -> Path:
        return self.root / device_id

    # ── Snapshot ─────────────────────────────────────────────────────

    def build(self, device: Device, model: PackageModel) -> PhoneBackup:
        """One record per user the model holds rows for.

        A user without deviations is kept with an empty package list: restoring
        it re-enables everything for that user.
        """
        backup = PhoneBackup(device_id=device.serial)
        for user_id in model.user_ids():
            backup.users.append(UserBackup(
                id=user_id,
                packages=[
                    CorePackage(name=p.name, state=p.state)
                    for p in model.packages(user_id)
                    if p.state in RESTORABLE_STATES
                ],
            ))
        return backup

    def snapshot(
        self,
        device: Device,
        model: PackageModel,
        now: Optional[datetime] = None,
    ) -> Path:
        backup = self.build(device, model)
        directory = self.device_dir(device.serial)
        directory.mkdir(parents=True, exist_ok=True)

        name = (now or datetime.now()).strftime(BACKUP_NAME_FORMAT)
        path = directory / f"{name}.json"
        suffix = 0
        while path.exists():
            suffix += 1
            path = directory / f"{name}_{suffix}.json"
        if suffix:
            logger.warning("A backup named %s.json already exists, writing %s", name, path.name)
        tmp = directory / f".{path.stem}.json.tmp"
        tmp.write_text(json.dumps(backup.to_dict(), indent=2), encoding="utf-8")
        retry_on_permission_error(
            lambda: os.replace(tmp, path), description=f"rename {tmp.name}"
        )
        logger.info("Backup of %s written to %s", device.serial, path)
        return path

    # ── Listing ──────────────────────────────────────────────────────

    def list(self, device_id: Optional[str] = None) -> list[Path]:
        """Readable backups, oldest first. Unparseable files are skipped."""
        directory = self.device_dir(device_id) if device_id else self.root
        if not directory.is_dir():
            return []
        pattern = "*.json" if device_id else "*/*.json"
        found = []
        for path in sorted(directory.glob(pattern)):
            try:
                self.load(path)
            except BackupParse as e:
                logger.warning("Skipping backup %s: %s", path, e)
                continue
            found.append(path)
        return found

    def load(self, path: Path) -> PhoneBackup:
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise BackupParse(f"cannot read backup {path}: {e}") from e
        return PhoneBackup.from_dict(data)

    def users(self, path: Path) -> list[int]:
        return [u.id for u in self.load(path).users]

    def prune(self, device_id: str, keep: int) -> list[Path]:
        """Delete the oldest backups beyond `keep`."""
        backups = sorted(self.device_dir(device_id).glob("*.json"))
        stale = backups[:-keep] if keep > 0 else backups
        for path in stale:
            retry_on_permission_error(path.unlink, description=f"remove {path.name}")
        return stale

    # ── Restore ──────────────────────────────────────────────────────

    def restore(
        self,
        device: Device,
        model: PackageModel,
        backup_path: Path,
        selected_user: Optional[int] = None,
        settings: Optional[Settings] = None,
    ) -> list[BackupStep]:
        """Steps converging the device to the snapshot.

        Ends with an empty sentinel step when at least one step has commands.
        """
        backup = self.load(backup_path)
        settings = settings or Settings()
        # each user backup targets exactly its own user
        plan_settings = Settings(
            theme=settings.theme,
            expert_mode=settings.expert_mode,
            disable_mode=settings.disable_mode,
            multi_user_mode=False,
        )

        steps: list[BackupStep] = []
        for user_backup in backup.users:
            if selected_user is not None and user_backup.id != selected_user:
                continue
            user = device.user(user_backup.id)
            if user is None or user_backup.id not in model.user_ids():
                raise UserMissing(user_backup.id)

            wanted = {}
            for record in user_backup.packages:
                if model.get(user.id, record.name) is None:
                    raise PackageMissing(record.name, user.id)
                wanted[record.name] = record.state

            for index, package in enumerate(model.packages(user.id)):
                target = wanted.get(package.name, PackageState.ENABLED)
                commands = self.planner.plan(
                    package, package.state, target, user, device, plan_settings,
                )
                if commands:
                    steps.append(BackupStep(
                        package_index=index,
                        commands=commands,
                        user_id=user.id,
                        name=package.name,
                    ))

        if steps:
            steps.append(BackupStep(package_index=0))
        return steps

    def replay(
        self,
        steps: list[BackupStep],
        executor: ActionExecutor,
        refresh: Optional[Callable[[], None]] = None,
    ) -> list[tuple[BackupStep, ActionResult]]:
        """Run restore steps in order; a failed step does not stop the rest."""
        results = []
        for step in steps:
            if step.is_sentinel:
                if refresh is not None:
                    refresh()
                continue
            result = executor.run_plan(step.commands, label="Restore")
            if result.success and executor.model is not None and step.user_id is not None:
                executor.model.set_state(step.user_id, step.name, result.state)
            results.append((step, result))
        return results


def last_modified(path: Path) -> datetime:
    return datetime.fromtimestamp(Path(path).stat().st_mtime)


def format_age(then: datetime, now: Optional[datetime] = None) -> str:
    """`N min(s) ago`, `N hour(s) ago` or `N day(s) ago`."""
    delta = (now or datetime.now()) - then
    if delta.days > 0:
        return f"{delta.days} day(s) ago"
    hours = delta.seconds // 3600
    if hours > 0:
        return f"{hours} hour(s) ago"
    return f"{max(delta.seconds // 60, 0)} min(s) ago"
