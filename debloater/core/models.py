"""Core data models for the package control engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class PackageState(Enum):
    ALL = "All"  # filter sentinel, never stored on a package
    ENABLED = "Enabled"
    DISABLED = "Disabled"
    UNINSTALLED = "Uninstalled"

    def opposite(self, disable_mode: bool) -> PackageState:
        """State an operator toggle drives this state towards."""
        if self is PackageState.ENABLED:
            if disable_mode:
                return PackageState.DISABLED
            return PackageState.UNINSTALLED
        if self is PackageState.ALL:
            return PackageState.ALL
        return PackageState.ENABLED


class UadList(Enum):
    ALL = "all"
    AOSP = "aosp"
    CARRIER = "carrier"
    GOOGLE = "google"
    MISC = "misc"
    OEM = "oem"
    UNLISTED = "unlisted"


class Removal(Enum):
    ALL = "All"
    RECOMMENDED = "Recommended"
    ADVANCED = "Advanced"
    EXPERT = "Expert"
    UNSAFE = "Unsafe"
    UNLISTED = "Unlisted"


@dataclass(frozen=True)
class User:
    id: int
    index: int
    protected: bool = False

    def __str__(self) -> str:
        return f"user {self.id}"


@dataclass(frozen=True)
class Device:
    serial: str
    model: str  # brand + model
    sdk_level: int
    users: tuple[User, ...] = ()

    @property
    def reachable(self) -> bool:
        return self.sdk_level > 0

    def user(self, user_id: int) -> Optional[User]:
        for u in self.users:
            if u.id == user_id:
                return u
        return None

    def fan_out_users(self) -> list[User]:
        """Users eligible for multi-user fan-out."""
        return [u for u in self.users if not u.protected]

    def __str__(self) -> str:
        return self.model or self.serial


@dataclass(frozen=True)
class CatalogEntry:
    id: str
    list: UadList
    removal: Removal
    description: Optional[str] = None
    dependencies: Optional[str] = None
    needed_by: Optional[str] = None
    labels: tuple[str, ...] = ()

    @classmethod
    def unlisted(cls, package_id: str) -> CatalogEntry:
        return cls(id=package_id, list=UadList.UNLISTED, removal=Removal.UNLISTED)


@dataclass
class Package:
    name: str
    state: PackageState
    catalog: CatalogEntry
    user_id: int = 0
    selected: bool = False

    @property
    def removal(self) -> Removal:
        return self.catalog.removal


@dataclass
class Settings:
    """Operator settings consumed by the planner and selection controller."""

    theme: str = "Lupin"
    expert_mode: bool = False
    disable_mode: bool = False
    multi_user_mode: bool = False


@dataclass
class ShellResult:
    stdout: str = ""
    stderr: str = ""
    ok: bool = True
    exit_code: int = 0
    timed_out: bool = False
    command: str = ""

    @property
    def error_text(self) -> str:
        """The bridge sometimes reports errors on stdout."""
        if not self.ok and self.stdout:
            return self.stdout
        return self.stderr


@dataclass
class ActionResult:
    success: bool
    state: Optional[PackageState] = None
    error: Optional[Exception] = None
    commands_run: list[str] = field(default_factory=list)


@dataclass
class BackupStep:
    package_index: int
    commands: list[str] = field(default_factory=list)
    user_id: Optional[int] = None
    name: str = ""

    @property
    def is_sentinel(self) -> bool:
        return not self.commands
