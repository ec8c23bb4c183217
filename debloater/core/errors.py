"""Error kinds raised by the package control engine."""

from __future__ import annotations


class DebloaterError(Exception):
    """Base class for every engine error."""


class BridgeMissing(DebloaterError):
    """The bridge executable could not be spawned."""


class NoDevice(DebloaterError):
    """The bridge reported that no device is attached."""


class Unauthorized(DebloaterError):
    """The device has not authorized this host."""


class CommandFailed(DebloaterError):
    def __init__(self, command: str, stdout: str = "", stderr: str = ""):
        self.command = command
        self.stdout = stdout
        self.stderr = stderr
        detail = stdout or stderr or "no output"
        super().__init__(f"{command!r} failed: {detail}")


class Timeout(CommandFailed):
    def __init__(self, command: str, seconds: float):
        self.seconds = seconds
        super().__init__(command, stderr=f"timed out after {seconds:g} seconds")


class CatalogParse(DebloaterError):
    """The package catalog is not valid."""


class BackupParse(DebloaterError):
    """A backup file could not be read."""


class UserMissing(DebloaterError):
    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"user {user_id} doesn't exist on this device")


class PackageMissing(DebloaterError):
    def __init__(self, name: str, user_id: int):
        self.name = name
        self.user_id = user_id
        super().__init__(f"{name} not found for user {user_id}")


class PermissionDenied(DebloaterError):
    """A local file operation kept failing with a permission error."""
