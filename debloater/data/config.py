"""Operator settings: config.toml in the config directory."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from debloater.core.models import Device, Settings

logger = logging.getLogger(__name__)

APP_DIR_NAME = "uad"

DEFAULT_THEME = "Lupin"
THEMES = ("Dark", "Light", "Lupin")


def config_dir() -> Path:
    override = os.environ.get("UAD_CONFIG_DIR")
    if override:
        return Path(override)
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / APP_DIR_NAME


def cache_dir() -> Path:
    override = os.environ.get("UAD_CACHE_DIR")
    if override:
        return Path(override)
    base = os.environ.get("XDG_CACHE_HOME") or str(Path.home() / ".cache")
    return Path(base) / APP_DIR_NAME


def config_file_path() -> Path:
    return config_dir() / "config.toml"


def backup_dir() -> Path:
    return cache_dir() / "backups"


@dataclass
class GeneralSettings:
    theme: str = DEFAULT_THEME
    expert_mode: bool = False


@dataclass
class DeviceSettings:
    device_id: str
    disable_mode: bool = False
    multi_user_mode: bool = False


@dataclass
class Config:
    general: GeneralSettings = field(default_factory=GeneralSettings)
    devices: list[DeviceSettings] = field(default_factory=list)

    # ── Lookup ───────────────────────────────────────────────────────

    def device(self, device_id: str) -> Optional[DeviceSettings]:
        for d in self.devices:
            if d.device_id == device_id:
                return d
        return None

    def settings_for(self, device: Device) -> Settings:
        stored = self.device(device.serial)
        if stored is None:
            stored = DeviceSettings(
                device_id=device.serial,
                multi_user_mode=device.sdk_level > 21,
            )
        return Settings(
            theme=self.general.theme,
            expert_mode=self.general.expert_mode,
            disable_mode=stored.disable_mode,
            multi_user_mode=stored.multi_user_mode,
        )

    def save_device(self, settings: Settings, device_id: str, path: Optional[Path] = None) -> None:
        """Upsert the device table and the general table, then write."""
        self.general = GeneralSettings(theme=settings.theme, expert_mode=settings.expert_mode)
        stored = self.device(device_id)
        if stored is None:
            logger.debug("config: New device settings saved")
            stored = DeviceSettings(device_id=device_id)
            self.devices.append(stored)
        stored.disable_mode = settings.disable_mode
        stored.multi_user_mode = settings.multi_user_mode
        self.save(path)

    # ── (De)serialization ────────────────────────────────────────────

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        general = data.get("general", {})
        config = cls(general=GeneralSettings(
            theme=str(general.get("theme", DEFAULT_THEME)),
            expert_mode=bool(general.get("expert_mode", False)),
        ))
        for d in data.get("devices", []):
            if not isinstance(d, dict) or "device_id" not in d:
                continue
            config.devices.append(DeviceSettings(
                device_id=str(d["device_id"]),
                disable_mode=bool(d.get("disable_mode", False)),
                multi_user_mode=bool(d.get("multi_user_mode", False)),
            ))
        return config

    def to_toml(self) -> str:
        lines = [
            "[general]",
            f"theme = {_toml_str(self.general.theme)}",
            f"expert_mode = {_toml_bool(self.general.expert_mode)}",
        ]
        for d in self.devices:
            lines += [
                "",
                "[[devices]]",
                f"device_id = {_toml_str(d.device_id)}",
                f"disable_mode = {_toml_bool(d.disable_mode)}",
                f"multi_user_mode = {_toml_bool(d.multi_user_mode)}",
            ]
        return "\n".join(lines) + "\n"

    @classmethod
    def load(cls, path: Optional[Path] = None) -> Config:
        """Load the config file, writing defaults when it doesn't exist."""
        path = path or config_file_path()
        if not path.exists():
            config = cls()
            config.save(path)
            return config
        try:
            with open(path, "rb") as f:
                return cls.from_dict(tomllib.load(f))
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.error("Invalid config file: `%s`", e)
            return cls()

    def save(self, path: Optional[Path] = None) -> None:
        path = path or config_file_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_toml(), encoding="utf-8")


def _toml_bool(value: bool) -> str:
    return "true" if value else "false"


def _toml_str(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'
