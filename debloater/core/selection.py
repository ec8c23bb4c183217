"""Selection controller: tracks which package rows the operator picked."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from debloater.core.inventory import PackageModel
from debloater.core.models import Package, PackageState, Removal, Settings

logger = logging.getLogger(__name__)


@dataclass
class SelectionCounts:
    enabled: int = 0
    disabled: int = 0
    uninstalled: int = 0

    @property
    def total(self) -> int:
        return self.enabled + self.disabled + self.uninstalled


class SelectionController:
    """Owns the `selected` bit of every package row."""

    def __init__(self, model: PackageModel, settings: Settings):
        self.model = model
        self.settings = settings

    def _fan_out_ids(self) -> list[int]:
        return [
            u.id for u in self.model.device.fan_out_users()
            if u.id in self.model.user_ids()
        ]

    def toggle(self, user_id: int, name: str, selected: bool) -> bool:
        """Select or deselect one package. Returns the resulting bit."""
        package = self.model.get(user_id, name)
        if package is None:
            return False
        if selected and package.removal is Removal.UNSAFE and not self.settings.expert_mode:
            package.selected = False
            return False

        if self.settings.multi_user_mode:
            for uid in self._fan_out_ids():
                row = self.model.get(uid, name)
                if row is not None:
                    row.selected = selected
        package.selected = selected
        return selected

    def select_all(self, user_id: int, packages: Optional[Iterable[Package]] = None) -> int:
        """Select every package of a user, or the given (filtered) rows."""
        rows = self.model.packages(user_id) if packages is None else packages
        count = 0
        for p in rows:
            if not p.selected and self.toggle(user_id, p.name, True):
                count += 1
        return count

    def clear(self) -> None:
        for package in self.model:
            package.selected = False

    def set_multi_user_mode(self, enabled: bool) -> None:
        """Switching it on mirrors every selection to all fan-out users."""
        self.settings.multi_user_mode = enabled
        if not enabled:
            return
        names = {p.name for p in self.model if p.selected}
        for uid in self._fan_out_ids():
            for name in names:
                row = self.model.get(uid, name)
                if row is not None:
                    row.selected = True

    def selected(self, user_id: Optional[int] = None) -> list[Package]:
        """Selected rows sorted by package name, then user."""
        rows = [
            p for p in self.model
            if p.selected and (user_id is None or p.user_id == user_id)
        ]
        return sorted(rows, key=lambda p: (p.name, p.user_id))

    def counts(self, user_id: Optional[int] = None) -> SelectionCounts:
        counts = SelectionCounts()
        for p in self.selected(user_id):
            if p.state is PackageState.ENABLED:
                counts.enabled += 1
            elif p.state is PackageState.DISABLED:
                counts.disabled += 1
            elif p.state is PackageState.UNINSTALLED:
                counts.uninstalled += 1
        return counts

    # ── Export / import ──────────────────────────────────────────────

    def export_selection(self, path: Path, user_id: Optional[int] = None) -> int:
        names = sorted({p.name for p in self.selected(user_id)})
        path.write_text("\n".join(names), encoding="utf-8")
        return len(names)

    def import_selection(self, path: Path, user_id: int) -> int:
        """Replace the selection of a user with the names listed in a file."""
        wanted = {
            line.strip()
            for line in path.read_text(encoding="utf-8").splitlines()
            if line.strip()
        }
        self.clear()
        count = 0
        for p in self.model.packages(user_id):
            if p.name in wanted and self.toggle(user_id, p.name, True):
                count += 1
        missing = wanted - {p.name for p in self.model.packages(user_id)}
        if missing:
            logger.warning("%d imported package(s) not on this device", len(missing))
        return count
