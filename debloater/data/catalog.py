"""Package catalog — the curated bloat reference list."""

from __future__ import annotations

import json
import logging
import urllib.request
from pathlib import Path
from typing import Any, Optional, Union

from debloater.core.errors import CatalogParse
from debloater.core.models import CatalogEntry, Removal, UadList

logger = logging.getLogger(__name__)

BUNDLED_CATALOG = Path(__file__).resolve().parent.parent / "resources" / "uad_lists.json"

REMOTE_CATALOG_URL = (
    "https://raw.githubusercontent.com/0x192/universal-android-debloater/"
    "main/resources/assets/uad_lists.json"
)

_LISTS = {e.value: e for e in UadList if e is not UadList.ALL}
_REMOVALS = {e.value: e for e in Removal if e is not Removal.ALL}


def _optional_str(raw: dict, key: str) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, list):
        return ", ".join(str(v) for v in value) or None
    return str(value)


def parse_entry(raw: Any) -> CatalogEntry:
    """Strict on id/list/removal, lenient on everything else."""
    if not isinstance(raw, dict):
        raise CatalogParse(f"catalog entry is not an object: {raw!r}")
    for key in ("id", "list", "removal"):
        if not isinstance(raw.get(key), str) or not raw[key]:
            raise CatalogParse(f"catalog entry missing {key!r}: {raw!r}")
    try:
        uad_list = _LISTS[raw["list"]]
    except KeyError:
        raise CatalogParse(f"unknown list {raw['list']!r} for {raw['id']}")
    try:
        removal = _REMOVALS[raw["removal"]]
    except KeyError:
        raise CatalogParse(f"unknown removal {raw['removal']!r} for {raw['id']}")

    labels = raw.get("labels") or ()
    if not isinstance(labels, list):
        labels = ()
    return CatalogEntry(
        id=raw["id"],
        list=uad_list,
        removal=removal,
        description=_optional_str(raw, "description"),
        dependencies=_optional_str(raw, "dependencies"),
        needed_by=_optional_str(raw, "neededBy"),
        labels=tuple(str(label) for label in labels),
    )


def parse_catalog(text: str) -> dict[str, CatalogEntry]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise CatalogParse(f"invalid catalog JSON: {e}") from e
    if not isinstance(data, list):
        raise CatalogParse("catalog must be a JSON array")

    entries: dict[str, CatalogEntry] = {}
    for raw in data:
        entry = parse_entry(raw)
        if entry.id in entries:
            logger.warning("Duplicate catalog entry %s, keeping the last one", entry.id)
        entries[entry.id] = entry
    return entries


class Catalog:
    """Read-only index of catalog entries, shared by reference."""

    def __init__(self, entries: Optional[dict[str, CatalogEntry]] = None):
        self._entries = dict(entries or {})

    @classmethod
    def load(cls, path: Union[str, Path] = BUNDLED_CATALOG) -> Catalog:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise CatalogParse(f"cannot read catalog {path}: {e}") from e
        catalog = cls(parse_catalog(text))
        logger.debug("Loaded %d catalog entries from %s", len(catalog), path)
        return catalog

    def lookup(self, package_id: str) -> CatalogEntry:
        """Entry for a package, synthesized as Unlisted when unknown."""
        entry = self._entries.get(package_id)
        if entry is None:
            return CatalogEntry.unlisted(package_id)
        return entry

    def __contains__(self, package_id: str) -> bool:
        return package_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> dict[str, CatalogEntry]:
        return dict(self._entries)


def fetch_catalog(
    cache_path: Path,
    url: str = REMOTE_CATALOG_URL,
    timeout: float = 15,
) -> tuple[Catalog, bool]:
    """Download the reference catalog, falling back to cache then bundled copy.

    Returns (catalog, fetched_remotely).
    """
    try:
        req = urllib.request.Request(url, headers={"User-Agent": "uad/1.0"})
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            text = resp.read().decode("utf-8")
        catalog = Catalog(parse_catalog(text))
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        cache_path.write_text(text, encoding="utf-8")
        return catalog, True
    except (OSError, ValueError, CatalogParse) as e:
        logger.warning("Could not load remote debloat list: %s", e)

    if cache_path.exists():
        try:
            return Catalog.load(cache_path), False
        except CatalogParse as e:
            logger.error("Cached debloat list is invalid: %s", e)
    return Catalog.load(BUNDLED_CATALOG), False
