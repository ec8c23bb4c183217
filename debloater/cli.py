"""CLI entry point for the Universal Android Debloater."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

import debloater
from debloater.core.batch import BatchController, BatchJob, StepReport
from debloater.core.errors import DebloaterError, NoDevice
from debloater.core.executor import ActionExecutor
from debloater.core.inventory import PackageModel, filter_packages
from debloater.core.models import (
    Device,
    PackageState,
    Removal,
    Settings,
    UadList,
)
from debloater.core.probe import DeviceProbe
from debloater.core.selection import SelectionController
from debloater.core.transport import BridgeTransport
from debloater.data.backup import BackupStore, format_age, last_modified
from debloater.data.catalog import BUNDLED_CATALOG, Catalog, fetch_catalog
from debloater.data.config import (
    THEMES,
    Config,
    backup_dir,
    cache_dir,
    config_file_path,
)
from debloater.logs import setup_logging

app = typer.Typer(
    name="uad",
    help="Debloat Android devices over adb: uninstall, disable and restore system packages.",
    no_args_is_help=True,
)
console = Console()

_STATE_STYLES = {
    PackageState.ENABLED: "green",
    PackageState.DISABLED: "yellow",
    PackageState.UNINSTALLED: "red",
}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    setup_logging(cache_dir(), verbose=verbose)


def _fail(message: str) -> typer.Exit:
    console.print(f"[red]Error: {message}[/]")
    return typer.Exit(1)


def _select_device(transport: BridgeTransport, serial: Optional[str]) -> Device:
    probe = DeviceProbe(transport)
    if serial:
        device = probe.probe(serial)
    else:
        devices = probe.list_devices()
        if not devices:
            raise NoDevice("no devices/emulators found")
        device = devices[0]
    if not device.reachable:
        raise NoDevice(f"{device.serial} is not reachable")
    return device


def _load_catalog(catalog_path: Optional[Path], remote: bool) -> Catalog:
    if catalog_path:
        return Catalog.load(catalog_path)
    if remote:
        cache = cache_dir() / "uad_lists.json"
        catalog, fetched = fetch_catalog(cache)
        if fetched:
            return catalog
        if cache.exists():
            console.print(
                f"[yellow]Remote list unavailable, using the copy cached "
                f"{format_age(last_modified(cache))}.[/]"
            )
        else:
            console.print("[yellow]Remote list unavailable, using the bundled copy.[/]")
        return catalog
    return Catalog.load(BUNDLED_CATALOG)


def _settings(config: Config, device: Device, expert: bool) -> Settings:
    settings = config.settings_for(device)
    if expert:
        settings.expert_mode = True
    return settings


def _resolve_user(device: Device, user_id: Optional[int]) -> int:
    if user_id is None:
        return device.users[0].id
    if device.user(user_id) is None:
        raise typer.BadParameter(f"user {user_id} doesn't exist on {device}")
    return user_id


@app.command()
def devices(
    wait: float = typer.Option(
        0.0, "--wait", "-w", help="Seconds to wait for a device to become ready"
    ),
) -> None:
    """List connected devices."""
    try:
        found = DeviceProbe().list_devices(wait=wait)
    except DebloaterError as e:
        raise _fail(str(e))

    if not found:
        console.print("[yellow]No devices/emulators found.[/]")
        raise typer.Exit(0)

    table = Table(title="Devices")
    table.add_column("Serial", style="cyan")
    table.add_column("Model", style="green")
    table.add_column("SDK")
    table.add_column("Users")
    for d in found:
        users = ", ".join(
            f"{u.id}{' (protected)' if u.protected else ''}" for u in d.users
        )
        table.add_row(d.serial, d.model, str(d.sdk_level or "unreachable"), users)
    console.print(table)


@app.command()
def packages(
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Device serial"),
    user: Optional[int] = typer.Option(None, "--user", "-u", help="User id"),
    uad_list: UadList = typer.Option(UadList.ALL, "--list", help="Catalog list"),
    state: PackageState = typer.Option(PackageState.ENABLED, "--state", help="Package state"),
    removal: Removal = typer.Option(Removal.ALL, "--removal", help="Removal tier"),
    search: str = typer.Option("", "--search", "-s", help="Substring of the package name"),
    catalog_path: Optional[Path] = typer.Option(None, "--catalog", help="Catalog JSON file"),
    remote: bool = typer.Option(False, "--remote", help="Fetch the latest catalog"),
) -> None:
    """List the system packages of a device user."""
    transport = BridgeTransport()
    try:
        dev = _select_device(transport, device)
        catalog = _load_catalog(catalog_path, remote)
        model = PackageModel.load(dev, catalog, transport)
    except DebloaterError as e:
        raise _fail(str(e))

    user_id = _resolve_user(dev, user)
    rows = filter_packages(model.packages(user_id), uad_list, state, removal, search)

    table = Table(title=f"{dev} - user {user_id} ({len(rows)} packages)")
    table.add_column("Package", style="cyan")
    table.add_column("State")
    table.add_column("List")
    table.add_column("Removal")
    for p in rows:
        style = _STATE_STYLES.get(p.state, "")
        table.add_row(
            p.name,
            f"[{style}]{p.state.value}[/]",
            p.catalog.list.value,
            p.removal.value,
        )
    console.print(table)


def _print_step(job: BatchJob, report: StepReport) -> None:
    prefix = f"[{job.completed}/{job.total}]"
    if report.skipped:
        console.print(f"[dim]{prefix} {report.name}: nothing to do[/]")
    elif report.success:
        console.print(f"[green]{prefix} {report.name} -> {report.target.value}[/]")
    else:
        console.print(f"[red]{prefix} {report.name}: {report.error}[/]")


@app.command()
def apply(
    names: Optional[list[str]] = typer.Argument(None, help="Package names"),
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Device serial"),
    user: Optional[int] = typer.Option(None, "--user", "-u", help="User id"),
    select_all: bool = typer.Option(
        False, "--all", help="Select every package matching the filters below"
    ),
    uad_list: UadList = typer.Option(UadList.ALL, "--list", help="Catalog list (with --all)"),
    state: PackageState = typer.Option(PackageState.ALL, "--state", help="Package state (with --all)"),
    removal: Removal = typer.Option(Removal.ALL, "--removal", help="Removal tier (with --all)"),
    search: str = typer.Option("", "--search", "-s", help="Substring of the name (with --all)"),
    from_file: Optional[Path] = typer.Option(
        None, "--from-file", help="Select the package names listed in a file"
    ),
    export: Optional[Path] = typer.Option(
        None, "--export", help="Write the selection to a file instead of applying it"
    ),
    expert: bool = typer.Option(False, "--expert", help="Allow Unsafe packages"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    catalog_path: Optional[Path] = typer.Option(None, "--catalog", help="Catalog JSON file"),
) -> None:
    """Toggle packages: remove (or disable) enabled ones, restore the others."""
    transport = BridgeTransport()
    try:
        dev = _select_device(transport, device)
        catalog = _load_catalog(catalog_path, remote=False)
        model = PackageModel.load(dev, catalog, transport)
    except DebloaterError as e:
        raise _fail(str(e))

    config = Config.load()
    settings = _settings(config, dev, expert)
    user_id = _resolve_user(dev, user)

    protected = [str(u.id) for u in dev.users if u.protected]
    if settings.multi_user_mode and protected:
        console.print(
            f"[yellow]Multi-user mode skips protected user(s): {', '.join(protected)}[/]"
        )

    selection = SelectionController(model, settings)
    if from_file is not None:
        try:
            selection.import_selection(from_file, user_id)
        except OSError as e:
            raise _fail(f"cannot read {from_file}: {e}")
    if select_all:
        rows = filter_packages(model.packages(user_id), uad_list, state, removal, search)
        selection.select_all(user_id, rows)
    for name in names or []:
        if model.get(user_id, name) is None:
            console.print(f"[yellow]{name} is not a system package of user {user_id}[/]")
        elif not selection.toggle(user_id, name, True):
            console.print(f"[yellow]{name} is Unsafe, use --expert to select it[/]")

    if export is not None:
        try:
            count = selection.export_selection(export, user_id)
        except OSError as e:
            raise _fail(f"cannot write {export}: {e}")
        console.print(f"[green]Exported {count} package(s) to {export}[/]")
        raise typer.Exit(0)

    executor = ActionExecutor(transport, dev, settings, model)
    controller = BatchController(
        executor,
        selection,
        refresh=lambda: model.refresh(catalog, transport),
        on_progress=_print_step,
    )
    targets = controller.targets()
    if not targets:
        raise _fail("nothing selected")

    counts = selection.counts(user_id)
    console.print(
        f"Selected: {counts.enabled} enabled, {counts.disabled} disabled, "
        f"{counts.uninstalled} uninstalled"
    )
    for package, target in targets:
        console.print(f"  {package.name}: {package.state.value} -> {target.value}")
    if not yes and not typer.confirm(f"Apply {len(targets)} change(s) to {dev}?"):
        raise typer.Exit(1)

    job = controller.run()
    failed = len(job.failures)
    console.print(f"\nDone: {job.completed - failed} ok, {failed} failed")
    raise typer.Exit(0 if failed == 0 else 1)


@app.command()
def backup(
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Device serial"),
    keep: int = typer.Option(0, "--keep", help="Keep only the N newest backups (0 = all)"),
) -> None:
    """Save the disabled and uninstalled packages of a device."""
    transport = BridgeTransport()
    store = BackupStore(backup_dir())
    try:
        dev = _select_device(transport, device)
        model = PackageModel.load(dev, Catalog.load(BUNDLED_CATALOG), transport)
        path = store.snapshot(dev, model)
        if keep > 0:
            store.prune(dev.serial, keep)
    except DebloaterError as e:
        raise _fail(str(e))
    console.print(f"[green]Backup saved to: {path}[/]")


@app.command("backups")
def list_backups(
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Device serial"),
) -> None:
    """List available backups."""
    store = BackupStore(backup_dir())
    paths = store.list(device)
    if not paths:
        console.print("[yellow]No backups found.[/]")
        raise typer.Exit(0)

    table = Table(title="Backups")
    table.add_column("Device", style="cyan")
    table.add_column("Backup", style="green")
    table.add_column("Users")
    table.add_column("Age")
    for path in paths:
        table.add_row(
            path.parent.name,
            path.stem,
            ", ".join(str(u) for u in store.users(path)),
            format_age(last_modified(path)),
        )
    console.print(table)


@app.command()
def restore(
    backup_file: Optional[Path] = typer.Argument(None, help="Backup file (default: latest)"),
    device: Optional[str] = typer.Option(None, "--device", "-d", help="Device serial"),
    user: Optional[int] = typer.Option(None, "--user", "-u", help="Only restore this user"),
    expert: bool = typer.Option(False, "--expert", help="Allow Unsafe packages"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Bring a device back to the state saved in a backup."""
    transport = BridgeTransport()
    store = BackupStore(backup_dir())
    try:
        dev = _select_device(transport, device)
        if backup_file is None:
            available = store.list(dev.serial)
            if not available:
                raise _fail(f"no backup for {dev.serial}")
            backup_file = available[-1]
        catalog = Catalog.load(BUNDLED_CATALOG)
        model = PackageModel.load(dev, catalog, transport)
        settings = _settings(Config.load(), dev, expert)
        steps = store.restore(dev, model, backup_file, selected_user=user, settings=settings)
    except DebloaterError as e:
        raise _fail(str(e))

    if not steps:
        console.print("[green]Device already matches the backup.[/]")
        raise typer.Exit(0)

    for step in steps:
        for command in step.commands:
            console.print(f"  {command}")
    if not yes and not typer.confirm(f"Run {len(steps) - 1} restore step(s) on {dev}?"):
        raise typer.Exit(1)

    executor = ActionExecutor(transport, dev, settings, model)
    try:
        results = store.replay(steps, executor, refresh=lambda: model.refresh(catalog, transport))
    except DebloaterError as e:
        raise _fail(str(e))
    failed = [step for step, result in results if not result.success]
    for step in failed:
        console.print(f"[red]Could not restore {step.name} for user {step.user_id}[/]")
    console.print(f"\nRestored {len(results) - len(failed)}/{len(results)} package(s)")
    raise typer.Exit(0 if not failed else 1)


_GENERAL_KEYS = {"theme", "expert_mode"}
_DEVICE_KEYS = {"disable_mode", "multi_user_mode"}


def _parse_bool(value: str) -> bool:
    if value.lower() in ("on", "true", "yes", "1"):
        return True
    if value.lower() in ("off", "false", "no", "0"):
        return False
    raise _fail(f"{value!r} is not a boolean (use on/off or true/false)")


@app.command()
def config(
    action: str = typer.Argument("get", help="Action: get or set"),
    key: Optional[str] = typer.Argument(None, help="Config key"),
    value: Optional[str] = typer.Argument(None, help="Value to set"),
    device: Optional[str] = typer.Option(
        None, "--device", "-d", help="Device serial for device settings"
    ),
) -> None:
    """View or modify configuration."""
    path = config_file_path()
    cfg = Config.load(path)
    valid_keys = _GENERAL_KEYS | (_DEVICE_KEYS if device else set())

    if action == "get":
        stored = cfg.device(device) if device else None
        values = {
            "theme": cfg.general.theme,
            "expert_mode": cfg.general.expert_mode,
        }
        if device:
            values["disable_mode"] = stored.disable_mode if stored else False
            values["multi_user_mode"] = stored.multi_user_mode if stored else False
        if key:
            if key not in values:
                raise _fail(f"Unknown config key: {key}")
            console.print(f"{key} = {values[key]}")
        else:
            for k, v in values.items():
                console.print(f"{k} = {v}")
    elif action == "set":
        if not key or value is None:
            raise _fail("Usage: uad config set <key> <value> [--device SERIAL]")
        if key not in valid_keys:
            raise _fail(
                f"Unknown config key: {key}. Valid keys: {', '.join(sorted(valid_keys))}"
            )
        if key == "theme":
            if value not in THEMES:
                raise _fail(f"Theme must be one of {', '.join(THEMES)}")
            cfg.general.theme = value
            cfg.save(path)
        elif key == "expert_mode":
            cfg.general.expert_mode = _parse_bool(value)
            cfg.save(path)
        else:
            stored = cfg.device(device)
            settings = Settings(
                theme=cfg.general.theme,
                expert_mode=cfg.general.expert_mode,
                disable_mode=stored.disable_mode if stored else False,
                multi_user_mode=stored.multi_user_mode if stored else False,
            )
            setattr(settings, key, _parse_bool(value))
            cfg.save_device(settings, device, path)
        console.print(f"[green]Set {key} = {value}[/]")
    else:
        raise _fail("Unknown action. Use 'get' or 'set'.")


@app.command()
def version() -> None:
    """Print version."""
    console.print(f"uad {debloater.__version__}")


if __name__ == "__main__":
    app()
