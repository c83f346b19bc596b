import time
from pathlib import Path
from typing import Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from handoff_sync.clock import SystemClock
from handoff_sync.config import LockSettings
from handoff_sync.db import (
    create_connection,
    initialize_meta,
    install_sync_tracking,
    SyncTableSpec,
)
from handoff_sync.errors import ForceUnlockError, SyncError
from handoff_sync.identity import load_or_create_machine_id
from handoff_sync.lock import LockCoordinator, partition_locks, scan_locks
from handoff_sync.merge import Resolution, analyze_tables, apply
from handoff_sync.metrics import configure_logging
from handoff_sync.store import LocalFolderStore

app = typer.Typer(help="Single-writer handoff for SQLite files in a shared folder")
lock_app = typer.Typer(help="Inspect and manage the folder lock")
app.add_typer(lock_app, name="lock")

console = Console()
T = TypeVar("T")
DEFAULT_MACHINE_ID_FILE = Path.home() / ".handoff-sync" / "machine-id"

MachineIdOption = typer.Option(
    DEFAULT_MACHINE_ID_FILE, "--machine-id-file", help="Where this client's machine id is kept"
)


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Log level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
):
    """Configure logging for every command."""
    configure_logging(level=log_level, json_format=json_logs)


def parse_table_option(value: str) -> SyncTableSpec:
    """NAME or NAME:key1,key2"""
    name, _, keys = value.partition(":")
    natural_key = tuple(k.strip() for k in keys.split(",") if k.strip())
    return SyncTableSpec(name.strip(), natural_key)


def _coordinator(folder: Path, user: str, machine_id_file: Path) -> LockCoordinator:
    folder.mkdir(parents=True, exist_ok=True)
    return LockCoordinator(
        LocalFolderStore(folder),
        user=user,
        machine_id=load_or_create_machine_id(machine_id_file),
        settings=LockSettings.from_env(),
    )


def _holding_lock(coordinator: LockCoordinator, write: Callable[[], T]) -> T:
    """Run write() only while we verifiably own the lock."""
    result = coordinator.acquire()
    if not result.granted:
        console.print(f"[yellow]Not writing: lock held by {result.held_by or 'unknown'}[/yellow]")
        raise typer.Exit(code=1)
    try:
        if not coordinator.verify():
            console.print(f"[red]Lock lost to {coordinator.yielded_to or 'another client'}[/red]")
            raise typer.Exit(code=1)
        return write()
    finally:
        # A lock taken earlier with "lock acquire --no-hold" stays in place
        if result.reason == "adopted":
            coordinator.stop()
        else:
            coordinator.release()


@app.command()
def init(
    db_path: str = typer.Argument(..., help="Path to SQLite database"),
    tables: Optional[list[str]] = typer.Option(
        None, "--table", "-t", help="Table to track, as NAME or NAME:key1,key2"
    ),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Email recorded as modified_by"),
):
    """Initialize sync metadata and install tracking on tables."""
    conn = create_connection(db_path)
    try:
        sync_uuid = initialize_meta(conn, user_email=user)
        console.print(f"[green]Initialized {db_path}[/green]")
        console.print(f"Sync UUID: {sync_uuid}")
        for value in tables or []:
            spec = parse_table_option(value)
            install_sync_tracking(conn, spec)
            console.print(f"Tracking enabled for table: {spec.name}")
    except SyncError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    finally:
        conn.close()


@lock_app.command("status")
def lock_status(folder: Path = typer.Argument(..., help="Shared lock folder")):
    """List lock files and who holds the lock."""
    store = LocalFolderStore(folder)
    settings = LockSettings.from_env()
    try:
        locks = scan_locks(store)
    except SyncError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    valid, stale = partition_locks(locks, SystemClock().now(), settings.stale_threshold)
    if not locks:
        console.print("[green]Unlocked[/green]")
        return

    table = Table(title="Lock Files")
    table.add_column("Name", style="cyan")
    table.add_column("Owner", style="magenta")
    table.add_column("Last Heartbeat")
    table.add_column("State")
    for lock in locks:
        state = "stale" if lock in stale else "valid"
        table.add_row(lock.name, lock.owner, lock.last_heartbeat.isoformat(), state)
    console.print(table)

    if valid:
        console.print(f"Held by [bold]{valid[0].owner}[/bold]")
    else:
        console.print("[yellow]Only stale locks; the next acquire will reclaim them[/yellow]")


@lock_app.command("acquire")
def lock_acquire(
    folder: Path = typer.Argument(..., help="Shared lock folder"),
    user: str = typer.Option(..., "--user", "-u", help="Who is taking the lock"),
    hold: bool = typer.Option(True, "--hold/--no-hold", help="Keep heartbeating until Ctrl+C"),
    machine_id_file: Path = MachineIdOption,
):
    """Take the lock, then hold it until interrupted."""
    coordinator = _coordinator(folder, user, machine_id_file)
    result = coordinator.acquire()
    if not result.granted:
        console.print(f"[yellow]Lock not acquired: held by {result.held_by or 'unknown'}[/yellow]")
        raise typer.Exit(code=1)

    console.print(f"[green]Lock acquired:[/green] {result.lock_name}")
    if not hold:
        coordinator.stop()
        return

    console.print("Holding lock. Press Ctrl+C to release.")
    try:
        while True:
            time.sleep(coordinator.settings.heartbeat_interval)
            if not coordinator.verify():
                console.print(f"[red]Lock lost to {coordinator.yielded_to or 'another client'}[/red]")
                raise typer.Exit(code=1)
    except KeyboardInterrupt:
        pass
    finally:
        coordinator.release()
    console.print("[green]Lock released[/green]")


@lock_app.command("release")
def lock_release(
    folder: Path = typer.Argument(..., help="Shared lock folder"),
    machine_id_file: Path = MachineIdOption,
):
    """Delete every lock file this machine left behind, valid or stale."""
    store = LocalFolderStore(folder)
    machine_id = load_or_create_machine_id(machine_id_file)
    try:
        own = [lock for lock in scan_locks(store) if lock.machine_id == machine_id]
        for lock in own:
            store.delete_entry(lock.name)
    except SyncError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    if not own:
        console.print("[yellow]This machine holds no lock[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]Lock released[/green] ({len(own)} file(s) removed)")


@lock_app.command("force-unlock")
def lock_force_unlock(
    folder: Path = typer.Argument(..., help="Shared lock folder"),
    user: str = typer.Option("admin", "--user", "-u", help="Who is forcing the unlock"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    machine_id_file: Path = MachineIdOption,
):
    """Delete every lock file. Other editors lose their lock."""
    if not yes:
        typer.confirm("This revokes other users' editing sessions. Continue?", abort=True)
    coordinator = _coordinator(folder, user, machine_id_file)
    try:
        deleted = coordinator.force_unlock()
    except ForceUnlockError as e:
        console.print(f"[red]{e.message}[/red]")
        for name in e.remaining:
            console.print(f"  {name}")
        raise typer.Exit(code=1)
    console.print(f"[green]Removed {len(deleted)} lock file(s)[/green]")


@app.command()
def merge(
    mine_path: str = typer.Argument(..., help="Our database copy"),
    theirs_path: str = typer.Argument(..., help="Their database copy"),
    keep_theirs: Optional[list[str]] = typer.Option(
        None, "--keep-theirs", help="Table to take from their copy"
    ),
    do_apply: bool = typer.Option(False, "--apply", help="Write the chosen tables into our copy"),
    lock_folder: Optional[Path] = typer.Option(
        None, "--lock-folder", help="Hold this folder's lock while applying"
    ),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Who is merging (with --lock-folder)"),
    machine_id_file: Path = MachineIdOption,
):
    """Compare two copies table by table and optionally merge."""
    if lock_folder is not None and not user:
        console.print("[red]--user is required with --lock-folder[/red]")
        raise typer.Exit(code=1)

    mine = create_connection(mine_path)
    theirs = create_connection(theirs_path)
    try:
        report = analyze_tables(mine, theirs)

        if report.diffs:
            table = Table(title="Tables With Differences")
            table.add_column("Table", style="cyan")
            table.add_column("Mine", justify="right")
            table.add_column("Theirs", justify="right")
            table.add_column("Kind")
            table.add_column("Only in mine")
            table.add_column("Only in theirs")
            for diff in report.diffs:
                table.add_row(
                    diff.label,
                    str(diff.my_count),
                    str(diff.their_count),
                    diff.kind.value,
                    "\n".join(diff.mine_only_sample),
                    "\n".join(diff.theirs_only_sample),
                )
            console.print(table)
        else:
            console.print("[green]No differences detected[/green]")
        console.print(report.summary())
        for name in report.skipped:
            console.print(f"[yellow]Skipped {name}[/yellow]")

        unknown = [t for t in keep_theirs or [] if report.get(t) is None]
        for name in unknown:
            console.print(f"[yellow]{name} has no differences; nothing to take[/yellow]")

        if do_apply:
            resolutions = {t: Resolution.KEEP_THEIRS for t in keep_theirs or []}
            if lock_folder is None:
                replaced = apply(mine, theirs, report.diffs, resolutions)
            else:
                coordinator = _coordinator(lock_folder, user, machine_id_file)
                replaced = _holding_lock(
                    coordinator, lambda: apply(mine, theirs, report.diffs, resolutions)
                )
            console.print(f"[green]Replaced {len(replaced)} table(s)[/green]")
            for name in replaced:
                console.print(f"  {name}")
    except SyncError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    finally:
        mine.close()
        theirs.close()


if __name__ == "__main__":
    app()
