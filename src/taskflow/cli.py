"""Command-line interface for TaskFlow."""

import asyncio
import logging
import sys
from collections.abc import Callable
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Optional, TypeVar

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table

from taskflow import __version__
from taskflow.backup import export_backup, import_backup, read_backup
from taskflow.config import Config
from taskflow.dashboard import Dashboard, InvalidCredentialsError, TaskActionError
from taskflow.models import DAY_NAMES, SnapshotFormatError
from taskflow.remote import RemoteStoreClient
from taskflow.sync import SyncEngine, SyncHealth, SyncSetupError
from taskflow.utils import get_logger, setup_logging

T = TypeVar("T")

app = typer.Typer(help="Task tracking with business-hours efficiency reports")
users_app = typer.Typer(help="Manage accounts")
tasks_app = typer.Typer(help="Manage tasks")
schedule_app = typer.Typer(help="Manage business hours")
sync_app = typer.Typer(help="Synchronize with a shared remote document")
app.add_typer(users_app, name="users")
app.add_typer(tasks_app, name="tasks")
app.add_typer(schedule_app, name="schedule")
app.add_typer(sync_app, name="sync")

console = Console()
logger = get_logger(__name__)


@app.callback()
def _main(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging.",
    ),
    config_dir: Optional[Path] = typer.Option(
        None,
        "--config-dir",
        help="Configuration directory. Defaults to ~/.taskflow/",
    ),
) -> None:
    """Task tracking with business-hours efficiency reports."""
    setup_logging(
        log_level=logging.DEBUG if verbose else logging.INFO,
        config_dir=config_dir,
    )
    ctx.obj = Config(config_dir)


def _fail(message: str) -> typer.Exit:
    console.print(f"[red]{escape(message)}[/red]")
    return typer.Exit(code=1)


def _engine(config: Config, dashboard: Dashboard, remote: RemoteStoreClient) -> SyncEngine:
    return SyncEngine(
        dashboard,
        remote,
        poll_interval=config.settings.poll_interval,
        debounce_interval=config.settings.debounce_interval,
    )


def _remote(config: Config) -> RemoteStoreClient:
    return RemoteStoreClient(
        base_url=config.settings.remote_url,
        timeout=config.settings.request_timeout,
    )


async def _synced_mutation(config: Config, dashboard: Dashboard, action: Callable[[Dashboard], T]) -> T:
    async with _remote(config) as remote:
        engine = _engine(config, dashboard, remote)
        try:
            await engine.pull()
            result = action(dashboard)
            if not await engine.flush():
                error = escape(engine.last_error or "")
                console.print(f"[yellow]Saved locally; remote update failed: {error}[/yellow]")
            return result
        finally:
            await engine.close()


def _mutate(config: Config, action: Callable[[Dashboard], T]) -> T:
    """Apply a change, pulling before and pushing after when sync is on."""
    dashboard = Dashboard(config.storage)
    try:
        if config.storage.get_sync_id():
            return asyncio.run(_synced_mutation(config, dashboard, action))
        return action(dashboard)
    except TaskActionError as e:
        raise _fail(str(e))


def _parse_day(value: str) -> int:
    if value.isdigit() and int(value) in range(7):
        return int(value)
    for index, name in enumerate(DAY_NAMES):
        if name.lower().startswith(value.lower()) and len(value) >= 2:
            return index
    raise _fail(f"Unknown day {value!r}; use 0-6 (0=Sunday) or a day name")


def _format_ms(value: int | None, tz: tzinfo) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value / 1000, tz=tz).strftime("%Y-%m-%d %H:%M")


@app.command()
def configure(
    ctx: typer.Context,
    remote_url: Optional[str] = typer.Option(None, "--remote-url", help="Remote document store URL."),
    timezone: Optional[str] = typer.Option(None, "--timezone", help="IANA zone for business hours."),
    poll_interval: Optional[float] = typer.Option(None, "--poll-interval", help="Seconds between pulls."),
    debounce_interval: Optional[float] = typer.Option(
        None, "--debounce-interval", help="Quiet seconds before a push."
    ),
) -> None:
    """Configure remote store, time zone and sync timing."""
    config: Config = ctx.obj
    changes = {
        key: value
        for key, value in {
            "remote_url": remote_url,
            "timezone": timezone,
            "poll_interval": poll_interval,
            "debounce_interval": debounce_interval,
        }.items()
        if value is not None
    }

    if not changes:
        current = config.settings
        console.print("[bold cyan]TaskFlow Configuration[/bold cyan]")
        changes = {
            "remote_url": Prompt.ask("Remote document store URL", default=current.remote_url),
            "timezone": Prompt.ask("Time zone for business hours", default=current.timezone),
        }

    try:
        settings = config.update(**changes)
    except ValidationError as e:
        raise _fail(f"Invalid configuration: {e.errors()[0]['msg']}")

    console.print("[green]✓ Configuration saved[/green]")
    for key, value in settings.model_dump().items():
        console.print(f"  {key}: {value}")


@app.command()
def login(
    ctx: typer.Context,
    username: str = typer.Argument(..., help="Account username."),
    password: Optional[str] = typer.Option(None, "--password", help="Password. Prompted if omitted."),
) -> None:
    """Check account credentials."""
    dashboard = Dashboard(ctx.obj.storage)
    if password is None:
        password = Prompt.ask("Password", password=True)

    try:
        user = dashboard.login(username, password)
    except InvalidCredentialsError as e:
        raise _fail(str(e))

    visible = dashboard.tasks_for(user)
    console.print(f"[green]Welcome, {user.name}[/green] ({user.role})")
    for status in ("pending", "accepted", "completed"):
        count = sum(1 for task in visible if task.status == status)
        console.print(f"  {status}: {count}")


@users_app.command("add")
def users_add(
    ctx: typer.Context,
    username: str = typer.Argument(..., help="Login name."),
    name: str = typer.Option(..., "--name", help="Display name."),
    password: Optional[str] = typer.Option(None, "--password", help="Password. Prompted if omitted."),
    admin: bool = typer.Option(False, "--admin", help="Create an administrator."),
) -> None:
    """Add an account."""
    if password is None:
        password = Prompt.ask("Password", password=True)

    user = _mutate(
        ctx.obj,
        lambda d: d.add_user(name=name, username=username, password=password, role="admin" if admin else "user"),
    )
    console.print(f"[green]✓ Added {user.role} {user.username}[/green] ({user.id})")


@users_app.command("list")
def users_list(ctx: typer.Context) -> None:
    """List accounts."""
    dashboard = Dashboard(ctx.obj.storage)

    table = Table(title="Team")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Username", style="magenta")
    table.add_column("Role", style="yellow")
    for user in dashboard.state.users:
        table.add_row(user.id, user.name, user.username, user.role)

    console.print(table)


@tasks_app.command("add")
def tasks_add(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Task title."),
    assignee: str = typer.Option(..., "--assignee", "-a", help="Assignee username or ID."),
    hours: float = typer.Option(1.0, "--hours", help="Estimated hours."),
    description: str = typer.Option("", "--description", "-d", help="Task description."),
) -> None:
    """Create a task."""
    task = _mutate(
        ctx.obj,
        lambda d: d.create_task(title=title, assigned_to=assignee, estimated_hours=hours, description=description),
    )
    console.print(f"[green]✓ Created task {task.id}[/green]")


@tasks_app.command("list")
def tasks_list(
    ctx: typer.Context,
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Only tasks visible to this username."),
) -> None:
    """List tasks."""
    dashboard = Dashboard(ctx.obj.storage)
    if user:
        try:
            tasks = dashboard.tasks_for(dashboard.get_user(user))
        except TaskActionError as e:
            raise _fail(str(e))
    else:
        tasks = dashboard.state.tasks

    tz = ctx.obj.settings.tzinfo
    names = {u.id: u.name for u in dashboard.state.users}
    table = Table(title="Tasks")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="cyan")
    table.add_column("Assignee", style="magenta")
    table.add_column("Status", style="yellow")
    table.add_column("Est. h", justify="right")
    table.add_column("Accepted")
    table.add_column("Completed")
    table.add_column("Notes", justify="right")
    for task in tasks:
        table.add_row(
            task.id,
            task.title,
            names.get(task.assigned_to, task.assigned_to),
            task.status,
            f"{task.estimated_hours:g}",
            _format_ms(task.accepted_at, tz),
            _format_ms(task.completed_at, tz),
            str(len(task.notes)),
        )

    console.print(table)


@tasks_app.command("accept")
def tasks_accept(ctx: typer.Context, task_id: str = typer.Argument(..., help="Task ID.")) -> None:
    """Start work on a task."""
    _mutate(ctx.obj, lambda d: d.accept_task(task_id))
    console.print("[green]✓ Task accepted[/green]")


@tasks_app.command("note")
def tasks_note(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID."),
    text: str = typer.Argument(..., help="Progress note."),
) -> None:
    """Add a progress note."""
    _mutate(ctx.obj, lambda d: d.add_note(task_id, text))
    console.print("[green]✓ Note saved[/green]")


@tasks_app.command("complete")
def tasks_complete(ctx: typer.Context, task_id: str = typer.Argument(..., help="Task ID.")) -> None:
    """Finish a task (requires at least one note)."""
    _mutate(ctx.obj, lambda d: d.complete_task(task_id))
    console.print("[green]✓ Task completed[/green]")


@tasks_app.command("delete")
def tasks_delete(ctx: typer.Context, task_id: str = typer.Argument(..., help="Task ID.")) -> None:
    """Delete a task."""
    _mutate(ctx.obj, lambda d: d.delete_task(task_id))
    console.print("[green]✓ Task deleted[/green]")


@schedule_app.command("show")
def schedule_show(ctx: typer.Context) -> None:
    """Show business hours."""
    dashboard = Dashboard(ctx.obj.storage)

    table = Table(title=f"Business Hours ({ctx.obj.settings.timezone})")
    table.add_column("Day", style="cyan")
    table.add_column("Active", style="yellow")
    table.add_column("Start", style="magenta")
    table.add_column("End", style="magenta")
    for day, entry in sorted(dashboard.state.schedule.items()):
        table.add_row(DAY_NAMES[day], "yes" if entry.active else "no", entry.start, entry.end)

    console.print(table)


@schedule_app.command("set")
def schedule_set(
    ctx: typer.Context,
    day: str = typer.Argument(..., help="Day: 0-6 (0=Sunday) or name."),
    start: str = typer.Option("09:00", "--start", help="Opening time, HH:MM."),
    end: str = typer.Option("17:00", "--end", help="Closing time, HH:MM."),
    active: bool = typer.Option(True, "--active/--inactive", help="Whether the day has business hours."),
) -> None:
    """Set business hours for one day."""
    index = _parse_day(day)
    _mutate(ctx.obj, lambda d: d.set_day_schedule(index, active, start, end))
    console.print(f"[green]✓ {DAY_NAMES[index]} updated[/green]")


@app.command()
def report(ctx: typer.Context) -> None:
    """Show the team efficiency report."""
    config: Config = ctx.obj
    dashboard = Dashboard(config.storage)
    rows = dashboard.efficiency_report(config.settings.tzinfo)

    if not rows:
        console.print("[yellow]No team members to report on.[/yellow]")
        return

    table = Table(title="Team Efficiency")
    table.add_column("Member", style="cyan")
    table.add_column("Tasks", justify="right")
    table.add_column("Estimated h", justify="right")
    table.add_column("Actual h", justify="right")
    table.add_column("Efficiency", justify="right")
    for row in rows:
        color = "green" if row.efficiency > 80 else "blue" if row.efficiency > 50 else "yellow"
        table.add_row(
            row.name,
            str(row.tasks_counted),
            f"{row.estimated_hours:.2f}",
            f"{row.actual_hours:.2f}",
            f"[{color}]{row.efficiency}%[/{color}]",
        )

    console.print(table)


@sync_app.command("enable")
def sync_enable(
    ctx: typer.Context,
    sync_id: Optional[str] = typer.Option(
        None,
        "--id",
        help="Join an existing document (ID or URL). Creates a new one if omitted.",
    ),
) -> None:
    """Turn on synchronization."""
    config: Config = ctx.obj
    dashboard = Dashboard(config.storage)
    before = dashboard.snapshot()

    async def _enable() -> tuple[str, str | None]:
        async with _remote(config) as remote:
            engine = _engine(config, dashboard, remote)
            try:
                document_id = await engine.enable(sync_id)
                if sync_id:
                    await engine.pull()
                return document_id, engine.last_error
            finally:
                await engine.close()

    try:
        document_id, error = asyncio.run(_enable())
    except (SyncSetupError, ValueError) as e:
        raise _fail(str(e))

    console.print(f"[green]✓ Synchronization enabled[/green] (document {document_id})")
    if error:
        console.print(f"[yellow]Could not read the shared copy yet: {escape(error)}[/yellow]")
    elif dashboard.snapshot() != before:
        console.print("Local data replaced with the shared copy.")
    if not sync_id:
        console.print(f"Share this identifier with your team: [bold]{document_id}[/bold]")


@sync_app.command("disable")
def sync_disable(ctx: typer.Context) -> None:
    """Turn off synchronization; local data is kept."""
    config: Config = ctx.obj
    dashboard = Dashboard(config.storage)

    async def _disable() -> None:
        async with _remote(config) as remote:
            engine = _engine(config, dashboard, remote)
            await engine.disable()
            await engine.close()

    asyncio.run(_disable())
    console.print("[green]✓ Synchronization disabled[/green]")


@sync_app.command("status")
def sync_status(ctx: typer.Context) -> None:
    """Show synchronization status."""
    storage = ctx.obj.storage
    sync_id = storage.get_sync_id()
    last_sync = storage.get_last_sync_date()
    health, error = storage.get_sync_health()

    if not sync_id:
        console.print("Synchronization: [yellow]disabled[/yellow]")
        return
    console.print("Synchronization: [green]enabled[/green]")
    console.print(f"  Document:  {sync_id}")
    console.print(f"  Last sync: {last_sync.isoformat() if last_sync else 'never'}")
    color = {SyncHealth.HEALTHY.value: "green", SyncHealth.DEGRADED.value: "red"}.get(health, "yellow")
    console.print(f"  Health:    [{color}]{health or SyncHealth.UNKNOWN.value}[/{color}]")
    if error:
        console.print(f"  Last error: {escape(error)}")


def _run_once(config: Config, operation: str) -> None:
    if not config.storage.get_sync_id():
        raise _fail("Synchronization is disabled. Run: taskflow sync enable")

    dashboard = Dashboard(config.storage)

    async def _run() -> tuple[bool, SyncHealth, str | None]:
        async with _remote(config) as remote:
            engine = _engine(config, dashboard, remote)
            try:
                result = await (engine.pull() if operation == "pull" else engine.push())
                return result, engine.health, engine.last_error
            finally:
                await engine.close()

    result, health, error = asyncio.run(_run())
    if health == SyncHealth.DEGRADED:
        raise _fail(f"Sync {operation} failed: {error}")
    if operation == "pull":
        console.print("[green]✓ Local data updated[/green]" if result else "Already up to date.")
    else:
        console.print("[green]✓ Snapshot pushed[/green]")


@sync_app.command("pull")
def sync_pull(ctx: typer.Context) -> None:
    """Fetch the shared copy now."""
    _run_once(ctx.obj, "pull")


@sync_app.command("push")
def sync_push(ctx: typer.Context) -> None:
    """Overwrite the shared copy with local data now."""
    _run_once(ctx.obj, "push")


@sync_app.command("watch")
def sync_watch(ctx: typer.Context) -> None:
    """Keep polling the shared copy until interrupted."""
    config: Config = ctx.obj
    if not config.storage.get_sync_id():
        raise _fail("Synchronization is disabled. Run: taskflow sync enable")

    dashboard = Dashboard(config.storage)

    async def _watch() -> None:
        async with _remote(config) as remote:
            engine = _engine(config, dashboard, remote)
            engine.start()
            console.print(
                f"Watching document {engine.sync_id} every {engine.poll_interval:g}s (Ctrl+C to stop)"
            )
            try:
                await asyncio.Event().wait()
            finally:
                await engine.close()

    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped watching[/yellow]")


@app.command("export")
def export_command(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Destination JSON file."),
) -> None:
    """Export all data to a backup file."""
    dashboard = Dashboard(ctx.obj.storage)
    export_backup(dashboard, path)
    console.print(f"[green]✓ Exported to {path}[/green]")


@app.command("import")
def import_command(
    ctx: typer.Context,
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Backup JSON file."),
) -> None:
    """Replace all data with a backup file."""
    config: Config = ctx.obj
    try:
        snapshot, sync_id = read_backup(path)
    except SnapshotFormatError as e:
        raise _fail(f"Import rejected: {e}")

    if sync_id and not config.storage.get_sync_id():
        config.storage.set_sync_id(sync_id)
        console.print(f"Adopted sync document {sync_id} from the backup.")

    try:
        _mutate(config, lambda d: import_backup(d, path))
    except SnapshotFormatError as e:
        raise _fail(f"Import rejected: {e}")
    console.print(f"[green]✓ Imported {len(snapshot.users)} users and {len(snapshot.tasks)} tasks[/green]")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"TaskFlow v{__version__}")


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        console.print(f"[red]Unexpected error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
