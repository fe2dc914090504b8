"""CLI commands for clientpulse."""

import asyncio
import sys
from typing import Awaitable, Callable, TypeVar

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from clientpulse import __logo__, __version__

app = typer.Typer(
    name="clientpulse",
    help=f"{__logo__} clientpulse - Scheduled client reminders",
    no_args_is_help=True,
)
client_app = typer.Typer(help="Manage clients", no_args_is_help=True)
reminder_app = typer.Typer(help="Manage reminders", no_args_is_help=True)
app.add_typer(client_app, name="client")
app.add_typer(reminder_app, name="reminder")

console = Console()

T = TypeVar("T")


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} clientpulse v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """clientpulse - Scheduled client reminders."""
    pass


def _configure_logging(verbose: bool, default_level: str = "WARNING") -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else default_level)


def _with_service(fn: Callable[..., Awaitable[T]]) -> T:
    """Build a service from config, run fn(service), always shut it down."""
    from clientpulse.config.loader import load_config
    from clientpulse.reminders.gateway import build_gateway
    from clientpulse.reminders.service import ReminderService
    from clientpulse.reminders.storage import build_store

    config = load_config()

    async def run() -> T:
        service = ReminderService(build_store(config), build_gateway(config), config=config)
        try:
            return await fn(service)
        finally:
            await service.stop()

    return asyncio.run(run())


def _fail(message: str) -> None:
    console.print(f"[red]Error: {message}[/red]")
    raise typer.Exit(1)


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """Initialize clientpulse configuration and data directory."""
    from clientpulse.config.loader import get_config_path, save_config
    from clientpulse.config.schema import Config
    from clientpulse.utils.helpers import get_store_path

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    save_config(config)
    console.print(f"[green]✓[/green] Created config at {config_path}")
    console.print(f"[green]✓[/green] Store will be kept at {get_store_path()}")

    console.print(f"\n{__logo__} clientpulse is ready!")
    console.print("\nNext steps:")
    console.print("  1. Configure mail under [cyan]mail.smtp[/cyan] in the config file")
    console.print("  2. Add a client: [cyan]clientpulse client add \"Ada\" ada@example.com[/cyan]")
    console.print("  3. Start the engine: [cyan]clientpulse serve[/cyan]")


# ============================================================================
# Serve
# ============================================================================


@app.command()
def serve(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Run the scheduler and reconciliation poller until interrupted."""
    from clientpulse.config.loader import load_config
    from clientpulse.reminders.gateway import build_gateway
    from clientpulse.reminders.service import ReminderService
    from clientpulse.reminders.storage import build_store

    _configure_logging(verbose, default_level="INFO")
    config = load_config()

    try:
        gateway = build_gateway(config)
    except ValueError as e:
        _fail(str(e))

    service = ReminderService(build_store(config), gateway, config=config)
    console.print(f"{__logo__} Starting clientpulse (transport: {gateway.name})...")
    console.print(
        f"[green]✓[/green] Poll every {config.scheduler.poll_interval_s:.0f}s, "
        f"horizon {config.scheduler.horizon_s / 3600:.0f}h"
    )

    async def run():
        await service.start()
        try:
            await asyncio.Event().wait()
        finally:
            await service.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\nShutting down...")


# ============================================================================
# Clients
# ============================================================================


@client_app.command("add")
def client_add(
    name: str = typer.Argument(..., help="Client name"),
    email: str = typer.Argument(..., help="Client email address"),
    phone: str = typer.Option("", "--phone", help="Phone number"),
    notes: str = typer.Option("", "--notes", help="Free-form notes"),
):
    """Add a client."""
    from clientpulse.reminders.errors import ReminderError

    _configure_logging(False)
    try:
        client = _with_service(lambda s: s.add_client(name, email, phone, notes))
    except ReminderError as e:
        _fail(str(e))
    console.print(f"[green]✓[/green] Added client {client.name} ({client.id})")


@client_app.command("list")
def client_list():
    """List clients."""
    _configure_logging(False)
    clients = _with_service(lambda s: s.list_clients())

    if not clients:
        console.print("No clients.")
        return

    table = Table(title="Clients")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Email")
    table.add_column("Phone")
    for c in clients:
        table.add_row(c.id, c.name, c.email, c.phone)
    console.print(table)


# ============================================================================
# Reminders
# ============================================================================


@reminder_app.command("add")
def reminder_add(
    client_id: str = typer.Argument(..., help="Client ID"),
    fire_at: str = typer.Argument(..., help="ISO-8601 time, e.g. 2026-03-01T09:00:00Z"),
    message: str = typer.Argument(..., help="Reminder text"),
    repeat: str = typer.Option("none", "--repeat", "-r", help="none, daily or weekly"),
):
    """Schedule a reminder."""
    from clientpulse.reminders.errors import ReminderError

    _configure_logging(False)
    try:
        reminder = _with_service(
            lambda s: s.create_reminder(client_id, fire_at, message, repeat)
        )
    except ReminderError as e:
        _fail(str(e))
    console.print(
        f"[green]✓[/green] Scheduled {reminder.id} at {reminder.fire_at.isoformat()} "
        f"(repeat: {reminder.repeat})"
    )


@reminder_app.command("list")
def reminder_list(
    all: bool = typer.Option(False, "--all", "-a", help="Include sent/failed/cancelled"),
):
    """List reminders."""
    _configure_logging(False)
    reminders = _with_service(lambda s: s.list_reminders())
    if not all:
        reminders = [r for r in reminders if r.status == "scheduled"]

    if not reminders:
        console.print("No reminders.")
        return

    table = Table(title="Reminders")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Client")
    table.add_column("Fire at")
    table.add_column("Repeat")
    table.add_column("Status")
    table.add_column("Last sent")
    for r in reminders:
        status_style = {"sent": "green", "failed": "red", "cancelled": "dim"}.get(r.status, "")
        table.add_row(
            r.id,
            r.client_id,
            r.fire_at.strftime("%Y-%m-%d %H:%M:%S UTC"),
            r.repeat,
            f"[{status_style}]{r.status}[/{status_style}]" if status_style else r.status,
            r.last_sent_at.strftime("%Y-%m-%d %H:%M") if r.last_sent_at else "",
        )
    console.print(table)


@reminder_app.command("run-now")
def reminder_run_now(
    reminder_id: str = typer.Argument(..., help="Reminder ID"),
):
    """Deliver a reminder immediately."""
    from clientpulse.reminders.errors import ReminderError

    _configure_logging(False)
    try:
        _with_service(lambda s: s.run_now(reminder_id))
    except ReminderError as e:
        _fail(str(e))
    console.print(f"[green]✓[/green] Sent {reminder_id}")


@reminder_app.command("cancel")
def reminder_cancel(
    reminder_id: str = typer.Argument(..., help="Reminder ID"),
):
    """Cancel a scheduled reminder."""
    from clientpulse.reminders.errors import ReminderError

    _configure_logging(False)
    try:
        _with_service(lambda s: s.cancel_reminder(reminder_id))
    except ReminderError as e:
        _fail(str(e))
    console.print(f"[green]✓[/green] Cancelled {reminder_id}")


# ============================================================================
# System Commands
# ============================================================================


@app.command()
def logs(
    limit: int = typer.Option(50, "--limit", "-n", help="Number of entries"),
):
    """Show the most recent audit log entries."""
    _configure_logging(False)
    entries = _with_service(lambda s: s.list_logs(limit))

    if not entries:
        console.print("No log entries.")
        return

    table = Table(title="Audit log")
    table.add_column("Time", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("Detail")
    for e in entries:
        table.add_row(e.timestamp.strftime("%Y-%m-%d %H:%M:%S"), e.type, e.detail)
    console.print(table)


@app.command()
def status():
    """Check clientpulse status and configuration."""
    from clientpulse.config.loader import get_config_path, load_config
    from clientpulse.utils.helpers import get_store_path

    config_path = get_config_path()
    config = load_config()

    console.print(f"{__logo__} [bold]clientpulse status[/bold]")
    console.print(f"Version: {__version__}")
    console.print(
        f"Config: {config_path}" + ("" if config_path.exists() else " [dim](defaults)[/dim]")
    )

    table = Table(title="Configuration Summary")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    if config.storage.backend == "json":
        table.add_row("Store", f"json ({get_store_path(config.storage.path or None)})")
    else:
        table.add_row("Store", "[yellow]memory (not durable)[/yellow]")
    table.add_row("Transport", config.active_transport)
    table.add_row("Poll interval", f"{config.scheduler.poll_interval_s:.0f}s")
    table.add_row("Due window", f"±{config.scheduler.due_window_s:.0f}s")
    table.add_row("Horizon", f"{config.scheduler.horizon_s / 3600:.1f}h")
    table.add_row("Send timeout", f"{config.scheduler.send_timeout_s:.0f}s")
    table.add_row("Deliver missed", "yes" if config.scheduler.deliver_missed else "no")
    table.add_row("Recurrence timezone", config.reminders.timezone)
    ceiling = config.reminders.max_ahead_days
    table.add_row("Max ahead", f"{ceiling} days" if ceiling else "[dim]unbounded[/dim]")

    console.print(table)


if __name__ == "__main__":
    app()
