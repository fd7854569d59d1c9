"""
Main CLI application using Typer.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, List, Optional

import pendulum
import typer
from pendulum import DateTime
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..adapters.console_mailer import ConsoleMailer
from ..adapters.graph_authenticator import GraphAuthenticator
from ..adapters.graph_mailer import GraphMailer
from ..adapters.memory_ledger import InMemoryCreditLedger
from ..adapters.memory_store import InMemoryStudioStore
from ..adapters.seed_data import StudioDataset, load_dataset, save_dataset
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import SchedulingConflict, SchedulingError
from ..domain.models import RecurrencePattern, Session, SessionStatus, SessionType, SlotStatus
from ..services.notifications import BookingNotifier
from ..services.scheduling import SchedulingEngine
from ..services.schemas import SessionCreate, SessionQuery

app = typer.Typer(
    name="studioscheduler",
    help="Book studio sessions, check conflicts and manage session credit",
    add_completion=False
)

console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]
DataOption = Annotated[
    Optional[Path],
    typer.Option("--data", help="Studio data file (YAML or JSON). Defaults to data_file from the config"),
]
TenantOption = Annotated[
    Optional[str],
    typer.Option("--tenant", help="Tenant id. Defaults to the data file's tenantId"),
]


@dataclass
class CliContext:
    config: AppConfig
    data_path: Path
    tenant_id: str
    store: InMemoryStudioStore
    ledger: InMemoryCreditLedger
    engine: SchedulingEngine

    def timezone_for(self, studio_id: str) -> str:
        studio = self.store.studios.get(studio_id)
        if studio is not None and studio.timezone:
            return studio.timezone
        return self.config.scheduling.timezone

    def save(self) -> None:
        dataset = StudioDataset.capture(self.store, self.ledger, tenant_id=self.tenant_id)
        save_dataset(dataset, self.data_path)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load_config(config_file: Optional[Path]) -> AppConfig:
    """Load the given config file, or the default one when it exists."""
    if config_file is not None:
        return AppConfig.load_from_yaml(config_file)

    default_path = get_default_config_path()
    if default_path.exists():
        return AppConfig.load_from_yaml(default_path)
    return AppConfig()


def _build_notifier(config: AppConfig) -> BookingNotifier:
    if config.mail.enabled:
        mailer = GraphMailer(
            GraphAuthenticator.from_config(config.mail),
            sender=config.mail.sender,
        )
    else:
        mailer = ConsoleMailer(console)
    return BookingNotifier(
        mailer,
        retries=config.mail.retries,
        backoff_seconds=config.mail.retry_backoff_seconds,
    )


def _open(config_file: Optional[Path], data_file: Optional[Path], tenant: Optional[str]) -> CliContext:
    config = _load_config(config_file)
    _configure_logging(config.log_level)

    data_path = data_file or config.data_file
    if data_path is None:
        raise FileNotFoundError(
            "No data file given. Pass --data or set data_file in config.yaml "
            "(see data/example_studio.yaml)."
        )

    dataset = load_dataset(data_path)
    store, ledger = dataset.build()
    engine = SchedulingEngine(
        sessions=store,
        resources=store,
        clients=store,
        ledger=ledger,
        tenants=store,
        notifier=_build_notifier(config),
        settings=config.scheduling,
    )
    return CliContext(
        config=config,
        data_path=data_path,
        tenant_id=tenant or dataset.tenant_id,
        store=store,
        ledger=ledger,
        engine=engine,
    )


def _parse_time(value: str, tz: str) -> DateTime:
    """Parse an ISO timestamp; values without an offset are studio-local."""
    try:
        parsed = pendulum.parse(value, tz=tz)
    except ValueError as e:
        raise typer.BadParameter(f"Invalid date/time '{value}': {e}")
    if not isinstance(parsed, DateTime):
        raise typer.BadParameter(f"Expected a date and time, got '{value}'")
    return parsed.in_timezone("UTC")


def _parse_date(value: str):
    try:
        return pendulum.from_format(value, "YYYY-MM-DD").date()
    except ValueError as e:
        raise typer.BadParameter(f"Invalid date '{value}' (expected YYYY-MM-DD): {e}")


def _window(start: str, end: Optional[str], duration: int, tz: str):
    start_time = _parse_time(start, tz)
    end_time = _parse_time(end, tz) if end else start_time.add(minutes=duration)
    return start_time, end_time


def _session_table(title: str, sessions: List[Session], tz: str) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim")
    table.add_column("Start", style="bold yellow")
    table.add_column("End")
    table.add_column("Room")
    table.add_column("Coach")
    table.add_column("Client")
    table.add_column("Status")

    for session in sessions:
        start = session.start_time.in_timezone(tz)
        end = session.end_time.in_timezone(tz)
        table.add_row(
            session.id,
            start.format("YYYY-MM-DD HH:mm"),
            end.format("HH:mm"),
            session.room_id,
            session.coach_id,
            session.client_id or "-",
            session.status.value,
        )
    return table


def _fail(error: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {error}")
    if isinstance(error, SchedulingConflict):
        for conflict in error.conflicts:
            console.print(f"  [red]- {conflict.type.value}:[/red] {conflict.message} ({conflict.session_id})")
    raise typer.Exit(1)


def _request(
    ctx: CliContext,
    *,
    studio: str,
    room: str,
    coach: str,
    client: Optional[str],
    device: Optional[str],
    start: str,
    end: Optional[str],
    duration: int,
    session_type: SessionType = SessionType.individual,
    capacity: int = 1,
    notes: Optional[str] = None,
    repeat: Optional[RecurrencePattern] = None,
    until: Optional[str] = None,
    days: Optional[str] = None,
) -> SessionCreate:
    tz = ctx.timezone_for(studio)
    start_time, end_time = _window(start, end, duration, tz)
    return SessionCreate(
        studio_id=studio,
        room_id=room,
        coach_id=coach,
        client_id=client,
        ems_device_id=device,
        start_time=start_time,
        end_time=end_time,
        session_type=session_type,
        capacity=capacity,
        notes=notes,
        recurrence_pattern=repeat,
        recurrence_end_date=_parse_date(until) if until else None,
        recurrence_days=[day.strip() for day in days.split(",")] if days else None,
    )


@app.command()
def book(
    studio: Annotated[str, typer.Option("--studio", help="Studio id")],
    room: Annotated[str, typer.Option("--room", help="Room id")],
    coach: Annotated[str, typer.Option("--coach", help="Coach id")],
    start: Annotated[str, typer.Option("--start", help="Start (ISO 8601, studio-local unless an offset is given)")],
    client: Annotated[Optional[str], typer.Option("--client", help="Client id")] = None,
    device: Annotated[Optional[str], typer.Option("--device", help="EMS device id")] = None,
    end: Annotated[Optional[str], typer.Option("--end", help="End (ISO 8601)")] = None,
    duration: Annotated[int, typer.Option("--duration", "-d", help="Duration in minutes when --end is omitted")] = 20,
    session_type: Annotated[SessionType, typer.Option("--type", help="Session type")] = SessionType.individual,
    capacity: Annotated[int, typer.Option("--capacity", help="Participant capacity for group sessions")] = 1,
    notes: Annotated[Optional[str], typer.Option("--notes", help="Free-text notes")] = None,
    repeat: Annotated[Optional[RecurrencePattern], typer.Option("--repeat", help="Recurrence pattern")] = None,
    until: Annotated[Optional[str], typer.Option("--until", help="Recurrence end date (YYYY-MM-DD)")] = None,
    days: Annotated[Optional[str], typer.Option("--days", help="Weekdays for weekly patterns, e.g. 'mon,wed' or '1,3'")] = None,
    config_file: ConfigOption = None,
    data_file: DataOption = None,
    tenant: TenantOption = None,
):
    """
    Book a session, or a recurring series with --repeat and --until.

    Examples:

        studioscheduler book --studio s1 --room r1 --coach c1 --client cl1 --start 2026-02-02T10:00

        studioscheduler book --studio s1 --room r1 --coach c1 --client cl1 \\
            --start 2026-02-02T10:00 --repeat weekly --until 2026-03-01 --days mon,thu
    """
    try:
        ctx = _open(config_file, data_file, tenant)
        request = _request(
            ctx,
            studio=studio,
            room=room,
            coach=coach,
            client=client,
            device=device,
            start=start,
            end=end,
            duration=duration,
            session_type=session_type,
            capacity=capacity,
            notes=notes,
            repeat=repeat,
            until=until,
            days=days,
        )
        result = asyncio.run(ctx.engine.create(request, ctx.tenant_id))
        ctx.save()
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)

    tz = ctx.timezone_for(studio)
    console.print()
    console.print(_session_table(f"Booked {len(result.sessions)} session(s)", result.sessions, tz))
    for skipped in result.skipped:
        reasons = ", ".join(conflict.type.value for conflict in skipped.conflicts)
        console.print(
            f"[yellow]⚠ Skipped {skipped.window.start.in_timezone(tz).format('YYYY-MM-DD HH:mm')}: {reasons}[/yellow]"
        )
    console.print()


@app.command()
def conflicts(
    studio: Annotated[str, typer.Option("--studio", help="Studio id")],
    room: Annotated[str, typer.Option("--room", help="Room id")],
    coach: Annotated[str, typer.Option("--coach", help="Coach id")],
    start: Annotated[str, typer.Option("--start", help="Start (ISO 8601)")],
    client: Annotated[Optional[str], typer.Option("--client", help="Client id")] = None,
    device: Annotated[Optional[str], typer.Option("--device", help="EMS device id")] = None,
    end: Annotated[Optional[str], typer.Option("--end", help="End (ISO 8601)")] = None,
    duration: Annotated[int, typer.Option("--duration", "-d", help="Duration in minutes when --end is omitted")] = 20,
    exclude: Annotated[Optional[str], typer.Option("--exclude", help="Session id to ignore")] = None,
    config_file: ConfigOption = None,
    data_file: DataOption = None,
    tenant: TenantOption = None,
):
    """
    Dry-run conflict detection; prints the conflict result as JSON.
    """
    try:
        ctx = _open(config_file, data_file, tenant)
        request = _request(
            ctx,
            studio=studio,
            room=room,
            coach=coach,
            client=client,
            device=device,
            start=start,
            end=end,
            duration=duration,
        )
        result = asyncio.run(ctx.engine.check_conflicts(request, ctx.tenant_id, exclude))
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)

    console.print_json(result.model_dump_json(by_alias=True))


@app.command()
def preview(
    studio: Annotated[str, typer.Option("--studio", help="Studio id")],
    room: Annotated[str, typer.Option("--room", help="Room id")],
    coach: Annotated[str, typer.Option("--coach", help="Coach id")],
    start: Annotated[str, typer.Option("--start", help="Start (ISO 8601)")],
    repeat: Annotated[RecurrencePattern, typer.Option("--repeat", help="Recurrence pattern")],
    until: Annotated[str, typer.Option("--until", help="Recurrence end date (YYYY-MM-DD)")],
    client: Annotated[Optional[str], typer.Option("--client", help="Client id")] = None,
    device: Annotated[Optional[str], typer.Option("--device", help="EMS device id")] = None,
    end: Annotated[Optional[str], typer.Option("--end", help="End (ISO 8601)")] = None,
    duration: Annotated[int, typer.Option("--duration", "-d", help="Duration in minutes when --end is omitted")] = 20,
    days: Annotated[Optional[str], typer.Option("--days", help="Weekdays for weekly patterns")] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print the raw preview as JSON")] = False,
    config_file: ConfigOption = None,
    data_file: DataOption = None,
    tenant: TenantOption = None,
):
    """
    Preview the occurrences a recurring booking would create, without booking.
    """
    try:
        ctx = _open(config_file, data_file, tenant)
        request = _request(
            ctx,
            studio=studio,
            room=room,
            coach=coach,
            client=client,
            device=device,
            start=start,
            end=end,
            duration=duration,
            repeat=repeat,
            until=until,
            days=days,
        )
        result = asyncio.run(ctx.engine.validate_recurrence(request, ctx.tenant_id))
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)

    if as_json:
        console.print_json(json.dumps(result.to_dict()))
        return

    tz = ctx.timezone_for(studio)
    table = Table(title="Recurrence preview", show_header=True, header_style="bold cyan")
    table.add_column("Start", style="bold yellow")
    table.add_column("End")
    table.add_column("Result")

    rows = [(window, None) for window in result.valid_sessions]
    rows += [(item.window, item.conflicts) for item in result.conflicts]
    for window, found in sorted(rows, key=lambda row: row[0].start):
        local_start = window.start.in_timezone(tz)
        outcome = (
            "[green]ok[/green]" if not found
            else "[red]" + ", ".join(c.type.value for c in found) + "[/red]"
        )
        table.add_row(
            local_start.format("ddd YYYY-MM-DD HH:mm"),
            window.end.in_timezone(tz).format("HH:mm"),
            outcome,
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def status(
    session_id: Annotated[str, typer.Argument(help="Session id")],
    new_status: Annotated[SessionStatus, typer.Argument(help="New status")],
    deduct: Annotated[
        Optional[bool],
        typer.Option("--deduct/--no-deduct", help="Override the cancellation-window policy"),
    ] = None,
    reason: Annotated[Optional[str], typer.Option("--reason", help="Cancellation reason")] = None,
    config_file: ConfigOption = None,
    data_file: DataOption = None,
    tenant: TenantOption = None,
):
    """
    Change a session's status and settle the client's credit.
    """
    try:
        ctx = _open(config_file, data_file, tenant)
        session = asyncio.run(
            ctx.engine.update_status(session_id, ctx.tenant_id, new_status, deduct, reason)
        )
        ctx.save()
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)

    charged = f"charged to {session.charged_package_id}" if session.charged_package_id else "no credit held"
    console.print(
        f"\n[green]✓ Session {session.id} is now [bold]{session.status.value}[/bold][/green] ({charged})\n"
    )


@app.command()
def assign(
    studio: Annotated[str, typer.Option("--studio", help="Studio id")],
    start: Annotated[str, typer.Option("--start", help="Start (ISO 8601)")],
    end: Annotated[Optional[str], typer.Option("--end", help="End (ISO 8601)")] = None,
    duration: Annotated[int, typer.Option("--duration", "-d", help="Duration in minutes when --end is omitted")] = 20,
    coach: Annotated[Optional[str], typer.Option("--coach", help="Preferred coach id")] = None,
    config_file: ConfigOption = None,
    data_file: DataOption = None,
    tenant: TenantOption = None,
):
    """
    Pick a free room and coach for a window.
    """
    try:
        ctx = _open(config_file, data_file, tenant)
        start_time, end_time = _window(start, end, duration, ctx.timezone_for(studio))
        assignment = asyncio.run(
            ctx.engine.auto_assign_resources(ctx.tenant_id, studio, start_time, end_time, coach)
        )
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)

    console.print(Panel.fit(
        f"[bold]Room:[/bold] {assignment.room_id}\n"
        f"[bold]Coach:[/bold] {assignment.coach_id}",
        title="✓ Resources assigned"
    ))


@app.command()
def slots(
    studio: Annotated[str, typer.Option("--studio", help="Studio id")],
    day: Annotated[Optional[str], typer.Option("--date", help="Date (YYYY-MM-DD). Defaults to today")] = None,
    coach: Annotated[Optional[str], typer.Option("--coach", help="Only consider this coach")] = None,
    show_full: Annotated[bool, typer.Option("--all", help="Also list full slots")] = False,
    config_file: ConfigOption = None,
    data_file: DataOption = None,
    tenant: TenantOption = None,
):
    """
    List the bookable slots of a studio day.
    """
    try:
        ctx = _open(config_file, data_file, tenant)
        target = _parse_date(day) if day else pendulum.now(ctx.timezone_for(studio)).date()
        result = asyncio.run(ctx.engine.get_available_slots(ctx.tenant_id, studio, target, coach))
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)

    if not result:
        console.print("[yellow]⚠ The studio has no open slots on this day.[/yellow]")
        return

    available = [slot for slot in result if slot.status == SlotStatus.available]
    console.print(f"\n[bold green]✓ {len(available)} of {len(result)} slot(s) available:[/bold green]\n")
    for slot in result:
        if slot.status == SlotStatus.available:
            console.print(f"  {slot.time}  [green]available[/green]")
        elif show_full:
            console.print(f"  {slot.time}  [red]full[/red]")
    console.print()


@app.command()
def sessions(
    studio: Annotated[Optional[str], typer.Option("--studio", help="Studio id")] = None,
    coach: Annotated[Optional[str], typer.Option("--coach", help="Coach id")] = None,
    client: Annotated[Optional[str], typer.Option("--client", help="Client id")] = None,
    start_from: Annotated[Optional[str], typer.Option("--from", help="Earliest start (ISO 8601)")] = None,
    end_to: Annotated[Optional[str], typer.Option("--to", help="Latest start (ISO 8601)")] = None,
    session_status: Annotated[Optional[SessionStatus], typer.Option("--status", help="Only this status")] = None,
    config_file: ConfigOption = None,
    data_file: DataOption = None,
    tenant: TenantOption = None,
):
    """
    List sessions ordered by start time.
    """
    try:
        ctx = _open(config_file, data_file, tenant)
        tz = ctx.timezone_for(studio) if studio else ctx.config.scheduling.timezone
        query = SessionQuery(
            studio_id=studio,
            coach_id=coach,
            client_id=client,
            start_from=_parse_time(start_from, tz) if start_from else None,
            end_to=_parse_time(end_to, tz) if end_to else None,
            status=session_status,
        )
        found = asyncio.run(ctx.engine.list_sessions(ctx.tenant_id, query))
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _fail(e)

    if not found:
        console.print("[yellow]No sessions found.[/yellow]")
        return

    console.print()
    console.print(_session_table("Sessions", found, tz))
    console.print()


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]studioscheduler[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
