"""
Command-line interface for Subly Sync.
"""

import logging
import uuid
from configparser import ConfigParser
from contextlib import contextmanager
from dataclasses import asdict
from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from datetime import date
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from subly_sync.agenda import monthly_equivalent
from subly_sync.agenda import monthly_spend_projection
from subly_sync.agenda import trailing_months
from subly_sync.agenda import upcoming_renewals
from subly_sync.context import SyncContext
from subly_sync.db import StateStore
from subly_sync.models import DEDICATED_CALENDAR_NAME
from subly_sync.models import DEFAULT_CONFIG
from subly_sync.models import DEFAULT_STATE_DB
from subly_sync.models import DEFAULT_TOKEN_FILE
from subly_sync.models import PERIODS
from subly_sync.models import REMINDER_METHODS
from subly_sync.models import AppConfig
from subly_sync.models import ImportFormatError
from subly_sync.models import InvalidStartDateError
from subly_sync.models import Reminder
from subly_sync.models import Subscription
from subly_sync.models import SyncResult
from subly_sync.recurrence import next_occurrence
from subly_sync.recurrence import parse_start_date
from subly_sync.recurrence import reminder_fire_time
from subly_sync.sync import SubscriptionSynchronizer
from subly_sync.transfer import annual_top_rows
from subly_sync.transfer import dump_state_json
from subly_sync.transfer import merge_imported
from subly_sync.transfer import monthly_spend_rows
from subly_sync.transfer import parse_import
from subly_sync.transfer import rows_to_csv
from subly_sync.transfer import subscription_rows

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="Track recurring subscriptions and mirror their renewals into Google Calendar.",
)

console = Console()


# ---------------------------------------------------------------------------
# Global state shared across subcommands
# ---------------------------------------------------------------------------


@dataclass
class _State:
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG)
    state_db: Path = field(default_factory=lambda: DEFAULT_STATE_DB)
    verbose: bool = False


state = _State()


@app.callback()
def _global(
    config: Annotated[
        Path,
        typer.Option("--config", "-c", help=f"Config file path (default: {DEFAULT_CONFIG})"),
    ] = DEFAULT_CONFIG,
    state_db: Annotated[
        Path,
        typer.Option("--state-db", help=f"State DB path (default: {DEFAULT_STATE_DB})"),
    ] = DEFAULT_STATE_DB,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug output"),
    ] = False,
) -> None:
    state.config_path = config
    state.state_db = state_db
    state.verbose = verbose
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False, console=console)],
    )


def _load_config_file(config_path: Path) -> dict[str, str]:
    if not config_path.exists():
        return {}
    parser = ConfigParser()
    parser.read(config_path)
    if "subly-sync" not in parser:
        return {}
    return dict(parser["subly-sync"])


def _build_config() -> AppConfig:
    config_file = _load_config_file(state.config_path)
    secrets = config_file.get("client_secrets_file")
    token = config_file.get("token_file")
    return AppConfig(
        state_db_path=state.state_db,
        client_secrets_file=Path(secrets).expanduser() if secrets else None,
        token_file=Path(token).expanduser() if token else DEFAULT_TOKEN_FILE,
        calendar_name=config_file.get("calendar_name") or DEDICATED_CALENDAR_NAME,
        verbose=state.verbose,
    )


@contextmanager
def _session():
    """Yield (context, synchronizer) with every state change saved immediately."""
    from subly_sync.credentials import GoogleCredentialProvider
    from subly_sync.gcal_client import GoogleCalendarStore

    cfg = _build_config()
    with StateStore(cfg.state_db_path) as store:
        context = SyncContext(store.load(), on_change=store.save)
        synchronizer = SubscriptionSynchronizer(
            context,
            GoogleCalendarStore(),
            GoogleCredentialProvider(cfg.token_file, cfg.client_secrets_file),
            calendar_name=cfg.calendar_name,
        )
        yield context, synchronizer


def _check_start_date(value: str) -> str:
    try:
        return parse_start_date(value).isoformat()
    except InvalidStartDateError as e:
        raise typer.BadParameter(str(e)) from None


def _check_choice(value: str, choices: tuple, name: str) -> str:
    if value not in choices:
        raise typer.BadParameter(f"{name} must be one of: {', '.join(choices)}")
    return value


def _report_sync(result: SyncResult | None) -> None:
    """Print a remote sync outcome; exit 1 on failure (the local change is kept)."""
    if result is None:
        return
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/] {warning}")
    if result.ok:
        console.print("[green]Calendar event synced ✓[/]")
        return
    console.print(f"[bold red]Calendar sync failed:[/] {result.error}")
    if result.unauthorized:
        console.print("[dim]Run[/] [cyan]subly-sync sync[/] [dim]to sign in again.[/]")
    console.print("[dim]The local change was saved.[/]")
    raise typer.Exit(1)


def _resolve_id(context: SyncContext, prefix: str) -> Subscription:
    """Find a subscription by id or unique id prefix."""
    matches = [s for s in context.subscriptions if s.id == prefix or s.id.startswith(prefix)]
    exact = [s for s in matches if s.id == prefix]
    if exact:
        return exact[0]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        console.print(f"[bold red]Error:[/] No subscription matches [cyan]{prefix}[/].")
    else:
        console.print(f"[bold red]Error:[/] [cyan]{prefix}[/] is ambiguous.")
    raise typer.Exit(1)


def _sync_cell(sub: Subscription) -> Text:
    link = sub.calendar
    if link is None:
        return Text("—", style="dim")
    if link.last_error:
        return Text(f"✗ {link.last_error}", style="red")
    if link.is_linked:
        return Text("✓ synced", style="green")
    return Text("—", style="dim")


# ---------------------------------------------------------------------------
# Subcommands: add / edit / remove
# ---------------------------------------------------------------------------

_PRICE = Annotated[float, typer.Option("--price", min=0, help="Price per period")]
_CURRENCY = Annotated[str, typer.Option("--currency", help="3-letter currency code")]
_PERIOD = Annotated[str, typer.Option("--period", help=f"One of: {', '.join(PERIODS)}")]
_START = Annotated[str, typer.Option("--start", help="First billing date YYYY-MM-DD")]
_CATEGORY = Annotated[str | None, typer.Option("--category", help="Free-text category")]
_REMINDER_DAYS = Annotated[
    int | None,
    typer.Option("--reminder-days", min=0, max=365, help="Override reminder lead time (days)"),
]
_REMINDER_METHOD = Annotated[
    str | None, typer.Option("--reminder-method", help="Override reminder method: popup or email")
]
_INTERACTIVE = Annotated[
    bool,
    typer.Option(
        "--interactive/--no-interactive",
        help="Allow a browser sign-in if the cached credential is unusable",
    ),
]


def _reminder_from_options(days: int | None, method: str | None) -> Reminder | None:
    if days is None and method is None:
        return None
    if method is not None:
        _check_choice(method, REMINDER_METHODS, "--reminder-method")
    return Reminder(enabled=True, days_before=1 if days is None else days, method=method or "popup")


@app.command()
def add(
    name: Annotated[str, typer.Argument(help="Display name")],
    price: _PRICE,
    start: _START,
    currency: _CURRENCY = "USD",
    period: _PERIOD = "monthly",
    category: _CATEGORY = None,
    reminder_days: _REMINDER_DAYS = None,
    reminder_method: _REMINDER_METHOD = None,
    interactive: _INTERACTIVE = True,
) -> None:
    """Add a subscription (synced right away when auto-sync is on)."""
    if not name.strip():
        raise typer.BadParameter("name must not be empty")
    sub = Subscription(
        id=uuid.uuid4().hex,
        name=name.strip(),
        price=price,
        currency=currency.strip().upper(),
        period=_check_choice(period, PERIODS, "--period"),
        start_date=_check_start_date(start),
        category=category or None,
        reminder=_reminder_from_options(reminder_days, reminder_method),
    )
    with _session() as (_, synchronizer):
        result = synchronizer.add_subscription(sub, interactive=interactive)
        console.print(f"Added [bold]{sub.name}[/] [dim]({sub.id})[/dim]")
        _report_sync(result)


@app.command()
def edit(
    subscription_id: Annotated[str, typer.Argument(help="Subscription id (or unique prefix)")],
    name: Annotated[str | None, typer.Option("--name", help="New display name")] = None,
    price: Annotated[float | None, typer.Option("--price", min=0)] = None,
    currency: Annotated[str | None, typer.Option("--currency")] = None,
    period: Annotated[str | None, typer.Option("--period")] = None,
    start: Annotated[str | None, typer.Option("--start")] = None,
    category: _CATEGORY = None,
    reminder_days: _REMINDER_DAYS = None,
    reminder_method: _REMINDER_METHOD = None,
    no_reminder_override: Annotated[
        bool, typer.Option("--no-reminder-override", help="Use the global reminder default")
    ] = False,
    interactive: _INTERACTIVE = True,
) -> None:
    """Edit a subscription's fields."""
    with _session() as (context, synchronizer):
        sub = _resolve_id(context, subscription_id)
        changes = {}
        if name is not None:
            if not name.strip():
                raise typer.BadParameter("name must not be empty")
            changes["name"] = name.strip()
        if price is not None:
            changes["price"] = price
        if currency is not None:
            changes["currency"] = currency.strip().upper()
        if period is not None:
            changes["period"] = _check_choice(period, PERIODS, "--period")
        if start is not None:
            changes["start_date"] = _check_start_date(start)
        if category is not None:
            changes["category"] = category or None
        if no_reminder_override:
            changes["reminder"] = None
        elif reminder_days is not None or reminder_method is not None:
            changes["reminder"] = _reminder_from_options(reminder_days, reminder_method)

        if not changes:
            console.print("[yellow]Nothing to change.[/]")
            return
        result = synchronizer.edit_subscription(replace(sub, **changes), interactive=interactive)
        console.print(f"Updated [bold]{changes.get('name', sub.name)}[/]")
        _report_sync(result)


@app.command()
def remove(
    subscription_id: Annotated[str, typer.Argument(help="Subscription id (or unique prefix)")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
    interactive: _INTERACTIVE = True,
) -> None:
    """Delete a subscription and, best-effort, its calendar event."""
    with _session() as (context, synchronizer):
        sub = _resolve_id(context, subscription_id)
        if not yes:
            typer.confirm(f"Delete {sub.name}?", abort=True)
        result = synchronizer.delete_subscription(sub.id, interactive=interactive)
        console.print(f"Deleted [bold]{sub.name}[/]")
        for warning in result.warnings:
            console.print(f"[yellow]Warning:[/] calendar event not removed: {warning}")


# ---------------------------------------------------------------------------
# Subcommands: list / upcoming / spend / reminders
# ---------------------------------------------------------------------------


@app.command("list")
def list_subscriptions() -> None:
    """List subscriptions with their next renewal and sync status."""
    today = date.today()
    with _session() as (context, _):
        subs = context.subscriptions
    if not subs:
        console.print("[yellow]No subscriptions yet — add one with[/] [cyan]subly-sync add[/]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Name", style="bold")
    table.add_column("Category")
    table.add_column("Price", justify="right")
    table.add_column("Per month", justify="right")
    table.add_column("Period")
    table.add_column("Next renewal")
    table.add_column("Calendar")
    rows = sorted(subs, key=lambda s: next_occurrence(s.start_date, s.period, today))
    for sub in rows:
        table.add_row(
            sub.id[:8],
            sub.name,
            sub.category or "",
            f"{sub.price:,.2f} {sub.currency}",
            f"{monthly_equivalent(sub):,.2f}",
            sub.period,
            next_occurrence(sub.start_date, sub.period, today).isoformat(),
            _sync_cell(sub),
        )
    console.print(table)


@app.command()
def upcoming(
    days: Annotated[int, typer.Option("--days", "-d", min=0, help="Look-ahead window")] = 30,
) -> None:
    """Show renewals due within the next N days."""
    today = date.today()
    with _session() as (context, _):
        due = upcoming_renewals(context.subscriptions, today, days)
    if not due:
        console.print(f"[green]Nothing renews in the next {days} day(s).[/]")
        return
    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Date")
    table.add_column("In", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("Amount", justify="right")
    for sub, when in due:
        table.add_row(
            when.isoformat(), f"{(when - today).days}d", sub.name, f"{sub.price:,.2f} {sub.currency}"
        )
    console.print(Panel(table, title=f"[bold]Next {days} days[/bold]", expand=False))


@app.command()
def spend() -> None:
    """Show spend per month for the last 12 months, per currency."""
    today = date.today()
    with _session() as (context, _):
        projection = monthly_spend_projection(context.subscriptions, today)
    if not projection:
        console.print("[yellow]No subscriptions yet.[/]")
        return
    months = trailing_months(today)
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Month")
    currencies = sorted(projection)
    for currency in currencies:
        table.add_column(currency, justify="right")
    for i, month in enumerate(months):
        table.add_row(month.strftime("%b %Y"), *(f"{projection[c][i]:,.2f}" for c in currencies))
    table.add_row(
        Text("Total", style="bold"), *(f"{sum(projection[c]):,.2f}" for c in currencies)
    )
    console.print(table)


@app.command()
def reminders() -> None:
    """Show when the local renewal reminder for each subscription fires."""
    now = datetime.now().astimezone()
    with _session() as (context, _):
        subs = context.subscriptions
        days_before = context.settings.notify_days_before
    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Name", style="bold")
    table.add_column("Renews")
    table.add_column("Reminder at")
    for sub in subs:
        fire_at = reminder_fire_time(sub.start_date, sub.period, days_before, now)
        table.add_row(
            sub.name,
            next_occurrence(sub.start_date, sub.period, now).isoformat(),
            fire_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(
        Panel(table, title=f"[bold]Reminders ({days_before} day(s) before)[/bold]", expand=False)
    )


# ---------------------------------------------------------------------------
# Subcommands: export / import
# ---------------------------------------------------------------------------

_EXPORT_FORMATS = ("json", "csv", "monthly-csv", "annual-csv")


@app.command()
def export(
    fmt: Annotated[
        str,
        typer.Option("--format", "-f", help=f"One of: {', '.join(_EXPORT_FORMATS)}"),
    ] = "json",
    output: Annotated[
        Path | None, typer.Option("--output", "-o", help="Write here instead of stdout")
    ] = None,
    currency: Annotated[
        str | None, typer.Option("--currency", help="Limit spend reports to one currency")
    ] = None,
) -> None:
    """Export a JSON backup or a CSV report."""
    _check_choice(fmt, _EXPORT_FORMATS, "--format")
    with _session() as (context, _):
        app_state = context.state
        subs = context.subscriptions

    if fmt == "json":
        text = dump_state_json(app_state) + "\n"
    elif fmt == "csv":
        text = rows_to_csv(subscription_rows(subs))
    elif fmt == "monthly-csv":
        text = rows_to_csv(monthly_spend_rows(subs, date.today(), currency))
    else:
        text = rows_to_csv(annual_top_rows(subs, currency))

    if output is None:
        typer.echo(text, nl=False)
        return
    output.write_text(text, encoding="utf-8")
    console.print(f"Wrote [cyan]{output}[/] ({len(subs)} subscription(s))")


@app.command("import")
def import_subscriptions(
    path: Annotated[
        Path,
        typer.Argument(exists=True, dir_okay=False, help="JSON file from 'subly-sync export'"),
    ],
    with_settings: Annotated[
        bool, typer.Option("--with-settings", help="Also restore settings from the file")
    ] = False,
) -> None:
    """Merge subscriptions from a JSON export (same id replaces, new ids are added)."""
    try:
        imported, imported_settings = parse_import(path.read_text(encoding="utf-8"))
    except ImportFormatError as e:
        console.print(f"[bold red]Import failed:[/] {e}")
        raise typer.Exit(1) from None

    with _session() as (context, _):
        known = {sub.id for sub in context.subscriptions}
        context.replace_subscriptions(merge_imported(context.subscriptions, imported))
        if with_settings and imported_settings is not None:
            # The dedicated calendar id belongs to the account, not the backup.
            changes = asdict(imported_settings)
            changes.pop("calendar_subscriptions_calendar_id")
            context.update_settings(**changes)

    updated = sum(1 for sub in imported if sub.id in known)
    console.print(
        f"Imported [bold]{len(imported)}[/] subscription(s): "
        f"{len(imported) - updated} new, {updated} replaced."
    )
    console.print("[dim]Run[/] [cyan]subly-sync sync[/] [dim]to push them to the calendar.[/]")


# ---------------------------------------------------------------------------
# Subcommand: sync
# ---------------------------------------------------------------------------


@app.command()
def sync(
    subscription_id: Annotated[
        str | None, typer.Argument(help="Sync only this subscription (id or prefix)")
    ] = None,
    interactive: _INTERACTIVE = True,
) -> None:
    """Sync renewal events to Google Calendar (all subscriptions by default)."""
    with _session() as (context, synchronizer):
        if subscription_id is not None:
            sub = _resolve_id(context, subscription_id)
            _report_sync(synchronizer.reconcile_one(sub.id, interactive=interactive))
            return

        def _progress(index, total, sub, outcome):
            mark = "[green]✓[/]" if outcome.ok else f"[red]✗ {outcome.error}[/]"
            console.print(f"  [dim]{index}/{total}[/dim] {sub.name} {mark}")
            for warning in outcome.warnings:
                console.print(f"      [yellow]Warning:[/] {warning}")

        result = synchronizer.reconcile_all(interactive=interactive, progress=_progress)

    results = Table.grid(padding=(0, 2))
    results.add_column(style="bold")
    results.add_column(justify="right")
    results.add_row("Synced", str(result.ok_count))
    fail_val = Text(str(result.fail_count))
    if result.fail_count == 0:
        fail_val.append(" ✓", style="green")
    else:
        fail_val.stylize("bold red")
    results.add_row("Failed", fail_val)
    console.print(Panel(results, title="[bold]Results[/bold]", expand=False))

    if result.first_error:
        console.print(f"[bold red]First error:[/] {result.first_error}")
    if result.fail_count:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Subcommands: settings / status
# ---------------------------------------------------------------------------


@app.command()
def settings(
    auto_sync: Annotated[
        bool | None,
        typer.Option("--auto-sync/--no-auto-sync", help="Sync on every add/edit/delete"),
    ] = None,
    dedicated: Annotated[
        bool | None,
        typer.Option(
            "--dedicated/--no-dedicated",
            help="Put events in a dedicated calendar instead of the primary one",
        ),
    ] = None,
    reminder_days: Annotated[
        int | None, typer.Option("--reminder-days", min=0, max=365, help="Default reminder days")
    ] = None,
    reminder_method: Annotated[
        str | None, typer.Option("--reminder-method", help="Default reminder: popup or email")
    ] = None,
    notify_days: Annotated[
        int | None,
        typer.Option("--notify-days", min=0, max=30, help="Local reminder lead time (days)"),
    ] = None,
) -> None:
    """Show or change settings. Events move on the next sync after toggling --dedicated."""
    changes = {}
    if auto_sync is not None:
        changes["calendar_auto_sync_all"] = auto_sync
    if dedicated is not None:
        changes["calendar_use_dedicated_calendar"] = dedicated
    if reminder_days is not None:
        changes["calendar_reminder_days_before"] = reminder_days
    if reminder_method is not None:
        changes["calendar_reminder_method"] = _check_choice(
            reminder_method, REMINDER_METHODS, "--reminder-method"
        )
    if notify_days is not None:
        changes["notify_days_before"] = notify_days

    with _session() as (context, _):
        if changes:
            context.update_settings(**changes)
        current = context.settings

    grid = Table.grid(padding=(0, 2))
    grid.add_column(style="bold")
    grid.add_column()
    grid.add_row("Auto-sync", "on" if current.calendar_auto_sync_all else "off")
    grid.add_row(
        "Calendar",
        "dedicated" if current.calendar_use_dedicated_calendar else "primary",
    )
    grid.add_row("Dedicated calendar id", current.calendar_subscriptions_calendar_id or "—")
    grid.add_row(
        "Event reminder",
        f"{current.calendar_reminder_days_before} day(s) before, "
        f"{current.calendar_reminder_method}",
    )
    grid.add_row("Local reminder", f"{current.notify_days_before} day(s) before")
    console.print(Panel(grid, title="[bold]Settings[/bold]", expand=False))


@app.command()
def status() -> None:
    """Show configuration and sync health."""
    cfg = _build_config()
    config_exists = state.config_path.exists()
    db_exists = state.state_db.exists()

    info = Text()
    info.append("  Config:   ", style="bold")
    info.append(str(state.config_path) + " ")
    info.append("✓" if config_exists else "(not found)", style="green" if config_exists else "red")
    info.append("\n  State DB: ", style="bold")
    info.append(str(state.state_db) + " ")
    info.append("✓" if db_exists else "(not found)", style="green" if db_exists else "yellow")
    info.append("\n  Token:    ", style="bold")
    info.append(str(cfg.token_file) + " ")
    token_exists = cfg.token_file.exists()
    info.append("✓" if token_exists else "(not signed in)", style="green" if token_exists else "yellow")
    console.print(Panel(info, title="[bold]Subly Sync — Status[/bold]"))

    if not db_exists:
        console.print("[yellow]No state database yet — run[/] [cyan]subly-sync add[/] [yellow]first.[/]")
        return

    with StateStore(state.state_db) as store:
        app_state = store.load()
        saved_at = store.last_saved_at()

    subs = app_state.subscriptions
    synced = [s for s in subs if s.calendar and s.calendar.is_linked and not s.calendar.last_error]
    failing = [s for s in subs if s.calendar and s.calendar.last_error]
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column(justify="right")
    table.add_row("Subscriptions", str(len(subs)))
    table.add_row("Synced", str(len(synced)))
    table.add_row("Never synced", str(len(subs) - len(synced) - len(failing)))
    fail_val = Text(str(len(failing)), style="bold red" if failing else "green")
    table.add_row("With errors", fail_val)
    if saved_at:
        table.add_row("Last saved", datetime.fromtimestamp(saved_at).strftime("%Y-%m-%d %H:%M:%S"))
    console.print(Panel(table, title="[bold]Sync health[/bold]", expand=False))

    for sub in failing:
        console.print(f"  [red]✗[/] [bold]{sub.name}[/]: {sub.calendar.last_error}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app()
