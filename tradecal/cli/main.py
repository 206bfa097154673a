"""
tradecal - CLI Application
"""
import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tradecal.config import settings
from tradecal.core.exceptions import TradeCalendarError
from tradecal.logger import logger, logger_manager
from tradecal.managers.calendar_manager import CalendarManager, EventRecord
from tradecal.managers.time_manager import (
    HolidayFileSource,
    TimePeriod,
    TradeCalendar,
    create_calendar,
)

# Create Typer app
app = typer.Typer(
    name="tradecal",
    help="Trading calendar CLI",
    add_completion=False,
)

console = Console()

CONFIG_OPTION = typer.Option(..., "--config", "-c", help="Calendar configuration (JSON)")
HOLIDAYS_OPTION = typer.Option(None, "--holidays", "-H", help="Holiday file (JSON or CSV)")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-V", help="Show version and exit"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs on the console"),
):
    """
    Trading calendar CLI

    Inspect trade dates and session periods, or watch calendar lifecycle events.
    """
    if version:
        console.print(f"[cyan]{settings.APP_NAME}[/cyan] v{settings.APP_VERSION}")
        raise typer.Exit()

    logger_manager.setup_logger(exclusive=True)
    if verbose:
        logger_manager.set_console_level("DEBUG")

    if ctx.invoked_subcommand is None:
        console.print(Panel.fit(
            f"[bold cyan]{settings.APP_NAME}[/bold cyan]\n"
            f"[dim]Version {settings.APP_VERSION}[/dim]\n\n"
            f"[yellow]Use --help to see available commands[/yellow]",
            box=box.ROUNDED,
            border_style="cyan"
        ))


def _load_calendar(config: Path, holidays: Optional[Path]) -> TradeCalendar:
    try:
        calendar = create_calendar(config)
        if holidays is not None:
            calendar.reload(holiday_source=HolidayFileSource.from_file(holidays, calendar.timezone_name))
        return calendar
    except TradeCalendarError as e:
        console.print(f"[red]✗[/red] {e}")
        logger.error(f"Failed to load calendar from {config}: {e}")
        raise typer.Exit(code=1)


def _format_period(calendar: TradeCalendar, period: TimePeriod) -> str:
    start = calendar.to_datetime(period.start).strftime("%Y-%m-%d %H:%M:%S")
    end = calendar.to_datetime(period.end).strftime("%H:%M:%S %Z")
    return f"{start} → {end}"


@app.command()
def info(
    day: Optional[str] = typer.Argument(None, help="Date (YYYYMMDD or YYYY-MM-DD), default today"),
    config: Path = CONFIG_OPTION,
    holidays: Optional[Path] = HOLIDAYS_OPTION,
    direction: int = typer.Option(1, "--direction", "-d", help="Search direction (negative = backward)"),
):
    """
    Show the nearest trade date and its session periods
    """
    calendar = _load_calendar(config, holidays)

    async def _resolve():
        return await calendar.time_info(day, direction), await calendar.real_time_info(day, direction)

    try:
        time_info, real_info = asyncio.run(_resolve())
    except (TradeCalendarError, ValueError) as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)

    formatted = calendar.format_time_info(time_info)
    table = Table(title=f"Trade Time - {calendar.name or config.stem}", box=box.ROUNDED)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Trade Date", str(time_info.trade_date))
    table.add_row("Timezone", calendar.timezone_name)
    for i, period in enumerate(formatted["time_periods"], 1):
        table.add_row(f"Period {i}", f"{period['start']} → {period['end']}")
    table.add_row("Day Start", formatted["day_start"])
    table.add_row("Day End", formatted["day_end"])

    if not calendar.transform.is_identity:
        table.add_row("Strategy", calendar.transform.strategy.value)
        table.add_row("Time Ratio", str(calendar.time_ratio))
        for i, period in enumerate(real_info.time_periods, 1):
            table.add_row(f"Real Period {i}", _format_period(calendar, period))

    console.print(table)
    logger.debug("Info command executed")


@app.command()
def today(
    config: Path = CONFIG_OPTION,
):
    """
    Show the calendar's current date and time
    """
    calendar = _load_calendar(config, None)

    table = Table(title=f"Calendar Time - {calendar.name or config.stem}", box=box.ROUNDED)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Today", str(calendar.today()))
    table.add_row("Calendar Time", calendar.current_time())
    table.add_row("Timezone", calendar.timezone_name)
    table.add_row("Strategy", calendar.transform.strategy.value)
    console.print(table)


def _describe(record: EventRecord) -> str:
    calendar, *rest = record.args
    parts = []
    for value in rest:
        if isinstance(value, TimePeriod):
            parts.append(_format_period(calendar, value))
        elif isinstance(value, list):
            parts.append(f"{len(value)} remaining")
        else:
            parts.append(str(value))
    return " ".join(parts)


async def _watch(calendar: TradeCalendar, name: str, duration: Optional[float]) -> None:
    manager = CalendarManager()
    queue = manager.subscribe()
    loop = asyncio.get_running_loop()
    deadline = loop.time() + duration if duration else None
    try:
        await manager.start(name, calendar)
        while True:
            timeout = None if deadline is None else max(deadline - loop.time(), 0)
            try:
                record = await asyncio.wait_for(queue.get(), timeout)
            except asyncio.TimeoutError:
                break
            console.print(
                f"[dim]{calendar.current_time()}[/dim] [bold cyan]{record.event}[/bold cyan] {_describe(record)}"
            )
    finally:
        await manager.aclose()


@app.command()
def watch(
    config: Path = CONFIG_OPTION,
    holidays: Optional[Path] = HOLIDAYS_OPTION,
    duration: Optional[float] = typer.Option(None, "--duration", help="Stop after N real seconds"),
):
    """
    Run the calendar scheduler and print lifecycle events
    """
    calendar = _load_calendar(config, holidays)
    name = calendar.name or config.stem
    console.print(f"[green]Watching {name}[/green] [dim](Ctrl+C to stop)[/dim]")
    logger.info(f"Watching calendar {name} via CLI")
    try:
        asyncio.run(_watch(calendar, name, duration))
    except KeyboardInterrupt:
        console.print("[yellow]Stopped[/yellow]")
    except TradeCalendarError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
