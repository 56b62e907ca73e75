"""CLI commands for Pomolog using Typer."""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from pathlib import Path

import typer
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from pomolog import __version__
from pomolog.core.config import PRESETS, YamlConfigProvider, apply_preset, get_settings
from pomolog.core.errors import ConfigError, PomologError
from pomolog.core.host import TimerHost
from pomolog.focus.cycle import cycle_progress, sessions_until_long_break
from pomolog.focus.engine import FocusEngine
from pomolog.focus.session import SessionPhase, productivity_score
from pomolog.focus.state_machine import TimerReading
from pomolog.focus.timekeeping import format_time

app = typer.Typer(
    name="pomolog",
    help="Pomodoro timer with cycle tracking and session history.",
    add_completion=False,
)

console = Console()

PHASE_STYLES = {
    SessionPhase.WORK: "red",
    SessionPhase.SHORT_BREAK: "green",
    SessionPhase.LONG_BREAK: "blue",
    SessionPhase.FOCUS: "magenta",
}

PHASE_MESSAGES = {
    SessionPhase.WORK: "Time to focus!",
    SessionPhase.SHORT_BREAK: "Take a short break.",
    SessionPhase.LONG_BREAK: "Take a long break, you earned it.",
    SessionPhase.FOCUS: "Focus session.",
}


def setup_logging(log_level: str, log_file: Path | None = None) -> None:
    """Configure logging for the application."""
    level = getattr(logging, log_level.upper(), logging.WARNING)

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )

    # Reduce noise from external libraries
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


class ConsoleNotifier:
    """Announces phase transitions on the terminal."""

    def __init__(self, sound: bool = True):
        self._sound = sound

    def on_phase_transition(self, phase: SessionPhase) -> None:
        style = PHASE_STYLES.get(phase, "white")
        console.print(f"[bold {style}]{PHASE_MESSAGES[phase]}[/bold {style}]")
        if self._sound:
            console.bell()


def render_reading(reading: TimerReading, engine: FocusEngine) -> Panel:
    """Live timer panel."""
    phase = reading.phase or engine.current_phase
    style = PHASE_STYLES.get(phase, "white")

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="cyan")
    table.add_column("Value")

    table.add_row("Phase", f"[bold {style}]{phase.value}[/bold {style}]")
    table.add_row("Status", reading.status.value)
    if reading.is_overtime:
        table.add_row("Overtime", f"[yellow]+{format_time(reading.overtime_seconds)}[/yellow]")
    else:
        table.add_row("Remaining", f"[bold]{reading.remaining_display}[/bold]")
    table.add_row("Progress", f"{reading.progress_percent:.0f}%")
    table.add_row("Cycle", f"#{engine.current_cycle_index} ({engine.completed_cycle_count} completed)")
    table.add_row("Next", engine.next_phase.value)

    return Panel(table, title="🍅 Pomolog", border_style=style)


@app.command()
def run(
    phase: str = typer.Argument(None, help="work, short-break, long-break or focus (default: scheduled phase)"),
    minutes: float = typer.Option(None, "--minutes", "-m", help="Custom duration in minutes"),
    project: str = typer.Option(None, "--project", "-p", help="Project reference"),
    description: str = typer.Option(None, "--description", "-d", help="What this session is for"),
    tags: list[str] = typer.Option(None, "--tag", "-t", help="Tag (repeatable)"),
) -> None:
    """Run a timer session in the foreground. Ctrl+C stops it."""
    settings = get_settings()

    async def run_timer() -> None:
        host = TimerHost(settings, notifier=ConsoleNotifier(settings.timer.sound_enabled))
        engine = await host.start()

        try:
            try:
                session = engine.start(
                    phase,
                    host.now(),
                    project_ref=project,
                    description=description,
                    custom_minutes=minutes,
                    tags=tags or None,
                )
            except (PomologError, ValueError) as e:
                console.print(f"[red]Error: {e}[/red]")
                raise typer.Exit(1)

            console.print(
                f"[green]Started {session.phase.value} ({format_time(session.target_seconds, 'verbose')})[/green]"
            )
            console.print("Press Ctrl+C to stop\n")
            host.setup_signal_handlers()

            with Live(render_reading(engine.reading(), engine), console=console, refresh_per_second=4) as live:
                host.on_tick = lambda reading: live.update(render_reading(reading, engine))
                await host.wait_until_idle()
        finally:
            if engine.can_stop():
                engine.stop(host.now())
            await host.stop()

        finished = engine.machine.last_completed
        if finished is not None:
            console.print("\n[bold]Session Summary:[/bold]")
            console.print(f"  Phase: {finished.phase.value}")
            console.print(f"  Duration: {format_time(finished.duration_seconds, 'verbose')}")
            console.print(f"  Score: {productivity_score(finished):.0f}")
            console.print(f"  Next up: {engine.current_phase.value}")

    try:
        asyncio.run(run_timer())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")


@app.command()
def status() -> None:
    """Show cycle position, daily goal and statistics."""
    settings = get_settings()

    async def get_status() -> dict:
        host = TimerHost(settings)
        engine = await host.start(tick=False)
        try:
            return {
                "summary": engine.summary(),
                "daily": engine.daily_progress(date.today()),
                "interval": engine.config.long_break_interval,
                "integrity_ok": host.integrity_ok,
            }
        finally:
            await host.stop()

    try:
        info = asyncio.run(get_status())
    except PomologError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    summary = info["summary"]
    daily = info["daily"]
    stats = summary["statistics"]
    interval = info["interval"]
    index = summary["current_cycle"]

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="cyan")
    table.add_column("Value")

    table.add_row("Next phase", f"[bold]{summary['phase']}[/bold]")
    table.add_row("Cycle", f"#{index} ({summary['completed_cycles']} completed)")
    table.add_row("Cycle progress", f"{cycle_progress(index, interval):.0f}%")
    table.add_row("Until long break", str(sessions_until_long_break(index, interval)))
    table.add_row("Today", f"{daily['completed']} / {daily['goal']} ({daily['percentage']:.0f}%)")
    table.add_row("Sessions", f"{stats['total_sessions']} ({stats['skipped_sessions']} skipped)")
    table.add_row("Completion rate", f"{stats['completion_rate']:.1f}%")
    table.add_row("Work time", format_time(stats["total_work_seconds"], "verbose"))
    table.add_row("Database", "[green]OK[/green]" if info["integrity_ok"] else "[red]Integrity check failed[/red]")

    console.print(Panel(table, title="Pomolog Status", border_style="green"))


@app.command()
def history(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of sessions to show"),
) -> None:
    """Show recent sessions."""
    settings = get_settings()

    async def get_history() -> list:
        host = TimerHost(settings)
        await host.start(tick=False)
        try:
            if host.history is None:
                return []
            return await host.history.recent(limit)
        finally:
            await host.stop()

    try:
        sessions = asyncio.run(get_history())
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if not sessions:
        console.print("[dim]No sessions recorded yet[/dim]")
        return

    table = Table(title="Recent Sessions", show_header=True, header_style="bold cyan")
    table.add_column("Started")
    table.add_column("Phase")
    table.add_column("Duration")
    table.add_column("Target")
    table.add_column("Project")
    table.add_column("Status")

    for s in sessions:
        if not s.completed:
            state = "[dim]Skipped[/dim]"
        elif s.duration_seconds >= s.target_seconds:
            state = "[green]Complete[/green]"
        else:
            state = "[yellow]Stopped early[/yellow]"
        table.add_row(
            s.start_time.strftime("%Y-%m-%d %H:%M"),
            s.phase.value,
            format_time(s.duration_seconds),
            format_time(s.target_seconds),
            s.project_ref or "",
            state,
        )

    console.print(table)


@app.command()
def config_show() -> None:
    """Show current configuration."""
    settings = get_settings()
    timer = settings.timer

    table = Table(title="Pomolog Configuration", show_header=True, header_style="bold cyan")
    table.add_column("Setting")
    table.add_column("Value")

    table.add_row("[bold]Paths[/bold]", "")
    table.add_row("  Data Directory", str(settings.data_dir))
    table.add_row("  Config File", str(settings.config_file))
    table.add_row("  Database", str(settings.db_path))

    table.add_row("[bold]Timer[/bold]", "")
    for name, value in timer.model_dump().items():
        table.add_row(f"  {name}", str(value))

    table.add_row("[bold]Engine[/bold]", "")
    table.add_row("  Tick Interval", f"{settings.engine.tick_interval_seconds}s")
    table.add_row("  Flush Interval", f"{settings.engine.flush_interval_seconds}s")

    console.print(table)


@app.command()
def config_set(
    key: str = typer.Argument(..., help="Timer setting, e.g. work_minutes"),
    value: str = typer.Argument(..., help="New value"),
) -> None:
    """Change a timer setting."""
    settings = get_settings()
    provider = YamlConfigProvider(settings)
    field = key.replace("-", "_")

    try:
        config = provider.get().updated(**{field: value})
        provider.save(config)
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]Set {field} = {getattr(config, field)}[/green]")


@app.command()
def preset(
    name: str = typer.Argument(..., help=f"One of: {', '.join(PRESETS)}"),
) -> None:
    """Apply a duration preset."""
    settings = get_settings()
    provider = YamlConfigProvider(settings)

    try:
        config = apply_preset(provider.get(), name)
        provider.save(config)
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(
        f"[green]Preset '{name}': work {config.work_minutes}m, short break "
        f"{config.short_break_minutes}m, long break {config.long_break_minutes}m[/green]"
    )


@app.command(name="reset-cycle")
def reset_cycle() -> None:
    """Restart the Pomodoro cycle from the first work session."""
    settings = get_settings()

    async def do_reset() -> None:
        host = TimerHost(settings)
        engine = await host.start(tick=False)
        try:
            engine.reset_cycle()
        finally:
            await host.stop()

    asyncio.run(do_reset())
    console.print("[green]Cycle reset[/green]")


@app.command()
def goal(
    sessions: int = typer.Argument(..., help="Work sessions per day (1-50)"),
) -> None:
    """Set the daily work session goal."""
    settings = get_settings()

    async def set_goal() -> int:
        host = TimerHost(settings)
        engine = await host.start(tick=False)
        try:
            return engine.set_daily_goal(sessions)
        finally:
            await host.stop()

    applied = asyncio.run(set_goal())
    console.print(f"[green]Daily goal set to {applied} sessions[/green]")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"Pomolog v{__version__}")


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        "-l",
        help="Log level (DEBUG, INFO, WARNING, ERROR)",
    ),
) -> None:
    """Pomolog - Pomodoro timer with cycle tracking."""
    settings = get_settings()
    setup_logging(log_level, settings.log_dir / "pomolog.log")


if __name__ == "__main__":
    app()
