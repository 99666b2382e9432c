"""Command-line interface for short-render.

Uses Typer for a modern, type-hinted CLI experience.
"""

from __future__ import annotations

import asyncio
from datetime import date
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from short_render import __version__
from short_render.config import Settings, load_env_files, load_settings
from short_render.errors import ShortRenderError, format_error_for_display
from short_render.ledger import ServiceStatus, UsageLedger, parse_month
from short_render.locator import ExtractionRequest, MediaLocator
from short_render.logging import LogConfig, LogLevel, configure_logging
from short_render.models.usage import Service, ServiceCounters
from short_render.pipeline import ShortVideoRequest, build_pipeline
from short_render.pricing import estimate_render_costs, format_cost
from short_render.render import RenderJobFactory
from short_render.storage import create_store
from short_render.timeline import TimelineBuilder

# Priority: local .env > ~/.short-render/.env
load_env_files()

# Create the main Typer app
app = typer.Typer(
    name="short-render",
    help="Render captioned short-form videos from YouTube footage and track API usage.",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()

STATUS_STYLES = {
    ServiceStatus.OK: "green",
    ServiceStatus.WARNING: "yellow",
    ServiceStatus.CRITICAL: "red",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"short-render version {__version__}")
        raise typer.Exit()


def _settings() -> Settings:
    try:
        return load_settings()
    except ShortRenderError as e:
        console.print(f"[red]Error:[/red] {escape(format_error_for_display(e))}")
        raise typer.Exit(1)


def _ledger() -> UsageLedger:
    settings = _settings()
    return UsageLedger(create_store(settings.storage), settings.limits)


def _parse_service(value: str) -> Service:
    try:
        return Service(value)
    except ValueError:
        valid = ", ".join(s.value for s in Service)
        console.print(f"[red]Error:[/red] Unknown service '{value}'. Valid services: {valid}")
        raise typer.Exit(1)


def _counters_table(title: str, totals: dict[Service, ServiceCounters]) -> Table:
    table = Table(title=title)
    table.add_column("Service", style="cyan")
    table.add_column("Requests", style="white", justify="right")
    table.add_column("Cost", style="green", justify="right")
    table.add_column("Tokens", style="dim", justify="right")
    table.add_column("Characters", style="dim", justify="right")

    for service, counters in totals.items():
        if counters.is_zero:
            continue
        table.add_row(
            service.value,
            str(counters.requests),
            format_cost(counters.cost),
            str(counters.tokens) if counters.tokens else "-",
            str(counters.characters) if counters.characters else "-",
        )
    return table


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show progress (info) messages"),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Only show errors"),
    ] = False,
    log_file: Annotated[
        Optional[Path],
        typer.Option("--log-file", help="Also write debug logs to this file"),
    ] = None,
) -> None:
    """Short Render - captioned shorts from YouTube footage.

    Locates direct media for a YouTube link, lays the script out as timed
    captions, renders the result with Shotstack and records every billed
    call in the usage ledger.
    """
    level = LogLevel.NORMAL
    if quiet:
        level = LogLevel.QUIET
    elif verbose:
        level = LogLevel.VERBOSE
    configure_logging(LogConfig(level=level, log_file=log_file))


# =============================================================================
# Video Commands
# =============================================================================


@app.command()
def locate(
    url: Annotated[str, typer.Argument(help="YouTube link of the source video")],
    quality: Annotated[
        str,
        typer.Option("--quality", help="Desired video quality"),
    ] = "720",
) -> None:
    """Resolve a YouTube link to a direct media URL."""
    settings = _settings()
    request = ExtractionRequest(source_url=url, desired_quality=quality)

    with console.status("Locating source video...") as status:

        async def show_attempt(attempt, response):
            status.update(f"Locating source video ({attempt} attempt(s) made).")

        locator = MediaLocator(settings.locator, on_attempt=show_attempt)
        outcome = asyncio.run(locator.locate(request))

    if not outcome.ok:
        console.print(
            f"[red]Extraction failed:[/red] {outcome.reason} "
            f"[dim](after {outcome.attempts} attempt(s))[/dim]"
        )
        raise typer.Exit(1)

    console.print(f"[green]Located:[/green] {escape(outcome.title)}")
    console.print(outcome.media_url, soft_wrap=True)


@app.command()
def timeline(
    script: Annotated[str, typer.Argument(help="Narration script")],
    duration: Annotated[
        float,
        typer.Option("--duration", "-d", help="Video length in seconds"),
    ],
    no_captions: Annotated[
        bool,
        typer.Option("--no-captions", help="Build the timeline without captions"),
    ] = False,
) -> None:
    """Show the caption timeline a script produces."""
    result = TimelineBuilder().build(script, duration, captions_enabled=not no_captions)

    if not result.captions:
        console.print(f"[yellow]No captions[/yellow] for {duration:g}s of background video")
        return

    table = Table(title=f"Captions ({len(result.captions)} clips, {duration:g}s)")
    table.add_column("#", style="dim", width=3)
    table.add_column("Start", style="white", justify="right")
    table.add_column("Length", style="white", justify="right")
    table.add_column("Text", style="cyan")

    for i, clip in enumerate(result.captions, 1):
        table.add_row(str(i), f"{clip.start:g}s", f"{clip.length:g}s", clip.text)

    console.print(table)


@app.command()
def compose(
    media_url: Annotated[str, typer.Argument(help="Direct media URL of the background video")],
    script: Annotated[str, typer.Argument(help="Narration script")],
    duration: Annotated[
        float,
        typer.Option("--duration", "-d", help="Video length in seconds"),
    ],
    start: Annotated[
        float,
        typer.Option("--start", "-s", help="Offset into the source video in seconds"),
    ] = 0.0,
    no_captions: Annotated[
        bool,
        typer.Option("--no-captions", help="Render without captions"),
    ] = False,
) -> None:
    """Print the render job payload for a located video and script."""
    result = TimelineBuilder().build(script, duration, captions_enabled=not no_captions)
    job = RenderJobFactory().compose(media_url, start, result)
    console.print_json(data=job.to_payload())


@app.command()
def render(
    url: Annotated[str, typer.Argument(help="YouTube link of the source video")],
    script: Annotated[str, typer.Argument(help="Narration script")],
    duration: Annotated[
        float,
        typer.Option("--duration", "-d", help="Video length in seconds"),
    ],
    start: Annotated[
        float,
        typer.Option("--start", "-s", help="Offset into the source video in seconds"),
    ] = 0.0,
    no_captions: Annotated[
        bool,
        typer.Option("--no-captions", help="Render without captions"),
    ] = False,
    voice_id: Annotated[
        Optional[str],
        typer.Option("--voice-id", help="ElevenLabs voice for narration"),
    ] = None,
    production: Annotated[
        bool,
        typer.Option("--production", help="Use the billed production environment"),
    ] = False,
) -> None:
    """Locate, compose and render a short video."""
    settings = _settings()
    costs = estimate_render_costs(duration, len(script) if voice_id else 0, production)
    if production:
        console.print(f"Estimated cost: [yellow]{format_cost(costs.total_cost)}[/yellow]")

    request = ShortVideoRequest(
        source_url=url,
        script=script,
        duration=duration,
        start_time=start,
        add_captions=not no_captions,
        voice_id=voice_id,
    )

    try:
        pipeline = build_pipeline(settings, production=production)
        with console.status("Rendering..."):
            result = asyncio.run(pipeline.generate(request))
    except ShortRenderError as e:
        console.print(f"[red]Error:[/red] {escape(format_error_for_display(e))}")
        raise typer.Exit(1)

    console.print(f"[green]Rendered[/green] ({result.mode}): {escape(result.source.title)}")
    console.print(result.video_url, soft_wrap=True)
    console.print(f"[dim]Render ID: {result.render_id}, cost {format_cost(result.costs.total_cost)}[/dim]")


# =============================================================================
# Usage Commands
# =============================================================================

usage_app = typer.Typer(
    name="usage",
    help="Record and inspect third-party API usage.",
)
app.add_typer(usage_app, name="usage")


@usage_app.command("record")
def usage_record(
    service: Annotated[str, typer.Argument(help="Service name (e.g. openai, heygen)")],
    operation: Annotated[str, typer.Argument(help="Operation name (e.g. script-generation)")],
    cost: Annotated[
        float,
        typer.Option("--cost", "-c", help="Cost in USD", min=0),
    ] = 0.0,
    requests: Annotated[
        int,
        typer.Option("--requests", "-r", help="Number of requests", min=1),
    ] = 1,
    tokens: Annotated[
        Optional[int],
        typer.Option("--tokens", help="Tokens consumed", min=0),
    ] = None,
    characters: Annotated[
        Optional[int],
        typer.Option("--characters", help="Characters processed", min=0),
    ] = None,
    model: Annotated[
        Optional[str],
        typer.Option("--model", "-m", help="Model used"),
    ] = None,
) -> None:
    """Record one usage entry in today's log."""
    svc = _parse_service(service)
    ledger = _ledger()
    written = asyncio.run(
        ledger.record_usage(
            svc,
            operation,
            cost=cost,
            requests=requests,
            tokens=tokens,
            characters=characters,
            model=model,
        )
    )
    if not written:
        console.print("[red]Error:[/red] Usage could not be written to the store.")
        raise typer.Exit(1)

    console.print(f"[green]Recorded[/green] {svc.value} {operation}: {format_cost(cost)}")


@usage_app.command("daily")
def usage_daily(
    day: Annotated[
        Optional[str],
        typer.Option("--date", help="Day as YYYY-MM-DD (default: today, UTC)"),
    ] = None,
) -> None:
    """Show per-service totals for one day."""
    ledger = _ledger()
    if day is None:
        target = ledger.today()
    else:
        try:
            target = date.fromisoformat(day)
        except ValueError:
            console.print(f"[red]Error:[/red] Invalid date '{day}', expected YYYY-MM-DD")
            raise typer.Exit(1)

    totals = asyncio.run(ledger.daily_totals(target))
    if all(counters.is_zero for counters in totals.values()):
        console.print(f"[yellow]No usage recorded for {target.isoformat()}[/yellow]")
        return

    console.print(_counters_table(f"Usage for {target.isoformat()}", totals))
    total = sum(counters.cost for counters in totals.values())
    console.print(f"Total: [green]{format_cost(total)}[/green]")


@usage_app.command("monthly")
def usage_monthly(
    month: Annotated[
        Optional[str],
        typer.Option("--month", help="Month as YYYY-MM (default: current month)"),
    ] = None,
) -> None:
    """Show per-service totals for one month."""
    ledger = _ledger()
    if month is None:
        today = ledger.today()
        month = f"{today.year:04d}-{today.month:02d}"

    try:
        parse_month(month)
    except ShortRenderError as e:
        console.print(f"[red]Error:[/red] {escape(format_error_for_display(e))}")
        raise typer.Exit(1)

    totals = asyncio.run(ledger.monthly_totals(month))
    if all(counters.is_zero for counters in totals.values()):
        console.print(f"[yellow]No usage recorded for {month}[/yellow]")
        return

    console.print(_counters_table(f"Usage for {month}", totals))
    total = sum(counters.cost for counters in totals.values())
    console.print(f"Total: [green]{format_cost(total)}[/green]")


@usage_app.command("status")
def usage_status() -> None:
    """Show month-to-date quota status for every limited service."""
    ledger = _ledger()
    report = asyncio.run(ledger.usage_report())

    table = Table(title=f"Quota status ({report.day.strftime('%Y-%m')})")
    table.add_column("Service", style="cyan")
    table.add_column("Used", style="white", justify="right")
    table.add_column("Quota", style="white", justify="right")
    table.add_column("Used %", style="white", justify="right")
    table.add_column("Status")

    for service, status in report.statuses.items():
        limit = ledger.limit_for(service)
        used = limit.current_used + limit.usage_units(report.monthly[service])
        style = STATUS_STYLES[status]
        table.add_row(
            service.value,
            f"{used:g}",
            f"{limit.quota:g}",
            f"{ledger.usage_percentage(service, used):.1f}%",
            f"[{style}]{status.value}[/{style}]",
        )

    console.print(table)
    console.print(f"Month to date: [green]{format_cost(report.monthly_cost)}[/green]")


@usage_app.command("capacity")
def usage_capacity() -> None:
    """Show how many items the bottleneck quota still allows this month."""
    ledger = _ledger()
    report = asyncio.run(ledger.usage_report())

    if report.capacity is None:
        console.print("[yellow]No bottleneck service configured.[/yellow]")
        return

    capacity = report.capacity
    console.print(f"Bottleneck: [cyan]{capacity.service.value}[/cyan]")
    console.print(f"  Units remaining: {capacity.units_remaining:g}")
    console.print(f"  Items remaining: [green]{capacity.estimated_items_remaining}[/green]")
    console.print(f"  Days until reset: {capacity.days_until_reset}")


if __name__ == "__main__":
    app()
