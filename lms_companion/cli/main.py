"""
lms - terminal client for the LMS session core

Usage:
    lms login --email me@example.com --token <provider-token>
    lms restore                 # Resume the stored session
    lms status                  # Show the local session state
    lms dashboard api/studentdashboard/mycourses/
    lms take-test T-42 --follow # Run the test countdown in the terminal
    lms logout [--force]
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Annotated

import httpx
import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from lms_companion import __version__
from lms_companion.config import get_settings
from lms_companion.core import keys
from lms_companion.core.context import AppContext, build_context
from lms_companion.core.errors import EncryptionError, LMSError, LoginError, UnauthorizedError
from lms_companion.study.test_clock import ClockState, format_time

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="lms",
    help="LMS companion - session, progression and test clock from the terminal",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()


def get_context() -> AppContext:
    """Build the context used by every command."""
    return build_context(get_settings())


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/]")
    raise typer.Exit(1)


def _format_age(now_ms: int, stamp: str | None) -> str:
    try:
        then = int(stamp or 0)
    except ValueError:
        return "-"
    if then <= 0:
        return "-"
    seconds = max(0, (now_ms - then) // 1000)
    hh, mm, ss = format_time(seconds)
    return f"{hh}:{mm}:{ss} ago"


# =============================================================================
# Session Commands
# =============================================================================


@app.command()
def login(
    email: Annotated[str, typer.Option("--email", "-e", help="Learner email")],
    token: Annotated[str, typer.Option("--token", "-t", help="Identity-provider access token")],
    name: Annotated[str, typer.Option("--name", help="Display name")] = "",
    picture: Annotated[str, typer.Option("--picture", help="Profile picture URL")] = "",
) -> None:
    """Log in with an identity-provider token."""
    asyncio.run(_run_login(email, token, {"name": name, "picture": picture}))


async def _run_login(email: str, token: str, profile: dict[str, str]) -> None:
    async with get_context() as ctx:
        try:
            identity = await ctx.envelope.login(email, token, profile)
        except (LoginError, EncryptionError) as e:
            _fail(f"Login failed: {e}")
        except httpx.HTTPError as e:
            _fail(f"Backend unreachable: {e}")

        console.print(
            Panel(
                f"[bold green]Logged in[/]\n"
                f"Student: {identity.student_id}\n"
                f"Course: {identity.course_id}\n"
                f"Batch: {identity.batch_id}",
                border_style="green",
            )
        )


@app.command()
def restore() -> None:
    """Resume the session stored on this machine."""
    asyncio.run(_run_restore())


async def _run_restore() -> None:
    async with get_context() as ctx:
        if not ctx.envelope.access_token:
            _fail("No stored session")

        if await ctx.envelope.restore_session():
            console.print(f"[green]Session restored[/] -> {ctx.navigator.current_route}")
        elif ctx.envelope.access_token:
            console.print("[yellow]Backend unreachable, stored session kept[/]")
        else:
            _fail("Stored session expired or was rejected, please log in again")


@app.command()
def status() -> None:
    """Show the local session state (no network calls)."""
    asyncio.run(_run_status())


async def _run_status() -> None:
    async with get_context() as ctx:
        durable = ctx.stores.durable
        identity = ctx.envelope.identity()
        now_ms = ctx.scheduler.now_ms()

        table = Table(title="Session")
        table.add_column("Field", style="cyan")
        table.add_column("Value")

        table.add_row("Token stored", "yes" if ctx.envelope.access_token else "no")
        table.add_row("Student", identity.student_id or "-")
        table.add_row("Name", identity.name or "-")
        table.add_row("Email", identity.email or "-")
        table.add_row("Course", identity.course_id or "-")
        table.add_row("Batch", identity.batch_id or "-")
        table.add_row("Logged in", _format_age(now_ms, durable.get_item(keys.DURABLE_TIMESTAMP)))
        table.add_row("Last activity", _format_age(now_ms, durable.get_item(keys.DURABLE_LAST_ACTIVITY)))
        table.add_row("Backend", ctx.settings.backend_url)

        console.print(table)


@app.command()
def logout(
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Report a forced logout")
    ] = False,
) -> None:
    """Log out and wipe the stored session."""
    asyncio.run(_run_logout(force))


async def _run_logout(force: bool) -> None:
    async with get_context() as ctx:
        await ctx.envelope.logout(force=force)
        console.print("[green]Logged out[/]")


# =============================================================================
# Learning Commands
# =============================================================================


@app.command()
def dashboard(
    path: Annotated[str, typer.Argument(help="Dashboard endpoint, e.g. api/studentdashboard/mycourses/")],
    param: Annotated[
        list[str] | None, typer.Option("--param", "-p", help="Query parameter key=value")
    ] = None,
) -> None:
    """Fetch a dashboard endpoint and print the JSON."""
    params = {}
    for item in param or []:
        key, sep, value = item.partition("=")
        if not sep:
            _fail(f"Invalid --param {item!r}, expected key=value")
        params[key] = value

    asyncio.run(_run_dashboard(path, params or None))


async def _run_dashboard(path: str, params: dict[str, str] | None) -> None:
    async with get_context() as ctx:
        await _require_session(ctx)
        try:
            data = await ctx.client.get_dashboard(path, params)
        except UnauthorizedError:
            _fail("Session rejected by backend, please log in again")
        except httpx.HTTPError as e:
            _fail(f"Request failed: {e}")

        console.print_json(json.dumps(data, default=str))


@app.command("take-test")
def take_test(
    test_id: Annotated[str, typer.Argument(help="Test identifier")],
    follow: Annotated[
        bool, typer.Option("--follow", help="Run the countdown until it expires")
    ] = False,
) -> None:
    """Seed a test clock from the backend and optionally run it."""
    asyncio.run(_run_take_test(test_id, follow))


async def _run_take_test(test_id: str, follow: bool) -> None:
    async with get_context() as ctx:
        await _require_session(ctx)
        clock = ctx.test_clock(test_id)

        try:
            state = await clock.seed()
        except UnauthorizedError:
            _fail("Session rejected by backend, please log in again")

        if state == ClockState.ABANDONED:
            console.print(f"[yellow]Test {test_id} is already completed[/]")
            return
        if state == ClockState.IDLE:
            _fail(f"Could not load the duration of test {test_id}")

        hh, mm, ss = format_time(clock.seconds_remaining)
        console.print(Panel(f"[bold]Test {test_id}[/]\nTime left: {hh}:{mm}:{ss}", border_style="cyan"))

        if not follow or not clock.start():
            return

        while clock.state == ClockState.COUNTING:
            await asyncio.sleep(1)

        console.print(f"Test clock finished: [bold]{clock.state.value}[/]")


async def _require_session(ctx: AppContext) -> None:
    if ctx.envelope.has_session_data():
        return
    if not await ctx.envelope.restore_session():
        _fail("Not logged in")


# =============================================================================
# Entry Point
# =============================================================================


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"lms-companion {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Verbose output")
    ] = False,
    version: Annotated[
        bool,
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show version"),
    ] = False,
) -> None:
    """
    LMS companion - session, progression and test clock from the terminal

    \b
    Quick Start:
      lms login -e me@example.com -t <token>
      lms status
      lms take-test T-42 --follow
    """
    level = "DEBUG" if verbose else get_settings().log_level
    logger.remove()
    logger.add(sys.stderr, level=level, format="<level>{message}</level>")


def run() -> None:
    """Entry point for the CLI."""
    try:
        app()
    except LMSError as e:
        console.print(f"[red]{e}[/]")
        sys.exit(1)


if __name__ == "__main__":
    run()
