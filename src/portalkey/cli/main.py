"""portalkey CLI - keep this host logged in behind a captive portal.

``portalkey run`` is the single entry point for timers and interface hooks;
the other commands are for operators.
"""

import json
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Annotated

import click
import typer
from rich.console import Console
from rich.panel import Panel

import portalkey
from portalkey import console as pk_console
from portalkey.config import PortalkeySettings, get_settings
from portalkey.exceptions import ConfigurationError, LockContentionError, StorageError
from portalkey.lock import RunLock
from portalkey.logging import configure_logging, get_logger
from portalkey.orchestrator import AuthOrchestrator
from portalkey.state import AuthRecord, AuthStatus, StateStore

# Exit codes for ``portalkey run``; the login outcome itself lives in state and log
EXIT_LOCKED = 1
EXIT_SETUP_FAILURE = 2

# Configure logging early using env vars directly; main_callback() may
# reconfigure once settings and -v flags are known.
configure_logging(
    level=os.environ.get("PORTALKEY_LOG_LEVEL", "WARNING"),
    json_output=os.environ.get("PORTALKEY_LOG_FORMAT", "console") == "json",
)

LOG = get_logger(__name__)

app = typer.Typer(
    name="portalkey",
    help="""
    🔑 portalkey - stay logged in behind a captive portal

    \b
    Quick start:
      portalkey run            Check connectivity and log in if needed
      portalkey status         Show the persisted authentication record
      portalkey config         Show current configuration
    """,
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)
console = Console()


def _log_level(ctx: typer.Context, settings: PortalkeySettings) -> str:
    verbose = ctx.ensure_object(dict).get("verbose", 0)
    if verbose >= 2:
        return "DEBUG"
    if verbose >= 1:
        return "INFO"
    return settings.log_level


def _json_logs(ctx: typer.Context, settings: PortalkeySettings) -> bool:
    log_format = ctx.ensure_object(dict).get("log_format")
    return (log_format or settings.log_format) == "json"


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose",
            "-v",
            count=True,
            help="Increase verbosity (-v for info, -vv for debug)",
        ),
    ] = 0,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            click_type=click.Choice(["console", "json"]),
            help="Log output format: console (human-readable) or json (structured)",
        ),
    ] = None,
) -> None:
    """portalkey - stay logged in behind a captive portal."""
    obj = ctx.ensure_object(dict)
    obj["verbose"] = verbose
    obj["log_format"] = log_format

    if verbose or log_format is not None:
        settings = get_settings()
        configure_logging(
            level=_log_level(ctx, settings),
            json_output=_json_logs(ctx, settings),
        )


@app.command("run")
def run(
    ctx: typer.Context,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Log in even if the session looks valid"),
    ] = False,
) -> None:
    """Run one decision cycle: skip, log in, or mark as authenticated."""
    settings = get_settings()
    try:
        # The run log lives in the state directory, so it must exist first
        StateStore(settings.state_dir).provision()
    except StorageError as exc:
        pk_console.error(str(exc))
        raise typer.Exit(EXIT_SETUP_FAILURE) from None

    configure_logging(
        level=_log_level(ctx, settings),
        json_output=_json_logs(ctx, settings),
        log_file=settings.log_path,
    )

    try:
        outcome = AuthOrchestrator.from_settings(settings).run(force=force)
    except LockContentionError as exc:
        pk_console.warn(f"Another run is in progress; skipping ({exc})")
        raise typer.Exit(EXIT_LOCKED) from None
    except (ConfigurationError, StorageError) as exc:
        LOG.error("run_setup_failed", error=str(exc))
        pk_console.error(str(exc))
        raise typer.Exit(EXIT_SETUP_FAILURE) from None

    pk_console.report_outcome(outcome)


def _format_epoch(epoch: int) -> str:
    if not epoch:
        return "never"
    return datetime.fromtimestamp(epoch).strftime("%Y-%m-%d %H:%M:%S")


def _read_record(store: StateStore, lock_path: Path) -> tuple[AuthRecord, bool]:
    """Load the record under the run-lock when it is free.

    Returns:
        Tuple of (record, run_in_progress). While a run holds the lock the
        record is read anyway and may pair a new status with an old timestamp.
    """
    try:
        with RunLock(lock_path):
            return store.load(), False
    except LockContentionError:
        return store.load(), True
    except StorageError:
        # Lock file unusable for this user; read without it
        return store.load(), False


@app.command("status")
def status(
    json_output: Annotated[
        bool,
        typer.Option("--json", "-j", help="Output as JSON for scripting"),
    ] = False,
) -> None:
    """Show the persisted authentication record."""
    settings = get_settings()
    store = StateStore(settings.state_dir)
    now = time.time()

    if not store.status_path.exists():
        console.print(
            Panel(
                "[dim]No authentication record yet.[/dim]\n\n"
                "Run [cyan]portalkey run[/cyan] to create one.",
                title="No Record",
                border_style="yellow",
            )
        )
        return

    record, in_progress = _read_record(store, settings.run_lock_path)
    expired = record.is_expired(now, settings.session_duration_seconds)
    remaining = max(0, settings.session_duration_seconds - record.session_age(now))
    failure_path = store.failure_path if store.failure_path.exists() else None

    if json_output:
        data = {
            "status": record.status.value,
            "last_success": record.last_success,
            "session_expired": expired,
            "expires_in_seconds": remaining,
            "last_failure": str(failure_path) if failure_path else None,
            "run_in_progress": in_progress,
        }
        console.print(json.dumps(data, indent=2), soft_wrap=True)
        return

    if record.status is AuthStatus.AUTHENTICATED:
        status_display = "[green]● authenticated[/green]"
    elif record.status is AuthStatus.FAILED:
        status_display = "[red]✗ failed[/red]"
    else:
        status_display = "[yellow]? unknown[/yellow]"

    if record.status is not AuthStatus.AUTHENTICATED:
        expiry = "[dim]-[/dim]"
    elif expired:
        expiry = "[red]expired[/red]"
    else:
        expiry = f"in {remaining // 3600}h {remaining % 3600 // 60}m"

    info = f"""
{status_display}

[dim]Last success:[/dim]  {_format_epoch(record.last_success)}
[dim]Session:[/dim]       {expiry}
[dim]Last failure:[/dim]  {failure_path or "none"}
[dim]Run log:[/dim]       {settings.log_path}"""
    if in_progress:
        info += "\n\n[yellow]A run is in progress; the record may be mid-update.[/yellow]"

    console.print(Panel(info.strip(), title="🔑 Portal Status", border_style="cyan"))


@app.command("reset")
def reset() -> None:
    """Forget the persisted record so the next run starts fresh."""
    settings = get_settings()
    store = StateStore(settings.state_dir)
    try:
        with RunLock(settings.run_lock_path):
            store.clear()
    except LockContentionError as exc:
        pk_console.warn(f"A run is in progress; try again shortly ({exc})")
        raise typer.Exit(EXIT_LOCKED) from None
    except StorageError as exc:
        pk_console.error(str(exc))
        raise typer.Exit(EXIT_SETUP_FAILURE) from None
    pk_console.success("Authentication record cleared")


@app.command("config")
def config() -> None:
    """Show current portalkey configuration."""
    settings = get_settings()
    described = settings.describe()

    info = f"""
[dim]Username:[/dim]          {described["username"]}
[dim]Password:[/dim]          {described["password"]}
[dim]Probe URL:[/dim]         {described["probe_url"]}
[dim]Session duration:[/dim]  {settings.session_duration_seconds}s ({settings.session_duration_seconds / 3600:g}h)
[dim]DNS probe host:[/dim]    {described["dns_probe_host"]} ({described["dns_timeout"]}s)
[dim]Timeouts:[/dim]          probe {described["probe_timeout"]}s, login {described["login_timeout"]}s
[dim]State directory:[/dim]   {described["state_dir"]}
[dim]Lock file:[/dim]         {described["lock_path"]}
[dim]Log level:[/dim]         {described["log_level"]}
[dim]Log format:[/dim]        {described["log_format"]}"""

    console.print(Panel(info.strip(), title="⚙ Configuration", border_style="cyan"))


@app.command("version")
def version() -> None:
    """Show portalkey version and installation info."""
    settings = get_settings()
    console.print(
        Panel(
            f"[bold cyan]portalkey[/bold cyan] v{portalkey.__version__}\n\n"
            f"[dim]State:[/dim] {settings.state_dir}",
            title="Stay logged in behind a captive portal",
            border_style="cyan",
        )
    )


if __name__ == "__main__":
    app()
