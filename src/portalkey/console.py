"""Terminal messages for portalkey commands.

Status lines go to stderr so ``portalkey status --json`` keeps stdout clean.
"""

from rich.console import Console

from portalkey.orchestrator import Action, RunOutcome

err_console = Console(stderr=True)


def success(message: str) -> None:
    """Print a green checkmark line."""
    err_console.print(f"[green]  ✓ {message}[/green]")


def error(message: str) -> None:
    """Print a red cross line."""
    err_console.print(f"[red]  ✗ {message}[/red]")


def warn(message: str) -> None:
    err_console.print(f"[yellow]  ⚠ {message}[/yellow]")


def info(message: str) -> None:
    err_console.print(f"[dim]  {message}[/dim]")


def report_outcome(outcome: RunOutcome) -> None:
    """Print a one-line summary of a decision cycle."""
    if outcome.action is Action.SKIP:
        info("Session still valid and internet reachable; nothing to do")
    elif outcome.action is Action.MARK_AUTHENTICATED:
        success("Internet reachable; recorded as authenticated")
    elif outcome.login is not None and outcome.login.success:
        success("Logged in to captive portal")
    else:
        step = outcome.login.failed_step if outcome.login else None
        error(f"Portal login failed at step: {step}")
