"""Rich terminal display for git-extract."""

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from gitextract.models import ApplySummary, PlanSummary, SessionState


console = Console()
err_console = Console(stderr=True)


def configure_logging(level: int) -> None:
    """Route library logging to stderr through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def print_commit_count(count: int, branch: str) -> None:
    """Print how many commits are up for routing."""
    console.print(f"Routing [bold]{count}[/bold] commits from '[bold]{branch}[/bold]'")


def print_plan_summary(summary: PlanSummary) -> None:
    """Print dry-run assignment counts."""
    console.print("[bold]Dry run: assignments[/bold]")

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Destination", style="cyan")
    table.add_column("Commits")

    for label, count in summary.per_destination.items():
        table.add_row(label, f"{count} commits")
    if summary.dropped:
        table.add_row("dropped", f"[dim]{summary.dropped} commits[/dim]")

    console.print(table)


def print_apply_summary(summary: ApplySummary) -> None:
    """Print what a completed apply did."""
    console.print("[bold green]Apply complete[/bold green]")
    if summary.created_branches:
        console.print(f"  created: {', '.join(summary.created_branches)}")
    for branch, count in summary.commits_per_branch.items():
        console.print(f"  {branch}: {count} commits")


def print_conflict(state: SessionState, message: str) -> None:
    """Explain how to finish or cancel a paused session."""
    queue = state.current_queue
    branch = queue.branch if queue else "?"

    console.print()
    console.print(Panel(
        Text(message or "cherry-pick failed"),
        title=f"Conflict while building '{branch}'",
        style="yellow",
    ))
    console.print(f"Resolve conflicts in worktree: [bold]{state.worktree_path}[/bold]", soft_wrap=True)
    console.print("Then run: [bold]git extract --continue[/bold]  (or --abort to cancel)")


def print_session_aborted(worktree_path: str) -> None:
    """Print abort confirmation."""
    console.print(f"extract session aborted; temp worktree removed ({worktree_path})")


def print_dry_run_notice() -> None:
    """Print dry run notice."""
    console.print(Panel(
        "[yellow]DRY RUN MODE[/yellow] - No branches will be changed",
        style="yellow",
    ))


def print_error(message: str) -> None:
    """Print an error message."""
    err_console.print(Text.assemble(("Error: ", "bold red"), message))
