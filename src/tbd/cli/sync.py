"""
tbd CLI - Sync command.

Thin boundary over SyncService: runs a full sync (commit, fetch and merge,
push) and renders the summary as text or JSON.
"""

import typer
from rich.console import Console
from rich.table import Table

from tbd import __version__
from tbd.cli.errors import (
    ExitCode,
    print_error,
    print_not_git_repo_error,
    print_sync_not_initialized_error,
)
from tbd.core.config import ConfigError, init_config, load_config
from tbd.core.sync import BranchStatus, GitError, SyncService, SyncStatus, SyncSummary

console = Console()
app = typer.Typer(
    name="sync",
    help="Sync records through the tbd-sync git branch",
    no_args_is_help=False,
)


def _service() -> SyncService:
    try:
        return SyncService(config=load_config())
    except ConfigError as e:
        print_error("Invalid configuration", reason=str(e), solution="edit .tbd/config.yml")
        raise typer.Exit(ExitCode.USER_ERROR)


def render_summary(summary: SyncSummary) -> None:
    """Print a sync summary. Failure is never rendered as a synced message."""
    if not summary.success:
        print_error(
            "Sync failed",
            reason=summary.error,
            solution="fix the problem above and run 'tbd sync' again",
        )
        return

    console.print(f"[green]✓[/green] {summary.describe()}")
    for conflict in summary.conflicts:
        console.print(
            f"[yellow]⚠[/yellow]  {conflict.record_id} {conflict.field}: "
            f"kept {conflict.winner_source.value}, archived {conflict.loser_source.value} "
            f"([dim]tbd attic show {conflict.record_id} {conflict.timestamp}[/dim])"
        )


@app.callback(invoke_without_command=True)
def sync(
    ctx: typer.Context,
    status: bool = typer.Option(
        False,
        "--status",
        help="Show sync status without syncing",
    ),
    push_only: bool = typer.Option(
        False,
        "--push",
        help="Only push local changes (still merges if the push is rejected)",
    ),
    pull_only: bool = typer.Option(
        False,
        "--pull",
        help="Only fetch and merge remote changes; do not push",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON",
    ),
) -> None:
    """
    Sync records with the remote.

    Commits local record changes to the sync branch, merges remote changes
    field by field (losing values go to the attic), and pushes.

    Examples:
        tbd sync                 # Full sync
        tbd sync --json          # Full sync, JSON summary
        tbd sync --status        # Show ahead/behind without syncing
        tbd sync --pull          # Merge remote changes only
        tbd sync --push          # Push local changes only
    """
    # If a subcommand was invoked, don't run the default action
    if ctx.invoked_subcommand is not None:
        return

    if push_only and pull_only:
        print_error(
            "--push and --pull cannot be combined",
            solution="run 'tbd sync' without either flag for a full sync",
        )
        raise typer.Exit(ExitCode.USER_ERROR)

    sync_service = _service()

    if status:
        show_status(sync_service, json_output)
        return

    if not sync_service.is_initialized():
        if json_output:
            typer.echo(
                SyncSummary(
                    status=SyncStatus.FAILED, error="Sync branch not initialized"
                ).model_dump_json(indent=2)
            )
        else:
            print_sync_not_initialized_error()
        raise typer.Exit(ExitCode.USER_ERROR)

    summary = sync_service.sync(pull=not push_only, push=not pull_only)

    if json_output:
        typer.echo(summary.model_dump_json(indent=2))
    else:
        render_summary(summary)

    if not summary.success:
        raise typer.Exit(ExitCode.GENERAL_ERROR)


def show_status(sync_service: SyncService, json_output: bool) -> None:
    """Print the state of the sync branch relative to the remote."""
    try:
        state = sync_service.get_state()
    except GitError as e:
        print_error("Could not read sync status", reason=str(e))
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    if json_output:
        typer.echo(state.model_dump_json(indent=2))
        if state.status == BranchStatus.UNINITIALIZED:
            raise typer.Exit(ExitCode.USER_ERROR)
        return

    status_icons = {
        BranchStatus.UP_TO_DATE: ("✓", "green", "Up to date with remote"),
        BranchStatus.AHEAD: ("↑", "yellow", "Local changes not pushed"),
        BranchStatus.BEHIND: ("↓", "yellow", "Remote changes available"),
        BranchStatus.DIVERGED: ("⚠", "red", "Local and remote have diverged"),
        BranchStatus.NO_REMOTE: ("○", "blue", "No remote branch"),
        BranchStatus.UNINITIALIZED: ("✗", "red", "Not initialized"),
    }
    icon, color, message = status_icons[state.status]
    console.print(f"[{color}]{icon}[/{color}] {message}")

    if state.status == BranchStatus.UNINITIALIZED:
        console.print("\nRun [bold]tbd sync init[/bold] to initialize.")
        raise typer.Exit(ExitCode.USER_ERROR)

    table = Table(title="Sync Details", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Branch", state.branch_name)
    table.add_row("Remote", state.remote_name)
    if state.local_tip:
        table.add_row("Local tip", state.local_tip[:8])
    if state.remote_tip:
        table.add_row("Remote tip", state.remote_tip[:8])
    table.add_row("Ahead / behind", f"{state.ahead} / {state.behind}")
    table.add_row("Uncommitted files", str(state.pending_changes))
    console.print()
    console.print(table)

    if state.status in (BranchStatus.AHEAD, BranchStatus.BEHIND, BranchStatus.DIVERGED):
        console.print("\n[dim]→ Run [bold]tbd sync[/bold] to reconcile[/dim]")
    elif state.status == BranchStatus.NO_REMOTE:
        console.print("\n[dim]→ Run [bold]tbd sync[/bold] to create the remote branch[/dim]")


@app.command()
def init() -> None:
    """
    Initialize tbd in this repository.

    Writes .tbd/config.yml and creates the sync branch, or adopts the
    remote one if another clone already created it.

    Examples:
        tbd sync init
    """
    sync_service = _service()
    if not sync_service.is_git_repo():
        print_not_git_repo_error()
        raise typer.Exit(ExitCode.USER_ERROR)

    try:
        init_config(sync_service.project_dir, version=__version__)
        if sync_service.is_initialized():
            console.print(
                f"[yellow]Sync branch '{sync_service.branch_name}' already exists[/yellow]"
            )
            return
        tip = sync_service.initialize()
    except (GitError, RuntimeError, OSError) as e:
        print_error("Initialization failed", reason=str(e))
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    console.print(f"[green]✓[/green] Initialized sync branch: {sync_service.branch_name}")
    console.print(f"[dim]Tip: {tip[:8]}. Run [bold]tbd sync[/bold] to share records.[/dim]")
