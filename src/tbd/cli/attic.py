"""
tbd CLI - Attic command.

Browse and restore values that merges discarded.
"""

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from tbd.cli.errors import ExitCode, print_error
from tbd.core.config import ConfigError, load_config
from tbd.core.ids import IdMappingError, IdMappingStore
from tbd.core.merge import ArchiveError, ConflictArchiver, ConflictEntry
from tbd.core.paths import ATTIC_DIR, ID_MAPPING_FILE, data_dir
from tbd.core.records import RecordStore, RecordStoreError
from tbd.utils.yaml_io import dump_yaml

console = Console()
app = typer.Typer(
    name="attic",
    help="Inspect values discarded by sync merges",
    no_args_is_help=True,
)


def _context() -> tuple[ConflictArchiver, IdMappingStore, RecordStore]:
    project_dir = Path.cwd()
    try:
        config = load_config(project_dir)
    except ConfigError as e:
        print_error("Invalid configuration", reason=str(e))
        raise typer.Exit(ExitCode.USER_ERROR)
    return (
        ConflictArchiver(project_dir / ATTIC_DIR),
        IdMappingStore(project_dir / ID_MAPPING_FILE, prefix=config.display.id_prefix),
        RecordStore(data_dir(project_dir)),
    )


def _resolve(mapping: IdMappingStore, record_id: str) -> str:
    try:
        return mapping.resolve(record_id)
    except IdMappingError as e:
        print_error(str(e), solution="tbd attic list")
        raise typer.Exit(ExitCode.USER_ERROR)


def _find(
    archiver: ConflictArchiver, record_id: str, timestamp: str, field: str | None
) -> ConflictEntry:
    try:
        return archiver.find(record_id, timestamp, field)
    except ArchiveError as e:
        print_error(str(e), solution=f"tbd attic list {record_id}")
        raise typer.Exit(ExitCode.USER_ERROR)


@app.command(name="list")
def list_entries(
    record_id: str | None = typer.Argument(None, help="Only entries for this record"),
    limit: int | None = typer.Option(None, "--limit", "-n", help="Show at most N entries"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """
    List attic entries, newest first.

    Examples:
        tbd attic list
        tbd attic list bd-a7k2
    """
    archiver, mapping, _ = _context()
    internal_id = _resolve(mapping, record_id) if record_id else None
    entries = archiver.list_entries(internal_id)
    if limit is not None:
        entries = entries[:limit]

    if json_output:
        typer.echo("[" + ",".join(e.model_dump_json() for e in entries) + "]")
        return

    if not entries:
        console.print("[dim]Attic is empty[/dim]")
        return

    table = Table(title="Attic")
    table.add_column("Record", style="cyan")
    table.add_column("Timestamp")
    table.add_column("Field")
    table.add_column("Kept")
    table.add_column("Resolution", style="dim")
    for entry in entries:
        table.add_row(
            mapping.format_display_id(entry.record_id),
            entry.timestamp,
            entry.field,
            entry.winner_source.value,
            entry.resolution.value,
        )
    console.print(table)


@app.command()
def show(
    record_id: str = typer.Argument(..., help="Record id (bd-a7k2 or is-...)"),
    timestamp: str = typer.Argument(..., help="Entry timestamp"),
    field: str | None = typer.Option(None, "--field", "-f", help="Field, if several match"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """
    Show one attic entry.

    Examples:
        tbd attic show bd-a7k2 2025-01-07T10-30-00Z
    """
    archiver, mapping, _ = _context()
    entry = _find(archiver, _resolve(mapping, record_id), timestamp, field)

    if json_output:
        typer.echo(entry.model_dump_json(indent=2))
        return

    console.print(
        f"[bold]{mapping.format_display_id(entry.record_id)}[/bold] "
        f"{entry.field} @ {entry.timestamp}"
    )
    console.print(
        f"[dim]{entry.resolution.value}: kept {entry.winner_source.value}, "
        f"lost {entry.loser_source.value} "
        f"(local v{entry.local_version}, remote v{entry.remote_version})[/dim]"
    )
    console.print("\n[cyan]Lost value:[/cyan]")
    console.print(dump_yaml(entry.lost_value).rstrip(), highlight=False, markup=False)
    console.print("\n[cyan]Kept value:[/cyan]")
    console.print(dump_yaml(entry.winner_value).rstrip(), highlight=False, markup=False)


@app.command()
def restore(
    record_id: str = typer.Argument(..., help="Record id (bd-a7k2 or is-...)"),
    timestamp: str = typer.Argument(..., help="Entry timestamp"),
    field: str | None = typer.Option(None, "--field", "-f", help="Field, if several match"),
) -> None:
    """
    Write a lost value back into its record.

    The change is local until the next 'tbd sync'.

    Examples:
        tbd attic restore bd-a7k2 2025-01-07T10-30-00Z
    """
    archiver, mapping, store = _context()
    entry = _find(archiver, _resolve(mapping, record_id), timestamp, field)

    try:
        record = archiver.restore(store, entry)
    except (ArchiveError, RecordStoreError) as e:
        print_error("Restore failed", reason=str(e))
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    console.print(
        f"[green]✓[/green] Restored {entry.field} for "
        f"{mapping.format_display_id(record.id)} (now version {record.version})"
    )
