"""CLI commands for the curriculum service.

Commands:
- init-db: Create the database schema
- add-level / list-levels: Catalog authoring
- delete-level: Delete a level and repair student progress
- repair: Finish repairs left by a failed deletion
- enroll / complete / import-progress: Student progress
- check: Audit catalog and progress consistency
- report: Dashboard numbers
"""

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from curriculum.core.consistency_engine import PartialFailureError, UnitNotFoundError
from curriculum.core.integrity import check_integrity
from curriculum.core.progression import (
    LevelNotAvailableError,
    complete_unit,
    enroll_student,
    load_progress,
)
from curriculum.core.reports import PERIODS, build_summary, registrations_per_day
from curriculum.core.services import Services, build_services
from curriculum.db.database import StoreUnavailableError
from curriculum.db.progress_repository import (
    DuplicateProgressRecordError,
    ProgressRecord,
    ProgressRecordNotFoundError,
)

app = typer.Typer(
    name="curriculum",
    help="Level catalog administration with consistent student progress.",
    no_args_is_help=True,
)

console = Console()

# Exit codes
EXIT_NOT_FOUND = 1
EXIT_PARTIAL_FAILURE = 2
EXIT_STORE_UNAVAILABLE = 3


def _open_services() -> Services:
    """Open the stores or exit with a readable error."""
    try:
        return build_services()
    except StoreUnavailableError as e:
        console.print(f"[red]✗ Database unavailable ({e.operation})[/red]")
        raise typer.Exit(code=EXIT_STORE_UNAVAILABLE)


def _report_partial_failure(e: PartialFailureError) -> None:
    console.print(
        f"[red bold]✗ Level {e.unit_id} (number {e.unit_seq}) was deleted, "
        f"but student progress was not fully updated.[/red bold]"
    )
    console.print(f"  [dim]records updated so far:[/dim] {e.committed_count}")
    console.print("  Run [bold]curriculum repair[/bold] to finish the update.")


@app.command(name="init-db")
def init_db() -> None:
    """Create the database and its tables."""
    services = _open_services()
    console.print(f"[green]✓ Database ready:[/green] {services.db.db_path}")


@app.command(name="add-level")
def add_level(
    unit_seq: int = typer.Argument(..., min=1, help="Level number"),
    title: str = typer.Argument(..., help="Level title"),
    description: str = typer.Option("", "--description", "-d", help="Short description"),
    content: Path | None = typer.Option(
        None, "--content", "-c", help="JSON file with quizzes and pronunciations"
    ),
) -> None:
    """Add a level to the catalog."""
    payload: dict = {}
    if content is not None:
        try:
            payload = json.loads(content.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            console.print(f"[red]✗ Cannot read content file: {e}[/red]")
            raise typer.Exit(code=1)

    services = _open_services()
    holder = services.catalog.get_by_seq(unit_seq)
    if holder is not None:
        console.print(
            f"[red]✗ Level number {unit_seq} is already used by '{holder.title}' "
            f"({holder.unit_id})[/red]"
        )
        raise typer.Exit(code=1)

    unit = services.catalog.add(unit_seq, title, description, payload)
    console.print("[green]✓ Level created[/green]")
    console.print(f"  [dim]unit_id:[/dim] {unit.unit_id}")
    console.print(f"  [dim]number:[/dim]  {unit.unit_seq}")


@app.command(name="list-levels")
def list_levels() -> None:
    """List levels in curriculum order."""
    services = _open_services()
    units = services.catalog.list_units()

    if not units:
        console.print("[yellow]No levels created yet[/yellow]")
        console.print("  Add one with: curriculum add-level <number> <title>")
        return

    table = Table(title="Levels")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Quizzes", justify="right")
    table.add_column("Pronunciations", justify="right")
    table.add_column("ID", style="dim")
    for unit in units:
        table.add_row(
            str(unit.unit_seq),
            unit.title or "Untitled",
            str(unit.quiz_count),
            str(unit.pronunciation_count),
            unit.unit_id,
        )
    console.print(table)


@app.command(name="delete-level")
def delete_level(
    unit_id: str = typer.Argument(..., help="ID of the level to delete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
) -> None:
    """Delete a level and update every student's progress accordingly."""
    services = _open_services()
    unit = services.catalog.get(unit_id)
    if unit is None:
        console.print(f"[red]✗ Level not found: {unit_id}[/red]")
        raise typer.Exit(code=EXIT_NOT_FOUND)

    console.print(f"\n[bold]Level {unit.unit_seq}: {unit.title or 'Untitled'}[/bold]")
    console.print(
        f"  This removes {unit.quiz_count} quiz(zes) and "
        f"{unit.pronunciation_count} pronunciation exercise(s),"
    )
    console.print("  renumbers the levels after it and updates student progress.")

    if not yes:
        console.print("\nTo confirm, type exactly:")
        console.print(f"  [bold]DELETE {unit_id}[/bold]")
        confirm = typer.prompt("\nConfirmation").strip()
        if confirm != f"DELETE {unit_id}":
            console.print("[yellow]Cancelled - confirmation text did not match[/yellow]")
            raise typer.Exit(code=0)

    console.print("[blue]Deleting level and updating student progress...[/blue]")
    try:
        result = services.engine.delete_unit(unit_id)
    except UnitNotFoundError:
        console.print(f"[red]✗ Level not found: {unit_id}[/red]")
        raise typer.Exit(code=EXIT_NOT_FOUND)
    except PartialFailureError as e:
        _report_partial_failure(e)
        raise typer.Exit(code=EXIT_PARTIAL_FAILURE)
    except StoreUnavailableError as e:
        console.print(f"[red]✗ Database unavailable ({e.operation}); nothing was deleted[/red]")
        raise typer.Exit(code=EXIT_STORE_UNAVAILABLE)

    console.print(
        f"[green]✓ Level deleted successfully! Updated {result.affected_count} student(s).[/green]"
    )
    if result.batches > 1:
        console.print(f"  [dim]batches:[/dim] {result.batches}")


@app.command()
def repair() -> None:
    """Finish student progress updates left pending by a failed deletion."""
    services = _open_services()
    try:
        results = services.engine.repair_pending()
    except PartialFailureError as e:
        _report_partial_failure(e)
        raise typer.Exit(code=EXIT_PARTIAL_FAILURE)
    except StoreUnavailableError as e:
        console.print(f"[red]✗ Database unavailable ({e.operation})[/red]")
        raise typer.Exit(code=EXIT_STORE_UNAVAILABLE)

    if not results:
        console.print("[green]✓ Nothing to repair[/green]")
        return

    for result in results:
        console.print(
            f"[green]✓ Level {result.unit_id} (number {result.unit_seq}): "
            f"updated {result.affected_count} student(s)[/green]"
        )


@app.command()
def enroll(
    owner_id: str = typer.Argument(..., help="Student ID"),
    name: str = typer.Option("", "--name", "-n", help="Display name"),
    email: str = typer.Option("", "--email", "-e", help="Email address"),
) -> None:
    """Enroll a student at level 1."""
    services = _open_services()
    extra = {k: v for k, v in {"name": name, "email": email}.items() if v}
    try:
        enroll_student(services.progress, owner_id, extra)
    except DuplicateProgressRecordError:
        console.print(f"[yellow]⚠ Student already enrolled: {owner_id}[/yellow]")
        raise typer.Exit(code=1)

    console.print(f"[green]✓ Enrolled {owner_id}[/green]")


@app.command()
def complete(
    owner_id: str = typer.Argument(..., help="Student ID"),
    unit_seq: int = typer.Argument(..., min=1, help="Level number completed"),
) -> None:
    """Record that a student completed a level."""
    services = _open_services()
    try:
        record = complete_unit(services.catalog, services.progress, owner_id, unit_seq)
    except LevelNotAvailableError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)
    except ProgressRecordNotFoundError:
        console.print(f"[red]✗ Student not enrolled: {owner_id}[/red]")
        raise typer.Exit(code=EXIT_NOT_FOUND)

    console.print(f"[green]✓ {owner_id} completed level {unit_seq}[/green]")
    console.print(f"  [dim]current level:[/dim] {record.current_position}")
    console.print(f"  [dim]completed:[/dim]     {record.completed_count}")


@app.command(name="import-progress")
def import_progress(
    file: Path = typer.Argument(..., help="JSON file with a list of progress records"),
) -> None:
    """Load progress records from a JSON export."""
    try:
        data = json.loads(file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]✗ Cannot read {file}: {e}[/red]")
        raise typer.Exit(code=1)

    if not isinstance(data, list):
        console.print("[red]✗ Expected a JSON list of records[/red]")
        raise typer.Exit(code=1)

    try:
        records = [
            ProgressRecord(
                owner_id=str(item["owner_id"]),
                completed_units={int(v) for v in item.get("completed_units", [])},
                current_position=max(1, int(item.get("current_position", 1))),
                extra=item.get("extra", {}),
            )
            for item in data
        ]
    except (KeyError, TypeError, ValueError) as e:
        console.print(f"[red]✗ Invalid record: {e}[/red]")
        raise typer.Exit(code=1)

    services = _open_services()
    count = load_progress(services.catalog, services.progress, records)
    console.print(f"[green]✓ Imported {count} record(s)[/green]")


@app.command()
def check() -> None:
    """Audit the catalog and student progress for inconsistencies."""
    services = _open_services()
    report = check_integrity(services.catalog, services.progress)

    console.print(f"  [dim]levels:[/dim]   {report.total_units}")
    console.print(f"  [dim]students:[/dim] {report.total_records}")

    if report.ok:
        console.print("[green]✓ Catalog and progress are consistent[/green]")
        return

    for tombstone in report.pending:
        console.print(
            f"[red]✗ Unfinished repair for deleted level {tombstone.unit_id} "
            f"(number {tombstone.unit_seq})[/red]"
        )
    for owner_id, missing in report.orphaned.items():
        console.print(f"[red]✗ {owner_id} references missing levels: {missing}[/red]")
    for owner_id, position in report.invalid_positions.items():
        console.print(f"[red]✗ {owner_id} has invalid position {position}[/red]")
    if report.gaps:
        console.print(f"[yellow]⚠ Gaps in level numbering: {report.gaps}[/yellow]")
    if report.duplicates:
        console.print(f"[yellow]⚠ Duplicate level numbers: {report.duplicates}[/yellow]")

    raise typer.Exit(code=1)


@app.command()
def report(
    period: str = typer.Option("7d", "--period", "-p", help="7d, 30d, 90d or all"),
    top: int = typer.Option(5, "--top", help="Leaderboard size"),
) -> None:
    """Show dashboard numbers and the leaderboard."""
    if period not in PERIODS:
        console.print(f"[red]✗ Unknown period '{period}'. Use one of: {', '.join(PERIODS)}[/red]")
        raise typer.Exit(code=1)

    services = _open_services()
    summary = build_summary(services.catalog, services.progress, top=top)
    registrations = registrations_per_day(services.progress.list_all(), PERIODS[period])

    console.print(f"  [dim]students:[/dim]        {summary.total_students}")
    console.print(f"  [dim]levels:[/dim]          {summary.total_units}")
    console.print(f"  [dim]completion rate:[/dim] {summary.completion_rate}%")
    console.print(f"  [dim]active:[/dim]          {summary.active_students}")
    console.print(f"  [dim]new ({period}):[/dim]  {sum(registrations.values())}")

    if summary.top_students:
        table = Table(title="Top students")
        table.add_column("#", justify="right")
        table.add_column("Student")
        table.add_column("Completed", justify="right")
        table.add_column("Level", justify="right")
        for rank, entry in enumerate(summary.top_students, start=1):
            table.add_row(
                str(rank),
                entry.name or entry.owner_id,
                f"{entry.completed_count}/{summary.total_units}",
                str(entry.current_position),
            )
        console.print(table)


if __name__ == "__main__":
    app()
