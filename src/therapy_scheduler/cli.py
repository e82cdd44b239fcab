"""CLI entry point for the therapy scheduling engine."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from .config import ConfigLoader
from .constants import Locale
from .engine import SchedulingEngine
from .exceptions import SchedulingError
from .exporter import export_result_json, load_request, load_snapshot, save_snapshot
from .models import (
    BulkOperationParams,
    BulkOperationType,
    OptimizationConfig,
    OptimizationStrategy,
    ScheduleConflict,
    SessionCandidate,
)
from .utils import format_time, minutes_to_time, parse_time, time_to_minutes

app = typer.Typer(
    name="therapy-scheduler",
    help="Generate, check and optimize therapy session schedules",
    add_completion=False,
)
console = Console()

DATE_FORMATS = ["%Y-%m-%d"]


def _engine(snapshot_file: Path, config_dir: Path | None) -> SchedulingEngine:
    if not snapshot_file.exists():
        console.print(f"[bold red]Error:[/bold red] File not found: {snapshot_file}")
        raise typer.Exit(1)

    try:
        with console.status("[bold green]Loading snapshot..."):
            store = load_snapshot(snapshot_file)
    except SchedulingError as exc:
        _fail(exc)
    return SchedulingEngine(store, config=ConfigLoader(config_dir))


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _fail(exc: SchedulingError) -> None:
    console.print(f"[bold red]Error:[/bold red] {exc}")
    raise typer.Exit(1)


def _export(result, output: Path | None) -> None:
    if not output:
        return
    output_path = output if output.suffix == ".json" else output.with_suffix(".json")
    with console.status(f"[bold green]Exporting to {output_path}..."):
        export_result_json(result, output_path)
    console.print(f"\n[bold green]✓[/bold green] Exported to: {output_path}")


def _save(engine: SchedulingEngine, snapshot_file: Path) -> None:
    save_snapshot(engine.store, snapshot_file)
    console.print(f"[bold green]✓[/bold green] Snapshot updated: {snapshot_file}")


def _show_conflicts(conflicts: list[ScheduleConflict], lang: Locale, title: str = "Conflicts") -> None:
    if not conflicts:
        return
    table = Table(title=title)
    table.add_column("Severity")
    table.add_column("Type")
    table.add_column("Date")
    table.add_column("Description")
    for conflict in conflicts:
        table.add_row(
            conflict.severity.value,
            conflict.conflict_type.value,
            conflict.conflict_date.isoformat() if conflict.conflict_date else "",
            conflict.description.get(lang),
        )
    console.print(table)


@app.command()
def generate(
    snapshot_file: Annotated[
        Path,
        typer.Argument(help="Snapshot JSON file with therapists, windows and sessions"),
    ],
    request_file: Annotated[
        Path,
        typer.Argument(help="Scheduling request JSON file", exists=True, readable=True),
    ],
    output: Annotated[
        Optional[Path],
        typer.Option("-o", "--output", help="Output JSON file path"),
    ] = None,
    save: Annotated[
        bool,
        typer.Option("--save", help="Commit generated sessions back into the snapshot"),
    ] = False,
    lang: Annotated[
        Locale,
        typer.Option("--lang", help="Language of conflict descriptions"),
    ] = Locale.EN,
    config_dir: Annotated[
        Optional[Path],
        typer.Option("--config-dir", help="Directory with scheduling-policy.json and conflict-severity.json"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("-v", "--verbose", help="Show detailed output"),
    ] = False,
) -> None:
    """Generate sessions for a treatment demand."""
    _configure_logging(verbose)
    engine = _engine(snapshot_file, config_dir)

    try:
        request = load_request(request_file)
        with console.status("[bold green]Generating schedule..."):
            result = engine.generate_schedule(request, commit=save)
    except SchedulingError as exc:
        _fail(exc)

    console.print(f"\n[bold]Schedule for demand:[/bold] {result.demand_ref}")
    console.print(f"  Generated sessions: {len(result.generated_sessions)}")
    console.print(f"  Unscheduled sessions: {result.unscheduled_sessions}")
    console.print(f"  Optimization score: {result.optimization_score:.1f}")
    console.print(f"  Preference match: {result.preference_match_score:.1f}%")

    if verbose and result.generated_sessions:
        table = Table(title="Sessions")
        table.add_column("Number")
        table.add_column("Date")
        table.add_column("Time")
        table.add_column("Therapist")
        table.add_column("Room")
        for session in result.generated_sessions:
            table.add_row(
                session.session_number,
                session.session_date.isoformat(),
                f"{format_time(session.start_time)}-{format_time(session.end_time)}",
                session.therapist_id,
                session.room_id or "",
            )
        console.print(table)

    _show_conflicts(result.conflicts, lang)

    for shortfall in result.shortfalls:
        console.print(
            f"  [yellow]• {shortfall.week_start}..{shortfall.week_end}: "
            f"{shortfall.missing_sessions} missing ({shortfall.reason})[/yellow]"
        )
    if result.warnings:
        console.print(f"\n[bold yellow]Warnings ({len(result.warnings)}):[/bold yellow]")
        for warning in result.warnings:
            console.print(f"  [yellow]• {warning}[/yellow]")

    if save:
        _save(engine, snapshot_file)
    _export(result, output)


@app.command()
def check(
    snapshot_file: Annotated[
        Path,
        typer.Argument(help="Snapshot JSON file"),
    ],
    therapist: Annotated[
        str,
        typer.Option("-t", "--therapist", help="Therapist id"),
    ],
    day: Annotated[
        datetime,
        typer.Option("-d", "--date", formats=DATE_FORMATS, help="Session date (YYYY-MM-DD)"),
    ],
    start: Annotated[
        str,
        typer.Option("-s", "--start", help="Start time (HH:MM)"),
    ],
    duration: Annotated[
        int,
        typer.Option("--duration", help="Session length in minutes"),
    ] = 60,
    room: Annotated[
        Optional[str],
        typer.Option("--room", help="Room id"),
    ] = None,
    equipment: Annotated[
        Optional[list[str]],
        typer.Option("--equipment", help="Equipment id (repeatable)"),
    ] = None,
    student: Annotated[
        Optional[str],
        typer.Option("--student", help="Student id"),
    ] = None,
    suggest: Annotated[
        bool,
        typer.Option("--suggest", help="Also list alternative free slots"),
    ] = False,
    lang: Annotated[
        Locale,
        typer.Option("--lang", help="Language of conflict descriptions"),
    ] = Locale.EN,
    config_dir: Annotated[
        Optional[Path],
        typer.Option("--config-dir", help="Directory with configuration files"),
    ] = None,
) -> None:
    """Check a proposed session placement for conflicts."""
    engine = _engine(snapshot_file, config_dir)

    try:
        start_time = parse_time(start)
    except ValueError:
        console.print(f"[bold red]Error:[/bold red] Invalid start time: {start}")
        raise typer.Exit(1)

    candidate = SessionCandidate(
        therapist_id=therapist,
        session_date=day.date(),
        start_time=start_time,
        end_time=minutes_to_time(time_to_minutes(start_time) + duration),
        room_id=room,
        equipment_ids=tuple(equipment or ()),
        student_id=student,
    )
    try:
        conflicts = engine.check_conflicts(candidate)
        alternatives = engine.suggest_alternatives(candidate) if suggest else []
    except SchedulingError as exc:
        _fail(exc)

    if conflicts:
        _show_conflicts(conflicts, lang)
    else:
        console.print("[bold green]✓ No conflicts[/bold green]")

    if alternatives:
        table = Table(title="Alternatives")
        table.add_column("Date")
        table.add_column("Time")
        table.add_column("Confidence", justify="right")
        for suggestion in alternatives:
            table.add_row(
                suggestion.session_date.isoformat(),
                f"{format_time(suggestion.start_time)}-{format_time(suggestion.end_time)}",
                f"{suggestion.confidence_score:.0f}",
            )
        console.print(table)

    if conflicts:
        raise typer.Exit(1)


@app.command()
def optimize(
    snapshot_file: Annotated[
        Path,
        typer.Argument(help="Snapshot JSON file"),
    ],
    start: Annotated[
        datetime,
        typer.Option("--from", formats=DATE_FORMATS, help="Period start (YYYY-MM-DD)"),
    ],
    end: Annotated[
        datetime,
        typer.Option("--to", formats=DATE_FORMATS, help="Period end (YYYY-MM-DD)"),
    ],
    therapist: Annotated[
        Optional[str],
        typer.Option("-t", "--therapist", help="Only optimize this therapist's sessions"),
    ] = None,
    strategy: Annotated[
        OptimizationStrategy,
        typer.Option("--strategy", help="Search strategy"),
    ] = OptimizationStrategy.HILL_CLIMB,
    max_iterations: Annotated[
        int,
        typer.Option("--max-iterations", help="Hill-climbing iteration cap"),
    ] = 50,
    output: Annotated[
        Optional[Path],
        typer.Option("-o", "--output", help="Output JSON file path"),
    ] = None,
    save: Annotated[
        bool,
        typer.Option("--save", help="Write relocated sessions back into the snapshot"),
    ] = False,
    config_dir: Annotated[
        Optional[Path],
        typer.Option("--config-dir", help="Directory with configuration files"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("-v", "--verbose", help="Show detailed output"),
    ] = False,
) -> None:
    """Relocate sessions to raise the schedule quality score."""
    _configure_logging(verbose)
    engine = _engine(snapshot_file, config_dir)
    period_start, period_end = start.date(), end.date()
    sessions = [
        s for s in engine.store.sessions_between(period_start, period_end, therapist) if s.status.is_active
    ]
    config = OptimizationConfig(
        max_iterations=max_iterations,
        strategy=strategy,
        period_start=period_start,
        period_end=period_end,
    )

    try:
        with console.status("[bold green]Optimizing schedule..."):
            result = engine.optimize_schedule(sessions, config, commit=save)
    except SchedulingError as exc:
        _fail(exc)

    console.print(f"\n[bold]Optimization ({result.strategy.value}):[/bold]")
    console.print(f"  Sessions considered: {len(sessions)}")
    console.print(f"  Score: {result.initial_score:.2f} -> {result.final_score:.2f}")
    console.print(f"  Improvement: {result.improvement_percentage:.1f}%")
    console.print(f"  Iterations: {result.iterations} (converged: {result.converged})")

    if result.relocations:
        table = Table(title="Relocations")
        table.add_column("Session")
        table.add_column("From")
        table.add_column("To")
        table.add_column("Gain", justify="right")
        for relocation in result.relocations:
            row = relocation.to_dict()
            table.add_row(row["session_id"], row["from"], row["to"], f"{row['score_gain']:.3f}")
        console.print(table)

    if save and result.relocations:
        _save(engine, snapshot_file)
    _export(result, output)


@app.command()
def bulk(
    snapshot_file: Annotated[
        Path,
        typer.Argument(help="Snapshot JSON file"),
    ],
    operation: Annotated[
        BulkOperationType,
        typer.Argument(help="Operation to apply"),
    ],
    session_ids: Annotated[
        list[str],
        typer.Argument(help="Session ids"),
    ],
    new_start: Annotated[
        Optional[datetime],
        typer.Option("--new-start", formats=DATE_FORMATS, help="First date of the target range"),
    ] = None,
    new_end: Annotated[
        Optional[datetime],
        typer.Option("--new-end", formats=DATE_FORMATS, help="Last date of the target range"),
    ] = None,
    new_therapist: Annotated[
        Optional[str],
        typer.Option("--therapist", help="Move sessions to this therapist"),
    ] = None,
    new_time: Annotated[
        Optional[str],
        typer.Option("--time", help="New start time (HH:MM)"),
    ] = None,
    room: Annotated[
        Optional[str],
        typer.Option("--room", help="New room id (modify)"),
    ] = None,
    reason: Annotated[
        str,
        typer.Option("--reason", help="Reason recorded on each session"),
    ] = "",
    output: Annotated[
        Optional[Path],
        typer.Option("-o", "--output", help="Output JSON file path"),
    ] = None,
    save: Annotated[
        bool,
        typer.Option("--save", help="Write the changes back into the snapshot"),
    ] = False,
    config_dir: Annotated[
        Optional[Path],
        typer.Option("--config-dir", help="Directory with configuration files"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("-v", "--verbose", help="Show detailed output"),
    ] = False,
) -> None:
    """Reschedule, cancel or modify many sessions at once."""
    _configure_logging(verbose)
    engine = _engine(snapshot_file, config_dir)

    try:
        params = BulkOperationParams(
            reason=reason,
            new_start_date=new_start.date() if new_start else None,
            new_end_date=new_end.date() if new_end else None,
            new_therapist_id=new_therapist,
            new_start_time=parse_time(new_time) if new_time else None,
            room_id=room,
        )
    except ValueError:
        console.print(f"[bold red]Error:[/bold red] Invalid time: {new_time}")
        raise typer.Exit(1)

    try:
        with console.status(f"[bold green]Applying {operation.value}..."):
            result = engine.apply_bulk_operation(session_ids, operation, params)
    except SchedulingError as exc:
        _fail(exc)

    console.print(f"\n[bold]Bulk {result.operation.value}:[/bold] {result.operation_id}")
    console.print(f"  Requested: {result.total_requested}")
    console.print(f"  Succeeded: {result.successful_operations}")
    console.print(f"  Failed: {len(result.failed_session_ids)}")
    console.print(f"  Blocked by conflicts: {len(result.conflict_session_ids)}")

    if result.item_errors:
        console.print(f"\n[bold red]Item errors ({len(result.item_errors)}):[/bold red]")
        for session_id, error in result.item_errors.items():
            console.print(f"  [red]• {session_id}: {error}[/red]")

    if save and result.successful_operations:
        _save(engine, snapshot_file)
    _export(result, output)


@app.command()
def metrics(
    snapshot_file: Annotated[
        Path,
        typer.Argument(help="Snapshot JSON file"),
    ],
    start: Annotated[
        datetime,
        typer.Option("--from", formats=DATE_FORMATS, help="Period start (YYYY-MM-DD)"),
    ],
    end: Annotated[
        datetime,
        typer.Option("--to", formats=DATE_FORMATS, help="Period end (YYYY-MM-DD)"),
    ],
    output: Annotated[
        Optional[Path],
        typer.Option("-o", "--output", help="Output JSON file path"),
    ] = None,
    config_dir: Annotated[
        Optional[Path],
        typer.Option("--config-dir", help="Directory with configuration files"),
    ] = None,
) -> None:
    """Show utilization, conflict and quality metrics for a period."""
    engine = _engine(snapshot_file, config_dir)

    with console.status("[bold green]Computing metrics..."):
        result = engine.compute_metrics(start.date(), end.date())
        targets = engine.evaluate_targets(result)

    overview_table = Table(title="Overview", show_header=False)
    overview_table.add_column("Metric", style="cyan")
    overview_table.add_column("Value", style="green")
    overview_table.add_row("Sessions", str(result.total_sessions))
    overview_table.add_row("Conflicts", str(result.total_conflicts))
    overview_table.add_row("Optimization score", f"{result.schedule_optimization_score:.1f}")
    overview_table.add_row("Average gap (min)", f"{result.average_gap_between_sessions:.1f}")
    overview_table.add_row("Back-to-back", f"{result.back_to_back_session_percentage:.1f}%")
    overview_table.add_row("Reschedule rate", f"{result.reschedule_rate:.1f}%")
    overview_table.add_row("No-show rate", f"{result.no_show_rate:.1f}%")
    overview_table.add_row("Cancellation rate", f"{result.cancellation_rate:.1f}%")
    console.print(overview_table)

    if result.therapist_utilization:
        utilization_table = Table(title="Therapist Utilization")
        utilization_table.add_column("Therapist", style="cyan")
        utilization_table.add_column("Utilization", justify="right")
        for therapist_id, value in sorted(result.therapist_utilization.items()):
            utilization_table.add_row(therapist_id, f"{value:.1f}%")
        console.print(utilization_table)

    target_table = Table(title="Performance Targets")
    target_table.add_column("Metric", style="cyan")
    target_table.add_column("Target", justify="right")
    target_table.add_column("Current", justify="right")
    target_table.add_column("Status")
    for target in targets:
        style = "green" if target.status == "met" else "red"
        target_table.add_row(
            target.metric_name,
            f"{target.target_value:.1f}{target.unit}",
            f"{target.current_value:.1f}{target.unit}",
            f"[{style}]{target.status}[/{style}]",
        )
    console.print(target_table)

    _export(result, output)


@app.command("apply-template")
def apply_template(
    snapshot_file: Annotated[
        Path,
        typer.Argument(help="Snapshot JSON file"),
    ],
    template_id: Annotated[
        str,
        typer.Argument(help="Availability template id"),
    ],
    therapist_id: Annotated[
        str,
        typer.Argument(help="Therapist receiving the windows"),
    ],
    start: Annotated[
        datetime,
        typer.Option("--from", formats=DATE_FORMATS, help="First date to fill (YYYY-MM-DD)"),
    ],
    weeks: Annotated[
        Optional[int],
        typer.Option("-w", "--weeks", help="Number of weeks to fill"),
    ] = None,
    output: Annotated[
        Optional[Path],
        typer.Option("-o", "--output", help="Output JSON file path"),
    ] = None,
    save: Annotated[
        bool,
        typer.Option("--save", help="Write the created windows back into the snapshot"),
    ] = False,
    lang: Annotated[
        Locale,
        typer.Option("--lang", help="Language of conflict descriptions"),
    ] = Locale.EN,
    config_dir: Annotated[
        Optional[Path],
        typer.Option("--config-dir", help="Directory with configuration files"),
    ] = None,
) -> None:
    """Create date-specific windows for a therapist from a weekly template."""
    engine = _engine(snapshot_file, config_dir)

    try:
        with console.status("[bold green]Applying template..."):
            result = engine.apply_template(template_id, therapist_id, start.date(), weeks)
    except SchedulingError as exc:
        _fail(exc)

    console.print(f"\n[bold]Template {result.template_id} -> {result.therapist_id}:[/bold]")
    console.print(f"  Windows created: {result.applied}")
    _show_conflicts(result.conflicts, lang, title="Collisions")

    if save:
        _save(engine, snapshot_file)
    _export(result, output)


if __name__ == "__main__":
    app()
