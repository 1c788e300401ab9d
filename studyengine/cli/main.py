"""
Typer CLI for the study engine.

Commands:
    study-engine db init            - Initialize database tables
    study-engine config show        - Show the effective generation config for a scope
    study-engine config set         - Store a configuration record for one source
    study-engine config analytics   - Difficulty/focus usage across stored configs
    study-engine session plan       - Plan a study session and print it
    study-engine session due        - Show due items and the upcoming review schedule

Usage:
    study-engine --help
    study-engine config show --course c1 --unit u3 --user alice
    study-engine config set course_default --course c1 --cuecards 15 --difficulty advanced
    study-engine session plan --user alice --course c1 --unit u3 --max-items 20
"""

from __future__ import annotations

import sys
from typing import Optional

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings

app = typer.Typer(
    help="study-engine CLI: generation config resolution and adaptive study sessions",
    no_args_is_help=True,
)
console = Console()


def configure_logging(verbose: bool = False) -> None:
    """Send logs to stderr, plus a rotating file when LOG_FILE is set."""
    settings = get_settings()
    level = "DEBUG" if verbose else settings.log_level
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        logger.add(settings.log_file, level=level, rotation="10 MB", retention=5)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Adaptive study engine."""
    configure_logging(verbose)


# ========================================
# Database Commands
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """
    Initialize database tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    from studyengine.db.database import init_db

    logger.info("Initializing database tables...")
    init_db()
    rprint("[green]✓[/green] Database initialized!")


# ========================================
# Config Commands
# ========================================

config_app = typer.Typer(help="Generation configuration")
app.add_typer(config_app, name="config")


@config_app.command("show")
def config_show(
    course: str = typer.Option(..., "--course", "-c", help="Course id"),
    unit: Optional[str] = typer.Option(None, "--unit", help="Unit id"),
    user: Optional[str] = typer.Option(None, "--user", help="User id"),
    institution: Optional[str] = typer.Option(None, "--institution", help="Institution id"),
) -> None:
    """Show the effective config and which source supplied each field."""
    from studyengine.generation import ConfigScope, ConfigStore, PriorityMerger

    scope = ConfigScope(institution_id=institution, course_id=course, unit_id=unit, user_id=user)
    records = ConfigStore().active_records(scope)
    merged, provenance = PriorityMerger().merge_with_provenance(records)

    table = Table(title=f"Effective generation config ({scope.key})")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_column("Source", style="dim")
    for name, value in merged.model_dump(mode="json").items():
        table.add_row(name, str(value), provenance[name])
    console.print(table)


@config_app.command("set")
def config_set(
    source: str = typer.Argument(..., help="Configuration source, e.g. course_default"),
    course: Optional[str] = typer.Option(None, "--course", "-c"),
    unit: Optional[str] = typer.Option(None, "--unit"),
    user: Optional[str] = typer.Option(None, "--user"),
    institution: Optional[str] = typer.Option(None, "--institution"),
    cuecards: Optional[int] = typer.Option(None, "--cuecards"),
    mcqs: Optional[int] = typer.Option(None, "--mcqs"),
    exam_exercises: Optional[int] = typer.Option(None, "--exam-exercises"),
    golden_notes: Optional[int] = typer.Option(None, "--golden-notes"),
    summary_length: Optional[int] = typer.Option(None, "--summary-length"),
    cuecard_mode: Optional[str] = typer.Option(None, "--cuecard-mode"),
    difficulty: Optional[str] = typer.Option(None, "--difficulty"),
    focus: Optional[str] = typer.Option(None, "--focus"),
    actor: Optional[str] = typer.Option(None, "--actor", help="Recorded as created_by"),
) -> None:
    """Store a configuration record, replacing the active one for the same scope."""
    from pydantic import ValidationError

    from studyengine.exceptions import ConfigConflictError
    from studyengine.generation import (
        ConfigScope,
        ConfigStore,
        ConfigurationSource,
        GenerationSettings,
    )

    try:
        config_source = ConfigurationSource(source)
    except ValueError:
        valid = ", ".join(s.value for s in ConfigurationSource)
        rprint(f"[red]✗[/red] Unknown source '{source}'. Expected one of: {valid}")
        raise typer.Exit(code=1)

    try:
        payload = GenerationSettings(
            cuecards_count=cuecards,
            mcqs_count=mcqs,
            exam_exercises_count=exam_exercises,
            golden_notes_count=golden_notes,
            summary_length=summary_length,
            cuecard_mode=cuecard_mode,
            difficulty=difficulty,
            focus=focus,
        )
    except ValidationError as e:
        rprint(f"[red]✗[/red] Invalid settings: {e}")
        raise typer.Exit(code=1)

    scope = ConfigScope(institution_id=institution, course_id=course, unit_id=unit, user_id=user)
    try:
        record_id = ConfigStore().save(config_source, scope, payload, actor=actor)
    except ValueError as e:
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)
    except ConfigConflictError as e:
        rprint(f"[yellow]![/yellow] {e}. Try again.")
        raise typer.Exit(code=2)

    rprint(f"[green]✓[/green] Saved {config_source.value} config {record_id}")


@config_app.command("analytics")
def config_analytics(
    user: Optional[str] = typer.Option(None, "--user", help="Limit to one user's records"),
) -> None:
    """Show difficulty and focus usage across stored configurations."""
    from studyengine.generation import ConfigStore

    analytics = ConfigStore().usage_analytics(user_id=user)
    table = Table(title=f"Configuration usage ({analytics.total_configs} records)")
    table.add_column("Dimension", style="cyan")
    table.add_column("Value")
    table.add_column("Count", justify="right")
    for name, counts in (
        ("difficulty", analytics.difficulty_distribution),
        ("focus", analytics.focus_distribution),
        ("source", analytics.source_distribution),
    ):
        for value, count in sorted(counts.items()):
            table.add_row(name, value, str(count))
    console.print(table)
    if analytics.most_common_pattern:
        rprint(f"Most common pattern: [bold]{analytics.most_common_pattern}[/bold]")


# ========================================
# Session Commands
# ========================================

session_app = typer.Typer(help="Study sessions")
app.add_typer(session_app, name="session")


@session_app.command("plan")
def session_plan(
    user: str = typer.Option(..., "--user", help="User id"),
    course: str = typer.Option(..., "--course", "-c", help="Course id"),
    unit: Optional[list[str]] = typer.Option(None, "--unit", help="Unit id (repeatable)"),
    max_items: Optional[int] = typer.Option(None, "--max-items", "-n"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Seed for new-item ordering"),
) -> None:
    """Select items for a session and print the plan."""
    import random

    from studyengine.exceptions import SessionInProgressError
    from studyengine.study import StudyService

    service = StudyService(user, rng=random.Random(seed) if seed is not None else None)
    try:
        plan = service.start_session(course, unit_ids=unit, max_items=max_items)
    except SessionInProgressError as e:
        rprint(f"[yellow]![/yellow] {e}")
        raise typer.Exit(code=2)

    meta = plan.selection.metadata
    table = Table(title=f"Session {plan.session_id}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Item", style="cyan")
    table.add_column("Unit")
    table.add_column("Tier")
    table.add_column("Priority", justify="right")
    for i, scored in enumerate(plan.selection.items, 1):
        table.add_row(
            str(i), scored.item_id, scored.item.unit_id, scored.reason.value, f"{scored.priority:.1f}"
        )
    console.print(table)
    rprint(
        f"[bold]{len(plan.selection)}[/bold] of {meta.total_available} items: "
        f"{meta.gap_items} gaps, {meta.review_items} reviews, {meta.new_items} new "
        f"([magenta]{meta.priority.value}[/magenta])"
    )


@session_app.command("due")
def session_due(
    user: str = typer.Option(..., "--user", help="User id"),
    days: int = typer.Option(7, "--days", help="Days ahead for the schedule"),
) -> None:
    """Show retention stats and upcoming reviews."""
    from studyengine.study import LearningRepository

    stats = LearningRepository().retention_stats(user)
    rprint(
        f"Items: [bold]{stats.total_items}[/bold]  due now: [yellow]{stats.due_now}[/yellow]  "
        f"mastered: [green]{stats.mastered}[/green]  struggling: [red]{stats.struggling}[/red]  "
        f"avg ease: {stats.average_ease:.2f}"
    )

    schedule = LearningRepository().review_schedule(user, days_ahead=days)
    table = Table(title=f"Reviews in the next {days} days")
    table.add_column("Date", style="cyan")
    table.add_column("Due", justify="right")
    for day, count in schedule.items():
        table.add_row(day.isoformat(), str(count))
    console.print(table)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
