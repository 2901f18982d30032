"""
Typer CLI for the tutor progress engine.

Commands:
    tutor-progress init-db                 - Create database tables
    tutor-progress seed catalog.json       - Load subjects, topics, prerequisites, achievements
    tutor-progress check-graph             - Validate the prerequisite graph
    tutor-progress add-student ID          - Register a student
    tutor-progress record-session ...      - Apply a finished learning session
    tutor-progress recommend ID            - Show what to study next
    tutor-progress streak ID               - Show streak and weekly engagement
    tutor-progress achievements ID         - Show achievement progress
    tutor-progress progress ID             - Show mastery per topic

Usage:
    tutor-progress --help
    tutor-progress seed docs/catalog.json --defaults
    tutor-progress record-session s1 fractions --subject math --attempted 10 --correct 9
    tutor-progress recommend s1 --subject math --include-locked
"""

from __future__ import annotations

import json
import sys
from datetime import UTC, date, datetime
from pathlib import Path

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import Settings, get_settings
from src.core.errors import ConfigurationError
from src.core.mastery import MasteryLevel, format_progress_bar

app = typer.Typer(
    help="Tutor progress engine: mastery, streaks, achievements and recommendations",
    no_args_is_help=True,
)

console = Console()


def configure_logging(settings: Settings) -> None:
    """Route loguru to stderr and, when configured, a rotating log file."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            settings.log_file,
            level=settings.log_level,
            rotation="10 MB",
            retention=5,
        )


def _engine():
    """Build the engine, turning catalog errors into a clean exit."""
    from src.adaptive.learning_engine import LearningEngine

    try:
        return LearningEngine.from_settings()
    except ConfigurationError as exc:
        rprint(f"[red]✗ Catalog configuration error:[/red] {exc}")
        raise typer.Exit(code=2) from exc


def _parse_date(value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise typer.BadParameter(f"Expected YYYY-MM-DD, got {value!r}") from exc


@app.callback()
def main_callback() -> None:
    """Configure logging before any command runs."""
    configure_logging(get_settings())


# ========================================
# DATABASE & CATALOG COMMANDS
# ========================================


@app.command("init-db")
def init_db_command() -> None:
    """Create all tables in the configured database."""
    from src.db.database import init_db

    init_db()
    rprint("[green]✓[/green] Database initialized")


@app.command("seed")
def seed_command(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Catalog JSON document"),
    defaults: bool = typer.Option(
        False, "--defaults", help="Also install the standard achievement set"
    ),
) -> None:
    """
    Load a catalog document into the store.

    The document has the shape {"subjects": [...], "achievements": [...]}.
    Nothing is written when the prerequisite graph has a cycle.
    """
    from src.adaptive.catalog import seed_catalog
    from src.db.database import session_scope

    data = json.loads(path.read_text(encoding="utf-8"))
    if defaults:
        data["include_default_achievements"] = True

    try:
        with session_scope() as session:
            stats = seed_catalog(session, data)
    except ConfigurationError as exc:
        rprint(f"[red]✗ Catalog rejected:[/red] {exc}")
        raise typer.Exit(code=2) from exc

    table = Table(title="Catalog Seeded", show_header=True)
    table.add_column("Entity", style="cyan")
    table.add_column("Written", justify="right", style="green")
    for entity, count in stats.items():
        table.add_row(entity, str(count))
    console.print(table)


@app.command("check-graph")
def check_graph_command() -> None:
    """Load the catalog and print the prerequisite graph in study order."""
    engine = _engine()
    graph = engine.catalog.graph

    table = Table(title="Prerequisite Graph (topological order)", show_header=True)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Topic", style="cyan")
    table.add_column("Subject")
    table.add_column("Prerequisites", style="yellow")
    for index, topic_id in enumerate(graph.topological_order(), start=1):
        topic = graph.get(topic_id)
        table.add_row(
            str(index),
            f"{topic.name or topic.id} [dim]({topic.id})[/dim]",
            engine.catalog.subject_names.get(topic.subject_id, topic.subject_id),
            ", ".join(topic.prerequisites) or "-",
        )
    console.print(table)
    rprint(
        f"\n[green]✓[/green] {engine.catalog.topic_count} topics, "
        f"{engine.catalog.achievement_count} achievements, no cycles"
    )


# ========================================
# STUDENT COMMANDS
# ========================================


@app.command("add-student")
def add_student_command(
    student_id: str = typer.Argument(..., help="Student identifier"),
    name: str | None = typer.Option(None, "--name", help="Display name"),
    grade: int = typer.Option(0, "--grade", help="Grade level (0 = kindergarten)"),
    timezone: str | None = typer.Option(None, "--tz", help="IANA timezone"),
) -> None:
    """Register a student (no-op when the id already exists)."""
    created = _engine().register_student(student_id, name, grade, timezone)
    if created:
        rprint(f"[green]✓[/green] Student {student_id} created")
    else:
        rprint(f"[yellow]Student {student_id} already exists[/yellow]")


@app.command("record-session")
def record_session_command(
    student_id: str = typer.Argument(..., help="Student identifier"),
    topic_id: str = typer.Argument(..., help="Topic practiced"),
    subject_id: str = typer.Option(..., "--subject", help="Subject of the topic"),
    attempted: int = typer.Option(0, "--attempted", min=0, help="Problems attempted"),
    correct: int = typer.Option(0, "--correct", min=0, help="Problems answered correctly"),
    minutes: int = typer.Option(0, "--minutes", min=0, help="Session length in minutes"),
    points: int = typer.Option(0, "--points", min=0, help="Points earned"),
    session_id: str | None = typer.Option(None, "--session-id", help="External session id"),
    at: str | None = typer.Option(None, "--at", help="End time (ISO 8601, default now)"),
) -> None:
    """Apply a finished learning session to mastery, streak and achievements."""
    from src.adaptive.models import SessionOutcome

    timestamp = datetime.fromisoformat(at) if at else datetime.now(UTC)
    try:
        outcome = SessionOutcome(
            student_id=student_id,
            subject_id=subject_id,
            topic_id=topic_id,
            problems_attempted=attempted,
            problems_correct=correct,
            duration_minutes=minutes,
            points_earned=points,
            timestamp=timestamp,
            session_id=session_id,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    result = _engine().handle_session_outcome(outcome)

    color = "green" if result.ok else "yellow"
    rprint(f"\n[{color}]Status: {result.status.value}[/{color}]")
    if result.message:
        rprint(f"  {result.message}")
    if result.progress:
        level = MasteryLevel.from_score(result.progress.mastery_level)
        rprint(
            f"  Mastery: [{level.color}]{format_progress_bar(result.progress.mastery_level)} "
            f"{result.progress.mastery_level:.0%}[/{level.color}] "
            f"({result.progress.sessions_count} sessions)"
        )
    if result.streak:
        rprint(
            f"  Streak: {result.streak.current_streak} days "
            f"(longest {result.streak.longest_streak})"
        )
        if result.streak.milestone_reached:
            rprint(f"  [bold magenta]🔥 {result.streak.milestone}-day milestone![/bold magenta]")
    for unlock in result.unlocks:
        rprint(f"  [bold green]🏆 {unlock.name}[/bold green] (+{unlock.points_reward} pts)")
    if result.achievement_error:
        rprint(f"  [red]Achievement check failed:[/red] {result.achievement_error}")

    if not result.ok:
        raise typer.Exit(code=1)


@app.command("recommend")
def recommend_command(
    student_id: str = typer.Argument(..., help="Student identifier"),
    subject_id: str | None = typer.Option(None, "--subject", help="Restrict to one subject"),
    limit: int | None = typer.Option(None, "--limit", min=1, help="Maximum recommendations"),
    include_locked: bool = typer.Option(
        False, "--include-locked", help="Also show locked topics with their unlock path"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table"),
) -> None:
    """Show the ranked list of topics to study next."""
    result = _engine().get_recommendations(
        student_id,
        subject_id=subject_id,
        limit=limit,
        include_prerequisites=include_locked,
    )

    if as_json:
        payload = {
            "recommendations": [r.to_dict() for r in result.recommendations],
            "total": result.total,
        }
        console.print_json(json.dumps(payload))
        return

    if not result.recommendations:
        rprint("[yellow]Nothing to recommend - all topics mastered or none available[/yellow]")
        return

    table = Table(title=f"What's Next ({len(result.recommendations)} of {result.total})")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Topic", style="cyan")
    table.add_column("Priority", justify="right")
    table.add_column("Mastery", justify="right")
    table.add_column("Reason")
    table.add_column("Unlock path", style="yellow")
    for index, rec in enumerate(result.recommendations, start=1):
        mastery = "new" if rec.current_mastery is None else f"{rec.current_mastery:.0%}"
        table.add_row(
            str(index),
            rec.topic_name or rec.topic_id,
            f"{rec.priority:.3f}",
            mastery,
            rec.reason if rec.is_unlocked else f"[dim]{rec.reason}[/dim]",
            " → ".join(rec.unlock_path) or "-",
        )
    console.print(table)


@app.command("streak")
def streak_command(
    student_id: str = typer.Argument(..., help="Student identifier"),
    today: str | None = typer.Option(None, "--today", help="Local date (YYYY-MM-DD)"),
) -> None:
    """Show the current streak and this week's activity."""
    engine = _engine()
    day = _parse_date(today)
    info = engine.streak_info(student_id, day)
    week = engine.weekly_engagement(student_id, day)

    rprint(f"\n[bold]🔥 Current streak:[/bold] {info.current_streak} days")
    rprint(f"  Longest: {info.longest_streak} days")
    if info.streak_at_risk:
        rprint("  [yellow]⚠ No activity yet today - study to keep your streak![/yellow]")
    if info.next_milestone:
        rprint(f"  Next milestone: {info.next_milestone} days ({info.days_to_next_milestone} to go)")

    table = Table(title=f"Week of {week['week_start']}", show_header=True)
    table.add_column("Date", style="cyan")
    table.add_column("Minutes", justify="right")
    table.add_column("Sessions", justify="right")
    table.add_column("Streak day", justify="right", style="magenta")
    for row in week["activities"]:
        table.add_row(row["date"], str(row["minutes"]), str(row["sessions"]), str(row["streak"]))
    console.print(table)
    rprint(
        f"  {week['days_active']} active days, {week['total_minutes']} minutes "
        f"(avg {week['average_minutes']}/day)"
    )


@app.command("achievements")
def achievements_command(
    student_id: str = typer.Argument(..., help="Student identifier"),
    check: bool = typer.Option(False, "--check", help="Evaluate and unlock before listing"),
) -> None:
    """Show achievement progress, optionally unlocking newly satisfied ones."""
    engine = _engine()
    if check:
        for unlock in engine.check_achievements(student_id):
            rprint(f"[bold green]🏆 Unlocked {unlock.name}[/bold green] (+{unlock.points_reward} pts)")

    rules = {rule.id: rule for rule in engine.catalog.evaluator.rules}
    table = Table(title="Achievements", show_header=True)
    table.add_column("Achievement", style="cyan")
    table.add_column("Rarity")
    table.add_column("Progress", justify="right")
    table.add_column("Status")
    for item in engine.achievement_progress(student_id):
        rule = rules[item.achievement_id]
        status = "[green]✓ unlocked[/green]" if item.unlocked else f"{item.current:g}/{item.target:g}"
        table.add_row(rule.name, rule.rarity, f"{item.progress}%", status)
    console.print(table)


@app.command("progress")
def progress_command(
    student_id: str = typer.Argument(..., help="Student identifier"),
    subject_id: str | None = typer.Option(None, "--subject", help="Restrict to one subject"),
) -> None:
    """Show mastery per topic and per subject."""
    summary = _engine().progress_summary(student_id, subject_id)

    table = Table(title=f"Progress for {student_id}", show_header=True)
    table.add_column("Topic", style="cyan")
    table.add_column("Mastery")
    table.add_column("Level")
    table.add_column("Sessions", justify="right")
    table.add_column("Minutes", justify="right")
    table.add_column("Accuracy", justify="right")
    for row in summary["progress_records"]:
        level = MasteryLevel(row["level"])
        accuracy = "-" if row["accuracy"] is None else f"{row['accuracy']:.0%}"
        table.add_row(
            row["topic_id"],
            f"{format_progress_bar(row['mastery_level'])} {row['mastery_level']:.0%}",
            f"[{level.color}]{level.display_name}[/{level.color}]",
            str(row["sessions_count"]),
            str(row["total_time_minutes"]),
            accuracy,
        )
    console.print(table)

    rprint(
        f"\n  Topics: {summary['total_topics']} "
        f"([green]{summary['mastered_topics']} mastered[/green], "
        f"{summary['in_progress_topics']} in progress)"
    )
    for subject, mean in sorted(summary["subject_mastery"].items()):
        rprint(f"  {subject}: {mean:.0%} mean mastery")
    if summary["out_of_order_sessions"]:
        rprint(f"  [dim]{summary['out_of_order_sessions']} out-of-order sessions ignored[/dim]")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
