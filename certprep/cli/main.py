"""
Typer CLI for the certprep quiz engine.

Commands:
    certprep db init                         - Create database tables
    certprep quiz start USER                 - Start a practice (or --pool) quiz
    certprep quiz answer SESSION QID ANSWER  - Answer one question
    certprep quiz pause|resume SESSION       - Pause or resume a session
    certprep quiz complete SESSION           - Finish a session and show results
    certprep quiz abandon SESSION            - Abandon a session
    certprep quiz status SESSION             - Show session progress
    certprep pool stats                      - Quiz pool health
    certprep pool maintain                   - Retire stale blueprints and replenish
    certprep pool assign USER                - Assign a blueprint to a user
    certprep pool reconcile USER             - Rebuild a user's pool projections
    certprep review sweep                    - Flag questions due for review
    certprep review due USER                 - List a user's due questions
    certprep review stats USER               - Learning and skill summary
    certprep generate questions AREA         - Generate catalog questions
    certprep maintenance run                 - Run every maintenance task once
    certprep maintenance daemon              - Run maintenance in the foreground

Usage:
    certprep --help
    certprep --database-url sqlite:///certprep.db db init
    certprep quiz start nurse-42 --count 20 --difficulty beginner
"""

from __future__ import annotations

from typing import Optional

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from certprep import __version__
from certprep.config import Settings, get_settings
from certprep.core.exceptions import CertPrepError
from certprep.core.taxonomy import ADAPTIVE, COMPETENCY_AREAS, DIFFICULTIES, DIFFICULTY_FALLBACK
from certprep.logging_setup import configure_logging

app = typer.Typer(
    help="certprep: adaptive certification quiz engine",
    no_args_is_help=True,
)

console = Console()


# ========================================
# Context Builder (Dependency Injection)
# ========================================


class CLIContext:
    """
    Dependency injection container for CLI commands.

    Services are built on first use so `--help` and `version` never touch
    the database.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._services = None

    @property
    def services(self):
        """Lazy load the service container."""
        if self._services is None:
            from certprep.services import build_services

            self._services = build_services(self.settings)
        return self._services

    def close(self) -> None:
        if self._services is not None:
            self._services.close()


def _context(ctx: typer.Context) -> CLIContext:
    return ctx.obj


def _fail(exc: Exception) -> None:
    rprint(f"[red]✗[/red] {exc}")
    raise typer.Exit(code=1)


def _check_difficulty(value: str, allow_adaptive: bool = True) -> str:
    valid = DIFFICULTIES + ([ADAPTIVE] if allow_adaptive else [])
    if value not in valid:
        raise typer.BadParameter(f"must be one of: {', '.join(valid)}")
    return value


@app.callback()
def main_callback(
    ctx: typer.Context,
    database_url: Optional[str] = typer.Option(
        None, "--database-url", envvar="DATABASE_URL", help="SQLAlchemy database URL"
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
) -> None:
    """Adaptive CNA certification quiz engine."""
    settings = get_settings()
    updates = {}
    if database_url:
        updates["database_url"] = database_url
    if log_level:
        updates["log_level"] = log_level.upper()
    if updates:
        settings = settings.model_copy(update=updates)

    configure_logging(settings.log_level, settings.log_file)
    cli_ctx = CLIContext(settings)
    ctx.obj = cli_ctx
    ctx.call_on_close(cli_ctx.close)


# ========================================
# DB COMMANDS
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init(ctx: typer.Context) -> None:
    """
    Create all tables from the SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    services = _context(ctx).services
    services.db.init_db()
    rprint("[green]✓[/green] Database initialized!")


# ========================================
# QUIZ COMMANDS
# ========================================

quiz_app = typer.Typer(help="Quiz sessions")
app.add_typer(quiz_app, name="quiz")


def _print_session(state) -> None:
    table = Table(title=f"Session {state.session_id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("User", state.user_id)
    table.add_row("Type", state.quiz_type + (f" ({state.quiz_id})" if state.quiz_id else ""))
    table.add_row("Status", state.status)
    table.add_row("Difficulty", state.difficulty)
    table.add_row("Answered", f"{len(state.answers)}/{len(state.questions)}")
    table.add_row(
        "Score",
        f"{state.score.get('correct', 0)}/{state.score.get('total', 0)} ({state.score.get('percentage', 0)}%)",
    )
    if state.abandon_reason:
        table.add_row("Abandon reason", state.abandon_reason)
    console.print(table)


@quiz_app.command("start")
def quiz_start(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="Learner id"),
    count: Optional[int] = typer.Option(None, "--count", "-n", min=1, max=100, help="Questions"),
    difficulty: str = typer.Option(ADAPTIVE, "--difficulty", "-d", help="beginner/intermediate/advanced/adaptive"),
    pool: bool = typer.Option(False, "--pool", help="Serve an assigned blueprint from the quiz pool"),
) -> None:
    """Start a quiz session and list its questions."""
    _check_difficulty(difficulty)
    services = _context(ctx).services
    try:
        state = services.sessions.start_quiz(
            user_id,
            question_count=count,
            difficulty=difficulty,
            quiz_type="pool" if pool else "practice",
        )
    except CertPrepError as exc:
        _fail(exc)
        return

    _print_session(state)
    table = Table(title="Questions", show_header=True)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Question ID", style="cyan")
    table.add_column("Competency Area")
    table.add_column("Reason", style="dim")
    for question in state.questions:
        table.add_row(
            str(question["position"]),
            question["question_id"],
            question.get("competency_area") or "-",
            question.get("selection_reason") or "-",
        )
    console.print(table)

    shortfall = state.settings.get("shortfall") or {}
    if shortfall:
        rprint(f"[yellow]⚠[/yellow] Short on questions: {shortfall}")


@quiz_app.command("answer")
def quiz_answer(
    ctx: typer.Context,
    session_id: str = typer.Argument(...),
    question_id: str = typer.Argument(...),
    answer: str = typer.Argument(..., help="A, B, C or D"),
    time_spent: float = typer.Option(0.0, "--time", "-t", help="Seconds spent"),
) -> None:
    """Answer one question in an active session."""
    services = _context(ctx).services
    try:
        outcome = services.sessions.answer(session_id, question_id, answer, time_spent)
    except CertPrepError as exc:
        _fail(exc)
        return

    if outcome.duplicate:
        rprint(f"[yellow]⚠[/yellow] {question_id} was already answered")
    elif outcome.is_correct:
        rprint("[green]✓ Correct[/green]")
    else:
        rprint("[red]✗ Incorrect[/red]")
    rprint(
        f"  Score: {outcome.score['correct']}/{outcome.score['total']} "
        f"({outcome.score['percentage']}%), {outcome.remaining_questions} remaining"
    )


@quiz_app.command("pause")
def quiz_pause(ctx: typer.Context, session_id: str = typer.Argument(...)) -> None:
    """Pause an active session."""
    try:
        _context(ctx).services.sessions.pause(session_id)
    except CertPrepError as exc:
        _fail(exc)
    rprint(f"[green]✓[/green] Paused {session_id}")


@quiz_app.command("resume")
def quiz_resume(ctx: typer.Context, session_id: str = typer.Argument(...)) -> None:
    """Resume a paused session."""
    try:
        _context(ctx).services.sessions.resume(session_id)
    except CertPrepError as exc:
        _fail(exc)
    rprint(f"[green]✓[/green] Resumed {session_id}")


@quiz_app.command("complete")
def quiz_complete(ctx: typer.Context, session_id: str = typer.Argument(...)) -> None:
    """Complete a session and show its results."""
    try:
        results = _context(ctx).services.sessions.complete(session_id)
    except CertPrepError as exc:
        _fail(exc)
        return

    final = results.get("final_score", {})
    rprint(
        f"\n[bold green]✓ Quiz complete![/bold green] "
        f"{final.get('correct', 0)}/{final.get('total', 0)} ({final.get('percentage', 0)}%)"
    )

    table = Table(title="Competency Results", show_header=True)
    table.add_column("Competency Area", style="cyan")
    table.add_column("Correct", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("%", justify="right", style="green")
    for area, result in sorted(results.get("competency_results", {}).items()):
        table.add_row(area, str(result["correct"]), str(result["total"]), str(result["percentage"]))
    console.print(table)

    if results.get("weak_areas"):
        rprint(f"  Weak areas: {', '.join(results['weak_areas'])}")
    if results.get("questions_for_review"):
        rprint(f"  Questions for review: {len(results['questions_for_review'])}")
    rprint(f"  Change from your average: {results.get('improvement_from_average', 0):+}")


@quiz_app.command("abandon")
def quiz_abandon(
    ctx: typer.Context,
    session_id: str = typer.Argument(...),
    reason: str = typer.Option("User abandoned", "--reason"),
) -> None:
    """Abandon an active or paused session."""
    try:
        _context(ctx).services.sessions.abandon(session_id, reason)
    except CertPrepError as exc:
        _fail(exc)
    rprint(f"[green]✓[/green] Abandoned {session_id}")


@quiz_app.command("status")
def quiz_status(
    ctx: typer.Context,
    session_id: Optional[str] = typer.Argument(None),
    user_id: Optional[str] = typer.Option(None, "--user", "-u", help="Show the user's open session"),
) -> None:
    """Show a session by id, or the user's open session with --user."""
    sessions = _context(ctx).services.sessions
    try:
        if session_id:
            state = sessions.status(session_id)
        elif user_id:
            state = sessions.current_session(user_id)
            if state is None:
                rprint(f"No open session for {user_id}")
                return
        else:
            raise typer.BadParameter("give a session id or --user")
    except CertPrepError as exc:
        _fail(exc)
        return
    _print_session(state)


# ========================================
# POOL COMMANDS
# ========================================

pool_app = typer.Typer(help="Shared quiz pool")
app.add_typer(pool_app, name="pool")


@pool_app.command("stats")
def pool_stats(ctx: typer.Context) -> None:
    """Show quiz pool and question catalog health."""
    from certprep.db.repositories.questions import QuestionRepository

    services = _context(ctx).services
    health = services.pool.health()

    table = Table(title="Quiz Pool", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Active blueprints", str(health.active))
    table.add_row("Retired blueprints", str(health.retired))
    table.add_row("Average quality", str(health.average_quality or "-"))
    table.add_row("Average difficulty rating", str(health.average_difficulty_rating or "-"))
    table.add_row("Total uses", str(health.total_uses))
    for difficulty, count in sorted(health.by_difficulty.items()):
        table.add_row(f"  {difficulty}", str(count))
    table.add_row("Health", f"{health.health_score} ({health.status})")
    console.print(table)

    with services.db.session_scope() as session:
        stats = QuestionRepository(session).pool_stats(services.settings.question_pool_min_size)

    catalog = Table(title="Question Catalog", show_header=True)
    catalog.add_column("Competency Area", style="cyan")
    catalog.add_column("Active", justify="right")
    for area, count in stats.competency_distribution.items():
        catalog.add_row(area, str(count))
    catalog.add_section()
    catalog.add_row("TOTAL", str(stats.total_active), style="bold")
    console.print(catalog)
    rprint(f"  Catalog health: {stats.health_score} ({stats.health_status}), {stats.in_review} in review")
    for recommendation in stats.recommendations:
        rprint(f"  [yellow]⚠[/yellow] {recommendation['area']}: needs {recommendation['needed']} more")


@pool_app.command("maintain")
def pool_maintain(ctx: typer.Context) -> None:
    """Retire stale blueprints and build new ones up to the target size."""
    try:
        report = _context(ctx).services.pool.maintain()
    except CertPrepError as exc:
        _fail(exc)
        return
    rprint(f"[green]✓[/green] Retired {len(report.retired)}, created {len(report.created)}")
    if report.health:
        rprint(f"  Health: {report.health.health_score} ({report.health.status})")


@pool_app.command("assign")
def pool_assign(
    ctx: typer.Context,
    user_id: str = typer.Argument(...),
    difficulty: str = typer.Option(ADAPTIVE, "--difficulty", "-d"),
) -> None:
    """Assign a blueprint to a user."""
    _check_difficulty(difficulty)
    try:
        assignment = _context(ctx).services.pool.assign_quiz(user_id, difficulty)
    except CertPrepError as exc:
        _fail(exc)
        return
    if assignment is None:
        rprint(f"[yellow]⚠[/yellow] No unseen blueprint available for {user_id}")
        raise typer.Exit(code=1)
    rprint(
        f"[green]✓[/green] {assignment.quiz_id} ({assignment.difficulty}, "
        f"{assignment.total_questions} questions){' [dim]reused[/dim]' if assignment.reused else ''}"
    )
    rprint(f"  Expires: {assignment.expires_at:%Y-%m-%d %H:%M} UTC")


@pool_app.command("reconcile")
def pool_reconcile(ctx: typer.Context, user_id: str = typer.Argument(...)) -> None:
    """Rebuild a user's usage rows and history from the completion ledger."""
    try:
        report = _context(ctx).services.pool.reconcile(user_id)
    except CertPrepError as exc:
        _fail(exc)
        return
    rprint(
        f"[green]✓[/green] {report.completions} completions, "
        f"+{report.usage_added} / -{report.usage_removed} usage rows"
    )
    rprint(
        f"  Average {report.projection.average_score}, streak {report.projection.current_streak}, "
        f"trend {report.projection.performance_trend}"
    )


# ========================================
# REVIEW COMMANDS
# ========================================

review_app = typer.Typer(help="Spaced repetition")
app.add_typer(review_app, name="review")


@review_app.command("sweep")
def review_sweep(ctx: typer.Context) -> None:
    """Flag every question whose review date has passed."""
    flipped = _context(ctx).services.tracker.sweep_due()
    rprint(f"[green]✓[/green] {flipped} questions flagged for review")


@review_app.command("due")
def review_due(
    ctx: typer.Context,
    user_id: str = typer.Argument(...),
    limit: int = typer.Option(10, "--limit", "-l"),
) -> None:
    """List a user's questions due for review, most overdue first."""
    due = _context(ctx).services.tracker.find_due_for_review(user_id, limit)
    if not due:
        rprint(f"Nothing due for {user_id}")
        return

    table = Table(title=f"Due for review ({user_id})", show_header=True)
    table.add_column("Question ID", style="cyan")
    table.add_column("Due", style="yellow")
    table.add_column("Interval", justify="right")
    table.add_column("Ease", justify="right")
    table.add_column("Accuracy", justify="right", style="green")
    for state in due:
        table.add_row(
            state.question_id,
            f"{state.due_date:%Y-%m-%d}" if state.due_date else "-",
            f"{state.interval_days}d",
            f"{state.ease_factor:.2f}",
            f"{state.accuracy}%",
        )
    console.print(table)


@review_app.command("stats")
def review_stats(ctx: typer.Context, user_id: str = typer.Argument(...)) -> None:
    """Show a user's learning stats and skill summary."""
    services = _context(ctx).services
    learning = services.tracker.user_stats(user_id)
    summary = services.skills.get_summary(user_id)

    table = Table(title=f"Learning Stats ({user_id})", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Questions attempted", str(learning.total_questions))
    table.add_row("Mastered", f"{learning.mastered_questions} ({learning.mastery_percentage}%)")
    table.add_row("Average accuracy", f"{learning.average_accuracy}%")
    table.add_row("Due for review", str(learning.due_for_review))
    table.add_row("Skills tracked", str(summary.total_skills))
    table.add_row("Overall skill accuracy", f"{summary.overall_accuracy}%")
    if summary.strengths:
        table.add_row("Strengths", ", ".join(summary.strengths))
    if summary.weaknesses:
        table.add_row("Weaknesses", ", ".join(summary.weaknesses))
    console.print(table)


# ========================================
# GENERATE COMMANDS
# ========================================

generate_app = typer.Typer(help="Question generation")
app.add_typer(generate_app, name="generate")


@generate_app.command("questions")
def generate_questions(
    ctx: typer.Context,
    competency_area: str = typer.Argument(..., help="Competency area"),
    difficulty: str = typer.Option(DIFFICULTY_FALLBACK, "--difficulty", "-d"),
    count: int = typer.Option(10, "--count", "-n", min=1, max=50),
    skill_category: Optional[str] = typer.Option(None, "--skill-category"),
) -> None:
    """Generate questions with the configured model and add them to the catalog."""
    if competency_area not in COMPETENCY_AREAS:
        raise typer.BadParameter(f"must be one of: {', '.join(COMPETENCY_AREAS)}")
    _check_difficulty(difficulty, allow_adaptive=False)

    orchestrator = _context(ctx).services.orchestrator
    if not orchestrator.available:
        rprint("[red]✗[/red] No question model configured (set GEMINI_API_KEY)")
        raise typer.Exit(code=1)
    try:
        result = orchestrator.replenish(competency_area, difficulty, count, skill_category)
    except CertPrepError as exc:
        _fail(exc)
        return
    rprint(
        f"[green]✓[/green] Added {len(result.question_ids)} questions "
        f"({result.method.value}, {result.attempts} attempts)"
    )


# ========================================
# MAINTENANCE COMMANDS
# ========================================

maintenance_app = typer.Typer(help="Background maintenance")
app.add_typer(maintenance_app, name="maintenance")


@maintenance_app.command("run")
def maintenance_run(ctx: typer.Context) -> None:
    """Run every maintenance task once."""
    from certprep.scheduler.maintenance import MaintenanceScheduler

    scheduler = MaintenanceScheduler(_context(ctx).services)
    scheduler.run_once()

    table = Table(title="Maintenance", show_header=True)
    table.add_column("Task", style="cyan")
    table.add_column("Result")
    table.add_column("Status")
    failed = False
    for status in scheduler.tasks.values():
        failed = failed or not status.last_success
        table.add_row(
            status.name,
            str(status.last_result) if status.last_success else status.error_message or "-",
            "[green]ok[/green]" if status.last_success else "[red]failed[/red]",
        )
    console.print(table)
    if failed:
        raise typer.Exit(code=1)


@maintenance_app.command("daemon")
def maintenance_daemon(ctx: typer.Context) -> None:
    """Run maintenance on its intervals until interrupted."""
    from certprep.scheduler.maintenance import MaintenanceScheduler

    services = _context(ctx).services
    if not services.db.check_connection():
        rprint("[red]✗[/red] Database is not reachable")
        raise typer.Exit(code=1)

    scheduler = MaintenanceScheduler(services)
    scheduler.start()
    rprint("[cyan]Maintenance running, Ctrl+C to stop[/cyan]")
    try:
        scheduler.wait()
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()


# ========================================
# INFO
# ========================================


@app.command("info")
def show_info(ctx: typer.Context) -> None:
    """Show configuration."""
    settings = _context(ctx).settings

    table = Table(title="certprep Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Database URL", settings.database_url)
    table.add_row("Gemini API Key", "***" if settings.gemini_api_key else "Not set")
    table.add_row("AI Model", settings.ai_model)
    table.add_row("Knowledge API", settings.knowledge_api_url or "Not set")
    selection = settings.get_selection_config()
    pool = settings.get_pool_config()
    table.add_row("Default questions", str(settings.default_question_count))
    table.add_row(
        "Selection weights",
        ", ".join(f"{name}={weight}" for name, weight in selection["weights"].items()),
    )
    table.add_row("Min question quality", str(selection["min_quality"]))
    table.add_row("Pool size (min/target)", f"{pool['min_size']}/{pool['target_size']}")
    table.add_row("Log Level", settings.log_level)
    console.print(table)


@app.command("version")
def show_version() -> None:
    """Show version information."""
    rprint(f"[bold]certprep[/bold] v{__version__}")


def main() -> None:
    """Entry point for the CLI."""
    try:
        app()
    except CertPrepError as exc:
        logger.error("{}", exc)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
