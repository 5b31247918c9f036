"""
Essay Grader CLI Application.

Provides a command-line interface for grading essay answers, either
directly against a rubric file or as background jobs against questions
held in the file store.
"""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from essay_grader.config import Settings, get_settings
from essay_grader.grading import (
    FeedbackError,
    GradingEngine,
    LLMClient,
    LLMError,
    RevisionWriter,
)
from essay_grader.jobs import AsyncGradingJobManager
from essay_grader.models import GradingResult, JobStatus, JobStatusView
from essay_grader.rubric import RubricParseError, RubricParser, RubricValidationError, RubricValidator
from essay_grader.store import JsonFileStore, StoreError

# Create Typer app
app = typer.Typer(
    name="essay-grader",
    help="AI-assisted grading of civil-service essay answers",
    add_completion=False,
)

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)


@app.command()
def grade(
    rubric_file: Annotated[Path, typer.Argument(help="Path to the rubric file (JSON or text)")],
    answer_file: Annotated[Path, typer.Argument(help="Path to the answer text file")],
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Write the full result as JSON to this path"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show detailed output"),
    ] = False,
) -> None:
    """
    Grade an answer against a rubric file.

    Nothing is stored; the result is printed and optionally saved as JSON.
    """
    settings = _load_settings()
    try:
        _require_file(rubric_file, "Rubric")
        _require_file(answer_file, "Answer")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Parsing rubric...", total=None)
            rubric = RubricParser().parse_file(rubric_file)

            progress.update(task, description="Validating rubric...")
            warnings = RubricValidator().validate_or_raise(rubric)

            if verbose:
                progress.stop()
                console.print(
                    Panel(
                        f"[green]Rubric loaded:[/green] {rubric.title}\n"
                        f"Scoring points: {len(rubric.scoring_points)}\n"
                        f"Total score: {rubric.total_max_score:g}",
                        title="Rubric Info",
                    )
                )
                for warning in warnings:
                    console.print(f"[yellow]⚠ {warning}[/yellow]")
                progress.start()

            answer = _read_answer(answer_file)
            engine = GradingEngine(settings)

            progress.update(task, description="Grading... (this may take a few minutes)")
            result = asyncio.run(
                engine.grade_custom(
                    rubric.title,
                    rubric.reference_answer,
                    rubric.scoring_points,
                    answer,
                    rubric.word_limit,
                )
            )

        _display_results(result, verbose)

        if output:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(result.model_dump_json(indent=2), encoding="utf-8")
            console.print(f"\n[green]Result saved to:[/green] {output}")

    except RubricParseError as e:
        console.print(f"[red]Rubric Parse Error:[/red] {e}")
        raise typer.Exit(1)
    except RubricValidationError as e:
        console.print(f"[red]Rubric Validation Error:[/red] {e}")
        raise typer.Exit(1)
    except LLMError as e:
        console.print(f"[red]LLM Error:[/red] {e}")
        raise typer.Exit(1)
    except FeedbackError as e:
        console.print(f"[red]Feedback Error:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def submit(
    question_id: Annotated[str, typer.Argument(help="Id of a question in the store")],
    answer_file: Annotated[Path, typer.Argument(help="Path to the answer text file")],
    time_spent: Annotated[
        Optional[int],
        typer.Option("--time-spent", help="Seconds the candidate spent answering"),
    ] = None,
    user_id: Annotated[
        Optional[str],
        typer.Option("--user-id", help="Candidate identifier"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show detailed output"),
    ] = False,
) -> None:
    """
    Submit an answer as a grading job and poll until it finishes.

    The job and its result are kept in the store directory, so the
    outcome can be looked up later with `status` and `history`.
    """
    settings = _load_settings()
    try:
        _require_file(answer_file, "Answer")
        answer = _read_answer(answer_file)
        manager = _build_manager(settings)
        view = asyncio.run(_submit_and_wait(manager, settings, question_id, answer, time_spent, user_id))
    except StoreError as e:
        console.print(f"[red]Store Error:[/red] {e}")
        raise typer.Exit(1)

    _display_status(view, verbose)
    if view.status is not JobStatus.COMPLETED:
        raise typer.Exit(1)


@app.command()
def status(
    job_id: Annotated[str, typer.Argument(help="Job id returned by submit")],
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show detailed output"),
    ] = False,
) -> None:
    """Show the current state of a grading job."""
    settings = _load_settings()
    manager = _build_manager(settings)
    view = asyncio.run(manager.status(job_id))

    _display_status(view, verbose)
    if view.status is JobStatus.ERROR:
        raise typer.Exit(1)


@app.command()
def history(
    question_id: Annotated[
        Optional[str],
        typer.Option("--question-id", "-q", help="Only jobs for this question"),
    ] = None,
    user_id: Annotated[
        Optional[str],
        typer.Option("--user-id", help="Only jobs for this candidate"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", min=1, help="Maximum number of jobs to list"),
    ] = 10,
) -> None:
    """List past grading jobs, newest first."""
    settings = _load_settings()
    try:
        manager = _build_manager(settings)
        summaries = asyncio.run(manager.history(question_id=question_id, user_id=user_id, limit=limit))
    except StoreError as e:
        console.print(f"[red]Store Error:[/red] {e}")
        raise typer.Exit(1)

    if not summaries:
        console.print("[dim]No grading jobs found[/dim]")
        return

    table = Table(title="Grading History")
    table.add_column("Job", style="cyan")
    table.add_column("Question")
    table.add_column("Status")
    table.add_column("Score", justify="right")
    table.add_column("Words", justify="right")
    table.add_column("Submitted")

    for summary in summaries:
        score = (
            f"{summary.total_score:g}/{summary.max_score:g}"
            if summary.total_score is not None and summary.max_score is not None
            else "-"
        )
        table.add_row(
            summary.id,
            summary.question_id,
            _status_label(summary.status),
            score,
            str(summary.word_count),
            summary.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command()
def resume() -> None:
    """
    Recover jobs left behind by an interrupted run.

    Pending jobs are graded now; jobs interrupted mid-grading are failed.
    """
    settings = _load_settings()
    try:
        manager = _build_manager(settings)
        count = asyncio.run(_resume_and_join(manager))
    except StoreError as e:
        console.print(f"[red]Store Error:[/red] {e}")
        raise typer.Exit(1)

    console.print(f"[green]Resumed {count} pending job(s)[/green]")


@app.command()
def validate_rubric(
    rubric_file: Annotated[Path, typer.Argument(help="Path to the rubric file")],
) -> None:
    """
    Validate a rubric file without performing grading.

    Checks that every scoring point is gradable and reports rubrics that
    will fall back to hybrid scoring.
    """
    try:
        _require_file(rubric_file, "Rubric")
        rubric = RubricParser().parse_file(rubric_file)
        report = RubricValidator().validate(rubric)

        console.print(Panel(f"[bold]{rubric.title}[/bold]", title="Rubric"))

        table = Table(title="Scoring Points")
        table.add_column("#", justify="right")
        table.add_column("Content", style="cyan")
        table.add_column("Score", justify="right")
        table.add_column("Keywords")

        for point in rubric.scoring_points:
            table.add_row(
                str(point.point_order),
                point.content[:40],
                f"{point.max_score:g}",
                ", ".join(point.keywords) or "-",
            )

        console.print(table)
        console.print(f"\n[bold]Total Score:[/bold] {rubric.total_max_score:g}")

        for warning in report.warnings:
            console.print(f"[yellow]⚠ {warning}[/yellow]")

        if report.is_valid:
            console.print("\n[green]✓ Rubric is valid[/green]")
        else:
            console.print("\n[red]✗ Validation errors found:[/red]")
            for error in report.errors:
                console.print(f"  • {error}")
            raise typer.Exit(1)

    except RubricParseError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def polish(
    answer_file: Annotated[Path, typer.Argument(help="Path to the answer text file")],
    question_type: Annotated[
        str,
        typer.Option("--question-type", "-t", help="Question type, e.g. 归纳概括"),
    ] = "归纳概括",
    upgrade_title: Annotated[
        Optional[str],
        typer.Option("--upgrade", help="Rewrite as a model essay for this question title instead"),
    ] = None,
) -> None:
    """Rewrite an answer in a more formal register."""
    settings = _load_settings()
    try:
        _require_file(answer_file, "Answer")
        answer = _read_answer(answer_file)
        writer = RevisionWriter(LLMClient(settings), settings)

        with console.status("Rewriting..."):
            if upgrade_title:
                text = asyncio.run(writer.upgrade(answer, upgrade_title, ""))
            else:
                text = asyncio.run(writer.polish(answer, question_type))

        console.print(Panel(text, title="Upgraded Essay" if upgrade_title else "Polished Answer"))
    except LLMError as e:
        console.print(f"[red]LLM Error:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def health() -> None:
    """
    Check if the grading system is operational.

    Verifies API connectivity and configuration.
    """
    settings = _load_settings()
    try:
        console.print("[bold]Essay Grader Health Check[/bold]\n")

        console.print("[dim]Checking configuration...[/dim]")
        console.print(f"  API Base URL: {settings.ai_base_url}")
        console.print(f"  Model: {settings.ai_model}")
        console.print(f"  Timeout: {settings.ai_timeout_seconds:g}s")
        console.print(f"  Store: {settings.store_directory}")

        console.print("\n[dim]Checking API connectivity...[/dim]")
        engine = GradingEngine(settings)

        if engine.health_check():
            console.print("[green]✓ API is reachable[/green]")
        else:
            console.print("[red]✗ API is not reachable[/red]")
            raise typer.Exit(1)

        console.print("\n[green]All systems operational[/green]")

    except LLMError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _load_settings() -> Settings:
    """Load settings and configure logging, exiting on invalid configuration."""
    try:
        settings = get_settings()
    except ValidationError as e:
        console.print(f"[red]Configuration Error:[/red] {e}")
        raise typer.Exit(1)

    _configure_logging(settings.log_level)
    return settings


def _configure_logging(level: str) -> None:
    root = logging.getLogger()
    if any(isinstance(h, RichHandler) for h in root.handlers):
        root.setLevel(level)
        return
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
    )
    # Request logs from the SDK's HTTP layer are noise at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _build_manager(settings: Settings) -> AsyncGradingJobManager:
    store = JsonFileStore(settings.store_directory)
    engine = GradingEngine(settings, store=store)
    return AsyncGradingJobManager(engine, store, settings)


async def _submit_and_wait(
    manager: AsyncGradingJobManager,
    settings: Settings,
    question_id: str,
    answer: str,
    time_spent: int | None,
    user_id: str | None,
) -> JobStatusView:
    job_id = await manager.submit(question_id, answer, time_spent=time_spent, user_id=user_id)
    console.print(f"[dim]Job submitted:[/dim] {job_id}")

    with console.status("等待处理中...") as spinner:
        view = await manager.wait(
            job_id,
            poll_interval=settings.poll_interval_seconds,
            max_polls=settings.max_polls,
            on_poll=lambda v: spinner.update(f"{v.message} ({v.progress}%)"),
        )

        if not view.status.is_terminal:
            # The run dies with this process, so let it finish
            spinner.update("Still grading, waiting for the job to finish...")
            await manager.join()
            view = await manager.status(job_id)

    return view


async def _resume_and_join(manager: AsyncGradingJobManager) -> int:
    count = await manager.resume()
    await manager.join()
    return count


def _require_file(path: Path, label: str) -> None:
    if not path.exists():
        console.print(f"[red]Error:[/red] {label} file not found: {path}")
        raise typer.Exit(1)


def _read_answer(path: Path) -> str:
    content = path.read_text(encoding="utf-8")
    if not content.strip():
        console.print(f"[red]Error:[/red] Answer file is empty: {path}")
        raise typer.Exit(1)
    return content


def _status_label(status: JobStatus) -> str:
    colors = {
        JobStatus.PENDING: "dim",
        JobStatus.PROCESSING: "yellow",
        JobStatus.COMPLETED: "green",
        JobStatus.ERROR: "red",
    }
    return f"[{colors[status]}]{status.value}[/{colors[status]}]"


def _display_status(view: JobStatusView, verbose: bool = False) -> None:
    """Display a job status, with the result once it is completed."""
    console.print(f"{_status_label(view.status)} {view.message} ({view.progress}%)")
    if view.error:
        console.print(f"[red]Error:[/red] {view.error}")
    if view.result:
        _display_results(view.result, verbose)


def _display_results(result: GradingResult, verbose: bool = False) -> None:
    """Display grading results in a formatted table."""

    # Score summary
    score_color = "green" if result.percentage_score >= 70 else "yellow" if result.percentage_score >= 50 else "red"
    console.print(
        Panel(
            f"[{score_color}][bold]{result.total_score:g} / {result.max_score:g}[/bold] "
            f"({result.percentage_score:.1f}%)[/{score_color}]\n"
            f"[dim]{result.score_explanation}[/dim]\n"
            f"Points hit: {result.points_hit}/{result.points_total} · Words: {result.word_count}",
            title="Final Score",
        )
    )

    if result.word_count_deduction:
        console.print(f"[yellow]⚠ Word count deduction: -{result.word_count_deduction:g}[/yellow]")

    if verbose:
        table = Table(title="Scoring Points")
        table.add_column("#", justify="right")
        table.add_column("Point", style="cyan")
        table.add_column("Score", justify="right")
        table.add_column("Match")
        table.add_column("Feedback")

        for match in result.point_matches:
            status = "✅" if match.earned_score == match.max_score else "⚠️" if match.is_matched else "❌"
            table.add_row(
                str(match.point_order),
                match.point_content[:30],
                f"{match.earned_score:g}/{match.max_score:g}",
                f"{status} {match.match_type.value}",
                match.feedback or "",
            )

        console.print(table)

        if result.feedback.strengths:
            console.print("[green]Strengths:[/green]")
            for item in result.feedback.strengths:
                console.print(f"  • {item}")
        if result.feedback.weaknesses:
            console.print("[yellow]Weaknesses:[/yellow]")
            for item in result.feedback.weaknesses:
                console.print(f"  • {item}")
        if result.feedback.suggestions:
            console.print("[cyan]Suggestions:[/cyan]")
            for item in result.feedback.suggestions:
                console.print(f"  • {item}")

    if result.feedback.overall_comment:
        console.print(Panel(result.feedback.overall_comment, title="Feedback"))


if __name__ == "__main__":
    app()
