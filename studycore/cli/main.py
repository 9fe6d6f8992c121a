"""
CLI entry point for studycore.
"""

# Standard library imports
import logging
import os
from datetime import date, datetime, timezone
from pathlib import Path
from typing import List, Optional

# Third-party imports
import typer
from rich.console import Console
from rich.table import Table

# Local application imports
from studycore.allocation import (
    AllocationConfig,
    AllocationEngine,
    build_allocation_request,
    recommend_allocation,
)
from studycore.config import settings
from studycore.db.database import StudyDatabase
from studycore.exceptions import CollectionNotFoundError, DatabaseError
from studycore.models import (
    Collection,
    Priority,
    Rating,
    StudyMode,
    StudyState,
    local_day,
)
from studycore.retention import (
    CUSTOM_RETENTION,
    RetentionProjector,
    find_chain_ends,
    resolve_retention,
)
from studycore.review_processor import ReviewProcessor
from studycore.rewards import balance_status, current_streak, longest_streak
from studycore.rollover import perform_daily_rollover
from studycore.scheduler import FSRS_Scheduler, FSRSSchedulerConfig


console = Console()

app = typer.Typer(
    name="studycore",
    help="Studycore: spaced-repetition scheduling and study-load planning.",
    add_completion=False,
    rich_markup_mode="markdown",
)


@app.callback()
def _configure(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Log progress to stderr."
    ),
):
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


# ---------------------------------------------------------------------------
# Helpers for resolving the --db path (STUDYCORE_DB envvar, then settings)
# ---------------------------------------------------------------------------


def _resolve_db_path(db: Optional[Path]) -> Path:
    """Resolve db path from the CLI flag, STUDYCORE_DB, or settings."""
    if db is not None:
        return db
    env_val = os.environ.get("STUDYCORE_DB")
    if env_val:
        return Path(env_val)
    return settings.db_path


def _open_db(db: Optional[Path]) -> StudyDatabase:
    database = StudyDatabase(
        db_path=_resolve_db_path(db),
        default_daily_target=settings.daily_target_reward,
    )
    database.initialize_schema()
    return database


# Common typer options reused across commands
_db_option = typer.Option(  # noqa: B008
    None,
    "--db",
    help="Path to the DuckDB database file. "
    "Falls back to STUDYCORE_DB env var.",
    envvar="STUDYCORE_DB",
)


def _parse_enum(enum_cls, value: str, label: str):
    """Accepts an enum member name case-insensitively."""
    for member in enum_cls:
        if member.name.lower() == value.lower():
            return member
    valid = ", ".join(m.name for m in enum_cls)
    console.print(
        f"[bold red]Error: unknown {label} '{value}'. Use one of: {valid}.[/bold red]"  # noqa: E501
    )
    raise typer.Exit(code=1)


def _print_warnings(warnings: List[str]) -> None:
    for message in warnings:
        console.print(f"[yellow]Warning:[/yellow] {message}")


def _run(action):
    """Runs ``action`` and turns library errors into a clean exit."""
    try:
        return action()
    except typer.Exit:
        raise
    except CollectionNotFoundError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1)
    except DatabaseError as e:
        console.print(f"[bold red]Database Error:[/bold red] {e}")
        raise typer.Exit(code=1)
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# Setup commands
# ---------------------------------------------------------------------------


@app.command()
def init(
    db: Optional[Path] = _db_option,
    daily_target: Optional[int] = typer.Option(
        None, "--daily-target", min=0, help="Reward to earn each day."
    ),
):
    """Create the database and optionally set the daily reward target."""

    def action():
        with _open_db(db) as database:
            if daily_target is not None:
                state = database.get_study_state()
                database.save_study_state(
                    StudyState(
                        last_rollover_date=state.last_rollover_date,
                        daily_target_reward=daily_target,
                    )
                )
            state = database.get_study_state()
            console.print(
                f"[green]Database ready at[/green] [cyan]{database.db_path_resolved}[/cyan] "  # noqa: E501
                f"(daily target {state.daily_target_reward})."
            )

    _run(action)


@app.command("add-collection")
def add_collection(
    collection_id: str = typer.Argument(..., help="Unique collection id."),
    total_units: int = typer.Option(
        ..., "--units", min=1, help="Total pages, problems or words."
    ),
    title: str = typer.Option("", "--title", help="Display title."),
    mode: str = typer.Option("read", "--mode", help="read, solve or memorize."),
    chunk_size: int = typer.Option(1, "--chunk-size", min=1),
    high_priority: bool = typer.Option(False, "--high-priority"),
    after: Optional[str] = typer.Option(
        None, "--after", help="Prerequisite collection id."
    ),
    db: Optional[Path] = _db_option,
):
    """Add or update a collection."""
    study_mode = _parse_enum(StudyMode, mode, "mode")
    collection = Collection(
        collection_id=collection_id,
        title=title or collection_id,
        mode=study_mode,
        total_units=total_units,
        chunk_size=chunk_size,
        priority=Priority.High if high_priority else Priority.Normal,
        previous_collection_id=after,
    )

    def action():
        with _open_db(db) as database:
            database.upsert_collections([collection])
        console.print(
            f"[green]Saved collection[/green] [cyan]{collection_id}[/cyan] "
            f"with {collection.item_capacity} items."
        )

    _run(action)


@app.command()
def collections(db: Optional[Path] = _db_option):
    """List collections with their progress."""

    def action():
        with _open_db(db) as database:
            all_collections = database.list_collections()
            if not all_collections:
                console.print("[yellow]No collections found.[/yellow]")
                return
            chain_ends = {c.collection_id for c in find_chain_ends(all_collections)}
            table = Table(title="Collections")
            table.add_column("ID", style="cyan")
            table.add_column("Title")
            table.add_column("Mode", style="magenta")
            table.add_column("Items", justify="right")
            table.add_column("After")
            table.add_column("Deadline", style="yellow")
            for c in all_collections:
                created = len(database.find_items_by_collection(c.collection_id))
                marker = " *" if c.collection_id in chain_ends else ""
                table.add_row(
                    c.collection_id + marker,
                    c.title,
                    c.mode.name,
                    f"{created}/{c.item_capacity}",
                    c.previous_collection_id or "-",
                    str(c.target_date) if c.target_date else "-",
                )
            console.print(table)
            console.print("[dim]* end of a prerequisite chain[/dim]")

    _run(action)


# ---------------------------------------------------------------------------
# Planning commands
# ---------------------------------------------------------------------------


@app.command()
def recommend(
    collection_ids: Optional[List[str]] = typer.Argument(  # noqa: B008
        None, help="Collections to consider. Defaults to all."
    ),
    assign: bool = typer.Option(
        False, "--assign", help="Create the recommended items."
    ),
    db: Optional[Path] = _db_option,
):
    """Recommend how many new items to study today per collection."""

    def action():
        with _open_db(db) as database:
            selected = database.list_collections()
            if collection_ids:
                selected = [c for c in selected if c.collection_id in collection_ids]
            now = datetime.now(timezone.utc)
            request = build_allocation_request(database, selected, now)
            result = recommend_allocation(
                request,
                AllocationConfig(
                    min_allocation_reward=settings.min_allocation_reward,
                    high_priority_weight=settings.high_priority_weight,
                ),
            )
            _print_warnings(result.warnings)

            table = Table(title="Recommended New Items")
            table.add_column("Collection", style="cyan")
            table.add_column("Items", style="magenta", justify="right")
            for cid, count in result.per_collection.items():
                table.add_row(cid, str(count))
            console.print(table)
            console.print(
                f"Review load {request.review_reward:.0f}, "
                f"target {request.target_reward:.0f}, "
                f"allocating {result.effective_deficit:.0f} reward "
                f"across [bold]{result.total}[/bold] items."
            )

            if assign and result.total > 0:
                created = AllocationEngine(database).assign_items_by_allocation(
                    result.per_collection, selected, now
                )
                console.print(f"[green]Created {created} new items.[/green]")

    _run(action)


@app.command()
def assign(
    count: int = typer.Argument(..., min=1, help="Number of items to create."),
    collection_ids: Optional[List[str]] = typer.Option(  # noqa: B008
        None, "--collection", "-c", help="Restrict to these collections."
    ),
    db: Optional[Path] = _db_option,
):
    """Create new items round robin across collections."""

    def action():
        with _open_db(db) as database:
            selected = database.list_collections()
            if collection_ids:
                selected = [c for c in selected if c.collection_id in collection_ids]
            created = AllocationEngine(database).assign_items(selected, count)
            console.print(f"[green]Created {created} new items.[/green]")

    _run(action)


@app.command("mark-studied")
def mark_studied(
    collection_id: str = typer.Argument(...),
    start: int = typer.Argument(..., help="First item ordinal."),
    end: int = typer.Argument(..., help="Last item ordinal."),
    due_now: bool = typer.Option(
        False, "--due-now", help="Due immediately instead of at the start of today."
    ),
    db: Optional[Path] = _db_option,
):
    """Mark a range of items as already studied; they enter review."""

    def action():
        with _open_db(db) as database:
            collection = database.get_collection(collection_id)
            if collection is None:
                raise CollectionNotFoundError(
                    f"Collection {collection_id} not found."
                )
            written = AllocationEngine(database).register_studied_range(
                collection, start, end, as_due_today=not due_now
            )
        console.print(
            f"[green]Marked {written} items of[/green] [cyan]{collection_id}[/cyan] as studied."  # noqa: E501
        )

    _run(action)


@app.command()
def deadline(
    final_collection_id: str = typer.Argument(
        ..., help="Last collection of the chain."
    ),
    target_date: datetime = typer.Argument(  # noqa: B008
        ..., formats=["%Y-%m-%d"], help="Date the whole chain must be done."
    ),
    retention: Optional[str] = typer.Option(
        None,
        "--retention",
        help="relaxed, recommended, strict or custom. "
        "Defaults to STUDYCORE_DEADLINE_RETENTION.",
    ),
    custom_retention: Optional[float] = typer.Option(
        None, "--custom-retention", help="Used with --retention custom."
    ),
    save: bool = typer.Option(
        False, "--save", help="Store the deadlines on the collections."
    ),
    db: Optional[Path] = _db_option,
):
    """Split a target date across a prerequisite chain."""

    def action():
        if retention is None:
            value = settings.deadline_retention
        else:
            value = resolve_retention(
                retention,
                custom_retention if retention == CUSTOM_RETENTION else None,
            )
        with _open_db(db) as database:
            plan = RetentionProjector(database).allocate_chain_deadlines(
                final_collection_id, target_date.date(), value, save=save
            )
        _print_warnings(plan.warnings)

        table = Table(title=f"Deadlines at {value:.0%} retention")
        table.add_column("Collection", style="cyan")
        table.add_column("Estimated Days", justify="right")
        table.add_column("Allocated Days", justify="right", style="magenta")
        table.add_column("Deadline", style="yellow")
        for cid in plan.chain:
            table.add_row(
                cid,
                str(plan.estimated_days[cid]),
                str(plan.allocated_days[cid]),
                str(plan.deadlines[cid]),
            )
        console.print(table)
        if save:
            console.print("[green]Deadlines saved.[/green]")

    _run(action)


# ---------------------------------------------------------------------------
# Study commands
# ---------------------------------------------------------------------------


@app.command()
def review(
    collection_id: str = typer.Argument(...),
    ordinal: int = typer.Argument(..., min=1),
    rating: str = typer.Argument(..., help="again, hard, good or easy."),
    db: Optional[Path] = _db_option,
):
    """Record a review of one item and credit its reward."""
    grade = _parse_enum(Rating, rating, "rating")

    def action():
        with _open_db(db) as database:
            collection = database.get_collection(collection_id)
            if collection is None:
                raise CollectionNotFoundError(
                    f"Collection {collection_id} not found."
                )
            item = database.get_item(collection_id, ordinal)
            if item is None:
                console.print(
                    f"[bold red]Error: item {collection_id}_{ordinal} has not been created.[/bold red]"  # noqa: E501
                )
                raise typer.Exit(code=1)
            scheduler = FSRS_Scheduler(
                FSRSSchedulerConfig(desired_retention=settings.desired_retention)
            )
            updated = ReviewProcessor(database, scheduler).process_review(
                item, grade, collection.mode
            )
            entry = database.get_ledger_entry(local_day(updated.last_reviewed_at))
        console.print(
            f"[green]Recorded {grade.name}[/green] for [cyan]{updated.item_id}[/cyan]: "  # noqa: E501
            f"{updated.state.name}, next due {updated.due:%Y-%m-%d %H:%M} UTC."
        )
        if entry is not None:
            console.print(
                f"Earned today: {entry.earned_reward} / {entry.target_reward}, "
                f"balance {entry.balance}."
            )

    _run(action)


@app.command()
def rollover(
    db: Optional[Path] = _db_option,
    today: Optional[datetime] = typer.Option(  # noqa: B008
        None, "--today", formats=["%Y-%m-%d"], help="Override the local day."
    ),
):
    """Charge today's target against the balance (once per day)."""

    def action():
        day: Optional[date] = today.date() if today else None
        with _open_db(db) as database:
            result = perform_daily_rollover(database, day)
        if result.performed:
            console.print(
                f"[green]Rolled over {result.entry_date}:[/green] "
                f"target {result.target_reward}, balance {result.new_balance}."
            )
        else:
            console.print(
                f"[yellow]Rollover already done for {result.entry_date}.[/yellow]"
            )

    _run(action)


@app.command()
def ledger(
    limit: int = typer.Option(7, "--limit", "-l", min=1),
    db: Optional[Path] = _db_option,
):
    """Show recent ledger entries and the current balance."""

    def action():
        with _open_db(db) as database:
            entries = database.get_recent_ledger_entries(limit)
            active_days = database.get_active_days()
        if not entries:
            console.print("[yellow]The ledger is empty.[/yellow]")
            return
        table = Table(title="Reward Ledger")
        table.add_column("Date", style="cyan")
        table.add_column("Earned", justify="right", style="green")
        table.add_column("Target", justify="right")
        table.add_column("Balance", justify="right", style="magenta")
        for entry in entries:
            table.add_row(
                str(entry.entry_date),
                str(entry.earned_reward),
                str(entry.target_reward),
                str(entry.balance),
            )
        console.print(table)

        today = local_day(datetime.now(timezone.utc))
        console.print(
            f"Streak: {current_streak(active_days, today)} days "
            f"(longest {longest_streak(active_days)})."
        )

        status = balance_status(entries[0].balance)
        if status.in_debt:
            console.print(
                f"[bold yellow]Behind by {status.deficit} "
                f"(level {status.warning_level}); "
                f"catch-up bonus x{status.bonus_multiplier}.[/bold yellow]"
            )

    _run(action)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """
    Run the CLI application, exiting with status 1 on an unexpected error.
    """
    try:
        app()
    except Exception as e:
        console.print(f"[bold red]UNEXPECTED ERROR: {e}[/bold red]")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
