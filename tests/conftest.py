import pytest
from pathlib import Path
from typing import Generator
from datetime import datetime, timedelta, timezone

from studycore.models import Collection, Item, ItemState, Priority, StudyMode
from studycore.db import StudyDatabase


UTC = timezone.utc


# --- Database Fixtures ---
@pytest.fixture
def db_path_memory() -> str:
    return ":memory:"


@pytest.fixture
def db_path_file(tmp_path: Path) -> Path:
    return tmp_path / "test_study.db"


@pytest.fixture(params=["memory", "file"])
def db_manager(
    request, db_path_memory: str, db_path_file: Path
) -> Generator[StudyDatabase, None, None]:
    """
    Provide a StudyDatabase, in-memory or file-backed, closed on teardown.
    """
    if request.param == "memory":
        db_man = StudyDatabase(db_path_memory)
    else:
        db_man = StudyDatabase(db_path_file)
    try:
        yield db_man
    finally:
        db_man.close_connection()


@pytest.fixture
def initialized_db_manager(db_manager: StudyDatabase) -> StudyDatabase:
    db_manager.initialize_schema()
    return db_manager


@pytest.fixture
def memory_db() -> Generator[StudyDatabase, None, None]:
    """A single in-memory database with the schema in place."""
    db = StudyDatabase(":memory:")
    db.initialize_schema()
    try:
        yield db
    finally:
        db.close_connection()


# --- Model Fixtures ---
@pytest.fixture
def now() -> datetime:
    return datetime(2024, 3, 10, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def solve_collection() -> Collection:
    return Collection(
        collection_id="algebra",
        title="Algebra Workbook",
        mode=StudyMode.Solve,
        total_units=10,
        priority=Priority.High,
    )


@pytest.fixture
def read_collection() -> Collection:
    return Collection(
        collection_id="history",
        title="History Reader",
        mode=StudyMode.Read,
        total_units=12,
        chunk_size=4,
    )


@pytest.fixture
def memorize_collection() -> Collection:
    return Collection(
        collection_id="vocab",
        title="Vocabulary",
        mode=StudyMode.Memorize,
        total_units=30,
        previous_collection_id="history",
    )


@pytest.fixture
def review_item(now: datetime) -> Item:
    """An item in Review state last seen ten days before ``now``."""
    return Item(
        collection_id="algebra",
        ordinal=1,
        state=ItemState.Review,
        stability=4.0,
        difficulty=6.0,
        elapsed_days=3,
        scheduled_days=4,
        repetition_count=3,
        due=now - timedelta(days=6),
        last_reviewed_at=now - timedelta(days=10),
    )
