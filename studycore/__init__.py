"""Studycore - spaced-repetition scheduling and study-load planning."""

from .models import (
    Collection,
    Item,
    ItemState,
    LedgerEntry,
    Priority,
    Rating,
    StudyMode,
)
from .constants import DEFAULT_PARAMETERS, DEFAULT_DESIRED_RETENTION
from .db import StudyDatabase
from .scheduler import FSRS_Scheduler
from .allocation import AllocationEngine, recommend_allocation
from .review_processor import ReviewProcessor
from .retention import RetentionProjector, estimate_days_to_threshold
from .rollover import perform_daily_rollover

__all__ = [
    "Collection",
    "Item",
    "ItemState",
    "LedgerEntry",
    "Priority",
    "Rating",
    "StudyMode",
    "DEFAULT_PARAMETERS",
    "DEFAULT_DESIRED_RETENTION",
    "StudyDatabase",
    "FSRS_Scheduler",
    "AllocationEngine",
    "recommend_allocation",
    "ReviewProcessor",
    "RetentionProjector",
    "estimate_days_to_threshold",
    "perform_daily_rollover",
]
