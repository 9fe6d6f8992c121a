"""
Pydantic models for items, collections, the reward ledger and the
ephemeral allocation/projection results.
"""

from __future__ import annotations

import math
from enum import IntEnum
from datetime import datetime, date, timezone
from typing import Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


class ItemState(IntEnum):
    """
    Represents the FSRS-defined state of an item's memory trace.
    """

    New = 0
    Learning = 1
    Review = 2
    Relearning = 3


class Rating(IntEnum):
    """
    Represents the user's rating of their recall performance.
    """

    Again = 1
    Hard = 2
    Good = 3
    Easy = 4


class StudyMode(IntEnum):
    """How a collection is studied; drives reward and daily capacity."""

    Read = 0
    Solve = 1
    Memorize = 2


class Priority(IntEnum):
    Normal = 0
    High = 1


def ensure_utc(ts: datetime) -> datetime:
    """Assumes UTC for naive datetimes and converts aware ones to UTC."""
    if ts.tzinfo is None or ts.tzinfo.utcoffset(ts) is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def local_day(ts: datetime) -> date:
    """Calendar day of ``ts`` in the machine's local timezone."""
    return ensure_utc(ts).astimezone().date()


def start_of_local_day(ts: datetime) -> datetime:
    """UTC instant of local midnight on the day containing ``ts``."""
    local = ensure_utc(ts).astimezone()
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc)


class Item(BaseModel):
    """
    One learnable unit of a collection and its memory state.

    Identity is (collection_id, ordinal); everything else is mutated only by
    the scheduler and the review transaction.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    collection_id: str = Field(
        ...,
        min_length=1,
        description="Owning collection.",
    )
    ordinal: int = Field(
        ...,
        ge=1,
        description="1-based position of the item within its collection.",
    )
    state: ItemState = Field(
        default=ItemState.New,
        description="The current FSRS state of the item.",
    )
    stability: float = Field(
        default=0.0,
        ge=0,
        description="Stability of the memory trace (days). 0 only while New.",
    )
    difficulty: float = Field(
        default=0.0,
        ge=0,
        description="Difficulty of the item (0 while New, 1-10 afterwards).",
    )
    elapsed_days: int = Field(
        default=0,
        ge=0,
        description="Days between the two most recent reviews.",
    )
    scheduled_days: int = Field(
        default=0,
        ge=0,
        description="Interval in days chosen at the last review.",
    )
    learning_step: int = Field(
        default=0,
        ge=0,
        description="Position in the learning or relearning step ladder.",
    )
    repetition_count: int = Field(default=0, ge=0)
    lapse_count: int = Field(default=0, ge=0)
    due: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="UTC timestamp when the item is next due.",
    )
    last_reviewed_at: Optional[datetime] = Field(
        default=None,
        description="UTC timestamp of the most recent review.",
    )

    @field_validator("due", "last_reviewed_at")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @model_validator(mode="after")
    def check_stability_matches_state(self) -> "Item":
        """Stability may only be zero while the item is still New."""
        if self.state != ItemState.New and self.stability <= 0:
            raise ValueError(
                f"Item {self.collection_id}_{self.ordinal} is "
                f"{self.state.name} but has stability {self.stability}."
            )
        return self

    @property
    def item_id(self) -> str:
        return f"{self.collection_id}_{self.ordinal}"

    def is_due(self, now: datetime) -> bool:
        return self.due <= ensure_utc(now)


class Collection(BaseModel):
    """
    A titled body of material divided into items.

    ``previous_collection_id`` links the collection to its prerequisite,
    forming a chain that is consumed (never re-derived) by the projector.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    collection_id: str = Field(..., min_length=1)
    title: str = Field(default="", description="Display title.")
    mode: StudyMode = StudyMode.Read
    total_units: int = Field(
        ...,
        ge=1,
        description="Total extent of the material (pages, problems, words).",
    )
    chunk_size: int = Field(
        default=1,
        ge=1,
        description="Units per item.",
    )
    priority: Priority = Priority.Normal
    previous_collection_id: Optional[str] = Field(
        default=None,
        description="Prerequisite collection, if any.",
    )
    target_date: Optional[date] = Field(
        default=None,
        description="Completion deadline assigned by the deadline planner.",
    )

    @property
    def item_capacity(self) -> int:
        """Number of items the collection is divided into."""
        return math.ceil(self.total_units / self.chunk_size)


class LedgerEntry(BaseModel):
    """
    One calendar day of the reward ledger. ``balance`` is the running
    surplus (positive) or deficit (negative) carried across days.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    entry_date: date
    earned_reward: int = Field(default=0, ge=0)
    target_reward: int = Field(default=0, ge=0)
    balance: int = 0


class StudyState(BaseModel):
    """
    Per-user scheduling state that must survive restarts: the day the
    rollover last ran and the single source of truth for today's target.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    last_rollover_date: Optional[date] = None
    daily_target_reward: int = Field(..., ge=0)


class AllocationRequest(BaseModel):
    """Input to the deficit allocator. Never persisted."""

    model_config = ConfigDict(extra="forbid")

    review_reward: float = Field(
        default=0,
        ge=0,
        description="Flat reward of every item already due today.",
    )
    new_reward_assigned_today: float = Field(
        default=0,
        ge=0,
        description="Flat reward of new items already introduced today.",
    )
    target_reward: float = Field(..., ge=0)
    collections: List[Collection] = Field(default_factory=list)


class AllocationResult(BaseModel):
    """Recommended new-item counts per collection. Never persisted."""

    model_config = ConfigDict(extra="forbid")

    per_collection: Dict[str, int] = Field(default_factory=dict)
    total: int = 0
    effective_deficit: float = 0
    warnings: List[str] = Field(default_factory=list)


class ChainDeadlinePlan(BaseModel):
    """Deadline apportioned to each collection of a prerequisite chain."""

    model_config = ConfigDict(extra="forbid")

    chain: List[str] = Field(
        default_factory=list,
        description="Collection ids, root first, final collection last.",
    )
    deadlines: Dict[str, date] = Field(default_factory=dict)
    allocated_days: Dict[str, int] = Field(default_factory=dict)
    estimated_days: Dict[str, int] = Field(default_factory=dict)
    available_days: int = 0
    total_estimated_days: int = 0
    warnings: List[str] = Field(default_factory=list)

    @property
    def is_tight(self) -> bool:
        return self.available_days < self.total_estimated_days


class RolloverResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    performed: bool
    entry_date: date
    target_reward: int = 0
    new_balance: Optional[int] = None


class BalanceStatus(BaseModel):
    """How far behind the running balance is, and the catch-up bonus."""

    model_config = ConfigDict(extra="forbid")

    in_debt: bool
    deficit: int = Field(default=0, ge=0)
    warning_level: int = Field(default=0, ge=0, le=3)
    bonus_multiplier: float = 1.0
