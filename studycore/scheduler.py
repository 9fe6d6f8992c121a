# studycore/scheduler.py

"""
Defines the BaseScheduler abstract class and the FSRS_Scheduler for
studycore, built on the pure functions in :mod:`studycore.memory_model`.
"""

import logging
from abc import ABC, abstractmethod
import datetime
from typing import Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from . import memory_model as mm
from .constants import (
    DEFAULT_PARAMETERS,
    DEFAULT_DESIRED_RETENTION,
    MAX_INTERVAL_DAYS,
)
from .models import Item, ItemState, Rating, ensure_utc

logger = logging.getLogger(__name__)


class BaseScheduler(ABC):
    """
    Abstract base class for all schedulers in studycore.
    """

    @abstractmethod
    def review(
        self,
        item: Item,
        rating: int,
        now: Optional[datetime.datetime] = None,
    ) -> Item:
        """
        Computes the next state of an item from its current state and a rating.

        Args:
            item: The Item being reviewed. Not modified.
            rating: The rating given (1=Again, 2=Hard, 3=Good, 4=Easy).
            now: The timestamp of the review (UTC assumed if naive).

        Returns:
            A new Item carrying the updated state. The caller persists it.

        Raises:
            ValueError: If the item is missing or the rating is invalid.
        """
        pass


class FSRSSchedulerConfig(BaseModel):
    """Configuration for the FSRS Scheduler."""

    parameters: Tuple[float, ...] = Field(
        default_factory=lambda: tuple(DEFAULT_PARAMETERS)
    )
    desired_retention: float = Field(
        default=DEFAULT_DESIRED_RETENTION, gt=0, lt=1
    )
    learning_steps: Tuple[datetime.timedelta, ...] = Field(
        default_factory=lambda: (
            datetime.timedelta(minutes=1),
            datetime.timedelta(minutes=10),
        )
    )
    relearning_steps: Tuple[datetime.timedelta, ...] = Field(
        default_factory=lambda: (datetime.timedelta(minutes=10),)
    )
    max_interval: int = Field(default=MAX_INTERVAL_DAYS, ge=1)

    @field_validator("parameters")
    @classmethod
    def check_parameter_count(cls, v: Tuple[float, ...]) -> Tuple[float, ...]:
        if len(v) != len(DEFAULT_PARAMETERS):
            raise ValueError(
                f"Expected {len(DEFAULT_PARAMETERS)} FSRS parameters, got {len(v)}."
            )
        return v


class FSRS_Scheduler(BaseScheduler):
    """
    FSRS (Free Spaced Repetition Scheduler) implementation for studycore.

    New and lapsed items walk a ladder of short learning steps before
    graduating to day-based intervals derived from their stability.
    """

    def __init__(self, config: Optional[FSRSSchedulerConfig] = None):
        if config is None:
            config = FSRSSchedulerConfig()
        self.config = config
        self.w = tuple(self.config.parameters)

    def _validate_rating(self, rating: int) -> Rating:
        """Maps a 1-4 rating to the Rating enum and validates it."""
        if isinstance(rating, bool) or not isinstance(rating, int) or not (1 <= rating <= 4):
            raise ValueError(
                f"Invalid rating: {rating}. Must be 1-4 (1=Again, 2=Hard, 3=Good, 4=Easy)."
            )
        return Rating(rating)

    def _graduate(
        self, stability: float, now: datetime.datetime
    ) -> Tuple[ItemState, int, datetime.datetime]:
        interval = mm.next_interval(
            stability, self.config.desired_retention, self.config.max_interval
        )
        return ItemState.Review, 0, now + datetime.timedelta(days=interval)

    def _step(
        self,
        state: ItemState,
        steps: Tuple[datetime.timedelta, ...],
        step: int,
        stability: float,
        now: datetime.datetime,
    ) -> Tuple[ItemState, int, datetime.datetime]:
        """Places the item on ``step`` of a ladder, graduating past its end."""
        if step >= len(steps):
            return self._graduate(stability, now)
        return state, step, now + steps[step]

    def review(
        self,
        item: Item,
        rating: int,
        now: Optional[datetime.datetime] = None,
    ) -> Item:
        if item is None:
            raise ValueError("Cannot review a missing item.")
        grade = self._validate_rating(rating)
        now = ensure_utc(now or datetime.datetime.now(datetime.timezone.utc))

        if item.last_reviewed_at is not None:
            elapsed = mm.fractional_days_between(item.last_reviewed_at, now)
        else:
            elapsed = 0.0
        r = mm.retrievability(item.stability, elapsed)
        lapses = item.lapse_count + (1 if grade == Rating.Again else 0)

        if item.state == ItemState.New:
            stability = mm.initial_stability(grade, self.w)
            difficulty = mm.initial_difficulty(grade, self.w)
            if grade == Rating.Easy:
                state, step, due = self._graduate(stability, now)
            else:
                next_step = 1 if grade == Rating.Good else 0
                state, step, due = self._step(
                    ItemState.Learning,
                    self.config.learning_steps,
                    next_step,
                    stability,
                    now,
                )
        elif item.state in (ItemState.Learning, ItemState.Relearning):
            steps = (
                self.config.learning_steps
                if item.state == ItemState.Learning
                else self.config.relearning_steps
            )
            difficulty = mm.next_difficulty(item.difficulty, grade, self.w)
            if grade == Rating.Again:
                stability = mm.next_forget_stability(
                    item.difficulty, item.stability, r, self.w
                )
                state, step, due = self._step(
                    item.state, steps, 0, stability, now
                )
            else:
                stability = mm.next_recall_stability(
                    item.difficulty, item.stability, r, grade, self.w
                )
                if grade == Rating.Easy:
                    state, step, due = self._graduate(stability, now)
                elif grade == Rating.Good:
                    state, step, due = self._step(
                        item.state, steps, item.learning_step + 1, stability, now
                    )
                else:
                    state, step, due = self._step(
                        item.state, steps, item.learning_step, stability, now
                    )
        else:
            difficulty = mm.next_difficulty(item.difficulty, grade, self.w)
            if grade == Rating.Again:
                stability = mm.next_forget_stability(
                    item.difficulty, item.stability, r, self.w
                )
                state, step, due = self._step(
                    ItemState.Relearning,
                    self.config.relearning_steps,
                    0,
                    stability,
                    now,
                )
            else:
                stability = mm.next_recall_stability(
                    item.difficulty, item.stability, r, grade, self.w
                )
                state, step, due = self._graduate(stability, now)

        scheduled_days = mm.elapsed_days_between(now, due)
        elapsed_days = (
            mm.elapsed_days_between(item.last_reviewed_at, now)
            if item.last_reviewed_at is not None
            else 0
        )

        logger.debug(
            f"Reviewed {item.item_id} rated {grade.name}: "
            f"{item.state.name} -> {state.name}, S={stability:.2f}, "
            f"D={difficulty:.2f}, due in {scheduled_days}d"
        )

        data = item.model_dump()
        data.update(
            state=state,
            stability=stability,
            difficulty=difficulty,
            elapsed_days=elapsed_days,
            scheduled_days=scheduled_days,
            learning_step=step,
            repetition_count=item.repetition_count + 1,
            lapse_count=lapses,
            due=due,
            last_reviewed_at=now,
        )
        return Item.model_validate(data)

    def new_item(
        self,
        collection_id: str,
        ordinal: int,
        now: Optional[datetime.datetime] = None,
    ) -> Item:
        return new_item(collection_id, ordinal, now)


def new_item(
    collection_id: str,
    ordinal: int,
    now: Optional[datetime.datetime] = None,
) -> Item:
    """Mints a blank item: New, zero stability and difficulty, due now."""
    now = ensure_utc(now or datetime.datetime.now(datetime.timezone.utc))
    return Item(
        collection_id=collection_id,
        ordinal=ordinal,
        state=ItemState.New,
        stability=0.0,
        difficulty=0.0,
        due=now,
    )
