"""
Review processing for studycore.

The ReviewProcessor ties the three steps of a review together:
1. Scheduler computation of the item's next state
2. Reward calculation for successful recalls
3. One database transaction storing the item and crediting the ledger

Nothing is written unless every step succeeds.
"""

import logging
from datetime import datetime, timezone
from typing import List, Mapping, Optional, Sequence, Tuple

from .db.database import StudyDatabase
from .models import Item, StudyMode, ensure_utc, local_day
from .rewards import SUCCESSFUL_RATINGS, reward_for_item
from .scheduler import BaseScheduler, FSRS_Scheduler

# Initialize logger
logger = logging.getLogger(__name__)


class ReviewProcessor:
    """
    Processes review submissions so that an item update and its reward
    credit are always committed together.
    """

    def __init__(
        self,
        db: StudyDatabase,
        scheduler: Optional[BaseScheduler] = None,
        base_rewards: Optional[Mapping[int, int]] = None,
    ):
        """
        Args:
            db: Database facade used for the review transaction.
            scheduler: Scheduler computing next states. Defaults to FSRS.
            base_rewards: Per-mode base reward override.
        """
        self.db = db
        self.scheduler = scheduler or FSRS_Scheduler()
        self.base_rewards = base_rewards

    def _schedule(
        self, item: Item, rating: int, mode: StudyMode, now: datetime
    ) -> Tuple[Item, int]:
        """Returns the updated item and the reward earned by this review."""
        updated = self.scheduler.review(item, rating, now)
        reward = 0
        if rating in SUCCESSFUL_RATINGS:
            # Priced on the item as it stood before the review.
            reward = reward_for_item(mode, item, now, self.base_rewards)
        return updated, reward

    def process_review(
        self,
        item: Item,
        rating: int,
        mode: StudyMode,
        now: Optional[datetime] = None,
    ) -> Item:
        """
        Process a single review.

        Args:
            item: The item being reviewed, as last read from the database.
            rating: User's rating (1-4: Again, Hard, Good, Easy).
            mode: Study mode of the item's collection.
            now: Review timestamp (defaults to current time).

        Returns:
            The updated Item as stored.

        Raises:
            ValueError: If the item is missing or the rating is invalid.
            ReviewNotRecordedError: If the transaction failed; nothing changed.
        """
        if item is None:
            raise ValueError("Cannot process a review for a missing item.")
        ts = ensure_utc(now or datetime.now(timezone.utc))

        logger.debug(f"Processing review for item {item.item_id} with rating {rating}")

        updated, reward = self._schedule(item, rating, mode, ts)
        try:
            entry = self.db.record_reviews([(item, updated)], reward, local_day(ts))
        except Exception:
            logger.exception(f"Failed to record review for item {item.item_id}")
            raise

        logger.debug(
            f"Review recorded for item {item.item_id}. "
            f"Next due: {updated.due}, State: {updated.state.name}, "
            f"Reward: {reward}, Balance: {entry.balance if entry else 'unchanged'}"
        )
        return updated

    def process_batch_review(
        self,
        items: Sequence[Item],
        ratings: Sequence[int],
        mode: StudyMode,
        now: Optional[datetime] = None,
    ) -> List[Item]:
        """
        Process several reviews as one all-or-nothing transaction with a
        single ledger credit for the summed reward.

        Raises:
            ValueError: On length mismatch, a missing item, a duplicate item
                or an invalid rating.
            ReviewNotRecordedError: If the transaction failed; nothing changed.
        """
        if len(items) != len(ratings):
            raise ValueError(
                f"Batch length mismatch: {len(items)} items but {len(ratings)} ratings."  # noqa: E501
            )
        ts = ensure_utc(now or datetime.now(timezone.utc))

        seen = set()
        reviews: List[Tuple[Item, Item]] = []
        total_reward = 0
        for item, rating in zip(items, ratings):
            if item is None:
                raise ValueError("Cannot process a review for a missing item.")
            if item.item_id in seen:
                raise ValueError(f"Item {item.item_id} appears twice in the batch.")
            seen.add(item.item_id)
            updated, reward = self._schedule(item, rating, mode, ts)
            reviews.append((item, updated))
            total_reward += reward

        if not reviews:
            return []

        try:
            self.db.record_reviews(reviews, total_reward, local_day(ts))
        except Exception:
            logger.exception(f"Failed to record batch of {len(reviews)} reviews")
            raise

        logger.info(
            f"Batch of {len(reviews)} reviews recorded, reward {total_reward}."
        )
        return [updated for _, updated in reviews]
