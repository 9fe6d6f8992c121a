"""
Study-load allocation.

:func:`recommend_allocation` turns today's reward shortfall into a number
of new items per collection. :class:`AllocationEngine` actually creates
those items, either round robin or from a recommendation, and can mark a
range of units as already studied.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Sequence, Set

from pydantic import BaseModel, ConfigDict, Field

from .constants import (
    BASE_REWARD,
    HIGH_PRIORITY_WEIGHT,
    MIN_ALLOCATION_REWARD,
    NORMAL_PRIORITY_WEIGHT,
    STUDIED_RANGE_DIFFICULTY,
    STUDIED_RANGE_MIN_STABILITY,
)
from .db.database import StudyDatabase
from .models import (
    AllocationRequest,
    AllocationResult,
    Collection,
    Item,
    ItemState,
    Priority,
    ensure_utc,
    local_day,
    start_of_local_day,
)
from .rewards import review_load_reward, reward_per_item
from .scheduler import new_item

logger = logging.getLogger(__name__)


class AllocationConfig(BaseModel):
    """Tunables for the deficit allocator."""

    model_config = ConfigDict(extra="forbid")

    base_rewards: Dict[int, int] = Field(
        default_factory=lambda: dict(BASE_REWARD)
    )
    min_allocation_reward: int = Field(default=MIN_ALLOCATION_REWARD, ge=0)
    high_priority_weight: float = Field(default=HIGH_PRIORITY_WEIGHT, gt=0)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def recommend_allocation(
    request: AllocationRequest, config: Optional[AllocationConfig] = None
) -> AllocationResult:
    """
    Distributes today's reward deficit across collections as new-item counts.

    The deficit is floored at ``min_allocation_reward`` so that something is
    always recommended. Each collection is weighted by priority times its
    flat per-item reward; counts are rounded, then topped up by one item
    per collection (highest reward first) while the rounded reward still
    falls short.

    Returns:
        AllocationResult: A recommendation only. Nothing is persisted.
    """
    config = config or AllocationConfig()
    warnings: List[str] = []

    deficit = max(
        0.0,
        request.target_reward
        - (request.review_reward + request.new_reward_assigned_today),
    )
    effective_deficit = max(deficit, float(config.min_allocation_reward))

    collections: List[Collection] = []
    seen: Set[str] = set()
    for collection in request.collections:
        if collection.collection_id in seen:
            warnings.append(
                f"Collection {collection.collection_id} listed twice; "
                "using the first occurrence."
            )
            continue
        seen.add(collection.collection_id)
        collections.append(collection)

    if not collections:
        warnings.append("No eligible collections; nothing to allocate.")
        logger.warning(warnings[-1])
        return AllocationResult(
            effective_deficit=effective_deficit, warnings=warnings
        )

    per_item = {
        c.collection_id: reward_per_item(c.mode, config.base_rewards)
        for c in collections
    }
    weights = {}
    for c in collections:
        multiplier = (
            config.high_priority_weight
            if c.priority == Priority.High
            else NORMAL_PRIORITY_WEIGHT
        )
        weights[c.collection_id] = multiplier * max(1, per_item[c.collection_id])
    total_weight = sum(weights.values())

    counts: Dict[str, int] = {}
    for c in collections:
        cid = c.collection_id
        reward_slice = effective_deficit * weights[cid] / total_weight
        counts[cid] = max(0, _round_half_up(reward_slice / max(1, per_item[cid])))

    # Collections sorted by flat reward, highest first; ties keep input order.
    by_reward = sorted(
        collections, key=lambda c: per_item[c.collection_id], reverse=True
    )

    if sum(counts.values()) == 0:
        top = by_reward[0].collection_id
        counts[top] = 1
        warnings.append(
            f"Deficit too small to round to any item; assigned 1 item to {top}."
        )

    gap = effective_deficit - sum(counts[cid] * per_item[cid] for cid in counts)
    for c in by_reward:
        if gap <= 0:
            break
        counts[c.collection_id] += 1
        gap -= per_item[c.collection_id]

    total = sum(counts.values())
    logger.info(
        f"Recommended {total} new items for deficit {deficit:.0f} "
        f"(effective {effective_deficit:.0f}) across {len(collections)} collections."  # noqa: E501
    )
    return AllocationResult(
        per_collection=counts,
        total=total,
        effective_deficit=effective_deficit,
        warnings=warnings,
    )


def build_allocation_request(
    db: StudyDatabase,
    collections: Optional[Sequence[Collection]] = None,
    now: Optional[datetime] = None,
    base_rewards: Optional[Mapping[int, int]] = None,
) -> AllocationRequest:
    """
    Gathers today's review load, new items already introduced today and
    today's target from the database. ``collections`` defaults to all.
    """
    now = now or datetime.now(timezone.utc)
    if collections is None:
        collections = db.list_collections()
    ids = [c.collection_id for c in collections]

    review_reward = review_load_reward(
        db.find_due_items(ids, now), collections, base_rewards
    )
    day_start = start_of_local_day(now)
    introduced_today = [
        item for item in db.find_new_items(ids) if item.due >= day_start
    ]
    new_reward = review_load_reward(introduced_today, collections, base_rewards)

    entry = db.get_ledger_entry(local_day(now))
    target = (
        entry.target_reward
        if entry is not None and entry.target_reward > 0
        else db.get_study_state().daily_target_reward
    )
    return AllocationRequest(
        review_reward=review_reward,
        new_reward_assigned_today=new_reward,
        target_reward=target,
        collections=list(collections),
    )


class AllocationEngine:
    """
    Creates new items in the database. Items are minted due at the start of
    the caller's local day and written in one batch.
    """

    def __init__(self, db: StudyDatabase):
        self.db = db

    def _existing_ordinals(
        self, collections: Sequence[Collection]
    ) -> Dict[str, Set[int]]:
        return {
            c.collection_id: {
                item.ordinal
                for item in self.db.find_items_by_collection(c.collection_id)
            }
            for c in collections
        }

    @staticmethod
    def _next_free_ordinal(
        collection: Collection, taken: Set[int]
    ) -> Optional[int]:
        """Lowest ordinal not yet created, or None when the collection is full."""
        for ordinal in range(1, collection.item_capacity + 1):
            if ordinal not in taken:
                return ordinal
        return None

    def _persist(self, created: List[Item]) -> int:
        if created:
            self.db.persist_items(created)
        return len(created)

    def assign_items(
        self,
        collections: Sequence[Collection],
        total_count: int,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Creates up to ``total_count`` new items, one collection at a time in
        round-robin order. Full collections are skipped; the loop is capped
        at ``2 * total_count`` rounds.

        Returns:
            int: Number of items created.
        """
        if total_count <= 0 or not collections:
            return 0
        now = now or datetime.now(timezone.utc)
        due = start_of_local_day(now)
        taken = self._existing_ordinals(collections)

        created: List[Item] = []
        rounds = 0
        while len(created) < total_count and rounds < total_count * 2:
            progressed = False
            for collection in collections:
                if len(created) >= total_count:
                    break
                ordinals = taken[collection.collection_id]
                ordinal = self._next_free_ordinal(collection, ordinals)
                if ordinal is None:
                    continue
                created.append(new_item(collection.collection_id, ordinal, due))
                ordinals.add(ordinal)
                progressed = True
            rounds += 1
            if not progressed:
                logger.info("All collections are fully populated.")
                break

        count = self._persist(created)
        logger.info(
            f"Assigned {count} of {total_count} requested items in {rounds} rounds."  # noqa: E501
        )
        return count

    def assign_items_by_allocation(
        self,
        allocation: Mapping[str, int],
        collections: Sequence[Collection],
        now: Optional[datetime] = None,
    ) -> int:
        """
        Creates the per-collection counts of a recommendation, filling each
        collection's lowest free ordinals. Unknown collection ids and
        non-positive counts are skipped.

        Returns:
            int: Number of items created.
        """
        now = now or datetime.now(timezone.utc)
        due = start_of_local_day(now)
        by_id = {c.collection_id: c for c in collections}

        created: List[Item] = []
        for collection_id, count in allocation.items():
            collection = by_id.get(collection_id)
            if collection is None:
                logger.warning(
                    f"Allocation names unknown collection {collection_id}; skipped."  # noqa: E501
                )
                continue
            if count <= 0:
                continue
            taken = self._existing_ordinals([collection])[collection_id]
            for _ in range(count):
                ordinal = self._next_free_ordinal(collection, taken)
                if ordinal is None:
                    logger.info(f"Collection {collection_id} is fully populated.")
                    break
                created.append(new_item(collection_id, ordinal, due))
                taken.add(ordinal)

        count = self._persist(created)
        logger.info(f"Assigned {count} items from allocation.")
        return count

    def register_studied_range(
        self,
        collection: Collection,
        start: int,
        end: int,
        as_due_today: bool = True,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Marks ordinals ``start``..``end`` of ``collection`` as already
        studied, creating missing items and moving existing ones to Review.

        The range is clamped to the collection's item capacity. Items are
        due at the start of the local day when ``as_due_today`` is set,
        otherwise at ``now``.

        Returns:
            int: Number of items written.
        """
        capacity = collection.item_capacity
        first = max(1, min(start, capacity))
        last = max(first, min(end, capacity))
        now = ensure_utc(now or datetime.now(timezone.utc))
        due = start_of_local_day(now) if as_due_today else now

        existing = {
            item.ordinal: item
            for item in self.db.find_items_by_collection(collection.collection_id)
        }
        studied: List[Item] = []
        for ordinal in range(first, last + 1):
            current = existing.get(ordinal)
            if current is not None:
                studied.append(
                    current.model_copy(
                        update={
                            "state": ItemState.Review,
                            "stability": max(
                                current.stability, STUDIED_RANGE_MIN_STABILITY
                            ),
                            "difficulty": current.difficulty
                            or STUDIED_RANGE_DIFFICULTY,
                            "learning_step": 0,
                            "due": due,
                        }
                    )
                )
            else:
                studied.append(
                    Item(
                        collection_id=collection.collection_id,
                        ordinal=ordinal,
                        state=ItemState.Review,
                        stability=STUDIED_RANGE_MIN_STABILITY,
                        difficulty=STUDIED_RANGE_DIFFICULTY,
                        due=due,
                    )
                )

        count = self._persist(studied)
        logger.info(
            f"Registered {count} studied items ({first}-{last}) in {collection.collection_id}."  # noqa: E501
        )
        return count
