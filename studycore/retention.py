"""
Retention projection and deadline planning along prerequisite chains.

A collection counts as complete once every one of its items has been
learned and sits at or above the target retrievability. The projector
estimates how many days that takes per collection and splits the time
before a target date across a chain in proportion to those estimates.
"""

import logging
import math
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

from . import memory_model as mm
from .constants import (
    DAILY_CAPACITY,
    DEFAULT_DAILY_CAPACITY,
    MAX_CUSTOM_RETENTION,
    MIN_CUSTOM_RETENTION,
    RECOMMENDED_RETENTION,
    RETENTION_PRESETS,
)
from .db.database import StudyDatabase
from .exceptions import CollectionNotFoundError
from .models import ChainDeadlinePlan, Collection, Item, local_day

logger = logging.getLogger(__name__)

CUSTOM_RETENTION = "custom"


def resolve_retention(target: str, custom_value: Optional[float] = None) -> float:
    """
    Maps a preset name ("relaxed", "recommended", "strict") or "custom" to
    a retention value. Custom values are clamped to [0.5, 0.99].
    """
    if target == CUSTOM_RETENTION:
        value = custom_value if custom_value else RECOMMENDED_RETENTION
        return max(MIN_CUSTOM_RETENTION, min(MAX_CUSTOM_RETENTION, value))
    try:
        return RETENTION_PRESETS[target]
    except KeyError:
        valid = ", ".join([*RETENTION_PRESETS, CUSTOM_RETENTION])
        raise ValueError(
            f"Unknown retention target '{target}'. Expected one of: {valid}."
        ) from None


def _check_retention(target_retention: float) -> None:
    if not 0 < target_retention < 1:
        raise ValueError(
            f"Target retention must be between 0 and 1 (exclusive), got {target_retention}."  # noqa: E501
        )


def estimate_days_to_threshold(
    collection: Collection,
    items: Sequence[Item],
    target_retention: float,
    daily_capacity: Optional[Mapping[int, int]] = None,
) -> int:
    """
    Days until every item of ``collection`` is at or above
    ``target_retention``; always at least 1.

    Items already at the target are skipped. For the rest the estimate is
    the days the item needs beyond its stored ``elapsed_days``. Items not
    yet created add their learning time at the mode's daily capacity. The
    slowest of all of these wins.
    """
    _check_retention(target_retention)
    capacity_table = daily_capacity if daily_capacity is not None else DAILY_CAPACITY
    capacity = capacity_table.get(int(collection.mode), DEFAULT_DAILY_CAPACITY)

    days_needed = 0
    for item in items:
        if mm.retrievability(item.stability, item.elapsed_days) >= target_retention:
            continue
        days_to_target = mm.days_until_retention(item.stability, target_retention)
        days_needed = max(days_needed, max(days_to_target - item.elapsed_days, 0))

    remaining = collection.item_capacity - len(items)
    if remaining > 0:
        days_needed = max(days_needed, math.ceil(remaining / max(capacity, 1)))

    return max(days_needed, 1)


def build_chain(
    final_collection_id: str, collections: Sequence[Collection]
) -> Tuple[List[Collection], List[str]]:
    """
    Walks prerequisites back from ``final_collection_id``.

    Returns:
        The chain ordered root first, and any warnings. A cycle or a missing
        predecessor ends the walk with a warning instead of an error.
    """
    by_id = {c.collection_id: c for c in collections}
    chain: List[Collection] = []
    warnings: List[str] = []
    visited: Set[str] = set()

    current_id: Optional[str] = final_collection_id
    while current_id:
        if current_id in visited:
            warnings.append(
                f"Prerequisite cycle detected at collection {current_id}; "
                "chain truncated."
            )
            logger.warning(warnings[-1])
            break
        collection = by_id.get(current_id)
        if collection is None:
            if chain:
                warnings.append(
                    f"Prerequisite {current_id} of {chain[0].collection_id} "
                    "not found; chain truncated."
                )
                logger.warning(warnings[-1])
            break
        visited.add(current_id)
        chain.insert(0, collection)
        current_id = collection.previous_collection_id

    return chain, warnings


def find_chain_ends(collections: Sequence[Collection]) -> List[Collection]:
    """Collections no other collection names as its prerequisite."""
    predecessors = {
        c.previous_collection_id for c in collections if c.previous_collection_id
    }
    return [c for c in collections if c.collection_id not in predecessors]


def plan_chain_deadlines(
    chain: Sequence[Collection],
    items_by_collection: Mapping[str, Sequence[Item]],
    target_date: date,
    target_retention: float,
    today: date,
    daily_capacity: Optional[Mapping[int, int]] = None,
) -> ChainDeadlinePlan:
    """
    Splits the days between ``today`` and ``target_date`` across ``chain``.

    Every collection but the last gets ``floor(available * share)`` days
    (at least 1), where ``share`` is its fraction of the total estimate.
    The last collection is pinned to ``target_date`` and takes whatever
    is left. A deadline tighter than the estimate only adds a warning.
    """
    _check_retention(target_retention)
    if not chain:
        raise ValueError("Cannot plan deadlines for an empty chain.")

    estimated: Dict[str, int] = {}
    for collection in chain:
        estimated[collection.collection_id] = estimate_days_to_threshold(
            collection,
            items_by_collection.get(collection.collection_id, []),
            target_retention,
            daily_capacity,
        )
    total_estimated = sum(estimated.values())
    available = (target_date - today).days

    warnings: List[str] = []
    if available <= 0:
        warnings.append(
            f"Target date {target_date} is not after {today}; "
            "every deadline is already due."
        )
    elif available < total_estimated:
        warnings.append(
            f"Deadline is tight: {total_estimated} days estimated, "
            f"{available} available."
        )

    deadlines: Dict[str, date] = {}
    allocated: Dict[str, int] = {}
    cursor = today
    for collection in chain[:-1]:
        cid = collection.collection_id
        share = estimated[cid] / total_estimated
        days = max(math.floor(available * share), 1)
        allocated[cid] = days
        cursor = cursor + timedelta(days=days)
        deadlines[cid] = cursor

    last_id = chain[-1].collection_id
    allocated[last_id] = available - sum(allocated.values())
    deadlines[last_id] = target_date
    if allocated[last_id] < 1 and len(chain) > 1:
        warnings.append(
            f"No days left for final collection {last_id} after its prerequisites."  # noqa: E501
        )

    for message in warnings:
        logger.warning(message)

    return ChainDeadlinePlan(
        chain=[c.collection_id for c in chain],
        deadlines=deadlines,
        allocated_days=allocated,
        estimated_days=estimated,
        available_days=available,
        total_estimated_days=total_estimated,
        warnings=warnings,
    )


class RetentionProjector:
    """Plans chain deadlines from the collections and items in the database."""

    def __init__(
        self,
        db: StudyDatabase,
        daily_capacity: Optional[Mapping[int, int]] = None,
    ):
        self.db = db
        self.daily_capacity = daily_capacity

    def allocate_chain_deadlines(
        self,
        final_collection_id: str,
        target_date: date,
        target_retention: float,
        today: Optional[date] = None,
        save: bool = False,
    ) -> ChainDeadlinePlan:
        """
        Builds the chain ending at ``final_collection_id`` and apportions
        the time until ``target_date`` across it.

        Args:
            save: Store the resulting deadlines on the collections.

        Raises:
            CollectionNotFoundError: If the final collection does not exist.
            ValueError: If ``target_retention`` is outside (0, 1).
        """
        today = today or local_day(datetime.now(timezone.utc))
        collections = self.db.list_collections()
        chain, chain_warnings = build_chain(final_collection_id, collections)
        if not chain:
            raise CollectionNotFoundError(
                f"Collection {final_collection_id} not found."
            )

        items_by_collection = {
            c.collection_id: self.db.find_items_by_collection(c.collection_id)
            for c in chain
        }
        plan = plan_chain_deadlines(
            chain,
            items_by_collection,
            target_date,
            target_retention,
            today,
            self.daily_capacity,
        )
        if chain_warnings:
            plan = plan.model_copy(
                update={"warnings": chain_warnings + plan.warnings}
            )

        logger.info(
            f"Planned deadlines for chain {' -> '.join(plan.chain)} "
            f"ending {target_date} ({plan.available_days} days available)."
        )
        if save:
            self.db.save_chain_deadlines(plan.deadlines)
        return plan
