"""
Reward calculation.

Two reward functions are kept separate:

* :func:`reward_per_item` is the flat, stable per-mode estimate used by
  the allocator and the review-load totals.
* :func:`review_reward` is the dynamic amount actually credited for a
  successful review; it grows with difficulty and with how much the item
  had been forgotten.
"""

import logging
import math
from datetime import date, datetime, timedelta
from typing import Iterable, Mapping, Optional, Sequence

from . import memory_model as mm
from .constants import (
    BASE_REWARD,
    DEBT_BONUS_MULTIPLIERS,
    DEBT_LEVEL_THRESHOLDS,
    DIFFICULTY_REWARD_MULTIPLIER,
    RETENTION_BONUS_THRESHOLD,
)
from .models import BalanceStatus, Collection, Item, Rating, StudyMode

logger = logging.getLogger(__name__)

SUCCESSFUL_RATINGS = frozenset({Rating.Good, Rating.Easy})


def reward_per_item(
    mode: StudyMode, base_rewards: Optional[Mapping[int, int]] = None
) -> int:
    """Flat reward for one item of a collection studied in ``mode``."""
    table = base_rewards if base_rewards is not None else BASE_REWARD
    try:
        return table[int(mode)]
    except KeyError:
        raise ValueError(f"No base reward configured for mode {mode!r}") from None


def review_reward(
    mode: StudyMode,
    difficulty: float,
    stability: float,
    elapsed_days: float,
    base_rewards: Optional[Mapping[int, int]] = None,
) -> int:
    """
    Dynamic reward for a successful review.

    reward = floor(base * difficulty_bonus * retention_bonus), never below
    base, where difficulty_bonus = 1 + (difficulty / 10) * 1.5 and
    retention_bonus = 1 + (0.7 - R) * 2 when R < 0.7, else 1.
    """
    base = reward_per_item(mode, base_rewards)
    difficulty_bonus = 1 + (difficulty / 10) * DIFFICULTY_REWARD_MULTIPLIER
    r = mm.retrievability(stability, elapsed_days)
    if r < RETENTION_BONUS_THRESHOLD:
        retention_bonus = 1 + (RETENTION_BONUS_THRESHOLD - r) * 2
    else:
        retention_bonus = 1.0
    return max(math.floor(base * difficulty_bonus * retention_bonus), base)


def reward_for_item(
    mode: StudyMode,
    item: Item,
    now: datetime,
    base_rewards: Optional[Mapping[int, int]] = None,
) -> int:
    """Dynamic reward for ``item`` as it stood just before being reviewed."""
    if item.last_reviewed_at is not None:
        elapsed = mm.fractional_days_between(item.last_reviewed_at, now)
    else:
        elapsed = 0.0
    return review_reward(
        mode, item.difficulty, item.stability, elapsed, base_rewards
    )


def review_load_reward(
    items: Iterable[Item],
    collections: Iterable[Collection],
    base_rewards: Optional[Mapping[int, int]] = None,
) -> int:
    """Flat reward of ``items`` (typically everything due today)."""
    modes = {c.collection_id: c.mode for c in collections}
    total = 0
    for item in items:
        mode = modes.get(item.collection_id)
        if mode is None:
            logger.warning(
                f"Item {item.item_id} belongs to an unknown collection; "
                "excluded from review load."
            )
            continue
        total += reward_per_item(mode, base_rewards)
    return total


def balance_status(balance: int) -> BalanceStatus:
    """
    Classifies a running balance. Debt never locks anything; deeper debt
    only raises the catch-up bonus multiplier.
    """
    if balance >= 0:
        return BalanceStatus(in_debt=False)

    deficit = abs(balance)
    level = sum(1 for threshold in DEBT_LEVEL_THRESHOLDS if deficit >= threshold)
    return BalanceStatus(
        in_debt=True,
        deficit=deficit,
        warning_level=level,
        bonus_multiplier=DEBT_BONUS_MULTIPLIERS[level],
    )


def longest_streak(active_days: Sequence[date]) -> int:
    """Longest run of consecutive calendar days in ``active_days``."""
    days = sorted(set(active_days))
    if not days:
        return 0
    best = run = 1
    for previous, current in zip(days, days[1:]):
        if current - previous == timedelta(days=1):
            run += 1
            best = max(best, run)
        else:
            run = 1
    return best


def current_streak(active_days: Sequence[date], today: date) -> int:
    """
    Consecutive active days ending today. A streak that ended yesterday
    still counts until today is over.
    """
    days = set(active_days)
    day = today if today in days else today - timedelta(days=1)
    streak = 0
    while day in days:
        streak += 1
        day -= timedelta(days=1)
    return streak
