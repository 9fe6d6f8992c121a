# studycore/memory_model.py

"""
Pure FSRS v4 memory-model functions.

Retrievability follows the power-law forgetting curve

    R(t, S) = (1 + t / (9 * S)) ** -1

and is the only retrievability formula in studycore: the scheduler, the
reward bonus and the retention projector all call :func:`retrievability`.
Every function here is side-effect free and safe to call from any thread.
"""

import math
from datetime import datetime
from typing import Sequence

from .constants import (
    DECAY_FACTOR,
    DEFAULT_DESIRED_RETENTION,
    DEFAULT_PARAMETERS,
    MAX_DIFFICULTY,
    MAX_INTERVAL_DAYS,
    MIN_DIFFICULTY,
    MIN_STABILITY,
)
from .models import Rating

SECONDS_PER_DAY = 86400.0


def _check_rating(rating: int) -> Rating:
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValueError(
            f"Invalid rating: {rating!r}. Must be 1-4 (1=Again, 2=Hard, 3=Good, 4=Easy)."
        )
    if not (1 <= rating <= 4):
        raise ValueError(
            f"Invalid rating: {rating}. Must be 1-4 (1=Again, 2=Hard, 3=Good, 4=Easy)."
        )
    return Rating(rating)


def _clamp_difficulty(d: float) -> float:
    return min(max(d, MIN_DIFFICULTY), MAX_DIFFICULTY)


def retrievability(stability: float, elapsed_days: float) -> float:
    """
    Probability of recall after ``elapsed_days`` for a trace of ``stability``.

    Defined as 1.0 when stability is 0 (a New item has nothing to forget).
    Negative elapsed time is treated as zero.
    """
    if stability <= 0:
        return 1.0
    t = max(elapsed_days, 0.0)
    return (1.0 + t / (DECAY_FACTOR * stability)) ** -1


def initial_stability(
    rating: int, w: Sequence[float] = DEFAULT_PARAMETERS
) -> float:
    """Stability after the very first review: S0(G) = w[G-1]."""
    g = _check_rating(rating)
    return max(w[g - 1], MIN_STABILITY)


def initial_difficulty(
    rating: int, w: Sequence[float] = DEFAULT_PARAMETERS
) -> float:
    """Difficulty after the very first review: D0(G) = w4 - (G-3) * w5."""
    g = _check_rating(rating)
    return _clamp_difficulty(w[4] - (g - 3) * w[5])


def next_difficulty(
    difficulty: float, rating: int, w: Sequence[float] = DEFAULT_PARAMETERS
) -> float:
    """
    Moves difficulty by ``-w6 * (G - 3)`` (Easy lowers it, Hard and Again
    raise it), then reverts it slightly toward D0(Good).
    """
    g = _check_rating(rating)
    stepped = difficulty - w[6] * (g - 3)
    reverted = w[7] * initial_difficulty(Rating.Good, w) + (1 - w[7]) * stepped
    return _clamp_difficulty(reverted)


def next_recall_stability(
    difficulty: float,
    stability: float,
    r: float,
    rating: int,
    w: Sequence[float] = DEFAULT_PARAMETERS,
) -> float:
    """Stability after a successful recall (Hard, Good or Easy)."""
    g = _check_rating(rating)
    if g == Rating.Again:
        raise ValueError("Recall stability is undefined for an Again rating.")
    hard_penalty = w[15] if g == Rating.Hard else 1.0
    easy_bonus = w[16] if g == Rating.Easy else 1.0
    s = max(stability, MIN_STABILITY)
    growth = (
        math.exp(w[8])
        * (11 - difficulty)
        * s ** -w[9]
        * (math.exp((1 - r) * w[10]) - 1)
        * hard_penalty
        * easy_bonus
    )
    return max(s * (1 + growth), MIN_STABILITY)


def next_forget_stability(
    difficulty: float,
    stability: float,
    r: float,
    w: Sequence[float] = DEFAULT_PARAMETERS,
) -> float:
    """Stability after a lapse. Never exceeds the stability before it."""
    s = max(stability, MIN_STABILITY)
    forgotten = (
        w[11]
        * max(difficulty, MIN_DIFFICULTY) ** -w[12]
        * ((s + 1) ** w[13] - 1)
        * math.exp((1 - r) * w[14])
    )
    return max(min(forgotten, s), MIN_STABILITY)


def next_interval(
    stability: float,
    desired_retention: float = DEFAULT_DESIRED_RETENTION,
    maximum_interval: int = MAX_INTERVAL_DAYS,
) -> int:
    """
    Whole days until retrievability decays to ``desired_retention``.
    Always at least one day.
    """
    if not (0 < desired_retention < 1):
        raise ValueError(
            f"desired_retention must be in (0, 1), got {desired_retention}"
        )
    raw = DECAY_FACTOR * stability * (1 / desired_retention - 1)
    return int(min(max(round(raw), 1), maximum_interval))


def days_until_retention(stability: float, target_retention: float) -> int:
    """
    Days after a review at which retrievability falls to
    ``target_retention``: ceil(9 * max(S, 0.1) * (1/target - 1)).
    """
    if not (0 < target_retention <= 1):
        raise ValueError(
            f"target_retention must be in (0, 1], got {target_retention}"
        )
    s = max(stability, MIN_STABILITY)
    return math.ceil(DECAY_FACTOR * s * (1 / target_retention - 1))


def fractional_days_between(earlier: datetime, later: datetime) -> float:
    return max((later - earlier).total_seconds() / SECONDS_PER_DAY, 0.0)


def elapsed_days_between(earlier: datetime, later: datetime) -> int:
    """Whole days from ``earlier`` to ``later``; never negative."""
    return int(fractional_days_between(earlier, later))
