"""
Memory-model, reward and allocation constants.

This module contains static defaults only. Runtime overrides live in
``studycore.config`` (environment) or are passed at the call site.
"""
from typing import Dict, Tuple

# Default FSRS v4 parameters (weights 'w').
# These pair with the power-law forgetting curve R = (1 + t / (9 * S)) ** -1,
# which is the only retrievability formula used in studycore.
# w[0..3]: initial stability per rating (Again, Hard, Good, Easy)
# w[4..7]: initial difficulty, difficulty step, mean reversion
# w[8..10]: recall stability growth
# w[11..14]: forget stability
# w[15], w[16]: hard penalty, easy bonus
DEFAULT_PARAMETERS: Tuple[float, ...] = (
    0.4,   # w[0]
    0.6,   # w[1]
    2.4,   # w[2]
    5.8,   # w[3]
    4.93,  # w[4]
    0.94,  # w[5]
    0.86,  # w[6]
    0.01,  # w[7]
    1.49,  # w[8]
    0.14,  # w[9]
    0.94,  # w[10]
    2.18,  # w[11]
    0.05,  # w[12]
    0.34,  # w[13]
    1.26,  # w[14]
    0.29,  # w[15]
    2.61,  # w[16]
)

# Default desired retention used to turn stability into an interval.
DEFAULT_DESIRED_RETENTION: float = 0.9

# Forgetting curve shape: R = (1 + t / (DECAY_FACTOR * S)) ** -1
DECAY_FACTOR: float = 9.0

MIN_DIFFICULTY: float = 1.0
MAX_DIFFICULTY: float = 10.0
MIN_STABILITY: float = 0.1
MAX_INTERVAL_DAYS: int = 36500

# --- Rewards ---

# Flat per-item reward by study mode (Read, Solve, Memorize).
# Stable estimate used for allocation weighting and review-load totals.
BASE_REWARD: Dict[int, int] = {
    0: 30,  # Read: ~3 minutes per unit
    1: 50,  # Solve: ~5 minutes per unit
    2: 1,   # Memorize: ~6 seconds per unit
}

# Dynamic reward modifiers (difficulty on a 1-10 scale).
DIFFICULTY_REWARD_MULTIPLIER: float = 1.5
RETENTION_BONUS_THRESHOLD: float = 0.7

# Target reward for a day when the user has not configured one.
DEFAULT_DAILY_TARGET_REWARD: int = 600

# Debt thresholds on a negative running balance, and the study bonus
# multiplier granted at each level.
DEBT_LEVEL_THRESHOLDS: Tuple[int, int, int] = (200, 500, 1000)
DEBT_BONUS_MULTIPLIERS: Dict[int, float] = {0: 1.0, 1: 1.5, 2: 2.0, 3: 3.0}

# --- Allocation ---

# Minimum deficit offered by the allocator (~10 items), so a
# recommendation is produced even after the daily target is met.
MIN_ALLOCATION_REWARD: int = 100
HIGH_PRIORITY_WEIGHT: float = 1.3
NORMAL_PRIORITY_WEIGHT: float = 1.0

# Items registered as already studied enter Review with at least this
# stability and, when they have none yet, this difficulty.
STUDIED_RANGE_MIN_STABILITY: float = 1.0
STUDIED_RANGE_DIFFICULTY: float = 5.0

# --- Retention projection ---

# New units a learner can take on per day, by study mode.
DAILY_CAPACITY: Dict[int, int] = {
    0: 30,  # Read
    1: 20,  # Solve
    2: 15,  # Memorize
}
DEFAULT_DAILY_CAPACITY: int = 20

RETENTION_PRESETS: Dict[str, float] = {
    "relaxed": 0.75,
    "recommended": 0.85,
    "strict": 0.95,
}
RECOMMENDED_RETENTION: float = 0.85
MIN_CUSTOM_RETENTION: float = 0.5
MAX_CUSTOM_RETENTION: float = 0.99
