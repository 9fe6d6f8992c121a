from datetime import date, timedelta

import pytest

from studycore.models import Collection, Item, ItemState, StudyMode
from studycore.rewards import (
    balance_status,
    current_streak,
    longest_streak,
    review_load_reward,
    review_reward,
    reward_for_item,
    reward_per_item,
)


def test_flat_reward_per_mode():
    assert reward_per_item(StudyMode.Read) == 30
    assert reward_per_item(StudyMode.Solve) == 50
    assert reward_per_item(StudyMode.Memorize) == 1


def test_flat_reward_override():
    assert reward_per_item(StudyMode.Read, {0: 12, 1: 40, 2: 2}) == 12


def test_flat_reward_unknown_mode_raises():
    with pytest.raises(ValueError):
        reward_per_item(StudyMode.Memorize, {0: 30})


def test_dynamic_reward_worked_example():
    # R = (1 + 10/36) ** -1 ~ 0.783, so no retention bonus.
    assert review_reward(StudyMode.Solve, 6.0, 4.0, 10.0) == 95


def test_dynamic_reward_adds_retention_bonus_when_forgotten():
    reward = review_reward(StudyMode.Read, 1.0, 1.0, 30.0)
    plain = review_reward(StudyMode.Read, 1.0, 1.0, 0.0)
    assert reward > plain


@pytest.mark.parametrize("mode", list(StudyMode))
@pytest.mark.parametrize("difficulty", [0.0, 1.0, 5.0, 10.0])
@pytest.mark.parametrize("elapsed", [0.0, 2.0, 50.0])
def test_dynamic_reward_never_below_base(mode, difficulty, elapsed):
    assert review_reward(mode, difficulty, 3.0, elapsed) >= reward_per_item(mode)


def test_reward_for_item_uses_time_since_last_review(review_item, now):
    # Ten days since the last review of an S=4, D=6 Solve item.
    assert reward_for_item(StudyMode.Solve, review_item, now) == 95


def test_reward_for_never_reviewed_item(now):
    item = Item(collection_id="algebra", ordinal=2, due=now)
    assert reward_for_item(StudyMode.Solve, item, now) == 50


def test_review_load_uses_flat_rewards(solve_collection, read_collection, now):
    items = [
        Item(collection_id="algebra", ordinal=1, state=ItemState.Review, stability=2.0, due=now),  # noqa: E501
        Item(collection_id="algebra", ordinal=2, state=ItemState.Review, stability=2.0, due=now),  # noqa: E501
        Item(collection_id="history", ordinal=1, state=ItemState.Review, stability=2.0, due=now),  # noqa: E501
    ]
    assert review_load_reward(items, [solve_collection, read_collection]) == 130


def test_review_load_skips_unknown_collection(solve_collection, now, caplog):
    items = [
        Item(collection_id="algebra", ordinal=1, due=now),
        Item(collection_id="ghost", ordinal=1, due=now - timedelta(days=1)),
    ]
    assert review_load_reward(items, [solve_collection]) == 50
    assert "ghost_1" in caplog.text


@pytest.mark.parametrize(
    "balance, in_debt, level, multiplier",
    [
        (250, False, 0, 1.0),
        (0, False, 0, 1.0),
        (-150, True, 0, 1.0),
        (-200, True, 1, 1.5),
        (-750, True, 2, 2.0),
        (-1000, True, 3, 3.0),
    ],
)
def test_balance_status(balance, in_debt, level, multiplier):
    status = balance_status(balance)
    assert status.in_debt is in_debt
    assert status.warning_level == level
    assert status.bonus_multiplier == multiplier
    assert status.deficit == (abs(balance) if in_debt else 0)


def _days(*numbers):
    return [date(2024, 3, n) for n in numbers]


@pytest.mark.parametrize(
    "days, expected",
    [
        ([], 0),
        (_days(5), 1),
        (_days(1, 2, 3, 5, 6), 3),
        (_days(1, 3, 4, 5, 6, 8), 4),
        (_days(7, 1, 2, 2), 2),
    ],
)
def test_longest_streak(days, expected):
    assert longest_streak(days) == expected


def test_current_streak_counts_back_from_today():
    assert current_streak(_days(4, 6, 7, 8, 9, 10), date(2024, 3, 10)) == 5


def test_current_streak_survives_until_today_is_over():
    assert current_streak(_days(7, 8, 9), date(2024, 3, 10)) == 3


def test_current_streak_broken_by_a_missed_day():
    assert current_streak(_days(6, 7, 8), date(2024, 3, 10)) == 0
    assert current_streak([], date(2024, 3, 10)) == 0
