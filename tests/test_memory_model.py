import math
from datetime import datetime, timedelta, timezone

import pytest

from studycore import memory_model as mm
from studycore.constants import DEFAULT_PARAMETERS, MIN_STABILITY
from studycore.models import Rating

UTC = timezone.utc


class TestRetrievability:
    def test_power_law_value(self):
        assert mm.retrievability(4.0, 10.0) == pytest.approx(1 / (1 + 10 / 36))

    def test_at_stability_times_nine_is_half(self):
        assert mm.retrievability(2.0, 18.0) == pytest.approx(0.5)

    def test_zero_elapsed_is_one(self):
        assert mm.retrievability(5.0, 0) == 1.0

    def test_zero_stability_is_one(self):
        assert mm.retrievability(0.0, 30) == 1.0

    def test_negative_elapsed_treated_as_zero(self):
        assert mm.retrievability(3.0, -2) == 1.0

    @pytest.mark.parametrize("stability", [0.1, 1.0, 7.5, 120.0])
    def test_bounded_and_strictly_decreasing(self, stability):
        previous = 1.0
        for t in [0.5, 1, 3, 10, 100, 1000]:
            r = mm.retrievability(stability, t)
            assert 0 < r <= 1
            assert r < previous
            previous = r


class TestInitialState:
    def test_initial_stability_is_weight_per_rating(self):
        for rating in Rating:
            assert mm.initial_stability(rating) == DEFAULT_PARAMETERS[rating - 1]

    def test_initial_difficulty_good(self):
        assert mm.initial_difficulty(Rating.Good) == pytest.approx(4.93)

    def test_initial_difficulty_order(self):
        again = mm.initial_difficulty(Rating.Again)
        easy = mm.initial_difficulty(Rating.Easy)
        assert again == pytest.approx(4.93 + 2 * 0.94)
        assert easy == pytest.approx(4.93 - 0.94)

    def test_initial_difficulty_is_clamped(self):
        w = list(DEFAULT_PARAMETERS)
        w[4] = 12.0
        assert mm.initial_difficulty(Rating.Again, w) == 10.0

    @pytest.mark.parametrize("bad_rating", [0, 5, -1, True, 2.5, "3"])
    def test_invalid_rating_raises(self, bad_rating):
        with pytest.raises(ValueError, match="Invalid rating"):
            mm.initial_stability(bad_rating)


class TestDifficultyUpdate:
    def test_easy_lowers_and_again_raises(self):
        assert mm.next_difficulty(5.0, Rating.Easy) < 5.0
        assert mm.next_difficulty(5.0, Rating.Again) > 5.0

    def test_stays_within_bounds(self):
        assert mm.next_difficulty(10.0, Rating.Again) == 10.0
        assert mm.next_difficulty(1.0, Rating.Easy) == 1.0


class TestStabilityUpdate:
    def test_recall_stability_orders_by_rating(self):
        args = (5.0, 10.0, 0.8)
        hard = mm.next_recall_stability(*args, Rating.Hard)
        good = mm.next_recall_stability(*args, Rating.Good)
        easy = mm.next_recall_stability(*args, Rating.Easy)
        assert 10.0 < hard < good < easy

    def test_recall_stability_flat_when_nothing_forgotten(self):
        assert mm.next_recall_stability(5.0, 3.0, 1.0, Rating.Good) == pytest.approx(3.0)

    def test_recall_stability_rejects_again(self):
        with pytest.raises(ValueError):
            mm.next_recall_stability(5.0, 3.0, 0.9, Rating.Again)

    @pytest.mark.parametrize("stability", [0.1, 1.0, 10.0, 400.0])
    def test_forget_stability_never_grows(self, stability):
        forgotten = mm.next_forget_stability(5.0, stability, 0.5)
        assert MIN_STABILITY <= forgotten <= max(stability, MIN_STABILITY)


class TestIntervals:
    def test_interval_equals_stability_at_ninety_percent(self):
        assert mm.next_interval(10.0, 0.9) == 10

    def test_interval_is_at_least_one_day(self):
        assert mm.next_interval(0.1, 0.9) == 1

    def test_interval_respects_maximum(self):
        assert mm.next_interval(10_000.0, 0.9, maximum_interval=365) == 365

    @pytest.mark.parametrize("retention", [0, 1, 1.2, -0.5])
    def test_interval_rejects_bad_retention(self, retention):
        with pytest.raises(ValueError):
            mm.next_interval(5.0, retention)

    def test_days_until_retention(self):
        assert mm.days_until_retention(4.0, 0.85) == math.ceil(36 * (1 / 0.85 - 1))

    def test_days_until_retention_floors_stability(self):
        assert mm.days_until_retention(0.0, 0.9) == 1


class TestDayCounting:
    def test_elapsed_days_truncates(self):
        start = datetime(2024, 1, 1, 8, 0, tzinfo=UTC)
        assert mm.elapsed_days_between(start, start + timedelta(days=2, hours=23)) == 2

    def test_elapsed_days_never_negative(self):
        start = datetime(2024, 1, 5, tzinfo=UTC)
        assert mm.elapsed_days_between(start, start - timedelta(days=3)) == 0

    def test_fractional_days(self):
        start = datetime(2024, 1, 1, tzinfo=UTC)
        assert mm.fractional_days_between(start, start + timedelta(hours=36)) == pytest.approx(1.5)
