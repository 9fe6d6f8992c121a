from datetime import timedelta

import pytest

from studycore.allocation import (
    AllocationConfig,
    AllocationEngine,
    build_allocation_request,
    recommend_allocation,
)
from studycore.models import (
    AllocationRequest,
    Collection,
    Item,
    ItemState,
    Priority,
    StudyMode,
    start_of_local_day,
)
from studycore.rewards import reward_per_item
from studycore.scheduler import new_item


def _collection(cid, mode, priority=Priority.Normal, total_units=50):
    return Collection(
        collection_id=cid, mode=mode, priority=priority, total_units=total_units
    )


# --- recommend_allocation ---


def test_worked_example_needs_no_correction(solve_collection, read_collection):
    request = AllocationRequest(
        target_reward=200, collections=[solve_collection, read_collection]
    )
    result = recommend_allocation(request)

    assert result.per_collection == {"algebra": 3, "history": 2}
    assert result.total == 5
    assert result.effective_deficit == 200
    assert result.warnings == []


def test_deficit_subtracts_scheduled_reward(solve_collection):
    request = AllocationRequest(
        review_reward=250,
        new_reward_assigned_today=50,
        target_reward=600,
        collections=[solve_collection],
    )
    result = recommend_allocation(request)
    assert result.effective_deficit == 300
    assert result.per_collection == {"algebra": 6}


def test_minimum_floor_applies_after_target_met(solve_collection):
    request = AllocationRequest(
        review_reward=800, target_reward=600, collections=[solve_collection]
    )
    result = recommend_allocation(request)
    assert result.effective_deficit == 100
    assert result.per_collection == {"algebra": 2}


def test_correction_pass_tops_up_highest_reward_first():
    read = _collection("read", StudyMode.Read)
    memorize = _collection("memo", StudyMode.Memorize)
    request = AllocationRequest(target_reward=100, collections=[memorize, read])

    result = recommend_allocation(request)

    # Rounded counts 3 and 3 cover 93 of 100; one extra Read item closes it.
    assert result.per_collection == {"memo": 3, "read": 4}
    assert result.total == 7


def test_counts_round_half_up():
    read = _collection("read", StudyMode.Read)
    config = AllocationConfig(min_allocation_reward=75)
    result = recommend_allocation(
        AllocationRequest(target_reward=0, collections=[read]), config
    )
    assert result.per_collection == {"read": 3}


def test_degenerate_case_forces_one_item():
    memorize = _collection("memo", StudyMode.Memorize)
    read = _collection("read", StudyMode.Read)
    config = AllocationConfig(min_allocation_reward=0)
    result = recommend_allocation(
        AllocationRequest(target_reward=0, collections=[memorize, read]), config
    )

    assert result.per_collection == {"memo": 0, "read": 1}
    assert result.total == 1
    assert result.warnings


def test_forced_item_is_topped_up_to_cover_deficit():
    collections = [_collection(f"r{i}", StudyMode.Read) for i in range(7)]
    result = recommend_allocation(
        AllocationRequest(target_reward=0, collections=collections)
    )

    # Every share rounds to zero; after the forced item, one extra item per
    # collection is added until the 100 floor is covered.
    assert result.effective_deficit == 100
    assert result.per_collection == {
        "r0": 2, "r1": 1, "r2": 1, "r3": 0, "r4": 0, "r5": 0, "r6": 0
    }
    assert result.total * 30 >= result.effective_deficit
    assert result.warnings


def test_empty_collection_set_is_not_an_error():
    result = recommend_allocation(AllocationRequest(target_reward=600))
    assert result.per_collection == {}
    assert result.total == 0
    assert result.warnings


def test_duplicate_collections_are_counted_once(solve_collection):
    result = recommend_allocation(
        AllocationRequest(
            target_reward=200, collections=[solve_collection, solve_collection]
        )
    )
    assert result.per_collection == {"algebra": 4}
    assert len(result.warnings) == 1


def test_high_priority_weight_override(solve_collection, read_collection):
    config = AllocationConfig(high_priority_weight=3.0)
    result = recommend_allocation(
        AllocationRequest(
            target_reward=1000, collections=[solve_collection, read_collection]
        ),
        config,
    )
    default = recommend_allocation(
        AllocationRequest(
            target_reward=1000, collections=[solve_collection, read_collection]
        )
    )
    assert result.per_collection["algebra"] > default.per_collection["algebra"]


@pytest.mark.parametrize("target", [0, 37, 150, 600, 2500])
@pytest.mark.parametrize(
    "modes",
    [
        (StudyMode.Read,),
        (StudyMode.Solve, StudyMode.Memorize),
        (StudyMode.Read, StudyMode.Solve, StudyMode.Memorize),
        (StudyMode.Read,) * 8,
    ],
)
def test_counts_non_negative_and_cover_deficit(target, modes):
    collections = [
        _collection(f"c{i}", mode, Priority.High if i == 0 else Priority.Normal)
        for i, mode in enumerate(modes)
    ]
    result = recommend_allocation(
        AllocationRequest(target_reward=target, collections=collections)
    )
    assert all(count >= 0 for count in result.per_collection.values())
    represented = sum(
        result.per_collection[c.collection_id] * reward_per_item(c.mode)
        for c in collections
    )
    assert represented >= result.effective_deficit
    assert result.total == sum(result.per_collection.values())


# --- AllocationEngine ---


def test_assign_items_round_robin(memory_db, solve_collection, read_collection, now):
    engine = AllocationEngine(memory_db)
    created = engine.assign_items([solve_collection, read_collection], 5, now)

    assert created == 5
    algebra = memory_db.find_items_by_collection("algebra")
    history = memory_db.find_items_by_collection("history")
    assert [i.ordinal for i in algebra] == [1, 2, 3]
    assert [i.ordinal for i in history] == [1, 2]
    for item in algebra + history:
        assert item.state == ItemState.New
        assert item.due == start_of_local_day(now)


def test_assign_items_fills_gaps_and_skips_full(memory_db, read_collection, now):
    memory_db.persist_items(
        [new_item("history", 1, now), new_item("history", 3, now)]
    )
    created = AllocationEngine(memory_db).assign_items([read_collection], 4, now)

    assert created == 1
    ordinals = [i.ordinal for i in memory_db.find_items_by_collection("history")]
    assert ordinals == [1, 2, 3]


def test_assign_items_continues_with_collections_that_have_room(
    memory_db, solve_collection, read_collection, now
):
    created = AllocationEngine(memory_db).assign_items(
        [read_collection, solve_collection], 8, now
    )
    assert created == 8
    assert len(memory_db.find_items_by_collection("history")) == 3
    assert len(memory_db.find_items_by_collection("algebra")) == 5


def test_assign_items_when_everything_is_full(memory_db, read_collection, now):
    memory_db.persist_items([new_item("history", n, now) for n in (1, 2, 3)])
    assert AllocationEngine(memory_db).assign_items([read_collection], 10, now) == 0


def test_assign_items_nothing_requested(memory_db, solve_collection, now):
    engine = AllocationEngine(memory_db)
    assert engine.assign_items([solve_collection], 0, now) == 0
    assert engine.assign_items([], 5, now) == 0
    assert memory_db.find_items_by_collection("algebra") == []


def test_assign_items_by_allocation(memory_db, solve_collection, read_collection, now):
    created = AllocationEngine(memory_db).assign_items_by_allocation(
        {"algebra": 2, "history": 5, "ghost": 3, "unused": 0},
        [solve_collection, read_collection],
        now,
    )
    assert created == 5
    assert len(memory_db.find_items_by_collection("algebra")) == 2
    assert len(memory_db.find_items_by_collection("history")) == 3


def test_build_allocation_request(memory_db, solve_collection, read_collection, now):
    memory_db.upsert_collections([solve_collection, read_collection])
    day_start = start_of_local_day(now)
    memory_db.persist_items(
        [
            Item(
                collection_id="algebra",
                ordinal=1,
                state=ItemState.Review,
                stability=3.0,
                difficulty=5.0,
                due=now - timedelta(days=1),
                last_reviewed_at=now - timedelta(days=4),
            ),
            Item(
                collection_id="history",
                ordinal=1,
                state=ItemState.Review,
                stability=3.0,
                difficulty=5.0,
                due=now + timedelta(days=2),
                last_reviewed_at=now - timedelta(days=1),
            ),
            new_item("algebra", 2, day_start),
            new_item("algebra", 3, day_start - timedelta(days=3)),
        ]
    )

    request = build_allocation_request(memory_db, now=now)

    assert request.review_reward == 50
    assert request.new_reward_assigned_today == 50
    assert request.target_reward == 600
    assert {c.collection_id for c in request.collections} == {"algebra", "history"}


def test_register_studied_range_creates_review_items(memory_db, solve_collection, now):
    written = AllocationEngine(memory_db).register_studied_range(
        solve_collection, 2, 4, now=now
    )

    assert written == 3
    items = memory_db.find_items_by_collection("algebra")
    assert [i.ordinal for i in items] == [2, 3, 4]
    for item in items:
        assert item.state == ItemState.Review
        assert item.stability == 1.0
        assert item.difficulty == 5.0
        assert item.repetition_count == 0
        assert item.due == start_of_local_day(now)


def test_register_studied_range_updates_existing_items(memory_db, solve_collection, now):
    memory_db.persist_items(
        [
            new_item("algebra", 1, now),
            Item(
                collection_id="algebra",
                ordinal=2,
                state=ItemState.Relearning,
                stability=6.5,
                difficulty=7.2,
                learning_step=1,
                repetition_count=4,
                lapse_count=1,
                due=now + timedelta(days=9),
                last_reviewed_at=now - timedelta(days=2),
            ),
        ]
    )

    AllocationEngine(memory_db).register_studied_range(
        solve_collection, 1, 2, as_due_today=False, now=now
    )

    first, second = memory_db.find_items_by_collection("algebra")
    assert first.state == ItemState.Review
    assert first.stability == 1.0
    assert first.difficulty == 5.0
    assert second.state == ItemState.Review
    assert second.stability == 6.5
    assert second.difficulty == 7.2
    assert second.learning_step == 0
    assert second.repetition_count == 4
    assert second.lapse_count == 1
    assert first.due == second.due == now


@pytest.mark.parametrize(
    "start, end, expected",
    [
        (2, 10, [2, 3]),
        (0, 1, [1]),
        (5, 9, [3]),
        (3, 1, [3]),
    ],
)
def test_register_studied_range_is_clamped_to_capacity(
    memory_db, read_collection, now, start, end, expected
):
    written = AllocationEngine(memory_db).register_studied_range(
        read_collection, start, end, now=now
    )

    ordinals = [i.ordinal for i in memory_db.find_items_by_collection("history")]
    assert ordinals == expected
    assert written == len(expected)
