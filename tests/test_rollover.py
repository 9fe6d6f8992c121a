from datetime import date, timedelta
from unittest.mock import patch

import pytest

from studycore.db import StudyDatabase
from studycore.exceptions import LedgerOperationError
from studycore.models import LedgerEntry, StudyState
from studycore.rollover import perform_daily_rollover, should_perform_rollover

TODAY = date(2024, 3, 10)


@pytest.mark.parametrize(
    "last, expected",
    [(None, True), (TODAY - timedelta(days=1), True), (TODAY, False)],
)
def test_should_perform_rollover(last, expected):
    assert should_perform_rollover(last, TODAY) is expected


def test_first_rollover_charges_default_target(memory_db):
    result = perform_daily_rollover(memory_db, TODAY)

    assert result.performed
    assert result.target_reward == 600
    assert result.new_balance == -600
    assert memory_db.get_ledger_entry(TODAY) == LedgerEntry(
        entry_date=TODAY, earned_reward=0, target_reward=600, balance=-600
    )
    assert memory_db.get_study_state().last_rollover_date == TODAY


def test_rollover_is_idempotent_within_a_day(memory_db):
    perform_daily_rollover(memory_db, TODAY)
    second = perform_daily_rollover(memory_db, TODAY)

    assert not second.performed
    assert memory_db.get_ledger_entry(TODAY).balance == -600


def test_rollover_carries_previous_balance(memory_db):
    memory_db.upsert_ledger_entry(
        LedgerEntry(
            entry_date=TODAY - timedelta(days=2),
            earned_reward=700,
            target_reward=600,
            balance=250,
        )
    )
    memory_db.save_study_state(
        StudyState(last_rollover_date=TODAY - timedelta(days=2), daily_target_reward=400)
    )

    result = perform_daily_rollover(memory_db, TODAY)

    assert result.target_reward == 400
    assert result.new_balance == -150


def test_rollover_after_reviews_keeps_earned_reward(memory_db):
    memory_db.upsert_ledger_entry(
        LedgerEntry(entry_date=TODAY, earned_reward=120, target_reward=600, balance=120)
    )
    perform_daily_rollover(memory_db, TODAY)

    entry = memory_db.get_ledger_entry(TODAY)
    assert entry.earned_reward == 120
    assert entry.balance == -480


def test_consecutive_days(memory_db):
    perform_daily_rollover(memory_db, TODAY)
    result = perform_daily_rollover(memory_db, TODAY + timedelta(days=1))

    assert result.performed
    assert result.new_balance == -1200


def test_lost_race_changes_nothing(memory_db):
    # Another process rolled the day over between our read and our write.
    stale_state = StudyState(daily_target_reward=600)
    perform_daily_rollover(memory_db, TODAY)

    with patch.object(StudyDatabase, "get_study_state", return_value=stale_state):
        result = perform_daily_rollover(memory_db, TODAY)

    assert not result.performed
    assert memory_db.get_ledger_entry(TODAY).balance == -600


def test_rollover_failure_is_rolled_back(memory_db):
    with patch.object(
        StudyDatabase, "_write_study_state", side_effect=LedgerOperationError("locked")
    ):
        with pytest.raises(LedgerOperationError):
            perform_daily_rollover(memory_db, TODAY)

    assert memory_db.get_ledger_entry(TODAY) is None
    assert memory_db.get_study_state().last_rollover_date is None
