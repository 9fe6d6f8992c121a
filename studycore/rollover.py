"""
Daily rollover: once per local calendar day, today's target reward is
charged against the running ledger balance.
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional

from .db.database import StudyDatabase
from .models import RolloverResult, local_day

logger = logging.getLogger(__name__)


def should_perform_rollover(
    last_rollover_date: Optional[date], today: date
) -> bool:
    """True unless the rollover already ran on ``today``."""
    return last_rollover_date is None or last_rollover_date != today


def perform_daily_rollover(
    db: StudyDatabase, today: Optional[date] = None
) -> RolloverResult:
    """
    Sets today's ledger target to ``StudyState.daily_target_reward`` and
    lowers the running balance by it. Repeat calls on the same day, or a
    call that loses a race to another process, change nothing.

    Args:
        db: Database facade holding the ledger and study state.
        today: Local calendar day; defaults to the machine's current day.
    """
    today = today or local_day(datetime.now(timezone.utc))
    state = db.get_study_state()

    if not should_perform_rollover(state.last_rollover_date, today):
        logger.debug(f"Rollover already performed for {today}.")
        return RolloverResult(performed=False, entry_date=today)

    entry = db.apply_rollover(
        today, state.daily_target_reward, state.last_rollover_date
    )
    if entry is None:
        return RolloverResult(performed=False, entry_date=today)

    return RolloverResult(
        performed=True,
        entry_date=today,
        target_reward=entry.target_reward,
        new_balance=entry.balance,
    )
