"""
Utility functions for data marshalling between Pydantic models and database formats.
This module helps decouple the core database logic from the specifics of data conversion.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from ..models import (
    Collection,
    Item,
    ItemState,
    LedgerEntry,
    Priority,
    StudyMode,
    StudyState,
)
from ..exceptions import MarshallingError


def to_db_timestamp(ts: Optional[datetime]) -> Optional[datetime]:
    """Converts an aware datetime to the naive UTC value stored in DuckDB."""
    if ts is None:
        return None
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc)
    return ts.replace(tzinfo=None)


def from_db_timestamp(ts: Optional[datetime]) -> Optional[datetime]:
    """Re-attaches UTC to a naive timestamp read back from DuckDB."""
    if ts is None:
        return None
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def item_to_db_params_tuple(item: Item) -> Tuple:
    """
    Serialize an Item for insertion.

    Returns:
        tuple: (collection_id, ordinal, state_name, stability, difficulty,
        elapsed_days, scheduled_days, learning_step, repetition_count,
        lapse_count, due, last_reviewed_at)
    """
    return (
        item.collection_id,
        item.ordinal,
        item.state.name,
        item.stability,
        item.difficulty,
        item.elapsed_days,
        item.scheduled_days,
        item.learning_step,
        item.repetition_count,
        item.lapse_count,
        to_db_timestamp(item.due),
        to_db_timestamp(item.last_reviewed_at),
    )


def items_to_db_params_list(items: Sequence[Item]) -> List[Tuple]:
    return [item_to_db_params_tuple(item) for item in items]


def db_row_to_item(row_dict: Dict[str, Any]) -> Item:
    """
    Create an Item model from a database row dictionary.

    Raises:
        MarshallingError: If the row cannot be validated into an Item.
    """
    data = row_dict.copy()
    try:
        data["state"] = ItemState[data["state"]]
        data["due"] = from_db_timestamp(data.get("due"))
        data["last_reviewed_at"] = from_db_timestamp(data.get("last_reviewed_at"))
        return Item(**data)
    except (KeyError, ValidationError) as e:
        raise MarshallingError(
            f"Failed to parse item from DB row: {row_dict}. Error: {e}",
            original_exception=e,
        ) from e


def collection_to_db_params_tuple(collection: Collection) -> Tuple:
    """
    Serialize a Collection for insertion.

    Returns:
        tuple: (collection_id, title, mode_name, total_units, chunk_size,
        priority_name, previous_collection_id, target_date)
    """
    return (
        collection.collection_id,
        collection.title,
        collection.mode.name,
        collection.total_units,
        collection.chunk_size,
        collection.priority.name,
        collection.previous_collection_id,
        collection.target_date,
    )


def db_row_to_collection(row_dict: Dict[str, Any]) -> Collection:
    data = row_dict.copy()
    try:
        data["mode"] = StudyMode[data["mode"]]
        data["priority"] = Priority[data["priority"]]
        return Collection(**data)
    except (KeyError, ValidationError) as e:
        raise MarshallingError(
            f"Failed to parse collection from DB row: {row_dict}. Error: {e}",
            original_exception=e,
        ) from e


def ledger_entry_to_db_params_tuple(entry: LedgerEntry) -> Tuple:
    return (
        entry.entry_date,
        entry.earned_reward,
        entry.target_reward,
        entry.balance,
    )


def db_row_to_ledger_entry(row_dict: Dict[str, Any]) -> LedgerEntry:
    try:
        return LedgerEntry(**row_dict)
    except ValidationError as e:
        raise MarshallingError(
            f"Data validation failed for ledger entry: {e}", original_exception=e
        ) from e


def db_row_to_study_state(row_dict: Dict[str, Any]) -> StudyState:
    data = row_dict.copy()
    data.pop("state_id", None)
    try:
        return StudyState(**data)
    except ValidationError as e:
        raise MarshallingError(
            f"Data validation failed for study state: {e}", original_exception=e
        ) from e
