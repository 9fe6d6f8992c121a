"""
DuckDB database interactions for studycore.
Implements the StudyDatabase facade over collections, items, the daily
reward ledger and the persisted study state.
"""

import duckdb
import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import (
    Any,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
    cast,
)

from ..exceptions import (
    DatabaseConnectionError,
    ItemOperationError,
    LedgerOperationError,
    MarshallingError,
    ReviewNotRecordedError,
)
from ..constants import DEFAULT_DAILY_TARGET_REWARD
from ..models import Collection, Item, LedgerEntry, StudyState
from . import db_utils
from .connection import StudyConnection
from .schema_manager import SchemaManager

# --- Logging Setup ---
logger = logging.getLogger(__name__)

# --- Helper Functions ---


def _rows_to_dicts(cursor: duckdb.DuckDBPyConnection) -> List[Dict[str, Any]]:
    """Convert cursor results to list of dictionaries using column names."""
    rows = cursor.fetchall()
    if not rows:
        return []
    description = cursor.description
    if description is None:
        return []
    columns = [desc[0] for desc in description]
    return [dict(zip(columns, row, strict=True)) for row in rows]


class StudyDatabase:
    """
    Acts as a Facade for the database subsystem, providing a high-level
    interface for collections, items, the reward ledger and study state.

    Every write goes through a single serialized transaction; the review
    path additionally checks each item's repetition count so that two
    reviews of the same item can never both commit.
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        read_only: bool = False,
        default_daily_target: int = DEFAULT_DAILY_TARGET_REWARD,
    ):
        """
        Args:
            db_path: Path to the database file, or ':memory:'.
            read_only: If True, open the database in read-only mode.
            default_daily_target: Daily target used until a StudyState row
                has been saved.
        """
        self._conn = StudyConnection(db_path, read_only=read_only)
        self._schema_manager = SchemaManager(self._conn)
        self._lock = threading.RLock()
        self.default_daily_target = default_daily_target
        logger.info(
            f"StudyDatabase initialized for DB at: {self._conn.path}"  # noqa: E501
        )

    @property
    def db_path_resolved(self) -> Path:
        return self._conn.path

    @property
    def read_only(self) -> bool:
        return self._conn.read_only

    def get_connection(self) -> duckdb.DuckDBPyConnection:
        return self._conn.open()

    def close_connection(self) -> None:
        self._conn.close()

    def __enter__(self) -> "StudyDatabase":
        """
        Open the connection and initialize the schema if a new writable
        database was created.
        """
        self.get_connection()
        if self._conn.needs_schema:
            self.initialize_schema()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Ensures the connection is closed on exiting the context."""
        self.close_connection()

    def initialize_schema(self, force_recreate_tables: bool = False) -> None:
        self._schema_manager.initialize_schema(
            force_recreate_tables=force_recreate_tables
        )

    # --- Transactions ---

    @contextmanager
    def _transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """
        Yields a cursor inside BEGIN/COMMIT. Any exception rolls the whole
        transaction back and propagates. Transactions are serialized.
        """
        if self.read_only:
            raise DatabaseConnectionError(
                "Cannot write to the database in read-only mode."
            )
        conn = self.get_connection()
        with self._lock:
            cursor = conn.cursor()
            try:
                cursor.begin()
                yield cursor
                cursor.commit()
            except Exception as e:
                logger.error(f"Transaction failed, rolling back: {e}")
                try:
                    cursor.rollback()
                    logger.info("Transaction rolled back.")
                except duckdb.Error as rb_err:
                    logger.error(f"Failed to rollback transaction: {rb_err}")
                raise
            finally:
                cursor.close()

    # --- Collection Operations ---
    # fmt: off
    _UPSERT_COLLECTIONS_SQL = """
        INSERT INTO collections (collection_id, title, mode, total_units, chunk_size,
                                 priority, previous_collection_id, target_date)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        ON CONFLICT (collection_id) DO UPDATE SET
            title = EXCLUDED.title,
            mode = EXCLUDED.mode,
            total_units = EXCLUDED.total_units,
            chunk_size = EXCLUDED.chunk_size,
            priority = EXCLUDED.priority,
            previous_collection_id = EXCLUDED.previous_collection_id,
            target_date = EXCLUDED.target_date;
        """
    # fmt: on

    def upsert_collections(self, collections: Sequence[Collection]) -> int:
        """
        Inserts or updates collections in a single transaction.

        Returns:
            int: Number of collections processed.

        Raises:
            ItemOperationError: If the database operation fails.
        """
        if not collections:
            return 0
        params = [db_utils.collection_to_db_params_tuple(c) for c in collections]
        try:
            with self._transaction() as cursor:
                cursor.executemany(self._UPSERT_COLLECTIONS_SQL, params)
        except duckdb.Error as e:
            raise ItemOperationError(
                f"Collection upsert failed: {e}", original_exception=e
            ) from e
        logger.info(f"Successfully upserted {len(params)} collections.")
        return len(params)

    def get_collection(self, collection_id: str) -> Optional[Collection]:
        conn = self.get_connection()
        sql = "SELECT * FROM collections WHERE collection_id = $1;"
        try:
            cursor = conn.execute(sql, (collection_id,))
            rows = _rows_to_dicts(cursor)
        except duckdb.Error as e:
            logger.error(f"Error fetching collection {collection_id}: {e}")
            raise ItemOperationError(
                f"Failed to fetch collection: {e}", original_exception=e
            ) from e
        if not rows:
            return None
        try:
            return db_utils.db_row_to_collection(rows[0])
        except MarshallingError as e:
            raise ItemOperationError(
                f"Failed to parse collection {collection_id} from database.",
                original_exception=e,
            ) from e

    def list_collections(self) -> List[Collection]:
        """All collections ordered by id."""
        conn = self.get_connection()
        sql = "SELECT * FROM collections ORDER BY collection_id;"
        try:
            cursor = conn.execute(sql)
            rows = _rows_to_dicts(cursor)
            return [db_utils.db_row_to_collection(row) for row in rows]
        except MarshallingError as e:
            raise ItemOperationError(
                "Failed to parse collections from database.",
                original_exception=e,
            ) from e
        except duckdb.Error as e:
            logger.error(f"Error listing collections: {e}")
            raise ItemOperationError(
                f"Failed to list collections: {e}", original_exception=e
            ) from e

    def save_chain_deadlines(self, deadlines: Dict[str, date]) -> int:
        """Stores planned deadlines on their collections in one transaction."""
        if not deadlines:
            return 0
        sql = "UPDATE collections SET target_date = $1 WHERE collection_id = $2;"
        try:
            with self._transaction() as cursor:
                cursor.executemany(
                    sql, [(d, cid) for cid, d in deadlines.items()]
                )
        except duckdb.Error as e:
            raise ItemOperationError(
                f"Failed to save chain deadlines: {e}", original_exception=e
            ) from e
        logger.info(f"Saved deadlines for {len(deadlines)} collections.")
        return len(deadlines)

    def delete_collection(self, collection_id: str) -> int:
        """
        Deletes a collection and all of its items.

        Returns:
            int: Number of items deleted.
        """
        try:
            with self._transaction() as cursor:
                result = cursor.execute(
                    "SELECT COUNT(*) FROM items WHERE collection_id = $1;",
                    (collection_id,),
                ).fetchone()
                item_count = result[0] if result else 0
                cursor.execute(
                    "DELETE FROM items WHERE collection_id = $1;",
                    (collection_id,),
                )
                cursor.execute(
                    "DELETE FROM collections WHERE collection_id = $1;",
                    (collection_id,),
                )
        except duckdb.Error as e:
            raise ItemOperationError(
                f"Failed to delete collection {collection_id}: {e}",
                original_exception=e,
            ) from e
        logger.info(
            f"Deleted collection {collection_id} and {item_count} items."
        )
        return item_count

    # --- Item Operations ---
    # fmt: off
    _UPSERT_ITEMS_SQL = """
        INSERT INTO items (collection_id, ordinal, state, stability, difficulty,
                           elapsed_days, scheduled_days, learning_step,
                           repetition_count, lapse_count, due, last_reviewed_at)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
        ON CONFLICT (collection_id, ordinal) DO UPDATE SET
            state = EXCLUDED.state,
            stability = EXCLUDED.stability,
            difficulty = EXCLUDED.difficulty,
            elapsed_days = EXCLUDED.elapsed_days,
            scheduled_days = EXCLUDED.scheduled_days,
            learning_step = EXCLUDED.learning_step,
            repetition_count = EXCLUDED.repetition_count,
            lapse_count = EXCLUDED.lapse_count,
            due = EXCLUDED.due,
            last_reviewed_at = EXCLUDED.last_reviewed_at;
        """

    _UPDATE_REVIEWED_ITEM_SQL = """
        UPDATE items
        SET state = $3, stability = $4, difficulty = $5, elapsed_days = $6,
            scheduled_days = $7, learning_step = $8, repetition_count = $9,
            lapse_count = $10, due = $11, last_reviewed_at = $12
        WHERE collection_id = $1 AND ordinal = $2;
        """
    # fmt: on

    def persist_items(self, items: Sequence[Item]) -> int:
        """
        Upserts items in a single transactional batch.

        Returns:
            int: Number of items processed.

        Raises:
            ItemOperationError: If the database operation fails.
        """
        if not items:
            return 0
        params = db_utils.items_to_db_params_list(items)
        try:
            with self._transaction() as cursor:
                cursor.executemany(self._UPSERT_ITEMS_SQL, params)
        except duckdb.Error as e:
            raise ItemOperationError(
                f"Batch item upsert failed: {e}", original_exception=e
            ) from e
        logger.info(f"Successfully upserted {len(params)} items.")
        return len(params)

    def persist_item(self, item: Item) -> Item:
        self.persist_items([item])
        return item

    def _fetch_items(self, sql: str, params: Sequence[Any]) -> List[Item]:
        conn = self.get_connection()
        try:
            cursor = conn.execute(sql, params)
            rows = _rows_to_dicts(cursor)
        except duckdb.Error as e:
            logger.error(f"Error fetching items: {e}")
            raise ItemOperationError(
                f"Failed to fetch items: {e}", original_exception=e
            ) from e
        try:
            return [
                db_utils.db_row_to_item(cast(Dict[str, Any], row))
                for row in rows
            ]
        except MarshallingError as e:
            raise ItemOperationError(
                "Failed to parse items from database.", original_exception=e
            ) from e

    def get_item(self, collection_id: str, ordinal: int) -> Optional[Item]:
        items = self._fetch_items(
            "SELECT * FROM items WHERE collection_id = $1 AND ordinal = $2;",
            (collection_id, ordinal),
        )
        return items[0] if items else None

    def find_items_by_collection(self, collection_id: str) -> List[Item]:
        """All items of a collection ordered by ordinal."""
        return self._fetch_items(
            "SELECT * FROM items WHERE collection_id = $1 ORDER BY ordinal;",
            (collection_id,),
        )

    def find_due_items(
        self, collection_ids: Sequence[str], now: datetime
    ) -> List[Item]:
        """
        Items already studied at least once (not New) whose due timestamp
        is at or before ``now``, most overdue first.
        """
        if not collection_ids:
            return []
        sql = """
        SELECT * FROM items
        WHERE collection_id IN (SELECT * FROM UNNEST($1))
          AND state != 'New'
          AND due <= $2
        ORDER BY due, collection_id, ordinal;
        """
        return self._fetch_items(
            sql, (list(collection_ids), db_utils.to_db_timestamp(now))
        )

    def find_new_items(self, collection_ids: Sequence[str]) -> List[Item]:
        """Items created but never reviewed, in creation order."""
        if not collection_ids:
            return []
        sql = """
        SELECT * FROM items
        WHERE collection_id IN (SELECT * FROM UNNEST($1))
          AND state = 'New'
        ORDER BY due, collection_id, ordinal;
        """
        return self._fetch_items(sql, (list(collection_ids),))

    # --- Review Operations ---

    def _update_reviewed_item(
        self, cursor, previous: Item, updated: Item
    ) -> None:
        """
        Writes ``updated`` only if the stored item still carries the
        repetition count of ``previous``.
        """
        row = cursor.execute(
            "SELECT repetition_count FROM items WHERE collection_id = $1 AND ordinal = $2;",  # noqa: E501
            (previous.collection_id, previous.ordinal),
        ).fetchone()
        if row is None:
            raise ReviewNotRecordedError(
                f"Item {previous.item_id} does not exist in the database."
            )
        if row[0] != previous.repetition_count:
            raise ReviewNotRecordedError(
                f"Item {previous.item_id} was modified concurrently "
                f"(expected {previous.repetition_count} repetitions, found {row[0]})."  # noqa: E501
            )
        cursor.execute(
            self._UPDATE_REVIEWED_ITEM_SQL,
            db_utils.item_to_db_params_tuple(updated),
        )

    def _credit_ledger(
        self, cursor, on_date: date, reward: int
    ) -> LedgerEntry:
        """
        Adds ``reward`` to the ledger entry of ``on_date``, creating the
        entry (with the previous balance carried forward) if absent.
        """
        row = cursor.execute(
            "SELECT earned_reward, target_reward, balance FROM ledger WHERE entry_date = $1;",  # noqa: E501
            (on_date,),
        ).fetchone()
        if row is not None:
            earned, target, balance = row
            cursor.execute(
                "UPDATE ledger SET earned_reward = $1, balance = $2 WHERE entry_date = $3;",  # noqa: E501
                (earned + reward, balance + reward, on_date),
            )
            return LedgerEntry(
                entry_date=on_date,
                earned_reward=earned + reward,
                target_reward=target,
                balance=balance + reward,
            )

        previous_balance = self._previous_balance(cursor, on_date)
        target = self._read_study_state(cursor).daily_target_reward
        entry = LedgerEntry(
            entry_date=on_date,
            earned_reward=reward,
            target_reward=target,
            balance=previous_balance + reward,
        )
        cursor.execute(
            "INSERT INTO ledger (entry_date, earned_reward, target_reward, balance) VALUES ($1, $2, $3, $4);",  # noqa: E501
            db_utils.ledger_entry_to_db_params_tuple(entry),
        )
        return entry

    def record_reviews(
        self,
        reviews: Sequence[Tuple[Item, Item]],
        reward: int,
        on_date: date,
    ) -> Optional[LedgerEntry]:
        """
        Atomically stores reviewed items and credits ``reward`` to the
        ledger entry of ``on_date``.

        Args:
            reviews: (item before review, item after review) pairs.
            reward: Total reward to credit; 0 skips the ledger.
            on_date: Local calendar day the credit belongs to.

        Returns:
            The credited LedgerEntry, or None if nothing was credited.

        Raises:
            ReviewNotRecordedError: If any step fails. Nothing is committed.
        """
        try:
            with self._transaction() as cursor:
                for previous, updated in reviews:
                    self._update_reviewed_item(cursor, previous, updated)
                entry = None
                if reward > 0:
                    entry = self._credit_ledger(cursor, on_date, reward)
        except ReviewNotRecordedError:
            raise
        except Exception as e:
            raise ReviewNotRecordedError(
                f"Review not recorded: {e}", original_exception=e
            ) from e

        logger.info(
            f"Recorded {len(reviews)} reviews, credited {reward} reward for {on_date}."  # noqa: E501
        )
        return entry

    # --- Ledger Operations ---

    def _previous_balance(self, cursor, before: date) -> int:
        row = cursor.execute(
            "SELECT balance FROM ledger WHERE entry_date < $1 ORDER BY entry_date DESC LIMIT 1;",  # noqa: E501
            (before,),
        ).fetchone()
        return row[0] if row else 0

    def _fetch_ledger_entries(
        self, sql: str, params: Sequence[Any]
    ) -> List[LedgerEntry]:
        conn = self.get_connection()
        try:
            cursor = conn.execute(sql, params)
            rows = _rows_to_dicts(cursor)
            return [db_utils.db_row_to_ledger_entry(row) for row in rows]
        except (duckdb.Error, MarshallingError) as e:
            logger.error(f"Error reading ledger: {e}")
            raise LedgerOperationError(
                f"Failed to read ledger: {e}", original_exception=e
            ) from e

    def get_ledger_entry(self, on_date: date) -> Optional[LedgerEntry]:
        entries = self._fetch_ledger_entries(
            "SELECT * FROM ledger WHERE entry_date = $1;", (on_date,)
        )
        return entries[0] if entries else None

    def get_latest_ledger_entry(
        self, before: Optional[date] = None
    ) -> Optional[LedgerEntry]:
        """Most recent entry, optionally strictly before ``before``."""
        if before is None:
            entries = self._fetch_ledger_entries(
                "SELECT * FROM ledger ORDER BY entry_date DESC LIMIT 1;", ()
            )
        else:
            entries = self._fetch_ledger_entries(
                "SELECT * FROM ledger WHERE entry_date < $1 ORDER BY entry_date DESC LIMIT 1;",  # noqa: E501
                (before,),
            )
        return entries[0] if entries else None

    def get_recent_ledger_entries(self, limit: int = 7) -> List[LedgerEntry]:
        return self._fetch_ledger_entries(
            "SELECT * FROM ledger ORDER BY entry_date DESC LIMIT $1;", (limit,)
        )

    def get_active_days(self) -> List[date]:
        """Ledger dates with a positive earned reward, oldest first."""
        conn = self.get_connection()
        sql = "SELECT entry_date FROM ledger WHERE earned_reward > 0 ORDER BY entry_date;"  # noqa: E501
        try:
            return [row[0] for row in conn.execute(sql).fetchall()]
        except duckdb.Error as e:
            logger.error(f"Error reading active days: {e}")
            raise LedgerOperationError(
                f"Failed to read ledger: {e}", original_exception=e
            ) from e

    def upsert_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        """Writes a whole ledger entry, keyed by its date."""
        sql = """
        INSERT INTO ledger (entry_date, earned_reward, target_reward, balance)
        VALUES ($1, $2, $3, $4)
        ON CONFLICT (entry_date) DO UPDATE SET
            earned_reward = EXCLUDED.earned_reward,
            target_reward = EXCLUDED.target_reward,
            balance = EXCLUDED.balance;
        """
        try:
            with self._transaction() as cursor:
                cursor.execute(
                    sql, db_utils.ledger_entry_to_db_params_tuple(entry)
                )
        except duckdb.Error as e:
            raise LedgerOperationError(
                f"Failed to upsert ledger entry for {entry.entry_date}: {e}",
                original_exception=e,
            ) from e
        return entry

    # --- Study State / Rollover ---

    def _read_study_state(self, cursor) -> StudyState:
        cursor.execute(
            "SELECT * FROM study_state WHERE state_id = 1;"
        )
        rows = _rows_to_dicts(cursor)
        if not rows:
            return StudyState(daily_target_reward=self.default_daily_target)
        return db_utils.db_row_to_study_state(rows[0])

    def _write_study_state(self, cursor, state: StudyState) -> None:
        cursor.execute(
            """
            INSERT INTO study_state (state_id, last_rollover_date, daily_target_reward)
            VALUES (1, $1, $2)
            ON CONFLICT (state_id) DO UPDATE SET
                last_rollover_date = EXCLUDED.last_rollover_date,
                daily_target_reward = EXCLUDED.daily_target_reward;
            """,
            (state.last_rollover_date, state.daily_target_reward),
        )

    def get_study_state(self) -> StudyState:
        conn = self.get_connection()
        try:
            return self._read_study_state(conn)
        except (duckdb.Error, MarshallingError) as e:
            raise LedgerOperationError(
                f"Failed to read study state: {e}", original_exception=e
            ) from e

    def save_study_state(self, state: StudyState) -> StudyState:
        try:
            with self._transaction() as cursor:
                self._write_study_state(cursor, state)
        except duckdb.Error as e:
            raise LedgerOperationError(
                f"Failed to save study state: {e}", original_exception=e
            ) from e
        return state

    def apply_rollover(
        self,
        today: date,
        target_reward: int,
        expected_last_rollover: Optional[date],
    ) -> Optional[LedgerEntry]:
        """
        Sets today's target and charges it against the running balance,
        then marks ``today`` as rolled over, all in one transaction.

        The write only happens if the stored last-rollover date still equals
        ``expected_last_rollover``; otherwise another caller already rolled
        the day over and None is returned.
        """
        try:
            with self._transaction() as cursor:
                state = self._read_study_state(cursor)
                if state.last_rollover_date != expected_last_rollover:
                    logger.info(
                        f"Rollover for {today} skipped; state changed to {state.last_rollover_date}."  # noqa: E501
                    )
                    return None

                row = cursor.execute(
                    "SELECT earned_reward, balance FROM ledger WHERE entry_date = $1;",  # noqa: E501
                    (today,),
                ).fetchone()
                if row is not None:
                    earned, balance = row
                    new_balance = balance - target_reward
                    cursor.execute(
                        "UPDATE ledger SET target_reward = $1, balance = $2 WHERE entry_date = $3;",  # noqa: E501
                        (target_reward, new_balance, today),
                    )
                else:
                    earned = 0
                    new_balance = (
                        self._previous_balance(cursor, today) - target_reward
                    )
                    cursor.execute(
                        "INSERT INTO ledger (entry_date, earned_reward, target_reward, balance) VALUES ($1, 0, $2, $3);",  # noqa: E501
                        (today, target_reward, new_balance),
                    )

                self._write_study_state(
                    cursor,
                    StudyState(
                        last_rollover_date=today,
                        daily_target_reward=state.daily_target_reward,
                    ),
                )
        except (duckdb.Error, MarshallingError) as e:
            raise LedgerOperationError(
                f"Daily rollover failed: {e}", original_exception=e
            ) from e

        logger.info(
            f"Daily rollover for {today}: target {target_reward}, balance {new_balance}."  # noqa: E501
        )
        return LedgerEntry(
            entry_date=today,
            earned_reward=earned,
            target_reward=target_reward,
            balance=new_balance,
        )
