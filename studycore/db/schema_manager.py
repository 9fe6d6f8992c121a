import duckdb
import logging
from .connection import StudyConnection
from . import schema
from ..exceptions import DatabaseConnectionError, SchemaInitializationError
from .. import config as studycore_config

logger = logging.getLogger(__name__)


class SchemaManager:
    """Manages the database schema initialization and maintenance."""

    def __init__(self, connection: StudyConnection):
        self._conn = connection

    def initialize_schema(self, force_recreate_tables: bool = False) -> None:
        """
        Initializes the database schema in a transaction. Skips if in
        read-only mode unless it's an in-memory DB. ``force_recreate_tables``
        drops every table first, deleting all data.
        """
        if self._handle_read_only_initialization(force_recreate_tables):
            return

        conn = self._conn.open()
        cursor = conn.cursor()
        try:
            cursor.begin()
            if force_recreate_tables:
                self._recreate_tables(cursor)
            self._create_schema_from_sql(cursor)
            cursor.commit()
            logger.info(f"Database schema at {self._conn.path} initialized successfully (or already exists).")
        except duckdb.Error as e:
            logger.error(f"Error initializing database schema at {self._conn.path}: {e}")
            try:
                cursor.rollback()
                logger.info("Transaction rolled back due to schema initialization error.")
            except duckdb.Error as rb_err:
                logger.error(f"Failed to rollback transaction: {rb_err}")
            raise SchemaInitializationError(f"Failed to initialize schema: {e}", original_exception=e) from e
        finally:
            cursor.close()

    def _handle_read_only_initialization(self, force_recreate_tables: bool) -> bool:
        """Returns True if initialization should be skipped for a read-only connection."""
        if self._conn.read_only:
            if force_recreate_tables:
                raise DatabaseConnectionError("Cannot force_recreate_tables in read-only mode.")
            if not self._conn.is_memory:
                logger.warning("Attempting to initialize schema in read-only mode. Skipping.")
                return True
        return False

    def _perform_safety_check(self, cursor: duckdb.DuckDBPyConnection) -> None:
        """Checks for existing data before allowing table recreation."""
        if self._conn.is_memory or studycore_config.settings.testing_mode:
            return

        try:
            item_result = cursor.execute("SELECT COUNT(*) FROM items").fetchone()
            ledger_result = cursor.execute("SELECT COUNT(*) FROM ledger").fetchone()
        except duckdb.CatalogException:
            # Tables do not exist yet; nothing to lose.
            return
        except duckdb.Error as e:
            error_msg = f"CRITICAL: Cannot verify if tables contain data before dropping. Refusing to proceed to prevent data loss. Error: {e}"
            logger.error(error_msg)
            raise ValueError(error_msg) from e

        item_count = item_result[0] if item_result else 0
        ledger_count = ledger_result[0] if ledger_result else 0
        if item_count > 0 or ledger_count > 0:
            error_msg = f"CRITICAL: Attempted to drop tables with existing data! Items: {item_count}, Ledger entries: {ledger_count}. This would cause permanent data loss."
            logger.error(error_msg)
            raise ValueError(error_msg)

    def _recreate_tables(self, cursor: duckdb.DuckDBPyConnection) -> None:
        """Drops all tables to force recreation."""
        self._perform_safety_check(cursor)

        logger.warning(f"Forcing table recreation for {self._conn.path}. ALL EXISTING DATA WILL BE LOST.")

        cursor.execute("DROP TABLE IF EXISTS items;")
        cursor.execute("DROP TABLE IF EXISTS ledger;")
        cursor.execute("DROP TABLE IF EXISTS study_state;")
        cursor.execute("DROP TABLE IF EXISTS collections;")

    def _create_schema_from_sql(self, cursor: duckdb.DuckDBPyConnection) -> None:
        cursor.execute(schema.DB_SCHEMA_SQL)
