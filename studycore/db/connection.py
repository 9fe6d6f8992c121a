"""
Opening and closing the study database.

A :class:`StudyConnection` owns at most one DuckDB connection. It is opened
lazily on first use and reopened after :meth:`StudyConnection.close`.
"""

import duckdb
import logging
from pathlib import Path
from typing import Optional, Union

from ..exceptions import DatabaseConnectionError

logger = logging.getLogger(__name__)

MEMORY_PATH = Path(":memory:")


def resolve_db_path(db_path: Union[str, Path]) -> Path:
    """Absolute path of a database file, or ``MEMORY_PATH`` for ":memory:"."""
    if str(db_path).lower() == ":memory:":
        return MEMORY_PATH
    return Path(db_path).expanduser().resolve()


class StudyConnection:
    def __init__(self, db_path: Union[str, Path], read_only: bool = False):
        self.path = resolve_db_path(db_path)
        self.read_only = read_only
        self.created = False
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        if self.is_memory:
            logger.info("Using in-memory DuckDB database.")

    @property
    def is_memory(self) -> bool:
        return self.path == MEMORY_PATH

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    @property
    def needs_schema(self) -> bool:
        """True once a writable connection has created a fresh database."""
        return self.created and not self.read_only

    def open(self) -> duckdb.DuckDBPyConnection:
        """
        Returns the open connection, connecting first if needed.

        A file database is created along with its parent directory, except
        in read-only mode where a missing file is an error.

        Raises:
            DatabaseConnectionError: If the file is missing in read-only mode
                or DuckDB refuses the connection.
        """
        if self._connection is not None:
            return self._connection

        if self.is_memory:
            self.created = True
        else:
            self.created = not self.path.exists()
            if self.created and self.read_only:
                raise DatabaseConnectionError(
                    f"Failed to connect to database: {self.path} does not exist "
                    "and cannot be created read-only."
                )
            self.path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._connection = duckdb.connect(
                database=str(self.path), read_only=self.read_only
            )
        except duckdb.Error as e:
            raise DatabaseConnectionError(
                f"Failed to connect to database: {e}", original_exception=e
            ) from e
        mode = "read-only" if self.read_only else "read-write"
        logger.info(f"Opened {mode} study database at {self.path}.")
        return self._connection

    def close(self) -> None:
        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            connection.close()
        except duckdb.Error as e:
            logger.error(f"Error closing the study database {self.path}: {e}")
        else:
            logger.info(f"Closed study database at {self.path}.")
