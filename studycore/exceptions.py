from typing import Optional


class DatabaseError(Exception):
    """Base exception for database-related errors."""

    def __init__(
        self, message: str, original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.original_exception = original_exception


class DatabaseConnectionError(DatabaseError):
    """Raised for errors connecting to the database."""

    pass


class SchemaInitializationError(DatabaseError):
    """Raised for errors during schema setup."""

    pass


class ItemOperationError(DatabaseError):
    """Raised for errors during item or collection operations (CRUD)."""

    pass


class ReviewOperationError(DatabaseError):
    """Indicates an error during a review-related database operation."""

    pass


class ReviewNotRecordedError(ReviewOperationError):
    """A review transaction was rolled back; neither the item update nor
    the ledger credit was committed."""

    pass


class LedgerOperationError(DatabaseError):
    """Indicates an error reading or writing the daily reward ledger."""

    pass


class MarshallingError(DatabaseError):
    """Indicates an error during data conversion between application models
    and DB format."""

    pass


class CollectionNotFoundError(DatabaseError):
    """Raised when a specified collection is not found."""

    pass
