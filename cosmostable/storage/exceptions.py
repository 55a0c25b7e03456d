"""
Table Storage Exceptions.

Exception hierarchy raised by the table storage client. Error codes follow
the Azure Cosmos DB REST error code names where one applies.

Author: cosmostable Team
Date: 2026-10-19
"""

from typing import List, Sequence, Tuple


class TableStorageError(Exception):
    """Base exception for table storage errors.

    Attributes:
        message: Error message
        error_code: Error code
    """

    def __init__(self, message: str, error_code: str = "InternalServerError"):
        """Initialize table storage error.

        Args:
            message: Error message
            error_code: Error code
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class TableNotFoundError(TableStorageError):
    """Table (container) not found error."""

    def __init__(self, message: str, table_name: str = ""):
        """Initialize table not found error.

        Args:
            message: Error message
            table_name: Table name
        """
        super().__init__(message, "NotFound")
        self.table_name = table_name


class InvalidKeyError(TableStorageError):
    """Entity key does not follow the key convention."""

    def __init__(self, message: str, key: str = ""):
        super().__init__(message, "BadRequest")
        self.key = key


class InvalidQueryError(TableStorageError):
    """Query text or projection cannot be turned into a valid query."""

    def __init__(self, message: str, query: str = ""):
        super().__init__(message, "BadRequest")
        self.query = query


class NoElementError(TableStorageError):
    """Raised when the first element of an empty result set is requested."""

    def __init__(self, message: str = "Sequence contains no elements"):
        super().__init__(message, "InvalidOperation")


class BatchOperationError(TableStorageError):
    """One or more items of a batch mutation did not commit.

    Attributes:
        operation: Batch operation name (upsert, delete)
        failures: (key, exception) pairs for every item that failed
    """

    def __init__(self, operation: str, failures: Sequence[Tuple[str, BaseException]]):
        """Initialize batch operation error.

        Args:
            operation: Batch operation name
            failures: Failed keys paired with their causes
        """
        keys = ", ".join(key for key, _ in failures)
        super().__init__(
            f"Batch {operation} failed for {len(failures)} item(s): {keys}",
            "BatchOperationFailed"
        )
        self.operation = operation
        self.failures = list(failures)

    @property
    def failed_keys(self) -> List[str]:
        """Keys of the items that failed."""
        return [key for key, _ in self.failures]


class StorageConnectionError(TableStorageError):
    """Authentication or connectivity failure reaching the database service."""

    def __init__(self, message: str):
        super().__init__(message, "ServiceUnavailable")


class ConfigurationError(TableStorageError):
    """Client configuration cannot be used to open a database."""

    def __init__(self, message: str):
        super().__init__(message, "BadRequest")
