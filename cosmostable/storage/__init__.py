"""
Table storage over Azure Cosmos DB.

Author: cosmostable Team
Date: 2026-10-19
"""

from .cosmos import CosmosStorage
from .interface import TableItem, TableStorage
from .memory import InMemoryContainer, InMemoryDatabase
from .query import EntityPager, EntityStream, Subscription, build_query
from .exceptions import (
    TableStorageError,
    TableNotFoundError,
    InvalidKeyError,
    InvalidQueryError,
    NoElementError,
    BatchOperationError,
    StorageConnectionError,
    ConfigurationError,
)

__all__ = [
    # Client
    "CosmosStorage",
    "TableStorage",
    "TableItem",
    # Local backend
    "InMemoryDatabase",
    "InMemoryContainer",
    # Queries
    "EntityPager",
    "EntityStream",
    "Subscription",
    "build_query",
    # Exceptions
    "TableStorageError",
    "TableNotFoundError",
    "InvalidKeyError",
    "InvalidQueryError",
    "NoElementError",
    "BatchOperationError",
    "StorageConnectionError",
    "ConfigurationError",
]
