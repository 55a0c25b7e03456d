"""
cosmostable: Table storage over Azure Cosmos DB

Entity CRUD, batch mutation, counting and paged/streamed queries keyed by a
table (container) name and an entity key.
"""

__version__ = "0.1.0"

from .core.config_manager import AuthMode, CosmosConfig, StorageBackendType
from .storage import (
    BatchOperationError,
    CosmosStorage,
    EntityPager,
    EntityStream,
    InMemoryDatabase,
    NoElementError,
    Subscription,
    TableItem,
    TableNotFoundError,
    TableStorage,
    TableStorageError,
)

__all__ = [
    "__version__",
    "AuthMode",
    "CosmosConfig",
    "StorageBackendType",
    "CosmosStorage",
    "TableStorage",
    "TableItem",
    "EntityPager",
    "EntityStream",
    "Subscription",
    "InMemoryDatabase",
    "TableStorageError",
    "TableNotFoundError",
    "NoElementError",
    "BatchOperationError",
]
