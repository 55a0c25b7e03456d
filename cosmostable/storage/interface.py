"""
Abstract Table Storage Interface.

Defines the contract every table storage implementation must fulfill and the
capability every storable entity must expose.

Author: cosmostable Team
Date: 2026-10-19
"""

import asyncio
from abc import ABC, abstractmethod
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    Type,
    TypeVar,
    Union,
    runtime_checkable,
)

if TYPE_CHECKING:
    from .query import EntityPager, EntityStream

T = TypeVar("T")

CountCallback = Callable[[int], Union[None, Awaitable[None]]]


@runtime_checkable
class TableItem(Protocol):
    """Capability required of every storable entity.

    ``key`` is unique within a table. ``id`` is derived from it: equal to the
    key, or to the suffix after the partition segment when the key follows the
    ``partitionValue/suffix`` convention.
    """

    key: str

    @property
    def id(self) -> str:
        ...


class TableStorage(ABC):
    """
    Abstract base class for table storage clients.

    Supports:
    - Table lifecycle (create, delete, list)
    - Entity upsert and delete, single and batch
    - Point lookups (exists, get)
    - Lazy and push-based queries with projection and cancellation
    - Counting, total, per partition value, and per query
    """

    @abstractmethod
    async def create_table(self, table_name: str) -> None:
        """
        Ensure a table exists.

        Args:
            table_name: ``table`` or ``table/PartitionField``
        """
        pass

    @abstractmethod
    async def delete_table(self, table_name: str) -> None:
        """
        Delete a table and all its entities. Missing tables are ignored.

        Args:
            table_name: Table name
        """
        pass

    @abstractmethod
    async def list_table_names(self) -> List[str]:
        """Return the names of all provisioned tables."""
        pass

    @abstractmethod
    async def exists(self, table_name: str, key: str) -> bool:
        """Return True if an entity with ``key`` is stored in the table."""
        pass

    @abstractmethod
    async def get_entity(self, table_name: str, key: str, entity_type: Type[T]) -> Optional[T]:
        """
        Fetch a single entity.

        Returns:
            The entity, or None when the key is absent
        """
        pass

    @abstractmethod
    def list_entities(
        self,
        table_name: str,
        entity_type: Type[T],
        query: Optional[str] = None,
        columns: Optional[Sequence[str]] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> "EntityPager[T]":
        """
        Build a lazy, pull-based sequence of entities.

        Args:
            table_name: Table name
            entity_type: Type each document is materialized into
            query: Full SELECT statement, WHERE clause, or bare predicate
            columns: Field names to project; others stay at their defaults
            cancel: Event that stops further page fetches once set

        Returns:
            Async-iterable pager
        """
        pass

    @abstractmethod
    def list_entities_observable(
        self,
        table_name: str,
        entity_type: Type[T],
        query: Optional[str] = None,
        columns: Optional[Sequence[str]] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> "EntityStream[T]":
        """Build a push-based stream with the same inputs as list_entities."""
        pass

    @abstractmethod
    async def upsert_entity(self, table_name: str, entity: TableItem) -> None:
        """Insert or replace an entity by key."""
        pass

    @abstractmethod
    async def upsert_entities(self, table_name: str, entities: Iterable[TableItem]) -> None:
        """
        Insert or replace many entities.

        Raises:
            BatchOperationError: If any entity did not commit
        """
        pass

    @abstractmethod
    async def delete_entity(self, table_name: str, key: str) -> None:
        """Delete an entity by key. Absent keys are ignored."""
        pass

    @abstractmethod
    async def delete_entities(self, table_name: str, keys: Iterable[str]) -> None:
        """
        Delete many entities by key.

        Raises:
            BatchOperationError: If any delete failed
        """
        pass

    @abstractmethod
    async def count_items(
        self,
        table_name: str,
        partition_value: Optional[Any] = None,
        *,
        field: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
        callback: Optional[CountCallback] = None,
    ) -> int:
        """
        Count entities in a table.

        Args:
            table_name: Table name
            partition_value: Restrict the count to entities whose ``field``
                equals this value
            field: Field compared with ``partition_value``; defaults to the
                table's partition key field
            cancel: Event that stops further page fetches once set
            callback: Invoked once with the count after it is computed

        Returns:
            Entity count
        """
        pass

    @abstractmethod
    async def count_items_query(
        self,
        table_name: str,
        query: str,
        cancel: Optional[asyncio.Event] = None,
    ) -> int:
        """Count the entities matching a query."""
        pass
