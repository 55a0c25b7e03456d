"""
Cosmos DB Table Storage.

Table storage client backed by Azure Cosmos DB (SQL API). Tables map to
containers and entities to documents; all data-plane work is delegated to the
``azure-cosmos`` asyncio SDK (or to an in-memory database proxy with the same
surface).

Author: cosmostable Team
Date: 2026-10-19
"""

import asyncio
import logging
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
)

from azure.cosmos import PartitionKey
from azure.cosmos.exceptions import CosmosResourceNotFoundError

from ..core.config_manager import CosmosConfig, StorageBackendType
from ..core.logging_config import log_with_context
from .connection import DatabaseConnection, describe, open_database
from .entities import (
    DEFAULT_PARTITION_PATH,
    from_document,
    parse_table_name,
    partition_field,
    split_key,
    to_document,
    validate_field_name,
)
from .exceptions import BatchOperationError, TableNotFoundError
from .interface import CountCallback, TableItem, TableStorage
from .query import EntityPager, EntityStream, Page, build_query, invoke_callback

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FIND_BY_ID = "SELECT * FROM c WHERE c.id = @id"


class CosmosStorage(TableStorage):
    """Table storage over a Cosmos DB database.

    The database connection is opened lazily on first use and shared by all
    operations; no per-table state is kept, so one instance can serve many
    concurrent callers.

    Example:
        ```python
        config = CosmosConfig(
            instance_name="myaccount",
            tenant_id="...",
            subscription_id="...",
            app_id="...",
            app_secret="...",
        )
        async with CosmosStorage(config) as storage:
            await storage.create_table("people/Name")
            await storage.upsert_entity("people", person)
        ```
    """

    def __init__(self, config: Optional[CosmosConfig] = None, database: Any = None):
        """Initialize the client.

        Args:
            config: Client configuration
            database: Already opened database proxy; skips connection setup

        Raises:
            ValueError: If neither config nor database is given
        """
        if config is None and database is None:
            raise ValueError("Either a configuration or a database proxy is required")

        self._config = config or CosmosConfig(backend=StorageBackendType.MEMORY)
        self._connection: Optional[DatabaseConnection] = (
            DatabaseConnection(database=database) if database is not None else None
        )
        self._connect_lock = asyncio.Lock()
        self.name = describe(config) if database is None else f"cosmos:{getattr(database, 'id', '?')}"

    @property
    def config(self) -> CosmosConfig:
        return self._config

    async def __aenter__(self) -> "CosmosStorage":
        await self._get_database()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the SDK client and any credential opened for it."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    async def _get_database(self) -> Any:
        if self._connection is None:
            async with self._connect_lock:
                if self._connection is None:
                    self._connection = await open_database(self._config)
        return self._connection.database

    async def _container(self, table_name: str) -> Any:
        container_id, _ = parse_table_name(table_name)
        database = await self._get_database()
        return database.get_container_client(container_id)

    async def _partition_path(self, container: Any) -> Optional[str]:
        """Partition key path of a container, or None if it doesn't exist."""
        try:
            properties = await container.read()
        except CosmosResourceNotFoundError:
            return None
        return properties["partitionKey"]["paths"][0]

    async def _read_document(self, container: Any, key: str) -> Optional[Dict[str, Any]]:
        """Fetch the raw document stored under ``key``, or None."""
        path = await self._partition_path(container)
        if path is None:
            return None
        partition_value, document_id = split_key(key)

        if path == DEFAULT_PARTITION_PATH:
            # Documents in an /id container are partitioned by their own id
            partition_value = document_id
        elif partition_value is None:
            items = container.query_items(
                query=_FIND_BY_ID,
                parameters=[{"name": "@id", "value": document_id}],
            )
            async for document in items:
                return document
            return None

        try:
            return await container.read_item(item=document_id, partition_key=partition_value)
        except CosmosResourceNotFoundError:
            return None

    # Table lifecycle

    async def create_table(self, table_name: str) -> None:
        container_id, partition_path = parse_table_name(table_name)
        database = await self._get_database()

        await database.create_container_if_not_exists(
            id=container_id, partition_key=PartitionKey(path=partition_path)
        )
        log_with_context(
            logger, logging.INFO, f"Table '{container_id}' ready",
            table=container_id, partition_key=partition_path
        )

    async def delete_table(self, table_name: str) -> None:
        container_id, _ = parse_table_name(table_name)
        database = await self._get_database()

        try:
            await database.delete_container(container_id)
        except CosmosResourceNotFoundError:
            logger.warning(f"Table '{container_id}' not found, nothing to delete")
            return
        logger.info(f"Table '{container_id}' deleted")

    async def list_table_names(self) -> List[str]:
        database = await self._get_database()
        return [properties["id"] async for properties in database.list_containers()]

    # Point lookups

    async def exists(self, table_name: str, key: str) -> bool:
        container = await self._container(table_name)
        return await self._read_document(container, key) is not None

    async def get_entity(self, table_name: str, key: str, entity_type: Type[T]) -> Optional[T]:
        container = await self._container(table_name)
        document = await self._read_document(container, key)
        if document is None:
            log_with_context(logger, logging.DEBUG, "Entity not found", table=table_name, key=key)
            return None
        return from_document(entity_type, document)

    # Mutations

    async def upsert_entity(self, table_name: str, entity: TableItem) -> None:
        document = to_document(entity)
        container = await self._container(table_name)

        try:
            await container.upsert_item(body=document)
        except CosmosResourceNotFoundError as e:
            raise TableNotFoundError(
                f"Table '{container.id}' not found", table_name=container.id
            ) from e
        log_with_context(logger, logging.DEBUG, "Entity upserted", table=container.id, id=document["id"])

    async def upsert_entities(self, table_name: str, entities: Iterable[TableItem]) -> None:
        actions = [
            (entity.key, lambda entity=entity: self.upsert_entity(table_name, entity))
            for entity in entities
        ]
        await self._run_batch("upsert", actions)

    async def delete_entity(self, table_name: str, key: str) -> None:
        container = await self._container(table_name)
        path = await self._partition_path(container)
        if path is None:
            raise TableNotFoundError(f"Table '{container.id}' not found", table_name=container.id)
        partition_value, document_id = split_key(key)

        if path == DEFAULT_PARTITION_PATH:
            partition_value = document_id
        elif partition_value is None:
            document = await self._read_document(container, key)
            if document is None:
                logger.debug(f"Entity '{key}' not found in '{container.id}', nothing to delete")
                return
            partition_value = document.get(partition_field(path))

        try:
            await container.delete_item(item=document_id, partition_key=partition_value)
        except CosmosResourceNotFoundError:
            logger.debug(f"Entity '{key}' not found in '{container.id}', nothing to delete")
            return
        log_with_context(logger, logging.DEBUG, "Entity deleted", table=container.id, id=document_id)

    async def delete_entities(self, table_name: str, keys: Iterable[str]) -> None:
        actions = [
            (key, lambda key=key: self.delete_entity(table_name, key))
            for key in keys
        ]
        await self._run_batch("delete", actions)

    async def _run_batch(
        self,
        operation: str,
        actions: Sequence[Tuple[str, Callable[[], Awaitable[None]]]],
    ) -> None:
        """Run per-item actions concurrently and report every failure."""
        semaphore = asyncio.Semaphore(self._config.max_concurrency)

        async def run(action: Callable[[], Awaitable[None]]) -> None:
            async with semaphore:
                await action()

        results = await asyncio.gather(
            *(run(action) for _, action in actions), return_exceptions=True
        )
        failures = [
            (key, result)
            for (key, _), result in zip(actions, results)
            if isinstance(result, BaseException)
        ]
        if failures:
            logger.error(f"Batch {operation} failed for {len(failures)} of {len(actions)} item(s)")
            raise BatchOperationError(operation, failures)

        log_with_context(logger, logging.DEBUG, f"Batch {operation} completed", count=len(actions))

    # Queries

    async def _query_pages(
        self,
        table_name: str,
        query: str,
        parameters: Optional[List[Dict[str, Any]]] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[Page]:
        """Yield result pages, requesting the next page only while not cancelled."""
        container = await self._container(table_name)
        log_with_context(logger, logging.DEBUG, "Executing query", table=container.id, query=query)

        pages = container.query_items(
            query=query,
            parameters=parameters,
            max_item_count=self._config.page_size,
        ).by_page()

        try:
            while cancel is None or not cancel.is_set():
                try:
                    page = await pages.__anext__()
                except StopAsyncIteration:
                    return
                yield [item async for item in page]
        except CosmosResourceNotFoundError as e:
            raise TableNotFoundError(
                f"Table '{container.id}' not found", table_name=container.id
            ) from e

        logger.debug(f"Query on '{container.id}' cancelled")

    def list_entities(
        self,
        table_name: str,
        entity_type: Type[T],
        query: Optional[str] = None,
        columns: Optional[Sequence[str]] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> EntityPager[T]:
        sql = build_query(query, columns)
        return EntityPager(lambda: self._query_pages(table_name, sql, cancel=cancel), entity_type)

    def list_entities_observable(
        self,
        table_name: str,
        entity_type: Type[T],
        query: Optional[str] = None,
        columns: Optional[Sequence[str]] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> EntityStream[T]:
        return EntityStream(self.list_entities(table_name, entity_type, query, columns, cancel))

    # Counting

    async def count_items(
        self,
        table_name: str,
        partition_value: Optional[Any] = None,
        *,
        field: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
        callback: Optional[CountCallback] = None,
    ) -> int:
        """Count the entities in a table, optionally those matching a value.

        ``partition_value`` is compared against ``field``, which defaults to
        the table's partition field. On an unpartitioned table that field is
        ``id``, so counting by another property needs ``field=`` as well.
        """
        parameters = None
        if partition_value is None:
            sql = "SELECT VALUE COUNT(1) FROM c"
        else:
            if field is None:
                container = await self._container(table_name)
                path = await self._partition_path(container)
                if path is None:
                    raise TableNotFoundError(
                        f"Table '{container.id}' not found", table_name=container.id
                    )
                field = partition_field(path)
                if path == DEFAULT_PARTITION_PATH:
                    log_with_context(
                        logger, logging.DEBUG, "Counting by id on an unpartitioned table",
                        table=container.id, value=partition_value
                    )
            sql = f"SELECT VALUE COUNT(1) FROM c WHERE c.{validate_field_name(field)} = @value"
            parameters = [{"name": "@value", "value": partition_value}]

        total = 0
        async for page in self._query_pages(table_name, sql, parameters, cancel):
            total += sum(page)

        if callback is not None:
            await invoke_callback(callback, total)
        return total

    async def count_items_query(
        self,
        table_name: str,
        query: str,
        cancel: Optional[asyncio.Event] = None,
    ) -> int:
        total = 0
        async for page in self._query_pages(table_name, build_query(query), cancel=cancel):
            total += len(page)
        return total
