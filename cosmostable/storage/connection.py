"""
Cosmos DB Connection Factory.

Opens a database proxy according to the configured backend and auth mode.

Service principal and managed identity modes look the account up through the
management plane (the account name is unique, but its resource group is not
part of the configuration), fetch its primary key, and connect the data-plane
client with it. Connection string mode connects directly.

Author: cosmostable Team
Date: 2026-10-19
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from azure.core.exceptions import ClientAuthenticationError, ServiceRequestError
from azure.cosmos.exceptions import CosmosResourceNotFoundError
from azure.cosmos.aio import CosmosClient
from azure.identity.aio import ClientSecretCredential, ManagedIdentityCredential
from azure.mgmt.cosmosdb.aio import CosmosDBManagementClient

from ..core.config_manager import AuthMode, CosmosConfig, StorageBackendType
from .exceptions import ConfigurationError, StorageConnectionError
from .memory import InMemoryDatabase

logger = logging.getLogger(__name__)


@dataclass
class DatabaseConnection:
    """An open database proxy and the resources that must be closed with it."""

    database: Any
    closeables: List[Any] = field(default_factory=list)

    async def close(self) -> None:
        for resource in reversed(self.closeables):
            await resource.close()
        self.closeables.clear()


def _resource_group(account_id: str) -> str:
    """Extract the resource group from an ARM resource id.

    >>> _resource_group("/subscriptions/s/resourceGroups/rg1/providers/Microsoft.DocumentDB/databaseAccounts/a")
    'rg1'
    """
    parts = account_id.strip("/").split("/")
    for i, part in enumerate(parts[:-1]):
        if part.lower() == "resourcegroups":
            return parts[i + 1]
    raise ConfigurationError(f"Cannot determine resource group from '{account_id}'")


async def _account_key_client(config: CosmosConfig, credential: Any) -> CosmosClient:
    """Resolve the account endpoint and primary key, then build a data client."""
    async with CosmosDBManagementClient(credential, config.subscription_id) as management:
        account = None
        async for candidate in management.database_accounts.list():
            if candidate.name.lower() == config.instance_name.lower():
                account = candidate
                break

        if account is None:
            raise ConfigurationError(
                f"Cosmos DB account '{config.instance_name}' not found in subscription "
                f"'{config.subscription_id}'"
            )

        keys = await management.database_accounts.list_keys(
            _resource_group(account.id), account.name
        )

    logger.info(f"Resolved Cosmos DB account '{account.name}' at {account.document_endpoint}")
    return CosmosClient(account.document_endpoint, credential=keys.primary_master_key)


async def _open_client(config: CosmosConfig, connection: DatabaseConnection) -> CosmosClient:
    if config.auth_mode == AuthMode.CONNECTION_STRING:
        return CosmosClient.from_connection_string(config.connection_string)

    if config.auth_mode == AuthMode.MANAGED_IDENTITY:
        credential = ManagedIdentityCredential(client_id=config.app_id) if config.app_id \
            else ManagedIdentityCredential()
    else:
        credential = ClientSecretCredential(
            tenant_id=config.tenant_id,
            client_id=config.app_id,
            client_secret=config.app_secret,
        )
    connection.closeables.append(credential)
    return await _account_key_client(config, credential)


async def open_database(config: CosmosConfig) -> DatabaseConnection:
    """
    Open the configured database.

    Args:
        config: Client configuration

    Returns:
        Open connection holding a database proxy

    Raises:
        StorageConnectionError: If authentication fails or the service is unreachable
        ConfigurationError: If the account cannot be found or the backend is unknown
    """
    if config.backend == StorageBackendType.MEMORY:
        logger.info(f"Using in-memory database '{config.database_name}'")
        return DatabaseConnection(database=InMemoryDatabase(config.database_name))

    if config.backend != StorageBackendType.COSMOS:
        raise ConfigurationError(
            f"Unknown storage backend: {config.backend}. "
            f"Supported backends: {[t.value for t in StorageBackendType]}"
        )

    connection = DatabaseConnection(database=None)
    try:
        client = await _open_client(config, connection)
        connection.closeables.append(client)

        if config.create_database_if_not_exists:
            connection.database = await client.create_database_if_not_exists(id=config.database_name)
        else:
            connection.database = client.get_database_client(config.database_name)
            await connection.database.read()
    except ClientAuthenticationError as e:
        await connection.close()
        raise StorageConnectionError(f"Authentication against Cosmos DB failed: {e}") from e
    except ServiceRequestError as e:
        await connection.close()
        raise StorageConnectionError(f"Cosmos DB service unreachable: {e}") from e
    except CosmosResourceNotFoundError as e:
        await connection.close()
        raise ConfigurationError(f"Database '{config.database_name}' does not exist") from e
    except Exception:
        await connection.close()
        raise

    logger.info(f"Connected to Cosmos DB database '{config.database_name}' ({config.auth_mode})")
    return connection


def describe(config: Optional[CosmosConfig]) -> str:
    """Short human readable name of the target, without secrets."""
    if config is None:
        return "cosmos:<injected>"
    if config.backend == StorageBackendType.MEMORY:
        return f"memory:{config.database_name}"
    return f"cosmos:{config.instance_name or 'connection-string'}/{config.database_name}"
