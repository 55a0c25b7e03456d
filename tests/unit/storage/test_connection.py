"""
Unit tests for opening Cosmos DB connections.

The Azure SDK clients are replaced with mocks; no network access is needed.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from azure.core.exceptions import ClientAuthenticationError, ServiceRequestError
from azure.cosmos.exceptions import CosmosResourceNotFoundError

from cosmostable.core.config_manager import CosmosConfig
from cosmostable.storage import (
    ConfigurationError,
    CosmosStorage,
    InMemoryDatabase,
    StorageConnectionError,
)
from cosmostable.storage.connection import (
    DatabaseConnection,
    _resource_group,
    describe,
    open_database,
)

ACCOUNT_ID = (
    "/subscriptions/sub/resourceGroups/rg1/providers/"
    "Microsoft.DocumentDB/databaseAccounts/myaccount"
)
ENDPOINT = "https://myaccount.documents.azure.com:443/"
CONNECTION_STRING = f"AccountEndpoint={ENDPOINT};AccountKey=abc==;"


def service_principal_config(**kwargs):
    return CosmosConfig(
        instance_name="MyAccount",
        tenant_id="tenant",
        subscription_id="sub",
        app_id="app",
        app_secret="secret",
        **kwargs
    )


async def async_iter(items):
    for item in items:
        yield item


@pytest.fixture
def database():
    database = MagicMock()
    database.id = "Test"
    database.read = AsyncMock(return_value={"id": "Test"})
    return database


@pytest.fixture
def cosmos_client(database):
    """Patch the data-plane client class."""
    client = MagicMock()
    client.create_database_if_not_exists = AsyncMock(return_value=database)
    client.get_database_client = MagicMock(return_value=database)
    client.close = AsyncMock()

    with patch("cosmostable.storage.connection.CosmosClient") as client_class:
        client_class.return_value = client
        client_class.from_connection_string.return_value = client
        yield client_class, client


@pytest.fixture
def management():
    """Patch the management client listing one account."""
    account = SimpleNamespace(name="myaccount", id=ACCOUNT_ID, document_endpoint=ENDPOINT)
    client = MagicMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    client.database_accounts.list = MagicMock(side_effect=lambda: async_iter([account]))
    client.database_accounts.list_keys = AsyncMock(
        return_value=SimpleNamespace(primary_master_key="primary==")
    )

    with patch("cosmostable.storage.connection.CosmosDBManagementClient", return_value=client) as cls:
        yield cls, client


@pytest.fixture
def secret_credential():
    credential = MagicMock()
    credential.close = AsyncMock()
    with patch("cosmostable.storage.connection.ClientSecretCredential", return_value=credential) as cls:
        yield cls, credential


class TestOpenDatabase:
    """Test suite for open_database."""

    @pytest.mark.asyncio
    async def test_memory_backend(self):
        """Test the memory backend needs no Azure clients."""
        connection = await open_database(CosmosConfig(backend="memory", database_name="Local"))

        assert isinstance(connection.database, InMemoryDatabase)
        assert connection.database.id == "Local"
        assert connection.closeables == []

    @pytest.mark.asyncio
    async def test_connection_string(self, cosmos_client, database):
        """Test connection string mode connects directly."""
        client_class, client = cosmos_client
        config = CosmosConfig(auth_mode="connection_string", connection_string=CONNECTION_STRING)

        connection = await open_database(config)

        client_class.from_connection_string.assert_called_once_with(CONNECTION_STRING)
        client.create_database_if_not_exists.assert_awaited_once_with(id="Test")
        assert connection.database is database

        await connection.close()
        client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_service_principal(self, cosmos_client, management, secret_credential):
        """Test service principal mode resolves the account key."""
        client_class, client = cosmos_client
        management_class, management_client = management
        credential_class, credential = secret_credential

        connection = await open_database(service_principal_config())

        credential_class.assert_called_once_with(
            tenant_id="tenant", client_id="app", client_secret="secret"
        )
        management_class.assert_called_once_with(credential, "sub")
        management_client.database_accounts.list_keys.assert_awaited_once_with("rg1", "myaccount")
        client_class.assert_called_once_with(ENDPOINT, credential="primary==")

        await connection.close()
        client.close.assert_awaited_once()
        credential.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_managed_identity(self, cosmos_client, management):
        """Test managed identity mode uses the user-assigned client id."""
        credential = MagicMock()
        credential.close = AsyncMock()
        config = CosmosConfig(
            auth_mode="managed_identity", instance_name="myaccount", subscription_id="sub",
            app_id="identity-client"
        )

        with patch(
            "cosmostable.storage.connection.ManagedIdentityCredential", return_value=credential
        ) as credential_class:
            connection = await open_database(config)

        credential_class.assert_called_once_with(client_id="identity-client")
        assert connection.closeables[0] is credential

    @pytest.mark.asyncio
    async def test_account_not_found(self, cosmos_client, management, secret_credential):
        """Test an unknown account name closes the credential."""
        _, credential = secret_credential
        _, management_client = management
        management_client.database_accounts.list = MagicMock(side_effect=lambda: async_iter([]))

        with pytest.raises(ConfigurationError) as exc_info:
            await open_database(service_principal_config())

        assert "MyAccount" in str(exc_info.value)
        credential.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_existing_database_required(self, cosmos_client, database):
        """Test a missing database is reported when creation is disabled."""
        _, client = cosmos_client
        database.read.side_effect = CosmosResourceNotFoundError(status_code=404, message="gone")
        config = CosmosConfig(
            auth_mode="connection_string", connection_string=CONNECTION_STRING,
            create_database_if_not_exists=False
        )

        with pytest.raises(ConfigurationError) as exc_info:
            await open_database(config)

        assert "does not exist" in str(exc_info.value)
        client.create_database_if_not_exists.assert_not_called()
        client.close.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        ClientAuthenticationError("invalid client secret"),
        ServiceRequestError("connection refused"),
    ])
    async def test_connection_failures(self, cosmos_client, error):
        """Test auth and network failures become StorageConnectionError."""
        _, client = cosmos_client
        client.create_database_if_not_exists.side_effect = error
        config = CosmosConfig(auth_mode="connection_string", connection_string=CONNECTION_STRING)

        with pytest.raises(StorageConnectionError) as exc_info:
            await open_database(config)

        assert exc_info.value.error_code == "ServiceUnavailable"
        client.close.assert_awaited_once()


class TestHelpers:
    """Test suite for connection helpers."""

    def test_resource_group(self):
        assert _resource_group(ACCOUNT_ID) == "rg1"

    def test_resource_group_missing(self):
        with pytest.raises(ConfigurationError):
            _resource_group("/subscriptions/sub/providers/x")

    def test_describe(self):
        assert describe(None) == "cosmos:<injected>"
        assert describe(CosmosConfig(backend="memory")) == "memory:Test"
        assert describe(service_principal_config(database_name="Db")) == "cosmos:MyAccount/Db"
        assert "abc==" not in describe(
            CosmosConfig(auth_mode="connection_string", connection_string=CONNECTION_STRING)
        )


class TestLazyConnection:
    """Test suite for CosmosStorage connection handling."""

    @pytest.mark.asyncio
    async def test_opens_once_on_first_use(self):
        """Test concurrent first calls share one connection."""
        connection = DatabaseConnection(database=InMemoryDatabase())

        with patch(
            "cosmostable.storage.cosmos.open_database", AsyncMock(return_value=connection)
        ) as opener:
            storage = CosmosStorage(service_principal_config())
            opener.assert_not_called()

            await asyncio.gather(*(storage.list_table_names() for _ in range(5)))

        opener.assert_awaited_once()
        assert storage.name == "cosmos:MyAccount/Test"

    @pytest.mark.asyncio
    async def test_close_releases_connection(self):
        """Test closing the client closes the connection and allows reopening."""
        resource = MagicMock()
        resource.close = AsyncMock()
        connection = DatabaseConnection(database=InMemoryDatabase(), closeables=[resource])

        with patch("cosmostable.storage.cosmos.open_database", AsyncMock(return_value=connection)):
            async with CosmosStorage(service_principal_config()) as storage:
                await storage.create_table("people")

        resource.close.assert_awaited_once()
