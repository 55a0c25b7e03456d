"""
Shared fixtures for cosmostable tests.
"""

import uuid

import pytest

from cosmostable.storage import CosmosStorage, InMemoryDatabase


@pytest.fixture
def database():
    """Fresh in-memory database."""
    return InMemoryDatabase("Test")


@pytest.fixture
async def storage(database):
    """Storage client over the in-memory database."""
    client = CosmosStorage(database=database)
    yield client
    await client.close()


@pytest.fixture
async def table(storage):
    """A freshly created, unpartitioned table that is removed afterwards."""
    name = uuid.uuid4().hex
    await storage.create_table(name)
    yield name
    await storage.delete_table(name)
