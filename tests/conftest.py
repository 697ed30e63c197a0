"""Shared pytest fixtures for LSP tests."""

from __future__ import annotations

import os
from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio

from lspserver.application.lsp.use_cases.info import LspInfoService
from lspserver.application.lsp.use_cases.order import OrderService
from lspserver.domain.lsp.options import LspOptions
from lspserver.infrastructure.database import DatabaseClient
from lspserver.infrastructure.storage import RedisKeyValueStore
from tests.fixtures import FakeLightningClient, InMemoryOrderRepository

CLIENT_NODE_PUBKEY = "02" + "ab" * 32


@pytest.fixture
def client_node_pubkey() -> str:
    """Public key of a node connected to the LSP."""
    return CLIENT_NODE_PUBKEY


@pytest.fixture
def lightning_client(client_node_pubkey: str) -> FakeLightningClient:
    """Lightning node double with the client node as its only peer."""
    return FakeLightningClient(peers=[client_node_pubkey])


@pytest.fixture
def order_repository() -> Generator[InMemoryOrderRepository, None, None]:
    """Create an in-memory order repository."""
    repo = InMemoryOrderRepository()
    yield repo
    repo.clear()


@pytest.fixture
def info_service() -> LspInfoService:
    return LspInfoService(LspOptions())


@pytest.fixture
def order_service(
    order_repository: InMemoryOrderRepository,
    lightning_client: FakeLightningClient,
    info_service: LspInfoService,
) -> OrderService:
    return OrderService(order_repository, lightning_client, info_service)


class RedisTestSettings:
    """Test settings for Redis connection."""

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url


@pytest_asyncio.fixture
async def redis_db_client() -> AsyncGenerator[DatabaseClient, None]:
    """Create a Redis database client for testing.

    Uses TEST_REDIS_URL if set, otherwise localhost:6379/15. Tests are
    skipped when Redis is not reachable.
    """
    import warnings

    test_redis_url = os.getenv("TEST_REDIS_URL", "redis://localhost:6379/15")
    client = DatabaseClient(RedisTestSettings(database_url=test_redis_url))
    client.initialize_database()

    try:
        async with client.get_connection() as conn:
            await conn.ping()
    except Exception as e:
        warnings.warn(
            f"Redis not available at {test_redis_url}: {e}. "
            "Tests requiring Redis will be skipped.",
            UserWarning,
        )
        await client.close()
        pytest.skip(f"Redis not available: {e}")

    yield client

    async with client.get_connection() as conn:
        await conn.flushdb()
    await client.close()


@pytest_asyncio.fixture
async def redis_store(redis_db_client: DatabaseClient) -> RedisKeyValueStore:
    """Create a Redis-backed key-value store for testing."""
    return RedisKeyValueStore(redis_db_client)
