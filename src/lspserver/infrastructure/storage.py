"""Storage abstractions and Redis implementation for repositories."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Optional

from .database import DatabaseClient

DEFAULT_LOCK_TIMEOUT = 120.0
DEFAULT_LOCK_BLOCKING_TIMEOUT = 90.0


class KeyValueStore(ABC):
    """Abstract key-value store with minimal operations used by repositories."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def set_if_absent(self, key: str, value: str) -> bool:
        """Store ``value`` only if ``key`` does not exist. Returns True if stored."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> int:
        pass

    @abstractmethod
    def lock(self, name: str) -> AsyncContextManager[None]:
        """Async context manager holding an exclusive lock called ``name``."""
        pass


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed implementation of KeyValueStore."""

    def __init__(
        self,
        db_client: DatabaseClient,
        *,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        lock_blocking_timeout: float = DEFAULT_LOCK_BLOCKING_TIMEOUT,
    ):
        self._db_client = db_client
        self._lock_timeout = lock_timeout
        self._lock_blocking_timeout = lock_blocking_timeout

    async def get(self, key: str) -> Optional[str]:
        async with self._db_client.get_connection() as conn:
            return await conn.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._db_client.get_connection() as conn:
            await conn.set(key, value)

    async def set_if_absent(self, key: str, value: str) -> bool:
        async with self._db_client.get_connection() as conn:
            return bool(await conn.set(key, value, nx=True))

    async def delete(self, key: str) -> int:
        async with self._db_client.get_connection() as conn:
            return await conn.delete(key)

    @asynccontextmanager
    async def lock(self, name: str) -> AsyncIterator[None]:
        # Expires after lock_timeout if the holder dies
        async with self._db_client.get_connection() as conn:
            async with conn.lock(
                name,
                timeout=self._lock_timeout,
                blocking_timeout=self._lock_blocking_timeout,
            ):
                yield
