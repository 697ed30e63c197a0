"""Test fixtures for in-memory implementations."""

from .in_memory_storage import InMemoryKeyValueStore
from .in_memory_repositories import InMemoryOrderRepository
from .fake_lightning_client import FakeLightningClient

__all__ = [
    "FakeLightningClient",
    "InMemoryKeyValueStore",
    "InMemoryOrderRepository",
]
