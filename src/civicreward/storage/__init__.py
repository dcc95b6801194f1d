"""
Storage providers for the civic reward core.

Provides a narrow key-value interface, memory and Redis implementations,
and the StatePort persistence port used by the observer and the router.
"""

from .provider import AbstractStorageProvider, StorageConfig
from .memory_provider import MemoryStorageProvider
from .redis_provider import RedisStorageProvider
from .state import StatePort, StorageStatePort


def create_storage_provider(config: StorageConfig) -> AbstractStorageProvider:
    """Build the provider named by ``config.backend``."""
    if config.backend == "redis":
        return RedisStorageProvider(config)
    return MemoryStorageProvider(config)


__all__ = [
    "AbstractStorageProvider",
    "StorageConfig",
    "MemoryStorageProvider",
    "RedisStorageProvider",
    "StatePort",
    "StorageStatePort",
    "create_storage_provider",
]
