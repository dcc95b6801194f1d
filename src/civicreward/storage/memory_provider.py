"""
In-process storage provider.

The default store for a service: state documents live only as long as
the process, which is what the CLI simulator and the tests want.
"""

import fnmatch
import time
from typing import Optional

from .provider import AbstractStorageProvider, StorageConfig


class MemoryStorageProvider(AbstractStorageProvider):
    """Dictionary store with monotonic-clock expiry. Contents outlive disconnect."""

    def __init__(self, config: Optional[StorageConfig] = None):
        super().__init__(config or StorageConfig(backend="memory"))
        self._data: dict[str, str] = {}
        self._expires: dict[str, float] = {}
        self._connected = False

    async def connect(self) -> None:
        """Mark the store usable."""
        self._connected = True

    async def disconnect(self) -> None:
        """Mark the store closed. Documents are kept for the next connect."""
        self._connected = False

    async def health_check(self) -> bool:
        return self._connected

    def _expired(self, full_key: str) -> bool:
        deadline = self._expires.get(full_key)
        if deadline is not None and time.monotonic() >= deadline:
            self._data.pop(full_key, None)
            self._expires.pop(full_key, None)
            return True
        return False

    async def get(self, key: str) -> Optional[str]:
        full_key = self._key(key)
        if self._expired(full_key):
            return None
        return self._data.get(full_key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        full_key = self._key(key)
        self._data[full_key] = value
        if ttl_seconds is not None:
            self._expires[full_key] = time.monotonic() + ttl_seconds
        else:
            self._expires.pop(full_key, None)
        return True

    async def delete(self, key: str) -> bool:
        full_key = self._key(key)
        self._expires.pop(full_key, None)
        return self._data.pop(full_key, None) is not None

    async def exists(self, key: str) -> bool:
        full_key = self._key(key)
        return not self._expired(full_key) and full_key in self._data

    async def keys(self, pattern: str = "*") -> list[str]:
        prefix = self.config.key_prefix
        return [
            key[len(prefix):]
            for key in list(self._data)
            if not self._expired(key) and fnmatch.fnmatch(key[len(prefix):], pattern)
        ]
