"""
Persistence port for component state.

The observer and the router hand their exported state to a StatePort and
read it back on start. The port hides which store sits underneath.

Usage:
    store = MemoryStorageProvider()
    await store.connect()

    port = StorageStatePort(store, key="observer")
    await port.save({"entries": []})
    state = await port.load()
"""

from __future__ import annotations

import json
from typing import Any, Optional, Protocol, runtime_checkable

from civicreward.exceptions import StorageError

from .provider import AbstractStorageProvider


@runtime_checkable
class StatePort(Protocol):
    """Load/save a component's whole state as one JSON-compatible document."""

    async def load(self) -> Optional[dict[str, Any]]: ...

    async def save(self, state: dict[str, Any]) -> None: ...


class StorageStatePort:
    """StatePort backed by an ``AbstractStorageProvider`` key."""

    def __init__(self, storage: AbstractStorageProvider, key: str) -> None:
        self._storage = storage
        self._key = f"state:{key}"

    @property
    def key(self) -> str:
        return self._key

    async def load(self) -> Optional[dict[str, Any]]:
        raw = await self._storage.get(self._key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Stored state under {self._key} is not valid JSON") from exc

    async def save(self, state: dict[str, Any]) -> None:
        document = json.dumps(state, default=str, sort_keys=True)
        if not await self._storage.set(self._key, document):
            raise StorageError(f"Storage backend refused write to {self._key}")
