"""
Key-value storage contract for persisted state.

Defines the key-value contract that persistence backends implement. The
reward core only stores whole JSON documents, so the surface is small.
"""

from abc import ABC, abstractmethod
from typing import Literal, Optional

from pydantic import BaseModel, Field


class StorageConfig(BaseModel):
    """Where the observer and router state documents are kept."""

    backend: Literal["memory", "redis"] = Field(default="memory", description="memory or redis")
    key_prefix: str = Field(default="civicreward:", description="Prefix applied to every key")
    timeout_seconds: int = Field(default=30, ge=1, le=300, description="Socket timeout for remote stores")

    # redis backend only
    redis_host: str = Field(default="localhost")
    redis_port: int = Field(default=6379, ge=1, le=65535)
    redis_db: int = Field(default=0, ge=0)
    redis_password: Optional[str] = None
    redis_ssl: bool = False
    pool_size: int = Field(default=10, ge=1, le=100, description="Maximum pooled redis connections")


class AbstractStorageProvider(ABC):
    """
    String key-value store behind the state ports.

    Keys passed in and returned are unprefixed; implementations apply
    ``config.key_prefix`` when touching the backend.
    """

    def __init__(self, config: StorageConfig):
        self.config = config

    def _key(self, key: str) -> str:
        return f"{self.config.key_prefix}{key}"

    @abstractmethod
    async def connect(self) -> None:
        """Open the backend. Called once by the service on start."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Release the backend. Stored documents survive where the backend allows."""

    @abstractmethod
    async def health_check(self) -> bool:
        """True while the backend is reachable."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Stored string for ``key``, or ``None`` when absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        """Store ``value`` under ``key``, replacing any expiry. Returns ``True`` on success."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``. Returns ``False`` when nothing was stored."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """True when ``key`` holds a live value."""

    @abstractmethod
    async def keys(self, pattern: str = "*") -> list[str]:
        """Get keys matching a glob pattern, without the prefix."""
