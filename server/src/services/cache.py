from __future__ import annotations

from typing import Dict, Optional, Protocol

from server.src.core.logging import get_logger

from .. import database
from ..repositories.cache_entries import CacheEntryRepository

logger = get_logger(__name__)

DASHBOARD_KEY = "DashboardData"
UNAVAILABLE_KEY = "NodeUnavailable"


class CacheStore(Protocol):
    """String key/value store. Last write wins."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryCacheStore:
    """In-process store; contents are lost on restart."""

    def __init__(self) -> None:
        self._values: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value

    async def remove(self, key: str) -> None:
        self._values.pop(key, None)


class DatabaseCacheStore:
    """Store backed by the cache_entries table, one short-lived session per call."""

    async def get(self, key: str) -> Optional[str]:
        async with database.SessionFactory() as session:
            record = await CacheEntryRepository(session).get(key)
            return record.value if record is not None else None

    async def set(self, key: str, value: str) -> None:
        async with database.SessionFactory() as session:
            await CacheEntryRepository(session).upsert(key, value)

    async def remove(self, key: str) -> None:
        async with database.SessionFactory() as session:
            deleted = await CacheEntryRepository(session).delete(key)
        if deleted:
            logger.debug("Removed cache key %s", key)
