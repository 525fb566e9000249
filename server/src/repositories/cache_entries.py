from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import CacheEntry


class CacheEntryRepository:
    """Encapsulates database interactions for cache entries."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, key: str) -> Optional[CacheEntry]:
        result = await self._session.execute(select(CacheEntry).where(CacheEntry.key == key))
        return result.scalars().first()

    async def upsert(self, key: str, value: str) -> CacheEntry:
        record = CacheEntry(key=key, value=value, updated_at=datetime.now(timezone.utc))
        merged = await self._session.merge(record)
        await self._session.commit()
        return merged

    async def delete(self, key: str) -> int:
        result = await self._session.execute(delete(CacheEntry).where(CacheEntry.key == key))
        await self._session.commit()
        return result.rowcount or 0
