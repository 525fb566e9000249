from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text
from sqlmodel import Field, SQLModel


class CacheEntry(SQLModel, table=True):
    """Persisted key/value pair backing the dashboard cache."""

    __tablename__ = "cache_entries"

    key: str = Field(
        sa_column=Column(String(64), primary_key=True),
        description="Cache key, e.g. DashboardData",
    )
    value: str = Field(
        sa_column=Column(Text, nullable=False),
        description="Serialized value",
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
        description="Timestamp of the last write",
    )
