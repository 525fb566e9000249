from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from . import models  # noqa: F401  registers tables on SQLModel.metadata
from .config import Settings

settings = Settings()
engine: AsyncEngine | None = None
SessionFactory: async_sessionmaker[AsyncSession]


def configure_database(config: Settings | None = None) -> None:
    """(Re)Initialize the async engine and session factory for the specified settings."""
    global settings, engine, SessionFactory

    settings = config or Settings()

    if engine is not None:
        engine.sync_engine.dispose()

    engine = create_async_engine(settings.database_url, echo=settings.sql_echo, future=True)
    SessionFactory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


configure_database()


async def init_database(config: Settings | None = None) -> None:
    """Create the database directory and the cache table if they do not exist."""
    cfg = config or settings

    if cfg.database_url.startswith("sqlite"):
        db_path = cfg.database_path
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            # Open for append so a read-only file fails here with a clear message
            # instead of as an OperationalError on the first cache write.
            with open(db_path, "a", encoding="utf-8"):
                pass
        except PermissionError as exc:
            raise RuntimeError(
                f"Cannot write to database file {db_path!s}: permission denied."
            ) from exc
        except OSError as exc:
            raise RuntimeError(
                f"Unable to create or access database file {db_path!s}: {exc!s}"
            ) from exc

    if engine is None:
        raise RuntimeError("Database engine is not configured")

    async with engine.begin() as connection:
        await connection.run_sync(SQLModel.metadata.create_all)
