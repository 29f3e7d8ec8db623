from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from quizlobby.core.config import Settings


Base = declarative_base()


def build_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(
        str(settings.postgres.connection_string),
        echo=not settings.app.is_production,
        pool_pre_ping=True,
    )


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        expire_on_commit=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables known to the metadata (dev and tests; no migrations)."""
    # Registers the ORM classes on Base.metadata
    import quizlobby.core.db.schemas  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
