"""Async database engine and session factory."""

from collections.abc import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from chatmeter.core.config import get_settings

settings = get_settings()


def _engine_options(database_url: str) -> dict:
    """Pool sizing for server databases; SQLite keeps its default pool."""
    if make_url(database_url).get_backend_name() == "sqlite":
        return {}
    # API requests plus concurrent worker jobs
    return {"pool_size": 20, "max_overflow": 10, "pool_pre_ping": True}


engine = create_async_engine(
    settings.database_url,
    echo=False,
    **_engine_options(settings.database_url),
)

async_session_factory = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, rolled back if left open."""
    async with async_session_factory() as session:
        yield session


async def init_db() -> None:
    """Create missing tables. The Alembic revision is the source of truth."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
