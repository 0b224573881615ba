"""Async database engine and session management."""

from collections.abc import AsyncIterator

from sqlalchemy import JSON, event
from sqlalchemy.dialects import postgresql
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from parley.config import settings
from parley.models import Base


def use_sqlite_json(metadata=Base.metadata) -> None:
    """Swap JSONB columns for JSON so the schema can be created on SQLite."""

    @event.listens_for(metadata, "before_create")
    def _set_json_type(target, connection, **kw):  # noqa: ARG001
        for table in target.tables.values():
            for column in table.columns:
                if isinstance(column.type, postgresql.JSONB):
                    column.type = JSON()


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; SQLite URLs get the JSONB compatibility hook."""
    if database_url.startswith("sqlite"):
        use_sqlite_json()
        return create_async_engine(database_url, echo=echo)

    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
    )


engine = build_engine(settings.database_url, echo=settings.db_echo)

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a session per request."""
    async with async_session_factory() as session:
        yield session
