"""Async database engine and session factory.

Provides a FastAPI dependency (`get_db`) that yields a request-scoped
async session. The session is committed on success and rolled back on error,
so a publish either records the flow, its version and every ingested file,
or nothing.

Postgres is the deployment target. SQLite (aiosqlite) is accepted for local
runs and tests; foreign keys are switched on per connection there so the
`ON DELETE` rules on versions and files hold.
"""

from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from flowbundle.core.config import get_settings

settings = get_settings()


def enable_sqlite_foreign_keys(sync_engine: Engine) -> None:
    @event.listens_for(sync_engine, "connect")
    def _set_pragma(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(database_url: str, **kwargs) -> AsyncEngine:
    """Create the async engine, with pool sizing only where the driver pools."""
    if database_url.startswith("sqlite"):
        async_engine = create_async_engine(database_url, **kwargs)
        enable_sqlite_foreign_keys(async_engine.sync_engine)
        return async_engine
    return create_async_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=5,
        pool_timeout=15,
        **kwargs,
    )


engine = build_engine(settings.database_url)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped session; commit on success, roll back on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
