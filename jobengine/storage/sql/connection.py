"""
Database connection management.
Builds the async SQLAlchemy engine and session factory shared by SQL storages.
"""

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from jobengine.config import get_settings

logger = logging.getLogger(__name__)


def create_engine(database_url: str | None = None, **kwargs) -> AsyncEngine:
    """
    Create an async database engine.

    Pool sizing only applies to pooled drivers; SQLite URLs use SQLAlchemy's
    default pool for the dialect.

    Args:
        database_url: The database URL. Defaults to settings.
        **kwargs: Extra arguments for ``create_async_engine``.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    settings = get_settings()
    url = database_url or settings.database_url

    options = {
        "echo": settings.database_echo,
        "pool_pre_ping": True,
    }
    if not url.startswith("sqlite"):
        options["pool_size"] = settings.database_pool_size
        options["max_overflow"] = settings.database_max_overflow
    options.update(kwargs)

    engine = create_async_engine(url, **options)
    logger.info(
        "Database engine created",
        extra={"dialect": engine.dialect.name}
    )
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Create the session factory for an engine.

    Args:
        engine: The async engine.

    Returns:
        A session factory producing non-expiring sessions.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
