from typing import AsyncGenerator, Optional

from loguru import logger
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from stmtcache.core.cache import QuickLRU
from stmtcache.core.settings import settings


def create_compiled_cache(max_size: Optional[int] = None, max_age: Optional[float] = None) -> QuickLRU:
    return QuickLRU(
        max_size if max_size is not None else settings.cache.max_size,
        max_age=max_age if max_age is not None else settings.cache.max_age_seconds,
    )


def create_cached_engine(
    url: Optional[str] = None,
    compiled_cache: Optional[QuickLRU] = None,
    echo: bool = False,
) -> AsyncEngine:
    """
    Create an async engine whose compiled statements live in a QuickLRU.

    SQLAlchemy looks compiled SQL up with ``compiled_cache.get(key)`` and
    stores misses with ``compiled_cache[key] = compiled``.
    """
    url = url or settings.db.url
    if compiled_cache is None:
        compiled_cache = create_compiled_cache()
    is_sqlite = url.startswith("sqlite")

    engine = create_async_engine(
        url,
        echo=echo,
        execution_options={"compiled_cache": compiled_cache},
        connect_args={"timeout": settings.db.timeout_seconds} if is_sqlite else {},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        if is_sqlite:
            cursor = dbapi_connection.cursor()
            cursor.execute(f"PRAGMA journal_mode={settings.db.journal_mode.value}")
            cursor.execute(f"PRAGMA synchronous={settings.db.synchronous}")
            cursor.close()

    logger.debug(f"Created engine for {url} with compiled cache max_size={compiled_cache.max_size}")
    return engine


engine = create_cached_engine()

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session
