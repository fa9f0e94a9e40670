"""Async engine, session factory and the declarative base."""
import logging

from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from rewards_backend.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

url = make_url(settings.database_url)
is_sqlite = url.drivername.startswith("sqlite")

engine_kwargs = {
    "echo": settings.environment == "development",
    "pool_pre_ping": True,
}
connect_args = {}

if is_sqlite:
    # Writers queue on the database lock instead of failing straight away
    connect_args["timeout"] = 30
else:
    if not url.password:
        logger.warning("No password found in DATABASE_URL!")
    if settings.environment == "production" or "amazonaws" in (url.host or ""):
        connect_args["ssl"] = "require"
    engine_kwargs.update(
        pool_size=max(1, settings.db_pool_size),
        max_overflow=max(0, settings.db_max_overflow),
        pool_recycle=3600,
    )

engine = create_async_engine(settings.database_url, connect_args=connect_args, **engine_kwargs)
logger.debug(f"Database engine created for {url.drivername}")

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db():
    """FastAPI dependency yielding a request-scoped session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker:
    """FastAPI dependency for work that outlives the request session (background payouts)."""
    return AsyncSessionLocal
