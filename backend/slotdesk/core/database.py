from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from slotdesk.core.config import settings


def _async_url(url: str) -> str:
    # Convert a plain postgres URL to the asyncpg driver
    if url.startswith("postgresql+"):
        return url
    return url.replace("postgresql", "postgresql+asyncpg", 1)


DATABASE_URL = _async_url(settings.database_url)

# Create async engine; no connection is opened until first use
engine = create_async_engine(
    DATABASE_URL,
    echo=settings.db_echo,
    pool_pre_ping=True,
)

# Create session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)

# Base class for models
Base = declarative_base()

# Dependency for FastAPI
async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
