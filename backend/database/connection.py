import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

# Load environment variables before settings are read
ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')

from config import get_settings  # noqa: E402

settings = get_settings()

DATABASE_URL = settings.get_database_url()


def _connect_args() -> dict:
    sslmode = settings.POSTGRES_SSLMODE.strip().lower()
    if not sslmode or sslmode == "disable":
        return {}
    return {"ssl": sslmode}


engine = create_async_engine(
    DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
    pool_size=5,
    max_overflow=10,
    connect_args=_connect_args(),
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)


class Base(DeclarativeBase):
    pass


async def get_db():
    """Dependency to get database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """
    Session for one-off scripts.

    The session is closed and the engine's pool disposed on every exit path,
    so a script never leaves connections open behind it.
    """
    session = AsyncSessionLocal()
    try:
        yield session
    finally:
        await session.close()
        await engine.dispose()


async def init_db():
    """Verify the connection and create any missing tables."""
    # Registers the mapped tables on Base.metadata
    from database import user_models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            logger.info("PostgreSQL connection successful")

            await conn.run_sync(Base.metadata.create_all)
            logger.info(f"Tables ensured: {sorted(Base.metadata.tables)}")
            return True
    except Exception as e:
        logger.error(f"Database initialization error: {e}")
        raise
