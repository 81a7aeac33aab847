"""
thesis_eval/database.py
Database configuration: async engine, session factory and lifecycle hooks
"""
import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine

from thesis_eval.config.settings import settings
# Import Base through the package so every model is registered
from thesis_eval.orm import Base

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL

if not DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is not set")


def build_engine(url: str) -> AsyncEngine:
    """
    Create an async engine with pool settings suited to the dialect.
    """
    if "sqlite" in url.lower():
        # SQLite: generous busy timeout so concurrent bulk writes queue up
        return create_async_engine(
            url,
            echo=False,
            future=True,
            connect_args={
                "timeout": 30.0,
            }
        )
    return create_async_engine(
        url,
        echo=False,
        future=True,
        pool_pre_ping=True,
        pool_size=20,
        max_overflow=30,
        pool_timeout=30,
        pool_recycle=3600,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(DATABASE_URL)
AsyncSessionLocal = build_session_factory(engine)


async def init_db(bind: AsyncEngine = None):
    """Create missing tables."""
    target = bind or engine
    logger.info("Initializing database...")
    logger.info(f"Database dialect: {target.url.get_backend_name()}")

    try:
        async with target.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")
        raise

    logger.info("✓ Database initialization complete")


async def close_db():
    """Close database connection"""
    await engine.dispose()
    logger.info("Database connection closed")
