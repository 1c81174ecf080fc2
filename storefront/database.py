"""
Database Connection Module
Handles PostgreSQL connection using SQLAlchemy async engine.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from storefront.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,  # Logs all SQL queries in debug mode
    pool_size=5,  # Connection pool size
    max_overflow=10  # Extra connections when pool is full
)

# Session factory - creates new database sessions
async_session_maker = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False  # Objects remain accessible after commit
)


# Base class for all our models
class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:
    """
    Dependency injection for FastAPI routes.
    Yields a database session and ensures cleanup.
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind=None) -> None:
    """
    Create all tables and seed the single admin settings row.
    Called once at application startup.
    """
    # Imported here so the models register on Base.metadata
    from storefront.models import AdminSettings

    bind = bind or engine
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_maker = async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        existing = await session.execute(select(AdminSettings.id).limit(1))
        if existing.scalar_one_or_none() is None:
            session.add(AdminSettings(
                line_approver_id=settings.line_approver_id or "",
                line_staff_id=settings.line_staff_id or "",
            ))
            await session.commit()
            logger.info("Seeded default admin_settings row")

    logger.info("Database tables created successfully")
