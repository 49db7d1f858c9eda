"""
Database Connection Module
Builds SQLAlchemy async engines and session factories for the SQL store.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


# Base class for all our models
class Base(DeclarativeBase):
    pass


def create_engine_and_sessionmaker(
    database_url: str,
    echo: bool = False,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Create an async engine and its session factory.

    SQLite URLs (used by tests) get no pool sizing; server databases
    get a small pool.
    """
    if database_url.startswith("sqlite"):
        engine = create_async_engine(database_url, echo=echo)
    else:
        engine = create_async_engine(
            database_url,
            echo=echo,
            pool_size=5,  # Connection pool size
            max_overflow=10,  # Extra connections when pool is full
        )

    session_maker = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Objects remain accessible after commit
    )
    return engine, session_maker


async def init_db(engine: AsyncEngine) -> None:
    """
    Create all tables in database.
    Called once when the SQL store starts.
    """
    # Register the mapped tables on Base.metadata
    from office_lunch import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
