"""Async SQLAlchemy engine, session management and the unit-of-work scope."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from leave_engine.config import settings

# Async engine for FastAPI
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.ENVIRONMENT == "development",
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
)

# Async session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


async def get_db() -> AsyncSession:
    """FastAPI dependency: yield an async database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Transaction scope for one workflow operation.

    Everything written through *session* inside the block is committed when
    the block exits cleanly and rolled back when it raises, so a workflow
    never leaves a partial debit behind::

        async with unit_of_work(db):
            await BalanceLedger.reserve(db, ...)
            await LeaveLifecycle.transition(db, ...)
    """
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
