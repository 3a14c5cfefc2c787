"""
Database Persistence Layer - Core Engine.

============================================================
PURPOSE
============================================================
Async SQLAlchemy engine and session management for the
assessment store.

Requirements:
- SQLAlchemy 2.0 async ORM
- Explicit transaction management
- Hard failures on persistence errors

The coordinator owns its engine: it builds one from the
configured database URL (an async driver URL such as
postgresql+asyncpg:// or sqlite+aiosqlite://) and disposes
it on stop. Nothing here is module-global.

============================================================
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from core.exceptions import PersistenceError


logger = logging.getLogger(__name__)


# =============================================================
# DECLARATIVE BASE
# =============================================================


class Base(DeclarativeBase):
    """Declarative base for every ORM model."""


# =============================================================
# DATABASE ENGINE
# =============================================================


def _redact(url: str) -> str:
    return url.split("@")[-1]


def create_database_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async SQLAlchemy engine.

    Args:
        url: Async database URL
        echo: Log SQL statements

    Raises:
        PersistenceError: If the URL is empty or not usable
    """
    if not url:
        raise PersistenceError("Database URL is not configured")

    logger.info(f"Creating database engine for: {_redact(url)}")
    try:
        return create_async_engine(url, echo=echo)
    except (SQLAlchemyError, ImportError, ValueError) as e:
        raise PersistenceError(f"Cannot create engine for {_redact(url)}: {e}", cause=e) from e


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


# =============================================================
# SESSION MANAGEMENT
# =============================================================


@asynccontextmanager
async def transaction_scope(session_factory: async_sessionmaker) -> AsyncIterator[AsyncSession]:
    """
    Async context manager for explicit transaction boundaries.

    Commits only if no exception occurs.
    Rolls back on database errors and raises PersistenceError.

    Usage:
        async with transaction_scope(factory) as session:
            await RiskAssessmentRepository(session).save_assessment(a)
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
            logger.debug("Database transaction committed successfully")
        except SQLAlchemyError as e:
            logger.error(f"Database transaction failed, rolling back: {e}")
            await session.rollback()
            raise PersistenceError(f"Transaction failed: {e}", cause=e) from e


# =============================================================
# DATABASE INITIALIZATION
# =============================================================


async def create_all_tables(engine: AsyncEngine) -> None:
    """
    Create all tables defined in ORM models.

    Raises:
        PersistenceError: If table creation fails
    """
    # Register models with Base
    from risk_scoring import models  # noqa: F401

    try:
        logger.info("Creating database tables...")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")
    except SQLAlchemyError as e:
        logger.error(f"Failed to create database tables: {e}")
        raise PersistenceError(f"Table creation failed: {e}", cause=e) from e


__all__ = [
    "Base",
    "create_database_engine",
    "create_session_factory",
    "transaction_scope",
    "create_all_tables",
]
