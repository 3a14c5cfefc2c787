"""
Database Package Initialization.

============================================================
ASYNC PERSISTENCE LAYER
============================================================

Async SQLAlchemy engine, session factory and transaction
scope shared by the ORM models of the engine packages.

Every failure raises PersistenceError; nothing is retried
or swallowed at this layer.

============================================================
"""

from .engine import (
    Base,
    create_database_engine,
    create_session_factory,
    transaction_scope,
    create_all_tables,
)

__all__ = [
    "Base",
    "create_database_engine",
    "create_session_factory",
    "transaction_scope",
    "create_all_tables",
]
