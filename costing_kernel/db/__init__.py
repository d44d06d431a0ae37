"""Database layer - engine, base class, and ledger immutability."""

from costing_kernel.db.base import Base, IdentityKey
from costing_kernel.db.engine import (
    build_engine,
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "Base",
    "IdentityKey",
    "build_engine",
    "create_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "session_scope",
]
