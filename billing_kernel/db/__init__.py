"""Database layer - engine, base classes and unit of work."""

from billing_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from billing_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)
from billing_kernel.db.unit_of_work import UnitOfWork

__all__ = [
    "Base",
    "TrackedBase",
    "UUID",
    "UUIDString",
    "UnitOfWork",
    "create_tables",
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "session_scope",
]
