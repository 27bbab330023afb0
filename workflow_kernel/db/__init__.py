"""Database layer - engine, base classes, immutability listeners."""

from workflow_kernel.db.base import UUID, Base, UUIDString
from workflow_kernel.db.engine import (
    create_session_factory,
    create_tables,
    drop_tables,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "init_engine_from_url",
    "create_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
    "Base",
    "UUIDString",
    "UUID",
]
