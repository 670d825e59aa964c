"""Database layer - engine, base classes and column types."""

from validation_kernel.db.base import UUID, Base, UTCDateTime, UUIDString
from validation_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    session_scope,
)
from validation_kernel.db.types import TypedJSON

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "UTCDateTime",
    "UUIDString",
    "UUID",
    "TypedJSON",
]
