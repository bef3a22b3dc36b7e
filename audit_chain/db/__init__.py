"""Database layer - engine, base classes, types, and immutability enforcement."""

from audit_chain.db.base import Base, JSONColumn, UTCDateTime, UUIDString
from audit_chain.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
    "Base",
    "JSONColumn",
    "UTCDateTime",
    "UUIDString",
]
