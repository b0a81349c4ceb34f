"""Database layer - engine, base classes and immutability listeners."""

from escrow_kernel.db.base import UUID, Base, DecimalString, TrackedBase, UTCDateTime, UUIDString
from escrow_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "init_engine_from_url",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UTCDateTime",
    "DecimalString",
    "UUID",
]
