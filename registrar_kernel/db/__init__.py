"""Database layer - engine, base classes, types, and immutability enforcement."""

from registrar_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from registrar_kernel.db.engine import create_tables, get_engine, get_session

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
]
