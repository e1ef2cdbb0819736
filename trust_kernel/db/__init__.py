"""Database layer - engine, base classes, types, immutability enforcement."""

from trust_kernel.db.base import UUID, Base, ExactDecimal, UTCDateTime, UUIDString
from trust_kernel.db.engine import build_engine, create_tables, drop_tables
from trust_kernel.db.types import CurrencyCode, MoneyAmount, PayloadHash, Sequence

__all__ = [
    "Base",
    "CurrencyCode",
    "ExactDecimal",
    "MoneyAmount",
    "PayloadHash",
    "Sequence",
    "UTCDateTime",
    "UUID",
    "UUIDString",
    "build_engine",
    "create_tables",
    "drop_tables",
]
