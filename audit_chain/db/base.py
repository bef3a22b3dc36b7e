"""
Module: audit_chain.db.base
Responsibility: Declarative base class and portable column types for all
    SQLAlchemy ORM models.
Architecture position: Chain > DB.  This is the lowest-level import target
    within the package.  ALL model files import from here.  This module MUST
    NOT import from models/, services/, selectors/, or domain/.

Invariants enforced:
    - UUID primary keys: every model inherits a uuid4-generated primary key.
      Chain order lives in ``block_number``, never in the primary key.
    - UTC timestamps: ``UTCDateTime`` always hands back aware UTC datetimes.
      ``created_at`` feeds the block hash, so a backend that drops the
      offset (SQLite) must not change what verification recomputes.
    - JSON payloads: ``JSONColumn`` is JSONB on PostgreSQL and JSON elsewhere.
"""

from datetime import datetime, timezone
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import JSON, BigInteger, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    Python UUID persisted as its 36-character text form on every backend.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp that always round-trips as UTC.

    Naive values are taken to be UTC on the way in and on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


JSONColumn = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """
    Root of the chain models.

    Guarantees:
        - Surrogate key ``id`` is a random uuid4.
        - datetime maps to UTCDateTime.
        - int maps to BigInteger -- block numbers never overflow.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )
