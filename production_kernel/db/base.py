"""
Module: production_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.  Provides
    the UUID primary key convention, the type annotation map for consistent
    column types, and the TrackedBase mixin for audit timestamps.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  MUST NOT import from models/, services/ or selectors/; from
    domain/ only the pure quantity codec.

Invariants enforced:
    - UUID primary keys generated with uuid4.
    - Decimal quantities map to ``Quantity``: exact NUMERIC(38, 9) on
      PostgreSQL, a scaled BIGINT (count of 1e-9 units) on SQLite, whose
      NUMERIC affinity would otherwise store a binary float.  Comparisons
      and arithmetic in SQL (the guarded stock UPDATE) stay exact on both.
    - A value with more than 9 fractional digits is refused, never rounded.
    - Timestamps are timezone-aware on the way in and normalized to UTC on
      the way out (SQLite drops the offset on storage).
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from production_kernel.domain.quantity import (
    QUANTITY_PLACES,
    exact_quantity,
    from_scaled_int,
    to_scaled_int,
)


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Guarantees:
        - process_bind_param: UUID -> str on INSERT/UPDATE.
        - process_result_value: str -> UUID on SELECT.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(str(value))
        return None


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware DateTime that always yields UTC datetimes.

    Backends without native offset storage return naive values; those are
    interpreted as UTC since every value written by the kernel is UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime cannot be stored; pass a UTC-aware value")
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Quantity(TypeDecorator):
    """
    Exact decimal quantity column.

    Guarantees:
        - process_bind_param: Decimal -> Decimal (PostgreSQL) or scaled
          int (SQLite); raises InvalidQuantityError instead of rounding.
        - process_result_value: always a Decimal at full scale.
        - Literals compared with or added to a Quantity column are bound
          through this type, so ``stock >= :required`` compares like with
          like.
    """

    impl = Numeric(38, QUANTITY_PLACES)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(BigInteger())
        return dialect.type_descriptor(Numeric(38, QUANTITY_PLACES))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = exact_quantity("quantity", value)
        if dialect.name == "sqlite":
            return to_scaled_int(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "sqlite":
            return from_scaled_int(int(value))
        return Decimal(value)

    def coerce_compared_value(self, op, value):
        return self


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - Decimal maps to Quantity (exact at 9 decimal places).
        - datetime maps to UTCDateTime.
        - int maps to BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Quantity(),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with audit timestamp and actor tracking.

    Guarantees:
        - created_at is set to server NOW() on INSERT and never changes.
        - updated_at auto-updates on every ORM UPDATE.
        - created_by_id is required (NOT NULL): every record has a creator.
        - updated_by_id is nullable.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    updated_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )
