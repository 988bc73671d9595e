"""
InventoryAdjustment -- append-only record of one stock mutation.

Written by ``services.audit_recorder.AuditRecorder`` in the same
transaction as the mutation it documents, so a row's existence means the
mutation committed.  UPDATE and DELETE are blocked in db/immutability.py.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import BigInteger, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from production_kernel.db.base import Base, UTCDateTime, UUIDString
from production_kernel.domain.dtos import AdjustmentRecord


class StockEntityType(str, Enum):
    MATERIAL = "material"
    PRODUCT = "product"


class AdjustmentType(str, Enum):
    MANUAL = "manual"
    PHYSICAL_COUNT = "physical_count"
    RECEIPT = "receipt"
    PRODUCTION_CONSUMPTION = "production_consumption"
    PRODUCTION_CREDIT = "production_credit"


class InventoryAdjustment(Base):
    __tablename__ = "inventory_adjustments"

    __table_args__ = (
        Index("idx_adjustments_entity", "entity_type", "entity_id", "occurred_at"),
    )

    # Allocated from SequenceService; total order of all adjustments.
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    adjustment_type: Mapped[str] = mapped_column(String(40), nullable=False)
    quantity_before: Mapped[Decimal] = mapped_column(nullable=False)
    quantity_after: Mapped[Decimal] = mapped_column(nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    production_request_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("production_requests.id"), nullable=True, index=True
    )

    @property
    def delta(self) -> Decimal:
        return self.quantity_after - self.quantity_before

    def to_dto(self) -> AdjustmentRecord:
        return AdjustmentRecord(
            id=self.id,
            sequence=self.sequence,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            adjustment_type=self.adjustment_type,
            quantity_before=self.quantity_before,
            quantity_after=self.quantity_after,
            reason=self.reason,
            actor_id=self.actor_id,
            occurred_at=self.occurred_at,
            production_request_id=self.production_request_id,
        )
