"""
ProductionRequest and MaterialConsumptionSnapshot.

A request owns one snapshot row per BOM line, written once at creation.
The snapshot records intent (how much will be consumed) and what stock
looked like at that instant; completion never reads
``quantity_available_at_request``.

Concurrency:
    ``version`` is SQLAlchemy's ``version_id_col``.  Every ORM UPDATE of a
    request is ``... WHERE id = ? AND version = ?``; a concurrent writer
    makes the second flush raise ``StaleDataError``, which the transaction
    runner treats as transient.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from production_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from production_kernel.domain.dtos import (
    ConsumptionSnapshotRecord,
    ProductionRequestRecord,
)


class RequestStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.COMPLETED, RequestStatus.CANCELLED)


class ProductionRequest(TrackedBase):
    __tablename__ = "production_requests"

    __table_args__ = (
        CheckConstraint("quantity_requested > 0", name="ck_request_quantity_positive"),
        Index("idx_requests_status", "status"),
        Index("idx_requests_product", "product_id"),
    )

    request_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False
    )
    quantity_requested: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RequestStatus.PENDING.value
    )
    requested_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    product: Mapped["Product"] = relationship()  # noqa: F821
    snapshots: Mapped[list["MaterialConsumptionSnapshot"]] = relationship(
        back_populates="request",
        order_by="MaterialConsumptionSnapshot.line_number",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def status_enum(self) -> RequestStatus:
        return RequestStatus(self.status)

    def to_dto(self) -> ProductionRequestRecord:
        return ProductionRequestRecord(
            id=self.id,
            request_number=self.request_number,
            product_id=self.product_id,
            product_name=self.product.name,
            quantity_requested=self.quantity_requested,
            status=self.status_enum.value,
            requested_by_id=self.requested_by_id,
            requested_at=self.requested_at,
            started_at=self.started_at,
            completed_by_id=self.completed_by_id,
            completed_at=self.completed_at,
            cancelled_at=self.cancelled_at,
            notes=self.notes,
            snapshots=tuple(s.to_dto() for s in self.snapshots),
        )

    def __repr__(self) -> str:
        return f"<ProductionRequest {self.request_number} {self.status}>"


class MaterialConsumptionSnapshot(Base):
    __tablename__ = "material_consumption_snapshots"

    __table_args__ = (
        UniqueConstraint("request_id", "material_id", name="uq_snapshot_request_material"),
        CheckConstraint("quantity_consumed > 0", name="ck_snapshot_quantity_positive"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("production_requests.id"), nullable=False, index=True
    )
    material_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("materials.id"), nullable=False, index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    material_name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit: Mapped[str | None] = mapped_column(String(20), nullable=True)
    quantity_consumed: Mapped[Decimal] = mapped_column(nullable=False)
    quantity_available_at_request: Mapped[Decimal] = mapped_column(nullable=False)

    request: Mapped[ProductionRequest] = relationship(back_populates="snapshots")

    def to_dto(self) -> ConsumptionSnapshotRecord:
        return ConsumptionSnapshotRecord(
            material_id=self.material_id,
            material_name=self.material_name,
            unit=self.unit,
            quantity_consumed=self.quantity_consumed,
            quantity_available_at_request=self.quantity_available_at_request,
        )
