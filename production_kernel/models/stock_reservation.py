"""StockReservation -- quantity of a product promised to an order or held manually."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, func, or_, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from production_kernel.db.base import Quantity, TrackedBase, UTCDateTime, UUIDString
from production_kernel.domain.dtos import ReservationRecord


class ReservationType(str, Enum):
    ORDER = "order"
    MANUAL = "manual"


class StockReservation(TrackedBase):
    __tablename__ = "stock_reservations"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
        Index("idx_reservations_product", "product_id"),
        Index("idx_reservations_order", "order_ref"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False
    )
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    reservation_type: Mapped[str] = mapped_column(String(20), nullable=False)
    order_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    order_line_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> ReservationRecord:
        return ReservationRecord(
            id=self.id,
            product_id=self.product_id,
            quantity=self.quantity,
            reservation_type=self.reservation_type,
            order_ref=self.order_ref,
            order_line_ref=self.order_line_ref,
            expires_at=self.expires_at,
            notes=self.notes,
            created_by_id=self.created_by_id,
        )


def active_reservations_clause(as_of: datetime):
    """Reservations not yet expired at ``as_of`` (open-ended ones included)."""
    return or_(
        StockReservation.expires_at.is_(None),
        StockReservation.expires_at > as_of,
    )


def reserved_quantity(session: Session, product_id: UUID, as_of: datetime) -> Decimal:
    """Sum of active reservations for a product (0 when none)."""
    total = session.execute(
        select(
            func.coalesce(func.sum(StockReservation.quantity), 0, type_=Quantity())
        ).where(
            StockReservation.product_id == product_id,
            active_reservations_clause(as_of),
        )
    ).scalar_one()
    return total if isinstance(total, Decimal) else Decimal(str(total))
