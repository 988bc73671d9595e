"""
DTOs -- Immutable records returned by services and selectors.

Responsibility:
    Services and selectors never hand ORM instances to callers.  Every
    public result is one of the frozen dataclasses below, built by the
    model's ``to_dto()`` while the session is still open.

Architecture position:
    Kernel > Domain -- pure, no I/O.  Models import this module; this module
    imports nothing from models/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from production_kernel.domain.availability import AvailabilityReport
from production_kernel.domain.packaging import Packaging


@dataclass(frozen=True)
class MaterialRecord:
    id: UUID
    name: str
    category: str | None
    unit: str
    stock: Decimal
    reorder_threshold: Decimal
    packaging: Packaging

    @property
    def is_low_stock(self) -> bool:
        return self.stock < self.reorder_threshold


@dataclass(frozen=True)
class ProductRecord:
    id: UUID
    sku: str
    name: str
    stock: Decimal
    reorder_threshold: Decimal

    @property
    def is_low_stock(self) -> bool:
        return self.stock < self.reorder_threshold


@dataclass(frozen=True)
class BomLineRecord:
    id: UUID
    product_id: UUID
    material_id: UUID
    material_name: str
    quantity_per_unit: Decimal
    unit: str | None


@dataclass(frozen=True)
class ConsumptionSnapshotRecord:
    material_id: UUID
    material_name: str
    unit: str | None
    quantity_consumed: Decimal
    quantity_available_at_request: Decimal

    @property
    def sufficient_at_request(self) -> bool:
        return self.quantity_available_at_request >= self.quantity_consumed


@dataclass(frozen=True)
class ProductionRequestRecord:
    """
    A production request as seen by callers.

    ``snapshots`` is the creation-time record; it does not reflect current
    stock.  Use ``InventorySelector.request_availability`` for a live view.
    """

    id: UUID
    request_number: str
    product_id: UUID
    product_name: str
    quantity_requested: Decimal
    status: str
    requested_by_id: UUID
    requested_at: datetime
    started_at: datetime | None
    completed_by_id: UUID | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    notes: str | None
    snapshots: tuple[ConsumptionSnapshotRecord, ...]

    @property
    def sufficient_at_request(self) -> bool:
        return all(s.sufficient_at_request for s in self.snapshots)

    def snapshot_for(self, material_id: UUID) -> ConsumptionSnapshotRecord:
        for s in self.snapshots:
            if s.material_id == material_id:
                return s
        raise KeyError(material_id)


@dataclass(frozen=True)
class CreatedRequest:
    """Result of creating a request: the record plus the advisory report."""

    request: ProductionRequestRecord
    availability: AvailabilityReport


@dataclass(frozen=True)
class AdjustmentRecord:
    id: UUID
    sequence: int
    entity_type: str
    entity_id: UUID
    adjustment_type: str
    quantity_before: Decimal
    quantity_after: Decimal
    reason: str | None
    actor_id: UUID
    occurred_at: datetime
    production_request_id: UUID | None

    @property
    def delta(self) -> Decimal:
        return self.quantity_after - self.quantity_before


@dataclass(frozen=True)
class ReservationRecord:
    id: UUID
    product_id: UUID
    quantity: Decimal
    reservation_type: str
    order_ref: str | None
    order_line_ref: str | None
    expires_at: datetime | None
    notes: str | None
    created_by_id: UUID


@dataclass(frozen=True)
class LowStockItem:
    entity_type: str
    entity_id: UUID
    name: str
    stock: Decimal
    reorder_threshold: Decimal

    @property
    def deficit(self) -> Decimal:
        return self.reorder_threshold - self.stock


@dataclass(frozen=True)
class RequestAvailability:
    """A request paired with a live (unlocked, possibly stale) availability report."""

    request: ProductionRequestRecord
    availability: AvailabilityReport

    @property
    def can_complete(self) -> bool:
        return (
            self.request.status in ("pending", "in_progress")
            and self.availability.sufficient
        )
