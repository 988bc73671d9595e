"""
Module: production_kernel.selectors.inventory_selector
Responsibility: Read-only queries over the catalog, production requests,
    the adjustment trail and reservations.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ and selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - Read-only: no add, delete, flush or commit.
    - Every public method returns DTOs.
    - Adjustment history is ordered by its global sequence, so it replays
      in the order the changes were committed.

Failure modes:
    - get_* methods return None for an unknown id; list methods return an
      empty tuple.  request_availability raises RequestNotFoundError since
      there is nothing to report on.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from production_kernel.domain.availability import check_availability
from production_kernel.domain.bom import MaterialRequirement
from production_kernel.domain.dtos import (
    AdjustmentRecord,
    BomLineRecord,
    LowStockItem,
    MaterialRecord,
    ProductionRequestRecord,
    ProductRecord,
    RequestAvailability,
    ReservationRecord,
)
from production_kernel.exceptions import RequestNotFoundError
from production_kernel.models.bill_of_material import BillOfMaterialLine
from production_kernel.models.inventory_adjustment import (
    InventoryAdjustment,
    StockEntityType,
)
from production_kernel.models.material import Material
from production_kernel.models.product import Product
from production_kernel.models.production_request import (
    ProductionRequest,
    RequestStatus,
)
from production_kernel.models.stock_reservation import (
    StockReservation,
    active_reservations_clause,
    reserved_quantity,
)
from production_kernel.selectors.base import BaseSelector


class InventorySelector(BaseSelector):
    """
    Selector for inventory and production queries.

    Guarantees:
        - Availability figures are computed from a plain read at call time.
          They are a view for planning, never a promise; completion and
          reservation re-check under lock.

    Non-goals:
        - Pagination.  Callers filter by product or status instead.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    # =========================================================================
    # Catalog
    # =========================================================================

    def get_material(self, material_id: UUID) -> MaterialRecord | None:
        material = self.session.get(Material, material_id)
        return material.to_dto() if material is not None else None

    def get_product(self, product_id: UUID) -> ProductRecord | None:
        product = self.session.get(Product, product_id)
        return product.to_dto() if product is not None else None

    def list_materials(self, category: str | None = None) -> tuple[MaterialRecord, ...]:
        stmt = select(Material).order_by(Material.name)
        if category is not None:
            stmt = stmt.where(Material.category == category)
        return tuple(m.to_dto() for m in self.session.execute(stmt).scalars())

    def list_products(self) -> tuple[ProductRecord, ...]:
        stmt = select(Product).order_by(Product.sku)
        return tuple(p.to_dto() for p in self.session.execute(stmt).scalars())

    def bom_for_product(self, product_id: UUID) -> tuple[BomLineRecord, ...]:
        """BOM lines in the order a request would expand them."""
        stmt = (
            select(BillOfMaterialLine)
            .where(BillOfMaterialLine.product_id == product_id)
            .order_by(BillOfMaterialLine.created_at, BillOfMaterialLine.id)
        )
        return tuple(line.to_dto() for line in self.session.execute(stmt).scalars())

    # =========================================================================
    # Production requests
    # =========================================================================

    def get_request(self, request_id: UUID) -> ProductionRequestRecord | None:
        request = self.session.get(ProductionRequest, request_id)
        return request.to_dto() if request is not None else None

    def get_request_by_number(self, request_number: str) -> ProductionRequestRecord | None:
        request = self.session.execute(
            select(ProductionRequest).where(
                ProductionRequest.request_number == request_number
            )
        ).scalar_one_or_none()
        return request.to_dto() if request is not None else None

    def list_requests(
        self,
        status: RequestStatus | None = None,
        product_id: UUID | None = None,
    ) -> tuple[ProductionRequestRecord, ...]:
        """Requests newest first, optionally filtered."""
        stmt = (
            select(ProductionRequest)
            .options(
                selectinload(ProductionRequest.snapshots),
                selectinload(ProductionRequest.product),
            )
            .order_by(ProductionRequest.requested_at.desc(), ProductionRequest.request_number.desc())
        )
        if status is not None:
            stmt = stmt.where(ProductionRequest.status == RequestStatus(status).value)
        if product_id is not None:
            stmt = stmt.where(ProductionRequest.product_id == product_id)
        return tuple(r.to_dto() for r in self.session.execute(stmt).scalars())

    def request_availability(self, request_id: UUID) -> RequestAvailability:
        """
        Re-check a request's snapshot against current stock.

        The report uses the snapshot quantities, which are what completion
        will consume, and today's unlocked stock.

        Raises:
            RequestNotFoundError: unknown request_id.
        """
        request = self.session.get(ProductionRequest, request_id)
        if request is None:
            raise RequestNotFoundError(str(request_id))
        return self._with_live_availability(request)

    def list_requests_with_availability(
        self,
        status: RequestStatus | None = None,
        product_id: UUID | None = None,
    ) -> tuple[RequestAvailability, ...]:
        stmt = (
            select(ProductionRequest)
            .options(selectinload(ProductionRequest.snapshots))
            .order_by(ProductionRequest.requested_at.desc(), ProductionRequest.request_number.desc())
        )
        if status is not None:
            stmt = stmt.where(ProductionRequest.status == RequestStatus(status).value)
        if product_id is not None:
            stmt = stmt.where(ProductionRequest.product_id == product_id)
        requests = self.session.execute(stmt).scalars().all()

        material_ids = {s.material_id for r in requests for s in r.snapshots}
        stock = self._material_stock(material_ids)
        return tuple(self._with_live_availability(r, stock) for r in requests)

    def _material_stock(self, material_ids) -> dict[UUID, Decimal]:
        if not material_ids:
            return {}
        return dict(
            self.session.execute(
                select(Material.id, Material.stock).where(
                    Material.id.in_(list(material_ids))
                )
            ).all()
        )

    def _with_live_availability(
        self,
        request: ProductionRequest,
        stock: dict[UUID, Decimal] | None = None,
    ) -> RequestAvailability:
        requirements = [
            MaterialRequirement(
                material_id=s.material_id,
                material_name=s.material_name,
                quantity_required=s.quantity_consumed,
                unit=s.unit,
            )
            for s in request.snapshots
        ]
        if stock is None:
            stock = self._material_stock({r.material_id for r in requirements})
        report = check_availability(
            requirements, lambda material_id: stock.get(material_id, Decimal("0"))
        )
        return RequestAvailability(request=request.to_dto(), availability=report)

    # =========================================================================
    # Adjustment trail
    # =========================================================================

    def adjustment_history(
        self,
        entity_type: StockEntityType,
        entity_id: UUID,
    ) -> tuple[AdjustmentRecord, ...]:
        stmt = (
            select(InventoryAdjustment)
            .where(
                InventoryAdjustment.entity_type == StockEntityType(entity_type).value,
                InventoryAdjustment.entity_id == entity_id,
            )
            .order_by(InventoryAdjustment.sequence)
        )
        return tuple(a.to_dto() for a in self.session.execute(stmt).scalars())

    def adjustments_for_request(self, request_id: UUID) -> tuple[AdjustmentRecord, ...]:
        """Consumptions and the product credit booked by a completed request."""
        stmt = (
            select(InventoryAdjustment)
            .where(InventoryAdjustment.production_request_id == request_id)
            .order_by(InventoryAdjustment.sequence)
        )
        return tuple(a.to_dto() for a in self.session.execute(stmt).scalars())

    # =========================================================================
    # Low stock
    # =========================================================================

    def low_stock_materials(self) -> tuple[LowStockItem, ...]:
        rows = self.session.execute(
            select(Material).where(Material.stock < Material.reorder_threshold)
        ).scalars()
        return self._by_deficit(
            LowStockItem(
                entity_type=StockEntityType.MATERIAL.value,
                entity_id=m.id,
                name=m.name,
                stock=m.stock,
                reorder_threshold=m.reorder_threshold,
            )
            for m in rows
        )

    def low_stock_products(self) -> tuple[LowStockItem, ...]:
        rows = self.session.execute(
            select(Product).where(Product.stock < Product.reorder_threshold)
        ).scalars()
        return self._by_deficit(
            LowStockItem(
                entity_type=StockEntityType.PRODUCT.value,
                entity_id=p.id,
                name=p.name,
                stock=p.stock,
                reorder_threshold=p.reorder_threshold,
            )
            for p in rows
        )

    @staticmethod
    def _by_deficit(items) -> tuple[LowStockItem, ...]:
        return tuple(sorted(items, key=lambda i: (-i.deficit, i.name)))

    # =========================================================================
    # Reservations
    # =========================================================================

    def reservations_for_product(
        self,
        product_id: UUID,
        as_of: datetime,
        active_only: bool = True,
    ) -> tuple[ReservationRecord, ...]:
        stmt = (
            select(StockReservation)
            .where(StockReservation.product_id == product_id)
            .order_by(StockReservation.created_at, StockReservation.id)
        )
        if active_only:
            stmt = stmt.where(active_reservations_clause(as_of))
        return tuple(r.to_dto() for r in self.session.execute(stmt).scalars())

    def reservations_for_order(self, order_ref: str) -> tuple[ReservationRecord, ...]:
        stmt = (
            select(StockReservation)
            .where(StockReservation.order_ref == order_ref)
            .order_by(StockReservation.order_line_ref, StockReservation.id)
        )
        return tuple(r.to_dto() for r in self.session.execute(stmt).scalars())

    def available_to_promise(self, product_id: UUID, as_of: datetime) -> Decimal | None:
        """Stock minus active reservations; None for an unknown product."""
        stock = self.session.execute(
            select(Product.stock).where(Product.id == product_id)
        ).scalar_one_or_none()
        if stock is None:
            return None
        return stock - reserved_quantity(self.session, product_id, as_of)
