"""
AdjustmentService -- manual stock corrections, physical counts and receipts.

Every path locks the target row, validates the resulting quantity, and
writes through StockLedger, so each correction is audited exactly like a
production consumption.

    service.adjust_stock(StockEntityType.MATERIAL, leaf_id, Decimal("-2"), actor,
                         reason="water damage")
    service.set_physical_count(StockEntityType.MATERIAL, leaf_id, Decimal("41"), actor)
    service.receive_packages(leaf_id, 4, actor)   # 4 x PerUnit(2.5) -> +10
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from production_kernel.domain.actor import ActorContext, Operation
from production_kernel.domain.clock import Clock
from production_kernel.domain.dtos import AdjustmentRecord
from production_kernel.domain.packaging import total_quantity
from production_kernel.domain.quantity import exact_quantity
from production_kernel.exceptions import InvalidAdjustmentError, InvalidQuantityError
from production_kernel.logging_config import get_logger
from production_kernel.models.inventory_adjustment import AdjustmentType, StockEntityType
from production_kernel.services.base import ServiceSettings, TransactionalService
from production_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.adjustment")


class AdjustmentService(TransactionalService):
    """Manual stock corrections, physical counts and package receipts, each audited."""

    def __init__(
        self,
        session: Session,
        settings: ServiceSettings | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session, settings, clock)
        self._ledger = StockLedger(session, self._clock)

    def adjust_stock(
        self,
        entity_type: StockEntityType,
        entity_id: UUID,
        delta: Decimal,
        actor: ActorContext,
        reason: str | None = None,
        adjustment_type: AdjustmentType = AdjustmentType.MANUAL,
    ) -> AdjustmentRecord:
        """Add a signed ``delta``; refuses to go below zero."""
        self._authorize(actor, Operation.ADJUST_STOCK)
        delta = exact_quantity("delta", delta)
        if delta == 0:
            raise InvalidQuantityError("delta", delta, "must be non-zero")

        def work() -> AdjustmentRecord:
            row = self._ledger.lock(entity_type, [entity_id])[entity_id]
            after = row.stock + delta
            if after < 0:
                raise InvalidAdjustmentError(
                    entity_type.value, str(entity_id), row.stock, after
                )
            change = self._ledger.apply(
                entity_type, entity_id, delta, adjustment_type,
                actor_id=actor.actor_id, reason=reason,
            )
            logger.info(
                "stock_adjusted",
                extra={
                    "entity_type": entity_type.value,
                    "entity_id": str(entity_id),
                    "delta": str(delta),
                    "adjustment_type": adjustment_type.value,
                },
            )
            return change.adjustment.to_dto()

        return self._run_in_transaction("adjust_stock", actor, work)

    def set_physical_count(
        self,
        entity_type: StockEntityType,
        entity_id: UUID,
        counted: Decimal,
        actor: ActorContext,
        reason: str | None = None,
    ) -> AdjustmentRecord:
        """
        Replace stock with a counted quantity.

        A count that matches the book quantity is still recorded, as a
        zero-delta PHYSICAL_COUNT adjustment confirming it.
        """
        self._authorize(actor, Operation.ADJUST_STOCK)
        counted = exact_quantity("counted", counted)
        if counted < 0:
            raise InvalidQuantityError("counted", counted, "must not be negative")

        def work() -> AdjustmentRecord:
            row = self._ledger.lock(entity_type, [entity_id])[entity_id]
            change = self._ledger.apply(
                entity_type, entity_id, counted - row.stock,
                AdjustmentType.PHYSICAL_COUNT,
                actor_id=actor.actor_id, reason=reason,
            )
            logger.info(
                "physical_count_recorded",
                extra={
                    "entity_type": entity_type.value,
                    "entity_id": str(entity_id),
                    "quantity_before": str(change.quantity_before),
                    "counted": str(counted),
                },
            )
            return change.adjustment.to_dto()

        return self._run_in_transaction("set_physical_count", actor, work)

    def receive_packages(
        self,
        material_id: UUID,
        package_count: Decimal | int,
        actor: ActorContext,
        reason: str | None = None,
    ) -> AdjustmentRecord:
        """Receive ``package_count`` packages of a material, sized by its packaging."""
        self._authorize(actor, Operation.ADJUST_STOCK)
        package_count = exact_quantity("package_count", package_count)
        if package_count <= 0:
            raise InvalidQuantityError("package_count", package_count)

        def work() -> AdjustmentRecord:
            material = self._ledger.lock(StockEntityType.MATERIAL, [material_id])[material_id]
            quantity = total_quantity(material.packaging, package_count)
            change = self._ledger.apply(
                StockEntityType.MATERIAL, material_id, quantity,
                AdjustmentType.RECEIPT,
                actor_id=actor.actor_id, reason=reason,
            )
            logger.info(
                "packages_received",
                extra={
                    "material_id": str(material_id),
                    "package_count": str(package_count),
                    "packaging": material.packaging_kind,
                    "quantity": str(quantity),
                },
            )
            return change.adjustment.to_dto()

        return self._run_in_transaction("receive_packages", actor, work)
