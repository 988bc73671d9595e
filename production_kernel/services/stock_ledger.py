"""
StockLedger -- the only writer of Material.stock and Product.stock.

Responsibility:
    Applies signed stock deltas with a conditional UPDATE and records an
    InventoryAdjustment for each one through the AuditRecorder.

        UPDATE materials SET stock = stock + :delta
        WHERE id = :id AND stock >= :required

    The row count is checked: zero rows with the row still present means
    another transaction consumed the stock between our read and our write,
    and ``StockConflictError`` (transient) is raised so the owning service
    replays the whole unit of work, including its availability check.

Architecture position:
    Kernel > Services -- flush-only.  Used by ProductionRequestService,
    AdjustmentService and CatalogService.

Invariants enforced:
    - Stock never goes negative through this path (and a CHECK constraint
      backs it at the database).
    - Every applied delta has exactly one adjustment record.
    - Rows are locked in ascending id order to keep lock acquisition
      deadlock-free across concurrent writers.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.exceptions import (
    MaterialNotFoundError,
    ProductNotFoundError,
    StockConflictError,
)
from production_kernel.logging_config import get_logger
from production_kernel.models.inventory_adjustment import (
    AdjustmentType,
    InventoryAdjustment,
    StockEntityType,
)
from production_kernel.models.material import Material
from production_kernel.models.product import Product
from production_kernel.services.audit_recorder import AuditRecorder
from production_kernel.services.base import BaseService

logger = get_logger("services.stock_ledger")

_MODELS: dict[StockEntityType, type[Material] | type[Product]] = {
    StockEntityType.MATERIAL: Material,
    StockEntityType.PRODUCT: Product,
}


def _not_found(entity_type: StockEntityType, entity_id: UUID) -> Exception:
    if entity_type is StockEntityType.MATERIAL:
        return MaterialNotFoundError(str(entity_id))
    return ProductNotFoundError(str(entity_id))


@dataclass(frozen=True)
class StockChange:
    entity_type: StockEntityType
    entity_id: UUID
    quantity_before: Decimal
    quantity_after: Decimal
    adjustment: InventoryAdjustment


class StockLedger(BaseService):
    """
    Conditional stock writes plus their audit records.

    Non-goals:
        - Business validation (negative adjustments, shortages).  Callers
          check first and report their own typed errors; the conditional
          guard here is the last line against races, not the first.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        recorder: AuditRecorder | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._recorder = recorder or AuditRecorder(session)

    def lock(
        self,
        entity_type: StockEntityType,
        entity_ids: Iterable[UUID],
    ) -> dict[UUID, Material | Product]:
        """
        ``SELECT ... FOR UPDATE`` the given rows in id order and return them
        freshly loaded.  Raises the matching NotFound error for the first
        missing id.
        """
        model = _MODELS[entity_type]
        wanted = sorted(set(entity_ids), key=str)
        rows = self.session.execute(
            select(model)
            .where(model.id.in_(wanted))
            .order_by(model.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        found = {row.id: row for row in rows}
        for entity_id in wanted:
            if entity_id not in found:
                raise _not_found(entity_type, entity_id)
        return found

    def current(self, entity_type: StockEntityType, entity_id: UUID) -> Decimal:
        model = _MODELS[entity_type]
        value = self.session.execute(
            select(model.stock).where(model.id == entity_id)
        ).scalar_one_or_none()
        if value is None:
            raise _not_found(entity_type, entity_id)
        return value

    def apply(
        self,
        entity_type: StockEntityType,
        entity_id: UUID,
        delta: Decimal,
        adjustment_type: AdjustmentType,
        actor_id: UUID,
        reason: str | None = None,
        production_request_id: UUID | None = None,
    ) -> StockChange:
        """
        Add ``delta`` (may be negative) to the entity's stock and record it.

        Raises:
            MaterialNotFoundError / ProductNotFoundError: no such row.
            StockConflictError: the guarded decrement matched zero rows.
        """
        model = _MODELS[entity_type]
        stmt = update(model).where(model.id == entity_id)
        if delta < 0:
            stmt = stmt.where(model.stock >= -delta)
        stmt = stmt.values(stock=model.stock + delta).execution_options(
            synchronize_session=False
        )

        result = self.session.execute(stmt)
        if result.rowcount != 1:
            exists = self.session.execute(
                select(model.id).where(model.id == entity_id)
            ).first()
            if exists is None:
                raise _not_found(entity_type, entity_id)
            logger.warning(
                "stock_conflict",
                extra={
                    "entity_type": entity_type.value,
                    "entity_id": str(entity_id),
                    "delta": str(delta),
                },
            )
            raise StockConflictError(entity_type.value, str(entity_id), delta)

        # Re-read through the identity map so loaded instances see the new value.
        row = self.session.execute(
            select(model)
            .where(model.id == entity_id)
            .execution_options(populate_existing=True)
        ).scalar_one()
        after = row.stock
        before = after - delta

        adjustment = self._recorder.record(
            entity_type=entity_type,
            entity_id=entity_id,
            adjustment_type=adjustment_type,
            quantity_before=before,
            quantity_after=after,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            reason=reason,
            production_request_id=production_request_id,
        )
        return StockChange(
            entity_type=entity_type,
            entity_id=entity_id,
            quantity_before=before,
            quantity_after=after,
            adjustment=adjustment,
        )
