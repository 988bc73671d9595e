"""
AuditRecorder -- appends one InventoryAdjustment per stock mutation.

Responsibility:
    Writes the before/after record for every stock change, synchronously,
    inside the transaction that performs the change.  A committed
    adjustment row is therefore proof that the mutation it describes
    committed, and vice versa.

Architecture position:
    Kernel > Services -- flush-only.  Called exclusively by StockLedger.

Failure modes:
    - Any flush error propagates to the caller, whose transaction then
      rolls back together with the stock change.  Nothing is swallowed.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from production_kernel.logging_config import get_logger
from production_kernel.models.inventory_adjustment import (
    AdjustmentType,
    InventoryAdjustment,
    StockEntityType,
)
from production_kernel.services.base import BaseService
from production_kernel.services.sequence_service import SequenceService

logger = get_logger("services.audit")


class AuditRecorder(BaseService):

    def __init__(self, session: Session, sequences: SequenceService | None = None):
        super().__init__(session)
        self._sequences = sequences or SequenceService(session)

    def record(
        self,
        entity_type: StockEntityType,
        entity_id: UUID,
        adjustment_type: AdjustmentType,
        quantity_before: Decimal,
        quantity_after: Decimal,
        actor_id: UUID,
        occurred_at: datetime,
        reason: str | None = None,
        production_request_id: UUID | None = None,
    ) -> InventoryAdjustment:
        adjustment = InventoryAdjustment(
            sequence=self._sequences.next_value(SequenceService.INVENTORY_ADJUSTMENT),
            entity_type=entity_type.value,
            entity_id=entity_id,
            adjustment_type=adjustment_type.value,
            quantity_before=quantity_before,
            quantity_after=quantity_after,
            reason=reason,
            actor_id=actor_id,
            occurred_at=occurred_at,
            production_request_id=production_request_id,
        )
        self.session.add(adjustment)
        self.session.flush()

        logger.info(
            "inventory_adjustment_recorded",
            extra={
                "adjustment_id": str(adjustment.id),
                "entity_type": entity_type.value,
                "entity_id": str(entity_id),
                "adjustment_type": adjustment_type.value,
                "quantity_before": str(quantity_before),
                "quantity_after": str(quantity_after),
                "production_request_id": (
                    str(production_request_id) if production_request_id else None
                ),
            },
        )
        return adjustment
