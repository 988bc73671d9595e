"""
ProductionRequestService -- lifecycle of a production request.

Responsibility:
    Owns the request state machine

        pending --start--> in_progress
        pending | in_progress --complete--> completed   (terminal)
        pending | in_progress --cancel----> cancelled   (terminal)

    and the two availability checks around it:

    * create runs the checker against an unlocked snapshot read.  The
      result is advisory: a request is created even when stock is short,
      so production can be planned ahead of material receipts.
    * complete runs the same checker against material rows locked inside
      the completing transaction.  The result is binding: any shortage
      aborts the transaction before a single row is written.

Architecture position:
    Kernel > Services -- owns its transaction boundary (commit on success,
    rollback on failure, bounded replay on transient conflicts).

Invariants enforced:
    - A product without BOM lines cannot originate a request; nothing is
      persisted in that case.
    - Completion is all-or-nothing across every material, the product
      credit and the status change.
    - Two completions competing for the same material cannot both commit:
      material rows are locked (FOR UPDATE) before the binding check, and
      each decrement is a guarded conditional UPDATE.
    - Completing a completed request raises AlreadyCompletedError and
      writes nothing.

Failure modes:
    - ProductNotFoundError, NoBillOfMaterialsError, InvalidQuantityError
    - RequestNotFoundError, AlreadyCompletedError, RequestCompletedError,
      RequestCancelledError
    - InsufficientMaterialsError listing every short material
    - ForbiddenError
    - RetriesExhaustedError when conflicts persist

Audit relevance:
    Each consumed material and the product credit produce one
    InventoryAdjustment linked to the request id.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from production_kernel.domain.actor import ActorContext, Operation
from production_kernel.domain.availability import check_availability
from production_kernel.domain.bom import MaterialRequirement, expand
from production_kernel.domain.clock import Clock
from production_kernel.domain.dtos import CreatedRequest, ProductionRequestRecord
from production_kernel.domain.quantity import exact_quantity
from production_kernel.exceptions import (
    AlreadyCompletedError,
    InsufficientMaterialsError,
    ProductNotFoundError,
    RequestCancelledError,
    RequestCompletedError,
    RequestNotFoundError,
)
from production_kernel.logging_config import LogContext, get_logger
from production_kernel.models.bill_of_material import BillOfMaterialLine
from production_kernel.models.inventory_adjustment import AdjustmentType, StockEntityType
from production_kernel.models.material import Material
from production_kernel.models.product import Product
from production_kernel.models.production_request import (
    MaterialConsumptionSnapshot,
    ProductionRequest,
    RequestStatus,
)
from production_kernel.services.base import ServiceSettings, TransactionalService
from production_kernel.services.sequence_service import (
    SequenceService,
    format_request_number,
)
from production_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.production_request")


def _append_note(existing: str | None, note: str | None) -> str | None:
    if not note:
        return existing
    if not existing:
        return note
    return f"{existing}\n{note}"


class ProductionRequestService(TransactionalService):
    """
    Create, start, complete and cancel production requests.

    Contract:
        Every method takes an explicit ``ActorContext`` and returns frozen
        DTOs.  The session is committed on success and rolled back on any
        failure.

    Non-goals:
        - Partial fulfillment.  A request completes in full or not at all.
        - Re-notification when a short request becomes completable.
    """

    def __init__(
        self,
        session: Session,
        settings: ServiceSettings | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session, settings, clock)
        self._sequences = SequenceService(session)
        self._ledger = StockLedger(session, self._clock)

    # =========================================================================
    # Create
    # =========================================================================

    def create_request(
        self,
        product_id: UUID,
        quantity: Decimal,
        actor: ActorContext,
        notes: str | None = None,
    ) -> CreatedRequest:
        """
        Expand the BOM, snapshot availability and persist a pending request.

        Postconditions:
            - One snapshot row per BOM line, with quantity_consumed =
              quantity_per_unit * quantity and quantity_available_at_request
              = material stock as read during this call.
            - The returned ``availability`` report is advisory.
        """
        self._authorize(actor, Operation.CREATE_REQUEST)
        quantity = exact_quantity("quantity", quantity)

        def work() -> CreatedRequest:
            product = self.session.get(Product, product_id, populate_existing=True)
            if product is None:
                raise ProductNotFoundError(str(product_id))

            lines = self.session.execute(
                select(BillOfMaterialLine)
                .where(BillOfMaterialLine.product_id == product_id)
                .order_by(BillOfMaterialLine.created_at, BillOfMaterialLine.id)
            ).scalars().all()
            requirements = expand(
                product_id, [line.to_bom_line() for line in lines], quantity
            )

            # Advisory check: plain read, no locks.
            stock_by_material = dict(
                self.session.execute(
                    select(Material.id, Material.stock).where(
                        Material.id.in_([r.material_id for r in requirements])
                    )
                ).all()
            )
            report = check_availability(requirements, stock_by_material.__getitem__)

            number = format_request_number(
                self._sequences.next_value(SequenceService.PRODUCTION_REQUEST),
                self._settings.request_number_prefix,
                self._settings.request_number_width,
            )
            request = ProductionRequest(
                request_number=number,
                product_id=product_id,
                quantity_requested=quantity,
                status=RequestStatus.PENDING.value,
                requested_by_id=actor.actor_id,
                requested_at=self._clock.now(),
                notes=notes,
                created_by_id=actor.actor_id,
            )
            for line_number, requirement in enumerate(requirements, start=1):
                request.snapshots.append(
                    MaterialConsumptionSnapshot(
                        material_id=requirement.material_id,
                        material_name=requirement.material_name,
                        unit=requirement.unit,
                        line_number=line_number,
                        quantity_consumed=requirement.quantity_required,
                        quantity_available_at_request=report.for_material(
                            requirement.material_id
                        ).available,
                    )
                )
            self.session.add(request)
            self.session.flush()

            extra = {
                "request_id": str(request.id),
                "request_number": number,
                "product_id": str(product_id),
                "quantity_requested": str(quantity),
                "material_count": len(requirements),
                "sufficient_at_request": report.sufficient,
            }
            if report.sufficient:
                logger.info("production_request_created", extra=extra)
            else:
                logger.warning(
                    "production_request_created_with_shortages",
                    extra={
                        **extra,
                        "shortages": [s.to_dict() for s in report.shortages],
                    },
                )
            return CreatedRequest(request=request.to_dto(), availability=report)

        return self._run_in_transaction("create_request", actor, work)

    # =========================================================================
    # Start
    # =========================================================================

    def start_request(self, request_id: UUID, actor: ActorContext) -> ProductionRequestRecord:
        """
        Mark a pending request in_progress.  Workflow marker only.

        Starting a request that is already in_progress returns it unchanged.
        """
        self._authorize(actor, Operation.START_REQUEST)

        def work() -> ProductionRequestRecord:
            request = self._load_for_update(request_id)
            status = request.status_enum
            if status is RequestStatus.COMPLETED:
                raise RequestCompletedError(str(request_id), "start")
            if status is RequestStatus.CANCELLED:
                raise RequestCancelledError(str(request_id), "start")
            if status is RequestStatus.IN_PROGRESS:
                logger.info(
                    "production_request_already_started",
                    extra={"request_id": str(request_id)},
                )
                return request.to_dto()

            request.status = RequestStatus.IN_PROGRESS.value
            request.started_at = self._clock.now()
            request.updated_by_id = actor.actor_id
            self.session.flush()
            logger.info(
                "production_request_started",
                extra={
                    "request_id": str(request_id),
                    "request_number": request.request_number,
                },
            )
            return request.to_dto()

        with LogContext.bind(request_id=str(request_id)):
            return self._run_in_transaction("start_request", actor, work)

    # =========================================================================
    # Complete
    # =========================================================================

    def complete_request(
        self,
        request_id: UUID,
        actor: ActorContext,
        notes: str | None = None,
    ) -> ProductionRequestRecord:
        """
        Consume materials, credit the product and close the request.

        Steps, in one transaction:
            1. Lock and re-read the request; reject terminal states.
            2. Lock every consumed material (id order) and the product.
            3. Binding availability check against the locked rows.
            4. Guarded decrement per material, credit the product; each
               write is audited.
            5. Mark completed.

        Raises:
            InsufficientMaterialsError: with every short material; nothing
                is written.
        """
        self._authorize(actor, Operation.COMPLETE_REQUEST)

        def work() -> ProductionRequestRecord:
            request = self._load_for_update(request_id)
            status = request.status_enum
            if status is RequestStatus.COMPLETED:
                raise AlreadyCompletedError(str(request_id))
            if status is RequestStatus.CANCELLED:
                raise RequestCancelledError(str(request_id), "complete")

            snapshots = list(request.snapshots)
            materials = self._ledger.lock(
                StockEntityType.MATERIAL, [s.material_id for s in snapshots]
            )
            self._ledger.lock(StockEntityType.PRODUCT, [request.product_id])

            requirements = [
                MaterialRequirement(
                    material_id=s.material_id,
                    material_name=s.material_name,
                    quantity_required=s.quantity_consumed,
                    unit=s.unit,
                )
                for s in snapshots
            ]
            # Binding check: live stock from the rows locked above.
            report = check_availability(
                requirements, lambda material_id: materials[material_id].stock
            )
            if not report.sufficient:
                logger.warning(
                    "production_request_insufficient_materials",
                    extra={
                        "request_id": str(request_id),
                        "shortages": [s.to_dict() for s in report.shortages],
                    },
                )
                raise InsufficientMaterialsError(str(request_id), report.shortages)

            reason = f"Production request {request.request_number}"
            for snapshot in snapshots:
                self._ledger.apply(
                    StockEntityType.MATERIAL,
                    snapshot.material_id,
                    -snapshot.quantity_consumed,
                    AdjustmentType.PRODUCTION_CONSUMPTION,
                    actor_id=actor.actor_id,
                    reason=reason,
                    production_request_id=request.id,
                )
            credit = self._ledger.apply(
                StockEntityType.PRODUCT,
                request.product_id,
                request.quantity_requested,
                AdjustmentType.PRODUCTION_CREDIT,
                actor_id=actor.actor_id,
                reason=reason,
                production_request_id=request.id,
            )

            request.status = RequestStatus.COMPLETED.value
            request.completed_at = self._clock.now()
            request.completed_by_id = actor.actor_id
            request.updated_by_id = actor.actor_id
            request.notes = _append_note(request.notes, notes)
            self.session.flush()

            logger.info(
                "production_request_completed",
                extra={
                    "request_id": str(request_id),
                    "request_number": request.request_number,
                    "materials_consumed": len(snapshots),
                    "product_id": str(request.product_id),
                    "product_stock_after": str(credit.quantity_after),
                },
            )
            return request.to_dto()

        with LogContext.bind(request_id=str(request_id)):
            return self._run_in_transaction("complete_request", actor, work)

    # =========================================================================
    # Cancel
    # =========================================================================

    def cancel_request(
        self,
        request_id: UUID,
        actor: ActorContext,
        reason: str | None = None,
    ) -> ProductionRequestRecord:
        """Mark a non-terminal request cancelled.  No inventory effect."""
        self._authorize(actor, Operation.CANCEL_REQUEST)

        def work() -> ProductionRequestRecord:
            request = self._load_for_update(request_id)
            status = request.status_enum
            if status is RequestStatus.COMPLETED:
                raise RequestCompletedError(str(request_id), "cancel")
            if status is RequestStatus.CANCELLED:
                raise RequestCancelledError(str(request_id), "cancel")

            request.status = RequestStatus.CANCELLED.value
            request.cancelled_at = self._clock.now()
            request.updated_by_id = actor.actor_id
            request.notes = _append_note(request.notes, reason)
            self.session.flush()
            logger.info(
                "production_request_cancelled",
                extra={
                    "request_id": str(request_id),
                    "request_number": request.request_number,
                    "previous_status": status.value,
                },
            )
            return request.to_dto()

        with LogContext.bind(request_id=str(request_id)):
            return self._run_in_transaction("cancel_request", actor, work)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _load_for_update(self, request_id: UUID) -> ProductionRequest:
        request = self.session.execute(
            select(ProductionRequest)
            .where(ProductionRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if request is None:
            raise RequestNotFoundError(str(request_id))
        return request
