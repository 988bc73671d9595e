"""
ReservationService -- available-to-promise accounting for products.

Responsibility:
    Maintains StockReservation rows and decides whether a new promise fits:

        ATP(product) = product.stock - sum(active reservations)

    A reservation is active until it is released (deleted) or its
    ``expires_at`` passes.  Reservations never touch ``Product.stock``;
    they only shape what may still be promised.

Architecture position:
    Kernel > Services -- owns its transaction boundary.

Invariants enforced:
    - Reserve commits only if the quantity still fits ATP, computed after
      locking the product row (FOR UPDATE), so two reservations racing for
      the last units serialize on that lock.
    - An order is reserved all-or-nothing.
    - Release only ever increases ATP and needs no stock check.

Failure modes:
    - ProductNotFoundError, InsufficientStockError, OrderNotReservableError,
      ReservationNotFoundError, InvalidQuantityError, ForbiddenError.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.orm import Session

from production_kernel.domain.actor import ActorContext, Operation
from production_kernel.domain.clock import Clock
from production_kernel.domain.dtos import ReservationRecord
from production_kernel.domain.quantity import exact_quantity
from production_kernel.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    OrderNotReservableError,
    ReservationNotFoundError,
    StockShortage,
)
from production_kernel.logging_config import get_logger
from production_kernel.models.inventory_adjustment import StockEntityType
from production_kernel.models.stock_reservation import (
    ReservationType,
    StockReservation,
    reserved_quantity,
)
from production_kernel.services.base import ServiceSettings, TransactionalService
from production_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.reservation")


@dataclass(frozen=True)
class OrderLine:
    """One line of an external sales order to reserve for."""

    product_id: UUID
    quantity: Decimal
    order_line_ref: str | None = None


class ReservationService(TransactionalService):
    """
    Reserve, release and purge product reservations.

    Contract:
        Every mutating method takes an explicit ``ActorContext`` and returns
        frozen DTOs or counts.  ``reserve`` and ``reserve_order`` lock the
        product rows before computing ATP, so the check and the insert
        happen under the same lock.

    Non-goals:
        - Touching ``Product.stock``.  Reservations only shape what may be
          promised; stock moves through production and adjustments.
        - Partial order reservation.  An order is reserved whole or not at all.
    """

    def __init__(
        self,
        session: Session,
        settings: ServiceSettings | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session, settings, clock)
        self._ledger = StockLedger(session, self._clock)

    def available_to_promise(self, product_id: UUID) -> Decimal:
        """Current ATP for a product; may be negative after a stock write-down."""

        def work() -> Decimal:
            stock = self._ledger.current(StockEntityType.PRODUCT, product_id)
            return stock - reserved_quantity(self.session, product_id, self._clock.now())

        return self._run_in_transaction("available_to_promise", None, work)

    def reserve(
        self,
        product_id: UUID,
        quantity: Decimal,
        actor: ActorContext,
        reservation_type: ReservationType = ReservationType.MANUAL,
        order_ref: str | None = None,
        order_line_ref: str | None = None,
        expires_at: datetime | None = None,
        notes: str | None = None,
    ) -> ReservationRecord:
        """
        Reserve ``quantity`` of a product if it fits ATP.

        Manual reservations without an explicit ``expires_at`` expire after
        ``settings.manual_reservation_expiry_hours``; order reservations do
        not expire unless told to.
        """
        self._authorize(actor, Operation.RESERVE)
        quantity = exact_quantity("quantity", quantity)
        if quantity <= 0:
            raise InvalidQuantityError("quantity", quantity)

        def work() -> ReservationRecord:
            product = self._ledger.lock(StockEntityType.PRODUCT, [product_id])[product_id]
            now = self._clock.now()
            atp = product.stock - reserved_quantity(self.session, product_id, now)
            if quantity > atp:
                logger.warning(
                    "reservation_rejected",
                    extra={
                        "product_id": str(product_id),
                        "requested": str(quantity),
                        "available": str(atp),
                    },
                )
                raise InsufficientStockError(
                    str(product_id), quantity, max(atp, Decimal("0"))
                )

            reservation = self._new_reservation(
                product_id, quantity, actor, reservation_type,
                order_ref, order_line_ref, expires_at, notes, now,
            )
            logger.info(
                "reservation_created",
                extra={
                    "reservation_id": str(reservation.id),
                    "product_id": str(product_id),
                    "quantity": str(quantity),
                    "reservation_type": reservation.reservation_type,
                    "atp_after": str(atp - quantity),
                },
            )
            return reservation.to_dto()

        return self._run_in_transaction("reserve", actor, work)

    def reserve_order(
        self,
        order_ref: str,
        lines: Sequence[OrderLine],
        actor: ActorContext,
        notes: str | None = None,
    ) -> tuple[ReservationRecord, ...]:
        """
        Reserve every line of an order, or none of them.

        Raises:
            OrderNotReservableError: listing every product whose summed
                line quantity exceeds its ATP.
        """
        self._authorize(actor, Operation.RESERVE)
        lines = [
            replace(line, quantity=exact_quantity("quantity", line.quantity))
            for line in lines
        ]
        for line in lines:
            if line.quantity <= 0:
                raise InvalidQuantityError("quantity", line.quantity)

        def work() -> tuple[ReservationRecord, ...]:
            demand: dict[UUID, Decimal] = defaultdict(Decimal)
            for line in lines:
                demand[line.product_id] += line.quantity
            products = self._ledger.lock(StockEntityType.PRODUCT, demand.keys())
            now = self._clock.now()

            shortages = []
            for product_id in sorted(demand, key=str):
                atp = products[product_id].stock - reserved_quantity(
                    self.session, product_id, now
                )
                if demand[product_id] > atp:
                    shortages.append(
                        StockShortage(
                            product_id=str(product_id),
                            requested=demand[product_id],
                            available=max(atp, Decimal("0")),
                        )
                    )
            if shortages:
                logger.warning(
                    "order_reservation_rejected",
                    extra={"order_ref": order_ref, "short_lines": len(shortages)},
                )
                raise OrderNotReservableError(order_ref, shortages)

            records = tuple(
                self._new_reservation(
                    line.product_id, line.quantity, actor, ReservationType.ORDER,
                    order_ref, line.order_line_ref, None, notes, now,
                ).to_dto()
                for line in lines
            )
            logger.info(
                "order_reserved",
                extra={"order_ref": order_ref, "lines": len(records)},
            )
            return records

        return self._run_in_transaction("reserve_order", actor, work)

    def release(self, reservation_id: UUID, actor: ActorContext) -> ReservationRecord:
        """Delete a reservation.  Returns what was released."""
        self._authorize(actor, Operation.RELEASE)

        def work() -> ReservationRecord:
            reservation = self.session.get(StockReservation, reservation_id)
            if reservation is None:
                raise ReservationNotFoundError(str(reservation_id))
            record = reservation.to_dto()
            self.session.delete(reservation)
            self.session.flush()
            logger.info(
                "reservation_released",
                extra={
                    "reservation_id": str(reservation_id),
                    "product_id": str(record.product_id),
                    "quantity": str(record.quantity),
                },
            )
            return record

        return self._run_in_transaction("release", actor, work)

    def release_order(
        self,
        order_ref: str,
        actor: ActorContext,
        order_line_refs: Sequence[str] | None = None,
    ) -> int:
        """
        Release every reservation of an order (or only the given lines).

        Idempotent: releasing an order with nothing reserved returns 0.
        """
        self._authorize(actor, Operation.RELEASE)

        def work() -> int:
            stmt = delete(StockReservation).where(StockReservation.order_ref == order_ref)
            if order_line_refs is not None:
                stmt = stmt.where(StockReservation.order_line_ref.in_(list(order_line_refs)))
            released = self.session.execute(
                stmt.execution_options(synchronize_session=False)
            ).rowcount
            logger.info(
                "order_reservations_released",
                extra={"order_ref": order_ref, "released": released},
            )
            return released

        return self._run_in_transaction("release_order", actor, work)

    def purge_expired(self, actor: ActorContext) -> int:
        """Delete reservations whose expiry has passed."""
        self._authorize(actor, Operation.RELEASE)

        def work() -> int:
            purged = self.session.execute(
                delete(StockReservation)
                .where(StockReservation.expires_at <= self._clock.now())
                .execution_options(synchronize_session=False)
            ).rowcount
            if purged:
                logger.info("expired_reservations_purged", extra={"purged": purged})
            return purged

        return self._run_in_transaction("purge_expired", actor, work)

    def _new_reservation(
        self,
        product_id: UUID,
        quantity: Decimal,
        actor: ActorContext,
        reservation_type: ReservationType,
        order_ref: str | None,
        order_line_ref: str | None,
        expires_at: datetime | None,
        notes: str | None,
        now: datetime,
    ) -> StockReservation:
        if reservation_type is ReservationType.MANUAL and expires_at is None:
            expires_at = now + timedelta(
                hours=self._settings.manual_reservation_expiry_hours
            )
        reservation = StockReservation(
            product_id=product_id,
            quantity=quantity,
            reservation_type=reservation_type.value,
            order_ref=order_ref,
            order_line_ref=order_line_ref,
            expires_at=expires_at,
            notes=notes,
            created_by_id=actor.actor_id,
        )
        self.session.add(reservation)
        self.session.flush()
        return reservation
