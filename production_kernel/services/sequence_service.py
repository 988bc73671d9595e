"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing numbers for production request numbers
    (``PR-000042``) and for the ordering of inventory adjustments.  Uses a
    dedicated counter table with row-level locking (``SELECT ... FOR
    UPDATE``) so concurrent allocations never hand out the same value.

Architecture position:
    Kernel > Services -- flush-only infrastructure.  Called by
    ProductionRequestService and AuditRecorder.

Invariants enforced:
    - The locked counter row is the sole source of truth; aggregate
      max-plus-one is never used.
    - Allocation is transactional: a rolled-back transaction returns its
      value.

Failure modes:
    - IntegrityError: concurrent first-use creation race (handled via a
      savepoint and re-read under lock).
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from production_kernel.logging_config import get_logger
from production_kernel.models.sequence_counter import SequenceCounter
from production_kernel.services.base import BaseService

logger = get_logger("services.sequence")


class SequenceService(BaseService):
    """
    Transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()``; the caller controls boundaries.
    """

    PRODUCTION_REQUEST = "production_request"
    INVENTORY_ADJUSTMENT = "inventory_adjustment"

    def __init__(self, session: Session):
        super().__init__(session)

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self.session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the counter row (creating it on first use), increment, return.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously committed for this sequence name.
            - The counter row stays locked until the transaction completes.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # Another transaction may create it simultaneously; a savepoint
            # keeps the rest of the caller's work intact if we lose.
            savepoint = self.session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self.session.add(counter)
                self.session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self.session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never allocated."""
        return self.session.execute(
            select(SequenceCounter.current_value)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()


def format_request_number(value: int, prefix: str = "PR", width: int = 6) -> str:
    """``format_request_number(42)`` -> ``"PR-000042"``."""
    return f"{prefix}-{value:0{width}d}"
