"""
Service base classes and the transaction runner.

Responsibility:
    ``BaseService`` is the flush-only base for collaborators that work
    inside a transaction someone else owns (StockLedger, AuditRecorder,
    SequenceService).  ``TransactionalService`` is the base for the public
    services that own their transaction boundary: each public method runs
    its unit of work through ``_run_in_transaction``, which commits on
    success, rolls back on failure, and replays the whole unit of work on
    transient storage conflicts.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - A unit of work either commits completely or leaves no trace.
    - Only transient errors are retried; everything else propagates after
      rollback, unchanged.
    - The unit of work is re-executed from scratch on retry, so every read
      (including the binding availability check) happens again.

Failure modes:
    - RetriesExhaustedError after ``max_attempts`` transient failures,
      chained to the last one.
"""

from __future__ import annotations

import time
from abc import ABC
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from production_kernel.domain.actor import ActorContext, AuthorizationPolicy, Operation
from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.exceptions import ConcurrencyError, RetriesExhaustedError
from production_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.transaction")

T = TypeVar("T")

# SQLSTATE serialization_failure / deadlock_detected
_TRANSIENT_PGCODES = frozenset({"40001", "40P01"})
_TRANSIENT_MESSAGES = (
    "deadlock",
    "could not serialize",
    "database is locked",
    "database table is locked",
)


def is_transient_error(exc: BaseException) -> bool:
    """True when replaying the whole transaction may succeed."""
    if isinstance(exc, RetriesExhaustedError):
        return False
    if isinstance(exc, (ConcurrencyError, StaleDataError)):
        return True
    if isinstance(exc, DBAPIError):
        if getattr(exc.orig, "pgcode", None) in _TRANSIENT_PGCODES:
            return True
        message = str(exc.orig).lower()
        return any(marker in message for marker in _TRANSIENT_MESSAGES)
    return False


@dataclass(frozen=True)
class ServiceSettings:
    """Tunables shared by every transactional service."""

    policy: AuthorizationPolicy = field(default_factory=AuthorizationPolicy)
    max_attempts: int = 3
    backoff_seconds: float = 0.05
    manual_reservation_expiry_hours: int = 24
    request_number_prefix: str = "PR"
    request_number_width: int = 6

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")


class BaseService(ABC):
    """
    Abstract base for flush-only services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT call ``session.commit()`` or ``session.rollback()``.
    """

    def __init__(self, session: Session):
        self.session = session


class TransactionalService(ABC):
    """
    Abstract base for services that own their transaction boundary.

    Contract:
        Every public mutating method authorizes the actor, then hands a
        zero-argument callable to ``_run_in_transaction``.  The callable
        must build its return value (a DTO) before returning, since the
        session is committed right after.

    Guarantees:
        - Commit on success, rollback on any failure.
        - Transient failures are replayed up to ``settings.max_attempts``
          times with linear backoff.
    """

    def __init__(
        self,
        session: Session,
        settings: ServiceSettings | None = None,
        clock: Clock | None = None,
    ):
        self.session = session
        self._settings = settings or ServiceSettings()
        self._clock = clock or SystemClock()

    @property
    def settings(self) -> ServiceSettings:
        return self._settings

    def _authorize(self, actor: ActorContext, operation: Operation) -> None:
        self._settings.policy.require(actor, operation)

    def _run_in_transaction(
        self,
        operation: str,
        actor: ActorContext | None,
        work: Callable[[], T],
    ) -> T:
        max_attempts = self._settings.max_attempts
        context = actor.log_fields() if actor is not None else {}

        with LogContext.bind(**context):
            for attempt in range(1, max_attempts + 1):
                try:
                    result = work()
                    self.session.commit()
                except Exception as exc:
                    self.session.rollback()
                    if not is_transient_error(exc):
                        raise
                    if attempt >= max_attempts:
                        logger.error(
                            "transaction_retries_exhausted",
                            extra={"operation": operation, "attempts": attempt},
                        )
                        raise RetriesExhaustedError(operation, attempt) from exc
                    logger.warning(
                        "transaction_retry",
                        extra={
                            "operation": operation,
                            "attempt": attempt,
                            "max_attempts": max_attempts,
                            "error_type": type(exc).__name__,
                        },
                    )
                    time.sleep(self._settings.backoff_seconds * attempt)
                else:
                    if attempt > 1:
                        logger.info(
                            "transaction_succeeded_after_retry",
                            extra={"operation": operation, "attempt": attempt},
                        )
                    return result

        raise AssertionError("unreachable")
