"""
Module: production_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/.  MUST NOT import from services/.

Invariants enforced:
    - Read-only: selectors never add, delete, flush or commit.
    - Selectors return frozen DTOs, never ORM instances.
    - Reads are plain, unlocked snapshot reads.  Results may be stale by
      the time the caller acts on them; only services make binding checks.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only
        queries and return DTOs.  The caller owns the session and its
        transaction scope.
    """

    def __init__(self, session: Session):
        self.session = session
