"""SequenceCounter -- one locked row per named sequence."""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from production_kernel.db.base import Base


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    # Sequence name (e.g., "production_request")
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
