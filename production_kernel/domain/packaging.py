"""
Packaging -- how a counted quantity of a material turns into stock units.

A material is either received in packages of a fixed size (``PerUnit``)
or counted directly in stock units (``Direct``).  The two cases are an
exhaustive tagged variant rather than a nullable ``quantity_per_unit``
column interpreted by convention.

    total_quantity(PerUnit(Decimal("2.5")), 4)  -> Decimal("10.0")
    total_quantity(Direct(), Decimal("7"))      -> Decimal("7")
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from production_kernel.domain.quantity import exact_quantity


class PackagingKind(str, Enum):
    PER_UNIT = "per_unit"
    DIRECT = "direct"


@dataclass(frozen=True)
class PerUnit:
    """Each counted package holds ``quantity_per_unit`` stock units."""

    quantity_per_unit: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "quantity_per_unit", exact_quantity("quantity_per_unit", self.quantity_per_unit)
        )
        if self.quantity_per_unit <= 0:
            raise ValueError(
                f"quantity_per_unit must be positive, got {self.quantity_per_unit}"
            )

    @property
    def kind(self) -> PackagingKind:
        return PackagingKind.PER_UNIT


@dataclass(frozen=True)
class Direct:
    """The count already is the stock quantity."""

    @property
    def kind(self) -> PackagingKind:
        return PackagingKind.DIRECT


Packaging = PerUnit | Direct


def total_quantity(packaging: Packaging, count: Decimal | int) -> Decimal:
    """Stock units represented by ``count`` packages."""
    count = exact_quantity("package_count", count)
    match packaging:
        case PerUnit(quantity_per_unit=size):
            return exact_quantity("received_quantity", count * size)
        case Direct():
            return count
    raise TypeError(f"Unknown packaging variant: {packaging!r}")


def packaging_from_columns(kind: str, quantity_per_unit: Decimal | None) -> Packaging:
    """Rebuild the variant from its two persisted columns."""
    if PackagingKind(kind) is PackagingKind.PER_UNIT:
        if quantity_per_unit is None:
            raise ValueError("per_unit packaging requires quantity_per_unit")
        return PerUnit(quantity_per_unit)
    return Direct()


def packaging_to_columns(packaging: Packaging) -> tuple[str, Decimal | None]:
    match packaging:
        case PerUnit(quantity_per_unit=size):
            return PackagingKind.PER_UNIT.value, size
        case Direct():
            return PackagingKind.DIRECT.value, None
    raise TypeError(f"Unknown packaging variant: {packaging!r}")
