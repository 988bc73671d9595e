"""
Availability Checker -- can current stock cover a set of requirements?

Responsibility:
    Compares required quantities with stock returned by a caller-supplied
    lookup.  The same function serves two purposes:

    * advisory, at request creation, with a snapshot lookup;
    * binding, at completion, with a lookup over rows locked inside the
      completing transaction.

    Which stock source is used is the caller's decision; this module never
    reads storage itself.

Invariants enforced:
    - Per material: sufficient iff available >= required (ties pass).
    - Overall: the conjunction over all materials (vacuously true when empty).
    - Report order follows requirement order.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterable
from uuid import UUID

from production_kernel.domain.bom import MaterialRequirement
from production_kernel.exceptions import MaterialShortage

StockLookup = Callable[[UUID], Decimal]


@dataclass(frozen=True)
class MaterialAvailability:
    material_id: UUID
    material_name: str
    required: Decimal
    available: Decimal

    @property
    def sufficient(self) -> bool:
        return self.available >= self.required

    @property
    def shortfall(self) -> Decimal:
        return max(self.required - self.available, Decimal("0"))


@dataclass(frozen=True)
class AvailabilityReport:
    per_material: tuple[MaterialAvailability, ...]

    @property
    def sufficient(self) -> bool:
        return all(m.sufficient for m in self.per_material)

    @property
    def shortages(self) -> tuple[MaterialShortage, ...]:
        return tuple(
            MaterialShortage(
                material_id=str(m.material_id),
                material_name=m.material_name,
                required=m.required,
                available=m.available,
            )
            for m in self.per_material
            if not m.sufficient
        )

    def for_material(self, material_id: UUID) -> MaterialAvailability:
        for m in self.per_material:
            if m.material_id == material_id:
                return m
        raise KeyError(material_id)


def check_availability(
    requirements: Iterable[MaterialRequirement],
    stock_lookup: StockLookup,
) -> AvailabilityReport:
    """Build a sufficiency report; pure apart from calling ``stock_lookup``."""
    return AvailabilityReport(
        per_material=tuple(
            MaterialAvailability(
                material_id=req.material_id,
                material_name=req.material_name,
                required=req.quantity_required,
                available=stock_lookup(req.material_id),
            )
            for req in requirements
        )
    )
