"""
BOM Expander -- product recipe x requested quantity -> material requirements.

Responsibility:
    Scales every bill-of-materials line by the requested quantity.  Pure:
    the caller loads the lines, this module only does arithmetic.

Invariants enforced:
    - Exactly one requirement per BOM line, in line order.
    - quantity_required = quantity_per_unit * quantity_requested, in exact
      Decimal arithmetic (0.04 kg/unit x 250 is 10.00, never 9.999...).
    - Inputs and products carry at most 9 decimal places; anything finer is
      refused rather than rounded, so the snapshot equals what is reported.
    - A product with zero lines cannot be expanded (NoBillOfMaterialsError).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from production_kernel.domain.quantity import exact_quantity
from production_kernel.exceptions import InvalidQuantityError, NoBillOfMaterialsError


@dataclass(frozen=True)
class BomLine:
    """One recipe line as seen by the expander."""

    material_id: UUID
    material_name: str
    quantity_per_unit: Decimal
    unit: str | None = None


@dataclass(frozen=True)
class MaterialRequirement:
    material_id: UUID
    material_name: str
    quantity_required: Decimal
    unit: str | None = None


def expand(
    product_id: UUID,
    lines: Sequence[BomLine],
    quantity_requested: Decimal,
) -> tuple[MaterialRequirement, ...]:
    """
    Expand a product's BOM for ``quantity_requested`` units.

    Raises:
        InvalidQuantityError: quantity_requested <= 0, or a quantity (input
            or product) not representable at the stored scale.
        NoBillOfMaterialsError: ``lines`` is empty.
    """
    quantity_requested = exact_quantity("quantity_requested", quantity_requested)
    if quantity_requested <= 0:
        raise InvalidQuantityError("quantity_requested", quantity_requested)
    if not lines:
        raise NoBillOfMaterialsError(str(product_id))

    requirements = []
    for line in lines:
        per_unit = exact_quantity("quantity_per_unit", line.quantity_per_unit)
        requirements.append(
            MaterialRequirement(
                material_id=line.material_id,
                material_name=line.material_name,
                quantity_required=exact_quantity(
                    f"quantity_required[{line.material_name}]",
                    per_unit * quantity_requested,
                ),
                unit=line.unit,
            )
        )
    return tuple(requirements)
