"""
Quantity -- exact decimal quantities at a fixed storage scale.

Responsibility:
    Every stock, threshold, BOM and reservation quantity is stored with
    ``QUANTITY_PLACES`` fractional digits.  ``exact_quantity`` admits a
    value only if it is representable at that scale without rounding, so
    the value a caller is shown is always the value the store holds.

Architecture position:
    Kernel > Domain -- pure, no I/O.  Used by services to validate inputs
    and by ``db.base.Quantity`` to encode columns.

Failure modes:
    - InvalidQuantityError for non-finite values or values with more than
      ``QUANTITY_PLACES`` significant fractional digits.
"""

from __future__ import annotations

from decimal import Decimal

from production_kernel.exceptions import InvalidQuantityError

QUANTITY_PLACES = 9

_SCALE = 10**QUANTITY_PLACES


def fractional_places(value: Decimal) -> int:
    """Significant fractional digits of ``value`` (trailing zeros ignored)."""
    _, digits, exponent = value.as_tuple()
    digits = list(digits)
    while exponent < 0 and len(digits) > 1 and digits[-1] == 0:
        digits.pop()
        exponent += 1
    if exponent < 0 and digits == [0]:
        return 0
    return max(0, -exponent)


def exact_quantity(field: str, value: Decimal | int | str) -> Decimal:
    """Return ``value`` as a Decimal, refusing anything the store would round."""
    value = value if isinstance(value, Decimal) else Decimal(str(value))
    if not value.is_finite():
        raise InvalidQuantityError(field, value, "must be a finite number")
    if fractional_places(value) > QUANTITY_PLACES:
        raise InvalidQuantityError(
            field, value, f"must have at most {QUANTITY_PLACES} decimal places"
        )
    return value


def to_scaled_int(value: Decimal) -> int:
    """Encode an exact quantity as an integer count of 1e-9 units."""
    sign, digits, exponent = value.as_tuple()
    magnitude = int("".join(map(str, digits)) or "0")
    shift = exponent + QUANTITY_PLACES
    if shift >= 0:
        magnitude *= 10**shift
    else:
        magnitude //= 10**-shift
    return -magnitude if sign else magnitude


def from_scaled_int(value: int) -> Decimal:
    """Decode ``to_scaled_int`` output, keeping the full scale (``0.100000000``)."""
    whole, fraction = divmod(abs(value), _SCALE)
    sign = "-" if value < 0 else ""
    return Decimal(f"{sign}{whole}.{fraction:0{QUANTITY_PLACES}d}")
