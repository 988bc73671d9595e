"""Tests for the packaging variant (production_kernel/domain/packaging.py)."""

from decimal import Decimal

import pytest

from production_kernel.domain.packaging import (
    Direct,
    PackagingKind,
    PerUnit,
    packaging_from_columns,
    packaging_to_columns,
    total_quantity,
)


class TestTotalQuantity:

    def test_per_unit_multiplies_package_size(self):
        assert total_quantity(PerUnit(Decimal("2.5")), 4) == Decimal("10.0")

    def test_direct_is_identity(self):
        assert total_quantity(Direct(), Decimal("7")) == Decimal("7")

    def test_unknown_variant_raises(self):
        with pytest.raises(TypeError):
            total_quantity(object(), 1)


class TestPerUnit:

    @pytest.mark.parametrize("size", [Decimal("0"), Decimal("-1")])
    def test_size_must_be_positive(self, size):
        with pytest.raises(ValueError):
            PerUnit(size)

    def test_non_decimal_size_is_coerced(self):
        packaging = PerUnit("0.25")
        assert packaging.quantity_per_unit == Decimal("0.25")
        assert packaging.kind is PackagingKind.PER_UNIT


class TestColumnMapping:

    def test_per_unit_columns(self):
        kind, size = packaging_to_columns(PerUnit(Decimal("3")))
        assert kind == "per_unit"
        assert size == Decimal("3")
        assert packaging_from_columns(kind, size) == PerUnit(Decimal("3"))

    def test_direct_columns(self):
        assert packaging_to_columns(Direct()) == ("direct", None)
        assert packaging_from_columns("direct", None) == Direct()

    def test_per_unit_without_size_is_rejected(self):
        with pytest.raises(ValueError):
            packaging_from_columns("per_unit", None)

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(ValueError):
            packaging_from_columns("crate", Decimal("1"))
