"""Guarded stock writes (StockLedger) and the adjustment sequence."""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import update

from production_kernel.exceptions import (
    MaterialNotFoundError,
    ProductNotFoundError,
    StockConflictError,
)
from production_kernel.models.inventory_adjustment import AdjustmentType, StockEntityType
from production_kernel.models.material import Material
from production_kernel.services.sequence_service import (
    SequenceService,
    format_request_number,
)
from production_kernel.services.stock_ledger import StockLedger


@pytest.fixture
def ledger(session, deterministic_clock):
    return StockLedger(session, deterministic_clock)


class TestApply:

    def test_apply_records_before_and_after(self, ledger, session, make_material, admin_actor):
        leaf = make_material("Leaf", stock=Decimal("10"))

        change = ledger.apply(
            StockEntityType.MATERIAL, leaf.id, Decimal("-4"),
            AdjustmentType.MANUAL, actor_id=admin_actor.actor_id,
        )
        session.commit()

        assert change.quantity_before == Decimal("10")
        assert change.quantity_after == Decimal("6")
        assert change.adjustment.entity_id == leaf.id
        assert change.adjustment.delta == Decimal("-4")

    def test_guard_allows_exact_exhaustion_in_fractions(
        self, ledger, session, make_material, admin_actor, stock_of,
    ):
        leaf = make_material("Leaf", stock=Decimal("0.3"))

        changes = [
            ledger.apply(
                StockEntityType.MATERIAL, leaf.id, Decimal("-0.1"),
                AdjustmentType.PRODUCTION_CONSUMPTION, actor_id=admin_actor.actor_id,
            )
            for _ in range(3)
        ]
        session.commit()

        assert [c.quantity_after for c in changes] == [
            Decimal("0.2"), Decimal("0.1"), Decimal("0"),
        ]
        assert stock_of(leaf) == Decimal("0")

    def test_guard_rejects_decrement_past_zero(
        self, ledger, session, make_material, admin_actor, stock_of,
    ):
        leaf = make_material("Leaf", stock=Decimal("3"))

        with pytest.raises(StockConflictError) as exc_info:
            ledger.apply(
                StockEntityType.MATERIAL, leaf.id, Decimal("-5"),
                AdjustmentType.MANUAL, actor_id=admin_actor.actor_id,
            )
        session.rollback()

        assert exc_info.value.code == "STOCK_CONFLICT"
        assert stock_of(leaf) == Decimal("3")

    def test_guard_sees_concurrent_change(
        self, ledger, session, make_material, admin_actor, stock_of,
    ):
        leaf = make_material("Leaf", stock=Decimal("10"))
        locked = ledger.lock(StockEntityType.MATERIAL, [leaf.id])
        assert locked[leaf.id].stock == Decimal("10")

        # Stock drained behind the loaded instance's back.
        session.execute(
            update(Material)
            .where(Material.id == leaf.id)
            .values(stock=Decimal("1"))
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(StockConflictError):
            ledger.apply(
                StockEntityType.MATERIAL, leaf.id, Decimal("-2"),
                AdjustmentType.PRODUCTION_CONSUMPTION, actor_id=admin_actor.actor_id,
            )
        session.rollback()
        assert stock_of(leaf) == Decimal("10")

    def test_unknown_rows(self, ledger, session, admin_actor, db_engine):
        with pytest.raises(MaterialNotFoundError):
            ledger.apply(
                StockEntityType.MATERIAL, uuid4(), Decimal("1"),
                AdjustmentType.MANUAL, actor_id=admin_actor.actor_id,
            )
        with pytest.raises(ProductNotFoundError):
            ledger.lock(StockEntityType.PRODUCT, [uuid4()])
        session.rollback()


class TestSequences:

    def test_values_are_strictly_increasing(self, session, db_engine):
        sequences = SequenceService(session)
        values = [sequences.next_value("test_sequence") for _ in range(5)]
        session.commit()
        assert values == [1, 2, 3, 4, 5]
        assert sequences.current_value("test_sequence") == 5
        assert sequences.current_value("never_used") is None

    def test_format_request_number(self):
        assert format_request_number(42) == "PR-000042"
        assert format_request_number(7, prefix="WO", width=3) == "WO-007"
        assert format_request_number(1234567) == "PR-1234567"
