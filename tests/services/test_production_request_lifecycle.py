"""
Production request lifecycle: create, start, complete, cancel.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from production_kernel.exceptions import (
    AlreadyCompletedError,
    ForbiddenError,
    InsufficientMaterialsError,
    InvalidQuantityError,
    NoBillOfMaterialsError,
    ProductNotFoundError,
    RequestCancelledError,
    RequestCompletedError,
    RequestNotFoundError,
)
from production_kernel.models.inventory_adjustment import StockEntityType
from production_kernel.models.production_request import (
    MaterialConsumptionSnapshot,
    ProductionRequest,
)


@pytest.fixture
def leaf(make_material):
    return make_material("Leaf", stock=Decimal("10"), unit="kg")


@pytest.fixture
def wreath(make_product, leaf):
    return make_product("WR-1", "Wreath", bom={leaf: Decimal("0.125")})


class TestCreateRequest:

    def test_creates_pending_request_with_snapshot(
        self, request_service, fulfillment_actor, wreath, leaf, deterministic_clock,
    ):
        created = request_service.create_request(
            wreath.id, Decimal("40"), fulfillment_actor, notes="for market day"
        )

        request = created.request
        assert request.status == "pending"
        assert request.product_id == wreath.id
        assert request.product_name == "Wreath"
        assert request.quantity_requested == Decimal("40")
        assert request.requested_by_id == fulfillment_actor.actor_id
        assert request.requested_at == deterministic_clock.now()
        assert request.notes == "for market day"
        assert request.request_number == "PR-000001"

        snapshot = request.snapshot_for(leaf.id)
        assert snapshot.material_name == "Leaf"
        assert snapshot.quantity_consumed == Decimal("5")
        assert snapshot.quantity_available_at_request == Decimal("10")
        assert request.sufficient_at_request
        assert created.availability.sufficient

    def test_request_numbers_increase(self, request_service, fulfillment_actor, wreath):
        first = request_service.create_request(wreath.id, Decimal("1"), fulfillment_actor)
        second = request_service.create_request(wreath.id, Decimal("1"), fulfillment_actor)
        assert first.request.request_number == "PR-000001"
        assert second.request.request_number == "PR-000002"

    def test_short_stock_is_advisory(
        self, request_service, fulfillment_actor, wreath, leaf, stock_of, captured_logs,
    ):
        created = request_service.create_request(wreath.id, Decimal("120"), fulfillment_actor)

        snapshot = created.request.snapshot_for(leaf.id)
        assert snapshot.quantity_consumed == Decimal("15")
        assert snapshot.quantity_available_at_request == Decimal("10")
        assert not snapshot.sufficient_at_request
        assert not created.availability.sufficient
        assert created.request.status == "pending"
        assert stock_of(leaf) == Decimal("10")

        warnings = [
            r for r in captured_logs()
            if r["message"] == "production_request_created_with_shortages"
        ]
        assert len(warnings) == 1
        assert warnings[0]["shortages"][0]["material_name"] == "Leaf"

    def test_creation_does_not_touch_stock(
        self, request_service, fulfillment_actor, wreath, leaf, stock_of, adjustment_count,
    ):
        before = adjustment_count()
        request_service.create_request(wreath.id, Decimal("8"), fulfillment_actor)
        assert stock_of(leaf) == Decimal("10")
        assert adjustment_count() == before

    def test_one_snapshot_per_bom_line(
        self, request_service, fulfillment_actor, make_material, make_product,
    ):
        a = make_material("Fir", stock=Decimal("100"))
        b = make_material("Ribbon", stock=Decimal("100"))
        c = make_material("Wire", stock=Decimal("100"))
        product = make_product("WR-2", bom={a: 2, b: Decimal("0.5"), c: 1})

        created = request_service.create_request(product.id, Decimal("4"), fulfillment_actor)

        consumed = {s.material_name: s.quantity_consumed for s in created.request.snapshots}
        assert consumed == {"Fir": Decimal("8"), "Ribbon": Decimal("2"), "Wire": Decimal("4")}
        assert sorted(s.material_id for s in created.request.snapshots) == sorted(
            [a.id, b.id, c.id]
        )

    def test_product_without_bom_persists_nothing(
        self, request_service, fulfillment_actor, make_product, session,
    ):
        bare = make_product("BARE-1")
        with pytest.raises(NoBillOfMaterialsError):
            request_service.create_request(bare.id, Decimal("1"), fulfillment_actor)

        assert session.execute(select(ProductionRequest.id)).all() == []
        assert session.execute(select(MaterialConsumptionSnapshot.id)).all() == []

    def test_unknown_product(self, request_service, fulfillment_actor):
        with pytest.raises(ProductNotFoundError):
            request_service.create_request(uuid4(), Decimal("1"), fulfillment_actor)

    @pytest.mark.parametrize("quantity", [Decimal("0"), Decimal("-3")])
    def test_non_positive_quantity(self, request_service, fulfillment_actor, wreath, quantity):
        with pytest.raises(InvalidQuantityError):
            request_service.create_request(wreath.id, quantity, fulfillment_actor)

    def test_production_role_may_not_create(self, request_service, production_actor, wreath):
        with pytest.raises(ForbiddenError):
            request_service.create_request(wreath.id, Decimal("1"), production_actor)

    def test_requirement_finer_than_storage_scale_is_refused(
        self, request_service, fulfillment_actor, make_material, make_product, session,
    ):
        ribbon = make_material("Ribbon", stock=Decimal("10"))
        bow = make_product("BW-1", bom={ribbon: Decimal("0.333333333")})

        with pytest.raises(InvalidQuantityError) as exc_info:
            request_service.create_request(bow.id, Decimal("3.5"), fulfillment_actor)

        assert exc_info.value.field == "quantity_required[Ribbon]"
        assert exc_info.value.value == Decimal("1.1666666655")
        assert session.execute(select(ProductionRequest.id)).all() == []

    def test_quantity_finer_than_storage_scale_is_refused(
        self, request_service, fulfillment_actor, wreath,
    ):
        with pytest.raises(InvalidQuantityError) as exc_info:
            request_service.create_request(
                wreath.id, Decimal("1.0000000001"), fulfillment_actor
            )
        assert exc_info.value.field == "quantity"

    def test_reported_snapshot_matches_stored_snapshot(
        self, request_service, fulfillment_actor, make_material, make_product, session,
    ):
        ribbon = make_material("Ribbon", stock=Decimal("10"))
        bow = make_product("BW-1", bom={ribbon: Decimal("0.333333333")})

        created = request_service.create_request(bow.id, Decimal("3"), fulfillment_actor)
        stored = session.execute(
            select(MaterialConsumptionSnapshot.quantity_consumed)
        ).scalar_one()
        session.rollback()

        reported = created.request.snapshot_for(ribbon.id).quantity_consumed
        assert reported == stored == Decimal("0.999999999")

    def test_snapshot_survives_bom_change(
        self, request_service, catalog_service, fulfillment_actor, admin_actor, wreath, leaf,
    ):
        created = request_service.create_request(wreath.id, Decimal("8"), fulfillment_actor)
        catalog_service.update_bom_line(wreath.id, leaf.id, Decimal("0.5"), admin_actor)

        completed = request_service.complete_request(created.request.id, admin_actor)
        assert completed.snapshot_for(leaf.id).quantity_consumed == Decimal("1")


class TestCompleteRequest:

    def test_insufficient_then_replenished(
        self, request_service, adjustment_service, fulfillment_actor, production_actor,
        wreath, leaf, stock_of, adjustment_count,
    ):
        request = request_service.create_request(
            wreath.id, Decimal("120"), fulfillment_actor
        ).request
        writes_before = adjustment_count()

        with pytest.raises(InsufficientMaterialsError) as exc_info:
            request_service.complete_request(request.id, production_actor)

        err = exc_info.value
        assert err.code == "INSUFFICIENT_MATERIALS"
        assert len(err.shortages) == 1
        assert err.shortages[0].material_name == "Leaf"
        assert err.shortages[0].required == Decimal("15")
        assert err.shortages[0].available == Decimal("10")
        assert stock_of(leaf) == Decimal("10")
        assert stock_of(wreath) == Decimal("0")
        assert adjustment_count() == writes_before

        adjustment_service.adjust_stock(
            StockEntityType.MATERIAL, leaf.id, Decimal("6"), production_actor,
            reason="delivery",
        )

        completed = request_service.complete_request(request.id, production_actor)

        assert completed.status == "completed"
        assert completed.completed_by_id == production_actor.actor_id
        assert completed.completed_at is not None
        assert stock_of(leaf) == Decimal("1")
        assert stock_of(wreath) == Decimal("120")

    def test_tenth_per_unit_scenario(
        self, request_service, adjustment_service, fulfillment_actor, production_actor,
        make_material, make_product, stock_of,
    ):
        garland_leaf = make_material("Garland Leaf", stock=Decimal("10"))
        garland = make_product("GA-1", "Garland", bom={garland_leaf: Decimal("0.1")})
        request = request_service.create_request(
            garland.id, Decimal("120"), fulfillment_actor
        ).request
        assert request.snapshot_for(garland_leaf.id).quantity_consumed == Decimal("12")

        with pytest.raises(InsufficientMaterialsError) as exc_info:
            request_service.complete_request(request.id, production_actor)
        shortage = exc_info.value.shortages[0]
        assert (shortage.material_name, shortage.required, shortage.available) == (
            "Garland Leaf", Decimal("12"), Decimal("10"),
        )

        adjustment_service.adjust_stock(
            StockEntityType.MATERIAL, garland_leaf.id, Decimal("5"), production_actor
        )
        request_service.complete_request(request.id, production_actor)

        assert stock_of(garland_leaf) == Decimal("3")
        assert stock_of(garland) == Decimal("120")

    def test_tenths_consume_stock_to_exactly_zero(
        self, request_service, fulfillment_actor, production_actor,
        make_material, make_product, stock_of,
    ):
        leaf = make_material("Leaf", stock=Decimal("0.3"), unit="kg")
        sprig = make_product("SP-1", bom={leaf: Decimal("0.1")})
        request_ids = [
            request_service.create_request(sprig.id, Decimal("1"), fulfillment_actor).request.id
            for _ in range(3)
        ]

        for request_id in request_ids:
            completed = request_service.complete_request(request_id, production_actor)
            assert completed.status == "completed"

        assert stock_of(leaf) == Decimal("0")
        assert stock_of(sprig) == Decimal("3")

    def test_insufficient_lists_every_short_material(
        self, request_service, fulfillment_actor, admin_actor, make_material, make_product,
        stock_of,
    ):
        fir = make_material("Fir", stock=Decimal("3"))
        ribbon = make_material("Ribbon", stock=Decimal("1"))
        wire = make_material("Wire", stock=Decimal("50"))
        product = make_product("WR-3", bom={fir: 1, ribbon: 1, wire: 1})
        request = request_service.create_request(
            product.id, Decimal("4"), fulfillment_actor
        ).request

        with pytest.raises(InsufficientMaterialsError) as exc_info:
            request_service.complete_request(request.id, admin_actor)

        assert {s.material_name for s in exc_info.value.shortages} == {"Fir", "Ribbon"}
        assert stock_of(wire) == Decimal("50")

    def test_completion_writes_audited_adjustments(
        self, request_service, selector, fulfillment_actor, production_actor, wreath, leaf,
    ):
        request = request_service.create_request(
            wreath.id, Decimal("40"), fulfillment_actor
        ).request
        request_service.complete_request(request.id, production_actor)

        trail = selector.adjustments_for_request(request.id)
        by_type = {a.adjustment_type: a for a in trail}
        assert set(by_type) == {"production_consumption", "production_credit"}

        consumption = by_type["production_consumption"]
        assert consumption.entity_id == leaf.id
        assert consumption.quantity_before == Decimal("10")
        assert consumption.quantity_after == Decimal("5")
        assert consumption.actor_id == production_actor.actor_id
        assert consumption.reason == f"Production request {request.request_number}"

        credit = by_type["production_credit"]
        assert credit.entity_id == wreath.id
        assert credit.delta == Decimal("40")

    def test_second_completion_is_rejected_without_writes(
        self, request_service, fulfillment_actor, production_actor, wreath, leaf,
        stock_of, adjustment_count,
    ):
        request = request_service.create_request(
            wreath.id, Decimal("8"), fulfillment_actor
        ).request
        request_service.complete_request(request.id, production_actor)
        writes = adjustment_count()

        with pytest.raises(AlreadyCompletedError) as exc_info:
            request_service.complete_request(request.id, production_actor)

        assert exc_info.value.code == "ALREADY_COMPLETED"
        assert adjustment_count() == writes
        assert stock_of(leaf) == Decimal("9")
        assert stock_of(wreath) == Decimal("8")

    def test_complete_from_in_progress(
        self, request_service, fulfillment_actor, production_actor, wreath,
    ):
        request = request_service.create_request(
            wreath.id, Decimal("8"), fulfillment_actor
        ).request
        request_service.start_request(request.id, production_actor)
        completed = request_service.complete_request(
            request.id, production_actor, notes="done early"
        )
        assert completed.status == "completed"
        assert completed.started_at is not None
        assert completed.notes == "done early"

    def test_cancelled_request_cannot_complete(
        self, request_service, fulfillment_actor, production_actor, wreath, stock_of, leaf,
    ):
        request = request_service.create_request(
            wreath.id, Decimal("8"), fulfillment_actor
        ).request
        request_service.cancel_request(request.id, fulfillment_actor)

        with pytest.raises(RequestCancelledError):
            request_service.complete_request(request.id, production_actor)
        assert stock_of(leaf) == Decimal("10")

    def test_fulfillment_may_not_complete(
        self, request_service, fulfillment_actor, wreath,
    ):
        request = request_service.create_request(
            wreath.id, Decimal("8"), fulfillment_actor
        ).request
        with pytest.raises(ForbiddenError):
            request_service.complete_request(request.id, fulfillment_actor)

    def test_unknown_request(self, request_service, production_actor):
        with pytest.raises(RequestNotFoundError):
            request_service.complete_request(uuid4(), production_actor)

    def test_completion_logs_request_context(
        self, request_service, fulfillment_actor, production_actor, wreath, captured_logs,
    ):
        request = request_service.create_request(
            wreath.id, Decimal("8"), fulfillment_actor
        ).request
        request_service.complete_request(request.id, production_actor)

        completed = [
            r for r in captured_logs() if r["message"] == "production_request_completed"
        ]
        assert len(completed) == 1
        assert completed[0]["request_id"] == str(request.id)
        assert completed[0]["actor_id"] == str(production_actor.actor_id)
        assert completed[0]["role"] == "production"


class TestStartAndCancel:

    def test_start_marks_in_progress(
        self, request_service, fulfillment_actor, production_actor, wreath,
        deterministic_clock, stock_of, leaf,
    ):
        request = request_service.create_request(
            wreath.id, Decimal("8"), fulfillment_actor
        ).request
        deterministic_clock.advance_hours(1)

        started = request_service.start_request(request.id, production_actor)

        assert started.status == "in_progress"
        assert started.started_at == deterministic_clock.now()
        assert stock_of(leaf) == Decimal("10")

    def test_start_twice_is_a_no_op(
        self, request_service, fulfillment_actor, production_actor, wreath, deterministic_clock,
    ):
        request = request_service.create_request(
            wreath.id, Decimal("8"), fulfillment_actor
        ).request
        first = request_service.start_request(request.id, production_actor)
        deterministic_clock.advance_hours(2)
        second = request_service.start_request(request.id, production_actor)
        assert second.status == "in_progress"
        assert second.started_at == first.started_at

    def test_start_completed_request(
        self, request_service, fulfillment_actor, production_actor, wreath,
    ):
        request = request_service.create_request(
            wreath.id, Decimal("8"), fulfillment_actor
        ).request
        request_service.complete_request(request.id, production_actor)
        with pytest.raises(RequestCompletedError):
            request_service.start_request(request.id, production_actor)

    def test_start_cancelled_request(
        self, request_service, fulfillment_actor, production_actor, wreath, session,
    ):
        request = request_service.create_request(
            wreath.id, Decimal("8"), fulfillment_actor
        ).request
        request_service.cancel_request(request.id, fulfillment_actor)
        with pytest.raises(RequestCancelledError) as exc_info:
            request_service.start_request(request.id, production_actor)
        assert exc_info.value.operation == "start"
        assert session.execute(
            select(ProductionRequest.status).where(ProductionRequest.id == request.id)
        ).scalar_one() == "cancelled"

    def test_cancel_pending(
        self, request_service, fulfillment_actor, wreath, deterministic_clock,
    ):
        request = request_service.create_request(
            wreath.id, Decimal("8"), fulfillment_actor
        ).request
        cancelled = request_service.cancel_request(
            request.id, fulfillment_actor, reason="customer withdrew"
        )
        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at == deterministic_clock.now()
        assert cancelled.notes == "customer withdrew"

    def test_cancel_in_progress(
        self, request_service, fulfillment_actor, production_actor, wreath,
    ):
        request = request_service.create_request(
            wreath.id, Decimal("8"), fulfillment_actor
        ).request
        request_service.start_request(request.id, production_actor)
        assert request_service.cancel_request(request.id, production_actor).status == "cancelled"

    def test_cancel_completed_is_rejected(
        self, request_service, fulfillment_actor, production_actor, wreath,
    ):
        request = request_service.create_request(
            wreath.id, Decimal("8"), fulfillment_actor
        ).request
        request_service.complete_request(request.id, production_actor)
        with pytest.raises(RequestCompletedError) as exc_info:
            request_service.cancel_request(request.id, fulfillment_actor)
        assert exc_info.value.operation == "cancel"

    def test_cancel_twice_is_rejected(self, request_service, fulfillment_actor, wreath):
        request = request_service.create_request(
            wreath.id, Decimal("8"), fulfillment_actor
        ).request
        request_service.cancel_request(request.id, fulfillment_actor)
        with pytest.raises(RequestCancelledError):
            request_service.cancel_request(request.id, fulfillment_actor)
