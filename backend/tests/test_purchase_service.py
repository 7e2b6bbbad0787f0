import random
from datetime import date, datetime
from decimal import Decimal

import pytest

from omnistock.models import Purchase, PurchaseItem
from omnistock.services import inventory_service, purchase_service, sequence_service
from omnistock.services.errors import InvalidStatusTransition, InvariantViolation, NotFound
from omnistock.services.purchase_service import allocate_shipping_cost


def _purchase(store, *lines, shipping_cost=0, purchased_at=date(2025, 6, 15)):
    return purchase_service.create_purchase({
        "store_id": store.id,
        "shipping_cost": shipping_cost,
        "purchased_at": purchased_at,
        "items": [
            {"product_variant_id": v.id, "quantity": q, "unit_cost": c}
            for v, q, c in lines
        ],
    })


def _walk(purchase, *statuses):
    for status in statuses:
        purchase = purchase_service.transition_purchase_status(purchase, status)
    return purchase


class TestShippingAllocation:
    def test_two_lines(self):
        assert allocate_shipping_cost(10000, [10, 5]) == [6667, 3333]

    def test_three_equal_lines_last_absorbs_remainder(self):
        assert allocate_shipping_cost(100000, [1, 1, 1]) == [33333, 33333, 33334]

    def test_no_shipping(self):
        assert allocate_shipping_cost(0, [4, 2]) == [0, 0]

    def test_half_up_overshoot_is_corrected(self):
        allocations = allocate_shipping_cost(2, [1, 1, 1, 1])
        assert sum(allocations) == 2
        assert all(a >= 0 for a in allocations)

    def test_random_allocations_sum_exactly(self):
        rng = random.Random(20250615)
        for _ in range(500):
            quantities = [rng.randint(1, 50) for _ in range(rng.randint(1, 8))]
            shipping = rng.randint(0, 1_000_000)

            allocations = allocate_shipping_cost(shipping, quantities)

            assert sum(allocations) == shipping
            assert len(allocations) == len(quantities)
            assert all(a >= 0 for a in allocations)

    def test_invalid_input(self):
        with pytest.raises(InvariantViolation):
            allocate_shipping_cost(-1, [1])
        with pytest.raises(InvariantViolation):
            allocate_shipping_cost(100, [])
        with pytest.raises(InvariantViolation):
            allocate_shipping_cost(100, [2, 0])


def test_can_transition():
    assert purchase_service.can_transition("pending", "confirmed")
    assert purchase_service.can_transition("received", "cancelled")
    assert not purchase_service.can_transition("pending", "received")
    assert not purchase_service.can_transition("confirmed", "confirmed")
    assert not purchase_service.can_transition("completed", "pending")


def test_create_purchase(db_session, store, variant, second_variant):
    purchase = _purchase(store, (variant, 10, 1000), (second_variant, 5, 2000), shipping_cost=10000)

    assert purchase.purchase_number == "PO-20250615-0001"
    assert purchase.status == "pending"
    assert [i.allocated_shipping_cost for i in purchase.items] == [6667, 3333]
    assert purchase.total_amount == 10 * 1000 + 5 * 2000 + 10000
    # Nothing is received until completion
    assert inventory_service.get_quantity(store.id, variant.id) == 0


@pytest.mark.parametrize("field,value", [
    ("shipping_cost", "12.50"),
    ("shipping_cost", Decimal("12.50")),
    ("unit_cost", "999"),
    ("unit_cost", Decimal("9.99")),
    ("unit_cost", True),
])
def test_create_purchase_rejects_non_integer_amounts(db_session, store, variant, field, value):
    data = {
        "store_id": store.id,
        "purchased_at": "2025-06-15",
        "items": [{"product_variant_id": variant.id, "quantity": 2, "unit_cost": 999}],
    }
    if field == "shipping_cost":
        data["shipping_cost"] = value
    else:
        data["items"][0]["unit_cost"] = value

    with pytest.raises(InvariantViolation) as excinfo:
        purchase_service.create_purchase(data)

    assert field in str(excinfo.value)
    assert db_session.query(Purchase).count() == 0
    assert sequence_service.current_sequence("purchase", "20250615") == 0


def test_create_purchase_takes_integer_cents(db_session, store, variant):
    purchase = purchase_service.create_purchase({
        "store_id": store.id,
        "shipping_cost": 1250,
        "items": [{"product_variant_id": variant.id, "quantity": 2, "unit_cost": 999}],
    })

    assert purchase.shipping_cost == 1250
    assert purchase.items[0].unit_cost == 999
    assert purchase.total_amount == 2 * 999 + 1250


def test_failed_create_leaves_counter_untouched(db_session, store, variant):
    with pytest.raises(NotFound):
        purchase_service.create_purchase({
            "store_id": store.id,
            "purchased_at": "2025-06-15",
            "items": [{"product_variant_id": 999999, "quantity": 1, "unit_cost": 100}],
        })

    assert db_session.query(Purchase).count() == 0
    assert sequence_service.current_sequence("purchase", "20250615") == 0


@pytest.mark.parametrize("items", [
    [],
    [{"product_variant_id": "VARIANT", "quantity": 0, "unit_cost": 100}],
    [{"product_variant_id": "VARIANT", "quantity": 1, "unit_cost": -5}],
    [{"product_variant_id": "VARIANT", "quantity": 1, "unit_cost": 9.99}],
])
def test_create_purchase_validation(db_session, store, variant, items):
    items = [{**item, "product_variant_id": variant.id} for item in items]
    with pytest.raises(InvariantViolation):
        purchase_service.create_purchase({"store_id": store.id, "items": items})


def test_update_replaces_items_and_reallocates(db_session, store, variant, second_variant):
    purchase = _purchase(store, (variant, 10, 1000), shipping_cost=900)

    purchase = purchase_service.update_purchase(purchase, {
        "shipping_cost": 100000,
        "items": [
            {"product_variant_id": variant.id, "quantity": 1, "unit_cost": 1000},
            {"product_variant_id": second_variant.id, "quantity": 1, "unit_cost": 1000},
            {"product_variant_id": variant.id, "quantity": 1, "unit_cost": 1200},
        ],
    })

    assert [i.allocated_shipping_cost for i in purchase.items] == [33333, 33333, 33334]
    assert db_session.query(PurchaseItem).count() == 3
    assert purchase.total_amount == 3200 + 100000


def test_update_shipping_only_keeps_items(db_session, store, variant, second_variant):
    purchase = _purchase(store, (variant, 10, 1000), (second_variant, 5, 1000))
    purchase = _walk(purchase, "confirmed")

    purchase = purchase_service.update_purchase(purchase, {"shipping_cost": 10000})

    assert [i.allocated_shipping_cost for i in purchase.items] == [6667, 3333]


@pytest.mark.parametrize("path", [
    ["confirmed", "received"],
    ["confirmed", "received", "completed"],
    ["cancelled"],
])
def test_update_rejected_outside_pending_or_confirmed(db_session, store, variant, path):
    purchase = _walk(_purchase(store, (variant, 1, 100)), *path)

    with pytest.raises(InvariantViolation):
        purchase_service.update_purchase(purchase, {"shipping_cost": 500})

    assert purchase_service.get_purchase(purchase.id).shipping_cost == 0


def test_completion_receives_stock_and_cost(db_session, store, variant, second_variant):
    purchase = _purchase(store, (variant, 10, 1000), (second_variant, 5, 2000), shipping_cost=10000)

    purchase = _walk(purchase, "confirmed", "received")
    assert inventory_service.get_quantity(store.id, variant.id) == 0

    purchase = _walk(purchase, "completed")

    assert purchase.status == "completed"
    assert isinstance(purchase.completed_at, datetime)
    assert inventory_service.get_quantity(store.id, variant.id) == 10
    assert inventory_service.get_quantity(store.id, second_variant.id) == 5

    db_session.refresh(variant)
    db_session.refresh(second_variant)
    assert variant.total_purchased_quantity == 10
    assert variant.total_cost_amount == 16667
    assert variant.average_cost == 1667
    assert second_variant.total_cost_amount == 13333
    assert second_variant.average_cost == 2667


def test_completion_accumulates_over_purchases(db_session, store, variant, stock):
    stock(store.id, variant.id, 2)
    _walk(_purchase(store, (variant, 10, 1000)), "confirmed", "received", "completed")
    _walk(_purchase(store, (variant, 30, 2000)), "confirmed", "received", "completed")

    db_session.refresh(variant)
    assert variant.average_cost == 1750
    assert inventory_service.get_quantity(store.id, variant.id) == 42


def test_completion_is_atomic(db_session, store, variant, second_variant):
    """A failing line leaves the ledger, accumulators and status untouched."""
    purchase = _walk(
        _purchase(store, (variant, 4, 1000), (second_variant, 6, 1000)),
        "confirmed",
        "received",
    )
    # Break the second line behind the service's back
    db_session.query(PurchaseItem).filter_by(product_variant_id=second_variant.id).update(
        {"product_variant_id": 999999}
    )
    db_session.commit()

    with pytest.raises(NotFound):
        purchase_service.transition_purchase_status(purchase, "completed")

    assert purchase_service.get_purchase(purchase.id).status == "received"
    assert inventory_service.get_quantity(store.id, variant.id) == 0
    db_session.refresh(variant)
    assert variant.total_purchased_quantity == 0


def test_completed_to_pending_is_rejected(db_session, store, variant):
    purchase = _walk(_purchase(store, (variant, 1, 100)), "confirmed", "received", "completed")

    with pytest.raises(InvalidStatusTransition) as excinfo:
        purchase_service.transition_purchase_status(purchase, "pending")

    assert excinfo.value.from_status == "completed"
    assert excinfo.value.to_status == "pending"
    assert "completed" in str(excinfo.value) and "pending" in str(excinfo.value)
    assert inventory_service.get_quantity(store.id, variant.id) == 1


@pytest.mark.parametrize("path,target", [
    ([], "received"),
    ([], "completed"),
    (["confirmed"], "completed"),
    (["cancelled"], "confirmed"),
    (["confirmed", "received", "completed"], "cancelled"),
])
def test_illegal_purchase_transitions(db_session, store, variant, path, target):
    purchase = _walk(_purchase(store, (variant, 1, 100)), *path)
    status = purchase.status

    with pytest.raises(InvalidStatusTransition):
        purchase_service.transition_purchase_status(purchase, target)

    assert purchase_service.get_purchase(purchase.id).status == status


def test_cancel_stamps_cancelled_at(db_session, store, variant):
    purchase = _walk(_purchase(store, (variant, 1, 100)), "confirmed", "cancelled")

    assert purchase.status == "cancelled"
    assert purchase.cancelled_at is not None
    assert inventory_service.get_quantity(store.id, variant.id) == 0
