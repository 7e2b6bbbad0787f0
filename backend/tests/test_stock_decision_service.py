from datetime import date
from decimal import Decimal

import pytest

from omnistock.models import InventoryTransfer, Order, OrderItem
from omnistock.services import (
    inventory_service,
    order_service,
    sequence_service,
    stock_decision_service,
)
from omnistock.services.errors import InsufficientStock, InvariantViolation, NotFound
from omnistock.services.stock_decision_service import StockDecision, TransferSpec


def _order(store, *lines, decisions=None):
    return order_service.create_order({
        "store_id": store.id,
        "order_date": date(2025, 6, 1),
        "items": [{"product_variant_id": v.id, "quantity": q} for v, q in lines],
        "stock_decisions": decisions,
    })


def test_sufficient_stock_is_deducted(db_session, store, variant, stock):
    stock(store.id, variant.id, 5)

    order, resolution = _order(store, (variant, 3))

    assert order.order_number == "202506-0001"
    assert inventory_service.get_quantity(store.id, variant.id) == 2
    assert resolution.deductions == [{
        "line": 0,
        "store_id": store.id,
        "product_variant_id": variant.id,
        "quantity": 3,
        "remaining": 2,
    }]
    item = order.items[0]
    assert item.is_stocked_sale is True
    assert item.is_backorder is False
    assert item.price == 4500


def test_order_totals_and_cost_snapshot(db_session, store, variant, stock):
    stock(store.id, variant.id, 5)
    variant.average_cost = 1800
    db_session.commit()

    order, _ = order_service.create_order({
        "store_id": store.id,
        "items": [{"product_variant_id": variant.id, "quantity": 2, "price": 5000}],
        "shipping_fee": 700,
        "discount_amount": 1000,
    })

    assert order.subtotal == 10000
    assert order.grand_total == 9700
    assert order_service.get_order(order.id).order_number == order.order_number
    assert order.items[0].cost == 1800


@pytest.mark.parametrize("overrides", [
    {"price": "50.00"},
    {"price": -1},
    {"shipping_fee": "7.00"},
    {"discount_amount": Decimal("10")},
    {"shipping_fee": -700},
])
def test_order_amounts_must_be_integer_cents(db_session, store, variant, stock, overrides):
    stock(store.id, variant.id, 5)
    line = {"product_variant_id": variant.id, "quantity": 1}
    data = {"store_id": store.id, "order_date": date(2025, 6, 1), "items": [line]}
    if "price" in overrides:
        line["price"] = overrides["price"]
    else:
        data.update(overrides)

    with pytest.raises(InvariantViolation):
        order_service.create_order(data)

    assert inventory_service.get_quantity(store.id, variant.id) == 5
    assert db_session.query(Order).count() == 0
    assert sequence_service.current_sequence("order", "2025-06") == 0


def test_shortage_on_any_line_rolls_back_whole_order(db_session, store, variant, second_variant, stock):
    stock(store.id, variant.id, 5)
    stock(store.id, second_variant.id, 1)

    with pytest.raises(InsufficientStock) as excinfo:
        _order(store, (variant, 2), (second_variant, 3))

    assert excinfo.value.line == 1
    assert excinfo.value.available == 1
    assert excinfo.value.to_dict()["error"] == "InsufficientStock"
    assert inventory_service.get_quantity(store.id, variant.id) == 5
    assert inventory_service.get_quantity(store.id, second_variant.id) == 1
    assert db_session.query(Order).count() == 0
    assert db_session.query(OrderItem).count() == 0
    # The order number was not consumed
    assert sequence_service.current_sequence("order", "2025-06") == 0


def test_transfer_deducts_origin_and_creates_pending_transfer(db_session, store, other_store, variant, stock):
    stock(store.id, variant.id, 1)
    stock(other_store.id, variant.id, 10)

    order, resolution = _order(store, (variant, 4), decisions=[{
        "product_variant_id": variant.id,
        "action": "transfer",
        "transfers": [{"from_store_id": other_store.id, "quantity": 3}],
    }])

    assert inventory_service.get_quantity(other_store.id, variant.id) == 7
    assert inventory_service.get_quantity(store.id, variant.id) == 0

    [transfer] = resolution.transfers
    assert transfer.status == "pending"
    assert transfer.from_store_id == other_store.id
    assert transfer.to_store_id == store.id
    assert transfer.quantity == 3
    assert transfer.order_id == order.id
    assert transfer.order_item_id == order.items[0].id
    assert order.items[0].is_stocked_sale is True


def test_transfer_with_short_origin_changes_nothing(db_session, store, other_store, variant, stock):
    stock(other_store.id, variant.id, 2)

    with pytest.raises(InsufficientStock) as excinfo:
        _order(store, (variant, 3), decisions=[
            StockDecision(variant.id, "transfer", transfers=[TransferSpec(other_store.id, 3)]),
        ])

    assert excinfo.value.store_id == other_store.id
    assert inventory_service.get_quantity(other_store.id, variant.id) == 2
    assert db_session.query(InventoryTransfer).count() == 0


@pytest.mark.parametrize("transfers", [
    [],
    [{"from_store_id": "SELF", "quantity": 1}],
    [{"from_store_id": "OTHER", "quantity": 5}],
    [{"from_store_id": "OTHER", "quantity": 0}],
])
def test_malformed_transfer_decisions_are_rejected(db_session, store, other_store, variant, stock, transfers):
    stock(store.id, variant.id, 10)
    stock(other_store.id, variant.id, 10)
    ids = {"SELF": store.id, "OTHER": other_store.id}
    specs = [{**spec, "from_store_id": ids[spec["from_store_id"]]} for spec in transfers]

    with pytest.raises(InvariantViolation):
        _order(store, (variant, 4), decisions=[
            {"product_variant_id": variant.id, "action": "transfer", "transfers": specs},
        ])

    assert inventory_service.get_quantity(store.id, variant.id) == 10
    assert inventory_service.get_quantity(other_store.id, variant.id) == 10


def test_purchase_decision_creates_backorder_without_deduction(db_session, store, variant):
    order, resolution = _order(store, (variant, 6), decisions={
        variant.id: {"action": "purchase"},
    })

    item = order.items[0]
    assert item.is_backorder is True
    assert item.backorder_quantity == 6
    assert item.is_stocked_sale is False
    assert resolution.deductions == []
    assert resolution.backorder_items == [item]
    assert inventory_service.get_quantity(store.id, variant.id) == 0

    assert stock_decision_service.list_backorders(store_id=store.id) == [item]
    assert stock_decision_service.list_backorders(variant_id=variant.id + 1000) == []


def test_mixed_decision_splits_transfer_and_backorder(db_session, store, other_store, variant, stock):
    stock(other_store.id, variant.id, 2)

    order, resolution = _order(store, (variant, 5), decisions=[{
        "product_variant_id": variant.id,
        "action": "mixed",
        "transfers": [{"from_store_id": other_store.id, "quantity": 2}],
        "purchase_quantity": 3,
    }])

    item = order.items[0]
    assert inventory_service.get_quantity(other_store.id, variant.id) == 0
    assert len(resolution.transfers) == 1
    assert item.is_backorder is True
    assert item.backorder_quantity == 3
    assert item.is_stocked_sale is True


def test_mixed_quantities_must_add_up_before_any_mutation(db_session, store, other_store, variant, second_variant, stock):
    stock(store.id, second_variant.id, 5)
    stock(other_store.id, variant.id, 10)

    with pytest.raises(InvariantViolation) as excinfo:
        _order(store, (second_variant, 1), (variant, 5), decisions=[{
            "product_variant_id": variant.id,
            "action": "mixed",
            "transfers": [{"from_store_id": other_store.id, "quantity": 2}],
            "purchase_quantity": 2,
        }])

    assert excinfo.value.line == 1
    assert inventory_service.get_quantity(store.id, second_variant.id) == 5
    assert inventory_service.get_quantity(other_store.id, variant.id) == 10
    assert db_session.query(Order).count() == 0


def test_unknown_action_is_rejected(db_session, store, variant, stock):
    stock(store.id, variant.id, 5)
    with pytest.raises(InvariantViolation):
        _order(store, (variant, 1), decisions=[{"product_variant_id": variant.id, "action": "borrow"}])


def test_unknown_transfer_origin_is_not_found(db_session, store, variant):
    with pytest.raises(NotFound):
        _order(store, (variant, 1), decisions=[{
            "product_variant_id": variant.id,
            "action": "transfer",
            "transfers": [{"from_store_id": 999999, "quantity": 1}],
        }])


def test_decision_pinned_to_line(db_session, store, variant, stock):
    stock(store.id, variant.id, 2)

    order, _ = _order(store, (variant, 2), (variant, 4), decisions=[
        {"product_variant_id": variant.id, "action": "purchase", "line": 1},
    ])

    first, second = order.items
    assert first.is_backorder is False
    assert second.is_backorder is True
    assert inventory_service.get_quantity(store.id, variant.id) == 0


def test_pinned_decision_for_other_variant_is_rejected(db_session, store, variant, second_variant, stock):
    stock(store.id, variant.id, 5)
    stock(store.id, second_variant.id, 5)

    with pytest.raises(InvariantViolation) as excinfo:
        _order(store, (variant, 1), (second_variant, 2), decisions=[
            {"product_variant_id": variant.id, "action": "purchase", "line": 1},
        ])

    assert excinfo.value.line == 1
    assert inventory_service.get_quantity(store.id, variant.id) == 5
    assert inventory_service.get_quantity(store.id, second_variant.id) == 5
    assert db_session.query(Order).count() == 0


@pytest.mark.parametrize("decision", [
    {"action": "purchase", "variant": "SECOND"},
    {"action": "purchase", "variant": "FIRST", "line": 3},
])
def test_decision_matching_no_line_is_rejected(db_session, store, variant, second_variant, stock, decision):
    stock(store.id, variant.id, 5)
    ids = {"FIRST": variant.id, "SECOND": second_variant.id}
    value = {**decision, "product_variant_id": ids[decision["variant"]]}
    del value["variant"]

    with pytest.raises(InvariantViolation) as excinfo:
        _order(store, (variant, 2), decisions=[value])

    assert excinfo.value.line == decision.get("line")
    assert inventory_service.get_quantity(store.id, variant.id) == 5
    assert db_session.query(Order).count() == 0
    assert sequence_service.current_sequence("order", "2025-06") == 0


def test_batch_check_rejects_unmatched_decision(db_session, store, variant, second_variant):
    lines = [{"product_variant_id": variant.id, "quantity": 1}]

    with pytest.raises(InvariantViolation):
        stock_decision_service.batch_check_stock(store.id, lines, [
            {"product_variant_id": second_variant.id, "action": "purchase"},
        ])


def test_order_stock_is_resolved_only_once(db_session, store, variant, stock):
    stock(store.id, variant.id, 10)
    order, _ = _order(store, (variant, 3))
    assert order.stock_resolved_at is not None
    assert order.to_dict()["stock_resolved_at"].endswith("Z")

    with pytest.raises(InvariantViolation):
        stock_decision_service.resolve_order_stock(order)

    assert inventory_service.get_quantity(store.id, variant.id) == 7
    assert order_service.get_order(order.id).stock_resolved_at is not None


def test_batch_check_reports_only_short_line(db_session, store, variant, second_variant, product, stock):
    from omnistock.services import catalog_service

    third = catalog_service.create_variant(product.id, "SHIRT-S", price=4500)
    stock(store.id, variant.id, 5)
    stock(store.id, second_variant.id, 1)
    stock(store.id, third.id, 9)

    lines = [
        {"id": "line-1", "product_variant_id": variant.id, "quantity": 5},
        {"id": "line-2", "product_variant_id": second_variant.id, "quantity": 2},
        {"id": "line-3", "product_variant_id": third.id, "quantity": 9},
    ]

    assert stock_decision_service.batch_check_stock(store.id, lines) == ["line-2"]
    assert inventory_service.get_quantity(store.id, variant.id) == 5
    assert inventory_service.get_quantity(store.id, second_variant.id) == 1
    assert inventory_service.get_quantity(store.id, third.id) == 9


def test_batch_check_accumulates_lines_for_same_variant(db_session, store, variant, stock):
    stock(store.id, variant.id, 5)
    lines = [
        {"product_variant_id": variant.id, "quantity": 3},
        {"product_variant_id": variant.id, "quantity": 3},
    ]

    assert stock_decision_service.batch_check_stock(store.id, lines) == [1]


def test_batch_check_follows_transfer_decisions(db_session, store, other_store, variant, stock):
    stock(other_store.id, variant.id, 2)
    lines = [{"id": 7, "product_variant_id": variant.id, "quantity": 3}]
    decisions = [{
        "product_variant_id": variant.id,
        "action": "transfer",
        "transfers": [{"from_store_id": other_store.id, "quantity": 3}],
    }]

    assert stock_decision_service.batch_check_stock(store.id, lines, decisions) == [7]


@pytest.mark.parametrize("precheck,expected", [(False, []), (True, [0])])
def test_backorder_precheck_setting(app, db_session, store, variant, precheck, expected):
    lines = [{"product_variant_id": variant.id, "quantity": 4}]
    decisions = [{"product_variant_id": variant.id, "action": "purchase"}]

    app.config["BACKORDER_STOCK_PRECHECK"] = precheck
    try:
        assert stock_decision_service.batch_check_stock(store.id, lines, decisions) == expected
    finally:
        app.config["BACKORDER_STOCK_PRECHECK"] = False

    # An explicit argument wins over the setting
    assert stock_decision_service.batch_check_stock(store.id, lines, decisions, include_backorders=True) == [0]
    assert stock_decision_service.batch_check_stock(store.id, lines, decisions, include_backorders=False) == []


def test_resolve_order_stock_on_existing_order(db_session, store, variant, stock):
    stock(store.id, variant.id, 3)
    order = Order(order_number="202506-0500", store_id=store.id)
    order.items = [OrderItem(product_variant_id=variant.id, product_name="Linen Shirt", sku="SHIRT-M", quantity=3)]
    db_session.add(order)
    db_session.commit()

    resolution = stock_decision_service.resolve_order_stock(order)

    assert len(resolution.deductions) == 1
    assert inventory_service.get_quantity(store.id, variant.id) == 0
    assert resolution.to_dict()["transfers"] == []
