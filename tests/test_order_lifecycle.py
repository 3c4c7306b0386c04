from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from conftest import make_product, stock_in
from posledger.core.config import settings
from posledger.core.errors import (
    DuplicateOrderNumber,
    InsufficientStock,
    InvalidOrderData,
    InvalidStatusTransition,
    OrderLocked,
    OrderNotEditable,
    OrderNotFound,
    ProductNotFound,
)
from posledger.models.audit_log import AuditLog
from posledger.models.customer import Customer, Supplier
from posledger.models.inventory import KIND_OUTBOUND_SHIPMENT
from posledger.models.order import ShippingOrder
from posledger.schemas.order import OrderItemIn, ShippingOrderCreate, ShippingOrderUpdate
from posledger.services import order_service
from posledger.services.inventory_service import append_entry, list_entries
from posledger.services.stock_service import get_on_hand

TODAY = date(2024, 3, 15)


def _item(code: str, quantity: int, line_total: str | None = None, unit_cost: str | None = None) -> OrderItemIn:
    return OrderItemIn(
        product_code=code,
        quantity=quantity,
        line_total=Decimal(line_total) if line_total is not None else None,
        unit_cost=Decimal(unit_cost) if unit_cost is not None else None,
    )


def _create(db, *items: OrderItemIn, **fields):
    payload = ShippingOrderCreate(items=list(items), **fields)
    return order_service.create_order(db, payload, actor="tester", today=TODAY)


def _shipments(db, order_id: str):
    total, rows = list_entries(db, source_order_id=order_id, kind=KIND_OUTBOUND_SHIPMENT)
    return rows


@pytest.fixture()
def product_a(db):
    product = make_product(db, "A")
    stock_in(db, product, 20, "60")
    return product


def test_create_fulfill_cancel_round_trip(db, product_a):
    created = _create(db, _item("A", 5, line_total="500"))
    order = created.order

    assert order.status == "pending"
    assert order.human_number == "SO20240315001"
    assert order.total_amount == Decimal("500.00")
    assert created.items[0].unit_cost == Decimal("100.0000")
    assert get_on_hand(db, product_a.id) == 20

    order_service.change_status(db, order.id, "fulfilled", actor="tester")
    entries = _shipments(db, order.id)
    assert [(e.product_id, e.qty_delta) for e in entries] == [(product_a.id, -5)]
    assert entries[0].source_order_number == "SO20240315001"
    assert entries[0].total_amount == Decimal("500.00")
    assert get_on_hand(db, product_a.id) == 15

    order_service.change_status(db, order.id, "cancelled", actor="tester")
    assert _shipments(db, order.id) == []
    assert get_on_hand(db, product_a.id) == 20


def test_fulfilling_twice_deducts_once(db, product_a):
    order = _create(db, _item("A", 5, line_total="500")).order

    order_service.change_status(db, order.id, "fulfilled", actor="tester")
    order_service.change_status(db, order.id, "fulfilled", actor="tester")

    assert len(_shipments(db, order.id)) == 1
    assert get_on_hand(db, product_a.id) == 15


def test_reversal_round_trip_leaves_single_deduction(db, product_a):
    order = _create(db, _item("A", 5, line_total="500")).order

    order_service.change_status(db, order.id, "fulfilled", actor="tester")
    order_service.change_status(db, order.id, "pending", actor="tester")
    assert get_on_hand(db, product_a.id) == 20
    order_service.change_status(db, order.id, "fulfilled", actor="tester")

    assert len(_shipments(db, order.id)) == 1
    assert get_on_hand(db, product_a.id) == 15


def test_interrupted_fulfillment_is_completed_by_retry(db, product_a):
    product_b = make_product(db, "B")
    stock_in(db, product_b, 10, "4")
    order = _create(db, _item("A", 5, line_total="500"), _item("B", 3, line_total="60")).order

    # State left behind by a run that stopped after the first item.
    order.status = "fulfilled"
    append_entry(
        db,
        product_id=product_a.id,
        qty_delta=-5,
        kind=KIND_OUTBOUND_SHIPMENT,
        source_order_id=order.id,
        source_order_number=order.human_number,
        total_amount=Decimal("500"),
    )

    order_service.change_status(db, order.id, "fulfilled", actor="tester")

    assert len(_shipments(db, order.id)) == 2
    assert get_on_hand(db, product_a.id) == 15
    assert get_on_hand(db, product_b.id) == 7


def test_delivered_order_is_locked(db, product_a):
    order = _create(db, _item("A", 5, line_total="500")).order
    order_service.change_status(db, order.id, "fulfilled", actor="tester")
    order_service.change_status(db, order.id, "delivered", actor="tester")

    with pytest.raises(OrderLocked):
        order_service.change_status(db, order.id, "cancelled", actor="tester")
    with pytest.raises(OrderLocked):
        order_service.change_status(db, order.id, "delivered", actor="tester")
    with pytest.raises(OrderLocked):
        order_service.update_order(db, order.id, ShippingOrderUpdate(notes="late edit"), actor="tester")
    with pytest.raises(OrderLocked):
        order_service.delete_order(db, order.id, actor="tester")

    assert order.status == "delivered"
    assert order.notes is None
    assert get_on_hand(db, product_a.id) == 15


def test_transition_outside_the_table_is_rejected(db, product_a):
    order = _create(db, _item("A", 5, line_total="500")).order

    with pytest.raises(InvalidStatusTransition):
        order_service.change_status(db, order.id, "delivered", actor="tester")
    with pytest.raises(InvalidOrderData):
        order_service.change_status(db, order.id, "shipped", actor="tester")

    assert order.status == "pending"
    assert _shipments(db, order.id) == []


def test_items_cannot_change_while_stock_is_held(db, product_a):
    order = _create(db, _item("A", 5, line_total="500")).order
    order_service.change_status(db, order.id, "fulfilled", actor="tester")

    with pytest.raises(OrderNotEditable):
        order_service.update_order(
            db,
            order.id,
            ShippingOrderUpdate(items=[_item("A", 2, line_total="200")]),
            actor="tester",
        )
    assert get_on_hand(db, product_a.id) == 15


def test_reverse_and_edit_in_one_update(db, product_a):
    order = _create(db, _item("A", 5, line_total="500")).order
    order_service.change_status(db, order.id, "fulfilled", actor="tester")

    result = order_service.update_order(
        db,
        order.id,
        ShippingOrderUpdate(status="pending", items=[_item("A", 2, unit_cost="120")]),
        actor="tester",
    )

    assert result.order.status == "pending"
    assert result.order.total_amount == Decimal("240.00")
    assert get_on_hand(db, product_a.id) == 20

    order_service.change_status(db, order.id, "fulfilled", actor="tester")
    assert [e.qty_delta for e in _shipments(db, order.id)] == [-2]
    assert get_on_hand(db, product_a.id) == 18


def test_reverse_and_edit_counts_released_stock_as_available(db):
    product = make_product(db, "T")
    stock_in(db, product, 5, "60")
    order = _create(db, _item("T", 5, line_total="500")).order
    order_service.change_status(db, order.id, "fulfilled", actor="tester")
    assert get_on_hand(db, product.id) == 0

    result = order_service.update_order(
        db,
        order.id,
        ShippingOrderUpdate(status="pending", items=[_item("T", 5, unit_cost="110")]),
        actor="tester",
    )

    assert result.order.status == "pending"
    assert result.warnings == []
    assert result.order.total_amount == Decimal("550.00")
    assert get_on_hand(db, product.id) == 5

    with pytest.raises(InsufficientStock):
        order_service.update_order(
            db,
            order.id,
            ShippingOrderUpdate(items=[_item("T", 6, unit_cost="110")]),
            actor="tester",
        )


def test_edit_then_fulfil_in_one_update_uses_new_items(db, product_a):
    order = _create(db, _item("A", 5, line_total="500")).order

    order_service.update_order(
        db,
        order.id,
        ShippingOrderUpdate(status="fulfilled", items=[_item("A", 7, line_total="700")]),
        actor="tester",
    )

    assert [e.qty_delta for e in _shipments(db, order.id)] == [-7]
    assert order.total_amount == Decimal("700.00")


def test_update_recomputes_total_from_items(db, product_a):
    product_b = make_product(db, "B")
    stock_in(db, product_b, 10, "4")
    order = _create(db, _item("A", 5, line_total="500")).order

    result = order_service.update_order(
        db,
        order.id,
        ShippingOrderUpdate(items=[_item("A", 2, unit_cost="30"), _item("B", 3, line_total="10")]),
        actor="tester",
    )

    assert result.order.total_amount == Decimal("70.00")
    assert [item.product_code for item in result.items] == ["A", "B"]
    assert result.items[1].unit_cost == Decimal("3.3333")
    assert len(order_service.get_order_items(db, order.id)) == 2


def test_insufficient_stock_rejects_before_anything_is_written(db):
    product = make_product(db, "A")
    stock_in(db, product, 2, "10")

    with pytest.raises(InsufficientStock) as exc_info:
        _create(db, _item("A", 5, line_total="500"), status="fulfilled")

    assert exc_info.value.details[0]["product_code"] == "A"
    assert db.query(ShippingOrder).count() == 0
    assert get_on_hand(db, product.id) == 2


def test_allow_negative_stock_returns_warnings(db):
    product = make_product(db, "A")
    stock_in(db, product, 2, "10")

    result = _create(db, _item("A", 5, line_total="500"), status="fulfilled", allow_negative_stock=True)

    assert result.warnings == [{"product_id": product.id, "product_code": "A", "on_hand": 2, "requested": 5}]
    assert get_on_hand(db, product.id) == -3


def test_global_negative_stock_policy(db, monkeypatch):
    monkeypatch.setattr(settings, "allow_negative_stock", True)
    make_product(db, "A")

    result = _create(db, _item("A", 1, line_total="10"))

    assert len(result.warnings) == 1


def test_excluded_product_ships_past_zero(db):
    product = make_product(db, "SVC-1", exclude_from_stock=True)

    result = _create(db, _item("svc-1", 3, line_total="90"), status="fulfilled")

    assert result.items[0].product_code == "SVC-1"
    assert get_on_hand(db, product.id) == -3


def test_unknown_product_is_reported_with_its_code(db, product_a):
    with pytest.raises(ProductNotFound) as exc_info:
        _create(db, _item("A", 1, line_total="10"), _item("ZZZ", 1, line_total="10"))

    assert exc_info.value.product_code == "ZZZ"
    assert db.query(ShippingOrder).count() == 0


def test_malformed_and_duplicate_codes_are_rejected(db, product_a):
    with pytest.raises(InvalidOrderData):
        _create(db, _item("A 1", 1, line_total="10"))
    with pytest.raises(InvalidOrderData):
        _create(db, _item("A", 1, line_total="10"), _item("a", 2, line_total="20"))


def test_item_without_amount_is_rejected():
    with pytest.raises(ValueError):
        OrderItemIn(product_code="A", quantity=1)


def test_create_directly_as_fulfilled(db, product_a):
    result = _create(db, _item("A", 4, line_total="400"), status="fulfilled")

    assert result.order.status == "fulfilled"
    assert get_on_hand(db, product_a.id) == 16


def test_create_with_unreachable_status_is_rejected(db, product_a):
    with pytest.raises(InvalidStatusTransition):
        _create(db, _item("A", 4, line_total="400"), status="delivered")
    assert db.query(ShippingOrder).count() == 0


def test_delete_fulfilled_order_restores_stock(db, product_a):
    order = _create(db, _item("A", 5, line_total="500"), status="fulfilled").order

    removed = order_service.delete_order(db, order.id, actor="tester")

    assert removed == 1
    assert get_on_hand(db, product_a.id) == 20
    with pytest.raises(OrderNotFound):
        order_service.get_order(db, order.id)
    assert order_service.get_order_items(db, order.id) == []


def test_simple_workflow(db, product_a):
    order = _create(db, _item("A", 5, line_total="500"), workflow="simple").order

    with pytest.raises(InvalidOrderData):
        order_service.change_status(db, order.id, "fulfilled", actor="tester")

    order_service.change_status(db, order.id, "completed", actor="tester")
    assert get_on_hand(db, product_a.id) == 15
    order_service.change_status(db, order.id, "cancelled", actor="tester")
    assert get_on_hand(db, product_a.id) == 20
    order_service.change_status(db, order.id, "pending", actor="tester")
    order_service.change_status(db, order.id, "completed", actor="tester")
    assert get_on_hand(db, product_a.id) == 15


def test_unknown_workflow_is_rejected(db, product_a):
    with pytest.raises(InvalidOrderData):
        _create(db, _item("A", 1, line_total="10"), workflow="express")


def test_counterparty_is_resolved_by_name(db, product_a):
    customer = Customer(name="Kang-Ning Clinic")
    supplier = Supplier(name="Taipei Medical Supply")
    db.add_all([customer, supplier])
    db.flush()

    to_customer = _create(db, _item("A", 1, line_total="10"), counterparty_name="kang-ning clinic").order
    to_supplier = _create(db, _item("A", 1, line_total="10"), counterparty_name="Taipei Medical Supply").order
    walk_in = _create(db, _item("A", 1, line_total="10"), counterparty_name="Walk-in").order

    assert to_customer.customer_id == customer.id
    assert to_customer.counterparty_name == "kang-ning clinic"
    assert to_supplier.supplier_id == supplier.id
    assert walk_in.customer_id is None and walk_in.supplier_id is None
    assert walk_in.counterparty_name == "Walk-in"


def test_explicit_counterparty_id_must_exist(db, product_a):
    with pytest.raises(InvalidOrderData):
        _create(db, _item("A", 1, line_total="10"), customer_id="missing")


def test_renumber_rules(db, product_a):
    first = _create(db, _item("A", 1, line_total="10")).order
    second = _create(db, _item("A", 1, line_total="10")).order

    with pytest.raises(DuplicateOrderNumber):
        order_service.update_order(db, second.id, ShippingOrderUpdate(human_number=first.human_number.lower()), actor="tester")

    order_service.update_order(db, second.id, ShippingOrderUpdate(human_number="so-manual-7"), actor="tester")
    assert second.human_number == "SO-MANUAL-7"

    order_service.change_status(db, second.id, "fulfilled", actor="tester")
    with pytest.raises(OrderNotEditable):
        order_service.update_order(db, second.id, ShippingOrderUpdate(human_number="SO-MANUAL-8"), actor="tester")


def test_orders_holding_product(db, product_a):
    held = _create(db, _item("A", 1, line_total="10"), status="fulfilled").order
    _create(db, _item("A", 1, line_total="10"))

    holding = order_service.list_orders_holding_product(db, product_a.id)

    assert [order.id for order in holding] == [held.id]


def test_list_orders_filters(db, product_a):
    _create(db, _item("A", 1, line_total="10"), counterparty_name="Kang-Ning Clinic", invoice_number="INV-1")
    _create(db, _item("A", 1, line_total="10"), counterparty_name="Walk-in", status="fulfilled")

    total, rows = order_service.list_orders(db, search="inv-1")
    assert total == 1 and rows[0].invoice_number == "INV-1"

    total, rows = order_service.list_orders(db, counterparty="walk")
    assert total == 1 and rows[0].status == "fulfilled"

    total, rows = order_service.list_orders(db, status="PENDING", limit=1)
    assert total == 1 and len(rows) == 1

    with pytest.raises(InvalidOrderData):
        order_service.list_orders(db, start_date=date(2024, 3, 2), end_date=date(2024, 3, 1))


def test_audit_trail_follows_the_lifecycle(db, product_a):
    order = _create(db, _item("A", 5, line_total="500")).order
    order_service.change_status(db, order.id, "fulfilled", actor="pharmacist")
    order_service.change_status(db, order.id, "cancelled", actor="pharmacist")
    db.flush()

    actions = db.execute(
        select(AuditLog.action).where(AuditLog.target_id == order.id).order_by(AuditLog.created_at, AuditLog.id)
    ).scalars().all()

    assert sorted(actions) == sorted(
        ["order.create", "order.status.update", "order.status.update", "ledger.remove_by_source"]
    )
