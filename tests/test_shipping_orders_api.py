from datetime import datetime

from sqlalchemy import select

from conftest import make_product, stock_in
from posledger.models.audit_log import AuditLog


def _seed_products(session_local) -> dict[str, str]:
    with session_local() as db:
        a = make_product(db, "P0001", name="Paracetamol 500mg", selling_price="120")
        b = make_product(db, "P0002", name="Amoxicillin 250mg")
        stock_in(db, a, 10, "50", minutes=0)
        stock_in(db, a, 10, "70", minutes=1)
        stock_in(db, b, 3, "20", minutes=2)
        db.commit()
        return {"P0001": a.id, "P0002": b.id}


def _order_payload(**overrides) -> dict:
    payload = {
        "counterparty_name": "Kang-Ning Clinic",
        "items": [
            {
                "product_code": "P0001",
                "quantity": 15,
                "line_total": 1500.0,
                "pack_size": 5,
                "pack_count": 3,
            }
        ],
    }
    payload.update(overrides)
    return payload


def _assert_error(res, status_code: int, code: str) -> dict:
    assert res.status_code == status_code, res.text
    error = res.json()["error"]
    assert error["code"] == code
    assert error["request_id"]
    assert error["path"]
    return error


def test_create_fulfill_report_and_cancel(test_context):
    client, session_local = test_context
    products = _seed_products(session_local)

    create_res = client.post("/shipping-orders", json=_order_payload(), headers={"X-Actor": "pharmacist-1"})
    assert create_res.status_code == 200, create_res.text
    created = create_res.json()
    assert created["status"] == "pending"
    assert created["total_amount"] == 1500.0
    assert created["payment_status"] == "unpaid"
    assert created["human_number"].startswith("SO" + datetime.now().strftime("%Y%m%d"))
    assert created["items"][0]["unit_cost"] == 100.0
    assert created["items"][0]["product_name"] == "Paracetamol 500mg"
    assert create_res.headers["X-Request-ID"]
    order_id = created["id"]

    fulfil_res = client.patch(f"/shipping-orders/{order_id}/status", json={"status": "fulfilled"})
    assert fulfil_res.status_code == 200, fulfil_res.text
    assert fulfil_res.json()["status"] == "fulfilled"

    stock_res = client.get(f"/inventory/stock/{products['P0001']}")
    assert stock_res.status_code == 200, stock_res.text
    assert stock_res.json()["on_hand"] == 5

    report_res = client.get(f"/fifo/shipping-orders/{order_id}")
    assert report_res.status_code == 200, report_res.text
    report = report_res.json()
    assert report["items"][0]["result"]["cost"] == 850.0
    assert report["summary"]["total_profit"] == 650.0
    assert report["summary"]["margin_pct"] == 43.33

    holding_res = client.get(f"/shipping-orders/by-product/{products['P0001']}")
    assert [row["id"] for row in holding_res.json()] == [order_id]

    cancel_res = client.patch(f"/shipping-orders/{order_id}/status", json={"status": "cancelled", "note": "Clinic closed"})
    assert cancel_res.status_code == 200, cancel_res.text
    assert cancel_res.json()["notes"] == "Clinic closed"
    assert client.get(f"/inventory/stock/{products['P0001']}").json()["on_hand"] == 20

    with session_local() as db:
        actors = db.execute(
            select(AuditLog.actor).where(AuditLog.target_id == order_id, AuditLog.action == "order.create")
        ).scalars().all()
        assert actors == ["pharmacist-1"]


def test_domain_errors_use_error_envelope(test_context):
    client, session_local = test_context
    _seed_products(session_local)

    short = client.post(
        "/shipping-orders",
        json=_order_payload(items=[{"product_code": "P0002", "quantity": 5, "line_total": 50.0}]),
    )
    error = _assert_error(short, 400, "insufficient_stock")
    assert error["details"][0]["product_code"] == "P0002"
    assert error["details"][0]["on_hand"] == 3

    unknown = client.post(
        "/shipping-orders",
        json=_order_payload(items=[{"product_code": "NOPE", "quantity": 1, "line_total": 1.0}]),
    )
    _assert_error(unknown, 404, "product_not_found")

    first = client.post("/shipping-orders", json=_order_payload(human_number="so-manual-1"))
    assert first.status_code == 200, first.text
    assert first.json()["human_number"] == "SO-MANUAL-1"
    duplicate = client.post("/shipping-orders", json=_order_payload(human_number="SO-Manual-1"))
    _assert_error(duplicate, 409, "duplicate_order_number")

    order_id = first.json()["id"]
    jump = client.patch(f"/shipping-orders/{order_id}/status", json={"status": "delivered"})
    _assert_error(jump, 400, "invalid_status_transition")

    assert client.patch(f"/shipping-orders/{order_id}/status", json={"status": "fulfilled"}).status_code == 200
    assert client.patch(f"/shipping-orders/{order_id}/status", json={"status": "delivered"}).status_code == 200
    locked = client.put(f"/shipping-orders/{order_id}", json={"notes": "too late"})
    _assert_error(locked, 409, "order_locked")
    _assert_error(client.delete(f"/shipping-orders/{order_id}"), 409, "order_locked")

    _assert_error(client.get("/shipping-orders/missing"), 404, "not_found")


def test_request_validation_uses_error_envelope(test_context):
    client, _ = test_context

    res = client.post("/shipping-orders", json={"items": []})

    error = _assert_error(res, 422, "validation_error")
    assert any(detail["field"] == "items" for detail in error["details"])


def test_allow_negative_stock_reports_warnings(test_context):
    client, session_local = test_context
    products = _seed_products(session_local)

    res = client.post(
        "/shipping-orders",
        json=_order_payload(
            status="fulfilled",
            allow_negative_stock=True,
            items=[{"product_code": "P0002", "quantity": 5, "unit_cost": 30.0}],
        ),
    )

    assert res.status_code == 200, res.text
    body = res.json()
    assert body["warnings"] == [{"product_id": products["P0002"], "product_code": "P0002", "on_hand": 3, "requested": 5}]
    assert body["total_amount"] == 150.0
    assert client.get(f"/inventory/stock/{products['P0002']}").json()["on_hand"] == -2


def test_update_list_and_delete(test_context):
    client, session_local = test_context
    products = _seed_products(session_local)

    created = client.post("/shipping-orders", json=_order_payload(invoice_number="INV-2024-77")).json()
    order_id = created["id"]

    update_res = client.put(
        f"/shipping-orders/{order_id}",
        json={
            "status": "fulfilled",
            "items": [
                {"product_code": "P0001", "quantity": 2, "unit_cost": 110.0},
                {"product_code": "P0002", "quantity": 1, "line_total": 35.0},
            ],
        },
    )
    assert update_res.status_code == 200, update_res.text
    updated = update_res.json()
    assert updated["total_amount"] == 255.0
    assert [item["product_code"] for item in updated["items"]] == ["P0001", "P0002"]
    assert updated["counterparty_name"] == "Kang-Ning Clinic"

    list_res = client.get("/shipping-orders", params={"search": "inv-2024", "status": "fulfilled"})
    assert list_res.status_code == 200, list_res.text
    listed = list_res.json()
    assert listed["pagination"]["total"] == 1
    assert listed["items"][0]["id"] == order_id

    ledger_res = client.get("/inventory/ledger", params={"source_order_id": order_id})
    assert ledger_res.json()["pagination"]["total"] == 2

    delete_res = client.delete(f"/shipping-orders/{order_id}")
    assert delete_res.status_code == 200, delete_res.text
    assert delete_res.json() == {"ok": True, "ledger_entries_removed": 2}
    assert client.get(f"/inventory/stock/{products['P0001']}").json()["on_hand"] == 20
    assert client.get(f"/shipping-orders/{order_id}").status_code == 404


def test_next_number_preview(test_context):
    client, session_local = test_context
    _seed_products(session_local)

    preview = client.get("/shipping-orders/next-number").json()["human_number"]
    created = client.post("/shipping-orders", json=_order_payload()).json()

    assert created["human_number"] == preview
    assert client.get("/shipping-orders/next-number").json()["human_number"] != preview


def test_inventory_endpoints(test_context):
    client, session_local = test_context
    products = _seed_products(session_local)

    stock_in_res = client.post(
        "/inventory/stock-in",
        json={"product_code": "p0002", "qty": 7, "unit_cost": 22.5, "source_order_number": "PO-1"},
        headers={"X-Actor": "warehouse"},
    )
    assert stock_in_res.status_code == 200, stock_in_res.text
    assert stock_in_res.json()["kind"] == "inbound"
    assert stock_in_res.json()["unit_amount"] == 22.5

    adjust_res = client.post(
        "/inventory/adjust",
        json={"product_code": "P0002", "qty_delta": -4, "reason": "expired", "note": "batch 12"},
    )
    assert adjust_res.status_code == 200, adjust_res.text
    assert adjust_res.json()["note"] == "expired: batch 12"

    too_much = client.post(
        "/inventory/adjust",
        json={"product_code": "P0002", "qty_delta": -50, "reason": "expired"},
    )
    _assert_error(too_much, 400, "insufficient_stock")

    stock = client.get(f"/inventory/stock/{products['P0002']}").json()
    assert stock == {"product_id": products["P0002"], "product_code": "P0002", "exclude_from_stock": False, "on_hand": 6}

    ledger = client.get("/inventory/ledger", params={"product_id": products["P0002"], "kind": "adjustment"}).json()
    assert ledger["pagination"]["total"] == 1

    bad_kind = client.get("/inventory/ledger", params={"kind": "transfer"})
    _assert_error(bad_kind, 400, "bad_request")

    _assert_error(client.get("/inventory/stock/missing"), 404, "product_not_found")


def test_fifo_product_report_and_simulation(test_context):
    client, session_local = test_context
    products = _seed_products(session_local)

    created = client.post("/shipping-orders", json=_order_payload(status="fulfilled"))
    assert created.status_code == 200, created.text

    report = client.get(f"/fifo/products/{products['P0001']}").json()
    assert len(report["lines"]) == 1
    assert [s["quantity"] for s in report["lines"][0]["result"]["slices"]] == [10, 5]
    assert report["summary"]["total_cost"] == 850.0

    simulation = client.post("/fifo/simulate", json={"product_code": "P0001", "quantity": 8})
    assert simulation.status_code == 200, simulation.text
    body = simulation.json()
    assert body["unconsumed_layer_quantity"] == 5
    assert body["result"]["has_shortfall"] is True
    assert body["result"]["shortfall_quantity"] == 3
    assert body["result"]["revenue"] == 960.0
    assert body["result"]["cost"] == 710.0

    zero_revenue = client.post("/fifo/simulate", json={"product_code": "P0001", "quantity": 1, "unit_revenue": 0})
    assert zero_revenue.json()["result"]["margin_pct"] is None
