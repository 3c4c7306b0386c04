"""
Shipping order lifecycle.

Every operation validates its whole input (workflow, status transition,
items, counterparty, stock) before the first ledger write, and none of them
commits: callers own the transaction. Ledger effects come from the order's
workflow (see ``order_workflow``) and are idempotent per order/product, so
a transition interrupted halfway can simply be requested again.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from posledger.core.config import settings
from posledger.core.errors import DuplicateOrderNumber, InvalidOrderData, OrderNotEditable, OrderNotFound, ProductNotFound
from posledger.core.money import ZERO_MONEY, to_money, to_unit_cost, unit_amount_of
from posledger.models.customer import Customer, Supplier
from posledger.models.inventory import KIND_OUTBOUND_SHIPMENT, InventoryLedger
from posledger.models.order import ShippingOrder, ShippingOrderItem
from posledger.models.product import Product
from posledger.schemas.order import OrderItemIn, ShippingOrderCreate, ShippingOrderUpdate
from posledger.services.audit_service import log_audit_event
from posledger.services.inventory_service import append_entry, remove_by_source
from posledger.services.order_number_service import (
    AllocatedNumber,
    human_number_exists,
    insert_with_number,
    normalize_order_number,
    renumber_order,
)
from posledger.services.order_workflow import EFFECT_COMMIT_STOCK, EFFECT_RELEASE_STOCK, Workflow, get_workflow
from posledger.services.stock_service import StockRequirement, check_stock_availability

logger = logging.getLogger("posledger.orders")

PRODUCT_CODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass
class OrderResult:
    order: ShippingOrder
    items: list[ShippingOrderItem]
    warnings: list[dict] = field(default_factory=list)


@dataclass(frozen=True)
class ResolvedItem:
    product: Product
    product_name: str
    quantity: int
    unit_cost: Decimal
    line_total: Decimal
    pack_size: int | None
    pack_count: int | None
    notes: str | None


@dataclass(frozen=True)
class Counterparty:
    customer_id: str | None
    supplier_id: str | None
    name: str | None


def get_order(db: Session, order_id: str) -> ShippingOrder:
    order = db.get(ShippingOrder, order_id)
    if order is None:
        raise OrderNotFound(order_id)
    return order


def get_order_items(db: Session, order_id: str) -> list[ShippingOrderItem]:
    return list(
        db.execute(
            select(ShippingOrderItem)
            .where(ShippingOrderItem.order_id == order_id)
            .order_by(ShippingOrderItem.position.asc())
        ).scalars()
    )


def _resolve_items(db: Session, items: list[OrderItemIn]) -> list[ResolvedItem]:
    if not items:
        raise InvalidOrderData("An order needs at least one item")

    bad_codes = [item.product_code for item in items if not PRODUCT_CODE_PATTERN.match(item.product_code)]
    if bad_codes:
        raise InvalidOrderData(
            "Product codes may only contain letters, digits, '-' and '_'",
            details=[{"field": "product_code", "message": "invalid format", "value": code} for code in bad_codes],
        )

    codes = {item.product_code.lower() for item in items}
    products = db.execute(select(Product).where(func.lower(Product.code).in_(codes))).scalars().all()
    by_code = {product.code.lower(): product for product in products}

    resolved: list[ResolvedItem] = []
    seen: set[str] = set()
    for item in items:
        product = by_code.get(item.product_code.lower())
        if product is None:
            raise ProductNotFound(item.product_code)
        if product.id in seen:
            raise InvalidOrderData(
                f"Product {product.code} appears more than once; merge the lines",
                details=[{"field": "product_code", "message": "duplicate line", "value": product.code}],
            )
        seen.add(product.id)

        # line_total wins when both are given; it is what the document shows.
        if item.line_total is not None:
            line_total = to_money(item.line_total)
            unit_cost = unit_amount_of(line_total, item.quantity)
        elif item.unit_cost is not None:
            unit_cost = to_unit_cost(item.unit_cost)
            line_total = to_money(unit_cost * item.quantity)
        else:
            raise InvalidOrderData(f"Item {product.code} needs a unit_cost or a line_total")

        resolved.append(
            ResolvedItem(
                product=product,
                product_name=(item.product_name or "").strip() or product.name,
                quantity=item.quantity,
                unit_cost=unit_cost,
                line_total=line_total,
                pack_size=item.pack_size,
                pack_count=item.pack_count,
                notes=item.notes,
            )
        )
    return resolved


def _resolve_counterparty(
    db: Session,
    *,
    customer_id: str | None,
    supplier_id: str | None,
    name: str | None,
) -> Counterparty:
    name = (name or "").strip() or None
    if customer_id or supplier_id:
        if customer_id:
            customer = db.get(Customer, customer_id)
            if customer is None:
                raise InvalidOrderData(f"Customer not found: {customer_id}")
            name = name or customer.name
        if supplier_id:
            supplier = db.get(Supplier, supplier_id)
            if supplier is None:
                raise InvalidOrderData(f"Supplier not found: {supplier_id}")
            name = name or supplier.name
        return Counterparty(customer_id=customer_id, supplier_id=supplier_id, name=name)

    if name is None:
        return Counterparty(customer_id=None, supplier_id=None, name=None)

    customer = db.execute(
        select(Customer).where(func.lower(Customer.name) == name.lower()).order_by(Customer.created_at.asc()).limit(1)
    ).scalar_one_or_none()
    if customer is not None:
        return Counterparty(customer_id=customer.id, supplier_id=None, name=name)

    supplier = db.execute(
        select(Supplier).where(func.lower(Supplier.name) == name.lower()).order_by(Supplier.created_at.asc()).limit(1)
    ).scalar_one_or_none()
    if supplier is not None:
        return Counterparty(customer_id=None, supplier_id=supplier.id, name=name)
    return Counterparty(customer_id=None, supplier_id=None, name=name)


def _check_stock(
    db: Session,
    resolved: list[ResolvedItem],
    *,
    allow_negative: bool | None,
    released: dict[str, int] | None = None,
) -> list[dict]:
    return check_stock_availability(
        db,
        [
            StockRequirement(
                product_id=item.product.id,
                product_code=item.product.code,
                quantity=item.quantity,
                exclude_from_stock=item.product.exclude_from_stock,
            )
            for item in resolved
        ],
        allow_negative=settings.allow_negative_stock if allow_negative is None else allow_negative,
        released=released,
    )


def _held_quantities(db: Session, order: ShippingOrder) -> dict[str, int]:
    """Quantities per product that the order's shipment entries currently deduct."""
    rows = db.execute(
        select(InventoryLedger.product_id, func.sum(InventoryLedger.qty_delta))
        .where(
            InventoryLedger.source_order_id == order.id,
            InventoryLedger.kind == KIND_OUTBOUND_SHIPMENT,
        )
        .group_by(InventoryLedger.product_id)
    ).all()
    return {product_id: -int(total) for product_id, total in rows}


def _replace_items(db: Session, order: ShippingOrder, resolved: list[ResolvedItem]) -> list[ShippingOrderItem]:
    db.execute(delete(ShippingOrderItem).where(ShippingOrderItem.order_id == order.id))
    items: list[ShippingOrderItem] = []
    for position, item in enumerate(resolved):
        row = ShippingOrderItem(
            order_id=order.id,
            position=position,
            product_id=item.product.id,
            product_code=item.product.code,
            product_name=item.product_name,
            health_insurance_code=item.product.health_insurance_code,
            quantity=item.quantity,
            unit_cost=item.unit_cost,
            line_total=item.line_total,
            pack_size=item.pack_size,
            pack_count=item.pack_count,
            notes=item.notes,
        )
        db.add(row)
        items.append(row)
    order.total_amount = to_money(sum((row.line_total for row in items), ZERO_MONEY))
    db.flush()
    return items


def _commit_stock(db: Session, order: ShippingOrder, items: list[ShippingOrderItem]) -> int:
    for item in items:
        append_entry(
            db,
            product_id=item.product_id,
            qty_delta=-item.quantity,
            kind=KIND_OUTBOUND_SHIPMENT,
            source_order_id=order.id,
            source_order_number=order.human_number,
            total_amount=item.line_total,
        )
    return len(items)


def _release_stock(db: Session, order: ShippingOrder, *, actor: str) -> int:
    removed = remove_by_source(db, source_order_id=order.id, kind=KIND_OUTBOUND_SHIPMENT)
    log_audit_event(
        db,
        actor=actor,
        action="ledger.remove_by_source",
        target_type="shipping_order",
        target_id=order.id,
        metadata_json={
            "kind": KIND_OUTBOUND_SHIPMENT,
            "human_number": order.human_number,
            "removed": removed,
        },
    )
    return removed


def _apply_transition(
    db: Session,
    order: ShippingOrder,
    workflow: Workflow,
    next_status: str,
    items: list[ShippingOrderItem],
    *,
    actor: str,
) -> list[str]:
    current_status = order.status
    workflow.ensure_mutable(order.id, current_status)
    effects = workflow.plan(current_status, next_status)

    order.status = next_status
    for effect in effects:
        if effect == EFFECT_COMMIT_STOCK:
            _commit_stock(db, order, items)
        elif effect == EFFECT_RELEASE_STOCK:
            _release_stock(db, order, actor=actor)
    db.flush()

    logger.info(
        json.dumps(
            {
                "event": "order.transition",
                "order_id": order.id,
                "human_number": order.human_number,
                "workflow": workflow.name,
                "from_status": current_status,
                "to_status": next_status,
                "effects": effects,
            }
        )
    )
    return effects


def create_order(
    db: Session,
    payload: ShippingOrderCreate,
    *,
    actor: str,
    today: date | None = None,
) -> OrderResult:
    workflow = get_workflow(payload.workflow)
    target_status = workflow.normalize(payload.status) if payload.status else workflow.initial_status
    if target_status != workflow.initial_status:
        workflow.plan(workflow.initial_status, target_status)

    resolved = _resolve_items(db, payload.items)
    counterparty = _resolve_counterparty(
        db,
        customer_id=payload.customer_id,
        supplier_id=payload.supplier_id,
        name=payload.counterparty_name,
    )
    warnings = _check_stock(db, resolved, allow_negative=payload.allow_negative_stock)
    payment_status = (payload.payment_status or "").strip() or settings.default_payment_status

    def build(allocated: AllocatedNumber) -> ShippingOrder:
        return ShippingOrder(
            human_number=allocated.human_number,
            order_number=allocated.order_number,
            workflow=workflow.name,
            customer_id=counterparty.customer_id,
            supplier_id=counterparty.supplier_id,
            counterparty_name=counterparty.name,
            invoice_number=payload.invoice_number,
            status=workflow.initial_status,
            payment_status=payment_status,
            total_amount=ZERO_MONEY,
            notes=payload.notes,
        )

    order = insert_with_number(db, build, candidate=payload.human_number, today=today)
    items = _replace_items(db, order, resolved)

    effects: list[str] = []
    if target_status != workflow.initial_status:
        effects = _apply_transition(db, order, workflow, target_status, items, actor=actor)

    log_audit_event(
        db,
        actor=actor,
        action="order.create",
        target_type="shipping_order",
        target_id=order.id,
        metadata_json={
            "human_number": order.human_number,
            "order_number": order.order_number,
            "workflow": workflow.name,
            "status": order.status,
            "items_count": len(items),
            "total": float(order.total_amount),
            "effects": effects,
            "stock_warnings": warnings,
        },
    )
    return OrderResult(order=order, items=items, warnings=warnings)


def update_order(
    db: Session,
    order_id: str,
    payload: ShippingOrderUpdate,
    *,
    actor: str,
) -> OrderResult:
    """
    Whole-document edit. When the requested status leaves the stock-holding
    set, that transition runs before the edits so items and number can
    change in the same request; any other transition runs after them so a
    commit sees the new items.
    """
    order = get_order(db, order_id)
    workflow = get_workflow(order.workflow)
    workflow.ensure_mutable(order.id, order.status)

    fields = payload.model_fields_set
    current_status = order.status
    next_status = workflow.normalize(payload.status) if payload.status else None
    if next_status is not None:
        workflow.plan(current_status, next_status)

    leaving_first = (
        next_status is not None
        and workflow.holds_stock(current_status)
        and not workflow.holds_stock(next_status)
    )
    editing_status = next_status if leaving_first else current_status

    resolved: list[ResolvedItem] | None = None
    warnings: list[dict] = []
    if payload.items is not None:
        if not workflow.items_editable(editing_status):
            raise OrderNotEditable(
                f"Items of an order in '{editing_status}' cannot be changed; move it out of that status first"
            )
        resolved = _resolve_items(db, payload.items)
        warnings = _check_stock(
            db,
            resolved,
            allow_negative=payload.allow_negative_stock,
            released=_held_quantities(db, order) if leaving_first else None,
        )

    new_number: str | None = None
    if "human_number" in fields and payload.human_number and payload.human_number.strip():
        new_number = normalize_order_number(payload.human_number)
        if new_number.lower() == order.human_number.lower():
            new_number = None
        elif workflow.holds_stock(editing_status):
            raise OrderNotEditable("The order number cannot change while the order holds stock")
        elif human_number_exists(db, new_number, exclude_order_id=order.id):
            raise DuplicateOrderNumber(new_number)

    counterparty: Counterparty | None = None
    if fields & {"customer_id", "supplier_id", "counterparty_name"}:
        name_changed = "counterparty_name" in fields
        counterparty = _resolve_counterparty(
            db,
            customer_id=payload.customer_id if "customer_id" in fields else (None if name_changed else order.customer_id),
            supplier_id=payload.supplier_id if "supplier_id" in fields else (None if name_changed else order.supplier_id),
            name=payload.counterparty_name if name_changed else order.counterparty_name,
        )

    items = get_order_items(db, order.id)
    effects: list[str] = []
    if leaving_first:
        effects += _apply_transition(db, order, workflow, next_status, items, actor=actor)

    changed: list[str] = []
    if new_number is not None:
        renumber_order(db, order, new_number)
        changed.append("human_number")
    if counterparty is not None:
        order.customer_id = counterparty.customer_id
        order.supplier_id = counterparty.supplier_id
        order.counterparty_name = counterparty.name
        changed.append("counterparty")
    if "invoice_number" in fields:
        order.invoice_number = payload.invoice_number
        changed.append("invoice_number")
    if "payment_status" in fields and payload.payment_status:
        order.payment_status = payload.payment_status.strip()
        changed.append("payment_status")
    if "notes" in fields:
        order.notes = payload.notes
        changed.append("notes")
    if resolved is not None:
        items = _replace_items(db, order, resolved)
        changed.append("items")

    if next_status is not None and not leaving_first:
        effects += _apply_transition(db, order, workflow, next_status, items, actor=actor)
    db.flush()

    log_audit_event(
        db,
        actor=actor,
        action="order.update",
        target_type="shipping_order",
        target_id=order.id,
        metadata_json={
            "human_number": order.human_number,
            "changed": changed,
            "from_status": current_status,
            "to_status": order.status,
            "effects": effects,
            "total": float(order.total_amount),
            "stock_warnings": warnings,
        },
    )
    return OrderResult(order=order, items=items, warnings=warnings)


def change_status(
    db: Session,
    order_id: str,
    status: str,
    *,
    actor: str,
    note: str | None = None,
) -> OrderResult:
    order = get_order(db, order_id)
    workflow = get_workflow(order.workflow)
    next_status = workflow.normalize(status)
    current_status = order.status
    items = get_order_items(db, order.id)

    effects = _apply_transition(db, order, workflow, next_status, items, actor=actor)
    if note is not None:
        order.notes = note

    log_audit_event(
        db,
        actor=actor,
        action="order.status.update",
        target_type="shipping_order",
        target_id=order.id,
        metadata_json={
            "human_number": order.human_number,
            "from_status": current_status,
            "to_status": next_status,
            "effects": effects,
        },
    )
    return OrderResult(order=order, items=items)


def delete_order(db: Session, order_id: str, *, actor: str) -> int:
    """Delete an order and every shipment entry sourced from it."""
    order = get_order(db, order_id)
    workflow = get_workflow(order.workflow)
    workflow.ensure_mutable(order.id, order.status)

    removed = _release_stock(db, order, actor=actor)
    db.execute(delete(ShippingOrderItem).where(ShippingOrderItem.order_id == order.id))
    log_audit_event(
        db,
        actor=actor,
        action="order.delete",
        target_type="shipping_order",
        target_id=order.id,
        metadata_json={
            "human_number": order.human_number,
            "status": order.status,
            "ledger_entries_removed": removed,
        },
    )
    db.delete(order)
    db.flush()
    return removed


def list_orders(
    db: Session,
    *,
    status: str | None = None,
    search: str | None = None,
    counterparty: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[int, list[ShippingOrder]]:
    if start_date and end_date and end_date < start_date:
        raise InvalidOrderData("end_date cannot be before start_date")

    filters = []
    if status:
        filters.append(ShippingOrder.status == status.strip().lower())
    if search and search.strip():
        pattern = f"%{search.strip().lower()}%"
        filters.append(
            or_(
                func.lower(ShippingOrder.human_number).like(pattern),
                func.lower(ShippingOrder.invoice_number).like(pattern),
            )
        )
    if counterparty and counterparty.strip():
        filters.append(func.lower(ShippingOrder.counterparty_name).like(f"%{counterparty.strip().lower()}%"))
    if start_date:
        filters.append(func.date(ShippingOrder.created_at) >= start_date)
    if end_date:
        filters.append(func.date(ShippingOrder.created_at) <= end_date)

    count_stmt = select(func.count(ShippingOrder.id))
    data_stmt = select(ShippingOrder)
    if filters:
        count_stmt = count_stmt.where(*filters)
        data_stmt = data_stmt.where(*filters)

    total = int(db.execute(count_stmt).scalar_one())
    rows = db.execute(
        data_stmt.order_by(ShippingOrder.created_at.desc(), ShippingOrder.id.desc()).offset(offset).limit(limit)
    ).scalars().all()
    return total, list(rows)


def list_orders_holding_product(db: Session, product_id: str) -> list[ShippingOrder]:
    """Orders whose shipment entries currently deduct the given product."""
    return list(
        db.execute(
            select(ShippingOrder)
            .join(InventoryLedger, InventoryLedger.source_order_id == ShippingOrder.id)
            .where(
                InventoryLedger.product_id == product_id,
                InventoryLedger.kind == KIND_OUTBOUND_SHIPMENT,
            )
            .order_by(ShippingOrder.created_at.desc(), ShippingOrder.id.desc())
        ).scalars()
    )
