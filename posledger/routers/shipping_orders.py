from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from posledger.core.api_docs import error_responses
from posledger.core.deps import get_actor, get_db
from posledger.models.order import ShippingOrder, ShippingOrderItem
from posledger.schemas.common import PaginationMeta
from posledger.schemas.order import (
    NextOrderNumberOut,
    OrderDeleteOut,
    OrderItemOut,
    OrderStatusUpdateIn,
    ShippingOrderCreate,
    ShippingOrderListOut,
    ShippingOrderOut,
    ShippingOrderSummaryOut,
    ShippingOrderUpdate,
    StockWarningOut,
)
from posledger.services import order_service
from posledger.services.order_number_service import preview_next_number

router = APIRouter(prefix="/shipping-orders", tags=["shipping-orders"])


def _item_out(item: ShippingOrderItem) -> OrderItemOut:
    return OrderItemOut(
        id=item.id,
        product_id=item.product_id,
        product_code=item.product_code,
        product_name=item.product_name,
        health_insurance_code=item.health_insurance_code,
        quantity=item.quantity,
        unit_cost=float(item.unit_cost),
        line_total=float(item.line_total),
        pack_size=item.pack_size,
        pack_count=item.pack_count,
        notes=item.notes,
    )


def _order_out(result: order_service.OrderResult) -> ShippingOrderOut:
    order = result.order
    return ShippingOrderOut(
        id=order.id,
        human_number=order.human_number,
        order_number=order.order_number,
        workflow=order.workflow,
        customer_id=order.customer_id,
        supplier_id=order.supplier_id,
        counterparty_name=order.counterparty_name,
        invoice_number=order.invoice_number,
        status=order.status,
        payment_status=order.payment_status,
        total_amount=float(order.total_amount),
        notes=order.notes,
        items=[_item_out(item) for item in result.items],
        warnings=[StockWarningOut(**warning) for warning in result.warnings],
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


def _summary_out(order: ShippingOrder) -> ShippingOrderSummaryOut:
    return ShippingOrderSummaryOut(
        id=order.id,
        human_number=order.human_number,
        order_number=order.order_number,
        workflow=order.workflow,
        counterparty_name=order.counterparty_name,
        status=order.status,
        payment_status=order.payment_status,
        total_amount=float(order.total_amount),
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


@router.post(
    "",
    response_model=ShippingOrderOut,
    summary="Create shipping order",
    responses=error_responses(400, 404, 409, 422, 500, 503),
)
def create_shipping_order(
    payload: ShippingOrderCreate,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    result = order_service.create_order(db, payload, actor=actor)
    db.commit()
    db.refresh(result.order)
    return _order_out(result)


@router.get(
    "",
    response_model=ShippingOrderListOut,
    summary="List shipping orders",
    responses=error_responses(422, 500),
)
def list_shipping_orders(
    status: str | None = Query(default=None),
    search: str | None = Query(default=None, max_length=64),
    counterparty: str | None = Query(default=None, max_length=120),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    total_count, rows = order_service.list_orders(
        db,
        status=status,
        search=search,
        counterparty=counterparty,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    items = [_summary_out(row) for row in rows]
    count = len(items)
    return ShippingOrderListOut(
        pagination=PaginationMeta(
            total=total_count,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total_count,
        ),
        start_date=start_date,
        end_date=end_date,
        status=status.strip().lower() if status else None,
        search=search,
        items=items,
    )


@router.get(
    "/next-number",
    response_model=NextOrderNumberOut,
    summary="Preview the next generated order number",
    description="The number is not reserved; a concurrent create may take it first.",
)
def next_order_number(db: Session = Depends(get_db)):
    return NextOrderNumberOut(human_number=preview_next_number(db))


@router.get(
    "/by-product/{product_id}",
    response_model=list[ShippingOrderSummaryOut],
    summary="Orders currently holding stock of a product",
)
def orders_holding_product(product_id: str, db: Session = Depends(get_db)):
    return [_summary_out(order) for order in order_service.list_orders_holding_product(db, product_id)]


@router.get(
    "/{order_id}",
    response_model=ShippingOrderOut,
    summary="Get shipping order",
    responses=error_responses(404, 500),
)
def get_shipping_order(order_id: str, db: Session = Depends(get_db)):
    order = order_service.get_order(db, order_id)
    items = order_service.get_order_items(db, order.id)
    return _order_out(order_service.OrderResult(order=order, items=items))


@router.put(
    "/{order_id}",
    response_model=ShippingOrderOut,
    summary="Update shipping order",
    responses=error_responses(400, 404, 409, 422, 500),
)
def update_shipping_order(
    order_id: str,
    payload: ShippingOrderUpdate,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    result = order_service.update_order(db, order_id, payload, actor=actor)
    db.commit()
    db.refresh(result.order)
    return _order_out(result)


@router.patch(
    "/{order_id}/status",
    response_model=ShippingOrderOut,
    summary="Update shipping order status",
    responses=error_responses(400, 404, 409, 422, 500),
)
def update_shipping_order_status(
    order_id: str,
    payload: OrderStatusUpdateIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    result = order_service.change_status(db, order_id, payload.status, actor=actor, note=payload.note)
    db.commit()
    db.refresh(result.order)
    return _order_out(result)


@router.delete(
    "/{order_id}",
    response_model=OrderDeleteOut,
    summary="Delete shipping order",
    responses=error_responses(404, 409, 500),
)
def delete_shipping_order(
    order_id: str,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    removed = order_service.delete_order(db, order_id, actor=actor)
    db.commit()
    return OrderDeleteOut(ledger_entries_removed=removed)
