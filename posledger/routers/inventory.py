from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from posledger.core.api_docs import error_responses
from posledger.core.config import settings
from posledger.core.deps import get_actor, get_db
from posledger.core.errors import ProductNotFound
from posledger.models.inventory import LEDGER_KINDS, InventoryLedger
from posledger.models.product import Product
from posledger.schemas.common import PaginationMeta
from posledger.schemas.inventory import LedgerEntryOut, LedgerListOut, StockAdjustIn, StockIn, StockLevelOut
from posledger.services.audit_service import log_audit_event
from posledger.services.inventory_service import list_entries, record_adjustment, record_stock_in
from posledger.services.stock_service import (
    StockRequirement,
    check_stock_availability,
    get_on_hand,
    get_product_by_code,
)

router = APIRouter(prefix="/inventory", tags=["inventory"])


def _get_product(db: Session, product_id: str) -> Product:
    product = db.get(Product, product_id)
    if product is None:
        raise ProductNotFound(product_id)
    return product


def _entry_out(row: InventoryLedger) -> LedgerEntryOut:
    return LedgerEntryOut(
        id=row.id,
        product_id=row.product_id,
        qty_delta=row.qty_delta,
        kind=row.kind,
        source_order_id=row.source_order_id,
        source_order_number=row.source_order_number,
        note=row.note,
        unit_amount=float(row.unit_amount) if row.unit_amount is not None else None,
        total_amount=float(row.total_amount) if row.total_amount is not None else None,
        occurred_at=row.occurred_at,
    )


@router.post(
    "/stock-in",
    response_model=LedgerEntryOut,
    summary="Record inbound stock for a product",
    responses=error_responses(404, 422, 500),
)
def stock_in(
    payload: StockIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    product = get_product_by_code(db, payload.product_code)
    entry = record_stock_in(
        db,
        product_id=product.id,
        qty=payload.qty,
        unit_cost=payload.unit_cost,
        source_order_number=payload.source_order_number,
        note=payload.note,
        occurred_at=payload.occurred_at,
    )
    log_audit_event(
        db,
        actor=actor,
        action="inventory.stock_in",
        target_type="product",
        target_id=product.id,
        metadata_json={
            "entry_id": entry.id,
            "product_code": product.code,
            "qty": payload.qty,
            "unit_cost": float(payload.unit_cost),
        },
    )
    db.commit()
    db.refresh(entry)
    return _entry_out(entry)


@router.post(
    "/adjust",
    response_model=LedgerEntryOut,
    summary="Manual stock adjustment",
    responses=error_responses(400, 404, 422, 500),
)
def adjust_stock(
    payload: StockAdjustIn,
    db: Session = Depends(get_db),
    actor: str = Depends(get_actor),
):
    product = get_product_by_code(db, payload.product_code)
    if payload.qty_delta < 0:
        check_stock_availability(
            db,
            [
                StockRequirement(
                    product_id=product.id,
                    product_code=product.code,
                    quantity=abs(payload.qty_delta),
                    exclude_from_stock=product.exclude_from_stock,
                )
            ],
            allow_negative=settings.allow_negative_stock,
        )

    entry = record_adjustment(
        db,
        product_id=product.id,
        qty_delta=payload.qty_delta,
        reason=payload.reason,
        note=payload.note,
        unit_cost=payload.unit_cost,
    )
    log_audit_event(
        db,
        actor=actor,
        action="inventory.adjust",
        target_type="product",
        target_id=product.id,
        metadata_json={
            "entry_id": entry.id,
            "product_code": product.code,
            "qty_delta": payload.qty_delta,
            "reason": payload.reason,
        },
    )
    db.commit()
    db.refresh(entry)
    return _entry_out(entry)


@router.get(
    "/stock/{product_id}",
    response_model=StockLevelOut,
    summary="Get stock on hand for a product",
    responses=error_responses(404, 422, 500),
)
def get_stock(product_id: str, db: Session = Depends(get_db)):
    product = _get_product(db, product_id)
    return StockLevelOut(
        product_id=product.id,
        product_code=product.code,
        exclude_from_stock=product.exclude_from_stock,
        on_hand=get_on_hand(db, product.id),
    )


@router.get(
    "/ledger",
    response_model=LedgerListOut,
    summary="List inventory ledger entries",
    responses={
        200: {
            "description": "Paginated inventory ledger, newest first",
            "content": {
                "application/json": {
                    "example": {
                        "items": [
                            {
                                "id": "ledger-id",
                                "product_id": "product-id",
                                "qty_delta": -5,
                                "kind": "outbound-shipment",
                                "source_order_id": "order-id",
                                "source_order_number": "SO20240315001",
                                "note": None,
                                "unit_amount": 100.0,
                                "total_amount": 500.0,
                                "occurred_at": "2024-03-15T10:00:00Z",
                            }
                        ],
                        "pagination": {
                            "total": 12,
                            "limit": 50,
                            "offset": 0,
                            "count": 1,
                            "has_next": True,
                        },
                    }
                }
            },
        },
        **error_responses(400, 404, 422, 500),
    },
)
def list_inventory_ledger(
    product_id: str | None = Query(default=None, description="Optional product filter"),
    kind: str | None = Query(default=None, description="Optional movement kind filter"),
    source_order_id: str | None = Query(default=None, description="Optional source order filter"),
    limit: int = Query(default=50, ge=1, le=200, description="Page size"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    db: Session = Depends(get_db),
):
    if product_id:
        _get_product(db, product_id)
    normalized_kind = kind.strip().lower() if kind and kind.strip() else None
    if normalized_kind and normalized_kind not in LEDGER_KINDS:
        allowed = ", ".join(LEDGER_KINDS)
        raise HTTPException(status_code=400, detail=f"Invalid ledger kind. Allowed: {allowed}")

    total, rows = list_entries(
        db,
        product_id=product_id,
        kind=normalized_kind,
        source_order_id=source_order_id,
        limit=limit,
        offset=offset,
    )
    items = [_entry_out(row) for row in rows]
    count = len(items)
    return LedgerListOut(
        items=items,
        product_id=product_id,
        kind=normalized_kind,
        source_order_id=source_order_id,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )
