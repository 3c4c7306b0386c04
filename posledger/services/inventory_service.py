import json
import logging
from collections.abc import Iterator, Sequence
from datetime import datetime
from decimal import Decimal

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from posledger.core.config import settings
from posledger.core.errors import LedgerWriteConflict
from posledger.core.money import to_money, to_unit_cost, unit_amount_of
from posledger.models.inventory import (
    KIND_ADJUSTMENT,
    KIND_INBOUND,
    KIND_OUTBOUND_SHIPMENT,
    LEDGER_KINDS,
    OUTBOUND_KINDS,
    InventoryLedger,
)

logger = logging.getLogger("posledger.ledger")


def _validate_entry(*, kind: str, qty_delta: int, source_order_id: str | None) -> None:
    if kind not in LEDGER_KINDS:
        raise ValueError(f"Unknown ledger kind: {kind}")
    if qty_delta == 0:
        raise ValueError("qty_delta cannot be zero")
    if kind == KIND_INBOUND and qty_delta < 0:
        raise ValueError("inbound entries must add stock")
    if kind in OUTBOUND_KINDS and qty_delta > 0:
        raise ValueError("outbound entries must remove stock")
    if kind == KIND_OUTBOUND_SHIPMENT and not source_order_id:
        raise ValueError("outbound-shipment entries require a source order")


def get_shipment_entry(db: Session, *, source_order_id: str, product_id: str) -> InventoryLedger | None:
    return db.execute(
        select(InventoryLedger).where(
            InventoryLedger.source_order_id == source_order_id,
            InventoryLedger.product_id == product_id,
            InventoryLedger.kind == KIND_OUTBOUND_SHIPMENT,
        )
    ).scalar_one_or_none()


def append_entry(
    db: Session,
    *,
    product_id: str,
    qty_delta: int,
    kind: str,
    source_order_id: str | None = None,
    source_order_number: str | None = None,
    unit_amount: Decimal | None = None,
    total_amount: Decimal | None = None,
    note: str | None = None,
    occurred_at: datetime | None = None,
) -> InventoryLedger:
    """
    Append one movement. Outbound-shipment rows are guarded by the partial
    unique index on (source_order_id, product_id): a repeat write with the
    same quantity returns the stored row, a different quantity raises
    LedgerWriteConflict.
    """
    _validate_entry(kind=kind, qty_delta=qty_delta, source_order_id=source_order_id)

    if unit_amount is None and total_amount is not None:
        unit_amount = unit_amount_of(total_amount, qty_delta)
    if total_amount is None and unit_amount is not None:
        total_amount = to_money(Decimal(str(unit_amount)) * abs(qty_delta))

    entry = InventoryLedger(
        product_id=product_id,
        qty_delta=qty_delta,
        kind=kind,
        source_order_id=source_order_id,
        source_order_number=source_order_number,
        unit_amount=to_unit_cost(unit_amount) if unit_amount is not None else None,
        total_amount=to_money(total_amount) if total_amount is not None else None,
        note=note,
    )
    if occurred_at is not None:
        entry.occurred_at = occurred_at

    if kind != KIND_OUTBOUND_SHIPMENT:
        db.add(entry)
        db.flush()
        return entry

    try:
        with db.begin_nested():
            db.add(entry)
    except IntegrityError:
        existing = get_shipment_entry(db, source_order_id=source_order_id, product_id=product_id)
        if existing is None:
            raise
        if existing.qty_delta != qty_delta:
            raise LedgerWriteConflict(
                source_order_id=source_order_id,
                product_id=product_id,
                existing_qty=existing.qty_delta,
                attempted_qty=qty_delta,
            ) from None
        logger.info(
            json.dumps(
                {
                    "event": "ledger.append.already_recorded",
                    "entry_id": existing.id,
                    "source_order_id": source_order_id,
                    "product_id": product_id,
                }
            )
        )
        return existing

    logger.info(
        json.dumps(
            {
                "event": "ledger.append",
                "entry_id": entry.id,
                "kind": kind,
                "product_id": product_id,
                "qty_delta": qty_delta,
                "source_order_id": source_order_id,
            }
        )
    )
    return entry


def remove_by_source(db: Session, *, source_order_id: str, kind: str) -> int:
    result = db.execute(
        delete(InventoryLedger).where(
            InventoryLedger.source_order_id == source_order_id,
            InventoryLedger.kind == kind,
        )
    )
    removed = int(result.rowcount or 0)
    logger.info(
        json.dumps(
            {
                "event": "ledger.remove_by_source",
                "source_order_id": source_order_id,
                "kind": kind,
                "removed": removed,
            }
        )
    )
    return removed


def iter_by_product(
    db: Session,
    product_id: str,
    *,
    kinds: Sequence[str] | None = None,
    after: tuple[datetime, str] | None = None,
    page_size: int | None = None,
) -> Iterator[InventoryLedger]:
    """
    Yield a product's entries oldest first, ordered by (occurred_at, id).

    Pages are fetched lazily with a keyset cursor, so a scan can be resumed
    by passing the (occurred_at, id) of the last entry seen as ``after``.
    """
    size = page_size or settings.ledger_page_size
    cursor = after
    while True:
        stmt = select(InventoryLedger).where(InventoryLedger.product_id == product_id)
        if kinds:
            stmt = stmt.where(InventoryLedger.kind.in_(list(kinds)))
        if cursor is not None:
            cursor_at, cursor_id = cursor
            stmt = stmt.where(
                or_(
                    InventoryLedger.occurred_at > cursor_at,
                    and_(InventoryLedger.occurred_at == cursor_at, InventoryLedger.id > cursor_id),
                )
            )
        rows = db.execute(
            stmt.order_by(InventoryLedger.occurred_at.asc(), InventoryLedger.id.asc()).limit(size)
        ).scalars().all()
        yield from rows
        if len(rows) < size:
            return
        last = rows[-1]
        cursor = (last.occurred_at, last.id)


def list_entries(
    db: Session,
    *,
    product_id: str | None = None,
    kind: str | None = None,
    source_order_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[int, list[InventoryLedger]]:
    count_stmt = select(func.count(InventoryLedger.id))
    stmt = select(InventoryLedger)
    filters = []
    if product_id:
        filters.append(InventoryLedger.product_id == product_id)
    if kind:
        filters.append(InventoryLedger.kind == kind)
    if source_order_id:
        filters.append(InventoryLedger.source_order_id == source_order_id)
    if filters:
        count_stmt = count_stmt.where(*filters)
        stmt = stmt.where(*filters)

    total = int(db.execute(count_stmt).scalar_one())
    rows = db.execute(
        stmt.order_by(InventoryLedger.occurred_at.desc(), InventoryLedger.id.desc()).offset(offset).limit(limit)
    ).scalars().all()
    return total, list(rows)


def record_stock_in(
    db: Session,
    *,
    product_id: str,
    qty: int,
    unit_cost: Decimal | None,
    source_order_id: str | None = None,
    source_order_number: str | None = None,
    note: str | None = None,
    occurred_at: datetime | None = None,
) -> InventoryLedger:
    return append_entry(
        db,
        product_id=product_id,
        qty_delta=qty,
        kind=KIND_INBOUND,
        source_order_id=source_order_id,
        source_order_number=source_order_number,
        unit_amount=unit_cost,
        note=note,
        occurred_at=occurred_at,
    )


def record_adjustment(
    db: Session,
    *,
    product_id: str,
    qty_delta: int,
    reason: str,
    note: str | None = None,
    unit_cost: Decimal | None = None,
    occurred_at: datetime | None = None,
) -> InventoryLedger:
    """
    Manual stock correction. `unit_cost` is kept on the row for the audit
    trail only; FIFO layers come from inbound entries alone.
    """
    return append_entry(
        db,
        product_id=product_id,
        qty_delta=qty_delta,
        kind=KIND_ADJUSTMENT,
        unit_amount=unit_cost,
        note=f"{reason}: {note}" if note else reason,
        occurred_at=occurred_at,
    )
