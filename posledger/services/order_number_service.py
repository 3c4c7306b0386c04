"""
Shipping order number allocation.

Generated numbers look like ``SO20240315001``: prefix, order date, then a
zero-padded running counter scoped to that date. The "read max, add one"
step is only a guess; the unique index on ``lower(human_number)`` is what
actually decides, and ``insert_with_number`` retries a bounded number of
times when a concurrent writer took the guessed number first.

``order_number`` is a secondary internal key. It equals the human number
unless that key is already taken, in which case ``-1``, ``-2``, ... is
appended. The human number itself is never suffixed.
"""
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from posledger.core.config import settings
from posledger.core.errors import DuplicateOrderNumber, InvalidOrderData, OrderNumberAllocationFailed
from posledger.models.order import ShippingOrder

logger = logging.getLogger("posledger.orders")


@dataclass(frozen=True)
class AllocatedNumber:
    human_number: str
    order_number: str
    generated: bool


def normalize_order_number(value: str) -> str:
    normalized = str(value).strip().upper()
    if not normalized:
        raise InvalidOrderData("Order number cannot be blank")
    if len(normalized) > 64:
        raise InvalidOrderData("Order number cannot exceed 64 characters")
    return normalized


def _today() -> date:
    return datetime.now().date()


def date_prefix(today: date | None = None) -> str:
    day = today or _today()
    date_part = day.strftime("%y%m%d") if settings.order_number_short_year else day.strftime("%Y%m%d")
    return f"{settings.order_number_prefix}{date_part}"


def format_order_number(prefix: str, sequence: int) -> str:
    return f"{prefix}{sequence:0{settings.order_number_sequence_digits}d}"


def _max_sequence_for_prefix(db: Session, prefix: str) -> int:
    numbers = db.execute(
        select(ShippingOrder.human_number).where(ShippingOrder.human_number.like(f"{prefix}%"))
    ).scalars()
    highest = 0
    for number in numbers:
        tail = number[len(prefix):]
        if tail.isdigit():
            highest = max(highest, int(tail))
    return highest


def human_number_exists(db: Session, number: str, *, exclude_order_id: str | None = None) -> bool:
    stmt = select(ShippingOrder.id).where(func.lower(ShippingOrder.human_number) == number.lower())
    if exclude_order_id:
        stmt = stmt.where(ShippingOrder.id != exclude_order_id)
    return db.execute(stmt.limit(1)).first() is not None


def derive_order_key(db: Session, human_number: str, *, exclude_order_id: str | None = None) -> str:
    stmt = select(ShippingOrder.order_number).where(
        ShippingOrder.order_number.like(f"{human_number}%")
    )
    if exclude_order_id:
        stmt = stmt.where(ShippingOrder.id != exclude_order_id)
    taken = set(db.execute(stmt).scalars())

    candidate = human_number
    counter = 1
    while candidate in taken:
        candidate = f"{human_number}-{counter}"
        counter += 1
    return candidate


def preview_next_number(db: Session, *, today: date | None = None) -> str:
    prefix = date_prefix(today)
    return format_order_number(prefix, _max_sequence_for_prefix(db, prefix) + 1)


def allocate(
    db: Session,
    candidate: str | None = None,
    *,
    exclude_order_id: str | None = None,
    today: date | None = None,
) -> AllocatedNumber:
    if candidate is not None and candidate.strip():
        human_number = normalize_order_number(candidate)
        if human_number_exists(db, human_number, exclude_order_id=exclude_order_id):
            raise DuplicateOrderNumber(human_number)
        return AllocatedNumber(
            human_number=human_number,
            order_number=derive_order_key(db, human_number, exclude_order_id=exclude_order_id),
            generated=False,
        )

    human_number = preview_next_number(db, today=today)
    return AllocatedNumber(
        human_number=human_number,
        order_number=derive_order_key(db, human_number),
        generated=True,
    )


def insert_with_number(
    db: Session,
    build: Callable[[AllocatedNumber], ShippingOrder],
    *,
    candidate: str | None = None,
    today: date | None = None,
) -> ShippingOrder:
    """
    Allocate a number, build the order with it and flush inside a savepoint.

    A unique violation on a caller-supplied number becomes
    DuplicateOrderNumber; on a generated number (or on the internal key) the
    allocation is retried against fresh data.
    """
    attempts = settings.order_number_max_attempts
    for attempt in range(1, attempts + 1):
        allocated = allocate(db, candidate, today=today)
        try:
            with db.begin_nested():
                order = build(allocated)
                db.add(order)
        except IntegrityError:
            if not allocated.generated and human_number_exists(db, allocated.human_number):
                raise DuplicateOrderNumber(allocated.human_number) from None
            logger.warning(
                json.dumps(
                    {
                        "event": "order_number.conflict",
                        "attempt": attempt,
                        "human_number": allocated.human_number,
                        "order_number": allocated.order_number,
                    }
                )
            )
            continue
        return order

    raise OrderNumberAllocationFailed(attempts)


def renumber_order(db: Session, order: ShippingOrder, candidate: str) -> bool:
    human_number = normalize_order_number(candidate)
    if human_number.lower() == order.human_number.lower():
        return False

    allocated = allocate(db, human_number, exclude_order_id=order.id)
    previous = (order.human_number, order.order_number)
    try:
        with db.begin_nested():
            order.human_number = allocated.human_number
            order.order_number = allocated.order_number
    except IntegrityError:
        order.human_number, order.order_number = previous
        raise DuplicateOrderNumber(allocated.human_number) from None
    return True
