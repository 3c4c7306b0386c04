import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from posledger.core.errors import InsufficientStock, ProductNotFound
from posledger.models.inventory import InventoryLedger
from posledger.models.product import Product

logger = logging.getLogger("posledger.ledger")


@dataclass(frozen=True)
class StockRequirement:
    product_id: str
    product_code: str
    quantity: int
    exclude_from_stock: bool = False


def get_product_by_code(db: Session, product_code: str) -> Product:
    code = product_code.strip()
    product = db.execute(
        select(Product).where(func.lower(Product.code) == code.lower())
    ).scalar_one_or_none()
    if product is None:
        raise ProductNotFound(code)
    return product


def get_on_hand(db: Session, product_id: str) -> int:
    q = select(func.coalesce(func.sum(InventoryLedger.qty_delta), 0)).where(
        InventoryLedger.product_id == product_id,
    )
    return int(db.execute(q).scalar_one())


def get_on_hand_many(db: Session, product_ids: Iterable[str]) -> dict[str, int]:
    ids = list(dict.fromkeys(product_ids))
    if not ids:
        return {}
    rows = db.execute(
        select(
            InventoryLedger.product_id,
            func.coalesce(func.sum(InventoryLedger.qty_delta), 0),
        )
        .where(InventoryLedger.product_id.in_(ids))
        .group_by(InventoryLedger.product_id)
    ).all()
    on_hand = {product_id: 0 for product_id in ids}
    on_hand.update({product_id: int(total) for product_id, total in rows})
    return on_hand


def merge_requirements(requirements: Iterable[StockRequirement]) -> list[StockRequirement]:
    merged: dict[str, StockRequirement] = {}
    for req in requirements:
        current = merged.get(req.product_id)
        if current is None:
            merged[req.product_id] = req
            continue
        merged[req.product_id] = StockRequirement(
            product_id=req.product_id,
            product_code=current.product_code,
            quantity=current.quantity + req.quantity,
            exclude_from_stock=current.exclude_from_stock or req.exclude_from_stock,
        )
    return list(merged.values())


def check_stock_availability(
    db: Session,
    requirements: Iterable[StockRequirement],
    *,
    allow_negative: bool,
    released: dict[str, int] | None = None,
) -> list[dict]:
    """
    Advisory sufficiency check for a proposed outbound movement.

    `released` maps product ids to quantities the caller is about to hand back
    to stock in the same unit of work; they count as available.

    Raises InsufficientStock listing every shortfall unless negative stock is
    allowed, either globally for the call or per product via
    exclude_from_stock. Permitted overdrafts come back as warnings.
    Nothing is locked: two concurrent callers can both pass and jointly
    overdraw, which shows up in the next on-hand query.
    """
    merged = merge_requirements(requirements)
    on_hand = get_on_hand_many(db, [req.product_id for req in merged])

    shortages: list[dict] = []
    warnings: list[dict] = []
    for req in merged:
        available = on_hand.get(req.product_id, 0) + (released or {}).get(req.product_id, 0)
        if available >= req.quantity:
            continue
        shortage = {
            "product_id": req.product_id,
            "product_code": req.product_code,
            "on_hand": available,
            "requested": req.quantity,
        }
        if allow_negative or req.exclude_from_stock:
            warnings.append(shortage)
        else:
            shortages.append(shortage)

    if shortages:
        raise InsufficientStock(shortages)

    for warning in warnings:
        logger.warning(json.dumps({"event": "stock.negative_allowed", **warning}))
    return warnings
