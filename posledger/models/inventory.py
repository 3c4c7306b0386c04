from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, text
from sqlalchemy.orm import Mapped, mapped_column

from posledger.core.id_utils import generate_id
from posledger.db.base import Base

KIND_INBOUND = "inbound"
KIND_OUTBOUND_SALE = "outbound-sale"
KIND_OUTBOUND_SHIPMENT = "outbound-shipment"
KIND_ADJUSTMENT = "adjustment"

LEDGER_KINDS = (KIND_INBOUND, KIND_OUTBOUND_SALE, KIND_OUTBOUND_SHIPMENT, KIND_ADJUSTMENT)
OUTBOUND_KINDS = (KIND_OUTBOUND_SALE, KIND_OUTBOUND_SHIPMENT)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InventoryLedger(Base):
    """
    One row per stock movement. Positive = stock in. Negative = stock out.
    Rows are never updated; corrections are new adjustment rows.
    """
    __tablename__ = "inventory_ledger"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False)

    qty_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    source_order_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    source_order_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Monetary value of the movement: purchase cost for inbound, revenue for outbound.
    unit_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 4), nullable=True)
    total_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_inventory_ledger_product_occurred_at", "product_id", "occurred_at", "id"),
        Index("ix_inventory_ledger_product_kind_occurred_at", "product_id", "kind", "occurred_at"),
        Index("ix_inventory_ledger_source_kind", "source_order_id", "kind"),
        Index(
            "ux_inventory_ledger_shipment_order_product",
            "source_order_id",
            "product_id",
            unique=True,
            postgresql_where=text(f"kind = '{KIND_OUTBOUND_SHIPMENT}'"),
            sqlite_where=text(f"kind = '{KIND_OUTBOUND_SHIPMENT}'"),
        ),
    )
