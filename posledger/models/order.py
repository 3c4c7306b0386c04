from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from posledger.core.id_utils import generate_id
from posledger.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ShippingOrder(Base):
    __tablename__ = "shipping_orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    # User-facing document number; authoritative.
    human_number: Mapped[str] = mapped_column(String(64), nullable=False)
    # Internal key, equal to human_number unless a suffix was needed.
    order_number: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)
    workflow: Mapped[str] = mapped_column(String(20), nullable=False, default="standard", server_default="standard")

    customer_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("customers.id"), nullable=True, index=True)
    supplier_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("suppliers.id"), nullable=True, index=True)
    counterparty_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    invoice_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", server_default="pending")
    payment_status: Mapped[str] = mapped_column(String(30), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        Index("ux_shipping_orders_human_number_lower", func.lower(human_number), unique=True),
        Index("ix_shipping_orders_status_created_at", "status", "created_at"),
        Index("ix_shipping_orders_created_at", "created_at"),
    )


class ShippingOrderItem(Base):
    __tablename__ = "shipping_order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("shipping_orders.id"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    # Denormalized so the document survives product renames.
    product_code: Mapped[str] = mapped_column(String(64), nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    health_insurance_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Display only; ledger math always uses quantity in base units.
    pack_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    pack_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
