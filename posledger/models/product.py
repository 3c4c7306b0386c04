from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from posledger.core.id_utils import generate_id
from posledger.db.base import Base


class Product(Base):
    """
    Master data row. Only the fields the ledger needs are modelled here; the
    catalogue screens own everything else.
    """
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_id)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    health_insurance_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    selling_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    # Excluded products may be shipped past zero on hand (consignment, services).
    exclude_from_stock: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="0"
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ux_products_code_lower", func.lower(code), unique=True),
        Index("ix_products_name", "name"),
    )
