from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from posledger.schemas.common import PaginationMeta


class StockIn(BaseModel):
    product_code: str = Field(min_length=1, max_length=64)
    qty: int = Field(gt=0)
    unit_cost: Decimal = Field(ge=0)
    source_order_number: str | None = Field(default=None, max_length=64)
    note: str | None = Field(default=None, max_length=255)
    occurred_at: datetime | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "product_code": "P0001",
                "qty": 20,
                "unit_cost": 45.0,
                "source_order_number": "PO20240301001",
                "note": "Monthly restock",
            }
        }
    )


class StockAdjustIn(BaseModel):
    product_code: str = Field(min_length=1, max_length=64)
    qty_delta: int = Field(
        ..., description="Positive adds stock, negative removes stock. Cannot be zero."
    )
    reason: str = Field(..., min_length=3, max_length=50)
    note: str | None = Field(default=None, max_length=200)
    unit_cost: Decimal | None = Field(default=None, ge=0)

    @field_validator("qty_delta")
    @classmethod
    def validate_non_zero_qty_delta(cls, value: int) -> int:
        if value == 0:
            raise ValueError("qty_delta cannot be zero")
        return value

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "product_code": "P0001",
                "qty_delta": -2,
                "reason": "expired",
                "note": "Batch 2207 past expiry",
            }
        }
    )


class StockLevelOut(BaseModel):
    product_id: str
    product_code: str
    exclude_from_stock: bool
    on_hand: int


class LedgerEntryOut(BaseModel):
    id: str
    product_id: str
    qty_delta: int
    kind: str
    source_order_id: str | None = None
    source_order_number: str | None = None
    note: str | None = None
    unit_amount: float | None = None
    total_amount: float | None = None
    occurred_at: datetime


class LedgerListOut(BaseModel):
    pagination: PaginationMeta
    product_id: str | None = None
    kind: str | None = None
    source_order_id: str | None = None
    items: list[LedgerEntryOut]

