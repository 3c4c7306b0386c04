from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from posledger.schemas.common import PaginationMeta


class OrderItemIn(BaseModel):
    product_code: str = Field(min_length=1, max_length=64)
    product_name: Optional[str] = Field(default=None, max_length=255)
    quantity: int = Field(gt=0)
    unit_cost: Optional[Decimal] = Field(default=None, ge=0)
    line_total: Optional[Decimal] = Field(default=None, ge=0)
    pack_size: Optional[int] = Field(default=None, gt=0)
    pack_count: Optional[int] = Field(default=None, gt=0)
    notes: Optional[str] = Field(default=None, max_length=255)

    @field_validator("product_code")
    @classmethod
    def strip_product_code(cls, value: str) -> str:
        return value.strip()

    @model_validator(mode="after")
    def require_amount(self) -> "OrderItemIn":
        if self.unit_cost is None and self.line_total is None:
            raise ValueError("Either unit_cost or line_total is required")
        return self


class ShippingOrderCreate(BaseModel):
    human_number: Optional[str] = Field(default=None, max_length=64)
    workflow: str = "standard"
    customer_id: Optional[str] = None
    supplier_id: Optional[str] = None
    counterparty_name: Optional[str] = Field(default=None, max_length=120)
    invoice_number: Optional[str] = Field(default=None, max_length=64)
    payment_status: Optional[str] = Field(default=None, max_length=30)
    status: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    allow_negative_stock: Optional[bool] = None
    items: list[OrderItemIn] = Field(min_length=1)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "human_number": None,
                "workflow": "standard",
                "counterparty_name": "Kang-Ning Clinic",
                "payment_status": "unpaid",
                "notes": "Deliver before noon",
                "items": [
                    {
                        "product_code": "P0001",
                        "product_name": "Paracetamol 500mg",
                        "quantity": 5,
                        "line_total": 500.0,
                        "pack_size": 100,
                        "pack_count": 5,
                    }
                ],
            }
        }
    )


class ShippingOrderUpdate(BaseModel):
    human_number: Optional[str] = Field(default=None, max_length=64)
    customer_id: Optional[str] = None
    supplier_id: Optional[str] = None
    counterparty_name: Optional[str] = Field(default=None, max_length=120)
    invoice_number: Optional[str] = Field(default=None, max_length=64)
    payment_status: Optional[str] = Field(default=None, max_length=30)
    status: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    allow_negative_stock: Optional[bool] = None
    items: Optional[list[OrderItemIn]] = Field(default=None, min_length=1)


class OrderStatusUpdateIn(BaseModel):
    status: str
    note: Optional[str] = Field(default=None, max_length=500)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "fulfilled",
                "note": "Picked and packed",
            }
        }
    )


class StockWarningOut(BaseModel):
    product_id: str
    product_code: str
    on_hand: int
    requested: int


class OrderItemOut(BaseModel):
    id: str
    product_id: str
    product_code: str
    product_name: str
    health_insurance_code: str | None = None
    quantity: int
    unit_cost: float
    line_total: float
    pack_size: int | None = None
    pack_count: int | None = None
    notes: str | None = None


class ShippingOrderOut(BaseModel):
    id: str
    human_number: str
    order_number: str
    workflow: str
    customer_id: str | None = None
    supplier_id: str | None = None
    counterparty_name: str | None = None
    invoice_number: str | None = None
    status: str
    payment_status: str
    total_amount: float
    notes: str | None = None
    items: list[OrderItemOut]
    warnings: list[StockWarningOut] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class ShippingOrderSummaryOut(BaseModel):
    id: str
    human_number: str
    order_number: str
    workflow: str
    counterparty_name: str | None = None
    status: str
    payment_status: str
    total_amount: float
    created_at: datetime
    updated_at: datetime


class ShippingOrderListOut(BaseModel):
    pagination: PaginationMeta
    start_date: date | None = None
    end_date: date | None = None
    status: str | None = None
    search: str | None = None
    items: list[ShippingOrderSummaryOut]


class OrderDeleteOut(BaseModel):
    ok: bool = True
    ledger_entries_removed: int


class NextOrderNumberOut(BaseModel):
    human_number: str
