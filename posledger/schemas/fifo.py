from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class CostSliceOut(BaseModel):
    entry_id: str
    occurred_at: datetime | None = None
    source_order_number: str | None = None
    quantity: int
    unit_cost: float
    amount: float


class CostAndProfitOut(BaseModel):
    quantity: int
    unit_revenue: float
    revenue: float
    cost: float
    gross_profit: float
    margin_pct: float | None = None
    has_shortfall: bool
    shortfall_quantity: int
    shortfall_unit_cost: float
    slices: list[CostSliceOut]


class FifoSummaryOut(BaseModel):
    total_cost: float
    total_revenue: float
    total_profit: float
    margin_pct: float | None = None
    has_shortfall: bool


class OutboundProfitOut(BaseModel):
    entry_id: str
    kind: str
    occurred_at: datetime | None = None
    source_order_id: str | None = None
    source_order_number: str | None = None
    result: CostAndProfitOut


class ProductFifoReportOut(BaseModel):
    product_id: str
    product_code: str
    lines: list[OutboundProfitOut]
    summary: FifoSummaryOut


class OrderItemProfitOut(BaseModel):
    item_id: str
    product_id: str
    product_code: str
    quantity: int
    line_total: float
    ledger_entry_id: str | None = None
    result: CostAndProfitOut | None = None


class OrderFifoReportOut(BaseModel):
    order_id: str
    human_number: str
    status: str
    items: list[OrderItemProfitOut]
    summary: FifoSummaryOut


class FifoSimulateIn(BaseModel):
    product_code: str = Field(min_length=1, max_length=64)
    quantity: int = Field(gt=0)
    unit_revenue: Decimal | None = Field(default=None, ge=0)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "product_code": "P0001",
                "quantity": 15,
                "unit_revenue": 9.5,
            }
        }
    )


class FifoSimulationOut(BaseModel):
    product_id: str
    product_code: str
    unconsumed_layer_quantity: int
    result: CostAndProfitOut
