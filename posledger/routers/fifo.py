from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from posledger.core.api_docs import error_responses
from posledger.core.deps import get_db
from posledger.core.errors import ProductNotFound
from posledger.models.product import Product
from posledger.schemas.fifo import (
    CostAndProfitOut,
    CostSliceOut,
    FifoSimulateIn,
    FifoSimulationOut,
    FifoSummaryOut,
    OrderFifoReportOut,
    OrderItemProfitOut,
    OutboundProfitOut,
    ProductFifoReportOut,
)
from posledger.services import fifo_service, order_service
from posledger.services.stock_service import get_product_by_code

router = APIRouter(prefix="/fifo", tags=["fifo"])


def _optional_float(value) -> float | None:
    return float(value) if value is not None else None


def _result_out(result: fifo_service.CostAndProfit) -> CostAndProfitOut:
    return CostAndProfitOut(
        quantity=result.quantity,
        unit_revenue=float(result.unit_revenue),
        revenue=float(result.revenue),
        cost=float(result.cost),
        gross_profit=float(result.gross_profit),
        margin_pct=_optional_float(result.margin_pct),
        has_shortfall=result.has_shortfall,
        shortfall_quantity=result.shortfall_quantity,
        shortfall_unit_cost=float(result.shortfall_unit_cost),
        slices=[
            CostSliceOut(
                entry_id=s.entry_id,
                occurred_at=s.occurred_at,
                source_order_number=s.source_order_number,
                quantity=s.quantity,
                unit_cost=float(s.unit_cost),
                amount=float(s.amount),
            )
            for s in result.slices
        ],
    )


def _summary_out(summary: fifo_service.FifoSummary) -> FifoSummaryOut:
    return FifoSummaryOut(
        total_cost=float(summary.total_cost),
        total_revenue=float(summary.total_revenue),
        total_profit=float(summary.total_profit),
        margin_pct=_optional_float(summary.margin_pct),
        has_shortfall=summary.has_shortfall,
    )


@router.get(
    "/products/{product_id}",
    response_model=ProductFifoReportOut,
    summary="FIFO cost and profit of every outbound movement of a product",
    responses=error_responses(404, 500),
)
def product_fifo_report(product_id: str, db: Session = Depends(get_db)):
    product = db.get(Product, product_id)
    if product is None:
        raise ProductNotFound(product_id)
    report = fifo_service.product_report(db, product.id)
    return ProductFifoReportOut(
        product_id=product.id,
        product_code=product.code,
        lines=[
            OutboundProfitOut(
                entry_id=line.entry_id,
                kind=line.kind,
                occurred_at=line.occurred_at,
                source_order_id=line.source_order_id,
                source_order_number=line.source_order_number,
                result=_result_out(line.result),
            )
            for line in report.lines
        ],
        summary=_summary_out(report.summary),
    )


@router.get(
    "/shipping-orders/{order_id}",
    response_model=OrderFifoReportOut,
    summary="FIFO cost and profit per item of a shipping order",
    responses=error_responses(404, 500),
)
def order_fifo_report(order_id: str, db: Session = Depends(get_db)):
    order = order_service.get_order(db, order_id)
    items = order_service.get_order_items(db, order.id)
    report = fifo_service.order_report(db, order, items)
    return OrderFifoReportOut(
        order_id=order.id,
        human_number=order.human_number,
        status=order.status,
        items=[
            OrderItemProfitOut(
                item_id=p.item.id,
                product_id=p.item.product_id,
                product_code=p.item.product_code,
                quantity=p.item.quantity,
                line_total=float(p.item.line_total),
                ledger_entry_id=p.ledger_entry_id,
                result=_result_out(p.result) if p.result is not None else None,
            )
            for p in report.items
        ],
        summary=_summary_out(report.summary),
    )


@router.post(
    "/simulate",
    response_model=FifoSimulationOut,
    summary="Cost and profit of a hypothetical next outbound",
    description="Read-only. Consumes the layers left after every recorded outbound.",
    responses=error_responses(404, 422, 500),
)
def simulate_outbound(payload: FifoSimulateIn, db: Session = Depends(get_db)):
    product = get_product_by_code(db, payload.product_code)
    simulation = fifo_service.simulate_outbound(db, product.id, payload.quantity, payload.unit_revenue)
    return FifoSimulationOut(
        product_id=product.id,
        product_code=product.code,
        unconsumed_layer_quantity=simulation.unconsumed_layer_quantity,
        result=_result_out(simulation.result),
    )
