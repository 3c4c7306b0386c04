"""
FIFO cost of goods and gross profit, derived from the inventory ledger.

Inbound entries form cost layers, oldest first by (occurred_at, id).
Recorded outbound movements (sales and shipments) consume those layers in
their own (occurred_at, id) order, so the cost of any outbound can be
re-derived at any time from the ledger alone. Nothing here writes.

When more has gone out than ever came in, the uncovered quantity is a
shortfall. It is priced with the configured fallback (the outbound's own
unit revenue, which books zero profit on that part, or zero cost) and the
result is flagged so reports can show it as provisional.
"""
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from posledger.core.config import settings
from posledger.core.money import ZERO_MONEY, percent_of, to_money, to_unit_cost, unit_amount_of
from posledger.models.inventory import KIND_INBOUND, OUTBOUND_KINDS, InventoryLedger
from posledger.models.order import ShippingOrder, ShippingOrderItem
from posledger.models.product import Product
from posledger.services.inventory_service import get_shipment_entry, iter_by_product


@dataclass
class FifoLayer:
    entry_id: str
    occurred_at: datetime | None
    source_order_number: str | None
    quantity: int
    unit_cost: Decimal
    remaining: int | None = None

    def __post_init__(self) -> None:
        if self.remaining is None:
            self.remaining = self.quantity


@dataclass(frozen=True)
class CostSlice:
    entry_id: str
    occurred_at: datetime | None
    source_order_number: str | None
    quantity: int
    unit_cost: Decimal

    @property
    def amount(self) -> Decimal:
        return self.unit_cost * self.quantity


@dataclass(frozen=True)
class FifoAllocation:
    slices: tuple[CostSlice, ...]
    shortfall_quantity: int

    @property
    def matched_cost(self) -> Decimal:
        return sum((s.amount for s in self.slices), Decimal("0"))


@dataclass(frozen=True)
class CostAndProfit:
    quantity: int
    unit_revenue: Decimal
    revenue: Decimal
    cost: Decimal
    gross_profit: Decimal
    margin_pct: Decimal | None
    slices: tuple[CostSlice, ...]
    shortfall_quantity: int = 0
    shortfall_unit_cost: Decimal = ZERO_MONEY

    @property
    def has_shortfall(self) -> bool:
        return self.shortfall_quantity > 0


class FifoQueue:
    """Inbound layers consumed oldest first. Layers are pulled lazily."""

    def __init__(self, layers: Iterable[FifoLayer]):
        self._source = iter(layers)
        self._head: FifoLayer | None = None

    def _current(self) -> FifoLayer | None:
        while self._head is None or self._head.remaining <= 0:
            self._head = next(self._source, None)
            if self._head is None:
                return None
        return self._head

    def consume(self, quantity: int) -> FifoAllocation:
        if quantity < 0:
            raise ValueError("quantity cannot be negative")
        remaining = quantity
        slices: list[CostSlice] = []
        while remaining > 0:
            layer = self._current()
            if layer is None:
                break
            used = min(layer.remaining, remaining)
            slices.append(
                CostSlice(
                    entry_id=layer.entry_id,
                    occurred_at=layer.occurred_at,
                    source_order_number=layer.source_order_number,
                    quantity=used,
                    unit_cost=layer.unit_cost,
                )
            )
            layer.remaining -= used
            remaining -= used
        return FifoAllocation(slices=tuple(slices), shortfall_quantity=remaining)

    def drain(self) -> list[FifoLayer]:
        """Materialize the layers that still have stock left."""
        left: list[FifoLayer] = []
        layer = self._current()
        while layer is not None:
            left.append(layer)
            self._head = None
            layer = self._current()
        return left


def shortfall_unit_cost(unit_revenue: Decimal, policy: str | None = None) -> Decimal:
    chosen = policy or settings.fifo_shortfall_cost_policy
    if chosen == "zero":
        return to_unit_cost(0)
    return to_unit_cost(unit_revenue)


def price_allocation(
    allocation: FifoAllocation,
    *,
    quantity: int,
    unit_revenue: Decimal,
    shortfall_policy: str | None = None,
) -> CostAndProfit:
    unit_revenue = Decimal(str(unit_revenue))
    fallback = shortfall_unit_cost(unit_revenue, shortfall_policy)
    revenue = to_money(unit_revenue * quantity)
    cost = to_money(allocation.matched_cost + fallback * allocation.shortfall_quantity)
    gross_profit = to_money(revenue - cost)
    return CostAndProfit(
        quantity=quantity,
        unit_revenue=to_unit_cost(unit_revenue),
        revenue=revenue,
        cost=cost,
        gross_profit=gross_profit,
        margin_pct=percent_of(gross_profit, revenue),
        slices=allocation.slices,
        shortfall_quantity=allocation.shortfall_quantity,
        shortfall_unit_cost=fallback if allocation.shortfall_quantity else ZERO_MONEY,
    )


def compute_cost_and_profit(
    layers: Iterable[FifoLayer],
    quantity: int,
    unit_revenue: Decimal,
    *,
    prior_outbound_quantities: Iterable[int] = (),
    shortfall_policy: str | None = None,
) -> CostAndProfit:
    queue = FifoQueue(layers)
    for prior in prior_outbound_quantities:
        queue.consume(prior)
    return price_allocation(
        queue.consume(quantity),
        quantity=quantity,
        unit_revenue=unit_revenue,
        shortfall_policy=shortfall_policy,
    )


def layer_from_entry(entry: InventoryLedger) -> FifoLayer:
    if entry.unit_amount is not None:
        unit_cost = Decimal(entry.unit_amount)
    elif entry.total_amount is not None:
        unit_cost = unit_amount_of(entry.total_amount, entry.qty_delta)
    else:
        unit_cost = Decimal("0")
    return FifoLayer(
        entry_id=entry.id,
        occurred_at=entry.occurred_at,
        source_order_number=entry.source_order_number,
        quantity=entry.qty_delta,
        unit_cost=unit_cost,
    )


def outbound_unit_revenue(entry: InventoryLedger) -> Decimal:
    if entry.unit_amount is not None:
        return Decimal(entry.unit_amount)
    if entry.total_amount is not None:
        return unit_amount_of(entry.total_amount, entry.qty_delta)
    return Decimal("0")


def _inbound_layers(db: Session, product_id: str) -> Iterator[FifoLayer]:
    for entry in iter_by_product(db, product_id, kinds=[KIND_INBOUND]):
        yield layer_from_entry(entry)


def _outbound_entries(db: Session, product_id: str) -> Iterator[InventoryLedger]:
    return iter_by_product(db, product_id, kinds=OUTBOUND_KINDS)


@dataclass(frozen=True)
class OutboundProfit:
    entry_id: str
    kind: str
    occurred_at: datetime | None
    source_order_id: str | None
    source_order_number: str | None
    result: CostAndProfit


@dataclass(frozen=True)
class FifoSummary:
    total_cost: Decimal
    total_revenue: Decimal
    total_profit: Decimal
    margin_pct: Decimal | None
    has_shortfall: bool


@dataclass(frozen=True)
class ProductFifoReport:
    product_id: str
    lines: list[OutboundProfit] = field(default_factory=list)
    summary: FifoSummary | None = None


@dataclass(frozen=True)
class FifoSimulation:
    product_id: str
    unconsumed_layer_quantity: int
    result: CostAndProfit


def summarize(results: Iterable[CostAndProfit]) -> FifoSummary:
    total_cost = ZERO_MONEY
    total_revenue = ZERO_MONEY
    has_shortfall = False
    for result in results:
        total_cost += result.cost
        total_revenue += result.revenue
        has_shortfall = has_shortfall or result.has_shortfall
    total_profit = to_money(total_revenue - total_cost)
    return FifoSummary(
        total_cost=to_money(total_cost),
        total_revenue=to_money(total_revenue),
        total_profit=total_profit,
        margin_pct=percent_of(total_profit, total_revenue),
        has_shortfall=has_shortfall,
    )


def product_report(db: Session, product_id: str) -> ProductFifoReport:
    queue = FifoQueue(_inbound_layers(db, product_id))
    lines: list[OutboundProfit] = []
    for entry in _outbound_entries(db, product_id):
        quantity = -entry.qty_delta
        result = price_allocation(
            queue.consume(quantity),
            quantity=quantity,
            unit_revenue=outbound_unit_revenue(entry),
        )
        lines.append(
            OutboundProfit(
                entry_id=entry.id,
                kind=entry.kind,
                occurred_at=entry.occurred_at,
                source_order_id=entry.source_order_id,
                source_order_number=entry.source_order_number,
                result=result,
            )
        )
    return ProductFifoReport(
        product_id=product_id,
        lines=lines,
        summary=summarize(line.result for line in lines),
    )


def cost_and_profit(
    db: Session,
    product_id: str,
    outbound_quantity: int,
    outbound_unit_revenue: Decimal,
) -> CostAndProfit:
    """Cost and profit of a further outbound, after every recorded one."""
    return simulate_outbound(db, product_id, outbound_quantity, outbound_unit_revenue).result


def simulate_outbound(
    db: Session,
    product_id: str,
    quantity: int,
    unit_revenue: Decimal | None = None,
) -> FifoSimulation:
    """
    Price a hypothetical next outbound against the layers left after every
    recorded sale and shipment.

    Adjustments are not cost events, so a write-off does not consume a layer.
    `unconsumed_layer_quantity` can therefore exceed on-hand stock, and the
    next outbound is priced at the oldest unconsumed batch.
    """
    if unit_revenue is None:
        product = db.get(Product, product_id)
        price = product.selling_price if product is not None else None
        unit_revenue = Decimal(price) if price is not None else Decimal("0")

    queue = FifoQueue(_inbound_layers(db, product_id))
    for entry in _outbound_entries(db, product_id):
        queue.consume(-entry.qty_delta)
    left = queue.drain()
    unconsumed = sum(layer.remaining for layer in left)

    result = price_allocation(
        FifoQueue(left).consume(quantity),
        quantity=quantity,
        unit_revenue=unit_revenue,
    )
    return FifoSimulation(product_id=product_id, unconsumed_layer_quantity=unconsumed, result=result)


@dataclass(frozen=True)
class OrderItemProfit:
    item: ShippingOrderItem
    ledger_entry_id: str | None
    result: CostAndProfit | None


@dataclass(frozen=True)
class OrderFifoReport:
    order: ShippingOrder
    items: list[OrderItemProfit]
    summary: FifoSummary


def order_report(
    db: Session,
    order: ShippingOrder,
    items: list[ShippingOrderItem],
) -> OrderFifoReport:
    """
    Per-item FIFO profit for an order whose stock is held in the ledger.
    Items without a shipment entry (order not committed) report no result.
    """
    reports: dict[str, dict[str, OutboundProfit]] = {}
    item_profits: list[OrderItemProfit] = []
    for item in items:
        entry = get_shipment_entry(db, source_order_id=order.id, product_id=item.product_id)
        if entry is None:
            item_profits.append(OrderItemProfit(item=item, ledger_entry_id=None, result=None))
            continue
        if item.product_id not in reports:
            report = product_report(db, item.product_id)
            reports[item.product_id] = {line.entry_id: line for line in report.lines}
        line = reports[item.product_id].get(entry.id)
        item_profits.append(
            OrderItemProfit(
                item=item,
                ledger_entry_id=entry.id,
                result=line.result if line is not None else None,
            )
        )

    summary = summarize(p.result for p in item_profits if p.result is not None)
    return OrderFifoReport(order=order, items=item_profits, summary=summary)
