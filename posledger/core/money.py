from decimal import Decimal, ROUND_HALF_UP

MONEY_QUANT = Decimal("0.01")
UNIT_COST_QUANT = Decimal("0.0001")
PERCENT_QUANT = Decimal("0.01")
ZERO_MONEY = Decimal("0.00")


def to_money(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def to_unit_cost(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(UNIT_COST_QUANT, rounding=ROUND_HALF_UP)


def unit_amount_of(total: Decimal | int | float | str, quantity: int) -> Decimal:
    """Per-unit value of a line total; zero quantity yields zero."""
    if quantity == 0:
        return to_unit_cost(0)
    return to_unit_cost(Decimal(str(total)) / abs(quantity))


def percent_of(part: Decimal, whole: Decimal) -> Decimal | None:
    if whole == 0:
        return None
    return (part / whole * 100).quantize(PERCENT_QUANT, rounding=ROUND_HALF_UP)
