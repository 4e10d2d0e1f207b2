from __future__ import annotations

from decimal import Decimal

from domain.cost_basis import CostBasis, FiatSettled, Pending

DETAIL_PLACES = 4
SUMMARY_PLACES = 2
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_decimal(value: Decimal) -> str:
    quantized = value.normalize()
    # Avoid scientific notation for integers.
    if quantized == quantized.to_integral():
        return f"{quantized:.0f}"
    return format(quantized, "f")


def format_fixed(value: Decimal, places: int = DETAIL_PLACES) -> str:
    quantized = value.quantize(Decimal(1).scaleb(-places))
    if quantized == 0:
        quantized = abs(quantized)
    return f"{quantized:.{places}f}"


def format_currency(value: Decimal) -> str:
    return format_fixed(value, SUMMARY_PLACES)


def format_pending(component: Pending, *, negative: bool = False) -> str:
    quantity = -component.quantity if negative else component.quantity
    return f"({format_decimal(quantity)} {component.currency} {component.timestamp.strftime(TIMESTAMP_FORMAT)})"


def format_income(income: FiatSettled | Pending) -> str:
    if isinstance(income, FiatSettled):
        return format_fixed(income.amount)
    return format_pending(income)


def format_cost(cost: CostBasis) -> str:
    """Render a cost as a non-positive figure, or as its parts when some are still pending."""
    if cost.is_resolved:
        return format_fixed(-cost.fiat)
    parts = [format_pending(component, negative=True) for component in cost.pending]
    if cost.fiat:
        parts.insert(0, format_fixed(-cost.fiat))
    return ", ".join(parts)
