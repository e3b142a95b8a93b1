from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from quote_engine.core.errors import CalculationError

ZERO = Decimal("0")
HUNDRED = Decimal("100")

# ISO 4217 minor units that differ from 2
_ZERO_DECIMAL = {"JPY", "KRW", "VND", "CLP", "ISK"}
_THREE_DECIMAL = {"BHD", "KWD", "OMR", "JOD", "TND"}


def _d(x: Any) -> Decimal:
    if x is None:
        return ZERO
    try:
        return Decimal(str(x))
    except (InvalidOperation, TypeError):
        raise CalculationError(f"Invalid numeric input: {x}")


def currency_places(currency: str) -> int:
    code = (currency or "").upper()
    if code in _ZERO_DECIMAL:
        return 0
    if code in _THREE_DECIMAL:
        return 3
    return 2


def round_money(amount: Any, currency: str) -> Decimal:
    quantum = Decimal(1).scaleb(-currency_places(currency))
    return _d(amount).quantize(quantum, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LineAmounts:
    quantity: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class QuoteTotals:
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def compute_discount(
    base: Decimal,
    *,
    quantity: Decimal,
    discount_type: Optional[str],
    discount_value: Any,
    percentage_discount: Any = None,
    fixed_discount: Any = None,
    currency: str,
) -> Decimal:
    """
    Discount taken off `base`.

    Several discounts may be combined; percentages are taken first (each on
    the remaining base), then fixed amounts and per-unit amounts.
    A discount can never exceed what is left of the base.
    """
    percentages = []
    fixed = []

    value = _d(discount_value)
    if discount_type and value != ZERO:
        if discount_type == "percentage":
            percentages.append(value)
        elif discount_type == "fixed_amount":
            fixed.append(value)
        elif discount_type == "per_unit":
            fixed.append(value * quantity)
        else:
            raise CalculationError(f"Unknown discount type: {discount_type}")

    if percentage_discount is not None:
        percentages.append(_d(percentage_discount))
    if fixed_discount is not None:
        fixed.append(_d(fixed_discount))

    remaining = base
    total = ZERO

    for pct in percentages:
        if pct < ZERO or pct > HUNDRED:
            raise CalculationError(f"Percentage discount must be between 0 and 100, got {pct}.")
        amount = round_money(remaining * pct / HUNDRED, currency)
        remaining -= amount
        total += amount

    for amount in fixed:
        amount = round_money(amount, currency)
        if amount < ZERO:
            raise CalculationError("Discount amounts must not be negative.")
        if amount > remaining:
            raise CalculationError(
                f"Discount {amount} exceeds the amount it applies to ({remaining})."
            )
        remaining -= amount
        total += amount

    return total


def calculate_line(
    *,
    quantity: Any,
    unit_price: Any,
    tax_rate: Any,
    tax_inclusive: bool = False,
    discount_type: Optional[str] = None,
    discount_value: Any = None,
    percentage_discount: Any = None,
    fixed_discount: Any = None,
    currency: str,
) -> LineAmounts:
    """
    subtotal   = quantity x unit_price
    discounted = subtotal - line discount
    tax        = discounted x tax_rate   (0 when tax-inclusive or zero-rated)
    total      = discounted + tax

    tax_rate is a fraction (0.15 == 15%). Every step is rounded to the
    currency's minor unit.
    """
    qty = _d(quantity)
    price = _d(unit_price)
    rate = _d(tax_rate)

    if qty <= ZERO:
        raise CalculationError("Quantity must be positive.")
    if price < ZERO:
        raise CalculationError("Unit price must not be negative.")
    if rate < ZERO:
        raise CalculationError("Tax rate must not be negative.")

    subtotal = round_money(qty * price, currency)
    discount = compute_discount(
        subtotal,
        quantity=qty,
        discount_type=discount_type,
        discount_value=discount_value,
        percentage_discount=percentage_discount,
        fixed_discount=fixed_discount,
        currency=currency,
    )
    discounted = subtotal - discount

    if tax_inclusive or rate == ZERO:
        tax = round_money(ZERO, currency)
    else:
        tax = round_money(discounted * rate, currency)

    return LineAmounts(
        quantity=qty,
        subtotal=subtotal,
        discount_amount=discount,
        tax_amount=tax,
        total_amount=round_money(discounted + tax, currency),
    )


def calculate_quote_totals(
    lines: Iterable[LineAmounts],
    *,
    discount_type: Optional[str] = None,
    discount_value: Any = None,
    currency: str,
) -> QuoteTotals:
    """
    subtotal = Σ line subtotals
    discount = Σ line discounts + quote-level discount
    tax      = Σ line taxes
    total    = subtotal - discount + tax

    The quote-level discount applies to what is left of the summed subtotal
    after line discounts; a per-unit quote discount multiplies by the total
    quantity.
    """
    lines = list(lines)

    subtotal = round_money(sum((l.subtotal for l in lines), ZERO), currency)
    line_discounts = round_money(sum((l.discount_amount for l in lines), ZERO), currency)
    tax = round_money(sum((l.tax_amount for l in lines), ZERO), currency)

    quote_discount = compute_discount(
        subtotal - line_discounts,
        quantity=sum((l.quantity for l in lines), ZERO),
        discount_type=discount_type,
        discount_value=discount_value,
        currency=currency,
    )
    discount = round_money(line_discounts + quote_discount, currency)

    return QuoteTotals(
        subtotal=subtotal,
        discount_amount=discount,
        tax_amount=tax,
        total_amount=round_money(subtotal - discount + tax, currency),
    )
