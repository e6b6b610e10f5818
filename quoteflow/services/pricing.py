"""
Line item pricing.

    base     = quantity * unit_price
    tax      = tax_rate / 100 * base
    discount = discount_rate / 100 * base
    total    = base + tax - discount

Tax and discount are both taken off the base, never off each other. Arithmetic
is done in Decimal; each part is quantized to cents once, and the line total is
assembled from the quantized parts so stored rows always satisfy
total == base + tax - discount exactly.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from quoteflow.errors import ValidationError

CENTS = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")
# Money and quantity columns are Numeric(12, 2)
MAX_AMOUNT = Decimal("10000000000")

Number = Union[Decimal, int, float, str]


@dataclass(frozen=True)
class LineAmounts:
    base_amount: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    line_total: Decimal


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def to_decimal(value: Number, field: str) -> Decimal:
    """Convert input to Decimal; floats go through str() to avoid binary noise."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        if isinstance(value, float):
            result = Decimal(str(value))
        else:
            result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", field=field)
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    return result


def check_amount(value: Decimal, field: str) -> None:
    """Reject figures that do not fit a Numeric(12, 2) column unrounded."""
    if abs(value) >= MAX_AMOUNT:
        raise ValidationError(f"{field} is too large", field=field)
    if value != value.quantize(CENTS, rounding=ROUND_HALF_UP):
        raise ValidationError(
            f"{field} must have at most 2 decimal places", field=field
        )


def _check_rate(value: Decimal, field: str) -> None:
    if value < ZERO or value > HUNDRED:
        raise ValidationError(f"{field} must be between 0 and 100", field=field)


def validate_item_inputs(
    quantity: Number,
    unit_price: Number,
    tax_rate: Number = 0,
    discount_rate: Number = 0,
) -> tuple[Decimal, Decimal, Decimal, Decimal]:
    qty = to_decimal(quantity, "quantity")
    price = to_decimal(unit_price, "unit_price")
    tax = to_decimal(tax_rate, "tax_rate")
    discount = to_decimal(discount_rate, "discount_rate")

    for value, field in (
        (qty, "quantity"),
        (price, "unit_price"),
        (tax, "tax_rate"),
        (discount, "discount_rate"),
    ):
        check_amount(value, field)

    if qty <= ZERO:
        raise ValidationError("quantity must be greater than 0", field="quantity")
    if price < ZERO:
        raise ValidationError("unit_price must not be negative", field="unit_price")
    _check_rate(tax, "tax_rate")
    _check_rate(discount, "discount_rate")
    return qty, price, tax, discount


def compute_item(
    quantity: Number,
    unit_price: Number,
    tax_rate: Number = 0,
    discount_rate: Number = 0,
) -> LineAmounts:
    qty, price, tax_rate_d, discount_rate_d = validate_item_inputs(
        quantity, unit_price, tax_rate, discount_rate
    )

    base = qty * price
    tax = tax_rate_d / HUNDRED * base
    discount = discount_rate_d / HUNDRED * base

    base_q = quantize_money(base)
    tax_q = quantize_money(tax)
    discount_q = quantize_money(discount)
    if base_q + tax_q >= MAX_AMOUNT:
        raise ValidationError("line total is too large", field="quantity")
    return LineAmounts(
        base_amount=base_q,
        tax_amount=tax_q,
        discount_amount=discount_q,
        line_total=base_q + tax_q - discount_q,
    )
