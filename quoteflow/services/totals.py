"""
Quotation totals aggregation.

Once a quotation has items they are the source of truth for subtotal, tax and
discount. Without items the figures last entered by the caller
(manual_subtotal, manual_tax_amount, manual_discount_amount) are used and
only the total is derived from them.

All functions use the caller's session (no commit). get_db() auto-commits.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from quoteflow.errors import ValidationError
from quoteflow.models.quotation import Quotation, QuotationItem
from quoteflow.services.pricing import MAX_AMOUNT, ZERO, compute_item, quantize_money

logger = structlog.get_logger()


@dataclass(frozen=True)
class DocumentTotals:
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    derived_from_items: bool


def _money(value: Optional[Decimal]) -> Decimal:
    if value is None:
        return quantize_money(ZERO)
    return quantize_money(Decimal(value))


def _check_capacity(subtotal: Decimal, tax_amount: Decimal, field: str) -> None:
    if subtotal + tax_amount >= MAX_AMOUNT:
        raise ValidationError("quotation total is too large", field=field)


def aggregate_totals(
    items: Iterable,
    subtotal: Optional[Decimal] = None,
    tax_amount: Optional[Decimal] = None,
    discount_amount: Optional[Decimal] = None,
) -> DocumentTotals:
    """
    Pure aggregation over objects exposing quantity, unit_price, tax_rate and
    discount_rate. The three keyword figures are only used when items is empty.
    """
    items = list(items)
    if not items:
        sub = _money(subtotal)
        tax = _money(tax_amount)
        discount = _money(discount_amount)
        _check_capacity(sub, tax, "subtotal")
        return DocumentTotals(
            subtotal=sub,
            tax_amount=tax,
            discount_amount=discount,
            total_amount=sub + tax - discount,
            derived_from_items=False,
        )

    sub = tax = discount = quantize_money(ZERO)
    for item in items:
        amounts = compute_item(
            item.quantity,
            item.unit_price,
            item.tax_rate or ZERO,
            item.discount_rate or ZERO,
        )
        sub += amounts.base_amount
        tax += amounts.tax_amount
        discount += amounts.discount_amount
    _check_capacity(sub, tax, "items")

    return DocumentTotals(
        subtotal=sub,
        tax_amount=tax,
        discount_amount=discount,
        total_amount=sub + tax - discount,
        derived_from_items=True,
    )


def apply_totals(quotation: Quotation, totals: DocumentTotals) -> Quotation:
    quotation.subtotal = totals.subtotal
    quotation.tax_amount = totals.tax_amount
    quotation.discount_amount = totals.discount_amount
    quotation.total_amount = totals.total_amount
    return quotation


async def get_items(session: AsyncSession, quotation_id) -> list[QuotationItem]:
    result = await session.execute(
        select(QuotationItem)
        .where(QuotationItem.quotation_id == quotation_id)
        .order_by(QuotationItem.line_number)
    )
    return list(result.scalars().all())


async def recompute_totals(session: AsyncSession, quotation: Quotation) -> Quotation:
    """Reload the quotation's items, rewrite its four totals and flush."""
    await session.flush()
    items = await get_items(session, quotation.id)
    totals = aggregate_totals(
        items,
        subtotal=quotation.manual_subtotal,
        tax_amount=quotation.manual_tax_amount,
        discount_amount=quotation.manual_discount_amount,
    )
    apply_totals(quotation, totals)
    await session.flush()

    logger.info(
        "quotation_totals_recomputed",
        quotation_id=str(quotation.id),
        items=len(items),
        derived_from_items=totals.derived_from_items,
        total_amount=str(totals.total_amount),
    )
    return quotation
