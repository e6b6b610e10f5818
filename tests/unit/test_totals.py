"""
Unit tests for quoteflow/services/totals.py

aggregate_totals is pure; recompute_totals runs against an AsyncMock session.
"""

import uuid
from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from quoteflow.errors import ValidationError
from quoteflow.models.quotation import Quotation
from quoteflow.services.totals import aggregate_totals, recompute_totals


def _item(quantity, unit_price, tax_rate=0, discount_rate=0):
    return SimpleNamespace(
        quantity=Decimal(str(quantity)),
        unit_price=Decimal(str(unit_price)),
        tax_rate=Decimal(str(tax_rate)),
        discount_rate=Decimal(str(discount_rate)),
    )


def _quotation(**manual) -> Quotation:
    return Quotation(
        id=uuid.uuid4(),
        quotation_number="QT-2025-1001",
        vendor_name="Acme",
        issue_date=date(2025, 3, 1),
        expiry_date=date(2025, 3, 31),
        status="draft",
        **manual,
    )


def _session_with_items(items):
    session = AsyncMock()
    session.flush = AsyncMock()
    result = MagicMock()
    result.scalars.return_value.all.return_value = items
    session.execute.return_value = result
    return session


# ---------------------------------------------------------------------------
# aggregate_totals
# ---------------------------------------------------------------------------


def test_totals_from_single_item():
    totals = aggregate_totals([_item(2, 50, 16, 10)])
    assert totals.subtotal == Decimal("100.00")
    assert totals.tax_amount == Decimal("16.00")
    assert totals.discount_amount == Decimal("10.00")
    assert totals.total_amount == Decimal("106.00")
    assert totals.derived_from_items is True


def test_items_override_entered_figures():
    totals = aggregate_totals(
        [_item(1, 40)],
        subtotal=Decimal("100"),
        tax_amount=Decimal("10"),
        discount_amount=Decimal("5"),
    )
    assert totals.subtotal == Decimal("40.00")
    assert totals.total_amount == Decimal("40.00")


def test_entered_figures_used_without_items():
    totals = aggregate_totals(
        [], subtotal=Decimal("100"), tax_amount=Decimal("10"), discount_amount=Decimal("5")
    )
    assert totals.total_amount == Decimal("105.00")
    assert totals.derived_from_items is False


def test_missing_figures_count_as_zero():
    totals = aggregate_totals([], subtotal=Decimal("12.5"))
    assert totals.tax_amount == Decimal("0.00")
    assert totals.discount_amount == Decimal("0.00")
    assert totals.total_amount == Decimal("12.50")


def test_no_items_no_figures_is_zero():
    totals = aggregate_totals([])
    assert totals.total_amount == Decimal("0.00")


def test_total_equals_sum_of_line_totals():
    items = [_item(3, "0.35", 7, 3), _item("1.5", "19.99", 16, 0), _item(4, 25, 0, 12.5)]
    totals = aggregate_totals(items)
    assert totals.total_amount == (
        totals.subtotal + totals.tax_amount - totals.discount_amount
    )


def test_totals_independent_of_item_order():
    items = [_item(3, "0.35", 7, 3), _item("1.5", "19.99", 16, 0), _item(4, 25, 0, 12.5)]
    assert aggregate_totals(items) == aggregate_totals(list(reversed(items)))
    assert aggregate_totals(items) == aggregate_totals([items[1], items[2], items[0]])


# ---------------------------------------------------------------------------
# recompute_totals
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_recompute_writes_item_totals():
    quotation = _quotation()
    session = _session_with_items([_item(2, 50, 16, 10)])

    await recompute_totals(session, quotation)

    assert quotation.subtotal == Decimal("100.00")
    assert quotation.total_amount == Decimal("106.00")
    assert session.flush.await_count == 2


@pytest.mark.asyncio
async def test_recompute_without_items_restores_entered_figures():
    quotation = _quotation(
        manual_subtotal=Decimal("100.00"),
        manual_tax_amount=Decimal("10.00"),
        manual_discount_amount=Decimal("5.00"),
    )
    quotation.subtotal = Decimal("40.00")
    quotation.total_amount = Decimal("40.00")
    session = _session_with_items([])

    await recompute_totals(session, quotation)

    assert quotation.subtotal == Decimal("100.00")
    assert quotation.tax_amount == Decimal("10.00")
    assert quotation.discount_amount == Decimal("5.00")
    assert quotation.total_amount == Decimal("105.00")


@pytest.mark.asyncio
async def test_recompute_is_idempotent():
    quotation = _quotation()
    session = _session_with_items([_item(3, "0.35", 7, 3), _item(4, 25, 0, 12.5)])

    await recompute_totals(session, quotation)
    first = (
        quotation.subtotal,
        quotation.tax_amount,
        quotation.discount_amount,
        quotation.total_amount,
    )
    await recompute_totals(session, quotation)
    second = (
        quotation.subtotal,
        quotation.tax_amount,
        quotation.discount_amount,
        quotation.total_amount,
    )

    assert first == second
    assert first == (
        Decimal("101.05"),
        Decimal("0.07"),
        Decimal("12.53"),
        Decimal("88.59"),
    )


def test_sum_of_items_must_fit_money_column():
    items = [_item(1, "6000000000"), _item(1, "5000000000")]
    with pytest.raises(ValidationError) as exc_info:
        aggregate_totals(items)
    assert exc_info.value.field == "items"


def test_entered_figures_must_fit_money_column():
    with pytest.raises(ValidationError) as exc_info:
        aggregate_totals([], subtotal=Decimal("9000000000"), tax_amount=Decimal("1000000000"))
    assert exc_info.value.field == "subtotal"
