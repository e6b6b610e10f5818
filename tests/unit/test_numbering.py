"""
Unit tests for quoteflow/services/numbering.py

Uses AsyncMock sessions; the sequence row is a transient QuotationSequence.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from quoteflow.errors import ConcurrencyConflictError
from quoteflow.models.quotation import QuotationSequence
from quoteflow.services.numbering import (
    allocate_quotation_number,
    format_number,
    next_value,
    parse_suffix,
    partition_prefix,
)


def _wire_sequence_store(session, existing_numbers=(), deleted_numbers=()):
    """
    execute() serves the partition's counter row (once added), the live
    quotation numbers used to seed it, and number lookups that also see
    soft-deleted rows.
    """
    store = {"statements": []}
    taken = set(existing_numbers) | set(deleted_numbers)

    def add(obj):
        if isinstance(obj, QuotationSequence):
            store["sequence"] = obj

    async def execute(stmt, *args, **kwargs):
        store["statements"].append(stmt)
        result = MagicMock()
        target = stmt.column_descriptions[0]["name"]
        if target == "QuotationSequence":
            result.scalar_one_or_none.return_value = store.get("sequence")
        elif target == "quotation_number":
            result.scalars.return_value.all.return_value = list(existing_numbers)
        else:
            (number,) = stmt.compile().params.values()
            result.first.return_value = (1,) if number in taken else None
        return result

    session.add.side_effect = add
    session.execute = AsyncMock(side_effect=execute)
    return store


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def test_partition_prefix():
    assert partition_prefix(2025, "QT") == "QT-2025-"
    assert partition_prefix(2031, "INV") == "INV-2031-"


def test_format_number_pads_to_four_digits():
    assert format_number("QT-2025-", 1001) == "QT-2025-1001"
    assert format_number("QT-2025-", 12345) == "QT-2025-12345"


def test_parse_suffix():
    assert parse_suffix("QT-2025-1007", "QT-2025-") == 1007
    assert parse_suffix("QT-2025-DRAFT", "QT-2025-") is None
    assert parse_suffix("QT-2024-1007", "QT-2025-") is None


@pytest.mark.parametrize(
    "last, expected",
    [(None, 1001), (0, 1001), (5, 1001), (1000, 1001), (1001, 1002), (4711, 4712)],
)
def test_next_value_floor(last, expected):
    assert next_value(last) == expected


# ---------------------------------------------------------------------------
# allocate_quotation_number
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_first_number_of_year_is_1001(db_session):
    _wire_sequence_store(db_session)

    number = await allocate_quotation_number(db_session, year=2025)

    assert number == "QT-2025-1001"
    db_session.begin_nested.assert_called_once()


@pytest.mark.asyncio
async def test_consecutive_allocations_are_contiguous(db_session):
    store = _wire_sequence_store(db_session)

    first = await allocate_quotation_number(db_session, year=2025)
    second = await allocate_quotation_number(db_session, year=2025)

    assert (first, second) == ("QT-2025-1001", "QT-2025-1002")
    assert store["sequence"].last_value == 1002
    # Seeded once, then the locked row is incremented
    db_session.begin_nested.assert_called_once()


@pytest.mark.asyncio
async def test_seed_continues_after_highest_existing_number(db_session):
    _wire_sequence_store(
        db_session,
        existing_numbers=["QT-2025-1001", "QT-2025-1005", "QT-2025-MANUAL"],
    )

    number = await allocate_quotation_number(db_session, year=2025)

    assert number == "QT-2025-1006"


@pytest.mark.asyncio
async def test_existing_counter_row_is_incremented(db_session):
    sequence = QuotationSequence(prefix="QT-2025-", last_value=1041)
    result = MagicMock()
    result.scalar_one_or_none.return_value = sequence
    result.first.return_value = None
    db_session.execute.return_value = result

    number = await allocate_quotation_number(db_session, year=2025)

    assert number == "QT-2025-1042"
    assert sequence.last_value == 1042
    db_session.add.assert_not_called()
    db_session.flush.assert_awaited()


@pytest.mark.asyncio
async def test_concurrent_seed_raises_conflict(db_session):
    _wire_sequence_store(db_session)
    db_session.add.side_effect = IntegrityError(
        "INSERT INTO quotation_sequences", {}, Exception("duplicate key")
    )

    with pytest.raises(ConcurrencyConflictError):
        await allocate_quotation_number(db_session, year=2025)


@pytest.mark.asyncio
async def test_seed_scan_ignores_soft_deleted_quotations(db_session):
    store = _wire_sequence_store(db_session, existing_numbers=["QT-2025-1003"])

    await allocate_quotation_number(db_session, year=2025)

    seed_scans = [
        str(stmt)
        for stmt in store["statements"]
        if stmt.column_descriptions[0]["name"] == "quotation_number"
    ]
    assert len(seed_scans) == 1
    assert "quotations.deleted_at IS NULL" in seed_scans[0]


@pytest.mark.asyncio
async def test_numbers_held_by_deleted_quotations_are_skipped(db_session):
    store = _wire_sequence_store(
        db_session,
        existing_numbers=["QT-2025-1001"],
        deleted_numbers=["QT-2025-1002", "QT-2025-1003", "QT-2025-1005"],
    )

    first = await allocate_quotation_number(db_session, year=2025)
    second = await allocate_quotation_number(db_session, year=2025)

    assert (first, second) == ("QT-2025-1004", "QT-2025-1006")
    assert store["sequence"].last_value == 1006
