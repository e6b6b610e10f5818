"""
Quotation numbering: PREFIX-YYYY-NNNN, one sequence per calendar year.

The partition's row in quotation_sequences is locked (SELECT ... FOR UPDATE)
for the whole read-increment-write, so concurrent creates in the same year
queue behind each other until the owning transaction commits. The first
allocation of a year seeds the row from the highest existing non-deleted
number in that partition; numbers still held by soft-deleted rows are
skipped, never reissued.

All functions use the caller's session (no commit). get_db() auto-commits.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from quoteflow.config import settings
from quoteflow.database import utcnow
from quoteflow.errors import ConcurrencyConflictError
from quoteflow.models.quotation import Quotation, QuotationSequence

logger = structlog.get_logger()

FIRST_NUMBER = 1001


def partition_prefix(year: Optional[int] = None, prefix: Optional[str] = None) -> str:
    year = year or utcnow().year
    prefix = prefix or settings.QUOTATION_NUMBER_PREFIX
    return f"{prefix}-{year}-"


def format_number(partition: str, value: int) -> str:
    return f"{partition}{value:04d}"


def parse_suffix(number: str, partition: str) -> Optional[int]:
    """Numeric suffix of a number in the partition; None if it is not numeric."""
    if not number or not number.startswith(partition):
        return None
    suffix = number[len(partition):]
    if not suffix.isdigit():
        return None
    return int(suffix)


def next_value(last_value: Optional[int]) -> int:
    if last_value is None:
        return FIRST_NUMBER
    return max(FIRST_NUMBER, last_value + 1)


async def highest_existing_number(
    session: AsyncSession, partition: str
) -> Optional[int]:
    result = await session.execute(
        select(Quotation.quotation_number).where(
            Quotation.quotation_number.like(f"{partition}%"),
            Quotation.deleted_at == None,  # noqa: E711
        )
    )
    values = [
        v for v in (parse_suffix(n, partition) for n in result.scalars().all())
        if v is not None
    ]
    return max(values) if values else None


async def _number_taken(session: AsyncSession, number: str) -> bool:
    result = await session.execute(
        select(Quotation.id).where(Quotation.quotation_number == number)
    )
    return result.first() is not None


async def _seed_sequence(session: AsyncSession, partition: str) -> QuotationSequence:
    highest = await highest_existing_number(session, partition)
    sequence = QuotationSequence(
        prefix=partition,
        last_value=highest if highest is not None else FIRST_NUMBER - 1,
    )
    try:
        async with session.begin_nested():
            session.add(sequence)
    except IntegrityError as exc:
        logger.warning("quotation_sequence_seed_conflict", partition=partition)
        raise ConcurrencyConflictError(
            "Quotation numbering was initialised concurrently, retry the request"
        ) from exc

    logger.info(
        "quotation_sequence_seeded",
        partition=partition,
        last_value=sequence.last_value,
    )
    return sequence


async def allocate_quotation_number(
    session: AsyncSession, year: Optional[int] = None
) -> str:
    partition = partition_prefix(year)
    result = await session.execute(
        select(QuotationSequence)
        .where(QuotationSequence.prefix == partition)
        .with_for_update()
    )
    sequence = result.scalar_one_or_none()
    if sequence is None:
        sequence = await _seed_sequence(session, partition)

    value = next_value(sequence.last_value)
    # Soft-deleted quotations keep their numbers but are not counted when
    # seeding, so step past any number still held by one
    while await _number_taken(session, format_number(partition, value)):
        logger.info(
            "quotation_number_skipped",
            quotation_number=format_number(partition, value),
        )
        value += 1
    sequence.last_value = value
    await session.flush()

    number = format_number(partition, value)
    logger.info("quotation_number_allocated", quotation_number=number)
    return number
