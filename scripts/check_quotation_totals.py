"""
Quotation data integrity check.

Recomputes every quotation's totals from its items (or caller-entered
figures) and reports stored rows that disagree. Also reports malformed
numbers, numbering gaps and sequence rows behind the issued numbers.
Read-only.

Usage:
    python scripts/check_quotation_totals.py
"""

import asyncio
import os
import sys
from collections import defaultdict

from sqlalchemy import select

sys.path.append(os.getcwd())

from quoteflow.database import AsyncSessionLocal
from quoteflow.models import Quotation, QuotationItem, QuotationSequence
from quoteflow.services.numbering import parse_suffix
from quoteflow.services.pricing import compute_item
from quoteflow.services.totals import aggregate_totals


def _partition_of(number: str) -> str:
    return number.rsplit("-", 1)[0] + "-"


async def main():
    async with AsyncSessionLocal() as db:
        print("Starting Quotation Integrity Check...")
        print("=" * 60)

        quotations = (
            await db.execute(select(Quotation).order_by(Quotation.quotation_number))
        ).scalars().all()
        items_by_quotation = defaultdict(list)
        for item in (await db.execute(select(QuotationItem))).scalars().all():
            items_by_quotation[item.quotation_id].append(item)

        # 1. Line items whose stored amounts disagree with their inputs
        print("\n[1] Checking line item amounts...")
        bad_items = []
        for items in items_by_quotation.values():
            for item in items:
                amounts = compute_item(
                    item.quantity, item.unit_price, item.tax_rate, item.discount_rate
                )
                if (
                    amounts.tax_amount != item.tax_amount
                    or amounts.discount_amount != item.discount_amount
                    or amounts.line_total != item.total_amount
                ):
                    bad_items.append((item, amounts))
        if bad_items:
            print(f"❌ Found {len(bad_items)} line items with stale amounts:")
            for item, amounts in bad_items:
                print(
                    f"   - Item {item.id} line {item.line_number}: "
                    f"stored {item.total_amount}, expected {amounts.line_total}"
                )
        else:
            print("✅ All line item amounts match their inputs.")

        # 2. Quotation totals that disagree with their items
        print("\n[2] Checking quotation totals...")
        bad_totals = []
        for q in quotations:
            totals = aggregate_totals(
                items_by_quotation.get(q.id, []),
                subtotal=q.manual_subtotal,
                tax_amount=q.manual_tax_amount,
                discount_amount=q.manual_discount_amount,
            )
            stored = (q.subtotal, q.tax_amount, q.discount_amount, q.total_amount)
            expected = (
                totals.subtotal,
                totals.tax_amount,
                totals.discount_amount,
                totals.total_amount,
            )
            if stored != expected:
                bad_totals.append((q, stored, expected))
        if bad_totals:
            print(f"❌ Found {len(bad_totals)} quotations with stale totals:")
            for q, stored, expected in bad_totals:
                print(f"   - {q.quotation_number}: stored {stored}, expected {expected}")
        else:
            print("✅ All quotation totals match their items.")

        # 3. Numbers outside the PREFIX-YYYY-NNNN shape, and gaps per year
        print("\n[3] Checking quotation numbers...")
        issued = defaultdict(list)
        malformed = []
        for q in quotations:
            partition = _partition_of(q.quotation_number)
            value = parse_suffix(q.quotation_number, partition)
            if value is None or not partition[:-1].rsplit("-", 1)[-1].isdigit():
                malformed.append(q)
            else:
                issued[partition].append(value)
        if malformed:
            print(f"❌ Found {len(malformed)} malformed quotation numbers:")
            for q in malformed:
                print(f"   - {q.quotation_number} (ID: {q.id})")
        else:
            print("✅ All quotation numbers are well formed.")
        gaps_found = False
        for partition, values in sorted(issued.items()):
            values.sort()
            missing = sorted(set(range(values[0], values[-1] + 1)) - set(values))
            if missing:
                gaps_found = True
                print(f"⚠️  {partition}: {len(missing)} numbers never persisted, e.g. {missing[:5]}")
        if not gaps_found:
            print("✅ No numbering gaps found.")

        # 4. Sequence rows behind the highest issued number
        print("\n[4] Checking quotation_sequences...")
        sequences = {
            s.prefix: s.last_value
            for s in (await db.execute(select(QuotationSequence))).scalars().all()
        }
        lagging = [
            (partition, sequences.get(partition), max(values))
            for partition, values in issued.items()
            if sequences.get(partition) is None or sequences[partition] < max(values)
        ]
        if lagging:
            print(f"❌ Found {len(lagging)} partitions whose counter is behind:")
            for partition, last_value, highest in lagging:
                print(f"   - {partition}: counter {last_value}, highest issued {highest}")
        else:
            print("✅ All counters are at or ahead of the issued numbers.")

        print("\n" + "=" * 60)
        print("Integrity Check Complete.")


if __name__ == "__main__":
    asyncio.run(main())
