"""
Quotation service: the write path for quotations and their items.

Every mutation locks the quotation row (SELECT ... FOR UPDATE) so writers on
the same quotation are serialized until commit. Item writes and the totals
recompute run in one savepoint: if either fails, both are rolled back and
PersistenceError is raised.

All functions use the caller's session (no commit). get_db() auto-commits.
"""

from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Optional
import uuid

from sqlalchemy import select, func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value
import structlog

from quoteflow.database import utcnow
from quoteflow.errors import (
    ConcurrencyConflictError,
    DocumentLockedError,
    PersistenceError,
    QuotationItemNotFoundError,
    QuotationNotFoundError,
    ValidationError,
)
from quoteflow.models.quotation import Quotation, QuotationItem
from quoteflow.schemas.common import page_offset
from quoteflow.services import lifecycle
from quoteflow.services.audit_service import create_audit_log
from quoteflow.services.numbering import allocate_quotation_number
from quoteflow.services.pricing import (
    ZERO,
    check_amount,
    compute_item,
    quantize_money,
    to_decimal,
)
from quoteflow.services.totals import get_items, recompute_totals

logger = structlog.get_logger()

ENTITY_TYPE = "QUOTATION"

HEADER_FIELDS = (
    "project_id",
    "vendor_name",
    "vendor_email",
    "vendor_phone",
    "vendor_company",
    "vendor_address",
    "notes",
    "terms_and_conditions",
)
ITEM_FIELDS = (
    "description",
    "details",
    "unit",
    "quantity",
    "unit_price",
    "tax_rate",
    "discount_rate",
)
# Request key -> column holding the caller-entered figure
MANUAL_TOTAL_FIELDS = {
    "subtotal": "manual_subtotal",
    "tax_amount": "manual_tax_amount",
    "discount_amount": "manual_discount_amount",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_id(value, error_cls=QuotationNotFoundError) -> uuid.UUID:
    try:
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    except (ValueError, TypeError):
        raise error_cls(f"Invalid identifier '{value}'")


def snapshot(quotation: Quotation) -> dict:
    """JSON-safe view of the fields worth auditing."""
    return {
        "quotation_number": quotation.quotation_number,
        "status": quotation.status,
        "vendor_name": quotation.vendor_name,
        "issue_date": quotation.issue_date.isoformat() if quotation.issue_date else None,
        "expiry_date": quotation.expiry_date.isoformat() if quotation.expiry_date else None,
        "subtotal": str(quotation.subtotal) if quotation.subtotal is not None else None,
        "tax_amount": str(quotation.tax_amount) if quotation.tax_amount is not None else None,
        "discount_amount": (
            str(quotation.discount_amount) if quotation.discount_amount is not None else None
        ),
        "total_amount": str(quotation.total_amount) if quotation.total_amount is not None else None,
        "deleted": quotation.deleted_at is not None,
    }


def _manual_amount(value, field: str) -> Optional[Decimal]:
    if value is None:
        return None
    amount = to_decimal(value, field)
    if amount < ZERO:
        raise ValidationError(f"{field} must not be negative", field=field)
    check_amount(amount, field)
    return quantize_money(amount)


def _require_vendor_name(value) -> str:
    if value is None or not str(value).strip():
        raise ValidationError("vendor_name is required", field="vendor_name")
    return str(value).strip()


def _build_item(quotation_id, line_number: int, fields: dict) -> QuotationItem:
    """Validate item input and derive its amounts. Nothing is added to the session."""
    description = fields.get("description")
    if description is None or not str(description).strip():
        raise ValidationError("description is required", field="description")
    if "quantity" not in fields or fields["quantity"] is None:
        raise ValidationError("quantity is required", field="quantity")
    if "unit_price" not in fields or fields["unit_price"] is None:
        raise ValidationError("unit_price is required", field="unit_price")

    tax_rate = fields.get("tax_rate") if fields.get("tax_rate") is not None else 0
    discount_rate = (
        fields.get("discount_rate") if fields.get("discount_rate") is not None else 0
    )
    amounts = compute_item(fields["quantity"], fields["unit_price"], tax_rate, discount_rate)

    return QuotationItem(
        id=uuid.uuid4(),
        quotation_id=quotation_id,
        line_number=line_number,
        description=str(description).strip(),
        details=fields.get("details"),
        unit=fields.get("unit"),
        quantity=to_decimal(fields["quantity"], "quantity"),
        unit_price=to_decimal(fields["unit_price"], "unit_price"),
        tax_rate=to_decimal(tax_rate, "tax_rate"),
        discount_rate=to_decimal(discount_rate, "discount_rate"),
        tax_amount=amounts.tax_amount,
        discount_amount=amounts.discount_amount,
        total_amount=amounts.line_total,
    )


@asynccontextmanager
async def _atomic(session: AsyncSession, operation: str, quotation_id=None):
    """Savepoint around an item write and its totals recompute."""
    try:
        async with session.begin_nested():
            yield
    except SQLAlchemyError as exc:
        logger.error(
            "quotation_write_failed",
            operation=operation,
            quotation_id=str(quotation_id) if quotation_id else None,
            error=str(exc),
        )
        raise PersistenceError(
            f"Could not {operation}; no changes were saved"
        ) from exc


async def _load_quotation(
    session: AsyncSession,
    quotation_id,
    lock: bool = False,
    include_deleted: bool = False,
) -> Quotation:
    q = select(Quotation).where(Quotation.id == _parse_id(quotation_id))
    if not include_deleted:
        q = q.where(Quotation.deleted_at == None)  # noqa: E711
    if lock:
        q = q.with_for_update()
    result = await session.execute(q)
    quotation = result.scalar_one_or_none()
    if not quotation:
        raise QuotationNotFoundError("Quotation not found")
    return quotation


async def _load_item(session: AsyncSession, quotation: Quotation, item_id) -> QuotationItem:
    result = await session.execute(
        select(QuotationItem).where(
            QuotationItem.id == _parse_id(item_id, QuotationItemNotFoundError),
            QuotationItem.quotation_id == quotation.id,
        )
    )
    item = result.scalar_one_or_none()
    if not item:
        raise QuotationItemNotFoundError("Quotation item not found")
    return item


async def _next_line_number(session: AsyncSession, quotation_id) -> int:
    result = await session.execute(
        select(func.coalesce(func.max(QuotationItem.line_number), 0)).where(
            QuotationItem.quotation_id == quotation_id
        )
    )
    return int(result.scalar() or 0) + 1


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_quotation(session: AsyncSession, quotation_id) -> Quotation:
    return await _load_quotation(session, quotation_id)


async def list_quotations(
    session: AsyncSession,
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
    project_id: Optional[str] = None,
    created_by: Optional[str] = None,
    search: Optional[str] = None,
    expired: Optional[bool] = None,
) -> tuple[list[Quotation], int]:
    conditions = [Quotation.deleted_at == None]  # noqa: E711

    if status:
        conditions.append(Quotation.status == status)
    if project_id:
        conditions.append(Quotation.project_id == project_id)
    if created_by:
        conditions.append(Quotation.created_by == created_by)
    if search:
        pattern = f"%{search}%"
        conditions.append(
            or_(
                Quotation.quotation_number.ilike(pattern),
                Quotation.vendor_name.ilike(pattern),
                Quotation.vendor_email.ilike(pattern),
                Quotation.vendor_company.ilike(pattern),
            )
        )
    if expired is not None:
        # Only open quotations can lapse
        today = lifecycle.today()
        if expired:
            conditions.append(Quotation.expiry_date < today)
            conditions.append(Quotation.status.in_(lifecycle.EDITABLE_STATUSES))
        else:
            conditions.append(
                or_(
                    Quotation.expiry_date >= today,
                    Quotation.status.in_(lifecycle.TERMINAL_STATUSES),
                )
            )

    total = (
        await session.execute(select(func.count(Quotation.id)).where(*conditions))
    ).scalar() or 0
    result = await session.execute(
        select(Quotation)
        .where(*conditions)
        .order_by(Quotation.created_at.desc())
        .offset(page_offset(page, limit))
        .limit(limit)
    )
    return list(result.scalars().all()), int(total)


# ---------------------------------------------------------------------------
# Quotation writes
# ---------------------------------------------------------------------------


async def create_quotation(
    session: AsyncSession,
    data: dict,
    actor_id: Optional[str] = None,
    actor_email: Optional[str] = None,
) -> Quotation:
    """Create a draft quotation with a freshly allocated number."""
    data = dict(data)
    items_data = data.pop("items", None) or []

    vendor_name = _require_vendor_name(data.get("vendor_name"))
    issue_date, expiry_date = lifecycle.resolve_dates(
        data.get("issue_date"), data.get("expiry_date")
    )
    manual = {
        column: _manual_amount(data.get(key), key)
        for key, column in MANUAL_TOTAL_FIELDS.items()
    }
    quotation_id = uuid.uuid4()
    items = [
        _build_item(quotation_id, index, fields)
        for index, fields in enumerate(items_data, start=1)
    ]

    quotation_number = await allocate_quotation_number(session)
    header = {f: data.get(f) for f in HEADER_FIELDS if f != "vendor_name"}
    quotation = Quotation(
        id=quotation_id,
        quotation_number=quotation_number,
        vendor_name=vendor_name,
        issue_date=issue_date,
        expiry_date=expiry_date,
        status=lifecycle.DRAFT,
        version=1,
        created_by=str(actor_id) if actor_id is not None else None,
        subtotal=Decimal("0.00"),
        tax_amount=Decimal("0.00"),
        discount_amount=Decimal("0.00"),
        total_amount=Decimal("0.00"),
        **header,
        **manual,
    )

    async with _atomic(session, "create quotation", quotation_id):
        session.add(quotation)
        await session.flush()
        for item in items:
            session.add(item)
        await recompute_totals(session, quotation)

    await create_audit_log(
        session,
        actor_id=actor_id,
        actor_email=actor_email,
        action="QUOTATION_CREATED",
        entity_type=ENTITY_TYPE,
        entity_id=quotation.id,
        after_state=snapshot(quotation),
    )
    logger.info(
        "quotation_created",
        quotation_id=str(quotation.id),
        quotation_number=quotation.quotation_number,
        items=len(items),
    )
    return quotation


async def update_quotation(
    session: AsyncSession,
    quotation_id,
    fields: dict,
    actor_id: Optional[str] = None,
    actor_email: Optional[str] = None,
) -> Quotation:
    """Edit header fields and caller-entered figures of an open quotation."""
    quotation = await _load_quotation(session, quotation_id, lock=True)
    lifecycle.ensure_editable(quotation)

    changes = {f: fields[f] for f in HEADER_FIELDS if f in fields}
    if "vendor_name" in changes:
        changes["vendor_name"] = _require_vendor_name(changes["vendor_name"])

    issue_date = fields.get("issue_date") or quotation.issue_date
    expiry_date = fields.get("expiry_date") or quotation.expiry_date
    lifecycle.validate_dates(issue_date, expiry_date)
    changes["issue_date"] = issue_date
    changes["expiry_date"] = expiry_date

    for key, column in MANUAL_TOTAL_FIELDS.items():
        if key in fields:
            changes[column] = _manual_amount(fields[key], key)

    before = snapshot(quotation)
    async with _atomic(session, "update quotation", quotation.id):
        for name, value in changes.items():
            setattr(quotation, name, value)
        await recompute_totals(session, quotation)

    await create_audit_log(
        session,
        actor_id=actor_id,
        actor_email=actor_email,
        action="QUOTATION_UPDATED",
        entity_type=ENTITY_TYPE,
        entity_id=quotation.id,
        before_state=before,
        after_state=snapshot(quotation),
    )
    logger.info("quotation_updated", quotation_id=str(quotation.id), fields=sorted(fields))
    return quotation


async def delete_quotation(
    session: AsyncSession,
    quotation_id,
    actor_id: Optional[str] = None,
    actor_email: Optional[str] = None,
) -> Quotation:
    """Soft delete. Accepted and rejected quotations are kept."""
    quotation = await _load_quotation(session, quotation_id, lock=True)
    if quotation.status in lifecycle.TERMINAL_STATUSES:
        raise DocumentLockedError(f"Cannot delete a {quotation.status} quotation")

    before = snapshot(quotation)
    quotation.deleted_at = utcnow()
    await session.flush()

    await create_audit_log(
        session,
        actor_id=actor_id,
        actor_email=actor_email,
        action="QUOTATION_DELETED",
        entity_type=ENTITY_TYPE,
        entity_id=quotation.id,
        before_state=before,
        after_state=snapshot(quotation),
    )
    logger.info("quotation_deleted", quotation_id=str(quotation.id))
    return quotation


async def restore_quotation(
    session: AsyncSession,
    quotation_id,
    actor_id: Optional[str] = None,
    actor_email: Optional[str] = None,
) -> Quotation:
    quotation = await _load_quotation(
        session, quotation_id, lock=True, include_deleted=True
    )
    if quotation.deleted_at is None:
        return quotation

    before = snapshot(quotation)
    quotation.deleted_at = None
    await session.flush()

    await create_audit_log(
        session,
        actor_id=actor_id,
        actor_email=actor_email,
        action="QUOTATION_RESTORED",
        entity_type=ENTITY_TYPE,
        entity_id=quotation.id,
        before_state=before,
        after_state=snapshot(quotation),
    )
    logger.info("quotation_restored", quotation_id=str(quotation.id))
    return quotation


async def duplicate_quotation(
    session: AsyncSession,
    quotation_id,
    actor_id: Optional[str] = None,
    actor_email: Optional[str] = None,
) -> Quotation:
    """Copy header and items into a new draft with its own number and dates."""
    source = await _load_quotation(session, quotation_id)
    source_items = await get_items(session, source.id)

    data = {f: getattr(source, f) for f in HEADER_FIELDS}
    for key, column in MANUAL_TOTAL_FIELDS.items():
        data[key] = getattr(source, column)
    data["items"] = [
        {f: getattr(item, f) for f in ITEM_FIELDS} for item in source_items
    ]

    copy = await create_quotation(session, data, actor_id=actor_id, actor_email=actor_email)
    await create_audit_log(
        session,
        actor_id=actor_id,
        actor_email=actor_email,
        action="QUOTATION_DUPLICATED",
        entity_type=ENTITY_TYPE,
        entity_id=copy.id,
        before_state={"source_quotation_number": source.quotation_number},
        after_state=snapshot(copy),
    )
    logger.info(
        "quotation_duplicated",
        source_id=str(source.id),
        quotation_id=str(copy.id),
        quotation_number=copy.quotation_number,
    )
    return copy


# ---------------------------------------------------------------------------
# Item writes
# ---------------------------------------------------------------------------


async def add_items(
    session: AsyncSession, quotation_id, items: list[dict]
) -> Quotation:
    if not items:
        raise ValidationError("At least one item is required", field="items")

    quotation = await _load_quotation(session, quotation_id, lock=True)
    lifecycle.ensure_editable(quotation)

    first_line = await _next_line_number(session, quotation.id)
    new_items = [
        _build_item(quotation.id, line, fields)
        for line, fields in enumerate(items, start=first_line)
    ]

    async with _atomic(session, "add quotation items", quotation.id):
        for item in new_items:
            session.add(item)
        await recompute_totals(session, quotation)

    logger.info(
        "quotation_items_added",
        quotation_id=str(quotation.id),
        count=len(new_items),
        total_amount=str(quotation.total_amount),
    )
    return quotation


async def add_item(session: AsyncSession, quotation_id, fields: dict) -> Quotation:
    return await add_items(session, quotation_id, [fields])


async def update_item(
    session: AsyncSession, quotation_id, item_id, fields: dict
) -> Quotation:
    quotation = await _load_quotation(session, quotation_id, lock=True)
    lifecycle.ensure_editable(quotation)
    item = await _load_item(session, quotation, item_id)

    merged = {f: getattr(item, f) for f in ITEM_FIELDS}
    merged.update({f: fields[f] for f in ITEM_FIELDS if f in fields})
    # Validates the merged row and derives its amounts before anything changes
    rebuilt = _build_item(quotation.id, item.line_number, merged)

    async with _atomic(session, "update quotation item", quotation.id):
        for name in ITEM_FIELDS + ("tax_amount", "discount_amount", "total_amount"):
            setattr(item, name, getattr(rebuilt, name))
        await recompute_totals(session, quotation)

    logger.info(
        "quotation_item_updated",
        quotation_id=str(quotation.id),
        item_id=str(item.id),
        total_amount=str(quotation.total_amount),
    )
    return quotation


async def remove_item(session: AsyncSession, quotation_id, item_id) -> Quotation:
    quotation = await _load_quotation(session, quotation_id, lock=True)
    lifecycle.ensure_editable(quotation)
    item = await _load_item(session, quotation, item_id)

    async with _atomic(session, "remove quotation item", quotation.id):
        await session.delete(item)
        await recompute_totals(session, quotation)

    logger.info(
        "quotation_item_removed",
        quotation_id=str(quotation.id),
        item_id=str(item.id),
        total_amount=str(quotation.total_amount),
    )
    return quotation


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


async def transition(
    session: AsyncSession,
    quotation_id,
    event: str,
    actor_id: Optional[str] = None,
    notes: Optional[str] = None,
    reason: Optional[str] = None,
    actor_email: Optional[str] = None,
) -> Quotation:
    """
    Apply send/accept/reject.

    The status write is a compare-and-set on the status that was read; if
    another writer changed it first, ConcurrencyConflictError is raised.
    """
    quotation = await _load_quotation(session, quotation_id, lock=True)
    plan = lifecycle.plan_transition(quotation.status, event)
    if plan.is_noop:
        logger.info(
            "quotation_transition_noop",
            quotation_id=str(quotation.id),
            transition_event=event,
            status=quotation.status,
        )
        return quotation

    before = snapshot(quotation)
    values = lifecycle.transition_values(plan, actor_id, notes=notes, reason=reason)
    result = await session.execute(
        update(Quotation)
        .where(Quotation.id == quotation.id, Quotation.status == plan.from_status)
        .values(version=Quotation.version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning(
            "quotation_transition_conflict",
            quotation_id=str(quotation.id),
            transition_event=event,
            expected_status=plan.from_status,
        )
        raise ConcurrencyConflictError(
            "Quotation status changed concurrently, retry the request"
        )

    values["version"] = (quotation.version or 0) + 1
    for name, value in values.items():
        set_committed_value(quotation, name, value)

    await create_audit_log(
        session,
        actor_id=actor_id,
        actor_email=actor_email,
        action=f"QUOTATION_{plan.to_status.upper()}",
        entity_type=ENTITY_TYPE,
        entity_id=quotation.id,
        before_state=before,
        after_state=snapshot(quotation),
    )
    logger.info(
        "quotation_transitioned",
        quotation_id=str(quotation.id),
        transition_event=event,
        from_status=plan.from_status,
        to_status=plan.to_status,
        actor_id=actor_id,
    )
    return quotation
