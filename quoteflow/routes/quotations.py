from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
import structlog

from quoteflow.config import settings
from quoteflow.database import get_db
from quoteflow.errors import ConcurrencyConflictError
from quoteflow.middleware.auth import get_current_user
from quoteflow.middleware.authorization import require_roles
from quoteflow.models.quotation import Quotation, QuotationItem
from quoteflow.schemas.common import PaginatedResponse, build_pagination
from quoteflow.schemas.quotation import (
    AcceptRequest,
    AddItemsRequest,
    QuotationCreate,
    QuotationItemResponse,
    QuotationItemUpdate,
    QuotationResponse,
    QuotationUpdate,
    RejectRequest,
)
from quoteflow.services import quotation_service
from quoteflow.services.lifecycle import ACCEPT, REJECT, SEND, is_expired
from quoteflow.services.totals import get_items

logger = structlog.get_logger()
router = APIRouter()


async def _retry_on_conflict(db: AsyncSession, operation, *args, **kwargs):
    """Re-run a lost numbering/status race, each attempt in its own savepoint."""
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(ConcurrencyConflictError),
        stop=stop_after_attempt(settings.CONFLICT_RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=0.05, max=1),
        reraise=True,
    ):
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                logger.info(
                    "quotation_conflict_retry",
                    attempt=attempt.retry_state.attempt_number,
                )
            async with db.begin_nested():
                return await operation(db, *args, **kwargs)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _item_to_response(item: QuotationItem) -> QuotationItemResponse:
    return QuotationItemResponse(
        id=str(item.id),
        line_number=item.line_number,
        description=item.description,
        details=item.details,
        unit=item.unit,
        quantity=item.quantity,
        unit_price=item.unit_price,
        tax_rate=item.tax_rate,
        discount_rate=item.discount_rate,
        tax_amount=item.tax_amount,
        discount_amount=item.discount_amount,
        total_amount=item.total_amount,
    )


def _to_response(q: Quotation, items: list[QuotationItem]) -> QuotationResponse:
    return QuotationResponse(
        id=str(q.id),
        quotation_number=q.quotation_number,
        project_id=q.project_id,
        vendor_name=q.vendor_name,
        vendor_email=q.vendor_email,
        vendor_phone=q.vendor_phone,
        vendor_company=q.vendor_company,
        vendor_address=q.vendor_address,
        issue_date=q.issue_date.isoformat(),
        expiry_date=q.expiry_date.isoformat(),
        is_expired=is_expired(q),
        subtotal=q.subtotal,
        tax_amount=q.tax_amount,
        discount_amount=q.discount_amount,
        total_amount=q.total_amount,
        status=q.status,
        notes=q.notes,
        terms_and_conditions=q.terms_and_conditions,
        created_by=q.created_by,
        sent_at=_iso(q.sent_at),
        accepted_at=_iso(q.accepted_at),
        accepted_by=q.accepted_by,
        accepted_notes=q.accepted_notes,
        rejected_at=_iso(q.rejected_at),
        rejected_by=q.rejected_by,
        rejection_reason=q.rejection_reason,
        rejection_notes=q.rejection_notes,
        items=[_item_to_response(i) for i in items],
        created_at=_iso(q.created_at) or "",
        updated_at=_iso(q.updated_at) or "",
    )


async def _respond(db: AsyncSession, q: Quotation) -> QuotationResponse:
    return _to_response(q, await get_items(db, q.id))


# ---------- LIST / GET ----------


@router.get("", response_model=PaginatedResponse[QuotationResponse])
async def list_quotations(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=100),
    quotation_status: Optional[str] = Query(None, alias="status"),
    project_id: Optional[str] = Query(None),
    created_by: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    expired: Optional[bool] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    quotations, total = await quotation_service.list_quotations(
        db,
        page=page,
        limit=limit,
        status=quotation_status,
        project_id=project_id,
        created_by=created_by,
        search=search,
        expired=expired,
    )

    # Batch load all line items in a single query to avoid N+1
    items_map: dict = {}
    ids = [q.id for q in quotations]
    if ids:
        result = await db.execute(
            select(QuotationItem)
            .where(QuotationItem.quotation_id.in_(ids))
            .order_by(QuotationItem.quotation_id, QuotationItem.line_number)
        )
        for item in result.scalars().all():
            items_map.setdefault(str(item.quotation_id), []).append(item)

    data = [_to_response(q, items_map.get(str(q.id), [])) for q in quotations]
    return PaginatedResponse(data=data, pagination=build_pagination(page, limit, total))


@router.get("/{quotation_id}", response_model=QuotationResponse)
async def get_quotation(
    quotation_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    q = await quotation_service.get_quotation(db, quotation_id)
    return await _respond(db, q)


# ---------- CREATE / UPDATE / DELETE ----------


@router.post("", response_model=QuotationResponse, status_code=status.HTTP_201_CREATED)
async def create_quotation(
    body: QuotationCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    q = await _retry_on_conflict(
        db,
        quotation_service.create_quotation,
        body.model_dump(),
        actor_id=current_user["user_id"],
        actor_email=current_user.get("email"),
    )
    return await _respond(db, q)


@router.patch("/{quotation_id}", response_model=QuotationResponse)
async def update_quotation(
    quotation_id: str,
    body: QuotationUpdate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    q = await quotation_service.update_quotation(
        db,
        quotation_id,
        body.model_dump(exclude_unset=True),
        actor_id=current_user["user_id"],
        actor_email=current_user.get("email"),
    )
    return await _respond(db, q)


@router.delete("/{quotation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_quotation(
    quotation_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("admin", "secretary")),
    db: AsyncSession = Depends(get_db),
):
    await quotation_service.delete_quotation(
        db,
        quotation_id,
        actor_id=current_user["user_id"],
        actor_email=current_user.get("email"),
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{quotation_id}/restore", response_model=QuotationResponse)
async def restore_quotation(
    quotation_id: str,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles("admin", "secretary")),
    db: AsyncSession = Depends(get_db),
):
    q = await quotation_service.restore_quotation(
        db,
        quotation_id,
        actor_id=current_user["user_id"],
        actor_email=current_user.get("email"),
    )
    return await _respond(db, q)


@router.post(
    "/{quotation_id}/duplicate",
    response_model=QuotationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def duplicate_quotation(
    quotation_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    q = await _retry_on_conflict(
        db,
        quotation_service.duplicate_quotation,
        quotation_id,
        actor_id=current_user["user_id"],
        actor_email=current_user.get("email"),
    )
    return await _respond(db, q)


# ---------- ITEMS ----------


@router.post("/{quotation_id}/items", response_model=QuotationResponse)
async def add_items(
    quotation_id: str,
    body: AddItemsRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    q = await quotation_service.add_items(
        db, quotation_id, [item.model_dump() for item in body.items]
    )
    return await _respond(db, q)


@router.put("/{quotation_id}/items/{item_id}", response_model=QuotationResponse)
async def update_item(
    quotation_id: str,
    item_id: str,
    body: QuotationItemUpdate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    q = await quotation_service.update_item(
        db, quotation_id, item_id, body.model_dump(exclude_unset=True)
    )
    return await _respond(db, q)


@router.delete("/{quotation_id}/items/{item_id}", response_model=QuotationResponse)
async def remove_item(
    quotation_id: str,
    item_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    q = await quotation_service.remove_item(db, quotation_id, item_id)
    return await _respond(db, q)


# ---------- LIFECYCLE ----------


@router.post("/{quotation_id}/send", response_model=QuotationResponse)
async def send_quotation(
    quotation_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    q = await _retry_on_conflict(
        db,
        quotation_service.transition,
        quotation_id,
        SEND,
        actor_id=current_user["user_id"],
        actor_email=current_user.get("email"),
    )
    return await _respond(db, q)


@router.post("/{quotation_id}/accept", response_model=QuotationResponse)
async def accept_quotation(
    quotation_id: str,
    body: Optional[AcceptRequest] = None,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    q = await _retry_on_conflict(
        db,
        quotation_service.transition,
        quotation_id,
        ACCEPT,
        actor_id=current_user["user_id"],
        notes=body.notes if body else None,
        actor_email=current_user.get("email"),
    )
    return await _respond(db, q)


@router.post("/{quotation_id}/reject", response_model=QuotationResponse)
async def reject_quotation(
    quotation_id: str,
    body: Optional[RejectRequest] = None,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    q = await _retry_on_conflict(
        db,
        quotation_service.transition,
        quotation_id,
        REJECT,
        actor_id=current_user["user_id"],
        notes=body.notes if body else None,
        reason=body.reason if body else None,
        actor_email=current_user.get("email"),
    )
    return await _respond(db, q)
