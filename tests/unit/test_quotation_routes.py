"""
HTTP-level tests for quoteflow/routes/quotations.py and the error envelope.

Service calls are patched; get_db and get_current_user are overridden, so no
database is touched.
"""

import uuid
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from quoteflow.database import get_db
from quoteflow.errors import (
    ConcurrencyConflictError,
    DocumentLockedError,
    InvalidTransitionError,
    PersistenceError,
    QuotationNotFoundError,
)
from quoteflow.main import app
from quoteflow.middleware.auth import get_current_user
from quoteflow.models.quotation import Quotation
from quoteflow.services.lifecycle import today

ROUTES = "quoteflow.routes.quotations"
SERVICE = "quoteflow.services.quotation_service"
BASE = "/api/v1/quotations"


def _quotation(status="draft", expiry_date=None) -> Quotation:
    issue = today() - timedelta(days=10)
    return Quotation(
        id=uuid.uuid4(),
        quotation_number="QT-2025-1001",
        vendor_name="Acme Supplies",
        issue_date=issue,
        expiry_date=expiry_date or issue + timedelta(days=30),
        subtotal=Decimal("100.00"),
        tax_amount=Decimal("16.00"),
        discount_amount=Decimal("10.00"),
        total_amount=Decimal("106.00"),
        status=status,
        version=1,
    )


@pytest.fixture
def current_user(admin_user):
    return dict(admin_user)


@pytest_asyncio.fixture
async def client(db_session, current_user):
    async def override_db():
        yield db_session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_current_user] = lambda: current_user
    with patch(f"{ROUTES}.get_items", AsyncMock(return_value=[])):
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as c:
            yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Happy paths
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_returns_201_with_money_as_strings(client):
    q = _quotation()
    with patch(f"{SERVICE}.create_quotation", AsyncMock(return_value=q)) as create:
        resp = await client.post(
            BASE,
            json={
                "vendor_name": "Acme Supplies",
                "items": [
                    {"description": "Rebar", "quantity": "2", "unit_price": "50",
                     "tax_rate": "16", "discount_rate": "10"}
                ],
            },
        )

    assert resp.status_code == 201
    data = resp.json()
    assert data["quotation_number"] == "QT-2025-1001"
    assert data["total_amount"] == "106.00"
    assert data["is_expired"] is False
    assert create.await_args.kwargs["actor_id"] == "user-admin-1"
    assert resp.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_get_reports_expiry(client):
    q = _quotation(expiry_date=today() - timedelta(days=1))
    with patch(f"{SERVICE}.get_quotation", AsyncMock(return_value=q)):
        resp = await client.get(f"{BASE}/{q.id}")

    assert resp.status_code == 200
    assert resp.json()["is_expired"] is True
    assert resp.json()["expiry_date"] == (today() - timedelta(days=1)).isoformat()


@pytest.mark.asyncio
async def test_accept_passes_notes(client):
    q = _quotation(status="accepted")
    with patch(f"{SERVICE}.transition", AsyncMock(return_value=q)) as transition:
        resp = await client.post(f"{BASE}/{q.id}/accept", json={"notes": "Signed"})

    assert resp.status_code == 200
    assert resp.json()["status"] == "accepted"
    assert transition.await_args.args[2] == "accept"
    assert transition.await_args.kwargs["notes"] == "Signed"


@pytest.mark.asyncio
async def test_send_without_body(client):
    q = _quotation(status="sent")
    with patch(f"{SERVICE}.transition", AsyncMock(return_value=q)):
        resp = await client.post(f"{BASE}/{q.id}/send")
    assert resp.status_code == 200


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_not_found(client):
    with patch(
        f"{SERVICE}.get_quotation",
        AsyncMock(side_effect=QuotationNotFoundError("Quotation not found")),
    ):
        resp = await client.get(f"{BASE}/{uuid.uuid4()}")

    assert resp.status_code == 404
    assert resp.json() == {
        "error": {"code": "QUOTATION_NOT_FOUND", "message": "Quotation not found"}
    }


@pytest.mark.asyncio
async def test_invalid_transition_is_409(client):
    with patch(
        f"{SERVICE}.transition",
        AsyncMock(side_effect=InvalidTransitionError("Cannot send a quotation that is already accepted")),
    ):
        resp = await client.post(f"{BASE}/{uuid.uuid4()}/send")

    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "INVALID_TRANSITION"


@pytest.mark.asyncio
async def test_locked_document_is_423(client):
    with patch(
        f"{SERVICE}.add_items",
        AsyncMock(side_effect=DocumentLockedError("Cannot modify a accepted quotation")),
    ):
        resp = await client.post(
            f"{BASE}/{uuid.uuid4()}/items",
            json={"items": [{"description": "Sand", "quantity": "1", "unit_price": "40"}]},
        )

    assert resp.status_code == 423
    assert resp.json()["error"]["code"] == "DOCUMENT_LOCKED"


@pytest.mark.asyncio
async def test_persistence_failure_is_503(client):
    with patch(
        f"{SERVICE}.remove_item",
        AsyncMock(side_effect=PersistenceError("Could not remove quotation item; no changes were saved")),
    ):
        resp = await client.delete(f"{BASE}/{uuid.uuid4()}/items/{uuid.uuid4()}")

    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "PERSISTENCE_ERROR"


@pytest.mark.asyncio
async def test_request_validation_uses_envelope(client):
    resp = await client.post(
        f"{BASE}/{uuid.uuid4()}/items",
        json={"items": [{"description": "Sand", "quantity": "0", "unit_price": "40"}]},
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


# ---------------------------------------------------------------------------
# Conflict retries
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_conflict_is_retried(client, db_session):
    q = _quotation(status="sent")
    transition = AsyncMock(side_effect=[ConcurrencyConflictError("raced"), q])
    with patch(f"{SERVICE}.transition", transition):
        resp = await client.post(f"{BASE}/{q.id}/send")

    assert resp.status_code == 200
    assert transition.await_count == 2
    assert db_session.begin_nested.call_count == 2


@pytest.mark.asyncio
async def test_conflict_surfaces_after_retries(client):
    transition = AsyncMock(side_effect=ConcurrencyConflictError("raced"))
    with patch(f"{SERVICE}.transition", transition), patch(
        f"{ROUTES}.settings.CONFLICT_RETRY_ATTEMPTS", 2
    ):
        resp = await client.post(f"{BASE}/{uuid.uuid4()}/reject", json={"reason": "late"})

    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "CONCURRENCY_CONFLICT"
    assert transition.await_count == 2


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_member_cannot_delete(client, current_user):
    current_user["role"] = "member"
    with patch(f"{SERVICE}.delete_quotation", AsyncMock()) as delete:
        resp = await client.delete(f"{BASE}/{uuid.uuid4()}")

    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "INSUFFICIENT_PERMISSIONS"
    delete.assert_not_awaited()


@pytest.mark.asyncio
async def test_admin_delete_returns_204(client):
    with patch(f"{SERVICE}.delete_quotation", AsyncMock()) as delete:
        resp = await client.delete(f"{BASE}/{uuid.uuid4()}")
    assert resp.status_code == 204
    delete.assert_awaited_once()


@pytest.mark.asyncio
async def test_bad_token_is_401(db_session):
    async def override_db():
        yield db_session

    app.dependency_overrides[get_db] = override_db
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as c:
            resp = await c.get(BASE, headers={"Authorization": "Bearer not-a-jwt"})
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "AUTH_TOKEN_INVALID"


@pytest.mark.asyncio
async def test_valid_token_reaches_list(db_session, auth_headers):
    async def override_db():
        yield db_session

    app.dependency_overrides[get_db] = override_db
    try:
        with patch(f"{SERVICE}.list_quotations", AsyncMock(return_value=([], 0))):
            async with AsyncClient(
                transport=ASGITransport(app=app), base_url="http://test"
            ) as c:
                resp = await c.get(f"{BASE}?status=draft&expired=true", headers=auth_headers)
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 200
    assert resp.json()["data"] == []
    assert resp.json()["pagination"]["total"] == 0
