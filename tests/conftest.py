from unittest.mock import AsyncMock, MagicMock

import pytest

from quoteflow.services.auth_service import create_access_token


class Savepoint:
    """Stand-in for session.begin_nested(); never swallows exceptions."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


def mock_db() -> AsyncMock:
    db = AsyncMock()
    db.add = MagicMock()
    db.flush = AsyncMock()
    db.begin_nested = MagicMock(side_effect=lambda: Savepoint())
    return db


@pytest.fixture
def admin_token():
    return create_access_token(
        user_id="user-admin-1",
        role="admin",
        email="admin@example.com",
    )


@pytest.fixture
def auth_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture
def member_user():
    return {"user_id": "user-member-7", "role": "member", "email": "member@example.com"}


@pytest.fixture
def admin_user():
    return {"user_id": "user-admin-1", "role": "admin", "email": "admin@example.com"}


@pytest.fixture
def db_session():
    """AsyncMock session; tests wire execute() to the rows they need."""
    return mock_db()
