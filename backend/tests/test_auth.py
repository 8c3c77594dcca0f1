"""
Tests for token decoding and the practice context derived from it.
"""

from datetime import timedelta

import pytest
from fastapi import HTTPException
from httpx import ASGITransport, AsyncClient

from api.deps import get_db, get_request_context, get_tenant_db
from api.main import app
from core.security import create_access_token, decode_access_token

PRACTICE_ID = "00000000-0000-0000-0000-000000000001"


@pytest.fixture
async def auth_client(test_db):
    """Client that authenticates with real bearer tokens."""

    async def override_get_db():
        yield test_db

    async def override_get_tenant_db():
        return test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_tenant_db] = override_get_tenant_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


class TestTokens:
    def test_round_trip(self):
        token = create_access_token({"sub": "user-1", "practice_id": PRACTICE_ID, "role": "STAFF"})
        payload = decode_access_token(token)
        assert payload["sub"] == "user-1"
        assert payload["practice_id"] == PRACTICE_ID

    def test_expired_token_is_rejected(self):
        token = create_access_token({"sub": "user-1"}, expires_delta=timedelta(seconds=-5))
        assert decode_access_token(token) is None

    def test_garbage_token_is_rejected(self):
        assert decode_access_token("not-a-token") is None


class TestRequestContext:
    def test_role_defaults_to_viewer(self):
        ctx = get_request_context({"sub": "user-1", "practice_id": PRACTICE_ID})
        assert ctx.role == "VIEWER"
        assert ctx.user_id == "user-1"

    def test_unknown_role_is_viewer(self):
        assert get_request_context({"sub": "u", "practice_id": PRACTICE_ID, "role": "owner"}).role == "VIEWER"

    def test_missing_practice_is_forbidden(self):
        with pytest.raises(HTTPException) as exc_info:
            get_request_context({"sub": "user-1"})
        assert exc_info.value.status_code == 403

    def test_malformed_practice_is_forbidden(self):
        with pytest.raises(HTTPException) as exc_info:
            get_request_context({"sub": "user-1", "practice_id": "not-a-uuid"})
        assert exc_info.value.status_code == 403


@pytest.mark.asyncio
class TestBearerAuth:
    async def test_valid_token_reaches_endpoint(self, auth_client: AsyncClient, seeded_db):
        token = create_access_token({"sub": "user-1", "practice_id": PRACTICE_ID, "role": "STAFF"})
        response = await auth_client.get("/api/v1/orders/", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200

    async def test_invalid_token_is_unauthorized(self, auth_client: AsyncClient, seeded_db):
        response = await auth_client.get("/api/v1/orders/", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    async def test_missing_token_is_rejected(self, auth_client: AsyncClient, seeded_db):
        response = await auth_client.get("/api/v1/orders/")
        assert response.status_code in (401, 403)
