"""Tests for app-level middleware, error rendering and health."""

import pytest
from httpx import AsyncClient

from labormarket.models.profile import Profile
from tests.conftest import make_auth_headers


@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_security_headers(client: AsyncClient) -> None:
    resp = await client.get("/health")
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"


@pytest.mark.asyncio
async def test_oversized_body_rejected(client: AsyncClient, client_profile: Profile) -> None:
    resp = await client.post(
        "/jobs",
        content=b"x" * 70_000,
        headers={**make_auth_headers(client_profile.id), "Content-Type": "application/json"},
    )
    assert resp.status_code == 413
