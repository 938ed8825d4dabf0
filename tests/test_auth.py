"""Tests for authentication boundaries.

Verifies that assessment endpoints require X-User-Id, that admin endpoints
require the admin role, and that public document routes need no headers.
"""
import pytest
from httpx import AsyncClient

from tests.conftest import AUTH_HEADERS


@pytest.mark.asyncio
async def test_create_assessment_requires_auth_header(client: AsyncClient):
    """POST /api/assessments without X-User-Id should return 422 (missing required header)."""
    resp = await client.post("/api/assessments", json={"display_name": "X", "assessment_type_id": "t"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_publish_requires_auth_header(client: AsyncClient):
    resp = await client.post("/api/assessments/some-project/publish")
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_admin_role_is_required_for_type_deletion(client: AsyncClient):
    resp = await client.delete("/api/assessment-types/type-x-00000000", headers=AUTH_HEADERS)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_public_documents_need_no_headers(client: AsyncClient):
    """Unknown public ids are 404, not 401/422."""
    resp = await client.get("/public/docs/unknown-id")
    assert resp.status_code == 404
