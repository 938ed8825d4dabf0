"""Tests for /api/assessment-types."""
from pathlib import Path

import pytest
from httpx import AsyncClient

from tests.conftest import ADMIN_HEADERS, AUTH_HEADERS, seed_project

TYPE_PAYLOAD = {
    "name": "Site Survey",
    "description": "Annual survey",
    "template_file_names": ["report.docx"],
    "field_definitions": [
        {"field_key": "CLIENT", "label": "Client", "field_type": "TEXT", "order": 1},
        {
            "field_key": "FINDINGS",
            "label": "Findings",
            "field_type": "ENUM_MULTI",
            "options": ["Leak", "Rust"],
            "order": 2,
        },
    ],
}


async def _create_type(client: AsyncClient) -> dict:
    resp = await client.post("/api/assessment-types", json=TYPE_PAYLOAD, headers=ADMIN_HEADERS)
    assert resp.status_code == 201
    return resp.json()


@pytest.mark.asyncio
async def test_admin_creates_type(client: AsyncClient):
    data = await _create_type(client)
    assert data["id"].startswith("type-site-survey-")
    assert [f["field_key"] for f in data["field_definitions"]] == ["CLIENT", "FINDINGS"]


@pytest.mark.asyncio
async def test_non_admin_cannot_create_type(client: AsyncClient):
    resp = await client.post("/api/assessment-types", json=TYPE_PAYLOAD, headers=AUTH_HEADERS)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_duplicate_type_name_conflicts(client: AsyncClient):
    await _create_type(client)
    resp = await client.post("/api/assessment-types", json=TYPE_PAYLOAD, headers=ADMIN_HEADERS)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_duplicate_field_keys_are_invalid(client: AsyncClient):
    payload = dict(TYPE_PAYLOAD, field_definitions=[TYPE_PAYLOAD["field_definitions"][0]] * 2)
    resp = await client.post("/api/assessment-types", json=payload, headers=ADMIN_HEADERS)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_unsupported_template_extension(client: AsyncClient):
    payload = dict(TYPE_PAYLOAD, template_file_names=["report.pptx"])
    resp = await client.post("/api/assessment-types", json=payload, headers=ADMIN_HEADERS)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_get_type(client: AsyncClient):
    created = await _create_type(client)
    resp = await client.get(f"/api/assessment-types/{created['id']}", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["name"] == "Site Survey"


@pytest.mark.asyncio
async def test_get_unknown_type_returns_404(client: AsyncClient):
    resp = await client.get("/api/assessment-types/type-missing-00000000", headers=AUTH_HEADERS)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_upload_declared_template(client: AsyncClient, template_root: Path):
    created = await _create_type(client)
    resp = await client.post(
        f"/api/assessment-types/{created['id']}/templates",
        files={"file": ("report.docx", b"docx bytes", "application/octet-stream")},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 201
    assert (template_root / created["id"] / "report.docx").read_bytes() == b"docx bytes"


@pytest.mark.asyncio
async def test_upload_undeclared_template_is_rejected(client: AsyncClient, template_root: Path):
    created = await _create_type(client)
    resp = await client.post(
        f"/api/assessment-types/{created['id']}/templates",
        files={"file": ("other.docx", b"x", "application/octet-stream")},
        headers=ADMIN_HEADERS,
    )
    assert resp.status_code == 400
    assert not (template_root / created["id"] / "other.docx").exists()


@pytest.mark.asyncio
async def test_delete_type(client: AsyncClient):
    created = await _create_type(client)
    resp = await client.delete(f"/api/assessment-types/{created['id']}", headers=ADMIN_HEADERS)
    assert resp.status_code == 204
    resp = await client.delete(f"/api/assessment-types/{created['id']}", headers=ADMIN_HEADERS)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_delete_type_in_use_conflicts(client: AsyncClient, repository):
    created = await _create_type(client)
    assessment_type = await repository.get_assessment_type_by_id(created["id"])
    await seed_project(repository, assessment_type)

    resp = await client.delete(f"/api/assessment-types/{created['id']}", headers=ADMIN_HEADERS)
    assert resp.status_code == 409
