"""
Tests for initial-document generation and the publishing workflow.

The converter is FakeConverter (see conftest), so each MODIFIED document
becomes a one-page PDF whose text is the source file name.
"""
import asyncio
from pathlib import Path

import fitz  # PyMuPDF
import pytest
import pytest_asyncio
from docx import Document as DocxDocument
from openpyxl import load_workbook

from app.models.database_models import DocumentType
from app.services.report_service import ProjectLocks, ReportService, sanitize_display_name
from app.services.repository import SqlAlchemyAssessmentRepository
from app.services.template_resolver import TemplateResolver
from tests.conftest import (
    FakeConverter,
    make_docx,
    make_xlsx,
    pdf_page_texts,
    seed_project,
    site_survey_request,
)

BASE_URL = "https://example.com/public/docs"


@pytest_asyncio.fixture
async def survey_type(repository, template_root: Path):
    assessment_type = await repository.create_assessment_type(
        site_survey_request(["report.docx", "annex.xlsx"])
    )
    type_dir = template_root / assessment_type.id
    make_docx(type_dir / "report.docx", [["Client: {{CLI", "ENT}}"], ["Findings: {{FINDINGS}}"], ["{{NOTES}}"]])
    make_xlsx(type_dir / "annex.xlsx", {"A1": "{{project_display_name}}", "B1": "{{status}}"})
    return assessment_type


@pytest_asyncio.fixture
async def project(repository, survey_type):
    return await seed_project(repository, survey_type)


def _final_dir(project_root: Path, project_id: str) -> Path:
    return project_root / project_id / "final"


async def _upload(service: ReportService, project_id: str, *names: str) -> None:
    for name in names:
        await service.store_modified_document(project_id, name, f"content of {name}".encode())


def test_sanitize_display_name():
    assert sanitize_display_name("Plant A/2024 (v2)") == "Plant_A_2024__v2_"


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_generate_fills_every_template(report_service, repository, project, project_root):
    generated = await report_service.generate_initial_documents(project.id, "assessor-1")

    assert [g.file_name for g in generated] == ["Plant_A_2024_report.docx", "Plant_A_2024_annex.xlsx"]
    assert generated[0].download_path == "initial/Plant_A_2024_report.docx"

    initial_dir = project_root / project.id / "initial"
    paragraphs = [p.text for p in DocxDocument(str(initial_dir / "Plant_A_2024_report.docx")).paragraphs]
    assert paragraphs == ["Client: Acme", "Findings: Leak, Rust", "N/A"]

    sheet = load_workbook(str(initial_dir / "Plant_A_2024_annex.xlsx")).active
    assert sheet["A1"].value == "Plant A/2024"
    assert sheet["B1"].value == "ACTIVE"

    records = await repository.get_documents_for_project(project.id, DocumentType.INITIAL)
    assert [r.stored_file_path for r in records] == [
        f"{project.id}/initial/Plant_A_2024_report.docx",
        f"{project.id}/initial/Plant_A_2024_annex.xlsx",
    ]


@pytest.mark.asyncio
async def test_generate_skips_missing_template(report_service, project, survey_type, template_root):
    (template_root / survey_type.id / "annex.xlsx").unlink()

    generated = await report_service.generate_initial_documents(project.id, "assessor-1")

    assert [g.file_name for g in generated] == ["Plant_A_2024_report.docx"]


@pytest.mark.asyncio
async def test_generate_for_other_assessor_returns_none(report_service, project):
    assert await report_service.generate_initial_documents(project.id, "assessor-2") is None


@pytest.mark.asyncio
async def test_generate_without_templates_returns_empty(report_service, repository):
    request = site_survey_request([])
    request.name = "No Templates"
    assessment_type = await repository.create_assessment_type(request)
    project = await seed_project(repository, assessment_type)

    assert await report_service.generate_initial_documents(project.id, "assessor-1") == []


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_publish_merges_in_upload_order_and_persists(report_service, repository, project, project_root):
    await _upload(report_service, project.id, "b_report.docx", "a_annex.xlsx")

    info = await report_service.publish_assessment(project.id, "assessor-1", BASE_URL)

    assert info is not None
    assert info.public_url == f"{BASE_URL}/{project.id}"
    assert info.final_file_name == f"report_{project.id}_v1.pdf"
    assert info.final_stored_path == f"{project.id}/final/report_{project.id}_v1.pdf"

    final_pdf = project_root / info.final_stored_path
    assert pdf_page_texts(final_pdf) == ["b_report.docx", "a_annex.xlsx"]
    with fitz.open(str(final_pdf)) as doc:
        assert len(doc[0].get_images()) == 1

    # only the final artifact remains
    assert sorted(p.name for p in _final_dir(project_root, project.id).iterdir()) == [info.final_file_name]

    stored = await repository.get_project_by_id(project.id, "assessor-1")
    assert stored.public_access_id == project.id
    assert stored.qr_code_data == info.public_url
    assert stored.document_storage_path == info.final_stored_path

    finals = await repository.get_documents_for_project(project.id, DocumentType.FINAL_PDF)
    assert [f.original_file_name for f in finals] == [info.final_file_name]


@pytest.mark.asyncio
async def test_republish_keeps_public_access_id(report_service, repository, project, project_root):
    await _upload(report_service, project.id, "report.docx")
    first = await report_service.publish_assessment(project.id, "assessor-1", BASE_URL)
    await _upload(report_service, project.id, "extra.docx")
    second = await report_service.publish_assessment(project.id, "assessor-1", BASE_URL)

    assert first.public_url == second.public_url
    assert second.final_file_name == f"report_{project.id}_v2.pdf"
    assert pdf_page_texts(project_root / second.final_stored_path) == ["report.docx", "extra.docx"]
    assert (project_root / first.final_stored_path).is_file()

    stored = await repository.get_project_by_id(project.id, "assessor-1")
    assert stored.public_access_id == project.id
    assert stored.document_storage_path == second.final_stored_path


@pytest.mark.asyncio
async def test_republish_honours_existing_public_id(report_service, repository, project):
    await repository.update_project_publishing_info(project.id, "legacy-public-id", "x", "y")
    await _upload(report_service, project.id, "report.docx")

    info = await report_service.publish_assessment(project.id, "assessor-1", BASE_URL)

    assert info.public_url == f"{BASE_URL}/legacy-public-id"


@pytest.mark.asyncio
async def test_reuploaded_file_is_converted_once(report_service, fake_converter, project):
    await _upload(report_service, project.id, "report.docx", "report.docx")

    info = await report_service.publish_assessment(project.id, "assessor-1", BASE_URL)

    assert info is not None
    assert fake_converter.calls == ["report.docx"]


@pytest.mark.asyncio
async def test_publish_without_modified_documents_fails(report_service, repository, project, project_root):
    await report_service.generate_initial_documents(project.id, "assessor-1")

    assert await report_service.publish_assessment(project.id, "assessor-1", BASE_URL) is None

    stored = await repository.get_project_by_id(project.id, "assessor-1")
    assert stored.public_access_id is None
    final_dir = _final_dir(project_root, project.id)
    assert not final_dir.exists() or list(final_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_publish_for_other_assessor_returns_none(report_service, project):
    await _upload(report_service, project.id, "report.docx")
    assert await report_service.publish_assessment(project.id, "assessor-2", BASE_URL) is None


@pytest.mark.asyncio
async def test_conversion_failure_leaves_no_artifacts(repository, project, template_root, project_root):
    service = ReportService(
        repository,
        converter=FakeConverter(fail_on={"second.docx"}),
        resolver=TemplateResolver(str(template_root)),
        project_root=str(project_root),
    )
    await _upload(service, project.id, "first.docx", "second.docx")

    assert await service.publish_assessment(project.id, "assessor-1", BASE_URL) is None

    assert list(_final_dir(project_root, project.id).iterdir()) == []
    stored = await repository.get_project_by_id(project.id, "assessor-1")
    assert stored.public_access_id is None
    assert await repository.get_documents_for_project(project.id, DocumentType.FINAL_PDF) == []


class _UnpersistableRepository(SqlAlchemyAssessmentRepository):
    async def update_project_publishing_info(self, *args, **kwargs) -> bool:
        return False


@pytest.mark.asyncio
async def test_persistence_failure_removes_final_artifact(db_session, project, template_root, project_root):
    repository = _UnpersistableRepository(db_session)
    service = ReportService(
        repository,
        converter=FakeConverter(),
        resolver=TemplateResolver(str(template_root)),
        project_root=str(project_root),
    )
    await _upload(service, project.id, "report.docx")

    assert await service.publish_assessment(project.id, "assessor-1", BASE_URL) is None

    assert list(_final_dir(project_root, project.id).iterdir()) == []
    assert await repository.get_documents_for_project(project.id, DocumentType.FINAL_PDF) == []


@pytest.mark.asyncio
async def test_failed_republish_keeps_live_artifact(report_service, fake_converter, project, project_root):
    await _upload(report_service, project.id, "report.docx")
    first = await report_service.publish_assessment(project.id, "assessor-1", BASE_URL)

    # A reviewed file whose stem matches the published artifact, then a failure
    fake_converter.fail_on.add("broken.docx")
    await _upload(report_service, project.id, f"report_{project.id}_v1.docx", "broken.docx")

    assert await report_service.publish_assessment(project.id, "assessor-1", BASE_URL) is None

    live = project_root / first.final_stored_path
    assert pdf_page_texts(live) == ["report.docx"]
    assert sorted(p.name for p in _final_dir(project_root, project.id).iterdir()) == [first.final_file_name]
    resolved = await report_service.resolve_public_document(project.id)
    assert resolved is not None and resolved[1].name == first.final_file_name


@pytest.mark.asyncio
async def test_publish_skips_an_existing_unlogged_version(report_service, project, project_root):
    await _upload(report_service, project.id, "report.docx")
    stray = _final_dir(project_root, project.id) / f"report_{project.id}_v1.pdf"
    stray.parent.mkdir(parents=True, exist_ok=True)
    stray.write_bytes(b"%PDF-1.4 left over")

    info = await report_service.publish_assessment(project.id, "assessor-1", BASE_URL)

    assert info.final_file_name == f"report_{project.id}_v2.pdf"
    assert stray.read_bytes() == b"%PDF-1.4 left over"


# ---------------------------------------------------------------------------
# Per-project locks
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_project_lock_serialises_and_is_released():
    events = []

    async def run(name: str) -> None:
        async with ProjectLocks.hold("project-x"):
            events.append(f"{name} start")
            await asyncio.sleep(0)
            events.append(f"{name} end")

    await asyncio.gather(run("a"), run("b"))

    assert events == ["a start", "a end", "b start", "b end"]
    assert "project-x" not in ProjectLocks._locks


@pytest.mark.asyncio
async def test_locks_do_not_accumulate_across_runs(report_service, project):
    await _upload(report_service, project.id, "report.docx")
    await report_service.generate_initial_documents(project.id, "assessor-1")
    await report_service.publish_assessment(project.id, "assessor-1", BASE_URL)

    assert project.id not in ProjectLocks._locks


# ---------------------------------------------------------------------------
# Public retrieval
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_resolve_public_document(report_service, project):
    await _upload(report_service, project.id, "report.docx")
    info = await report_service.publish_assessment(project.id, "assessor-1", BASE_URL)

    resolved = await report_service.resolve_public_document(project.id)

    assert resolved is not None
    published, path = resolved
    assert published.id == project.id
    assert path.name == info.final_file_name
    assert await report_service.resolve_public_document("unknown") is None


def test_stored_paths_cannot_escape_project_root(tmp_path: Path):
    service = ReportService(repository=None, converter=FakeConverter(), project_root=str(tmp_path))
    with pytest.raises(ValueError):
        service.absolute_path("../outside.pdf")
