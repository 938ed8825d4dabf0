"""
Shared fixtures for the assessment backend tests.

Each test gets its own SQLite database file (aiosqlite) under tmp_path, plus
private template and project storage roots. PDF conversion is replaced by
FakeConverter, which renders a one-page PDF per source with PyMuPDF, so no
LibreOffice installation is needed.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncGenerator, Dict, Iterable, List, Optional, Sequence

import fitz  # PyMuPDF
import pytest
import pytest_asyncio
from docx import Document as DocxDocument
from httpx import ASGITransport, AsyncClient
from openpyxl import Workbook
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Override DATABASE_URL *before* any app module is imported, so that
# settings.DATABASE_URL and the global engine never point at a real server.
os.environ["DATABASE_URL"] = os.environ.get(
    "TEST_DATABASE_URL", "sqlite+aiosqlite:///./assessment_test.db"
)

from app.config import settings  # noqa: E402
from app.database import build_engine, get_db, init_db  # noqa: E402
from app.dependencies.auth import get_report_service  # noqa: E402
from app.main import app  # noqa: E402
from app.models import database_models  # noqa: E402,F401
from app.models.database_models import FieldDataType  # noqa: E402
from app.models.schemas import (  # noqa: E402
    AssessmentProjectSchema,
    AssessmentTypeCreate,
    AssessmentTypeSchema,
    FieldDefinitionCreate,
    FieldValueSchema,
    ProjectCreateRequest,
)
from app.services.converter import ConversionError, DocumentConverter  # noqa: E402
from app.services.report_service import ReportService  # noqa: E402
from app.services.repository import SqlAlchemyAssessmentRepository  # noqa: E402
from app.services.template_resolver import TemplateResolver  # noqa: E402


# ---------------------------------------------------------------------------
# Converter doubles
# ---------------------------------------------------------------------------

class FakeConverter(DocumentConverter):
    """Writes ``<out_dir>/<stem>.pdf`` with one page showing the source name."""

    def __init__(self, fail_on: Iterable[str] = ()) -> None:
        self.fail_on = set(fail_on)
        self.calls: List[str] = []

    async def convert(self, source: Path, out_dir: Path) -> Path:
        source = Path(source)
        self.calls.append(source.name)
        if source.name in self.fail_on:
            raise ConversionError(f"Converter exited with code 1 for {source.name}")
        out = Path(out_dir) / f"{source.stem}.pdf"
        write_pdf(out, [source.name])
        return out


def write_pdf(path: Path, page_texts: Sequence[str]) -> Path:
    doc = fitz.open()
    for text in page_texts:
        page = doc.new_page(width=595, height=842)
        page.insert_text((72, 100), text, fontsize=14)
    doc.save(str(path))
    doc.close()
    return path


def pdf_page_texts(path: Path) -> List[str]:
    with fitz.open(str(path)) as doc:
        return [page.get_text().strip() for page in doc]


# ---------------------------------------------------------------------------
# Office file builders
# ---------------------------------------------------------------------------

def make_docx(path: Path, paragraphs: Sequence[Sequence[str]]) -> Path:
    """Each paragraph is a list of run texts; odd-indexed runs are bold."""
    doc = DocxDocument()
    for runs in paragraphs:
        paragraph = doc.add_paragraph()
        for index, text in enumerate(runs):
            run = paragraph.add_run(text)
            run.bold = index % 2 == 1
    path.parent.mkdir(parents=True, exist_ok=True)
    doc.save(str(path))
    return path


def make_xlsx(path: Path, cells: Dict[str, object]) -> Path:
    workbook = Workbook()
    sheet = workbook.active
    for coordinate, value in cells.items():
        sheet[coordinate] = value
    path.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(str(path))
    return path


def docx_text(path: Path) -> List[str]:
    return [p.text for p in DocxDocument(str(path)).paragraphs]


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_session(tmp_path: Path) -> AsyncGenerator[AsyncSession, None]:
    """Provide a DB session on a fresh SQLite file with all tables created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    await engine.dispose()


@pytest_asyncio.fixture
async def repository(db_session: AsyncSession) -> SqlAlchemyAssessmentRepository:
    return SqlAlchemyAssessmentRepository(db_session)


@pytest.fixture
def template_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    root = tmp_path / "templates"
    root.mkdir()
    monkeypatch.setattr(settings, "TEMPLATE_STORAGE_DIR", str(root))
    return root


@pytest.fixture
def project_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    root = tmp_path / "projects"
    root.mkdir()
    monkeypatch.setattr(settings, "PROJECT_STORAGE_DIR", str(root))
    return root


@pytest.fixture
def fake_converter() -> FakeConverter:
    return FakeConverter()


@pytest_asyncio.fixture
async def report_service(
    repository: SqlAlchemyAssessmentRepository,
    fake_converter: FakeConverter,
    template_root: Path,
    project_root: Path,
) -> ReportService:
    return ReportService(
        repository,
        converter=fake_converter,
        resolver=TemplateResolver(str(template_root)),
        project_root=str(project_root),
    )


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    report_service: ReportService,
) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app with the DB session and the
    report service overridden to use the per-test fixtures.
    """

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_report_service] = lambda: report_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------

AUTH_HEADERS = {"X-User-Id": "assessor-1"}
AUTH_HEADERS_USER2 = {"X-User-Id": "assessor-2"}
ADMIN_HEADERS = {"X-User-Id": "admin-1", "X-User-Role": "admin"}


def site_survey_request(template_file_names: Sequence[str] = ("report.docx",)) -> AssessmentTypeCreate:
    return AssessmentTypeCreate(
        name="Site Survey",
        description="Annual site survey",
        template_file_names=list(template_file_names),
        field_definitions=[
            FieldDefinitionCreate(field_key="CLIENT", label="Client", field_type=FieldDataType.TEXT, order=1),
            FieldDefinitionCreate(
                field_key="FINDINGS",
                label="Findings",
                field_type=FieldDataType.ENUM_MULTI,
                options=["Leak", "Crack", "Rust"],
                order=2,
            ),
            FieldDefinitionCreate(
                field_key="NOTES",
                label="Notes",
                field_type=FieldDataType.TEXT_AREA,
                order=3,
                default_text_if_empty="N/A",
            ),
        ],
    )


def definition_id(assessment_type: AssessmentTypeSchema, field_key: str) -> str:
    return next(d.id for d in assessment_type.field_definitions if d.field_key == field_key)


async def seed_project(
    repository: SqlAlchemyAssessmentRepository,
    assessment_type: AssessmentTypeSchema,
    assessor_id: str = "assessor-1",
    display_name: str = "Plant A/2024",
    client: Optional[str] = "Acme",
) -> AssessmentProjectSchema:
    values = [FieldValueSchema(field_definition_id=definition_id(assessment_type, "FINDINGS"), values=["Leak", "Rust"])]
    if client is not None:
        values.append(FieldValueSchema(field_definition_id=definition_id(assessment_type, "CLIENT"), value=client))
    project = await repository.create_project(
        assessor_id,
        ProjectCreateRequest(
            display_name=display_name,
            assessment_type_id=assessment_type.id,
            field_values=values,
        ),
    )
    assert project is not None
    return project
