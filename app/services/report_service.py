"""
Document generation and publishing orchestrator.

Public API
----------
ReportService.generate_initial_documents(project_id, assessor_id)
    → List[GeneratedDocument] | None
    Fill every template of the project's assessment type (best effort per
    template) into ``{project}/initial``.

ReportService.publish_assessment(project_id, assessor_id, public_base_url)
    → PublishedDocumentInfo | None
    Convert MODIFIED documents to PDF → merge → stamp QR → persist.
    All-or-nothing: any failure removes the files produced so far and
    leaves the stored project untouched.

ReportService.store_modified_document(project_id, file_name, content)
    Save a reviewed document into ``{project}/modified`` and log it.

ReportService.resolve_public_document(public_access_id)
    → (project, absolute path) | None
"""
from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Tuple

import aiofiles

from app.config import settings
from app.models.database_models import DocumentType
from app.models.schemas import (
    AssessmentProjectSchema,
    GeneratedDocument,
    ProjectDocumentSchema,
    PublishedDocumentInfo,
)
from app.services.converter import DocumentConverter, LibreOfficeConverter
from app.services.flattener import flatten_field_values
from app.services.lifecycle import resolve_public_access_id
from app.services.pdf_assembler import merge_pdfs
from app.services.qr_embedder import generate_qr_png, stamp_qr_code
from app.services.repository import AssessmentRepository
from app.services.template_filler import TemplateFiller, UnsupportedTemplateError
from app.services.template_resolver import TemplateResolver, safe_file_name

logger = logging.getLogger(__name__)

STORAGE_SUBDIRS = {
    DocumentType.INITIAL: "initial",
    DocumentType.MODIFIED: "modified",
    DocumentType.FINAL_PDF: "final",
}

# Scratch directory under final/ for converted and merged PDFs
WORK_SUBDIR = ".work"


class PublishError(RuntimeError):
    """Internal signal that aborts a publish run."""


# ---------------------------------------------------------------------------
# Per-project locks (class-level state, shared by every service instance)
# ---------------------------------------------------------------------------

class ProjectLocks:
    """
    Serialises generate/publish runs for the same project within this process.

    A lock lives only while some run holds or awaits it.
    """

    _locks: Dict[str, asyncio.Lock] = {}
    _users: Dict[str, int] = {}

    @classmethod
    @asynccontextmanager
    async def hold(cls, project_id: str) -> AsyncIterator[None]:
        lock = cls._locks.get(project_id)
        if lock is None:
            lock = asyncio.Lock()
            cls._locks[project_id] = lock
        cls._users[project_id] = cls._users.get(project_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            cls._users[project_id] -= 1
            if cls._users[project_id] == 0:
                del cls._users[project_id]
                del cls._locks[project_id]


def sanitize_display_name(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.-]", "_", name)


class ReportService:
    """
    Sequential document pipeline for one request.

    Collaborators are injected so tests can swap the converter and the
    repository; templates and documents are processed one at a time in list
    order, which fixes the page order of the merged report.
    """

    def __init__(
        self,
        repository: AssessmentRepository,
        converter: Optional[DocumentConverter] = None,
        resolver: Optional[TemplateResolver] = None,
        filler: Optional[TemplateFiller] = None,
        project_root: Optional[str] = None,
    ) -> None:
        self.repository = repository
        self.converter = converter or LibreOfficeConverter()
        self.resolver = resolver or TemplateResolver()
        self.filler = filler or TemplateFiller()
        self.project_root = Path(project_root or settings.PROJECT_STORAGE_DIR)

    # ------------------------------------------------------------------
    # Storage helpers
    # ------------------------------------------------------------------

    def project_dir(self, project_id: str, document_type: DocumentType) -> Path:
        directory = self.project_root / safe_file_name(project_id) / STORAGE_SUBDIRS[document_type]
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def relative_path(self, path: Path) -> str:
        """Path relative to the project root, with forward slashes."""
        return Path(os.path.relpath(Path(path).resolve(), self.project_root.resolve())).as_posix()

    def absolute_path(self, stored_path: str) -> Path:
        """Resolve a stored relative path, refusing anything outside the project root."""
        root = self.project_root.resolve()
        candidate = (root / stored_path).resolve()
        if root != candidate and root not in candidate.parents:
            raise ValueError(f"Stored path escapes project storage: {stored_path!r}")
        return candidate

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_initial_documents(
        self, project_id: str, assessor_id: str
    ) -> Optional[List[GeneratedDocument]]:
        """
        Fill all templates of the project's assessment type.

        Returns None when the project (for this assessor) or its type does
        not exist, ``[]`` when the type has no templates. A missing or
        unsupported template is logged and skipped.
        """
        async with ProjectLocks.hold(project_id):
            project = await self.repository.get_project_by_id(project_id, assessor_id)
            if project is None:
                return None
            assessment_type = await self.repository.get_assessment_type_by_id(project.assessment_type_id)
            if assessment_type is None:
                logger.error(
                    "Project %s references missing assessment type %s",
                    project_id,
                    project.assessment_type_id,
                )
                return None

            if not assessment_type.template_file_names:
                logger.error("No templates are associated with assessment type ID: %s", assessment_type.id)
                return []

            data = flatten_field_values(project, assessment_type)
            initial_dir = self.project_dir(project_id, DocumentType.INITIAL)
            prefix = sanitize_display_name(project.display_name)

            generated: List[GeneratedDocument] = []
            for template in self.resolver.resolve(assessment_type):
                output_name = f"{prefix}_{template.name}"
                output_path = initial_dir / output_name
                try:
                    self.filler.fill(template.path, output_path, data)
                except UnsupportedTemplateError as exc:
                    logger.warning("Skipping template %s: %s", template.name, exc)
                    continue
                except Exception as exc:
                    logger.error("Failed to fill template %s for project %s: %s", template.name, project_id, exc)
                    output_path.unlink(missing_ok=True)
                    continue

                stored = self.relative_path(output_path)
                await self.repository.add_document_record(project_id, DocumentType.INITIAL, output_name, stored)
                generated.append(GeneratedDocument(file_name=output_name, download_path=f"initial/{output_name}"))

            logger.info(
                "Generated %d/%d initial documents for project %s",
                len(generated),
                len(assessment_type.template_file_names),
                project_id,
            )
            return generated

    # ------------------------------------------------------------------
    # Modified uploads
    # ------------------------------------------------------------------

    async def store_modified_document(
        self, project_id: str, file_name: str, content: bytes
    ) -> str:
        """Write a reviewed document and append a MODIFIED record. Returns the stored name."""
        name = safe_file_name(file_name)
        path = self.project_dir(project_id, DocumentType.MODIFIED) / name
        async with aiofiles.open(path, "wb") as out:
            await out.write(content)
        await self.repository.add_document_record(
            project_id, DocumentType.MODIFIED, name, self.relative_path(path)
        )
        logger.info("Stored modified document %s for project %s", name, project_id)
        return name

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish_assessment(
        self, project_id: str, assessor_id: str, public_base_url: str
    ) -> Optional[PublishedDocumentInfo]:
        async with ProjectLocks.hold(project_id):
            return await self._publish(project_id, assessor_id, public_base_url)

    async def _publish(
        self, project_id: str, assessor_id: str, public_base_url: str
    ) -> Optional[PublishedDocumentInfo]:
        project = await self.repository.get_project_by_id(project_id, assessor_id)
        if project is None:
            return None

        modified_docs = _unique_by_path(
            await self.repository.get_documents_for_project(project_id, DocumentType.MODIFIED)
        )
        if not modified_docs:
            logger.warning("Publish failed for project %s: No modified documents found to publish.", project_id)
            return None

        final_dir = self.project_dir(project_id, DocumentType.FINAL_PDF)
        # Intermediate PDFs never share a directory with published artifacts
        work_dir = final_dir / WORK_SUBDIR
        work_dir.mkdir(exist_ok=True)
        final_path: Optional[Path] = None
        try:
            pdf_files = await self._convert_all(modified_docs, work_dir)

            merged_path = work_dir / f"merged_report_{project_id}.pdf"
            merge_pdfs(pdf_files, merged_path)

            public_access_id = resolve_public_access_id(project)
            public_url = f"{public_base_url.rstrip('/')}/{public_access_id}"
            stamp_qr_code(merged_path, generate_qr_png(public_url))

            final_path = self._next_final_path(
                final_dir,
                project_id,
                len(await self.repository.get_documents_for_project(project_id, DocumentType.FINAL_PDF)) + 1,
            )
            os.replace(merged_path, final_path)
            relative_final = self.relative_path(final_path)

            if not await self.repository.update_project_publishing_info(
                project_id, public_access_id, relative_final, public_url
            ):
                raise PublishError(f"Could not persist publishing info for project {project_id}")

            if not await self.repository.add_document_record(
                project_id, DocumentType.FINAL_PDF, final_path.name, relative_final
            ):
                logger.error(
                    "Project %s published but its FINAL_PDF record for %s was not written",
                    project_id,
                    final_path.name,
                )

            logger.info("Published project %s at %s (%s)", project_id, public_url, final_path.name)
            return PublishedDocumentInfo(
                public_url=public_url,
                final_file_name=final_path.name,
                final_stored_path=relative_final,
            )

        except Exception as exc:
            logger.error("Publishing workflow failed for project %s: %s", project_id, exc, exc_info=True)
            if final_path is not None:
                _remove_files([final_path])
            return None

        finally:
            _remove_work_dir(work_dir)

    @staticmethod
    def _next_final_path(final_dir: Path, project_id: str, version: int) -> Path:
        """First unused ``report_{id}_v{n}.pdf`` from *version* upwards."""
        path = final_dir / f"report_{project_id}_v{version}.pdf"
        while path.exists():
            version += 1
            path = final_dir / f"report_{project_id}_v{version}.pdf"
        return path

    async def _convert_all(
        self,
        documents: List[ProjectDocumentSchema],
        work_dir: Path,
    ) -> List[Path]:
        """Convert in order into *work_dir*, one index-prefixed PDF per document."""
        pdf_files: List[Path] = []
        for index, doc in enumerate(documents, start=1):
            source = self.absolute_path(doc.stored_file_path)
            # The converter names its output after the source stem; a
            # collision between e.g. a.docx and a.xlsx is avoided by renaming.
            pdf = await self.converter.convert(source, work_dir)
            ordered = work_dir / f"{index:03d}_{pdf.name}"
            os.replace(pdf, ordered)
            pdf_files.append(ordered)
        return pdf_files

    # ------------------------------------------------------------------
    # Public retrieval
    # ------------------------------------------------------------------

    async def resolve_public_document(
        self, public_access_id: str
    ) -> Optional[Tuple[AssessmentProjectSchema, Path]]:
        project = await self.repository.find_project_by_public_access_id(public_access_id)
        if project is None or not project.document_storage_path:
            return None
        path = self.absolute_path(project.document_storage_path)
        if not path.is_file():
            logger.error("Published artifact for %s is missing on disk: %s", public_access_id, path)
            return None
        return project, path


def _unique_by_path(documents: List[ProjectDocumentSchema]) -> List[ProjectDocumentSchema]:
    """Re-uploads of a file name overwrite it on disk; convert each stored file once."""
    seen = set()
    unique: List[ProjectDocumentSchema] = []
    for doc in documents:
        if doc.stored_file_path in seen:
            continue
        seen.add(doc.stored_file_path)
        unique.append(doc)
    return unique


def _remove_files(paths: List[Path]) -> None:
    for path in paths:
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove intermediate file %s: %s", path, exc)


def _remove_work_dir(work_dir: Path) -> None:
    try:
        shutil.rmtree(work_dir)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove work directory %s: %s", work_dir, exc)
