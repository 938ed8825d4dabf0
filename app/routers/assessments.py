"""
Assessment project endpoints.

Route summary
-------------
POST   /api/assessments                                        - create project
PUT    /api/assessments/{project_id}                           - update name / status / field values
POST   /api/assessments/{project_id}/finish                    - mark project FINISHED

POST   /api/assessments/{project_id}/generate-initial-documents - fill templates
POST   /api/assessments/{project_id}/upload-modified           - upload reviewed documents
GET    /api/assessments/{project_id}/documents/{type}/{file}   - download an artifact

POST   /api/assessments/{project_id}/publish                   - publish final PDF
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import FileResponse

from app.config import settings
from app.dependencies.auth import (
    get_authorized_project,
    get_current_user_id,
    get_report_service,
    get_repository,
)
from app.models.database_models import ProjectStatus
from app.models.schemas import (
    AssessmentProjectSchema,
    GeneratedDocument,
    ModifiedUploadResponse,
    ProjectCreateRequest,
    ProjectUpdateRequest,
    PublishedDocumentInfo,
)
from app.services.lifecycle import InvalidTransitionError
from app.services.report_service import STORAGE_SUBDIRS, ReportService
from app.services.repository import AssessmentRepository, InvalidFieldValueError
from app.services.template_resolver import safe_file_name

logger = logging.getLogger(__name__)

router = APIRouter()

_SUBDIR_TO_TYPE = {subdir: doc_type for doc_type, subdir in STORAGE_SUBDIRS.items()}


# ---------------------------------------------------------------------------
# Project editing
# ---------------------------------------------------------------------------

@router.post("", response_model=AssessmentProjectSchema, status_code=status.HTTP_201_CREATED)
async def create_assessment(
    request: ProjectCreateRequest,
    user_id: str = Depends(get_current_user_id),
    repository: AssessmentRepository = Depends(get_repository),
) -> AssessmentProjectSchema:
    try:
        project = await repository.create_project(user_id, request)
    except InvalidFieldValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    if project is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Assessment type {request.assessment_type_id} not found.",
        )
    return project


async def _apply_update(
    project_id: str,
    user_id: str,
    update: ProjectUpdateRequest,
    repository: AssessmentRepository,
) -> AssessmentProjectSchema:
    try:
        project = await repository.update_project(project_id, user_id, update)
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except InvalidFieldValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    if project is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Assessment project not found or not owned by user.",
        )
    return project


@router.put("/{project_id}", response_model=AssessmentProjectSchema)
async def update_assessment(
    project_id: str,
    update: ProjectUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    repository: AssessmentRepository = Depends(get_repository),
) -> AssessmentProjectSchema:
    return await _apply_update(project_id, user_id, update, repository)


@router.post("/{project_id}/finish", response_model=AssessmentProjectSchema)
async def finish_assessment(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    repository: AssessmentRepository = Depends(get_repository),
) -> AssessmentProjectSchema:
    return await _apply_update(
        project_id, user_id, ProjectUpdateRequest(status=ProjectStatus.FINISHED), repository
    )


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

@router.post("/{project_id}/generate-initial-documents", response_model=List[GeneratedDocument])
async def generate_initial_documents(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ReportService = Depends(get_report_service),
) -> List[GeneratedDocument]:
    generated = await service.generate_initial_documents(project_id, user_id)
    if generated is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Assessment project or its assessment type not found.",
        )
    return generated


@router.post("/{project_id}/upload-modified", response_model=ModifiedUploadResponse)
async def upload_modified_documents(
    files: List[UploadFile] = File(...),
    project: AssessmentProjectSchema = Depends(get_authorized_project),
    service: ReportService = Depends(get_report_service),
) -> ModifiedUploadResponse:
    """
    Upload one or more reviewed documents. They are published in upload
    order. Re-uploading a file name replaces the stored file.
    """
    uploaded: List[str] = []
    for upload in files:
        try:
            name = safe_file_name(upload.filename or "")
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Upload must include a filename.")

        ext = Path(name).suffix.lower()
        if ext not in settings.SUPPORTED_UPLOAD_TYPES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=(
                    f"Unsupported file type '{ext}'. "
                    f"Accepted: {', '.join(settings.SUPPORTED_UPLOAD_TYPES)}"
                ),
            )

        content = await upload.read()
        if len(content) > settings.MAX_FILE_SIZE:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File exceeds the {settings.MAX_FILE_SIZE // (1024 * 1024)} MB size limit.",
            )

        uploaded.append(await service.store_modified_document(project.id, name, content))

    return ModifiedUploadResponse(message="Files uploaded", uploaded_files=uploaded)


@router.get("/{project_id}/documents/{document_type}/{file_name}")
async def download_document(
    document_type: str,
    file_name: str,
    project: AssessmentProjectSchema = Depends(get_authorized_project),
    service: ReportService = Depends(get_report_service),
) -> FileResponse:
    doc_type = _SUBDIR_TO_TYPE.get(document_type)
    if doc_type is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown document type {document_type!r}.",
        )
    try:
        name = safe_file_name(file_name)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid file name.")

    path = service.project_root / project.id / STORAGE_SUBDIRS[doc_type] / name
    if not path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found.")
    return FileResponse(path, filename=name)


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------

@router.post("/{project_id}/publish", response_model=PublishedDocumentInfo)
async def publish_assessment(
    project: AssessmentProjectSchema = Depends(get_authorized_project),
    service: ReportService = Depends(get_report_service),
) -> PublishedDocumentInfo:
    info = await service.publish_assessment(project.id, project.assessor_id, settings.PUBLIC_BASE_URL)
    if info is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to publish assessment.",
        )
    return info
