"""
Unauthenticated access to published assessments by public access id.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse

from app.config import settings
from app.dependencies.auth import get_report_service
from app.models.schemas import PublicDocumentView
from app.services.report_service import ReportService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{public_access_id}")
async def get_public_document(
    public_access_id: str,
    service: ReportService = Depends(get_report_service),
) -> FileResponse:
    """Stream the latest published PDF."""
    resolved = await service.resolve_public_document(public_access_id)
    if resolved is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found.")
    _project, path = resolved
    return FileResponse(path, media_type="application/pdf", filename=path.name)


@router.get("/{public_access_id}/info", response_model=PublicDocumentView)
async def get_public_document_info(
    public_access_id: str,
    service: ReportService = Depends(get_report_service),
) -> PublicDocumentView:
    resolved = await service.resolve_public_document(public_access_id)
    if resolved is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found.")
    project, _path = resolved

    assessment_type = await service.repository.get_assessment_type_by_id(project.assessment_type_id)
    return PublicDocumentView(
        project_name=project.display_name,
        assessment_type_name=assessment_type.name if assessment_type else "",
        generated_date=project.last_modification_timestamp,
        download_link=f"{settings.PUBLIC_BASE_URL.rstrip('/')}/{public_access_id}",
    )
