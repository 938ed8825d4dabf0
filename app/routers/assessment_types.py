"""
Assessment type administration endpoints.

POST   /                     - create a type with field definitions (admin)
GET    /{type_id}            - type structure with ordered field definitions
POST   /{type_id}/templates  - upload one template file (admin)
DELETE /{type_id}            - delete a type no project uses (admin)
"""
from __future__ import annotations

import logging
from pathlib import Path

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from app.config import settings
from app.dependencies.auth import get_current_user_id, get_repository, require_admin
from app.models.schemas import AssessmentTypeCreate, AssessmentTypeSchema
from app.services.repository import (
    AssessmentRepository,
    AssessmentTypeInUseError,
    DuplicateAssessmentTypeError,
)
from app.services.template_resolver import TemplateResolver, safe_file_name

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=AssessmentTypeSchema, status_code=status.HTTP_201_CREATED)
async def create_assessment_type(
    request: AssessmentTypeCreate,
    admin_id: str = Depends(require_admin),
    repository: AssessmentRepository = Depends(get_repository),
) -> AssessmentTypeSchema:
    unsupported = [
        name for name in request.template_file_names
        if Path(name).suffix.lower() not in settings.SUPPORTED_TEMPLATE_TYPES
    ]
    if unsupported:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                f"Unsupported template file(s): {', '.join(unsupported)}. "
                f"Accepted: {', '.join(settings.SUPPORTED_TEMPLATE_TYPES)}"
            ),
        )
    try:
        created = await repository.create_assessment_type(request)
    except DuplicateAssessmentTypeError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    logger.info("Admin %s created assessment type %s", admin_id, created.id)
    return created


@router.get("/{type_id}", response_model=AssessmentTypeSchema)
async def get_assessment_type(
    type_id: str,
    user_id: str = Depends(get_current_user_id),
    repository: AssessmentRepository = Depends(get_repository),
) -> AssessmentTypeSchema:
    assessment_type = await repository.get_assessment_type_by_id(type_id)
    if assessment_type is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Assessment type structure not found.",
        )
    return assessment_type


@router.post("/{type_id}/templates", status_code=status.HTTP_201_CREATED)
async def upload_template(
    type_id: str,
    file: UploadFile = File(...),
    admin_id: str = Depends(require_admin),
    repository: AssessmentRepository = Depends(get_repository),
) -> dict:
    """
    Store a template file for the type. The file name must be one of the
    type's ``template_file_names``.
    """
    assessment_type = await repository.get_assessment_type_by_id(type_id)
    if assessment_type is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assessment type not found.")

    try:
        name = safe_file_name(file.filename or "")
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Upload must include a filename.")

    if name not in assessment_type.template_file_names:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Template {name!r} is not declared for assessment type {type_id}.",
        )

    content = await file.read()
    if len(content) > settings.MAX_FILE_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds the {settings.MAX_FILE_SIZE // (1024 * 1024)} MB size limit.",
        )

    TemplateResolver().store_template(type_id, name, content)
    return {"message": "Template uploaded", "template": name}


@router.delete("/{type_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_assessment_type(
    type_id: str,
    admin_id: str = Depends(require_admin),
    repository: AssessmentRepository = Depends(get_repository),
) -> None:
    try:
        deleted = await repository.delete_assessment_type(type_id)
    except AssessmentTypeInUseError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assessment type not found.")
    logger.info("Admin %s deleted assessment type %s", admin_id, type_id)
