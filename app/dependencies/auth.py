"""
Authentication and service dependencies for FastAPI routes.

Extracts user identity from the X-User-Id header (set by the gateway after
token validation) and the role from X-User-Role. Also builds the repository
and report service per request so tests can override them.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.schemas import AssessmentProjectSchema
from app.services.repository import AssessmentRepository, SqlAlchemyAssessmentRepository
from app.services.report_service import ReportService

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


async def get_current_user_id(
    x_user_id: str = Header(..., alias="X-User-Id"),
) -> str:
    """Extract the authenticated user ID from the request header. Raises 401 if empty."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header.",
        )
    return x_user_id


async def require_admin(
    user_id: str = Depends(get_current_user_id),
    x_user_role: Optional[str] = Header(None, alias="X-User-Role"),
) -> str:
    """Allow only callers whose role header is 'admin'. Returns the user ID."""
    if (x_user_role or "").lower() != ADMIN_ROLE:
        logger.warning("User %s attempted an admin action without the admin role", user_id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required.",
        )
    return user_id


def get_repository(db: AsyncSession = Depends(get_db)) -> AssessmentRepository:
    return SqlAlchemyAssessmentRepository(db)


def get_report_service(
    repository: AssessmentRepository = Depends(get_repository),
) -> ReportService:
    return ReportService(repository)


async def get_authorized_project(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    repository: AssessmentRepository = Depends(get_repository),
) -> AssessmentProjectSchema:
    """
    Verify that the given project belongs to the current assessor.
    Returns the project or raises 404.
    """
    project = await repository.get_project_by_id(project_id, user_id)
    if project is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Assessment project not found or not owned by user.",
        )
    return project
