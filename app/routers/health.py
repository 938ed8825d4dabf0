"""
Health check endpoint.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from datetime import datetime
import logging

from app.database import get_db
from app.models.schemas import HealthCheckResponse
from app.services.converter import check_libreoffice_available

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint to verify system status.

    Returns:
        HealthCheckResponse with status of the database and the PDF converter
    """
    db_status = "ok"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        db_status = "error"

    # Publishing needs the LibreOffice binary on PATH
    converter_status = "ok" if check_libreoffice_available() else "missing"

    overall_status = "healthy" if db_status == "ok" and converter_status == "ok" else "degraded"

    return HealthCheckResponse(
        status=overall_status,
        database=db_status,
        libreoffice=converter_status,
        timestamp=datetime.utcnow()
    )
