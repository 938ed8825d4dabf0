"""Database and schema models for the assessment backend."""
from app.models.database_models import (
    AssessmentType,
    AssessmentFieldDefinition,
    AssessmentProject,
    AssessmentFieldValue,
    AssessmentProjectDocument,
    FieldDataType,
    ProjectStatus,
    DocumentType,
)
from app.models.schemas import (
    AssessmentTypeCreate,
    AssessmentTypeSchema,
    FieldDefinitionCreate,
    FieldDefinitionSchema,
    FieldValueSchema,
    AssessmentProjectSchema,
    ProjectCreateRequest,
    ProjectUpdateRequest,
    ProjectDocumentSchema,
    GeneratedDocument,
    ModifiedUploadResponse,
    PublishedDocumentInfo,
    PublicDocumentView,
    HealthCheckResponse,
)

__all__ = [
    # Database models
    "AssessmentType",
    "AssessmentFieldDefinition",
    "AssessmentProject",
    "AssessmentFieldValue",
    "AssessmentProjectDocument",
    "FieldDataType",
    "ProjectStatus",
    "DocumentType",
    # Pydantic schemas
    "AssessmentTypeCreate",
    "AssessmentTypeSchema",
    "FieldDefinitionCreate",
    "FieldDefinitionSchema",
    "FieldValueSchema",
    "AssessmentProjectSchema",
    "ProjectCreateRequest",
    "ProjectUpdateRequest",
    "ProjectDocumentSchema",
    "GeneratedDocument",
    "ModifiedUploadResponse",
    "PublishedDocumentInfo",
    "PublicDocumentView",
    "HealthCheckResponse",
]
