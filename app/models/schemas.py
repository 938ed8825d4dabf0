"""
Pydantic schemas for request/response validation.

The *Schema models double as the read-only domain view handed to the
document pipeline by the repository layer.
"""
from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Optional, List
from datetime import datetime

from app.models.database_models import DocumentType, FieldDataType, ProjectStatus


# Assessment type schemas
class FieldDefinitionCreate(BaseModel):
    """Schema for one field definition inside a create-type request."""

    field_key: str = Field(..., min_length=1, max_length=100, pattern=r"^[A-Za-z0-9_.-]+$")
    label: str = Field(..., min_length=1, max_length=255)
    field_type: FieldDataType
    options: Optional[List[str]] = None
    is_required: bool = False
    order: int = 0
    section: Optional[str] = Field(None, max_length=100)
    default_text_if_empty: Optional[str] = None


class AssessmentTypeCreate(BaseModel):
    """Schema for creating an assessment type."""

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    template_file_names: List[str] = []
    field_definitions: List[FieldDefinitionCreate] = []

    @model_validator(mode="after")
    def _unique_field_keys(self) -> "AssessmentTypeCreate":
        keys = [fd.field_key for fd in self.field_definitions]
        if len(keys) != len(set(keys)):
            raise ValueError("field_key values must be unique within an assessment type")
        return self


class FieldDefinitionSchema(BaseModel):
    """Field definition as stored."""

    id: str
    assessment_type_id: str
    field_key: str
    label: str
    field_type: FieldDataType
    options: Optional[List[str]] = None
    is_required: bool = False
    order: int = 0
    section: Optional[str] = None
    default_text_if_empty: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class AssessmentTypeSchema(BaseModel):
    """Assessment type with its ordered templates and field definitions."""

    id: str
    name: str
    description: Optional[str] = None
    template_file_names: List[str] = []
    field_definitions: List[FieldDefinitionSchema] = []

    model_config = ConfigDict(from_attributes=True)


# Project schemas
class FieldValueSchema(BaseModel):
    """A value entered for one field: `value` for single-valued types, `values` for ENUM_MULTI."""

    field_definition_id: str
    value: Optional[str] = None
    values: Optional[List[str]] = None

    @model_validator(mode="after")
    def _value_xor_values(self) -> "FieldValueSchema":
        if self.value is not None and self.values is not None:
            raise ValueError("Provide either 'value' or 'values', not both")
        return self


class AssessmentProjectSchema(BaseModel):
    """Assessment project with its current field values and publishing info."""

    id: str
    display_name: str
    assessment_type_id: str
    assessor_id: str
    status: ProjectStatus = ProjectStatus.ACTIVE
    creation_timestamp: datetime
    last_modification_timestamp: datetime
    field_values: List[FieldValueSchema] = []
    public_access_id: Optional[str] = None
    document_storage_path: Optional[str] = None
    qr_code_data: Optional[str] = None


class ProjectCreateRequest(BaseModel):
    """Schema for creating an assessment project."""

    display_name: str = Field(..., min_length=1, max_length=255)
    assessment_type_id: str
    field_values: List[FieldValueSchema] = []


class ProjectUpdateRequest(BaseModel):
    """
    Partial project update. Omitted fields are left untouched; a provided
    field_values list replaces every stored value (an empty list clears them).
    """

    display_name: Optional[str] = Field(None, min_length=1, max_length=255)
    status: Optional[ProjectStatus] = None
    field_values: Optional[List[FieldValueSchema]] = None


# Document schemas
class ProjectDocumentSchema(BaseModel):
    """Entry of the per-project document log."""

    id: str
    project_id: str
    document_type: DocumentType
    original_file_name: str
    stored_file_path: str
    upload_timestamp: datetime
    version_number: int = 1

    model_config = ConfigDict(from_attributes=True)


class GeneratedDocument(BaseModel):
    """A filled template written to the project's initial directory."""

    file_name: str
    download_path: str


class ModifiedUploadResponse(BaseModel):
    """Response for an upload of reviewed documents."""

    message: str = "Files uploaded"
    uploaded_files: List[str] = []


class PublishedDocumentInfo(BaseModel):
    """Result of a successful publish."""

    public_url: str
    final_file_name: str
    final_stored_path: str


class PublicDocumentView(BaseModel):
    """Public summary of a published assessment."""

    project_name: str
    assessment_type_name: str
    generated_date: datetime
    download_link: str


# Health
class HealthCheckResponse(BaseModel):
    """Schema for health check response."""

    status: str
    database: str
    libreoffice: str
    timestamp: datetime
