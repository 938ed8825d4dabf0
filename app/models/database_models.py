"""
SQLAlchemy ORM models for the assessment database.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    Boolean,
    Enum as SQLEnum,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum

from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Enums
class FieldDataType(str, enum.Enum):
    """Input types an admin can assign to a field definition."""

    TEXT = "TEXT"
    TEXT_AREA = "TEXT_AREA"
    NUMBER = "NUMBER"
    DATE = "DATE"
    BOOLEAN = "BOOLEAN"
    ENUM_SINGLE = "ENUM_SINGLE"
    ENUM_MULTI = "ENUM_MULTI"


class ProjectStatus(str, enum.Enum):
    """Project lifecycle status. ACTIVE may become FINISHED, never the reverse."""

    ACTIVE = "ACTIVE"
    FINISHED = "FINISHED"


class DocumentType(str, enum.Enum):
    """Kind of artifact recorded in the per-project document log."""

    INITIAL = "INITIAL"
    MODIFIED = "MODIFIED"
    FINAL_PDF = "FINAL_PDF"


# Models
class AssessmentType(Base):
    """Admin-defined form schema with its field definitions and document templates."""

    __tablename__ = "assessment_types"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    template_file_names = Column(JSON, nullable=False, default=list)  # ordered

    # Relationships
    field_definitions = relationship(
        "AssessmentFieldDefinition",
        back_populates="assessment_type",
        cascade="all, delete-orphan",
        order_by="AssessmentFieldDefinition.order",
    )


class AssessmentFieldDefinition(Base):
    """One field of an assessment type; field_key is the template placeholder token."""

    __tablename__ = "assessment_field_definitions"
    __table_args__ = (
        UniqueConstraint("assessment_type_id", "field_key", name="uq_field_definition_type_key"),
    )

    id = Column(String(36), primary_key=True)
    assessment_type_id = Column(
        String(64), ForeignKey("assessment_types.id", ondelete="CASCADE"), nullable=False, index=True
    )
    field_key = Column(String(100), nullable=False)
    label = Column(String(255), nullable=False)
    field_type = Column(SQLEnum(FieldDataType), nullable=False)
    options = Column(JSON, nullable=True)  # allowed values for ENUM_* types
    is_required = Column(Boolean, default=False, nullable=False)
    order = Column("display_order", Integer, default=0, nullable=False)
    section = Column(String(100), nullable=True)
    default_text_if_empty = Column(Text, nullable=True)

    # Relationships
    assessment_type = relationship("AssessmentType", back_populates="field_definitions")


class AssessmentProject(Base):
    """One assessor's filled-in instance of an assessment type."""

    __tablename__ = "assessment_projects"

    id = Column(String(36), primary_key=True)
    display_name = Column(String(255), nullable=False)
    # RESTRICT: a type cannot be deleted while projects reference it
    assessment_type_id = Column(
        String(64), ForeignKey("assessment_types.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    assessor_id = Column(String(255), nullable=False, index=True)
    status = Column(SQLEnum(ProjectStatus), nullable=False, default=ProjectStatus.ACTIVE)
    creation_timestamp = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    last_modification_timestamp = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    # Publishing info, unset until the first successful publish
    public_access_id = Column(String(36), nullable=True, unique=True)
    document_storage_path = Column(Text, nullable=True)
    qr_code_data = Column(Text, nullable=True)

    # Relationships
    assessment_type = relationship("AssessmentType")
    field_values = relationship(
        "AssessmentFieldValue", back_populates="project", cascade="all, delete-orphan"
    )
    documents = relationship(
        "AssessmentProjectDocument", back_populates="project", cascade="all, delete-orphan"
    )


class AssessmentFieldValue(Base):
    """Value entered for one field definition. value XOR values."""

    __tablename__ = "assessment_field_values"
    __table_args__ = (
        UniqueConstraint("project_id", "field_definition_id", name="uq_field_value_project_definition"),
    )

    id = Column(String(36), primary_key=True)
    project_id = Column(
        String(36), ForeignKey("assessment_projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    field_definition_id = Column(
        String(36), ForeignKey("assessment_field_definitions.id", ondelete="RESTRICT"), nullable=False
    )
    single_value = Column(Text, nullable=True)
    multiple_values = Column(JSON, nullable=True)  # ENUM_MULTI only

    # Relationships
    project = relationship("AssessmentProject", back_populates="field_values")


class AssessmentProjectDocument(Base):
    """Append-only log entry for every document produced or uploaded for a project."""

    __tablename__ = "assessment_project_documents"

    id = Column(String(36), primary_key=True)
    project_id = Column(
        String(36), ForeignKey("assessment_projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    document_type = Column(SQLEnum(DocumentType), nullable=False, index=True)
    original_file_name = Column(String(255), nullable=False)
    stored_file_path = Column(Text, nullable=False)  # relative to PROJECT_STORAGE_DIR
    upload_timestamp = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    version_number = Column(Integer, default=1, nullable=False)

    # Relationships
    project = relationship("AssessmentProject", back_populates="documents")
