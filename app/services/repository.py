"""
Schema store access for assessment types, projects and the document log.

Public API
----------
AssessmentRepository
    Abstract interface consumed by the document pipeline and the routers.

SqlAlchemyAssessmentRepository(db)
    Implementation over an ``AsyncSession``. Every mutating call commits its
    own transaction so a pipeline step is durable once the call returns.
"""
from __future__ import annotations

import abc
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.database_models import (
    AssessmentFieldDefinition,
    AssessmentFieldValue,
    AssessmentProject,
    AssessmentProjectDocument,
    AssessmentType,
    DocumentType,
    FieldDataType,
    ProjectStatus,
)
from app.models.schemas import (
    AssessmentProjectSchema,
    AssessmentTypeCreate,
    AssessmentTypeSchema,
    FieldDefinitionSchema,
    FieldValueSchema,
    ProjectCreateRequest,
    ProjectDocumentSchema,
    ProjectUpdateRequest,
)
from app.services.lifecycle import validate_status_transition

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class DuplicateAssessmentTypeError(ValueError):
    """An assessment type with the same name already exists."""


class AssessmentTypeInUseError(RuntimeError):
    """The assessment type is still referenced by at least one project."""


class InvalidFieldValueError(ValueError):
    """A field value does not fit the project's assessment type."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def make_type_id(name: str) -> str:
    """``type-<slug>-<8 hex>``, e.g. ``type-fire-safety-1a2b3c4d``."""
    slug = re.sub(r"[^a-z0-9-]", "", name.lower().replace(" ", "-"))[:40].strip("-")
    return f"type-{slug or 'unnamed'}-{uuid.uuid4().hex[:8]}"


def validate_field_values(
    definitions: Sequence[FieldDefinitionSchema],
    values: Sequence[FieldValueSchema],
) -> None:
    """
    Check that every value references a definition of the same type, at most
    once, using ``values`` only for ENUM_MULTI and ``value`` otherwise.
    """
    by_id: Dict[str, FieldDefinitionSchema] = {d.id: d for d in definitions}
    seen = set()
    for fv in values:
        definition = by_id.get(fv.field_definition_id)
        if definition is None:
            raise InvalidFieldValueError(
                f"Field definition {fv.field_definition_id} does not belong to this assessment type"
            )
        if fv.field_definition_id in seen:
            raise InvalidFieldValueError(f"Duplicate value for field {definition.field_key!r}")
        seen.add(fv.field_definition_id)

        if definition.field_type == FieldDataType.ENUM_MULTI:
            if fv.value is not None:
                raise InvalidFieldValueError(f"Field {definition.field_key!r} takes a list in 'values'")
        elif fv.values is not None:
            raise InvalidFieldValueError(f"Field {definition.field_key!r} takes a single 'value'")


def _to_type(row: AssessmentType) -> AssessmentTypeSchema:
    return AssessmentTypeSchema(
        id=row.id,
        name=row.name,
        description=row.description,
        template_file_names=list(row.template_file_names or []),
        field_definitions=[FieldDefinitionSchema.model_validate(d) for d in row.field_definitions],
    )


def _to_project(row: AssessmentProject) -> AssessmentProjectSchema:
    return AssessmentProjectSchema(
        id=row.id,
        display_name=row.display_name,
        assessment_type_id=row.assessment_type_id,
        assessor_id=row.assessor_id,
        status=row.status,
        creation_timestamp=row.creation_timestamp,
        last_modification_timestamp=row.last_modification_timestamp,
        field_values=[
            FieldValueSchema(
                field_definition_id=v.field_definition_id,
                value=v.single_value,
                values=v.multiple_values,
            )
            for v in sorted(row.field_values, key=lambda v: v.field_definition_id)
        ],
        public_access_id=row.public_access_id,
        document_storage_path=row.document_storage_path,
        qr_code_data=row.qr_code_data,
    )


def _to_value_rows(project_id: str, values: Sequence[FieldValueSchema]) -> List[AssessmentFieldValue]:
    return [
        AssessmentFieldValue(
            id=_new_id(),
            project_id=project_id,
            field_definition_id=fv.field_definition_id,
            single_value=fv.value,
            multiple_values=list(fv.values) if fv.values is not None else None,
        )
        for fv in values
    ]


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class AssessmentRepository(abc.ABC):
    """Typed schema-store operations used by the pipeline and API layer."""

    # Pipeline inputs / outputs

    @abc.abstractmethod
    async def get_project_by_id(self, project_id: str, owner_id: str) -> Optional[AssessmentProjectSchema]:
        """Project owned by *owner_id*, or None."""

    @abc.abstractmethod
    async def get_assessment_type_by_id(self, type_id: str) -> Optional[AssessmentTypeSchema]:
        """Assessment type including its ordered field definitions, or None."""

    @abc.abstractmethod
    async def get_documents_for_project(
        self, project_id: str, document_type: DocumentType
    ) -> List[ProjectDocumentSchema]:
        """Document log entries of one type, oldest first."""

    @abc.abstractmethod
    async def add_document_record(
        self,
        project_id: str,
        document_type: DocumentType,
        original_file_name: str,
        stored_file_path: str,
    ) -> bool:
        """Append a document log entry."""

    @abc.abstractmethod
    async def update_project_publishing_info(
        self,
        project_id: str,
        public_access_id: str,
        final_doc_path: str,
        qr_code_data: str,
    ) -> bool:
        """Persist the publishing triple in one update."""

    @abc.abstractmethod
    async def find_project_by_public_access_id(self, public_access_id: str) -> Optional[AssessmentProjectSchema]:
        """Published project with this public id, or None."""

    # Administration and editing

    @abc.abstractmethod
    async def create_assessment_type(self, request: AssessmentTypeCreate) -> AssessmentTypeSchema:
        """Raises DuplicateAssessmentTypeError on a name clash."""

    @abc.abstractmethod
    async def delete_assessment_type(self, type_id: str) -> bool:
        """False if absent; raises AssessmentTypeInUseError while referenced."""

    @abc.abstractmethod
    async def create_project(
        self, assessor_id: str, request: ProjectCreateRequest
    ) -> Optional[AssessmentProjectSchema]:
        """None if the assessment type does not exist."""

    @abc.abstractmethod
    async def update_project(
        self, project_id: str, assessor_id: str, update: ProjectUpdateRequest
    ) -> Optional[AssessmentProjectSchema]:
        """None if the project is absent or owned by someone else."""


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------

class SqlAlchemyAssessmentRepository(AssessmentRepository):

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _load_project(self, *conditions) -> Optional[AssessmentProject]:
        result = await self.db.execute(
            select(AssessmentProject)
            .where(*conditions)
            .options(selectinload(AssessmentProject.field_values))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_project_by_id(self, project_id: str, owner_id: str) -> Optional[AssessmentProjectSchema]:
        row = await self._load_project(
            AssessmentProject.id == project_id,
            AssessmentProject.assessor_id == owner_id,
        )
        return _to_project(row) if row is not None else None

    async def find_project_by_public_access_id(self, public_access_id: str) -> Optional[AssessmentProjectSchema]:
        row = await self._load_project(AssessmentProject.public_access_id == public_access_id)
        return _to_project(row) if row is not None else None

    async def get_assessment_type_by_id(self, type_id: str) -> Optional[AssessmentTypeSchema]:
        result = await self.db.execute(
            select(AssessmentType)
            .where(AssessmentType.id == type_id)
            .options(selectinload(AssessmentType.field_definitions))
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _to_type(row) if row is not None else None

    async def get_documents_for_project(
        self, project_id: str, document_type: DocumentType
    ) -> List[ProjectDocumentSchema]:
        result = await self.db.execute(
            select(AssessmentProjectDocument)
            .where(
                AssessmentProjectDocument.project_id == project_id,
                AssessmentProjectDocument.document_type == document_type,
            )
            .order_by(
                AssessmentProjectDocument.version_number,
                AssessmentProjectDocument.upload_timestamp,
            )
        )
        return [ProjectDocumentSchema.model_validate(d) for d in result.scalars().all()]

    # ------------------------------------------------------------------
    # Document log / publishing
    # ------------------------------------------------------------------

    async def add_document_record(
        self,
        project_id: str,
        document_type: DocumentType,
        original_file_name: str,
        stored_file_path: str,
    ) -> bool:
        try:
            count_result = await self.db.execute(
                select(func.count(AssessmentProjectDocument.id)).where(
                    AssessmentProjectDocument.project_id == project_id,
                    AssessmentProjectDocument.document_type == document_type,
                )
            )
            version = (count_result.scalar() or 0) + 1
            self.db.add(
                AssessmentProjectDocument(
                    id=_new_id(),
                    project_id=project_id,
                    document_type=document_type,
                    original_file_name=original_file_name,
                    stored_file_path=stored_file_path,
                    upload_timestamp=_utcnow(),
                    version_number=version,
                )
            )
            await self.db.commit()
            return True
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error(
                "add_document_record failed for project %s (%s %s): %s",
                project_id,
                document_type.value,
                original_file_name,
                exc,
            )
            return False

    async def update_project_publishing_info(
        self,
        project_id: str,
        public_access_id: str,
        final_doc_path: str,
        qr_code_data: str,
    ) -> bool:
        try:
            result = await self.db.execute(
                select(AssessmentProject).where(AssessmentProject.id == project_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return False
            row.public_access_id = public_access_id
            row.document_storage_path = final_doc_path
            row.qr_code_data = qr_code_data
            await self.db.commit()
            return True
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("update_project_publishing_info failed for project %s: %s", project_id, exc)
            return False

    # ------------------------------------------------------------------
    # Assessment types
    # ------------------------------------------------------------------

    async def create_assessment_type(self, request: AssessmentTypeCreate) -> AssessmentTypeSchema:
        existing = await self.db.execute(
            select(AssessmentType.id).where(AssessmentType.name == request.name)
        )
        if existing.scalar_one_or_none() is not None:
            logger.warning("Attempt to create assessment type with existing name: %s", request.name)
            raise DuplicateAssessmentTypeError(f"Assessment type {request.name!r} already exists")

        type_id = make_type_id(request.name)
        row = AssessmentType(
            id=type_id,
            name=request.name,
            description=request.description,
            template_file_names=list(request.template_file_names),
            field_definitions=[
                AssessmentFieldDefinition(
                    id=_new_id(),
                    assessment_type_id=type_id,
                    field_key=fd.field_key,
                    label=fd.label,
                    field_type=fd.field_type,
                    options=fd.options,
                    is_required=fd.is_required,
                    order=fd.order,
                    section=fd.section,
                    default_text_if_empty=fd.default_text_if_empty,
                )
                for fd in request.field_definitions
            ],
        )
        self.db.add(row)
        await self.db.commit()
        logger.info("Created assessment type %s (%d fields)", type_id, len(request.field_definitions))

        created = await self.get_assessment_type_by_id(type_id)
        if created is None:
            raise RuntimeError(f"Assessment type {type_id} was not readable after commit")
        return created

    async def delete_assessment_type(self, type_id: str) -> bool:
        result = await self.db.execute(
            select(AssessmentType)
            .where(AssessmentType.id == type_id)
            .options(selectinload(AssessmentType.field_definitions))
        )
        row = result.scalar_one_or_none()
        if row is None:
            return False

        in_use = await self.db.execute(
            select(func.count(AssessmentProject.id)).where(AssessmentProject.assessment_type_id == type_id)
        )
        if (in_use.scalar() or 0) > 0:
            logger.warning("Attempt to delete assessment type %s still in use by projects", type_id)
            raise AssessmentTypeInUseError(f"Assessment type {type_id} is used by existing projects")

        await self.db.delete(row)
        await self.db.commit()
        return True

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def create_project(
        self, assessor_id: str, request: ProjectCreateRequest
    ) -> Optional[AssessmentProjectSchema]:
        assessment_type = await self.get_assessment_type_by_id(request.assessment_type_id)
        if assessment_type is None:
            logger.error("Attempt to create project for unknown assessment type %s", request.assessment_type_id)
            return None
        validate_field_values(assessment_type.field_definitions, request.field_values)

        now = _utcnow()
        project_id = _new_id()
        self.db.add(
            AssessmentProject(
                id=project_id,
                display_name=request.display_name,
                assessment_type_id=request.assessment_type_id,
                assessor_id=assessor_id,
                status=ProjectStatus.ACTIVE,
                creation_timestamp=now,
                last_modification_timestamp=now,
            )
        )
        await self.db.flush()
        self.db.add_all(_to_value_rows(project_id, request.field_values))
        await self.db.commit()
        logger.info("Created assessment project %s for assessor %s", project_id, assessor_id)
        return await self.get_project_by_id(project_id, assessor_id)

    async def update_project(
        self, project_id: str, assessor_id: str, update: ProjectUpdateRequest
    ) -> Optional[AssessmentProjectSchema]:
        row = await self._load_project(
            AssessmentProject.id == project_id,
            AssessmentProject.assessor_id == assessor_id,
        )
        if row is None:
            return None

        changed = False
        if update.display_name is not None and update.display_name != row.display_name:
            row.display_name = update.display_name
            changed = True
        if update.status is not None and update.status != row.status:
            row.status = validate_status_transition(row.status, update.status)
            changed = True

        if update.field_values is not None:
            assessment_type = await self.get_assessment_type_by_id(row.assessment_type_id)
            definitions = assessment_type.field_definitions if assessment_type else []
            validate_field_values(definitions, update.field_values)

            # Values are replaced wholesale, never patched
            deleted = await self.db.execute(
                delete(AssessmentFieldValue).where(AssessmentFieldValue.project_id == project_id)
            )
            await self.db.flush()
            self.db.add_all(_to_value_rows(project_id, update.field_values))
            if update.field_values or deleted.rowcount:
                changed = True

        if changed:
            row.last_modification_timestamp = _utcnow()
        await self.db.commit()
        return await self.get_project_by_id(project_id, assessor_id)
