"""
Field-value flattening.

Turns a project's field values plus its assessment type's field definitions
into the flat ``{field_key: display_string}`` map used for template
substitution. Pure and deterministic: the same inputs always produce the
same map.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from app.models.schemas import AssessmentProjectSchema, AssessmentTypeSchema, FieldValueSchema

MULTI_VALUE_SEPARATOR = ", "


def display_value(field_value: Optional[FieldValueSchema]) -> str:
    """`value` followed by the joined `values`; well-formed data sets only one of them."""
    if field_value is None:
        return ""
    single = field_value.value or ""
    multiple = MULTI_VALUE_SEPARATOR.join(field_value.values) if field_value.values else ""
    return single + multiple


def _format_timestamp(ts: datetime) -> str:
    return ts.isoformat()


def flatten_field_values(
    project: AssessmentProjectSchema,
    assessment_type: AssessmentTypeSchema,
) -> Dict[str, str]:
    """
    Build the substitution map for *project*.

    Every field definition of *assessment_type* contributes one key. Blank
    answers fall back to the definition's ``default_text_if_empty`` (or "").
    A fixed set of project metadata keys is added after the field keys.
    """
    values_by_definition = {fv.field_definition_id: fv for fv in project.field_values}

    data: Dict[str, str] = {}
    for definition in assessment_type.field_definitions:
        text = display_value(values_by_definition.get(definition.id))
        if text.strip():
            data[definition.field_key] = text
        else:
            data[definition.field_key] = definition.default_text_if_empty or ""

    data["project_display_name"] = project.display_name
    data["assessment_type_id"] = project.assessment_type_id
    data["assessor_id"] = project.assessor_id
    data["status"] = project.status.value
    data["creation_timestamp"] = _format_timestamp(project.creation_timestamp)
    data["last_modification_timestamp"] = _format_timestamp(project.last_modification_timestamp)
    data["public_access_id"] = project.public_access_id or ""
    data["document_storage_path"] = project.document_storage_path or ""
    data["qr_code_data"] = project.qr_code_data or ""

    return data
