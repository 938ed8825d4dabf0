"""
Locates an assessment type's template files on durable storage.

Layout: ``{TEMPLATE_STORAGE_DIR}/{assessment_type_id}/{template_file_name}``.
"""
from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path
from typing import List, Optional

from app.config import settings
from app.models.schemas import AssessmentTypeSchema

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class ResolvedTemplate:
    name: str
    path: Path


def safe_file_name(name: str) -> str:
    """Strip any directory component from a client-supplied file name."""
    base = os.path.basename(name.replace("\\", "/")).strip()
    if base in ("", ".", ".."):
        raise ValueError(f"Invalid file name: {name!r}")
    return base


class TemplateResolver:
    """Maps template names of an assessment type to files under the template root."""

    def __init__(self, template_root: Optional[str] = None) -> None:
        self.template_root = Path(template_root or settings.TEMPLATE_STORAGE_DIR)

    def type_dir(self, assessment_type_id: str) -> Path:
        return self.template_root / safe_file_name(assessment_type_id)

    def resolve(self, assessment_type: AssessmentTypeSchema) -> List[ResolvedTemplate]:
        """
        Return the existing template files of *assessment_type*, in the
        type's template order. Missing files are logged and left out.
        """
        resolved: List[ResolvedTemplate] = []
        for name in assessment_type.template_file_names:
            path = self.type_dir(assessment_type.id) / safe_file_name(name)
            if not path.is_file():
                logger.error(
                    "Template file not found for assessment type %s: %s",
                    assessment_type.id,
                    path.resolve(),
                )
                continue
            resolved.append(ResolvedTemplate(name=name, path=path))
        return resolved

    def store_template(self, assessment_type_id: str, file_name: str, content: bytes) -> Path:
        """Write (or overwrite) one template file for *assessment_type_id*."""
        directory = self.type_dir(assessment_type_id)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / safe_file_name(file_name)
        path.write_bytes(content)
        logger.info("Stored template %s for assessment type %s", path.name, assessment_type_id)
        return path
