"""
Project lifecycle state machines.

Two small state machines govern an assessment project:

* ``ProjectStatus``  - ACTIVE → FINISHED (one-way; FINISHED never reopens).
* ``PublishState``   - NOT_PUBLISHED → PUBLISHED → PUBLISHED (republish keeps
  the public access id; a published project is never unpublished).
"""
from __future__ import annotations

import enum
from typing import Dict, FrozenSet

from app.models.database_models import ProjectStatus
from app.models.schemas import AssessmentProjectSchema


class PublishState(str, enum.Enum):
    NOT_PUBLISHED = "NOT_PUBLISHED"
    PUBLISHED = "PUBLISHED"


class InvalidTransitionError(ValueError):
    """Raised when a requested state change is not a legal transition."""


_STATUS_TRANSITIONS: Dict[ProjectStatus, FrozenSet[ProjectStatus]] = {
    ProjectStatus.ACTIVE: frozenset({ProjectStatus.ACTIVE, ProjectStatus.FINISHED}),
    ProjectStatus.FINISHED: frozenset({ProjectStatus.FINISHED}),
}

_PUBLISH_TRANSITIONS: Dict[PublishState, FrozenSet[PublishState]] = {
    PublishState.NOT_PUBLISHED: frozenset({PublishState.PUBLISHED}),
    PublishState.PUBLISHED: frozenset({PublishState.PUBLISHED}),
}


def validate_status_transition(current: ProjectStatus, target: ProjectStatus) -> ProjectStatus:
    """Return *target* if moving from *current* is allowed, else raise InvalidTransitionError."""
    if target not in _STATUS_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Project status cannot change from {current.value} to {target.value}"
        )
    return target


def publish_state_of(project: AssessmentProjectSchema) -> PublishState:
    """A project counts as published once a public access id has been persisted."""
    if project.public_access_id:
        return PublishState.PUBLISHED
    return PublishState.NOT_PUBLISHED


def validate_publish_transition(current: PublishState, target: PublishState) -> PublishState:
    if target not in _PUBLISH_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Publish state cannot change from {current.value} to {target.value}"
        )
    return target


def resolve_public_access_id(project: AssessmentProjectSchema) -> str:
    """
    Public id to use for the next publish of *project*.

    The persisted id wins so republishing never breaks an existing public
    link; on first publish the project's own id is used.
    """
    state = publish_state_of(project)
    validate_publish_transition(state, PublishState.PUBLISHED)
    if state is PublishState.PUBLISHED:
        return project.public_access_id  # type: ignore[return-value]
    return project.id
