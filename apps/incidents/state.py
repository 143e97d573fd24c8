"""
Incident lifecycle and review-status rules.

The lifecycle state is derived from ``(is_active, is_processed)``:

    CREATED  (active, notification pending)
    ACTIVE   (active, start notification sent)
    CLOSING  (closed, end notification pending)
    CLOSED   (closed, end notification sent)

No transition leads back from CLOSING/CLOSED to an active state.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from apps.incidents.errors import (
    InactiveIncidentError,
    InvalidArgument,
    InvalidReviewStatus,
    InvalidReviewTransition,
    InvalidStateTransition,
    InvalidTimestamp,
)
from apps.incidents.models import ReviewStatus


class LifecycleState(str, Enum):
    CREATED = "CREATED"
    ACTIVE = "ACTIVE"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"


VALID_TRANSITIONS: dict[LifecycleState, set[LifecycleState]] = {
    LifecycleState.CREATED: {LifecycleState.ACTIVE, LifecycleState.CLOSING},
    LifecycleState.ACTIVE: {LifecycleState.CLOSING},
    LifecycleState.CLOSING: {LifecycleState.CLOSED},
    LifecycleState.CLOSED: set(),
}

REVIEW_TRANSITIONS: dict[str, set[str]] = {
    ReviewStatus.TO_REVIEW: {ReviewStatus.IN_REVIEW, ReviewStatus.REVIEWED, ReviewStatus.ARCHIVED},
    ReviewStatus.IN_REVIEW: {ReviewStatus.TO_REVIEW, ReviewStatus.REVIEWED, ReviewStatus.ARCHIVED},
    ReviewStatus.REVIEWED: {ReviewStatus.IN_REVIEW, ReviewStatus.ARCHIVED},
    ReviewStatus.ARCHIVED: {ReviewStatus.TO_REVIEW},
}


def lifecycle_state_for(is_active: bool, is_processed: bool) -> LifecycleState:
    if is_active:
        return LifecycleState.ACTIVE if is_processed else LifecycleState.CREATED
    return LifecycleState.CLOSED if is_processed else LifecycleState.CLOSING


def get_lifecycle_state(incident) -> LifecycleState:
    return lifecycle_state_for(incident.is_active, incident.is_processed)


def is_valid_state_transition(current: LifecycleState, target: LifecycleState) -> bool:
    return target in VALID_TRANSITIONS.get(current, set())


def validate_incident_update(incident, fields: dict) -> None:
    """
    Check a partial update against the lifecycle rules before it is written.

    The flags in ``fields`` are merged over the incident's current values;
    the resulting state must be reachable from the current one, a closed
    incident needs ``ended_at`` and an open one must not have it.
    """
    for flag in ("is_active", "is_processed"):
        if flag in fields and not isinstance(fields[flag], bool):
            raise InvalidArgument(f"Invalid data: {flag} must be a boolean")
    if "ended_at" in fields and fields["ended_at"] is not None and not isinstance(
        fields["ended_at"], datetime
    ):
        raise InvalidArgument("Invalid data: ended_at must be a datetime")

    is_active = fields.get("is_active", incident.is_active)
    is_processed = fields.get("is_processed", incident.is_processed)
    ended_at = fields.get("ended_at", incident.ended_at)

    current = get_lifecycle_state(incident)
    target = lifecycle_state_for(is_active, is_processed)
    if target != current and not is_valid_state_transition(current, target):
        raise InvalidStateTransition(current.value, target.value)

    if not is_active and ended_at is None:
        raise InvalidArgument("Invalid data: a closed incident requires ended_at")
    if is_active and ended_at is not None:
        raise InvalidArgument("Invalid data: an active incident cannot have ended_at")
    validate_timestamp_ordering(incident.started_at, ended_at)


def validate_can_accept_alerts(incident) -> None:
    """Raise ``InactiveIncidentError`` unless the incident is still open."""
    if not incident.is_active:
        raise InactiveIncidentError(incident.id)


def validate_timestamp_ordering(started_at: datetime, ended_at: datetime | None) -> None:
    if ended_at is not None and started_at > ended_at:
        raise InvalidTimestamp("Start time must be before or equal to end time")


def parse_review_status(value) -> ReviewStatus:
    try:
        return ReviewStatus(value)
    except ValueError:
        raise InvalidReviewStatus(value) from None


def validate_review_transition(current: str, requested: str) -> ReviewStatus:
    """
    Check a review status change and return the parsed target status.

    Setting the status it already has is allowed.
    """
    target = parse_review_status(requested)
    if current == target:
        return target
    if target not in REVIEW_TRANSITIONS.get(current, set()):
        raise InvalidReviewTransition(current, target.value)
    return target
