"""
Error types for site incident operations.

Each error carries the HTTP status the views answer with, so a
``NotFound`` is always distinguishable from a server-side failure.
"""


class IncidentError(Exception):
    """Base class for all incident errors."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class InvalidArgument(IncidentError, ValueError):
    """A required field is missing or malformed. Never retried."""

    status_code = 400


class NotFound(IncidentError, LookupError):
    """A referenced record does not exist."""

    status_code = 404


class IncidentNotFound(NotFound):
    def __init__(self, incident_id):
        super().__init__(f"Incident with id {incident_id} not found")
        self.incident_id = incident_id


class SiteNotFound(NotFound):
    def __init__(self, site_id):
        super().__init__(f"Site with id {site_id} not found")
        self.site_id = site_id


class StorageError(IncidentError):
    """A read or write against the database failed."""

    status_code = 500


class ActiveIncidentConflict(StorageError):
    """Another writer opened an active incident for the same site first."""

    status_code = 409

    def __init__(self, site_id):
        super().__init__(f"An active incident already exists for site {site_id}")
        self.site_id = site_id


class InvalidReviewStatus(InvalidArgument):
    def __init__(self, status):
        from apps.incidents.models import ReviewStatus

        allowed = ", ".join(ReviewStatus.values)
        super().__init__(f"Invalid review status: {status}. Must be one of: {allowed}")
        self.status = status


class InvalidReviewTransition(InvalidArgument):
    def __init__(self, current, requested):
        super().__init__(f"Cannot change review status from {current} to {requested}")
        self.current = current
        self.requested = requested


class InactiveIncidentError(InvalidArgument):
    def __init__(self, incident_id):
        super().__init__(f"Cannot associate alerts with inactive incident {incident_id}")
        self.incident_id = incident_id


class InvalidTimestamp(InvalidArgument):
    pass


class InvalidInactivityThreshold(InvalidArgument):
    def __init__(self, value=None):
        super().__init__(f"Inactivity threshold must be a positive number, got {value!r}")
        self.value = value


class InvalidStateTransition(InvalidArgument):
    def __init__(self, current, target):
        super().__init__(f"Cannot move incident from {current} to {target}")
        self.current = current
        self.target = target
