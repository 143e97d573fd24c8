"""
Storage port for site incidents.

All reads and writes of incident rows and of the alert -> incident linkage
go through an ``IncidentRepository``. The repository validates its inputs,
converts database failures into ``StorageError`` and never retries; business
rules live in the resolver and the service.
"""

from __future__ import annotations

import logging
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, ContextManager, Iterator

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import F, Prefetch
from django.utils import timezone

from apps.incidents.dtos import (
    BatchItemError,
    CreateIncidentData,
    IncidentMetrics,
    ResolveResult,
)
from apps.incidents.errors import (
    ActiveIncidentConflict,
    IncidentError,
    IncidentNotFound,
    InvalidArgument,
    NotFound,
    SiteNotFound,
    StorageError,
)
from apps.incidents.models import ReviewStatus, Site, SiteAlert, SiteIncident
from apps.incidents.state import validate_incident_update

logger = logging.getLogger(__name__)


CLOSING_FIELDS = frozenset({"ended_at", "is_active", "is_processed"})

UPDATABLE_FIELDS = frozenset(
    {
        "latest_site_alert_id",
        "end_site_alert_id",
        "ended_at",
        "is_active",
        "is_processed",
        "review_status",
    }
)


def normalize_id(value: Any, name: str = "id") -> uuid.UUID:
    """Coerce an identifier to a UUID or raise ``InvalidArgument``."""
    if isinstance(value, uuid.UUID):
        return value
    if value is None or not isinstance(value, str) or not value.strip():
        error = InvalidArgument(f"Invalid {name}: must be a non-empty string")
        logger.warning(f"Input validation failed: {error.message}")
        raise error
    try:
        return uuid.UUID(value.strip())
    except ValueError:
        error = InvalidArgument(f"Invalid {name}: {value!r} is not a valid identifier")
        logger.warning(f"Input validation failed: {error.message}")
        raise error from None


def validate_inactive_hours(inactive_hours: Any) -> float:
    if isinstance(inactive_hours, bool) or not isinstance(inactive_hours, (int, float)):
        raise InvalidArgument("Invalid inactive_hours: must be a positive number")
    if inactive_hours <= 0:
        raise InvalidArgument("Invalid inactive_hours: must be a positive number")
    return float(inactive_hours)


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    """Turn database failures into ``StorageError``; let our own errors through."""
    try:
        yield
    except IncidentError:
        raise
    except DatabaseError as e:
        logger.error(f"Error {action}: {e}")
        raise StorageError(f"Error {action}: {e}") from e


class IncidentRepository(ABC):
    """
    Storage port over incidents and their alert linkage.

    Every operation acquires and releases its own resources. Callers that
    need several operations to be observed atomically wrap them in
    ``atomic()`` and take ``lock_site()`` first.
    """

    @abstractmethod
    def atomic(self) -> ContextManager[Any]:
        """Return a context manager delimiting one unit of work."""

    @abstractmethod
    def lock_site(self, site_id) -> None:
        """Serialize writers for a site until the enclosing unit of work ends."""

    @abstractmethod
    def site_exists(self, site_id) -> bool: ...

    @abstractmethod
    def find_active_by_site_id(self, site_id, for_update: bool = False) -> SiteIncident | None: ...

    @abstractmethod
    def create_incident(self, data: CreateIncidentData) -> SiteIncident: ...

    @abstractmethod
    def update_incident(self, incident_id, **fields) -> SiteIncident: ...

    @abstractmethod
    def associate_alert(self, incident_id, alert_id) -> SiteIncident: ...

    @abstractmethod
    def mark_alert_associated(self, alert_id, incident_id) -> None: ...

    @abstractmethod
    def find_inactive_incidents(self, inactive_hours: float) -> list[SiteIncident]: ...

    @abstractmethod
    def resolve_incidents_batch(
        self, incidents: list[SiteIncident], closing_fields: dict[str, Any] | None = None
    ) -> ResolveResult:
        """
        Close each incident that is still active.

        ``closing_fields`` carries ``ended_at``/``is_active``/``is_processed``
        for the closing write; the closing alert is always the latest alert.
        """

    @abstractmethod
    def close_incident(self, incident_id, closing_fields: dict[str, Any] | None = None) -> SiteIncident: ...

    @abstractmethod
    def get_incident_by_id(self, incident_id) -> SiteIncident | None: ...

    @abstractmethod
    def get_incident_detail(self, incident_id) -> SiteIncident | None: ...

    @abstractmethod
    def count_active_by_site(self, site_id) -> int: ...

    @abstractmethod
    def find_by_date_range(self, site_id, start: datetime, end: datetime) -> list[SiteIncident]: ...

    @abstractmethod
    def get_alert_by_id(self, alert_id) -> SiteAlert | None: ...

    @abstractmethod
    def find_unlinked_alerts(self, limit: int) -> list[SiteAlert]: ...


class DjangoIncidentRepository(IncidentRepository):
    """``IncidentRepository`` backed by the Django ORM."""

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self.clock = clock or timezone.now

    def atomic(self):
        return transaction.atomic()

    def lock_site(self, site_id) -> None:
        site_id = normalize_id(site_id, "site_id")
        with _storage_errors(f"locking site {site_id}"):
            locked = Site.objects.select_for_update().filter(pk=site_id).values_list("pk", flat=True)
            if not list(locked):
                raise SiteNotFound(site_id)

    def site_exists(self, site_id) -> bool:
        site_id = normalize_id(site_id, "site_id")
        with _storage_errors(f"checking site {site_id}"):
            return Site.objects.filter(pk=site_id).exists()

    def find_active_by_site_id(self, site_id, for_update: bool = False) -> SiteIncident | None:
        site_id = normalize_id(site_id, "site_id")
        with _storage_errors(f"finding active incident for site {site_id}"):
            qs = SiteIncident.objects.filter(site_id=site_id, is_active=True).order_by("-started_at")
            if for_update:
                qs = qs.select_for_update()
            return qs.first()

    def create_incident(self, data: CreateIncidentData) -> SiteIncident:
        if data is None:
            raise InvalidArgument("Invalid data: CreateIncidentData is required")
        site_id = normalize_id(data.site_id, "site_id")
        start_alert_id = normalize_id(data.start_alert_id, "start_alert_id")
        latest_alert_id = normalize_id(data.latest_alert_id, "latest_alert_id")
        if not isinstance(data.started_at, datetime):
            raise InvalidArgument("Invalid data: started_at must be a datetime")

        try:
            # Savepoint, so a constraint violation leaves the outer unit of work usable.
            with transaction.atomic():
                incident = SiteIncident.objects.create(
                    site_id=site_id,
                    start_site_alert_id=start_alert_id,
                    latest_site_alert_id=latest_alert_id,
                    started_at=data.started_at,
                    is_active=True,
                    is_processed=False,
                    review_status=ReviewStatus.TO_REVIEW,
                )
        except IntegrityError as e:
            if SiteIncident.objects.filter(site_id=site_id, is_active=True).exists():
                logger.warning(f"Active incident already exists for site {site_id}")
                raise ActiveIncidentConflict(site_id) from e
            logger.error(f"Error creating incident for site {site_id}: {e}")
            raise StorageError(f"Error creating incident for site {site_id}: {e}") from e
        except DatabaseError as e:
            logger.error(f"Error creating incident for site {site_id}: {e}")
            raise StorageError(f"Error creating incident for site {site_id}: {e}") from e

        logger.debug(f"Created new SiteIncident {incident.id} for site {site_id}")
        return incident

    def update_incident(self, incident_id, **fields) -> SiteIncident:
        incident_id = normalize_id(incident_id)
        if not fields:
            raise InvalidArgument("Invalid data: at least one field is required")
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidArgument(f"Invalid data: fields not updatable: {', '.join(sorted(unknown))}")
        if "review_status" in fields and fields["review_status"] not in ReviewStatus.values:
            raise InvalidArgument(f"Invalid review status: {fields['review_status']}")

        with _storage_errors(f"updating incident {incident_id}"):
            with transaction.atomic():
                try:
                    incident = SiteIncident.objects.select_for_update().get(pk=incident_id)
                except SiteIncident.DoesNotExist:
                    raise IncidentNotFound(incident_id) from None

                try:
                    validate_incident_update(incident, fields)
                except InvalidArgument as e:
                    logger.warning(f"Rejected update of incident {incident_id}: {e.message}")
                    raise

                now = self.clock()
                SiteIncident.objects.filter(pk=incident_id).update(**fields, updated_at=now)
                for name, value in fields.items():
                    setattr(incident, name, value)
                incident.updated_at = now

        logger.debug(f"Updated SiteIncident {incident_id} with fields: {', '.join(fields)}")
        return incident

    def associate_alert(self, incident_id, alert_id) -> SiteIncident:
        incident_id = normalize_id(incident_id, "incident_id")
        alert_id = normalize_id(alert_id, "alert_id")

        with _storage_errors(f"associating alert {alert_id} with incident {incident_id}"):
            if not SiteAlert.objects.filter(pk=alert_id).exists():
                raise NotFound(f"SiteAlert with id {alert_id} not found")
            updated = SiteIncident.objects.filter(pk=incident_id).update(
                latest_site_alert_id=alert_id,
                updated_at=self.clock(),
            )
            if not updated:
                raise IncidentNotFound(incident_id)
            incident = SiteIncident.objects.get(pk=incident_id)

        logger.debug(f"Associated alert {alert_id} with incident {incident_id}")
        return incident

    def mark_alert_associated(self, alert_id, incident_id) -> None:
        alert_id = normalize_id(alert_id, "alert_id")
        incident_id = normalize_id(incident_id, "incident_id")

        with _storage_errors(f"linking alert {alert_id} to incident {incident_id}"):
            updated = SiteAlert.objects.filter(pk=alert_id).update(
                site_incident_id=incident_id,
                is_processed=True,
            )
            if not updated:
                raise NotFound(f"SiteAlert with id {alert_id} not found")

    def find_inactive_incidents(self, inactive_hours: float) -> list[SiteIncident]:
        inactive_hours = validate_inactive_hours(inactive_hours)
        cutoff = self.clock() - timedelta(hours=inactive_hours)

        with _storage_errors("finding inactive incidents"):
            incidents = list(
                SiteIncident.objects.filter(
                    is_active=True,
                    is_processed=False,
                    started_at__lt=cutoff,
                ).order_by("started_at")
            )

        logger.debug(f"Found {len(incidents)} inactive incidents (>{inactive_hours}h)")
        return incidents

    def resolve_incidents_batch(
        self, incidents: list[SiteIncident], closing_fields: dict[str, Any] | None = None
    ) -> ResolveResult:
        if not isinstance(incidents, (list, tuple)) or not incidents:
            raise InvalidArgument("Invalid incidents: must be a non-empty list")
        values = self._closing_values(closing_fields)

        result = ResolveResult(
            metrics=IncidentMetrics(operation_count=len(incidents), batch_size=len(incidents)),
        )
        start = time.perf_counter()

        for incident in incidents:
            item_start = time.perf_counter()
            try:
                closed = self._close_one(incident.id, values)
            except Exception as e:
                result.errors.append(BatchItemError(incident_id=incident.id, error=e))
                logger.warning(f"Error resolving incident {incident.id}: {e}")
                continue

            result.metrics.resolution_duration_ms += (time.perf_counter() - item_start) * 1000
            if closed:
                result.resolved_count += 1
                result.resolved_ids.append(incident.id)
                logger.debug(f"Resolved SiteIncident {incident.id} for site {incident.site_id}")
            else:
                result.skipped_count += 1
                logger.debug(f"SiteIncident {incident.id} already closed, skipping")

        result.metrics.total_duration_ms = (time.perf_counter() - start) * 1000
        logger.debug(
            f"Batch resolution complete: {result.resolved_count}/{len(incidents)} resolved "
            f"in {result.metrics.total_duration_ms:.1f}ms"
        )
        return result

    def _closing_values(self, closing_fields: dict[str, Any] | None) -> dict[str, Any]:
        if closing_fields is None:
            return {"ended_at": self.clock(), "is_active": False, "is_processed": False}
        unknown = set(closing_fields) - CLOSING_FIELDS
        if unknown:
            raise InvalidArgument(f"Invalid closing fields: {', '.join(sorted(unknown))}")
        if closing_fields.get("is_active", False) is not False:
            raise InvalidArgument("Invalid closing fields: is_active must be False")
        if not isinstance(closing_fields.get("ended_at"), datetime):
            raise InvalidArgument("Invalid closing fields: ended_at must be a datetime")
        return {"is_active": False, "is_processed": False, **closing_fields}

    def _close_one(self, incident_id, values: dict[str, Any]) -> bool:
        """
        Close one incident if it is still active.

        Returns False when the incident was already closed. The closing alert
        is the incident's latest alert.
        """
        with _storage_errors(f"resolving incident {incident_id}"):
            with transaction.atomic():
                updated = SiteIncident.objects.filter(pk=incident_id, is_active=True).update(
                    **values,
                    end_site_alert=F("latest_site_alert"),
                    updated_at=values["ended_at"],
                )
                if updated:
                    return True
                if not SiteIncident.objects.filter(pk=incident_id).exists():
                    raise IncidentNotFound(incident_id)
                return False

    def close_incident(self, incident_id, closing_fields: dict[str, Any] | None = None) -> SiteIncident:
        incident_id = normalize_id(incident_id)
        self._close_one(incident_id, self._closing_values(closing_fields))
        with _storage_errors(f"loading incident {incident_id}"):
            return SiteIncident.objects.get(pk=incident_id)

    def get_incident_by_id(self, incident_id) -> SiteIncident | None:
        incident_id = normalize_id(incident_id)
        with _storage_errors(f"getting incident {incident_id}"):
            return SiteIncident.objects.filter(pk=incident_id).first()

    def get_incident_detail(self, incident_id) -> SiteIncident | None:
        incident_id = normalize_id(incident_id)
        with _storage_errors(f"getting incident {incident_id}"):
            return (
                SiteIncident.objects.select_related(
                    "site", "start_site_alert", "latest_site_alert", "end_site_alert"
                )
                .prefetch_related(
                    Prefetch("site_alerts", queryset=SiteAlert.objects.order_by("event_date"))
                )
                .filter(pk=incident_id)
                .first()
            )

    def count_active_by_site(self, site_id) -> int:
        site_id = normalize_id(site_id, "site_id")
        with _storage_errors(f"counting active incidents for site {site_id}"):
            return SiteIncident.objects.filter(site_id=site_id, is_active=True).count()

    def find_by_date_range(self, site_id, start: datetime, end: datetime) -> list[SiteIncident]:
        site_id = normalize_id(site_id, "site_id")
        with _storage_errors(f"finding incidents for site {site_id}"):
            return list(
                SiteIncident.objects.filter(
                    site_id=site_id,
                    started_at__gte=start,
                    started_at__lte=end,
                )
                .select_related("start_site_alert", "latest_site_alert", "end_site_alert")
                .order_by("-started_at")
            )

    def get_alert_by_id(self, alert_id) -> SiteAlert | None:
        alert_id = normalize_id(alert_id, "alert_id")
        with _storage_errors(f"getting alert {alert_id}"):
            return SiteAlert.objects.filter(pk=alert_id).first()

    def find_unlinked_alerts(self, limit: int) -> list[SiteAlert]:
        if limit <= 0:
            raise InvalidArgument("Invalid limit: must be a positive integer")
        with _storage_errors("finding unlinked alerts"):
            return list(
                SiteAlert.objects.filter(site_incident__isnull=True).order_by("event_date")[:limit]
            )
