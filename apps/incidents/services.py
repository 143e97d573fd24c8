"""
Site incident orchestration services.

This module contains the business logic that groups incoming SiteAlerts
into SiteIncidents and closes incidents that have gone quiet.

Usage:
    service = SiteIncidentService()
    incident = service.process_new_alert(site_alert)   # one call per new alert
    closed = service.resolve_inactive_incidents()      # periodic sweep
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable

from django.conf import settings
from django.utils import timezone

from apps.incidents.dtos import CreateIncidentData, LinkResult
from apps.incidents.errors import (
    ActiveIncidentConflict,
    IncidentError,
    IncidentNotFound,
    InvalidArgument,
    InvalidInactivityThreshold,
    InvalidTimestamp,
    NotFound,
    StorageError,
)
from apps.incidents.metrics import MetricsBackend, OperationMetrics, get_metrics_backend
from apps.incidents.models import SiteIncident
from apps.incidents.repository import DjangoIncidentRepository, IncidentRepository, normalize_id
from apps.incidents.resolver import IncidentResolver
from apps.incidents.state import validate_can_accept_alerts, validate_review_transition

logger = logging.getLogger(__name__)


class SiteIncidentService:
    """
    Entry point for the incident lifecycle.

    Every collaborator is injected; defaults come from Django settings:
    INCIDENT_RESOLUTION_HOURS, INCIDENT_CONFLICT_RETRIES and
    INCIDENT_MANAGER_BATCH_SIZE.
    """

    def __init__(
        self,
        repository: IncidentRepository | None = None,
        resolver: IncidentResolver | None = None,
        inactive_hours: float | None = None,
        metrics_backend: MetricsBackend | None = None,
        conflict_retries: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the service.

        Args:
            repository: Storage port (default: Django ORM repository).
            resolver: Resolution policy (default: built from the other arguments).
            inactive_hours: Hours of silence after which an incident is stale.
            metrics_backend: Where timers and gauges go (default from settings).
            conflict_retries: How often to re-run an alert after losing an
                active-incident race.
            clock: Returns "now"; injectable for tests.
        """
        if inactive_hours is None:
            inactive_hours = getattr(settings, "INCIDENT_RESOLUTION_HOURS", 6)
        if isinstance(inactive_hours, bool) or not isinstance(inactive_hours, (int, float)):
            raise InvalidInactivityThreshold(inactive_hours)
        if inactive_hours <= 0:
            raise InvalidInactivityThreshold(inactive_hours)

        self.inactive_hours = inactive_hours
        self.clock = clock or timezone.now
        self.metrics_backend = metrics_backend or get_metrics_backend()
        self.repository = repository or DjangoIncidentRepository(clock=self.clock)
        self.resolver = resolver or IncidentResolver(
            self.repository,
            inactive_hours=inactive_hours,
            metrics_backend=self.metrics_backend,
            clock=self.clock,
        )
        self.conflict_retries = (
            conflict_retries
            if conflict_retries is not None
            else int(getattr(settings, "INCIDENT_CONFLICT_RETRIES", 2))
        )

    def _metrics(self, operation: str, **tags: Any) -> OperationMetrics:
        return OperationMetrics(self.metrics_backend, tags={"operation": operation, **tags})

    # ------------------------------------------------------------------
    # New alert state machine
    # ------------------------------------------------------------------

    def process_new_alert(self, alert) -> SiteIncident:
        """
        Attach a new SiteAlert to its site's open incident, or open one.

        The lookup and the resulting writes run as one unit of work with the
        site row locked, so concurrent alerts for the same site are applied
        one after the other. Losing a race on the active-incident constraint
        re-runs the whole unit.

        Args:
            alert: The SiteAlert (anything with ``id`` and ``site_id``).

        Returns:
            The incident the alert now belongs to.
        """
        alert_id, site_id = self._validate_alert(alert)
        metrics = self._metrics("process_new_alert", site_id=str(site_id))
        metrics.start_timer("process_new_alert")

        attempt = 0
        try:
            while True:
                try:
                    with self.repository.atomic():
                        incident = self._process_alert_locked(alert_id, site_id, metrics)
                    break
                except ActiveIncidentConflict:
                    attempt += 1
                    if attempt > self.conflict_retries:
                        raise
                    metrics.incr("active_incident_conflict")
                    logger.warning(
                        f"Concurrent incident creation for site {site_id}; "
                        f"retrying alert {alert_id} ({attempt}/{self.conflict_retries})"
                    )
        except InvalidArgument:
            raise
        except IncidentError as e:
            logger.error(f"Failed to process SiteAlert {alert_id} for site {site_id}: {e}")
            raise
        except Exception:
            logger.exception(f"Unexpected error processing SiteAlert {alert_id} for site {site_id}")
            raise
        finally:
            metrics.end_timer("process_new_alert")

        logger.info(f"Processed SiteAlert {alert_id} for incident {incident.id}")
        return incident

    def _validate_alert(self, alert) -> tuple[Any, Any]:
        if alert is None:
            raise InvalidArgument("Invalid alert: SiteAlert is required")
        alert_id = normalize_id(getattr(alert, "id", None), "alert id")
        site_id = normalize_id(getattr(alert, "site_id", None), "alert site_id")
        return alert_id, site_id

    def _process_alert_locked(self, alert_id, site_id, metrics: OperationMetrics) -> SiteIncident:
        self.repository.lock_site(site_id)

        current = self.repository.get_alert_by_id(alert_id)
        if current is None:
            raise NotFound(f"SiteAlert with id {alert_id} not found")
        if current.is_processed and current.site_incident_id:
            linked = self.repository.get_incident_by_id(current.site_incident_id)
            if linked is not None:
                logger.debug(f"SiteAlert {alert_id} already linked to incident {linked.id}")
                return linked

        with metrics.timer("find_active_incident"):
            active = self.repository.find_active_by_site_id(site_id, for_update=True)

        if active is None:
            return self._open_incident(site_id, alert_id, metrics)

        if not self.resolver.should_resolve(active, active.updated_at):
            return self._extend_incident(active, alert_id, metrics)

        return self._close_stale_and_reopen(active, alert_id, metrics)

    def _open_incident(self, site_id, alert_id, metrics: OperationMetrics) -> SiteIncident:
        with metrics.timer("create_incident"):
            incident = self.repository.create_incident(
                CreateIncidentData(
                    site_id=site_id,
                    start_alert_id=alert_id,
                    latest_alert_id=alert_id,
                    started_at=self.clock(),
                )
            )
        with metrics.timer("mark_alert_associated"):
            self.repository.mark_alert_associated(alert_id, incident.id)

        logger.info(f"Created new SiteIncident {incident.id} for site {site_id}")
        return incident

    def _extend_incident(self, incident: SiteIncident, alert_id, metrics: OperationMetrics) -> SiteIncident:
        with metrics.timer("associate_alert"):
            updated = self.repository.associate_alert(incident.id, alert_id)
        with metrics.timer("mark_alert_associated"):
            self.repository.mark_alert_associated(alert_id, incident.id)

        logger.debug(f"Extended SiteIncident {incident.id} with alert {alert_id}")
        return updated

    def _close_stale_and_reopen(
        self,
        stale: SiteIncident,
        alert_id,
        metrics: OperationMetrics,
    ) -> SiteIncident:
        """
        Close a stale incident and open a new one, both carrying ``alert_id``.

        The alert first becomes the stale incident's latest (and closing)
        alert, then seeds the new incident as its start. The alert row ends
        up linked to the new incident.
        """
        logger.info(
            f"SiteIncident {stale.id} is stale "
            f"({self.resolver.get_inactive_minutes(stale.updated_at)} min since last alert); "
            f"closing it and opening a new incident for site {stale.site_id}"
        )

        with metrics.timer("close_stale_incident"):
            self.repository.associate_alert(stale.id, alert_id)
            self.repository.mark_alert_associated(alert_id, stale.id)
            result = self.resolver.batch_resolve([stale])

        if result.has_errors:
            error = result.errors[0].error
            raise StorageError(f"Failed to close stale incident {stale.id}: {error}") from error

        return self._open_incident(stale.site_id, alert_id, metrics)

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def resolve_inactive_incidents(self) -> int:
        """
        Close incidents that have gone quiet.

        Candidates are active, unprocessed incidents started more than
        ``inactive_hours`` ago. Malformed rows and incidents that received an
        alert within the window are left open.

        Returns:
            Number of incidents actually closed.
        """
        metrics = self._metrics("resolve_inactive_incidents")
        metrics.start_timer("resolve_inactive_incidents")

        try:
            with metrics.timer("find_inactive_incidents"):
                candidates = self.repository.find_inactive_incidents(self.inactive_hours)
            metrics.record("candidates_count", len(candidates))

            if not candidates:
                logger.debug("No inactive incidents to resolve")
                return 0

            valid = [
                incident
                for incident in candidates
                if self.resolver.validate(incident) and self.resolver.is_in_resolution_window(incident)
            ]
            quiet = [
                incident
                for incident in valid
                if self.resolver.should_resolve(incident, incident.updated_at)
            ]
            metrics.record("valid_count", len(quiet))

            if len(quiet) < len(valid):
                logger.debug(
                    f"{len(valid) - len(quiet)} candidate incidents had recent alerts, keeping open"
                )
            if not quiet:
                logger.info(f"No valid incidents to resolve out of {len(candidates)} candidates")
                return 0

            result = self.resolver.batch_resolve(quiet)
            if result.has_errors:
                failed = ", ".join(str(e.incident_id) for e in result.errors)
                logger.warning(f"{len(result.errors)} incidents failed to resolve: {failed}")

            logger.info(f"Resolved {result.resolved_count} inactive incidents")
            return result.resolved_count
        except InvalidArgument:
            raise
        except Exception as e:
            logger.error(f"Failed to resolve inactive incidents: {e}")
            raise
        finally:
            metrics.end_timer("resolve_inactive_incidents")

    def link_unassociated_alerts(self, limit: int | None = None) -> LinkResult:
        """Run ``process_new_alert`` for alerts that have no incident, oldest first."""
        if limit is None:
            limit = int(getattr(settings, "INCIDENT_MANAGER_BATCH_SIZE", 50))

        alerts = self.repository.find_unlinked_alerts(limit)
        result = LinkResult(found=len(alerts))

        if not alerts:
            logger.debug("No unassociated SiteAlerts found")
            return result

        logger.info(f"Found {len(alerts)} unassociated alerts. Processing...")
        for alert in alerts:
            try:
                self.process_new_alert(alert)
                result.processed += 1
            except Exception as e:
                result.errors.append({"id": str(alert.id), "error": str(e)})

        return result

    def run_incident_manager(self, batch_size: int | None = None) -> dict[str, Any]:
        """
        Link unassociated alerts, then close inactive incidents.

        A failing sweep is reported in the stats rather than raised, so the
        linking work is still reported.
        """
        start = time.perf_counter()
        logger.info("Starting site incident manager")

        link_result = self.link_unassociated_alerts(batch_size)

        resolved_count = 0
        sweep_error = ""
        try:
            resolved_count = self.resolve_inactive_incidents()
        except Exception as e:
            sweep_error = str(e)

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Site incident manager finished in {duration_ms:.0f}ms. "
            f"Linked: {link_result.processed}, Resolved: {resolved_count}"
        )

        stats: dict[str, Any] = {
            "unlinked_alerts_found": link_result.found,
            "alerts_processed": link_result.processed,
            "incidents_resolved": resolved_count,
            "errors": link_result.errors,
            "duration_ms": round(duration_ms, 1),
        }
        if sweep_error:
            stats["sweep_error"] = sweep_error
        return stats

    # ------------------------------------------------------------------
    # Pass-throughs
    # ------------------------------------------------------------------

    def associate_alert_with_incident(self, incident_id, alert_id) -> SiteIncident:
        """Attach an alert to a specific open incident."""
        with self.repository.atomic():
            incident = self.repository.get_incident_by_id(incident_id)
            if incident is None:
                raise IncidentNotFound(incident_id)
            validate_can_accept_alerts(incident)

            metrics = self._metrics("associate_alert_with_incident")
            return self._extend_incident(incident, alert_id, metrics)

    def get_incident_by_id(self, incident_id) -> SiteIncident | None:
        return self.repository.get_incident_by_id(incident_id)

    def get_incident_detail(self, incident_id) -> SiteIncident:
        """Incident with its site and alerts loaded; raises ``IncidentNotFound``."""
        incident = self.repository.get_incident_detail(incident_id)
        if incident is None:
            raise IncidentNotFound(incident_id)
        return incident

    def get_active_incident_for_site(self, site_id) -> SiteIncident | None:
        return self.repository.find_active_by_site_id(site_id)

    def get_incidents_by_date_range(self, site_id, start: datetime, end: datetime) -> list[SiteIncident]:
        if not isinstance(start, datetime) or not isinstance(end, datetime):
            raise InvalidTimestamp("Start and end must be datetimes")
        if start > end:
            raise InvalidTimestamp("Start date must be before or equal to end date")
        return self.repository.find_by_date_range(site_id, start, end)

    def update_review_status(self, incident_id, status: str) -> SiteIncident:
        incident = self.repository.get_incident_by_id(incident_id)
        if incident is None:
            raise IncidentNotFound(incident_id)

        target = validate_review_transition(incident.review_status, status)
        if incident.review_status == target:
            return incident

        updated = self.repository.update_incident(incident.id, review_status=target.value)
        logger.info(f"Updated review status for incident {incident.id} to {target.value}")
        return updated

    def close_incident(self, incident_id) -> SiteIncident:
        """Manually close an open incident."""
        incident = self.repository.get_incident_by_id(incident_id)
        if incident is None:
            raise IncidentNotFound(incident_id)
        if not incident.is_active:
            raise InvalidArgument(f"Incident {incident.id} is already closed")

        closed = self.repository.close_incident(
            incident.id, self.resolver.prepare_for_resolution(incident)
        )
        logger.info(f"Incident closed manually: {incident.id}")
        return closed
