"""
Resolution policy for site incidents.

Decides when an incident has gone stale and closes batches of incidents
through the repository, tolerating per-item failures.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from django.utils import timezone

from apps.incidents.dtos import IncidentMetrics, IncidentState, ResolveResult
from apps.incidents.errors import InvalidInactivityThreshold
from apps.incidents.metrics import MetricsBackend, OperationMetrics
from apps.incidents.models import SiteIncident
from apps.incidents.repository import IncidentRepository

logger = logging.getLogger(__name__)

DEFAULT_INACTIVE_HOURS = 6


class IncidentResolver:
    """
    Staleness decisions and batch closure.

    Usage:
        resolver = IncidentResolver(DjangoIncidentRepository(), inactive_hours=6)
        if resolver.should_resolve(incident, incident.updated_at):
            resolver.batch_resolve([incident])
    """

    def __init__(
        self,
        repository: IncidentRepository,
        inactive_hours: float = DEFAULT_INACTIVE_HOURS,
        metrics_backend: MetricsBackend | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        if isinstance(inactive_hours, bool) or not isinstance(inactive_hours, (int, float)):
            raise InvalidInactivityThreshold(inactive_hours)
        if inactive_hours <= 0:
            raise InvalidInactivityThreshold(inactive_hours)

        self.repository = repository
        self.inactive_hours = inactive_hours
        self.metrics_backend = metrics_backend
        self.clock = clock or timezone.now

    def _inactive_delta(self, since: datetime) -> timedelta:
        return self.clock() - since

    def should_resolve(self, incident: SiteIncident, last_alert_time: datetime) -> bool:
        """
        Return True when an active incident has been quiet for the threshold.

        Already-closed incidents are never resolved again.
        """
        if not incident.is_active:
            return False

        inactive_hours = self._inactive_delta(last_alert_time).total_seconds() / 3600
        should = inactive_hours >= self.inactive_hours

        if should:
            logger.debug(
                f"Incident {incident.id} should be resolved (inactive for {inactive_hours:.2f}h)"
            )
        return should

    def get_inactive_minutes(self, last_alert_time: datetime) -> int:
        return int(self._inactive_delta(last_alert_time).total_seconds() // 60)

    def calculate_state(
        self,
        incident: SiteIncident,
        last_alert_time: datetime,
        alert_count: int = 0,
    ) -> IncidentState:
        inactive_minutes = self.get_inactive_minutes(last_alert_time)
        return IncidentState(
            incident=incident,
            last_alert_time=last_alert_time,
            inactive_minutes=inactive_minutes,
            should_resolve=incident.is_active and inactive_minutes / 60 >= self.inactive_hours,
            alert_count=alert_count,
        )

    def batch_resolve(self, incidents: list[SiteIncident]) -> ResolveResult:
        """
        Close a batch of incidents.

        Per-item failures are reported in the result; only a failure of the
        whole batch call is raised.
        """
        if not incidents:
            return ResolveResult(metrics=IncidentMetrics())

        metrics = OperationMetrics(self.metrics_backend, tags={"operation": "batch_resolve"})
        metrics.start_timer("batch_resolve")

        try:
            logger.debug(f"Starting batch resolution of {len(incidents)} incidents")
            result = self.repository.resolve_incidents_batch(
                list(incidents), self.prepare_for_resolution()
            )
        except Exception as e:
            metrics.end_timer("batch_resolve")
            logger.error(f"Error in batch resolution: {e}")
            raise

        total_duration = metrics.end_timer("batch_resolve")
        metrics.record("resolved_count", result.resolved_count)
        metrics.record("error_count", len(result.errors))
        metrics.record("batch_size", len(incidents))
        metrics.record("total_duration_ms", total_duration)

        logger.info(
            f"Batch resolution completed: {result.resolved_count}/{len(incidents)} resolved "
            f"in {total_duration:.1f}ms"
        )
        return result

    def validate(self, incident: Any) -> bool:
        """Structural sanity check, used to keep malformed rows out of a batch."""
        if not getattr(incident, "id", None) or not getattr(incident, "site_id", None):
            logger.warning("Invalid incident: missing id or site_id")
            return False

        if not getattr(incident, "start_site_alert_id", None) or not getattr(
            incident, "latest_site_alert_id", None
        ):
            logger.warning(f"Invalid incident {incident.id}: missing alert ids")
            return False

        if not getattr(incident, "started_at", None):
            logger.warning(f"Invalid incident {incident.id}: missing started_at")
            return False

        return True

    def is_in_resolution_window(self, incident: SiteIncident) -> bool:
        """Active, unprocessed and at least ``inactive_hours`` old by ``started_at``."""
        if not incident.is_active or incident.is_processed:
            return False
        age_hours = self._inactive_delta(incident.started_at).total_seconds() / 3600
        return age_hours >= self.inactive_hours

    def prepare_for_resolution(self, incident: SiteIncident | None = None) -> dict[str, Any]:
        """Field values written when an incident is closed, stamped with the resolver clock."""
        # is_processed stays False until the end notification is sent.
        return {
            "ended_at": self.clock(),
            "is_active": False,
            "is_processed": False,
        }
