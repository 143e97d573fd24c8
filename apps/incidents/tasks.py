"""Celery tasks for the incident lifecycle.

- process_site_alert: called by the ingestion job once per new SiteAlert
- resolve_inactive_incidents: the sweep on its own
- run_incident_manager: link unassociated alerts, then sweep (scheduled by beat,
  see CELERY_BEAT_SCHEDULE in config/settings.py)
"""

from __future__ import annotations

import logging
from typing import Any

from celery import shared_task
from django.conf import settings

from apps.incidents.errors import StorageError

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    autoretry_for=(StorageError,),
    retry_backoff=True,
    retry_jitter=True,
    max_retries=3,
)
def process_site_alert(self, alert_id: str) -> dict[str, Any]:
    """Group one newly-persisted SiteAlert into its site's incident."""
    if not getattr(settings, "ENABLE_INCIDENT_PROCESSING", True):
        logger.info("Incident processing is disabled, skipping incident processing")
        return {"alert_id": alert_id, "status": "skipped"}

    from apps.incidents.repository import DjangoIncidentRepository
    from apps.incidents.services import SiteIncidentService

    repository = DjangoIncidentRepository()
    alert = repository.get_alert_by_id(alert_id)
    if alert is None:
        logger.warning(f"SiteAlert {alert_id} not found, nothing to process")
        return {"alert_id": alert_id, "status": "not_found"}

    incident = SiteIncidentService(repository=repository).process_new_alert(alert)
    return {
        "alert_id": str(alert.id),
        "status": "processed",
        "incident_id": str(incident.id),
    }


@shared_task(
    bind=True,
    autoretry_for=(StorageError,),
    retry_backoff=True,
    retry_jitter=True,
    max_retries=3,
)
def resolve_inactive_incidents(self) -> dict[str, Any]:
    """Close incidents that have gone quiet."""
    from apps.incidents.services import SiteIncidentService

    resolved = SiteIncidentService().resolve_inactive_incidents()
    return {"incidents_resolved": resolved}


@shared_task
def run_incident_manager(batch_size: int | None = None) -> dict[str, Any]:
    """Link unassociated alerts and close inactive incidents."""
    from apps.incidents.services import SiteIncidentService

    return SiteIncidentService().run_incident_manager(batch_size=batch_size)
