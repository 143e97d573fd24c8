"""Plain-dict renderings of incidents and alerts for JSON responses."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from apps.incidents.models import Site, SiteAlert, SiteIncident


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def serialize_site(site: Site) -> dict[str, Any]:
    return {"id": str(site.id), "name": site.name}


def serialize_alert(alert: SiteAlert | None) -> dict[str, Any] | None:
    if alert is None:
        return None
    return {
        "id": str(alert.id),
        "event_date": _iso(alert.event_date),
        "latitude": alert.latitude,
        "longitude": alert.longitude,
        "detected_by": alert.detected_by,
        "confidence": alert.confidence,
    }


def serialize_incident(incident: SiteIncident) -> dict[str, Any]:
    return {
        "id": str(incident.id),
        "site_id": str(incident.site_id),
        "start_site_alert_id": str(incident.start_site_alert_id),
        "latest_site_alert_id": str(incident.latest_site_alert_id),
        "end_site_alert_id": str(incident.end_site_alert_id) if incident.end_site_alert_id else None,
        "started_at": _iso(incident.started_at),
        "ended_at": _iso(incident.ended_at),
        "is_active": incident.is_active,
        "is_processed": incident.is_processed,
        "review_status": incident.review_status,
        "created_at": _iso(incident.created_at),
        "updated_at": _iso(incident.updated_at),
    }


def serialize_incident_detail(incident: SiteIncident) -> dict[str, Any]:
    """Incident with its site, start/latest/end alerts and every associated alert."""
    data = serialize_incident(incident)
    data.update(
        {
            "site": serialize_site(incident.site),
            "start_site_alert": serialize_alert(incident.start_site_alert),
            "latest_site_alert": serialize_alert(incident.latest_site_alert),
            "end_site_alert": serialize_alert(incident.end_site_alert),
            "site_alerts": [serialize_alert(a) for a in incident.site_alerts.all()],
        }
    )
    return data
