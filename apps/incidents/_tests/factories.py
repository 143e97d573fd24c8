"""Helpers for building sites, alerts and incidents in database tests."""

from datetime import timedelta

from django.utils import timezone

from apps.incidents.models import Site, SiteAlert, SiteIncident


def make_site(name="Test Site") -> Site:
    return Site.objects.create(name=name)


def make_alert(site, event_date=None, **kwargs) -> SiteAlert:
    return SiteAlert.objects.create(
        site=site,
        event_date=event_date or timezone.now(),
        latitude=kwargs.pop("latitude", -3.1),
        longitude=kwargs.pop("longitude", -60.0),
        detected_by=kwargs.pop("detected_by", "VIIRS"),
        **kwargs,
    )


def make_incident(site, alert=None, **kwargs) -> SiteIncident:
    alert = alert or make_alert(site)
    incident = SiteIncident.objects.create(
        site=site,
        start_site_alert=alert,
        latest_site_alert=alert,
        **kwargs,
    )
    SiteAlert.objects.filter(pk=alert.pk).update(site_incident=incident, is_processed=True)
    return incident


def age_incident(incident, hours, started_hours=None) -> SiteIncident:
    """
    Push an incident's last activity (and start) into the past.

    ``update()`` skips ``auto_now``, so the timestamps stick.
    """
    now = timezone.now()
    SiteIncident.objects.filter(pk=incident.pk).update(
        updated_at=now - timedelta(hours=hours),
        started_at=now - timedelta(hours=started_hours if started_hours is not None else hours),
    )
    incident.refresh_from_db()
    return incident
