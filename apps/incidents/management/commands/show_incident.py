"""
Management command to show one site incident with its alerts.

Usage:
    python manage.py show_incident <incident_id>
    python manage.py show_incident <incident_id> --json
"""

import json

from django.core.management.base import BaseCommand, CommandError

from apps.incidents.errors import IncidentError
from apps.incidents.serializers import serialize_incident_detail
from apps.incidents.services import SiteIncidentService
from apps.incidents.state import get_lifecycle_state


class Command(BaseCommand):
    help = "Show a site incident, its lifecycle state and its alerts"

    def add_arguments(self, parser):
        parser.add_argument("incident_id", type=str, help="Incident id (UUID)")
        parser.add_argument(
            "--json",
            action="store_true",
            dest="json_output",
            help="Output result as JSON.",
        )

    def handle(self, *args, **options):
        try:
            incident = SiteIncidentService().get_incident_detail(options["incident_id"])
        except IncidentError as e:
            raise CommandError(str(e)) from e

        if options["json_output"]:
            data = serialize_incident_detail(incident)
            data["lifecycle_state"] = get_lifecycle_state(incident).value
            self.stdout.write(json.dumps(data, indent=2))
            return

        self.stdout.write(self.style.HTTP_INFO(f"Site Incident: {incident.id}"))
        self.stdout.write(f"  Site: {incident.site.name} ({incident.site_id})")
        self.stdout.write(f"  State: {get_lifecycle_state(incident).value}")
        self.stdout.write(f"  Review status: {incident.review_status}")
        self.stdout.write(f"  Started: {incident.started_at:%Y-%m-%d %H:%M:%S}")
        if incident.ended_at:
            self.stdout.write(f"  Ended: {incident.ended_at:%Y-%m-%d %H:%M:%S}")
        self.stdout.write(f"  Last activity: {incident.updated_at:%Y-%m-%d %H:%M:%S}")
        self.stdout.write("")

        alerts = list(incident.site_alerts.all())
        self.stdout.write(f"Alerts ({len(alerts)}):")
        for alert in alerts:
            markers = []
            if alert.id == incident.start_site_alert_id:
                markers.append("start")
            if alert.id == incident.latest_site_alert_id:
                markers.append("latest")
            if alert.id == incident.end_site_alert_id:
                markers.append("end")
            suffix = f" [{', '.join(markers)}]" if markers else ""
            self.stdout.write(
                f"  - {alert.event_date:%Y-%m-%d %H:%M:%S} {alert.confidence:<7} "
                f"{alert.detected_by or '-'}{suffix}"
            )
