"""
Management command to run the site incident manager.

Links SiteAlerts that have no incident yet, then closes incidents that
have gone quiet.

Usage:
    # Link unassociated alerts and run the sweep
    python manage.py manage_incidents

    # Only link unassociated alerts (at most 200)
    python manage.py manage_incidents --link-only --batch-size 200

    # Only close inactive incidents
    python manage.py manage_incidents --sweep-only

    # Output as JSON
    python manage.py manage_incidents --json
"""

import json

from django.core.management.base import BaseCommand, CommandError

from apps.incidents.errors import IncidentError
from apps.incidents.metrics import InMemoryBackend
from apps.incidents.services import SiteIncidentService


class Command(BaseCommand):
    help = "Link unassociated site alerts and close inactive incidents"

    def add_arguments(self, parser):
        mode = parser.add_mutually_exclusive_group()
        mode.add_argument(
            "--link-only",
            action="store_true",
            help="Only link alerts that have no incident.",
        )
        mode.add_argument(
            "--sweep-only",
            action="store_true",
            help="Only close inactive incidents.",
        )
        parser.add_argument(
            "--batch-size",
            type=int,
            help="Maximum number of unassociated alerts to link (default: INCIDENT_MANAGER_BATCH_SIZE).",
        )
        parser.add_argument(
            "--json",
            action="store_true",
            dest="json_output",
            help="Output result as JSON.",
        )

    def handle(self, *args, **options):
        batch_size = options.get("batch_size")
        if batch_size is not None and batch_size <= 0:
            raise CommandError("--batch-size must be a positive integer.")

        # JSON output reports per-operation timings, so keep them in memory.
        metrics = InMemoryBackend() if options["json_output"] else None
        service = SiteIncidentService(metrics_backend=metrics)
        try:
            if options["link_only"]:
                stats = service.link_unassociated_alerts(batch_size).to_dict()
            elif options["sweep_only"]:
                stats = {"incidents_resolved": service.resolve_inactive_incidents()}
            else:
                stats = service.run_incident_manager(batch_size=batch_size)
        except IncidentError as e:
            raise CommandError(str(e)) from e

        if options["json_output"]:
            stats["timings_ms"] = self._total_timings(metrics)
            self.stdout.write(json.dumps(stats, indent=2, default=str))
            return

        self._print_stats(stats)

    def _total_timings(self, metrics):
        totals = {}
        for name, value_ms in metrics.timings:
            totals[name] = totals.get(name, 0.0) + value_ms
        return {name: round(total, 1) for name, total in totals.items()}

    def _print_stats(self, stats):
        self.stdout.write(self.style.HTTP_INFO("Site Incident Manager"))

        if "found" in stats:
            self.stdout.write(f"  Unassociated alerts found: {stats['found']}")
            self.stdout.write(f"  Alerts processed: {stats['processed']}")
        if "unlinked_alerts_found" in stats:
            self.stdout.write(f"  Unassociated alerts found: {stats['unlinked_alerts_found']}")
            self.stdout.write(f"  Alerts processed: {stats['alerts_processed']}")
        if "incidents_resolved" in stats:
            self.stdout.write(f"  Incidents resolved: {stats['incidents_resolved']}")
        if "duration_ms" in stats:
            self.stdout.write(f"  Duration: {stats['duration_ms']:.1f} ms")

        for error in stats.get("errors", []):
            self.stdout.write(self.style.ERROR(f"  Alert {error['id']}: {error['error']}"))
        if stats.get("sweep_error"):
            self.stdout.write(self.style.ERROR(f"  Sweep failed: {stats['sweep_error']}"))

        if stats.get("errors") or stats.get("sweep_error"):
            self.stdout.write(self.style.WARNING("Finished with errors."))
        else:
            self.stdout.write(self.style.SUCCESS("Done."))
