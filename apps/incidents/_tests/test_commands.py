"""Tests for incident management commands."""

import json
import uuid
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from apps.incidents._tests.factories import age_incident, make_alert, make_incident, make_site
from apps.incidents.models import SiteIncident


class ManageIncidentsCommandTests(TestCase):
    def setUp(self):
        self.site = make_site()

    def test_full_run(self):
        make_alert(self.site)
        age_incident(make_incident(make_site("quiet")), hours=7)
        out = StringIO()

        call_command("manage_incidents", stdout=out)

        output = out.getvalue()
        self.assertIn("Alerts processed: 1", output)
        self.assertIn("Incidents resolved: 1", output)
        self.assertIn("Done.", output)

    def test_link_only_json(self):
        make_alert(self.site)
        stale = age_incident(make_incident(make_site("quiet")), hours=7)
        out = StringIO()

        call_command("manage_incidents", "--link-only", "--json", stdout=out)

        data = json.loads(out.getvalue())
        self.assertEqual(data["found"], 1)
        self.assertEqual(data["processed"], 1)
        self.assertIn("process_new_alert", data["timings_ms"])
        self.assertTrue(SiteIncident.objects.get(pk=stale.pk).is_active)

    def test_sweep_only(self):
        alert = make_alert(self.site)
        age_incident(make_incident(make_site("quiet")), hours=7)
        out = StringIO()

        call_command("manage_incidents", "--sweep-only", "--json", stdout=out)

        data = json.loads(out.getvalue())
        self.assertEqual(data["incidents_resolved"], 1)
        self.assertIn("resolve_inactive_incidents", data["timings_ms"])
        self.assertIn("batch_resolve", data["timings_ms"])
        alert.refresh_from_db()
        self.assertIsNone(alert.site_incident_id)

    def test_rejects_bad_batch_size(self):
        with self.assertRaises(CommandError):
            call_command("manage_incidents", "--batch-size", "0", stdout=StringIO())


class ShowIncidentCommandTests(TestCase):
    def setUp(self):
        self.incident = make_incident(make_site("Pantanal"))

    def test_text_output(self):
        out = StringIO()

        call_command("show_incident", str(self.incident.id), stdout=out)

        output = out.getvalue()
        self.assertIn(str(self.incident.id), output)
        self.assertIn("Pantanal", output)
        self.assertIn("State: CREATED", output)
        self.assertIn("[start, latest]", output)

    def test_json_output(self):
        out = StringIO()

        call_command("show_incident", str(self.incident.id), "--json", stdout=out)

        data = json.loads(out.getvalue())
        self.assertEqual(data["id"], str(self.incident.id))
        self.assertEqual(data["lifecycle_state"], "CREATED")
        self.assertEqual(len(data["site_alerts"]), 1)

    def test_not_found(self):
        with self.assertRaises(CommandError):
            call_command("show_incident", str(uuid.uuid4()), stdout=StringIO())
