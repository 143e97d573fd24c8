"""Tests for incident JSON endpoints."""

import json
import uuid
from datetime import timedelta
from unittest.mock import patch

from django.test import Client, TestCase, override_settings
from django.utils import timezone

from apps.incidents._tests.factories import age_incident, make_alert, make_incident, make_site
from apps.incidents.errors import StorageError
from apps.incidents.models import ReviewStatus, SiteIncident


class IncidentDetailViewTests(TestCase):
    def setUp(self):
        self.client = Client()
        self.site = make_site("Chapada")
        self.incident = make_incident(self.site)

    def test_detail(self):
        response = self.client.get(f"/incidents/{self.incident.id}/")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        data = body["data"]
        assert data["id"] == str(self.incident.id)
        assert data["site"]["name"] == "Chapada"
        assert data["start_site_alert"]["id"] == str(self.incident.start_site_alert_id)
        assert data["end_site_alert"] is None
        assert len(data["site_alerts"]) == 1

    def test_detail_not_found(self):
        response = self.client.get(f"/incidents/{uuid.uuid4()}/")

        assert response.status_code == 404
        assert "not found" in response.json()["error"]

    def test_detail_malformed_id(self):
        response = self.client.get("/incidents/not-a-uuid/")

        assert response.status_code == 400

    def test_storage_failure_hides_details(self):
        with patch(
            "apps.incidents.views.SiteIncidentService.get_incident_detail",
            side_effect=StorageError("connection refused on 10.0.0.5"),
        ):
            with self.assertLogs("apps.incidents.views", level="ERROR"):
                response = self.client.get(f"/incidents/{self.incident.id}/")

        assert response.status_code == 500
        assert response.json() == {"error": "Something went wrong!"}


class SiteIncidentViewsTests(TestCase):
    def setUp(self):
        self.client = Client()
        self.site = make_site()

    def test_active_empty(self):
        response = self.client.get(f"/incidents/site/{self.site.id}/active/")

        assert response.status_code == 200
        assert response.json() == []

    def test_active(self):
        incident = make_incident(self.site)

        response = self.client.get(f"/incidents/site/{self.site.id}/active/")

        assert [i["id"] for i in response.json()] == [str(incident.id)]

    def test_history(self):
        old = make_incident(self.site, is_active=False, ended_at=timezone.now())
        age_incident(old, hours=48)
        recent = make_incident(self.site)
        start = (timezone.now() - timedelta(hours=1)).isoformat()
        end = (timezone.now() + timedelta(hours=1)).isoformat()

        response = self.client.get(
            f"/incidents/site/{self.site.id}/history/", {"start": start, "end": end}
        )

        assert response.status_code == 200
        assert [i["id"] for i in response.json()] == [str(recent.id)]

    def test_history_requires_valid_range(self):
        url = f"/incidents/site/{self.site.id}/history/"

        assert self.client.get(url).status_code == 400
        assert self.client.get(url, {"start": "yesterday", "end": "today"}).status_code == 400
        response = self.client.get(
            url, {"start": "2024-07-02T00:00:00", "end": "2024-07-01T00:00:00"}
        )
        assert response.status_code == 400


class ReviewStatusViewTests(TestCase):
    def setUp(self):
        self.client = Client()
        self.incident = make_incident(make_site())
        self.url = f"/incidents/{self.incident.id}/review-status/"

    def _post(self, payload):
        return self.client.post(self.url, data=json.dumps(payload), content_type="application/json")

    def test_update(self):
        response = self._post({"status": "reviewed"})

        assert response.status_code == 200
        assert response.json()["review_status"] == "reviewed"
        self.incident.refresh_from_db()
        assert self.incident.review_status == ReviewStatus.REVIEWED

    def test_invalid_status(self):
        response = self._post({"status": "done"})

        assert response.status_code == 400
        assert "Invalid review status" in response.json()["error"]

    def test_invalid_transition(self):
        self._post({"status": "archived"})

        response = self._post({"status": "reviewed"})

        assert response.status_code == 400

    def test_missing_status_and_bad_json(self):
        assert self._post({}).status_code == 400
        response = self.client.post(self.url, data="{not json", content_type="application/json")
        assert response.status_code == 400

    def test_get_not_allowed(self):
        assert self.client.get(self.url).status_code == 405


@override_settings(CRON_KEY="")
class IncidentManagerViewTests(TestCase):
    def setUp(self):
        self.client = Client()
        self.site = make_site()

    def test_runs_manager(self):
        alert = make_alert(self.site)
        quiet = age_incident(make_incident(make_site("quiet")), hours=7)

        response = self.client.post("/incidents/cron/manager/")

        assert response.status_code == 200
        stats = response.json()["stats"]
        assert stats["alerts_processed"] == 1
        assert stats["incidents_resolved"] == 1
        alert.refresh_from_db()
        assert alert.site_incident_id is not None
        assert not SiteIncident.objects.get(pk=quiet.pk).is_active

    @override_settings(CRON_KEY="s3cret")
    def test_cron_key_required_when_configured(self):
        assert self.client.get("/incidents/cron/manager/").status_code == 403
        assert self.client.get("/incidents/cron/manager/", {"cron_key": "nope"}).status_code == 403
        assert self.client.get("/incidents/cron/manager/", {"cron_key": "s3cret"}).status_code == 200

    def test_invalid_batch_size(self):
        response = self.client.get("/incidents/cron/manager/", {"batch_size": "lots"})

        assert response.status_code == 400
