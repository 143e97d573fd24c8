"""Tests for the Django ORM incident repository."""

import uuid
from datetime import timedelta
from unittest.mock import patch

from django.db import DatabaseError
from django.test import TestCase
from django.utils import timezone

from apps.incidents._tests.factories import age_incident, make_alert, make_incident, make_site
from apps.incidents._tests.fakes import FakeClock
from apps.incidents.dtos import CreateIncidentData
from apps.incidents.errors import (
    ActiveIncidentConflict,
    IncidentNotFound,
    InvalidArgument,
    InvalidStateTransition,
    InvalidTimestamp,
    NotFound,
    SiteNotFound,
    StorageError,
)
from apps.incidents.models import ReviewStatus, SiteAlert, SiteIncident
from apps.incidents.repository import DjangoIncidentRepository, normalize_id


class NormalizeIdTests(TestCase):
    def test_accepts_uuid_and_uuid_string(self):
        value = uuid.uuid4()

        self.assertEqual(normalize_id(value), value)
        self.assertEqual(normalize_id(f"  {value}  "), value)

    def test_rejects_blank_and_malformed(self):
        for bad in [None, "", "   ", "not-a-uuid", 42]:
            with self.subTest(value=bad):
                with self.assertRaises(InvalidArgument):
                    normalize_id(bad, "site_id")


class FindAndCreateTests(TestCase):
    def setUp(self):
        self.repo = DjangoIncidentRepository()
        self.site = make_site()
        self.alert = make_alert(self.site)

    def _data(self, alert=None):
        alert = alert or self.alert
        return CreateIncidentData(
            site_id=self.site.id,
            start_alert_id=alert.id,
            latest_alert_id=alert.id,
            started_at=timezone.now(),
        )

    def test_find_active_none_when_no_incident(self):
        self.assertIsNone(self.repo.find_active_by_site_id(self.site.id))

    def test_find_active_ignores_closed(self):
        make_incident(self.site, is_active=False, ended_at=timezone.now())

        self.assertIsNone(self.repo.find_active_by_site_id(str(self.site.id)))

    def test_create_incident(self):
        incident = self.repo.create_incident(self._data())

        self.assertTrue(incident.is_active)
        self.assertFalse(incident.is_processed)
        self.assertEqual(incident.review_status, ReviewStatus.TO_REVIEW)
        self.assertEqual(incident.start_site_alert_id, self.alert.id)
        self.assertEqual(incident.latest_site_alert_id, self.alert.id)
        self.assertEqual(self.repo.find_active_by_site_id(self.site.id), incident)

    def test_second_active_incident_raises_conflict(self):
        self.repo.create_incident(self._data())

        with self.assertRaises(ActiveIncidentConflict):
            self.repo.create_incident(self._data(make_alert(self.site)))

        # The savepoint keeps the test transaction usable.
        self.assertEqual(self.repo.count_active_by_site(self.site.id), 1)

    def test_create_rejects_missing_fields(self):
        with self.assertRaises(InvalidArgument):
            self.repo.create_incident(None)
        with self.assertRaises(InvalidArgument):
            self.repo.create_incident(
                CreateIncidentData(
                    site_id=self.site.id,
                    start_alert_id="",
                    latest_alert_id=self.alert.id,
                    started_at=timezone.now(),
                )
            )
        with self.assertRaises(InvalidArgument):
            self.repo.create_incident(
                CreateIncidentData(
                    site_id=self.site.id,
                    start_alert_id=self.alert.id,
                    latest_alert_id=self.alert.id,
                    started_at="yesterday",
                )
            )

    def test_lock_site_missing_site(self):
        with self.assertRaises(SiteNotFound):
            self.repo.lock_site(uuid.uuid4())

    def test_site_exists(self):
        self.assertTrue(self.repo.site_exists(self.site.id))
        self.assertFalse(self.repo.site_exists(uuid.uuid4()))

    def test_database_failure_becomes_storage_error(self):
        with patch.object(SiteIncident.objects, "filter", side_effect=DatabaseError("db down")):
            with self.assertRaises(StorageError):
                self.repo.find_active_by_site_id(self.site.id)


class AssociationTests(TestCase):
    def setUp(self):
        self.repo = DjangoIncidentRepository()
        self.site = make_site()
        self.incident = age_incident(make_incident(self.site), hours=2)

    def test_associate_alert_moves_latest_and_touches_updated_at(self):
        before = self.incident.updated_at
        alert = make_alert(self.site)

        incident = self.repo.associate_alert(self.incident.id, alert.id)

        self.assertEqual(incident.latest_site_alert_id, alert.id)
        self.assertGreater(incident.updated_at, before)
        self.assertNotEqual(incident.start_site_alert_id, alert.id)

    def test_associate_alert_missing_alert(self):
        with self.assertRaises(NotFound):
            self.repo.associate_alert(self.incident.id, uuid.uuid4())

    def test_associate_alert_missing_incident(self):
        alert = make_alert(self.site)

        with self.assertRaises(IncidentNotFound):
            self.repo.associate_alert(uuid.uuid4(), alert.id)

    def test_mark_alert_associated(self):
        alert = make_alert(self.site)

        self.repo.mark_alert_associated(alert.id, self.incident.id)

        alert.refresh_from_db()
        self.assertEqual(alert.site_incident_id, self.incident.id)
        self.assertTrue(alert.is_processed)

    def test_mark_alert_associated_missing_alert(self):
        with self.assertRaises(NotFound):
            self.repo.mark_alert_associated(uuid.uuid4(), self.incident.id)


class FindInactiveTests(TestCase):
    def setUp(self):
        self.repo = DjangoIncidentRepository()

    def test_selects_active_unprocessed_started_before_cutoff(self):
        old = age_incident(make_incident(make_site("old")), hours=7)
        age_incident(make_incident(make_site("recent")), hours=5)
        age_incident(make_incident(make_site("processed"), is_processed=True), hours=7)
        closed = make_incident(make_site("closed"), is_active=False, ended_at=timezone.now())
        age_incident(closed, hours=9)

        found = self.repo.find_inactive_incidents(6)

        self.assertEqual([i.id for i in found], [old.id])

    def test_orders_oldest_first(self):
        newer = age_incident(make_incident(make_site("a")), hours=7)
        older = age_incident(make_incident(make_site("b")), hours=10)

        found = self.repo.find_inactive_incidents(6)

        self.assertEqual([i.id for i in found], [older.id, newer.id])

    def test_rejects_non_positive_threshold(self):
        for bad in [0, -1, "6", None, True]:
            with self.subTest(value=bad):
                with self.assertRaises(InvalidArgument):
                    self.repo.find_inactive_incidents(bad)


class ResolveBatchTests(TestCase):
    def setUp(self):
        self.repo = DjangoIncidentRepository()
        self.incidents = [make_incident(make_site(f"site-{n}")) for n in range(5)]

    def test_closes_every_incident(self):
        result = self.repo.resolve_incidents_batch(self.incidents)

        self.assertEqual(result.resolved_count, 5)
        self.assertFalse(result.has_errors)
        self.assertEqual(result.metrics.batch_size, 5)
        for incident in SiteIncident.objects.all():
            self.assertFalse(incident.is_active)
            self.assertFalse(incident.is_processed)
            self.assertIsNotNone(incident.ended_at)
            self.assertEqual(incident.end_site_alert_id, incident.latest_site_alert_id)

    def test_closing_twice_is_a_no_op(self):
        self.repo.resolve_incidents_batch(self.incidents[:1])
        first = SiteIncident.objects.get(pk=self.incidents[0].pk)

        result = self.repo.resolve_incidents_batch(self.incidents[:1])
        second = SiteIncident.objects.get(pk=self.incidents[0].pk)

        self.assertEqual(result.resolved_count, 0)
        self.assertEqual(result.skipped_count, 1)
        self.assertEqual(first.ended_at, second.ended_at)

    def test_one_failure_does_not_stop_the_batch(self):
        failing_id = self.incidents[2].id
        close_one = self.repo._close_one

        def flaky_close(incident_id, values):
            if incident_id == failing_id:
                raise StorageError("write failed")
            return close_one(incident_id, values)

        with patch.object(self.repo, "_close_one", side_effect=flaky_close):
            result = self.repo.resolve_incidents_batch(self.incidents)

        self.assertEqual(result.resolved_count, 4)
        self.assertEqual(len(result.errors), 1)
        self.assertEqual(result.errors[0].incident_id, failing_id)
        self.assertTrue(SiteIncident.objects.get(pk=failing_id).is_active)
        self.assertEqual(SiteIncident.objects.filter(is_active=False).count(), 4)

    def test_empty_batch_rejected(self):
        with self.assertRaises(InvalidArgument):
            self.repo.resolve_incidents_batch([])

    def test_close_incident_returns_fresh_row(self):
        incident = self.repo.close_incident(self.incidents[0].id)

        self.assertFalse(incident.is_active)
        self.assertIsNotNone(incident.ended_at)


class ReadAndUpdateTests(TestCase):
    def setUp(self):
        self.repo = DjangoIncidentRepository()
        self.site = make_site()
        self.incident = make_incident(self.site)

    def test_update_review_status(self):
        incident = self.repo.update_incident(self.incident.id, review_status=ReviewStatus.REVIEWED)

        self.assertEqual(incident.review_status, ReviewStatus.REVIEWED)
        self.incident.refresh_from_db()
        self.assertEqual(self.incident.review_status, ReviewStatus.REVIEWED)

    def test_update_latest_alert_by_id(self):
        alert = make_alert(self.site)

        incident = self.repo.update_incident(self.incident.id, latest_site_alert_id=alert.id)

        incident.refresh_from_db()
        self.assertEqual(incident.latest_site_alert_id, alert.id)

    def test_update_rejects_unknown_fields_and_statuses(self):
        with self.assertRaises(InvalidArgument):
            self.repo.update_incident(self.incident.id, site_id=uuid.uuid4())
        with self.assertRaises(InvalidArgument):
            self.repo.update_incident(self.incident.id, review_status="done")
        with self.assertRaises(InvalidArgument):
            self.repo.update_incident(self.incident.id)

    def test_update_missing_incident(self):
        with self.assertRaises(IncidentNotFound):
            self.repo.update_incident(uuid.uuid4(), is_processed=True)

    def test_get_incident_by_id(self):
        self.assertEqual(self.repo.get_incident_by_id(str(self.incident.id)), self.incident)
        self.assertIsNone(self.repo.get_incident_by_id(uuid.uuid4()))

    def test_get_incident_detail_loads_alerts_in_event_order(self):
        now = timezone.now()
        later = make_alert(self.site, event_date=now + timedelta(minutes=10), site_incident=self.incident)
        earlier = make_alert(self.site, event_date=now - timedelta(hours=1), site_incident=self.incident)

        incident = self.repo.get_incident_detail(self.incident.id)

        alert_ids = [a.id for a in incident.site_alerts.all()]
        self.assertEqual(alert_ids[0], earlier.id)
        self.assertEqual(alert_ids[-1], later.id)
        self.assertEqual(incident.site.id, self.site.id)

    def test_find_by_date_range(self):
        now = timezone.now()

        inside = self.repo.find_by_date_range(self.site.id, now - timedelta(hours=1), now + timedelta(hours=1))
        outside = self.repo.find_by_date_range(self.site.id, now + timedelta(hours=1), now + timedelta(hours=2))

        self.assertEqual([i.id for i in inside], [self.incident.id])
        self.assertEqual(outside, [])

    def test_find_unlinked_alerts_oldest_first(self):
        now = timezone.now()
        newer = make_alert(self.site, event_date=now)
        older = make_alert(self.site, event_date=now - timedelta(hours=3))

        found = self.repo.find_unlinked_alerts(10)

        self.assertEqual([a.id for a in found], [older.id, newer.id])
        self.assertEqual(len(self.repo.find_unlinked_alerts(1)), 1)
        self.assertEqual(SiteAlert.objects.filter(site_incident__isnull=True).count(), 2)

    def test_find_unlinked_alerts_rejects_bad_limit(self):
        with self.assertRaises(InvalidArgument):
            self.repo.find_unlinked_alerts(0)


class LifecycleUpdateTests(TestCase):
    def setUp(self):
        self.repo = DjangoIncidentRepository()
        self.incident = make_incident(make_site())

    def test_closed_incident_cannot_be_reopened(self):
        self.repo.close_incident(self.incident.id)

        with self.assertRaises(InvalidStateTransition):
            self.repo.update_incident(self.incident.id, is_active=True)

        self.incident.refresh_from_db()
        self.assertFalse(self.incident.is_active)
        self.assertIsNotNone(self.incident.ended_at)

    def test_closed_incident_cannot_be_reopened_even_without_ended_at(self):
        self.repo.close_incident(self.incident.id)

        with self.assertRaises(InvalidArgument):
            self.repo.update_incident(self.incident.id, is_active=True, ended_at=None)

        self.assertFalse(SiteIncident.objects.get(pk=self.incident.pk).is_active)

    def test_closing_requires_ended_at(self):
        with self.assertRaises(InvalidArgument) as ctx:
            self.repo.update_incident(self.incident.id, is_active=False)

        self.assertNotIsInstance(ctx.exception, StorageError)
        self.assertTrue(SiteIncident.objects.get(pk=self.incident.pk).is_active)

    def test_closing_with_ended_at(self):
        ended_at = timezone.now()

        incident = self.repo.update_incident(self.incident.id, is_active=False, ended_at=ended_at)

        self.assertFalse(incident.is_active)
        self.assertEqual(SiteIncident.objects.get(pk=self.incident.pk).ended_at, ended_at)

    def test_end_notification_marks_closing_incident_closed(self):
        self.repo.close_incident(self.incident.id)

        incident = self.repo.update_incident(self.incident.id, is_processed=True)

        self.assertTrue(incident.is_processed)
        self.assertFalse(SiteIncident.objects.get(pk=self.incident.pk).is_active)

    def test_ended_at_before_started_at_rejected(self):
        with self.assertRaises(InvalidTimestamp):
            self.repo.update_incident(
                self.incident.id,
                is_active=False,
                ended_at=self.incident.started_at - timedelta(minutes=1),
            )

    def test_open_incident_cannot_get_ended_at(self):
        with self.assertRaises(InvalidArgument):
            self.repo.update_incident(self.incident.id, ended_at=timezone.now())

    def test_flags_must_be_booleans(self):
        with self.assertRaises(InvalidArgument):
            self.repo.update_incident(self.incident.id, is_processed="yes")


class InjectedClockTests(TestCase):
    def setUp(self):
        self.site = make_site()
        self.incident = make_incident(self.site)
        self.clock = FakeClock(self.incident.started_at + timedelta(days=1))
        self.repo = DjangoIncidentRepository(clock=self.clock)

    def test_writes_use_the_clock(self):
        alert = make_alert(self.site)

        self.assertEqual(self.repo.associate_alert(self.incident.id, alert.id).updated_at, self.clock())
        self.clock.advance(minutes=5)
        self.repo.update_incident(self.incident.id, review_status=ReviewStatus.IN_REVIEW)
        self.assertEqual(SiteIncident.objects.get(pk=self.incident.pk).updated_at, self.clock())
        self.clock.advance(minutes=5)
        closed = self.repo.close_incident(self.incident.id)
        self.assertEqual(closed.ended_at, self.clock())
        self.assertEqual(closed.updated_at, self.clock())

    def test_inactive_cutoff_uses_the_clock(self):
        clock = FakeClock(self.incident.started_at + timedelta(hours=5))
        repo = DjangoIncidentRepository(clock=clock)
        self.assertEqual(repo.find_inactive_incidents(6), [])

        clock.advance(hours=2)

        self.assertEqual([i.id for i in repo.find_inactive_incidents(6)], [self.incident.id])

    def test_close_with_explicit_fields(self):
        ended_at = self.clock() + timedelta(minutes=1)

        result = self.repo.resolve_incidents_batch(
            [self.incident], {"ended_at": ended_at, "is_active": False, "is_processed": False}
        )

        self.assertEqual(result.resolved_count, 1)
        closed = SiteIncident.objects.get(pk=self.incident.pk)
        self.assertEqual(closed.ended_at, ended_at)
        self.assertEqual(closed.end_site_alert_id, closed.latest_site_alert_id)

    def test_bad_closing_fields_rejected(self):
        for fields in [
            {"ended_at": self.clock(), "is_active": True},
            {"is_active": False},
            {"ended_at": self.clock(), "review_status": ReviewStatus.ARCHIVED},
        ]:
            with self.subTest(fields=fields):
                with self.assertRaises(InvalidArgument):
                    self.repo.resolve_incidents_batch([self.incident], fields)
        self.assertTrue(SiteIncident.objects.get(pk=self.incident.pk).is_active)
