"""
Site, SiteAlert and SiteIncident models.

A SiteAlert is one satellite fire detection at a monitored site. Alerts that
arrive close together in time are grouped into a single SiteIncident, the
unit a human reviews and gets notified about.
"""

import uuid

from django.db import models
from django.db.models import Q
from django.utils import timezone


class ReviewStatus(models.TextChoices):
    """Human review workflow state of an incident."""

    TO_REVIEW = "to_review", "To review"
    IN_REVIEW = "in_review", "In review"
    REVIEWED = "reviewed", "Reviewed"
    ARCHIVED = "archived", "Archived"


class AlertConfidence(models.TextChoices):
    """Detection confidence reported by the satellite feed."""

    HIGH = "high", "High"
    MEDIUM = "medium", "Medium"
    LOW = "low", "Low"


class Site(models.Model):
    """A monitored geographic area or point."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name or str(self.id)


class SiteAlert(models.Model):
    """
    One fire-detection event at a site.

    Rows are produced by the external ingestion job; this app only links
    them to incidents (``site_incident``) and flags them ``is_processed``.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    site = models.ForeignKey(
        Site,
        on_delete=models.CASCADE,
        related_name="alerts",
    )
    event_date = models.DateTimeField(
        db_index=True,
        help_text="When the fire was detected.",
    )
    latitude = models.FloatField(default=0.0)
    longitude = models.FloatField(default=0.0)
    confidence = models.CharField(
        max_length=20,
        choices=AlertConfidence.choices,
        default=AlertConfidence.MEDIUM,
    )
    detected_by = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Satellite or provider that produced the detection.",
    )

    site_incident = models.ForeignKey(
        "SiteIncident",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="site_alerts",
        help_text="Incident this alert is grouped into.",
    )
    is_processed = models.BooleanField(
        default=False,
        help_text="Set once the alert has been linked to an incident.",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-event_date"]
        indexes = [
            models.Index(fields=["site", "event_date"], name="incidents_alert_site_evt_idx"),
            models.Index(fields=["site_incident"], name="incidents_alert_incident_idx"),
        ]

    def __str__(self):
        return f"Alert {self.id} at {self.site_id} ({self.event_date:%Y-%m-%d %H:%M})"


class SiteIncident(models.Model):
    """
    A grouping of temporally-correlated alerts at one site.

    Born active, extended in place while alerts keep arriving, and closed
    (never deleted) once it goes quiet. At most one incident per site is
    active at any time; the database enforces this with a partial unique
    constraint.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    site = models.ForeignKey(
        Site,
        on_delete=models.CASCADE,
        related_name="incidents",
    )

    start_site_alert = models.ForeignKey(
        SiteAlert,
        on_delete=models.PROTECT,
        related_name="+",
    )
    latest_site_alert = models.ForeignKey(
        SiteAlert,
        on_delete=models.PROTECT,
        related_name="+",
    )
    end_site_alert = models.ForeignKey(
        SiteAlert,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    started_at = models.DateTimeField(default=timezone.now)
    ended_at = models.DateTimeField(null=True, blank=True)

    is_active = models.BooleanField(default=True)
    is_processed = models.BooleanField(
        default=False,
        help_text="Whether the notification pipeline has acted on the last open/close transition.",
    )
    review_status = models.CharField(
        max_length=20,
        choices=ReviewStatus.choices,
        default=ReviewStatus.TO_REVIEW,
        db_index=True,
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-started_at"]
        indexes = [
            models.Index(fields=["site", "is_active"], name="incidents_site_active_idx"),
            models.Index(
                fields=["is_active", "is_processed", "started_at"],
                name="incidents_sweep_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["site"],
                condition=Q(is_active=True),
                name="unique_active_incident_per_site",
            ),
            models.CheckConstraint(
                condition=Q(is_active=True) | Q(ended_at__isnull=False),
                name="closed_incident_has_ended_at",
            ),
        ]

    def __str__(self):
        state = "active" if self.is_active else "closed"
        return f"[{state}] Incident {self.id} at {self.site_id}"

    @property
    def is_closed(self) -> bool:
        return not self.is_active

    @property
    def duration(self):
        end = self.ended_at or timezone.now()
        return end - self.started_at
