import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Site",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("name", models.CharField(blank=True, default="", max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="SiteAlert",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                (
                    "event_date",
                    models.DateTimeField(db_index=True, help_text="When the fire was detected."),
                ),
                ("latitude", models.FloatField(default=0.0)),
                ("longitude", models.FloatField(default=0.0)),
                (
                    "confidence",
                    models.CharField(
                        choices=[("high", "High"), ("medium", "Medium"), ("low", "Low")],
                        default="medium",
                        max_length=20,
                    ),
                ),
                (
                    "detected_by",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Satellite or provider that produced the detection.",
                        max_length=100,
                    ),
                ),
                (
                    "is_processed",
                    models.BooleanField(
                        default=False,
                        help_text="Set once the alert has been linked to an incident.",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "site",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="alerts",
                        to="incidents.site",
                    ),
                ),
            ],
            options={
                "ordering": ["-event_date"],
            },
        ),
        migrations.CreateModel(
            name="SiteIncident",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4, editable=False, primary_key=True, serialize=False
                    ),
                ),
                ("started_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("ended_at", models.DateTimeField(blank=True, null=True)),
                ("is_active", models.BooleanField(default=True)),
                (
                    "is_processed",
                    models.BooleanField(
                        default=False,
                        help_text="Whether the notification pipeline has acted on the last open/close transition.",
                    ),
                ),
                (
                    "review_status",
                    models.CharField(
                        choices=[
                            ("to_review", "To review"),
                            ("in_review", "In review"),
                            ("reviewed", "Reviewed"),
                            ("archived", "Archived"),
                        ],
                        db_index=True,
                        default="to_review",
                        max_length=20,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "site",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="incidents",
                        to="incidents.site",
                    ),
                ),
                (
                    "start_site_alert",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="incidents.sitealert",
                    ),
                ),
                (
                    "latest_site_alert",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="incidents.sitealert",
                    ),
                ),
                (
                    "end_site_alert",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="incidents.sitealert",
                    ),
                ),
            ],
            options={
                "ordering": ["-started_at"],
                "indexes": [
                    models.Index(fields=["site", "is_active"], name="incidents_site_active_idx"),
                    models.Index(
                        fields=["is_active", "is_processed", "started_at"],
                        name="incidents_sweep_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("is_active", True)),
                        fields=("site",),
                        name="unique_active_incident_per_site",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("is_active", True), ("ended_at__isnull", False), _connector="OR"),
                        name="closed_incident_has_ended_at",
                    ),
                ],
            },
        ),
        migrations.AddField(
            model_name="sitealert",
            name="site_incident",
            field=models.ForeignKey(
                blank=True,
                help_text="Incident this alert is grouped into.",
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="site_alerts",
                to="incidents.siteincident",
            ),
        ),
        migrations.AddIndex(
            model_name="sitealert",
            index=models.Index(fields=["site", "event_date"], name="incidents_alert_site_evt_idx"),
        ),
        migrations.AddIndex(
            model_name="sitealert",
            index=models.Index(fields=["site_incident"], name="incidents_alert_incident_idx"),
        ),
    ]
