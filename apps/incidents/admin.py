"""Admin configuration for site incident models."""

from django.contrib import admin
from django.utils.html import format_html
from django_object_actions import DjangoObjectActions
from django_object_actions import action as object_action

from apps.incidents.errors import IncidentError
from apps.incidents.models import ReviewStatus, Site, SiteAlert, SiteIncident
from apps.incidents.services import SiteIncidentService


def _badge(color: str, text: str):
    return format_html(
        '<span style="background-color: {}; color: white; padding: 3px 8px; '
        'border-radius: 3px; font-size: 11px;">{}</span>',
        color,
        text,
    )


class SiteAlertInline(admin.TabularInline):
    """Inline display of alerts within an incident."""

    model = SiteAlert
    fk_name = "site_incident"
    extra = 0
    readonly_fields = [
        "event_date",
        "latitude",
        "longitude",
        "confidence",
        "detected_by",
        "is_processed",
    ]
    fields = ["event_date", "confidence", "detected_by", "latitude", "longitude", "is_processed"]
    ordering = ["event_date"]
    can_delete = False
    show_change_link = True

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Site)
class SiteAdmin(admin.ModelAdmin):
    list_display = ["name", "id", "created_at"]
    search_fields = ["name", "id"]


@admin.register(SiteAlert)
class SiteAlertAdmin(admin.ModelAdmin):
    """Admin for SiteAlert model."""

    list_display = [
        "id",
        "site",
        "event_date",
        "confidence",
        "detected_by",
        "incident_link",
        "is_processed",
    ]
    list_filter = ["is_processed", "confidence", "detected_by"]
    search_fields = ["id", "site__name", "site_incident__id"]
    readonly_fields = ["created_at"]
    date_hierarchy = "event_date"

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("site", "site_incident")

    @admin.display(description="Incident")
    def incident_link(self, obj):
        if obj.site_incident_id:
            return format_html(
                '<a href="/admin/incidents/siteincident/{}/change/">{}</a>',
                obj.site_incident_id,
                str(obj.site_incident_id)[:8],
            )
        return "-"


@admin.register(SiteIncident)
class SiteIncidentAdmin(DjangoObjectActions, admin.ModelAdmin):
    """Admin for SiteIncident model."""

    list_display = [
        "id",
        "site",
        "state_badge",
        "review_badge",
        "alert_count_display",
        "started_at",
        "ended_at",
    ]
    list_filter = ["is_active", "is_processed", "review_status"]
    search_fields = ["id", "site__name"]
    # review_status only changes through the transition-checked service.
    readonly_fields = [
        "site",
        "review_status",
        "start_site_alert",
        "latest_site_alert",
        "end_site_alert",
        "started_at",
        "ended_at",
        "is_active",
        "is_processed",
        "created_at",
        "updated_at",
        "alert_count_display",
    ]
    date_hierarchy = "started_at"
    inlines = [SiteAlertInline]
    actions = ["mark_reviewed_selected"]
    change_actions = ["close_incident"]

    fieldsets = [
        (None, {"fields": ["site", "review_status"]}),
        (
            "Lifecycle",
            {"fields": ["is_active", "is_processed", "started_at", "ended_at"]},
        ),
        (
            "Alerts",
            {
                "fields": [
                    "start_site_alert",
                    "latest_site_alert",
                    "end_site_alert",
                    "alert_count_display",
                ]
            },
        ),
        ("Timestamps", {"fields": ["created_at", "updated_at"]}),
    ]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("site")

    @admin.action(description="Mark selected incidents as reviewed")
    def mark_reviewed_selected(self, request, queryset):
        service = SiteIncidentService()
        count = 0
        for incident in queryset.exclude(review_status=ReviewStatus.REVIEWED):
            try:
                service.update_review_status(incident.id, ReviewStatus.REVIEWED)
                count += 1
            except IncidentError as e:
                self.message_user(request, f"Incident {incident.id}: {e}", level="warning")
        self.message_user(request, f"{count} incident(s) marked reviewed.")

    @object_action(label="Close", description="Close this incident now")
    def close_incident(self, request, obj):
        if not obj.is_active:
            self.message_user(request, "Already closed.", level="warning")
            return
        SiteIncidentService().close_incident(obj.id)
        self.message_user(request, f"Incident {obj.id} closed.")

    @admin.display(description="State")
    def state_badge(self, obj):
        if obj.is_active:
            return _badge("#dc3545", "ACTIVE")
        return _badge("#6c757d", "CLOSED")

    @admin.display(description="Review")
    def review_badge(self, obj):
        colors = {
            ReviewStatus.TO_REVIEW: "#ffc107",
            ReviewStatus.IN_REVIEW: "#17a2b8",
            ReviewStatus.REVIEWED: "#28a745",
            ReviewStatus.ARCHIVED: "#6c757d",
        }
        return _badge(colors.get(obj.review_status, "#6c757d"), obj.get_review_status_display())

    @admin.display(description="Alerts")
    def alert_count_display(self, obj):
        return obj.site_alerts.count()
