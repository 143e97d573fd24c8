"""
URL configuration for the incidents app.
"""

from django.urls import path

from apps.incidents.views import (
    ActiveIncidentView,
    IncidentDetailView,
    IncidentHistoryView,
    IncidentManagerView,
    ReviewStatusView,
)

app_name = "incidents"

urlpatterns = [
    path("cron/manager/", IncidentManagerView.as_view(), name="manager"),
    path("site/<str:site_id>/active/", ActiveIncidentView.as_view(), name="site_active"),
    path("site/<str:site_id>/history/", IncidentHistoryView.as_view(), name="site_history"),
    path("<str:incident_id>/", IncidentDetailView.as_view(), name="detail"),
    path(
        "<str:incident_id>/review-status/",
        ReviewStatusView.as_view(),
        name="review_status",
    ),
]
