"""
JSON endpoints for site incidents.

GET  /incidents/<incident_id>/                      public incident detail
GET  /incidents/site/<site_id>/active/              active incident (list of 0 or 1)
GET  /incidents/site/<site_id>/history/?start=&end= incidents started in a range
POST /incidents/<incident_id>/review-status/        {"status": "reviewed"}
POST /incidents/cron/manager/?cron_key=...          run the incident manager
"""

import json
import logging
from datetime import datetime
from datetime import timezone as dt_timezone
from typing import Any

from django.conf import settings
from django.http import JsonResponse
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from apps.incidents.errors import IncidentError, InvalidTimestamp
from apps.incidents.serializers import serialize_incident, serialize_incident_detail
from apps.incidents.services import SiteIncidentService

logger = logging.getLogger(__name__)


class JSONResponseMixin:
    """Mixin for JSON responses."""

    def json_response(self, data: Any, status: int = 200, safe: bool = True) -> JsonResponse:
        return JsonResponse(data, status=status, safe=safe)

    def error_response(self, message: str, status: int = 400) -> JsonResponse:
        return JsonResponse({"error": message}, status=status)

    def incident_error_response(self, error: IncidentError) -> JsonResponse:
        if error.status_code >= 500:
            # Storage details stay in the logs.
            logger.error(f"Incident request failed: {error}")
            return self.error_response("Something went wrong!", status=error.status_code)
        return self.error_response(error.message or str(error), status=error.status_code)


def _parse_timestamp(value: str | None, name: str) -> datetime:
    if not value:
        raise InvalidTimestamp(f"Missing '{name}' query parameter")
    parsed = parse_datetime(value)
    if parsed is None:
        raise InvalidTimestamp(f"Invalid '{name}' timestamp: {value}")
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


class IncidentDetailView(JSONResponseMixin, View):
    """
    Public read-only incident view, including site and alerts.

    GET /incidents/<incident_id>/
    """

    def get(self, request, incident_id):
        try:
            incident = SiteIncidentService().get_incident_detail(incident_id)
        except IncidentError as e:
            return self.incident_error_response(e)
        return self.json_response({"status": "success", "data": serialize_incident_detail(incident)})


class ActiveIncidentView(JSONResponseMixin, View):
    """GET /incidents/site/<site_id>/active/"""

    def get(self, request, site_id):
        try:
            incident = SiteIncidentService().get_active_incident_for_site(site_id)
        except IncidentError as e:
            return self.incident_error_response(e)
        data = [serialize_incident(incident)] if incident else []
        return self.json_response(data, safe=False)


class IncidentHistoryView(JSONResponseMixin, View):
    """GET /incidents/site/<site_id>/history/?start=<iso>&end=<iso>"""

    def get(self, request, site_id):
        try:
            start = _parse_timestamp(request.GET.get("start"), "start")
            end = _parse_timestamp(request.GET.get("end"), "end")
            incidents = SiteIncidentService().get_incidents_by_date_range(site_id, start, end)
        except IncidentError as e:
            return self.incident_error_response(e)
        return self.json_response([serialize_incident(i) for i in incidents], safe=False)


@method_decorator(csrf_exempt, name="dispatch")
class ReviewStatusView(JSONResponseMixin, View):
    """POST /incidents/<incident_id>/review-status/"""

    def post(self, request, incident_id):
        try:
            payload = json.loads(request.body or b"{}")
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON payload: {e}")
            return self.error_response("Invalid JSON payload")

        status = payload.get("status") if isinstance(payload, dict) else None
        if not status:
            return self.error_response("Missing 'status' field")

        try:
            incident = SiteIncidentService().update_review_status(incident_id, status)
        except IncidentError as e:
            return self.incident_error_response(e)
        return self.json_response(serialize_incident(incident))


@method_decorator(csrf_exempt, name="dispatch")
class IncidentManagerView(JSONResponseMixin, View):
    """
    Run the incident manager synchronously (for external cron callers).

    GET|POST /incidents/cron/manager/?cron_key=<CRON_KEY>
    """

    def _run(self, request):
        cron_key = getattr(settings, "CRON_KEY", "")
        if cron_key and request.GET.get("cron_key") != cron_key:
            return self.error_response("Unauthorized: Invalid Cron Key", status=403)

        batch_size = request.GET.get("batch_size")
        if batch_size is not None and not batch_size.isdigit():
            return self.error_response("Invalid batch_size")

        try:
            stats = SiteIncidentService().run_incident_manager(
                batch_size=int(batch_size) if batch_size else None
            )
        except IncidentError as e:
            return self.incident_error_response(e)

        return self.json_response(
            {"message": "Site Incident Manager executed successfully", "stats": stats}
        )

    def get(self, request):
        return self._run(request)

    def post(self, request):
        return self._run(request)
