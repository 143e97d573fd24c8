"""In-memory stand-ins for the incident storage port, with a controllable clock."""

from __future__ import annotations

import uuid
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from datetime import timezone as dt_timezone

from apps.incidents.dtos import BatchItemError, CreateIncidentData, IncidentMetrics, ResolveResult
from apps.incidents.errors import (
    ActiveIncidentConflict,
    IncidentNotFound,
    InvalidArgument,
    NotFound,
    SiteNotFound,
)
from apps.incidents.models import ReviewStatus
from apps.incidents.repository import (
    UPDATABLE_FIELDS,
    IncidentRepository,
    normalize_id,
    validate_inactive_hours,
)
from apps.incidents.state import validate_incident_update


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2024, 7, 1, 12, 0, tzinfo=dt_timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@dataclass
class FakeAlert:
    site_id: uuid.UUID
    event_date: datetime
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    site_incident_id: uuid.UUID | None = None
    is_processed: bool = False


@dataclass
class FakeIncident:
    site_id: uuid.UUID
    start_site_alert_id: uuid.UUID | None
    latest_site_alert_id: uuid.UUID | None
    started_at: datetime | None
    updated_at: datetime
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    end_site_alert_id: uuid.UUID | None = None
    ended_at: datetime | None = None
    is_active: bool = True
    is_processed: bool = False
    review_status: str = ReviewStatus.TO_REVIEW


class InMemoryIncidentRepository(IncidentRepository):
    """
    Dict-backed ``IncidentRepository``.

    Enforces one active incident per site the way the database constraint
    does, by raising ``ActiveIncidentConflict`` from ``create_incident``.
    """

    def __init__(self, clock: FakeClock | None = None):
        self.clock = clock or FakeClock()
        self.sites: set[uuid.UUID] = set()
        self.alerts: dict[uuid.UUID, FakeAlert] = {}
        self.incidents: dict[uuid.UUID, FakeIncident] = {}
        self.failing_closes: set[uuid.UUID] = set()
        self.locked_sites: list[uuid.UUID] = []
        self.closing_fields_seen: list[dict | None] = []

    # helpers for tests

    def add_site(self) -> uuid.UUID:
        site_id = uuid.uuid4()
        self.sites.add(site_id)
        return site_id

    def add_alert(self, site_id: uuid.UUID) -> FakeAlert:
        alert = FakeAlert(site_id=site_id, event_date=self.clock())
        self.alerts[alert.id] = alert
        return alert

    def active_incidents(self, site_id) -> list[FakeIncident]:
        return [i for i in self.incidents.values() if i.site_id == site_id and i.is_active]

    # IncidentRepository

    def atomic(self):
        return nullcontext()

    def lock_site(self, site_id) -> None:
        site_id = normalize_id(site_id, "site_id")
        if site_id not in self.sites:
            raise SiteNotFound(site_id)
        self.locked_sites.append(site_id)

    def site_exists(self, site_id) -> bool:
        return normalize_id(site_id, "site_id") in self.sites

    def find_active_by_site_id(self, site_id, for_update: bool = False):
        site_id = normalize_id(site_id, "site_id")
        active = sorted(self.active_incidents(site_id), key=lambda i: i.started_at, reverse=True)
        return active[0] if active else None

    def create_incident(self, data: CreateIncidentData):
        if data is None:
            raise InvalidArgument("Invalid data: CreateIncidentData is required")
        site_id = normalize_id(data.site_id, "site_id")
        if self.active_incidents(site_id):
            raise ActiveIncidentConflict(site_id)
        incident = FakeIncident(
            site_id=site_id,
            start_site_alert_id=normalize_id(data.start_alert_id, "start_alert_id"),
            latest_site_alert_id=normalize_id(data.latest_alert_id, "latest_alert_id"),
            started_at=data.started_at,
            updated_at=self.clock(),
        )
        self.incidents[incident.id] = incident
        return incident

    def update_incident(self, incident_id, **fields):
        incident = self._get(incident_id)
        unknown = set(fields) - UPDATABLE_FIELDS
        if not fields or unknown:
            raise InvalidArgument(f"Invalid data: {', '.join(sorted(unknown)) or 'no fields'}")
        validate_incident_update(incident, fields)
        for name, value in fields.items():
            setattr(incident, name, value)
        incident.updated_at = self.clock()
        return incident

    def associate_alert(self, incident_id, alert_id):
        alert_id = normalize_id(alert_id, "alert_id")
        if alert_id not in self.alerts:
            raise NotFound(f"SiteAlert with id {alert_id} not found")
        incident = self._get(incident_id)
        incident.latest_site_alert_id = alert_id
        incident.updated_at = self.clock()
        return incident

    def mark_alert_associated(self, alert_id, incident_id) -> None:
        alert = self.alerts.get(normalize_id(alert_id, "alert_id"))
        if alert is None:
            raise NotFound(f"SiteAlert with id {alert_id} not found")
        alert.site_incident_id = normalize_id(incident_id, "incident_id")
        alert.is_processed = True

    def find_inactive_incidents(self, inactive_hours: float):
        cutoff = self.clock() - timedelta(hours=validate_inactive_hours(inactive_hours))
        return sorted(
            (
                i
                for i in self.incidents.values()
                if i.is_active and not i.is_processed and i.started_at and i.started_at < cutoff
            ),
            key=lambda i: i.started_at,
        )

    def resolve_incidents_batch(self, incidents, closing_fields=None):
        if not incidents:
            raise InvalidArgument("Invalid incidents: must be a non-empty list")
        self.closing_fields_seen.append(closing_fields)
        values = closing_fields or {"ended_at": self.clock(), "is_active": False, "is_processed": False}
        result = ResolveResult(
            metrics=IncidentMetrics(operation_count=len(incidents), batch_size=len(incidents))
        )
        for incident in incidents:
            try:
                closed = self._close_one(incident.id, values)
            except Exception as e:
                result.errors.append(BatchItemError(incident_id=incident.id, error=e))
                continue
            if closed:
                result.resolved_count += 1
                result.resolved_ids.append(incident.id)
            else:
                result.skipped_count += 1
        return result

    def close_incident(self, incident_id, closing_fields=None):
        values = closing_fields or {"ended_at": self.clock(), "is_active": False, "is_processed": False}
        self._close_one(incident_id, values)
        return self._get(incident_id)

    def get_incident_by_id(self, incident_id):
        return self.incidents.get(normalize_id(incident_id))

    def get_incident_detail(self, incident_id):
        return self.get_incident_by_id(incident_id)

    def count_active_by_site(self, site_id) -> int:
        return len(self.active_incidents(normalize_id(site_id, "site_id")))

    def find_by_date_range(self, site_id, start, end):
        site_id = normalize_id(site_id, "site_id")
        return sorted(
            (
                i
                for i in self.incidents.values()
                if i.site_id == site_id and start <= i.started_at <= end
            ),
            key=lambda i: i.started_at,
            reverse=True,
        )

    def get_alert_by_id(self, alert_id):
        return self.alerts.get(normalize_id(alert_id, "alert_id"))

    def find_unlinked_alerts(self, limit: int):
        unlinked = [a for a in self.alerts.values() if a.site_incident_id is None]
        return sorted(unlinked, key=lambda a: a.event_date)[:limit]

    def _get(self, incident_id) -> FakeIncident:
        incident_id = normalize_id(incident_id)
        try:
            return self.incidents[incident_id]
        except KeyError:
            raise IncidentNotFound(incident_id) from None

    def _close_one(self, incident_id, values) -> bool:
        if incident_id in self.failing_closes:
            raise RuntimeError(f"close failed for {incident_id}")
        incident = self._get(incident_id)
        if not incident.is_active:
            return False
        for name, value in values.items():
            setattr(incident, name, value)
        incident.end_site_alert_id = incident.latest_site_alert_id
        incident.updated_at = values["ended_at"]
        return True
