"""
Data Transfer Objects for incident storage and resolution.

These are the contracts between the repository, the resolver and the
service layer.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from apps.incidents.models import SiteIncident


@dataclass
class CreateIncidentData:
    """Fields required to open a new incident."""

    site_id: Any
    start_alert_id: Any
    latest_alert_id: Any
    started_at: datetime


@dataclass
class IncidentMetrics:
    """Timing figures for a storage operation."""

    total_duration_ms: float = 0.0
    operation_count: int = 0
    batch_size: int = 0
    resolution_duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BatchItemError:
    """One failed item of a batch operation."""

    incident_id: Any
    error: Exception

    def to_dict(self) -> dict[str, Any]:
        return {
            "incident_id": str(self.incident_id),
            "error_type": type(self.error).__name__,
            "error": str(self.error),
        }


@dataclass
class ResolveResult:
    """
    Outcome of a batch closure.

    Per-item failures are reported in ``errors``; they never abort the
    remaining items. ``skipped_count`` counts incidents that were already
    closed when the batch reached them.
    """

    resolved_count: int = 0
    errors: list[BatchItemError] = field(default_factory=list)
    metrics: IncidentMetrics = field(default_factory=IncidentMetrics)
    resolved_ids: list[Any] = field(default_factory=list)
    skipped_count: int = 0

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "resolved_count": self.resolved_count,
            "skipped_count": self.skipped_count,
            "resolved_ids": [str(i) for i in self.resolved_ids],
            "errors": [e.to_dict() for e in self.errors],
            "metrics": self.metrics.to_dict(),
        }


@dataclass
class IncidentState:
    """Diagnostic view of an incident's staleness."""

    incident: SiteIncident
    last_alert_time: datetime
    inactive_minutes: int
    should_resolve: bool
    alert_count: int = 0


@dataclass
class LinkResult:
    """Outcome of linking alerts that have no incident yet."""

    found: int = 0
    processed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
