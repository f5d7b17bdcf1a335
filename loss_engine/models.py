"""
Loss Engine Domain Models

Canonical records shared by every stage of the pipeline:
normalised signals, de-duplicated clusters, ingestion run logs,
per-geography daily aggregates and resolution requests.

Store rows are mapped to and from these records by
loss_engine.storage.repository; nothing outside the store
touches ORM objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional


# =============================================================================
# Enumerations
# =============================================================================


class SourceType(Enum):
    """Category of feed a signal came from."""

    WEATHER = "weather"
    FIRE = "fire"
    CAD = "cad"
    NEWS = "news"
    DECLARATION = "declaration"

    @property
    def is_weather(self) -> bool:
        return self is SourceType.WEATHER


class EventType(Enum):
    """Canonical loss-event taxonomy."""

    FIRE = "Fire"
    WIND = "Wind"
    HAIL = "Hail"
    FREEZE = "Freeze"


class VerificationStatus(Enum):
    """
    Cluster verification level.

    Ordered: unconfirmed < corroborated < verified. A cluster's
    status only ever moves up this ladder.
    """

    UNCONFIRMED = "unconfirmed"
    CORROBORATED = "corroborated"
    VERIFIED = "verified"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    def at_least(self, other: VerificationStatus) -> VerificationStatus:
        """Return whichever of self/other is higher on the ladder."""
        return self if self.rank >= other.rank else other


_STATUS_RANK: dict[VerificationStatus, int] = {
    VerificationStatus.UNCONFIRMED: 0,
    VerificationStatus.CORROBORATED: 1,
    VerificationStatus.VERIFIED: 2,
}


class RunStatus(Enum):
    """Terminal (and in-flight) state of an ingestion run."""

    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class GeoLevel(Enum):
    """Geography an aggregate is keyed on."""

    ZIP = "zip"
    COUNTY = "county"


class ResolutionLevel(Enum):
    """How much of an aggregate's evidence is point-located."""

    NONE = "none"
    PARTIAL = "partial"
    FULL = "full"


class TriggerType(Enum):
    """What asked for address resolution."""

    AUTO = "auto"
    USER = "user"
    DOWNSTREAM = "downstream"


# =============================================================================
# Signals
# =============================================================================


def _check_unit_interval(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be between 0 and 1, got {value}")


@dataclass(frozen=True)
class LossSignal:
    """
    One normalised observation from one feed.

    Invariants:
        - severity_raw and confidence_raw are in [0, 1]
        - latitude/longitude are both present or both absent
        - event_timestamp is timezone-aware UTC
        - (source_type, source_name, source_event_id) is unique in the
          store whenever source_event_id is present
    """

    source_type: SourceType
    source_name: str
    event_type: EventType
    event_timestamp: datetime
    severity_raw: float
    confidence_raw: float

    source_event_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    area_description: Optional[str] = None
    zip_code: Optional[str] = None
    state_code: Optional[str] = None
    county_fips: Optional[str] = None
    raw_payload: dict[str, Any] = field(default_factory=dict, repr=False)

    # Assigned by the store
    id: Optional[int] = None
    ingested_at: Optional[datetime] = None
    cluster_id: Optional[int] = None

    def __post_init__(self) -> None:
        """Validate constraints at construction time."""
        if not self.source_name:
            raise ValueError("source_name is required")
        if self.event_timestamp.tzinfo is None:
            raise ValueError("event_timestamp must be timezone-aware")
        _check_unit_interval("severity_raw", self.severity_raw)
        _check_unit_interval("confidence_raw", self.confidence_raw)

        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        if self.latitude is not None:
            if not -90 <= self.latitude <= 90:
                raise ValueError("latitude must be between -90 and 90")
            if not -180 <= self.longitude <= 180:
                raise ValueError("longitude must be between -180 and 180")

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def is_clustered(self) -> bool:
        return self.cluster_id is not None


# =============================================================================
# Clusters
# =============================================================================


@dataclass(frozen=True)
class LossCluster:
    """
    A de-duplicated real-world loss event built from one or more signals.

    Invariants:
        - signal_count equals the number of member signals
        - the centroid is the arithmetic mean of member coordinates
        - confidence_score and verification_status never decrease
        - first_signal_at <= last_signal_at
    """

    centroid_latitude: float
    centroid_longitude: float
    signal_count: int
    source_types: frozenset[SourceType]
    event_types: frozenset[EventType]
    primary_event_type: EventType
    confidence_score: float
    severity_score: float
    verification_status: VerificationStatus
    first_signal_at: datetime
    last_signal_at: datetime

    suppressed: bool = False
    zip_code: Optional[str] = None
    state_code: Optional[str] = None
    county_fips: Optional[str] = None

    # Assigned by the store
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0

    def __post_init__(self) -> None:
        """Validate constraints at construction time."""
        if self.signal_count < 1:
            raise ValueError("signal_count must be at least 1")
        if not self.source_types:
            raise ValueError("source_types cannot be empty")
        _check_unit_interval("confidence_score", self.confidence_score)
        _check_unit_interval("severity_score", self.severity_score)
        if self.first_signal_at > self.last_signal_at:
            raise ValueError("first_signal_at cannot be after last_signal_at")

    @property
    def is_multi_source(self) -> bool:
        return len(self.source_types) > 1


# =============================================================================
# Ingestion Runs
# =============================================================================


@dataclass
class IngestionRun:
    """
    Log record of one ingestion run against one feed.

    Mutable while the run is in flight; the coordinator finalises it.
    """

    source_type: SourceType
    source_name: str
    started_at: datetime
    status: RunStatus = RunStatus.RUNNING
    finished_at: Optional[datetime] = None
    signals_ingested: int = 0
    signals_skipped: int = 0
    signals_failed: int = 0
    error_message: Optional[str] = None
    id: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_type": self.source_type.value,
            "source_name": self.source_name,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "status": self.status.value,
            "signals_ingested": self.signals_ingested,
            "signals_skipped": self.signals_skipped,
            "signals_failed": self.signals_failed,
            "error_message": self.error_message,
        }


# =============================================================================
# Geo Aggregates
# =============================================================================


@dataclass(frozen=True)
class GeoAggregate:
    """Daily rollup of non-suppressed loss evidence for one geography."""

    geo_level: GeoLevel
    geo_code: str
    date: date
    event_count: int
    average_claim_probability: float
    max_claim_probability: float
    resolution_level: ResolutionLevel
    source_types: frozenset[SourceType] = frozenset()
    computed_at: Optional[datetime] = None
    id: Optional[int] = None

    def __post_init__(self) -> None:
        """Validate constraints at construction time."""
        if not self.geo_code:
            raise ValueError("geo_code is required")
        if self.event_count < 0:
            raise ValueError("event_count cannot be negative")
        _check_unit_interval("average_claim_probability", self.average_claim_probability)
        _check_unit_interval("max_claim_probability", self.max_claim_probability)

    @property
    def zip_code(self) -> Optional[str]:
        return self.geo_code if self.geo_level is GeoLevel.ZIP else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "geo_level": self.geo_level.value,
            "geo_code": self.geo_code,
            "date": self.date.isoformat(),
            "event_count": self.event_count,
            "average_claim_probability": round(self.average_claim_probability, 4),
            "max_claim_probability": round(self.max_claim_probability, 4),
            "resolution_level": self.resolution_level.value,
            "source_types": sorted(s.value for s in self.source_types),
            "computed_at": self.computed_at.isoformat() if self.computed_at else None,
        }


# =============================================================================
# Resolution Requests
# =============================================================================


@dataclass(frozen=True)
class ResolutionRequest:
    """
    Instruction to the external resolution provider to enumerate
    candidate properties in a ZIP.

    At most one request exists per (zip_code, date, trigger_type).
    """

    zip_code: str
    date: date
    trigger_type: TriggerType
    requested_at: datetime
    max_properties: int
    threshold_snapshot: dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "zip_code": self.zip_code,
            "date": self.date.isoformat(),
            "trigger_type": self.trigger_type.value,
            "requested_at": self.requested_at.isoformat(),
            "max_properties": self.max_properties,
            "threshold_snapshot": dict(self.threshold_snapshot),
        }
