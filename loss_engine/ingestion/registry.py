"""
Feed Registry - Loss Signal Feed Registration

Every feed must be registered before its items are ingested. The
registration ties a feed name to its source type (which picks the
vocabulary table used by the normaliser) and declares what the feed
provides.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final, Optional

from loss_engine.models import SourceType


FEED_NAME_PATTERN: Final = re.compile(r"^[a-z0-9_]+$")


@dataclass(frozen=True)
class FeedRegistration:
    """Immutable feed registration record."""

    # === Identity ===
    source_name: str
    display_name: str
    source_type: SourceType

    # === Data Quality Declaration ===
    provides_coordinates: bool
    provides_certainty: bool

    # === Operational ===
    poll_interval_minutes: int
    requires_authentication: bool
    active: bool

    description: str = ""

    def __post_init__(self) -> None:
        """Validate registration constraints."""
        if not self.source_name:
            raise ValueError("source_name is required")
        if not FEED_NAME_PATTERN.match(self.source_name):
            raise ValueError(
                f"source_name must be lowercase alphanumeric with underscores: {self.source_name}"
            )
        if self.poll_interval_minutes <= 0:
            raise ValueError("poll_interval_minutes must be positive")


# =============================================================================
# Registry
# =============================================================================

_FEED_REGISTRY: dict[str, FeedRegistration] = {}


def register_feed(registration: FeedRegistration) -> None:
    """
    Register a feed.

    Raises:
        ValueError: If source_name is already registered
    """
    if registration.source_name in _FEED_REGISTRY:
        raise ValueError(f"Feed already registered: {registration.source_name}")
    _FEED_REGISTRY[registration.source_name] = registration


def get_feed(source_name: str) -> Optional[FeedRegistration]:
    return _FEED_REGISTRY.get(source_name)


def get_active_feeds() -> list[FeedRegistration]:
    return [f for f in _FEED_REGISTRY.values() if f.active]


def get_feeds_by_type(source_type: SourceType) -> list[FeedRegistration]:
    return [f for f in _FEED_REGISTRY.values() if f.source_type is source_type]


# Read-only view for inspection
FEED_REGISTRY: Final = _FEED_REGISTRY


# =============================================================================
# Default Registrations
# =============================================================================

for _registration in (
    FeedRegistration(
        source_name="nws_alerts",
        display_name="NWS Active Alerts",
        source_type=SourceType.WEATHER,
        provides_coordinates=True,
        provides_certainty=True,
        poll_interval_minutes=15,
        requires_authentication=False,
        active=True,
        description="CAP alerts from api.weather.gov; polygons reduced to centroids",
    ),
    FeedRegistration(
        source_name="noaa_storm_reports",
        display_name="NOAA Storm Events",
        source_type=SourceType.WEATHER,
        provides_coordinates=True,
        provides_certainty=False,
        poll_interval_minutes=1440,
        requires_authentication=False,
        active=True,
        description="Local storm reports with hail size and wind magnitude",
    ),
    FeedRegistration(
        source_name="nfirs_incidents",
        display_name="NFIRS Fire Incidents",
        source_type=SourceType.FIRE,
        provides_coordinates=True,
        provides_certainty=False,
        poll_interval_minutes=360,
        requires_authentication=True,
        active=True,
        description="Fire incident reports keyed by NFIRS incident type code",
    ),
    FeedRegistration(
        source_name="fire_commercial",
        display_name="Commercial Fire Reports",
        source_type=SourceType.FIRE,
        provides_coordinates=True,
        provides_certainty=True,
        poll_interval_minutes=60,
        requires_authentication=True,
        active=False,
        description="Licensed structure-fire report feed with estimated loss",
    ),
    FeedRegistration(
        source_name="pulsepoint",
        display_name="PulsePoint",
        source_type=SourceType.CAD,
        provides_coordinates=True,
        provides_certainty=False,
        poll_interval_minutes=5,
        requires_authentication=True,
        active=True,
    ),
    FeedRegistration(
        source_name="active911",
        display_name="Active911",
        source_type=SourceType.CAD,
        provides_coordinates=True,
        provides_certainty=False,
        poll_interval_minutes=5,
        requires_authentication=True,
        active=False,
    ),
    FeedRegistration(
        source_name="municipal_cad",
        display_name="Municipal CAD",
        source_type=SourceType.CAD,
        provides_coordinates=True,
        provides_certainty=False,
        poll_interval_minutes=5,
        requires_authentication=False,
        active=False,
    ),
    FeedRegistration(
        source_name="news_rss",
        display_name="Local News RSS",
        source_type=SourceType.NEWS,
        provides_coordinates=False,
        provides_certainty=False,
        poll_interval_minutes=30,
        requires_authentication=False,
        active=True,
        description="Keyword-extracted loss mentions; usually area-only",
    ),
    FeedRegistration(
        source_name="fema_declarations",
        display_name="FEMA Disaster Declarations",
        source_type=SourceType.DECLARATION,
        provides_coordinates=False,
        provides_certainty=False,
        poll_interval_minutes=1440,
        requires_authentication=False,
        active=True,
        description="County-level declarations (DR/EM/FM)",
    ),
):
    register_feed(_registration)
