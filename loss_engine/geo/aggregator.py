"""
Geo Aggregation - Daily Rollup of Loss Evidence per ZIP / County

Every call is a full recompute from current store state, so re-running
after late signals or a new clustering pass is always safe.

Counted per (geography, day):
- non-suppressed clusters whose first signal falls on that UTC day
- unclustered signals with no coordinates (area-only reports such as
  declarations or news) located to that geography on that day
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Final

from loss_engine.geo_math import utc_now
from loss_engine.models import GeoAggregate, GeoLevel, ResolutionLevel, SourceType
from loss_engine.storage import LossRepository


logger = logging.getLogger(__name__)


# =============================================================================
# Claim Probability
# =============================================================================

CLAIM_SEVERITY_WEIGHT: Final[float] = 0.7
CLAIM_CONFIDENCE_WEIGHT: Final[float] = 0.3

DEFAULT_ROLLING_WINDOW_DAYS: Final[int] = 7


def claim_probability(severity: float, confidence: float) -> float:
    """Likelihood an event produced insurable damage."""
    value = CLAIM_SEVERITY_WEIGHT * severity + CLAIM_CONFIDENCE_WEIGHT * confidence
    return max(0.0, min(1.0, value))


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """[start, end) of a UTC calendar day."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def resolution_level_for(point_located: int, total: int) -> ResolutionLevel:
    if total == 0 or point_located == 0:
        return ResolutionLevel.NONE
    if point_located == total:
        return ResolutionLevel.FULL
    return ResolutionLevel.PARTIAL


# =============================================================================
# Aggregator
# =============================================================================


class GeoAggregator:
    """Recomputes and stores GeoAggregates."""

    def __init__(
        self,
        repository: LossRepository,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repository = repository
        self._clock = clock

    def aggregate(self, zip_code: str, day: date) -> GeoAggregate:
        """
        Recompute the aggregate for one ZIP and day, and store it.

        Args:
            zip_code: 5-digit ZIP
            day: UTC calendar day

        Returns:
            The stored GeoAggregate
        """
        return self._aggregate(GeoLevel.ZIP, zip_code, day)

    def aggregate_county(self, county_fips: str, day: date) -> GeoAggregate:
        """Same rollup keyed by 5-digit county FIPS."""
        return self._aggregate(GeoLevel.COUNTY, county_fips, day)

    def aggregate_day(self, day: date) -> list[GeoAggregate]:
        """Recompute every ZIP that has evidence on `day`."""
        start, end = day_bounds(day)
        zips = self._repository.list_active_zip_codes(start, end)
        results = [self.aggregate(z, day) for z in zips]
        logger.info("Aggregated %d ZIPs for %s", len(results), day.isoformat())
        return results

    def rolling_claim_probability(
        self,
        zip_code: str,
        as_of: date,
        window_days: int = DEFAULT_ROLLING_WINDOW_DAYS,
    ) -> float:
        """
        Event-weighted average claim probability over the stored daily
        aggregates in the trailing window ending on `as_of`.

        Returns 0.0 when the window holds no events.
        """
        if window_days < 1:
            raise ValueError("window_days must be at least 1")
        aggregates = self._repository.list_geo_aggregates(
            GeoLevel.ZIP,
            zip_code,
            as_of - timedelta(days=window_days - 1),
            as_of,
        )
        events = sum(a.event_count for a in aggregates)
        if events == 0:
            return 0.0
        weighted = sum(a.average_claim_probability * a.event_count for a in aggregates)
        return weighted / events

    # =========================================================================
    # Internals
    # =========================================================================

    def _aggregate(self, geo_level: GeoLevel, geo_code: str, day: date) -> GeoAggregate:
        if not geo_code:
            raise ValueError("geo_code is required")
        start, end = day_bounds(day)

        clusters = self._repository.list_clusters_for_geo(geo_level, geo_code, start, end)
        area_signals = self._repository.list_area_signals(geo_level, geo_code, start, end)

        probabilities: list[float] = []
        source_types: set[SourceType] = set()

        for cluster in clusters:
            probabilities.append(
                claim_probability(cluster.severity_score, cluster.confidence_score)
            )
            source_types.update(cluster.source_types)

        for signal in area_signals:
            probabilities.append(claim_probability(signal.severity_raw, signal.confidence_raw))
            source_types.add(signal.source_type)

        count = len(probabilities)
        aggregate = GeoAggregate(
            geo_level=geo_level,
            geo_code=geo_code,
            date=day,
            event_count=count,
            average_claim_probability=sum(probabilities) / count if count else 0.0,
            max_claim_probability=max(probabilities) if probabilities else 0.0,
            resolution_level=resolution_level_for(len(clusters), count),
            source_types=frozenset(source_types),
            computed_at=self._clock(),
        )
        stored = self._repository.upsert_geo_aggregate(aggregate)
        logger.debug(
            "Aggregate %s %s %s: %d events, avg %.3f",
            geo_level.value,
            geo_code,
            day.isoformat(),
            stored.event_count,
            stored.average_claim_probability,
        )
        return stored
