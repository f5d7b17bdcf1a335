"""
Resolution Gate - Decide When a ZIP Is Worth Resolving to Addresses

Address resolution is the expensive downstream step. The gate emits at
most one ResolutionRequest per (zip_code, date, trigger_type):

- auto: only when auto resolution is enabled and the day's aggregate
  clears both the claim-probability and event-count thresholds
- user / downstream: always, independent of the thresholds

The uniqueness key lives in the store, so concurrent evaluations of the
same ZIP cannot double-emit.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Callable, Optional

from loss_engine.geo.aggregator import GeoAggregator
from loss_engine.geo_math import utc_now
from loss_engine.models import GeoAggregate, ResolutionRequest, TriggerType
from loss_engine.policy import ResolutionSettings
from loss_engine.storage import LossRepository


logger = logging.getLogger(__name__)


class ResolutionGate:
    """Evaluates ZIPs against ResolutionSettings and records requests."""

    def __init__(
        self,
        repository: LossRepository,
        settings: Optional[ResolutionSettings] = None,
        aggregator: Optional[GeoAggregator] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repository = repository
        self.settings = settings or ResolutionSettings()
        self._aggregator = aggregator or GeoAggregator(repository, clock=clock)
        self._clock = clock

    def is_eligible(self, aggregate: GeoAggregate) -> bool:
        """Aggregate clears both auto-resolution thresholds."""
        return (
            aggregate.average_claim_probability >= self.settings.auto_resolve_threshold
            and aggregate.event_count >= self.settings.min_event_count
        )

    def evaluate_resolution(
        self,
        zip_code: str,
        trigger_type: TriggerType = TriggerType.AUTO,
        day: Optional[date] = None,
    ) -> Optional[ResolutionRequest]:
        """
        Decide whether to request address resolution for a ZIP.

        Args:
            zip_code: ZIP to evaluate
            trigger_type: auto, user or downstream
            day: UTC day to evaluate (defaults to today)

        Returns:
            The newly emitted ResolutionRequest, or None when the gate is
            closed or a request already exists for this key
        """
        day = day or self._clock().date()
        aggregate = self._aggregator.aggregate(zip_code, day)
        eligible = self.is_eligible(aggregate)

        if trigger_type is TriggerType.AUTO:
            if not self.settings.enable_auto_resolution:
                logger.info("Auto resolution disabled; %s %s not requested", zip_code, day)
                return None
            if not eligible:
                logger.info(
                    "ZIP %s on %s below thresholds (avg %.3f, %d events)",
                    zip_code,
                    day,
                    aggregate.average_claim_probability,
                    aggregate.event_count,
                )
                return None

        request = ResolutionRequest(
            zip_code=zip_code,
            date=day,
            trigger_type=trigger_type,
            requested_at=self._clock(),
            max_properties=self.settings.max_properties_per_zip,
            threshold_snapshot=self._snapshot(aggregate, eligible),
        )
        stored = self._repository.insert_resolution_request(request)
        if stored is None:
            logger.info(
                "Resolution already requested for %s on %s (%s)",
                zip_code,
                day,
                trigger_type.value,
            )
            return None

        logger.info(
            "Resolution requested for %s on %s (%s, cap %d)",
            zip_code,
            day,
            trigger_type.value,
            stored.max_properties,
        )
        return stored

    def _snapshot(self, aggregate: GeoAggregate, eligible: bool) -> dict[str, Any]:
        return {
            **self.settings.to_dict(),
            "observed_average_claim_probability": round(aggregate.average_claim_probability, 4),
            "observed_event_count": aggregate.event_count,
            "eligible": eligible,
        }
