"""
Cluster scoring: centroid, confidence aggregation, severity and
verification status for a set of member signals.
"""

from __future__ import annotations

from collections import Counter
from typing import Optional, Sequence

from loss_engine.models import (
    EventType,
    LossCluster,
    LossSignal,
    SourceType,
    VerificationStatus,
)
from loss_engine.policy import ClusteringPolicy


class ClusterScorer:
    """
    Derives a cluster's aggregate fields from its member signals.

    Confidence methodology:
    - Per source type, evidence = 1 - (1 - c_max) * prod(1 - damping * c_i)
      over the remaining members of that type, so repeat reports from the
      same kind of feed add less each time
    - Single-source clusters are capped at the single-source ceiling
    - Multi-source clusters combine per-type evidence noisy-OR style, close
      part of the remaining gap when weather is backed by a ground report,
      and never drop below the multi-source floor
    - Everything is capped at max_confidence

    Adding a member can only raise the score; on top of that the stored
    score is max(previous, recomputed).
    """

    def __init__(self, policy: ClusteringPolicy):
        self.policy = policy

    # =========================================================================
    # Confidence
    # =========================================================================

    def source_evidence(self, confidences: Sequence[float]) -> float:
        """Combined evidence from signals of one source type."""
        if not confidences:
            return 0.0
        ordered = sorted(confidences, reverse=True)
        remaining = 1.0 - ordered[0]
        for c in ordered[1:]:
            remaining *= 1.0 - self.policy.same_source_damping * c
        return 1.0 - remaining

    def confidence(self, members: Sequence[LossSignal]) -> float:
        """Aggregate confidence for a member set."""
        by_source: dict[SourceType, list[float]] = {}
        for signal in members:
            by_source.setdefault(signal.source_type, []).append(signal.confidence_raw)

        evidence = {st: self.source_evidence(cs) for st, cs in by_source.items()}

        if len(evidence) == 1:
            (single,) = evidence.values()
            score = min(single, self.policy.single_source_ceiling)
        else:
            remaining = 1.0
            for e in evidence.values():
                remaining *= 1.0 - e
            combined = 1.0 - remaining

            has_weather = SourceType.WEATHER in evidence
            has_ground = any(not st.is_weather for st in evidence)
            if has_weather and has_ground:
                combined += (1.0 - combined) * self.policy.weather_corroboration_bonus

            score = max(combined, self.policy.multi_source_floor)

        return min(score, self.policy.max_confidence)

    # =========================================================================
    # Severity & Status
    # =========================================================================

    @staticmethod
    def severity(members: Sequence[LossSignal]) -> float:
        """Worst reported severity among members."""
        return max(s.severity_raw for s in members)

    def status(self, source_count: int, confidence: float) -> VerificationStatus:
        """Verification level implied by source diversity and confidence."""
        p = self.policy
        if source_count >= p.verified_source_count or confidence > p.verified_confidence:
            return VerificationStatus.VERIFIED
        if source_count >= p.corroborated_source_count or confidence > p.corroborated_confidence:
            return VerificationStatus.CORROBORATED
        return VerificationStatus.UNCONFIRMED

    def is_noise(self, signal: LossSignal) -> bool:
        """Lone signal too weak on both axes to stand as an event."""
        return (
            signal.confidence_raw < self.policy.suppression_confidence_floor
            and signal.severity_raw < self.policy.suppression_severity_floor
        )

    # =========================================================================
    # Cluster Construction
    # =========================================================================

    def build(
        self,
        members: Sequence[LossSignal],
        previous: Optional[LossCluster] = None,
        suppressed: bool = False,
    ) -> LossCluster:
        """
        Compute a cluster from its full member set.

        Args:
            members: Every member signal (all with coordinates)
            previous: Current stored cluster, if updating
            suppressed: Suppression flag for a newly created cluster;
                ignored when updating

        Returns:
            LossCluster carrying previous's id/version/created_at
        """
        if not members:
            raise ValueError("a cluster needs at least one member")
        ordered = sorted(members, key=lambda s: (s.event_timestamp, s.id or 0))

        count = len(ordered)
        centroid_lat = sum(s.latitude for s in ordered) / count
        centroid_lon = sum(s.longitude for s in ordered) / count

        source_types = frozenset(s.source_type for s in ordered)
        confidence = self.confidence(ordered)
        status = self.status(len(source_types), confidence)

        if previous is not None:
            confidence = max(confidence, previous.confidence_score)
            status = status.at_least(previous.verification_status)
            # Corroborated noise is no longer noise
            suppressed = previous.suppressed and count < 2

        return LossCluster(
            id=previous.id if previous else None,
            centroid_latitude=centroid_lat,
            centroid_longitude=centroid_lon,
            signal_count=count,
            source_types=source_types,
            event_types=frozenset(s.event_type for s in ordered),
            primary_event_type=self._primary_event_type(ordered),
            confidence_score=confidence,
            severity_score=self.severity(ordered),
            verification_status=status,
            suppressed=suppressed,
            zip_code=self._first_present(previous, ordered, "zip_code"),
            state_code=self._first_present(previous, ordered, "state_code"),
            county_fips=self._first_present(previous, ordered, "county_fips"),
            first_signal_at=min(s.event_timestamp for s in ordered),
            last_signal_at=max(s.event_timestamp for s in ordered),
            created_at=previous.created_at if previous else None,
            updated_at=previous.updated_at if previous else None,
            version=previous.version if previous else 0,
        )

    @staticmethod
    def _primary_event_type(ordered: Sequence[LossSignal]) -> EventType:
        """Most frequent member event type; ties go to the earliest seen."""
        counts = Counter(s.event_type for s in ordered)
        best = max(counts.values())
        for signal in ordered:
            if counts[signal.event_type] == best:
                return signal.event_type
        return ordered[0].event_type

    @staticmethod
    def _first_present(
        previous: Optional[LossCluster],
        ordered: Sequence[LossSignal],
        attr: str,
    ) -> Optional[str]:
        if previous is not None and getattr(previous, attr):
            return getattr(previous, attr)
        for signal in ordered:
            value = getattr(signal, attr)
            if value:
                return value
        return None
