"""
Clustering Engine - Group Signals into De-duplicated Loss Events

One pass:
1. Take the candidate signals (default: every unclustered signal) and
   the clusters still inside the temporal window of the oldest one.
2. For each signal, oldest first, pick the nearest cluster whose
   centroid is within R km and whose last signal is within T hours;
   ties go to the most recently active cluster.
3. With no match, gather the other pending candidates within R/T of
   the signal and seed a new cluster from that group.
4. Signals without coordinates are counted and left unclustered.

Every assignment is one store transaction: membership claim plus a
compare-and-swap on the cluster's version. Losing a claim is an
invariant violation (logged, never reassigned); losing a CAS reloads
the cluster and recomputes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional

from loss_engine.clustering.scoring import ClusterScorer
from loss_engine.geo_math import haversine_km, hours_between, utc_now, within_radius
from loss_engine.models import LossCluster, LossSignal
from loss_engine.policy import ClusteringPolicy
from loss_engine.storage import LossRepository, SignalAlreadyClaimedError, StaleClusterError


logger = logging.getLogger(__name__)


MAX_CAS_RETRIES = 5

# Distances equal to within a micrometre count as a tie
DISTANCE_TIE_DECIMALS = 9


@dataclass
class ClusteringOutcome:
    """Summary of one clustering pass."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    clusters_created: int = 0
    clusters_updated: int = 0
    signals_clustered: int = 0
    signals_without_coordinates: int = 0
    signals_suppressed: int = 0
    invariant_violations: int = 0
    errors: list[str] = field(default_factory=list)
    cluster_ids: list[int] = field(default_factory=list)

    def touch(self, cluster_id: int) -> None:
        if cluster_id not in self.cluster_ids:
            self.cluster_ids.append(cluster_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "clusters_created": self.clusters_created,
            "clusters_updated": self.clusters_updated,
            "signals_clustered": self.signals_clustered,
            "signals_without_coordinates": self.signals_without_coordinates,
            "signals_suppressed": self.signals_suppressed,
            "invariant_violations": self.invariant_violations,
            "errors": list(self.errors),
            "cluster_ids": list(self.cluster_ids),
        }


class ClusteringEngine:
    """
    Assigns signals to clusters.

    Safe to run concurrently with other passes and with ingestion: all
    exclusivity comes from conditional writes in the store.
    """

    def __init__(
        self,
        repository: LossRepository,
        policy: Optional[ClusteringPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repository = repository
        self.policy = policy or ClusteringPolicy()
        self.scorer = ClusterScorer(self.policy)
        self._clock = clock

    # =========================================================================
    # Public API
    # =========================================================================

    def cluster(
        self, candidate_signals: Optional[Iterable[LossSignal]] = None
    ) -> ClusteringOutcome:
        """
        Run one clustering pass.

        Args:
            candidate_signals: Stored signals to place; defaults to every
                unclustered signal in the store

        Returns:
            ClusteringOutcome with counts and touched cluster ids
        """
        outcome = ClusteringOutcome(started_at=self._clock())

        if candidate_signals is None:
            candidates = self._repository.list_unclustered_signals()
        else:
            candidates = list(candidate_signals)

        pending = self._screen(candidates, outcome)
        if pending:
            self._place_all(pending, outcome)

        outcome.finished_at = self._clock()
        logger.info(
            "Clustering pass: %d signals clustered, %d clusters created, "
            "%d updated, %d without coordinates, %d invariant violations",
            outcome.signals_clustered,
            outcome.clusters_created,
            outcome.clusters_updated,
            outcome.signals_without_coordinates,
            outcome.invariant_violations,
        )
        return outcome

    # =========================================================================
    # Pass Internals
    # =========================================================================

    def _screen(
        self, candidates: list[LossSignal], outcome: ClusteringOutcome
    ) -> list[LossSignal]:
        """Drop candidates that cannot be clustered this pass."""
        pending = []
        seen: set[int] = set()
        for signal in candidates:
            if signal.id is None:
                outcome.errors.append("candidate signal has not been stored")
                continue
            if signal.id in seen:
                continue
            seen.add(signal.id)
            if signal.is_clustered:
                self._invariant(
                    outcome,
                    "Signal %s already belongs to cluster %s",
                    signal.id,
                    signal.cluster_id,
                )
                continue
            if not signal.has_coordinates:
                outcome.signals_without_coordinates += 1
                continue
            pending.append(signal)

        pending.sort(key=lambda s: (s.event_timestamp, s.id))
        return pending

    def _place_all(self, pending: list[LossSignal], outcome: ClusteringOutcome) -> None:
        window = timedelta(hours=self.policy.window_hours)
        active: dict[int, LossCluster] = {
            c.id: c
            for c in self._repository.list_active_clusters(
                since=pending[0].event_timestamp - window
            )
        }
        settled: set[int] = set()

        for signal in pending:
            if signal.id in settled:
                continue
            settled.add(signal.id)

            match = self.best_match(signal, active.values())
            if match is not None:
                updated = self._attach(signal, match, outcome)
                if updated is not None:
                    active[updated.id] = updated
                    outcome.clusters_updated += 1
                continue

            # Members with a cluster of their own to join are left for their turn.
            group = [signal] + [
                other
                for other in pending
                if other.id not in settled
                and self.co_located(signal, other)
                and self.best_match(other, active.values()) is None
            ]
            created = self._create(group, outcome)
            for member in group:
                settled.add(member.id)
            if created is not None:
                active[created.id] = created

    def _create(
        self, group: list[LossSignal], outcome: ClusteringOutcome
    ) -> Optional[LossCluster]:
        """Seed a cluster from the first signal, then attach the rest one by one."""
        seed = group[0]
        suppressed = len(group) == 1 and self.scorer.is_noise(seed)
        draft = self.scorer.build([seed], suppressed=suppressed)

        try:
            cluster = self._repository.create_cluster(draft, seed.id)
        except SignalAlreadyClaimedError as e:
            self._invariant(outcome, "Seed signal %s already claimed: %s", seed.id, e)
            return None

        outcome.clusters_created += 1
        outcome.signals_clustered += 1
        outcome.touch(cluster.id)
        if suppressed:
            outcome.signals_suppressed += 1
            logger.info(
                "Cluster %s suppressed: lone signal %s (confidence %.2f, severity %.2f)",
                cluster.id,
                seed.id,
                seed.confidence_raw,
                seed.severity_raw,
            )

        for member in group[1:]:
            updated = self._attach(member, cluster, outcome)
            if updated is not None:
                cluster = updated
        return cluster

    def _attach(
        self,
        signal: LossSignal,
        cluster: LossCluster,
        outcome: ClusteringOutcome,
    ) -> Optional[LossCluster]:
        """Add one signal to a cluster, retrying on concurrent updates."""
        for _ in range(MAX_CAS_RETRIES):
            members = self._repository.list_cluster_signals(cluster.id)
            updated = self.scorer.build(members + [signal], previous=cluster)
            try:
                stored = self._repository.attach_signal(updated, cluster.version, signal.id)
            except StaleClusterError:
                fresh = self._repository.get_cluster(cluster.id)
                if fresh is None:
                    break
                if self.best_match(signal, [fresh]) is None:
                    message = (
                        f"signal {signal.id}: cluster {cluster.id} moved out of range "
                        "after a concurrent update"
                    )
                    outcome.errors.append(message)
                    logger.warning("Clustering %s", message)
                    return None
                cluster = fresh
                continue
            except SignalAlreadyClaimedError as e:
                self._invariant(outcome, "Signal %s already claimed: %s", signal.id, e)
                return None

            outcome.signals_clustered += 1
            outcome.touch(stored.id)
            return stored

        message = f"signal {signal.id}: gave up attaching to cluster {cluster.id}"
        outcome.errors.append(message)
        logger.warning("Clustering %s", message)
        return None

    def _invariant(self, outcome: ClusteringOutcome, msg: str, *args: Any) -> None:
        outcome.invariant_violations += 1
        logger.error("Invariant violation: " + msg, *args)

    # =========================================================================
    # Matching
    # =========================================================================

    def within_window(self, a: datetime, b: datetime) -> bool:
        return hours_between(a, b) <= self.policy.window_hours

    def co_located(self, a: LossSignal, b: LossSignal) -> bool:
        """Two signals within R km and T hours of each other."""
        if a.id == b.id or not b.has_coordinates:
            return False
        distance = haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)
        return within_radius(distance, self.policy.radius_km) and self.within_window(
            a.event_timestamp, b.event_timestamp
        )

    def best_match(
        self, signal: LossSignal, clusters: Iterable[LossCluster]
    ) -> Optional[LossCluster]:
        """
        Nearest eligible cluster for a signal.

        Eligible: centroid within R km and last signal within T hours of
        the signal's event time (both inclusive). Ties on distance go to
        the most recently active cluster, then the lowest id.
        """
        eligible = []
        for cluster in clusters:
            if not self.within_window(cluster.last_signal_at, signal.event_timestamp):
                continue
            distance = haversine_km(
                signal.latitude, signal.longitude,
                cluster.centroid_latitude, cluster.centroid_longitude,
            )
            if within_radius(distance, self.policy.radius_km):
                eligible.append(
                    (
                        round(distance, DISTANCE_TIE_DECIMALS),
                        -cluster.last_signal_at.timestamp(),
                        cluster.id,
                        cluster,
                    )
                )

        if not eligible:
            return None
        eligible.sort(key=lambda e: e[:3])
        return eligible[0][3]
