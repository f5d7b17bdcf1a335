"""
Loss Engine - Loss-Event Signal Pipeline

This package provides the loss-signal pipeline:
1. Normalisation (raw feed items to LossSignal)
2. Ingestion (per-feed runs with an audit log)
3. Clustering (spatial/temporal de-duplication into LossCluster)
4. Geo Aggregation (daily ZIP / county rollups)
5. Resolution Gating (when to pay for address resolution)
"""

from .models import (
    EventType,
    GeoAggregate,
    GeoLevel,
    IngestionRun,
    LossCluster,
    LossSignal,
    ResolutionLevel,
    ResolutionRequest,
    RunStatus,
    SourceType,
    TriggerType,
    VerificationStatus,
)
from .policy import ClusteringPolicy, ResolutionSettings
from .normalization import SignalNormalizer, SkipReason, SkipRecord
from .storage import LossRepository, get_loss_repository
from .ingestion import IngestionCoordinator, FeedRegistration, get_feed
from .clustering import ClusteringEngine, ClusteringOutcome, ClusterScorer
from .geo import GeoAggregator, ResolutionGate, claim_probability

__all__ = [
    # Models
    "SourceType",
    "EventType",
    "VerificationStatus",
    "RunStatus",
    "GeoLevel",
    "ResolutionLevel",
    "TriggerType",
    "LossSignal",
    "LossCluster",
    "IngestionRun",
    "GeoAggregate",
    "ResolutionRequest",
    # Policy
    "ClusteringPolicy",
    "ResolutionSettings",
    # Pipeline
    "SignalNormalizer",
    "SkipReason",
    "SkipRecord",
    "LossRepository",
    "get_loss_repository",
    "IngestionCoordinator",
    "FeedRegistration",
    "get_feed",
    "ClusteringEngine",
    "ClusteringOutcome",
    "ClusterScorer",
    "GeoAggregator",
    "ResolutionGate",
    "claim_probability",
]
