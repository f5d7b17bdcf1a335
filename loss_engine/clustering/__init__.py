"""
Spatial/temporal clustering of loss signals.
"""

from loss_engine.clustering.engine import ClusteringEngine, ClusteringOutcome
from loss_engine.clustering.scoring import ClusterScorer

__all__ = ["ClusteringEngine", "ClusteringOutcome", "ClusterScorer"]
