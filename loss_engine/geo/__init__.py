"""
Geo aggregation and the address-resolution gate.
"""

from loss_engine.geo.aggregator import (
    CLAIM_CONFIDENCE_WEIGHT,
    CLAIM_SEVERITY_WEIGHT,
    GeoAggregator,
    claim_probability,
    day_bounds,
)
from loss_engine.geo.provider import PropertyCandidate, ResolutionProvider, dispatch_request
from loss_engine.geo.resolution import ResolutionGate

__all__ = [
    "GeoAggregator",
    "claim_probability",
    "day_bounds",
    "CLAIM_SEVERITY_WEIGHT",
    "CLAIM_CONFIDENCE_WEIGHT",
    "ResolutionGate",
    "ResolutionProvider",
    "PropertyCandidate",
    "dispatch_request",
]
