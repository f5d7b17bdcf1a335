"""
Signal normalisation: raw feed items to canonical LossSignal records.
"""

from loss_engine.normalization.normalizer import NormalizeResult, SignalNormalizer
from loss_engine.normalization.schema import SKIP_REASONS, SkipReason, SkipRecord
from loss_engine.normalization.vocabulary import (
    EVENT_TYPE_TABLES,
    confidence_from_certainty,
    lookup_event_type,
    severity_from_magnitude,
)

__all__ = [
    "SignalNormalizer",
    "NormalizeResult",
    "SkipReason",
    "SkipRecord",
    "SKIP_REASONS",
    "EVENT_TYPE_TABLES",
    "lookup_event_type",
    "confidence_from_certainty",
    "severity_from_magnitude",
]
