"""
Clustering and Resolution Policy

Tunable thresholds passed explicitly into the clustering engine and
the resolution gate. Nothing in the engine reads ambient state; build
these from utils.config.Config or construct them directly in tests.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Final


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_RADIUS_KM: Final[float] = 5.0
DEFAULT_WINDOW_HOURS: Final[float] = 24.0

DEFAULT_AUTO_RESOLVE_THRESHOLD: Final[float] = 0.70
DEFAULT_MIN_EVENT_COUNT: Final[int] = 2
DEFAULT_MAX_PROPERTIES_PER_ZIP: Final[int] = 500


def _unit(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be between 0 and 1, got {value}")


@dataclass(frozen=True)
class ClusteringPolicy:
    """
    Spatial/temporal match window and scoring thresholds.

    radius_km and window_hours are fixed for a deployment; they are not
    per-signal tunables.
    """

    radius_km: float = DEFAULT_RADIUS_KM
    window_hours: float = DEFAULT_WINDOW_HOURS

    # Confidence aggregation
    same_source_damping: float = 0.5
    single_source_ceiling: float = 0.80
    multi_source_floor: float = 0.80
    weather_corroboration_bonus: float = 0.25
    max_confidence: float = 0.99

    # Verification ladder (strictly "above" the threshold)
    corroborated_confidence: float = 0.70
    verified_confidence: float = 0.90
    corroborated_source_count: int = 2
    verified_source_count: int = 3

    # Noise floors for lone signals
    suppression_confidence_floor: float = 0.30
    suppression_severity_floor: float = 0.30

    def __post_init__(self) -> None:
        """Validate ranges and threshold ordering."""
        if self.radius_km <= 0:
            raise ValueError("radius_km must be positive")
        if self.window_hours <= 0:
            raise ValueError("window_hours must be positive")

        for name in (
            "same_source_damping",
            "single_source_ceiling",
            "multi_source_floor",
            "weather_corroboration_bonus",
            "max_confidence",
            "corroborated_confidence",
            "verified_confidence",
            "suppression_confidence_floor",
            "suppression_severity_floor",
        ):
            _unit(name, getattr(self, name))

        if self.corroborated_confidence >= self.verified_confidence:
            raise ValueError("corroborated_confidence must be below verified_confidence")
        if self.corroborated_source_count >= self.verified_source_count:
            raise ValueError("corroborated_source_count must be below verified_source_count")
        if self.corroborated_source_count < 2:
            raise ValueError("corroborated_source_count must be at least 2")
        # Any multi-source cluster must outscore every single-source one
        if self.single_source_ceiling > self.multi_source_floor:
            raise ValueError("single_source_ceiling cannot exceed multi_source_floor")
        if self.multi_source_floor > self.max_confidence:
            raise ValueError("multi_source_floor cannot exceed max_confidence")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ResolutionSettings:
    """Thresholds gating automatic address resolution for a ZIP."""

    auto_resolve_threshold: float = DEFAULT_AUTO_RESOLVE_THRESHOLD
    min_event_count: int = DEFAULT_MIN_EVENT_COUNT
    max_properties_per_zip: int = DEFAULT_MAX_PROPERTIES_PER_ZIP
    enable_auto_resolution: bool = False

    def __post_init__(self) -> None:
        """Validate ranges."""
        _unit("auto_resolve_threshold", self.auto_resolve_threshold)
        if self.min_event_count < 1:
            raise ValueError("min_event_count must be at least 1")
        if self.max_properties_per_zip < 1:
            raise ValueError("max_properties_per_zip must be at least 1")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
