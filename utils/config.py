"""
Configuration management.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional

from loss_engine.policy import (
    DEFAULT_AUTO_RESOLVE_THRESHOLD,
    DEFAULT_MAX_PROPERTIES_PER_ZIP,
    DEFAULT_MIN_EVENT_COUNT,
    DEFAULT_RADIUS_KM,
    DEFAULT_WINDOW_HOURS,
    ClusteringPolicy,
    ResolutionSettings,
)


logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class Config:
    """
    Application configuration.

    Loads from environment variables with sensible defaults. Clustering
    and resolution thresholds can additionally be overridden from a JSON
    file (LOSS_SETTINGS_FILE) shaped like:

        {"clustering": {"radius_km": 4.0}, "resolution": {"min_event_count": 3}}
    """

    # Server
    host: str = field(default_factory=lambda: os.getenv("HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))
    debug: bool = field(default_factory=lambda: _env_bool("DEBUG"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())
    cron_secret: Optional[str] = field(default_factory=lambda: os.getenv("CRON_SECRET") or None)

    # Storage
    data_dir: str = field(default_factory=lambda: os.getenv("DATA_DIR", "./data"))
    database_url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", ""))

    # Feeds
    fetch_timeout: float = field(
        default_factory=lambda: float(os.getenv("FETCH_TIMEOUT", "60"))
    )

    # Clustering
    radius_km: float = field(
        default_factory=lambda: float(os.getenv("LOSS_RADIUS_KM", str(DEFAULT_RADIUS_KM)))
    )
    window_hours: float = field(
        default_factory=lambda: float(os.getenv("LOSS_WINDOW_HOURS", str(DEFAULT_WINDOW_HOURS)))
    )
    suppression_confidence_floor: float = field(
        default_factory=lambda: float(os.getenv("LOSS_SUPPRESSION_CONFIDENCE_FLOOR", "0.30"))
    )
    suppression_severity_floor: float = field(
        default_factory=lambda: float(os.getenv("LOSS_SUPPRESSION_SEVERITY_FLOOR", "0.30"))
    )
    corroborated_confidence: float = field(
        default_factory=lambda: float(os.getenv("LOSS_CORROBORATED_CONFIDENCE", "0.70"))
    )
    verified_confidence: float = field(
        default_factory=lambda: float(os.getenv("LOSS_VERIFIED_CONFIDENCE", "0.90"))
    )

    # Resolution
    auto_resolve_threshold: float = field(
        default_factory=lambda: float(
            os.getenv("RESOLUTION_AUTO_THRESHOLD", str(DEFAULT_AUTO_RESOLVE_THRESHOLD))
        )
    )
    min_event_count: int = field(
        default_factory=lambda: int(
            os.getenv("RESOLUTION_MIN_EVENT_COUNT", str(DEFAULT_MIN_EVENT_COUNT))
        )
    )
    max_properties_per_zip: int = field(
        default_factory=lambda: int(
            os.getenv("RESOLUTION_MAX_PROPERTIES", str(DEFAULT_MAX_PROPERTIES_PER_ZIP))
        )
    )
    enable_auto_resolution: bool = field(
        default_factory=lambda: _env_bool("RESOLUTION_ENABLE_AUTO")
    )

    settings_file: Optional[str] = field(
        default_factory=lambda: os.getenv("LOSS_SETTINGS_FILE") or None
    )

    def __post_init__(self) -> None:
        if not self.database_url:
            self.database_url = f"sqlite:///{Path(self.data_dir) / 'loss_engine.db'}"

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment (and the settings file, if any)."""
        config = cls()
        if config.settings_file:
            config = config.with_overrides(config.read_settings_file(config.settings_file))
        return config

    @staticmethod
    def read_settings_file(path: str) -> dict[str, Any]:
        """
        Flatten a settings file into Config field overrides.

        Raises:
            ValueError: unreadable file or unknown keys
        """
        try:
            data = json.loads(Path(path).read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ValueError(f"Could not read settings file {path}: {e}") from e

        overrides: dict[str, Any] = {}
        for section in ("clustering", "resolution"):
            overrides.update(data.get(section, {}))
        return overrides

    def with_overrides(self, overrides: dict[str, Any]) -> "Config":
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        logger.info("Applying settings overrides: %s", ", ".join(sorted(overrides)))
        return replace(self, **overrides)

    def clustering_policy(self) -> ClusteringPolicy:
        return ClusteringPolicy(
            radius_km=self.radius_km,
            window_hours=self.window_hours,
            suppression_confidence_floor=self.suppression_confidence_floor,
            suppression_severity_floor=self.suppression_severity_floor,
            corroborated_confidence=self.corroborated_confidence,
            verified_confidence=self.verified_confidence,
        )

    def resolution_settings(self) -> ResolutionSettings:
        return ResolutionSettings(
            auto_resolve_threshold=self.auto_resolve_threshold,
            min_event_count=self.min_event_count,
            max_properties_per_zip=self.max_properties_per_zip,
            enable_auto_resolution=self.enable_auto_resolution,
        )

    def to_dict(self) -> dict:
        """Convert config to dictionary (secrets masked)."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["cron_secret"] = "***" if self.cron_secret else None
        return data
