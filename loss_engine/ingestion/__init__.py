"""
Loss Engine - Ingestion Layer

Feed registration and the coordinator that drives raw feed items
through normalisation into the store.
"""

from loss_engine.ingestion.registry import (
    FEED_REGISTRY,
    FeedRegistration,
    get_active_feeds,
    get_feed,
    get_feeds_by_type,
    register_feed,
)
from loss_engine.ingestion.coordinator import IngestionCoordinator

__all__ = [
    # Feed registration
    "FeedRegistration",
    "FEED_REGISTRY",
    "get_feed",
    "get_active_feeds",
    "get_feeds_by_type",
    "register_feed",
    # Coordinator
    "IngestionCoordinator",
]
