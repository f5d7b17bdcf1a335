"""
Base feed interface.

Live fetch adapters (HTTP polling, RSS parsing) implement this
interface outside the engine; they hand back canonical raw item dicts
for the normaliser.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from loss_engine.ingestion.registry import FeedRegistration


class SignalFeed(ABC):
    """Abstract base class for loss-signal feeds."""

    @property
    @abstractmethod
    def registration(self) -> FeedRegistration:
        """Registration record of the feed this adapter serves."""
        pass

    @abstractmethod
    async def fetch_items(self, since: Optional[datetime] = None) -> list[dict[str, Any]]:
        """
        Fetch raw items published since the given time.

        Args:
            since: Only return items newer than this (None = feed default window)

        Returns:
            List of canonical raw item dicts.

        Raises:
            Any exception on transport or upstream failure; the ingestion
            coordinator records the run as failed.
        """
        pass
