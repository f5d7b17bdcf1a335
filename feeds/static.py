"""
Static feed for replays, backfills and testing.
Serves pre-captured canonical items without external requests.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from feeds.base import SignalFeed
from loss_engine.geo_math import parse_timestamp
from loss_engine.ingestion.registry import FeedRegistration, get_feed


class StaticFeed(SignalFeed):
    """Feed that replays a fixed list of raw items."""

    def __init__(self, registration: FeedRegistration, items: list[dict[str, Any]]):
        """
        Initialize static feed.

        Args:
            registration: Feed the items were captured from.
            items: Canonical raw item dicts.
        """
        self._registration = registration
        self._items = list(items)

    @property
    def registration(self) -> FeedRegistration:
        return self._registration

    async def fetch_items(self, since: Optional[datetime] = None) -> list[dict[str, Any]]:
        """
        Return the captured items, optionally only those after `since`.

        Items whose timestamp cannot be parsed are passed through so the
        normaliser can record the skip.
        """
        if since is None:
            return list(self._items)

        selected = []
        for item in self._items:
            ts = parse_timestamp(item.get("event_timestamp")) if isinstance(item, dict) else None
            if ts is None or ts > since:
                selected.append(item)
        return selected

    @classmethod
    def from_json_file(cls, path: str, source_name: str) -> "StaticFeed":
        """
        Load items from a JSON file holding a list (or {"items": [...]}).

        Raises:
            ValueError: unknown feed name or unexpected file shape
        """
        registration = get_feed(source_name)
        if registration is None:
            raise ValueError(f"Unknown feed: {source_name}")

        data = json.loads(Path(path).read_text())
        if isinstance(data, dict):
            data = data.get("items")
        if not isinstance(data, list):
            raise ValueError(f"{path} must contain a list of items")
        return cls(registration, data)
