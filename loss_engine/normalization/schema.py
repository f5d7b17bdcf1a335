"""
Skip Handling - Records for Items That Never Become Signals

A skip is an expected outcome (unmapped vocabulary, malformed item,
duplicate external id), not an error. Skips are counted on the
ingestion run and logged at INFO.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Final, Optional

from loss_engine.geo_math import utc_now
from loss_engine.models import SourceType


class SkipReason(Enum):
    """Why a raw item did not become a stored signal."""

    UNKNOWN_TYPE = "UNKNOWN_TYPE"
    MISSING_EVENT_TYPE = "MISSING_EVENT_TYPE"
    MISSING_TIMESTAMP = "MISSING_TIMESTAMP"
    INVALID_TIMESTAMP = "INVALID_TIMESTAMP"
    MALFORMED_ITEM = "MALFORMED_ITEM"
    DUPLICATE = "DUPLICATE"


SKIP_REASONS: Final[dict[SkipReason, str]] = {
    SkipReason.UNKNOWN_TYPE: "Event type not in the source's vocabulary table",
    SkipReason.MISSING_EVENT_TYPE: "Required field 'event_type' not provided",
    SkipReason.MISSING_TIMESTAMP: "Required field 'event_timestamp' not provided",
    SkipReason.INVALID_TIMESTAMP: "Event timestamp is not ISO-8601",
    SkipReason.MALFORMED_ITEM: "Raw item is not a mapping",
    SkipReason.DUPLICATE: "Source event id already ingested for this source",
}


@dataclass(frozen=True)
class SkipRecord:
    """
    Record of a raw item that was not turned into a signal.

    Used for audit trail and data quality monitoring.
    """

    source_type: SourceType
    source_event_id: Optional[str]
    reason: SkipReason
    description: str
    raw_data_hash: str
    skipped_at: datetime
    detail: Optional[str] = None

    @classmethod
    def create(
        cls,
        source_type: SourceType,
        reason: SkipReason,
        raw_data: Any = None,
        detail: Optional[str] = None,
    ) -> "SkipRecord":
        """Create a skip record with automatic hash and timestamp."""
        source_event_id = None
        if isinstance(raw_data, dict):
            event_id = raw_data.get("source_event_id")
            source_event_id = str(event_id) if event_id is not None else None
            data_str = str(sorted(raw_data.items(), key=lambda kv: str(kv[0])))
            raw_hash = hashlib.sha256(data_str.encode()).hexdigest()[:16]
        elif raw_data is not None:
            raw_hash = hashlib.sha256(repr(raw_data).encode()).hexdigest()[:16]
        else:
            raw_hash = "no_data"

        return cls(
            source_type=source_type,
            source_event_id=source_event_id,
            reason=reason,
            description=SKIP_REASONS[reason],
            raw_data_hash=raw_hash,
            skipped_at=utc_now(),
            detail=detail,
        )
