"""
Signal Normaliser - Raw Feed Items to Canonical LossSignal

Pure transform: no I/O, no store access. Every malformed or
unrecognised item comes back as a SkipRecord; nothing here raises for
bad input.

Canonical raw item (produced by the external fetch adapters):

    {
        "source_name": "nws_alerts",
        "source_event_id": "urn:oid:2.49.0.1.840.0.abc",
        "event_type": "Severe Thunderstorm Warning",
        "event_timestamp": "2024-05-09T21:14:00Z",
        "geometry": {"type": "Point", "coordinates": [-96.79, 32.77]},
        "native_severity": "Severe",            # or {"unit": "mph", "value": 70}
        "native_certainty": "Observed",
        "zip_code": "75201",                    # optional location context
        "raw_payload": {...},
    }
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Union

from loss_engine.geo_math import geometry_centroid, parse_timestamp, valid_coordinates
from loss_engine.models import LossSignal, SourceType
from loss_engine.normalization.schema import SkipReason, SkipRecord
from loss_engine.normalization.vocabulary import (
    DECLARATION_SEVERITY,
    DEFAULT_SEVERITY,
    SEVERITY_WORDS,
    confidence_from_certainty,
    lookup_event_type,
    severity_from_cad_call,
    severity_from_magnitude,
)


logger = logging.getLogger(__name__)


NormalizeResult = Union[LossSignal, SkipRecord]


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class SignalNormalizer:
    """
    Converts one raw item from one feed into a LossSignal.

    Stateless apart from running skip counts, which the ingestion
    coordinator reads for its run log.
    """

    def __init__(self) -> None:
        self._skips: list[SkipRecord] = []

    @property
    def skips(self) -> list[SkipRecord]:
        return list(self._skips)

    def reset(self) -> None:
        self._skips.clear()

    # =========================================================================
    # Public API
    # =========================================================================

    def normalize(
        self,
        source_type: SourceType,
        raw_item: Any,
        source_name: Optional[str] = None,
    ) -> NormalizeResult:
        """
        Normalise a raw item.

        Args:
            source_type: Category of the feed the item came from
            raw_item: Canonical raw item dict
            source_name: Registered feed name; when omitted the item's own
                source_name is used, then the source type

        Returns:
            LossSignal (not yet stored, id unset) or SkipRecord
        """
        if not isinstance(raw_item, dict):
            return self.record_skip(source_type, SkipReason.MALFORMED_ITEM, raw_item)

        # Event type through the source's vocabulary table
        native_type = _clean_str(raw_item.get("event_type"))
        if native_type is None:
            return self.record_skip(source_type, SkipReason.MISSING_EVENT_TYPE, raw_item)
        event_type = lookup_event_type(source_type, native_type)
        if event_type is None:
            return self.record_skip(
                source_type, SkipReason.UNKNOWN_TYPE, raw_item, detail=native_type
            )

        # Timestamp
        raw_ts = raw_item.get("event_timestamp")
        if raw_ts is None or raw_ts == "":
            return self.record_skip(source_type, SkipReason.MISSING_TIMESTAMP, raw_item)
        event_timestamp = parse_timestamp(raw_ts)
        if event_timestamp is None:
            return self.record_skip(
                source_type, SkipReason.INVALID_TIMESTAMP, raw_item, detail=str(raw_ts)
            )

        source_name = (
            source_name or _clean_str(raw_item.get("source_name")) or source_type.value
        )
        raw_payload = raw_item.get("raw_payload")
        if not isinstance(raw_payload, dict):
            raw_payload = {} if raw_payload is None else {"value": raw_payload}

        try:
            latitude, longitude, area_description = self._extract_location(raw_item)
            return LossSignal(
                source_type=source_type,
                source_name=source_name,
                source_event_id=_clean_str(raw_item.get("source_event_id")),
                event_type=event_type,
                event_timestamp=event_timestamp,
                latitude=latitude,
                longitude=longitude,
                area_description=area_description,
                zip_code=_clean_str(raw_item.get("zip_code")),
                state_code=_clean_str(raw_item.get("state_code")),
                county_fips=_clean_str(raw_item.get("county_fips")),
                severity_raw=self.severity(source_type, raw_item, native_type),
                confidence_raw=confidence_from_certainty(raw_item.get("native_certainty")),
                raw_payload=raw_payload,
            )
        except Exception as e:
            return self.record_skip(
                source_type, SkipReason.MALFORMED_ITEM, raw_item, detail=f"{type(e).__name__}: {e}"
            )

    # =========================================================================
    # Field Extraction
    # =========================================================================

    def _extract_location(
        self, raw_item: dict[str, Any]
    ) -> tuple[Optional[float], Optional[float], Optional[str]]:
        """Coordinates from geometry, falling back to an area description."""
        geometry = raw_item.get("geometry")
        area = _clean_str(raw_item.get("area_description"))
        if isinstance(geometry, dict) and area is None:
            area = _clean_str(geometry.get("area_description"))

        point = geometry_centroid(geometry)
        if point is None:
            return None, None, area

        lat, lon = point
        if not valid_coordinates(lat, lon):
            logger.info(
                "Dropping out-of-range coordinates (%s, %s) for %s",
                lat,
                lon,
                raw_item.get("source_event_id"),
            )
            return None, None, area
        return lat, lon, area

    def severity(
        self,
        source_type: SourceType,
        raw_item: dict[str, Any],
        native_type: str,
    ) -> float:
        """
        Map native severity to [0, 1].

        Accepted shapes for native_severity:
            - a word ("Severe", "minor", "DR" for declarations)
            - {"unit": "mph" | "kt" | "inches" | "usd", "value": number}
            - a bare number already in [0, 1]
        Dispatch calls fall back to the call type and priority.
        """
        native = raw_item.get("native_severity")

        if isinstance(native, dict):
            try:
                value = float(native.get("value"))
            except (TypeError, ValueError):
                value = None
            if value is not None:
                severity = severity_from_magnitude(str(native.get("unit", "")), value)
                if severity is not None:
                    return _clamp(severity)

        elif isinstance(native, str) and native.strip():
            word = native.strip().lower()
            if source_type is SourceType.DECLARATION and word in DECLARATION_SEVERITY:
                return DECLARATION_SEVERITY[word]
            if word in SEVERITY_WORDS:
                return SEVERITY_WORDS[word]
            if source_type is SourceType.CAD:
                return severity_from_cad_call(native, raw_item.get("priority"))

        elif isinstance(native, (int, float)) and not isinstance(native, bool):
            if 0.0 <= float(native) <= 1.0:
                return float(native)

        if source_type is SourceType.CAD:
            return severity_from_cad_call(native_type, raw_item.get("priority"))
        return DEFAULT_SEVERITY

    # =========================================================================
    # Skip Tracking
    # =========================================================================

    def record_skip(
        self,
        source_type: SourceType,
        reason: SkipReason,
        raw_item: Any,
        detail: Optional[str] = None,
    ) -> SkipRecord:
        record = SkipRecord.create(source_type, reason, raw_item, detail=detail)
        self._skips.append(record)
        logger.info(
            "Skipped %s item %s: %s%s",
            source_type.value,
            record.source_event_id,
            reason.value,
            f" ({detail})" if detail else "",
        )
        return record
