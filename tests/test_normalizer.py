"""
Tests for the signal normaliser and the per-source vocabulary tables.

The normaliser is pure, so no store is involved here.
"""

import pytest
from datetime import datetime, timezone
from pathlib import Path

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from loss_engine.models import EventType, LossSignal, SourceType
from loss_engine.normalization import (
    SignalNormalizer,
    SkipReason,
    SkipRecord,
    confidence_from_certainty,
    lookup_event_type,
    severity_from_magnitude,
)
from loss_engine.normalization.vocabulary import severity_from_cad_call


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def normalizer():
    return SignalNormalizer()


@pytest.fixture
def nws_alert():
    """A point-located NWS alert in canonical raw form."""
    return {
        "source_name": "nws_alerts",
        "source_event_id": "urn:oid:2.49.0.1.840.0.abc",
        "event_type": "Severe Thunderstorm Warning",
        "event_timestamp": "2024-05-09T21:14:00Z",
        "geometry": {"type": "Point", "coordinates": [-96.797, 32.7767]},
        "native_severity": "Severe",
        "native_certainty": "Observed",
        "zip_code": "75201",
        "raw_payload": {"headline": "Severe Thunderstorm Warning issued"},
    }


# =============================================================================
# Unit Tests: Normalisation
# =============================================================================


class TestNormalize:
    """Tests for SignalNormalizer.normalize."""

    def test_point_alert_becomes_signal(self, normalizer, nws_alert):
        """A mapped, timestamped item should produce a LossSignal."""
        signal = normalizer.normalize(SourceType.WEATHER, nws_alert)

        assert isinstance(signal, LossSignal)
        assert signal.source_type == SourceType.WEATHER
        assert signal.source_name == "nws_alerts"
        assert signal.source_event_id == "urn:oid:2.49.0.1.840.0.abc"
        assert signal.event_type == EventType.WIND
        assert signal.event_timestamp == datetime(2024, 5, 9, 21, 14, tzinfo=timezone.utc)
        assert signal.latitude == pytest.approx(32.7767)
        assert signal.longitude == pytest.approx(-96.797)
        assert signal.severity_raw == pytest.approx(0.80)
        assert signal.confidence_raw == pytest.approx(0.95)
        assert signal.zip_code == "75201"
        assert signal.raw_payload == {"headline": "Severe Thunderstorm Warning issued"}
        assert signal.id is None
        assert signal.cluster_id is None

    def test_offset_timestamp_converted_to_utc(self, normalizer, nws_alert):
        """Timestamps with an offset should be normalised to UTC."""
        nws_alert["event_timestamp"] = "2024-05-09T16:14:00-05:00"
        signal = normalizer.normalize(SourceType.WEATHER, nws_alert)

        assert signal.event_timestamp == datetime(2024, 5, 9, 21, 14, tzinfo=timezone.utc)

    def test_naive_timestamp_taken_as_utc(self, normalizer, nws_alert):
        nws_alert["event_timestamp"] = "2024-05-09T21:14:00"
        signal = normalizer.normalize(SourceType.WEATHER, nws_alert)

        assert signal.event_timestamp.tzinfo is not None
        assert signal.event_timestamp.hour == 21

    def test_polygon_uses_ring_centroid(self, normalizer, nws_alert):
        """Polygon geometry should resolve to the outer ring's vertex mean."""
        nws_alert["geometry"] = {
            "type": "Polygon",
            "coordinates": [[[-97, 32], [-96, 32], [-96, 33], [-97, 33], [-97, 32]]],
        }
        signal = normalizer.normalize(SourceType.WEATHER, nws_alert)

        assert signal.latitude == pytest.approx(32.5)
        assert signal.longitude == pytest.approx(-96.5)

    def test_multipolygon_uses_first_polygon(self, normalizer, nws_alert):
        nws_alert["geometry"] = {
            "type": "MultiPolygon",
            "coordinates": [
                [[[-97, 32], [-96, 32], [-96, 33], [-97, 33], [-97, 32]]],
                [[[-80, 40], [-79, 40], [-79, 41], [-80, 40]]],
            ],
        }
        signal = normalizer.normalize(SourceType.WEATHER, nws_alert)

        assert signal.latitude == pytest.approx(32.5)
        assert signal.longitude == pytest.approx(-96.5)

    def test_area_only_item_has_no_coordinates(self, normalizer):
        """Items located only by description keep the description."""
        item = {
            "source_name": "fema_declarations",
            "source_event_id": "DR-4781",
            "event_type": "Severe Storm",
            "event_timestamp": "2024-05-10T00:00:00Z",
            "area_description": "Dallas County, TX",
            "county_fips": "48113",
            "native_severity": "DR",
        }
        signal = normalizer.normalize(SourceType.DECLARATION, item)

        assert isinstance(signal, LossSignal)
        assert signal.has_coordinates is False
        assert signal.latitude is None and signal.longitude is None
        assert signal.area_description == "Dallas County, TX"
        assert signal.county_fips == "48113"
        assert signal.severity_raw == pytest.approx(0.90)

    def test_out_of_range_coordinates_dropped(self, normalizer, nws_alert):
        """Impossible coordinates should be discarded, not rejected."""
        nws_alert["geometry"] = {"type": "Point", "coordinates": [-196.8, 32.7]}
        signal = normalizer.normalize(SourceType.WEATHER, nws_alert)

        assert isinstance(signal, LossSignal)
        assert signal.has_coordinates is False

    def test_source_name_defaults_to_source_type(self, normalizer, nws_alert):
        del nws_alert["source_name"]
        signal = normalizer.normalize(SourceType.WEATHER, nws_alert)

        assert signal.source_name == "weather"

    def test_feed_name_overrides_item_source_name(self, normalizer, nws_alert):
        signal = normalizer.normalize(SourceType.WEATHER, nws_alert, "noaa_storm_reports")

        assert signal.source_name == "noaa_storm_reports"

    def test_non_dict_payload_is_wrapped(self, normalizer, nws_alert):
        nws_alert["raw_payload"] = "<alert/>"
        signal = normalizer.normalize(SourceType.WEATHER, nws_alert)

        assert signal.raw_payload == {"value": "<alert/>"}


# =============================================================================
# Unit Tests: Skips
# =============================================================================


class TestSkips:
    """Malformed or unmapped items come back as SkipRecords."""

    def test_unknown_event_type_skipped(self, normalizer, nws_alert):
        """Types outside the source's table are never guessed at."""
        nws_alert["event_type"] = "Special Marine Warning"
        result = normalizer.normalize(SourceType.WEATHER, nws_alert)

        assert isinstance(result, SkipRecord)
        assert result.reason == SkipReason.UNKNOWN_TYPE
        assert result.detail == "Special Marine Warning"
        assert result.source_event_id == "urn:oid:2.49.0.1.840.0.abc"

    def test_event_type_table_is_per_source(self, normalizer, nws_alert):
        """A weather term is not in the dispatch vocabulary."""
        result = normalizer.normalize(SourceType.CAD, nws_alert)

        assert isinstance(result, SkipRecord)
        assert result.reason == SkipReason.UNKNOWN_TYPE

    def test_missing_event_type(self, normalizer, nws_alert):
        del nws_alert["event_type"]
        result = normalizer.normalize(SourceType.WEATHER, nws_alert)

        assert result.reason == SkipReason.MISSING_EVENT_TYPE

    def test_missing_timestamp(self, normalizer, nws_alert):
        nws_alert["event_timestamp"] = ""
        result = normalizer.normalize(SourceType.WEATHER, nws_alert)

        assert result.reason == SkipReason.MISSING_TIMESTAMP

    def test_invalid_timestamp(self, normalizer, nws_alert):
        nws_alert["event_timestamp"] = "last Tuesday"
        result = normalizer.normalize(SourceType.WEATHER, nws_alert)

        assert result.reason == SkipReason.INVALID_TIMESTAMP
        assert result.detail == "last Tuesday"

    def test_non_mapping_item(self, normalizer):
        result = normalizer.normalize(SourceType.NEWS, ["not", "a", "dict"])

        assert result.reason == SkipReason.MALFORMED_ITEM
        assert result.raw_data_hash != "no_data"

    @pytest.mark.parametrize(
        "geometry",
        [
            {"type": "Point", "coordinates": {"lon": 1}},
            {"type": "Polygon", "coordinates": {}},
            {"type": "Polygon", "coordinates": [7]},
            {"type": "Polygon", "coordinates": ["not a ring"]},
            {"type": "Polygon", "coordinates": [[{"x": 1, "y": 2}, {"x": 3, "y": 4}]]},
            {"type": "MultiPolygon", "coordinates": {"0": []}},
        ],
    )
    def test_garbled_geometry_leaves_signal_unlocated(self, normalizer, nws_alert, geometry):
        nws_alert["geometry"] = geometry

        signal = normalizer.normalize(SourceType.WEATHER, nws_alert)

        assert isinstance(signal, LossSignal)
        assert signal.latitude is None
        assert signal.longitude is None

    def test_unexpected_failure_becomes_malformed_skip(self, normalizer, nws_alert, monkeypatch):
        def explode(*args):
            raise KeyError("value")

        monkeypatch.setattr(normalizer, "severity", explode)

        result = normalizer.normalize(SourceType.WEATHER, nws_alert)

        assert isinstance(result, SkipRecord)
        assert result.reason == SkipReason.MALFORMED_ITEM
        assert "KeyError" in result.detail
        assert normalizer.skips == [result]

    def test_skips_are_tracked_until_reset(self, normalizer, nws_alert):
        normalizer.normalize(SourceType.WEATHER, {"event_type": "Nope"})
        normalizer.normalize(SourceType.WEATHER, nws_alert)
        normalizer.normalize(SourceType.WEATHER, "junk")

        assert len(normalizer.skips) == 2

        normalizer.reset()
        assert normalizer.skips == []

    def test_skip_hash_is_stable(self, normalizer):
        item = {"event_type": "Nope", "event_timestamp": "2024-05-09T00:00:00Z"}
        first = normalizer.normalize(SourceType.WEATHER, item)
        second = normalizer.normalize(SourceType.WEATHER, dict(item))

        assert first.raw_data_hash == second.raw_data_hash


# =============================================================================
# Unit Tests: Vocabulary
# =============================================================================


class TestEventTypeLookup:

    def test_lookup_is_case_and_space_insensitive(self):
        assert lookup_event_type(SourceType.WEATHER, "  HAIL  ") == EventType.HAIL
        assert lookup_event_type(SourceType.WEATHER, "Freeze   Warning") == EventType.FREEZE

    def test_nfirs_codes_map_to_fire(self):
        assert lookup_event_type(SourceType.FIRE, "111") == EventType.FIRE

    def test_unmapped_returns_none(self):
        assert lookup_event_type(SourceType.NEWS, "earthquake") is None


class TestSeverity:

    @pytest.mark.parametrize(
        "unit,value,expected",
        [
            ("mph", 80, 0.90),
            ("mph", 65, 0.70),
            ("mph", 30, 0.40),
            ("kt", 50, 0.60),
            ("inches", 1.75, 0.70),
            ("in", 2.5, 0.90),
            ("usd", 5_000, 0.25),
            ("usd", 75_000, 0.75),
            ("usd", 250_000, 0.90),
        ],
    )
    def test_magnitude_scales(self, unit, value, expected):
        assert severity_from_magnitude(unit, value) == pytest.approx(expected)

    def test_unsupported_unit(self):
        assert severity_from_magnitude("furlongs", 3) is None

    def test_magnitude_dict_on_item(self, normalizer):
        item = {
            "event_type": "Hail",
            "event_timestamp": "2024-05-09T21:14:00Z",
            "native_severity": {"unit": "inches", "value": "2.0"},
        }
        signal = normalizer.normalize(SourceType.WEATHER, item)

        assert signal.severity_raw == pytest.approx(0.90)

    def test_bare_unit_interval_number(self, normalizer):
        item = {
            "event_type": "blaze",
            "event_timestamp": "2024-05-09T21:14:00Z",
            "native_severity": 0.35,
        }
        signal = normalizer.normalize(SourceType.NEWS, item)

        assert signal.severity_raw == pytest.approx(0.35)

    def test_unrecognised_severity_uses_default(self, normalizer):
        item = {
            "event_type": "blaze",
            "event_timestamp": "2024-05-09T21:14:00Z",
            "native_severity": 42,
        }
        signal = normalizer.normalize(SourceType.NEWS, item)

        assert signal.severity_raw == pytest.approx(0.50)

    def test_cad_call_type_keywords(self):
        assert severity_from_cad_call("Structure Fire") == pytest.approx(0.70)
        assert severity_from_cad_call("Fire Alarm") == pytest.approx(0.30)
        assert severity_from_cad_call("Tree Down") == pytest.approx(0.40)

    def test_cad_priority_boost_is_capped(self):
        assert severity_from_cad_call("Working Fire", priority="1") == pytest.approx(0.90)
        assert severity_from_cad_call("Tree Down", priority="HIGH") == pytest.approx(0.55)

    def test_cad_item_falls_back_to_call_type(self, normalizer):
        item = {
            "source_name": "pulsepoint",
            "event_type": "Structure Fire",
            "event_timestamp": "2024-05-09T21:14:00Z",
            "geometry": {"type": "Point", "coordinates": [-96.8, 32.78]},
            "priority": "1",
        }
        signal = normalizer.normalize(SourceType.CAD, item)

        assert signal.event_type == EventType.FIRE
        assert signal.severity_raw == pytest.approx(0.85)


class TestCertainty:

    def test_words(self):
        assert confidence_from_certainty("Observed") == pytest.approx(0.95)
        assert confidence_from_certainty("possible") == pytest.approx(0.65)

    def test_unknown_certainty_is_midpoint(self):
        """Unknown certainty is never treated as 0 or 1."""
        assert confidence_from_certainty(None) == pytest.approx(0.5)
        assert confidence_from_certainty("rumoured") == pytest.approx(0.5)
        assert confidence_from_certainty(1.0) == pytest.approx(0.5)
        assert confidence_from_certainty(0) == pytest.approx(0.5)

    def test_numeric_certainty_in_range(self):
        assert confidence_from_certainty(0.72) == pytest.approx(0.72)
