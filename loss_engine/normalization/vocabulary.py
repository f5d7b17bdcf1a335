"""
Per-Source Vocabulary Tables

Every feed speaks its own dialect. Each source type has an explicit,
finite table mapping its event names to the canonical EventType, plus
the magnitude thresholds used to turn native severity into [0, 1].

Values missing from a table are never guessed at: the normaliser
skips the item with UNKNOWN_TYPE.
"""

from __future__ import annotations

from typing import Final, Optional

from loss_engine.models import EventType, SourceType


# =============================================================================
# Event Type Tables
# =============================================================================

# National Weather Service alert event names and NOAA storm-report types
WEATHER_EVENT_MAP: Final[dict[str, EventType]] = {
    # Fire weather
    "fire weather watch": EventType.FIRE,
    "red flag warning": EventType.FIRE,
    "fire warning": EventType.FIRE,
    "extreme fire danger": EventType.FIRE,
    "wildfire": EventType.FIRE,
    # Wind
    "high wind warning": EventType.WIND,
    "high wind watch": EventType.WIND,
    "wind advisory": EventType.WIND,
    "extreme wind warning": EventType.WIND,
    "tornado warning": EventType.WIND,
    "tornado watch": EventType.WIND,
    "severe thunderstorm warning": EventType.WIND,
    "severe thunderstorm watch": EventType.WIND,
    "hurricane warning": EventType.WIND,
    "hurricane watch": EventType.WIND,
    "tropical storm warning": EventType.WIND,
    "tropical storm watch": EventType.WIND,
    "high wind": EventType.WIND,
    "thunderstorm wind": EventType.WIND,
    "tstm wnd gst": EventType.WIND,
    "tornado": EventType.WIND,
    "funnel cloud": EventType.WIND,
    "strong wind": EventType.WIND,
    # Hail
    "severe weather statement": EventType.HAIL,
    "hail": EventType.HAIL,
    "marine hail": EventType.HAIL,
    # Freeze
    "freeze warning": EventType.FREEZE,
    "freeze watch": EventType.FREEZE,
    "hard freeze warning": EventType.FREEZE,
    "hard freeze watch": EventType.FREEZE,
    "frost advisory": EventType.FREEZE,
    "frost/freeze": EventType.FREEZE,
    "ice storm": EventType.FREEZE,
    "ice storm warning": EventType.FREEZE,
}

# NFIRS incident type codes and commercial fire-report categories
FIRE_EVENT_MAP: Final[dict[str, EventType]] = {
    "100": EventType.FIRE,  # Fire, other
    "110": EventType.FIRE,  # Structure fire, other
    "111": EventType.FIRE,  # Building fire
    "112": EventType.FIRE,  # Fire in structure, not in building
    "113": EventType.FIRE,  # Cooking fire, confined
    "118": EventType.FIRE,  # Trash fire, confined
    "120": EventType.FIRE,  # Fire in mobile property
    "121": EventType.FIRE,  # Mobile home fire
    "130": EventType.FIRE,  # Mobile property fire, other
    "140": EventType.FIRE,  # Natural vegetation fire
    "141": EventType.FIRE,  # Forest/woods/wildland fire
    "150": EventType.FIRE,  # Outside rubbish fire
    "structure fire": EventType.FIRE,
    "building fire": EventType.FIRE,
    "residential fire": EventType.FIRE,
    "commercial fire": EventType.FIRE,
    "vegetation fire": EventType.FIRE,
    "wildland fire": EventType.FIRE,
}

# Computer-aided dispatch call types (PulsePoint, Active911, municipal CAD)
CAD_EVENT_MAP: Final[dict[str, EventType]] = {
    "structure fire": EventType.FIRE,
    "building fire": EventType.FIRE,
    "residential fire": EventType.FIRE,
    "commercial fire": EventType.FIRE,
    "working fire": EventType.FIRE,
    "working structure fire": EventType.FIRE,
    "fire": EventType.FIRE,
    "fire alarm": EventType.FIRE,
    "smoke investigation": EventType.FIRE,
    "wires down": EventType.WIND,
    "tree down": EventType.WIND,
}

# Event keywords emitted by the (external) news extraction step
NEWS_EVENT_MAP: Final[dict[str, EventType]] = {
    "fire": EventType.FIRE,
    "blaze": EventType.FIRE,
    "wildfire": EventType.FIRE,
    "arson": EventType.FIRE,
    "wind": EventType.WIND,
    "windstorm": EventType.WIND,
    "hurricane": EventType.WIND,
    "tornado": EventType.WIND,
    "hail": EventType.HAIL,
    "hailstorm": EventType.HAIL,
    "freeze": EventType.FREEZE,
    "ice storm": EventType.FREEZE,
    "winter storm": EventType.FREEZE,
}

# FEMA incident types on disaster declarations
DECLARATION_EVENT_MAP: Final[dict[str, EventType]] = {
    "fire": EventType.FIRE,
    "wildfire": EventType.FIRE,
    "hurricane": EventType.WIND,
    "typhoon": EventType.WIND,
    "tornado": EventType.WIND,
    "severe storm": EventType.WIND,
    "severe storm(s)": EventType.WIND,
    "tropical storm": EventType.WIND,
    "freezing": EventType.FREEZE,
    "snow": EventType.FREEZE,
    "severe ice storm": EventType.FREEZE,
}

EVENT_TYPE_TABLES: Final[dict[SourceType, dict[str, EventType]]] = {
    SourceType.WEATHER: WEATHER_EVENT_MAP,
    SourceType.FIRE: FIRE_EVENT_MAP,
    SourceType.CAD: CAD_EVENT_MAP,
    SourceType.NEWS: NEWS_EVENT_MAP,
    SourceType.DECLARATION: DECLARATION_EVENT_MAP,
}


def lookup_event_type(source_type: SourceType, native_type: str) -> Optional[EventType]:
    """Map a source's native event name to the canonical taxonomy."""
    key = " ".join(str(native_type).lower().split())
    return EVENT_TYPE_TABLES[source_type].get(key)


# =============================================================================
# Severity Scales
# =============================================================================

DEFAULT_SEVERITY: Final[float] = 0.50

# Qualitative words (CAP severity, news wording)
SEVERITY_WORDS: Final[dict[str, float]] = {
    "extreme": 0.95,
    "severe": 0.80,
    "major": 0.80,
    "destroyed": 0.80,
    "moderate": 0.60,
    "minor": 0.40,
    "damaged": 0.40,
    "contained": 0.40,
    "unknown": 0.50,
}

# Declaration types: major disaster, emergency, fire management
DECLARATION_SEVERITY: Final[dict[str, float]] = {
    "dr": 0.90,
    "em": 0.75,
    "fm": 0.60,
}

# Dispatch call-type keywords, checked in order
CAD_SEVERITY_KEYWORDS: Final[tuple[tuple[str, float], ...]] = (
    ("structure", 0.70),
    ("building", 0.70),
    ("working", 0.80),
    ("alarm", 0.30),
)
CAD_BASE_SEVERITY: Final[float] = 0.40
CAD_PRIORITY_BOOST: Final[float] = 0.15
CAD_PRIORITY_CAP: Final[float] = 0.90
CAD_HIGH_PRIORITIES: Final[frozenset[str]] = frozenset({"1", "high"})

# (minimum magnitude, severity) pairs, descending
WIND_MPH_THRESHOLDS: Final[tuple[tuple[float, float], ...]] = (
    (75.0, 0.90),
    (60.0, 0.70),
    (50.0, 0.60),
)
HAIL_INCH_THRESHOLDS: Final[tuple[tuple[float, float], ...]] = (
    (2.0, 0.90),
    (1.0, 0.70),
    (0.75, 0.60),
)
MAGNITUDE_FLOOR_SEVERITY: Final[float] = 0.40

# (upper bound exclusive, severity) pairs, ascending
ESTIMATED_LOSS_USD_BANDS: Final[tuple[tuple[float, float], ...]] = (
    (10_000.0, 0.25),
    (50_000.0, 0.50),
    (100_000.0, 0.75),
)
ESTIMATED_LOSS_TOP_SEVERITY: Final[float] = 0.90

KNOTS_TO_MPH: Final[float] = 1.15078


def severity_from_thresholds(
    value: float,
    thresholds: tuple[tuple[float, float], ...],
) -> float:
    """Monotonic step function over descending (minimum, severity) pairs."""
    for minimum, severity in thresholds:
        if value >= minimum:
            return severity
    return MAGNITUDE_FLOOR_SEVERITY


def severity_from_loss_usd(value: float) -> float:
    for upper, severity in ESTIMATED_LOSS_USD_BANDS:
        if value < upper:
            return severity
    return ESTIMATED_LOSS_TOP_SEVERITY


def severity_from_magnitude(unit: str, value: float) -> Optional[float]:
    """
    Severity for a measured magnitude.

    Supported units: mph, kt/knots, in/inches (hail), usd (estimated loss).
    Returns None for an unsupported unit.
    """
    unit = unit.lower()
    if unit == "mph":
        return severity_from_thresholds(value, WIND_MPH_THRESHOLDS)
    if unit in ("kt", "kts", "knots"):
        return severity_from_thresholds(value * KNOTS_TO_MPH, WIND_MPH_THRESHOLDS)
    if unit in ("in", "inch", "inches"):
        return severity_from_thresholds(value, HAIL_INCH_THRESHOLDS)
    if unit == "usd":
        return severity_from_loss_usd(value)
    return None


def severity_from_cad_call(call_type: str, priority: Optional[str] = None) -> float:
    """Severity for a dispatch call, boosted for top-priority calls."""
    call = call_type.lower()
    severity = CAD_BASE_SEVERITY
    for keyword, value in CAD_SEVERITY_KEYWORDS:
        if keyword in call:
            severity = value
            break

    if priority is not None and str(priority).strip().lower() in CAD_HIGH_PRIORITIES:
        severity = min(CAD_PRIORITY_CAP, severity + CAD_PRIORITY_BOOST)
    return severity


# =============================================================================
# Certainty Scale
# =============================================================================

DEFAULT_CONFIDENCE: Final[float] = 0.50

CERTAINTY_WORDS: Final[dict[str, float]] = {
    "observed": 0.95,
    "confirmed": 0.95,
    "likely": 0.85,
    "probable": 0.85,
    "possible": 0.65,
    "reported": 0.65,
    "unlikely": 0.40,
    "unknown": 0.50,
}


def confidence_from_certainty(native_certainty: object) -> float:
    """
    Map a native certainty value to [0, 1].

    Words go through CERTAINTY_WORDS; numbers strictly inside (0, 1) are
    taken as already normalised. Anything else is the 0.5 midpoint.
    """
    if isinstance(native_certainty, str):
        return CERTAINTY_WORDS.get(native_certainty.strip().lower(), DEFAULT_CONFIDENCE)
    if isinstance(native_certainty, (int, float)) and not isinstance(native_certainty, bool):
        if 0.0 < float(native_certainty) < 1.0:
            return float(native_certainty)
    return DEFAULT_CONFIDENCE
