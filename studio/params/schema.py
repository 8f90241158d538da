"""
Effect parameter schema: type, default, min, max, unit and description per
section. Single source for defaults and clamp ranges.
"""
from typing import Any, Dict, Literal

ParamGroup = Literal["volume", "eq", "compressor", "delay", "reverb"]

ParamSchemaEntry = Dict[str, Any]


def _make_param(
    default: float,
    min_val: float,
    max_val: float,
    unit: str,
    description: str,
) -> ParamSchemaEntry:
    """Helper to create a schema entry."""
    return {
        "type": "float",
        "default": default,
        "min": min_val,
        "max": max_val,
        "unit": unit,
        "description": description,
    }


# -----------------------------------------------------------------------------
# PARAM_SCHEMA: section -> key -> entry
# -----------------------------------------------------------------------------

PARAM_SCHEMA: Dict[str, Dict[str, ParamSchemaEntry]] = {
    "volume": {
        "beat": _make_param(0.85, 0.0, 2.0, "x", "Backing track gain"),
        "vocal": _make_param(1.0, 0.0, 2.0, "x", "Vocal path input gain"),
        "master": _make_param(0.9, 0.0, 2.0, "x", "Master bus gain"),
    },
    "eq": {
        "low": _make_param(0.0, -12.0, 12.0, "dB", "Low shelf gain at 120 Hz"),
        "mid": _make_param(0.0, -12.0, 12.0, "dB", "Peaking gain at 1.8 kHz"),
        "high": _make_param(0.0, -12.0, 12.0, "dB", "High shelf gain at 8 kHz"),
    },
    "compressor": {
        "threshold": _make_param(-18.0, -60.0, 0.0, "dB", "Level where gain reduction starts"),
        "knee": _make_param(30.0, 0.0, 40.0, "dB", "Soft knee width above threshold"),
        "ratio": _make_param(3.0, 1.0, 12.0, ":1", "Input/output ratio above the knee"),
        "attack": _make_param(0.003, 0.0, 1.0, "s", "Gain reduction attack time constant"),
        "release": _make_param(0.25, 0.0, 1.0, "s", "Gain reduction release time constant"),
    },
    "delay": {
        "time": _make_param(0.28, 0.0, 1.5, "s", "Delay time"),
        "feedback": _make_param(0.35, 0.0, 0.95, "x", "Feedback gain"),
        "mix": _make_param(0.25, 0.0, 1.2, "x", "Delay send/return level"),
    },
    "reverb": {
        "duration": _make_param(2.5, 0.5, 6.0, "s", "Impulse response length"),
        "decay": _make_param(2.2, 0.1, 10.0, "x", "Impulse decay curve exponent"),
        "mix": _make_param(0.3, 0.0, 1.2, "x", "Reverb send/return level"),
    },
}

SECTIONS = tuple(PARAM_SCHEMA.keys())

# Fixed filter voicing (not user-adjustable)
EQ_LOW_FREQ_HZ = 120.0
EQ_MID_FREQ_HZ = 1800.0
EQ_MID_Q = 1.0
EQ_HIGH_FREQ_HZ = 8000.0

MAX_DELAY_S = 1.5

# Dry level falls as reverb mix rises
DRY_REVERB_SLOPE = 0.65
DRY_MIN = 0.3
DRY_MAX = 1.0


def section_defaults(section: ParamGroup) -> Dict[str, float]:
    return {key: entry["default"] for key, entry in PARAM_SCHEMA[section].items()}


def default_settings() -> Dict[str, Dict[str, float]]:
    """Fully-defined defaults for every section."""
    return {section: section_defaults(section) for section in SECTIONS}
