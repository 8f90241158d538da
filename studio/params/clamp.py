"""
Parameter clamping: every numeric input is clamped to its schema range before
it is stored or applied. Returns new dicts (does not mutate input).
"""
import math
from typing import Any, Dict

from studio.core.errors import InvalidParameter
from studio.core.params import clamp_if_bounds
from studio.params.schema import PARAM_SCHEMA


def clamp_value(section: str, key: str, value: Any) -> float:
    """Clamp one value to the schema range for section.key."""
    entry = PARAM_SCHEMA.get(section, {}).get(key)
    if entry is None:
        raise InvalidParameter(f"Unknown parameter: {section}.{key}")
    if isinstance(value, bool):
        raise InvalidParameter(f"{section}.{key} must be numeric, got {value!r}")
    try:
        v = float(value)
    except (TypeError, ValueError):
        raise InvalidParameter(f"{section}.{key} must be numeric, got {value!r}")
    if math.isnan(v):
        raise InvalidParameter(f"{section}.{key} must not be NaN")
    return clamp_if_bounds(v, entry["min"], entry["max"])


def clamp_params(section: str, partial: Dict[str, Any]) -> Dict[str, float]:
    """
    Clamp a partial update for one section.
    Keys with value None are dropped (treated as "not provided").
    """
    if section not in PARAM_SCHEMA:
        raise InvalidParameter(f"Unknown settings section: {section}")
    return {
        key: clamp_value(section, key, value)
        for key, value in (partial or {}).items()
        if value is not None
    }
