"""
Numeric helpers shared by the parameter layer and the graph.
"""
from typing import Optional


def clamp(value: float, min: float, max: float) -> float:
    """Clamp value to [min, max]."""
    return min if value < min else max if value > max else value


def clamp_if_bounds(
    value: float,
    min: Optional[float] = None,
    max: Optional[float] = None,
) -> float:
    """
    Clamp value to [min, max] when bounds are not None.
    If both are None, returns value unchanged.
    """
    v = float(value)
    if min is not None and v < min:
        return min
    if max is not None and v > max:
        return max
    return v
