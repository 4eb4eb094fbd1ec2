"""
Half-up rounding for reported figures.

Python's round() sends ties to the even neighbour (round(0.25, 1) == 0.2);
generation and irradiance numbers are published with ties rounded up.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Fixed-point rounding of the exact float value, ties away from zero (1.25 -> 1.3, -1.25 -> -1.3)."""
    return float(Decimal(value).quantize(Decimal(1).scaleb(-ndigits), rounding=ROUND_HALF_UP))


def round_half_ceiling(value: float, ndigits: int = 0) -> float:
    """Ties toward +infinity on value * 10**ndigits (0.25 -> 0.3, -2.25 -> -2.2)."""
    scale = 10 ** ndigits
    return math.floor(value * scale + 0.5) / scale
