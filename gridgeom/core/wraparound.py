"""Antimeridian handling for periodic axes (typically longitude).

A range with ``lower > upper`` on a periodic axis crosses the period boundary
and is first unwrapped to ``[lower, upper + period]``. Ranges can then be
compared after shifting one of them by whole periods.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Tuple


@dataclass(frozen=True, slots=True)
class PeriodicIntersection:
    """Result of reconciling an area of interest with a base range.

    ``lower`` and ``upper`` are expressed in the frame of the base range and
    ``shift`` is the multiple of the period applied to the area of interest
    for its largest overlap.
    """

    lower: float
    upper: float
    shift: float


def unwrap(lower: float, upper: float, period: float) -> Tuple[float, float]:
    if lower > upper:
        return lower, upper + period
    return lower, upper


def resolve(
    aoi_lower: float,
    aoi_upper: float,
    base_lower: float,
    base_upper: float,
    period: float,
) -> PeriodicIntersection | None:
    """Intersect an area-of-interest range with a base range on a periodic axis.

    Every shift of the area of interest by a whole number of periods that
    overlaps the base range contributes a segment; the result spans all of
    them. The reported shift is the one with the largest overlap (ties go to
    no shift, then to the smallest shift). Returns ``None`` when nothing
    overlaps.
    """
    aoi_lower, aoi_upper = unwrap(aoi_lower, aoi_upper, period)
    base_lower, base_upper = unwrap(base_lower, base_upper, period)
    if aoi_upper - aoi_lower >= period:
        return PeriodicIntersection(base_lower, base_upper, 0.0)

    degenerate = aoi_upper == aoi_lower
    nearest = round(((base_lower + base_upper) - (aoi_lower + aoi_upper)) / (2 * period))
    candidates = sorted({-1, 0, 1, nearest - 1, nearest, nearest + 1}, key=lambda k: (abs(k), k))
    overlaps: List[Tuple[float, float, float, float]] = []
    for k in candidates:
        shift = k * period
        lower = max(aoi_lower + shift, base_lower)
        upper = min(aoi_upper + shift, base_upper)
        if upper > lower or (degenerate and upper == lower):
            overlaps.append((upper - lower, lower, upper, shift))
    if not overlaps:
        return None
    # max() keeps the first of equal lengths, candidates being sorted by |k|.
    best = max(overlaps, key=lambda o: o[0])
    return PeriodicIntersection(
        min(o[1] for o in overlaps),
        max(o[2] for o in overlaps),
        best[3],
    )


def shift_into(value: float, lower: float, upper: float, period: float) -> float:
    """Move ``value`` by whole periods into ``[lower, upper]``, or as close as possible."""
    if math.isnan(period) or math.isnan(value):
        return value
    lower, upper = unwrap(lower, upper, period)
    if lower <= value <= upper:
        return value
    center = (lower + upper) / 2
    shifted = value + round((center - value) / period) * period
    if lower <= shifted <= upper:
        return shifted
    for candidate in (shifted - period, shifted + period):
        if lower <= candidate <= upper:
            return candidate
    return shifted
