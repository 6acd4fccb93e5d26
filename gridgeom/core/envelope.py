"""Floating-point boxes and positions bound to a coordinate reference system.

On a periodic axis an envelope may have ``lower > upper``: the range starts
at ``lower``, crosses the axis maximum and ends at ``upper``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

from gridgeom.core import wraparound
from gridgeom.errors import DisjointExtentError, MismatchedDimensionError
from gridgeom.referencing.crs import CoordinateReferenceSystem


def axis_period(crs: CoordinateReferenceSystem | None, dim: int) -> float:
    if crs is None or dim >= crs.dimension:
        return math.nan
    return crs.axis(dim).period


@dataclass(frozen=True, slots=True)
class DirectPosition:
    coordinates: Tuple[float, ...]
    crs: CoordinateReferenceSystem | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "coordinates", tuple(float(c) for c in self.coordinates))
        if self.crs is not None and self.crs.dimension != len(self.coordinates):
            raise MismatchedDimensionError(
                f"Position has {len(self.coordinates)} coordinates but its CRS "
                f"has {self.crs.dimension} dimensions"
            )

    @property
    def dimension(self) -> int:
        return len(self.coordinates)

    def __getitem__(self, index: int) -> float:
        return self.coordinates[index]


@dataclass(frozen=True, slots=True)
class Envelope:
    """Box given by its lower and upper corners, optionally bound to a CRS."""

    lower: Tuple[float, ...]
    upper: Tuple[float, ...]
    crs: CoordinateReferenceSystem | None = None

    def __post_init__(self) -> None:
        lower = tuple(float(v) for v in self.lower)
        upper = tuple(float(v) for v in self.upper)
        object.__setattr__(self, "lower", lower)
        object.__setattr__(self, "upper", upper)
        if len(lower) != len(upper):
            raise MismatchedDimensionError("lower and upper corners differ in dimension")
        if self.crs is not None and self.crs.dimension != len(lower):
            raise MismatchedDimensionError(
                f"Envelope has {len(lower)} dimensions but its CRS has {self.crs.dimension}"
            )
        for i, (lo, hi) in enumerate(zip(lower, upper)):
            if lo > hi and math.isnan(axis_period(self.crs, i)):
                raise ValueError(f"Illegal range [{lo} … {hi}] in non-periodic dimension {i}")

    @classmethod
    def from_ranges(
        cls, *ranges: Tuple[float, float], crs: CoordinateReferenceSystem | None = None
    ) -> "Envelope":
        """Build an envelope from ``(lower, upper)`` pairs, one per dimension."""
        return cls(tuple(r[0] for r in ranges), tuple(r[1] for r in ranges), crs)

    @property
    def dimension(self) -> int:
        return len(self.lower)

    def period(self, dim: int) -> float:
        return axis_period(self.crs, dim)

    def crosses_boundary(self, dim: int) -> bool:
        return self.lower[dim] > self.upper[dim]

    def minimum(self, dim: int) -> float:
        """Smallest coordinate, the axis minimum when the range crosses the boundary."""
        if self.crosses_boundary(dim):
            return self.crs.axis(dim).minimum
        return self.lower[dim]

    def maximum(self, dim: int) -> float:
        if self.crosses_boundary(dim):
            return self.crs.axis(dim).maximum
        return self.upper[dim]

    def span(self, dim: int) -> float:
        lo, hi = self.unwrapped_range(dim)
        return hi - lo

    def median(self, dim: int) -> float:
        lo, hi = self.unwrapped_range(dim)
        return (lo + hi) / 2

    def unwrapped_range(self, dim: int) -> Tuple[float, float]:
        if self.crosses_boundary(dim):
            return wraparound.unwrap(self.lower[dim], self.upper[dim], self.period(dim))
        return self.lower[dim], self.upper[dim]

    def with_range(self, dim: int, lower: float, upper: float) -> "Envelope":
        lo = list(self.lower)
        hi = list(self.upper)
        lo[dim] = lower
        hi[dim] = upper
        return Envelope(tuple(lo), tuple(hi), self.crs)

    def contains(self, other: "Envelope", *, tolerance: float = 0.0) -> bool:
        """Whether ``other`` lies inside this envelope (both in the same frame)."""
        if other.dimension != self.dimension:
            raise MismatchedDimensionError("Envelopes differ in dimension")
        for i in range(self.dimension):
            lo, hi = self.unwrapped_range(i)
            olo, ohi = other.unwrapped_range(i)
            period = self.period(i)
            if not math.isnan(period):
                shift = round(((lo + hi) - (olo + ohi)) / (2 * period)) * period
                olo, ohi = olo + shift, ohi + shift
            if olo < lo - tolerance or ohi > hi + tolerance:
                return False
        return True

    def intersect(self, other: "Envelope") -> "Envelope":
        """Intersection expressed in the frame of this envelope.

        Periodic dimensions are reconciled with ``wraparound.resolve``. Raises
        ``DisjointExtentError`` when some dimension does not overlap.
        """
        if other.dimension != self.dimension:
            raise MismatchedDimensionError("Envelopes differ in dimension")
        lower, upper = [], []
        for i in range(self.dimension):
            period = self.period(i)
            if math.isnan(period):
                lo = max(self.lower[i], other.lower[i])
                hi = min(self.upper[i], other.upper[i])
                if lo > hi:
                    lo = hi = math.nan
            else:
                result = wraparound.resolve(
                    other.lower[i], other.upper[i], self.lower[i], self.upper[i], period
                )
                lo, hi = (result.lower, result.upper) if result is not None else (math.nan, math.nan)
            if math.isnan(lo):
                raise DisjointExtentError(f"Envelopes do not intersect in dimension {i}")
            lower.append(lo)
            upper.append(hi)
        return Envelope(tuple(lower), tuple(upper), self.crs)
