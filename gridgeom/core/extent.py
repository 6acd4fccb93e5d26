"""Integer index ranges of n-dimensional grids.

Conventions
- **Bounds**: ``low`` and ``high`` are both *inclusive* cell indices.
- **Grid envelopes**: fractional grid coordinates use the cell-corner
  convention, where cell ``i`` covers ``[i, i + 1)``. Converting such an
  envelope to an extent therefore excludes the upper bound.
- **Rounding**: ``NEAREST`` rounds half up (``floor(x + 0.5)``), which differs
  from Python's ``round`` on ties.
- **Chunk alignment**: chunks are aligned on index 0, not on the extent low.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Sequence, Tuple

import numpy as np
from rasterio.windows import Window

from gridgeom.errors import DisjointExtentError, MismatchedDimensionError


class DimensionNameType(str, Enum):
    COLUMN = "column"
    ROW = "row"
    VERTICAL = "vertical"
    TIME = "time"
    TRACK = "track"
    CROSS_TRACK = "cross_track"
    SAMPLE = "sample"
    LINE = "line"


class GridRoundingMode(str, Enum):
    NEAREST = "nearest"
    ENCLOSING = "enclosing"
    CONTAINED = "contained"


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def trunc_divmod(value: int, divisor: int) -> Tuple[int, int]:
    """Quotient truncated toward zero, and the matching remainder."""
    quotient = abs(value) // divisor
    if value < 0:
        quotient = -quotient
    return quotient, value - quotient * divisor


def _expand_values(values: Sequence[int], dimension: int, fill: int) -> Tuple[int, ...]:
    if len(values) > dimension:
        raise MismatchedDimensionError(
            f"Got {len(values)} values for a {dimension}-dimensional extent"
        )
    return tuple(int(v) for v in values) + (fill,) * (dimension - len(values))


@dataclass(frozen=True, slots=True)
class GridExtent:
    """Inclusive integer bounds of a grid, with optional axis types."""

    low: Tuple[int, ...]
    high: Tuple[int, ...]
    axis_types: Tuple[DimensionNameType | None, ...] | None = None

    def __post_init__(self) -> None:
        low = tuple(int(v) for v in self.low)
        high = tuple(int(v) for v in self.high)
        object.__setattr__(self, "low", low)
        object.__setattr__(self, "high", high)
        if not low:
            raise ValueError("A grid extent needs at least one dimension")
        if len(low) != len(high):
            raise MismatchedDimensionError(
                f"low has {len(low)} dimensions but high has {len(high)}"
            )
        if self.axis_types is not None:
            types = tuple(self.axis_types)
            if len(types) != len(low):
                raise MismatchedDimensionError("axis_types must have one entry per dimension")
            object.__setattr__(self, "axis_types", types)
        for i, (lo, hi) in enumerate(zip(low, high)):
            if lo > hi:
                raise ValueError(f"Illegal range [{lo} … {hi}] in dimension {i}")

    @classmethod
    def of_size(cls, *sizes: int, axis_types: Sequence[DimensionNameType | None] | None = None) -> "GridExtent":
        """Extent starting at index 0 with the given number of cells per dimension.

        Two-dimensional extents default to (column, row) axis types.
        """
        if axis_types is None and len(sizes) == 2:
            axis_types = (DimensionNameType.COLUMN, DimensionNameType.ROW)
        return cls(tuple(0 for _ in sizes), tuple(int(s) - 1 for s in sizes),
                   tuple(axis_types) if axis_types is not None else None)

    @classmethod
    def from_grid_envelope(
        cls,
        lower: Sequence[float],
        upper: Sequence[float],
        rounding: GridRoundingMode = GridRoundingMode.NEAREST,
        *,
        base: "GridExtent | None" = None,
    ) -> "GridExtent":
        """Convert fractional grid coordinates (cell-corner convention) to cells.

        NaN bounds keep the range of ``base`` in that dimension. At least one
        cell is produced in every dimension.
        """
        if len(lower) != len(upper):
            raise MismatchedDimensionError("lower and upper must have the same length")
        low, high = [], []
        for i, (lo, hi) in enumerate(zip(lower, upper)):
            if math.isnan(lo) or math.isnan(hi):
                if base is None:
                    raise ValueError(f"Dimension {i} is unbounded and no base extent is given")
                low.append(base.low[i])
                high.append(base.high[i])
                continue
            if rounding is GridRoundingMode.ENCLOSING:
                l, h = math.floor(lo), math.ceil(hi)
            elif rounding is GridRoundingMode.CONTAINED:
                l, h = math.ceil(lo), math.floor(hi)
                if h <= l:
                    l = h = math.floor((lo + hi) / 2)
                    h += 1
            else:
                l, h = round_half_up(lo), round_half_up(hi)
            if h > l:
                h -= 1
            low.append(l)
            high.append(h)
        return cls(tuple(low), tuple(high), base.axis_types if base is not None else None)

    @property
    def dimension(self) -> int:
        return len(self.low)

    def size(self, dim: int) -> int:
        return self.high[dim] - self.low[dim] + 1

    @property
    def sizes(self) -> Tuple[int, ...]:
        return tuple(h - l + 1 for l, h in zip(self.low, self.high))

    def axis_type(self, dim: int) -> DimensionNameType | None:
        return self.axis_types[dim] if self.axis_types is not None else None

    def _check_same_dimension(self, other: "GridExtent") -> None:
        if other.dimension != self.dimension:
            raise MismatchedDimensionError(
                f"Expected a {self.dimension}-dimensional extent, got {other.dimension}"
            )

    def intersect(self, other: "GridExtent") -> "GridExtent":
        """Intersection of two extents, raising ``DisjointExtentError`` if empty."""
        self._check_same_dimension(other)
        low = tuple(max(a, b) for a, b in zip(self.low, other.low))
        high = tuple(min(a, b) for a, b in zip(self.high, other.high))
        for i, (lo, hi) in enumerate(zip(low, high)):
            if lo > hi:
                raise DisjointExtentError(
                    f"Extents do not intersect in dimension {i}: "
                    f"[{self.low[i]} … {self.high[i]}] and [{other.low[i]} … {other.high[i]}]"
                )
        return GridExtent(low, high, self.axis_types)

    def union(self, other: "GridExtent") -> "GridExtent":
        self._check_same_dimension(other)
        low = tuple(min(a, b) for a, b in zip(self.low, other.low))
        high = tuple(max(a, b) for a, b in zip(self.high, other.high))
        return GridExtent(low, high, self.axis_types)

    def contains(self, other: "GridExtent") -> bool:
        self._check_same_dimension(other)
        return all(
            a <= c and d <= b
            for a, b, c, d in zip(self.low, self.high, other.low, other.high)
        )

    def expand(self, *margins: int) -> "GridExtent":
        """Add ``margins[i]`` cells on both sides of dimension ``i``."""
        margins = _expand_values(margins, self.dimension, 0)
        low = tuple(l - m for l, m in zip(self.low, margins))
        high = tuple(h + m for h, m in zip(self.high, margins))
        return GridExtent(low, high, self.axis_types)

    def align_to_chunks(self, *chunk_sizes: int) -> "GridExtent":
        """Round low down and high up so that both fall on chunk boundaries."""
        sizes = _expand_values(chunk_sizes, self.dimension, 1)
        low, high = [], []
        for lo, hi, c in zip(self.low, self.high, sizes):
            if c <= 0:
                raise ValueError(f"Chunk size must be positive, got {c}")
            low.append((lo // c) * c)
            high.append((hi // c + 1) * c - 1)
        return GridExtent(tuple(low), tuple(high), self.axis_types)

    def with_range(self, dim: int, low: int, high: int) -> "GridExtent":
        new_low = list(self.low)
        new_high = list(self.high)
        new_low[dim] = low
        new_high[dim] = high
        return GridExtent(tuple(new_low), tuple(new_high), self.axis_types)

    def subsample(
        self, factors: Sequence[int], offsets: Sequence[int] | None = None
    ) -> "GridExtent":
        """Cell ranges of a grid keeping one cell out of ``factors[i]``.

        ``offsets`` default to the truncated-division remainders of ``low``; the
        new low is ``(low - offset) / factor`` and the new size is
        ``ceil(size / factor)``.
        """
        factors = _expand_values(factors, self.dimension, 1)
        if offsets is not None:
            offsets = _expand_values(offsets, self.dimension, 0)
        low, high = [], []
        for i, (lo, hi, s) in enumerate(zip(self.low, self.high, factors)):
            if s <= 0:
                raise ValueError(f"Subsampling must be positive, got {s}")
            if s == 1:
                low.append(lo)
                high.append(hi)
                continue
            if offsets is None:
                new_low, _ = trunc_divmod(lo, s)
            else:
                new_low = (lo - offsets[i]) // s
            count, remainder = divmod(hi - lo + 1, s)
            if remainder == 0:
                count -= 1
            low.append(new_low)
            high.append(new_low + count)
        return GridExtent(tuple(low), tuple(high), self.axis_types)

    def point_of_interest(self) -> np.ndarray:
        """Center of the extent in cell-corner coordinates."""
        return np.array([(l + h + 1) / 2 for l, h in zip(self.low, self.high)])

    def corner_bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        """Lower and (exclusive) upper corners as floats."""
        return np.array(self.low, dtype=float), np.array([h + 1 for h in self.high], dtype=float)

    def to_window(self) -> Window:
        """rasterio window (column, row) of a two-dimensional extent."""
        if self.dimension != 2:
            raise MismatchedDimensionError("Only two-dimensional extents map to a rasterio Window")
        return Window(self.low[0], self.low[1], self.size(0), self.size(1))

    def __str__(self) -> str:
        ranges = ", ".join(f"[{l} … {h}]" for l, h in zip(self.low, self.high))
        return f"GridExtent({ranges})"
