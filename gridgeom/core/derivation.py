"""Derivation of a new grid geometry from a base one.

A ``GridDerivation`` is a single-use request against a base grid geometry:

1. *Configuring*: ``margin``, ``chunk_size``, ``maximum_subsampling``,
   ``clipping`` and ``rounding`` may be set in any order.
2. *Resolved*: the first ``subgrid``, ``slice``, ``slice_by_ratio`` or
   ``build`` call computes the intersection extent, the subsampling factors and
   their offsets. Configuration calls and a second ``subgrid`` are then
   rejected; ``slice`` may still collapse more dimensions until ``build``.

``build`` assembles the derived geometry and returns the same instance when
called again.

Pipeline for a region of interest
- convert it to the base CRS and reconcile periodic axes with the base envelope;
- map it to grid cells through the inverse cell-corner transform and round;
- expand by the margin, align to chunks, clip to the base extent (``STRICT``);
- derive subsampling factors from the requested resolution, bounded by the
  maximum subsampling and made compatible with the chunk size.
"""

from __future__ import annotations

import bisect
import logging
import math
from enum import Enum
from typing import Sequence, Tuple

import numpy as np

from gridgeom.config import settings
from gridgeom.core import wraparound
from gridgeom.core.envelope import DirectPosition, Envelope, axis_period
from gridgeom.core.extent import GridExtent, GridRoundingMode, round_half_up, trunc_divmod
from gridgeom.core.grid import GridComponent, GridGeometry, PixelInCell
from gridgeom.errors import (
    DerivationStateError,
    DisjointExtentError,
    IncompleteGridGeometryError,
    MismatchedDimensionError,
    NonInvertibleTransformError,
    NotSeparableError,
    PointOutsideCoverageError,
)
from gridgeom.logging_utils import log_event
from gridgeom.referencing import transforms
from gridgeom.referencing.operations import DEFAULT_SERVICE, CoordinateTransformService
from gridgeom.referencing.transforms import MathTransform

LOGGER = logging.getLogger(__name__)


class GridClippingMode(str, Enum):
    STRICT = "strict"
    BORDER_EXPANSION = "border_expansion"


class DerivationState(str, Enum):
    CONFIGURING = "configuring"
    RESOLVED = "resolved"


def _divisors(n: int) -> list[int]:
    small, large = [], []
    i = 1
    while i * i <= n:
        if n % i == 0:
            small.append(i)
            if i != n // i:
                large.append(n // i)
        i += 1
    return small + large[::-1]


def _selection(indices: Sequence[int], dimension: int) -> MathTransform:
    """Linear transform keeping the coordinates at ``indices``, in that order."""
    matrix = np.zeros((len(indices) + 1, dimension + 1))
    for row, index in enumerate(indices):
        matrix[row, index] = 1.0
    matrix[-1, -1] = 1.0
    return transforms.linear(matrix)


class GridDerivation:
    """Builder of a grid geometry derived from ``base``."""

    def __init__(self, base: GridGeometry, *, service: CoordinateTransformService | None = None) -> None:
        self.base = base
        self._service = service or DEFAULT_SERVICE
        self._dimension = base.dimension
        self._margin: Tuple[int, ...] = (0,) * self._dimension
        self._chunk_size: Tuple[int, ...] = (1,) * self._dimension
        self._maximum_subsampling: Tuple[int | None, ...] = (None,) * self._dimension
        self._clipping = GridClippingMode(settings.default_clipping)
        self._rounding = GridRoundingMode(settings.default_rounding)
        self._state = DerivationState.CONFIGURING
        self._subgridded = False
        self._intersection: GridExtent | None = None
        self._subsampling: Tuple[int, ...] = (1,) * self._dimension
        self._offsets: Tuple[int, ...] = (0,) * self._dimension
        self._envelope: Envelope | None = None
        self._resolution: Tuple[float, ...] | None = None
        self._result: GridGeometry | None = None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    @property
    def state(self) -> DerivationState:
        return self._state

    def _ensure_configuring(self, operation: str) -> None:
        if self._state is not DerivationState.CONFIGURING:
            raise DerivationStateError(
                f"{operation}() must be invoked before subgrid(), slice() or build()"
            )

    def _validated(self, values: Sequence[int], name: str, minimum: int) -> Tuple[int, ...]:
        if len(values) > self._dimension:
            raise MismatchedDimensionError(
                f"Got {len(values)} {name} values for a {self._dimension}-dimensional grid"
            )
        result = []
        for value in values:
            if isinstance(value, bool) or int(value) != value:
                raise ValueError(f"{name} values must be integers, got {value!r}")
            if value < minimum:
                raise ValueError(f"{name} values must be at least {minimum}, got {value}")
            result.append(int(value))
        return tuple(result)

    def margin(self, *cell_counts: int) -> "GridDerivation":
        """Expand the derived extent by the given number of cells on each side."""
        self._ensure_configuring("margin")
        values = self._validated(cell_counts, "margin", 1)
        self._margin = values + (0,) * (self._dimension - len(values))
        return self

    def chunk_size(self, *sizes: int) -> "GridDerivation":
        """Align the derived extent and subsampling on tiles of the given sizes."""
        self._ensure_configuring("chunk_size")
        values = self._validated(sizes, "chunk_size", 1)
        self._chunk_size = values + (1,) * (self._dimension - len(values))
        return self

    def maximum_subsampling(self, *maxima: int) -> "GridDerivation":
        self._ensure_configuring("maximum_subsampling")
        values = self._validated(maxima, "maximum_subsampling", 1)
        self._maximum_subsampling = values + (None,) * (self._dimension - len(values))
        return self

    def clipping(self, mode: GridClippingMode | str) -> "GridDerivation":
        self._ensure_configuring("clipping")
        self._clipping = GridClippingMode(mode)
        return self

    def rounding(self, mode: GridRoundingMode | str) -> "GridDerivation":
        self._ensure_configuring("rounding")
        self._rounding = GridRoundingMode(mode)
        return self

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------
    @property
    def intersection(self) -> GridExtent:
        """Extent in base grid cells, before subsampling."""
        if self._intersection is not None:
            return self._intersection
        return self._default_extent()

    @property
    def subsampling(self) -> Tuple[int, ...]:
        return self._subsampling

    @property
    def subsampling_offsets(self) -> Tuple[int, ...]:
        return self._offsets

    def _base_extent(self) -> GridExtent:
        if not self.base.is_defined(GridComponent.EXTENT):
            raise IncompleteGridGeometryError("The base grid geometry has no extent")
        return self.base.extent

    def _default_extent(self) -> GridExtent:
        base = self._base_extent()
        return self._finish_extent(base.low, base.high)

    def _finish_extent(self, low: Sequence[int], high: Sequence[int]) -> GridExtent:
        """Apply margin and chunk alignment, then clip to the base extent if strict."""
        base = self.base.extent if self.base.is_defined(GridComponent.EXTENT) else None
        extent = GridExtent(tuple(low), tuple(high), base.axis_types if base is not None else None)
        extent = extent.expand(*self._margin).align_to_chunks(*self._chunk_size)
        if self._clipping is GridClippingMode.STRICT and base is not None:
            extent = extent.intersect(base)
        return extent

    # ------------------------------------------------------------------
    # Subsampling
    # ------------------------------------------------------------------
    def _round_subsampling(self, value: int, dim: int) -> int:
        """Bound by the maximum subsampling and make compatible with the chunk size.

        The remainder of ``value`` modulo the chunk size is replaced by the
        nearest divisor of the chunk size (the smaller one on ties), or by the
        next smaller divisor if the maximum would be exceeded.
        """
        maximum = self._maximum_subsampling[dim]
        if maximum is not None:
            value = min(value, maximum)
        chunk = self._chunk_size[dim]
        quotient, remainder = divmod(value, chunk)
        if remainder:
            divisors = _divisors(chunk)
            i = bisect.bisect_left(divisors, remainder)
            if divisors[i] != remainder:
                upper, lower = divisors[i], divisors[i - 1]
                remainder = upper if upper - remainder < remainder - lower else lower
                if maximum is not None and quotient * chunk + remainder > maximum:
                    remainder = lower
            value = quotient * chunk + remainder
        return max(value, 1)

    def _apply_subsampling(self, scales: Sequence[float], *, nearest: bool) -> None:
        """Convert ratios between target and base cell sizes to integer factors.

        Ratios from a requested resolution are floored, so the result is never
        coarser than requested. Ratios from another grid are rounded to the
        nearest integer.
        """
        tolerance = settings.subsampling_tolerance
        factors = []
        for dim, scale in enumerate(scales):
            if not math.isfinite(scale) or scale <= 1:
                factor = 1
            elif nearest:
                factor = round_half_up(scale)
            else:
                factor = math.floor(scale + tolerance)
            factors.append(self._round_subsampling(max(factor, 1), dim))
        self._set_subsampling(factors)

    def _set_subsampling(self, factors: Sequence[int]) -> None:
        extent = self.intersection
        self._subsampling = tuple(factors)
        self._offsets = tuple(
            trunc_divmod(low, factor)[1] if factor != 1 else 0
            for low, factor in zip(extent.low, factors)
        )

    def _scales_from_resolution(
        self, corner: MathTransform, resolution: np.ndarray, extent: GridExtent
    ) -> np.ndarray:
        jacobian = corner.derivative(extent.point_of_interest())
        try:
            inverse = np.linalg.inv(jacobian) if jacobian.shape[0] == jacobian.shape[1] \
                else np.linalg.pinv(jacobian)
        except np.linalg.LinAlgError:
            inverse = np.linalg.pinv(jacobian)
        threshold = 1e-12 * np.max(np.abs(inverse))
        scales = np.full(inverse.shape[0], np.nan)
        for k in range(inverse.shape[0]):
            total, used = 0.0, False
            for j in range(inverse.shape[1]):
                c = inverse[k, j]
                if abs(c) > threshold:
                    # NaN resolutions leave the dimension unconstrained.
                    total += c * resolution[j]
                    used = True
            if used:
                scales[k] = abs(total)
        return scales

    def _scales_from_grid(self, other: GridGeometry, extent: GridExtent) -> np.ndarray:
        """Magnitude of each row of the derivative of "other grid to base grid"."""
        base_center = self.base.get_grid_to_crs(PixelInCell.CELL_CENTER)
        other_center = other.get_grid_to_crs(PixelInCell.CELL_CENTER)
        crs_dimension = base_center.target_dimensions
        base_crs = self.base.crs if self.base.is_defined(GridComponent.CRS) else None
        other_crs = other.crs if other.is_defined(GridComponent.CRS) else None
        if base_crs is not None and other_crs is not None and base_crs != other_crs:
            operation = self._service.find_operation(other_crs, base_crs)
            to_base_crs = transforms.concatenate(
                transforms.concatenate(
                    other_center,
                    _selection(operation.source_dimensions, other_center.target_dimensions),
                ),
                operation.transform,
            )
            target_dims = list(operation.target_dimensions)
        else:
            n = min(other_center.target_dimensions, crs_dimension)
            to_base_crs = transforms.concatenate(
                other_center, _selection(range(n), other_center.target_dimensions)
            )
            target_dims = list(range(n))
        if other.is_defined(GridComponent.EXTENT):
            other_point = other.extent.point_of_interest() - 0.5
        else:
            other_point = np.zeros(other_center.source_dimensions)
        other_jacobian = to_base_crs.derivative(other_point)
        base_jacobian = base_center.derivative(extent.point_of_interest() - 0.5)[target_dims, :]
        mapping = np.linalg.pinv(base_jacobian) @ other_jacobian
        return np.sqrt(np.sum(mapping ** 2, axis=1))

    # ------------------------------------------------------------------
    # Area of interest conversions
    # ------------------------------------------------------------------
    def _to_base_crs(
        self, area: Envelope, resolution: Sequence[float], crs_dimension: int
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Bounds and resolution of ``area`` in the base CRS; NaN where unconstrained."""
        if len(resolution) > max(area.dimension, crs_dimension):
            raise MismatchedDimensionError(
                f"Got {len(resolution)} resolution values for a {area.dimension}-dimensional area"
            )
        # Values beyond the dimensions of the area are ignored.
        area_resolution = np.full(area.dimension, np.nan)
        given = list(resolution)[:area.dimension]
        area_resolution[:len(given)] = given
        lower = np.full(crs_dimension, np.nan)
        upper = np.full(crs_dimension, np.nan)
        result_resolution = np.full(crs_dimension, np.nan)

        base_crs = self.base.crs if self.base.is_defined(GridComponent.CRS) else None
        if area.crs is not None and base_crs is not None and area.crs != base_crs:
            operation = self._service.find_operation(area.crs, base_crs)
            ranges = [area.unwrapped_range(i) for i in range(area.dimension)]
            lo, hi = operation.transform_envelope([r[0] for r in ranges], [r[1] for r in ranges])
            target = list(operation.target_dimensions)
            lower[target] = lo
            upper[target] = hi
            if np.any(np.isfinite(area_resolution)):
                jacobian = operation.derivative([(r[0] + r[1]) / 2 for r in ranges])
                source = area_resolution[list(operation.source_dimensions)]
                for row, dim in enumerate(target):
                    coefficients = np.abs(jacobian[row])
                    used = coefficients != 0
                    result_resolution[dim] = np.sum(coefficients[used] * source[used]) \
                        if np.any(used) else np.nan
        else:
            n = min(area.dimension, crs_dimension)
            for i in range(n):
                lower[i], upper[i] = area.unwrapped_range(i)
            result_resolution[:n] = area_resolution[:n]
        return lower, upper, result_resolution

    def _clip_to_base_envelope(self, lower: np.ndarray, upper: np.ndarray) -> None:
        """Intersect in place with the base envelope, resolving periodic axes."""
        if not self.base.is_defined(GridComponent.ENVELOPE):
            return
        envelope = self.base.envelope
        for dim in range(len(lower)):
            if math.isnan(lower[dim]) or math.isnan(upper[dim]):
                continue
            base_lower, base_upper = envelope.lower[dim], envelope.upper[dim]
            period = envelope.period(dim)
            if not math.isnan(period):
                result = wraparound.resolve(lower[dim], upper[dim], base_lower, base_upper, period)
                if result is not None:
                    lo, hi = result.lower, result.upper
                else:
                    lo, hi = math.nan, math.nan
            else:
                lo = max(lower[dim], base_lower)
                hi = min(upper[dim], base_upper)
            if not lo <= hi:
                raise DisjointExtentError(
                    f"Area of interest [{lower[dim]} … {upper[dim]}] does not intersect "
                    f"the grid domain [{base_lower} … {base_upper}] in dimension {dim}"
                )
            lower[dim], upper[dim] = lo, hi

    def _to_grid(
        self, corner: MathTransform, lower: np.ndarray, upper: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Fractional grid bounds (cell-corner convention); NaN where unconstrained."""
        grid_lower = np.full(corner.source_dimensions, np.nan)
        grid_upper = np.full(corner.source_dimensions, np.nan)
        constrained = [d for d in range(len(lower)) if not math.isnan(lower[d])]
        if not constrained:
            return grid_lower, grid_upper
        try:
            sub, grid_dims = self._service.separate(corner, constrained)
            if len(grid_dims) != len(constrained):
                raise NotSeparableError(
                    f"CRS dimensions {constrained} depend on grid dimensions {grid_dims}"
                )
            lo, hi = sub.inverse().transform_bounds(lower[constrained], upper[constrained])
        except (NotSeparableError, NonInvertibleTransformError) as exc:
            log_event(
                LOGGER,
                "derivation.separate_fallback",
                "Using the full transform to map the area of interest",
                level="debug",
                reason=str(exc),
            )
            full_lower, full_upper = self._fill_unconstrained(lower, upper)
            lo, hi = corner.inverse().transform_bounds(full_lower, full_upper)
            grid_dims = tuple(range(corner.source_dimensions))
        grid_lower[list(grid_dims)] = lo
        grid_upper[list(grid_dims)] = hi
        return grid_lower, grid_upper

    def _fill_unconstrained(self, lower: np.ndarray, upper: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        missing = np.isnan(lower)
        if not np.any(missing):
            return lower, upper
        if not self.base.is_defined(GridComponent.ENVELOPE):
            raise IncompleteGridGeometryError(
                "The base grid geometry needs an envelope for unconstrained dimensions"
            )
        envelope = self.base.envelope
        lower = np.where(missing, envelope.lower, lower)
        upper = np.where(missing, envelope.upper, upper)
        return lower, upper

    def _extent_from_area(self, area: Envelope, resolution: Sequence[float]) -> np.ndarray:
        """Resolve ``self._intersection`` from an area of interest.

        Returns the area resolution in the base CRS, NaN where not requested.
        """
        corner = self.base.get_grid_to_crs(PixelInCell.CELL_CORNER)
        lower, upper, crs_resolution = self._to_base_crs(area, resolution, corner.target_dimensions)
        self._clip_to_base_envelope(lower, upper)
        grid_lower, grid_upper = self._to_grid(corner, lower, upper)
        base = self.base.extent if self.base.is_defined(GridComponent.EXTENT) else None
        if base is None and np.any(np.isnan(grid_lower)):
            raise IncompleteGridGeometryError(
                "The area of interest leaves grid dimensions unconstrained and the base has no extent"
            )
        rounded = GridExtent.from_grid_envelope(grid_lower, grid_upper, self._rounding, base=base)
        self._intersection = self._finish_extent(rounded.low, rounded.high)
        return crs_resolution

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------
    def subgrid(self, area_of_interest: Envelope | GridGeometry | GridExtent, *resolution: float) -> "GridDerivation":
        """Restrict the grid to ``area_of_interest``, optionally coarsening it.

        ``resolution`` is a cell size per CRS dimension of an envelope, or an
        integer subsampling per grid dimension of an extent. It is not accepted
        with a grid geometry, whose own cell size is used instead.
        """
        if self._subgridded or self._state is not DerivationState.CONFIGURING:
            raise DerivationStateError("subgrid() can only be invoked once, before slice() and build()")
        if isinstance(area_of_interest, GridGeometry):
            if resolution:
                raise ValueError("A resolution can not be combined with a grid geometry")
            self._subgrid_geometry(area_of_interest)
        elif isinstance(area_of_interest, GridExtent):
            self._subgrid_extent(area_of_interest, resolution)
        elif isinstance(area_of_interest, Envelope):
            self._subgrid_envelope(area_of_interest, resolution)
        else:
            raise TypeError(f"Unsupported area of interest: {type(area_of_interest).__name__}")
        self._subgridded = True
        self._state = DerivationState.RESOLVED
        log_event(
            LOGGER,
            "derivation.subgrid",
            "Resolved sub-grid",
            level="debug",
            low=self._intersection.low if self._intersection is not None else None,
            high=self._intersection.high if self._intersection is not None else None,
            subsampling=self._subsampling,
            offsets=self._offsets,
        )
        return self

    def _subgrid_envelope(self, area: Envelope, resolution: Sequence[float]) -> None:
        if self.base.is_envelope_only:
            self._subgrid_envelope_only(area, resolution)
            return
        if not self.base.is_defined(GridComponent.GRID_TO_CRS):
            raise IncompleteGridGeometryError(
                "A grid to CRS transform is needed for mapping an envelope to grid cells"
            )
        crs_resolution = self._extent_from_area(area, resolution)
        if np.any(np.isfinite(crs_resolution)):
            corner = self.base.get_grid_to_crs(PixelInCell.CELL_CORNER)
            scales = self._scales_from_resolution(corner, crs_resolution, self._intersection)
            self._apply_subsampling(scales, nearest=False)

    def _subgrid_envelope_only(self, area: Envelope, resolution: Sequence[float]) -> None:
        envelope = self.base.envelope
        lower, upper, crs_resolution = self._to_base_crs(area, resolution, envelope.dimension)
        self._clip_to_base_envelope(lower, upper)
        missing = np.isnan(lower)
        lower = np.where(missing, envelope.lower, lower)
        upper = np.where(missing, envelope.upper, upper)
        self._envelope = Envelope(tuple(lower), tuple(upper), envelope.crs)
        if np.any(np.isfinite(crs_resolution)):
            self._resolution = tuple(float(r) for r in crs_resolution)

    def _subgrid_geometry(self, other: GridGeometry) -> None:
        if other.is_envelope_only:
            other_resolution = other.resolution if other.is_defined(GridComponent.RESOLUTION) else ()
            self._subgrid_envelope(other.envelope, other_resolution)
            return
        if not (self.base.is_defined(GridComponent.GRID_TO_CRS) and other.is_defined(GridComponent.GRID_TO_CRS)):
            if other.is_defined(GridComponent.EXTENT) and self.base.is_defined(GridComponent.EXTENT):
                self._subgrid_extent(other.extent, ())
                return
            raise IncompleteGridGeometryError(
                "Both grid geometries need a grid to CRS transform, or both an extent"
            )
        if other.is_defined(GridComponent.ENVELOPE):
            self._extent_from_area(other.envelope, ())
        else:
            self._intersection = self._default_extent()
        scales = self._scales_from_grid(other, self._intersection)
        self._apply_subsampling(scales, nearest=True)

    def _subgrid_extent(self, area: GridExtent, subsampling: Sequence[int]) -> None:
        base = self._base_extent()
        if area.dimension != base.dimension:
            raise MismatchedDimensionError(
                f"Area of interest has {area.dimension} dimensions but the grid has {base.dimension}"
            )
        clipped = area.intersect(base)
        self._intersection = self._finish_extent(clipped.low, clipped.high)
        if subsampling:
            factors = self._validated(subsampling, "subsampling", 1)
            factors = factors + (1,) * (self._dimension - len(factors))
            self._set_subsampling([self._round_subsampling(f, i) for i, f in enumerate(factors)])

    def slice(self, position: DirectPosition) -> "GridDerivation":
        """Collapse the dimensions addressed by ``position`` to a single cell.

        NaN coordinates, and dimensions beyond those of ``position``, are left
        unchanged. A point on the upper edge of the extent belongs to the last
        cell.
        """
        if self._result is not None:
            raise DerivationStateError("slice() can not be invoked after build()")
        center = self.base.get_grid_to_crs(PixelInCell.CELL_CENTER)
        extent = self.intersection
        crs_dimension = center.target_dimensions

        values = np.full(crs_dimension, np.nan)
        base_crs = self.base.crs if self.base.is_defined(GridComponent.CRS) else None
        if position.crs is not None and base_crs is not None and position.crs != base_crs:
            operation = self._service.find_operation(position.crs, base_crs)
            values[list(operation.target_dimensions)] = operation.transform_point(position.coordinates)
        else:
            n = min(position.dimension, crs_dimension)
            values[:n] = position.coordinates[:n]
        if self.base.is_defined(GridComponent.ENVELOPE):
            envelope = self.base.envelope
            for dim in range(crs_dimension):
                values[dim] = wraparound.shift_into(
                    values[dim], envelope.lower[dim], envelope.upper[dim], axis_period(base_crs, dim)
                )

        addressed = [d for d in range(crs_dimension) if math.isfinite(values[d])]
        if not addressed:
            self._intersection = extent
            self._state = DerivationState.RESOLVED
            return self
        try:
            sub, grid_dims = self._service.separate(center, addressed)
            if len(grid_dims) != len(addressed):
                raise NotSeparableError(
                    f"CRS dimensions {addressed} depend on grid dimensions {grid_dims}"
                )
            cell = sub.inverse().transform_point(values[addressed])
        except (NotSeparableError, NonInvertibleTransformError):
            if len(addressed) != crs_dimension:
                raise
            grid_dims = tuple(range(center.source_dimensions))
            cell = center.inverse().transform_point(values)

        tolerance = settings.slice_edge_tolerance
        subsampling = list(self._subsampling)
        offsets = list(self._offsets)
        for dim, coordinate in zip(grid_dims, cell):
            low, high = extent.low[dim], extent.high[dim]
            index = math.floor(coordinate + 0.5)
            if index > high and coordinate <= high + 0.5 + tolerance:
                index = high
            elif index < low and coordinate >= low - 0.5 - tolerance:
                index = low
            if not low <= index <= high:
                raise PointOutsideCoverageError(
                    f"Position {position.coordinates} is outside the grid: cell {index} "
                    f"not in [{low} … {high}] in dimension {dim}"
                )
            extent = extent.with_range(dim, index, index)
            subsampling[dim] = 1
            offsets[dim] = 0
        self._intersection = extent
        self._subsampling = tuple(subsampling)
        self._offsets = tuple(offsets)
        self._state = DerivationState.RESOLVED
        log_event(
            LOGGER,
            "derivation.slice",
            "Sliced grid",
            level="debug",
            dimensions=tuple(int(d) for d in grid_dims),
            low=extent.low,
            high=extent.high,
        )
        return self

    def slice_by_ratio(self, ratio: float, *dimensions_to_keep: int) -> "GridDerivation":
        """Collapse every dimension not kept to the cell at ``ratio`` of its range."""
        if self._result is not None:
            raise DerivationStateError("slice_by_ratio() can not be invoked after build()")
        if not 0 <= ratio <= 1:
            raise ValueError(f"Ratio must be in [0, 1], got {ratio}")
        for dim in dimensions_to_keep:
            if not 0 <= dim < self._dimension:
                raise ValueError(f"Dimension {dim} out of range")
        extent = self.intersection
        subsampling = list(self._subsampling)
        offsets = list(self._offsets)
        for dim in range(extent.dimension):
            if dim in dimensions_to_keep:
                continue
            size = extent.size(dim)
            index = extent.low[dim] + min(math.floor(ratio * size), size - 1)
            extent = extent.with_range(dim, index, index)
            subsampling[dim] = 1
            offsets[dim] = 0
        self._intersection = extent
        self._subsampling = tuple(subsampling)
        self._offsets = tuple(offsets)
        self._state = DerivationState.RESOLVED
        return self

    # ------------------------------------------------------------------
    # Result
    # ------------------------------------------------------------------
    def build(self) -> GridGeometry:
        """Assemble the derived grid geometry; later calls return the same instance."""
        if self._result is not None:
            return self._result
        base = self.base
        if base.is_envelope_only:
            result = self._build_envelope_only()
        elif not base.is_defined(GridComponent.GRID_TO_CRS):
            result = self._build_extent_only()
        else:
            result = self._build_full()
        self._result = result
        self._state = DerivationState.RESOLVED
        log_event(
            LOGGER,
            "derivation.build",
            "Built derived grid geometry",
            level="debug",
            geometry=repr(result),
        )
        return result

    def _build_envelope_only(self) -> GridGeometry:
        base = self.base
        envelope = self._envelope if self._envelope is not None else base.envelope
        resolution = self._resolution
        if resolution is None and base.is_defined(GridComponent.RESOLUTION):
            resolution = base.resolution
        return GridGeometry.from_envelope(envelope, resolution=resolution)

    def _build_extent_only(self) -> GridGeometry:
        extent = self.intersection
        resolution = None
        if any(s != 1 for s in self._subsampling):
            extent = extent.subsample(self._subsampling, self._offsets)
            resolution = tuple(float(s) for s in self._subsampling)
        crs = self.base.crs if self.base.is_defined(GridComponent.CRS) else None
        return GridGeometry._create(extent, None, None, None, crs, resolution)

    def _build_full(self) -> GridGeometry:
        base = self.base
        center = base.get_grid_to_crs(PixelInCell.CELL_CENTER)
        corner = base.get_grid_to_crs(PixelInCell.CELL_CORNER)
        if self._intersection is None and not base.is_defined(GridComponent.EXTENT):
            extent = None
        else:
            extent = self.intersection
        if extent is not None and any(s != 1 for s in self._subsampling):
            to_base = transforms.scale_and_translation(self._subsampling, self._offsets)
            corner = transforms.concatenate(to_base, corner)
            center = transforms.concatenate(
                transforms.translation(*([0.5] * corner.source_dimensions)), corner
            )
            extent = extent.subsample(self._subsampling, self._offsets)

        crs = base.crs if base.is_defined(GridComponent.CRS) else None
        envelope = None
        if extent is not None:
            lower, upper = corner.transform_bounds(*extent.corner_bounds())
            if self._clipping is GridClippingMode.STRICT and base.is_defined(GridComponent.ENVELOPE):
                base_envelope = base.envelope
                clipped_lower = np.maximum(lower, base_envelope.lower)
                clipped_upper = np.minimum(upper, base_envelope.upper)
                if np.all(clipped_lower <= clipped_upper):
                    lower, upper = clipped_lower, clipped_upper
            envelope = Envelope(tuple(lower), tuple(upper), crs)
        resolution = _resolution(center, extent)
        return GridGeometry._create(extent, center, corner, envelope, crs, resolution)


def _resolution(center: MathTransform, extent: GridExtent | None) -> Tuple[float, ...]:
    point = extent.point_of_interest() - 0.5 if extent is not None else np.zeros(center.source_dimensions)
    jacobian = center.derivative(point)
    return tuple(float(v) for v in np.sqrt(np.sum(jacobian ** 2, axis=1)))
