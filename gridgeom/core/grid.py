"""Grid geometry: the link between grid cell indices and real-world coordinates.

Conventions
- **Anchors**: a grid-to-CRS transform maps either cell centers
  (``PixelInCell.CELL_CENTER``) or cell corners (``PixelInCell.CELL_CORNER``).
  Both are kept; ``corner(c) == center(c - 0.5)``.
- **Envelope**: computed from the extent corners through the corner transform,
  so it covers whole cells. Derived geometries may clip it to their base.
- **Resolution**: per CRS dimension, the magnitude of the corresponding row of
  the center transform derivative at the extent center.
- **Components**: extent, transform, CRS, envelope and resolution are each
  optional; ``is_defined`` reports which ones are available and the matching
  properties raise ``IncompleteGridGeometryError`` otherwise.
"""

from __future__ import annotations

import math
from enum import Enum, IntFlag
from typing import Tuple

import numpy as np
from rasterio.transform import Affine

from gridgeom.core.envelope import Envelope
from gridgeom.core.extent import GridExtent, GridRoundingMode
from gridgeom.errors import IncompleteGridGeometryError, MismatchedDimensionError
from gridgeom.referencing import transforms
from gridgeom.referencing.crs import CoordinateReferenceSystem, from_authority
from gridgeom.referencing.transforms import MathTransform


class PixelInCell(str, Enum):
    CELL_CENTER = "cell_center"
    CELL_CORNER = "cell_corner"


class GridOrientation(str, Enum):
    """How an extent is mapped to an envelope when no transform is given."""

    HOMOTHETY = "homothety"
    REFLECTION_Y = "reflection_y"


class GridComponent(IntFlag):
    CRS = 1
    ENVELOPE = 2
    EXTENT = 4
    GRID_TO_CRS = 8
    RESOLUTION = 16


def _half_cell(dimension: int, sign: float) -> MathTransform:
    return transforms.translation(*([sign * 0.5] * dimension))


def _anchored(
    grid_to_crs: MathTransform | None, anchor: PixelInCell
) -> Tuple[MathTransform | None, MathTransform | None]:
    """Return ``(center, corner)`` transforms from one of them."""
    if grid_to_crs is None:
        return None, None
    n = grid_to_crs.source_dimensions
    if anchor is PixelInCell.CELL_CORNER:
        return transforms.concatenate(_half_cell(n, +1), grid_to_crs), grid_to_crs
    return grid_to_crs, transforms.concatenate(_half_cell(n, -1), grid_to_crs)


def _envelope_of(
    extent: GridExtent, corner: MathTransform, crs: CoordinateReferenceSystem | None
) -> Envelope:
    lower, upper = corner.transform_bounds(*extent.corner_bounds())
    return Envelope(tuple(lower), tuple(upper), crs)


def _resolution_of(center: MathTransform, extent: GridExtent | None) -> Tuple[float, ...]:
    if extent is not None:
        point = extent.point_of_interest() - 0.5
    else:
        point = np.zeros(center.source_dimensions)
    jacobian = center.derivative(point)
    return tuple(float(v) for v in np.sqrt(np.sum(jacobian ** 2, axis=1)))


class GridGeometry:
    """Immutable description of a grid: extent, grid-to-CRS transform, CRS."""

    __slots__ = ("_extent", "_center", "_corner", "_envelope", "_crs", "_resolution")

    def __init__(
        self,
        extent: GridExtent | None = None,
        anchor: PixelInCell = PixelInCell.CELL_CENTER,
        grid_to_crs: MathTransform | None = None,
        crs: CoordinateReferenceSystem | None = None,
    ) -> None:
        if extent is None and grid_to_crs is None and crs is None:
            raise IncompleteGridGeometryError("At least one grid geometry component must be given")
        if extent is not None and grid_to_crs is not None \
                and extent.dimension != grid_to_crs.source_dimensions:
            raise MismatchedDimensionError(
                f"Extent has {extent.dimension} dimensions but the transform "
                f"expects {grid_to_crs.source_dimensions}"
            )
        if crs is not None and grid_to_crs is not None \
                and crs.dimension != grid_to_crs.target_dimensions:
            raise MismatchedDimensionError(
                f"CRS has {crs.dimension} dimensions but the transform "
                f"produces {grid_to_crs.target_dimensions}"
            )
        center, corner = _anchored(grid_to_crs, PixelInCell(anchor))
        envelope = _envelope_of(extent, corner, crs) if extent is not None and corner is not None else None
        resolution = _resolution_of(center, extent) if center is not None else None
        self._assign(extent, center, corner, envelope, crs, resolution)

    def _assign(self, extent, center, corner, envelope, crs, resolution) -> None:
        self._extent = extent
        self._center = center
        self._corner = corner
        self._envelope = envelope
        self._crs = crs
        self._resolution = resolution

    @classmethod
    def _create(
        cls,
        extent: GridExtent | None,
        center: MathTransform | None,
        corner: MathTransform | None,
        envelope: Envelope | None,
        crs: CoordinateReferenceSystem | None,
        resolution: Tuple[float, ...] | None,
    ) -> "GridGeometry":
        geometry = cls.__new__(cls)
        geometry._assign(extent, center, corner, envelope, crs, resolution)
        return geometry

    @classmethod
    def from_envelope(
        cls,
        envelope: Envelope,
        *,
        anchor: PixelInCell = PixelInCell.CELL_CENTER,
        grid_to_crs: MathTransform | None = None,
        rounding: GridRoundingMode = GridRoundingMode.NEAREST,
        resolution: Tuple[float, ...] | None = None,
    ) -> "GridGeometry":
        """Grid covering ``envelope``; envelope-only when no transform is given.

        With a transform, the extent is the envelope mapped to grid cells and
        rounded with ``rounding``. The envelope of the result is the envelope
        of that extent, clipped to the given one.
        """
        if grid_to_crs is None:
            return cls._create(None, None, None, envelope, envelope.crs, resolution)
        center, corner = _anchored(grid_to_crs, PixelInCell(anchor))
        if envelope.dimension != corner.target_dimensions:
            raise MismatchedDimensionError(
                f"Envelope has {envelope.dimension} dimensions but the transform "
                f"produces {corner.target_dimensions}"
            )
        ranges = [envelope.unwrapped_range(i) for i in range(envelope.dimension)]
        lower = np.array([r[0] for r in ranges])
        upper = np.array([r[1] for r in ranges])
        grid_lower, grid_upper = corner.inverse().transform_bounds(lower, upper)
        extent = GridExtent.from_grid_envelope(grid_lower, grid_upper, GridRoundingMode(rounding))
        computed = _envelope_of(extent, corner, envelope.crs)
        clipped = Envelope(
            tuple(np.maximum(computed.lower, lower)),
            tuple(np.minimum(computed.upper, upper)),
            envelope.crs,
        )
        return cls._create(extent, center, corner, clipped, envelope.crs, _resolution_of(center, extent))

    @classmethod
    def from_extent_and_envelope(
        cls,
        extent: GridExtent,
        envelope: Envelope,
        orientation: GridOrientation = GridOrientation.HOMOTHETY,
    ) -> "GridGeometry":
        """Grid whose cells evenly divide ``envelope``.

        With ``REFLECTION_Y`` the second grid axis goes from the envelope
        upper bound downward, as in north-up images.
        """
        n = extent.dimension
        if envelope.dimension != n:
            raise MismatchedDimensionError("Extent and envelope differ in dimension")
        matrix = np.zeros((n + 1, n + 1))
        matrix[n, n] = 1.0
        for i in range(n):
            lower, upper = envelope.unwrapped_range(i)
            scale = (upper - lower) / extent.size(i)
            if orientation is GridOrientation.REFLECTION_Y and i == 1:
                matrix[i, i] = -scale
                matrix[i, n] = upper + extent.low[i] * scale
            else:
                matrix[i, i] = scale
                matrix[i, n] = lower - extent.low[i] * scale
        return cls(extent, PixelInCell.CELL_CORNER, transforms.linear(matrix), envelope.crs)

    @classmethod
    def from_affine(
        cls,
        width: int,
        height: int,
        affine: Affine,
        crs: CoordinateReferenceSystem | str | None = None,
    ) -> "GridGeometry":
        """Two-dimensional grid from a rasterio ``Affine`` (cell-corner based)."""
        if isinstance(crs, str):
            crs = from_authority(crs)
        return cls(GridExtent.of_size(width, height), PixelInCell.CELL_CORNER,
                   transforms.from_affine(affine), crs)

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------
    def is_defined(self, components: GridComponent) -> bool:
        """Whether every component in the ``components`` bit mask is available."""
        available = GridComponent(0)
        if self._crs is not None:
            available |= GridComponent.CRS
        if self._envelope is not None:
            available |= GridComponent.ENVELOPE
        if self._extent is not None:
            available |= GridComponent.EXTENT
        if self._center is not None:
            available |= GridComponent.GRID_TO_CRS
        if self._resolution is not None and any(math.isfinite(r) for r in self._resolution):
            available |= GridComponent.RESOLUTION
        return (components & ~available) == 0

    @property
    def is_envelope_only(self) -> bool:
        return self._envelope is not None and self._extent is None and self._center is None

    @property
    def dimension(self) -> int:
        if self._extent is not None:
            return self._extent.dimension
        if self._center is not None:
            return self._center.source_dimensions
        if self._envelope is not None:
            return self._envelope.dimension
        return self._crs.dimension

    def _require(self, value, name: str):
        if value is None:
            raise IncompleteGridGeometryError(f"The grid geometry has no {name}")
        return value

    @property
    def extent(self) -> GridExtent:
        return self._require(self._extent, "extent")

    @property
    def crs(self) -> CoordinateReferenceSystem:
        return self._require(self._crs, "coordinate reference system")

    @property
    def envelope(self) -> Envelope:
        return self._require(self._envelope, "envelope")

    @property
    def resolution(self) -> Tuple[float, ...]:
        if not self.is_defined(GridComponent.RESOLUTION):
            raise IncompleteGridGeometryError("The grid geometry has no resolution")
        return self._resolution

    @property
    def grid_to_crs(self) -> MathTransform:
        """Cell-center transform."""
        return self.get_grid_to_crs(PixelInCell.CELL_CENTER)

    def get_grid_to_crs(self, anchor: PixelInCell = PixelInCell.CELL_CENTER) -> MathTransform:
        transform = self._corner if PixelInCell(anchor) is PixelInCell.CELL_CORNER else self._center
        return self._require(transform, "grid to CRS transform")

    def to_affine(self) -> Affine:
        """rasterio ``Affine`` of a two-dimensional linear corner transform."""
        matrix = self.get_grid_to_crs(PixelInCell.CELL_CORNER).matrix
        if matrix is None or matrix.shape != (3, 3):
            raise ValueError("Only two-dimensional linear transforms convert to Affine")
        return Affine(*matrix[0], *matrix[1])

    def derive(self):
        """Start a ``GridDerivation`` based on this grid geometry."""
        from gridgeom.core.derivation import GridDerivation

        return GridDerivation(self)

    # ------------------------------------------------------------------
    def _key(self) -> tuple:
        return (self._extent, self._center, self._envelope, self._crs, self._resolution)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GridGeometry):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash((self._extent, self._center, self._crs))

    def __repr__(self) -> str:
        parts = []
        if self._extent is not None:
            parts.append(str(self._extent))
        if self._center is not None:
            parts.append(f"grid_to_crs={self._center!r}")
        if self._envelope is not None:
            parts.append(f"envelope={self._envelope.lower}–{self._envelope.upper}")
        if self._crs is not None:
            parts.append(f"crs={self._crs.name!r}")
        return f"GridGeometry({', '.join(parts)})"
