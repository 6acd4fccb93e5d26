"""Grid geometry derivation: sub-grids, subsampling and slices of n-dimensional grids."""

from .core import (
    DerivationState,
    DimensionNameType,
    DirectPosition,
    Envelope,
    GridClippingMode,
    GridComponent,
    GridDerivation,
    GridExtent,
    GridGeometry,
    GridOrientation,
    GridRoundingMode,
    PixelInCell,
)
from .errors import (
    DerivationStateError,
    DisjointExtentError,
    GridGeometryError,
    IncompleteGridGeometryError,
    MismatchedDimensionError,
    PointOutsideCoverageError,
)

__all__ = [
    "DerivationState",
    "DerivationStateError",
    "DimensionNameType",
    "DirectPosition",
    "DisjointExtentError",
    "Envelope",
    "GridClippingMode",
    "GridComponent",
    "GridDerivation",
    "GridExtent",
    "GridGeometry",
    "GridGeometryError",
    "GridOrientation",
    "GridRoundingMode",
    "IncompleteGridGeometryError",
    "MismatchedDimensionError",
    "PixelInCell",
    "PointOutsideCoverageError",
]
