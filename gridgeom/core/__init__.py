"""Grid extents, envelopes, grid geometries and their derivation."""

from .derivation import DerivationState, GridClippingMode, GridDerivation
from .envelope import DirectPosition, Envelope
from .extent import DimensionNameType, GridExtent, GridRoundingMode
from .grid import GridComponent, GridGeometry, GridOrientation, PixelInCell

__all__ = [
    "DerivationState",
    "DimensionNameType",
    "DirectPosition",
    "Envelope",
    "GridClippingMode",
    "GridComponent",
    "GridDerivation",
    "GridExtent",
    "GridGeometry",
    "GridOrientation",
    "GridRoundingMode",
    "PixelInCell",
]
