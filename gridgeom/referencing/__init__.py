"""Coordinate systems, reference systems, transforms and operations."""

from .crs import (
    ELLIPSOIDAL_HEIGHT,
    ELLIPSOIDAL_HEIGHT_CM,
    TIME,
    WGS84,
    WGS84_3D,
    WGS84_LATITUDE_FIRST,
    WGS84_WITH_TIME,
    CoordinateReferenceSystem,
    compound,
    from_authority,
    geographic,
    temporal,
    vertical,
)
from .cs import AxesConvention, AxisDirection, CoordinateAxis, CoordinateSystem, CSKind
from .operations import DEFAULT_SERVICE, CoordinateOperation, CoordinateTransformService
from .transforms import LinearTransform, MathTransform

__all__ = [
    "AxesConvention",
    "AxisDirection",
    "CSKind",
    "CoordinateAxis",
    "CoordinateOperation",
    "CoordinateReferenceSystem",
    "CoordinateSystem",
    "CoordinateTransformService",
    "DEFAULT_SERVICE",
    "ELLIPSOIDAL_HEIGHT",
    "ELLIPSOIDAL_HEIGHT_CM",
    "LinearTransform",
    "MathTransform",
    "TIME",
    "WGS84",
    "WGS84_3D",
    "WGS84_LATITUDE_FIRST",
    "WGS84_WITH_TIME",
    "compound",
    "from_authority",
    "geographic",
    "temporal",
    "vertical",
]
