"""Exceptions raised while building or deriving grid geometries."""

from __future__ import annotations


class GridGeometryError(Exception):
    """Base class for every error raised by gridgeom."""


class DisjointExtentError(GridGeometryError):
    """Raised when an area of interest does not intersect the grid domain."""


class PointOutsideCoverageError(DisjointExtentError):
    """Raised when a slice position falls outside the grid extent."""


class IncompleteGridGeometryError(GridGeometryError):
    """Raised when a grid geometry lacks a component needed by the operation."""


class MismatchedDimensionError(GridGeometryError, ValueError):
    """Raised when two objects do not have compatible numbers of dimensions."""


class DerivationStateError(GridGeometryError, RuntimeError):
    """Raised when a grid derivation is configured or resolved out of order."""


class TransformError(GridGeometryError):
    """Raised when coordinates cannot be transformed."""


class NonInvertibleTransformError(TransformError):
    """Raised when the inverse of a transform is requested but does not exist."""


class NotSeparableError(TransformError):
    """Raised when a transform cannot be restricted to a subset of dimensions."""


class FactoryError(GridGeometryError):
    """Raised when no coordinate operation exists between two reference systems."""
