"""Coordinate operations between reference systems.

The service only knows a few kinds of operations:

- axis swaps, direction flips and unit changes between components sharing a
  datum (or, for horizontal components, an authority code);
- map projection changes between horizontal components with different
  authority codes, delegated to GDAL through ``rasterio.warp``;
- epoch shifts between temporal components.

Components of the source without counterpart in the target are ignored, and
target components without counterpart in the source are left unconstrained.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from gridgeom.errors import FactoryError, NotSeparableError
from gridgeom.logging_utils import log_event
from gridgeom.referencing.crs import CoordinateReferenceSystem
from gridgeom.referencing.cs import AxisDirection, CoordinateAxis, CSKind
from gridgeom.referencing.transforms import (
    ComponentwiseTransform,
    LinearTransform,
    MathTransform,
    ReprojectionTransform,
    concatenate,
    identity,
)

LOGGER = logging.getLogger(__name__)

_XY = (AxisDirection.EAST, AxisDirection.NORTH)


@dataclass(frozen=True)
class CoordinateOperation:
    """Transform from some dimensions of ``source_crs`` to some of ``target_crs``.

    ``transform`` reads coordinates in ``source_dimensions`` order and writes
    them in ``target_dimensions`` order.
    """

    source_crs: CoordinateReferenceSystem
    target_crs: CoordinateReferenceSystem
    source_dimensions: Tuple[int, ...]
    target_dimensions: Tuple[int, ...]
    transform: MathTransform

    @property
    def is_identity(self) -> bool:
        return self.transform.is_identity

    def transform_point(self, coordinates: Sequence[float]) -> np.ndarray:
        values = np.asarray(coordinates, dtype=float)[list(self.source_dimensions)]
        return self.transform.transform_point(values)

    def transform_envelope(self, lower: Sequence[float], upper: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
        """Transform a source box; longitude ranges crossing the antimeridian stay continuous."""
        dims = list(self.source_dimensions)
        return self.transform.transform_bounds(
            np.asarray(lower, dtype=float)[dims], np.asarray(upper, dtype=float)[dims]
        )

    def derivative(self, coordinates: Sequence[float]) -> np.ndarray:
        values = np.asarray(coordinates, dtype=float)[list(self.source_dimensions)]
        return self.transform.derivative(values)


def _category(crs: CoordinateReferenceSystem) -> str:
    if crs.is_horizontal:
        return "horizontal"
    return crs.kind.value


def _axis_matrix(
    source_axes: Sequence[CoordinateAxis], target_axes: Sequence[CoordinateAxis]
) -> LinearTransform | None:
    """Matrix converting between two axis lists of the same quantities, or None."""
    if len(source_axes) != len(target_axes):
        return None
    m = np.zeros((len(target_axes) + 1, len(source_axes) + 1))
    m[-1, -1] = 1.0
    for i, target in enumerate(target_axes):
        for j, source in enumerate(source_axes):
            if source.direction.absolute is target.direction.absolute:
                try:
                    factor = source.unit.converter_to(target.unit)
                except ValueError:
                    return None
                if source.direction is not target.direction:
                    factor = -factor
                m[i, j] = factor
                break
        else:
            return None
    return LinearTransform(m)


def _to_xy(crs: CoordinateReferenceSystem, native_unit_factor: float = 1.0) -> LinearTransform | None:
    """Matrix from the CRS axes to the (x, y) order used by rasterio."""
    m = np.zeros((3, 3))
    m[-1, -1] = 1.0
    for i, wanted in enumerate(_XY):
        for j, axis in enumerate(crs.coordinate_system.axes):
            if axis.direction.absolute is wanted:
                factor = axis.unit.to_base / native_unit_factor
                m[i, j] = -factor if axis.direction.is_negative else factor
                break
        else:
            return None
    return LinearTransform(m)


def _native_factor(crs: CoordinateReferenceSystem) -> float:
    if crs.is_geographic:
        return 1.0
    _, factor = crs.to_rasterio().linear_units_factor
    return float(factor)


class CoordinateTransformService:
    """Find coordinate operations and isolate parts of transforms."""

    def find_operation(
        self, source: CoordinateReferenceSystem, target: CoordinateReferenceSystem
    ) -> CoordinateOperation:
        if source == target:
            dims = tuple(range(source.dimension))
            return CoordinateOperation(source, target, dims, dims, identity(source.dimension))

        source_parts = list(source.split_components())
        used: set[int] = set()
        steps: List[Tuple[Tuple[int, ...], Tuple[int, ...], MathTransform]] = []
        for target_dims, target_part in target.split_components():
            for k, (source_dims, source_part) in enumerate(source_parts):
                if k in used:
                    continue
                step = self._component_transform(source_part, target_part)
                if step is not None:
                    used.add(k)
                    steps.append((source_dims, target_dims, step))
                    break
        if not steps:
            raise FactoryError(
                f"No coordinate operation from '{source.name}' to '{target.name}'"
            )

        source_dims = tuple(d for dims, _, _ in steps for d in dims)
        target_dims = tuple(d for _, dims, _ in steps for d in dims)
        src_pos = {d: i for i, d in enumerate(source_dims)}
        tgt_pos = {d: i for i, d in enumerate(target_dims)}
        parts = tuple(
            (tuple(src_pos[d] for d in s), tuple(tgt_pos[d] for d in t), step)
            for s, t, step in steps
        )
        transform = ComponentwiseTransform(parts, len(source_dims), len(target_dims))
        log_event(
            LOGGER,
            "operation.found",
            "Found coordinate operation",
            level="debug",
            source=source.name,
            target=target.name,
            source_dimensions=source_dims,
            target_dimensions=target_dims,
        )
        return CoordinateOperation(source, target, source_dims, target_dims, transform)

    def _component_transform(
        self, source: CoordinateReferenceSystem, target: CoordinateReferenceSystem
    ) -> MathTransform | None:
        if _category(source) != _category(target):
            return None
        source_axes = source.coordinate_system.axes
        target_axes = target.coordinate_system.axes
        if source.is_horizontal:
            same_system = (
                source.authority == target.authority
                if source.authority and target.authority
                else source.datum is not None and source.datum == target.datum
                and source.kind is target.kind
            )
            if same_system:
                return _axis_matrix(source_axes, target_axes)
            if not (source.authority and target.authority):
                return None
            return self._reprojection(source, target)
        if source.kind is CSKind.AFFINE:
            return _axis_matrix(source_axes, target_axes)
        if source.datum is None or source.datum != target.datum:
            return None
        return _axis_matrix(source_axes, target_axes)

    def _reprojection(
        self, source: CoordinateReferenceSystem, target: CoordinateReferenceSystem
    ) -> MathTransform | None:
        to_xy = _to_xy(source, _native_factor(source))
        from_xy = _to_xy(target, _native_factor(target))
        if to_xy is None or from_xy is None:
            return None
        log_event(
            LOGGER,
            "operation.reproject",
            "Delegating map projection change to rasterio",
            level="debug",
            source=source.authority,
            target=target.authority,
        )
        reprojection = ReprojectionTransform(source.authority, target.authority)
        return concatenate(concatenate(to_xy, reprojection), from_xy.inverse())

    def separate(
        self, transform: MathTransform, target_dims: Iterable[int]
    ) -> Tuple[MathTransform, Tuple[int, ...]]:
        """Return the part of ``transform`` computing ``target_dims``.

        The second element lists the source dimensions read by that part.
        """
        dims = tuple(target_dims)
        sub, sources = transform.restrict(dims)
        if not sources:
            raise NotSeparableError(f"Dimensions {dims} are constant in this transform")
        return sub, sources


DEFAULT_SERVICE = CoordinateTransformService()
