"""Composable coordinate transforms.

Every transform maps points of ``source_dimensions`` coordinates to points of
``target_dimensions`` coordinates. Points are passed as ``(N, dim)`` numpy
arrays; ``transform_point`` is a convenience for a single point.

``restrict(target_dims)`` isolates the part of a transform computing only the
requested target dimensions and reports which source dimensions it reads. It
raises ``NotSeparableError`` when the transform can not be split that way.
"""

from __future__ import annotations

import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import cached_property
from typing import Iterable, Sequence, Tuple

import numpy as np
from rasterio.crs import CRS as RasterioCRS
from rasterio.warp import transform as warp_transform
from rasterio.warp import transform_bounds

from gridgeom.config import settings
from gridgeom.errors import MismatchedDimensionError, NonInvertibleTransformError, NotSeparableError

Bounds = Tuple[np.ndarray, np.ndarray]


def _as_points(points: object, dimension: int) -> np.ndarray:
    pts = np.atleast_2d(np.asarray(points, dtype=float))
    if pts.shape[1] != dimension:
        raise MismatchedDimensionError(
            f"Expected points with {dimension} coordinates, got {pts.shape[1]}"
        )
    return pts


def _check_dims(dims: Iterable[int], dimension: int) -> Tuple[int, ...]:
    result = tuple(sorted(set(int(d) for d in dims)))
    if not result:
        raise ValueError("At least one dimension must be selected")
    if result[0] < 0 or result[-1] >= dimension:
        raise ValueError(f"Dimensions {result} out of range for {dimension} dimensions")
    return result


def _sample_box(lower: np.ndarray, upper: np.ndarray) -> np.ndarray:
    """Regularly spaced points covering a box, including its corners."""
    n = len(lower)
    per_axis = settings.envelope_densify_points if n <= 2 else (5 if n == 3 else 3)
    axes = [
        np.linspace(lo, hi, per_axis) if hi > lo else np.array([lo])
        for lo, hi in zip(lower, upper)
    ]
    grids = np.meshgrid(*axes, indexing="ij")
    return np.column_stack([g.ravel() for g in grids])


class MathTransform(ABC):
    """Base class of coordinate transforms."""

    @property
    @abstractmethod
    def source_dimensions(self) -> int: ...

    @property
    @abstractmethod
    def target_dimensions(self) -> int: ...

    @abstractmethod
    def transform(self, points: object) -> np.ndarray: ...

    @property
    def is_identity(self) -> bool:
        return False

    @property
    def matrix(self) -> np.ndarray | None:
        """Augmented matrix of linear transforms, ``None`` otherwise."""
        return None

    def transform_point(self, coordinates: Sequence[float]) -> np.ndarray:
        return self.transform(np.asarray(coordinates, dtype=float)[None, :])[0]

    def inverse(self) -> "MathTransform":
        raise NonInvertibleTransformError(f"{type(self).__name__} is not invertible")

    def derivative(self, point: Sequence[float]) -> np.ndarray:
        """Jacobian matrix (target x source) estimated by central differences."""
        p = np.asarray(point, dtype=float)
        columns = []
        for j in range(self.source_dimensions):
            step = 1e-6 * max(1.0, abs(p[j]))
            plus = p.copy()
            minus = p.copy()
            plus[j] += step
            minus[j] -= step
            columns.append((self.transform_point(plus) - self.transform_point(minus)) / (2 * step))
        return np.column_stack(columns)

    def restrict(self, target_dims: Iterable[int]) -> Tuple["MathTransform", Tuple[int, ...]]:
        dims = _check_dims(target_dims, self.target_dimensions)
        if dims == tuple(range(self.target_dimensions)):
            return self, tuple(range(self.source_dimensions))
        raise NotSeparableError(f"{type(self).__name__} can not be restricted to dimensions {dims}")

    def transform_bounds(self, lower: Sequence[float], upper: Sequence[float]) -> Bounds:
        """Bounding box of the image of the box ``[lower, upper]``."""
        points = self.transform(_sample_box(np.asarray(lower, float), np.asarray(upper, float)))
        return points.min(axis=0), points.max(axis=0)


class LinearTransform(MathTransform):
    """Affine transform backed by an augmented ``(target+1, source+1)`` matrix."""

    __slots__ = ("_matrix",)

    def __init__(self, matrix: object) -> None:
        m = np.array(matrix, dtype=float)
        if m.ndim != 2 or m.shape[0] < 1 or m.shape[1] < 1:
            raise ValueError("A linear transform needs a two-dimensional matrix")
        expected = np.zeros(m.shape[1])
        expected[-1] = 1.0
        if not np.array_equal(m[-1], expected):
            raise ValueError("The last row of an affine matrix must be [0 ... 0 1]")
        m.setflags(write=False)
        self._matrix = m

    @property
    def source_dimensions(self) -> int:
        return self._matrix.shape[1] - 1

    @property
    def target_dimensions(self) -> int:
        return self._matrix.shape[0] - 1

    @property
    def matrix(self) -> np.ndarray:
        return self._matrix

    @property
    def is_identity(self) -> bool:
        m = self._matrix
        return m.shape[0] == m.shape[1] and np.array_equal(m, np.eye(m.shape[0]))

    def transform(self, points: object) -> np.ndarray:
        s = self.source_dimensions
        pts = _as_points(points, s)
        return pts @ self._matrix[:-1, :s].T + self._matrix[:-1, s]

    def inverse(self) -> "LinearTransform":
        if self.source_dimensions != self.target_dimensions:
            raise NonInvertibleTransformError(
                f"A {self.target_dimensions}x{self.source_dimensions} transform is not invertible"
            )
        try:
            return LinearTransform(np.linalg.inv(self._matrix))
        except np.linalg.LinAlgError as exc:
            raise NonInvertibleTransformError("Singular matrix") from exc

    def derivative(self, point: Sequence[float] | None = None) -> np.ndarray:
        return np.array(self._matrix[:-1, :-1])

    def restrict(self, target_dims: Iterable[int]) -> Tuple["LinearTransform", Tuple[int, ...]]:
        dims = list(_check_dims(target_dims, self.target_dimensions))
        s = self.source_dimensions
        rows = self._matrix[dims, :s]
        sources = tuple(j for j in range(s) if np.any(rows[:, j] != 0))
        sub = np.zeros((len(dims) + 1, len(sources) + 1))
        sub[:-1, :-1] = rows[:, list(sources)]
        sub[:-1, -1] = self._matrix[dims, s]
        sub[-1, -1] = 1.0
        return LinearTransform(sub), sources

    def transform_bounds(self, lower: Sequence[float], upper: Sequence[float]) -> Bounds:
        corners = np.array(list(itertools.product(*zip(lower, upper))), dtype=float)
        points = self.transform(corners)
        return points.min(axis=0), points.max(axis=0)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LinearTransform):
            return NotImplemented
        return self._matrix.shape == other._matrix.shape and np.array_equal(self._matrix, other._matrix)

    def __hash__(self) -> int:
        return hash((self._matrix.shape, self._matrix.tobytes()))

    def __repr__(self) -> str:
        return f"LinearTransform({self._matrix.tolist()})"


@dataclass(frozen=True, eq=True)
class InterpolatedTransform(MathTransform):
    """One-dimensional piecewise-linear transform, extrapolated past both ends."""

    sources: Tuple[float, ...]
    targets: Tuple[float, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "sources", tuple(float(v) for v in self.sources))
        object.__setattr__(self, "targets", tuple(float(v) for v in self.targets))
        if len(self.sources) < 2 or len(self.sources) != len(self.targets):
            raise ValueError("Interpolation needs at least two (source, target) pairs")
        if np.any(np.diff(self.sources) <= 0):
            raise ValueError("Interpolation sources must be strictly increasing")

    @property
    def source_dimensions(self) -> int:
        return 1

    @property
    def target_dimensions(self) -> int:
        return 1

    def _segments(self, x: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        xs = np.asarray(self.sources)
        ys = np.asarray(self.targets)
        idx = np.clip(np.searchsorted(xs, x, side="right") - 1, 0, len(xs) - 2)
        slope = (ys[idx + 1] - ys[idx]) / (xs[idx + 1] - xs[idx])
        return xs[idx], ys[idx], slope

    def transform(self, points: object) -> np.ndarray:
        x = _as_points(points, 1)[:, 0]
        x0, y0, slope = self._segments(x)
        return (y0 + (x - x0) * slope)[:, None]

    def derivative(self, point: Sequence[float]) -> np.ndarray:
        _, _, slope = self._segments(np.asarray(point, dtype=float)[:1])
        return slope.reshape(1, 1)

    def inverse(self) -> "InterpolatedTransform":
        steps = np.diff(self.targets)
        if np.all(steps > 0):
            return InterpolatedTransform(self.targets, self.sources)
        if np.all(steps < 0):
            return InterpolatedTransform(self.targets[::-1], self.sources[::-1])
        raise NonInvertibleTransformError("Interpolation targets are not strictly monotonic")

    def transform_bounds(self, lower: Sequence[float], upper: Sequence[float]) -> Bounds:
        # Extrema of a piecewise-linear function are at the ends or at the nodes.
        lo, hi = float(lower[0]), float(upper[0])
        inside = [x for x in self.sources if lo < x < hi]
        values = self.transform(np.array([lo, hi, *inside])[:, None])
        return values.min(axis=0), values.max(axis=0)


@dataclass(frozen=True, eq=True)
class PassThroughTransform(MathTransform):
    """Apply ``sub`` to a contiguous range of dimensions, copying the others."""

    first_affected: int
    sub: MathTransform
    num_trailing: int

    @property
    def source_dimensions(self) -> int:
        return self.first_affected + self.sub.source_dimensions + self.num_trailing

    @property
    def target_dimensions(self) -> int:
        return self.first_affected + self.sub.target_dimensions + self.num_trailing

    def transform(self, points: object) -> np.ndarray:
        pts = _as_points(points, self.source_dimensions)
        first, s, t = self.first_affected, self.sub.source_dimensions, self.sub.target_dimensions
        return np.column_stack([
            pts[:, :first],
            self.sub.transform(pts[:, first:first + s]),
            pts[:, first + s:],
        ])

    def inverse(self) -> "PassThroughTransform":
        return PassThroughTransform(self.first_affected, self.sub.inverse(), self.num_trailing)

    def derivative(self, point: Sequence[float]) -> np.ndarray:
        p = np.asarray(point, dtype=float)
        first, s, t = self.first_affected, self.sub.source_dimensions, self.sub.target_dimensions
        jac = np.zeros((self.target_dimensions, self.source_dimensions))
        jac[:first, :first] = np.eye(first)
        jac[first:first + t, first:first + s] = self.sub.derivative(p[first:first + s])
        jac[first + t:, first + s:] = np.eye(self.num_trailing)
        return jac

    def restrict(self, target_dims: Iterable[int]) -> Tuple[MathTransform, Tuple[int, ...]]:
        dims = _check_dims(target_dims, self.target_dimensions)
        first, s, t = self.first_affected, self.sub.source_dimensions, self.sub.target_dimensions
        before = [d for d in dims if d < first]
        inside = [d - first for d in dims if first <= d < first + t]
        after = [d for d in dims if d >= first + t]
        sources = list(before)
        sub = None
        if inside:
            if inside == list(range(t)):
                sub, sub_sources = self.sub, tuple(range(s))
            else:
                sub, sub_sources = self.sub.restrict(inside)
            sources += [first + j for j in sub_sources]
        sources += [d - t + s for d in after]
        if sub is None:
            return identity(len(dims)), tuple(sources)
        return pass_through(len(before), sub, len(after)), tuple(sources)

    def transform_bounds(self, lower: Sequence[float], upper: Sequence[float]) -> Bounds:
        lower = np.asarray(lower, dtype=float)
        upper = np.asarray(upper, dtype=float)
        first, s = self.first_affected, self.sub.source_dimensions
        sub_lo, sub_hi = self.sub.transform_bounds(lower[first:first + s], upper[first:first + s])
        return (
            np.concatenate([lower[:first], sub_lo, lower[first + s:]]),
            np.concatenate([upper[:first], sub_hi, upper[first + s:]]),
        )


@dataclass(frozen=True, eq=True)
class ConcatenatedTransform(MathTransform):
    """``second(first(x))``."""

    first: MathTransform
    second: MathTransform

    def __post_init__(self) -> None:
        if self.first.target_dimensions != self.second.source_dimensions:
            raise MismatchedDimensionError(
                f"Can not chain a {self.first.target_dimensions}-D output "
                f"into a {self.second.source_dimensions}-D input"
            )

    @property
    def source_dimensions(self) -> int:
        return self.first.source_dimensions

    @property
    def target_dimensions(self) -> int:
        return self.second.target_dimensions

    def transform(self, points: object) -> np.ndarray:
        return self.second.transform(self.first.transform(points))

    def inverse(self) -> MathTransform:
        return concatenate(self.second.inverse(), self.first.inverse())

    def derivative(self, point: Sequence[float]) -> np.ndarray:
        p = np.asarray(point, dtype=float)
        return self.second.derivative(self.first.transform_point(p)) @ self.first.derivative(p)

    def restrict(self, target_dims: Iterable[int]) -> Tuple[MathTransform, Tuple[int, ...]]:
        second, middle = self.second.restrict(target_dims)
        if not middle:
            raise NotSeparableError("Selected dimensions do not depend on any source dimension")
        first, sources = self.first.restrict(middle)
        return concatenate(first, second), sources

    def transform_bounds(self, lower: Sequence[float], upper: Sequence[float]) -> Bounds:
        return self.second.transform_bounds(*self.first.transform_bounds(lower, upper))


@dataclass(frozen=True, eq=True)
class ComponentwiseTransform(MathTransform):
    """Independent transforms applied to disjoint groups of dimensions.

    Each part is ``(source indices, target indices, transform)``. Target
    dimensions not produced by any part are NaN.
    """

    parts: Tuple[Tuple[Tuple[int, ...], Tuple[int, ...], MathTransform], ...]
    source_dim: int
    target_dim: int

    @property
    def source_dimensions(self) -> int:
        return self.source_dim

    @property
    def target_dimensions(self) -> int:
        return self.target_dim

    @property
    def is_identity(self) -> bool:
        return (
            self.source_dim == self.target_dim
            and all(src == tgt and t.is_identity for src, tgt, t in self.parts)
            and sum(len(tgt) for _, tgt, _ in self.parts) == self.target_dim
        )

    def transform(self, points: object) -> np.ndarray:
        pts = _as_points(points, self.source_dim)
        out = np.full((len(pts), self.target_dim), np.nan)
        for src, tgt, t in self.parts:
            out[:, list(tgt)] = t.transform(pts[:, list(src)])
        return out

    def inverse(self) -> "ComponentwiseTransform":
        if sum(len(src) for src, _, _ in self.parts) != self.source_dim:
            raise NonInvertibleTransformError("Some source dimensions are dropped")
        parts = tuple((tgt, src, t.inverse()) for src, tgt, t in self.parts)
        return ComponentwiseTransform(parts, self.target_dim, self.source_dim)

    def derivative(self, point: Sequence[float]) -> np.ndarray:
        p = np.asarray(point, dtype=float)
        jac = np.zeros((self.target_dim, self.source_dim))
        for src, tgt, t in self.parts:
            jac[np.ix_(tgt, src)] = t.derivative(p[list(src)])
        return jac

    def restrict(self, target_dims: Iterable[int]) -> Tuple[MathTransform, Tuple[int, ...]]:
        dims = _check_dims(target_dims, self.target_dim)
        wanted = set(dims)
        selected = []
        covered = set()
        for src, tgt, t in self.parts:
            inside = [k for k, d in enumerate(tgt) if d in wanted]
            if not inside:
                continue
            if len(inside) == len(tgt):
                sub, sub_sources = t, tuple(range(len(src)))
            else:
                sub, sub_sources = t.restrict(inside)
            selected.append(([src[j] for j in sub_sources], [tgt[k] for k in inside], sub))
            covered.update(tgt[k] for k in inside)
        if covered != wanted:
            raise NotSeparableError(f"Dimensions {sorted(wanted - covered)} are not computed")
        sources = tuple(sorted({j for src, _, _ in selected for j in src}))
        src_pos = {d: i for i, d in enumerate(sources)}
        tgt_pos = {d: i for i, d in enumerate(dims)}
        parts = tuple(
            (tuple(src_pos[j] for j in src), tuple(tgt_pos[d] for d in tgt), sub)
            for src, tgt, sub in selected
        )
        return ComponentwiseTransform(parts, len(sources), len(dims)), sources

    def transform_bounds(self, lower: Sequence[float], upper: Sequence[float]) -> Bounds:
        lower = np.asarray(lower, dtype=float)
        upper = np.asarray(upper, dtype=float)
        out_lo = np.full(self.target_dim, np.nan)
        out_hi = np.full(self.target_dim, np.nan)
        for src, tgt, t in self.parts:
            lo, hi = t.transform_bounds(lower[list(src)], upper[list(src)])
            out_lo[list(tgt)] = lo
            out_hi[list(tgt)] = hi
        return out_lo, out_hi


@dataclass(frozen=True, eq=True)
class ReprojectionTransform(MathTransform):
    """Two-dimensional map projection change delegated to GDAL through rasterio.

    Coordinates are in the traditional GIS order (x = easting or longitude).
    """

    source: str
    target: str
    _crs: Tuple[RasterioCRS, RasterioCRS] = field(init=False, repr=False, compare=False, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "_crs",
            (RasterioCRS.from_user_input(self.source), RasterioCRS.from_user_input(self.target)),
        )

    @property
    def source_dimensions(self) -> int:
        return 2

    @property
    def target_dimensions(self) -> int:
        return 2

    @cached_property
    def _target_is_geographic(self) -> bool:
        return bool(self._crs[1].is_geographic)

    def transform(self, points: object) -> np.ndarray:
        pts = _as_points(points, 2)
        xs, ys = warp_transform(self._crs[0], self._crs[1], pts[:, 0].tolist(), pts[:, 1].tolist())
        return np.column_stack([np.asarray(xs, dtype=float), np.asarray(ys, dtype=float)])

    def inverse(self) -> "ReprojectionTransform":
        return ReprojectionTransform(self.target, self.source)

    def transform_bounds(self, lower: Sequence[float], upper: Sequence[float]) -> Bounds:
        left, bottom, right, top = transform_bounds(
            self._crs[0],
            self._crs[1],
            float(lower[0]),
            float(lower[1]),
            float(upper[0]),
            float(upper[1]),
            densify_pts=settings.envelope_densify_points,
        )
        if right < left and self._target_is_geographic:
            # Crossing the antimeridian: keep a continuous range.
            right += 360.0
        return np.array([left, bottom]), np.array([right, top])


def linear(matrix: object) -> LinearTransform:
    return LinearTransform(matrix)


def identity(dimension: int) -> LinearTransform:
    return LinearTransform(np.eye(dimension + 1))


def scale(*factors: float) -> LinearTransform:
    return LinearTransform(np.diag([*map(float, factors), 1.0]))


def translation(*offsets: float) -> LinearTransform:
    m = np.eye(len(offsets) + 1)
    m[:-1, -1] = offsets
    return LinearTransform(m)


def scale_and_translation(factors: Sequence[float], offsets: Sequence[float]) -> LinearTransform:
    m = np.diag([*map(float, factors), 1.0])
    m[:-1, -1] = offsets
    return LinearTransform(m)


def from_affine(affine: object) -> LinearTransform:
    """Convert a rasterio/affine ``Affine`` into a two-dimensional linear transform."""
    a, b, c, d, e, f = (affine.a, affine.b, affine.c, affine.d, affine.e, affine.f)
    return LinearTransform([[a, b, c], [d, e, f], [0.0, 0.0, 1.0]])


def pass_through(first_affected: int, sub: MathTransform, num_trailing: int) -> MathTransform:
    if first_affected == 0 and num_trailing == 0:
        return sub
    if isinstance(sub, LinearTransform):
        n = first_affected + sub.source_dimensions + num_trailing
        t = first_affected + sub.target_dimensions + num_trailing
        m = np.zeros((t + 1, n + 1))
        m[:first_affected, :first_affected] = np.eye(first_affected)
        rows = slice(first_affected, first_affected + sub.target_dimensions)
        cols = slice(first_affected, first_affected + sub.source_dimensions)
        m[rows, cols] = sub.matrix[:-1, :-1]
        m[rows, -1] = sub.matrix[:-1, -1]
        m[t - num_trailing:t, n - num_trailing:n] = np.eye(num_trailing)
        m[-1, -1] = 1.0
        return LinearTransform(m)
    return PassThroughTransform(first_affected, sub, num_trailing)


def concatenate(first: MathTransform, second: MathTransform) -> MathTransform:
    """Return ``second ∘ first``, folding adjacent linear steps together."""
    if first.target_dimensions != second.source_dimensions:
        raise MismatchedDimensionError(
            f"Can not chain a {first.target_dimensions}-D output "
            f"into a {second.source_dimensions}-D input"
        )
    if first.is_identity:
        return second
    if second.is_identity:
        return first
    if isinstance(first, LinearTransform) and isinstance(second, LinearTransform):
        return LinearTransform(second.matrix @ first.matrix)
    if isinstance(first, LinearTransform) and isinstance(second, ConcatenatedTransform) \
            and isinstance(second.first, LinearTransform):
        return concatenate(concatenate(first, second.first), second.second)
    if isinstance(second, LinearTransform) and isinstance(first, ConcatenatedTransform) \
            and isinstance(first.second, LinearTransform):
        return concatenate(first.first, concatenate(first.second, second))
    return ConcatenatedTransform(first, second)
