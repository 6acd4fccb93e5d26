"""Coordinate systems as plain values tagged with a kind.

A ``CoordinateSystem`` is a single immutable value: an ordered tuple of
``CoordinateAxis`` plus a ``CSKind`` tag. The axes allowed for each kind are
described by the ``_KIND_RULES`` table instead of a class hierarchy.

Variants of a coordinate system following an ``AxesConvention`` (axis order,
direction, units, longitude range) are computed lazily and memoized on the
instance. The memo is the only mutable state in this package; it is guarded by
a per-instance lock and equal variants share the same instance.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, Iterable, Tuple

from gridgeom.logging_utils import log_event

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Unit:
    """Unit of measure expressed as a factor of its quantity's base unit."""

    name: str
    quantity: str
    to_base: float

    def converter_to(self, other: "Unit") -> float:
        if other.quantity != self.quantity:
            raise ValueError(f"Cannot convert {self.name} to {other.name}")
        return self.to_base / other.to_base


DEGREE = Unit("degree", "angle", 1.0)
RADIAN = Unit("radian", "angle", 180.0 / math.pi)
METRE = Unit("metre", "length", 1.0)
CENTIMETRE = Unit("centimetre", "length", 0.01)
KILOMETRE = Unit("kilometre", "length", 1000.0)
DAY = Unit("day", "time", 1.0)
HOUR = Unit("hour", "time", 1.0 / 24.0)
SECOND = Unit("second", "time", 1.0 / 86400.0)
UNITY = Unit("unity", "scalar", 1.0)

BASE_UNITS: Dict[str, Unit] = {
    "angle": DEGREE,
    "length": METRE,
    "time": DAY,
    "scalar": UNITY,
}


class AxisDirection(str, Enum):
    EAST = "east"
    WEST = "west"
    NORTH = "north"
    SOUTH = "south"
    UP = "up"
    DOWN = "down"
    FUTURE = "future"
    PAST = "past"
    COLUMN_POSITIVE = "column_positive"
    COLUMN_NEGATIVE = "column_negative"
    ROW_POSITIVE = "row_positive"
    ROW_NEGATIVE = "row_negative"
    OTHER = "other"

    @property
    def absolute(self) -> "AxisDirection":
        """Direction with the sign removed (``WEST`` -> ``EAST``)."""
        return _OPPOSITES.get(self, self) if self in _NEGATIVE else self

    @property
    def opposite(self) -> "AxisDirection":
        return _OPPOSITES.get(self, self)

    @property
    def is_negative(self) -> bool:
        return self in _NEGATIVE


_OPPOSITES = {
    AxisDirection.EAST: AxisDirection.WEST,
    AxisDirection.NORTH: AxisDirection.SOUTH,
    AxisDirection.UP: AxisDirection.DOWN,
    AxisDirection.FUTURE: AxisDirection.PAST,
    AxisDirection.COLUMN_POSITIVE: AxisDirection.COLUMN_NEGATIVE,
    AxisDirection.ROW_POSITIVE: AxisDirection.ROW_NEGATIVE,
}
_NEGATIVE = frozenset(_OPPOSITES.values())
_OPPOSITES.update({negative: positive for positive, negative in list(_OPPOSITES.items())})

# Ordering applied by the right-handed convention.
_DIRECTION_ORDER = {
    AxisDirection.EAST: 0,
    AxisDirection.NORTH: 1,
    AxisDirection.UP: 2,
    AxisDirection.FUTURE: 3,
}


class RangeMeaning(str, Enum):
    EXACT = "exact"
    WRAPAROUND = "wraparound"


@dataclass(frozen=True, slots=True)
class CoordinateAxis:
    name: str
    abbreviation: str
    direction: AxisDirection
    unit: Unit
    minimum: float = -math.inf
    maximum: float = math.inf
    range_meaning: RangeMeaning = RangeMeaning.EXACT

    @property
    def period(self) -> float:
        """Length of the axis range for wraparound axes, NaN otherwise."""
        if self.range_meaning is RangeMeaning.WRAPAROUND:
            span = self.maximum - self.minimum
            if math.isfinite(span) and span > 0:
                return span
        return math.nan

    @property
    def is_periodic(self) -> bool:
        return not math.isnan(self.period)


class CSKind(str, Enum):
    ELLIPSOIDAL = "ellipsoidal"
    CARTESIAN = "cartesian"
    VERTICAL = "vertical"
    TIME = "time"
    AFFINE = "affine"
    COMPOUND = "compound"


class AxesConvention(str, Enum):
    """Normalizations that can be applied to a coordinate system.

    ``RIGHT_HANDED`` only reorders axes (east, north, up, future).
    ``DISPLAY_ORIENTED`` additionally makes every direction positive.
    ``NORMALIZED`` additionally converts units to the base unit of each quantity.
    ``POSITIVE_RANGE`` shifts wraparound axes to start at zero, leaving the rest alone.
    """

    RIGHT_HANDED = "right_handed"
    DISPLAY_ORIENTED = "display_oriented"
    NORMALIZED = "normalized"
    POSITIVE_RANGE = "positive_range"


def _is_horizontal(axis: CoordinateAxis) -> bool:
    return axis.direction.absolute in (AxisDirection.EAST, AxisDirection.NORTH)


def _is_vertical(axis: CoordinateAxis) -> bool:
    return axis.direction.absolute is AxisDirection.UP


def _is_temporal(axis: CoordinateAxis) -> bool:
    return axis.direction.absolute is AxisDirection.FUTURE and axis.unit.quantity == "time"


def _is_ellipsoidal(axis: CoordinateAxis) -> bool:
    if _is_horizontal(axis):
        return axis.unit.quantity == "angle"
    return _is_vertical(axis) and axis.unit.quantity == "length"


def _is_cartesian(axis: CoordinateAxis) -> bool:
    return axis.unit.quantity == "length" and (_is_horizontal(axis) or _is_vertical(axis))


# kind -> (allowed dimensions, predicate every axis must satisfy)
_KIND_RULES: Dict[CSKind, Tuple[Tuple[int, ...] | None, Callable[[CoordinateAxis], bool]]] = {
    CSKind.ELLIPSOIDAL: ((2, 3), _is_ellipsoidal),
    CSKind.CARTESIAN: ((2, 3), _is_cartesian),
    CSKind.VERTICAL: ((1,), lambda axis: _is_vertical(axis) and axis.unit.quantity == "length"),
    CSKind.TIME: ((1,), _is_temporal),
    CSKind.AFFINE: (None, lambda axis: True),
    CSKind.COMPOUND: (None, lambda axis: True),
}


@dataclass(frozen=True)
class CoordinateSystem:
    kind: CSKind
    axes: Tuple[CoordinateAxis, ...]
    _derived: Dict[AxesConvention, "CoordinateSystem"] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        axes = tuple(self.axes)
        object.__setattr__(self, "axes", axes)
        if not axes:
            raise ValueError("A coordinate system needs at least one axis")
        dimensions, predicate = _KIND_RULES[self.kind]
        if dimensions is not None and len(axes) not in dimensions:
            raise ValueError(
                f"A {self.kind.value} coordinate system can not have {len(axes)} axes"
            )
        for axis in axes:
            if not predicate(axis):
                raise ValueError(
                    f"Axis '{axis.name}' ({axis.direction.value}, {axis.unit.name}) "
                    f"is not allowed in a {self.kind.value} coordinate system"
                )
        directions = [axis.direction.absolute for axis in axes if axis.direction is not AxisDirection.OTHER]
        if len(set(directions)) != len(directions):
            raise ValueError("Coordinate system axes must have distinct directions")

    @property
    def dimension(self) -> int:
        return len(self.axes)

    def axis(self, index: int) -> CoordinateAxis:
        return self.axes[index]

    def for_convention(self, convention: AxesConvention) -> "CoordinateSystem":
        """Return this coordinate system normalized according to ``convention``.

        Results are computed at most once per instance. When the variant equals
        this coordinate system or another variant already cached, the existing
        instance is returned instead of the new one.
        """
        with self._lock:
            cached = self._derived.get(convention)
            if cached is None:
                cached = _apply_convention(self, convention)
                if cached == self:
                    cached = self
                else:
                    for existing in self._derived.values():
                        if existing == cached:
                            cached = existing
                            break
                self._derived[convention] = cached
                log_event(
                    LOGGER,
                    "cs.convention_cached",
                    "Derived coordinate system by axes convention",
                    level="debug",
                    convention=convention.value,
                    unchanged=cached is self,
                )
            return cached


def _apply_convention(cs: CoordinateSystem, convention: AxesConvention) -> CoordinateSystem:
    axes: Iterable[CoordinateAxis] = cs.axes
    if convention is AxesConvention.POSITIVE_RANGE:
        axes = [_shift_to_positive(axis) for axis in axes]
    else:
        axes = sorted(axes, key=lambda a: _DIRECTION_ORDER.get(a.direction.absolute, len(_DIRECTION_ORDER)))
        if convention in (AxesConvention.DISPLAY_ORIENTED, AxesConvention.NORMALIZED):
            axes = [_make_positive(axis) for axis in axes]
        if convention is AxesConvention.NORMALIZED:
            axes = [_to_base_unit(axis) for axis in axes]
    return CoordinateSystem(cs.kind, tuple(axes))


def _shift_to_positive(axis: CoordinateAxis) -> CoordinateAxis:
    if not axis.is_periodic or axis.minimum >= 0:
        return axis
    return replace(axis, minimum=0.0, maximum=axis.period)


def _make_positive(axis: CoordinateAxis) -> CoordinateAxis:
    if not axis.direction.is_negative:
        return axis
    return replace(
        axis,
        direction=axis.direction.absolute,
        minimum=-axis.maximum,
        maximum=-axis.minimum,
    )


def _to_base_unit(axis: CoordinateAxis) -> CoordinateAxis:
    base = BASE_UNITS.get(axis.unit.quantity, axis.unit)
    if base == axis.unit:
        return axis
    factor = axis.unit.converter_to(base)
    return replace(axis, unit=base, minimum=axis.minimum * factor, maximum=axis.maximum * factor)


def longitude_axis(unit: Unit = DEGREE) -> CoordinateAxis:
    half = 180.0 / unit.to_base
    return CoordinateAxis("Geodetic longitude", "λ", AxisDirection.EAST, unit, -half, half, RangeMeaning.WRAPAROUND)


def latitude_axis(unit: Unit = DEGREE) -> CoordinateAxis:
    quarter = 90.0 / unit.to_base
    return CoordinateAxis("Geodetic latitude", "φ", AxisDirection.NORTH, unit, -quarter, quarter)


def height_axis(unit: Unit = METRE, name: str = "Ellipsoidal height") -> CoordinateAxis:
    return CoordinateAxis(name, "h", AxisDirection.UP, unit)


def time_axis(unit: Unit = DAY) -> CoordinateAxis:
    return CoordinateAxis("Time", "t", AxisDirection.FUTURE, unit)


def easting_axis(unit: Unit = METRE) -> CoordinateAxis:
    return CoordinateAxis("Easting", "E", AxisDirection.EAST, unit)


def northing_axis(unit: Unit = METRE) -> CoordinateAxis:
    return CoordinateAxis("Northing", "N", AxisDirection.NORTH, unit)
