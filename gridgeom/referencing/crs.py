"""Coordinate reference systems.

A CRS pairs a ``CoordinateSystem`` with a datum name and, for horizontal
systems, an authority code understood by rasterio (``"EPSG:4326"``). Compound
systems list their components; a 3-D geographic CRS splits into its
horizontal part and an ellipsoidal height so that it can be matched against a
standalone vertical CRS.

Authority codes follow the traditional GIS axis order used by rasterio: the
easting (or longitude) is always the first ordinate given to GDAL, whatever
the axis order of the coordinate system.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from rasterio.crs import CRS as RasterioCRS

from gridgeom.referencing.cs import (
    CENTIMETRE,
    METRE,
    AxesConvention,
    AxisDirection,
    CoordinateAxis,
    CoordinateSystem,
    CSKind,
    Unit,
    easting_axis,
    height_axis,
    latitude_axis,
    longitude_axis,
    northing_axis,
    time_axis,
)

WGS84_DATUM = "WGS 84"
MJD_DATUM = "Modified Julian Date"


@dataclass(frozen=True, slots=True)
class CoordinateReferenceSystem:
    name: str
    coordinate_system: CoordinateSystem
    datum: str | None = None
    authority: str | None = None
    components: Tuple["CoordinateReferenceSystem", ...] = ()

    @property
    def dimension(self) -> int:
        return self.coordinate_system.dimension

    @property
    def kind(self) -> CSKind:
        return self.coordinate_system.kind

    def axis(self, index: int) -> CoordinateAxis:
        return self.coordinate_system.axis(index)

    @property
    def is_horizontal(self) -> bool:
        return self.dimension == 2 and self.kind in (CSKind.ELLIPSOIDAL, CSKind.CARTESIAN)

    @property
    def is_geographic(self) -> bool:
        return self.kind is CSKind.ELLIPSOIDAL

    def to_rasterio(self) -> RasterioCRS:
        if self.authority is None:
            raise ValueError(f"CRS '{self.name}' has no authority code")
        return RasterioCRS.from_user_input(self.authority)

    def split_components(self) -> Tuple[Tuple[Tuple[int, ...], "CoordinateReferenceSystem"], ...]:
        """Return ``(dimensions, component)`` pairs for every single component.

        Compound CRSs are flattened recursively and 3-D geographic CRSs are
        separated into a horizontal CRS and an ellipsoidal height.
        """
        if self.components:
            parts = []
            offset = 0
            for component in self.components:
                for dims, single in component.split_components():
                    parts.append((tuple(offset + d for d in dims), single))
                offset += component.dimension
            return tuple(parts)
        if self.kind is CSKind.ELLIPSOIDAL and self.dimension == 3:
            vertical = [i for i, axis in enumerate(self.coordinate_system.axes)
                        if axis.direction.absolute is AxisDirection.UP]
            horizontal = tuple(i for i in range(3) if i not in vertical)
            h_cs = CoordinateSystem(CSKind.ELLIPSOIDAL, tuple(self.axis(i) for i in horizontal))
            v_cs = CoordinateSystem(CSKind.VERTICAL, (self.axis(vertical[0]),))
            return (
                (horizontal, CoordinateReferenceSystem(self.name, h_cs, self.datum, self.authority)),
                (tuple(vertical), CoordinateReferenceSystem(f"{self.name} height", v_cs, self.datum)),
            )
        return (((tuple(range(self.dimension))), self),)

    def for_convention(self, convention: AxesConvention) -> "CoordinateReferenceSystem":
        cs = self.coordinate_system.for_convention(convention)
        if cs is self.coordinate_system:
            return self
        components = self.components
        if components:
            components = tuple(c.for_convention(convention) for c in components)
        return CoordinateReferenceSystem(
            f"{self.name} ({convention.value})", cs, self.datum, self.authority, components
        )


def compound(name: str, *components: CoordinateReferenceSystem) -> CoordinateReferenceSystem:
    if len(components) < 2:
        raise ValueError("A compound CRS needs at least two components")
    axes = tuple(axis for c in components for axis in c.coordinate_system.axes)
    cs = CoordinateSystem(CSKind.COMPOUND, axes)
    return CoordinateReferenceSystem(name, cs, components=tuple(components))


def geographic(
    name: str = "WGS 84",
    *,
    latitude_first: bool = False,
    authority: str | None = "EPSG:4326",
    datum: str = WGS84_DATUM,
) -> CoordinateReferenceSystem:
    axes = (latitude_axis(), longitude_axis())
    if not latitude_first:
        axes = axes[::-1]
    return CoordinateReferenceSystem(name, CoordinateSystem(CSKind.ELLIPSOIDAL, axes), datum, authority)


def vertical(name: str, unit: Unit = METRE, *, datum: str = WGS84_DATUM) -> CoordinateReferenceSystem:
    cs = CoordinateSystem(CSKind.VERTICAL, (height_axis(unit),))
    return CoordinateReferenceSystem(name, cs, datum)


def temporal(name: str = "Time", *, datum: str = MJD_DATUM) -> CoordinateReferenceSystem:
    return CoordinateReferenceSystem(name, CoordinateSystem(CSKind.TIME, (time_axis(),)), datum)


def from_authority(code: str) -> CoordinateReferenceSystem:
    """Build a horizontal CRS from an authority code resolved by rasterio.

    Geographic systems get (longitude, latitude) axes in degrees and projected
    systems get (easting, northing) axes in the linear unit of the projection.
    """
    rio_crs = RasterioCRS.from_user_input(code)
    label = rio_crs.to_string()
    if rio_crs.is_geographic:
        return geographic(label, authority=label)
    unit_name, factor = rio_crs.linear_units_factor
    unit = Unit(unit_name, "length", float(factor))
    cs = CoordinateSystem(CSKind.CARTESIAN, (easting_axis(unit), northing_axis(unit)))
    return CoordinateReferenceSystem(label, cs, None, label)


WGS84 = geographic()
WGS84_LATITUDE_FIRST = geographic("WGS 84 (latitude first)", latitude_first=True)
WGS84_3D = CoordinateReferenceSystem(
    "WGS 84 (3D)",
    CoordinateSystem(CSKind.ELLIPSOIDAL, (longitude_axis(), latitude_axis(), height_axis())),
    WGS84_DATUM,
    "EPSG:4326",
)
ELLIPSOIDAL_HEIGHT = vertical("Ellipsoidal height")
ELLIPSOIDAL_HEIGHT_CM = vertical("Ellipsoidal height (cm)", CENTIMETRE)
TIME = temporal()
WGS84_WITH_TIME = compound("WGS 84 + time", WGS84, TIME)
