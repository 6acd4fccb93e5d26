import math
import threading

import numpy as np
import pytest

from gridgeom.errors import FactoryError
from gridgeom.referencing.crs import (
    ELLIPSOIDAL_HEIGHT,
    ELLIPSOIDAL_HEIGHT_CM,
    TIME,
    WGS84,
    WGS84_3D,
    WGS84_LATITUDE_FIRST,
    WGS84_WITH_TIME,
    compound,
    from_authority,
    temporal,
)
from gridgeom.referencing.cs import (
    CENTIMETRE,
    AxesConvention,
    AxisDirection,
    CoordinateAxis,
    CoordinateSystem,
    CSKind,
    DEGREE,
    easting_axis,
    latitude_axis,
    longitude_axis,
)
from gridgeom.referencing.operations import DEFAULT_SERVICE


# ---------------------------------------------------------------------------
# Coordinate systems
# ---------------------------------------------------------------------------


def test_axis_direction_helpers():
    assert AxisDirection.SOUTH.absolute is AxisDirection.NORTH
    assert AxisDirection.SOUTH.is_negative
    assert AxisDirection.EAST.opposite is AxisDirection.WEST
    assert not AxisDirection.UP.is_negative


def test_longitude_is_periodic():
    assert longitude_axis().period == 360
    assert math.isnan(latitude_axis().period)


def test_kind_validation():
    with pytest.raises(ValueError):
        CoordinateSystem(CSKind.ELLIPSOIDAL, (longitude_axis(), easting_axis()))
    with pytest.raises(ValueError):
        CoordinateSystem(CSKind.VERTICAL, (longitude_axis(),))
    with pytest.raises(ValueError):
        CoordinateSystem(CSKind.CARTESIAN, (easting_axis(), easting_axis()))


def test_convention_variants_are_cached():
    cs = CoordinateSystem(CSKind.ELLIPSOIDAL, (latitude_axis(), longitude_axis()))
    right_handed = cs.for_convention(AxesConvention.RIGHT_HANDED)
    assert [a.direction for a in right_handed.axes] == [AxisDirection.EAST, AxisDirection.NORTH]
    assert cs.for_convention(AxesConvention.RIGHT_HANDED) is right_handed
    # Same axes, so the already cached instance is shared.
    assert cs.for_convention(AxesConvention.DISPLAY_ORIENTED) is right_handed
    # Already right-handed: the coordinate system itself is returned.
    assert right_handed.for_convention(AxesConvention.RIGHT_HANDED) is right_handed


def test_positive_range_convention():
    cs = WGS84.coordinate_system.for_convention(AxesConvention.POSITIVE_RANGE)
    assert cs.axis(0).minimum == 0
    assert cs.axis(0).maximum == 360
    assert cs.axis(1) == WGS84.axis(1)


def test_normalized_convention_converts_units():
    axis = CoordinateAxis("Depth", "d", AxisDirection.DOWN, CENTIMETRE, 0, 1000)
    cs = CoordinateSystem(CSKind.VERTICAL, (axis,)).for_convention(AxesConvention.NORMALIZED)
    assert cs.axis(0).direction is AxisDirection.UP
    assert cs.axis(0).unit.name == "metre"
    assert cs.axis(0).minimum == pytest.approx(-10)


def test_convention_cache_is_thread_safe():
    cs = CoordinateSystem(CSKind.ELLIPSOIDAL, (latitude_axis(), longitude_axis()))
    results = []

    def worker():
        results.append(cs.for_convention(AxesConvention.NORMALIZED))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert all(r is results[0] for r in results)


# ---------------------------------------------------------------------------
# Reference systems
# ---------------------------------------------------------------------------


def test_split_components():
    parts = WGS84_3D.split_components()
    assert [dims for dims, _ in parts] == [(0, 1), (2,)]
    assert parts[0][1].is_horizontal
    assert parts[1][1].kind is CSKind.VERTICAL

    parts = WGS84_WITH_TIME.split_components()
    assert [dims for dims, _ in parts] == [(0, 1), (2,)]
    assert parts[1][1] is TIME

    with pytest.raises(ValueError):
        compound("single", WGS84)


def test_from_authority_geographic():
    crs = from_authority("EPSG:4326")
    assert crs.is_geographic
    assert crs.axis(0).direction is AxisDirection.EAST
    assert crs.axis(0).unit == DEGREE


def test_crs_convention_keeps_authority():
    crs = WGS84_LATITUDE_FIRST.for_convention(AxesConvention.RIGHT_HANDED)
    assert crs.authority == "EPSG:4326"
    assert crs.axis(0).direction is AxisDirection.EAST


# ---------------------------------------------------------------------------
# Coordinate operations
# ---------------------------------------------------------------------------


def test_identity_operation():
    operation = DEFAULT_SERVICE.find_operation(WGS84, WGS84)
    assert operation.is_identity
    assert operation.source_dimensions == (0, 1)


def test_axis_swap():
    operation = DEFAULT_SERVICE.find_operation(WGS84, WGS84_LATITUDE_FIRST)
    assert np.allclose(operation.transform_point([10, 50]), [50, 10])
    lower, upper = operation.transform_envelope([8, -50], [12, 30])
    assert np.allclose(lower, [-50, 8])
    assert np.allclose(upper, [30, 12])
    assert np.allclose(operation.derivative([0, 0]), [[0, 1], [1, 0]])


def test_vertical_unit_change():
    operation = DEFAULT_SERVICE.find_operation(ELLIPSOIDAL_HEIGHT_CM, WGS84_3D)
    assert operation.target_dimensions == (2,)
    assert np.allclose(operation.transform_point([1500]), [15])

    operation = DEFAULT_SERVICE.find_operation(ELLIPSOIDAL_HEIGHT, ELLIPSOIDAL_HEIGHT_CM)
    assert np.allclose(operation.transform_point([2]), [200])


def test_extra_source_dimensions_are_ignored():
    operation = DEFAULT_SERVICE.find_operation(WGS84_WITH_TIME, WGS84)
    assert operation.source_dimensions == (0, 1)
    assert np.allclose(operation.transform_point([10, 20, 58000]), [10, 20])


def test_no_operation_between_unrelated_systems():
    with pytest.raises(FactoryError):
        DEFAULT_SERVICE.find_operation(TIME, ELLIPSOIDAL_HEIGHT)
    with pytest.raises(FactoryError):
        DEFAULT_SERVICE.find_operation(temporal("Julian", datum="Julian day"), TIME)


@pytest.mark.reprojection
def test_projection_change_through_rasterio():
    mercator = from_authority("EPSG:3857")
    operation = DEFAULT_SERVICE.find_operation(WGS84_LATITUDE_FIRST, mercator)
    x, y = operation.transform_point([0, 180])
    assert x == pytest.approx(20037508.34, rel=1e-6)
    assert y == pytest.approx(0, abs=1e-3)

    back = DEFAULT_SERVICE.find_operation(mercator, WGS84)
    lower, upper = back.transform_envelope([-20037508.34, -1e6], [0, 1e6])
    assert lower[0] == pytest.approx(-180, abs=1e-6)
    assert upper[0] == pytest.approx(0, abs=1e-6)
