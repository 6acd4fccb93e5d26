import math

import pytest

from gridgeom.core.envelope import DirectPosition, Envelope
from gridgeom.errors import DisjointExtentError, MismatchedDimensionError
from gridgeom.referencing.crs import WGS84, WGS84_3D


def test_crossing_range_only_on_periodic_axis():
    envelope = Envelope.from_ranges((140, -179), (-90, 90), crs=WGS84)
    assert envelope.crosses_boundary(0)
    assert envelope.unwrapped_range(0) == (140, 181)
    assert envelope.span(0) == 41
    assert envelope.median(0) == 160.5
    assert envelope.minimum(0) == -180
    assert envelope.maximum(0) == 180

    with pytest.raises(ValueError):
        Envelope.from_ranges((0, 10), (20, -20), crs=WGS84)
    with pytest.raises(ValueError):
        Envelope.from_ranges((10, 0))


def test_dimension_checks():
    with pytest.raises(MismatchedDimensionError):
        Envelope((0, 0), (1, 1), WGS84_3D)
    with pytest.raises(MismatchedDimensionError):
        DirectPosition((1, 2), WGS84_3D)
    assert DirectPosition((1, 2, 3)).dimension == 3


def test_period_of_axes():
    envelope = Envelope.from_ranges((0, 10), (0, 10), crs=WGS84)
    assert envelope.period(0) == 360
    assert math.isnan(envelope.period(1))
    assert math.isnan(Envelope.from_ranges((0, 1)).period(0))


def test_intersect_reconciles_periodic_axis():
    domain = Envelope.from_ranges((10, 120), (20, 90), crs=WGS84)
    request = Envelope.from_ranges((-5, 95), (25, 115), crs=WGS84)
    result = domain.intersect(request)
    assert result.lower == (10, 25)
    assert result.upper == (95, 90)
    assert result.crs is WGS84

    shifted = Envelope.from_ranges((355, 375), (25, 30), crs=WGS84)
    result = domain.intersect(shifted)
    assert result.lower == (10, 25)
    assert result.upper == (15, 30)


def test_intersect_disjoint():
    domain = Envelope.from_ranges((0, 20), (0, 40), crs=WGS84)
    with pytest.raises(DisjointExtentError):
        domain.intersect(Envelope.from_ranges((60, 85), (15, 30), crs=WGS84))
    with pytest.raises(DisjointExtentError):
        domain.intersect(Envelope.from_ranges((0, 20), (50, 60), crs=WGS84))


def test_contains_with_period_shift():
    domain = Envelope.from_ranges((80, 280), (-90, 90), crs=WGS84)
    assert domain.contains(Envelope.from_ranges((-170, -100), (0, 10), crs=WGS84))
    assert not domain.contains(Envelope.from_ranges((0, 100), (0, 10), crs=WGS84))


def test_with_range_returns_copy():
    envelope = Envelope.from_ranges((0, 10), (5, 6), crs=WGS84)
    changed = envelope.with_range(1, 0, 1)
    assert changed.lower == (0, 0)
    assert changed.upper == (10, 1)
    assert changed.crs is WGS84
    assert envelope.lower == (0, 5)
