import numpy as np
import pytest

from gridgeom.core.extent import (
    DimensionNameType,
    GridExtent,
    GridRoundingMode,
    round_half_up,
    trunc_divmod,
)
from gridgeom.errors import DisjointExtentError, MismatchedDimensionError


def test_of_size_defaults_to_column_row():
    extent = GridExtent.of_size(300, 40)
    assert extent.low == (0, 0)
    assert extent.high == (299, 39)
    assert extent.sizes == (300, 40)
    assert extent.axis_type(0) is DimensionNameType.COLUMN
    assert extent.axis_type(1) is DimensionNameType.ROW

    assert GridExtent.of_size(3, 4, 5).axis_types is None


def test_invalid_ranges_rejected():
    with pytest.raises(ValueError):
        GridExtent((5,), (4,))
    with pytest.raises(MismatchedDimensionError):
        GridExtent((0, 0), (1,))
    with pytest.raises(MismatchedDimensionError):
        GridExtent((0, 0), (1, 1), (DimensionNameType.COLUMN,))


def test_round_half_up_differs_from_builtin_round():
    assert round_half_up(2.5) == 3
    assert round(2.5) == 2
    assert round_half_up(-2.5) == -2


def test_trunc_divmod_rounds_toward_zero():
    assert trunc_divmod(-1000, 300) == (-3, -100)
    assert trunc_divmod(-910, 294) == (-3, -28)
    assert trunc_divmod(2000, 50) == (40, 0)
    assert trunc_divmod(7, 3) == (2, 1)


@pytest.mark.parametrize(
    "rounding, low, high",
    [
        (GridRoundingMode.NEAREST, 10, 20),
        (GridRoundingMode.ENCLOSING, 10, 20),
        (GridRoundingMode.CONTAINED, 11, 19),
    ],
)
def test_from_grid_envelope_rounding(rounding, low, high):
    extent = GridExtent.from_grid_envelope([10.4], [20.6], rounding)
    assert extent.low == (low,)
    assert extent.high == (high,)


def test_from_grid_envelope_keeps_one_cell_for_tiny_ranges():
    extent = GridExtent.from_grid_envelope([3.2], [3.3], GridRoundingMode.CONTAINED)
    assert extent.low == extent.high == (3,)
    extent = GridExtent.from_grid_envelope([3.2], [3.3], GridRoundingMode.NEAREST)
    assert extent.size(0) == 1


def test_from_grid_envelope_nan_uses_base():
    base = GridExtent((0, 0, 4), (10, 10, 10))
    extent = GridExtent.from_grid_envelope([1, 2, np.nan], [5, 6, np.nan], base=base)
    assert extent.low == (1, 2, 4)
    assert extent.high == (4, 5, 10)
    with pytest.raises(ValueError):
        GridExtent.from_grid_envelope([np.nan], [1.0])


def test_intersect_and_union():
    a = GridExtent((100, 200), (300, 350))
    b = GridExtent((120, 180), (280, 360))
    assert a.intersect(b) == GridExtent((120, 200), (280, 350))
    assert a.union(b) == GridExtent((100, 180), (300, 360))
    assert a.contains(GridExtent((150, 250), (160, 260)))
    assert not a.contains(b)

    with pytest.raises(DisjointExtentError):
        a.intersect(GridExtent((400, 200), (500, 350)))


def test_expand_and_align_to_chunks():
    extent = GridExtent((60, 12), (199, 39))
    expanded = extent.expand(4, 3)
    assert expanded == GridExtent((56, 9), (203, 42))
    aligned = expanded.align_to_chunks(5, 10)
    assert aligned == GridExtent((55, 0), (204, 49))
    # Negative indices are aligned on chunk boundaries too.
    assert GridExtent((-900,), (10,)).align_to_chunks(70).low == (-910,)


def test_subsample_with_offsets():
    extent = GridExtent((2000, -1000), (5549, 8000))
    result = extent.subsample((50, 300), (0, -100))
    assert result == GridExtent((40, -3), (110, 27))


def test_subsample_default_offsets():
    extent = GridExtent((120, 200), (280, 350))
    result = extent.subsample((3, 5))
    assert result == GridExtent((40, 40), (93, 70))


def test_point_of_interest_and_corner_bounds():
    extent = GridExtent((10, 20), (19, 29))
    assert np.allclose(extent.point_of_interest(), (15, 25))
    lower, upper = extent.corner_bounds()
    assert np.allclose(lower, (10, 20))
    assert np.allclose(upper, (20, 30))


def test_to_window():
    window = GridExtent((10, 20), (19, 39)).to_window()
    assert window.col_off == 10
    assert window.row_off == 20
    assert window.width == 10
    assert window.height == 20
    with pytest.raises(MismatchedDimensionError):
        GridExtent.of_size(2, 2, 2).to_window()
