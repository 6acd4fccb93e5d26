import numpy as np
import pytest
from rasterio.transform import Affine

from gridgeom.errors import MismatchedDimensionError, NonInvertibleTransformError, NotSeparableError
from gridgeom.referencing import transforms
from gridgeom.referencing.transforms import (
    ConcatenatedTransform,
    InterpolatedTransform,
    LinearTransform,
    PassThroughTransform,
)


def test_linear_inverse_and_bounds():
    t = transforms.linear([[0, 0.5, -90], [0.5, 0, -180], [0, 0, 1]])
    assert np.allclose(t.transform_point([40, 370]), [-70, 5])
    assert np.allclose(t.inverse().transform_point([-70, 5]), [40, 370])

    lower, upper = t.transform_bounds([40, 370], [340, 390])
    assert np.allclose(lower, [-70, 5])
    assert np.allclose(upper, [80, 15])


def test_linear_matrix_is_read_only():
    t = transforms.scale(2, 3)
    with pytest.raises(ValueError):
        t.matrix[0, 0] = 5


def test_singular_and_rectangular_matrices_are_not_invertible():
    with pytest.raises(NonInvertibleTransformError):
        transforms.linear([[1, 1, 0], [1, 1, 0], [0, 0, 1]]).inverse()
    with pytest.raises(NonInvertibleTransformError):
        transforms.linear([[1, 0, 0], [0, 0, 1]]).inverse()


def test_concatenate_folds_linear_steps():
    first = transforms.scale_and_translation((50, 300), (0, -100))
    second = transforms.linear([[2, 0, 200], [0, -1, 500], [0, 0, 1]])
    result = transforms.concatenate(first, second)
    assert isinstance(result, LinearTransform)
    assert np.array_equal(result.matrix, [[100, 0, 200], [0, -300, 600], [0, 0, 1]])

    assert transforms.concatenate(transforms.identity(2), second) is second
    with pytest.raises(MismatchedDimensionError):
        transforms.concatenate(transforms.identity(3), second)


def test_restrict_linear():
    t = transforms.linear([
        [0, 0.5, 0, -90],
        [0.5, 0, 0, -180],
        [0, 0, 2, 3],
        [0, 0, 0, 1],
    ])
    sub, sources = t.restrict([2])
    assert sources == (2,)
    assert np.array_equal(sub.matrix, [[2, 3], [0, 1]])

    sub, sources = t.restrict([0])
    assert sources == (1,)
    assert np.allclose(sub.transform_point([40]), [-70])


def test_pass_through_of_linear_is_linear():
    t = transforms.pass_through(1, transforms.scale(5), 1)
    assert isinstance(t, LinearTransform)
    assert np.allclose(t.transform_point([1, 2, 3]), [1, 10, 3])


def test_interpolated_transform():
    latitude = InterpolatedTransform((0, 20, 50, 70, 90), (-90, -45, 0, 45, 90))
    assert np.allclose(latitude.transform_point([35]), [-22.5])
    # Extrapolated with the slope of the nearest segment.
    assert np.allclose(latitude.transform_point([-10]), [-112.5])
    assert np.allclose(latitude.inverse().transform_point([-22.5]), [35])
    assert np.allclose(latitude.derivative([60]), [[2.25]])

    with pytest.raises(ValueError):
        InterpolatedTransform((0, 0, 1), (1, 2, 3))
    with pytest.raises(NonInvertibleTransformError):
        InterpolatedTransform((0, 1, 2), (0, 1, 0)).inverse()


def test_restrict_non_linear_chain():
    latitude = InterpolatedTransform((0, 20, 50, 70, 90), (-90, -45, 0, 45, 90))
    linear = transforms.linear(np.diag([2.0, 2.0, 5.0, 1.0]))
    chain = transforms.concatenate(linear, transforms.pass_through(1, latitude, 1))
    assert isinstance(chain, ConcatenatedTransform)
    assert isinstance(chain.second, PassThroughTransform)

    sub, sources = chain.restrict([0, 1])
    assert sources == (0, 1)
    assert np.allclose(sub.transform_point([10, 10]), [20, -45])
    lower, upper = sub.inverse().transform_bounds([20, -45], [40, 0])
    assert np.allclose(lower, [10, 10])
    assert np.allclose(upper, [20, 25])


def test_generic_transform_is_not_separable():
    latitude = InterpolatedTransform((0, 1), (0, 2))
    with pytest.raises(NotSeparableError):
        transforms.ComponentwiseTransform((((0,), (0,), latitude),), 2, 2).restrict([1])


def test_chained_derivative():
    latitude = InterpolatedTransform((0, 10), (0, 30))
    t = transforms.pass_through(0, latitude, 1)
    assert np.allclose(t.derivative([5, 7]), [[3, 0], [0, 1]])

    chain = transforms.concatenate(transforms.scale(2, 3), t)
    assert np.allclose(chain.derivative([1, 1]), [[6, 0], [0, 3]])


def test_from_affine():
    t = transforms.from_affine(Affine(2.0, 0.0, 100.0, 0.0, -3.0, 50.0))
    assert np.allclose(t.transform_point([1, 1]), [102, 47])
