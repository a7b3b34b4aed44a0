import numpy as np
import pytest

from rti_layer.grid import inverse_radius
from rti_layer.stencil import laplacian


@pytest.mark.parametrize("shape", [(5, 6), (12, 4), (30, 21)])
@pytest.mark.parametrize("scales", [(0.1, 0.05), (0.15, 0.3)])
def test_constant_field_has_zero_interior(shape, scales):
    M, N = shape
    invr = inverse_radius(N - 1, 1.0e-5)
    out = laplacian(np.full(shape, 3.7), *scales, invr)
    # every neighbour inside the array: zero
    np.testing.assert_allclose(out[1:-1, 1:-1], 0.0, atol=1e-12)
    # neighbours outside the array count as zero
    assert np.all(out[0, 2:-1] < 0)
    assert np.all(out[-1, 2:-1] < 0)


def test_axis_uses_lhopital_kernel():
    a = np.zeros((5, 5))
    a[2, 2] = 1.0   # r = dr next to the axis
    a[2, 0] = 1.0   # its mirror
    invr = inverse_radius(4, 1.0)
    out = laplacian(a, 1.0, 0.5, invr)
    # 2 c(-dr) + 2 c(+dr) from the axis kernel
    assert out[2, 1] == pytest.approx(4.0)

    # axis cells of the edge rows keep the plain stencil
    edge = np.zeros((5, 5))
    edge[0, 0] = edge[0, 2] = 1.0
    out = laplacian(edge, 1.0, 0.5, invr)
    assert out[0, 1] == pytest.approx(2.0)


def test_radial_derivative_term():
    M, N = 3, 6
    dr = 2.0
    a = np.tile(np.arange(N, dtype=float), (M, 1))   # c = column index
    invr = inverse_radius(N - 1, dr)
    out = laplacian(a, 0.0, 1.0, invr)
    # scale2 * (c[j+1] - c[j-1]) / r
    np.testing.assert_allclose(out[1, 2:-1], 2.0 * invr[2:-1])


def test_linear_in_field():
    rng = np.random.default_rng(3)
    a, b = rng.random((8, 7)), rng.random((8, 7))
    invr = inverse_radius(6, 1.0)
    lhs = laplacian(2.0 * a + b, 0.1, 0.2, invr)
    rhs = 2.0 * laplacian(a, 0.1, 0.2, invr) + laplacian(b, 0.1, 0.2, invr)
    np.testing.assert_allclose(lhs, rhs, atol=1e-12)


def test_too_few_columns():
    with pytest.raises(ValueError):
        laplacian(np.zeros((4, 2)), 0.1, 0.1, np.zeros(2))
