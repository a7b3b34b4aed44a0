"""
Laplacian in cylindrical coordinates computed with 3x3 correlations.

With circular symmetry and dz = dr,

    lap(c) = d2c/dz2 + d2c/dr2 + (1/r) dc/dr

The first two terms use the Cartesian 5-point kernel L, the last one the
central-difference kernel D scaled by 1/r.  On the axis (r = 0) the
(1/r) dc/dr term tends to d2c/dr2 (L'Hopital), giving the kernel L0:

        | 0  1  0 |          | 0  0  0 |           | 0  1  0 |
    L = | 1 -4  1 |      D = |-1  0  1 |      L0 = | 2 -6  2 |
        | 0  1  0 |          | 0  0  0 |           | 0  1  0 |

Cells outside the array count as zero (total absorption at the edges).
"""
from __future__ import annotations

import numpy as np
from scipy import ndimage

LAPLACE_KERNEL = np.array([[0.0, 1.0, 0.0],
                           [1.0, -4.0, 1.0],
                           [0.0, 1.0, 0.0]])

DERIVATIVE_KERNEL = np.array([[0.0, 0.0, 0.0],
                              [-1.0, 0.0, 1.0],
                              [0.0, 0.0, 0.0]])

AXIS_KERNEL = np.array([[0.0, 1.0, 0.0],
                        [2.0, -6.0, 2.0],
                        [0.0, 1.0, 0.0]])


def _correlate(a: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    return ndimage.correlate(a, kernel, mode="constant", cval=0.0)


def laplacian(a: np.ndarray, scale1: float, scale2: float, invr: np.ndarray) -> np.ndarray:
    """
    Scaled Laplacian update for one layer.

    Parameters
    ----------
    a : (M, N) array
        Concentration; rows are z, columns are r with column 0 the mirror
        column and column 1 the axis.
    scale1 : float
        D* dt / dr^2
    scale2 : float
        D* dt / (2 dr)
    invr : (N,) array
        1/r per column (0 on the axis).

    Returns
    -------
    (M, N) array
        Change in concentration over one time step (before sources and
        clearance).
    """
    a = np.asarray(a, dtype=float)
    M, N = a.shape
    if N < 3:
        raise ValueError(f"Need at least 3 r columns, got {N}")

    out = scale1 * _correlate(a, LAPLACE_KERNEL) \
        + scale2 * _correlate(a, DERIVATIVE_KERNEL) * invr[np.newaxis, :N]

    # axis column; the first and last rows keep the edge stencil above
    if M > 2:
        out[1:-1, 1] = scale1 * (a[:-2, 1] + a[2:, 1]
                                 + 2.0 * a[1:-1, 0] - 6.0 * a[1:-1, 1] + 2.0 * a[1:-1, 2])
    return out
