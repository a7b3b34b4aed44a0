import warnings

import numpy as np
import pytest

from rti_layer.simplex import (NelderMeadSimplex, NonConvergenceWarning, minimize,
                               minimize_scipy)


def quadratic(x):
    return (x[0] - 1.0) ** 2 + 2.0 * (x[1] + 0.5) ** 2


def rosenbrock(x):
    return 100.0 * (x[1] - x[0] ** 2) ** 2 + (1.0 - x[0]) ** 2


def test_initial_simplex():
    s = NelderMeadSimplex(quadratic, [0.2, 0.4], [0.1, 0.2])
    np.testing.assert_allclose(s.vertices, [[0.2, 0.4], [0.3, 0.4], [0.2, 0.6]])
    np.testing.assert_allclose(s.values, [quadratic(v) for v in s.vertices])
    centre = s.vertices.mean(axis=0)
    assert s.size == pytest.approx(np.mean([np.hypot(*(v - centre)) for v in s.vertices]))


def test_quadratic_minimum():
    res = minimize(quadratic, [0.0, 0.0], [0.5, 0.5], tol=1e-8, max_iter=500)
    assert res.converged
    assert res.size < 1e-8
    np.testing.assert_allclose(res.x, [1.0, -0.5], atol=1e-6)
    assert res.fval == pytest.approx(0.0, abs=1e-10)
    assert len(res.path) == res.iterations


def test_tied_reflection_is_contracted():
    s = NelderMeadSimplex(quadratic, [0.0, 0.0], [0.5, 0.5])
    s.vertices = np.array([[1.25, -1.0], [0.75, -0.5], [0.75, -1.0]])
    s.values = np.array([quadratic(v) for v in s.vertices])
    assert s.values[0] == s.values[2]

    sizes = [s.size]
    for _ in range(4):
        sizes.append(s.iterate().size)
    assert sizes[-1] < 0.5 * sizes[0]
    assert not np.allclose(s.vertices, [[1.25, -1.0], [0.75, -0.5], [0.75, -1.0]])


def test_rosenbrock_minimum():
    res = minimize(rosenbrock, [-1.2, 1.0], [0.5, 0.5], tol=1e-10, max_iter=2000)
    assert res.converged
    np.testing.assert_allclose(res.x, [1.0, 1.0], atol=1e-4)


def test_best_value_never_increases():
    res = minimize(rosenbrock, [-1.2, 1.0], [0.5, 0.5], tol=1e-6, max_iter=300)
    fvals = np.array([step.fval for step in res.path])
    assert np.all(np.diff(fvals) <= 0.0)
    assert res.path[-1].fval == res.fval


def test_iteration_cap_warns_and_returns_best():
    with pytest.warns(NonConvergenceWarning):
        res = minimize(rosenbrock, [-1.2, 1.0], [0.5, 0.5], tol=1e-12, max_iter=10)
    assert not res.converged
    assert res.iterations == 10
    assert res.fval < rosenbrock([-1.2, 1.0])


def test_callback_sees_every_iteration():
    steps = []
    minimize(quadratic, [0.0, 0.0], [0.5, 0.5], tol=1e-4, max_iter=200, callback=steps.append)
    assert [s.iteration for s in steps] == list(range(1, len(steps) + 1))


def test_infinite_values_are_rejected():
    def walled(x):
        return np.inf if x[0] < 0.5 else quadratic(x)

    res = minimize(walled, [2.0, 0.0], [0.5, 0.5], tol=1e-8, max_iter=500)
    np.testing.assert_allclose(res.x, [1.0, -0.5], atol=1e-5)


def test_three_dimensions():
    target = np.array([0.1, 0.3, 0.002])
    res = minimize(lambda x: float(np.sum((x - target) ** 2)),
                   [0.2, 0.4, 0.01], [0.1, 0.2, 0.002], tol=1e-9, max_iter=1000)
    np.testing.assert_allclose(res.x, target, atol=1e-6)


def test_mismatched_steps():
    with pytest.raises(ValueError):
        NelderMeadSimplex(quadratic, [0.0, 0.0], [0.1])


def test_scipy_backend_same_contract():
    res = minimize_scipy(quadratic, [0.0, 0.0], [0.5, 0.5], tol=1e-8, max_iter=500)
    assert res.converged
    assert res.method == "scipy-nelder-mead"
    np.testing.assert_allclose(res.x, [1.0, -0.5], atol=1e-6)
    assert len(res.path) == res.iterations
    assert [s.iteration for s in res.path] == list(range(1, res.iterations + 1))

    with warnings.catch_warnings():
        warnings.simplefilter("error", NonConvergenceWarning)
        with pytest.raises(NonConvergenceWarning):
            minimize_scipy(rosenbrock, [-1.2, 1.0], [0.5, 0.5], tol=1e-12, max_iter=5)
