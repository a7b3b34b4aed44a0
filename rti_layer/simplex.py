"""
Downhill-simplex (Nelder-Mead) minimisation.

NelderMeadSimplex follows the transforms of the GSL `nmsimplex` minimiser:

  * initial simplex: x0 and x0 + step_i e_i
  * each iteration reflects the worst vertex through the centroid of the
    others, then tries an expansion (x2), a one dimensional contraction
    (x0.5) or finally shrinks every vertex halfway towards the best one
  * size = mean distance of the vertices from their centroid

A reflection is kept outright only when it beats the second worst vertex.
A reflected point that merely ties it is contracted, otherwise two tied
vertices can be reflected back and forth without the simplex shrinking.
"""
from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

import numpy as np
from scipy import optimize


class NonConvergenceWarning(RuntimeWarning):
    """The iteration cap was reached before the simplex shrank below tolerance."""


@dataclass
class SimplexStep:
    iteration: int
    x: np.ndarray
    fval: float
    size: float


@dataclass
class SimplexResult:
    x: np.ndarray
    fval: float
    size: float
    iterations: int
    converged: bool
    path: List[SimplexStep] = field(default_factory=list)
    method: str = "nmsimplex"


class NelderMeadSimplex:
    """Simplex state owned by one minimisation."""

    def __init__(self, objective: Callable[[np.ndarray], float],
                 x0: Sequence[float], steps: Sequence[float]):
        x0 = np.asarray(x0, dtype=float)
        steps = np.asarray(steps, dtype=float)
        if x0.ndim != 1 or x0.shape != steps.shape:
            raise ValueError(f"x0 {x0.shape} and steps {steps.shape} must be 1-D of equal length")
        self.objective = objective
        n = x0.size
        self.vertices = np.tile(x0, (n + 1, 1))
        self.vertices[1:] += np.diag(steps)
        self.values = np.array([self._eval(v) for v in self.vertices])
        self.iteration = 0

    def _eval(self, x: np.ndarray) -> float:
        return float(self.objective(x.copy()))

    @property
    def best(self) -> int:
        return int(np.argmin(self.values))

    @property
    def x(self) -> np.ndarray:
        return self.vertices[self.best].copy()

    @property
    def fval(self) -> float:
        return float(self.values[self.best])

    @property
    def size(self) -> float:
        centre = self.vertices.mean(axis=0)
        return float(np.linalg.norm(self.vertices - centre, axis=1).mean())

    def _ranks(self):
        """Indices of the highest, second highest and lowest vertex."""
        y = self.values
        hi = lo = 0
        dhi = dlo = y[0]
        s_hi, ds_hi = 1, y[1]
        for i in range(1, y.size):
            if y[i] < dlo:
                dlo, lo = y[i], i
            elif y[i] > dhi:
                ds_hi, s_hi = dhi, hi
                dhi, hi = y[i], i
            elif y[i] > ds_hi:
                ds_hi, s_hi = y[i], i
        return hi, s_hi, lo

    def _move_corner(self, coeff: float, corner: int):
        others = np.delete(self.vertices, corner, axis=0)
        mp = others.mean(axis=0)
        xc = mp - coeff * (mp - self.vertices[corner])
        return xc, self._eval(xc)

    def _replace(self, i: int, x: np.ndarray, val: float) -> None:
        self.vertices[i] = x
        self.values[i] = val

    def _contract_by_best(self, best: int) -> None:
        for i in range(self.values.size):
            if i == best:
                continue
            self.vertices[i] = 0.5 * (self.vertices[i] + self.vertices[best])
            self.values[i] = self._eval(self.vertices[i])

    def iterate(self) -> SimplexStep:
        hi, s_hi, lo = self._ranks()
        y = self.values

        xc, val = self._move_corner(-1.0, hi)
        if val < y[lo]:
            xc2, val2 = self._move_corner(-2.0, hi)
            if val2 < y[lo]:
                self._replace(hi, xc2, val2)
            else:
                self._replace(hi, xc, val)
        elif val >= y[s_hi]:
            if val <= y[hi]:
                self._replace(hi, xc, val)
            xc2, val2 = self._move_corner(0.5, hi)
            if val2 <= y[hi]:
                self._replace(hi, xc2, val2)
            else:
                self._contract_by_best(lo)
        else:
            self._replace(hi, xc, val)

        self.iteration += 1
        return SimplexStep(self.iteration, self.x, self.fval, self.size)


def minimize(objective: Callable[[np.ndarray], float], x0, steps,
             tol: float = 1e-4, max_iter: int = 100,
             callback: Optional[Callable[[SimplexStep], None]] = None) -> SimplexResult:
    """
    Iterate until the simplex size drops below `tol` or `max_iter`
    iterations have been done.  Hitting the cap is not an error: the best
    vertex is returned with converged=False and a NonConvergenceWarning.
    """
    simplex = NelderMeadSimplex(objective, x0, steps)
    path: List[SimplexStep] = []
    converged = False
    while True:
        step = simplex.iterate()
        path.append(step)
        if callback is not None:
            callback(step)
        converged = step.size < tol
        if converged or simplex.iteration >= max_iter:
            break

    if not converged:
        warnings.warn(f"failed to converge after {simplex.iteration} iterations "
                      f"(simplex size {simplex.size:g} >= {tol:g})", NonConvergenceWarning)
    return SimplexResult(x=simplex.x, fval=simplex.fval, size=simplex.size,
                         iterations=simplex.iteration, converged=converged, path=path)


def _simplex_size(vertices: np.ndarray) -> float:
    centre = vertices.mean(axis=0)
    return float(np.linalg.norm(vertices - centre, axis=1).mean())


def minimize_scipy(objective: Callable[[np.ndarray], float], x0, steps,
                   tol: float = 1e-4, max_iter: int = 100,
                   callback: Optional[Callable[[SimplexStep], None]] = None) -> SimplexResult:
    """
    Same contract as minimize() on top of scipy's Nelder-Mead.  The initial
    simplex is identical; scipy's own stopping rule uses the vertex spread
    (xatol = tol), so paths and iteration counts differ.  scipy skips the
    callback on its last iteration, so that step is added from the final
    simplex.
    """
    x0 = np.asarray(x0, dtype=float)
    init = np.tile(x0, (x0.size + 1, 1))
    init[1:] += np.diag(np.asarray(steps, dtype=float))

    seen = {}

    def f(x):
        val = float(objective(np.array(x)))
        seen[tuple(np.round(x, 15))] = val
        return val

    path: List[SimplexStep] = []

    def on_iteration(xk):
        step = SimplexStep(len(path) + 1, np.array(xk),
                           seen.get(tuple(np.round(xk, 15)), np.nan), np.nan)
        path.append(step)
        if callback is not None:
            callback(step)

    res = optimize.minimize(f, x0, method="Nelder-Mead", callback=on_iteration,
                            options={"initial_simplex": init, "maxiter": max_iter,
                                     "xatol": tol, "fatol": np.inf})
    size = _simplex_size(res.final_simplex[0])
    if len(path) < res.nit:
        step = SimplexStep(len(path) + 1, np.asarray(res.x).copy(), float(res.fun), size)
        path.append(step)
        if callback is not None:
            callback(step)

    converged = bool(res.success)
    if not converged:
        warnings.warn(f"scipy Nelder-Mead stopped after {res.nit} iterations: {res.message}",
                      NonConvergenceWarning)
    return SimplexResult(x=np.asarray(res.x), fval=float(res.fun), size=size,
                         iterations=len(path), converged=converged, path=path,
                         method="scipy-nelder-mead")
