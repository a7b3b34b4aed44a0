import numpy as np
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import SimulationConfig
from .model import LayerParams, TimeSeries, PARAM_FLOOR, homogeneous_curve
from .grid import source_field
from .simplex import SimplexResult, SimplexStep, minimize
from .solver import ForwardSolver

# Linear penalty per unit of bound violation
PENALTY_FACTOR = 10.0

# -----------------
# Core Functions
# -----------------

def resampled_mse(model, data) -> float:
    """
    Mean squared error between two curves sampled on the same time span but
    with different numbers of points.  The shorter curve drives: for
    i = 1..n_short-1 it is compared with sample round(i * n_long/n_short) of
    the longer one, and the sum is divided by n_short.  Sample 0 is skipped.
    """
    model = np.asarray(model, dtype=float)
    data = np.asarray(data, dtype=float)
    nt, nd = model.size, data.size
    if nt == 0 or nd == 0:
        raise ValueError(f"Cannot compare empty curves (lengths {nt} and {nd})")

    if nt > nd:
        idx = np.floor(np.arange(1, nd) * (nt / nd) + 0.5).astype(int)
        return float(np.sum((model[idx] - data[1:]) ** 2) / nd)
    idx = np.floor(np.arange(1, nt) * (nd / nt) + 0.5).astype(int)
    return float(np.sum((model[1:] - data[idx]) ** 2) / nt)


def bound_penalty(values: Sequence[float], bounds: Sequence[Tuple[Optional[float], Optional[float]]],
                  factor: float = PENALTY_FACTOR) -> float:
    """factor * (distance outside [lower, upper]) summed over parameters."""
    penalty = 0.0
    for v, (lower, upper) in zip(values, bounds):
        if lower is not None and v < lower:
            penalty += (lower - v) * factor
        if upper is not None and v > upper:
            penalty += (v - upper) * factor
    return penalty

# -----------------
# Data Classes
# -----------------

@dataclass
class FitParameter:
    """One coordinate of the simplex search."""
    name: str
    start: float
    step: float
    lower: Optional[float] = None
    upper: Optional[float] = None

    @property
    def bounds(self) -> Tuple[Optional[float], Optional[float]]:
        return (self.lower, self.upper)


@dataclass
class FitResult:
    """Container for simplex fit results."""
    names: List[str]
    x: np.ndarray
    mse: float
    size: float
    iterations: int
    converged: bool
    curve: TimeSeries
    reference: TimeSeries
    path: List[SimplexStep] = field(default_factory=list)
    method: str = "nmsimplex"
    layer: Optional[str] = None

    @property
    def params(self) -> Dict[str, float]:
        return {name: float(v) for name, v in zip(self.names, self.x)}

    @property
    def alpha(self) -> float:
        return self.params["alpha"]

    @property
    def theta(self) -> float:
        return self.params["theta"]

    @property
    def kappa(self) -> Optional[float]:
        return self.params.get("kappa")

    @property
    def tortuosity(self) -> float:
        return 1.0 / np.sqrt(self.theta)

    def __str__(self) -> str:
        title = f"Fit results ({self.layer}):" if self.layer else "Fit results:"
        lines = [title, "-" * 40]
        for name, v in self.params.items():
            lines.append(f"{name:>15s}: {v:.6f}")
        lines.append(f"{'lambda':>15s}: {self.tortuosity:.6f}")
        lines.append(f"\nMSE = {self.mse:g}, simplex size = {self.size:g}, "
                     f"iterations = {self.iterations}")
        if not self.converged:
            lines.append("WARNING: simplex did not converge")
        return "\n".join(lines)

# -----------------------
# Objectives
# -----------------------

class Objective:
    """Scores a parameter vector; lower is better."""

    def __init__(self, parameters: Sequence[FitParameter]):
        self.parameters = list(parameters)
        self.n_evaluations = 0

    @property
    def names(self) -> List[str]:
        return [p.name for p in self.parameters]

    @property
    def x0(self) -> np.ndarray:
        return np.array([p.start for p in self.parameters], dtype=float)

    @property
    def steps(self) -> np.ndarray:
        return np.array([p.step for p in self.parameters], dtype=float)

    def penalty(self, x) -> float:
        return bound_penalty(x, [p.bounds for p in self.parameters])

    def mse(self, x) -> float:
        raise NotImplementedError

    def evaluate(self, x) -> float:
        self.n_evaluations += 1
        x = np.asarray(x, dtype=float)
        err = self.mse(x)
        if not np.isfinite(err):
            return np.inf
        return err + self.penalty(x)

    def __call__(self, x) -> float:
        return self.evaluate(x)


class CharacteristicCurveObjective(Objective):
    """Homogeneous closed-form curve with candidate (alpha, theta) against a probe curve."""

    def __init__(self, config: SimulationConfig, probe: TimeSeries,
                 parameters: Optional[Sequence[FitParameter]] = None):
        if parameters is None:
            parameters = [FitParameter("alpha", 0.2, 0.1), FitParameter("theta", 0.4, 0.2)]
        super().__init__(parameters)
        self.config = config
        self.probe = probe

    def curve(self, x) -> TimeSeries:
        alpha, theta = max(x[0], PARAM_FLOOR), max(x[1], PARAM_FLOOR)
        c = self.config
        values = homogeneous_curve(self.probe.t, c.spdist, c.samplitude, c.sdelay,
                                   c.sduration, c.dfree, alpha, theta)
        return TimeSeries(self.probe.t, values, "characteristic")

    def mse(self, x) -> float:
        return resampled_mse(self.probe.values, self.curve(x).values)


class LayerFitObjective(Objective):
    """
    Forward solve with candidate (alpha, theta, kappa) in one layer, compared
    with measured data.  Each evaluation is a full run of the solver.

    The source field is built once from the starting configuration, so a
    candidate alpha in the source layer does not rescale the injected amount.
    """

    def __init__(self, config: SimulationConfig, data: TimeSeries, layer: str = "sp",
                 parameters: Optional[Sequence[FitParameter]] = None,
                 solver: Optional[ForwardSolver] = None):
        if parameters is None:
            parameters = default_layer_parameters(config.layers[layer])
        super().__init__(parameters)
        self.config = config
        self.data = data
        self.layer = layer
        self.solver = solver if solver is not None else ForwardSolver()
        self.source = source_field(config)

    def candidate(self, x) -> SimulationConfig:
        params = LayerParams(alpha=max(x[0], PARAM_FLOOR), theta=max(x[1], PARAM_FLOOR),
                             kappa=float(x[2]))
        return self.config.with_layer(self.layer, params)

    def curve(self, x) -> TimeSeries:
        return self.solver.run(self.candidate(x), source=self.source)

    def mse(self, x) -> float:
        with np.errstate(over="ignore", invalid="ignore"):
            return resampled_mse(self.curve(x).values, self.data.values)


def default_layer_parameters(start: LayerParams,
                             alpha_step=0.1, theta_step=0.2, kappa_step=0.002,
                             alpha_bounds=(0.001, 0.25), theta_bounds=(0.001, 0.75),
                             kappa_bounds=(0.0, 0.1)) -> List[FitParameter]:
    return [
        FitParameter("alpha", start.alpha, alpha_step, *alpha_bounds),
        FitParameter("theta", start.theta, theta_step, *theta_bounds),
        FitParameter("kappa", start.kappa, kappa_step, *kappa_bounds),
    ]

# -----------------------
# Fits
# -----------------------

def run_fit(objective: Objective, tol: float = 1e-4, max_iter: int = 100,
            callback: Optional[Callable[[SimplexStep], None]] = None,
            minimizer: Callable[..., SimplexResult] = minimize) -> SimplexResult:
    return minimizer(objective, objective.x0, objective.steps,
                     tol=tol, max_iter=max_iter, callback=callback)


def fit_characteristic_curve(
    config: SimulationConfig,
    probe: TimeSeries,
    alpha_start: float = 0.2,
    theta_start: float = 0.4,
    alpha_step: float = 0.1,
    theta_step: float = 0.2,
    tol: float = 1e-4,
    max_iter: int = 100,
    callback: Optional[Callable[[SimplexStep], None]] = None,
    minimizer: Callable[..., SimplexResult] = minimize,
) -> FitResult:
    """
    Apparent alpha and theta: the homogeneous-medium parameters whose
    closed-form curve best matches a (layered) probe curve.
    """
    objective = CharacteristicCurveObjective(
        config, probe,
        [FitParameter("alpha", alpha_start, alpha_step),
         FitParameter("theta", theta_start, theta_step)])
    res = run_fit(objective, tol, max_iter, callback, minimizer)
    return FitResult(names=objective.names, x=res.x, mse=res.fval, size=res.size,
                     iterations=res.iterations, converged=res.converged,
                     curve=objective.curve(res.x), reference=probe,
                     path=res.path, method=res.method)


def fit_layer(
    config: SimulationConfig,
    data: TimeSeries,
    layer: str = "sp",
    parameters: Optional[Sequence[FitParameter]] = None,
    tol: float = 1e-4,
    max_iter: int = 100,
    callback: Optional[Callable[[SimplexStep], None]] = None,
    minimizer: Callable[..., SimplexResult] = minimize,
    solver: Optional[ForwardSolver] = None,
) -> FitResult:
    """
    Inverse problem: alpha, theta and kappa of one layer (SP by default)
    from a measured probe curve.  The starting point defaults to the
    layer's configured parameters.
    """
    objective = LayerFitObjective(config, data, layer, parameters, solver)
    res = run_fit(objective, tol, max_iter, callback, minimizer)
    return FitResult(names=objective.names, x=res.x, mse=res.fval, size=res.size,
                     iterations=res.iterations, converged=res.converged,
                     curve=objective.curve(res.x), reference=data,
                     path=res.path, method=res.method, layer=layer)
