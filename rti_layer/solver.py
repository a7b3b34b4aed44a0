"""
Explicit (FTCS) solver for diffusion through stacked homogeneous layers.

The field is advanced layer by layer.  Each layer sees its neighbours
through one ghost row per interface, chosen so that the flux D*·α·dc/dz is
continuous across the interface:

    cb    = (D*_l α_l c_l + D*_u α_u c_u) / (D*_l α_l + D*_u α_u)
    ghost = 2 cb - c_own

where c_l, c_u are the rows either side of the interface and c_own is the
layer's own row next to it.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np

from .config import InvalidConfiguration, SimulationConfig, lround
from .grid import ConcentrationGrid, inverse_radius, layer_segments, source_field
from .model import TimeSeries
from .stencil import laplacian


class LayeredDiffusionStepper:
    """Advances a ConcentrationGrid by one time step of the configured run."""

    def __init__(self, config: SimulationConfig, source: Optional[np.ndarray] = None):
        if lround(config.sdelay / config.dt) >= config.nt:
            raise InvalidConfiguration(
                f"nds = {lround(config.sdelay / config.dt)}, nt = {config.nt}: "
                f"source delay should be shorter than the experiment")
        self.config = config
        self.segments = layer_segments(config)
        self.invr = inverse_radius(config.nr, config.dr)
        if source is None:
            source = source_field(config)
        elif source.shape != (config.nz, config.nr + 1):
            raise ValueError(f"Source shape {source.shape} does not match "
                             f"(nz, nr+1) = ({config.nz}, {config.nr + 1})")
        self.source = source
        self.source_off = config.sdelay + config.sduration

        dt, dr, dfree = config.dt, config.dr, config.dfree
        self._scales = [(seg.params.dstar(dfree) * dt / dr ** 2,
                         seg.params.dstar(dfree) * dt / (2.0 * dr))
                        for seg in self.segments]
        self._decay = [1.0 - seg.params.kappa * dt for seg in self.segments]
        self._weights = [seg.weight(dfree) for seg in self.segments]

    def _interfaces(self, c: np.ndarray) -> List[np.ndarray]:
        """Interface value cb for every pair of adjacent segments."""
        cb = []
        for k in range(len(self.segments) - 1):
            lower, upper = self.segments[k], self.segments[k + 1]
            wl, wu = self._weights[k], self._weights[k + 1]
            cb.append((wl * c[lower.stop - 1] + wu * c[upper.start]) / (wl + wu))
        return cb

    def increments(self, c: np.ndarray) -> List[np.ndarray]:
        """Diffusive change of every segment's rows, all computed from `c`."""
        if len(self.segments) == 1:
            return [laplacian(c, *self._scales[0], self.invr)]

        cb = self._interfaces(c)
        last = len(self.segments) - 1
        out = []
        for k, seg in enumerate(self.segments):
            rows = c[seg.start:seg.stop]
            parts = [rows]
            if k > 0:
                parts.insert(0, (2.0 * cb[k - 1] - rows[0])[np.newaxis, :])
            if k < last:
                parts.append((2.0 * cb[k] - rows[-1])[np.newaxis, :])
            dc = laplacian(np.vstack(parts), *self._scales[k], self.invr)
            lo = 1 if k > 0 else 0
            out.append(dc[lo:lo + seg.n_rows])
        return out

    def step(self, grid: ConcentrationGrid, t: float) -> None:
        """Advance `grid` in place from time t to t + dt."""
        c = grid.values
        for seg, dc in zip(self.segments, self.increments(c)):
            c[seg.start:seg.stop] += dc

        # the source is switched on for the step that starts at t
        if t + self.config.dt / 2.0 < self.source_off:
            c += self.source

        for seg, decay in zip(self.segments, self._decay):
            c[seg.start:seg.stop] *= decay

        grid.restore_symmetry()


@dataclass
class Snapshot:
    """Mirrored copy of the field at one instant."""
    index: int
    time: float           # s since the source was switched on
    image: np.ndarray     # (nz, 2*nr - 1)
    min: float
    max: float

    @property
    def time_ms(self) -> int:
        return lround(self.time * 1000.0)


class ForwardSolver:
    """
    Runs the stepper from the seeded field and records the probe curve.

    snapshot_spacing : seconds between snapshots (None or <= 0: none)
    sink             : callable receiving every Snapshot
    callback         : optional callable(k, grid) after every step
    """

    def __init__(self, snapshot_spacing: Optional[float] = None,
                 sink: Optional[Callable[[Snapshot], None]] = None,
                 callback: Optional[Callable[[int, ConcentrationGrid], None]] = None):
        self.snapshot_spacing = snapshot_spacing
        self.sink = sink
        self.callback = callback

    @property
    def snapshots_enabled(self) -> bool:
        return (self.snapshot_spacing is not None and self.snapshot_spacing > 0
                and self.sink is not None)

    def run(self, config: SimulationConfig, source: Optional[np.ndarray] = None) -> TimeSeries:
        """
        Probe curve of one run.  `source` replaces the field built from
        the configuration, e.g. to keep the injected amount fixed while
        layer parameters vary.
        """
        stepper = LayeredDiffusionStepper(config, source)
        grid = ConcentrationGrid(config.nz, config.nr, stepper.source.copy())
        t = config.time_axis()
        p = np.zeros(config.nt)
        nds = lround(config.sdelay / config.dt)

        counter = 0
        for k in range(nds, config.nt):
            if self.snapshots_enabled:
                elapsed = (k - nds) * config.dt
                if elapsed >= counter * self.snapshot_spacing:
                    lo, hi = grid.extrema()
                    self.sink(Snapshot(counter, elapsed, grid.mirrored(), lo, hi))
                    counter += 1

            p[k] = grid.values[config.iprobe, config.jprobe]
            stepper.step(grid, t[k])
            if self.callback is not None:
                self.callback(k, grid)

        return TimeSeries(t, p, "probe")


def run_forward(config: SimulationConfig, **kwargs) -> TimeSeries:
    """Probe curve of one forward run; kwargs go to ForwardSolver."""
    return ForwardSolver(**kwargs).run(config)
