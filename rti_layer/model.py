from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd
from scipy.special import erfc

# Physical constants (SI)
FARADAY = 96485.3399  # C/mol

# Floor applied to alpha and theta before any model evaluation
PARAM_FLOOR = 0.001


@dataclass(frozen=True)
class LayerParams:
    """
    Diffusion parameters of one homogeneous layer.
      alpha : extracellular volume fraction
      theta : permeability, D* = theta * D_free
      kappa : nonspecific clearance rate (1/s)
    """
    alpha: float
    theta: float
    kappa: float = 0.0

    def dstar(self, dfree: float) -> float:
        return self.theta * dfree

    @property
    def tortuosity(self) -> float:
        """lambda = 1/sqrt(theta)"""
        return 1.0 / np.sqrt(self.theta)

    def floored(self) -> "LayerParams":
        return LayerParams(alpha=max(self.alpha, PARAM_FLOOR),
                           theta=max(self.theta, PARAM_FLOOR),
                           kappa=self.kappa)

    def as_dict(self):
        return dict(alpha=self.alpha, theta=self.theta, kappa=self.kappa)


def source_rate(current_A, trn):
    """Iontophoretic release rate in mol/s from current (A) and transport number."""
    return current_A * trn / FARADAY


# -------------------------------
# Time series
# -------------------------------

@dataclass
class TimeSeries:
    """Ordered (t, value) samples: probe curve, characteristic curve or data."""
    t: np.ndarray
    values: np.ndarray
    name: str = "c"
    meta: dict = field(default_factory=dict)

    def __post_init__(self):
        self.t = np.asarray(self.t, dtype=float)
        self.values = np.asarray(self.values, dtype=float)
        if self.t.shape != self.values.shape:
            raise ValueError(f"TimeSeries '{self.name}': t has shape {self.t.shape} "
                             f"but values have shape {self.values.shape}")

    def __len__(self) -> int:
        return self.values.size

    def downsample_indices(self, n_max: int = 1000) -> np.ndarray:
        """Indices k = i*n // n_max (i < n_max) used when writing long curves."""
        n = len(self)
        if n <= n_max:
            return np.arange(n)
        return (np.arange(n_max) * n) // n_max

    def downsample(self, n_max: int = 1000) -> "TimeSeries":
        idx = self.downsample_indices(n_max)
        return TimeSeries(self.t[idx], self.values[idx], self.name, dict(self.meta))

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"t": self.t, self.name: self.values})

    def peak(self):
        k = int(np.argmax(self.values))
        return float(self.t[k]), float(self.values[k])


# -------------------------------
# Homogeneous (closed-form) model
# -------------------------------

def homogeneous_curve(t, spdist, samplitude, sdelay, sduration, dfree,
                      alpha, theta, kappa: Optional[float] = None):
    """
    Concentration at distance d from a point source switched on for
    `sduration` seconds after `sdelay` seconds, in an isotropic homogeneous
    medium:

      c(t) = 0                                         t <= sdelay
      c(t) = A erfc(d / (2 sqrt(D* (t - sdelay))))     sdelay < t <= sdelay + sduration
      c(t) = (the above) - A erfc(d / (2 sqrt(D* (t - sdelay - sduration))))   afterwards

    with D* = theta * dfree and A = samplitude / (4 pi alpha D* d).

    `kappa` is accepted for symmetry with the layered model but the closed
    form has no clearance term.
    """
    t = np.asarray(t, dtype=float)
    dstar = theta * dfree
    ampl = samplitude / (4.0 * np.pi * alpha * dstar * spdist)

    c = np.zeros_like(t)
    on = t > sdelay
    c[on] = ampl * erfc(spdist / (2.0 * np.sqrt(dstar * (t[on] - sdelay))))

    off = t > sdelay + sduration
    c[off] -= ampl * erfc(spdist / (2.0 * np.sqrt(dstar * (t[off] - (sdelay + sduration)))))
    return c


def characteristic_curve(config, alpha, theta, name="characteristic") -> TimeSeries:
    """Homogeneous-model curve on the time axis of a simulation config."""
    t = config.time_axis()
    c = homogeneous_curve(t, config.spdist, config.samplitude, config.sdelay,
                          config.sduration, config.dfree, alpha, theta)
    return TimeSeries(t, c, name)
