"""
Grid containers for the axisymmetric concentration field.

The field is stored as an (nz, nr+1) array indexed [z, r]:
  column 1 is the axis (r = 0),
  column 0 is a copy of column 2 so that the stencil does not need a
  special case for the left neighbour of the axis.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .model import LayerParams


@dataclass(frozen=True)
class LayerSegment:
    """Contiguous block of z rows sharing one set of diffusion parameters."""
    kind: str                 # "sr", "sp", "so" or "homogeneous"
    params: LayerParams
    start: int                # first row (inclusive)
    stop: int                 # last row + 1

    @property
    def n_rows(self) -> int:
        return self.stop - self.start

    def weight(self, dfree: float) -> float:
        """Flux weight D*·α used when averaging across an interface."""
        return self.params.dstar(dfree) * self.params.alpha


class ConcentrationGrid:
    """Dense concentration field c(z, r) with the mirrored symmetry column."""

    def __init__(self, nz: int, nr: int, values: np.ndarray = None):
        self.nz = int(nz)
        self.nr = int(nr)
        if values is None:
            values = np.zeros((self.nz, self.nr + 1), dtype=float)
        values = np.asarray(values, dtype=float)
        if values.shape != (self.nz, self.nr + 1):
            raise ValueError(f"Field shape {values.shape} does not match "
                             f"(nz, nr+1) = ({self.nz}, {self.nr + 1})")
        self.values = values

    @classmethod
    def from_array(cls, values: np.ndarray) -> "ConcentrationGrid":
        values = np.array(values, dtype=float)
        return cls(values.shape[0], values.shape[1] - 1, values)

    def copy(self) -> "ConcentrationGrid":
        return ConcentrationGrid(self.nz, self.nr, self.values.copy())

    def restore_symmetry(self) -> None:
        self.values[:, 0] = self.values[:, 2]

    def at(self, i: int, j: int) -> float:
        return float(self.values[i, j])

    def mirrored(self) -> np.ndarray:
        """
        Full cross-section for -rmax < r < rmax, shape (nz, 2*nr - 1).
        The axis column sits in the middle (index nr - 1).
        """
        c = self.values
        return np.hstack([c[:, :0:-1], c[:, 2:]])

    def extrema(self) -> Tuple[float, float]:
        return float(self.values.min()), float(self.values.max())


def inverse_radius(nr: int, dr: float) -> np.ndarray:
    """
    1/r for every column.  Column 1 (the axis) gets 0 and the mirror column
    gets 1/dr.
    """
    invr = np.empty(nr + 1, dtype=float)
    invr[0] = 1.0 / dr
    invr[1] = 0.0
    invr[2:] = 1.0 / (np.arange(1, nr) * dr)
    return invr


def layer_segments(config) -> Tuple[LayerSegment, ...]:
    """
    Row layout of the layers, bottom to top.

    Layered mode:      SR = [0, iz1], SP = [iz1+1, iz2], SO = [iz2+1, nz-1]
    Homogeneous mode:  one segment over all rows with the SR parameters.
    """
    if config.nolayer:
        return (LayerSegment("homogeneous", config.sr, 0, config.nz),)
    return (
        LayerSegment("sr", config.sr, 0, config.iz1 + 1),
        LayerSegment("sp", config.sp, config.iz1 + 1, config.iz2 + 1),
        LayerSegment("so", config.so, config.iz2 + 1, config.nz),
    )


def alpha_at_row(config, i: int) -> float:
    for seg in layer_segments(config):
        if seg.start <= i < seg.stop:
            return seg.params.alpha
    raise IndexError(f"Row {i} outside the grid (nz = {config.nz})")


def source_field(config) -> np.ndarray:
    """
    Amount added to the field by every point source in one time step.

    Each source contributes rate * dt * 4 / (pi * dr^2 * dz * alpha) at its
    nearest grid cell, alpha being that of the layer holding the cell.
    """
    s = np.zeros((config.nz, config.nr + 1), dtype=float)
    cell_volume = np.pi * config.dr ** 2 * config.dz / 4.0
    for src in config.sources:
        alpha = alpha_at_row(config, src.i)
        s[src.i, src.j] += src.rate * config.dt / (cell_volume * alpha)
    return s
