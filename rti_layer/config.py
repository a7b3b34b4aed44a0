"""
Run configuration for the layered diffusion model.

Two levels:
  ExperimentSetup  - what the experimenter specifies, in SI units
  SimulationConfig - the discretised, immutable run description derived
                     from it by build_config()

Parameter mappings (from parameter files, YAML or the command line) use the
units of the RTI parameter files: microns for positions, nA for
currents, seconds for times and m^2/s for dfree.
"""
from __future__ import annotations

import dataclasses
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np
import yaml

from .model import LayerParams, source_rate

UM = 1e-6   # microns -> m
NA = 1e-9   # nA -> A

LAYER_KINDS = ("sr", "sp", "so")

DEFAULT_LAYERS = {
    "so": LayerParams(alpha=0.218, theta=0.447, kappa=0.0),
    "sp": LayerParams(alpha=0.2, theta=0.4, kappa=0.0),
    "sr": LayerParams(alpha=0.218, theta=0.447, kappa=0.0),
}

# Safety margin on the von Neumann bound dt <= dr^2 / (6 D*)
STABILITY_FACTOR = 0.9


class InvalidConfiguration(ValueError):
    """Configuration that cannot be simulated; raised before any work is done."""


class OutOfRangeSample(InvalidConfiguration):
    """A source or the probe maps to a cell outside the grid."""


def lround(x: float) -> int:
    """Round half away from zero (C lround)."""
    return int(np.sign(x) * np.floor(abs(x) + 0.5))


@dataclass(frozen=True)
class PointSource:
    """Iontophoretic point source placed on grid cell (i, j)."""
    i: int
    j: int
    rate: float       # mol/s
    z: float = 0.0    # m, model coordinates
    r: float = 0.0    # m
    current: float = 0.0  # A


@dataclass(frozen=True)
class ExperimentSetup:
    """
    User-facing parameters in SI units.  None means "use the default that
    depends on other parameters" (see build_config).
    """
    dfree: float = 1.24e-9
    trn: float = 0.35
    current: float = 80.0e-9
    tmax: float = 150.0
    delay: float = 10.0
    duration: float = 50.0
    probe_z: Optional[float] = None
    probe_r: float = 0.0
    lz1: Optional[float] = None
    lz2: Optional[float] = None
    ez1: Optional[float] = None
    ez2: Optional[float] = None
    rmax: float = 1000.0e-6
    zmax: Optional[float] = None
    nr: int = 500
    nz: int = 1000
    nt: Optional[int] = None
    nt_scale: Optional[float] = None
    nolayer: bool = False
    global_kappa: bool = False
    kappa_outside: Optional[float] = None
    sr: LayerParams = DEFAULT_LAYERS["sr"]
    sp: LayerParams = DEFAULT_LAYERS["sp"]
    so: LayerParams = DEFAULT_LAYERS["so"]
    # (z, r, current) in m, m, A relative to the main source
    additional_sources: Tuple[Tuple[float, float, float], ...] = ()

    @classmethod
    def from_parameters(cls, params: Mapping[str, Any],
                        base: Optional["ExperimentSetup"] = None) -> "ExperimentSetup":
        """
        Build a setup from a flat parameter mapping (values may be strings,
        as read from a parameter file).  Keys not given keep the value of
        `base` (or the defaults).  Unknown keys are ignored.
        """
        setup = base if base is not None else cls()
        updates: Dict[str, Any] = {}
        layers = {kind: getattr(setup, kind).as_dict() for kind in LAYER_KINDS}

        for key, value in params.items():
            if value is None:
                continue
            if key == "dfree":
                dfree = float(value)
                if dfree > 0.01:
                    warnings.warn(f"dfree = {dfree:g} is unrealistically large; "
                                  f"assuming units of 1e-9 m^2/s")
                    dfree *= 1e-9
                updates["dfree"] = dfree
            elif key in ("trn", "tmax", "delay", "duration"):
                updates[key] = float(value)
            elif key == "current":
                updates["current"] = float(value) * NA
            elif key == "source_z":
                sz = float(value)
                if abs(sz) > np.finfo(float).eps:
                    raise InvalidConfiguration(
                        f"source_z = {sz:f} microns but should be 0 "
                        f"(positions are measured from the source)")
            elif key in ("probe_z", "probe_r", "lz1", "lz2", "ez1", "ez2", "rmax", "zmax"):
                updates[key] = float(value) * UM
            elif key in ("nr", "nz", "nt"):
                updates[key] = int(float(value))
            elif key == "nt_scale":
                updates[key] = float(value)
            elif key in ("nolayer", "global_kappa"):
                updates[key] = _as_bool(value)
            elif key == "kappa_outside":
                updates[key] = float(value)
            elif key == "additional_sources":
                updates[key] = tuple(
                    (float(s["z"]) * UM, float(s.get("r", 0.0)) * UM, float(s["current"]) * NA)
                    for s in value)
            else:
                name, _, kind = key.partition("_")
                if kind in LAYER_KINDS and name in ("alpha", "theta", "kappa"):
                    layers[kind][name] = float(value)

        for kind in LAYER_KINDS:
            updates[kind] = LayerParams(**layers[kind])
        return dataclasses.replace(setup, **updates)


def _as_bool(value) -> bool:
    if isinstance(value, str):
        value = value.strip().lower()
        if value in ("true", "yes", "on"):
            return True
        if value in ("false", "no", "off", ""):
            return False
        return bool(int(float(value)))
    return bool(value)


@dataclass(frozen=True)
class SimulationConfig:
    """Fully discretised description of one forward run (SI units, model coordinates)."""
    # grid
    nz: int
    nr: int
    dr: float
    dz: float
    rmax: float
    zmax: float
    # time
    nt: int
    dt: float
    tmax: float
    ns: int
    nds: int
    sdelay: float
    sduration: float
    # layers
    iz1: int
    iz2: int
    lz1: float
    lz2: float
    sr: LayerParams
    sp: LayerParams
    so: LayerParams
    dfree: float
    nolayer: bool = False
    global_kappa: bool = False
    # source and probe
    sources: Tuple[PointSource, ...] = ()
    samplitude: float = 0.0
    trn: float = 0.35
    current: float = 80.0e-9
    iprobe: int = 0
    jprobe: int = 1
    probe_z: float = 0.0
    probe_r: float = 0.0
    source_z: float = 0.0
    spdist: float = 0.0
    coord_shift: float = 0.0
    cylinder_from_edges: bool = False
    comments: Tuple[str, ...] = field(default=(), compare=False)

    @property
    def layers(self) -> Dict[str, LayerParams]:
        return {"sr": self.sr, "sp": self.sp, "so": self.so}

    @property
    def dstar_max(self) -> float:
        return max(p.dstar(self.dfree) for p in (self.sr, self.sp, self.so))

    @property
    def stability_ratio(self) -> float:
        """dt / (dr^2 / (6 D*max)); the explicit scheme needs this <= 1."""
        return self.dt * 6.0 * self.dstar_max / self.dr ** 2

    def time_axis(self) -> np.ndarray:
        return self.dt * np.arange(self.nt)

    def with_layer(self, kind: str, params: LayerParams) -> "SimulationConfig":
        """
        Copy with the parameters of one layer replaced.  With global kappa
        the SP clearance is copied into SR and SO; in homogeneous mode every
        layer takes the new parameters.
        """
        if kind not in LAYER_KINDS:
            raise ValueError(f"Unknown layer '{kind}' (expected one of {LAYER_KINDS})")
        if self.nolayer:
            return dataclasses.replace(self, sr=params, sp=params, so=params)
        layers = self.layers
        layers[kind] = params
        if self.global_kappa and kind == "sp":
            for other in ("sr", "so"):
                layers[other] = dataclasses.replace(layers[other], kappa=params.kappa)
        return dataclasses.replace(self, **layers)


def build_config(setup: ExperimentSetup, comments=()) -> SimulationConfig:
    """
    Discretise an experiment.

    z positions in the setup are relative to the source; they are shifted so
    that the cylinder runs from z = 0 to z = zmax.  By default the SP layer is
    centred in the volume; with ez1/ez2 the cylinder ends are given instead.
    """
    s = setup
    if (s.ez1 is None) != (s.ez2 is None):
        missing = "ez2" if s.ez2 is None else "ez1"
        raise InvalidConfiguration(f"ez1 and ez2 must be given together ({missing} is missing)")
    from_edges = s.ez1 is not None
    if from_edges and s.zmax is not None:
        raise InvalidConfiguration("You specified ez1 and ez2, so you should not specify zmax")

    pz = 120.0e-6 if s.probe_z is None else s.probe_z
    lz1 = -50.0e-6 / 2.0 if s.lz1 is None else s.lz1
    lz2 = lz1 + 50.0e-6 if s.lz2 is None else s.lz2

    if from_edges:
        if s.ez1 > 0:
            raise InvalidConfiguration(f"Bottom of cylinder ez1 = {s.ez1:g} > 0")
        if s.ez2 < 0:
            raise InvalidConfiguration(f"Top of cylinder ez2 = {s.ez2:g} < 0")
        if s.ez1 > lz1:
            raise InvalidConfiguration(f"Bottom of cylinder ez1 = {s.ez1:g} > lz1 = {lz1:g}")
        if s.ez2 < lz2:
            raise InvalidConfiguration(f"Top of cylinder ez2 = {s.ez2:g} < lz2 = {lz2:g}")

    sr, sp, so = s.sr, s.sp, s.so
    if s.kappa_outside is not None:
        if s.global_kappa:
            raise InvalidConfiguration(
                "Both global kappa and kappa_outside were given; global kappa sets "
                "kappa_so and kappa_sr to kappa_sp, kappa_outside sets them to its own value")
        sr = dataclasses.replace(sr, kappa=s.kappa_outside)
        so = dataclasses.replace(so, kappa=s.kappa_outside)
    if s.nolayer:
        warnings.warn("nolayer given; the homogeneous environment uses the SR parameters")
        sp = so = sr
    if s.global_kappa:
        sr = dataclasses.replace(sr, kappa=sp.kappa)
        so = dataclasses.replace(so, kappa=sp.kappa)

    if s.nr < 2 or s.nz < 3:
        raise InvalidConfiguration(f"Grid too small: nr = {s.nr}, nz = {s.nz}")

    # shift to model coordinates
    if from_edges:
        zmax = s.ez2 - s.ez1
        coord_shift = -s.ez1
    else:
        zmax = 2000.0e-6 if s.zmax is None else s.zmax
        coord_shift = (zmax - (lz1 + lz2)) / 2.0
    sz = coord_shift
    pz += coord_shift
    lz1 += coord_shift
    lz2 += coord_shift

    rmax = s.rmax
    dr = rmax / s.nr
    dz = zmax / s.nz
    if abs(dr - dz) > 1.0e-15:
        dr = dz
        rmax = dr * s.nr

    sz = lround(sz / dz) * dz
    pz = lround(pz / dz) * dz
    pr = lround(s.probe_r / dr) * dr

    iz1 = lround(lz1 / dz)
    lz1 = iz1 * dz + dz / 2.0
    iz2 = lround(lz2 / dz)
    lz2 = iz2 * dz + dz / 2.0

    if not s.nolayer:
        if iz2 - iz1 < 2:
            raise InvalidConfiguration(
                f"Layer has too few discrete steps to continue (iz2 - iz1 = {iz2 - iz1})")
        if iz1 < 0 or iz2 > s.nz - 2:
            raise InvalidConfiguration(
                f"Layer interfaces (iz1, iz2) = ({iz1}, {iz2}) outside the grid (nz = {s.nz})")

    dstar_max = max(p.dstar(s.dfree) for p in (sr, sp, so))
    if s.nt is not None:
        if s.nt <= 0:
            raise InvalidConfiguration(f"nt = {s.nt} must be positive")
        dt = s.tmax / s.nt
    else:
        dt = STABILITY_FACTOR * dr * dr / (6.0 * dstar_max)
    if s.nt_scale is not None:
        if abs(s.nt_scale) < np.finfo(float).eps:
            raise InvalidConfiguration("nt_scale = 0")
        if s.nt_scale < 0:
            raise InvalidConfiguration(f"nt_scale = {s.nt_scale:g} < 0")
        dt /= s.nt_scale

    # snap tmax, duration and delay to multiples of dt
    nt = lround(s.tmax / dt)
    tmax = dt * nt
    ns = lround(s.duration / dt)
    sduration = dt * ns
    nds = lround(s.delay / dt)
    sdelay = dt * nds

    if sdelay >= tmax:
        raise InvalidConfiguration(f"Source delay ({sdelay:f}) should be < tmax ({tmax:f})")
    if sduration >= tmax:
        raise InvalidConfiguration(f"Source duration ({sduration:f}) should be < tmax ({tmax:f})")
    if sdelay + sduration >= tmax:
        raise InvalidConfiguration(
            f"Source delay ({sdelay:f}) + duration ({sduration:f}) should be < tmax ({tmax:f})")

    samplitude = source_rate(s.current, s.trn)
    sources = [_place_source(sz, 0.0, s.current, s.trn, dz, dr, s.nz, s.nr, "main source")]
    for n, (z, r, crnt) in enumerate(s.additional_sources):
        sources.append(_place_source(z + coord_shift, r, crnt, s.trn, dz, dr, s.nz, s.nr,
                                     f"additional source {n + 1}"))

    iprobe = lround(pz / dz)
    jprobe = 1 + lround(pr / dr)
    if not (0 <= iprobe <= s.nz - 1 and 1 <= jprobe <= s.nr):
        raise OutOfRangeSample(f"probe maps to cell ({iprobe}, {jprobe}) outside "
                               f"[0, {s.nz - 1}] x [1, {s.nr}]")

    return SimulationConfig(
        nz=s.nz, nr=s.nr, dr=dr, dz=dz, rmax=rmax, zmax=zmax,
        nt=nt, dt=dt, tmax=tmax, ns=ns, nds=nds, sdelay=sdelay, sduration=sduration,
        iz1=iz1, iz2=iz2, lz1=lz1, lz2=lz2, sr=sr, sp=sp, so=so, dfree=s.dfree,
        nolayer=s.nolayer, global_kappa=s.global_kappa,
        sources=tuple(sources), samplitude=samplitude, trn=s.trn, current=s.current,
        iprobe=iprobe, jprobe=jprobe, probe_z=pz, probe_r=pr, source_z=sz,
        spdist=float(np.hypot(pr, pz - sz)), coord_shift=coord_shift,
        cylinder_from_edges=from_edges, comments=tuple(comments),
    )


def _place_source(z, r, current, trn, dz, dr, nz, nr, label) -> PointSource:
    i = lround(z / dz)
    j = 1 + lround(r / dr)
    if i < 0 or i > nz - 1:
        raise OutOfRangeSample(f"{label}: isource = {i} outside [0, {nz - 1}]")
    if j < 0 or j > nr:
        raise OutOfRangeSample(f"{label}: jsource = {j} outside [0, {nr}]")
    return PointSource(i=i, j=j, rate=source_rate(current, trn), z=z, r=r, current=current)


def parse_source_list(text: str):
    """
    Additional sources given as "n z1 r1 current1 z2 r2 current2 ..."
    (spaces or commas; microns and nA) -> list of {z, r, current}.
    """
    tokens = [t for t in text.replace(",", " ").split() if t]
    if not tokens:
        return []
    n = int(float(tokens[0]))
    values = [float(t) for t in tokens[1:]]
    if len(values) < 3 * n:
        raise InvalidConfiguration(
            f"additional sources: expected {3 * n} values for {n} sources, got {len(values)}")
    return [dict(z=values[3 * k], r=values[3 * k + 1], current=values[3 * k + 2])
            for k in range(n)]


# -------------------------------
# YAML
# -------------------------------

FIT_DEFAULTS = {
    "alpha_start": 0.2,
    "theta_start": 0.4,
    "alpha_step": 0.1,
    "theta_step": 0.2,
    "kappa_step": 0.002,
    "minalpha": 0.001,
    "maxalpha": 0.25,
    "mintheta": 0.001,
    "maxtheta": 0.75,
    "minkappa": 0.0,
    "maxkappa": 0.1,
    "fit_tol": 1.0e-4,
    "itermax": 100,
}


def read_yaml_config(path) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Return the (parameters, fit) mappings of a YAML run file."""
    with open(path, "r") as f:
        cfg = yaml.safe_load(f) or {}
    if not isinstance(cfg, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    params = cfg.get("parameters") or {}
    fit = dict(FIT_DEFAULTS)
    fit.update(cfg.get("fit") or {})
    return dict(params), fit


def load_config(path) -> Tuple[SimulationConfig, Dict[str, Any]]:
    params, fit = read_yaml_config(path)
    setup = ExperimentSetup.from_parameters(params)
    return build_config(setup), fit
