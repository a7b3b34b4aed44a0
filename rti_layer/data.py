import os
import re
import time
import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .config import SimulationConfig
from .fit import FitResult
from .model import TimeSeries
from .simplex import SimplexStep
from .solver import Snapshot

# Rows written for a curve before it is down-sampled
MAX_REPORT_ROWS = 1000

_ASSIGNMENT = re.compile(r"^\s*(\S+?)\s*=\s*(\S+)")
_RULE = "# --------------------------------------\n"


@dataclass
class ParameterFile:
    """Header of a parameter or RTI data file."""
    path: str
    params: Dict[str, str] = field(default_factory=dict)
    comments: List[str] = field(default_factory=list)
    header_end: Optional[int] = None   # 0-based index of the blank line ending the header


def io_filenames(arg: str, in_ext: str, out_ext: str) -> Tuple[str, str]:
    """
    Input and default output names from the command-line argument: a bare
    basename gets `in_ext`/`out_ext` appended, otherwise the extension of
    the input name is replaced by `out_ext`.
    """
    head, tail = os.path.split(arg)
    if "." not in tail:
        return arg + in_ext, arg + out_ext
    return arg, os.path.join(head, tail[:tail.index(".")] + out_ext)

# -----------------------
# Readers
# -----------------------

def read_parameter_file(path: str) -> ParameterFile:
    """
    Parse `key = value [trailing text]` lines.  Lines starting with '#'
    are comments and are kept; the header ends at the first line that is
    (nearly) blank.
    """
    out = ParameterFile(path=str(path))
    with open(path, "r") as f:
        for n, line in enumerate(f):
            if line.startswith("#"):
                out.comments.append(line.rstrip("\n"))
                continue
            if len(line.rstrip("\r\n")) < 2:
                out.header_end = n
                break
            m = _ASSIGNMENT.match(line)
            if m is None:
                warnings.warn(f"{path}:{n + 1}: ignoring line without 'parameter = value': "
                              f"{line.strip()!r}")
                continue
            out.params[m.group(1)] = m.group(2)
    return out


def read_rti_data(path: str) -> Tuple[ParameterFile, TimeSeries]:
    """
    Read an RTI measurement: a parameter header, a blank line, a second
    blank line, one column-heading line, then whitespace-separated columns
    (time in s, concentration; further columns are ignored).
    """
    header = read_parameter_file(path)
    if header.header_end is None:
        raise ValueError(f"{path}: did not find blank line after header")

    with open(path, "r") as f:
        lines = f.readlines()
    n_blank = header.header_end + 1
    if n_blank >= len(lines):
        raise ValueError(f"{path}: end of file reached before reading data")
    if len(lines[n_blank].rstrip("\r\n")) > 1:
        raise ValueError(f"{path}:{n_blank + 1}: the line after the header should be blank, "
                         f"got {lines[n_blank].strip()!r}")

    skip = n_blank + 2   # second blank line and the column headings
    df = pd.read_csv(path, sep=r"\s+", header=None, skiprows=skip)
    if df.shape[1] < 2 or df.empty:
        raise ValueError(f"{path}: need at least two data columns (time, concentration)")
    df = df.iloc[:, :2].astype(float)
    if not np.isfinite(df.to_numpy()).all():
        bad = df[~np.isfinite(df).all(axis=1)]
        raise ValueError(f"{path}: non-finite data values\n{bad.head()}")
    return header, TimeSeries(df.iloc[:, 0].to_numpy(), df.iloc[:, 1].to_numpy(), "data")


def read_snapshot(path: str, nz: int, nr: int) -> np.ndarray:
    """Load a mirrored field image written by SnapshotWriter."""
    image = np.fromfile(path, dtype=np.float64)
    if image.size != nz * (2 * nr - 1):
        raise ValueError(f"{path}: {image.size} values, expected {nz} x {2 * nr - 1}")
    return image.reshape(nz, 2 * nr - 1)

# -----------------------
# Writers
# -----------------------

def _layer_line(kind: str, p, prefix: str = "") -> str:
    return (f"# {prefix}alpha_{kind} = {p.alpha:.4f}, theta_{kind} = {p.theta:.4f}, "
            f"lambda_{kind} = {1.0 / np.sqrt(p.theta):.4f}, kappa_{kind} = {p.kappa:.6f}\n")


def geometry_lines(config: SimulationConfig, program: str, fit: Optional[dict] = None) -> List[str]:
    """Header block describing the discretised run."""
    c = config
    where = ("to have the volume go from z=0 to z=zmax." if c.cylinder_from_edges
             else "to center the SP layer in the volume.")
    lines = [
        f"# Output from {program}:\n",
        f"# Note that the z-values (sz, pz, lz1, and lz2) have been shifted \n"
        f"# by {1e6 * c.coord_shift:f} microns {where}\n",
        f"# nr x nz = {c.nr} x {c.nz}\n",
        f"# rmax x zmax = {1e6 * c.rmax:f} x {1e6 * c.zmax:f} microns\n",
        f"# dr x dz = {1e6 * c.dr:f} x {1e6 * c.dz:f} microns\n",
        f"# (sr, sz) = ({0.0:f}, {1e6 * c.source_z:f}) microns\n",
        f"# (pr, pz) = ({1e6 * c.probe_r:f}, {1e6 * c.probe_z:f}) microns\n",
        f"# Electrode distance = {1e6 * c.spdist:f} microns\n",
        f"# (iz1, iz2) = ({c.iz1}, {c.iz2})\n",
        f"# (lz1, lz2) = ({1e6 * c.lz1:f}, {1e6 * c.lz2:f}) microns\n",
        f"# Layer thickness = {1e6 * (c.lz2 - c.lz1):f} microns\n",
        f"# Layer discrete steps = {c.iz2 - c.iz1}\n",
        f"# Nolayer flag = {int(c.nolayer)}\n",
        f"# dfree = {c.dfree:g} m^2/s\n",
        _layer_line("so", c.so),
    ]
    if fit is None:
        lines.append(_layer_line("sp", c.sp))
    else:
        lines += [
            _layer_line("sp", c.sp, prefix="Starting "),
            f"# Starting alpha_step = {fit['alpha_step']:.4f}, theta_step = {fit['theta_step']:.4f}, "
            f"kappa_step = {fit['kappa_step']:.6f}\n",
            f"# Constraints: minalpha = {fit['minalpha']:.8f}, maxalpha = {fit['maxalpha']:.8f}\n",
            f"# Constraints: mintheta = {fit['mintheta']:.8f}, maxtheta = {fit['maxtheta']:.8f}\n",
            f"# Constraints: minkappa = {fit['minkappa']:.8f}, maxkappa = {fit['maxkappa']:.8f}\n",
            f"# Stopping criteria: simplex size < {fit['fit_tol']:g} "
            f"or # iterations = {fit['itermax']}\n",
        ]
    lines.append(_layer_line("sr", c.sr))
    if c.global_kappa:
        lines.append("# NOTE: kappa_sr and kappa_so set to kappa_sp (-g)\n")
    lines += [
        f"# nt = {c.nt}\n",
        f"# tmax = {c.tmax:f} s\n",
        f"# dt = {1e3 * c.dt:f} ms\n",
        f"# von Neumann dt / (dr^2/(6*dstar)) = {c.stability_ratio:f}\n",
        f"# ns = {c.ns}\n",
        f"# Source delay sdelay = {c.sdelay:f} s\n",
        f"# Source duration sduration = {c.sduration:f} s\n",
        f"# Current = {1e9 * c.current:g} nA\n",
        f"# Transport number = {c.trn:f}\n",
    ]
    extra = c.sources[1:]
    if extra:
        lines.append(f"# Number of extra sources = {len(extra)}\n")
        for n, src in enumerate(extra):
            lines.append(f"# Additional source #{n + 1}: \n"
                         f"#\tsz = {1e6 * src.z:f} microns, sr = {1e6 * src.r:f} microns, "
                         f"crnt = {1e9 * src.current:f} nA\n")
    return lines


def _preamble(title: str, command: str, comments: Sequence[str]) -> List[str]:
    lines = [f"# {title}\n", "# " + "~" * len(title) + "\n",
             "# Command used to run program:\n", f"# {command}\n"]
    if comments:
        lines.append(_RULE)
        lines.append("# Comments from input parameter file:\n")
        lines += [c.rstrip("\n") + "\n" for c in comments]
        lines.append(_RULE)
    return lines


def _timing_lines(started: float, elapsed: float) -> List[str]:
    return [
        f"# Start time = {time.ctime(started)}\n",
        f"# End time = {time.ctime(started + elapsed)}\n",
        f"# Total time = {int(round(elapsed))} seconds = {elapsed / 60.0:f} minutes "
        f"= {elapsed / 3600.0:f} hours\n",
    ]


def _write_columns(f, df: pd.DataFrame) -> None:
    df.to_csv(f, sep="\t", header=False, index=False, float_format="%#12.8g",
              lineterminator="\n")


def write_forward_report(path: str, config: SimulationConfig, probe: TimeSeries,
                         fit: FitResult, command: str = "", comments: Sequence[str] = (),
                         started: Optional[float] = None, elapsed: float = 0.0) -> str:
    """Forward run (.dat): header, characteristic-curve fit, probe and characteristic curves."""
    started = time.time() - elapsed if started is None else started
    lines = _preamble("3layer Output File", command, comments)
    lines += geometry_lines(config, "run_3layer")
    lines += _timing_lines(started, elapsed)
    lines += [
        _RULE,
        "# Fit for characteristic curve:\n",
        f"# Number of iterations = {fit.iterations}\n",
        f"# Fitted apparent alpha = {fit.alpha:f}\n",
        f"# Fitted apparent theta = {fit.theta:f}  (lambda = {fit.tortuosity:f})\n",
        f"# Final mean squared error = {fit.mse:g}\n",
        f"# Final simplex size = {fit.size:g}\n",
        "# Solution: apparent alpha\tapparent theta\tapparent lambda\t     MSE\tsimplex size"
        "\t# iter.\tTime (s)\tTime (m)\tTime (h) \n",
        f"# Solution: {fit.alpha:f}\t{fit.theta:f}\t{fit.tortuosity:f}\t{fit.mse:f}\t{fit.size:g} "
        f"\t{fit.iterations:7d}\t{int(round(elapsed)):8d}\t{elapsed / 60.0:f}\t{elapsed / 3600.0:f}\n",
        _RULE,
        "# Probe concentration data:\n",
        "#   time      \t  c (3-layer model) \t  c (characteristic curve) \n",
    ]
    idx = probe.downsample_indices(MAX_REPORT_ROWS)
    df = pd.DataFrame({"t": probe.t[idx], "c_model": probe.values[idx],
                       "c_characteristic": fit.curve.values[idx]})
    with open(path, "w") as f:
        f.writelines(lines)
        _write_columns(f, df)
        f.write("\n")
    return path


def write_fit_report(path: str, config: SimulationConfig, fit: FitResult,
                     fit_options: dict, command: str = "", comments: Sequence[str] = (),
                     started: Optional[float] = None, elapsed: float = 0.0) -> str:
    """Inverse fit (.dat): header, fitted layer parameters, model and data curves."""
    started = time.time() - elapsed if started is None else started
    kappa_note = " (in all layers)" if config.global_kappa else ""
    lines = _preamble("Fit-layer Output File", command, comments)
    lines += geometry_lines(config, "run_fit_layer", fit=fit_options)
    lines += _timing_lines(started, elapsed)
    lines += [
        _RULE,
        "# Results of fitting:\n",
        f"# Number of iterations = {fit.iterations}\n",
        f"# Fitted alpha = {fit.alpha:f}\n",
        f"# Fitted theta = {fit.theta:f}  (lambda = {fit.tortuosity:f})\n",
        f"# Fitted kappa = {fit.kappa:f} s^-1{kappa_note}\n",
        f"# Final mean squared error = {fit.mse:g}\n",
        f"# Final simplex size = {fit.size:g}\n",
        "# Solution: alpha_sp\ttheta_sp\tlambda_sp\tkappa_sp\t     MSE\tsimplex size\t# iter."
        "\tTime (s)\tTime (m)\tTime (h) \n",
        f"# Solution: {fit.alpha:f}\t{fit.theta:f}\t{fit.tortuosity:f}\t{fit.kappa:f}\t{fit.mse:f}"
        f"\t{fit.size:g}  \t{fit.iterations:7d}\t{int(round(elapsed)):8d}"
        f"\t{elapsed / 60.0:f}\t{elapsed / 3600.0:f}\n",
        _RULE,
        "# Probe concentration data:\n",
        "#   time      \t  c (model) \t  t (data) \t    c (data) \n",
    ]
    model, data = fit.curve, fit.reference
    n_rows = min(len(model), MAX_REPORT_ROWS)
    k = (np.arange(n_rows) * len(model)) // n_rows
    m = (np.arange(n_rows) * len(data)) // n_rows
    df = pd.DataFrame({"t": model.t[k], "c_model": model.values[k],
                       "t_data": data.t[m], "c_data": data.values[m]})
    with open(path, "w") as f:
        f.writelines(lines)
        _write_columns(f, df)
        f.write("\n\n\n")
    return path


def path_header(names: Sequence[str]) -> str:
    return "Iter\t" + "\t".join(f"{n}_fit" for n in names) + "\tmse      \tfit size"


def path_row(step: SimplexStep) -> str:
    values = "\t".join(f"{v:f}" for v in step.x)
    return f"{step.iteration}\t{values}\t{step.fval:g}\t{step.size:g}"


def write_simplex_path(path: str, names: Sequence[str], start: Sequence[float],
                       steps: Sequence[SimplexStep], title: str,
                       converged: bool = True) -> str:
    """Iteration table of a simplex fit."""
    with open(path, "w") as f:
        f.write(f"\n{title}\n")
        f.write(path_header(names) + "\n")
        f.write("0\t" + "\t".join(f"{v:f}" for v in start) + "\n")
        for step in steps:
            f.write(path_row(step) + "\n")
        if not converged:
            f.write(f"Warning: failed to converge, # iterations = {len(steps)}\n")
    return path


class SnapshotWriter:
    """
    Snapshot sink writing `<base>.<ms>ms.raw` images (native-endian float64,
    nz x (2 nr - 1), row-major by z) and an info file `<base>.info.txt`.
    """

    def __init__(self, base: str):
        self.base = str(base)
        self.info_path = f"{self.base}.info.txt"
        self.paths: List[str] = []

    def _write_info_header(self, image: np.ndarray) -> None:
        nz, width = image.shape
        with open(self.info_path, "w") as f:
            f.write("Information about the images:\n"
                    f"\tImage dimensions: {width} x {nz}\n"
                    "\tPixels are 64-bit floating point (doubles)\n")

    def image_path(self, snapshot: Snapshot) -> str:
        return f"{self.base}.{snapshot.time_ms}ms.raw"

    def __call__(self, snapshot: Snapshot) -> None:
        if not self.paths:
            self._write_info_header(snapshot.image)
        path = self.image_path(snapshot)
        np.ascontiguousarray(snapshot.image, dtype=np.float64).tofile(path)
        with open(self.info_path, "a") as f:
            f.write(f"Image file #{snapshot.index}: {path}: "
                    f"max = {snapshot.max:f}, min = {snapshot.min:f}\n")
        self.paths.append(path)
