import numpy as np
import pytest

from rti_layer.config import ExperimentSetup, build_config
from rti_layer.model import LayerParams


# Reference run: SP layer 35-85 microns above the source, probe at 120 microns
GOLDEN = {
    "nr": 250, "nz": 500, "lz1": 35.0, "lz2": 85.0,
    "alpha_so": 0.20, "theta_so": 0.40, "alpha_sp": 0.10, "theta_sp": 0.30,
    "alpha_sr": 0.20, "theta_sr": 0.40, "current": 90.0, "trn": 0.3,
    "dfree": 1.24e-9, "probe_z": 120.0, "probe_r": 0.0,
}


def pytest_addoption(parser):
    parser.addoption("--runslow", action="store_true", default=False,
                     help="run full-resolution solver and inverse-fit tests")


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: full-resolution runs (enable with --runslow)")


def pytest_collection_modifyitems(config, items):
    if config.getoption("--runslow"):
        return
    skip_slow = pytest.mark.skip(reason="needs --runslow")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


def small_setup(**overrides):
    """20 x 40 grid with 10 micron cells and a short experiment."""
    params = dict(
        nr=20, nz=40, rmax=200.0e-6, zmax=400.0e-6,
        lz1=-60.0e-6, lz2=40.0e-6, probe_z=50.0e-6,
        tmax=20.0, delay=2.0, duration=5.0, current=80.0e-9, trn=0.35,
        sr=LayerParams(0.2, 0.4), sp=LayerParams(0.1, 0.3), so=LayerParams(0.2, 0.4),
    )
    params.update(overrides)
    return ExperimentSetup(**params)


@pytest.fixture
def small_config():
    return build_config(small_setup())


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


def direct_probe_curve(config):
    """
    Probe values of a forward run stepped with plain numpy slicing: each layer
    is copied into a zero-framed block together with its interface ghost rows
    and the stencil is written out term by term.
    """
    nz, nr, dt, dr = config.nz, config.nr, config.dt, config.dr
    if config.nolayer:
        layers = [(0, nz, config.sr)]
    else:
        layers = [(0, config.iz1 + 1, config.sr), (config.iz1 + 1, config.iz2 + 1, config.sp),
                  (config.iz2 + 1, nz, config.so)]
    last = len(layers) - 1
    weight = [p.theta * config.dfree * p.alpha for _, _, p in layers]

    with np.errstate(divide="ignore"):
        invr = 1.0 / (np.abs(np.arange(nr + 1) - 1) * dr)
    invr[1] = 0.0

    s = np.zeros((nz, nr + 1))
    for src in config.sources:
        alpha = next(p.alpha for lo, hi, p in layers if lo <= src.i < hi)
        s[src.i, src.j] += 4.0 * src.rate * dt / (np.pi * dr * dr * config.dz * alpha)

    c = s.copy()
    p = np.zeros(config.nt)
    nds = int(round(config.sdelay / dt))
    off = config.sdelay + config.sduration
    for k in range(nds, config.nt):
        p[k] = c[config.iprobe, config.jprobe]
        new = c.copy()
        for n, (lo, hi, par) in enumerate(layers):
            s1 = par.theta * config.dfree * dt / dr ** 2
            s2 = par.theta * config.dfree * dt / (2.0 * dr)
            top = 1 if n > 0 else 0
            m = hi - lo + top + (1 if n < last else 0)
            z = np.zeros((m + 2, nr + 3))
            z[1 + top:1 + top + hi - lo, 1:-1] = c[lo:hi]
            if n > 0:
                cb = (weight[n - 1] * c[lo - 1] + weight[n] * c[lo]) / (weight[n - 1] + weight[n])
                z[1, 1:-1] = 2.0 * cb - c[lo]
            if n < last:
                cb = (weight[n] * c[hi - 1] + weight[n + 1] * c[hi]) / (weight[n] + weight[n + 1])
                z[m, 1:-1] = 2.0 * cb - c[hi - 1]

            centre = z[1:-1, 1:-1]
            d = s1 * (z[:-2, 1:-1] + z[2:, 1:-1] + z[1:-1, :-2] + z[1:-1, 2:] - 4.0 * centre) \
                + s2 * (z[1:-1, 2:] - z[1:-1, :-2]) * invr
            if m > 2:
                d[1:-1, 1] = s1 * (z[1:-3, 2] + z[3:-1, 2] + 2.0 * z[2:-2, 1]
                                   - 6.0 * z[2:-2, 2] + 2.0 * z[2:-2, 3])
            new[lo:hi] += d[top:top + hi - lo]

        if k * dt + dt / 2.0 < off:
            new += s
        for lo, hi, par in layers:
            new[lo:hi] *= 1.0 - par.kappa * dt
        new[:, 0] = new[:, 2]
        c = new
    return p
