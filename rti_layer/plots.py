import matplotlib.pyplot as plt
import numpy as np

from .diagnostics import aligned_residuals

def probe_curves(curves, title, units="mM"):
    """Overlay of TimeSeries curves against time."""
    plt.figure()
    for ts in curves:
        plt.plot(ts.t, ts.values, lw=2, label=ts.name)
    plt.title(title)
    plt.xlabel("t (s)"); plt.ylabel(f"c ({units})")
    plt.legend()
    plt.tight_layout()

def fit_residuals(model, reference, title):
    t, resid = aligned_residuals(model, reference)
    plt.figure()
    plt.plot(t, resid, lw=1)
    plt.axhline(0.0, color="k", lw=0.5)
    plt.title(title); plt.xlabel("t (s)"); plt.ylabel("residual")
    plt.tight_layout()

def snapshot_image(image, rmax, zmax, title, log=False):
    """Mirrored field image (nz x (2 nr - 1)), r across, z up."""
    data = np.log10(np.clip(image, 1e-12, None)) if log else image
    plt.figure()
    plt.imshow(data, origin="lower", aspect="equal",
               extent=(-1e6 * rmax, 1e6 * rmax, 0.0, 1e6 * zmax))
    plt.colorbar(label="log10 c" if log else "c")
    plt.title(title); plt.xlabel("r (µm)"); plt.ylabel("z (µm)")
    plt.tight_layout()

def simplex_path(path, names, title):
    """Best vertex and simplex size per iteration."""
    it = np.array([s.iteration for s in path])
    x = np.array([s.x for s in path])
    fig, axes = plt.subplots(len(names) + 1, 1, sharex=True, figsize=(6, 2 * (len(names) + 1)))
    for k, name in enumerate(names):
        axes[k].plot(it, x[:, k], marker=".")
        axes[k].set_ylabel(name)
    axes[-1].semilogy(it, [s.size for s in path], marker=".")
    axes[-1].set_ylabel("size"); axes[-1].set_xlabel("iteration")
    axes[0].set_title(title)
    fig.tight_layout()
