import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

from rti_layer import plots
from rti_layer.model import TimeSeries
from rti_layer.simplex import SimplexStep


def _curves():
    t = np.linspace(0.0, 10.0, 50)
    return (TimeSeries(t, np.sin(t) ** 2, "probe"),
            TimeSeries(t[::2], np.sin(t[::2]) ** 2 + 0.01, "characteristic"))


def test_probe_and_residual_plots(tmp_path):
    probe, fitted = _curves()
    plots.probe_curves([probe, fitted], "probe")
    plt.savefig(tmp_path / "probe.png"); plt.close()
    plots.fit_residuals(fitted, probe, "residuals")
    plt.savefig(tmp_path / "resid.png"); plt.close()
    assert (tmp_path / "probe.png").stat().st_size > 0
    assert (tmp_path / "resid.png").stat().st_size > 0


def test_snapshot_and_path_plots(tmp_path):
    image = np.outer(np.hanning(40), np.hanning(39))
    plots.snapshot_image(image, 200e-6, 400e-6, "c", log=True)
    plt.savefig(tmp_path / "img.png"); plt.close()
    path = [SimplexStep(k, np.array([0.2 - 0.01 * k, 0.4 - 0.02 * k]), 1.0 / k, 0.1 / k)
            for k in range(1, 6)]
    plots.simplex_path(path, ["alpha", "theta"], "path")
    plt.savefig(tmp_path / "path.png"); plt.close()
    assert (tmp_path / "img.png").stat().st_size > 0
    assert (tmp_path / "path.png").stat().st_size > 0
