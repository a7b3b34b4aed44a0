"""
Full-resolution runs.  Enable with `pytest --runslow`.

The golden probe curve is checked point by point against the same run
stepped directly with numpy slices (conftest.direct_probe_curve).
"""
import numpy as np
import pytest

from rti_layer.config import ExperimentSetup, build_config
from rti_layer.fit import default_layer_parameters, fit_layer
from rti_layer.model import LayerParams
from rti_layer.solver import run_forward

from conftest import GOLDEN, direct_probe_curve


@pytest.mark.slow
def test_golden_run():
    config = build_config(ExperimentSetup.from_parameters(GOLDEN))
    probe = run_forward(config)
    assert len(probe) == config.nt == 31000
    assert np.all(probe.values >= 0.0)
    t_peak, c_peak = probe.peak()
    off = config.sdelay + config.sduration
    assert off - 1.0 < t_peak < off + 20.0
    assert c_peak > 0.0

    expected = direct_probe_curve(config)
    np.testing.assert_allclose(probe.values, expected, rtol=1e-9, atol=1e-12 * c_peak)


@pytest.mark.slow
def test_inverse_fit_recovers_sp_layer():
    params = dict(GOLDEN, nr=100, nz=200, tmax=60.0, delay=5.0, duration=25.0)
    truth = build_config(ExperimentSetup.from_parameters(params))
    data = run_forward(truth)
    data.name = "data"

    start = truth.with_layer("sp", LayerParams(0.15, 0.35, 0.005))
    parameters = default_layer_parameters(start.sp, alpha_step=0.05, theta_step=0.1,
                                          kappa_step=0.002)
    fit = fit_layer(start, data, "sp", parameters, tol=1e-6, max_iter=300)

    assert fit.alpha == pytest.approx(0.10, abs=0.02)
    assert fit.theta == pytest.approx(0.30, abs=0.05)
    assert fit.kappa == pytest.approx(0.0, abs=0.0002)
