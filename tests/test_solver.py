import dataclasses

import numpy as np
import pytest

from rti_layer.config import InvalidConfiguration, build_config
from rti_layer.grid import ConcentrationGrid
from rti_layer.model import LayerParams
from rti_layer.solver import ForwardSolver, LayeredDiffusionStepper, run_forward

from conftest import direct_probe_curve, small_setup


def test_probe_curve_shape(small_config):
    probe = run_forward(small_config)
    assert len(probe) == small_config.nt
    assert probe.name == "probe"
    # nothing is recorded before the source is switched on
    np.testing.assert_array_equal(probe.values[:small_config.nds], 0.0)
    t_peak, c_peak = probe.peak()
    assert c_peak > 0
    assert small_config.sdelay < t_peak <= small_config.tmax


def test_field_stays_positive_and_symmetric():
    config = build_config(small_setup(sp=LayerParams(0.1, 0.3, 0.05),
                                      additional_sources=((-40.0e-6, 20.0e-6, 20.0e-9),)))
    seen = []

    def check(k, grid):
        c = grid.values
        assert c.min() >= -1e-12 * max(c.max(), 1.0)
        np.testing.assert_array_equal(c[:, 0], c[:, 2])
        seen.append(k)

    ForwardSolver(callback=check).run(config)
    assert seen[0] == config.nds
    assert seen[-1] == config.nt - 1


def test_step_is_in_place(small_config):
    stepper = LayeredDiffusionStepper(small_config)
    grid = ConcentrationGrid(small_config.nz, small_config.nr, stepper.source.copy())
    values = grid.values
    before = values.copy()
    stepper.step(grid, small_config.sdelay)
    assert grid.values is values
    assert not np.array_equal(before, values)


def test_source_switched_off_after_duration(small_config):
    stepper = LayeredDiffusionStepper(small_config)
    grid = ConcentrationGrid(small_config.nz, small_config.nr)
    stepper.step(grid, small_config.sdelay + small_config.sduration + small_config.dt)
    assert grid.values.max() == 0.0
    stepper.step(grid, small_config.sdelay)
    assert grid.values.max() > 0.0


def test_clearance_lowers_the_curve(small_config):
    cleared = small_config.with_layer("so", LayerParams(0.2, 0.4, 0.1))
    assert run_forward(cleared).values.max() < run_forward(small_config).values.max()


def test_equal_layers_match_homogeneous_mode():
    same = LayerParams(0.2, 0.4, 0.01)
    layered = build_config(small_setup(sr=same, sp=same, so=same))
    with pytest.warns(UserWarning):
        homogeneous = build_config(small_setup(sr=same, sp=same, so=same, nolayer=True))
    assert len(LayeredDiffusionStepper(homogeneous).segments) == 1
    np.testing.assert_allclose(run_forward(layered).values, run_forward(homogeneous).values,
                               rtol=1e-9, atol=1e-15)


def test_interface_weights_continuous_flux(small_config):
    stepper = LayeredDiffusionStepper(small_config)
    c = np.zeros((small_config.nz, small_config.nr + 1))
    c[small_config.iz1] = 1.0
    cb = stepper._interfaces(c)
    w_sr, w_sp = stepper._weights[0], stepper._weights[1]
    np.testing.assert_allclose(cb[0], w_sr / (w_sr + w_sp))
    np.testing.assert_allclose(cb[1], 0.0)


def test_snapshots_do_not_change_the_curve(small_config):
    snapshots = []
    with_images = ForwardSolver(snapshot_spacing=1.0, sink=snapshots.append).run(small_config)
    np.testing.assert_array_equal(with_images.values, run_forward(small_config).values)

    assert snapshots[0].index == 0
    assert snapshots[0].time == 0.0
    times = np.array([s.time for s in snapshots])
    assert np.all(np.diff(times) > 1.0 - small_config.dt)
    expected = int(np.floor((small_config.nt - 1 - small_config.nds) * small_config.dt)) + 1
    assert len(snapshots) == expected

    image = snapshots[-1].image
    assert image.shape == (small_config.nz, 2 * small_config.nr - 1)
    np.testing.assert_array_equal(image, image[:, ::-1])
    assert snapshots[-1].max == image.max()
    assert 1000 <= snapshots[1].time_ms <= 1000 + round(1000 * small_config.dt)


def test_snapshots_need_a_sink(small_config):
    assert not ForwardSolver(snapshot_spacing=1.0).snapshots_enabled
    assert not ForwardSolver(snapshot_spacing=0.0, sink=print).snapshots_enabled


def test_delay_longer_than_run(small_config):
    bad = dataclasses.replace(small_config, sdelay=small_config.nt * small_config.dt)
    with pytest.raises(InvalidConfiguration):
        LayeredDiffusionStepper(bad)


def test_source_override_must_match_grid(small_config):
    with pytest.raises(ValueError, match="Source shape"):
        LayeredDiffusionStepper(small_config, np.zeros((3, 3)))


@pytest.mark.parametrize("overrides", [
    dict(),
    dict(sp=LayerParams(0.1, 0.3, 0.01), so=LayerParams(0.25, 0.5, 0.005)),
    dict(additional_sources=((20.0e-6, 30.0e-6, 40.0e-9),)),
])
def test_probe_curve_matches_direct_stepping(overrides):
    config = build_config(small_setup(**overrides))
    probe = run_forward(config)
    expected = direct_probe_curve(config)
    np.testing.assert_allclose(probe.values, expected, rtol=1e-9,
                               atol=1e-12 * expected.max())
