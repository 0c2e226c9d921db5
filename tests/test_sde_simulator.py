import matplotlib.pyplot as plt
import numpy as np
import pytest

from sde_integrator import MonteCarloResult, run_monte_carlo


def test_runs_are_independent_and_reproducible(gbm):
    a = run_monte_carlo(gbm, 5, (0.0, 1.0), algorithm="EM", dt=0.1, seed=3)
    b = run_monte_carlo(gbm, 5, (0.0, 1.0), algorithm="EM", dt=0.1, seed=3)
    assert isinstance(a, MonteCarloResult)
    assert len(a) == 5
    np.testing.assert_array_equal(a.finals, b.finals)
    assert len(np.unique(a.finals)) == 5


def test_summary_matches_finals(gbm):
    result = run_monte_carlo(gbm, 20, (0.0, 1.0), algorithm="EM", dt=0.1, seed=1)
    summary = result.summary(0.9)
    assert list(summary.columns) == ["mean", "std", "lower", "upper"]
    assert summary["mean"].iloc[0] == pytest.approx(result.finals.mean())
    assert summary["lower"].iloc[0] <= summary["mean"].iloc[0] <= summary["upper"].iloc[0]


def test_mean_matches_expectation(gbm):
    # E[u(1)] = u0 * exp(alpha) for geometric Brownian motion
    result = run_monte_carlo(gbm, 1500, (0.0, 1.0), algorithm="SRIW1Optimized", dt=0.1,
                             save_timeseries=False, seed=10)
    assert result.finals.mean() == pytest.approx(0.5 * np.exp(1.01), rel=0.1)


def test_timeseries_stacking(gbm_system):
    result = run_monte_carlo(gbm_system, 3, (0.0, 1.0), algorithm="EM", dt=0.25, seed=2)
    ts, us = result.timeseries()
    assert ts.shape == (5,)
    assert us.shape == (3, 5, 4)


def test_timeseries_needs_saved_paths(gbm):
    result = run_monte_carlo(gbm, 2, (0.0, 1.0), algorithm="EM", dt=0.25, save_timeseries=False, seed=2)
    with pytest.raises(ValueError):
        result.timeseries()


def test_initial_states(gbm):
    result = run_monte_carlo(gbm, 2, (0.0, 1.0), algorithm="EM", dt=0.25,
                             initial_states=[1.0, 2.0], seed=4)
    assert result.solutions[0].us[0] == 1.0
    assert result.solutions[1].us[0] == 2.0
    with pytest.raises(ValueError):
        run_monte_carlo(gbm, 3, initial_states=[1.0, 2.0])


def test_plot(gbm_system):
    result = run_monte_carlo(gbm_system, 4, (0.0, 1.0), algorithm="EM", dt=0.25, seed=5)
    fig = result.plot(n_samples=2)
    assert len(fig.axes) == 4
    plt.close(fig)
