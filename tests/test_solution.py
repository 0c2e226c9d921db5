import json
import os

import matplotlib.pyplot as plt
import numpy as np
import pytest

from sde_integrator import IterationBudgetExceededError, Solution, solve
from sde_integrator.solution import analytic_errors


def test_dataframe_columns_scalar(gbm):
    sol = solve(gbm, (0.0, 1.0), algorithm="EM", dt=0.25, seed=1)
    df = sol.to_dataframe()
    assert list(df.columns) == ["time", "u", "W", "u_analytic"]
    assert len(df) == 5
    np.testing.assert_allclose(df["u"].to_numpy(), sol.us)


def test_dataframe_columns_system(gbm_system):
    sol = solve(gbm_system, (0.0, 1.0), algorithm="EM", dt=0.5, seed=1)
    df = sol.to_dataframe()
    assert "u_3" in df.columns and "W_3" in df.columns and "u_analytic_0" in df.columns
    assert len(df) == len(sol)


def test_dataframe_needs_timeseries(gbm):
    sol = solve(gbm, (0.0, 1.0), algorithm="EM", dt=0.25, save_timeseries=False, seed=1)
    with pytest.raises(ValueError):
        sol.to_dataframe()


def test_plot_returns_axes(gbm):
    sol = solve(gbm, (0.0, 1.0), algorithm="EM", dt=0.1, seed=1)
    ax = sol.plot()
    # Path plus analytic overlay
    assert len(ax.get_lines()) == 2
    plt.close("all")


def test_save_formats(gbm, tmp_path):
    sol = solve(gbm, (0.0, 1.0), algorithm="EM", dt=0.25, seed=1)
    paths = sol.save("gbm", formats=("npz", "csv", "numpy"), output_dir=str(tmp_path))
    assert all(os.path.exists(p) for p in paths)

    data = np.load(tmp_path / "gbm.npz", allow_pickle=True)
    np.testing.assert_allclose(data["us"], sol.us)
    assert data["metadata"].item()["algorithm"] == "EM"

    with open(tmp_path / "gbm_metadata.json") as f:
        meta = json.load(f)
    assert meta["stats"]["naccept"] == 4
    assert meta["retcode"] == "Success"
    np.testing.assert_allclose(np.load(tmp_path / "gbm_t.npy"), sol.ts)


def test_save_rejects_unknown_format(gbm, tmp_path):
    sol = solve(gbm, (0.0, 1.0), algorithm="EM", dt=0.25, seed=1)
    with pytest.raises(ValueError, match="Unsupported"):
        sol.save("gbm", formats=("hdf5",), output_dir=str(tmp_path))


def test_errors_against_analytic(gbm):
    sol = solve(gbm, (0.0, 1.0), algorithm="SRIW1Optimized", dt=0.01, seed=6)
    assert set(sol.errors) == {"final", "l2", "l∞"}
    assert sol.errors["final"] == pytest.approx(abs(sol.u - sol.u_analytic))
    assert sol.errors["l∞"] >= sol.errors["l2"] >= 0.0


def test_no_errors_without_analytic(additive):
    sol = solve(additive, (0.0, 1.0), dt=0.1, seed=1)
    assert sol.errors == {}
    assert sol.u_analytic is None


def test_analytic_errors_final_only():
    errors = analytic_errors(np.array([1.0, 2.0]), np.array([1.5, 1.0]))
    assert errors == {"final": pytest.approx(0.75)}


def test_partial_solution_is_not_success(gbm):
    with pytest.raises(IterationBudgetExceededError) as info:
        solve(gbm, (0.0, 1.0), algorithm="EM", dt=0.1, maxiters=3, seed=1)
    partial = info.value.solution
    assert isinstance(partial, Solution)
    assert not partial.success
    assert partial.stats.naccept == 3


def test_unknown_retcode_rejected():
    with pytest.raises(ValueError, match="retcode"):
        Solution(u=1.0, W=0.0, t=1.0, retcode="Crashed")
