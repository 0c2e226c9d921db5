import numpy as np
import pytest

from sde_integrator import SDEProblem, determine_initial_dt


def test_degenerate_case_returns_fallback_exactly():
    # f = g = 0: d1 and d2 vanish, dt0 = 1e-6
    problem = SDEProblem(lambda t, u: 0.0 * u, lambda t, u: 0.0 * u, 1.0)
    dt = determine_initial_dt(problem, 0.0, 1e-3, 1e-6, order=1.5)
    assert dt == max(1e-6, 1e-6 * 1e-3)


def test_degenerate_case_with_zero_state():
    problem = SDEProblem(lambda t, u: np.zeros_like(u), lambda t, u: np.zeros_like(u), np.zeros(3))
    assert determine_initial_dt(problem, 0.0, 1e-3, 1e-6, order=0.5) == 1e-6


@pytest.mark.parametrize("order", [0.5, 1.0, 1.5])
def test_positive_finite_and_bounded(gbm, order):
    dt = determine_initial_dt(gbm, 0.0, 1e-3, 1e-6, order=order)
    assert np.isfinite(dt)
    assert 1e-6 <= dt


def test_upper_bound_is_hundred_trial_steps():
    # Slow drift, no noise: dt1 would be huge, the trial step caps it
    problem = SDEProblem(lambda t, u: 1e-3 * u, lambda t, u: 0.0 * u, 1.0)
    d0 = 1.0 / (1e-3 + 1e-6)
    d1 = 1e-3 / (1e-3 + 1e-6)
    dt0 = 0.01 * d0 / d1
    dt = determine_initial_dt(problem, 0.0, 1e-3, 1e-6, order=1.5)
    assert dt <= 100 * dt0 * (1 + 1e-12)


def test_uses_supplied_evaluators(gbm):
    calls = []

    def drift(t, u):
        calls.append("f")
        return gbm.evaluate_drift(t, u)

    def diffusion(t, u):
        calls.append("g")
        return gbm.evaluate_diffusion(t, u)

    determine_initial_dt(gbm, 0.0, 1e-3, 1e-6, order=1.5, drift=drift, diffusion=diffusion)
    assert calls.count("f") == 2
    assert calls.count("g") == 2
