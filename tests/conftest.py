import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from sde_integrator import SDEProblem

GBM_ALPHA = 1.01
GBM_BETA = 0.87


def gbm_analytic(t, u0, W):
    return u0 * np.exp((GBM_ALPHA - GBM_BETA ** 2 / 2) * t + GBM_BETA * W)


@pytest.fixture
def gbm():
    """Scalar geometric Brownian motion with its exact solution."""
    return SDEProblem(
        lambda t, u: GBM_ALPHA * u,
        lambda t, u: GBM_BETA * u,
        0.5,
        analytic=gbm_analytic,
    )


@pytest.fixture
def gbm_system():
    """Four independent geometric Brownian motions (diagonal noise)."""
    u0 = np.full(4, 0.5)
    return SDEProblem(
        lambda t, u: GBM_ALPHA * u,
        lambda t, u: GBM_BETA * u,
        u0,
        analytic=gbm_analytic,
    )


@pytest.fixture
def additive():
    """Ornstein-Uhlenbeck-like problem with additive noise."""
    return SDEProblem(
        lambda t, u: -u,
        lambda t, u: 0.3 * np.ones_like(u),
        np.array([1.0]),
    )


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
