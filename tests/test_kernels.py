import numpy as np
import pytest

from sde_integrator import (
    Algorithm,
    InputError,
    JumpProblem,
    NonFiniteStateError,
    SDEProblem,
    UnimplementedSchemeError,
    build_kernel,
    construct_sra1,
    construct_sriw1,
)
from sde_integrator.kernels import SRA, SRI, TauLeaping
from sde_integrator.noise_generation import Increment


def _increment(dt, dW, dZ=None):
    dW = np.asarray(dW, dtype=np.float64)
    dZ = None if dZ is None else np.asarray(dZ, dtype=np.float64)
    return Increment(dt, dW, dZ)


def test_euler_maruyama_step(gbm):
    kernel = build_kernel("EM", gbm)
    u = gbm.initial_state()
    result = kernel.step(0.0, u, 0.1, _increment(0.1, 0.3))
    expected = 0.5 + 1.01 * 0.5 * 0.1 + 0.87 * 0.5 * 0.3
    assert result.u[0] == pytest.approx(expected)
    assert kernel.nf == 1 and kernel.ng == 1


def test_milstein_step(gbm):
    kernel = build_kernel("RKMil", gbm)
    u = gbm.initial_state()
    dt, dW = 0.01, 0.05
    result = kernel.step(0.0, u, dt, _increment(dt, dW))
    a, b, u0 = 1.01, 0.87, 0.5
    K = u0 + a * u0 * dt
    utilde = K + b * u0 * np.sqrt(dt)
    ggprime = (b * utilde - b * u0) / (2 * np.sqrt(dt))
    expected = K + b * u0 * dW + ggprime * (dW * dW - dt)
    assert result.u[0] == pytest.approx(expected, rel=1e-12)
    # Close to the exact Milstein correction b^2 u / 2
    assert ggprime == pytest.approx(0.5 * b * b * u0, rel=0.1)
    assert kernel.ng == 2


@pytest.mark.parametrize("dW, dZ", [(0.3, -0.2), (-0.05, 0.4), (0.0, 0.0)])
def test_sriw1_optimized_matches_generic_sri(gbm_system, dW, dZ):
    generic = build_kernel("SRI", gbm_system, construct_sriw1())
    unrolled = build_kernel("SRIW1Optimized", gbm_system)
    u = gbm_system.initial_state() * np.array([1.0, 2.0, 0.5, 3.0])
    inc = _increment(0.05, np.full(4, dW), np.full(4, dZ))
    a = generic.step(0.2, u, 0.05, inc)
    b = unrolled.step(0.2, u, 0.05, inc)
    np.testing.assert_allclose(a.u, b.u, rtol=1e-12, atol=1e-14)
    np.testing.assert_allclose(a.E1, b.E1, rtol=1e-12, atol=1e-14)
    np.testing.assert_allclose(a.E2, b.E2, rtol=1e-12, atol=1e-14)


def test_sra1_optimized_matches_generic_sra(additive):
    generic = build_kernel("SRA", additive)
    unrolled = build_kernel("SRA1Optimized", additive)
    u = additive.initial_state()
    inc = _increment(0.1, [0.2], [-0.1])
    a = generic.step(0.0, u, 0.1, inc)
    b = unrolled.step(0.0, u, 0.1, inc)
    np.testing.assert_allclose(a.u, b.u, rtol=1e-12)
    np.testing.assert_allclose(a.E2, b.E2, rtol=1e-12, atol=1e-15)


def test_vectorized_variants_match_generic(gbm, additive):
    inc = _increment(0.05, 0.3, -0.2)
    u = gbm.initial_state()
    a = build_kernel("SRI", gbm).step(0.0, u, 0.05, inc)
    b = build_kernel("SRIVectorized", gbm).step(0.0, u, 0.05, inc)
    np.testing.assert_allclose(a.u, b.u, rtol=1e-12)
    np.testing.assert_allclose(a.E2, b.E2, rtol=1e-12, atol=1e-15)

    inc = _increment(0.1, [0.2], [-0.1])
    u = additive.initial_state()
    a = build_kernel("SRA", additive).step(0.0, u, 0.1, inc)
    b = build_kernel("SRAVectorized", additive).step(0.0, u, 0.1, inc)
    np.testing.assert_allclose(a.u, b.u, rtol=1e-12)


def test_zero_noise_reduces_to_deterministic_rk():
    # With g = 0 SRIW1 is Ralston's second-order method
    problem = SDEProblem(lambda t, u: -u, lambda t, u: 0.0 * u, 1.0)
    kernel = build_kernel("SRIW1Optimized", problem)
    h = 0.1
    result = kernel.step(0.0, problem.initial_state(), h, _increment(h, 0.0, 0.0))
    k1 = -1.0
    k2 = -(1.0 + 0.75 * h * k1)
    assert result.u[0] == pytest.approx(1.0 + h * (k1 / 3 + 2 * k2 / 3))


def test_scalar_noise_shared_across_components():
    problem = SDEProblem(lambda t, u: np.zeros_like(u), lambda t, u: np.ones_like(u),
                         np.zeros(3), noise="scalar")
    kernel = build_kernel("EM", problem)
    result = kernel.step(0.0, problem.initial_state(), 0.1, _increment(0.1, 0.7))
    np.testing.assert_allclose(result.u, 0.7)


def test_inplace_problem():
    def f(t, u, du):
        du[:] = -u

    def g(t, u, du):
        du[:] = 0.1

    problem = SDEProblem(f, g, np.array([1.0, 2.0]))
    assert problem.inplace
    kernel = build_kernel("EM", problem)
    result = kernel.step(0.0, problem.initial_state(), 0.1, _increment(0.1, [0.0, 1.0]))
    np.testing.assert_allclose(result.u, [0.9, 1.8 + 0.1])


def test_non_finite_state_raises():
    problem = SDEProblem(lambda t, u: np.inf * u, lambda t, u: u, 1.0)
    kernel = build_kernel("EM", problem)
    with pytest.raises(NonFiniteStateError):
        kernel.step(0.0, problem.initial_state(), 0.1, _increment(0.1, 0.0))


def test_tau_leaping_zero_rates_leave_state_unchanged(rng):
    problem = JumpProblem(lambda u, p, t: np.zeros(2), np.array([3.0, 7.0]),
                          stoichiometry=np.array([[1.0, -1.0], [-1.0, 2.0]]))
    kernel = build_kernel("TauLeaping", problem)
    u = problem.initial_state()
    result = kernel.step(0.0, u, 0.5, _increment(0.5, np.zeros(2)))
    assert np.array_equal(result.u, u)


def test_tau_leaping_change_function():
    def change(u, p, t, counts, mark):
        return p * counts

    problem = JumpProblem(lambda u, p, t: [1.0], 0.0, change=change, p=2.0)
    kernel = build_kernel(Algorithm.TauLeaping, problem)
    result = kernel.step(0.0, problem.initial_state(), 1.0, _increment(1.0, [3.0]))
    assert result.u[0] == 6.0


def test_build_kernel_registry(gbm, additive):
    assert isinstance(build_kernel("SRI", gbm), SRI)
    assert isinstance(build_kernel("SRA", additive), SRA)
    assert build_kernel("SRA", additive).tableau.name == "SRA1"
    assert build_kernel("EulerMaruyama", gbm).order == 0.5
    assert build_kernel("Milstein", gbm).order == 1.0
    assert build_kernel("SRIW1Optimized", gbm).order == 1.5


def test_build_kernel_rejects_unsupported_combinations(gbm_system, gbm):
    with pytest.raises(UnimplementedSchemeError):
        build_kernel("SRIVectorized", gbm_system)
    with pytest.raises(UnimplementedSchemeError):
        build_kernel("SRI", gbm, construct_sra1())
    with pytest.raises(UnimplementedSchemeError):
        build_kernel("TauLeaping", gbm)
    jump = JumpProblem(lambda u, p, t: [1.0], 0.0, stoichiometry=[1.0])
    with pytest.raises(UnimplementedSchemeError):
        build_kernel("EM", jump)
    with pytest.raises(InputError):
        build_kernel("EM", gbm, construct_sriw1())
    with pytest.raises(InputError):
        build_kernel("Heun", gbm)
    assert isinstance(build_kernel("TauLeaping", jump), TauLeaping)
