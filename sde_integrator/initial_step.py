import numpy as np

from sde_integrator.error_estimation import EPS, scaled_norm

MIN_INITIAL_DT = 1e-6


def determine_initial_dt(problem, t0: float, abstol: float, reltol: float, order: float,
                         internalnorm: float = 2.0, drift=None, diffusion=None) -> float:
    """
    Estimate a starting step size from the local behaviour of f and g at t0.

    Parameters:
    -----------
    problem : SDEProblem
        Supplies u0 and, unless ``drift``/``diffusion`` are given, f and g
    order : float
        Strong order of the scheme that will use the step
    drift, diffusion : callable, optional
        ``(t, u) -> array`` evaluators, e.g. a kernel's counted ones

    Returns:
    --------
    dt : float
        Within ``[1e-6, 100*dt0]`` where dt0 is the first-order trial step
    """
    drift = drift or problem.evaluate_drift
    diffusion = diffusion or problem.evaluate_diffusion
    u0 = problem.initial_state()

    sk = np.maximum(abstol + np.abs(u0) * reltol, EPS)
    d0 = scaled_norm(u0, sk, internalnorm)
    f0 = drift(t0, u0)
    g0 = 3.0 * diffusion(t0, u0)
    d1 = scaled_norm(np.maximum(np.abs(f0 + g0), np.abs(f0 - g0)), sk, internalnorm)

    if d0 < 1e-5 or d1 < 1e-5:
        dt0 = 1e-6
    else:
        dt0 = 0.01 * (d0 / d1)

    u1 = u0 + dt0 * f0
    f1 = drift(t0 + dt0, u1)
    g1 = 3.0 * diffusion(t0 + dt0, u1)
    dg = np.maximum(np.abs(g0 - g1), np.abs(g0 + g1))
    d2 = scaled_norm(np.maximum(np.abs(f1 - f0 + dg), np.abs(f1 - f0 - dg)), sk, internalnorm) / dt0

    if max(d1, d2) <= 1e-15:
        return max(MIN_INITIAL_DT, dt0 * 1e-3)
    dt1 = 10.0 ** (-(2.0 + np.log10(max(d1, d2))) / (order + 0.5))
    return float(min(100.0 * dt0, max(MIN_INITIAL_DT, dt1)))
