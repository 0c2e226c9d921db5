import numpy as np
from numba import njit

EPS = np.finfo(np.float64).eps


@njit
def _scaled_norm(values: np.ndarray, scale: np.ndarray, p: float) -> float:
    """p-norm of values/scale; p = inf gives the max norm."""
    n = values.shape[0]
    if np.isinf(p):
        result = 0.0
        for i in range(n):
            r = abs(values[i]) / scale[i]
            if r > result:
                result = r
        return result
    acc = 0.0
    for i in range(n):
        acc += (abs(values[i]) / scale[i]) ** p
    return acc ** (1.0 / p)


def error_scale(u: np.ndarray, u_next: np.ndarray, abstol: float, reltol: float) -> np.ndarray:
    """Per-component tolerance abstol + reltol*max(|u|, |u_next|), floored at eps."""
    sc = abstol + reltol * np.maximum(np.abs(u), np.abs(u_next))
    return np.maximum(sc, EPS)


def scaled_norm(values, scale, p=2.0) -> float:
    values = np.ascontiguousarray(np.ravel(values), dtype=np.float64)
    scale = np.ascontiguousarray(np.ravel(scale), dtype=np.float64)
    return _scaled_norm(values, scale, float(p))


class ErrorEstimator:
    """Base class: turns one attempted step into a normalized error ``e``."""

    def __init__(self, abstol: float, reltol: float, delta: float, internalnorm: float = 2.0):
        self.abstol = abstol
        self.reltol = reltol
        self.delta = delta
        self.internalnorm = float(internalnorm)

    def estimate(self, kernel, t, u, dt, increment, result) -> float:
        raise NotImplementedError


class EmbeddedErrorEstimator(ErrorEstimator):
    """
    Error from the embedded terms of a stochastic Runge-Kutta tableau,
    ``||(delta*E1 + E2) / sc||``: E1 is the drift part, E2 the part of the
    update carried by the higher iterated integrals.
    """

    def estimate(self, kernel, t, u, dt, increment, result) -> float:
        sc = error_scale(u, result.u, self.abstol, self.reltol)
        return scaled_norm(self.delta * result.E1 + result.E2, sc, self.internalnorm)


class LocalExtrapolationEstimator(ErrorEstimator):
    """
    Error for schemes without an embedded pair (EM, RKMil).

    Compares drift and diffusion at both ends of the step:
    ``max(|delta*dt*df + dg*dW|, |delta*dt*df - dg*dW|)`` per component, with
    two extra evaluations at ``(t + dt, u_next)``.
    """

    def estimate(self, kernel, t, u, dt, increment, result) -> float:
        f0 = result.f0 if result.f0 is not None else kernel._drift(t, u)
        g0 = result.g0 if result.g0 is not None else kernel._diffusion(t, u)
        df = kernel._drift(t + dt, result.u) - f0
        dg = (kernel._diffusion(t + dt, result.u) - g0) * increment.dW
        err = np.maximum(np.abs(self.delta * dt * df + dg), np.abs(self.delta * dt * df - dg))
        sc = error_scale(u, result.u, self.abstol, self.reltol)
        return scaled_norm(err, sc, self.internalnorm)


def build_estimator(kernel, options) -> ErrorEstimator:
    cls = EmbeddedErrorEstimator if kernel.embedded else LocalExtrapolationEstimator
    return cls(options.abstol, options.reltol, options.delta, options.internalnorm)
