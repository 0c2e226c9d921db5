"""
Step kernels: one class per algorithm, each advancing the state by one
attempted step given the Wiener (or Poisson) increment for that step.

Kernels are chosen once per run by ``build_kernel``; the integrator never
branches on the algorithm inside its loop.
"""

from typing import NamedTuple, Optional

import numpy as np
from numba import njit

from sde_integrator.config import Algorithm
from sde_integrator.errors import InputError, NonFiniteStateError, UnimplementedSchemeError
from sde_integrator.noise_generation import Increment
from sde_integrator.scheme_coefficients import (
    SRATableau,
    SRITableau,
    construct_sra1,
    construct_sriw1,
)
from sde_integrator.sde_system import JumpProblem, SDEProblem

SQRT3 = np.sqrt(3.0)


@njit
def _stage_value(stage: int, u: np.ndarray, F: np.ndarray, G: np.ndarray,
                 A: np.ndarray, B: np.ndarray, dt: float, noise_scale: np.ndarray) -> np.ndarray:
    """
    Stage value u + Σ_{j<stage} (A[stage, j] F_j dt + B[stage, j] G_j noise_scale).

    Parameters:
    -----------
    F, G : np.ndarray
        Drift and diffusion evaluations of the previous stages, shape (s, dim)
    A, B : np.ndarray
        Strictly lower triangular coefficient matrices
    noise_scale : np.ndarray
        Per-component factor multiplying the diffusion terms
    """
    out = u.copy()
    for j in range(stage):
        a = A[stage, j] * dt
        b = B[stage, j]
        if a != 0.0:
            out += a * F[j]
        if b != 0.0:
            out += b * G[j] * noise_scale
    return out


@njit
def _sri_update(u, F, G, alpha, beta1, beta2, beta3, beta4, dt, dW, chi1, chi2, chi3):
    u_next = u.copy()
    E2 = np.zeros_like(u)
    for i in range(alpha.shape[0]):
        u_next += dt * alpha[i] * F[i] + (beta1[i] * dW + beta2[i] * chi1) * G[i]
        E2 += (beta3[i] * chi2 + beta4[i] * chi3) * G[i]
    return u_next + E2, E2


@njit
def _sra_update(u, F, G, alpha, beta1, beta2, dt, dW, chi2):
    u_next = u.copy()
    E2 = np.zeros_like(u)
    for i in range(alpha.shape[0]):
        u_next += dt * alpha[i] * F[i] + beta1[i] * G[i] * dW
        E2 += beta2[i] * G[i] * chi2
    return u_next + E2, E2


class StepResult(NamedTuple):
    """Candidate state of one attempt plus what the error estimators need."""
    u: np.ndarray
    E1: Optional[np.ndarray] = None
    E2: Optional[np.ndarray] = None
    f0: Optional[np.ndarray] = None
    g0: Optional[np.ndarray] = None


class StepKernel:
    """
    Base class of the stepping schemes.

    Subclasses implement ``perform_step``; ``step`` wraps it with the
    non-finite check. Drift and diffusion evaluations go through ``_drift``
    and ``_diffusion`` so that they are counted.
    """
    algorithm: Algorithm = None
    order = 0.5
    needs_z = False
    embedded = False
    vectorized = False
    family: Optional[str] = None
    problem_type = SDEProblem

    def __init__(self, problem, tableau=None):
        self.problem = problem
        self.tableau = tableau
        self.nf = 0
        self.ng = 0

    @staticmethod
    def default_tableau():
        return None

    def _drift(self, t: float, u: np.ndarray) -> np.ndarray:
        self.nf += 1
        return self.problem.evaluate_drift(t, u)

    def _diffusion(self, t: float, u: np.ndarray) -> np.ndarray:
        self.ng += 1
        return self.problem.evaluate_diffusion(t, u)

    def perform_step(self, t: float, u: np.ndarray, dt: float, increment: Increment) -> StepResult:
        raise NotImplementedError

    def step(self, t: float, u: np.ndarray, dt: float, increment: Increment) -> StepResult:
        result = self.perform_step(t, u, dt, increment)
        if not np.all(np.isfinite(result.u)):
            raise NonFiniteStateError(
                f"{self.algorithm.value} produced a non-finite state on [{t}, {t + dt}]"
            )
        return result

    def _full(self, values) -> np.ndarray:
        """Broadcast scalar-noise quantities to one value per state component."""
        return np.ascontiguousarray(np.broadcast_to(values, (self.problem.dim,)), dtype=np.float64)


class EulerMaruyama(StepKernel):
    algorithm = Algorithm.EM
    order = 0.5

    def perform_step(self, t, u, dt, increment):
        f0 = self._drift(t, u)
        g0 = self._diffusion(t, u)
        return StepResult(u + f0 * dt + g0 * increment.dW, f0=f0, g0=g0)


class RKMil(StepKernel):
    """Derivative-free Milstein scheme."""
    algorithm = Algorithm.RKMil
    order = 1.0

    def perform_step(self, t, u, dt, increment):
        sqdt = np.sqrt(dt)
        dW = increment.dW
        f0 = self._drift(t, u)
        g0 = self._diffusion(t, u)
        K = u + f0 * dt
        utilde = K + g0 * sqdt
        ggprime = (self._diffusion(t, utilde) - g0) / (2.0 * sqdt)
        u_next = K + g0 * dW + ggprime * (dW * dW - dt)
        return StepResult(u_next, f0=f0, g0=g0)


class _TableauKernel(StepKernel):
    order = 1.5
    embedded = True

    def __init__(self, problem, tableau=None):
        super().__init__(problem, tableau if tableau is not None else self.default_tableau())
        self.order = self.tableau.order
        # Writable contiguous copies for the compiled helpers
        for key, value in self.tableau.get_all_coefficients().items():
            setattr(self, key.replace("(", "").replace(")", ""), np.array(value, dtype=np.float64))
        self.s = self.tableau.stages

    @staticmethod
    def _iterated_integrals(dt, dW, dZ):
        sqdt = np.sqrt(dt)
        chi1 = 0.5 * (dW * dW - dt) / sqdt  # I_(1,1)/sqrt(dt)
        chi2 = 0.5 * (dW + dZ / SQRT3)  # I_(1,0)/dt
        chi3 = (dW * dW * dW - 3.0 * dW * dt) / (6.0 * dt)  # I_(1,1,1)/dt
        return chi1, chi2, chi3

    def _embedded_drift_error(self, F, dt):
        if self.s > 1:
            return dt * (F[0] + F[1])
        return dt * F[0]


class SRI(_TableauKernel):
    """Generic Rößler SRI scheme for diagonal or scalar noise."""
    algorithm = Algorithm.SRI
    needs_z = True
    family = "SRI"

    @staticmethod
    def default_tableau():
        return construct_sriw1()

    def perform_step(self, t, u, dt, increment):
        dW = self._full(increment.dW)
        chi1, chi2, chi3 = self._iterated_integrals(dt, dW, self._full(increment.dZ))
        sqdt = np.full(self.problem.dim, np.sqrt(dt))
        F = np.zeros((self.s, self.problem.dim))
        G = np.zeros((self.s, self.problem.dim))
        for i in range(self.s):
            H0 = _stage_value(i, u, F, G, self.A0, self.B0, dt, chi2)
            H1 = _stage_value(i, u, F, G, self.A1, self.B1, dt, sqdt)
            F[i] = self._drift(t + self.c0[i] * dt, H0)
            G[i] = self._diffusion(t + self.c1[i] * dt, H1)
        u_next, E2 = _sri_update(u, F, G, self.alpha, self.beta1, self.beta2, self.beta3,
                                 self.beta4, dt, dW, chi1, chi2, chi3)
        return StepResult(u_next, self._embedded_drift_error(F, dt), E2)


class SRA(_TableauKernel):
    """Generic Rößler SRA scheme for additive noise."""
    algorithm = Algorithm.SRA
    needs_z = True
    family = "SRA"

    @staticmethod
    def default_tableau():
        return construct_sra1()

    def perform_step(self, t, u, dt, increment):
        dW = self._full(increment.dW)
        chi2 = 0.5 * (dW + self._full(increment.dZ) / SQRT3)
        F = np.zeros((self.s, self.problem.dim))
        G = np.zeros((self.s, self.problem.dim))
        for j in range(self.s):
            G[j] = self._diffusion(t + self.c1[j] * dt, u)
        for i in range(self.s):
            H0 = _stage_value(i, u, F, G, self.A0, self.B0, dt, chi2)
            F[i] = self._drift(t + self.c0[i] * dt, H0)
        u_next, E2 = _sra_update(u, F, G, self.alpha, self.beta1, self.beta2, dt, dW, chi2)
        return StepResult(u_next, self._embedded_drift_error(F, dt), E2)


class SRIW1Optimized(SRI):
    """SRIW1 with the tableau unrolled (two drift, four diffusion evaluations)."""
    algorithm = Algorithm.SRIW1Optimized

    def perform_step(self, t, u, dt, increment):
        sqdt = np.sqrt(dt)
        dW = increment.dW
        chi1, chi2, chi3 = self._iterated_integrals(dt, dW, increment.dZ)

        f1 = self._drift(t, u)
        g1 = self._diffusion(t, u)
        f2 = self._drift(t + 0.75 * dt, u + 0.75 * f1 * dt + 1.5 * g1 * chi2)
        g2 = self._diffusion(t + 0.25 * dt, u + 0.25 * f1 * dt + 0.5 * g1 * sqdt)
        g3 = self._diffusion(t + dt, u + f1 * dt - g1 * sqdt)
        g4 = self._diffusion(t + 0.25 * dt,
                             u + 0.25 * f1 * dt + sqdt * (-5.0 * g1 + 3.0 * g2 + 0.5 * g3))

        E1 = dt * (f1 + f2)
        E2 = (chi2 * (2.0 * g1 - 4.0 / 3.0 * g2 - 2.0 / 3.0 * g3)
              + chi3 * (-2.0 * g1 + 5.0 / 3.0 * g2 - 2.0 / 3.0 * g3 + g4))
        u_next = (u + dt * (f1 / 3.0 + 2.0 / 3.0 * f2)
                  + dW * (-g1 + 4.0 / 3.0 * g2 + 2.0 / 3.0 * g3)
                  + chi1 * (-g1 + 4.0 / 3.0 * g2 - 1.0 / 3.0 * g3)
                  + E2)
        return StepResult(u_next, E1, E2)


class SRA1Optimized(SRA):
    """SRA1 with the tableau unrolled."""
    algorithm = Algorithm.SRA1Optimized

    def perform_step(self, t, u, dt, increment):
        dW = increment.dW
        chi2 = 0.5 * (dW + increment.dZ / SQRT3)
        gpdt = self._diffusion(t + dt, u)
        k1 = dt * self._drift(t, u)
        k2 = dt * self._drift(t + 0.75 * dt, u + 0.75 * k1 + 1.5 * chi2 * gpdt)
        E1 = k1 + k2
        E2 = chi2 * (self._diffusion(t, u) - gpdt)
        u_next = u + k1 / 3.0 + 2.0 * k2 / 3.0 + dW * gpdt + E2
        return StepResult(u_next, E1, E2)


class SRIVectorized(SRI):
    """SRI stage algebra on whole coefficient rows, for a single state component."""
    algorithm = Algorithm.SRIVectorized
    vectorized = True

    def perform_step(self, t, u, dt, increment):
        sqdt = np.sqrt(dt)
        dW = float(np.ravel(increment.dW)[0])
        dZ = float(np.ravel(increment.dZ)[0])
        chi1, chi2, chi3 = self._iterated_integrals(dt, dW, dZ)
        u0 = u[0]
        F = np.zeros(self.s)
        G = np.zeros(self.s)
        for i in range(self.s):
            H0 = u0 + dt * (self.A0[i, :i] @ F[:i]) + chi2 * (self.B0[i, :i] @ G[:i])
            H1 = u0 + dt * (self.A1[i, :i] @ F[:i]) + sqdt * (self.B1[i, :i] @ G[:i])
            F[i] = self._drift(t + self.c0[i] * dt, np.array([H0]))[0]
            G[i] = self._diffusion(t + self.c1[i] * dt, np.array([H1]))[0]
        E2 = (self.beta3 * chi2 + self.beta4 * chi3) @ G
        u_next = u0 + dt * (self.alpha @ F) + (self.beta1 * dW + self.beta2 * chi1) @ G + E2
        E1 = dt * (F[0] + F[1]) if self.s > 1 else dt * F[0]
        return StepResult(np.array([u_next]), np.array([E1]), np.array([E2]))


class SRAVectorized(SRA):
    """SRA stage algebra on whole coefficient rows, for a single state component."""
    algorithm = Algorithm.SRAVectorized
    vectorized = True

    def perform_step(self, t, u, dt, increment):
        dW = float(np.ravel(increment.dW)[0])
        dZ = float(np.ravel(increment.dZ)[0])
        chi2 = 0.5 * (dW + dZ / SQRT3)
        u0 = u[0]
        G = np.array([self._diffusion(t + c * dt, u)[0] for c in self.c1])
        F = np.zeros(self.s)
        for i in range(self.s):
            H0 = u0 + dt * (self.A0[i, :i] @ F[:i]) + chi2 * (self.B0[i, :i] @ G[:i])
            F[i] = self._drift(t + self.c0[i] * dt, np.array([H0]))[0]
        E2 = chi2 * (self.beta2 @ G)
        u_next = u0 + dt * (self.alpha @ F) + dW * (self.beta1 @ G) + E2
        E1 = dt * (F[0] + F[1]) if self.s > 1 else dt * F[0]
        return StepResult(np.array([u_next]), np.array([E1]), np.array([E2]))


class TauLeaping(StepKernel):
    """Applies the change caused by the Poisson counts drawn for the step."""
    algorithm = Algorithm.TauLeaping
    order = 1.0
    problem_type = JumpProblem

    def perform_step(self, t, u, dt, increment):
        return StepResult(u + self.problem.evaluate_change(t, u, increment.dW))


KERNELS = {
    Algorithm.EM: EulerMaruyama,
    Algorithm.RKMil: RKMil,
    Algorithm.SRI: SRI,
    Algorithm.SRA: SRA,
    Algorithm.SRIW1Optimized: SRIW1Optimized,
    Algorithm.SRA1Optimized: SRA1Optimized,
    Algorithm.SRIVectorized: SRIVectorized,
    Algorithm.SRAVectorized: SRAVectorized,
    Algorithm.TauLeaping: TauLeaping,
}

# Kernels whose coefficients are written out in the code
FIXED_TABLEAU = (Algorithm.SRIW1Optimized, Algorithm.SRA1Optimized)

_TABLEAU_TYPES = {"SRI": SRITableau, "SRA": SRATableau}


def build_kernel(algorithm, problem, tableau=None) -> StepKernel:
    """
    Select and construct the kernel for ``algorithm``.

    Raises ``UnimplementedSchemeError`` for combinations that have no kernel:
    a tableau of the wrong family, a vectorized scheme on a multi-component
    state, or a problem type the scheme cannot advance.
    """
    algorithm = Algorithm.coerce(algorithm)
    kernel_class = KERNELS.get(algorithm)
    if kernel_class is None:
        raise UnimplementedSchemeError(f"No kernel implements {algorithm.value}")

    if not isinstance(problem, kernel_class.problem_type):
        raise UnimplementedSchemeError(
            f"{algorithm.value} cannot advance a {type(problem).__name__}"
        )
    if kernel_class.vectorized and problem.dim != 1:
        raise UnimplementedSchemeError(
            f"{algorithm.value} is restricted to a single state component, got {problem.dim}"
        )

    if kernel_class.family is None:
        if tableau is not None:
            raise InputError(f"{algorithm.value} does not use a tableau")
        return kernel_class(problem)

    if algorithm in FIXED_TABLEAU:
        tableau = None
    elif tableau is not None and not isinstance(tableau, _TABLEAU_TYPES[kernel_class.family]):
        raise UnimplementedSchemeError(
            f"{algorithm.value} needs an {kernel_class.family} tableau, got {type(tableau).__name__}"
        )
    return kernel_class(problem, tableau)
