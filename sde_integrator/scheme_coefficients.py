import warnings
from dataclasses import dataclass
from typing import Dict

import numpy as np
from numba import jit

from sde_integrator.errors import InputError


# Helper functions for Numba optimization
@jit(nopython=True)
def _row_sums(M: np.ndarray) -> np.ndarray:
    return np.sum(M, axis=1)


@jit(nopython=True)
def _compute_sri_conditions(alpha: np.ndarray, beta1: np.ndarray, beta2: np.ndarray,
                            beta3: np.ndarray, beta4: np.ndarray,
                            A0: np.ndarray, A1: np.ndarray, B0: np.ndarray, B1: np.ndarray,
                            c0: np.ndarray, c1: np.ndarray) -> np.ndarray:
    """Residuals of the strong order 1.5 conditions for diagonal noise"""
    conditions = np.zeros(17, dtype=np.float64)

    A0e = _row_sums(A0)
    A1e = _row_sums(A1)
    B0e = _row_sums(B0)
    B1e = _row_sums(B1)
    B1e_squared = B1e * B1e

    conditions[0] = np.sum(alpha) - 1.0  # α^T e = 1
    conditions[1] = np.dot(alpha, A0e) - 0.5  # α^T A^(0)e = 1/2
    conditions[2] = np.dot(alpha, B0e) - 1.0  # α^T B^(0)e = 1
    conditions[3] = np.sum(beta1) - 1.0  # β^(1)T e = 1
    conditions[4] = np.sum(beta2)  # β^(2)T e = 0
    conditions[5] = np.sum(beta3)  # β^(3)T e = 0
    conditions[6] = np.sum(beta4)  # β^(4)T e = 0
    conditions[7] = np.dot(beta1, B1e)  # β^(1)T B^(1)e = 0
    conditions[8] = np.dot(beta2, B1e) - 1.0  # β^(2)T B^(1)e = 1
    conditions[9] = np.dot(beta3, B1e)  # β^(3)T B^(1)e = 0
    conditions[10] = np.dot(beta4, B1e)  # β^(4)T B^(1)e = 0
    conditions[11] = np.dot(beta4, B1e_squared) - 2.0  # β^(4)T (B^(1)e)^2 = 2
    conditions[12] = np.dot(beta1, A1e) - 1.0  # β^(1)T A^(1)e = 1
    conditions[13] = np.dot(beta3, A1e) + 1.0  # β^(3)T A^(1)e = -1
    conditions[14] = np.dot(beta2, B1e_squared)  # β^(2)T (B^(1)e)^2 = 0
    conditions[15] = np.max(np.abs(c0 - A0e))  # c^(0) = A^(0)e
    conditions[16] = np.max(np.abs(c1 - A1e))  # c^(1) = A^(1)e

    return conditions


@jit(nopython=True)
def _compute_sra_conditions(alpha: np.ndarray, beta1: np.ndarray, beta2: np.ndarray,
                            A0: np.ndarray, B0: np.ndarray,
                            c0: np.ndarray, c1: np.ndarray) -> np.ndarray:
    """Residuals of the strong order 1.5 conditions for additive noise"""
    conditions = np.zeros(8, dtype=np.float64)

    A0e = _row_sums(A0)
    B0e = _row_sums(B0)

    conditions[0] = np.sum(alpha) - 1.0  # α^T e = 1
    conditions[1] = np.dot(alpha, A0e) - 0.5  # α^T A^(0)e = 1/2
    conditions[2] = np.dot(alpha, B0e) - 1.0  # α^T B^(0)e = 1
    conditions[3] = np.sum(beta1) - 1.0  # β^(1)T e = 1
    conditions[4] = np.sum(beta2)  # β^(2)T e = 0
    conditions[5] = np.dot(beta1, c1) - 1.0  # β^(1)T c^(1) = 1
    conditions[6] = np.dot(beta2, c1) + 1.0  # β^(2)T c^(1) = -1
    conditions[7] = np.max(np.abs(c0 - A0e))  # c^(0) = A^(0)e

    return conditions


def _frozen(values, ndim: int) -> np.ndarray:
    arr = np.array(values, dtype=np.float64)
    if arr.ndim != ndim:
        raise InputError(f"tableau entry must be {ndim}-dimensional, got shape {arr.shape}")
    arr = np.ascontiguousarray(arr)
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True)
class SRITableau:
    """
    Rößler SRI tableau for diagonal or scalar noise.

    Stage values
        H0_i = u + Σ_j A0_ij f_j dt + Σ_j B0_ij g_j I_(1,0)/dt
        H1_i = u + Σ_j A1_ij f_j dt + Σ_j B1_ij g_j sqrt(dt)
    with f_j = f(t + c0_j dt, H0_j) and g_j = g(t + c1_j dt, H1_j), and update
        u + Σ α_i f_i dt + Σ (β1_i I_(1) + β2_i I_(1,1)/sqrt(dt)) g_i
          + Σ (β3_i I_(1,0)/dt + β4_i I_(1,1,1)/dt) g_i
    """
    c0: np.ndarray
    c1: np.ndarray
    A0: np.ndarray
    A1: np.ndarray
    B0: np.ndarray
    B1: np.ndarray
    alpha: np.ndarray
    beta1: np.ndarray
    beta2: np.ndarray
    beta3: np.ndarray
    beta4: np.ndarray
    order: float = 1.5
    name: str = "SRI"

    family = "SRI"

    def __post_init__(self):
        for key in ("c0", "c1", "alpha", "beta1", "beta2", "beta3", "beta4"):
            object.__setattr__(self, key, _frozen(getattr(self, key), 1))
        for key in ("A0", "A1", "B0", "B1"):
            object.__setattr__(self, key, _frozen(getattr(self, key), 2))
        s = self.alpha.shape[0]
        for key in ("c0", "c1", "beta1", "beta2", "beta3", "beta4"):
            if getattr(self, key).shape != (s,):
                raise InputError(f"{self.name}: {key} must have {s} entries")
        for key in ("A0", "A1", "B0", "B1"):
            M = getattr(self, key)
            if M.shape != (s, s):
                raise InputError(f"{self.name}: {key} must be {s}x{s}")
            if np.any(np.triu(M) != 0):
                raise InputError(f"{self.name}: {key} must be strictly lower triangular (explicit scheme)")

    @property
    def stages(self) -> int:
        return self.alpha.shape[0]

    def order_residuals(self) -> np.ndarray:
        # Numba wants writeable buffers
        args = (self.alpha, self.beta1, self.beta2, self.beta3, self.beta4,
                self.A0, self.A1, self.B0, self.B1, self.c0, self.c1)
        return _compute_sri_conditions(*[a.copy() for a in args])

    def get_all_coefficients(self) -> Dict[str, np.ndarray]:
        return {
            'c(0)': self.c0, 'c(1)': self.c1,
            'A0': self.A0, 'A1': self.A1, 'B0': self.B0, 'B1': self.B1,
            'alpha': self.alpha, 'beta1': self.beta1, 'beta2': self.beta2,
            'beta3': self.beta3, 'beta4': self.beta4,
        }


@dataclass(frozen=True)
class SRATableau:
    """
    Rößler SRA tableau for additive noise (g depends on t only).

    Stage values
        H0_i = u + Σ_j A0_ij f_j dt + Σ_j B0_ij g_j I_(1,0)/dt
    with f_j = f(t + c0_j dt, H0_j) and g_j = g(t + c1_j dt), and update
        u + Σ α_i f_i dt + Σ (β1_i I_(1) + β2_i I_(1,0)/dt) g_i
    """
    c0: np.ndarray
    c1: np.ndarray
    A0: np.ndarray
    B0: np.ndarray
    alpha: np.ndarray
    beta1: np.ndarray
    beta2: np.ndarray
    order: float = 1.5
    name: str = "SRA"

    family = "SRA"

    def __post_init__(self):
        for key in ("c0", "c1", "alpha", "beta1", "beta2"):
            object.__setattr__(self, key, _frozen(getattr(self, key), 1))
        for key in ("A0", "B0"):
            object.__setattr__(self, key, _frozen(getattr(self, key), 2))
        s = self.alpha.shape[0]
        for key in ("c0", "c1", "beta1", "beta2"):
            if getattr(self, key).shape != (s,):
                raise InputError(f"{self.name}: {key} must have {s} entries")
        for key in ("A0", "B0"):
            M = getattr(self, key)
            if M.shape != (s, s):
                raise InputError(f"{self.name}: {key} must be {s}x{s}")
            if np.any(np.triu(M) != 0):
                raise InputError(f"{self.name}: {key} must be strictly lower triangular (explicit scheme)")

    @property
    def stages(self) -> int:
        return self.alpha.shape[0]

    def order_residuals(self) -> np.ndarray:
        args = (self.alpha, self.beta1, self.beta2, self.A0, self.B0, self.c0, self.c1)
        return _compute_sra_conditions(*[a.copy() for a in args])

    def get_all_coefficients(self) -> Dict[str, np.ndarray]:
        return {
            'c(0)': self.c0, 'c(1)': self.c1, 'A0': self.A0, 'B0': self.B0,
            'alpha': self.alpha, 'beta1': self.beta1, 'beta2': self.beta2,
        }


def construct_sriw1() -> SRITableau:
    """SRIW1: strong order 1.5, deterministic order 2, four stages."""
    return SRITableau(
        c0=[0.0, 0.75, 0.0, 0.0],
        c1=[0.0, 0.25, 1.0, 0.25],
        A0=[[0.0, 0.0, 0.0, 0.0],
            [0.75, 0.0, 0.0, 0.0],
            [0.0, 0.0, 0.0, 0.0],
            [0.0, 0.0, 0.0, 0.0]],
        A1=[[0.0, 0.0, 0.0, 0.0],
            [0.25, 0.0, 0.0, 0.0],
            [1.0, 0.0, 0.0, 0.0],
            [0.0, 0.0, 0.25, 0.0]],
        B0=[[0.0, 0.0, 0.0, 0.0],
            [1.5, 0.0, 0.0, 0.0],
            [0.0, 0.0, 0.0, 0.0],
            [0.0, 0.0, 0.0, 0.0]],
        B1=[[0.0, 0.0, 0.0, 0.0],
            [0.5, 0.0, 0.0, 0.0],
            [-1.0, 0.0, 0.0, 0.0],
            [-5.0, 3.0, 0.5, 0.0]],
        alpha=[1.0 / 3.0, 2.0 / 3.0, 0.0, 0.0],
        beta1=[-1.0, 4.0 / 3.0, 2.0 / 3.0, 0.0],
        beta2=[-1.0, 4.0 / 3.0, -1.0 / 3.0, 0.0],
        beta3=[2.0, -4.0 / 3.0, -2.0 / 3.0, 0.0],
        beta4=[-2.0, 5.0 / 3.0, -2.0 / 3.0, 1.0],
        order=1.5,
        name="SRIW1",
    )


def construct_sra1() -> SRATableau:
    """SRA1: strong order 1.5 for additive noise, deterministic order 2, two stages."""
    return SRATableau(
        c0=[0.0, 0.75],
        c1=[1.0, 0.0],
        A0=[[0.0, 0.0],
            [0.75, 0.0]],
        B0=[[0.0, 0.0],
            [1.5, 0.0]],
        alpha=[1.0 / 3.0, 2.0 / 3.0],
        beta1=[1.0, 0.0],
        beta2=[-1.0, 1.0],
        order=1.5,
        name="SRA1",
    )


def check_order_conditions(tableau, tol: float = 1e-10) -> float:
    """
    Return the largest order-condition residual of ``tableau``, warning when
    it exceeds ``tol``. Such a tableau still runs but loses its stated order.
    """
    residual = float(np.max(np.abs(tableau.order_residuals())))
    if residual > tol:
        warnings.warn(
            f"Tableau {tableau.name} violates the strong order {tableau.order} "
            f"conditions (residual: {residual:.3e})"
        )
    return residual
