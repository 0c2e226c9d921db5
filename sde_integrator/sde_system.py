import inspect
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Union

import numpy as np

from sde_integrator.errors import InputError, ModelEvaluationError

# f(t, u) -> du, or f(t, u, du) filling du in place; same for g
DriftFunc = Callable[..., Any]
DiffusionFunc = Callable[..., Any]
AnalyticFunc = Callable[[float, Any, Any], Any]

NOISE_TYPES = ("diagonal", "scalar")


def _takes_output_argument(func: Callable, n_inputs: int) -> bool:
    """True if ``func`` has a required positional parameter beyond its inputs."""
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        return False
    required = [
        p for p in signature.parameters.values()
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD) and p.default is p.empty
    ]
    return len(required) > n_inputs


@dataclass
class SDEProblem:
    """
    An SDE ``du = f(t,u)dt + g(t,u)dW`` with its initial condition.

    Parameters:
    -----------
    f, g : callable
        Drift and diffusion. Either value-returning ``f(t, u)`` or in-place
        ``f(t, u, du)``; the style is detected from the signature unless
        ``inplace`` is given. Scalar problems receive and return floats.
    u0 : float or array
        Initial state. Its shape is the shape of the state for the whole run.
    analytic : callable, optional
        Known solution ``analytic(t, u0, W)`` used for error reporting.
    noise : {"diagonal", "scalar"}
        Diagonal noise drives every component with its own Wiener process;
        scalar noise drives all components with one shared process.
    covariance : array, optional
        Covariance of the driving Wiener processes (per unit time).
    """
    f: DriftFunc
    g: DiffusionFunc
    u0: Union[float, np.ndarray]
    analytic: Optional[AnalyticFunc] = None
    noise: str = "diagonal"
    covariance: Optional[np.ndarray] = None
    inplace: Optional[bool] = None

    def __post_init__(self):
        u0 = np.asarray(self.u0, dtype=np.float64)
        if u0.size == 0:
            raise InputError("u0 must contain at least one value")
        if not np.all(np.isfinite(u0)):
            raise InputError("u0 must be finite")
        self.is_scalar = u0.ndim == 0
        self.shape = u0.shape
        self.dim = int(u0.size)
        self._u0 = np.ascontiguousarray(u0.reshape(-1))

        if self.noise not in NOISE_TYPES:
            raise InputError(f"noise must be one of {NOISE_TYPES}, got {self.noise!r}")

        if self.inplace is None:
            self.inplace = _takes_output_argument(self.f, 2)
        if self.inplace and self.is_scalar:
            raise InputError("in-place drift/diffusion need an array-valued u0")

        self.noise_factor = None
        if self.covariance is not None:
            cov = np.atleast_2d(np.asarray(self.covariance, dtype=np.float64))
            m = int(np.prod(self.noise_shape, dtype=int))
            if cov.shape != (m, m):
                raise InputError(f"covariance must have shape {(m, m)}, got {cov.shape}")
            if not np.allclose(cov, cov.T):
                raise InputError("covariance must be symmetric")
            try:
                self.noise_factor = np.linalg.cholesky(cov)
            except np.linalg.LinAlgError:
                raise InputError("covariance must be positive definite")

    @property
    def noise_shape(self) -> Tuple[int, ...]:
        """Shape of one Wiener increment, independent of any state units."""
        return () if self.noise == "scalar" or self.is_scalar else (self.dim,)

    def initial_state(self) -> np.ndarray:
        return self._u0.copy()

    def to_user(self, u: np.ndarray):
        """Convert a flat internal state to the caller's representation."""
        if self.is_scalar:
            return float(u[0])
        return u.reshape(self.shape)

    def _to_flat(self, value, what: str) -> np.ndarray:
        arr = np.asarray(value, dtype=np.float64).reshape(-1)
        if arr.size != self.dim:
            raise ModelEvaluationError(f"{what} returned {arr.size} values for a state of size {self.dim}")
        return arr

    def _evaluate(self, func: Callable, t: float, u: np.ndarray, what: str) -> np.ndarray:
        if self.inplace:
            du = np.zeros(self.shape, dtype=np.float64)
            func(t, u.reshape(self.shape), du)
            return du.reshape(-1)
        return self._to_flat(func(t, self.to_user(u)), what)

    def evaluate_drift(self, t: float, u: np.ndarray) -> np.ndarray:
        """Evaluate the drift for a flat state, returning a flat array."""
        return self._evaluate(self.f, t, u, "drift")

    def evaluate_diffusion(self, t: float, u: np.ndarray) -> np.ndarray:
        """Evaluate the diffusion for a flat state, returning a flat array."""
        return self._evaluate(self.g, t, u, "diffusion")

    def evaluate_analytic(self, t: float, W) -> np.ndarray:
        if self.analytic is None:
            raise InputError("problem has no analytic solution")
        u0 = self.to_user(self._u0)
        return self._to_flat(self.analytic(t, u0, W), "analytic")


@dataclass
class JumpProblem:
    """
    A jump process advanced by tau-leaping.

    Parameters:
    -----------
    rate : callable
        ``rate(u, p, t)`` returning the propensity of every reaction channel.
    u0 : float or array
        Initial state.
    change : callable, optional
        ``change(u, p, t, counts, mark)`` returning the state change caused by
        ``counts`` firings per channel.
    stoichiometry : array, optional
        ``(state size, channels)`` matrix; the change is ``stoichiometry @ counts``.
        Exactly one of ``change`` and ``stoichiometry`` must be given.
    p : any
        Parameters handed to ``rate`` and ``change``.
    """
    rate: Callable[[Any, Any, float], Any]
    u0: Union[float, np.ndarray]
    change: Optional[Callable[..., Any]] = None
    stoichiometry: Optional[np.ndarray] = None
    p: Any = None
    analytic = None

    def __post_init__(self):
        u0 = np.asarray(self.u0, dtype=np.float64)
        if u0.size == 0:
            raise InputError("u0 must contain at least one value")
        self.is_scalar = u0.ndim == 0
        self.shape = u0.shape
        self.dim = int(u0.size)
        self._u0 = np.ascontiguousarray(u0.reshape(-1))

        if (self.change is None) == (self.stoichiometry is None):
            raise InputError("give exactly one of change or stoichiometry")

        if self.stoichiometry is not None:
            stoich = np.asarray(self.stoichiometry, dtype=np.float64)
            if stoich.ndim == 1:
                stoich = stoich.reshape(self.dim, -1)
            if stoich.ndim != 2 or stoich.shape[0] != self.dim:
                raise InputError(f"stoichiometry must have {self.dim} rows, got shape {stoich.shape}")
            self.stoichiometry = stoich
            self.n_channels = stoich.shape[1]
        else:
            # Probe the propensities once to learn the channel count
            self.n_channels = int(np.asarray(self.rate(self.to_user(self._u0), self.p, 0.0)).size)

    @property
    def noise_shape(self) -> Tuple[int, ...]:
        return (self.n_channels,)

    def initial_state(self) -> np.ndarray:
        return self._u0.copy()

    def to_user(self, u: np.ndarray):
        if self.is_scalar:
            return float(u[0])
        return u.reshape(self.shape)

    def evaluate_rates(self, t: float, u: np.ndarray) -> np.ndarray:
        rates = np.asarray(self.rate(self.to_user(u), self.p, t), dtype=np.float64).reshape(-1)
        if rates.size != self.n_channels:
            raise ModelEvaluationError(f"rate returned {rates.size} values for {self.n_channels} channels")
        if np.any(rates < 0) or not np.all(np.isfinite(rates)):
            raise ModelEvaluationError("reaction rates must be finite and non-negative")
        return rates

    def evaluate_change(self, t: float, u: np.ndarray, counts: np.ndarray, mark=None) -> np.ndarray:
        if self.stoichiometry is not None:
            return self.stoichiometry @ counts
        du = self.change(self.to_user(u), self.p, t, counts, mark)
        du = np.asarray(du, dtype=np.float64).reshape(-1)
        if du.size != self.dim:
            raise ModelEvaluationError(f"change returned {du.size} values for a state of size {self.dim}")
        return du
