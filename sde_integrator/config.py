from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

import numpy as np

from sde_integrator.errors import InputError


class Algorithm(str, Enum):
    EM = "EM"
    RKMil = "RKMil"
    SRA = "SRA"
    SRI = "SRI"
    SRIW1Optimized = "SRIW1Optimized"
    SRA1Optimized = "SRA1Optimized"
    SRAVectorized = "SRAVectorized"
    SRIVectorized = "SRIVectorized"
    TauLeaping = "TauLeaping"

    @classmethod
    def coerce(cls, value: Union[str, "Algorithm"]) -> "Algorithm":
        if isinstance(value, cls):
            return value
        name = _ALGORITHM_ALIASES.get(value, value)
        try:
            return cls(name)
        except ValueError:
            known = ", ".join(a.value for a in cls)
            raise InputError(f"Unknown algorithm {value!r}; expected one of {known}")


_ALGORITHM_ALIASES = {"Euler": "EM", "EulerMaruyama": "EM", "Milstein": "RKMil"}


class ControllerKind(str, Enum):
    RSwM1 = "RSwM1"
    RSwM3 = "RSwM3"


# Keys accepted by ``SolverOptions.from_dict`` besides the field names
_OPTION_ALIASES = {
    "γ": "gamma",
    "δ": "delta",
    "ablstol": "abstol",
    "adaptivealg": "adaptive_controller",
    "alg": "algorithm",
}


@dataclass
class SolverOptions:
    """
    Options recognized by ``solve``.

    ``dtmax`` and ``dtmin`` default to ``None`` and are resolved against the
    time span by ``resolve_step_bounds``: half the span and ``10*eps``.
    """
    dt: float = 0.0
    save_timeseries: bool = True
    timeseries_steps: int = 1
    adaptive: bool = False
    algorithm: Optional[Union[str, Algorithm]] = None
    alg_hint: Optional[str] = None
    abstol: float = 1e-3
    reltol: float = 1e-6
    gamma: float = 2.0
    qmax: float = 1.125
    qmin: float = 0.2
    beta2: float = 0.0
    delta: float = 1.0 / 6.0
    maxiters: int = int(1e9)
    dtmax: Optional[float] = None
    dtmin: Optional[float] = None
    internalnorm: float = 2
    discard_length: float = 1e-15
    adaptive_controller: Union[str, ControllerKind] = ControllerKind.RSwM3
    tableau: Any = None
    progress: Optional[Callable[[float, float, int], None]] = None
    progress_steps: int = 1000
    seed: Optional[Union[int, np.random.SeedSequence]] = None

    def __post_init__(self):
        if self.algorithm is not None:
            self.algorithm = Algorithm.coerce(self.algorithm)
        try:
            self.adaptive_controller = ControllerKind(self.adaptive_controller)
        except ValueError:
            raise InputError(f"Unknown adaptive controller {self.adaptive_controller!r}")

        if int(self.timeseries_steps) != self.timeseries_steps or self.timeseries_steps < 1:
            raise InputError(f"timeseries_steps must be an integer >= 1, got {self.timeseries_steps}")
        self.timeseries_steps = int(self.timeseries_steps)
        if not np.isfinite(self.dt) or self.dt < 0:
            raise InputError(f"dt must be finite and >= 0 (0 selects automatically), got {self.dt}")
        if self.abstol < 0 or self.reltol < 0:
            raise InputError("abstol and reltol must be non-negative")
        if self.gamma < 1.0:
            raise InputError(f"gamma is a risk factor and must be >= 1, got {self.gamma}")
        if self.qmax < 1.0:
            raise InputError(f"qmax must be >= 1, got {self.qmax}")
        if not 0.0 < self.qmin < 1.0:
            raise InputError(f"qmin must lie in (0, 1), got {self.qmin}")
        if self.beta2 < 0:
            raise InputError(f"beta2 must be non-negative, got {self.beta2}")
        if self.delta < 0:
            raise InputError(f"delta must be non-negative, got {self.delta}")
        if self.maxiters < 1:
            raise InputError(f"maxiters must be >= 1, got {self.maxiters}")
        if not self.internalnorm > 0:
            raise InputError(f"internalnorm must be positive, got {self.internalnorm}")
        if self.discard_length < 0:
            raise InputError("discard_length must be non-negative")
        if self.progress_steps < 1:
            raise InputError(f"progress_steps must be >= 1, got {self.progress_steps}")
        if self.dtmin is not None and self.dtmin <= 0:
            raise InputError(f"dtmin must be positive, got {self.dtmin}")
        if self.dtmax is not None and self.dtmax <= 0:
            raise InputError(f"dtmax must be positive, got {self.dtmax}")
        if self.dtmin is not None and self.dtmax is not None and self.dtmin > self.dtmax:
            raise InputError(f"dtmin ({self.dtmin}) must not exceed dtmax ({self.dtmax})")

    @classmethod
    def from_dict(cls, options: Optional[Dict[str, Any]] = None, **overrides) -> "SolverOptions":
        """Build options from a mapping, accepting the historical key aliases."""
        merged = dict(options or {})
        merged.update(overrides)
        names = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in merged.items():
            key = _OPTION_ALIASES.get(key, key)
            if key not in names:
                raise InputError(f"Unrecognized solver option {key!r}")
            kwargs[key] = value
        return cls(**kwargs)

    def with_overrides(self, **overrides) -> "SolverOptions":
        if not overrides:
            return self
        names = {f.name for f in fields(self)}
        changes = {}
        for key, value in overrides.items():
            key = _OPTION_ALIASES.get(key, key)
            if key not in names:
                raise InputError(f"Unrecognized solver option {key!r}")
            changes[key] = value
        return replace(self, **changes)

    def resolve_step_bounds(self, t0: float, T: float):
        """Return ``(dtmin, dtmax)`` with defaults filled from the time span."""
        dtmax = self.dtmax if self.dtmax is not None else (T - t0) / 2.0
        dtmin = self.dtmin if self.dtmin is not None else 10.0 * np.finfo(np.float64).eps
        if dtmin > dtmax:
            raise InputError(f"dtmin ({dtmin}) must not exceed dtmax ({dtmax})")
        return dtmin, dtmax


def validate_time_span(time_span) -> tuple:
    """Check a ``[t0, T]`` pair and return it as floats."""
    span = np.ravel(np.asarray(time_span, dtype=np.float64))
    if span.size != 2:
        raise InputError(f"time_span must hold exactly two numbers, got {span.size}")
    t0, T = float(span[0]), float(span[1])
    if not (np.isfinite(t0) and np.isfinite(T)):
        raise InputError("time_span entries must be finite")
    if not T > t0:
        raise InputError(f"final time ({T}) must be greater than the starting time ({t0})")
    return t0, T
