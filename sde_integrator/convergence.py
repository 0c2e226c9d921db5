from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from scipy import stats

from sde_integrator.errors import InputError, get_logger
from sde_integrator.solve import solve

logger = get_logger()


@dataclass
class ConvergenceResult:
    """Root-mean-square final errors per step size and the fitted strong order."""
    dts: np.ndarray
    errors: np.ndarray
    order: float
    intercept: float
    rvalue: float
    n_paths: int

    def within(self, expected: float, tol: float) -> bool:
        return abs(self.order - expected) <= tol


def strong_convergence(problem, algorithm, dts: Sequence[float], n_paths: int = 100,
                       time_span=(0.0, 1.0), seed: Optional[int] = None, **options) -> ConvergenceResult:
    """
    Estimate the strong order of ``algorithm`` on a problem with a known solution.

    Each path is integrated with a fixed step and compared against the
    analytic solution driven by the same Wiener path; the order is the slope
    of log(RMS final error) against log(dt).

    Parameters:
    -----------
    problem : SDEProblem
        Must define ``analytic``
    algorithm : str or Algorithm
        Scheme under study
    dts : sequence of float
        Step sizes, each dividing the time span
    n_paths : int, default 100
        Independent paths per step size
    seed : int, optional
        Root seed for the paths
    """
    if problem.analytic is None:
        raise InputError("strong_convergence needs a problem with an analytic solution")
    dts = np.asarray(dts, dtype=np.float64)
    if dts.size < 2:
        raise InputError("strong_convergence needs at least two step sizes")

    streams = np.random.SeedSequence(seed).spawn(dts.size)
    errors = np.zeros(dts.size)
    for k, dt in enumerate(dts):
        path_streams = streams[k].spawn(n_paths)
        final_errors = [
            solve(problem, time_span, algorithm=algorithm, dt=dt, adaptive=False,
                  save_timeseries=False, seed=path_stream, **options).errors["final"]
            for path_stream in path_streams
        ]
        errors[k] = np.sqrt(np.mean(np.square(final_errors)))
        logger.debug("dt=%.3e: RMS final error %.3e over %d paths", dt, errors[k], n_paths)

    fit = stats.linregress(np.log(dts), np.log(errors))
    return ConvergenceResult(dts=dts, errors=errors, order=float(fit.slope),
                             intercept=float(fit.intercept), rvalue=float(fit.rvalue),
                             n_paths=n_paths)
