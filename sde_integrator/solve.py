import warnings
from typing import Any, Dict, Optional, Union

import numpy as np

from sde_integrator.config import Algorithm, SolverOptions, validate_time_span
from sde_integrator.errors import InputError, UnimplementedSchemeError, get_logger
from sde_integrator.initial_step import determine_initial_dt
from sde_integrator.kernels import FIXED_TABLEAU, build_kernel
from sde_integrator.noise_generation import PoissonNoise, WienerNoise
from sde_integrator.scheme_coefficients import check_order_conditions, construct_sra1, construct_sriw1
from sde_integrator.sde_system import JumpProblem
from sde_integrator.solution import Solution
from sde_integrator.solver import SDEIntegrator

logger = get_logger()

ADDITIVE_HINTS = ("additive",)


def plan_algorithm(problem, alg_hint: Optional[str] = None) -> Algorithm:
    """Default algorithm: tau-leaping for jump problems, SRA1 for additive noise, SRIW1 otherwise."""
    if isinstance(problem, JumpProblem):
        return Algorithm.TauLeaping
    if alg_hint is not None and alg_hint.lower() in ADDITIVE_HINTS:
        return Algorithm.SRA1Optimized
    return Algorithm.SRIW1Optimized


def default_tableau(algorithm: Union[str, Algorithm]):
    """Tableau used when none is given: SRA1 for the SRA family, SRIW1 for the SRI family."""
    algorithm = Algorithm.coerce(algorithm)
    if algorithm in (Algorithm.SRA, Algorithm.SRAVectorized, Algorithm.SRA1Optimized):
        return construct_sra1()
    if algorithm in (Algorithm.SRI, Algorithm.SRIVectorized, Algorithm.SRIW1Optimized):
        return construct_sriw1()
    return None


def _resolve_options(options, overrides) -> SolverOptions:
    if options is None:
        return SolverOptions.from_dict(None, **overrides)
    if isinstance(options, dict):
        return SolverOptions.from_dict(options, **overrides)
    if isinstance(options, SolverOptions):
        return options.with_overrides(**overrides)
    raise InputError(f"options must be a SolverOptions or a dict, got {type(options).__name__}")


def solve(problem, time_span=(0.0, 1.0), options: Optional[Union[SolverOptions, Dict[str, Any]]] = None,
          **overrides) -> Solution:
    """
    Integrate ``problem`` over ``time_span``.

    Parameters:
    -----------
    problem : SDEProblem or JumpProblem
        The equation and its initial condition
    time_span : pair of float, default (0, 1)
        Start and end time; the end must be strictly greater than the start
    options : SolverOptions or dict, optional
        Solver options; keyword overrides are applied on top

    Returns:
    --------
    Solution
        Final state, Wiener value and (optionally) the saved time series

    Raises:
    -------
    InputError
        Malformed time span or option values, before any stepping
    UnimplementedSchemeError
        No kernel for the requested algorithm and problem
    StepSizeCollapseError, IterationBudgetExceededError, NonFiniteStateError, ModelEvaluationError
        Fatal run-time failures; ``exc.solution`` holds the partial result
    """
    options = _resolve_options(options, overrides)
    t0, T = validate_time_span(time_span)

    algorithm = options.algorithm or plan_algorithm(problem, options.alg_hint)
    if algorithm in FIXED_TABLEAU and options.tableau is not None:
        warnings.warn(f"{algorithm.value} has its coefficients built in; the tableau option is ignored")
    kernel = build_kernel(algorithm, problem, options.tableau)
    if options.tableau is not None and kernel.tableau is options.tableau:
        check_order_conditions(kernel.tableau)

    rng = np.random.default_rng(options.seed)
    if isinstance(problem, JumpProblem):
        if options.adaptive:
            raise UnimplementedSchemeError("TauLeaping has no adaptive step-size control")
        if options.dt == 0:
            raise InputError("TauLeaping needs an explicit dt")
        noise = PoissonNoise(problem, rng, t0, keep_history=options.save_timeseries)
    else:
        noise = WienerNoise(problem.noise_shape, rng, t0,
                            factor=problem.noise_factor,
                            with_z=kernel.needs_z,
                            policy=options.adaptive_controller,
                            discard_length=options.discard_length,
                            keep_history=options.save_timeseries)

    dt = options.dt
    if dt == 0:
        dt = determine_initial_dt(problem, t0, options.abstol, options.reltol, kernel.order,
                                  options.internalnorm, drift=kernel._drift, diffusion=kernel._diffusion)
        logger.debug("Initial step size estimated as %.3e", dt)

    logger.debug("Solving on [%g, %g] with %s, dt=%.3e, adaptive=%s",
                 t0, T, algorithm.value, dt, options.adaptive)
    integrator = SDEIntegrator(problem, kernel, noise, t0, T, dt, options)
    return integrator.run()
