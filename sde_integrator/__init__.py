"""
SDE Integrator Core Components
==============================

Adaptive integration of stochastic differential equations
``du = f(t,u)dt + g(t,u)dW`` with Rößler stochastic Runge-Kutta schemes,
Euler-Maruyama, Milstein and tau-leaping.
"""

__version__ = "0.2.0"

from sde_integrator.config import Algorithm, ControllerKind, SolverOptions
from sde_integrator.controller import StepSizeController
from sde_integrator.convergence import ConvergenceResult, strong_convergence
from sde_integrator.errors import (
    InputError,
    IterationBudgetExceededError,
    ModelEvaluationError,
    NonFiniteStateError,
    SDEIntegratorError,
    StepSizeCollapseError,
    UnimplementedSchemeError,
    configure_logging,
    get_logger,
)
from sde_integrator.initial_step import determine_initial_dt
from sde_integrator.kernels import StepKernel, build_kernel
from sde_integrator.noise_generation import NoiseBuffer, PoissonNoise, WienerNoise
from sde_integrator.scheme_coefficients import (
    SRATableau,
    SRITableau,
    check_order_conditions,
    construct_sra1,
    construct_sriw1,
)
from sde_integrator.sde_simulator import MonteCarloResult, run_monte_carlo
from sde_integrator.sde_system import JumpProblem, SDEProblem
from sde_integrator.solution import Solution, SolverStats
from sde_integrator.solve import default_tableau, plan_algorithm, solve
from sde_integrator.solver import SDEIntegrator

__all__ = [
    'Algorithm',
    'ControllerKind',
    'SolverOptions',
    'SDEProblem',
    'JumpProblem',
    'solve',
    'plan_algorithm',
    'default_tableau',
    'Solution',
    'SolverStats',
    'SDEIntegrator',
    'StepKernel',
    'build_kernel',
    'StepSizeController',
    'determine_initial_dt',
    'NoiseBuffer',
    'WienerNoise',
    'PoissonNoise',
    'SRITableau',
    'SRATableau',
    'construct_sriw1',
    'construct_sra1',
    'check_order_conditions',
    'run_monte_carlo',
    'MonteCarloResult',
    'strong_convergence',
    'ConvergenceResult',
    'SDEIntegratorError',
    'InputError',
    'NonFiniteStateError',
    'StepSizeCollapseError',
    'IterationBudgetExceededError',
    'UnimplementedSchemeError',
    'ModelEvaluationError',
    'get_logger',
    'configure_logging',
]
