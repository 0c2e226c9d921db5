import numpy as np

from sde_integrator.controller import StepSizeController
from sde_integrator.error_estimation import build_estimator
from sde_integrator.errors import (
    IterationBudgetExceededError,
    ModelEvaluationError,
    NonFiniteStateError,
    StepSizeCollapseError,
    get_logger,
)
from sde_integrator.solution import Solution, SolverStats, analytic_errors

logger = get_logger()

# A final remainder shorter than this fraction of dt is folded into the last step
SNAP_FRACTION = 1e-8


class SDEIntegrator:
    """
    Time loop of one integration run.

    Owns the state, the time series and the accept/reject bookkeeping; the
    kernel, noise source, error estimator and controller are strategy objects
    fixed at construction.

    Parameters:
    -----------
    problem : SDEProblem or JumpProblem
        Supplies the initial state and the conversions to user values
    kernel : StepKernel
        Advances the state by one attempt
    noise : WienerNoise or PoissonNoise
        Increment source; must have been created for the same ``t0``
    t0, T : float
        Time span
    dt : float
        Initial (adaptive) or fixed step size, > 0
    options : SolverOptions
        Tolerances, limits and saving options
    """

    def __init__(self, problem, kernel, noise, t0: float, T: float, dt: float, options,
                 controller=None, estimator=None):
        self.problem = problem
        self.kernel = kernel
        self.noise = noise
        self.t0 = t0
        self.T = T
        self.dt = dt
        self.options = options
        self.adaptive = options.adaptive
        self.dtmin, self.dtmax = options.resolve_step_bounds(t0, T)
        if self.adaptive:
            self.dt = min(max(dt, self.dtmin), self.dtmax)
            self.controller = controller or StepSizeController.from_options(kernel.order, options)
            self.estimator = estimator or build_estimator(kernel, options)
        else:
            self.controller = controller
            self.estimator = estimator

        self.stats = SolverStats(initial_dt=self.dt)
        self.t = t0
        self.u = problem.initial_state()
        self.ts = [t0]
        self.us = [self.u.copy()]
        self.Ws = [np.array(noise.W, copy=True)]

    def _save_point(self) -> None:
        self.ts.append(self.t)
        self.us.append(self.u.copy())
        self.Ws.append(np.array(self.noise.W, copy=True))

    def _to_user_W(self, W):
        if np.ndim(W) == 0:
            return float(W)
        return np.array(W, copy=True)

    def build_solution(self, retcode: str = "Success") -> Solution:
        """Package the current state (final or partial) as a Solution."""
        problem = self.problem
        self.stats.nf = self.kernel.nf
        self.stats.ng = self.kernel.ng
        u = problem.to_user(self.u.copy())
        W = self._to_user_W(self.noise.W)

        ts = us = Ws = None
        if self.options.save_timeseries:
            ts = np.array(self.ts, dtype=np.float64)
            us = np.array([problem.to_user(x) for x in self.us])
            Ws = np.stack([np.asarray(w) for w in self.Ws])

        u_analytic = timeseries_analytic = None
        errors = {}
        if problem.analytic is not None:
            u_analytic = problem.to_user(problem.evaluate_analytic(self.t, W))
            if ts is not None:
                timeseries_analytic = np.array([
                    problem.to_user(problem.evaluate_analytic(ti, self._to_user_W(wi)))
                    for ti, wi in zip(ts, Ws)
                ])
            errors = analytic_errors(u, u_analytic, us, timeseries_analytic)

        return Solution(
            u=u, W=W, t=self.t, ts=ts, us=us, Ws=Ws,
            u_analytic=u_analytic, timeseries_analytic=timeseries_analytic,
            errors=errors, maxstacksize=self.noise.maxstacksize, stats=self.stats,
            retcode=retcode, algorithm=self.kernel.algorithm.value,
        )

    def _collapse(self, dt_next: float) -> StepSizeCollapseError:
        return StepSizeCollapseError(
            f"Step size {dt_next:.3e} fell below dtmin={self.dtmin:.3e} at t={self.t}",
            solution=self.build_solution("DtLessThanMin"),
        )

    def _model_failure(self, exc: ModelEvaluationError) -> ModelEvaluationError:
        return ModelEvaluationError(f"{exc} (at t={self.t})", solution=self.build_solution("ModelError"))

    def run(self) -> Solution:
        """
        Integrate from t0 to T.

        Raises:
        -------
        IterationBudgetExceededError
            ``maxiters`` steps were accepted before reaching T
        StepSizeCollapseError
            Rejections drove the step size below ``dtmin``
        NonFiniteStateError
            A fixed-step run produced a non-finite state
        ModelEvaluationError
            A model function returned values of the wrong size, or invalid rates
        """
        options = self.options
        T = self.T
        dt = self.dt
        stats = self.stats
        every = options.timeseries_steps

        while self.t < T:
            if stats.naccept >= options.maxiters:
                raise IterationBudgetExceededError(
                    f"Reached maxiters={options.maxiters} at t={self.t} before T={T}",
                    solution=self.build_solution("MaxIters"),
                )

            remaining = T - self.t
            final = remaining - dt < SNAP_FRACTION * dt
            dt_step = remaining if final else dt

            try:
                increment = self.noise.step(self.t, dt_step, self.u)
            except ModelEvaluationError as exc:
                raise self._model_failure(exc) from exc
            try:
                result = self.kernel.step(self.t, self.u, dt_step, increment)
            except ModelEvaluationError as exc:
                self.noise.reject()
                raise self._model_failure(exc) from exc
            except NonFiniteStateError as exc:
                self.noise.reject()
                if not self.adaptive:
                    raise NonFiniteStateError(str(exc), solution=self.build_solution("NonFinite")) from exc
                stats.nreject += 1
                dt = self.controller.force_reject(dt_step)
                logger.debug("Non-finite attempt at t=%.6g, dt=%.3e; retrying with dt=%.3e",
                             self.t, dt_step, dt)
                if dt < self.dtmin:
                    raise self._collapse(dt) from exc
                continue

            if self.adaptive:
                try:
                    e = self.estimator.estimate(self.kernel, self.t, self.u, dt_step, increment, result)
                except ModelEvaluationError as exc:
                    self.noise.reject()
                    raise self._model_failure(exc) from exc
                accept, dt_next = self.controller.propose(e, dt_step)
                if not accept:
                    self.noise.reject()
                    stats.nreject += 1
                    logger.debug("Rejected step at t=%.6g: dt=%.3e, error=%.3e, next dt=%.3e",
                                 self.t, dt_step, e, dt_next)
                    if dt_next < self.dtmin:
                        raise self._collapse(dt_next)
                    dt = dt_next
                    continue
                dt = min(max(dt_next, self.dtmin), self.dtmax)

            self.noise.accept()
            stats.naccept += 1
            self.u = result.u
            if final:
                self.t = T
            elif self.adaptive:
                self.t = self.t + dt_step
            else:
                self.t = self.t0 + stats.naccept * dt_step

            if options.save_timeseries and (stats.naccept % every == 0 or final):
                self._save_point()
            if options.progress is not None and stats.naccept % options.progress_steps == 0:
                options.progress(self.t, T, stats.naccept)

        logger.debug("%s finished at t=%.6g: %d accepted, %d rejected, %d drift / %d diffusion calls",
                     self.kernel.algorithm.value, self.t, stats.naccept, stats.nreject,
                     self.kernel.nf, self.kernel.ng)
        return self.build_solution()
