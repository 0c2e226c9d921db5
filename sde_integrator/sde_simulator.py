import dataclasses
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from sde_integrator.errors import get_logger
from sde_integrator.solution import Solution
from sde_integrator.solve import solve

logger = get_logger()


@dataclass
class MonteCarloResult:
    """Solutions of independent runs of the same problem."""
    solutions: List[Solution]

    def __len__(self) -> int:
        return len(self.solutions)

    @property
    def finals(self) -> np.ndarray:
        """Final states, shape (n_simulations,) + state shape."""
        return np.array([sol.u for sol in self.solutions])

    def summary(self, confidence_level: float = 0.95) -> pd.DataFrame:
        """Mean, standard deviation and percentile band of every final state component."""
        finals = self.finals.reshape(len(self.solutions), -1)
        alpha = 1 - confidence_level
        return pd.DataFrame({
            "mean": finals.mean(axis=0),
            "std": finals.std(axis=0, ddof=1) if len(self.solutions) > 1 else np.zeros(finals.shape[1]),
            "lower": np.percentile(finals, alpha / 2 * 100, axis=0),
            "upper": np.percentile(finals, (1 - alpha / 2) * 100, axis=0),
        })

    def timeseries(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Stack the saved time series of all runs.

        Only meaningful for fixed-step runs, where every run saves the same
        time points.
        """
        if any(sol.ts is None for sol in self.solutions):
            raise ValueError("No time series available. Solve with save_timeseries=True.")
        ts = self.solutions[0].ts
        for sol in self.solutions[1:]:
            if sol.ts.shape != ts.shape or not np.allclose(sol.ts, ts):
                raise ValueError("Runs saved different time points; use a fixed dt to stack them")
        return ts, np.stack([sol.us for sol in self.solutions])

    def plot(self, confidence_level: float = 0.95, variable_names: Optional[Sequence[str]] = None,
             figsize=(12, 8), n_samples: int = 10):
        """
        Plot the mean path with a confidence band and a few sample paths.

        Returns:
        --------
        fig : matplotlib Figure
        """
        t, y_batch = self.timeseries()
        y_batch = y_batch.reshape(y_batch.shape[0], y_batch.shape[1], -1)
        dim = y_batch.shape[2]
        if variable_names is None:
            variable_names = [f"Variable {i + 1}" for i in range(dim)]

        alpha = 1 - confidence_level
        n_rows = int(np.ceil(dim / 2))
        fig = plt.figure(figsize=figsize)
        for i in range(dim):
            ax = fig.add_subplot(n_rows, 2 if dim > 1 else 1, i + 1)
            mean_trajectory = np.mean(y_batch[:, :, i], axis=0)
            lower_bound = np.percentile(y_batch[:, :, i], alpha / 2 * 100, axis=0)
            upper_bound = np.percentile(y_batch[:, :, i], (1 - alpha / 2) * 100, axis=0)

            ax.plot(t, mean_trajectory, 'b-', label=f'Mean {variable_names[i]}')
            ax.fill_between(t, lower_bound, upper_bound, color='b', alpha=0.2,
                            label=f'{confidence_level:.0%} Confidence')
            for j in range(min(n_samples, y_batch.shape[0])):
                ax.plot(t, y_batch[j, :, i], 'r-', alpha=0.1)

            ax.set_xlabel('Time')
            ax.set_ylabel(variable_names[i])
            ax.legend()
            ax.grid(True)
        fig.tight_layout()
        return fig


def run_monte_carlo(problem, n_simulations: int, time_span=(0.0, 1.0), options=None,
                    seed: Optional[int] = None, initial_states=None, **overrides) -> MonteCarloResult:
    """
    Run ``n_simulations`` independent integrations of ``problem``.

    Parameters:
    -----------
    problem : SDEProblem or JumpProblem
        Problem shared by all runs
    n_simulations : int
        Number of runs
    seed : int, optional
        Root seed; every run gets its own stream spawned from it
    initial_states : sequence, optional
        One initial state per run, replacing ``problem.u0``
    options, overrides
        Passed to ``solve``; a ``seed`` among them is replaced per run
    """
    if n_simulations < 1:
        raise ValueError(f"n_simulations must be >= 1, got {n_simulations}")
    if initial_states is not None and len(initial_states) != n_simulations:
        raise ValueError(f"Number of initial states ({len(initial_states)}) "
                         f"must match number of simulations ({n_simulations})")

    streams = np.random.SeedSequence(seed).spawn(n_simulations)
    solutions = []
    for i, stream in enumerate(streams):
        run_problem = problem
        if initial_states is not None:
            run_problem = dataclasses.replace(problem, u0=initial_states[i])
        solutions.append(solve(run_problem, time_span, options, **dict(overrides, seed=stream)))

    logger.debug("Monte Carlo finished: %d runs", n_simulations)
    return MonteCarloResult(solutions)
