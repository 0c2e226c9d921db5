import os
import time
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

from sde_integrator import SDEProblem, configure_logging, run_monte_carlo, solve


def black_scholes_problem(S0: float, risk_free_rate: float, volatility: float) -> SDEProblem:
    """Geometric Brownian motion dS = r S dt + sigma S dW with its exact solution."""
    def drift(t, S):
        return risk_free_rate * S

    def diffusion(t, S):
        return volatility * S

    def analytic(t, S0, W):
        return S0 * np.exp((risk_free_rate - 0.5 * volatility ** 2) * t + volatility * W)

    return SDEProblem(drift, diffusion, S0, analytic=analytic)


def black_scholes_grid_simulation(
        num_sim: int,  # Number of starting prices
        S0_range: tuple,  # Range of initial stock prices (min, max)
        time_to_maturity: float,  # Time to maturity in years
        risk_free_rate: float,  # Risk-free rate (annual)
        volatility: float,  # Volatility
        abstol: float = 1e-3,
        reltol: float = 1e-3,
        seed: int = 42,
        output_dir: str = "results_bs"
):
    """
    Integrate the Black-Scholes model adaptively across a grid of initial prices
    and compare every path against the exact solution on the same Wiener path.

    Parameters:
    -----------
    num_sim : int
        Number of starting prices
    S0_range : tuple
        Min and max initial stock prices
    time_to_maturity : float
        Time to maturity in years
    abstol, reltol : float
        Tolerances of the adaptive controller
    output_dir : str
        Directory to save results

    Returns:
    --------
    dict
        Final prices, analytic prices, errors and step counts per starting price
    """
    start_time = time.time()
    Path(output_dir).mkdir(parents=True, exist_ok=True)

    S0_values = np.linspace(S0_range[0], S0_range[1], num_sim)
    S_final = np.zeros(num_sim)
    S_exact = np.zeros(num_sim)
    steps = np.zeros(num_sim, dtype=int)
    rejections = np.zeros(num_sim, dtype=int)

    for sim_idx, S0 in enumerate(S0_values):
        problem = black_scholes_problem(S0, risk_free_rate, volatility)
        sol = solve(problem, (0.0, time_to_maturity), adaptive=True,
                    abstol=abstol, reltol=reltol, seed=seed + sim_idx)
        S_final[sim_idx] = sol.u
        S_exact[sim_idx] = sol.u_analytic
        steps[sim_idx] = sol.stats.naccept
        rejections[sim_idx] = sol.stats.nreject
        print(f"S0 = {S0:.2f}: S_T = {sol.u:.4f} (exact {sol.u_analytic:.4f}), "
              f"{sol.stats.naccept} steps, {sol.stats.nreject} rejected")

    np.save(os.path.join(output_dir, "S0_values.npy"), S0_values)
    np.save(os.path.join(output_dir, "S_final.npy"), S_final)
    np.save(os.path.join(output_dir, "S_exact.npy"), S_exact)

    print(f"All simulations completed in {time.time() - start_time:.2f} seconds.")
    return {
        "S0_values": S0_values,
        "S_final": S_final,
        "S_exact": S_exact,
        "steps": steps,
        "rejections": rejections,
    }


def plot_black_scholes_results(results, mc=None, output_dir="results_bs"):
    """Plot the final-price errors of the grid and, if given, the Monte Carlo band."""
    fig, axes = plt.subplots(1, 2 if mc is not None else 1, figsize=(14, 6), squeeze=False)

    ax = axes[0, 0]
    ax.semilogy(results["S0_values"], np.abs(results["S_final"] - results["S_exact"]), 'o-')
    ax.set_xlabel('Initial price S0')
    ax.set_ylabel('|S_T - exact|')
    ax.set_title('Adaptive SRIW1 final error')
    ax.grid(True)

    if mc is not None:
        t, paths = mc.timeseries()
        ax = axes[0, 1]
        ax.plot(t, paths.mean(axis=0), 'b-', label='Mean price')
        ax.fill_between(t, np.percentile(paths, 2.5, axis=0), np.percentile(paths, 97.5, axis=0),
                        color='b', alpha=0.2, label='95% band')
        ax.set_xlabel('Time (years)')
        ax.set_ylabel('Price')
        ax.legend()
        ax.grid(True)

    fig.tight_layout()
    fig.savefig(os.path.join(output_dir, "black_scholes.png"), dpi=150)
    plt.show()


if __name__ == "__main__":
    configure_logging(verbose=False)
    results = black_scholes_grid_simulation(
        num_sim=5,
        S0_range=(80.0, 120.0),
        time_to_maturity=1.0,
        risk_free_rate=0.05,
        volatility=0.2,
    )
    mc = run_monte_carlo(black_scholes_problem(100.0, 0.05, 0.2), 200, (0.0, 1.0),
                         seed=7, dt=1 / 252, timeseries_steps=1)
    print(mc.summary())
    plot_black_scholes_results(results, mc)
