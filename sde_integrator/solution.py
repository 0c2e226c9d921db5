import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from sde_integrator.errors import get_logger

logger = get_logger()

RETCODES = ("Success", "MaxIters", "DtLessThanMin", "NonFinite", "ModelError")


@dataclass
class SolverStats:
    """Counters collected during one run."""
    naccept: int = 0
    nreject: int = 0
    nf: int = 0
    ng: int = 0
    initial_dt: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Solution:
    """
    Result of one integration.

    ``u`` and ``W`` hold the final state and Wiener value (floats for scalar
    problems); ``ts``, ``us`` and ``Ws`` hold the saved time series when it
    was requested. ``errors`` is filled when the problem has an analytic
    solution. Partial solutions attached to fatal errors carry a
    ``retcode`` other than ``"Success"``.
    """
    u: Any
    W: Any
    t: float
    ts: Optional[np.ndarray] = None
    us: Optional[np.ndarray] = None
    Ws: Optional[np.ndarray] = None
    u_analytic: Any = None
    timeseries_analytic: Optional[np.ndarray] = None
    errors: Dict[str, float] = field(default_factory=dict)
    maxstacksize: int = 0
    stats: SolverStats = field(default_factory=SolverStats)
    retcode: str = "Success"
    algorithm: Optional[str] = None

    def __post_init__(self):
        if self.retcode not in RETCODES:
            raise ValueError(f"Unknown retcode {self.retcode!r}; expected one of {RETCODES}")

    @property
    def success(self) -> bool:
        return self.retcode == "Success"

    @property
    def has_timeseries(self) -> bool:
        return self.ts is not None

    def __len__(self) -> int:
        return 0 if self.ts is None else len(self.ts)

    @staticmethod
    def _columns(prefix: str, values: np.ndarray) -> Dict[str, np.ndarray]:
        flat = values.reshape(values.shape[0], -1)
        if flat.shape[1] == 1 and values.ndim == 1:
            return {prefix: flat[:, 0]}
        return {f"{prefix}_{i}": flat[:, i] for i in range(flat.shape[1])}

    def to_dataframe(self) -> pd.DataFrame:
        """Saved time series as a DataFrame indexed by position, one column per component."""
        if self.ts is None:
            raise ValueError("No time series available. Solve with save_timeseries=True.")
        data = {"time": self.ts}
        data.update(self._columns("u", self.us))
        data.update(self._columns("W", self.Ws))
        if self.timeseries_analytic is not None:
            data.update(self._columns("u_analytic", self.timeseries_analytic))
        return pd.DataFrame(data)

    def plot(self, ax=None, variable_names: Optional[Sequence[str]] = None,
             show_analytic: bool = True, figsize=(10, 6)):
        """
        Plot the saved time series.

        Parameters:
        -----------
        ax : matplotlib Axes, optional
            Axes to draw into; a new figure is created when omitted
        variable_names : list of str, optional
            Labels for the state components
        show_analytic : bool, default True
            Overlay the analytic solution when it is known

        Returns:
        --------
        ax : matplotlib Axes
        """
        if self.ts is None:
            raise ValueError("No time series available. Solve with save_timeseries=True.")
        if ax is None:
            _, ax = plt.subplots(figsize=figsize)

        us = self.us.reshape(len(self.ts), -1)
        if variable_names is None:
            variable_names = [f"u_{i}" for i in range(us.shape[1])] if us.shape[1] > 1 else ["u"]
        for i in range(us.shape[1]):
            ax.plot(self.ts, us[:, i], label=variable_names[i])

        if show_analytic and self.timeseries_analytic is not None:
            exact = self.timeseries_analytic.reshape(len(self.ts), -1)
            for i in range(exact.shape[1]):
                ax.plot(self.ts, exact[:, i], "k--", alpha=0.6,
                        label=f"{variable_names[i]} (analytic)")

        ax.set_xlabel("Time")
        ax.set_ylabel("State")
        ax.legend()
        ax.grid(True)
        return ax

    def _metadata(self) -> Dict[str, Any]:
        return {
            "t": self.t,
            "retcode": self.retcode,
            "algorithm": self.algorithm,
            "maxstacksize": self.maxstacksize,
            "errors": self.errors,
            "stats": self.stats.to_dict(),
        }

    def save(self, basename: str = "sde_solution", formats: Sequence[str] = ("npz",),
             output_dir: str = "results") -> List[str]:
        """
        Save the solution to disk.

        Parameters:
        -----------
        basename : str, default "sde_solution"
            Base name for saved files
        formats : list of str, default ("npz",)
            File formats to save ('numpy', 'npz', 'csv')
        output_dir : str, default 'results'
            Directory to save files in

        Returns:
        --------
        paths : list of str
            Files written
        """
        Path(output_dir).mkdir(parents=True, exist_ok=True)
        metadata = self._metadata()
        written = []

        for fmt in formats:
            fmt = fmt.lower()
            if fmt == "numpy":
                if self.ts is None:
                    raise ValueError("The 'numpy' format needs a saved time series")
                for suffix, values in (("t", self.ts), ("u", self.us), ("W", self.Ws)):
                    path = os.path.join(output_dir, f"{basename}_{suffix}.npy")
                    np.save(path, values)
                    written.append(path)
                meta_file = os.path.join(output_dir, f"{basename}_metadata.npy")
                np.save(meta_file, metadata)
                written.append(meta_file)

            elif fmt == "npz":
                path = os.path.join(output_dir, f"{basename}.npz")
                arrays = {"u": np.asarray(self.u), "W": np.asarray(self.W)}
                if self.ts is not None:
                    arrays.update(ts=self.ts, us=self.us, Ws=self.Ws)
                np.savez(path, metadata=metadata, **arrays)
                written.append(path)

            elif fmt == "csv":
                path = os.path.join(output_dir, f"{basename}.csv")
                self.to_dataframe().to_csv(path, index=False)
                written.append(path)
                meta_file = os.path.join(output_dir, f"{basename}_metadata.json")
                with open(meta_file, "w") as f:
                    json.dump(metadata, f, indent=2)
                written.append(meta_file)

            else:
                raise ValueError(f"Unsupported format: {fmt}")

        for path in written:
            logger.info("Saved %s", path)
        return written


def analytic_errors(u, u_analytic, us=None, timeseries_analytic=None) -> Dict[str, float]:
    """Final, l2 and l-infinity errors against a known solution."""
    errors = {"final": float(np.mean(np.abs(np.asarray(u) - np.asarray(u_analytic))))}
    if us is not None and timeseries_analytic is not None:
        diff = np.abs(us - timeseries_analytic)
        errors["l2"] = float(np.sqrt(np.mean(diff ** 2)))
        errors["l∞"] = float(np.max(diff))
    return errors
