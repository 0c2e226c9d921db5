"""
Error taxonomy and logging for the stochastic integrator.

Fatal run-time errors carry the partial ``Solution`` accumulated up to the
failure in their ``solution`` attribute, so callers can inspect the last
valid state and time instead of losing the data.
"""

import logging
from typing import Optional

__all__ = [
    "SDEIntegratorError",
    "InputError",
    "NonFiniteStateError",
    "StepSizeCollapseError",
    "IterationBudgetExceededError",
    "UnimplementedSchemeError",
    "ModelEvaluationError",
    "get_logger",
    "configure_logging",
]


class SDEIntegratorError(Exception):
    """Base class of every error raised by the integrator."""

    def __init__(self, message: str, solution=None):
        super().__init__(message)
        self.solution = solution


class InputError(SDEIntegratorError, ValueError):
    """Malformed time span or option value, raised before any stepping."""


class NonFiniteStateError(SDEIntegratorError):
    """A step produced NaN or infinite state values."""


class StepSizeCollapseError(SDEIntegratorError):
    """Rejections drove the step size below ``dtmin``."""


class IterationBudgetExceededError(SDEIntegratorError):
    """The accepted step count reached ``maxiters`` before the end time."""


class UnimplementedSchemeError(SDEIntegratorError, NotImplementedError):
    """The requested algorithm has no kernel for this problem or tableau."""


class ModelEvaluationError(SDEIntegratorError):
    """A drift, diffusion, rate or change function returned unusable values."""


_LOGGER_NAME = "sde_integrator"
_logger: Optional[logging.Logger] = None


def get_logger() -> logging.Logger:
    """Return the shared package logger.

    The logger is created lazily. A ``NullHandler`` is attached so that the
    library stays silent until the application (or ``configure_logging``)
    installs a real handler.
    """
    global _logger
    if _logger is None:
        _logger = logging.getLogger(_LOGGER_NAME)
        if not _logger.handlers:
            _logger.addHandler(logging.NullHandler())
    return _logger


def configure_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Attach console (and optionally file) output to the package logger.

    Parameters:
    -----------
    verbose : bool, default False
        DEBUG level when True (step rejections, run summaries), INFO otherwise.
    log_file : str, optional
        Path of a file to append log records to.
    """
    logger = get_logger()
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(logger.handlers):
        if not isinstance(handler, logging.NullHandler):
            logger.removeHandler(handler)
            handler.close()

    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    console = logging.StreamHandler()
    console.setFormatter(fmt)
    logger.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(fmt)
        logger.addHandler(file_handler)
