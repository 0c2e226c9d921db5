from dataclasses import dataclass
from typing import Tuple

# Errors below this are treated as this value so that q stays finite
ERROR_FLOOR = 1e-12


@dataclass
class ControllerState:
    """History carried between steps: the last accepted error."""
    e_prev: float = 1.0
    naccept: int = 0
    nreject: int = 0


class StepSizeController:
    """
    Adaptive step-size policy for the RSwM family.

    The proposed factor is ``q = (1/(gamma*e))**(1/(order + 1/2)) * e_prev**beta2``.
    A step is accepted iff ``e <= 1`` and the next step is ``dt*clip(q, qmin, qmax)``.
    A rejected step always shrinks: ``dt*max(qmin, min(q, 1))``.

    Parameters:
    -----------
    order : float
        Strong order of the kernel
    gamma : float
        Risk factor, >= 1
    qmax, qmin : float
        Bounds on the growth and shrink factors
    beta2 : float
        Weight of the previous accepted error (0 gives pure integral control)
    discard_length : float
        Step changes smaller than this are ignored on acceptance
    """

    def __init__(self, order: float, gamma: float = 2.0, qmax: float = 1.125, qmin: float = 0.2,
                 beta2: float = 0.0, discard_length: float = 1e-15):
        self.order = order
        self.gamma = gamma
        self.qmax = qmax
        self.qmin = qmin
        self.beta1 = 1.0 / (order + 0.5)
        self.beta2 = beta2
        self.discard_length = discard_length
        self.state = ControllerState()

    @classmethod
    def from_options(cls, order: float, options) -> "StepSizeController":
        return cls(order, gamma=options.gamma, qmax=options.qmax, qmin=options.qmin,
                   beta2=options.beta2, discard_length=options.discard_length)

    def _factor(self, e: float) -> float:
        e = max(e, ERROR_FLOOR)
        q = (1.0 / (self.gamma * e)) ** self.beta1
        if self.beta2:
            q *= max(self.state.e_prev, ERROR_FLOOR) ** self.beta2
        return q

    def propose(self, e: float, dt: float) -> Tuple[bool, float]:
        """Return ``(accept, dt_next)`` for an attempt of size ``dt`` with error ``e``."""
        q = self._factor(e)
        if e <= 1.0:
            dt_next = dt * min(self.qmax, max(self.qmin, q))
            if abs(dt_next - dt) < self.discard_length:
                dt_next = dt
            self.state.e_prev = max(e, ERROR_FLOOR)
            self.state.naccept += 1
            return True, dt_next
        self.state.nreject += 1
        return False, dt * max(self.qmin, min(q, 1.0))

    def force_reject(self, dt: float) -> float:
        """Shrink after an attempt that produced no usable error estimate."""
        self.state.nreject += 1
        return dt * self.qmin
