"""
Noise sources for the integrator.

``WienerNoise`` hands out Wiener increments for attempted steps and keeps
the RSwM bookkeeping that makes rejection safe: the increments of a rejected
attempt are never recorded, but the Brownian information they carry is
pushed onto a future stack so that the retry samples a Brownian bridge
instead of a fresh, unconditioned value. ``PoissonNoise`` draws reaction
counts for tau-leaping behind the same interface.
"""

from typing import List, NamedTuple, Optional, Tuple

import numpy as np

from sde_integrator.config import ControllerKind


class Increment(NamedTuple):
    dt: float
    dW: np.ndarray
    dZ: Optional[np.ndarray] = None


class NoiseBuffer:
    """
    Accepted increments in time order.

    Each entry stores the end time of its step, the increments, and the
    cumulative values after it. ``truncate`` drops speculative entries from
    the top. With ``keep_history=False`` only the newest entry is retained,
    which bounds memory while keeping the count and the running totals.
    """

    def __init__(self, t0: float, noise_shape: Tuple[int, ...], keep_history: bool = True):
        self.t0 = t0
        self.noise_shape = noise_shape
        self.keep_history = keep_history
        self._times: List[float] = []
        self._dW: List[np.ndarray] = []
        self._dZ: List[Optional[np.ndarray]] = []
        self._W: List[np.ndarray] = []
        self._Z: List[np.ndarray] = []
        self._dropped = 0
        self._W0 = np.zeros(noise_shape, dtype=np.float64)

    def __len__(self) -> int:
        return self._dropped + len(self._times)

    @property
    def W(self) -> np.ndarray:
        return self._W[-1] if self._W else self._W0

    @property
    def Z(self) -> np.ndarray:
        return self._Z[-1] if self._Z else self._W0

    def push(self, t_end: float, dW: np.ndarray, dZ: Optional[np.ndarray] = None) -> None:
        self._times.append(t_end)
        self._dW.append(dW)
        self._dZ.append(dZ)
        self._W.append(self.W + dW)
        self._Z.append(self.Z + dZ if dZ is not None else self.Z)
        if not self.keep_history and len(self._times) > 2:
            # Keep the last committed entry plus the speculative one
            for seq in (self._times, self._dW, self._dZ, self._W, self._Z):
                del seq[0]
            self._dropped += 1

    def truncate(self, length: int) -> None:
        """Discard entries above ``length`` (speculative increments)."""
        if length < self._dropped:
            raise ValueError(f"cannot truncate to {length}: only the last entries are retained")
        keep = length - self._dropped
        for seq in (self._times, self._dW, self._dZ, self._W, self._Z):
            del seq[keep:]

    def increments(self) -> np.ndarray:
        """Recorded Wiener increments, shape ``(len(buffer),) + noise_shape``."""
        if not self._dW:
            return np.zeros((0,) + self.noise_shape)
        return np.stack(self._dW)

    def path(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return ``(times, W)`` with the starting point ``(t0, 0)`` first."""
        times = np.array([self.t0] + self._times, dtype=np.float64)
        Ws = np.stack([self._W0] + self._W)
        return times, Ws


class WienerNoise:
    """
    Wiener increments with RSwM rejection handling.

    Parameters:
    -----------
    noise_shape : tuple
        Shape of one increment; ``()`` for scalar noise.
    rng : numpy.random.Generator
        Random stream owned by this run.
    t0 : float
        Start of the path.
    factor : array, optional
        Lower Cholesky factor of the noise covariance.
    with_z : bool
        Also draw the auxiliary increment ``dZ`` used to build ``I_(1,0)``.
    policy : ControllerKind
        ``RSwM3`` returns the pieces of a rejected attempt to the future
        stack one by one; ``RSwM1`` returns them as a single piece.
    discard_length : float
        Future information shorter than this is dropped.
    """

    def __init__(self, noise_shape: Tuple[int, ...], rng: np.random.Generator, t0: float = 0.0,
                 factor: Optional[np.ndarray] = None, with_z: bool = False,
                 policy: ControllerKind = ControllerKind.RSwM3, discard_length: float = 1e-15,
                 keep_history: bool = True):
        self.noise_shape = tuple(noise_shape)
        self.rng = rng
        self.factor = factor
        self.with_z = with_z
        self.policy = ControllerKind(policy)
        self.discard_length = discard_length
        self.buffer = NoiseBuffer(t0, self.noise_shape, keep_history=keep_history)
        self._future: List[Increment] = []
        self._pieces: List[Increment] = []
        self.maxstacksize = 0

    @property
    def W(self) -> np.ndarray:
        return self.buffer.W

    @property
    def stack_size(self) -> int:
        return len(self._future)

    def _draw(self, h: float) -> np.ndarray:
        z = self.rng.standard_normal(self.noise_shape) * np.sqrt(h)
        if self.factor is not None:
            z = (self.factor @ np.reshape(z, -1)).reshape(self.noise_shape)
        return np.asarray(z, dtype=np.float64)

    def _fresh(self, h: float) -> Increment:
        return Increment(h, self._draw(h), self._draw(h) if self.with_z else None)

    def _bridge(self, piece: Increment, h: float) -> Tuple[Increment, Increment]:
        """Split ``piece`` at ``h`` by sampling the Brownian bridge."""
        q = h / piece.dt
        var = q * (1.0 - q) * piece.dt
        dW = q * piece.dW + self._draw(var)
        dZ = None
        if piece.dZ is not None:
            dZ = q * piece.dZ + self._draw(var)
        head = Increment(h, dW, dZ)
        tail = Increment(piece.dt - h, piece.dW - dW,
                         piece.dZ - dZ if dZ is not None else None)
        return head, tail

    def step(self, t: float, dt: float, u=None) -> Increment:
        """
        Increment over ``[t, t + dt]``, pushed speculatively onto the buffer.

        Future information left by earlier rejections is consumed first:
        whole pieces while they fit, the straddling piece bridged, and
        fresh samples only for time not covered by the stack.
        """
        pieces = []
        remaining = dt
        while self._future and remaining > 0.0:
            piece = self._future.pop()
            if piece.dt - remaining < self.discard_length:
                pieces.append(piece)
                remaining -= piece.dt
            else:
                head, tail = self._bridge(piece, remaining)
                self._future.append(tail)
                pieces.append(head)
                remaining = 0.0
        if remaining > self.discard_length or not pieces:
            pieces.append(self._fresh(remaining))

        dW = pieces[0].dW
        dZ = pieces[0].dZ
        for piece in pieces[1:]:
            dW = dW + piece.dW
            if dZ is not None:
                dZ = dZ + piece.dZ

        self._pieces = pieces
        self.buffer.push(t + dt, dW, dZ)
        return Increment(dt, dW, dZ)

    def accept(self) -> None:
        self._pieces = []

    def reject(self) -> None:
        """
        Undo the attempt in progress.

        The speculative buffer entry is truncated and the Brownian
        information of the attempt goes back on the future stack, so the
        next ``step`` over a shorter interval bridges it.
        """
        self.buffer.truncate(len(self.buffer) - 1)
        pieces = self._pieces
        if self.policy is ControllerKind.RSwM1 and len(pieces) > 1:
            total_dt = sum(p.dt for p in pieces)
            dW = sum(p.dW for p in pieces[1:]) + pieces[0].dW
            dZ = None
            if pieces[0].dZ is not None:
                dZ = sum(p.dZ for p in pieces[1:]) + pieces[0].dZ
            pieces = [Increment(total_dt, dW, dZ)]
        for piece in reversed(pieces):
            if piece.dt >= self.discard_length:
                self._future.append(piece)
        self._pieces = []
        self.maxstacksize = max(self.maxstacksize, len(self._future))


class PoissonNoise:
    """
    Reaction counts for tau-leaping.

    Counts over ``[t, t + dt]`` are Poisson with mean ``rate(u, p, t) * dt``
    per channel. The running total of counts plays the role of ``W``.
    """

    def __init__(self, problem, rng: np.random.Generator, t0: float = 0.0, keep_history: bool = True):
        self.problem = problem
        self.rng = rng
        self.noise_shape = tuple(problem.noise_shape)
        self.buffer = NoiseBuffer(t0, self.noise_shape, keep_history=keep_history)
        self.maxstacksize = 0

    @property
    def W(self) -> np.ndarray:
        return self.buffer.W

    def step(self, t: float, dt: float, u=None) -> Increment:
        rates = self.problem.evaluate_rates(t, u)
        counts = self.rng.poisson(rates * dt).astype(np.float64)
        self.buffer.push(t + dt, counts)
        return Increment(dt, counts)

    def accept(self) -> None:
        pass

    def reject(self) -> None:
        self.buffer.truncate(len(self.buffer) - 1)
