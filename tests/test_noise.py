import numpy as np
import pytest

from sde_integrator import ControllerKind, JumpProblem, NoiseBuffer, PoissonNoise, WienerNoise


def test_buffer_cumulative_sum_matches_W():
    buffer = NoiseBuffer(0.0, (3,))
    rng = np.random.default_rng(0)
    increments = rng.standard_normal((20, 3))
    for i, dW in enumerate(increments):
        buffer.push(0.1 * (i + 1), dW)

    times, Ws = buffer.path()
    assert len(buffer) == 20
    assert times[0] == 0.0
    np.testing.assert_allclose(Ws[0], 0.0)
    np.testing.assert_allclose(Ws[1:], np.cumsum(increments, axis=0), rtol=1e-12, atol=1e-12)
    np.testing.assert_allclose(buffer.W, increments.sum(axis=0), rtol=1e-12, atol=1e-12)


def test_buffer_truncate_drops_top_entries():
    buffer = NoiseBuffer(0.0, ())
    for k in range(5):
        buffer.push(k + 1.0, np.array(float(k + 1)))
    buffer.truncate(3)
    assert len(buffer) == 3
    assert buffer.W == pytest.approx(6.0)
    buffer.push(4.0, np.array(10.0))
    assert buffer.W == pytest.approx(16.0)


def test_buffer_without_history_keeps_count_and_total():
    buffer = NoiseBuffer(0.0, ())
    for k in range(10):
        buffer.push(k + 1.0, np.array(1.0))
    kept = NoiseBuffer(0.0, (), keep_history=False)
    for k in range(10):
        kept.push(k + 1.0, np.array(1.0))
    assert len(kept) == 10
    assert kept.W == pytest.approx(buffer.W)
    kept.truncate(9)
    assert kept.W == pytest.approx(9.0)
    with pytest.raises(ValueError):
        kept.truncate(2)


def test_increment_variance_matches_step(rng):
    noise = WienerNoise((20000,), rng)
    inc = noise.step(0.0, 0.25)
    noise.accept()
    assert inc.dW.shape == (20000,)
    assert inc.dZ is None
    assert np.var(inc.dW) == pytest.approx(0.25, rel=0.05)
    assert abs(np.mean(inc.dW)) < 0.02


def test_scalar_noise_shape(rng):
    noise = WienerNoise((), rng, with_z=True)
    inc = noise.step(0.0, 0.1)
    assert np.ndim(inc.dW) == 0
    assert np.ndim(inc.dZ) == 0


def test_rejected_increment_never_reaches_buffer(rng):
    noise = WienerNoise((), rng)
    first = noise.step(0.0, 0.5)
    noise.accept()
    rejected = noise.step(0.5, 1.0)
    noise.reject()
    assert len(noise.buffer) == 1
    assert float(noise.W) == pytest.approx(float(first.dW))

    retry = noise.step(0.5, 0.5)
    noise.accept()
    _, Ws = noise.buffer.path()
    assert len(noise.buffer) == 2
    assert float(retry.dW) != float(rejected.dW)
    np.testing.assert_allclose(Ws[-1], first.dW + retry.dW)


@pytest.mark.parametrize("policy", [ControllerKind.RSwM1, ControllerKind.RSwM3])
def test_retry_keeps_the_rejected_brownian_information(rng, policy):
    noise = WienerNoise((2,), rng, with_z=True, policy=policy)
    rejected = noise.step(0.0, 1.0)
    noise.reject()
    assert noise.maxstacksize == 1

    head = noise.step(0.0, 0.4)
    noise.accept()
    tail = noise.step(0.4, 0.6)
    noise.accept()
    assert noise.stack_size == 0

    np.testing.assert_allclose(head.dW + tail.dW, rejected.dW, rtol=1e-12, atol=1e-12)
    np.testing.assert_allclose(head.dZ + tail.dZ, rejected.dZ, rtol=1e-12, atol=1e-12)
    np.testing.assert_allclose(noise.W, rejected.dW, rtol=1e-12, atol=1e-12)


def test_bridge_samples_are_fresh_not_rescaled():
    # The same rejected increment bridged twice with different streams differs
    draws = []
    for seed in (1, 2):
        noise = WienerNoise((), np.random.default_rng(seed))
        noise._future.append(noise._fresh(1.0)._replace(dW=np.array(1.0)))
        draws.append(float(noise.step(0.0, 0.5).dW))
    assert draws[0] != draws[1]
    assert all(d != 0.5 for d in draws)


def test_bridge_statistics():
    # Conditioned on W(1) = 1, W(1/4) ~ N(1/4, 3/16)
    rng = np.random.default_rng(99)
    samples = []
    for _ in range(4000):
        noise = WienerNoise((), rng)
        noise._future.append(noise._fresh(1.0)._replace(dW=np.array(1.0)))
        samples.append(float(noise.step(0.0, 0.25).dW))
    samples = np.array(samples)
    assert np.mean(samples) == pytest.approx(0.25, abs=0.03)
    assert np.var(samples) == pytest.approx(3.0 / 16.0, rel=0.1)


@pytest.mark.parametrize("policy, expected", [(ControllerKind.RSwM3, 3), (ControllerKind.RSwM1, 2)])
def test_rejection_after_consuming_several_pieces(rng, policy, expected):
    noise = WienerNoise((), rng, policy=policy)
    first = noise.step(0.0, 1.0)
    noise.reject()
    noise.step(0.0, 0.5)
    noise.reject()
    assert noise.stack_size == 2

    # Takes the 0.5 head whole and bridges the 0.5 tail
    noise.step(0.0, 0.75)
    noise.reject()
    assert noise.stack_size == expected
    assert noise.maxstacksize == expected
    assert noise._future[-1].dt == pytest.approx(0.5 if expected == 3 else 0.75)

    # Whatever the policy, the full interval still carries the first draw
    total = noise.step(0.0, 1.0)
    noise.accept()
    assert noise.stack_size == 0
    assert float(total.dW) == pytest.approx(float(first.dW), abs=1e-12)


def test_correlated_noise_covariance():
    factor = np.linalg.cholesky(np.array([[1.0, 0.8], [0.8, 1.0]]))
    noise = WienerNoise((2,), np.random.default_rng(3), factor=factor)
    samples = np.array([noise._draw(1.0) for _ in range(20000)])
    assert np.corrcoef(samples.T)[0, 1] == pytest.approx(0.8, abs=0.03)


def test_poisson_counts_follow_rates(rng):
    problem = JumpProblem(lambda u, p, t: np.array([0.0, 5.0]), np.array([10.0]),
                          stoichiometry=np.array([[1.0, -1.0]]))
    noise = PoissonNoise(problem, rng)
    counts = np.array([noise.step(0.0, 2.0, problem.initial_state()).dW for _ in range(2000)])
    assert np.all(counts[:, 0] == 0)
    assert np.mean(counts[:, 1]) == pytest.approx(10.0, rel=0.05)
