import numpy as np
import pytest
import torch

from foptim import (
    FunctionObjective,
    L2Regularized,
    NumpySpace,
    RandomBatchFunction,
    SumBatchObjective,
    TorchObjective,
    TorchSpace,
    approx_grad,
    with_l2_regularization,
)


def test_approx_grad_matches_analytic():
    def f(x):
        return float(np.sin(x[0]) + x[1] ** 3)

    x = np.array([0.3, -1.2])
    expected = np.array([np.cos(0.3), 3 * 1.2**2])
    assert np.allclose(approx_grad(f, x), expected, atol=1e-6)
    grad, evals = approx_grad(f, x, return_evals=True)
    assert evals == 4


def test_approx_grad_rejects_non_positive_eps():
    with pytest.raises(ValueError):
        approx_grad(lambda x: 0.0, np.zeros(1), eps=0.0)


def test_function_objective_counts_evaluations():
    f = FunctionObjective(lambda x: float(x @ x), lambda x: 2 * x)
    value, grad = f.calculate(np.array([1.0, 2.0]))
    assert value == 5.0
    assert np.allclose(grad, [2.0, 4.0])
    assert (f.nfev, f.njev) == (1, 1)
    assert f(np.array([1.0, 0.0])) == 1.0
    assert np.allclose(f.gradient_at(np.array([0.5, 0.0])), [1.0, 0.0])


def test_function_objective_finite_difference_fallback():
    f = FunctionObjective(lambda x: float(x @ x))
    _, grad = f.calculate(np.array([1.0, -1.0]))
    assert np.allclose(grad, [2.0, -2.0], atol=1e-6)
    assert f.njev == 0
    assert f.nfev == 5


def test_torch_objective_uses_autograd():
    f = TorchObjective(lambda x: torch.sum(x**3))
    value, grad = f.calculate(torch.tensor([1.0, 2.0], dtype=torch.float64))
    assert value == pytest.approx(9.0)
    assert torch.allclose(grad, torch.tensor([3.0, 12.0], dtype=torch.float64))
    assert not grad.requires_grad


def test_torch_objective_requires_scalar():
    f = TorchObjective(lambda x: x * 2)
    with pytest.raises(ValueError):
        f.calculate(torch.ones(2))


def test_l2_regularization_adds_penalty():
    base = FunctionObjective(lambda x: float(x.sum()), lambda x: np.ones_like(x))
    f = with_l2_regularization(base, 2.0)
    assert isinstance(f, L2Regularized)
    value, grad = f.calculate(np.array([1.0, 2.0]))
    assert value == pytest.approx(3.0 + 5.0)
    assert np.allclose(grad, [3.0, 5.0])
    with pytest.raises(ValueError):
        with_l2_regularization(base, -1.0)


def _terms(centers):
    def term(c):
        return lambda x: (0.5 * float((x - c) @ (x - c)), x - c)

    return SumBatchObjective([term(c) for c in centers])


def test_sum_batch_objective_full_and_partial():
    centers = [np.array([1.0]), np.array([3.0]), np.array([-2.0])]
    f = _terms(centers)
    assert list(f.full_range) == [0, 1, 2]
    value, grad = f.calculate(np.zeros(1))
    assert value == pytest.approx(0.5 * (1 + 9 + 4))
    assert np.allclose(grad, [-2.0])
    value, grad = f.calculate_batch(np.zeros(1), [1])
    assert value == pytest.approx(4.5)
    assert np.allclose(grad, [-3.0])


def test_sum_batch_objective_rejects_empty():
    with pytest.raises(ValueError):
        SumBatchObjective([])


def test_random_batches_sample_without_replacement(rng):
    centers = [np.array([float(i)]) for i in range(10)]
    stochastic = _terms(centers).with_random_batches(5, rng)
    assert isinstance(stochastic, RandomBatchFunction)
    batch = stochastic.sample()
    assert len(batch) == 5
    assert len(set(batch)) == 5
    assert stochastic.calculate(np.zeros(1))[1].shape == (1,)


def test_random_batch_estimate_scales_by_data_fraction():
    centers = [np.array([float(i)]) for i in range(10)]
    stochastic = _terms(centers).with_random_batches(5, np.random.default_rng(3))
    twin = _terms(centers).with_random_batches(5, np.random.default_rng(3))
    batch = twin.sample()
    value, grad = stochastic.calculate(np.zeros(1))
    # 10 examples, 5 per batch: the batch sum is doubled.
    assert value == pytest.approx(2.0 * sum(0.5 * centers[i][0] ** 2 for i in batch))
    assert grad[0] == pytest.approx(-2.0 * sum(centers[i][0] for i in batch))


def test_random_batches_larger_than_data_use_everything(rng):
    f = _terms([np.array([1.0]), np.array([2.0])])
    stochastic = f.with_random_batches(10, rng)
    assert sorted(stochastic.sample()) == [0, 1]
    assert stochastic.calculate(np.zeros(1))[0] == pytest.approx(f.calculate(np.zeros(1))[0])
    with pytest.raises(ValueError):
        f.with_random_batches(0)


@pytest.mark.parametrize(
    "space, make",
    [
        (NumpySpace(), lambda v: np.array(v, dtype=float)),
        (TorchSpace(), lambda v: torch.tensor(v, dtype=torch.float64)),
    ],
)
def test_vector_space_operations(space, make):
    a = make([3.0, -4.0, 0.0])
    b = make([1.0, 2.0, 2.0])
    assert space.norm(a) == pytest.approx(5.0)
    assert space.norm(a, ord=1) == pytest.approx(7.0)
    assert space.dot(a, b) == pytest.approx(-5.0)
    assert np.allclose(np.asarray(space.axpy(2.0, b, a)), [5.0, 0.0, 4.0])
    assert np.allclose(np.asarray(space.sub(a, b)), [2.0, -6.0, -2.0])
    assert np.allclose(np.asarray(space.sign(a)), [1.0, -1.0, 0.0])
    assert np.allclose(np.asarray(space.positive_mask(a)), [1.0, 0.0, 0.0])
    assert np.allclose(np.asarray(space.maximum(a, 0.0)), [3.0, 0.0, 0.0])
    assert np.allclose(np.asarray(space.div(space.mul(a, b), b)), [3.0, -4.0, 0.0])
    assert np.allclose(np.asarray(space.sqrt(space.abs(a))), [np.sqrt(3.0), 2.0, 0.0])
    assert np.allclose(np.asarray(space.add_scalar(space.zeros_like(a), 1.5)), [1.5] * 3)
    assert space.is_finite(a)
    assert not space.is_finite(make([np.nan, 1.0, 0.0]))
    copied = space.copy(a)
    assert copied is not a
