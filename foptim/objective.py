"""Differentiable objectives consumed by the minimizers.

An objective maps a point to ``(value, gradient)``. Deterministic objectives
subclass :class:`DiffFunction`; objectives that may answer differently on
every call (a freshly sampled mini-batch, for instance) subclass
:class:`StochasticDiffFunction`. Batch objectives expose their examples so
they can be evaluated in full or through random mini-batches.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Generic, Optional, Sequence

import numpy as np
import torch

from .space import NumpySpace, T, VectorSpace

Array = np.ndarray


class StochasticDiffFunction(ABC, Generic[T]):
    """Objective whose value and gradient may vary between calls."""

    @abstractmethod
    def calculate(self, x: T) -> tuple[float, T]:
        """Return ``(value, gradient)`` at ``x``."""

    def value_at(self, x: T) -> float:
        return self.calculate(x)[0]

    def gradient_at(self, x: T) -> T:
        return self.calculate(x)[1]

    def __call__(self, x: T) -> float:
        return self.value_at(x)


class DiffFunction(StochasticDiffFunction[T]):
    """Deterministic objective: repeated calls at one point agree."""


def approx_grad(
    fun: Callable[[Array], float], x: Array, eps: float = 1e-6, return_evals: bool = False
) -> Array | tuple[Array, int]:
    """Compute a central-difference gradient approximation.

    Parameters
    ----------
    fun:
        Objective function returning a scalar given x.
    x:
        Point where the gradient is approximated.
    eps:
        Perturbation size for finite differences.
    """
    if eps <= 0:
        raise ValueError("eps must be positive")
    x = np.asarray(x, dtype=float).copy()
    grad = np.zeros_like(x, dtype=float)
    evals = 0
    for i in range(x.size):
        ei = np.zeros_like(x)
        ei.flat[i] = eps
        grad.flat[i] = (fun(x + ei) - fun(x - ei)) / (2.0 * eps)
        evals += 2
    if return_evals:
        return grad, evals
    return grad


class FunctionObjective(DiffFunction[Array]):
    """Wrap a plain ``fun`` (and optional ``grad``) over NumPy arrays.

    Without ``grad`` the gradient falls back to central differences. The
    number of function and gradient evaluations is tracked in ``nfev`` and
    ``njev``.
    """

    def __init__(
        self,
        fun: Callable[[Array], float],
        grad: Optional[Callable[[Array], Array]] = None,
        eps: float = 1e-6,
    ) -> None:
        self.fun = fun
        self.grad = grad
        self.eps = eps
        self.nfev = 0
        self.njev = 0

    def calculate(self, x: Array) -> tuple[float, Array]:
        x = np.asarray(x, dtype=float)
        value = float(self.fun(x))
        self.nfev += 1
        if self.grad is not None:
            self.njev += 1
            return value, np.asarray(self.grad(x), dtype=float)
        grad, evals = approx_grad(self.fun, x, eps=self.eps, return_evals=True)
        self.nfev += int(evals)
        return value, grad


class TorchObjective(DiffFunction[torch.Tensor]):
    """Objective over tensors whose gradient comes from ``torch.autograd``.

    ``fun`` must build a scalar tensor from its input using differentiable
    torch operations.
    """

    def __init__(self, fun: Callable[[torch.Tensor], torch.Tensor]) -> None:
        self.fun = fun

    def calculate(self, x: torch.Tensor) -> tuple[float, torch.Tensor]:
        point = torch.as_tensor(x).detach().clone().requires_grad_(True)
        value = self.fun(point)
        if value.dim() != 0:
            raise ValueError("TorchObjective expects fun to return a scalar tensor.")
        (grad,) = torch.autograd.grad(value, point)
        return float(value.detach()), grad.detach()


class L2Regularized(DiffFunction[T]):
    """Adds ``weight / 2 * ||x||^2`` to a wrapped objective."""

    def __init__(
        self,
        base: StochasticDiffFunction[T],
        weight: float = 1.0,
        space: Optional[VectorSpace[T]] = None,
    ) -> None:
        if weight < 0:
            raise ValueError("Regularization weight must be non-negative.")
        self.base = base
        self.weight = float(weight)
        self.space = space if space is not None else NumpySpace()

    def calculate(self, x: T) -> tuple[float, T]:
        value, grad = self.base.calculate(x)
        norm = self.space.norm(x)
        penalty = 0.5 * self.weight * norm * norm
        return value + penalty, self.space.axpy(self.weight, x, grad)


def with_l2_regularization(
    f: StochasticDiffFunction[T],
    weight: float = 1.0,
    space: Optional[VectorSpace[T]] = None,
) -> L2Regularized[T]:
    """Return ``f`` with an L2 penalty of strength ``weight`` folded in."""
    return L2Regularized(f, weight, space)


class BatchDiffFunction(DiffFunction[T]):
    """Objective that is a sum over indexed examples.

    As a :class:`DiffFunction` it evaluates the full batch.
    """

    @property
    @abstractmethod
    def full_range(self) -> Sequence[int]:
        """Indices of every example."""

    @abstractmethod
    def calculate_batch(self, x: T, batch: Sequence[int]) -> tuple[float, T]:
        """Return ``(value, gradient)`` restricted to ``batch``."""

    def calculate(self, x: T) -> tuple[float, T]:
        return self.calculate_batch(x, self.full_range)

    def with_random_batches(
        self,
        size: int,
        rng: Optional[np.random.Generator] = None,
        space: Optional[VectorSpace[T]] = None,
    ) -> "RandomBatchFunction[T]":
        """View this objective as a stochastic one sampling ``size`` examples per call."""
        return RandomBatchFunction(self, size, rng, space)


class RandomBatchFunction(StochasticDiffFunction[T]):
    """Evaluates a batch objective on a fresh random mini-batch each call.

    Values are rescaled by ``len(full_range) / batch_size`` so they estimate
    the full-batch objective.
    """

    def __init__(
        self,
        base: BatchDiffFunction[T],
        size: int,
        rng: Optional[np.random.Generator] = None,
        space: Optional[VectorSpace[T]] = None,
    ) -> None:
        if size <= 0:
            raise ValueError("Batch size must be positive.")
        self.base = base
        self.size = int(size)
        self.rng = rng if rng is not None else np.random.default_rng()
        self.space = space if space is not None else NumpySpace()

    def sample(self) -> list[int]:
        indices = np.asarray(self.base.full_range)
        if self.size >= indices.size:
            return indices.tolist()
        return self.rng.choice(indices, size=self.size, replace=False).tolist()

    def calculate(self, x: T) -> tuple[float, T]:
        batch = self.sample()
        value, grad = self.base.calculate_batch(x, batch)
        factor = len(self.base.full_range) / len(batch)
        return value * factor, self.space.scale(grad, factor)


class SumBatchObjective(BatchDiffFunction[Array]):
    """Batch objective built from per-example ``(value, gradient)`` callables."""

    def __init__(self, terms: Sequence[Callable[[Array], tuple[float, Array]]]) -> None:
        if len(terms) == 0:
            raise ValueError("SumBatchObjective needs at least one term.")
        self.terms = list(terms)

    @property
    def full_range(self) -> Sequence[int]:
        return range(len(self.terms))

    def calculate_batch(self, x: Array, batch: Sequence[int]) -> tuple[float, Array]:
        x = np.asarray(x, dtype=float)
        value = 0.0
        grad = np.zeros_like(x)
        for index in batch:
            term_value, term_grad = self.terms[index](x)
            value += float(term_value)
            grad += np.asarray(term_grad, dtype=float)
        return value, grad


__all__ = [
    "BatchDiffFunction",
    "DiffFunction",
    "FunctionObjective",
    "L2Regularized",
    "RandomBatchFunction",
    "StochasticDiffFunction",
    "SumBatchObjective",
    "TorchObjective",
    "approx_grad",
    "with_l2_regularization",
]
