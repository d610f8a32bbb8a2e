"""Vector-space capabilities the optimizers are parameterized over.

The iteration engine never does arithmetic on points itself; it only asks
for norms. Strategies use the remaining operations, and coordinate-wise
strategies (AdaGrad, OWL-QN) additionally rely on the element-wise ones.
Two backends are provided: NumPy arrays and PyTorch tensors.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

import numpy as np
import torch

T = TypeVar("T")


class VectorSpace(ABC, Generic[T]):
    """Normed coordinate space over an opaque vector type ``T``."""

    @abstractmethod
    def norm(self, x: T, ord: float = 2) -> float:
        """Return the ``ord``-norm of ``x`` as a Python float."""

    @abstractmethod
    def dot(self, a: T, b: T) -> float:
        """Inner product of two vectors."""

    @abstractmethod
    def add(self, a: T, b: T) -> T:
        """Element-wise sum ``a + b``."""

    @abstractmethod
    def scale(self, x: T, alpha: float) -> T:
        """Return ``alpha * x``."""

    @abstractmethod
    def zeros_like(self, x: T) -> T:
        """Zero vector with the shape and dtype of ``x``."""

    @abstractmethod
    def copy(self, x: T) -> T:
        """Independent copy of ``x``."""

    @abstractmethod
    def mul(self, a: T, b: T) -> T:
        """Element-wise product."""

    @abstractmethod
    def div(self, a: T, b: T) -> T:
        """Element-wise quotient."""

    @abstractmethod
    def sqrt(self, x: T) -> T:
        """Element-wise square root."""

    @abstractmethod
    def sign(self, x: T) -> T:
        """Element-wise sign, with ``sign(0) == 0``."""

    @abstractmethod
    def abs(self, x: T) -> T:
        """Element-wise absolute value."""

    @abstractmethod
    def full_like(self, x: T, value: float) -> T:
        """Vector shaped like ``x`` filled with ``value``."""

    @abstractmethod
    def positive_mask(self, x: T) -> T:
        """1.0 where ``x > 0`` and 0.0 elsewhere, as a vector of ``x``'s type."""

    @abstractmethod
    def is_finite(self, x: T) -> bool:
        """True when every coordinate of ``x`` is finite."""

    # Derived operations

    def sub(self, a: T, b: T) -> T:
        return self.add(a, self.scale(b, -1.0))

    def axpy(self, alpha: float, x: T, y: T) -> T:
        """Return ``y + alpha * x``."""
        return self.add(y, self.scale(x, alpha))

    def add_scalar(self, x: T, value: float) -> T:
        return self.add(x, self.full_like(x, value))

    def maximum(self, x: T, floor: float) -> T:
        """Element-wise ``max(x, floor)``."""
        shifted = self.add_scalar(x, -floor)
        return self.add_scalar(self.mul(shifted, self.positive_mask(shifted)), floor)


class NumpySpace(VectorSpace[np.ndarray]):
    """Dense float64 NumPy vectors."""

    def _as_array(self, x: Any) -> np.ndarray:
        return np.asarray(x, dtype=float)

    def norm(self, x: np.ndarray, ord: float = 2) -> float:
        return float(np.linalg.norm(self._as_array(x).ravel(), ord=ord))

    def dot(self, a: np.ndarray, b: np.ndarray) -> float:
        return float(np.vdot(self._as_array(a), self._as_array(b)))

    def add(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        return self._as_array(a) + self._as_array(b)

    def scale(self, x: np.ndarray, alpha: float) -> np.ndarray:
        return float(alpha) * self._as_array(x)

    def zeros_like(self, x: np.ndarray) -> np.ndarray:
        return np.zeros_like(self._as_array(x))

    def copy(self, x: np.ndarray) -> np.ndarray:
        return self._as_array(x).copy()

    def mul(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        return self._as_array(a) * self._as_array(b)

    def div(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        return self._as_array(a) / self._as_array(b)

    def sqrt(self, x: np.ndarray) -> np.ndarray:
        return np.sqrt(self._as_array(x))

    def sign(self, x: np.ndarray) -> np.ndarray:
        return np.sign(self._as_array(x))

    def abs(self, x: np.ndarray) -> np.ndarray:
        return np.abs(self._as_array(x))

    def full_like(self, x: np.ndarray, value: float) -> np.ndarray:
        return np.full_like(self._as_array(x), float(value))

    def positive_mask(self, x: np.ndarray) -> np.ndarray:
        return (self._as_array(x) > 0).astype(float)

    def is_finite(self, x: np.ndarray) -> bool:
        return bool(np.all(np.isfinite(self._as_array(x))))


class TorchSpace(VectorSpace[torch.Tensor]):
    """Real PyTorch tensors of any shape, treated as flat vectors.

    Inputs are detached so optimizer arithmetic never extends an autograd
    graph held by the caller.
    """

    def __init__(self, dtype: torch.dtype | None = None) -> None:
        self.dtype = dtype

    def _as_tensor(self, x: Any) -> torch.Tensor:
        tensor = torch.as_tensor(x)
        if self.dtype is not None and tensor.dtype != self.dtype:
            tensor = tensor.to(self.dtype)
        return tensor.detach()

    def norm(self, x: torch.Tensor, ord: float = 2) -> float:
        return float(torch.linalg.vector_norm(self._as_tensor(x), ord=ord))

    def dot(self, a: torch.Tensor, b: torch.Tensor) -> float:
        return float(torch.sum(self._as_tensor(a) * self._as_tensor(b)))

    def add(self, a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
        return self._as_tensor(a) + self._as_tensor(b)

    def scale(self, x: torch.Tensor, alpha: float) -> torch.Tensor:
        return self._as_tensor(x) * float(alpha)

    def zeros_like(self, x: torch.Tensor) -> torch.Tensor:
        return torch.zeros_like(self._as_tensor(x))

    def copy(self, x: torch.Tensor) -> torch.Tensor:
        return self._as_tensor(x).clone()

    def mul(self, a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
        return self._as_tensor(a) * self._as_tensor(b)

    def div(self, a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
        return self._as_tensor(a) / self._as_tensor(b)

    def sqrt(self, x: torch.Tensor) -> torch.Tensor:
        return torch.sqrt(self._as_tensor(x))

    def sign(self, x: torch.Tensor) -> torch.Tensor:
        return torch.sign(self._as_tensor(x))

    def abs(self, x: torch.Tensor) -> torch.Tensor:
        return torch.abs(self._as_tensor(x))

    def full_like(self, x: torch.Tensor, value: float) -> torch.Tensor:
        return torch.full_like(self._as_tensor(x), float(value))

    def positive_mask(self, x: torch.Tensor) -> torch.Tensor:
        tensor = self._as_tensor(x)
        return (tensor > 0).to(tensor.dtype)

    def is_finite(self, x: torch.Tensor) -> bool:
        return bool(torch.all(torch.isfinite(self._as_tensor(x))))


__all__ = ["NumpySpace", "T", "TorchSpace", "VectorSpace"]
