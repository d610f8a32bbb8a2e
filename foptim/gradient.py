"""Stochastic gradient strategies: plain SGD and AdaGrad with L2 or L1 penalties."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Optional

from .core import FirstOrderMinimizer, State
from .objective import StochasticDiffFunction
from .space import T, VectorSpace


class StochasticGradientDescent(FirstOrderMinimizer[T]):
    """Gradient descent with a step decaying as ``(iter + 1) ** (-2/3)``.

    Suitable for stochastic objectives; keeps no history.
    """

    def __init__(
        self,
        default_step_size: float,
        max_iter: int = -1,
        tolerance: float = 1e-5,
        improvement_tol: float = 1e-4,
        min_improvement_window: int = 50,
        number_of_improvement_failures: int = 1,
        space: Optional[VectorSpace[T]] = None,
    ) -> None:
        if default_step_size <= 0:
            raise ValueError("Step size must be positive.")
        super().__init__(
            max_iter=max_iter,
            tolerance=tolerance,
            improvement_tol=improvement_tol,
            min_improvement_window=min_improvement_window,
            number_of_improvement_failures=number_of_improvement_failures,
            space=space,
        )
        self.default_step_size = float(default_step_size)

    def initial_history(self, f: StochasticDiffFunction[T], init: T) -> Any:
        return None

    def update_history(
        self, new_x: T, new_grad: T, new_value: float, old_state: State[T]
    ) -> Any:
        return None

    def choose_descent_direction(self, state: State[T]) -> T:
        return self.space.scale(state.grad, -1.0)

    def determine_step_size(
        self, state: State[T], f: StochasticDiffFunction[T], direction: T
    ) -> float:
        return self.default_step_size / (state.iter + 1) ** (2.0 / 3.0)

    def take_step(self, state: State[T], direction: T, step_size: float) -> T:
        return self.space.axpy(step_size, direction, state.x)


class SimpleSGD(StochasticGradientDescent[T]):
    """Gradient descent with a constant step size."""

    def __init__(self, step_size: float, max_iter: int = -1, **kwargs: Any) -> None:
        super().__init__(step_size, max_iter=max_iter, **kwargs)

    def determine_step_size(
        self, state: State[T], f: StochasticDiffFunction[T], direction: T
    ) -> float:
        return self.default_step_size


@dataclass(frozen=True)
class AdaGradHistory(Generic[T]):
    """Running sum of squared gradients."""

    sum_of_squared_gradients: T


class AdaptiveGradientDescent(StochasticGradientDescent[T]):
    """AdaGrad: per-coordinate steps scaled by accumulated squared gradients.

    After ``max_age`` iterations the accumulator decays geometrically so old
    gradients stop dominating. During the first ``warmup_iters`` iterations
    the step is reduced a thousandfold.
    """

    max_age = 1000.0
    warmup_iters = 8

    def __init__(
        self,
        eta: float = 4.0,
        max_iter: int = 100,
        regularization: float = 1.0,
        delta: float = 1e-4,
        depth_charge_steps: int = 0,
        **kwargs: Any,
    ) -> None:
        super().__init__(eta, max_iter=max_iter, **kwargs)
        if regularization < 0:
            raise ValueError("Regularization must be non-negative.")
        self.regularization = float(regularization)
        self.delta = float(delta)
        self.num_depth_charge_steps = int(depth_charge_steps)

    def initial_history(
        self, f: StochasticDiffFunction[T], init: T
    ) -> AdaGradHistory[T]:
        return AdaGradHistory(self.space.zeros_like(init))

    def update_history(
        self, new_x: T, new_grad: T, new_value: float, old_state: State[T]
    ) -> AdaGradHistory[T]:
        space = self.space
        new_g = space.mul(old_state.grad, old_state.grad)
        old_sum = old_state.history.sum_of_squared_gradients
        if old_state.iter > self.max_age:
            summed = space.axpy(
                (self.max_age - 1) / self.max_age, old_sum, space.scale(new_g, 1 / self.max_age)
            )
        else:
            summed = space.add(new_g, old_sum)
        return AdaGradHistory(summed)

    def determine_step_size(
        self, state: State[T], f: StochasticDiffFunction[T], direction: T
    ) -> float:
        if state.iter < self.warmup_iters:
            return 0.001 * self.default_step_size
        return self.default_step_size

    def _root_sum(self, state: State[T], shift: float = 0.0) -> T:
        space = self.space
        total = space.add(
            state.history.sum_of_squared_gradients, space.mul(state.grad, state.grad)
        )
        if shift:
            total = space.add_scalar(total, shift)
        return space.sqrt(total)


class AdaptiveGradientDescentL2(AdaptiveGradientDescent[T]):
    """AdaGrad with the proximal step for ``regularization / 2 * ||x||^2``."""

    def take_step(self, state: State[T], direction: T, step_size: float) -> T:
        space = self.space
        s = self._root_sum(state)
        new_x = space.axpy(step_size, direction, space.mul(state.x, s))
        denom = space.add_scalar(s, self.delta + self.regularization * step_size)
        return space.div(new_x, denom)

    def adjust(self, new_x: T, new_grad: T, new_value: float) -> tuple[float, T]:
        space = self.space
        value = new_value + space.dot(new_x, new_x) * self.regularization / 2.0
        return value, space.axpy(self.regularization, new_x, new_grad)


class AdaptiveGradientDescentL1(AdaptiveGradientDescent[T]):
    """AdaGrad with soft-thresholding for ``regularization * ||x||_1``."""

    def __init__(self, eta: float = 4.0, max_iter: int = 100, delta: float = 1e-5, **kwargs: Any) -> None:
        super().__init__(eta, max_iter=max_iter, delta=delta, **kwargs)

    def take_step(self, state: State[T], direction: T, step_size: float) -> T:
        space = self.space
        s = self._root_sum(state, shift=self.delta)
        half = space.add(state.x, space.div(space.scale(direction, step_size), s))
        threshold = space.div(
            space.full_like(s, self.regularization * step_size), s
        )
        magnitude = space.maximum(space.sub(space.abs(half), threshold), 0.0)
        return space.mul(space.sign(half), magnitude)

    def adjust(self, new_x: T, new_grad: T, new_value: float) -> tuple[float, T]:
        space = self.space
        value = new_value + self.regularization * space.norm(new_x, ord=1)
        return value, space.axpy(self.regularization, space.sign(new_x), new_grad)


__all__ = [
    "AdaGradHistory",
    "AdaptiveGradientDescent",
    "AdaptiveGradientDescentL1",
    "AdaptiveGradientDescentL2",
    "SimpleSGD",
    "StochasticGradientDescent",
]
