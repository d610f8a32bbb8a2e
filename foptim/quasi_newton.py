"""Limited-memory quasi-Newton strategies (L-BFGS and OWL-QN)."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Generic, Optional

from .core import FirstOrderMinimizer, State
from .exceptions import NaNHistory, StepSizeUnderflow
from .line_search import backtracking_armijo, strong_wolfe
from .objective import StochasticDiffFunction
from .space import T, VectorSpace

# Smallest acceptable ``alpha * |grad|`` for an L-BFGS step.
MIN_STEP_NORM = 1e-10

# Curvature pairs with s.y at or below this are not stored.
MIN_CURVATURE = 1e-12


@dataclass(frozen=True)
class ApproximateInverseHessian(Generic[T]):
    """Inverse Hessian approximation from the ``m`` most recent curvature pairs.

    Pairs are stored newest first.
    """

    m: int
    space: VectorSpace[T]
    memory_step: tuple[T, ...] = ()
    memory_grad_delta: tuple[T, ...] = ()

    @property
    def history_length(self) -> int:
        return len(self.memory_step)

    def updated(self, step: T, grad_delta: T) -> "ApproximateInverseHessian[T]":
        """History with ``(step, grad_delta)`` prepended.

        Pairs without positive curvature are dropped.
        """
        if self.space.dot(step, grad_delta) <= MIN_CURVATURE:
            return self
        return ApproximateInverseHessian(
            self.m,
            self.space,
            ((step,) + self.memory_step)[: self.m],
            ((grad_delta,) + self.memory_grad_delta)[: self.m],
        )

    def apply(self, grad: T) -> T:
        """Two-loop recursion returning ``H @ grad``."""
        space = self.space
        if self.history_length > 0:
            prev_step = self.memory_step[0]
            prev_grad_step = self.memory_grad_delta[0]
            sy = space.dot(prev_step, prev_grad_step)
            yy = space.dot(prev_grad_step, prev_grad_step)
            if not (math.isfinite(sy) and math.isfinite(yy)) or yy == 0:
                raise NaNHistory("Curvature pair with s.y = %s" % sy)
            diag = sy / yy
        else:
            diag = 1.0

        direction = space.copy(grad)
        alphas = []
        rhos = []
        for step, grad_delta in zip(self.memory_step, self.memory_grad_delta):
            rho = space.dot(step, grad_delta)
            if rho == 0:
                raise NaNHistory("Degenerate curvature pair")
            alpha_i = space.dot(step, direction) / rho
            direction = space.axpy(-alpha_i, grad_delta, direction)
            alphas.append(alpha_i)
            rhos.append(rho)

        direction = space.scale(direction, diag)

        for i in reversed(range(self.history_length)):
            beta = space.dot(self.memory_grad_delta[i], direction) / rhos[i]
            direction = space.axpy(alphas[i] - beta, self.memory_step[i], direction)

        if not space.is_finite(direction):
            raise NaNHistory("Non-finite quasi-Newton direction")
        return direction


class LBFGS(FirstOrderMinimizer[T]):
    """Limited-memory BFGS with a strong Wolfe line search.

    Args:
        max_iter: Iteration cap, negative for unbounded.
        m: Number of curvature pairs remembered.
        tolerance: Relative gradient tolerance.
    """

    def __init__(
        self,
        max_iter: int = -1,
        m: int = 10,
        tolerance: float = 1e-9,
        space: Optional[VectorSpace[T]] = None,
        **kwargs,
    ) -> None:
        if m <= 0:
            raise ValueError("Memory parameter m must be positive.")
        super().__init__(max_iter=max_iter, tolerance=tolerance, space=space, **kwargs)
        self.m = int(m)

    def initial_history(
        self, f: StochasticDiffFunction[T], init: T
    ) -> ApproximateInverseHessian[T]:
        return ApproximateInverseHessian(self.m, self.space)

    def choose_descent_direction(self, state: State[T]) -> T:
        return self.space.scale(state.history.apply(state.grad), -1.0)

    def determine_step_size(
        self, state: State[T], f: StochasticDiffFunction[T], direction: T
    ) -> float:
        space = self.space
        x = state.x

        def phi(alpha: float) -> tuple[float, float]:
            value, grad = f.calculate(space.axpy(alpha, direction, x))
            return value, space.dot(grad, direction)

        grad_norm = space.norm(state.grad)
        dir_norm = space.norm(direction)
        alpha0 = 1.0 / dir_norm if state.iter == 0 else 1.0
        alpha = strong_wolfe(phi, alpha0, grad_norm=grad_norm, dir_norm=dir_norm)
        if alpha * grad_norm < MIN_STEP_NORM:
            raise StepSizeUnderflow("Step %.3e too small for gradient norm %.3e" % (alpha, grad_norm))
        return alpha

    def take_step(self, state: State[T], direction: T, step_size: float) -> T:
        return self.space.axpy(step_size, direction, state.x)

    def update_history(
        self, new_x: T, new_grad: T, new_value: float, old_state: State[T]
    ) -> ApproximateInverseHessian[T]:
        space = self.space
        return old_state.history.updated(
            space.sub(new_x, old_state.x), space.sub(new_grad, old_state.grad)
        )


class OWLQN(LBFGS[T]):
    """Orthant-wise limited-memory quasi-Newton for ``f(x) + l1_reg * ||x||_1``.

    The smooth part's curvature drives the L-BFGS history; the L1 term enters
    through a pseudo-gradient and a projection keeping each step inside the
    current orthant.
    """

    def __init__(
        self,
        max_iter: int = -1,
        m: int = 10,
        l1_reg: float = 1.0,
        tolerance: float = 1e-8,
        space: Optional[VectorSpace[T]] = None,
        **kwargs,
    ) -> None:
        if l1_reg < 0:
            raise ValueError("l1_reg must be non-negative.")
        super().__init__(max_iter=max_iter, m=m, tolerance=tolerance, space=space, **kwargs)
        self.l1_reg = float(l1_reg)

    def choose_descent_direction(self, state: State[T]) -> T:
        space = self.space
        descent_dir = space.scale(state.history.apply(state.adjusted_gradient), -1.0)
        # Keep only coordinates pointing against the pseudo-gradient.
        agrees = space.positive_mask(
            space.scale(space.mul(descent_dir, state.adjusted_gradient), -1.0)
        )
        return space.mul(descent_dir, agrees)

    def determine_step_size(
        self, state: State[T], f: StochasticDiffFunction[T], direction: T
    ) -> float:
        space = self.space

        def phi(alpha: float) -> tuple[float, float]:
            new_x = self.take_step(state, direction, alpha)
            value, grad = f.calculate(new_x)
            adj_value, adj_grad = self.adjust(new_x, grad, value)
            return adj_value, space.dot(adj_grad, direction)

        first = state.iter < 1
        alpha0 = 0.5 / space.norm(state.adjusted_gradient) if first else 1.0
        return backtracking_armijo(phi, alpha0, rho=0.1 if first else 0.5)

    def take_step(self, state: State[T], direction: T, step_size: float) -> T:
        space = self.space
        stepped = space.axpy(step_size, direction, state.x)
        orthant = self.compute_orthant(state.x, state.adjusted_gradient)
        same_sign = space.positive_mask(space.mul(space.sign(stepped), orthant))
        return space.mul(stepped, same_sign)

    def compute_orthant(self, x: T, grad: T) -> T:
        """Sign of ``x``, or of ``-grad`` on coordinates where ``x`` is zero."""
        space = self.space
        x_sign = space.sign(x)
        at_zero = space.add_scalar(space.scale(space.abs(x_sign), -1.0), 1.0)
        return space.add(x_sign, space.mul(at_zero, space.sign(space.scale(grad, -1.0))))

    def adjust(self, new_x: T, new_grad: T, new_value: float) -> tuple[float, T]:
        space = self.space
        adj_value = new_value + self.l1_reg * space.norm(new_x, ord=1)

        grad_plus = space.add_scalar(new_grad, self.l1_reg)
        grad_minus = space.add_scalar(new_grad, -self.l1_reg)
        positive = space.positive_mask(new_x)
        negative = space.positive_mask(space.scale(new_x, -1.0))
        at_zero = space.add_scalar(space.scale(space.add(positive, negative), -1.0), 1.0)
        # At zero move only if one of the one-sided derivatives allows descent.
        zero_value = space.add(
            space.mul(space.positive_mask(grad_minus), grad_minus),
            space.mul(space.positive_mask(space.scale(grad_plus, -1.0)), grad_plus),
        )
        pseudo = space.add(
            space.add(space.mul(positive, grad_plus), space.mul(negative, grad_minus)),
            space.mul(at_zero, zero_value),
        )
        return adj_value, pseudo


__all__ = ["ApproximateInverseHessian", "LBFGS", "MIN_CURVATURE", "MIN_STEP_NORM", "OWLQN"]
