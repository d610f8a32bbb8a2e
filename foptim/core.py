"""Iteration engine shared by every first-order minimizer.

A :class:`FirstOrderMinimizer` owns the loop: it asks its descent and
step-size hooks for a move, evaluates the objective at the new point, tracks
a short window of adjusted values to detect stagnation, recovers once from a
:class:`~foptim.exceptions.FirstOrderException`, and yields immutable
:class:`State` snapshots until a stopping rule fires.

Example
-------
>>> import numpy as np
>>> from foptim import FunctionObjective, SimpleSGD
>>> f = FunctionObjective(lambda x: float(x @ x), lambda x: 2 * x)
>>> x = SimpleSGD(step_size=0.1, max_iter=200).minimize(f, np.array([10.0]))
>>> bool(abs(x[0]) < 1e-3)
True
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Generic, Iterator, Optional

from .exceptions import FirstOrderException, NaNHistory
from .logging import get_logger
from .objective import StochasticDiffFunction
from .space import NumpySpace, T, VectorSpace

logger = get_logger(__name__)

# Absolute floor of the gradient-norm convergence test.
GRAD_NORM_FLOOR = 1e-8


@dataclass(frozen=True)
class State(Generic[T]):
    """Snapshot of optimization progress.

    Attributes:
        x: Current point.
        value: Raw objective value at ``x``.
        grad: Raw objective gradient at ``x``.
        adjusted_value: Value after the minimizer's ``adjust`` hook.
        adjusted_gradient: Gradient after the ``adjust`` hook; drives
            convergence.
        iter: Iteration counter, 0 for the initial state.
        initial_adj_val: Adjusted value of the initial state, scales the
            relative gradient tolerance.
        history: Strategy-owned memory, opaque to the engine.
        f_vals: Recent adjusted values, oldest first.
        num_improvement_failures: Stagnation episodes seen in a row.
        search_failed: Set when numerical failures could not be recovered.
    """

    x: T
    value: float
    grad: T
    adjusted_value: float
    adjusted_gradient: T
    iter: int
    initial_adj_val: float
    history: Any
    f_vals: tuple[float, ...] = ()
    num_improvement_failures: int = 0
    search_failed: bool = False


class FirstOrderMinimizer(ABC, Generic[T]):
    """Base class hosting pluggable descent and step-size strategies.

    Subclasses implement the strategy hooks (:meth:`initial_history`,
    :meth:`choose_descent_direction`, :meth:`determine_step_size`,
    :meth:`take_step`, :meth:`update_history`) and may override
    :meth:`adjust` and :attr:`num_depth_charge_steps`.

    Args:
        max_iter: Stop once this many iterations have run. Negative means
            unbounded.
        tolerance: Relative gradient tolerance, scaled by
            ``|initial_adj_val|``.
        improvement_tol: Minimum relative improvement expected across the
            value window.
        min_improvement_window: Number of adjusted values kept in the window.
        number_of_improvement_failures: Stagnation episodes tolerated before
            stopping.
        space: Vector space the points live in.
    """

    #: Throwaway steps run before the first real state to warm up the history.
    num_depth_charge_steps: int = 0

    def __init__(
        self,
        max_iter: int = -1,
        tolerance: float = 1e-5,
        improvement_tol: float = 1e-3,
        min_improvement_window: int = 10,
        number_of_improvement_failures: int = 1,
        space: Optional[VectorSpace[T]] = None,
    ) -> None:
        if tolerance < 0:
            raise ValueError("tolerance must be non-negative.")
        if min_improvement_window <= 0:
            raise ValueError("min_improvement_window must be positive.")
        if number_of_improvement_failures <= 0:
            raise ValueError("number_of_improvement_failures must be positive.")
        self.max_iter = int(max_iter)
        self.tolerance = float(tolerance)
        self.improvement_tol = float(improvement_tol)
        self.min_improvement_window = int(min_improvement_window)
        self.number_of_improvement_failures = int(number_of_improvement_failures)
        self.space: VectorSpace[T] = space if space is not None else NumpySpace()

    # Strategy hooks

    @abstractmethod
    def initial_history(self, f: StochasticDiffFunction[T], init: T) -> Any:
        """Fresh strategy memory for a run starting at ``init``."""

    @abstractmethod
    def choose_descent_direction(self, state: State[T]) -> T:
        """Search direction from ``state``."""

    @abstractmethod
    def determine_step_size(
        self, state: State[T], f: StochasticDiffFunction[T], direction: T
    ) -> float:
        """Scalar step length along ``direction``."""

    @abstractmethod
    def take_step(self, state: State[T], direction: T, step_size: float) -> T:
        """Candidate point after moving ``step_size`` along ``direction``."""

    @abstractmethod
    def update_history(
        self, new_x: T, new_grad: T, new_value: float, old_state: State[T]
    ) -> Any:
        """Strategy memory after accepting ``new_x``."""

    def adjust(self, new_x: T, new_grad: T, new_value: float) -> tuple[float, T]:
        """Correct the raw value and gradient, e.g. with a penalty term."""
        return new_value, new_grad

    # Engine

    def initial_state(self, f: StochasticDiffFunction[T], init: T) -> State[T]:
        value, grad = f.calculate(init)
        adj_value, adj_grad = self.adjust(init, grad, value)
        history = self.initial_history(f, init)
        return State(
            x=init,
            value=value,
            grad=grad,
            adjusted_value=adj_value,
            adjusted_gradient=adj_grad,
            iter=0,
            initial_adj_val=adj_value,
            history=history,
        )

    def update_f_val_window(
        self, old_state: State[T], new_adj_val: float
    ) -> tuple[float, ...]:
        window = old_state.f_vals + (new_adj_val,)
        if len(window) > self.min_improvement_window:
            window = window[1:]
        return window

    def is_stagnating(self, state: State[T]) -> bool:
        """Whether the newest value in the window barely beats the oldest."""
        f_vals = state.f_vals
        return (
            len(f_vals) >= self.min_improvement_window
            and len(f_vals) > 0
            and f_vals[-1] > f_vals[0] * (1 - self.improvement_tol)
        )

    def converged(self, state: State[T]) -> bool:
        """Termination predicate, evaluated after each produced state."""
        grad_norm = self.space.norm(state.adjusted_gradient)
        return (
            (self.max_iter >= 0 and state.iter >= self.max_iter)
            or grad_norm <= max(self.tolerance * abs(state.initial_adj_val), GRAD_NORM_FLOOR)
            or state.num_improvement_failures >= self.number_of_improvement_failures
            or state.search_failed
        )

    def _evaluate_step(
        self, state: State[T], f: StochasticDiffFunction[T]
    ) -> tuple[T, float, T, float, T, Any]:
        direction = self.choose_descent_direction(state)
        step_size = self.determine_step_size(state, f, direction)
        logger.info("Step Size: %s", step_size)
        x = self.take_step(state, direction, step_size)
        value, grad = f.calculate(x)
        logger.info("Val and Grad Norm: %s %s", value, self.space.norm(grad))
        adj_value, adj_grad = self.adjust(x, grad, value)
        adj_grad_norm = self.space.norm(adj_grad)
        logger.info("Adj Val and Grad Norm: %s %s", adj_value, adj_grad_norm)
        if not math.isfinite(adj_grad_norm):
            raise NaNHistory("Non-finite gradient norm: %s" % adj_grad_norm)
        history = self.update_history(x, grad, value, state)
        return x, value, grad, adj_value, adj_grad, history

    def _next_state(self, state: State[T], f: StochasticDiffFunction[T]) -> State[T]:
        x, value, grad, adj_value, adj_grad, history = self._evaluate_step(state, f)
        new_state = State(
            x=x,
            value=value,
            grad=grad,
            adjusted_value=adj_value,
            adjusted_gradient=adj_grad,
            iter=state.iter + 1,
            initial_adj_val=state.initial_adj_val,
            history=history,
            f_vals=self.update_f_val_window(state, adj_value),
            num_improvement_failures=0,
        )
        if self.is_stagnating(state):
            new_state = replace(
                new_state,
                f_vals=(),
                num_improvement_failures=state.num_improvement_failures + 1,
            )
        return new_state

    def _do_depth_charge(self, f: StochasticDiffFunction[T], init: T) -> State[T]:
        state = self.initial_state(f, init)
        for i in range(self.num_depth_charge_steps):
            x, value, grad, adj_value, adj_grad, history = self._evaluate_step(state, f)
            logger.info(
                "False Step %d: v=%f g=%f", i, adj_value, self.space.norm(adj_grad)
            )
            state = State(
                x=x,
                value=value,
                grad=grad,
                adjusted_value=adj_value,
                adjusted_gradient=adj_grad,
                iter=0,
                initial_adj_val=state.initial_adj_val,
                history=history,
            )
        if self.num_depth_charge_steps <= 0:
            return state
        return replace(self.initial_state(f, init), history=state.history)

    def iterations(self, f: StochasticDiffFunction[T], init: T) -> Iterator[State[T]]:
        """Lazily yield states until one satisfies :meth:`converged`.

        The stopping state is yielded too. A recognized numerical failure
        resets the history and retries from the same state once; a second
        failure in a row yields the state with ``search_failed`` set.
        """
        state = self._do_depth_charge(f, init)
        failed_once = False
        while True:
            yield state
            if self.converged(state):
                return
            try:
                state = self._next_state(state, f)
                failed_once = False
            except FirstOrderException as exc:
                if not failed_once:
                    failed_once = True
                    logger.error("Failure! Resetting history: %s", exc)
                    state = replace(state, history=self.initial_history(f, state.x))
                else:
                    logger.error(
                        "Failure again! Giving up and returning. "
                        "Maybe the objective is just poorly behaved?"
                    )
                    state = replace(state, search_failed=True)

    def minimize_and_return_state(
        self, f: StochasticDiffFunction[T], init: T
    ) -> State[T]:
        """Run to termination and return the final state."""
        state = None
        for state in self.iterations(f, init):
            pass
        return state

    def minimize(self, f: StochasticDiffFunction[T], init: T) -> T:
        """Run to termination and return the final point."""
        return self.minimize_and_return_state(f, init).x


__all__ = ["FirstOrderMinimizer", "GRAD_NORM_FLOOR", "State"]
