"""Select a minimizer from a small configuration record."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional

import numpy as np

from .core import FirstOrderMinimizer, State
from .gradient import AdaptiveGradientDescentL1, AdaptiveGradientDescentL2
from .objective import (
    BatchDiffFunction,
    DiffFunction,
    StochasticDiffFunction,
    with_l2_regularization,
)
from .quasi_newton import LBFGS, OWLQN
from .space import NumpySpace, T, VectorSpace

# Curvature pairs kept by the deterministic minimizers.
QUASI_NEWTON_MEMORY = 5


@dataclass(frozen=True)
class OptParams:
    """
    Runtime choice of optimization routine.

    Configurations:

    1. ``use_stochastic=False, use_l1=False``: L-BFGS on the L2-regularized
       objective.
    2. ``use_stochastic=False, use_l1=True``: OWL-QN with L1 regularization.
    3. ``use_stochastic=True, use_l1=False``: AdaGrad with L2 regularization.
    4. ``use_stochastic=True, use_l1=True``: AdaGrad with L1 regularization.

    Args:
        batch_size: Mini-batch size used when ``use_stochastic`` is set and the
            objective is a :class:`BatchDiffFunction`.
        regularization: Regularization constant.
        alpha: Base learning rate; only used by the stochastic routines.
        max_iterations: Iteration cap.
        use_l1: Use L1 instead of L2 regularization.
        tolerance: Relative gradient tolerance for the deterministic routines.
        use_stochastic: Use AdaGrad instead of a quasi-Newton method.
    """

    batch_size: int = 512
    regularization: float = 1.0
    alpha: float = 0.5
    max_iterations: int = 1000
    use_l1: bool = False
    tolerance: float = 1e-3
    use_stochastic: bool = False

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise ValueError("Batch size must be positive.")
        if self.regularization < 0:
            raise ValueError("Regularization must be non-negative.")
        if self.alpha <= 0:
            raise ValueError("Learning rate must be positive.")
        if self.tolerance < 0:
            raise ValueError("Tolerance must be non-negative.")

    def select(self, space: Optional[VectorSpace[T]] = None) -> FirstOrderMinimizer[T]:
        """Return the minimizer matching this configuration."""
        return select_minimizer(self, space)

    def prepare(
        self,
        f: StochasticDiffFunction[T],
        space: Optional[VectorSpace[T]] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> StochasticDiffFunction[T]:
        """Objective the selected minimizer should see.

        Stochastic runs sample mini-batches from batch objectives;
        deterministic L2 runs fold the penalty into the objective.
        """
        space = space if space is not None else NumpySpace()
        if self.use_stochastic:
            if isinstance(f, BatchDiffFunction):
                return f.with_random_batches(self.batch_size, rng, space)
            return f
        if not isinstance(f, DiffFunction):
            raise TypeError(
                "Deterministic optimization needs a DiffFunction, "
                f"got {type(f).__name__}."
            )
        if self.use_l1:
            return f
        return with_l2_regularization(f, self.regularization, space)

    def iterations(
        self,
        f: StochasticDiffFunction[T],
        init: T,
        space: Optional[VectorSpace[T]] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> Iterator[State[T]]:
        return self.select(space).iterations(self.prepare(f, space, rng), init)

    def minimize(
        self,
        f: StochasticDiffFunction[T],
        init: T,
        space: Optional[VectorSpace[T]] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> T:
        state = None
        for state in self.iterations(f, init, space, rng):
            pass
        return state.x


def select_minimizer(
    params: OptParams, space: Optional[VectorSpace[T]] = None
) -> FirstOrderMinimizer[T]:
    """
    Create the minimizer described by ``params``.

    Args:
        params: Optimization configuration.
        space: Vector space of the points. Defaults to NumPy arrays.

    Returns:
        A minimizer whose ``iterations`` expects the objective returned by
        :meth:`OptParams.prepare`.
    """
    if params.use_stochastic:
        if params.use_l1:
            return AdaptiveGradientDescentL1(
                eta=params.alpha,
                max_iter=params.max_iterations,
                regularization=params.regularization,
                space=space,
            )
        return AdaptiveGradientDescentL2(
            eta=params.alpha,
            max_iter=params.max_iterations,
            regularization=params.regularization,
            space=space,
        )
    if params.use_l1:
        return OWLQN(
            max_iter=params.max_iterations,
            m=QUASI_NEWTON_MEMORY,
            l1_reg=params.regularization,
            tolerance=params.tolerance,
            space=space,
        )
    return LBFGS(
        max_iter=params.max_iterations,
        m=QUASI_NEWTON_MEMORY,
        tolerance=params.tolerance,
        space=space,
    )


__all__ = ["OptParams", "QUASI_NEWTON_MEMORY", "select_minimizer"]
