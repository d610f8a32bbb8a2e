"""
Example: Regularized least squares with foptim

This example fits a linear model with each of the four routines selectable
through ``OptParams``: L-BFGS and OWL-QN on the full data set, and AdaGrad on
random mini-batches. The L1 runs recover the sparsity pattern of the true
coefficients.
"""

import logging

import numpy as np

from foptim import OptParams, SumBatchObjective, configure_logging


def make_problem(rng: np.random.Generator, n_samples: int = 200, n_features: int = 8):
    true_coef = np.zeros(n_features)
    true_coef[:3] = [2.0, -1.5, 0.75]
    X = rng.standard_normal((n_samples, n_features))
    y = X @ true_coef + 0.05 * rng.standard_normal(n_samples)

    def term(row: np.ndarray, target: float):
        def calculate(w: np.ndarray) -> tuple[float, np.ndarray]:
            residual = float(row @ w) - target
            return 0.5 * residual**2, residual * row

        return calculate

    objective = SumBatchObjective([term(X[i], y[i]) for i in range(n_samples)])
    return objective, true_coef


def main() -> None:
    configure_logging(level=logging.WARNING)
    rng = np.random.default_rng(7)
    objective, true_coef = make_problem(rng)
    init = np.zeros_like(true_coef)

    print("=" * 60)
    print("True coefficients:", np.round(true_coef, 3))
    print("=" * 60)
    for use_stochastic in (False, True):
        for use_l1 in (False, True):
            params = OptParams(
                batch_size=32,
                regularization=2.0,
                alpha=0.5,
                max_iterations=300,
                use_l1=use_l1,
                use_stochastic=use_stochastic,
            )
            states = list(params.iterations(objective, init, rng=rng))
            final = states[-1]
            label = f"stochastic={use_stochastic!s:<5} l1={use_l1!s:<5}"
            print(f"{label} iters={final.iter:<4} failed={final.search_failed}")
            print("   coef:", np.round(final.x, 3))
    print()


if __name__ == "__main__":
    main()
