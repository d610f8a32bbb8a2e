"""foptim - generic first-order minimization over pluggable vector spaces.

Example
-------
>>> import numpy as np
>>> from foptim import LBFGS, FunctionObjective
>>> def rosen(x):
...     return (1 - x[0])**2 + 100 * (x[1] - x[0]**2)**2
>>> def rosen_grad(x):
...     return np.array([
...         -2 * (1 - x[0]) - 400 * x[0] * (x[1] - x[0] ** 2),
...         200 * (x[1] - x[0] ** 2),
...     ])
>>> f = FunctionObjective(rosen, rosen_grad)
>>> x = LBFGS(max_iter=200, tolerance=1e-10).minimize(f, np.array([-1.2, 1.0]))
>>> np.allclose(x, [1.0, 1.0], atol=1e-4)
True
"""

__version__ = "0.1.0"

from .core import GRAD_NORM_FLOOR, FirstOrderMinimizer, State
from .exceptions import (
    FirstOrderException,
    LineSearchFailed,
    NaNHistory,
    StepSizeUnderflow,
)
from .gradient import (
    AdaGradHistory,
    AdaptiveGradientDescent,
    AdaptiveGradientDescentL1,
    AdaptiveGradientDescentL2,
    SimpleSGD,
    StochasticGradientDescent,
)
from .line_search import backtracking_armijo, strong_wolfe
from .logging import configure_logging, get_logger, set_log_level
from .objective import (
    BatchDiffFunction,
    DiffFunction,
    FunctionObjective,
    L2Regularized,
    RandomBatchFunction,
    StochasticDiffFunction,
    SumBatchObjective,
    TorchObjective,
    approx_grad,
    with_l2_regularization,
)
from .params import OptParams, select_minimizer
from .quasi_newton import LBFGS, OWLQN, ApproximateInverseHessian
from .space import NumpySpace, TorchSpace, VectorSpace

__all__ = [
    "AdaGradHistory",
    "AdaptiveGradientDescent",
    "AdaptiveGradientDescentL1",
    "AdaptiveGradientDescentL2",
    "ApproximateInverseHessian",
    "BatchDiffFunction",
    "DiffFunction",
    "FirstOrderException",
    "FirstOrderMinimizer",
    "FunctionObjective",
    "GRAD_NORM_FLOOR",
    "L2Regularized",
    "LBFGS",
    "LineSearchFailed",
    "NaNHistory",
    "NumpySpace",
    "OWLQN",
    "OptParams",
    "RandomBatchFunction",
    "SimpleSGD",
    "State",
    "StepSizeUnderflow",
    "StochasticDiffFunction",
    "StochasticGradientDescent",
    "SumBatchObjective",
    "TorchObjective",
    "TorchSpace",
    "VectorSpace",
    "__version__",
    "approx_grad",
    "backtracking_armijo",
    "configure_logging",
    "get_logger",
    "select_minimizer",
    "set_log_level",
    "strong_wolfe",
    "with_l2_regularization",
]
