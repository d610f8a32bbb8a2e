"""Numerical failures the iteration engine knows how to recover from.

Anything raised by a strategy that is not a :class:`FirstOrderException`
is treated as a programming error and propagates to the caller.
"""

from __future__ import annotations


class FirstOrderException(RuntimeError):
    """Base class for recoverable numerical failures during a step."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)


class NaNHistory(FirstOrderException):
    """The gradient or the strategy history became non-finite."""


class StepSizeUnderflow(FirstOrderException):
    """The step search shrank the step below a usable magnitude."""


class LineSearchFailed(FirstOrderException):
    """A bounded line search found no acceptable step."""

    def __init__(self, grad_norm: float, dir_norm: float) -> None:
        self.grad_norm = float(grad_norm)
        self.dir_norm = float(dir_norm)
        super().__init__(
            "Grad norm: %.4f Dir Norm: %.4f" % (self.grad_norm, self.dir_norm)
        )


__all__ = [
    "FirstOrderException",
    "LineSearchFailed",
    "NaNHistory",
    "StepSizeUnderflow",
]
