"""One-dimensional line searches following Nocedal & Wright.

Both searches work on ``phi(alpha) -> (value, derivative)``, the objective
restricted to the ray ``x + alpha * p``. Failure to find an acceptable step
is reported through the recoverable exceptions of :mod:`foptim.exceptions`.
"""

from __future__ import annotations

import math
from typing import Callable

from .exceptions import LineSearchFailed, StepSizeUnderflow

Phi = Callable[[float], tuple[float, float]]


def backtracking_armijo(
    phi: Phi,
    alpha0: float = 1.0,
    rho: float = 0.5,
    c: float = 1e-4,
    max_iter: int = 50,
    min_alpha: float = 1e-10,
) -> float:
    """Classic Armijo backtracking line search.

    Raises:
        StepSizeUnderflow: If a shrunken ``alpha`` drops below ``min_alpha``,
            or ``max_iter`` trials go by without satisfying the Armijo
            condition. The initial ``alpha0`` is always tried.
    """
    if not (0 < c < 1):
        raise ValueError("Armijo constant c must lie in (0, 1)")
    if not (0 < rho < 1):
        raise ValueError("rho must lie in (0, 1)")
    phi0, der0 = phi(0.0)
    alpha = float(alpha0)
    for _ in range(max_iter):
        phi_alpha, _ = phi(alpha)
        if math.isfinite(phi_alpha) and phi_alpha <= phi0 + c * alpha * der0:
            return alpha
        alpha *= rho
        if alpha < min_alpha:
            break
    raise StepSizeUnderflow("Armijo backtracking reached step %.3e" % alpha)


def strong_wolfe(
    phi: Phi,
    alpha0: float = 1.0,
    c1: float = 1e-4,
    c2: float = 0.9,
    max_iter: int = 10,
    max_zoom_iter: int = 10,
    grad_norm: float = math.nan,
    dir_norm: float = math.nan,
) -> float:
    """Perform a strong Wolfe line search using bracketing and zoom.

    ``grad_norm`` and ``dir_norm`` are only carried into the
    :class:`LineSearchFailed` raised when no step satisfies the conditions.
    """
    if not (0 < c1 < c2 < 1):
        raise ValueError("Require 0 < c1 < c2 < 1 for Wolfe conditions.")

    phi0, der0 = phi(0.0)
    if der0 >= 0:
        raise LineSearchFailed(grad_norm, dir_norm)

    alpha_prev = 0.0
    phi_prev = phi0
    der_prev = der0
    alpha = float(alpha0)

    for iteration in range(max_iter):
        phi_alpha, der_alpha = phi(alpha)
        if (
            not math.isfinite(phi_alpha)
            or phi_alpha > phi0 + c1 * alpha * der0
            or (iteration > 0 and phi_alpha >= phi_prev)
        ):
            return _zoom(
                phi,
                (alpha_prev, phi_prev, der_prev),
                (alpha, phi_alpha, der_alpha),
                phi0,
                der0,
                c1,
                c2,
                max_zoom_iter,
                grad_norm,
                dir_norm,
            )
        if abs(der_alpha) <= -c2 * der0:
            return alpha
        if der_alpha >= 0:
            return _zoom(
                phi,
                (alpha, phi_alpha, der_alpha),
                (alpha_prev, phi_prev, der_prev),
                phi0,
                der0,
                c1,
                c2,
                max_zoom_iter,
                grad_norm,
                dir_norm,
            )
        alpha_prev, phi_prev, der_prev = alpha, phi_alpha, der_alpha
        alpha *= 1.5
    raise LineSearchFailed(grad_norm, dir_norm)


def _zoom(
    phi: Phi,
    low: tuple[float, float, float],
    high: tuple[float, float, float],
    phi0: float,
    der0: float,
    c1: float,
    c2: float,
    max_iter: int,
    grad_norm: float,
    dir_norm: float,
) -> float:
    """Zoom stage enforcing strong Wolfe conditions."""
    alo, phi_alo, _ = low
    ahi = high[0]
    for _ in range(max_iter):
        alpha = 0.5 * (alo + ahi)
        phi_alpha, der_alpha = phi(alpha)
        if (
            not math.isfinite(phi_alpha)
            or phi_alpha > phi0 + c1 * alpha * der0
            or phi_alpha >= phi_alo
        ):
            ahi = alpha
        else:
            if abs(der_alpha) <= -c2 * der0:
                return alpha
            if der_alpha * (ahi - alo) >= 0:
                ahi = alo
            alo = alpha
            phi_alo = phi_alpha
        if abs(ahi - alo) < 1e-12:
            break
    if alo > 0:
        # Sufficient decrease holds at alo even though curvature does not.
        return alo
    raise LineSearchFailed(grad_norm, dir_norm)


__all__ = ["Phi", "backtracking_armijo", "strong_wolfe"]
