"""Implicit ODE steps.
This module provides a Newton-Raphson solver with finite-difference
Jacobians, and implements the trapezoidal method on top of it as an
ODEStepEvaluator for adaptive DAE integration.
"""

from __future__ import annotations

import logging
from typing import Callable, Tuple

import numpy as np

from .dynamics import DynamicalSystem
from .methods import MethodDescriptor, ODEStepEvaluator, ODEStepResult

logger = logging.getLogger(__name__)


def finite_difference_jacobian(g: Callable[[np.ndarray], np.ndarray], y: np.ndarray,
                               epsilon: float = 1e-7) -> np.ndarray:
    """Central difference approximation of dg/dy.

        J_ij = (g(y + e_j h_j) - g(y - e_j h_j)) / 2h_j,  h_j = epsilon * max(1, |y_j|)
    """
    y = np.asarray(y, dtype=float)
    g0 = np.atleast_1d(g(y))
    J = np.zeros((g0.shape[0], y.shape[0]), dtype=float)

    # Perturb each dimension
    for j in range(y.shape[0]):
        h = epsilon * max(1.0, abs(y[j]))
        y_plus = y.copy()
        y_minus = y.copy()
        y_plus[j] += h
        y_minus[j] -= h
        J[:, j] = (np.atleast_1d(g(y_plus)) - np.atleast_1d(g(y_minus))) / (2.0 * h)

    return J


def newton_raphson(f: Callable, J_fy: Callable, y0: np.ndarray, tol: float = 1e-10, max_iter: int = 20,
                   ) -> Tuple[np.ndarray, int, bool]:
    """Newton-Raphson root-finding method for nonlinear equations f(y) = 0.
    Parameters:
        f: function
            The function for which we want to find the root (f(y) = 0).
        J_fy: function
            The Jacobian of the function f.
        y0: np.ndarray
            The initial guess for the root.
        tol: float
            The tolerance on the max-norm of the Newton update.
        max_iter: int
            The maximum number of iterations.

    Returns:
        y: np.ndarray
            The approximate root (last iterate if not converged).
        iter_stop: int
            Number of iterations performed.
        converged: bool
            Whether the update fell below tol within max_iter iterations.
    """
    # Ensure y is a numpy array (even if 0-d scalar) to handle math uniformly
    y = np.array(y0, dtype=float)

    # Determine if we are in scalar mode based on input shape
    is_scalar = y.ndim == 0

    for i in range(max_iter):
        # Calculate update step: y_new = y - J_fy(y)^(-1) @ f(y) = y - delta
        if is_scalar:
            delta = f(y) / J_fy(y)
        else:
            delta = np.linalg.solve(J_fy(y), f(y)) # Solves J * delta = f(y) for delta
        y_new = y - delta
        delta_max = float(np.abs(delta)) if is_scalar else float(np.max(np.abs(delta)))

        logger.debug("newton %d: |delta|=%.2e", i, delta_max)

        if not np.isfinite(delta_max):
            return y, i + 1, False

        # Check termination condition
        if delta_max < tol:
            return y_new, i + 1, True

        y = y_new

    return y, max_iter, False


class TrapezoidStepper(ODEStepEvaluator):
    """Implicit trapezoidal rule
        y1 = y0 + h/2 * (f(t0, y0) + f(t1, y1))
    solved with Newton-Raphson, starting from the explicit Heun (RK2) step.

    The error estimate is y_trapezoid - y_heun. Both are second order, so
    their difference estimates a local error of O(h^3); err_order is 2.
    """

    method = MethodDescriptor(name="Trapezoid", min_order=2, max_order=2, has_error_control=True)

    def __init__(self, newton_tol: float = 1e-10, max_iter: int = 10) -> None:
        if newton_tol <= 0.0:
            raise ValueError("newton_tol must be positive")
        if max_iter < 1:
            raise ValueError("max_iter must be at least 1")
        self.newton_tol = newton_tol
        self.max_iter = max_iter

    def attempt_ode_step(self, system: DynamicalSystem, t0: float, t1: float,
                         y0: np.ndarray, ydot0: np.ndarray) -> ODEStepResult:
        h = t1 - t0
        y0 = np.asarray(y0, dtype=float)
        f0 = np.asarray(ydot0, dtype=float)

        # Explicit predictor and Heun corrector
        y_euler = y0 + h * f0
        y_heun = y0 + 0.5 * h * (f0 + system.derivatives(t1, y_euler))

        def g(y1):
            return y1 - y0 - 0.5 * h * (f0 + system.derivatives(t1, y1))

        def J_g(y1):
            return finite_difference_jacobian(g, y1)

        y1, n_iter, converged = newton_raphson(g, J_g, y_heun, tol=self.newton_tol, max_iter=self.max_iter)
        if not converged:
            logger.debug("Trapezoid Newton iteration did not converge at t=%g, h=%g", t1, h)
            return ODEStepResult.diverged(y0, n_iter)

        return ODEStepResult(
            converged=True,
            y1=y1,
            y_err_est=y1 - y_heun,
            err_order=2,
            num_iterations=n_iter,
        )
