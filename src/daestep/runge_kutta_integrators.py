"""Explicit Runge-Kutta ODE steps.
This module implements embedded Runge-Kutta pairs as ODEStepEvaluators for
adaptive stepsize DAE integration. The Dormand-Prince5(4) and
Bogacki-Shampine3(2) pairs are provided.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Tuple

import numpy as np

from .dynamics import DynamicalSystem
from .methods import MethodDescriptor, ODEStepEvaluator, ODEStepResult

# Define type for forcing function f(t, y) -> dy/dt
VectorField = Callable[[float, np.ndarray], np.ndarray]

@dataclass(frozen=True)
class EmbeddedRKTableau:
    """Butcher tableau for an embedded explicit RK pair.
    This class allows for the generalization of any embedded RK pair by specifying the
    Butcher tableau coefficients.

    Attributes:
        name: Method name reported by the integrator.
        a: Coefficients for the intermediate stages.
        b_high: Coefficients for the high order final stage.
        b_low: Coefficients for the low order final stage.
        c: Coefficients for the intermediate time steps.
        order_high: Order of the propagated solution
        order_low: Order of the embedded solution (the error order used by controllers)
    """
    name: str
    c: np.ndarray # [s,]
    a: np.ndarray # [s, s]
    b_high: np.ndarray # [s,]
    b_low: np.ndarray # [s,]
    order_high: int
    order_low: int

def dormand_prince54() -> EmbeddedRKTableau:
    """Dormand-Prince 5(4) embedded RK pair. This is a 7-stage method computing a 5th and 4th order solution.
    Coefficients from https://en.wikipedia.org/wiki/Dormand%E2%80%93Prince_method
    """

    a_coeffs = np.array([
    [0, 0, 0, 0, 0, 0, 0],
    [1/5, 0, 0, 0, 0, 0, 0],
    [3/40, 9/40, 0, 0, 0, 0, 0],
    [44/45, -56/15, 32/9, 0, 0, 0, 0],
    [19372/6561, -25360/2187, 64448/6561, -212/729, 0, 0, 0],
    [9017/3168, -355/33, 46732/5247, 49/176, -5103/18656, 0, 0],
    [35/384, 0, 500/1113, 125/192, -2187/6784, 11/84, 0]
    ])
    b5_coeffs = np.array([35/384, 0, 500/1113, 125/192, -2187/6784, 11/84, 0])
    b4_coeffs = np.array([5179/57600, 0, 7571/16695, 393/640, -92097/339200, 187/2100, 1/40])
    c_coeffs = np.array([0, 1/5, 3/10, 4/5, 8/9, 1, 1])

    return EmbeddedRKTableau(
        name="DormandPrince54",
        c=c_coeffs,
        a=a_coeffs,
        b_high=b5_coeffs,
        b_low=b4_coeffs,
        order_high=5,
        order_low=4,
    )

def bogacki_shampine32() -> EmbeddedRKTableau:
    """Bogacki-Shampine 3(2) embedded RK pair, 4 stages.
    Coefficients from https://en.wikipedia.org/wiki/Bogacki%E2%80%93Shampine_method
    """
    a_coeffs = np.array([
    [0, 0, 0, 0],
    [1/2, 0, 0, 0],
    [0, 3/4, 0, 0],
    [2/9, 1/3, 4/9, 0]
    ])
    b3_coeffs = np.array([2/9, 1/3, 4/9, 0])
    b2_coeffs = np.array([7/24, 1/4, 1/3, 1/8])
    c_coeffs = np.array([0, 1/2, 3/4, 1])

    return EmbeddedRKTableau(
        name="BogackiShampine32",
        c=c_coeffs,
        a=a_coeffs,
        b_high=b3_coeffs,
        b_low=b2_coeffs,
        order_high=3,
        order_low=2,
    )

def rk_step_embedded(f: VectorField, t: float, y: np.ndarray, h: float, tableau: EmbeddedRKTableau,
                     f0: np.ndarray | None = None,
) -> Tuple[np.ndarray, np.ndarray, int]:
    """General method for taking a single step with an embedded Runge-Kutta method.
    The method computes:

    y_{n+1} = y_n + h * sum_{i=1}^s b_i * k_i

    where
      k_1 = f(t_n, y_n)
      k_2 = f(t_n + c_2*h, y_n + h*(a_21*k_1))
      ...
      k_s = f(t_n + c_s*h, y_n + h*sum_{j=1}^{s} a_sj*k_j)

    are the stages given by the Butcher tableau. The method also computes an embedded lower-order solution for error estimation.

    Parameters:
        f: Vector field f(t, y) -> dy/dt.
        t: Current time.
        y: Current state, 1D array.
        h: Step size.
        tableau: Embedded RK tableau.
        f0: f(t, y) if the caller already has it; saves one evaluation.

    Returns:
        y_high: Higher-order solution at t+h.
        err: Error estimate vector (y_high - y_low).
        nfev: Number of RHS evaluations.
    """

    # Check input shape, important for numpy matrix operations
    y = np.asarray(y, dtype=float)
    if y.ndim != 1:
        raise ValueError("y must be a 1D array")

    c = tableau.c
    a = tableau.a
    bH = tableau.b_high
    bL = tableau.b_low
    n_stages = c.shape[0]
    nfev = 0

    # Build stages
    k = np.zeros((n_stages, y.shape[0]), dtype=float)
    if f0 is None:
        k[0] = f(t, y)
        nfev += 1
    else:
        k[0] = f0

    for ii in range(1, n_stages):
        t_stage = t + c[ii] * h
        y_stage = y + h * (a[ii, :ii] @ k[:ii])
        k[ii] = f(t_stage, y_stage)
        nfev += 1

    # Combine stages to get high and low order solutions
    y_high = y + h * (bH @ k)
    y_low = y + h * (bL @ k)

    # Estimate error as difference between high and low order solutions
    err = y_high - y_low

    return y_high, err, nfev


class EmbeddedRKStepper(ODEStepEvaluator):
    """ODE step evaluator for any embedded explicit RK pair.

    The propagated solution is the high order one (local extrapolation);
    the error estimate is of order tableau.order_low.
    """

    def __init__(self, tableau: EmbeddedRKTableau | None = None) -> None:
        self.tableau = tableau if tableau is not None else dormand_prince54()
        self.method = MethodDescriptor(
            name=self.tableau.name,
            min_order=self.tableau.order_high,
            max_order=self.tableau.order_high,
            has_error_control=True,
        )

    def attempt_ode_step(self, system: DynamicalSystem, t0: float, t1: float,
                         y0: np.ndarray, ydot0: np.ndarray) -> ODEStepResult:
        y1, err, _nfev = rk_step_embedded(system.derivatives, t0, y0, t1 - t0, self.tableau, f0=ydot0)
        return ODEStepResult(
            converged=True,
            y1=y1,
            y_err_est=err,
            err_order=self.tableau.order_low,
            num_iterations=1,
        )
