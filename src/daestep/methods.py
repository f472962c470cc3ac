"""Strategy interface for the per-method ODE step formula.

Every concrete integration method is an ODEStepEvaluator. The step
controller and the DAE step wrapper only ever talk to this interface.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .dynamics import DynamicalSystem
from .errors import UnimplementedMethodError


@dataclass(frozen=True)
class MethodDescriptor:
    """Static description of an integration method."""

    name: str
    min_order: int
    max_order: int
    has_error_control: bool = True

    def __post_init__(self) -> None:
        if not 1 <= self.min_order <= self.max_order:
            raise ValueError(f"Invalid order range [{self.min_order}, {self.max_order}] for {self.name}")


@dataclass(frozen=True)
class ODEStepResult:
    """Outcome of one raw ODE trial step.

    Attributes:
        converged: False if an iterative method failed to converge. The other
            fields are then meaningless.
        y1: Trial state at t1.
        y_err_est: Estimate of the absolute error in each element of y1.
        err_order: Order of the error estimate, used by the step size adapter.
        num_iterations: Internal iterations used (1 for explicit methods).
    """

    converged: bool
    y1: np.ndarray
    y_err_est: np.ndarray
    err_order: int
    num_iterations: int = 1

    @classmethod
    def diverged(cls, y0: np.ndarray, num_iterations: int) -> "ODEStepResult":
        y0 = np.asarray(y0, dtype=float)
        return cls(
            converged=False,
            y1=y0.copy(),
            y_err_est=np.full_like(y0, np.inf),
            err_order=1,
            num_iterations=num_iterations,
        )


class ODEStepEvaluator:
    """Base class for concrete integration methods.

    Subclasses set `method` and override `attempt_ode_step`. The step must not
    evaluate derivatives at y1: the trial point may still be projected onto
    the constraint manifold, which would make that evaluation wasted work.
    Divergence is reported through ODEStepResult.converged, never raised.
    """

    method: MethodDescriptor

    def attempt_ode_step(self, system: DynamicalSystem, t0: float, t1: float,
                         y0: np.ndarray, ydot0: np.ndarray) -> ODEStepResult:
        raise UnimplementedMethodError(
            f"{type(self).__name__}.attempt_ode_step() was called but wasn't defined. "
            "Every concrete integrator must override it."
        )
