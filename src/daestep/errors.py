"""Exception types raised by the integrator.

Transient numerical trouble (a step that does not converge, a projection
that fails, an inaccurate step) is handled inside the step loop and never
reaches the caller. Only the failures below escape.
"""

from __future__ import annotations


class IntegratorError(RuntimeError):
    """Base class for fatal integrator failures."""


class StepFailedError(IntegratorError):
    """The shrink-and-retry budget of a single step was exhausted."""

    def __init__(self, message: str, *, t: float, h: float) -> None:
        super().__init__(message)
        self.t = t
        self.h = h


class ProjectionFailure(IntegratorError):
    """A constraint projection did not converge."""


class UnimplementedMethodError(NotImplementedError):
    """A concrete integrator did not provide its ODE step formula."""
