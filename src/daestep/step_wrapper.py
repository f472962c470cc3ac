"""One constraint-respecting DAE step attempt.

attempt_dae_step composes any ODEStepEvaluator with a ConstraintProjector:

    1. take the raw ODE step (a fault becomes a convergence failure)
    2. if the error is hopeless, skip the projection, the step will be rejected
    3. if the constraint violation is too large for Newton, fail convergence
    4. otherwise project when needed (a failed projection fails convergence)

A step that survives is never both inaccurate and off the manifold beyond
tolerance, and no projection work is spent on steps that will be discarded.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math

import numpy as np

from .controllers import weighted_rms_norm
from .dynamics import DynamicalSystem
from .errors import UnimplementedMethodError
from .methods import ODEStepEvaluator
from .projection import ConstraintProjector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DAEStepResult:
    """Outcome of one DAE step attempt.

    Attributes:
        converged: False means the error estimate is meaningless and the
            step must be retried with a smaller h.
        y1: Trial state at t1 (projected if `projected`).
        y_err_est: Absolute error estimate for y1.
        err_order: Order of the error estimate.
        err_norm: Weighted RMS norm of y_err_est (inf if not converged).
        num_iterations: Iterations reported by the ODE evaluator.
        projected: Whether the projector was applied.
        message: Diagnostic for non-converged results.
    """

    converged: bool
    y1: np.ndarray
    y_err_est: np.ndarray
    err_order: int
    err_norm: float
    num_iterations: int
    projected: bool = False
    message: str = ""


def projection_limit(constraint_tolerance: float) -> float:
    """Largest constraint violation we are willing to project.

    Projection uses Newton iterations, which behave only when started near
    their quadratic convergence regime; failing to reach sqrt(tol) counts as
    too far. For large tolerances, 2*tol is always permitted:

        tol      limit
        1e-12    1e-6
        1e-4     1e-2
        0.01     0.1
        0.5      1
    """
    return max(2.0 * constraint_tolerance, math.sqrt(constraint_tolerance))


def attempt_dae_step(
    evaluator: ODEStepEvaluator,
    system: DynamicalSystem,
    projector: ConstraintProjector | None,
    t0: float,
    t1: float,
    y0: np.ndarray,
    ydot0: np.ndarray,
    *,
    accuracy: float,
    constraint_tolerance: float,
    project_every_step: bool = False,
) -> DAEStepResult:
    """Attempt one step from (t0, y0) to t1, projecting the result if worthwhile.

    Parameters:
        evaluator: The integration method.
        system: Supplies error weights and constraint errors.
        projector: Constraint projector; None for unconstrained systems.
        t0, t1: Step interval, t1 > t0.
        y0, ydot0: Committed state and its derivative at t0.
        accuracy: Accuracy in use, compared against the weighted error norm.
        constraint_tolerance: Constraint tolerance in use.
        project_every_step: Project even when the constraints are satisfied.

    Returns:
        DAEStepResult. Faults inside the evaluator or the projector come back
        as converged=False; only UnimplementedMethodError propagates.
    """
    y0 = np.asarray(y0, dtype=float)

    try:
        ode = evaluator.attempt_ode_step(system, t0, t1, y0, ydot0)
    except UnimplementedMethodError:
        raise
    except Exception as exc:
        logger.debug("ODE step [%g, %g] raised %r; treating as convergence failure", t0, t1, exc)
        return _not_converged(y0, 1, f"ODE step failed: {exc}")

    if not ode.converged:
        return _not_converged(y0, ode.num_iterations, "ODE step did not converge")

    # Work on copies so the projector can update them in place.
    y1 = np.array(ode.y1, dtype=float)
    y_err_est = np.array(ode.y_err_est, dtype=float)

    err_norm = weighted_rms_norm(y_err_est, system.error_weights(t1, y1))

    # A half step would give err/2^p. Only when that would have met the
    # accuracy is the step close enough to be worth projecting.
    if not err_norm <= 2.0 ** ode.err_order * accuracy:
        return DAEStepResult(True, y1, y_err_est, ode.err_order, err_norm, ode.num_iterations)

    limit = projection_limit(constraint_tolerance)
    cons_err = weighted_rms_norm(
        np.asarray(system.constraint_errors(t1, y1), dtype=float),
        np.asarray(system.constraint_one_over_tolerances(), dtype=float),
    )

    if not cons_err <= limit:
        return _not_converged(
            y0, ode.num_iterations,
            f"constraint violation {cons_err:.3e} exceeds projection limit {limit:.3e}",
        )

    projected = False
    needs_projection = cons_err > constraint_tolerance
    if projector is None:
        if needs_projection:
            return _not_converged(y0, ode.num_iterations, "constraints violated and no projector available")
    elif project_every_step or needs_projection:
        try:
            outcome = projector.project(t1, y1, y_err_est, constraint_tolerance)
        except UnimplementedMethodError:
            raise
        except Exception as exc:
            logger.debug("projection at t=%g raised %r", t1, exc)
            return _not_converged(y0, ode.num_iterations, f"projection failed: {exc}")
        if not outcome.success:
            logger.debug("projection at t=%g failed: %s", t1, outcome.message)
            return _not_converged(y0, ode.num_iterations, f"projection failed: {outcome.message}")
        projected = True
        err_norm = weighted_rms_norm(y_err_est, system.error_weights(t1, y1))

    return DAEStepResult(True, y1, y_err_est, ode.err_order, err_norm, ode.num_iterations, projected=projected)


def _not_converged(y0: np.ndarray, num_iterations: int, message: str) -> DAEStepResult:
    return DAEStepResult(
        converged=False,
        y1=y0.copy(),
        y_err_est=np.full_like(y0, np.inf),
        err_order=1,
        err_norm=math.inf,
        num_iterations=num_iterations,
        message=message,
    )
