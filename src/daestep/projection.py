"""Constraint projection onto the position and velocity manifolds.

A projector pulls a trial state y = (q, u, z) back onto the constraint
manifold and removes the constraint-normal part of the error estimate
(errors in directions the projection eliminates cannot survive the step).
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Protocol

import numpy as np

from .controllers import weighted_rms_norm
from .dynamics import DynamicalSystem, split_state

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectionResult:
    success: bool
    num_iterations: int = 0
    message: str = ""


class ConstraintProjector(Protocol):
    """Interface the DAE step wrapper expects from a projector.

    `project` mutates y and y_err_est in place and reports failure through
    the returned ProjectionResult. Raising ProjectionFailure is also allowed.
    """

    def project(self, t: float, y: np.ndarray, y_err_est: np.ndarray, tolerance: float) -> ProjectionResult:
        ...


class MechanicalSystem(DynamicalSystem, Protocol):
    """Dynamical system with holonomic constraints, as needed by NewtonProjector.

    constraint_errors(t, y) must return the position errors followed by the
    velocity errors, matching constraint_one_over_tolerances().
    """

    def position_errors(self, t: float, q: np.ndarray) -> np.ndarray:
        ...

    def position_jacobian(self, t: float, q: np.ndarray) -> np.ndarray:
        ...

    def velocity_errors(self, t: float, q: np.ndarray, u: np.ndarray) -> np.ndarray:
        ...

    def velocity_jacobian(self, t: float, q: np.ndarray) -> np.ndarray:
        ...


def _normal_component(J: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Minimum-norm dv with J dv = J v, i.e. the part of v in the row space of J."""
    dv, *_ = np.linalg.lstsq(J, J @ v, rcond=None)
    return dv


class NewtonProjector:
    """Gauss-Newton projection for mechanical systems.

    Positions are corrected with minimum-norm Newton updates
        dq = -P^+ perr(q)
    until the weighted position error falls below `fraction * tolerance`.
    Velocity constraints are linear in u, so one update
        du = -V^+ verr(q, u)
    solves them at the corrected q.
    """

    def __init__(self, system: MechanicalSystem, fraction: float = 0.1, max_iter: int = 10) -> None:
        if not 0.0 < fraction <= 1.0:
            raise ValueError(f"fraction must be in (0, 1], got {fraction}")
        if max_iter < 1:
            raise ValueError("max_iter must be at least 1")
        self.system = system
        self.fraction = fraction
        self.max_iter = max_iter

    def project(self, t: float, y: np.ndarray, y_err_est: np.ndarray, tolerance: float) -> ProjectionResult:
        system = self.system
        q, u, _ = split_state(y, system.n_q, system.n_u, system.n_z)
        eq, eu, _ = split_state(y_err_est, system.n_q, system.n_u, system.n_z)

        one_over_tol = np.asarray(system.constraint_one_over_tolerances(), dtype=float)
        perr = np.asarray(system.position_errors(t, q), dtype=float)
        w_pos = one_over_tol[:perr.shape[0]]
        w_vel = one_over_tol[perr.shape[0]:]
        target = self.fraction * tolerance

        n_iter = 0
        err_norm = weighted_rms_norm(perr, w_pos)
        while err_norm > target:
            if n_iter == self.max_iter:
                return ProjectionResult(False, n_iter, f"position projection stalled at {err_norm:.3e}")
            P = np.asarray(system.position_jacobian(t, q), dtype=float)
            dq, *_ = np.linalg.lstsq(P, perr, rcond=None)
            q -= dq
            n_iter += 1

            perr = np.asarray(system.position_errors(t, q), dtype=float)
            new_norm = weighted_rms_norm(perr, w_pos)
            if not np.isfinite(new_norm) or new_norm > err_norm:
                return ProjectionResult(False, n_iter, f"position projection diverged ({err_norm:.3e} -> {new_norm:.3e})")
            err_norm = new_norm

        V = np.asarray(system.velocity_jacobian(t, q), dtype=float)
        verr = np.asarray(system.velocity_errors(t, q, u), dtype=float)
        if V.size and weighted_rms_norm(verr, w_vel) > target:
            du, *_ = np.linalg.lstsq(V, verr, rcond=None)
            u -= du
            n_iter += 1

        P = np.asarray(system.position_jacobian(t, q), dtype=float)
        if P.size:
            eq -= _normal_component(P, eq)
        if V.size:
            eu -= _normal_component(V, eu)

        logger.debug("projected at t=%g in %d iterations", t, n_iter)
        return ProjectionResult(True, n_iter)
