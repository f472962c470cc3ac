"""Dynamical systems integrated by the step controller.

State vector convention (flat np array, length n_q + n_u + n_z):
    y = [q..., u..., z...]

q are generalized positions, u generalized velocities and z auxiliary
continuous variables. The integrator treats y as an opaque vector; only the
constraint projector cares about the split.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Tuple

import numpy as np


class DynamicalSystem(Protocol):
    """Interface the integrator needs from the model being integrated."""

    n_q: int
    n_u: int
    n_z: int

    def derivatives(self, t: float, y: np.ndarray) -> np.ndarray:
        """Return ydot at (t, y)."""
        ...

    def error_weights(self, t: float, y: np.ndarray) -> np.ndarray:
        """Per-variable weights used in the weighted RMS error norm."""
        ...

    def constraint_errors(self, t: float, y: np.ndarray) -> np.ndarray:
        """Violation of every algebraic constraint at (t, y)."""
        ...

    def constraint_one_over_tolerances(self) -> np.ndarray:
        """Per-constraint weights used in the weighted RMS constraint norm."""
        ...


def split_state(y: np.ndarray, n_q: int, n_u: int, n_z: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Helper function to split flat state into views of q, u and z.

    The returned arrays are views, so writing into them updates y.
    """
    if y.shape != (n_q + n_u + n_z,):
        raise ValueError(f"Expected y.shape == ({n_q + n_u + n_z},), got {y.shape}")
    return y[:n_q], y[n_q:n_q + n_u], y[n_q + n_u:]


@dataclass(frozen=True)
class PendulumParams:
    """Parameters for the planar Cartesian pendulum (unit mass)."""

    length: float = 1.0
    gravity: float = 9.81
    # Absolute error scale for every state variable.
    error_scale: float = 1.0


class CartesianPendulum:
    """Planar pendulum written in Cartesian coordinates.

    q = (x, y), u = (vx, vy). The rod imposes
        position:  (x^2 + y^2 - L^2) / (2L) = 0
        velocity:  (x vx + y vy) / L       = 0
    and the rod tension lambda is eliminated analytically (index reduction):
        ax = -lambda x,  ay = -g - lambda y,  lambda = (vx^2 + vy^2 - g y) / (x^2 + y^2)

    Without projection the solution drifts off the circle; with it, the
    constraint errors stay below tolerance.
    """

    n_q = 2
    n_u = 2
    n_z = 0

    def __init__(self, params: PendulumParams | None = None) -> None:
        self.params = params if params is not None else PendulumParams()
        if self.params.length <= 0.0:
            raise ValueError("Pendulum length must be positive")

    def initial_state(self, angle: float, angular_velocity: float = 0.0) -> np.ndarray:
        """Consistent state for a rod at `angle` from the downward vertical."""
        L = self.params.length
        x, y = L * np.sin(angle), -L * np.cos(angle)
        vx, vy = L * angular_velocity * np.cos(angle), L * angular_velocity * np.sin(angle)
        return np.array([x, y, vx, vy], dtype=float)

    def derivatives(self, t: float, y: np.ndarray) -> np.ndarray:
        q, u, _ = split_state(np.asarray(y, dtype=float), self.n_q, self.n_u, self.n_z)
        g = self.params.gravity

        r2 = float(q @ q)
        if r2 <= 0.0:
            raise FloatingPointError("Pendulum bob reached the pivot")
        tension = (float(u @ u) - g * q[1]) / r2

        a = -tension * q
        a[1] -= g
        return np.concatenate([u, a])

    def error_weights(self, t: float, y: np.ndarray) -> np.ndarray:
        return np.full(self.n_q + self.n_u + self.n_z, 1.0 / self.params.error_scale)

    def position_errors(self, t: float, q: np.ndarray) -> np.ndarray:
        L = self.params.length
        return np.array([(float(q @ q) - L * L) / (2.0 * L)])

    def position_jacobian(self, t: float, q: np.ndarray) -> np.ndarray:
        return (np.asarray(q, dtype=float) / self.params.length).reshape(1, -1)

    def velocity_errors(self, t: float, q: np.ndarray, u: np.ndarray) -> np.ndarray:
        return np.array([float(q @ u) / self.params.length])

    def velocity_jacobian(self, t: float, q: np.ndarray) -> np.ndarray:
        return self.position_jacobian(t, q)

    def constraint_errors(self, t: float, y: np.ndarray) -> np.ndarray:
        q, u, _ = split_state(np.asarray(y, dtype=float), self.n_q, self.n_u, self.n_z)
        return np.concatenate([self.position_errors(t, q), self.velocity_errors(t, q, u)])

    def constraint_one_over_tolerances(self) -> np.ndarray:
        return np.ones(2)

    def energy(self, y: np.ndarray) -> float:
        """Total (kinetic + potential) energy per unit mass."""
        q, u, _ = split_state(np.asarray(y, dtype=float), self.n_q, self.n_u, self.n_z)
        return 0.5 * float(u @ u) + self.params.gravity * float(q[1])
