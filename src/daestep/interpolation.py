"""Third order Hermite interpolation inside an accepted step."""

from __future__ import annotations

from typing import Tuple

import numpy as np


def hermite_interpolate(t0: float, y0: np.ndarray, ydot0: np.ndarray,
                        t1: float, y1: np.ndarray, ydot1: np.ndarray,
                        t: float) -> Tuple[np.ndarray, np.ndarray]:
    """Evaluate the cubic Hermite spline through (t0, y0, ydot0) and (t1, y1, ydot1).

    With h = t1 - t0 and s = (t - t0) / h:
        y(t)    = h00 y0 + h10 h ydot0 + h01 y1 + h11 h ydot1
        h00 = 2s^3 - 3s^2 + 1,  h10 = s^3 - 2s^2 + s
        h01 = -2s^3 + 3s^2,     h11 = s^3 - s^2

    Parameters:
        t0, y0, ydot0: Start of the step.
        t1, y1, ydot1: End of the step.
        t: Query time, t0 <= t <= t1.

    Returns:
        y: Interpolated state at t.
        ydot: Derivative of the spline at t.
    """
    if not t0 <= t <= t1:
        raise ValueError(f"Interpolation time {t} outside step [{t0}, {t1}]")

    y0 = np.asarray(y0, dtype=float)
    y1 = np.asarray(y1, dtype=float)
    ydot0 = np.asarray(ydot0, dtype=float)
    ydot1 = np.asarray(ydot1, dtype=float)

    # Endpoints are returned exactly.
    if t == t0:
        return y0.copy(), ydot0.copy()
    if t == t1:
        return y1.copy(), ydot1.copy()

    h = t1 - t0
    s = (t - t0) / h
    s2 = s * s
    s3 = s2 * s

    h00 = 2 * s3 - 3 * s2 + 1
    h10 = s3 - 2 * s2 + s
    h01 = -2 * s3 + 3 * s2
    h11 = s3 - s2
    y = h00 * y0 + h10 * h * ydot0 + h01 * y1 + h11 * h * ydot1

    # d/dt = (1/h) d/ds
    d00 = (6 * s2 - 6 * s) / h
    d10 = 3 * s2 - 4 * s + 1
    d01 = (-6 * s2 + 6 * s) / h
    d11 = 3 * s2 - 2 * s
    ydot = d00 * y0 + d10 * ydot0 + d01 * y1 + d11 * ydot1

    return y, ydot
