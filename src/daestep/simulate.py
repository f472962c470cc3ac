"""Simulation driver for DAE IVPs with adaptive stepping.

This module is the outer loop around a StepController:
- It calls `step_to` with the next report time and the next scheduled event
- It samples dense output at requested times without re-integrating
- It localizes witness-function sign changes by bisection on interpolated
  states, then backs the step up to the event

Recorded diagnostics:
- time points and states of every accepted step (report times included)
- accepted step sizes and their error norms
- dense output at t_eval
- scheduled and witness events
- integrator statistics
- optional energy + drift from initial value
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
from typing import Callable, Optional, Sequence, Tuple

import numpy as np

from .integrator import IntegratorStatistics, StepController, StepStatus

logger = logging.getLogger(__name__)

WitnessFn = Callable[[float, np.ndarray], float]
EnergyFn = Callable[[np.ndarray], float]


@dataclass(frozen=True)
class EventRecord:
    """An event reached during the simulation.

    kind is "scheduled" for caller-supplied event times and "witness" for
    sign changes of a witness function; index identifies which one.
    """

    t: float
    y: np.ndarray
    kind: str
    index: int


@dataclass(frozen=True)
class SimulationResult:
    t: np.ndarray
    y: np.ndarray
    h: np.ndarray
    err_norm: np.ndarray
    t_eval: np.ndarray
    y_eval: np.ndarray
    events: Tuple[EventRecord, ...]
    statistics: IntegratorStatistics
    status: StepStatus
    energy: Optional[np.ndarray]
    energy_drift: Optional[np.ndarray]


def localize_event(controller: StepController, witness: WitnessFn, g_low: float, tol: float) -> float:
    """Bisect a sign change of `witness` inside the last accepted step.

    The witness has value g_low at the previous time and the opposite sign
    (or zero) at the advanced time. Only interpolated states are used.

    Returns:
        The upper end of the final bracket, so the event has already
        happened at the returned time.
    """
    lo = controller.previous_time
    hi = controller.advanced_time
    while hi - lo > tol:
        mid = 0.5 * (lo + hi)
        if mid <= lo or mid >= hi:
            break
        g_mid = float(witness(mid, controller.create_interpolated_state(mid).y))
        if g_mid != 0.0 and np.sign(g_mid) == np.sign(g_low):
            lo, g_low = mid, g_mid
        else:
            hi = mid
    return hi


def _crossed(g0: float, g1: float) -> bool:
    return g0 != 0.0 and (g1 == 0.0 or np.sign(g0) != np.sign(g1))


def simulate(
    controller: StepController,
    t0: float,
    y0: np.ndarray,
    t_final: float,
    *,
    report_times: Sequence[float] | None = None,
    scheduled_events: Sequence[float] = (),
    witnesses: Sequence[WitnessFn] = (),
    t_eval: Sequence[float] | None = None,
    event_tol: float = 1e-10,
    energy_fn: EnergyFn | None = None,
    max_steps: int = 1_000_000,
) -> SimulationResult:
    """Integrate from (t0, y0) to t_final.

    Args:
        controller: Configured step controller; it is (re)initialized here.
        t0, y0: Initial time and state.
        t_final: End time; always reached exactly unless an END_OF_SIMULATION
            from the controller's own final time comes first.
        report_times: Times every step sequence must land on exactly.
        scheduled_events: Times of scheduled events, recorded as events.
        witnesses: Functions g(t, y) whose sign changes are events.
        t_eval: Times at which to sample dense output.
        event_tol: Width of the bracket at which event bisection stops.
        energy_fn: Optional energy function E(y) for diagnostics.
        max_steps: Hard limit on accepted steps.

    Returns:
        SimulationResult with recorded trajectory and diagnostics.
    """
    t0 = float(t0)
    t_final = float(t_final)
    if t_final < t0:
        raise ValueError("t_final must not be earlier than t0")
    if event_tol <= 0.0:
        raise ValueError("event_tol must be positive")

    controller.initialize(t0, y0)
    start = controller.advanced_state

    reports = sorted({float(t) for t in (report_times or ()) if t0 < t < t_final} | {t_final})
    schedule = sorted(float(t) for t in scheduled_events if t0 < t <= t_final)
    samples = sorted(float(t) for t in (t_eval or ()) if t0 <= t <= t_final)

    t_hist: list[float] = [start.t]
    y_hist: list[np.ndarray] = [start.y]
    h_hist: list[float] = []
    err_hist: list[float] = []
    events: list[EventRecord] = []
    t_dense: list[float] = []
    y_dense: list[np.ndarray] = []

    i_report = 0
    i_event = 0
    i_sample = 0
    while i_sample < len(samples) and samples[i_sample] == t0:
        t_dense.append(t0)
        y_dense.append(start.y)
        i_sample += 1

    g_prev = [float(w(start.t, start.y)) for w in witnesses]
    n_steps = 0
    status = StepStatus.INVALID

    while True:
        report = reports[i_report]
        event = schedule[i_event] if i_event < len(schedule) else np.inf
        t_before = controller.advanced_time
        status = controller.step_to(report, event)

        if controller.advanced_time > t_before:
            n_steps += 1
            if n_steps > max_steps:
                raise RuntimeError(f"Exceeded max_steps={max_steps}")

            # Witness events: back up to the earliest localized crossing.
            adv = controller.advanced_state
            g_now = [float(w(adv.t, adv.y)) for w in witnesses]
            triggered = [i for i, w in enumerate(witnesses) if _crossed(g_prev[i], g_now[i])]
            if triggered:
                times = {i: localize_event(controller, witnesses[i], g_prev[i], event_tol) for i in triggered}
                t_event = min(times.values())
                if t_event < adv.t:
                    controller.back_up_advanced_state_by_interpolation(t_event)
                    status = StepStatus.TIME_HAS_ADVANCED
                adv = controller.advanced_state
                for i in triggered:
                    if times[i] <= t_event:
                        events.append(EventRecord(t=adv.t, y=adv.y, kind="witness", index=i))
                        logger.debug("witness %d triggered at t=%g", i, adv.t)
                g_now = [float(w(adv.t, adv.y)) for w in witnesses]
            g_prev = g_now

            while i_sample < len(samples) and samples[i_sample] <= adv.t:
                state = controller.create_interpolated_state(samples[i_sample])
                t_dense.append(state.t)
                y_dense.append(state.y)
                i_sample += 1

            t_hist.append(adv.t)
            y_hist.append(adv.y)
            h_hist.append(controller.previous_step_size_taken)
            err_hist.append(controller.last_error_norm)

        if status is StepStatus.REACHED_SCHEDULED_EVENT:
            adv = controller.advanced_state
            events.append(EventRecord(t=adv.t, y=adv.y, kind="scheduled", index=i_event))
            i_event += 1
            # A report time coinciding with the event is reached as well.
            if controller.times_coincide(adv.t, report):
                status = StepStatus.REACHED_REPORT_TIME
        if status is StepStatus.REACHED_REPORT_TIME:
            if i_report == len(reports) - 1:
                break
            i_report += 1
        elif status is StepStatus.END_OF_SIMULATION:
            break

    energy_arr = None
    drift_arr = None
    if energy_fn is not None:
        energy_arr = np.asarray([float(energy_fn(yi)) for yi in y_hist], dtype=float)
        drift_arr = energy_arr - energy_arr[0]

    n = start.y.shape[0]
    return SimulationResult(
        t=np.asarray(t_hist, dtype=float),
        y=np.vstack([yi.reshape(1, -1) for yi in y_hist]).astype(float, copy=False),
        h=np.asarray(h_hist, dtype=float),
        err_norm=np.asarray(err_hist, dtype=float),
        t_eval=np.asarray(t_dense, dtype=float),
        y_eval=np.vstack(y_dense) if y_dense else np.empty((0, n), dtype=float),
        events=tuple(events),
        statistics=replace(controller.statistics),
        status=status,
        energy=energy_arr,
        energy_drift=drift_arr,
    )
