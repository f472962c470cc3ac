"""Adaptive step controller for DAE integration.

StepController owns the integration state and runs the step loop:

    propose h -> clip to the next boundary -> attempt a DAE step
        not converged -> shrink h, retry
        converged     -> error test
            rejected  -> shrink h, retry (time does not advance)
            accepted  -> commit, adopt the next h

Each call to `step_to` commits at most one accepted step. The retry loop is
bounded; exhausting it raises StepFailedError.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
import math
from typing import NoReturn, Optional

import numpy as np

from .controllers import AdaptiveController, ControllerConfig, weighted_rms_norm
from .dynamics import DynamicalSystem
from .errors import ProjectionFailure, StepFailedError
from .interpolation import hermite_interpolate
from .methods import MethodDescriptor, ODEStepEvaluator
from .projection import ConstraintProjector
from .step_wrapper import attempt_dae_step

logger = logging.getLogger(__name__)


class StepStatus(Enum):
    """Why `step_to` returned."""

    REACHED_REPORT_TIME = "ReachedReportTime"
    REACHED_SCHEDULED_EVENT = "ReachedScheduledEvent"
    REACHED_STEP_LIMIT = "ReachedStepLimit"
    END_OF_SIMULATION = "EndOfSimulation"
    TIME_HAS_ADVANCED = "TimeHasAdvanced"
    INVALID = "Invalid"


@dataclass(frozen=True)
class IntegratorConfig:
    """Configuration for the step controller.

    Attributes:
        controller: Accept/reject and step size adaptation settings.
        constraint_tolerance: Defaults to the controller accuracy.
        initial_step_size: First step to try; None picks one heuristically.
        min_step_size: A retry below this (or below the time resolution at
            the current time) is a fatal step failure.
        final_time: End of the simulation.
        project_every_step: Project even when constraints are satisfied.
        convergence_shrink: Step size factor applied after a convergence failure.
        max_reject: Consecutive failed attempts after which the step fails.
        internal_step_limit: Accepted steps allowed between boundary returns
            before `step_to` reports REACHED_STEP_LIMIT; None for no limit.
        time_tolerance: Relative tolerance under which two times coincide.
        project_initial_state: Project the state passed to `initialize`
            when it violates the constraints.
    """

    controller: ControllerConfig = field(default_factory=ControllerConfig)
    constraint_tolerance: Optional[float] = None
    initial_step_size: Optional[float] = None
    min_step_size: float = 0.0
    final_time: float = math.inf
    project_every_step: bool = False
    convergence_shrink: float = 0.5
    max_reject: int = 100
    internal_step_limit: Optional[int] = None
    time_tolerance: float = 1e-12
    project_initial_state: bool = True

    def __post_init__(self) -> None:
        if self.constraint_tolerance is not None and not self.constraint_tolerance > 0.0:
            raise ValueError(f"constraint_tolerance must be positive, got {self.constraint_tolerance}")
        if self.initial_step_size is not None and not self.initial_step_size > 0.0:
            raise ValueError(f"initial_step_size must be positive, got {self.initial_step_size}")
        if not self.min_step_size >= 0.0:
            raise ValueError(f"min_step_size must be non-negative, got {self.min_step_size}")
        if not 0.0 < self.convergence_shrink < 1.0:
            raise ValueError(f"convergence_shrink must be in (0, 1), got {self.convergence_shrink}")
        if self.max_reject < 1:
            raise ValueError("max_reject must be at least 1")
        if self.internal_step_limit is not None and self.internal_step_limit < 1:
            raise ValueError("internal_step_limit must be at least 1")
        if not self.time_tolerance > 0.0:
            raise ValueError("time_tolerance must be positive")

    @property
    def constraint_tolerance_in_use(self) -> float:
        if self.constraint_tolerance is None:
            return self.controller.accuracy
        return self.constraint_tolerance


@dataclass(frozen=True)
class StatePoint:
    t: float
    y: np.ndarray
    ydot: np.ndarray


@dataclass
class IntegratorState:
    """Previous (t0) and advanced (t1) points of the current step.

    Between steps, [t0, t1] is the last accepted step. At the start of the
    next step the advanced point becomes the previous one.
    """

    t0: float
    y0: np.ndarray
    ydot0: np.ndarray
    t1: float
    y1: np.ndarray
    ydot1: np.ndarray
    y_err_est: np.ndarray
    h_was_artificially_limited: bool = False


@dataclass
class StepSizeState:
    min_order: int
    max_order: int
    accuracy_in_use: float
    constraint_tolerance_in_use: float
    current_step_size: float = math.nan
    last_step_size: float = math.nan
    actual_initial_step_size_taken: float = math.nan


@dataclass
class IntegratorStatistics:
    """Counters, monotonically non-decreasing until reset()."""

    steps_attempted: int = 0
    steps_taken: int = 0
    error_test_failures: int = 0
    convergence_test_failures: int = 0
    convergent_iterations: int = 0
    divergent_iterations: int = 0

    @property
    def iterations(self) -> int:
        return self.convergent_iterations + self.divergent_iterations

    def reset(self) -> None:
        self.steps_attempted = 0
        self.steps_taken = 0
        self.error_test_failures = 0
        self.convergence_test_failures = 0
        self.convergent_iterations = 0
        self.divergent_iterations = 0


def _time_resolution(t: float) -> float:
    return 16.0 * np.finfo(float).eps * max(1.0, abs(t))


class StepController:
    """Adaptive DAE integrator built on a pluggable ODE step formula.

    Parameters:
        system: Model being integrated.
        evaluator: Integration method (ODE step formula).
        projector: Constraint projector; None for unconstrained systems.
        config: Integrator settings.
    """

    def __init__(self, system: DynamicalSystem, evaluator: ODEStepEvaluator,
                 projector: ConstraintProjector | None = None,
                 config: IntegratorConfig | None = None) -> None:
        self.system = system
        self.evaluator = evaluator
        self.projector = projector
        self.config = config if config is not None else IntegratorConfig()
        self.adapter = AdaptiveController(self.config.controller)

        method = self.method
        self._sizes = StepSizeState(
            min_order=method.min_order,
            max_order=method.max_order,
            accuracy_in_use=self.config.controller.accuracy,
            constraint_tolerance_in_use=self.config.constraint_tolerance_in_use,
        )
        self._stats = IntegratorStatistics()
        self._state: IntegratorState | None = None
        self._last_status = StepStatus.INVALID
        self._last_error_norm = math.nan
        self._steps_since_boundary = 0

    # ----------------------------------------------------------------------
    # Initialization
    # ----------------------------------------------------------------------

    def initialize(self, t0: float, y0: np.ndarray) -> None:
        """Start a new integration from (t0, y0). Statistics are reset."""
        system = self.system
        t0 = float(t0)
        y = np.array(y0, dtype=float)
        if y.ndim != 1:
            raise ValueError("y0 must be a 1D array")
        n = system.n_q + system.n_u + system.n_z
        if y.shape != (n,):
            raise ValueError(f"Expected y0.shape == ({n},), got {y.shape}")
        if not np.isfinite(t0):
            raise ValueError(f"Initial time must be finite, got {t0}")
        if t0 > self.config.final_time:
            raise ValueError(f"Initial time {t0} is past the final time {self.config.final_time}")

        tol = self._sizes.constraint_tolerance_in_use
        if self.projector is not None and self.config.project_initial_state:
            cons_err = weighted_rms_norm(
                np.asarray(system.constraint_errors(t0, y), dtype=float),
                np.asarray(system.constraint_one_over_tolerances(), dtype=float),
            )
            if cons_err > tol:
                outcome = self.projector.project(t0, y, np.zeros_like(y), tol)
                if not outcome.success:
                    raise ProjectionFailure(f"Unable to project the initial state: {outcome.message}")

        ydot = np.asarray(system.derivatives(t0, y), dtype=float)
        self._state = IntegratorState(
            t0=t0, y0=y.copy(), ydot0=ydot.copy(),
            t1=t0, y1=y, ydot1=ydot,
            y_err_est=np.zeros_like(y),
        )

        sizes = self._sizes
        sizes.last_step_size = math.nan
        sizes.actual_initial_step_size_taken = math.nan
        if self.config.initial_step_size is not None:
            sizes.current_step_size = self.config.initial_step_size
        else:
            sizes.current_step_size = self._initial_step_size(t0, y, ydot)
        sizes.current_step_size = min(sizes.current_step_size, self.config.controller.max_step_size)

        self._stats.reset()
        self._last_status = StepStatus.INVALID
        self._last_error_norm = math.nan
        self._steps_since_boundary = 0
        logger.debug("initialized %s at t=%g with h=%g", self.method.name, t0, sizes.current_step_size)

    def _initial_step_size(self, t0: float, y0: np.ndarray, f0: np.ndarray) -> float:
        """Estimate a good initial step size (Hairer algorithm).

        Uses the norm of the initial slope and a second derivative estimate,
        scaled by the error weights and the accuracy, to pick a step whose
        local error is near the accuracy.
        """
        accuracy = self._sizes.accuracy_in_use
        max_step = self.config.controller.max_step_size
        w = np.asarray(self.system.error_weights(t0, y0), dtype=float) / accuracy

        d0 = weighted_rms_norm(y0, w)
        d1 = weighted_rms_norm(f0, w)
        if d0 < 1e-5 or d1 < 1e-5:
            h0 = 1e-6
        else:
            h0 = 0.01 * d0 / d1
        h0 = min(h0, max_step)

        # Estimate second derivative
        y1 = y0 + h0 * f0
        f1 = np.asarray(self.system.derivatives(t0 + h0, y1), dtype=float)
        d2 = weighted_rms_norm(f1 - f0, w) / h0

        if max(d1, d2) <= 1e-15:
            h1 = max(1e-6, h0 * 1e-3)
        else:
            h1 = (0.01 / max(d1, d2)) ** (1.0 / (self._sizes.max_order + 1))

        h = min(100.0 * h0, h1, max_step)
        return max(h, self.config.min_step_size, _time_resolution(t0))

    # ----------------------------------------------------------------------
    # Stepping
    # ----------------------------------------------------------------------

    def times_coincide(self, a: float, b: float) -> bool:
        """True when a and b are equal within the time tolerance."""
        if a == b:
            return True
        if math.isinf(a) or math.isinf(b):
            return False
        return abs(a - b) <= self.config.time_tolerance * max(1.0, abs(a), abs(b))

    def step_to(self, report_time: float, scheduled_event_time: float = math.inf) -> StepStatus:
        """Advance by at most one accepted step toward the next boundary.

        Parameters:
            report_time: Next time the caller wants a state reported.
            scheduled_event_time: Next time a scheduled event occurs.

        Returns:
            The StepStatus describing where the advanced state landed. When
            report and event times coincide, the event status wins.
        """
        state = self._require_state()
        t = state.t1
        for name, value in (("report_time", report_time), ("scheduled_event_time", scheduled_event_time)):
            if math.isnan(value):
                raise ValueError(f"{name} must not be NaN")
            if value < t and not self.times_coincide(value, t):
                raise ValueError(f"{name}={value} is earlier than the current time {t}")

        final_time = self.config.final_time

        # Boundaries already reached: report them without stepping.
        if t >= final_time or self.times_coincide(t, final_time):
            return self._finish(StepStatus.END_OF_SIMULATION)
        if self.times_coincide(t, scheduled_event_time):
            return self._finish(StepStatus.REACHED_SCHEDULED_EVENT)
        if self.times_coincide(t, report_time):
            return self._finish(StepStatus.REACHED_REPORT_TIME)

        t_max = min(report_time, scheduled_event_time, final_time)
        self._take_one_step(t_max)

        t1 = state.t1
        if self.times_coincide(t1, scheduled_event_time):
            return self._finish(StepStatus.REACHED_SCHEDULED_EVENT)
        if self.times_coincide(t1, report_time):
            return self._finish(StepStatus.REACHED_REPORT_TIME)
        if self.times_coincide(t1, final_time):
            return self._finish(StepStatus.END_OF_SIMULATION)

        self._steps_since_boundary += 1
        limit = self.config.internal_step_limit
        if limit is not None and self._steps_since_boundary >= limit:
            return self._finish(StepStatus.REACHED_STEP_LIMIT)
        self._last_status = StepStatus.TIME_HAS_ADVANCED
        return StepStatus.TIME_HAS_ADVANCED

    def _finish(self, status: StepStatus) -> StepStatus:
        self._steps_since_boundary = 0
        self._last_status = status
        return status

    def _take_one_step(self, t_max: float) -> None:
        state = self._require_state()
        sizes = self._sizes
        stats = self._stats
        cfg = self.config

        # Commit the advanced point as the start of this step.
        state.t0 = state.t1
        state.y0 = state.y1.copy()
        state.ydot0 = state.ydot1.copy()
        t0 = state.t0

        sizes.current_step_size = max(sizes.current_step_size, cfg.min_step_size)
        n_failures = 0
        while True:
            h = sizes.current_step_size
            if n_failures:
                h_min = max(cfg.min_step_size, _time_resolution(t0))
                if not h >= h_min:
                    self._fail(f"Step size {h:g} fell below the minimum {h_min:g} at t={t0:g}", t0, h)
                if n_failures >= cfg.max_reject:
                    self._fail(f"Step at t={t0:g} failed {n_failures} consecutive attempts", t0, h)

            # Clip to the boundary. A step within tolerance of it lands on it.
            if self.times_coincide(t0 + h, t_max):
                t1, limited = t_max, False
            elif t0 + h > t_max:
                t1, limited = t_max, True
            else:
                t1, limited = t0 + h, False
            h_try = t1 - t0
            if not h_try > 0.0:
                self._fail(f"Unable to advance time past {t0:g}", t0, h)
            state.h_was_artificially_limited = limited

            result = attempt_dae_step(
                self.evaluator, self.system, self.projector,
                t0, t1, state.y0, state.ydot0,
                accuracy=sizes.accuracy_in_use,
                constraint_tolerance=sizes.constraint_tolerance_in_use,
                project_every_step=cfg.project_every_step,
            )

            if not result.converged:
                self._convergence_failure(t0, h_try, result.num_iterations, result.message)
                n_failures += 1
                continue

            decision = self.adapter.adjust_step_size(result.err_norm, result.err_order, h_try, limited)

            if not decision.accept:
                stats.convergent_iterations += result.num_iterations
                stats.steps_attempted += 1
                stats.error_test_failures += 1
                sizes.current_step_size = decision.next_step_size
                n_failures += 1
                logger.debug("error test failed at t=%g, h=%g, err=%.3e", t0, h_try, result.err_norm)
                continue

            # Nothing is committed until the derivative at the new point exists.
            try:
                ydot1 = np.asarray(self.system.derivatives(t1, result.y1), dtype=float)
            except Exception as exc:
                self._convergence_failure(t0, h_try, result.num_iterations, f"derivatives failed: {exc}")
                n_failures += 1
                continue

            stats.convergent_iterations += result.num_iterations
            stats.steps_attempted += 1
            stats.steps_taken += 1
            state.t1 = t1
            state.y1 = result.y1
            state.y_err_est = result.y_err_est
            state.ydot1 = ydot1

            sizes.last_step_size = h_try
            if math.isnan(sizes.actual_initial_step_size_taken):
                sizes.actual_initial_step_size_taken = h_try
            # A clipped step keeps the step size it was clipped from.
            if limited:
                sizes.current_step_size = min(h, cfg.controller.max_step_size)
            else:
                sizes.current_step_size = decision.next_step_size
            self._last_error_norm = result.err_norm
            return

    def _convergence_failure(self, t0: float, h_try: float, num_iterations: int, message: str) -> None:
        self._stats.convergence_test_failures += 1
        self._stats.divergent_iterations += num_iterations
        self._sizes.current_step_size = self.config.convergence_shrink * h_try
        logger.debug("convergence failure at t=%g, h=%g: %s", t0, h_try, message)

    def _fail(self, message: str, t: float, h: float) -> NoReturn:
        logger.error(message)
        raise StepFailedError(message, t=t, h=h)

    def _require_state(self) -> IntegratorState:
        if self._state is None:
            raise RuntimeError("StepController.initialize() must be called before stepping")
        return self._state

    # ----------------------------------------------------------------------
    # Dense output
    # ----------------------------------------------------------------------

    def create_interpolated_state(self, t: float) -> StatePoint:
        """State at a time inside the last accepted step, by Hermite interpolation."""
        state = self._require_state()
        y, ydot = hermite_interpolate(state.t0, state.y0, state.ydot0, state.t1, state.y1, state.ydot1, t)
        return StatePoint(t=float(t), y=y, ydot=ydot)

    def back_up_advanced_state_by_interpolation(self, t: float) -> None:
        """Forget the part of the last step after t, making t the advanced time.

        Used once an event has been localized to an interval ending before
        the advanced time. Derivatives are re-evaluated at the interpolated
        state so the next step starts from consistent values.
        """
        state = self._require_state()
        if t == state.t1:
            return
        y, _ = hermite_interpolate(state.t0, state.y0, state.ydot0, state.t1, state.y1, state.ydot1, t)
        state.t1 = float(t)
        state.y1 = y
        state.ydot1 = np.asarray(self.system.derivatives(state.t1, y), dtype=float)
        if state.t1 > state.t0:
            self._sizes.last_step_size = state.t1 - state.t0

    # ----------------------------------------------------------------------
    # Accessors
    # ----------------------------------------------------------------------

    @property
    def method(self) -> MethodDescriptor:
        return self.evaluator.method

    @property
    def method_name(self) -> str:
        return self.method.name

    @property
    def method_min_order(self) -> int:
        return self.method.min_order

    @property
    def method_max_order(self) -> int:
        return self.method.max_order

    @property
    def method_has_error_control(self) -> bool:
        return self.method.has_error_control

    @property
    def accuracy_in_use(self) -> float:
        return self._sizes.accuracy_in_use

    @property
    def constraint_tolerance_in_use(self) -> float:
        return self._sizes.constraint_tolerance_in_use

    @property
    def previous_time(self) -> float:
        return self._require_state().t0

    @property
    def advanced_time(self) -> float:
        return self._require_state().t1

    @property
    def previous_state(self) -> StatePoint:
        state = self._require_state()
        return StatePoint(state.t0, state.y0.copy(), state.ydot0.copy())

    @property
    def advanced_state(self) -> StatePoint:
        state = self._require_state()
        return StatePoint(state.t1, state.y1.copy(), state.ydot1.copy())

    @property
    def error_estimate(self) -> np.ndarray:
        return self._require_state().y_err_est.copy()

    @property
    def was_artificially_limited(self) -> bool:
        return self._require_state().h_was_artificially_limited

    @property
    def last_status(self) -> StepStatus:
        return self._last_status

    @property
    def last_error_norm(self) -> float:
        """Weighted RMS error norm of the last accepted step."""
        return self._last_error_norm

    @property
    def actual_initial_step_size_taken(self) -> float:
        return self._sizes.actual_initial_step_size_taken

    @property
    def previous_step_size_taken(self) -> float:
        return self._sizes.last_step_size

    @property
    def predicted_next_step_size(self) -> float:
        return self._sizes.current_step_size

    @property
    def statistics(self) -> IntegratorStatistics:
        return self._stats

    @property
    def num_steps_attempted(self) -> int:
        return self._stats.steps_attempted

    @property
    def num_steps_taken(self) -> int:
        return self._stats.steps_taken

    @property
    def num_error_test_failures(self) -> int:
        return self._stats.error_test_failures

    @property
    def num_convergence_test_failures(self) -> int:
        return self._stats.convergence_test_failures

    @property
    def num_convergent_iterations(self) -> int:
        return self._stats.convergent_iterations

    @property
    def num_divergent_iterations(self) -> int:
        return self._stats.divergent_iterations

    @property
    def num_iterations(self) -> int:
        return self._stats.iterations

    def reset_statistics(self) -> None:
        self._stats.reset()
