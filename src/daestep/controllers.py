"""Adaptive step-size controller for DAE integration methods.

Core ideas:
- A trial step produces an absolute error estimate for every element of y.
- Convert the error vector to a scalar using the system's weighted RMS norm
- Accept the step if err_norm <= accuracy
- Update h using the order of the error estimate and a safety factor
"""

from __future__ import annotations

from dataclasses import dataclass, field
import math

import numpy as np


@dataclass(frozen=True)
class ControllerConfig:
    """Configuration for adaptive step size control."""

    accuracy: float = 1e-3
    safety: float = 0.9

    # Bounds on the change of h in a single adjustment.
    min_shrink: float = 0.1
    max_grow: float = 5.0

    # A rejected step shrinks by at least hysteresis_low; an accepted step
    # only changes h when the proposal beats hysteresis_high * h.
    hysteresis_low: float = 0.9
    hysteresis_high: float = 1.2

    max_step_size: float = math.inf

    def __post_init__(self) -> None:
        if not self.accuracy > 0.0:
            raise ValueError(f"accuracy must be positive, got {self.accuracy}")
        if not 0.0 < self.safety <= 1.0:
            raise ValueError(f"safety must be in (0, 1], got {self.safety}")
        if not 0.0 < self.min_shrink < self.hysteresis_low < 1.0:
            raise ValueError("expected 0 < min_shrink < hysteresis_low < 1")
        if not 1.0 < self.hysteresis_high < self.max_grow:
            raise ValueError("expected 1 < hysteresis_high < max_grow")
        if not self.max_step_size > 0.0:
            raise ValueError(f"max_step_size must be positive, got {self.max_step_size}")


@dataclass(frozen=True)
class StepSizeDecision:
    accept: bool
    next_step_size: float


def weighted_rms_norm(v: np.ndarray, weights: np.ndarray) -> float:
    """Compute the weighted root-mean-square norm of a vector.

        norm = sqrt( mean( (w_i * v_i)^2 ) )

    An empty vector has norm 0.
    """
    v = np.asarray(v, dtype=float)
    weights = np.asarray(weights, dtype=float)

    if v.shape != weights.shape:
        raise ValueError(f"v and weights must have the same shape, got {v.shape} and {weights.shape}")
    if v.ndim != 1:
        raise ValueError("Expected 1D vectors")
    if v.size == 0:
        return 0.0

    z = weights * v
    return float(np.sqrt(np.mean(z * z)))


@dataclass
class AdaptiveController:
    """Accept/reject test and step size proposal for variable step integration."""

    config: ControllerConfig = field(default_factory=ControllerConfig)

    @property
    def accuracy(self) -> float:
        return self.config.accuracy

    def accept(self, *, err_norm: float) -> bool:
        # NaN compares False, so a non-finite error never passes.
        return err_norm <= self.config.accuracy

    def propose_step_size(self, *, h: float, err_norm: float, err_order: int, accepted: bool,
                          was_artificially_limited: bool = False) -> float:
        if h <= 0.0:
            raise ValueError(f"Step size must be positive, got {h}")

        cfg = self.config

        # Classic controller:
        #   h_new = safety * h * (accuracy / err_norm)^(1/(err_order+1))
        if not np.isfinite(err_norm):
            h_new = cfg.min_shrink * h
        elif err_norm == 0.0:
            h_new = math.inf
        else:
            h_new = cfg.safety * h * (cfg.accuracy / err_norm) ** (1.0 / (err_order + 1))

        if not accepted:
            # Shrink at least a little so the retry differs, never collapse.
            h_new = min(h_new, cfg.hysteresis_low * h)
            h_new = max(h_new, cfg.min_shrink * h)
        else:
            # A successful step never shrinks h. Small gains are ignored, and
            # a boundary-clipped step would hit the same boundary again.
            if h_new < cfg.hysteresis_high * h or was_artificially_limited:
                h_new = h
            h_new = min(h_new, cfg.max_grow * h)

        return min(h_new, cfg.max_step_size)

    def adjust_step_size(self, err_norm: float, err_order: int, h: float,
                         was_artificially_limited: bool) -> StepSizeDecision:
        """Decide whether the step just attempted is accepted and select the next h.

        Parameters:
            err_norm: Weighted RMS norm of the error estimate of the step.
            err_order: Order of the error estimator, so we know how the error
                responds to a change of step size.
            h: Step size that produced err_norm.
            was_artificially_limited: True when h was clipped to reach a
                report, event, or final time. Such a step never leads to growth.

        Returns:
            StepSizeDecision with the verdict and the proposed next step size.
        """
        accepted = self.accept(err_norm=err_norm)
        h_next = self.propose_step_size(
            h=h,
            err_norm=err_norm,
            err_order=err_order,
            accepted=accepted,
            was_artificially_limited=was_artificially_limited,
        )
        return StepSizeDecision(accept=accepted, next_step_size=h_next)
