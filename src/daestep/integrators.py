"""Integrator facade.

This module re-exports the step controller and the integration methods so
the rest of a project can depend on a stable import path:

    from daestep import integrators

    stepper = integrators.EmbeddedRKStepper(integrators.dormand_prince54())
    controller = integrators.StepController(system, stepper, projector)
"""

from __future__ import annotations

from .controllers import AdaptiveController, ControllerConfig, StepSizeDecision, weighted_rms_norm
from .errors import IntegratorError, ProjectionFailure, StepFailedError, UnimplementedMethodError
from .implicit_integrators import TrapezoidStepper
from .integrator import (
    IntegratorConfig,
    IntegratorStatistics,
    StatePoint,
    StepController,
    StepStatus,
)
from .methods import MethodDescriptor, ODEStepEvaluator, ODEStepResult
from .projection import NewtonProjector, ProjectionResult
from .runge_kutta_integrators import (
    EmbeddedRKStepper,
    EmbeddedRKTableau,
    bogacki_shampine32,
    dormand_prince54,
)

__all__ = [
    "AdaptiveController",
    "ControllerConfig",
    "StepSizeDecision",
    "weighted_rms_norm",
    "IntegratorError",
    "ProjectionFailure",
    "StepFailedError",
    "UnimplementedMethodError",
    "IntegratorConfig",
    "IntegratorStatistics",
    "StatePoint",
    "StepController",
    "StepStatus",
    "MethodDescriptor",
    "ODEStepEvaluator",
    "ODEStepResult",
    "NewtonProjector",
    "ProjectionResult",
    "EmbeddedRKStepper",
    "EmbeddedRKTableau",
    "bogacki_shampine32",
    "dormand_prince54",
    "TrapezoidStepper",
]
