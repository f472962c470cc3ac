"""Run the Cartesian pendulum (thin CLI glue).

Usage:
  python scripts/run_pendulum.py --method rk54 --accuracy 1e-6 --t-final 10 --save out/pendulum.npz

Policy:
- No numerics here: no RHS/integrators/controllers beyond wiring.
- Orchestration only.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
import sys

# Allow running directly from a src-layout repo without installation.
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import numpy as np

from daestep.controllers import ControllerConfig
from daestep.dynamics import CartesianPendulum, PendulumParams
from daestep.implicit_integrators import TrapezoidStepper
from daestep.integrator import IntegratorConfig, StepController
from daestep.projection import NewtonProjector
from daestep.runge_kutta_integrators import EmbeddedRKStepper, bogacki_shampine32, dormand_prince54
from daestep.simulate import simulate


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Integrate a planar pendulum written as a constrained DAE")
    p.add_argument("--method", choices=("rk54", "rk32", "trapezoid"), default="rk54", help="Integration method (default: rk54)")
    p.add_argument("--accuracy", type=float, default=1e-6, help="Requested accuracy (default: 1e-6)")
    p.add_argument("--constraint-tol", type=float, default=None, help="Constraint tolerance (default: accuracy)")
    p.add_argument("--t-final", type=float, default=10.0, help="End time (default: 10.0)")
    p.add_argument("--angle", type=float, default=1.0, help="Initial angle in radians (default: 1.0)")
    p.add_argument("--length", type=float, default=1.0, help="Rod length (default: 1.0)")
    p.add_argument("--report-every", type=float, default=0.1, help="Report interval (default: 0.1)")
    p.add_argument("--project-every-step", action="store_true", help="Project after every step")
    p.add_argument("--save", type=str, default=None, help="Save trajectory to .npz")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return p.parse_args()


def _stepper(method: str):
    match method:
        case "rk54":
            return EmbeddedRKStepper(dormand_prince54())
        case "rk32":
            return EmbeddedRKStepper(bogacki_shampine32())
        case "trapezoid":
            return TrapezoidStepper()
        case _:
            raise ValueError(f"Unknown method: {method}")


def run(
    method: str,
    accuracy: float,
    t_final: float,
    angle: float,
    length: float = 1.0,
    constraint_tol: float | None = None,
    report_every: float = 0.1,
    project_every_step: bool = False,
    output_dir=None,
):
    system = CartesianPendulum(PendulumParams(length=float(length)))
    config = IntegratorConfig(
        controller=ControllerConfig(accuracy=float(accuracy)),
        constraint_tolerance=constraint_tol,
        project_every_step=bool(project_every_step),
    )
    controller = StepController(system, _stepper(method), NewtonProjector(system), config)

    reports = np.arange(report_every, t_final, report_every)
    result = simulate(
        controller,
        0.0,
        system.initial_state(float(angle)),
        float(t_final),
        report_times=reports,
        energy_fn=system.energy,
    )

    stats = result.statistics
    print(f"method={controller.method_name} steps taken={stats.steps_taken} attempted={stats.steps_attempted} "
          f"error test failures={stats.error_test_failures} convergence failures={stats.convergence_test_failures}")
    print(f"max |energy drift| = {np.max(np.abs(result.energy_drift)):.3e}")
    print(f"max |constraint error| = {max(np.max(np.abs(system.constraint_errors(t, y))) for t, y in zip(result.t, result.y)):.3e}")

    if output_dir is not None:
        out = Path(output_dir)
        out.parent.mkdir(parents=True, exist_ok=True)
        np.savez(
            out,
            t=result.t,
            y=result.y,
            energy=result.energy,
            h=result.h,
            err_norm=result.err_norm,
        )
        print(f"Saved: {out}")

    return result


def main() -> int:
    args = _parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    run(
        method=args.method,
        accuracy=args.accuracy,
        t_final=args.t_final,
        angle=args.angle,
        length=args.length,
        constraint_tol=args.constraint_tol,
        report_every=args.report_every,
        project_every_step=args.project_every_step,
        output_dir=args.save,
    )

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
