import sys
from pathlib import Path
# Add "../src" to the python search path so the package imports without installation
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import unittest

import numpy as np

from daestep.controllers import ControllerConfig, weighted_rms_norm
from daestep.dynamics import CartesianPendulum
from daestep.integrator import IntegratorConfig, StepController, StepStatus
from daestep.projection import NewtonProjector
from daestep.runge_kutta_integrators import (
    EmbeddedRKStepper,
    bogacki_shampine32,
    dormand_prince54,
    rk_step_embedded,
)


def growth(t, y):
    return y


class TestBogackiShampine(unittest.TestCase):

    def setUp(self):
        self.tableau = bogacki_shampine32()

    def test_tableau_is_consistent(self):
        np.testing.assert_allclose(self.tableau.a.sum(axis=1), self.tableau.c, atol=1e-15)
        self.assertAlmostEqual(self.tableau.b_high.sum(), 1.0)
        self.assertAlmostEqual(self.tableau.b_low.sum(), 1.0)
        self.assertEqual((self.tableau.order_high, self.tableau.order_low), (3, 2))

    def test_local_error_orders(self):
        """
        y' = y, y(0) = 1. One step of size h has a local error O(h^4) in the
        third order solution and an error estimate of O(h^3).
        """
        errors = []
        estimates = []
        for h in (0.1, 0.05):
            y1, err, nfev = rk_step_embedded(growth, 0.0, np.array([1.0]), h, self.tableau)
            errors.append(abs(y1[0] - np.exp(h)))
            estimates.append(abs(err[0]))
            self.assertEqual(nfev, 4)

        error_ratio = errors[0] / errors[1]
        estimate_ratio = estimates[0] / estimates[1]
        self.assertGreater(error_ratio, 12.0)
        self.assertLess(error_ratio, 20.0)
        self.assertGreater(estimate_ratio, 6.5)
        self.assertLess(estimate_ratio, 9.5)

    def test_stepper_reports_error_order(self):
        stepper = EmbeddedRKStepper(self.tableau)
        system = CartesianPendulum()
        y0 = system.initial_state(0.4)
        result = stepper.attempt_ode_step(system, 0.0, 0.01, y0, system.derivatives(0.0, y0))

        self.assertTrue(result.converged)
        self.assertEqual(result.err_order, 2)
        self.assertEqual(result.num_iterations, 1)
        self.assertEqual(stepper.method.name, "BogackiShampine32")
        self.assertEqual(stepper.method.min_order, 3)
        self.assertEqual(stepper.method.max_order, 3)

    def test_pendulum_run(self):
        system = CartesianPendulum()
        controller = StepController(
            system,
            EmbeddedRKStepper(self.tableau),
            NewtonProjector(system),
            IntegratorConfig(controller=ControllerConfig(accuracy=1e-5)),
        )
        y0 = system.initial_state(0.8)
        controller.initialize(0.0, y0)
        tol = controller.constraint_tolerance_in_use

        status = None
        while status is not StepStatus.REACHED_REPORT_TIME:
            status = controller.step_to(1.0)
            adv = controller.advanced_state
            self.assertLessEqual(controller.last_error_norm, controller.accuracy_in_use)
            violation = weighted_rms_norm(system.constraint_errors(adv.t, adv.y), system.constraint_one_over_tolerances())
            self.assertLessEqual(violation, tol)

        self.assertEqual(controller.advanced_time, 1.0)
        self.assertEqual(controller.method_name, "BogackiShampine32")
        self.assertEqual(
            controller.num_error_test_failures + controller.num_steps_taken,
            controller.num_steps_attempted,
        )
        self.assertLess(abs(system.energy(controller.advanced_state.y) - system.energy(y0)), 1e-2)


class TestDormandPrince(unittest.TestCase):

    def test_stepper_reports_error_order(self):
        stepper = EmbeddedRKStepper()
        system = CartesianPendulum()
        y0 = system.initial_state(0.4)
        result = stepper.attempt_ode_step(system, 0.0, 0.01, y0, system.derivatives(0.0, y0))
        self.assertEqual(result.err_order, 4)
        self.assertEqual(stepper.method.name, dormand_prince54().name)


if __name__ == '__main__':
    unittest.main()
