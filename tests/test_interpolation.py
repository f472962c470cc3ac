import sys
from pathlib import Path
# Add "../src" to the python search path so the package imports without installation
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import unittest

import numpy as np

from daestep.controllers import ControllerConfig
from daestep.dynamics import CartesianPendulum
from daestep.integrator import IntegratorConfig, StepController
from daestep.interpolation import hermite_interpolate
from daestep.projection import NewtonProjector
from daestep.runge_kutta_integrators import EmbeddedRKStepper, dormand_prince54


def cubic(t):
    return np.array([t**3 - 2 * t**2 + t + 1, -t**3 + 0.5 * t])


def cubic_dot(t):
    return np.array([3 * t**2 - 4 * t + 1, -3 * t**2 + 0.5])


class TestHermiteInterpolate(unittest.TestCase):

    def setUp(self):
        self.t0, self.t1 = 0.5, 1.5
        self.args = (self.t0, cubic(self.t0), cubic_dot(self.t0), self.t1, cubic(self.t1), cubic_dot(self.t1))

    def test_reproduces_cubics(self):
        for t in (0.6, 0.8, 1.0, 1.37):
            y, ydot = hermite_interpolate(*self.args, t)
            np.testing.assert_allclose(y, cubic(t), rtol=1e-12, atol=1e-12)
            np.testing.assert_allclose(ydot, cubic_dot(t), rtol=1e-12, atol=1e-12)

    def test_endpoints_are_exact(self):
        y, ydot = hermite_interpolate(*self.args, self.t0)
        np.testing.assert_array_equal(y, cubic(self.t0))
        np.testing.assert_array_equal(ydot, cubic_dot(self.t0))
        y, _ = hermite_interpolate(*self.args, self.t1)
        np.testing.assert_array_equal(y, cubic(self.t1))

    def test_repeatable(self):
        first, _ = hermite_interpolate(*self.args, 0.9)
        second, _ = hermite_interpolate(*self.args, 0.9)
        np.testing.assert_array_equal(first, second)

    def test_outside_interval_is_rejected(self):
        with self.assertRaises(ValueError):
            hermite_interpolate(*self.args, 0.4)
        with self.assertRaises(ValueError):
            hermite_interpolate(*self.args, 1.6)


class TestControllerDenseOutput(unittest.TestCase):

    def setUp(self):
        self.system = CartesianPendulum()
        config = IntegratorConfig(controller=ControllerConfig(accuracy=1e-8), initial_step_size=0.05)
        self.controller = StepController(
            self.system, EmbeddedRKStepper(dormand_prince54()), NewtonProjector(self.system), config
        )
        self.controller.initialize(0.0, self.system.initial_state(0.5))
        self.controller.step_to(1.0)

    def test_interpolated_state_inside_last_step(self):
        t0 = self.controller.previous_time
        t1 = self.controller.advanced_time
        self.assertGreater(t1, t0)
        tm = 0.5 * (t0 + t1)

        first = self.controller.create_interpolated_state(tm)
        second = self.controller.create_interpolated_state(tm)
        self.assertEqual(first.t, tm)
        np.testing.assert_array_equal(first.y, second.y)

        # Close to the circle, without projection.
        self.assertLess(np.max(np.abs(self.system.constraint_errors(tm, first.y))), 1e-5)

    def test_interpolation_outside_last_step_is_rejected(self):
        with self.assertRaises(ValueError):
            self.controller.create_interpolated_state(self.controller.advanced_time + 1e-3)

    def test_back_up_advanced_state(self):
        t0 = self.controller.previous_time
        t1 = self.controller.advanced_time
        t_back = t0 + 0.25 * (t1 - t0)
        expected = self.controller.create_interpolated_state(t_back)

        self.controller.back_up_advanced_state_by_interpolation(t_back)

        self.assertEqual(self.controller.advanced_time, t_back)
        self.assertEqual(self.controller.previous_time, t0)
        self.assertAlmostEqual(self.controller.previous_step_size_taken, t_back - t0)
        np.testing.assert_array_equal(self.controller.advanced_state.y, expected.y)

        # Integration resumes from the backed-up time.
        self.controller.step_to(1.0)
        self.assertEqual(self.controller.previous_time, t_back)


if __name__ == '__main__':
    unittest.main()
