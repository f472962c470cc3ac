import sys
from pathlib import Path
# Add "../src" to the python search path so the package imports without installation
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import math
import unittest

import numpy as np

from daestep.controllers import AdaptiveController, ControllerConfig, weighted_rms_norm


class TestWeightedRMSNorm(unittest.TestCase):

    def test_unit_weights(self):
        v = np.array([3.0, 4.0])
        self.assertAlmostEqual(weighted_rms_norm(v, np.ones(2)), math.sqrt(12.5))

    def test_weights_scale_components(self):
        v = np.array([1.0, 1.0, 1.0, 1.0])
        w = np.array([2.0, 2.0, 2.0, 2.0])
        self.assertAlmostEqual(weighted_rms_norm(v, w), 2.0)

    def test_empty_vector(self):
        self.assertEqual(weighted_rms_norm(np.array([]), np.array([])), 0.0)

    def test_shape_mismatch(self):
        with self.assertRaises(ValueError):
            weighted_rms_norm(np.ones(3), np.ones(2))


class TestAdaptiveController(unittest.TestCase):

    def setUp(self):
        self.config = ControllerConfig(accuracy=1e-6)
        self.controller = AdaptiveController(self.config)

    def test_small_error_accepts_and_grows(self):
        # accuracy 1e-6, error 1e-8, error order 4
        decision = self.controller.adjust_step_size(1e-8, 4, 0.1, False)
        self.assertTrue(decision.accept)
        self.assertGreater(decision.next_step_size, 0.1)
        self.assertLessEqual(decision.next_step_size, self.config.max_grow * 0.1)
        expected = 0.9 * 0.1 * (1e-6 / 1e-8) ** (1.0 / 5.0)
        self.assertAlmostEqual(decision.next_step_size, expected)

    def test_growth_is_capped(self):
        decision = self.controller.adjust_step_size(1e-30, 4, 0.1, False)
        self.assertTrue(decision.accept)
        self.assertAlmostEqual(decision.next_step_size, self.config.max_grow * 0.1)

    def test_zero_error_grows_to_cap(self):
        decision = self.controller.adjust_step_size(0.0, 4, 0.1, False)
        self.assertTrue(decision.accept)
        self.assertAlmostEqual(decision.next_step_size, self.config.max_grow * 0.1)

    def test_large_error_rejects_and_shrinks(self):
        decision = self.controller.adjust_step_size(1e-2, 4, 0.1, False)
        self.assertFalse(decision.accept)
        self.assertLess(decision.next_step_size, 0.1)
        self.assertGreaterEqual(decision.next_step_size, self.config.min_shrink * 0.1)

    def test_marginal_rejection_still_shrinks(self):
        decision = self.controller.adjust_step_size(1.01e-6, 4, 0.1, False)
        self.assertFalse(decision.accept)
        self.assertLessEqual(decision.next_step_size, self.config.hysteresis_low * 0.1)

    def test_accepted_step_never_shrinks(self):
        # Accepted, but the control law alone would propose 0.9 * h.
        decision = self.controller.adjust_step_size(1e-6, 4, 0.1, False)
        self.assertTrue(decision.accept)
        self.assertEqual(decision.next_step_size, 0.1)

    def test_no_growth_after_artificially_limited_step(self):
        decision = self.controller.adjust_step_size(1e-12, 4, 0.1, True)
        self.assertTrue(decision.accept)
        self.assertEqual(decision.next_step_size, 0.1)

    def test_nan_error_rejects_with_maximal_shrink(self):
        decision = self.controller.adjust_step_size(float("nan"), 4, 0.1, False)
        self.assertFalse(decision.accept)
        self.assertAlmostEqual(decision.next_step_size, self.config.min_shrink * 0.1)

    def test_max_step_size_respected(self):
        controller = AdaptiveController(ControllerConfig(accuracy=1e-6, max_step_size=0.15))
        decision = controller.adjust_step_size(1e-12, 4, 0.1, False)
        self.assertEqual(decision.next_step_size, 0.15)

    def test_non_positive_step_rejected(self):
        with self.assertRaises(ValueError):
            self.controller.adjust_step_size(1e-8, 4, 0.0, False)

    def test_invalid_config(self):
        with self.assertRaises(ValueError):
            ControllerConfig(accuracy=0.0)
        with self.assertRaises(ValueError):
            ControllerConfig(min_shrink=0.95)


if __name__ == '__main__':
    unittest.main()
