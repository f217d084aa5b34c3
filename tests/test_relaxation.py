import math
import unittest

import numpy as np

from heightgen.gradients import gradient_field_from_normal_map
from heightgen.solvers.relaxation import (build_displacement, build_gradient_pyramid, iterations_for_level,
                                          pyramid_shapes, relax, solve_relaxation)
from heightgen.solvers.spectral import solve_spectral
from heightgen.synthetic import synthetic_normal_map


def _rms(a, b):
    return float(np.sqrt(np.mean(((a - a.mean()) - (b - b.mean())) ** 2)))


class TestIterationSchedule(unittest.TestCase):
    def test_counts_are_odd(self) -> None:
        self.assertEqual(iterations_for_level(512, 1.0), 513)
        self.assertEqual(iterations_for_level(512, 0.5), 257)
        self.assertEqual(iterations_for_level(10, 0.25), 3)
        self.assertEqual(iterations_for_level(1, 1.0), 1)

    def test_multiplier_is_clamped_to_one(self) -> None:
        self.assertEqual(iterations_for_level(512, 4.0), 513)
        self.assertEqual(iterations_for_level(33, 8.0), 33)


class TestPyramid(unittest.TestCase):
    def test_depth_bound(self) -> None:
        for width, height in [(1, 1), (2, 2), (5, 3), (16, 16), (64, 8), (7, 100), (1, 9)]:
            shapes = pyramid_shapes(width, height)
            bound = math.ceil(math.log2(max(width, height))) + 1
            self.assertLessEqual(len(shapes), bound, (width, height))
            self.assertTrue(all(w >= 1 and h >= 1 for w, h in shapes))
            self.assertTrue(min(shapes[-1]) == 1)

    def test_power_of_two_square_depth(self) -> None:
        self.assertEqual(len(pyramid_shapes(32, 32)), 6)
        self.assertEqual(pyramid_shapes(8, 2), [(8, 2), (4, 1)])

    def test_coarse_slopes_are_rescaled(self) -> None:
        gradients = np.zeros((8, 8, 2))
        gradients[..., 0] = 0.01
        levels = build_gradient_pyramid(gradients, 0.25)
        self.assertEqual([m for _, m in levels], [0.25, 0.5, 1.0, 2.0])
        np.testing.assert_allclose(levels[1][0][..., 0], 0.02)
        np.testing.assert_allclose(levels[3][0][..., 0], 0.08)


class TestRelax(unittest.TestCase):
    def test_zero_gradients_keep_constant_field(self) -> None:
        h = np.full((6, 5), 0.3)
        out = relax(h, np.zeros((6, 5, 2)), 11)
        np.testing.assert_allclose(out, 0.3)
        self.assertIsNot(out, h)

    def test_mismatched_gradient_field(self) -> None:
        with self.assertRaises(ValueError):
            relax(np.zeros((4, 4)), np.zeros((4, 5, 2)), 3)

    def test_banded_sweep_matches_serial(self) -> None:
        normals, _ = synthetic_normal_map("bumps", 128)
        gradients = gradient_field_from_normal_map(normals)
        start = np.random.default_rng(5).random((128, 128)) * 1e-3
        serial = relax(start, gradients, 5)
        banded = relax(start, gradients, 5, workers=4)
        np.testing.assert_array_equal(serial, banded)

    def test_displacement_stats(self) -> None:
        gradients = np.zeros((16, 16, 2))
        _, stats = build_displacement(build_gradient_pyramid(gradients), 8)
        self.assertEqual(stats[0], (1, 1, 0))
        self.assertEqual(stats[-1], (16, 16, 9))
        self.assertEqual(len(stats), 5)


class TestSolveRelaxation(unittest.TestCase):
    def test_flat_normal_map_gives_constant_heights(self) -> None:
        flat = np.zeros((8, 12, 3))
        flat[..., 2] = 1.0
        hm = solve_relaxation(flat, iterations=16)
        np.testing.assert_array_equal(hm.data, 0.0)
        self.assertEqual(hm.max_h - hm.min_h, 0.0)

    def test_recovers_sinusoid_up_to_constant(self) -> None:
        normals, Z = synthetic_normal_map("sinusoid", 32)
        errors = [_rms(solve_relaxation(normals, n).data, Z) for n in (32, 128, 512, 2048)]
        std = float(Z.std())
        for coarse, fine in zip(errors, errors[1:]):
            self.assertLessEqual(fine, coarse + 0.02 * std)
        self.assertLess(errors[-1], 0.05 * std)

    def test_converges_to_central_difference_solution(self) -> None:
        normals, _ = synthetic_normal_map("bumps", 32)
        relaxed = solve_relaxation(normals, 2048).data
        exact = solve_spectral(normals, scheme="central").data
        self.assertLess(_rms(relaxed, exact), 1e-3 * float(exact.std()))

    def test_returns_raw_heights(self) -> None:
        normals, _ = synthetic_normal_map("sinusoid", 16)
        hm = solve_relaxation(normals, 32)
        self.assertEqual((hm.scale, hm.bias), (1.0, 0.0))
        self.assertAlmostEqual(hm.min_h, float(hm.data.min()))


if __name__ == "__main__":
    unittest.main()
