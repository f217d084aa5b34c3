import unittest

import numpy as np

from heightgen.solvers.edge_aware import (build_edge_pyramid, build_normal_pyramid, solve_edge_aware,
                                          unit_edge_pyramid)
from heightgen.solvers.relaxation import build_gradient_pyramid, solve_relaxation
from heightgen.synthetic import synthetic_normal_map


class TestEdgePyramid(unittest.TestCase):
    def test_flat_map_has_unit_weights(self) -> None:
        flat = np.zeros((8, 8, 3))
        flat[..., 2] = 1.0
        for edges in build_edge_pyramid(build_normal_pyramid(flat)):
            np.testing.assert_allclose(edges, 1.0)

    def test_levels_cover_solver_pyramid(self) -> None:
        normals, _ = synthetic_normal_map("bumps", 16)
        normals = normals[:, :12]
        edges = build_edge_pyramid(build_normal_pyramid(normals))
        levels = build_gradient_pyramid(np.zeros(normals.shape[:2] + (2,)))
        self.assertGreaterEqual(len(edges), len(levels))
        for edge, (gradients, _) in zip(edges, levels):
            self.assertEqual(edge.shape, gradients.shape[:2] + (4,))

    def test_crease_lowers_weights(self) -> None:
        normals, _ = synthetic_normal_map("ramp_v", 16)
        edges = build_edge_pyramid(build_normal_pyramid(normals))[0]
        self.assertLess(float(edges.min()), 0.8)
        self.assertAlmostEqual(float(edges.max()), 1.0)

    def test_weights_drop_only_across_creases(self) -> None:
        normals, _ = synthetic_normal_map("ramp_v", 16)
        edges = build_edge_pyramid(build_normal_pyramid(normals))[0]
        half = np.sqrt(0.5)
        # ramp_v rises over rows 4..7 and falls over rows 8..11; it is constant along each row
        np.testing.assert_allclose(edges[..., :2], 1.0)
        np.testing.assert_allclose(edges[3, :, 3], half)
        np.testing.assert_allclose(edges[4, :, 2], half)
        np.testing.assert_allclose(edges[7, :, 3], 0.0, atol=1e-12)
        np.testing.assert_allclose(edges[8, :, 2], 0.0, atol=1e-12)
        np.testing.assert_allclose(edges[11, :, 3], half)
        np.testing.assert_allclose(edges[12, :, 2], half)
        for row in (0, 1, 5, 6, 9, 10, 13, 14):
            np.testing.assert_allclose(edges[row], 1.0, err_msg=str(row))


class TestSolveEdgeAware(unittest.TestCase):
    def test_unit_weights_match_plain_relaxation(self) -> None:
        normals, _ = synthetic_normal_map("bumps", 32)
        unit = unit_edge_pyramid(build_normal_pyramid(normals))
        weighted = solve_edge_aware(normals, 64, edge_pyramid=unit)
        plain = solve_relaxation(normals, 64)
        np.testing.assert_array_equal(weighted.data, plain.data)

    def test_no_weighted_levels_match_plain_relaxation(self) -> None:
        normals, _ = synthetic_normal_map("ramp_v", 16)
        weighted = solve_edge_aware(normals, 32, max_edge_level=-1)
        np.testing.assert_array_equal(weighted.data, solve_relaxation(normals, 32).data)

    def test_edge_weights_change_the_result(self) -> None:
        normals, _ = synthetic_normal_map("ramp_v", 16)
        weighted = solve_edge_aware(normals, 32)
        self.assertFalse(np.allclose(weighted.data, solve_relaxation(normals, 32).data))
        self.assertTrue(np.all(np.isfinite(weighted.data)))

    def test_short_edge_pyramid_is_rejected(self) -> None:
        normals, _ = synthetic_normal_map("bumps", 16)
        edges = build_edge_pyramid(build_normal_pyramid(normals))[:2]
        with self.assertRaises(ValueError):
            solve_edge_aware(normals, 8, edge_pyramid=edges)

    def test_flat_map_gives_constant_heights(self) -> None:
        flat = np.zeros((8, 8, 3))
        flat[..., 2] = 1.0
        np.testing.assert_array_equal(solve_edge_aware(flat, 8).data, 0.0)


if __name__ == "__main__":
    unittest.main()
