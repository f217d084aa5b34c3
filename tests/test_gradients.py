import unittest

import numpy as np

from heightgen.errors import ImageShapeError
from heightgen.gradients import MAX_SLOPE, dxdy_from_normals, gradient_field_from_normal_map


class TestGradientExtraction(unittest.TestCase):
    def test_flat_normals_have_no_slope(self) -> None:
        flat = np.zeros((4, 6, 3))
        flat[..., 2] = 1.0
        np.testing.assert_array_equal(gradient_field_from_normal_map(flat), np.zeros((4, 6, 2)))

    def test_tilted_normal_scaled_by_size(self) -> None:
        normals = np.zeros((4, 8, 3))
        normals[...] = np.array([-1.0, 0.5, 1.0])
        g = gradient_field_from_normal_map(normals)
        np.testing.assert_allclose(g[..., 0], 1.0 / 8)
        np.testing.assert_allclose(g[..., 1], -0.5 / 4)

    def test_slope_scale_multiplies(self) -> None:
        normals = np.zeros((2, 2, 3))
        normals[...] = np.array([-0.2, 0.0, 1.0])
        g1 = gradient_field_from_normal_map(normals)
        g3 = gradient_field_from_normal_map(normals, slope_scale=3.0)
        np.testing.assert_allclose(g3, 3.0 * g1)

    def test_grazing_normal_gives_zero(self) -> None:
        np.testing.assert_array_equal(dxdy_from_normals(np.array([1.0, 0.0, 0.0])), [0.0, 0.0])
        np.testing.assert_array_equal(dxdy_from_normals(np.array([0.0, 1.0, 0.0005])), [0.0, 0.0])

    def test_steep_slope_is_clamped(self) -> None:
        dxdy = dxdy_from_normals(np.array([-0.6, -0.8, 0.01]))
        self.assertAlmostEqual(float(np.linalg.norm(dxdy)), MAX_SLOPE)
        np.testing.assert_allclose(dxdy / np.linalg.norm(dxdy), [0.6, 0.8])

    def test_rejects_wrong_channel_count(self) -> None:
        with self.assertRaises(ImageShapeError):
            gradient_field_from_normal_map(np.zeros((4, 4, 2)))


if __name__ == "__main__":
    unittest.main()
