import unittest

import numpy as np

from heightgen.errors import ImageShapeError
from heightgen.image_ops import (calculate_num_mips, check_same_shape, generate_mipmaps, normalize_vectors, resize,
                                 wrapped_neighbors)


class TestResize(unittest.TestCase):
    def test_box_downsample_averages_blocks(self) -> None:
        field = np.arange(16, dtype=float).reshape(4, 4)
        out = resize(field, 2, 2)
        expected = np.array([[2.5, 4.5], [10.5, 12.5]])
        np.testing.assert_allclose(out, expected)

    def test_box_upsample_replicates_texels(self) -> None:
        field = np.array([[1.0, 2.0], [3.0, 4.0]])
        out = resize(field, 4, 4)
        np.testing.assert_allclose(out[:2, :2], 1.0)
        np.testing.assert_allclose(out[2:, 2:], 4.0)

    def test_box_keeps_channels(self) -> None:
        field = np.random.default_rng(0).random((6, 8, 3))
        out = resize(field, 4, 3)
        self.assertEqual(out.shape, (3, 4, 3))
        np.testing.assert_allclose(out.mean(axis=(0, 1)), field.mean(axis=(0, 1)))

    def test_same_size_returns_copy(self) -> None:
        field = np.ones((3, 5))
        out = resize(field, 5, 3)
        out[0, 0] = 7.0
        self.assertEqual(field[0, 0], 1.0)

    def test_single_texel_broadcasts(self) -> None:
        out = resize(np.array([[[0.1, 0.2, 0.3]]]), 4, 2)
        self.assertEqual(out.shape, (2, 4, 3))
        np.testing.assert_allclose(out[1, 3], [0.1, 0.2, 0.3])

    def test_bilinear_wrap_and_clamp(self) -> None:
        field = np.array([[0.0, 1.0]])
        wrapped = resize(field, 4, 1, edge_mode="wrap", filter="bilinear")
        clamped = resize(field, 4, 1, edge_mode="clamp", filter="bilinear")
        # the first destination texel sits between the last and first source texel when wrapping
        self.assertAlmostEqual(wrapped[0, 0], 0.25)
        self.assertAlmostEqual(clamped[0, 0], 0.0)
        self.assertAlmostEqual(clamped[0, 3], 1.0)

    def test_invalid_arguments(self) -> None:
        with self.assertRaises(ValueError):
            resize(np.ones((2, 2)), 1, 1, edge_mode="mirror")
        with self.assertRaises(ValueError):
            resize(np.ones((2, 2)), 1, 1, filter="lanczos")
        with self.assertRaises(ImageShapeError):
            resize(np.ones((2, 2)), 0, 1)


class TestMips(unittest.TestCase):
    def test_calculate_num_mips(self) -> None:
        self.assertEqual(calculate_num_mips(16, 16), 5)
        self.assertEqual(calculate_num_mips(5, 3), 3)
        self.assertEqual(calculate_num_mips(1, 1), 1)

    def test_mip_chain_ends_at_one_texel(self) -> None:
        mips = generate_mipmaps(np.ones((8, 32, 3)))
        self.assertEqual(len(mips), 6)
        self.assertEqual(mips[-1].shape, (1, 1, 3))
        self.assertEqual(mips[1].shape, (4, 16, 3))

    def test_renormalized_mips_are_unit(self) -> None:
        v = normalize_vectors(np.random.default_rng(1).normal(size=(8, 8, 3)))
        for level in generate_mipmaps(v, renormalize=True)[1:]:
            lengths = np.linalg.norm(level, axis=-1)
            np.testing.assert_allclose(lengths[lengths > 0], 1.0)


class TestHelpers(unittest.TestCase):
    def test_normalize_keeps_zero_vectors(self) -> None:
        out = normalize_vectors(np.array([[3.0, 4.0, 0.0], [0.0, 0.0, 0.0]]))
        np.testing.assert_allclose(out, [[0.6, 0.8, 0.0], [0.0, 0.0, 0.0]])

    def test_wrapped_neighbors(self) -> None:
        field = np.arange(6).reshape(2, 3)
        left, right, up, down = wrapped_neighbors(field)
        self.assertEqual(left[0, 0], field[0, 2])
        self.assertEqual(right[0, 2], field[0, 0])
        self.assertEqual(up[0, 1], field[1, 1])
        self.assertEqual(down[1, 1], field[0, 1])

    def test_check_same_shape_logs_and_raises(self) -> None:
        with self.assertLogs("heightgen.image_ops", "ERROR"):
            with self.assertRaises(ImageShapeError):
                check_same_shape(np.ones((2, 2, 3)), np.ones((2, 3, 3)))


if __name__ == "__main__":
    unittest.main()
