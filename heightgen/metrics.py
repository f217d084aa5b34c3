"""
Similarity metrics between normal maps.
"""
import numpy as np

from heightgen.image_ops import check_same_shape


def image_mse(img1: np.ndarray, img2: np.ndarray, channels=None) -> float:
    """Mean squared error over every pixel and the selected channels (all by default)."""
    img1 = np.asarray(img1, dtype=np.float64)
    img2 = np.asarray(img2, dtype=np.float64)
    check_same_shape(img1, img2)
    diff = img1 - img2
    if channels is not None and diff.ndim == 3:
        diff = diff[..., list(channels)]
    return float(np.mean(diff ** 2))


def mse_to_psnr(mse: float, max_value: float = 1.0) -> float:
    """10 log10(max^2 / mse); identical images give +inf."""
    if mse <= 0:
        return float("inf")
    return float(10.0 * np.log10(max_value * max_value / mse))


def _dot(n1, n2):
    return np.sum(np.asarray(n1, dtype=np.float64) * np.asarray(n2, dtype=np.float64), axis=-1)


def normal_map_mse(n1: np.ndarray, n2: np.ndarray) -> float:
    """Mean over pixels of (1 - n1.n2)^2."""
    check_same_shape(np.asarray(n1), np.asarray(n2), "normal maps")
    d = 1.0 - _dot(n1, n2)
    return float(np.mean(d * d))


def compare_normal_maps(n1: np.ndarray, n2: np.ndarray) -> float:
    """PSNR of the dot-product error between two normal maps (peak value 2)."""
    return mse_to_psnr(normal_map_mse(n1, n2), 2.0)


def diff_normal_maps(n1: np.ndarray, n2: np.ndarray, clamp_negative: bool = False) -> np.ndarray:
    """Grey (H, W, 3) image of per-pixel disagreement, 0 where the normals match.

    Encodes (1 - n1.n2) / 2 by default, or 1 - max(0, n1.n2) with ``clamp_negative``.
    """
    check_same_shape(np.asarray(n1), np.asarray(n2), "normal maps")
    dot = _dot(n1, n2)
    d = 1.0 - np.maximum(0.0, dot) if clamp_negative else (1.0 - dot) / 2.0
    return np.repeat(d[..., None], 3, axis=-1)


def angular_error_deg(n_true: np.ndarray, n_est: np.ndarray) -> np.ndarray:
    """Per-pixel angle between two normal maps, in degrees."""
    check_same_shape(np.asarray(n_true), np.asarray(n_est), "normal maps")
    dot = np.clip(_dot(n_true, n_est), -1, 1)
    return np.degrees(np.arccos(dot))
