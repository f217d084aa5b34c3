"""
Gradient field extraction: tangent-space normals -> per-texel height slopes.
"""
import numpy as np

from heightgen.errors import ImageShapeError

MIN_NORMAL_Z = 0.001
MAX_SLOPE = 16.0


def check_normal_map(normal_map: np.ndarray):
    """Normal maps are (H, W, 3) with H, W >= 1."""
    if normal_map.ndim != 3 or normal_map.shape[2] != 3 or normal_map.shape[0] < 1 or normal_map.shape[1] < 1:
        raise ImageShapeError(f"normal map must have shape (H, W, 3), got {normal_map.shape}")


def dxdy_from_normals(normals: np.ndarray) -> np.ndarray:
    """Slopes (-nx/nz, -ny/nz) for an array of normals, shape (..., 3) -> (..., 2).

    Near-grazing normals (|nz| < 0.001) give no slope, and slope magnitudes are clamped to
    16 so a nearly tangent normal cannot inject an unbounded step.
    """
    normals = np.asarray(normals, dtype=np.float64)
    nz = normals[..., 2:3]
    steep = np.abs(nz) < MIN_NORMAL_Z
    safe_nz = np.where(steep, 1.0, nz)
    dxdy = np.where(steep, 0.0, -normals[..., :2] / safe_nz)

    slope = np.linalg.norm(dxdy, axis=-1, keepdims=True)
    too_steep = slope > MAX_SLOPE
    dxdy = np.where(too_steep, dxdy * (MAX_SLOPE / np.where(too_steep, slope, 1.0)), dxdy)
    return dxdy


def gradient_field_from_normal_map(normal_map: np.ndarray, slope_scale: float = 1.0) -> np.ndarray:
    """Gradient field (H, W, 2) of per-texel height differences in normalised UV units.

    The clamped slope is multiplied by ``slope_scale`` and then by (1/W, 1/H), so channel 0
    is dh/dcol and channel 1 is dh/drow for a height measured in UV units.
    """
    normal_map = np.asarray(normal_map, dtype=np.float64)
    check_normal_map(normal_map)
    H, W = normal_map.shape[:2]
    inv_size = np.array([1.0 / W, 1.0 / H])
    return dxdy_from_normals(normal_map) * slope_scale * inv_size
