"""
Image-field primitives shared by the solvers: resizing, mip chains and wrapped neighbours.

Every field is a float ``numpy`` array of shape (H, W) or (H, W, C), row-major, with
toroidal addressing unless a function says otherwise.
"""
import logging
import math

import numpy as np
from scipy.ndimage import map_coordinates

from heightgen.errors import ImageShapeError

logger = logging.getLogger(__name__)

EDGE_MODES = {"wrap": "grid-wrap", "clamp": "nearest"}
FILTERS = ("box", "bilinear")


def _box_weights(src: int, dst: int) -> np.ndarray:
    """(dst, src) matrix of area weights; each row sums to one."""
    scale = src / dst
    lo = np.arange(dst) * scale
    hi = lo + scale
    edges = np.arange(src)
    overlap = np.minimum(hi[:, None], edges[None, :] + 1.0) - np.maximum(lo[:, None], edges[None, :])
    weights = np.clip(overlap, 0.0, None)
    return weights / weights.sum(axis=1, keepdims=True)


def _resize_box(field: np.ndarray, new_width: int, new_height: int) -> np.ndarray:
    H, W = field.shape[:2]
    wy = _box_weights(H, new_height)
    wx = _box_weights(W, new_width)
    # contract rows then columns, keeping any channel axis intact
    out = np.tensordot(wy, field, axes=(1, 0))
    out = np.tensordot(wx, out, axes=(1, 1))
    return np.swapaxes(out, 0, 1)


def _resize_bilinear(field: np.ndarray, new_width: int, new_height: int, edge_mode: str) -> np.ndarray:
    H, W = field.shape[:2]
    # texel centres of the destination, expressed in source texel coordinates
    rows = (np.arange(new_height) + 0.5) * (H / new_height) - 0.5
    cols = (np.arange(new_width) + 0.5) * (W / new_width) - 0.5
    R, C = np.meshgrid(rows, cols, indexing="ij")
    mode = EDGE_MODES[edge_mode]
    if field.ndim == 2:
        return map_coordinates(field, [R, C], order=1, mode=mode)
    channels = [map_coordinates(field[..., c], [R, C], order=1, mode=mode) for c in range(field.shape[2])]
    return np.stack(channels, axis=-1)


def resize(field: np.ndarray, new_width: int, new_height: int, edge_mode: str = "wrap",
           filter: str = "box") -> np.ndarray:
    """Resize a field per channel.

    ``filter="box"`` averages the exact source area under each destination texel, so it
    never reads past the border and ``edge_mode`` has no effect on it. ``filter="bilinear"``
    interpolates between texel centres and uses ``edge_mode`` ("wrap" or "clamp") for the
    taps that fall outside the image.
    """
    if edge_mode not in EDGE_MODES:
        raise ValueError(f"edge_mode must be one of {sorted(EDGE_MODES)}, got {edge_mode!r}")
    if filter not in FILTERS:
        raise ValueError(f"filter must be one of {FILTERS}, got {filter!r}")
    if new_width < 1 or new_height < 1:
        raise ImageShapeError(f"cannot resize to {new_width}x{new_height}")

    field = np.asarray(field, dtype=np.float64)
    H, W = field.shape[:2]
    if (W, H) == (new_width, new_height):
        return field.copy()
    if W == 1 and H == 1:
        return np.broadcast_to(field[:1, :1], (new_height, new_width) + field.shape[2:]).copy()

    if filter == "box":
        return _resize_box(field, new_width, new_height)
    return _resize_bilinear(field, new_width, new_height, edge_mode)


def half_size(width: int, height: int):
    """Dimensions of the next coarser mip level."""
    return max(width // 2, 1), max(height // 2, 1)


def calculate_num_mips(width: int, height: int) -> int:
    """Number of levels from full resolution down to 1x1."""
    return int(math.floor(math.log2(max(width, height)))) + 1


def normalize_vectors(v: np.ndarray) -> np.ndarray:
    """Normalise the last axis; zero-length vectors stay zero."""
    length = np.linalg.norm(v, axis=-1, keepdims=True)
    return np.divide(v, length, out=np.zeros_like(v, dtype=np.float64), where=length > 0)


def generate_mipmaps(field: np.ndarray, renormalize: bool = False):
    """Box-filtered mip chain, level 0 first, down to 1x1.

    With ``renormalize`` every level below 0 is re-normalised along the channel axis,
    which is what a chain of unit normals needs.
    """
    H, W = field.shape[:2]
    mips = [np.asarray(field, dtype=np.float64)]
    for _ in range(1, calculate_num_mips(W, H)):
        src = mips[-1]
        half_w, half_h = half_size(src.shape[1], src.shape[0])
        dst = resize(src, half_w, half_h)
        if renormalize:
            dst = normalize_vectors(dst)
        mips.append(dst)
    return mips


def wrapped_neighbors(field: np.ndarray):
    """Toroidal (left, right, up, down) neighbour views of ``field``.

    ``left[r, c] == field[r, c - 1]`` with the column index wrapped, and likewise for the
    other three; +Y points down so "up" is the previous row.
    """
    left = np.roll(field, 1, axis=1)
    right = np.roll(field, -1, axis=1)
    up = np.roll(field, 1, axis=0)
    down = np.roll(field, -1, axis=0)
    return left, right, up, down


def check_same_shape(a: np.ndarray, b: np.ndarray, what: str = "images"):
    """Reject fields whose width, height or channel count differ."""
    if a.shape != b.shape:
        logger.error("%s must be the same size and channel count, got %s and %s", what, a.shape, b.shape)
        raise ImageShapeError(f"{what} must be the same size and channel count, got {a.shape} and {b.shape}")
