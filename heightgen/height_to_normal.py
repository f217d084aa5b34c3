"""
Normal estimation from a height field, for scoring reconstructions against the input.

Every scheme reads a wrapped neighbourhood of raw heights, scales horizontal differences
by the field width and vertical ones by its height, and normalises the result.
"""
from enum import Enum

import numpy as np

from heightgen.height_map import HeightMap
from heightgen.image_ops import normalize_vectors


class NormalCalcMethod(Enum):
    CROSS = "cross"
    FORWARD = "forward"
    SOBEL = "sobel"
    SCHARR = "scharr"
    # https://wickedengine.net/2019/09/22/improved-normal-reconstruction-from-depth/
    IMPROVED = "improved"
    # https://atyuwen.github.io/posts/normal-reconstruction/
    ACCURATE = "accurate"


def _shift(h, dr, dc):
    """h[row + dr, col + dc] with wrapped indices."""
    return np.roll(h, (-dr, -dc), axis=(0, 1))


def _from_differences(X, Y, scale_h, scale_v):
    return np.stack([scale_h * X, scale_v * Y, np.ones_like(X)], axis=-1)


def _cross(h, scale_h, scale_v):
    X = (_shift(h, 0, -1) - _shift(h, 0, 1)) / 2.0
    Y = (_shift(h, -1, 0) - _shift(h, 1, 0)) / 2.0
    return _from_differences(X, Y, scale_h, scale_v)


def _forward(h, scale_h, scale_v):
    X = h - _shift(h, 0, 1)
    Y = h - _shift(h, 1, 0)
    return _from_differences(X, Y, scale_h, scale_v)


def _kernel_3x3(h, scale_h, scale_v, side, centre):
    ul, um, ur = _shift(h, -1, -1), _shift(h, -1, 0), _shift(h, -1, 1)
    ml, mr = _shift(h, 0, -1), _shift(h, 0, 1)
    dl, dm, dr = _shift(h, 1, -1), _shift(h, 1, 0), _shift(h, 1, 1)
    norm = 2.0 * (2.0 * side + centre)
    X = (side * (ul - ur) + centre * (ml - mr) + side * (dl - dr)) / norm
    Y = (side * (ul - dl) + centre * (um - dm) + side * (ur - dr)) / norm
    return _from_differences(X, Y, scale_h, scale_v)


def _sobel(h, scale_h, scale_v):
    return _kernel_3x3(h, scale_h, scale_v, 1.0, 2.0)


def _scharr(h, scale_h, scale_v):
    return _kernel_3x3(h, scale_h, scale_v, 3.0, 10.0)


def _point(dc, dr, z, scale_h, scale_v):
    return np.stack([np.broadcast_to(dc / scale_h, z.shape), np.broadcast_to(dr / scale_v, z.shape), z], axis=-1)


def _improved(h, scale_h, scale_v):
    """Cross product of the two neighbours (one per axis) closest in height to the centre."""
    mm = h
    ml, mr = _shift(h, 0, -1), _shift(h, 0, 1)
    um, dm = _shift(h, -1, 0), _shift(h, 1, 0)
    use_right = np.abs(mr - mm) < np.abs(ml - mm)
    use_down = np.abs(dm - mm) < np.abs(um - mm)

    right = _point(1.0, 0.0, mr, scale_h, scale_v)
    left = _point(-1.0, 0.0, ml, scale_h, scale_v)
    up = _point(0.0, -1.0, um, scale_h, scale_v)
    down = _point(0.0, 1.0, dm, scale_h, scale_v)

    # the pair order keeps every triangle wound counter-clockwise, so +Z points out
    r_u = (~use_down)[..., None] & use_right[..., None]
    r_d = use_down[..., None] & use_right[..., None]
    l_u = (~use_down)[..., None] & (~use_right)[..., None]
    p1 = np.where(r_u, right, np.where(r_d, down, np.where(l_u, up, left)))
    p2 = np.where(r_u, up, np.where(r_d, right, np.where(l_u, left, down)))

    p0 = _point(0.0, 0.0, mm, scale_h, scale_v)
    return np.cross(p2 - p0, p1 - p0)


def _accurate(h, scale_h, scale_v):
    """Pick the one-sided difference per axis whose neighbour continues the centre's trend."""
    mm = h
    ml, ml2 = _shift(h, 0, -1), _shift(h, 0, -2)
    mr, mr2 = _shift(h, 0, 1), _shift(h, 0, 2)
    um, um2 = _shift(h, -1, 0), _shift(h, -2, 0)
    dm, dm2 = _shift(h, 1, 0), _shift(h, 2, 0)

    d_left = np.abs(2.0 * ml - ml2 - mm)
    d_right = np.abs(2.0 * mr - mr2 - mm)
    zx = np.where(d_left < d_right, mm - ml, mr - mm)
    d_up = np.abs(2.0 * um - um2 - mm)
    d_down = np.abs(2.0 * dm - dm2 - mm)
    zy = np.where(d_up < d_down, mm - um, dm - mm)

    dpdx = _point(1.0, 0.0, zx, scale_h, scale_v)
    dpdy = _point(0.0, 1.0, zy, scale_h, scale_v)
    return np.cross(dpdx, dpdy)


_ESTIMATORS = {
    NormalCalcMethod.CROSS: _cross,
    NormalCalcMethod.FORWARD: _forward,
    NormalCalcMethod.SOBEL: _sobel,
    NormalCalcMethod.SCHARR: _scharr,
    NormalCalcMethod.IMPROVED: _improved,
    NormalCalcMethod.ACCURATE: _accurate,
}


def normal_map_from_height_map(height_map: HeightMap, method=NormalCalcMethod.CROSS) -> np.ndarray:
    """(H, W, 3) unit normals estimated from the raw heights of ``height_map``."""
    method = NormalCalcMethod(method)
    h = height_map.raw()
    scale_h = float(height_map.width)
    scale_v = float(height_map.height)
    return normalize_vectors(_ESTIMATORS[method](h, scale_h, scale_v))


def pack_normal_map(normal_map: np.ndarray, flip_y: bool = False, flip_x: bool = False) -> np.ndarray:
    """Map unit normals to [0, 1] colours, undoing any axis flips applied when loading."""
    n = np.array(normal_map, dtype=np.float64)
    if flip_y:
        n[..., 1] *= -1
    if flip_x:
        n[..., 0] *= -1
    return 0.5 * (n + 1.0)
