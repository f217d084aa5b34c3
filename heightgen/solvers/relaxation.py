"""
Multiresolution relaxation solver: integrate a gradient field into a height field.

The gradient field is box-filtered down to 1 texel along one axis, the coarsest level is
taken as flat, and each finer level starts from the up-sampled coarser result and runs a
fixed number of Jacobi sweeps:

    h'(r,c) = [ h(r,l) + s*dx(r,l) + h(r,r') - s*dx(r,r') + h(u,c) + s*dy(u,c) + h(d,c) - s*dy(d,c) ] / 4

with wrapped neighbour indices and slope weight s (0.5 by default). The same sweep takes
optional per-texel edge weights, which turns the average into a weighted one.
"""
import logging
import math
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from heightgen.gradients import gradient_field_from_normal_map
from heightgen.height_map import HeightMap
from heightgen.image_ops import half_size, resize

logger = logging.getLogger(__name__)

DEFAULT_SLOPE_WEIGHT = 0.5
# below this many texels a level is swept on the calling thread
PARALLEL_MIN_TEXELS = 128 * 128


def iterations_for_level(requested: int, multiplier: float) -> int:
    """Sweeps for one level: floor(min(1, multiplier) * requested), bumped to the next odd count."""
    n = int(math.floor(min(1.0, multiplier) * requested))
    if n % 2 == 0:
        n += 1
    return n


def pyramid_shapes(width: int, height: int):
    """(width, height) of every level, finest first; the last level has a side of 1."""
    shapes = [(width, height)]
    while width > 1 and height > 1:
        width, height = half_size(width, height)
        shapes.append((width, height))
    return shapes


def build_gradient_pyramid(gradients: np.ndarray, iteration_multiplier: float = 1.0):
    """List of (gradient field, iteration multiplier) pairs, finest first.

    Each coarser field is the box-filtered parent with its slopes rescaled by the size
    ratio, since a coarse texel spans several fine ones. The multiplier doubles per level.
    """
    levels = [(np.asarray(gradients, dtype=np.float64), iteration_multiplier)]
    H, W = gradients.shape[:2]
    for half_w, half_h in pyramid_shapes(W, H)[1:]:
        parent, multiplier = levels[-1]
        width, height = parent.shape[1], parent.shape[0]
        half = resize(parent, half_w, half_h, edge_mode="wrap", filter="box")
        half *= np.array([width / half_w, height / half_h])
        levels.append((half, 2.0 * multiplier))
    return levels


def _band(x, rows):
    return x if np.isscalar(x) else x[rows]


class _Stencil:
    """Per-level constants of the sweep: neighbour weights, slope terms and weight sum."""

    def __init__(self, gradients: np.ndarray, weights=None, slope_weight: float = DEFAULT_SLOPE_WEIGHT,
                 min_edge_weight: float = 1e-3):
        dx = gradients[..., 0]
        dy = gradients[..., 1]
        if weights is None:
            wl = wr = wu = wd = 1.0
        else:
            w = np.maximum(np.asarray(weights, dtype=np.float64), min_edge_weight)
            wl, wr, wu, wd = w[..., 0], w[..., 1], w[..., 2], w[..., 3]
        self.weights = (wl, wr, wu, wd)
        self.rhs = slope_weight * (wl * np.roll(dx, 1, axis=1) - wr * np.roll(dx, -1, axis=1)
                                   + wu * np.roll(dy, 1, axis=0) - wd * np.roll(dy, -1, axis=0))
        self.weight_sum = wl + wr + wu + wd
        self.height = gradients.shape[0]

    def sweep(self, cur: np.ndarray, nxt: np.ndarray, r0: int, r1: int):
        """Write rows [r0, r1) of ``nxt`` from ``cur``; ``cur`` is only read."""
        rows = slice(r0, r1)
        idx = np.arange(r0, r1)
        band = cur[rows]
        wl, wr, wu, wd = (_band(w, rows) for w in self.weights)
        acc = wl * np.roll(band, 1, axis=1)
        acc += wr * np.roll(band, -1, axis=1)
        acc += wu * cur[(idx - 1) % self.height]
        acc += wd * cur[(idx + 1) % self.height]
        acc += self.rhs[rows]
        nxt[rows] = acc / _band(self.weight_sum, rows)


def relax(h: np.ndarray, gradients: np.ndarray, iterations: int, weights=None,
          slope_weight: float = DEFAULT_SLOPE_WEIGHT, min_edge_weight: float = 1e-3,
          workers=None) -> np.ndarray:
    """Run ``iterations`` Jacobi sweeps starting from ``h``; returns a new array.

    Two scratch buffers are alternated so a sweep never reads what it writes. With
    ``workers > 1`` the rows of each sweep are split into bands dispatched on a thread
    pool, and the pool is joined before the buffers are swapped.
    """
    H, W = h.shape
    if gradients.shape[:2] != (H, W):
        raise ValueError(f"gradient field {gradients.shape[:2]} does not match height field {(H, W)}")
    stencil = _Stencil(gradients, weights, slope_weight, min_edge_weight)
    buffers = [np.array(h, dtype=np.float64), np.empty((H, W))]
    cur = 0

    if workers and workers > 1 and H * W >= PARALLEL_MIN_TEXELS:
        bounds = np.linspace(0, H, min(workers, H) + 1).astype(int)
        bands = list(zip(bounds[:-1], bounds[1:]))
        with ThreadPoolExecutor(max_workers=len(bands)) as executor:
            for _ in range(iterations):
                src, dst = buffers[cur], buffers[1 - cur]
                list(executor.map(lambda b: stencil.sweep(src, dst, b[0], b[1]), bands))
                cur = 1 - cur
    else:
        for _ in range(iterations):
            stencil.sweep(buffers[cur], buffers[1 - cur], 0, H)
            cur = 1 - cur
    return buffers[cur]


def build_displacement(levels, iterations: int, edge_weights=None, slope_weight: float = DEFAULT_SLOPE_WEIGHT,
                       min_edge_weight: float = 1e-3, workers=None):
    """Solve a gradient pyramid coarse-to-fine.

    ``levels`` comes from :func:`build_gradient_pyramid`; ``edge_weights``, if given, holds
    one (H, W, 4) array or ``None`` per level. Returns the finest height field and a list of
    (width, height, sweeps) per level, coarsest first.
    """
    base, _ = levels[-1]
    h = np.zeros(base.shape[:2])
    stats = [(base.shape[1], base.shape[0], 0)]
    for k in range(len(levels) - 2, -1, -1):
        gradients, multiplier = levels[k]
        height, width = gradients.shape[:2]
        h = resize(h, width, height, edge_mode="wrap", filter="box")
        n = iterations_for_level(iterations, multiplier)
        weights = edge_weights[k] if edge_weights is not None else None
        h = relax(h, gradients, n, weights=weights, slope_weight=slope_weight,
                  min_edge_weight=min_edge_weight, workers=workers)
        logger.debug("relaxed %dx%d level with %d sweeps", width, height, n)
        stats.append((width, height, n))
    return h, stats


def solve_relaxation(normal_map: np.ndarray, iterations: int = 512, iteration_multiplier: float = 1.0,
                     slope_scale: float = 1.0, slope_weight: float = DEFAULT_SLOPE_WEIGHT,
                     workers=None) -> HeightMap:
    """Raw height field reconstructed from a normal map by multigrid relaxation."""
    gradients = gradient_field_from_normal_map(normal_map, slope_scale)
    levels = build_gradient_pyramid(gradients, iteration_multiplier)
    h, _ = build_displacement(levels, iterations, slope_weight=slope_weight, workers=workers)
    height_map = HeightMap(h)
    height_map.calc_min_max()
    return height_map
