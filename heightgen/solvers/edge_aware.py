"""
Edge-aware relaxation: the multigrid relaxation with every neighbour contribution weighted
by how similar that neighbour's normal is to the centre normal.

Weights are the dot products n . n_left, n . n_right, n . n_up, n . n_down, taken on a
re-normalised normal pyramid so every solver level has its own edge image. Height then
bleeds less across creases, where the dot product drops.
"""
import logging

import numpy as np

from heightgen.gradients import check_normal_map, gradient_field_from_normal_map
from heightgen.height_map import HeightMap
from heightgen.image_ops import generate_mipmaps, normalize_vectors, wrapped_neighbors
from heightgen.solvers.relaxation import DEFAULT_SLOPE_WEIGHT, build_displacement, build_gradient_pyramid

logger = logging.getLogger(__name__)


def build_normal_pyramid(normal_map: np.ndarray):
    """Unit normals at every level from full resolution down to 1x1."""
    check_normal_map(normal_map)
    return generate_mipmaps(normalize_vectors(np.asarray(normal_map, dtype=np.float64)), renormalize=True)


def build_edge_pyramid(normal_pyramid):
    """One (H, W, 4) image per level holding the (left, right, up, down) normal dot products."""
    edges = []
    for normals in normal_pyramid:
        left, right, up, down = wrapped_neighbors(normals)
        edges.append(np.stack([
            np.sum(normals * left, axis=-1),
            np.sum(normals * right, axis=-1),
            np.sum(normals * up, axis=-1),
            np.sum(normals * down, axis=-1),
        ], axis=-1))
    return edges


def unit_edge_pyramid(normal_pyramid):
    """Edge pyramid with every weight set to 1, which reduces to the plain relaxation."""
    return [np.ones(normals.shape[:2] + (4,)) for normals in normal_pyramid]


def solve_edge_aware(normal_map: np.ndarray, iterations: int = 512, iteration_multiplier: float = 1.0,
                     slope_scale: float = 1.0, edge_pyramid=None, max_edge_level=None,
                     min_edge_weight: float = 1e-3, slope_weight: float = DEFAULT_SLOPE_WEIGHT,
                     workers=None) -> HeightMap:
    """Raw height field reconstructed with edge-weighted relaxation.

    Parameters
    ----------
    normal_map : ndarray
        (H, W, 3) unit normals.
    edge_pyramid : list of ndarray, optional
        Precomputed weights per level; built from the normal pyramid when omitted.
    max_edge_level : int, optional
        Only levels 0..max_edge_level (0 is full resolution) use edge weights, coarser
        levels average their neighbours evenly. ``None`` weights every level.
    min_edge_weight : float
        Lower bound applied to each weight inside the sweep, so opposing normals cannot
        produce a zero or negative weight sum.
    """
    gradients = gradient_field_from_normal_map(normal_map, slope_scale)
    levels = build_gradient_pyramid(gradients, iteration_multiplier)
    if edge_pyramid is None:
        edge_pyramid = build_edge_pyramid(build_normal_pyramid(normal_map))
    if len(edge_pyramid) < len(levels):
        raise ValueError(f"edge pyramid has {len(edge_pyramid)} levels, solver needs {len(levels)}")

    weights = []
    for level, (level_gradients, _) in enumerate(levels):
        edge = edge_pyramid[level]
        if edge.shape[:2] != level_gradients.shape[:2]:
            raise ValueError(f"edge level {level} is {edge.shape[:2]}, expected {level_gradients.shape[:2]}")
        weighted = max_edge_level is None or level <= max_edge_level
        weights.append(edge if weighted else None)

    h, _ = build_displacement(levels, iterations, edge_weights=weights, slope_weight=slope_weight,
                              min_edge_weight=min_edge_weight, workers=workers)
    height_map = HeightMap(h)
    height_map.calc_min_max()
    return height_map
