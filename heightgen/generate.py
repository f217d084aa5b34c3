"""
Height-map generation: picks a solver, times it and packs the result into [0, 1].
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum

import numpy as np

from heightgen.gradients import check_normal_map
from heightgen.height_map import GenerationResults
from heightgen.solvers.edge_aware import build_edge_pyramid, build_normal_pyramid, solve_edge_aware
from heightgen.solvers.least_squares import (DEFAULT_MAX_ITERATIONS, DEFAULT_TOLERANCE, relaxation_guess,
                                             solve_least_squares)
from heightgen.solvers.relaxation import solve_relaxation
from heightgen.solvers.spectral import solve_spectral

logger = logging.getLogger(__name__)


class HeightGenMethod(Enum):
    RELAXATION = "relaxation"
    RELAXATION_EDGE_AWARE = "edge-aware"
    LINEAR_SYSTEM = "linear-system"
    SPECTRAL = "spectral"

    @property
    def is_relaxation(self) -> bool:
        return self in (HeightGenMethod.RELAXATION, HeightGenMethod.RELAXATION_EDGE_AWARE)


def _run_relaxation(normal_map, iterations, iteration_multiplier, slope_scale, workers, **_):
    hm = solve_relaxation(normal_map, iterations, iteration_multiplier, slope_scale, workers=workers)
    return hm, {"iterations": iterations}


def _run_edge_aware(normal_map, iterations, iteration_multiplier, slope_scale, workers,
                    edge_pyramid=None, max_edge_level=None, **_):
    hm = solve_edge_aware(normal_map, iterations, iteration_multiplier, slope_scale, edge_pyramid=edge_pyramid,
                          max_edge_level=max_edge_level, workers=workers)
    return hm, {"iterations": iterations}


def _run_linear_system(normal_map, slope_scale, max_iterations, tolerance, warm_start, **_):
    guess = relaxation_guess(normal_map, slope_scale) if warm_start else None
    solution = solve_least_squares(normal_map, max_iterations, tolerance, initial_guess=guess,
                                   slope_scale=slope_scale)
    return solution.height_map, {
        "iterations": solution.iterations,
        "max_iterations": solution.max_iterations,
        "solver_error": solution.error,
        "converged": solution.converged,
    }


def _run_spectral(normal_map, slope_scale, **_):
    return solve_spectral(normal_map, slope_scale), {"iterations": 0}


_STRATEGIES = {
    HeightGenMethod.RELAXATION: _run_relaxation,
    HeightGenMethod.RELAXATION_EDGE_AWARE: _run_edge_aware,
    HeightGenMethod.LINEAR_SYSTEM: _run_linear_system,
    HeightGenMethod.SPECTRAL: _run_spectral,
}


def generate_height_map(normal_map: np.ndarray, method=HeightGenMethod.RELAXATION, iterations: int = 512,
                        iteration_multiplier: float = 1.0, slope_scale: float = 1.0,
                        max_iterations: int = DEFAULT_MAX_ITERATIONS, tolerance: float = DEFAULT_TOLERANCE,
                        warm_start: bool = False, workers=None, edge_pyramid=None,
                        max_edge_level=None) -> GenerationResults:
    """Reconstruct a packed height map from (H, W, 3) unit normals.

    ``iterations`` drives the relaxation methods; ``max_iterations``, ``tolerance`` and
    ``warm_start`` drive the linear system. The returned height map is packed to [0, 1]
    with its scale/bias set, so ``height_map.raw()`` gives the solver's elevations.
    Setup failures of the linear system propagate as ``SolverSetupError``.
    """
    method = HeightGenMethod(method)
    normal_map = np.asarray(normal_map, dtype=np.float64)
    check_normal_map(normal_map)

    start = time.perf_counter()
    height_map, info = _STRATEGIES[method](
        normal_map, iterations=iterations, iteration_multiplier=iteration_multiplier, slope_scale=slope_scale,
        max_iterations=max_iterations, tolerance=tolerance, warm_start=warm_start, workers=workers,
        edge_pyramid=edge_pyramid, max_edge_level=max_edge_level)
    height_map.pack_0_to_1()
    elapsed = time.perf_counter() - start

    results = GenerationResults(height_map, method.value, time_to_generate=elapsed, **info)
    logger.debug("Finished %dx%d image with %s (%d iterations) in %.2f seconds", height_map.width,
                height_map.height, method.value, results.iterations, elapsed)
    return results


def generate_iteration_sweep(normal_map: np.ndarray, iterations_list, method=HeightGenMethod.RELAXATION,
                             max_workers=None, **kwargs):
    """One relaxation solve per iteration count, run concurrently; results keep input order.

    Each solve owns its buffers, so the only shared input is the (read-only) normal map
    and, for the edge-aware method, its edge pyramid, which is built once up front.
    """
    method = HeightGenMethod(method)
    if not method.is_relaxation:
        raise ValueError(f"iteration sweeps need a relaxation method, got {method.value!r}")
    normal_map = np.asarray(normal_map, dtype=np.float64)
    check_normal_map(normal_map)
    if method is HeightGenMethod.RELAXATION_EDGE_AWARE and kwargs.get("edge_pyramid") is None:
        kwargs["edge_pyramid"] = build_edge_pyramid(build_normal_pyramid(normal_map))

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(generate_height_map, normal_map, method, n, **kwargs) for n in iterations_list]
        return [f.result() for f in futures]
