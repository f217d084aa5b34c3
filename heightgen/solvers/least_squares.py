"""
Global least-squares integration of a gradient field.

Every texel contributes two forward-difference equations with wrapped neighbours,

    h(r, c) - h(r, c+1) = -dx(r, c)
    h(r, c) - h(r+1, c) = -dy(r, c)

giving a sparse 2N x N system A h = b (N = W*H). Height is only defined up to a constant,
so A is rank deficient; the normal equations A^T A h = A^T b are still consistent and are
solved with conjugate gradient, optionally starting from a relaxation result.
"""
import logging
from dataclasses import dataclass

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import cg

from heightgen.errors import SolverSetupError
from heightgen.gradients import gradient_field_from_normal_map
from heightgen.height_map import HeightMap
from heightgen.solvers.relaxation import solve_relaxation

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 2000
DEFAULT_TOLERANCE = 1e-6
WARM_START_ITERATIONS = 512


@dataclass
class LeastSquaresSolution:
    height_map: HeightMap
    iterations: int
    max_iterations: int
    error: float
    converged: bool


def build_slope_system(gradients: np.ndarray):
    """Sparse matrix A (2N x N, CSR) and right-hand side b (2N) for a gradient field.

    Row 2i is the horizontal constraint of texel i and row 2i+1 the vertical one; all
    neighbour columns are wrapped, so no row references a column outside [0, N).
    """
    gradients = np.asarray(gradients, dtype=np.float64)
    H, W = gradients.shape[:2]
    N = H * W
    b = -gradients.reshape(N, 2).ravel()
    if not np.all(np.isfinite(b)):
        raise SolverSetupError("gradient field contains non-finite slopes")

    idx = np.arange(N).reshape(H, W)
    right = np.roll(idx, -1, axis=1).ravel()
    down = np.roll(idx, -1, axis=0).ravel()
    idx = idx.ravel()

    rows = np.concatenate([2 * idx, 2 * idx, 2 * idx + 1, 2 * idx + 1])
    cols = np.concatenate([idx, right, idx, down])
    data = np.concatenate([np.ones(N), -np.ones(N), np.ones(N), -np.ones(N)])
    try:
        # duplicate entries (a side of length 1) are summed, leaving an empty row
        A = sparse.coo_matrix((data, (rows, cols)), shape=(2 * N, N)).tocsr()
    except (ValueError, MemoryError) as e:
        raise SolverSetupError(f"could not assemble {2 * N}x{N} slope system: {e}") from e
    return A, b


def relaxation_guess(normal_map: np.ndarray, slope_scale: float = 1.0,
                     iterations: int = WARM_START_ITERATIONS) -> np.ndarray:
    """Raw heights from a short relaxation solve, used as a conjugate-gradient start."""
    return solve_relaxation(normal_map, iterations, slope_scale=slope_scale).raw()


def solve_least_squares(normal_map: np.ndarray, max_iterations: int = DEFAULT_MAX_ITERATIONS,
                        tolerance: float = DEFAULT_TOLERANCE, initial_guess=None,
                        slope_scale: float = 1.0) -> LeastSquaresSolution:
    """Least-squares height field for a normal map.

    Stops after ``max_iterations`` conjugate-gradient steps or once the normal-equation
    residual falls below ``tolerance * ||A^T b||``. Running out of iterations is not an
    error: the partial result is returned with ``converged=False``.

    Raises
    ------
    SolverSetupError
        The system could not be assembled or the solver rejected it.
    """
    gradients = gradient_field_from_normal_map(normal_map, slope_scale)
    H, W = gradients.shape[:2]
    A, b = build_slope_system(gradients)
    AtA = (A.T @ A).tocsr()
    Atb = A.T @ b

    x0 = None
    if initial_guess is not None:
        initial_guess = np.asarray(initial_guess, dtype=np.float64)
        if initial_guess.shape != (H, W):
            raise ValueError(f"initial guess {initial_guess.shape} does not match normal map {(H, W)}")
        x0 = initial_guess.ravel()

    iterations = 0

    def count(_):
        nonlocal iterations
        iterations += 1

    x, info = cg(AtA, Atb, x0=x0, rtol=tolerance, atol=0.0, maxiter=max_iterations, callback=count)
    if info < 0:
        raise SolverSetupError(f"conjugate gradient rejected the system (info={info})")

    rhs_norm = np.linalg.norm(Atb)
    error = float(np.linalg.norm(AtA @ x - Atb) / rhs_norm) if rhs_norm > 0 else 0.0
    converged = info == 0
    if not converged:
        logger.warning("Solver didn't converge (yet): %d / %d iterations, error %g",
                       iterations, max_iterations, error)

    height_map = HeightMap(x.reshape(H, W))
    height_map.calc_min_max()
    return LeastSquaresSolution(height_map, iterations, max_iterations, error, converged)
