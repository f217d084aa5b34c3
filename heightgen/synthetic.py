"""
Synthetic periodic surfaces with analytic slopes, for tests and demo inputs.

Coordinates are texel centres in UV space, u = (col + 0.5) / Nx and v = (row + 0.5) / Ny,
with +v pointing down the image. Every ``create_*`` function returns ``U, V, Z, P, Q``
where P = dZ/du and Q = dZ/dv.
"""
import numpy as np

from heightgen.image_ops import normalize_vectors


def _uv_grid(Nx, Ny):
    u = (np.arange(Nx) + 0.5) / Nx
    v = (np.arange(Ny) + 0.5) / Ny
    return np.meshgrid(u, v, indexing="xy")


def create_sinusoidal_surface(Nx=128, Ny=128, amplitude=0.02, freq_u=1, freq_v=1):
    """Z = a sin(2 pi fu u) cos(2 pi fv v); tiles seamlessly for integer frequencies."""
    U, V = _uv_grid(Nx, Ny)
    su, cu = np.sin(2 * np.pi * freq_u * U), np.cos(2 * np.pi * freq_u * U)
    sv, cv = np.sin(2 * np.pi * freq_v * V), np.cos(2 * np.pi * freq_v * V)
    Z = amplitude * su * cv
    P = amplitude * 2 * np.pi * freq_u * cu * cv
    Q = -amplitude * 2 * np.pi * freq_v * su * sv
    return U, V, Z, P, Q


def create_ramp_surface(Nx=128, Ny=128, axis="v", slope=1.0):
    """Ridge across the middle half of the image: up at +slope, then back down.

    Along ``axis`` the height is slope * max(0, 0.25 - |t - 0.5|); the other axis is flat.
    """
    U, V = _uv_grid(Nx, Ny)
    if axis not in ("u", "v"):
        raise ValueError("axis must be 'u' or 'v'")
    T = U if axis == "u" else V
    inside = np.abs(T - 0.5) < 0.25
    Z = slope * np.clip(0.25 - np.abs(T - 0.5), 0.0, None)
    dT = np.where(inside, -slope * np.sign(T - 0.5), 0.0)
    zeros = np.zeros_like(Z)
    P, Q = (dT, zeros) if axis == "u" else (zeros, dT)
    return U, V, Z, P, Q


def create_bumps_surface(Nx=128, Ny=128, amplitude=0.03, sharpness=4.0,
                         centers=((0.3, 0.3), (0.7, 0.6), (0.45, 0.8))):
    """Sum of smooth periodic bumps a exp(k (cos 2pi(u-u0) + cos 2pi(v-v0) - 2))."""
    U, V = _uv_grid(Nx, Ny)
    Z = np.zeros_like(U)
    P = np.zeros_like(U)
    Q = np.zeros_like(U)
    for u0, v0 in centers:
        au = 2 * np.pi * (U - u0)
        av = 2 * np.pi * (V - v0)
        bump = amplitude * np.exp(sharpness * (np.cos(au) + np.cos(av) - 2))
        Z += bump
        P += bump * sharpness * -np.sin(au) * 2 * np.pi
        Q += bump * sharpness * -np.sin(av) * 2 * np.pi
    return U, V, Z, P, Q


SURFACES = {
    "sinusoid": create_sinusoidal_surface,
    "ramp_h": lambda Nx=128, Ny=128: create_ramp_surface(Nx, Ny, axis="u"),
    "ramp_v": lambda Nx=128, Ny=128: create_ramp_surface(Nx, Ny, axis="v"),
    "bumps": create_bumps_surface,
}


def normals_from_gradients(P: np.ndarray, Q: np.ndarray) -> np.ndarray:
    """Unit normals (+X right, +Y down, +Z out) of a surface with UV slopes P, Q."""
    N = np.stack([-P, -Q, np.ones_like(P)], axis=-1)
    return normalize_vectors(N)


def normals_from_height(Z: np.ndarray) -> np.ndarray:
    """Unit normals of a sampled periodic height field (central differences, UV units)."""
    Ny, Nx = Z.shape
    P = (np.roll(Z, -1, axis=1) - np.roll(Z, 1, axis=1)) * Nx / 2.0
    Q = (np.roll(Z, -1, axis=0) - np.roll(Z, 1, axis=0)) * Ny / 2.0
    return normals_from_gradients(P, Q)


def synthetic_normal_map(name: str, size: int = 128):
    """(normal map, ground-truth height) for one of ``SURFACES``."""
    if name not in SURFACES:
        raise ValueError(f"unknown synthetic surface {name!r}, choose from {sorted(SURFACES)}")
    _, _, Z, P, Q = SURFACES[name](Nx=size, Ny=size)
    return normals_from_gradients(P, Q), Z
