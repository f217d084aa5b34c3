"""
Spectral (FFT) integration of a periodic gradient field.

Solves the discrete Poisson equation that a toroidal integrator converges to, directly in
the Fourier domain. The solution has zero mean, since the DC term is unconstrained.
"""
import numpy as np

from heightgen.gradients import gradient_field_from_normal_map
from heightgen.height_map import HeightMap

SCHEMES = ("forward", "central")


def solve_poisson_fft(gradients: np.ndarray, scheme: str = "forward") -> np.ndarray:
    """Height field whose discrete divergence matches that of ``gradients``.

    ``scheme="forward"`` is the exact minimiser of the forward-difference least-squares
    system (what the conjugate-gradient solver approaches):

        (2 - 2cos wx + 2 - 2cos wy) H = -(1 - e^{-i wx}) DX - (1 - e^{-i wy}) DY

    ``scheme="central"`` is the fixed point of the relaxation sweep with slope weight 0.5:

        (2cos wx + 2cos wy - 4) H = i sin(wx) DX + i sin(wy) DY
    """
    if scheme not in SCHEMES:
        raise ValueError(f"scheme must be one of {SCHEMES}, got {scheme!r}")
    H, W = gradients.shape[:2]
    # Frequency grids
    wx = 2 * np.pi * np.fft.fftfreq(W)
    wy = 2 * np.pi * np.fft.fftfreq(H)
    WX, WY = np.meshgrid(wx, wy, indexing="xy")

    DX = np.fft.fft2(gradients[..., 0])
    DY = np.fft.fft2(gradients[..., 1])
    if scheme == "forward":
        lambda_k = (2 - 2 * np.cos(WX)) + (2 - 2 * np.cos(WY))
        F = -(1 - np.exp(-1j * WX)) * DX - (1 - np.exp(-1j * WY)) * DY
    else:
        lambda_k = 2 * np.cos(WX) + 2 * np.cos(WY) - 4
        F = 1j * np.sin(WX) * DX + 1j * np.sin(WY) * DY

    # Avoid division by zero at the DC component; fix mean to zero
    lambda_k[0, 0] = 1.0
    F[0, 0] = 0.0

    Z = np.fft.ifft2(F / lambda_k).real
    return Z


def solve_spectral(normal_map: np.ndarray, slope_scale: float = 1.0, scheme: str = "forward") -> HeightMap:
    """Raw, zero-mean height field of a normal map via the FFT solve."""
    gradients = gradient_field_from_normal_map(normal_map, slope_scale)
    height_map = HeightMap(solve_poisson_fft(gradients, scheme))
    height_map.calc_min_max()
    return height_map
