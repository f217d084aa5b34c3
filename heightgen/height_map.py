"""
Height field container with its [0, 1] packing and the per-solve result record.
"""
from dataclasses import dataclass, field
from typing import Optional

import numpy as np


@dataclass
class HeightMap:
    """A 1-channel height field plus the scale/bias that maps it back to raw elevation.

    ``raw = packed * scale + bias``. Solvers hand back raw fields (scale 1, bias 0);
    ``pack_0_to_1`` rewrites them into [0, 1].
    """
    data: np.ndarray
    scale: float = 1.0
    bias: float = 0.0
    min_h: float = float("inf")
    max_h: float = float("-inf")

    def __post_init__(self):
        self.data = np.asarray(self.data, dtype=np.float64)

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def height(self) -> int:
        return self.data.shape[0]

    def calc_min_max(self):
        self.min_h = float(self.data.min())
        self.max_h = float(self.data.max())

    def pack_0_to_1(self):
        """Rewrite the raw field as (h - min) / (max - min); a constant field packs to 0."""
        self.calc_min_max()
        scale = self.max_h - self.min_h
        # a constant field has no range; store scale 1 so unpacking stays well defined
        self.scale = scale if scale > 0 else 1.0
        self.bias = self.min_h
        self.data = (self.data - self.bias) / self.scale

    def unpack_0_to_1(self):
        """Restore raw heights and reset scale/bias."""
        self.data = self.raw()
        self.scale = 1.0
        self.bias = 0.0

    def raw(self) -> np.ndarray:
        """Raw elevation for every texel, without modifying the stored field."""
        scale = self.scale if self.scale != 0 else 1.0
        return self.data * scale + self.bias

    def get_h(self, row: int, col: int) -> float:
        scale = self.scale if self.scale != 0 else 1.0
        return float(self.data[row, col] * scale + self.bias)


@dataclass
class GenerationResults:
    """Output of one height-map generation."""
    height_map: HeightMap
    method: str
    iterations: int
    time_to_generate: float = 0.0
    # only set by the linear-system solver
    max_iterations: Optional[int] = None
    solver_error: Optional[float] = None
    converged: Optional[bool] = None
    extra: dict = field(default_factory=dict)

    def summary(self) -> dict:
        hm = self.height_map
        out = {
            "method": self.method,
            "iterations": self.iterations,
            "width": hm.width,
            "height": hm.height,
            "time_to_generate": self.time_to_generate,
            "min_h": hm.min_h,
            "max_h": hm.max_h,
            "range": hm.max_h - hm.min_h,
        }
        if self.max_iterations is not None:
            out["max_iterations"] = self.max_iterations
            out["solver_error"] = self.solver_error
            out["converged"] = self.converged
        out.update(self.extra)
        return out
