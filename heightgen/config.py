"""
Run configuration for the command-line tool.
"""
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_ITERATIONS = 512
DEFAULT_SIZE = 256
# --range sweeps these iteration counts; the combined view shows a subset of them
RANGE_ITERATIONS = (32, 64, 128, 256, 512, 1024, 2048, 4096, 32768)
COMBINED_VIEW_ITERATIONS = (32, 128, 512, 2048, 32768)
BORDER_WIDTH = 4
BORDER_COLOR = (0, 0, 255)


@dataclass
class Options:
    normal_map_path: Optional[str] = None
    method: str = "relaxation"
    iterations: int = DEFAULT_ITERATIONS
    iteration_multiplier: float = 1.0
    slope_scale: float = 1.0
    flip_y: bool = False
    flip_x: bool = False
    output_gen_normals: bool = False
    range_of_iterations: bool = False
    max_iterations: int = 2000
    tolerance: float = 1e-6
    warm_start: bool = False
    max_edge_level: Optional[int] = None
    workers: Optional[int] = None
    diff: bool = False
    plots: bool = False
    raw: bool = False
    synthetic: Optional[str] = None
    size: int = DEFAULT_SIZE
    output_dir: Optional[str] = None
    log_file: Optional[str] = None
    normal_methods: list = field(default_factory=list)

    @property
    def iterations_list(self):
        return list(RANGE_ITERATIONS) if self.range_of_iterations else [self.iterations]
