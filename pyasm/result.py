"""
Fit results.

A result stores only the shape parameters and the pose; landmark positions
are always derived from them through the model, so the parameter view and the
point view of a fit can never disagree.
"""

from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

import numpy as np

from .core.transform import SimilarityTransform
from .exceptions import ASMUsageError


@dataclass(frozen=True)
class LevelReport:
    """Search diagnostics of one pyramid level."""

    level: int
    iterations: int
    converged: bool
    reason: str  # 'converged', 'max_iterations' or 'failed'
    costs: Tuple[float, ...] = ()
    displacement: float = 0.0
    rejections: int = 0


@dataclass(frozen=True, eq=False)
class ASMFitResult:
    """
    Immutable outcome of fitting one region.

    Attributes:
        params: Shape parameters b, shape (m,)
        pose: Model-to-image pose (level 0 coordinates)
        model: ASMModel used to reconstruct landmarks (not owned)
        levels: Per-level reports, coarsest level first
    """

    params: np.ndarray
    pose: SimilarityTransform
    model: Optional[object] = field(default=None, repr=False)
    levels: Tuple[LevelReport, ...] = ()

    def __post_init__(self):
        params = np.array(self.params, dtype=np.float64).ravel()
        params.setflags(write=False)
        object.__setattr__(self, 'params', params)
        object.__setattr__(self, 'levels', tuple(self.levels))

    @property
    def converged(self) -> bool:
        """True when the finest searched level converged."""
        return bool(self.levels) and self.levels[-1].converged

    def with_model(self, model) -> 'ASMFitResult':
        """Copy of this result bound to `model`."""
        return replace(self, model=model)

    def to_points(self) -> np.ndarray:
        """Landmark positions in image coordinates, shape (n_points, 2)."""
        if self.model is None:
            raise ASMUsageError("Result has no model; bind one with with_model()")
        return self.model.shape_model.reconstruct(self.params, self.pose)

    def to_point_list(self) -> List[Tuple[int, int]]:
        """Landmark positions rounded to integer pixels."""
        points = np.rint(self.to_points()).astype(np.int64)
        return [(int(x), int(y)) for x, y in points]
