"""
Fitting configuration for the ASM search.

All tunables of the pyramid search live in a single FitConfig dataclass so a
fit call can be reproduced from its configuration alone.
"""

from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Optional, Union


class Verbosity(IntEnum):
    """Diagnostic verbosity of a fit. Never changes the fitted result."""

    NO_VERBOSE = 0
    AT_LEVEL = 1
    AT_ITERATION = 2
    AT_POINT = 3

    @classmethod
    def parse(cls, value: Union["Verbosity", int, str, None]) -> "Verbosity":
        """
        Convert a verbosity given as enum, int or option string.

        Args:
            value: e.g. Verbosity.AT_LEVEL, 1, "at-level" or None (silent)

        Returns:
            verbosity: Verbosity member
        """
        if value is None:
            return cls.NO_VERBOSE
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower().replace('-', '_')
            if key == 'none':
                return cls.NO_VERBOSE
            try:
                return cls[key.upper()]
            except KeyError:
                raise ValueError(f"Unknown verbosity: {value!r}") from None
        try:
            return cls(int(value))
        except ValueError:
            raise ValueError(f"Unknown verbosity: {value!r}") from None


VerbosityLike = Union[Verbosity, int, str, None]


@dataclass(frozen=True)
class FitConfig:
    """
    Options for PyramidSearchEngine and ASMModel.

    Args:
        max_levels: Pyramid levels to search (None = every trained level)
        search_radius: Candidate offsets on each side of a landmark (k)
        candidate_spacing: Distance between candidates, in level pixels
        profile_half_length: Expected profile half length (ns); None skips the check
        n_std: Shape parameter truncation factor (m)
        max_iterations: Iteration budget per pyramid level
        convergence_threshold: Mean landmark displacement (level pixels) that ends a level
        verbosity: Diagnostic verbosity
        use_btsm: Regularize with the BTSM estimator instead of plain projection
        btsm_iterations: Pose/parameter alternations inside one BTSM estimate
        min_noise_variance: Floor of the BTSM observation noise variance
        enforce_monotonic: Return the lowest-cost shape of each level instead of the last one
        cost_tolerance: Cost increase over the best shape still accepted as an improvement
        region_fill: Size of the initial shape relative to the search region
        n_workers: Threads used by ASMModel.fit_all
    """

    max_levels: Optional[int] = None
    search_radius: int = 6
    candidate_spacing: float = 1.0
    profile_half_length: Optional[int] = None
    n_std: float = 3.0
    max_iterations: int = 10
    convergence_threshold: float = 0.5
    verbosity: VerbosityLike = Verbosity.NO_VERBOSE
    use_btsm: bool = True
    btsm_iterations: int = 3
    min_noise_variance: float = 1e-10
    enforce_monotonic: bool = True
    cost_tolerance: float = 0.0
    region_fill: float = 1.0
    n_workers: int = 1

    def __post_init__(self):
        # frozen dataclass: normalize through object.__setattr__
        object.__setattr__(self, 'verbosity', Verbosity.parse(self.verbosity))

        if self.max_levels is not None and self.max_levels < 1:
            raise ValueError(f"max_levels must be >= 1, got {self.max_levels}")
        if self.search_radius < 0:
            raise ValueError(f"search_radius must be >= 0, got {self.search_radius}")
        if self.candidate_spacing <= 0:
            raise ValueError(f"candidate_spacing must be > 0, got {self.candidate_spacing}")
        if self.profile_half_length is not None and self.profile_half_length < 0:
            raise ValueError(f"profile_half_length must be >= 0, got {self.profile_half_length}")
        if self.n_std <= 0:
            raise ValueError(f"n_std must be > 0, got {self.n_std}")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.convergence_threshold < 0:
            raise ValueError(f"convergence_threshold must be >= 0, got {self.convergence_threshold}")
        if self.btsm_iterations < 1:
            raise ValueError(f"btsm_iterations must be >= 1, got {self.btsm_iterations}")
        if self.min_noise_variance <= 0:
            raise ValueError(f"min_noise_variance must be > 0, got {self.min_noise_variance}")
        if self.cost_tolerance < 0:
            raise ValueError(f"cost_tolerance must be >= 0, got {self.cost_tolerance}")
        if self.region_fill <= 0:
            raise ValueError(f"region_fill must be > 0, got {self.region_fill}")
        if self.n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {self.n_workers}")

    def with_verbosity(self, verbosity: VerbosityLike) -> "FitConfig":
        """Return a copy with a different verbosity."""
        return replace(self, verbosity=Verbosity.parse(verbosity))
