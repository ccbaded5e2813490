"""
Fit progress observers.

The search engine reports its progress through a FitObserver. The observer's
verbosity decides which events are emitted at all; nothing an observer does
feeds back into the fit.
"""

import logging
from typing import Optional

import numpy as np

from .config import Verbosity, VerbosityLike


class FitObserver:
    """Base observer: receives events and ignores them."""

    def __init__(self, verbosity: VerbosityLike = Verbosity.NO_VERBOSE):
        self.verbosity = Verbosity.parse(verbosity)

    def wants(self, verbosity: Verbosity) -> bool:
        """True when events of the given verbosity should be emitted."""
        return self.verbosity >= verbosity

    def level_started(self, level: int, n_levels: int, points: np.ndarray):
        pass

    def iteration_finished(self, level: int, iteration: int, cost: float,
                           displacement: float, accepted: bool):
        pass

    def point_evaluated(self, level: int, iteration: int, landmark_idx: int,
                        offset: float, distance: float):
        pass

    def level_finished(self, report):
        pass


class LoggingObserver(FitObserver):
    """
    Observer that writes events to a logger.

    Level summaries and iteration lines go out at INFO, per-landmark
    candidate choices at DEBUG.
    """

    def __init__(self, verbosity: VerbosityLike = Verbosity.AT_LEVEL,
                 logger: Optional[logging.Logger] = None):
        super().__init__(verbosity)
        self.logger = logger if logger is not None else logging.getLogger(__name__)

    def level_started(self, level, n_levels, points):
        if self.wants(Verbosity.AT_LEVEL):
            self.logger.info("Level %d/%d: start, %d landmarks", level, n_levels - 1, len(points))

    def iteration_finished(self, level, iteration, cost, displacement, accepted):
        if self.wants(Verbosity.AT_ITERATION):
            self.logger.info("Level %d iteration %d: cost=%.4f displacement=%.3f%s",
                             level, iteration, cost, displacement,
                             "" if accepted else " (rejected)")

    def point_evaluated(self, level, iteration, landmark_idx, offset, distance):
        if self.wants(Verbosity.AT_POINT):
            self.logger.debug("Level %d iteration %d landmark %d: offset=%+.2f distance=%.4f",
                              level, iteration, landmark_idx, offset, distance)

    def level_finished(self, report):
        if self.wants(Verbosity.AT_LEVEL):
            self.logger.info("Level %d: %s after %d iterations, cost=%.4f",
                             report.level, report.reason, report.iterations,
                             report.costs[-1] if report.costs else float('nan'))
