"""
Multi-resolution ASM search.

Search runs from the coarsest pyramid level to the finest. At every level:

1. Sample profiles at 2k + 1 candidate positions along each landmark normal
2. Move each landmark to its best candidate (lowest Mahalanobis distance)
3. Regularize the proposed shape with the shape model (BTSM or projection)
4. Repeat until the shape stops moving or the iteration budget is spent

The pose is carried between levels in level-0 coordinates and rescaled by
0.5**level on entry to a level.
"""

import logging
from typing import List, Optional, Tuple

import cv2
import numpy as np

from ..config import FitConfig, Verbosity
from ..exceptions import ModelConfigurationError
from ..observer import FitObserver
from ..result import ASMFitResult, LevelReport
from .btsm import BTSMEstimator, ShapeEstimate
from .pdm import PDM
from .profile_model import ProfileModel, sample_profiles
from .transform import SimilarityTransform

logger = logging.getLogger(__name__)

# Numerical failures that end a search early instead of failing the fit
NUMERICAL_ERRORS = (np.linalg.LinAlgError, FloatingPointError, ValueError)


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """Convert a BGR/BGRA/gray image to a float32 grayscale image."""
    image = np.asarray(image)
    if image.size == 0:
        raise ValueError("Empty image")
    if image.ndim == 3:
        if image.shape[2] == 1:
            image = image[:, :, 0]
        elif image.shape[2] == 3:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        elif image.shape[2] == 4:
            image = cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
        else:
            raise ValueError(f"Unsupported number of channels: {image.shape[2]}")
    elif image.ndim != 2:
        raise ValueError(f"Expected a 2D or 3D image, got shape {image.shape}")
    return image.astype(np.float32)


def build_image_pyramid(image: np.ndarray, n_levels: int) -> List[np.ndarray]:
    """
    Gaussian pyramid of a grayscale image.

    Args:
        image: Input image (grayscale or color)
        n_levels: Number of levels; level 0 is the full-resolution image

    Returns:
        pyramid: Read-only float32 images, each half the size of the previous
    """
    pyramid = [to_grayscale(image)]
    for _ in range(1, n_levels):
        pyramid.append(cv2.pyrDown(pyramid[-1]))
    for level in pyramid:
        level.setflags(write=False)
    return pyramid


class PyramidSearchEngine:
    """
    Coarse-to-fine landmark search with shape regularization.

    Holds no per-fit state; one engine can serve concurrent searches.
    """

    def __init__(self,
                 pdm: PDM,
                 profile_model: ProfileModel,
                 config: Optional[FitConfig] = None):
        """
        Args:
            pdm: Shape model
            profile_model: Local appearance model for the same landmarks
            config: Search options (default: FitConfig())
        """
        self.pdm = pdm
        self.profile_model = profile_model
        self.config = config or FitConfig()

        self.estimator = BTSMEstimator(
            pdm,
            n_std=self.config.n_std,
            n_iterations=self.config.btsm_iterations,
            min_noise_variance=self.config.min_noise_variance)

        # Candidates sorted by |offset| so argmin prefers the smaller move
        k = self.config.search_radius
        ordered = sorted(range(-k, k + 1), key=lambda c: (abs(c), c))
        self.offsets = np.array(ordered, dtype=np.float64) * self.config.candidate_spacing

    @property
    def n_levels(self) -> int:
        """Number of pyramid levels searched."""
        n_trained = self.profile_model.n_levels
        if self.config.max_levels is None:
            return n_trained
        if self.config.max_levels > n_trained:
            raise ModelConfigurationError(
                f"max_levels={self.config.max_levels} but the model has {n_trained} levels")
        return self.config.max_levels

    def search(self,
               pyramid: List[np.ndarray],
               params: np.ndarray,
               pose: SimilarityTransform,
               observer: Optional[FitObserver] = None) -> ASMFitResult:
        """
        Run the full coarse-to-fine search.

        Args:
            pyramid: Image pyramid from build_image_pyramid
            params: Initial shape parameters
            pose: Initial pose in level-0 coordinates
            observer: Progress observer (default: silent)

        Returns:
            result: Fitted parameters and pose (not yet bound to a model)
        """
        if observer is None:
            observer = FitObserver()
        n_levels = self.n_levels
        if len(pyramid) < n_levels:
            raise ModelConfigurationError(
                f"Pyramid has {len(pyramid)} levels, search needs {n_levels}")

        estimate = ShapeEstimate(self.pdm.clamp_params(params, self.config.n_std), pose)
        reports = []
        for level in range(n_levels - 1, -1, -1):
            try:
                estimate, report = self._search_level(pyramid[level], level, n_levels,
                                                      estimate, observer)
            except NUMERICAL_ERRORS as e:
                logger.warning("Search failed at level %d (%s: %s); keeping the previous estimate",
                               level, type(e).__name__, e)
                report = LevelReport(level=level, iterations=0, converged=False, reason='failed')
                reports.append(report)
                observer.level_finished(report)
                break
            reports.append(report)

        return ASMFitResult(params=estimate.params, pose=estimate.pose, levels=tuple(reports))

    def _search_level(self,
                      image: np.ndarray,
                      level: int,
                      n_levels: int,
                      estimate: ShapeEstimate,
                      observer: FitObserver) -> Tuple[ShapeEstimate, LevelReport]:
        cfg = self.config
        factor = 0.5 ** level

        current = ShapeEstimate(estimate.params, estimate.pose.rescaled(factor),
                                estimate.noise_variance)
        points = self.pdm.reconstruct(current.params, current.pose)
        best_cost = self._shape_cost(image, level, points)
        best = current
        costs = [best_cost]
        observer.level_started(level, n_levels, points)

        # Iterations continue from the latest shape; with enforce_monotonic the
        # level returns the lowest-cost shape seen
        reason = 'max_iterations'
        displacement = 0.0
        iterations = 0
        rejections = 0
        for iteration in range(cfg.max_iterations):
            iterations = iteration + 1

            proposed = self._propose(image, level, points, iteration, observer)
            current = self._regularize(proposed, current)
            new_points = self.pdm.reconstruct(current.params, current.pose)
            new_cost = self._shape_cost(image, level, new_points)
            displacement = float(np.mean(np.linalg.norm(new_points - points, axis=1)))
            points = new_points

            accepted = bool(np.isfinite(new_cost))
            if accepted and cfg.enforce_monotonic:
                accepted = new_cost <= best_cost + cfg.cost_tolerance
            observer.iteration_finished(level, iteration, new_cost, displacement, accepted)

            if accepted:
                best, best_cost = current, new_cost
            else:
                rejections += 1
                logger.debug("Level %d iteration %d: cost %.4f above best %.4f, update rejected",
                             level, iteration, new_cost, best_cost)
            costs.append(best_cost)

            if displacement < cfg.convergence_threshold:
                reason = 'converged'
                break

        report = LevelReport(level=level, iterations=iterations, converged=reason == 'converged',
                             reason=reason, costs=tuple(costs), displacement=displacement,
                             rejections=rejections)
        observer.level_finished(report)

        return ShapeEstimate(best.params, best.pose.rescaled(1.0 / factor),
                             best.noise_variance), report

    def _propose(self,
                 image: np.ndarray,
                 level: int,
                 points: np.ndarray,
                 iteration: int,
                 observer: FitObserver) -> np.ndarray:
        """
        Move every landmark to its best candidate along the normal.

        All landmarks are scored against the same input shape before any of
        them moves.
        """
        normals = self.pdm.normals(points)
        profiles, valid = sample_profiles(image, points, normals, self.offsets,
                                          self.profile_model.half_length)
        distances = self.profile_model.evaluate_batch(level, profiles)
        distances = np.where(valid, distances, np.inf)

        best = np.argmin(distances, axis=1)
        has_valid = valid.any(axis=1)
        shift = np.where(has_valid, self.offsets[best], 0.0)

        if observer.wants(Verbosity.AT_POINT):
            rows = np.arange(len(points))
            for i, d in zip(rows, distances[rows, best]):
                observer.point_evaluated(level, iteration, int(i), float(shift[i]), float(d))

        return points + shift[:, None] * normals

    def _regularize(self, proposed: np.ndarray, current: ShapeEstimate) -> ShapeEstimate:
        """Fit the shape model to a proposed shape."""
        if self.config.use_btsm:
            return self.estimator.estimate(proposed, current)
        params, pose = self.pdm.project(proposed, self.config.n_std, pose=current.pose)
        return ShapeEstimate(params, pose)

    def _shape_cost(self, image: np.ndarray, level: int, points: np.ndarray) -> float:
        """Mean Mahalanobis distance of the profiles at the given landmarks."""
        normals = self.pdm.normals(points)
        profiles, _ = sample_profiles(image, points, normals, np.zeros(1),
                                      self.profile_model.half_length)
        return float(np.mean(self.profile_model.evaluate_batch(level, profiles)))
