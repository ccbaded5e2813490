"""
ASM (Active Shape Model) - landmark fitting API

Combines:
- PDM (Point Distribution Model) for shape representation
- ProfileModel for local appearance around every landmark
- PyramidSearchEngine for coarse-to-fine search with BTSM regularization

Usage:
    from pyasm import ASMModel

    model = ASMModel.load("shapes.npz")

    # One object in a known region
    result = model.fit_all(image, [(x, y, w, h)])[0]
    landmarks = result.to_point_list()
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import FitConfig, Verbosity, VerbosityLike
from .core.pdm import PDM
from .core.profile_model import ProfileModel
from .core.search import NUMERICAL_ERRORS, PyramidSearchEngine, build_image_pyramid
from .core.transform import SimilarityTransform
from .exceptions import ModelConfigurationError
from .observer import FitObserver, LoggingObserver
from .result import ASMFitResult

logger = logging.getLogger(__name__)

Region = Tuple[float, float, float, float]


class ASMModel:
    """
    Trained Active Shape Model.

    The shape and appearance models are read-only after construction, so one
    ASMModel can fit many regions (and images) concurrently.
    """

    def __init__(self,
                 shape_model: PDM,
                 profile_model: ProfileModel,
                 config: Optional[FitConfig] = None):
        """
        Args:
            shape_model: Point distribution model
            profile_model: Profile statistics for the same landmarks
            config: Fitting options (default: FitConfig())
        """
        self.config = config or FitConfig()

        if profile_model.n_points != shape_model.n_points:
            raise ModelConfigurationError(
                f"Profile model has {profile_model.n_points} landmarks, "
                f"shape model has {shape_model.n_points}")
        ns = self.config.profile_half_length
        if ns is not None and ns != profile_model.half_length:
            raise ModelConfigurationError(
                f"Configured profile half length {ns} does not match the "
                f"trained half length {profile_model.half_length}")

        self.shape_model = shape_model
        self.profile_model = profile_model
        self.engine = PyramidSearchEngine(shape_model, profile_model, self.config)
        self._n_levels = self.engine.n_levels  # validates max_levels

    @property
    def n_points(self) -> int:
        return self.shape_model.n_points

    @property
    def n_levels(self) -> int:
        """Pyramid levels searched by fit()."""
        return self._n_levels

    def fit(self,
            image: np.ndarray,
            verbosity: VerbosityLike = None,
            initial_pose: Optional[SimilarityTransform] = None,
            observer: Optional[FitObserver] = None) -> ASMFitResult:
        """
        Fit the model to a whole image.

        Numerical failures are handled as in fit_all().

        Args:
            image: Input image (grayscale or BGR)
            verbosity: Overrides the configured verbosity for this call
            initial_pose: Starting pose (default: mean shape centred in the image)
            observer: Receives progress events (default: a LoggingObserver)

        Returns:
            result: Fit bound to this model
        """
        pyramid = build_image_pyramid(image, self.n_levels)
        if initial_pose is None:
            height, width = pyramid[0].shape
            initial_pose = self.initial_pose((0, 0, width, height))
        return self._fit_guarded(pyramid, initial_pose, self._make_observer(verbosity, observer),
                                 "image")

    def fit_all(self,
                image: np.ndarray,
                regions: Sequence[Region],
                verbosity: VerbosityLike = None,
                observer: Optional[FitObserver] = None) -> List[ASMFitResult]:
        """
        Fit one shape inside every region of an image.

        Regions are clamped into the image before fitting. A region whose
        search fails numerically keeps the estimate of its last finished
        pyramid level (or its initial estimate) instead of raising; model and
        usage errors propagate.

        Args:
            image: Input image (grayscale or BGR)
            regions: (x, y, width, height) boxes, e.g. from an object detector
            verbosity: Overrides the configured verbosity for this call
            observer: Receives progress events of every region

        Returns:
            results: One result per region, in input order
        """
        regions = [_check_region(region) for region in regions]
        pyramid = build_image_pyramid(image, self.n_levels)
        height, width = pyramid[0].shape
        observer = self._make_observer(verbosity, observer)

        def fit_region(region: Region) -> ASMFitResult:
            pose = self.initial_pose(clamp_region(region, width, height))
            return self._fit_guarded(pyramid, pose, observer, f"region {region}")

        n_workers = min(self.config.n_workers, len(regions))
        if n_workers > 1:
            with ThreadPoolExecutor(max_workers=n_workers) as executor:
                return list(executor.map(fit_region, regions))
        return [fit_region(region) for region in regions]

    def initial_pose(self, region: Region) -> SimilarityTransform:
        """
        Pose placing the mean shape inside a region.

        The mean shape's bounding box is scaled to fit the region (times
        config.region_fill) and centred on it.
        """
        x, y, w, h = _check_region(region)
        mean = self.shape_model.mean_shape
        lo, hi = mean.min(axis=0), mean.max(axis=0)
        extent = hi - lo
        centre = (lo + hi) / 2.0

        ratios = [size / ext for size, ext in zip((w, h), extent) if ext > 1e-12]
        scale = min(ratios) * self.config.region_fill if ratios else 1.0

        return SimilarityTransform(scale=scale,
                                   tx=x + w / 2.0 - scale * centre[0],
                                   ty=y + h / 2.0 - scale * centre[1])

    def save(self, path):
        """Write the model to a .npz archive."""
        from .models.npz_loader import save_model
        save_model(self, path)

    @classmethod
    def load(cls, path, config: Optional[FitConfig] = None) -> 'ASMModel':
        """Read a model written by save()."""
        from .models.npz_loader import load_model
        return load_model(path, config)

    def get_info(self) -> dict:
        """Get model information."""
        return {
            'n_points': self.n_points,
            'n_levels': self.n_levels,
            'shape_model': self.shape_model.get_info(),
            'profile_model': self.profile_model.get_info(),
        }

    def _make_observer(self, verbosity: VerbosityLike,
                       observer: Optional[FitObserver]) -> FitObserver:
        if observer is not None:
            return observer
        level = self.config.verbosity if verbosity is None else Verbosity.parse(verbosity)
        if level == Verbosity.NO_VERBOSE:
            return FitObserver()
        return LoggingObserver(level)

    def _fit_guarded(self, pyramid: List[np.ndarray], pose: SimilarityTransform,
                     observer: FitObserver, label: str) -> ASMFitResult:
        params = np.zeros(self.shape_model.n_modes)
        try:
            return self.engine.search(pyramid, params, pose, observer).with_model(self)
        except NUMERICAL_ERRORS as e:
            logger.warning("Fit failed for %s (%s: %s); using initial estimate",
                           label, type(e).__name__, e)
            return ASMFitResult(params=params, pose=pose, model=self)


def clamp_region(region: Region, width: int, height: int) -> Region:
    """
    Move and shrink a region so it lies inside a width x height image.

    Args:
        region: (x, y, w, h)
        width, height: Image size

    Returns:
        region: Clamped (x, y, w, h) with w, h at least one pixel
    """
    x, y, w, h = _check_region(region)
    w = min(max(w, 1.0), float(width))
    h = min(max(h, 1.0), float(height))
    x = min(max(x, 0.0), width - w)
    y = min(max(y, 0.0), height - h)
    return x, y, w, h


def _check_region(region) -> Region:
    values = tuple(float(v) for v in region)
    if len(values) != 4 or not all(np.isfinite(values)):
        raise ValueError(f"Region must be four finite numbers (x, y, w, h), got {region!r}")
    return values
