"""
Reference ASM trainer.

Builds a PDM and a ProfileModel from annotated images:

1. Generalized Procrustes analysis aligns the training shapes to a centred,
   unit-norm mean and projects them into its tangent space.
2. PCA of the aligned deviations, orthogonalized against the four similarity
   directions (scale, rotation, x/y translation) so shape parameters never
   encode pose.
3. At every pyramid level, the mean and regularized inverse covariance of the
   normalized derivative profiles sampled at the annotated landmarks.
"""

import logging
from typing import Optional, Sequence, Tuple

import numpy as np

from .asm import ASMModel
from .config import FitConfig
from .core.pdm import PDM, chain_neighbors
from .core.profile_model import ProfileModel, sample_profiles
from .core.search import build_image_pyramid
from .core.transform import SimilarityTransform

logger = logging.getLogger(__name__)

__all__ = ['align_shapes', 'similarity_basis', 'build_shape_model',
           'build_profile_model', 'build_asm', 'chain_neighbors']


def align_shapes(shapes: Sequence[np.ndarray],
                 max_iterations: int = 20,
                 tolerance: float = 1e-10) -> Tuple[np.ndarray, np.ndarray]:
    """
    Generalized Procrustes analysis.

    Args:
        shapes: Training shapes, each (n_points, 2)
        max_iterations: Maximum mean re-estimations
        tolerance: Stop when the mean moves less than this

    Returns:
        mean: Centred mean shape with unit norm, (n_points, 2)
        aligned: Shapes aligned to the mean and projected into its tangent
                 space, (n_shapes, n_points, 2)
    """
    shapes = np.asarray(shapes, dtype=np.float64)
    if shapes.ndim != 3 or shapes.shape[0] == 0 or shapes.shape[2] != 2:
        raise ValueError(f"Expected shapes of shape (n_shapes, n_points, 2), got {shapes.shape}")

    centred = shapes - shapes.mean(axis=1, keepdims=True)
    mean = _normalize(centred[0])

    for _ in range(max_iterations):
        aligned = _align_all(centred, mean)
        new_mean = _normalize(aligned.mean(axis=0))
        # Keep the orientation of the previous estimate
        new_mean = _normalize(SimilarityTransform.align(new_mean, mean).apply(new_mean))

        change = np.linalg.norm(new_mean - mean)
        mean = new_mean
        if change < tolerance:
            break

    aligned = _align_all(centred, mean)

    # Tangent space projection: scale each shape so that (y - mean)·mean = 0
    mean_norm2 = float(np.sum(mean ** 2))
    if mean_norm2 > 1e-12:
        dots = np.einsum('snd,nd->s', aligned, mean)
        safe = np.where(dots > 1e-12, dots, mean_norm2)
        aligned = aligned * (mean_norm2 / safe)[:, None, None]

    return mean, aligned


def similarity_basis(mean: np.ndarray) -> np.ndarray:
    """
    Orthonormal basis of the similarity directions at a shape.

    Spans scaling, in-plane rotation and x/y translation of `mean`. Directions
    that vanish (e.g. scale and rotation of a single point) are dropped.

    Returns:
        basis: (2 * n_points, k) with k <= 4 orthonormal columns
    """
    mean = np.asarray(mean, dtype=np.float64).reshape(-1, 2)
    n_points = mean.shape[0]
    rotated = np.column_stack([-mean[:, 1], mean[:, 0]])
    directions = np.column_stack([
        mean.ravel(),
        rotated.ravel(),
        np.tile([1.0, 0.0], n_points),
        np.tile([0.0, 1.0], n_points),
    ])
    u, s, _ = np.linalg.svd(directions, full_matrices=False)
    rank = int(np.sum(s > 1e-10 * max(s.max(), 1.0)))
    return u[:, :rank]


def build_shape_model(shapes: Sequence[np.ndarray],
                      max_components: Optional[int] = None,
                      variance_retained: float = 0.98,
                      neighbors: Optional[np.ndarray] = None) -> PDM:
    """
    Train a PDM from landmark shapes.

    Args:
        shapes: Training shapes, each (n_points, 2)
        max_components: Upper bound on the number of modes
        variance_retained: Fraction of the shape variance the kept modes explain
        neighbors: Normal neighbor table passed to the PDM

    Returns:
        pdm: Trained point distribution model
    """
    if not 0 < variance_retained <= 1:
        raise ValueError(f"variance_retained must be in (0, 1], got {variance_retained}")

    mean, aligned = align_shapes(shapes)
    n_shapes, n_points = aligned.shape[:2]

    deviations = (aligned - mean).reshape(n_shapes, -1)
    basis = similarity_basis(mean)
    deviations = deviations - (deviations @ basis) @ basis.T

    cov = deviations.T @ deviations / max(n_shapes - 1, 1)
    eigen_values, eigen_vectors = np.linalg.eigh(cov)
    order = np.argsort(eigen_values)[::-1]
    eigen_values = eigen_values[order]
    eigen_vectors = eigen_vectors[:, order]

    limit = max(2 * n_points - 4, 0)
    if max_components is not None:
        limit = min(limit, max_components)
    total = eigen_values[eigen_values > 0].sum()
    significant = int(np.sum(eigen_values > max(1e-12 * total, 1e-14)))
    n_modes = min(limit, significant)

    if n_modes > 0:
        ratios = np.cumsum(eigen_values[:n_modes]) / total
        n_modes = min(n_modes, int(np.searchsorted(ratios, variance_retained - 1e-12)) + 1)

    logger.debug("Shape model: %d landmarks, %d training shapes, %d modes",
                 n_points, n_shapes, n_modes)

    return PDM(mean, eigen_vectors[:, :n_modes], eigen_values[:n_modes], neighbors=neighbors)


def build_profile_model(images: Sequence[np.ndarray],
                        shapes: Sequence[np.ndarray],
                        shape_model: PDM,
                        n_levels: int = 3,
                        profile_half_length: int = 4,
                        regularization: float = 0.05) -> ProfileModel:
    """
    Train profile statistics for every landmark and pyramid level.

    Args:
        images: Training images (grayscale or BGR)
        shapes: Annotated landmarks of each image, level-0 pixel coordinates
        shape_model: PDM providing the normal neighbor table
        n_levels: Pyramid levels to train
        profile_half_length: ns; profiles hold 2 * ns + 1 values
        regularization: Ridge added to each covariance, relative to its
                        mean variance

    Returns:
        profile_model: Trained ProfileModel
    """
    if len(images) != len(shapes) or len(images) == 0:
        raise ValueError(f"Need matching non-empty images and shapes, got "
                         f"{len(images)} images and {len(shapes)} shapes")
    if n_levels < 1:
        raise ValueError(f"n_levels must be >= 1, got {n_levels}")
    if profile_half_length < 0:
        raise ValueError(f"profile_half_length must be >= 0, got {profile_half_length}")

    length = 2 * profile_half_length + 1
    n_points = shape_model.n_points
    pyramids = [build_image_pyramid(image, n_levels) for image in images]
    shapes = [shape_model.check_points(shape) for shape in shapes]

    means = np.zeros((n_levels, n_points, length))
    inv_covs = np.zeros((n_levels, n_points, length, length))
    identity = np.eye(length)

    for level in range(n_levels):
        factor = 0.5 ** level
        samples = []
        for pyramid, shape in zip(pyramids, shapes):
            points = shape * factor
            profiles, _ = sample_profiles(pyramid[level], points, shape_model.normals(points),
                                          np.zeros(1), profile_half_length)
            samples.append(profiles[:, 0, :])
        samples = np.stack(samples)  # (n_images, n_points, P)

        mean = samples.mean(axis=0)
        diff = samples - mean
        cov = np.einsum('snp,snq->npq', diff, diff) / max(len(samples) - 1, 1)
        ridge = regularization * np.trace(cov, axis1=1, axis2=2) / length + 1e-8
        cov = cov + ridge[:, None, None] * identity

        means[level] = mean
        inv_covs[level] = np.linalg.inv(cov)

    return ProfileModel(means, inv_covs)


def build_asm(images: Sequence[np.ndarray],
              shapes: Sequence[np.ndarray],
              n_levels: int = 3,
              profile_half_length: int = 4,
              max_components: Optional[int] = None,
              variance_retained: float = 0.98,
              neighbors: Optional[np.ndarray] = None,
              regularization: float = 0.05,
              config: Optional[FitConfig] = None) -> ASMModel:
    """
    Train a complete ASM from annotated images.

    Returns:
        model: ASMModel ready for fit/fit_all
    """
    shape_model = build_shape_model(shapes, max_components=max_components,
                                    variance_retained=variance_retained, neighbors=neighbors)
    profile_model = build_profile_model(images, shapes, shape_model, n_levels=n_levels,
                                        profile_half_length=profile_half_length,
                                        regularization=regularization)
    logger.info("Trained ASM: %d landmarks, %d modes, %d levels",
                shape_model.n_points, shape_model.n_modes, profile_model.n_levels)
    return ASMModel(shape_model, profile_model, config)


def _normalize(shape: np.ndarray) -> np.ndarray:
    centred = shape - shape.mean(axis=0)
    norm = np.linalg.norm(centred)
    return centred / norm if norm > 1e-12 else centred


def _align_all(shapes: np.ndarray, target: np.ndarray) -> np.ndarray:
    return np.stack([SimilarityTransform.align(shape, target).apply(shape) for shape in shapes])
