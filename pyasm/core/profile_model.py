"""
Local appearance model - gray-level profile statistics per landmark.

For every (pyramid level, landmark) the model stores the mean of the training
profiles sampled along the boundary normal, and the inverse of their
covariance. A candidate profile g is scored by its squared Mahalanobis
distance:

    f(g) = (g - ḡ)ᵀ · S⁻¹ · (g - ḡ)

Profiles are normalized derivative profiles of length P = 2·ns + 1: 2·ns + 3
bilinear samples along the normal, central differences, divided by the sum of
their absolute values so a global change of contrast leaves them unchanged.
"""

import numpy as np
import cv2
from typing import Tuple

from ..exceptions import ModelConfigurationError

# Added to the absolute sum so a flat profile normalizes to zeros
_NORM_EPS = 1e-8


class ProfileModel:
    """Mahalanobis profile model, one entry per (level, landmark)."""

    def __init__(self, means: np.ndarray, inv_covs: np.ndarray):
        """
        Args:
            means: Mean profiles, shape (n_levels, n_points, P)
            inv_covs: Inverse covariance matrices, shape (n_levels, n_points, P, P)
        """
        means = np.array(means, dtype=np.float64)
        inv_covs = np.array(inv_covs, dtype=np.float64)

        if means.ndim != 3 or 0 in means.shape:
            raise ModelConfigurationError(
                f"Mean profiles must be (n_levels, n_points, P), got {means.shape}")
        n_levels, n_points, length = means.shape
        if length % 2 != 1:
            raise ModelConfigurationError(f"Profile length must be odd, got {length}")
        if inv_covs.shape != (n_levels, n_points, length, length):
            raise ModelConfigurationError(
                f"Inverse covariances must be {(n_levels, n_points, length, length)}, "
                f"got {inv_covs.shape}")
        if not (np.all(np.isfinite(means)) and np.all(np.isfinite(inv_covs))):
            raise ModelConfigurationError("Profile statistics contain non-finite values")

        self.means = means
        self.inv_covs = inv_covs
        self.means.setflags(write=False)
        self.inv_covs.setflags(write=False)

    @property
    def n_levels(self) -> int:
        return self.means.shape[0]

    @property
    def n_points(self) -> int:
        return self.means.shape[1]

    @property
    def profile_length(self) -> int:
        return self.means.shape[2]

    @property
    def half_length(self) -> int:
        """ns, with profile_length = 2·ns + 1."""
        return (self.profile_length - 1) // 2

    def evaluate(self, landmark_idx: int, level: int, profile: np.ndarray) -> float:
        """
        Squared Mahalanobis distance of one profile.

        Args:
            landmark_idx: Landmark index
            level: Pyramid level (0 = finest)
            profile: Sampled profile, shape (P,)

        Returns:
            distance: Non-negative fit value (lower is better)
        """
        self._check_level(level)
        if not 0 <= landmark_idx < self.n_points:
            raise ModelConfigurationError(
                f"Landmark {landmark_idx} out of range (model has {self.n_points})")
        profile = np.asarray(profile, dtype=np.float64).ravel()
        if profile.shape[0] != self.profile_length:
            raise ModelConfigurationError(
                f"Profile has {profile.shape[0]} values, model expects {self.profile_length}")

        diff = profile - self.means[level, landmark_idx]
        return float(diff @ self.inv_covs[level, landmark_idx] @ diff)

    def evaluate_batch(self, level: int, profiles: np.ndarray) -> np.ndarray:
        """
        Distances for every landmark and candidate of one level.

        Args:
            level: Pyramid level
            profiles: Candidate profiles, shape (n_points, n_candidates, P)

        Returns:
            distances: Shape (n_points, n_candidates)
        """
        self._check_level(level)
        profiles = np.asarray(profiles, dtype=np.float64)
        if profiles.ndim != 3 or profiles.shape[0] != self.n_points \
                or profiles.shape[2] != self.profile_length:
            raise ModelConfigurationError(
                f"Profiles must be ({self.n_points}, n_candidates, {self.profile_length}), "
                f"got {profiles.shape}")

        diff = profiles - self.means[level][:, None, :]
        return np.einsum('ncp,npq,ncq->nc', diff, self.inv_covs[level], diff)

    def _check_level(self, level: int):
        if not 0 <= level < self.n_levels:
            raise ModelConfigurationError(
                f"Level {level} out of range (model has {self.n_levels} levels)")

    def get_info(self) -> dict:
        return {
            'n_levels': self.n_levels,
            'n_points': self.n_points,
            'profile_length': self.profile_length,
        }


def sample_profiles(image: np.ndarray,
                    centers: np.ndarray,
                    normals: np.ndarray,
                    offsets: np.ndarray,
                    half_length: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Sample normalized derivative profiles around candidate positions.

    Candidate c of landmark i sits at centers[i] + offsets[c]·normals[i]; its
    profile is read along normals[i] with unit spacing.

    Args:
        image: Grayscale float32 image
        centers: Landmark positions, shape (n_points, 2)
        normals: Unit normals, shape (n_points, 2)
        offsets: Signed candidate offsets in pixels, shape (n_candidates,)
        half_length: ns

    Returns:
        profiles: Shape (n_points, n_candidates, 2·ns + 1)
        valid: Boolean mask (n_points, n_candidates), False where the
               candidate lies outside the image
    """
    image = np.ascontiguousarray(image, dtype=np.float32)
    centers = np.asarray(centers, dtype=np.float64).reshape(-1, 2)
    normals = np.asarray(normals, dtype=np.float64).reshape(-1, 2)
    offsets = np.asarray(offsets, dtype=np.float64).ravel()

    n_points = centers.shape[0]
    n_candidates = offsets.shape[0]
    steps = np.arange(-(half_length + 1), half_length + 2, dtype=np.float64)  # 2ns + 3

    # (n_points, n_candidates, 2)
    candidates = centers[:, None, :] + offsets[None, :, None] * normals[:, None, :]
    # (n_points, n_candidates, n_steps, 2)
    positions = candidates[:, :, None, :] + steps[None, None, :, None] * normals[:, None, None, :]

    map_x = positions[..., 0].reshape(n_points, -1).astype(np.float32)
    map_y = positions[..., 1].reshape(n_points, -1).astype(np.float32)
    samples = cv2.remap(image, map_x, map_y,
                        interpolation=cv2.INTER_LINEAR,
                        borderMode=cv2.BORDER_REPLICATE)
    samples = samples.reshape(n_points, n_candidates, steps.shape[0]).astype(np.float64)

    grads = samples[..., 2:] - samples[..., :-2]
    profiles = grads / (np.abs(grads).sum(axis=-1, keepdims=True) + _NORM_EPS)

    height, width = image.shape[:2]
    valid = ((candidates[..., 0] >= 0) & (candidates[..., 0] <= width - 1) &
             (candidates[..., 1] >= 0) & (candidates[..., 1] <= height - 1))
    return profiles, valid
