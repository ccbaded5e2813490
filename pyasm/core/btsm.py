"""
Bayesian Tangent Shape Model (BTSM) parameter estimation.

Given a proposed image-space shape Y, find shape parameters b and pose T that
best explain it under a Gaussian prior b ~ N(0, Λ) and isotropic observation
noise σ² in the tangent space:

    y     = tangent(T⁻¹(Y))
    r     = y - x̄
    σ²    = ||r - Φ·Φᵀ·r||² / (2n - 4)
    b_MAP = (ΦᵀΦ + σ²·Λ⁻¹)⁻¹ · Φᵀ·r

The estimate alternates between b_MAP and a Procrustes update of T. A large
residual σ² (a proposal far from any plausible shape) pulls b towards the
mean, which is what keeps the search stable on noisy proposals.
"""

import numpy as np
from dataclasses import dataclass

from .pdm import PDM
from .transform import SimilarityTransform


@dataclass(frozen=True)
class ShapeEstimate:
    """Shape parameters and pose; also the prior of the next estimate."""

    params: np.ndarray
    pose: SimilarityTransform
    noise_variance: float = 0.0


class BTSMEstimator:
    """MAP estimator of (b, pose) under the BTSM prior."""

    def __init__(self,
                 pdm: PDM,
                 n_std: float = 3.0,
                 n_iterations: int = 3,
                 min_noise_variance: float = 1e-10):
        """
        Args:
            pdm: Shape model providing x̄, Φ and Λ
            n_std: Truncation factor applied to the estimated parameters
            n_iterations: Pose/parameter alternations per estimate
            min_noise_variance: Floor of σ²
        """
        self.pdm = pdm
        self.n_std = n_std
        self.n_iterations = n_iterations
        self.min_noise_variance = min_noise_variance

        phi = pdm.princ_comp
        self._gram = phi.T @ phi
        self._inv_eigen = np.diag(1.0 / pdm.eigen_values)
        self._dof = max(2 * pdm.n_points - 4, 1)

    def estimate(self, observed: np.ndarray, prior: ShapeEstimate) -> ShapeEstimate:
        """
        Estimate (b, pose) for an observed image-space shape.

        Args:
            observed: Proposed landmarks, shape (n_points, 2)
            prior: Previous estimate; its pose seeds the alternation

        Returns:
            estimate: Clamped parameters, the pose aligning them onto
                      `observed`, and the final noise variance
        """
        pdm = self.pdm
        observed = pdm.check_points(observed)
        phi = pdm.princ_comp
        mean_flat = pdm.mean_shape.ravel()

        params = np.asarray(prior.params, dtype=np.float64).ravel().copy()
        pose = prior.pose
        sigma2 = self.min_noise_variance

        for _ in range(self.n_iterations):
            y = pdm.to_tangent_space(pose.inverse().apply(observed)).ravel()
            r = y - mean_flat

            proj = phi.T @ r
            resid = r - phi @ proj
            sigma2 = max(float(resid @ resid) / self._dof, self.min_noise_variance)

            if pdm.n_modes:
                params = self._solve(self._gram + sigma2 * self._inv_eigen, proj)
            params = pdm.clamp_params(params, self.n_std)

            pose = SimilarityTransform.align(pdm.shape_instance(params), observed, fallback=pose)

        return ShapeEstimate(params=params, pose=pose, noise_variance=sigma2)

    @staticmethod
    def _solve(lhs: np.ndarray, rhs: np.ndarray) -> np.ndarray:
        try:
            return np.linalg.solve(lhs, rhs)
        except np.linalg.LinAlgError:
            return np.linalg.lstsq(lhs, rhs, rcond=None)[0]
