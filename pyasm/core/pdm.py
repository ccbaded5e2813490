"""
Point Distribution Model (PDM) - Core shape model for ASM

Implements the 2D PDM transform from parameters to landmarks:
    xi = s · R(θ) · (x̄i + Φi·b) + t

Where:
    - x̄i: Mean position of landmark i (model space)
    - Φi: Rows of the principal component matrix for landmark i
    - b: Shape parameters (PCA coefficients)
    - s, θ, t: Pose (see transform.SimilarityTransform)

Shape vectors are flattened as [x0, y0, x1, y1, ...], so Φ has shape (2n, m).
Rigid parameters are kept out of the parameter vector; the pose is always
carried as a separate SimilarityTransform.
"""

import numpy as np
from typing import Optional, Tuple

from ..exceptions import ModelConfigurationError
from .transform import SimilarityTransform


class PDM:
    """Point Distribution Model for landmark shapes."""

    def __init__(self,
                 mean_shape: np.ndarray,
                 princ_comp: np.ndarray,
                 eigen_values: np.ndarray,
                 neighbors: Optional[np.ndarray] = None):
        """
        Build a PDM from trained arrays.

        Args:
            mean_shape: Model-space mean shape, (n_points, 2) or (2n,)
            princ_comp: Orthonormal principal components, (2n, m)
            eigen_values: Variance of every component, (m,), strictly positive
            neighbors: (n_points, 2) indices of the previous/next landmark used
                       to compute boundary normals (default: open chain)
        """
        mean_shape = np.array(mean_shape, dtype=np.float64)
        if mean_shape.size == 0 or mean_shape.size % 2:
            raise ModelConfigurationError(
                f"Mean shape must hold 2D points, got {mean_shape.size} values")
        self.mean_shape = mean_shape.reshape(-1, 2)
        self.n_points = self.mean_shape.shape[0]

        princ_comp = np.array(princ_comp, dtype=np.float64)
        if princ_comp.ndim == 1 and princ_comp.size == 0:
            princ_comp = princ_comp.reshape(2 * self.n_points, 0)
        if princ_comp.ndim != 2 or princ_comp.shape[0] != 2 * self.n_points:
            raise ModelConfigurationError(
                f"Principal components must be ({2 * self.n_points}, m), got {princ_comp.shape}")
        self.princ_comp = princ_comp
        self.n_modes = princ_comp.shape[1]

        max_modes = max(2 * self.n_points - 4, 0)
        if self.n_modes > max_modes:
            raise ModelConfigurationError(
                f"{self.n_modes} modes exceed the {max_modes} allowed for {self.n_points} landmarks")

        eigen_values = np.array(eigen_values, dtype=np.float64).ravel()
        if eigen_values.shape[0] != self.n_modes:
            raise ModelConfigurationError(
                f"Expected {self.n_modes} eigenvalues, got {eigen_values.shape[0]}")
        if np.any(eigen_values <= 0) or not np.all(np.isfinite(eigen_values)):
            raise ModelConfigurationError("Eigenvalues must be finite and strictly positive")
        self.eigen_values = eigen_values

        if neighbors is None:
            neighbors = chain_neighbors(self.n_points)
        neighbors = np.array(neighbors, dtype=np.int64)
        if neighbors.shape != (self.n_points, 2):
            raise ModelConfigurationError(
                f"Neighbor table must be ({self.n_points}, 2), got {neighbors.shape}")
        if np.any(neighbors < 0) or np.any(neighbors >= self.n_points):
            raise ModelConfigurationError("Neighbor indices out of range")
        self.neighbors = neighbors

        # Read-only after construction; shared across concurrent fits
        for arr in (self.mean_shape, self.princ_comp, self.eigen_values, self.neighbors):
            arr.setflags(write=False)

    def shape_instance(self, params: np.ndarray) -> np.ndarray:
        """
        Model-space shape for the given parameters: x̄ + Φ·b.

        Args:
            params: Shape parameters, shape (m,)

        Returns:
            shape: Model-space points, shape (n_points, 2)
        """
        params = np.asarray(params, dtype=np.float64).ravel()
        if params.shape[0] != self.n_modes:
            raise ModelConfigurationError(
                f"Expected {self.n_modes} shape parameters, got {params.shape[0]}")
        flat = self.mean_shape.ravel() + self.princ_comp @ params  # (2n,)
        return flat.reshape(self.n_points, 2)

    def reconstruct(self, params: np.ndarray, pose: SimilarityTransform) -> np.ndarray:
        """
        Image-space landmarks: pose(x̄ + Φ·b).

        Args:
            params: Shape parameters, shape (m,)
            pose: Model-to-image similarity transform

        Returns:
            landmarks: Image-space points, shape (n_points, 2)
        """
        return pose.apply(self.shape_instance(params))

    def param_bounds(self, n_std: float = 3.0) -> np.ndarray:
        """Per-parameter bound n_std·sqrt(λi), shape (m,)."""
        return n_std * np.sqrt(self.eigen_values)

    def clamp_params(self, params: np.ndarray, n_std: float = 3.0) -> np.ndarray:
        """
        Clamp shape parameters to valid range based on eigenvalues.

        Constrains each shape parameter bi to ±n_std standard deviations:
            -n_std * sqrt(λi) <= bi <= n_std * sqrt(λi)

        Args:
            params: Shape parameters
            n_std: Number of standard deviations (typically 3.0)

        Returns:
            params: Clamped copy
        """
        params = np.asarray(params, dtype=np.float64).ravel()
        bounds = self.param_bounds(n_std)
        return np.clip(params, -bounds, bounds)

    def to_tangent_space(self, shape: np.ndarray) -> np.ndarray:
        """
        Project a model-frame shape onto the tangent plane at the mean.

            y' = y · (x̄·x̄) / (y·x̄)

        Left unchanged when the mean or the projection is degenerate
        (e.g. a single landmark, whose centred mean is the origin).
        """
        shape = np.asarray(shape, dtype=np.float64).reshape(-1, 2)
        mean_flat = self.mean_shape.ravel()
        mean_norm2 = mean_flat @ mean_flat
        dot = shape.ravel() @ mean_flat
        if mean_norm2 < 1e-12 or dot < 1e-12 * mean_norm2:
            return shape
        return shape * (mean_norm2 / dot)

    def project(self,
                points: np.ndarray,
                n_std: float = 3.0,
                pose: Optional[SimilarityTransform] = None,
                max_iterations: int = 20,
                tolerance: float = 1e-10) -> Tuple[np.ndarray, SimilarityTransform]:
        """
        Find the shape parameters and pose that best reproduce `points`.

        Classic ASM projection: alternate between aligning the current model
        shape to the points and projecting the aligned points onto the basis.

        Args:
            points: Image-space shape, (n_points, 2)
            n_std: Truncation factor for the returned parameters
            pose: Starting pose (default: alignment of the mean shape)
            max_iterations: Maximum alternations
            tolerance: Stop when the parameter change norm falls below this

        Returns:
            params: Clamped shape parameters, (m,)
            pose: Pose aligning shape_instance(params) onto points
        """
        points = self.check_points(points)

        params = np.zeros(self.n_modes)
        if pose is None:
            pose = SimilarityTransform.align(self.mean_shape, points)

        for _ in range(max_iterations):
            pose = SimilarityTransform.align(self.shape_instance(params), points, fallback=pose)

            y = self.to_tangent_space(pose.inverse().apply(points))
            new_params = self.clamp_params(
                self.princ_comp.T @ (y - self.mean_shape).ravel(), n_std)

            change = np.linalg.norm(new_params - params)
            params = new_params
            if change < tolerance:
                break

        pose = SimilarityTransform.align(self.shape_instance(params), points, fallback=pose)
        return params, pose

    def normals(self, points: np.ndarray) -> np.ndarray:
        """
        Unit boundary normals at every landmark.

        The tangent at landmark i is the direction from its previous to its
        next neighbor; the normal is the tangent rotated by 90°.

        Args:
            points: Landmark positions, (n_points, 2)

        Returns:
            normals: Unit normals, (n_points, 2)
        """
        points = self.check_points(points)
        tangents = points[self.neighbors[:, 1]] - points[self.neighbors[:, 0]]
        norms = np.linalg.norm(tangents, axis=1)

        normals = np.empty_like(points)
        normals[:, 0] = -tangents[:, 1]
        normals[:, 1] = tangents[:, 0]

        degenerate = norms < 1e-12
        normals[~degenerate] /= norms[~degenerate, None]
        normals[degenerate] = (1.0, 0.0)
        return normals

    def check_points(self, points: np.ndarray) -> np.ndarray:
        """Return points as (n_points, 2) float64, or raise on a count mismatch."""
        points = np.asarray(points, dtype=np.float64)
        if points.size != 2 * self.n_points:
            raise ModelConfigurationError(
                f"Shape has {points.size // 2} points, model expects {self.n_points}")
        return points.reshape(self.n_points, 2)

    def get_info(self) -> dict:
        """Get PDM information."""
        return {
            'n_points': self.n_points,
            'n_modes': self.n_modes,
            'mean_shape_shape': self.mean_shape.shape,
            'princ_comp_shape': self.princ_comp.shape,
            'eigen_values_shape': self.eigen_values.shape,
        }


def chain_neighbors(n_points: int, closed: bool = False) -> np.ndarray:
    """
    Neighbor table for landmarks ordered along one contour.

    Args:
        n_points: Number of landmarks
        closed: Wrap around (last point neighbors the first)

    Returns:
        neighbors: (n_points, 2) array of [previous, next] indices; open
                   chains repeat the end point itself at both ends
    """
    idx = np.arange(n_points)
    if closed:
        prev_idx = (idx - 1) % n_points
        next_idx = (idx + 1) % n_points
    else:
        prev_idx = np.maximum(idx - 1, 0)
        next_idx = np.minimum(idx + 1, n_points - 1)
    return np.stack([prev_idx, next_idx], axis=1)
