"""
Similarity transform (pose) between model space and image space.

A pose maps model-space points to image coordinates:
    x' = s · R(θ) · x + t

Internally the linear part is kept as (a, b) = (s·cos θ, s·sin θ), so that

    x' = a·x - b·y + tx
    y' = b·x + a·y + ty

which makes least-squares alignment a linear problem.
"""

import math
import numpy as np
from typing import Optional

# Below this centred sum of squares a point set carries no scale/rotation
_DEGENERATE_EPS = 1e-12


class SimilarityTransform:
    """2D similarity transform (uniform scale, rotation, translation)."""

    __slots__ = ('a', 'b', 'tx', 'ty')

    def __init__(self, scale: float = 1.0, rotation: float = 0.0,
                 tx: float = 0.0, ty: float = 0.0):
        """
        Args:
            scale: Uniform scale s
            rotation: Counter-clockwise rotation θ in radians
            tx: Translation along x
            ty: Translation along y
        """
        self.a = float(scale) * math.cos(rotation)
        self.b = float(scale) * math.sin(rotation)
        self.tx = float(tx)
        self.ty = float(ty)

    @classmethod
    def from_coefficients(cls, a: float, b: float, tx: float, ty: float) -> 'SimilarityTransform':
        """Build from the linear coefficients (a, b) and translation."""
        t = cls.__new__(cls)
        t.a, t.b, t.tx, t.ty = float(a), float(b), float(tx), float(ty)
        return t

    @classmethod
    def identity(cls) -> 'SimilarityTransform':
        return cls()

    @classmethod
    def align(cls,
              source: np.ndarray,
              target: np.ndarray,
              fallback: Optional['SimilarityTransform'] = None) -> 'SimilarityTransform':
        """
        Least-squares similarity transform mapping source onto target.

        Minimizes Σ ||s·R·src_i + t - dst_i||² (Procrustes alignment with scale).

        Args:
            source: Source points, shape (n_points, 2)
            target: Target points, shape (n_points, 2)
            fallback: Pose whose scale/rotation is kept when the source has no
                      spread (e.g. a single landmark); identity if None

        Returns:
            transform: Pose with transform.apply(source) ≈ target
        """
        source = np.asarray(source, dtype=np.float64).reshape(-1, 2)
        target = np.asarray(target, dtype=np.float64).reshape(-1, 2)

        src_mean = source.mean(axis=0)
        dst_mean = target.mean(axis=0)
        src_c = source - src_mean
        dst_c = target - dst_mean

        denom = np.sum(src_c ** 2)
        if denom < _DEGENERATE_EPS:
            base = fallback if fallback is not None else cls.identity()
            a, b = base.a, base.b
        else:
            a = np.sum(src_c[:, 0] * dst_c[:, 0] + src_c[:, 1] * dst_c[:, 1]) / denom
            b = np.sum(src_c[:, 0] * dst_c[:, 1] - src_c[:, 1] * dst_c[:, 0]) / denom

        tx = dst_mean[0] - (a * src_mean[0] - b * src_mean[1])
        ty = dst_mean[1] - (b * src_mean[0] + a * src_mean[1])
        return cls.from_coefficients(a, b, tx, ty)

    @property
    def scale(self) -> float:
        return math.hypot(self.a, self.b)

    @property
    def rotation(self) -> float:
        return math.atan2(self.b, self.a)

    @property
    def translation(self) -> np.ndarray:
        return np.array([self.tx, self.ty])

    def as_matrix(self) -> np.ndarray:
        """Return the 2×3 affine matrix [sR | t] (cv2.warpAffine layout)."""
        return np.array([
            [self.a, -self.b, self.tx],
            [self.b,  self.a, self.ty],
        ])

    def apply(self, points: np.ndarray) -> np.ndarray:
        """
        Transform points.

        Args:
            points: Points, shape (n_points, 2)

        Returns:
            transformed: Transformed points, shape (n_points, 2)
        """
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        out = np.empty_like(points)
        out[:, 0] = self.a * points[:, 0] - self.b * points[:, 1] + self.tx
        out[:, 1] = self.b * points[:, 0] + self.a * points[:, 1] + self.ty
        return out

    def inverse(self) -> 'SimilarityTransform':
        """Inverse pose; a zero-scale pose inverts to a pure translation."""
        norm2 = self.a ** 2 + self.b ** 2
        if norm2 < _DEGENERATE_EPS:
            return SimilarityTransform(tx=-self.tx, ty=-self.ty)
        ia = self.a / norm2
        ib = -self.b / norm2
        itx = -(ia * self.tx - ib * self.ty)
        ity = -(ib * self.tx + ia * self.ty)
        return SimilarityTransform.from_coefficients(ia, ib, itx, ity)

    def compose(self, other: 'SimilarityTransform') -> 'SimilarityTransform':
        """Pose equivalent to applying `other` first, then self."""
        a = self.a * other.a - self.b * other.b
        b = self.b * other.a + self.a * other.b
        tx = self.a * other.tx - self.b * other.ty + self.tx
        ty = self.b * other.tx + self.a * other.ty + self.ty
        return SimilarityTransform.from_coefficients(a, b, tx, ty)

    def rescaled(self, factor: float) -> 'SimilarityTransform':
        """
        Express the pose in an image resized by `factor`.

        Moving from pyramid level 0 to level l uses factor 0.5**l.
        """
        return SimilarityTransform.from_coefficients(
            self.a * factor, self.b * factor, self.tx * factor, self.ty * factor)

    def allclose(self, other: 'SimilarityTransform', atol: float = 1e-8) -> bool:
        return bool(np.allclose(
            [self.a, self.b, self.tx, self.ty],
            [other.a, other.b, other.tx, other.ty], atol=atol))

    def __repr__(self):
        return (f"SimilarityTransform(scale={self.scale:.6g}, rotation={self.rotation:.6g}, "
                f"tx={self.tx:.6g}, ty={self.ty:.6g})")
