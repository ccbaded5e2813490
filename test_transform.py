import cv2
import numpy as np
import pytest

from pyasm.core.transform import SimilarityTransform


@pytest.fixture
def points():
    rng = np.random.default_rng(0)
    return rng.normal(size=(10, 2)) * 20.0


def test_align_recovers_known_transform(points):
    truth = SimilarityTransform(scale=1.7, rotation=0.4, tx=12.0, ty=-3.5)
    estimate = SimilarityTransform.align(points, truth.apply(points))
    assert estimate.allclose(truth, atol=1e-10)
    assert estimate.scale == pytest.approx(1.7)
    assert estimate.rotation == pytest.approx(0.4)


def test_inverse_and_compose(points):
    pose = SimilarityTransform(scale=0.8, rotation=-1.1, tx=4.0, ty=9.0)
    identity = pose.compose(pose.inverse())
    assert identity.allclose(SimilarityTransform.identity(), atol=1e-12)
    np.testing.assert_allclose(pose.inverse().apply(pose.apply(points)), points, atol=1e-10)


def test_compose_applies_other_first(points):
    first = SimilarityTransform(scale=2.0, tx=1.0)
    second = SimilarityTransform(rotation=0.5, ty=-2.0)
    np.testing.assert_allclose(second.compose(first).apply(points),
                               second.apply(first.apply(points)), atol=1e-10)


def test_rescaled_moves_pose_between_pyramid_levels(points):
    pose = SimilarityTransform(scale=3.0, rotation=0.2, tx=40.0, ty=60.0)
    np.testing.assert_allclose(pose.rescaled(0.5).apply(points), 0.5 * pose.apply(points))
    assert pose.rescaled(0.25).rescaled(4.0).allclose(pose)


def test_as_matrix_matches_cv2_transform(points):
    pose = SimilarityTransform(scale=1.3, rotation=0.7, tx=-5.0, ty=8.0)
    moved = cv2.transform(points.reshape(-1, 1, 2), pose.as_matrix()).reshape(-1, 2)
    np.testing.assert_allclose(moved, pose.apply(points), atol=1e-9)


def test_degenerate_source_keeps_fallback_scale():
    fallback = SimilarityTransform(scale=2.5, rotation=0.3)
    pose = SimilarityTransform.align(np.array([[1.0, 1.0]]), np.array([[10.0, 20.0]]), fallback=fallback)
    assert pose.scale == pytest.approx(2.5)
    assert pose.rotation == pytest.approx(0.3)
    np.testing.assert_allclose(pose.apply([[1.0, 1.0]]), [[10.0, 20.0]])


def test_zero_scale_inverse_is_translation():
    pose = SimilarityTransform(scale=0.0, tx=3.0, ty=4.0)
    inverse = pose.inverse()
    assert inverse.scale == pytest.approx(1.0)
    np.testing.assert_allclose(inverse.translation, [-3.0, -4.0])
