import numpy as np
import pytest

from pyasm.core.btsm import BTSMEstimator, ShapeEstimate
from pyasm.core.pdm import PDM
from pyasm.core.transform import SimilarityTransform


def identity_prior(pdm):
    return ShapeEstimate(np.zeros(pdm.n_modes), SimilarityTransform.identity())


def test_transformed_mean_gives_zero_params_and_exact_pose(shape_model):
    truth = SimilarityTransform(scale=48.0, rotation=0.25, tx=102.0, ty=97.0)
    observed = truth.apply(shape_model.mean_shape)

    estimate = BTSMEstimator(shape_model).estimate(observed, identity_prior(shape_model))
    np.testing.assert_allclose(estimate.params, 0.0, atol=1e-8)
    assert estimate.pose.allclose(truth, atol=1e-6)


def test_map_estimate_shrinks_towards_mean(shape_model):
    """One round from an identity prior equals the closed-form MAP update."""
    rng = np.random.default_rng(1)
    observed = shape_model.mean_shape + rng.normal(scale=0.05, size=shape_model.mean_shape.shape)

    estimator = BTSMEstimator(shape_model, n_std=1e6, n_iterations=1)
    estimate = estimator.estimate(observed, identity_prior(shape_model))

    y = shape_model.to_tangent_space(observed).ravel()
    r = y - shape_model.mean_shape.ravel()
    phi = shape_model.princ_comp
    proj = phi.T @ r
    resid = r - phi @ proj
    sigma2 = resid @ resid / (2 * shape_model.n_points - 4)
    expected = shape_model.eigen_values / (shape_model.eigen_values + sigma2) * proj

    assert estimate.noise_variance == pytest.approx(sigma2)
    np.testing.assert_allclose(estimate.params, expected, atol=1e-10)
    assert np.all(np.abs(estimate.params) <= np.abs(proj) + 1e-12)


def test_noisy_proposal_is_clamped(shape_model):
    rng = np.random.default_rng(2)
    observed = rng.uniform(0, 200, size=(shape_model.n_points, 2))
    prior = ShapeEstimate(np.zeros(shape_model.n_modes), SimilarityTransform(scale=50.0, tx=100.0, ty=100.0))

    estimate = BTSMEstimator(shape_model, n_std=2.0).estimate(observed, prior)
    assert np.all(np.abs(estimate.params) <= shape_model.param_bounds(2.0) + 1e-12)
    assert estimate.noise_variance >= 1e-10


def test_returned_pose_aligns_returned_params(shape_model):
    rng = np.random.default_rng(4)
    truth = SimilarityTransform(scale=50.0, rotation=-0.1, tx=90.0, ty=110.0)
    observed = truth.apply(shape_model.mean_shape) + rng.normal(scale=1.0, size=shape_model.mean_shape.shape)

    estimate = BTSMEstimator(shape_model).estimate(observed, identity_prior(shape_model))
    aligned = SimilarityTransform.align(shape_model.shape_instance(estimate.params), observed)
    assert estimate.pose.allclose(aligned, atol=1e-9)


def test_single_landmark_without_modes():
    pdm = PDM([[0.0, 0.0]], np.zeros((2, 0)), np.zeros(0))
    prior = ShapeEstimate(np.zeros(0), SimilarityTransform(scale=2.0, tx=1.0, ty=1.0))

    estimate = BTSMEstimator(pdm).estimate([[5.0, 7.0]], prior)
    assert estimate.params.shape == (0,)
    assert estimate.pose.scale == pytest.approx(2.0)
    np.testing.assert_allclose(pdm.reconstruct(estimate.params, estimate.pose), [[5.0, 7.0]])
