import numpy as np
import pytest

from pyasm.core.profile_model import ProfileModel, sample_profiles
from pyasm.exceptions import ModelConfigurationError


@pytest.fixture
def profile_model():
    rng = np.random.default_rng(11)
    means = rng.normal(size=(2, 3, 5))
    factors = rng.normal(size=(2, 3, 5, 5))
    inv_covs = factors @ np.swapaxes(factors, -1, -2) + np.eye(5)
    return ProfileModel(means, inv_covs)


@pytest.fixture
def step_image():
    image = np.zeros((20, 40), dtype=np.float32)
    image[:, 20:] = 100.0
    return image


def test_dimensions(profile_model):
    assert profile_model.n_levels == 2
    assert profile_model.n_points == 3
    assert profile_model.profile_length == 5
    assert profile_model.half_length == 2


def test_evaluate_is_mahalanobis_distance(profile_model):
    profile = np.arange(5, dtype=np.float64)
    diff = profile - profile_model.means[1, 2]
    expected = diff @ profile_model.inv_covs[1, 2] @ diff
    assert profile_model.evaluate(2, 1, profile) == pytest.approx(expected)
    assert profile_model.evaluate(0, 0, profile_model.means[0, 0]) == pytest.approx(0.0)


def test_evaluate_batch_matches_evaluate(profile_model):
    rng = np.random.default_rng(5)
    profiles = rng.normal(size=(3, 4, 5))
    batch = profile_model.evaluate_batch(1, profiles)
    assert batch.shape == (3, 4)
    for i in range(3):
        for c in range(4):
            assert batch[i, c] == pytest.approx(profile_model.evaluate(i, 1, profiles[i, c]))


@pytest.mark.parametrize("landmark_idx, level, length", [
    (3, 0, 5),
    (-1, 0, 5),
    (0, 2, 5),
    (0, 0, 7),
])
def test_evaluate_rejects_bad_lookups(profile_model, landmark_idx, level, length):
    with pytest.raises(ModelConfigurationError):
        profile_model.evaluate(landmark_idx, level, np.zeros(length))


def test_evaluate_batch_rejects_wrong_shape(profile_model):
    with pytest.raises(ModelConfigurationError):
        profile_model.evaluate_batch(0, np.zeros((2, 4, 5)))


def test_malformed_statistics_raise():
    with pytest.raises(ModelConfigurationError):
        ProfileModel(np.zeros((1, 2, 4)), np.zeros((1, 2, 4, 4)))  # even length
    with pytest.raises(ModelConfigurationError):
        ProfileModel(np.zeros((1, 2, 5)), np.zeros((1, 3, 5, 5)))
    with pytest.raises(ModelConfigurationError):
        ProfileModel(np.full((1, 1, 3), np.nan), np.zeros((1, 1, 3, 3)))


def test_step_edge_profile(step_image):
    profiles, valid = sample_profiles(step_image, [[19.5, 10.0]], [[1.0, 0.0]], [0.0], 2)
    assert profiles.shape == (1, 1, 5)
    assert valid.all()
    np.testing.assert_allclose(profiles[0, 0], [0.0, 0.25, 0.5, 0.25, 0.0], atol=1e-3)


def test_profiles_ignore_contrast(step_image):
    args = ([[19.5, 10.0]], [[1.0, 0.0]], [-1.0, 0.0, 2.0], 3)
    low, _ = sample_profiles(step_image, *args)
    high, _ = sample_profiles(step_image * 3.0 + 20.0, *args)
    np.testing.assert_allclose(low, high, atol=1e-4)


def test_flat_region_gives_zero_profile(step_image):
    profiles, _ = sample_profiles(step_image, [[5.0, 10.0]], [[1.0, 0.0]], [0.0], 2)
    np.testing.assert_allclose(profiles, 0.0)


def test_candidates_outside_image_are_invalid(step_image):
    _, valid = sample_profiles(step_image, [[19.5, 10.0]], [[1.0, 0.0]], [-30.0, 0.0, 30.0], 2)
    np.testing.assert_array_equal(valid, [[False, True, False]])


def test_model_is_read_only(profile_model):
    with pytest.raises(ValueError):
        profile_model.means[0, 0, 0] = 1.0
